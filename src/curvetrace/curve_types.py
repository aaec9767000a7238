from __future__ import annotations

from typing import TypeAlias

import jax
import numpy as np
from jaxtyping import Float, Int

NpUnary: TypeAlias = Float[np.ndarray, "M N O"]
NpGridPath: TypeAlias = Int[np.ndarray, "P 3"]
NpCurvePoints: TypeAlias = Float[np.ndarray, "P 3"]
NpVisitMap: TypeAlias = Float[np.ndarray, "M N O"]

JaxFreePoints: TypeAlias = Float[jax.Array, "F 3"]
JaxScalar: TypeAlias = Float[jax.Array, ""]

GridPoint: TypeAlias = tuple[int, int, int]
Neighbor: TypeAlias = tuple[int, float]
