from __future__ import annotations

import numpy as np
from beartype import beartype
from beartype.typing import Sequence
from jaxtyping import Int, jaxtyped

from .curve_types import GridPoint, NpGridPath
from .errors import InvalidInputError
from .state_graph import NeighborProvider


def decode_path(provider: NeighborProvider, states: Sequence[int]) -> NpGridPath:
    """
    Turn a state path (SuperSource already removed) into grid points.

    The first state contributes its whole window; every later state adds
    only its newest point, since each transition extends the curve by
    exactly one point.
    """
    super_source = provider.super_source
    if super_source is not None and super_source in states:
        raise InvalidInputError("the SuperSource must be stripped before decoding")
    points: list[GridPoint] = []
    for i, state in enumerate(states):
        window = provider.state_points(state)
        if i == 0:
            points.extend(window)
        else:
            points.append(window[-1])
    return np.array(points, dtype=np.int64).reshape(-1, 3)


@jaxtyped(typechecker=beartype)
def encode_path(provider: NeighborProvider, points: Int[np.ndarray, "P 3"]) -> list[int]:
    """Inverse of decode_path: one state per sliding window of the point list."""
    window = provider.window_size
    pts: list[GridPoint] = [tuple(int(v) for v in row) for row in points]  # type: ignore[misc]
    if len(pts) < window:
        raise InvalidInputError(
            f"a path needs at least {window} points in {provider.mode.value} mode"
        )
    return [
        provider.encode_window(pts[i : i + window]) for i in range(len(pts) - window + 1)
    ]
