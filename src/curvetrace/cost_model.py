from __future__ import annotations

import numpy as np
from beartype import beartype
from beartype.typing import Sequence
from jaxtyping import Real, jaxtyped

from .data_term import PiecewiseConstantField
from .geometry import CurvatureCost, LengthCost, TorsionCost
from .settings import RegularizationSettings


class CostModel:
    """Data term plus length, curvature and torsion functors for one query."""

    def __init__(
        self, field: PiecewiseConstantField, settings: RegularizationSettings
    ) -> None:
        dims = field.voxel_dims
        self.field = field
        self.settings = settings
        self.length = LengthCost(dims, settings.length_penalty)
        self.curvature = CurvatureCost(
            dims, settings.curvature_penalty, settings.curvature_power
        )
        self.torsion = TorsionCost(dims, settings.torsion_penalty, settings.torsion_power)

    def segment_cost(self, p1: Sequence[float], p2: Sequence[float]) -> float:
        return self.field.line_integral(p1, p2) + float(self.length(p1, p2))

    def triple_cost(
        self, p1: Sequence[float], p2: Sequence[float], p3: Sequence[float]
    ) -> float:
        return float(self.curvature(p1, p2, p3))

    def quad_cost(
        self,
        p1: Sequence[float],
        p2: Sequence[float],
        p3: Sequence[float],
        p4: Sequence[float],
    ) -> float:
        return float(self.torsion(p1, p2, p3, p4))

    @jaxtyped(typechecker=beartype)
    def path_cost(self, points: Real[np.ndarray, "P 3"]) -> float:
        """
        Objective of a whole polyline: every segment, every consecutive
        triple and every consecutive quadruple, each counted once.
        """
        pts = [tuple(float(v) for v in row) for row in points]
        total = 0.0
        for i in range(1, len(pts)):
            total += self.segment_cost(pts[i - 1], pts[i])
        for i in range(2, len(pts)):
            total += self.triple_cost(pts[i - 2], pts[i - 1], pts[i])
        for i in range(3, len(pts)):
            total += self.quad_cost(pts[i - 3], pts[i - 2], pts[i - 1], pts[i])
        return total
