from __future__ import annotations

import math
from types import ModuleType
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from beartype.typing import Sequence
from jaxtyping import Float, jaxtyped

from .curve_types import GridPoint, NpUnary
from .errors import InvalidInputError


def _segment_pieces(
    p1: Sequence[Any],
    p2: Sequence[Any],
    dims: Sequence[float],
    counts: Sequence[int],
    xp: ModuleType,
    eps: float,
) -> tuple[Any, Any, Any]:
    """
    Split the segment p1 -> p2 at every voxel boundary it crosses.

    Voxel i spans [i - 1/2, i + 1/2), so grid points sit on voxel centres.
    counts[a] is the number of candidate boundaries examined along axis a;
    surplus candidates land at t = 1 and produce zero-length pieces.

    Returns (dt, cells, seg_len): parameter length of each piece, the
    (unclipped) voxel of each piece and the physical segment length.
    """
    ts = [xp.zeros((1,))]
    for a in range(3):
        if counts[a] <= 0:
            continue
        a1 = p1[a]
        d = p2[a] - a1
        moving = xp.abs(d) > 1e-12
        safe_d = xp.where(moving, d, 1.0)
        first = xp.floor(xp.minimum(a1, p2[a]) + 0.5) + 0.5
        bounds = first + xp.arange(counts[a])
        t = xp.where(moving, (bounds - a1) / safe_d, 1.0)
        t = xp.where((t > 0.0) & (t < 1.0), t, 1.0)
        ts.append(t)
    ts.append(xp.ones((1,)))
    ts = xp.sort(xp.concatenate(ts))

    dt = ts[1:] - ts[:-1]
    mid = 0.5 * (ts[1:] + ts[:-1])
    cells = xp.stack(
        [xp.floor(p1[a] + mid * (p2[a] - p1[a]) + 0.5).astype(int) for a in range(3)],
        axis=-1,
    )
    delta = [(p2[a] - p1[a]) * dims[a] for a in range(3)]
    seg_len = xp.sqrt(delta[0] * delta[0] + delta[1] * delta[1] + delta[2] * delta[2] + eps * eps)
    return dt, cells, seg_len


class PiecewiseConstantField:
    """
    Per-voxel scalar cost, integrated along straight segments.

    ``line_integral`` is exact (numpy). ``line_integral_jax`` is the same
    integral written in jax.numpy with a fixed number of crossing
    candidates per axis, so it can be traced, vmapped and differentiated
    with respect to the end points.
    """

    @jaxtyped(typechecker=beartype)
    def __init__(
        self,
        unary: NpUnary,
        voxel_dims: Sequence[float] = (1.0, 1.0, 1.0),
    ) -> None:
        if len(voxel_dims) != 3:
            raise InvalidInputError("voxel dimensions must have 3 entries")
        if any(float(d) <= 0 for d in voxel_dims):
            raise InvalidInputError("voxel dimensions must be positive")
        self.values = np.asarray(unary, dtype=np.float64)
        self.shape: GridPoint = tuple(int(s) for s in self.values.shape)  # type: ignore[assignment]
        self.voxel_dims = tuple(float(d) for d in voxel_dims)
        self.flat: list[float] = self.values.ravel(order="F").tolist()
        self._values_j = jnp.asarray(self.values)
        self._weights: dict[GridPoint, tuple[tuple[int, float], ...]] = {}

    def _clip_cells(self, cells: Any, xp: ModuleType) -> tuple[Any, Any, Any]:
        return tuple(
            xp.clip(cells[..., a], 0, self.shape[a] - 1) for a in range(3)
        )  # type: ignore[return-value]

    def line_integral(self, p1: Sequence[float], p2: Sequence[float]) -> float:
        p1_f = [float(v) for v in p1]
        p2_f = [float(v) for v in p2]
        counts = [int(math.ceil(abs(p2_f[a] - p1_f[a]))) + 1 for a in range(3)]
        dt, cells, seg_len = _segment_pieces(p1_f, p2_f, self.voxel_dims, counts, np, 0.0)
        ix, iy, iz = self._clip_cells(cells, np)
        return float(np.sum(self.values[ix, iy, iz] * dt) * seg_len)

    @jaxtyped(typechecker=beartype)
    def line_integral_jax(
        self,
        p1: Float[jax.Array, "3"],
        p2: Float[jax.Array, "3"],
        eps: float = 1e-9,
    ) -> Float[jax.Array, ""]:
        counts = [max(s - 1, 0) for s in self.shape]
        dt, cells, seg_len = _segment_pieces(p1, p2, self.voxel_dims, counts, jnp, eps)
        ix, iy, iz = self._clip_cells(cells, jnp)
        return jnp.sum(self._values_j[ix, iy, iz] * dt) * seg_len

    def segment_weights(self, offset: GridPoint) -> tuple[tuple[int, float], ...]:
        """
        (linear voxel offset, physical length) pieces of the segment from any
        grid point g to g + offset. The pieces are translation invariant, so
        the data term of a discrete step is sum(flat[g + k] * w).
        """
        cached = self._weights.get(offset)
        if cached is not None:
            return cached
        counts = [abs(int(o)) + 1 for o in offset]
        dt, cells, seg_len = _segment_pieces(
            (0.0, 0.0, 0.0),
            tuple(float(o) for o in offset),
            self.voxel_dims,
            counts,
            np,
            0.0,
        )
        M, N, _ = self.shape
        merged: dict[int, float] = {}
        for piece_dt, cell in zip(dt.tolist(), cells.tolist()):
            if piece_dt <= 0.0:
                continue
            key = cell[0] + cell[1] * M + cell[2] * M * N
            merged[key] = merged.get(key, 0.0) + piece_dt * float(seg_len)
        weights = tuple(merged.items())
        self._weights[offset] = weights
        return weights

    def step_cost(self, start_index: int, offset: GridPoint) -> float:
        flat = self.flat
        return sum(flat[start_index + k] * w for k, w in self.segment_weights(offset))
