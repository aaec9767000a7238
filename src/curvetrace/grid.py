from __future__ import annotations

import itertools
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .curve_types import GridPoint
from .errors import InvalidInputError


@dataclass(frozen=True)
class GridIndexer:
    """Column-major linear indexing of an (M, N, O) grid, starting at 0."""

    M: int
    N: int
    O: int = 1

    @classmethod
    def from_shape(cls, shape: tuple[int, ...]) -> GridIndexer:
        if len(shape) == 2:
            return cls(int(shape[0]), int(shape[1]), 1)
        if len(shape) == 3:
            return cls(int(shape[0]), int(shape[1]), int(shape[2]))
        raise InvalidInputError("only 2d and 3d grids are supported")

    @property
    def shape(self) -> tuple[int, int, int]:
        return (self.M, self.N, self.O)

    @property
    def size(self) -> int:
        return self.M * self.N * self.O

    def is_valid(self, x: int, y: int, z: int) -> bool:
        return 0 <= x < self.M and 0 <= y < self.N and 0 <= z < self.O

    def sub2ind(self, x: int, y: int, z: int) -> int:
        return x + y * self.M + z * self.M * self.N

    def ind2sub(self, n: int) -> GridPoint:
        plane = self.M * self.N
        z = n // plane
        y = (n - z * plane) // self.M
        x = n - y * self.M - z * plane
        return (x, y, z)


class Connectivity:
    """Ordered, read-only set of integer one-hop offsets."""

    def __init__(self, offsets: np.ndarray | list[tuple[int, ...]]) -> None:
        arr = np.asarray(offsets)
        if arr.ndim != 2 or arr.shape[0] == 0 or arr.shape[1] not in (2, 3):
            raise InvalidInputError("connectivity must be a non-empty K x 3 (or K x 2) array")
        if not np.all(np.equal(np.mod(arr, 1), 0)):
            raise InvalidInputError("connectivity offsets must be integers")
        arr = arr.astype(np.int64)
        if arr.shape[1] == 2:
            arr = np.concatenate([arr, np.zeros((arr.shape[0], 1), dtype=np.int64)], axis=1)

        rows = [tuple(int(v) for v in row) for row in arr]
        if any(row == (0, 0, 0) for row in rows):
            raise InvalidInputError("connectivity contains a zero offset")
        if len(set(rows)) != len(rows):
            raise InvalidInputError("connectivity contains duplicate offsets")

        self._offsets: tuple[GridPoint, ...] = tuple(rows)  # type: ignore[assignment]
        self._index = {row: k for k, row in enumerate(self._offsets)}

    def __len__(self) -> int:
        return len(self._offsets)

    def __getitem__(self, k: int) -> GridPoint:
        return self._offsets[k]

    def __iter__(self):
        return iter(self._offsets)

    @property
    def offsets(self) -> tuple[GridPoint, ...]:
        return self._offsets

    def as_array(self) -> np.ndarray:
        return np.array(self._offsets, dtype=np.int64).reshape(-1, 3)

    def index_of(self, offset: tuple[int, int, int]) -> int:
        try:
            return self._index[tuple(int(v) for v in offset)]
        except KeyError:
            raise InvalidInputError(f"offset {tuple(offset)} is not in the connectivity") from None

    def is_planar(self) -> bool:
        return all(dz == 0 for _, _, dz in self._offsets)


def make_connectivity(
    ndim: int, dmax: float, *, primitive_only: bool = False
) -> Connectivity:
    """
    All integer offsets d != 0 with |d| <= dmax, in lexicographic order.
    ndim=2 gives offsets with dz = 0.
    primitive_only drops offsets whose components share a common factor,
    i.e. steps that repeat a shorter step in the same direction.
    """
    if ndim not in (2, 3):
        raise InvalidInputError("ndim must be 2 or 3")
    if dmax < 1:
        raise InvalidInputError("dmax must be >= 1")
    r = int(math.floor(dmax))
    z_range = range(-r, r + 1) if ndim == 3 else range(0, 1)
    offsets: list[tuple[int, int, int]] = []
    for dx, dy, dz in itertools.product(range(-r, r + 1), range(-r, r + 1), z_range):
        if (dx, dy, dz) == (0, 0, 0):
            continue
        if dx * dx + dy * dy + dz * dz > dmax * dmax + 1e-9:
            continue
        if primitive_only and math.gcd(math.gcd(abs(dx), abs(dy)), abs(dz)) != 1:
            continue
        offsets.append((dx, dy, dz))
    return Connectivity(offsets)


def as_volume(arr: np.ndarray, name: str = "array") -> np.ndarray:
    """View a 2d (M, N) array as (M, N, 1); 3d arrays pass through."""
    arr = np.asarray(arr)
    if arr.ndim == 2:
        return arr[:, :, None]
    if arr.ndim == 3:
        return arr
    raise InvalidInputError(f"{name}: only 2d and 3d grids are supported")


def normalize_voxel_dims(
    voxel_dims: Sequence[float] | None,
) -> tuple[float, float, float]:
    """Three positive physical voxel sizes; None or empty means unit voxels."""
    if voxel_dims is None or len(voxel_dims) == 0:
        return (1.0, 1.0, 1.0)
    if len(voxel_dims) != 3:
        raise InvalidInputError("voxel dimensions must have 3 entries")
    dims = tuple(float(d) for d in voxel_dims)
    if any(not math.isfinite(d) or d <= 0 for d in dims):
        raise InvalidInputError("voxel dimensions must be positive")
    return dims  # type: ignore[return-value]
