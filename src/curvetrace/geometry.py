"""Discrete length, curvature and torsion estimates.

Points are 3-tuples of components. A component may be a Python float, a
numpy array or a jax array; with arrays the estimates broadcast over
whole polylines at once, e.g. ``(X[:-1, 0], X[:-1, 1], X[:-1, 2])``.
``xp`` is the array namespace used for the transcendental functions
(numpy or jax.numpy) and ``eps`` keeps square roots differentiable.
"""

from __future__ import annotations

from types import ModuleType
from typing import Any, Sequence

import numpy as np

Vec3 = tuple[Any, Any, Any]


def scale(p: Sequence[Any], dims: Sequence[float]) -> Vec3:
    return (p[0] * dims[0], p[1] * dims[1], p[2] * dims[2])


def sub(a: Sequence[Any], b: Sequence[Any]) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def dot(a: Vec3, b: Vec3) -> Any:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def cross(a: Vec3, b: Vec3) -> Vec3:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def norm(a: Vec3, xp: ModuleType = np, eps: float = 0.0) -> Any:
    return xp.sqrt(dot(a, a) + eps * eps)


def length_estimate(
    p1: Sequence[Any],
    p2: Sequence[Any],
    dims: Sequence[float],
    xp: ModuleType = np,
    eps: float = 0.0,
) -> Any:
    return norm(scale(sub(p2, p1), dims), xp, eps)


def curvature_estimate(
    p1: Sequence[Any],
    p2: Sequence[Any],
    p3: Sequence[Any],
    dims: Sequence[float],
    xp: ModuleType = np,
    eps: float = 0.0,
) -> Any:
    """
    Turning angle at p2 divided by the mean length of the two adjacent
    segments, in physical units. Zero for colinear points, pi / ds for a
    full reversal.
    """
    u = scale(sub(p2, p1), dims)
    v = scale(sub(p3, p2), dims)
    sin_part = norm(cross(u, v), xp, eps)
    theta = xp.arctan2(sin_part, dot(u, v))
    ds = 0.5 * (norm(u, xp, eps) + norm(v, xp, eps))
    return theta / (ds + eps)


def torsion_estimate(
    p1: Sequence[Any],
    p2: Sequence[Any],
    p3: Sequence[Any],
    p4: Sequence[Any],
    dims: Sequence[float],
    xp: ModuleType = np,
    eps: float = 0.0,
) -> Any:
    """
    |sin| of the dihedral angle between the osculating planes (p1,p2,p3)
    and (p2,p3,p4), divided by the mean segment length. Zero whenever the
    four points are coplanar, including planar zig-zags.
    """
    u = scale(sub(p2, p1), dims)
    v = scale(sub(p3, p2), dims)
    w = scale(sub(p4, p3), dims)
    b1 = cross(u, v)
    b2 = cross(v, w)
    v_len = norm(v, xp, eps)
    denom = norm(b1, xp, eps) * norm(b2, xp, eps)
    tiny = 1e-300 if eps == 0.0 else eps * eps
    safe = xp.where(denom > tiny, denom, 1.0)
    sin_phi = xp.where(denom > tiny, v_len * dot(u, b2) / safe, 0.0)
    ds = (norm(u, xp, eps) + v_len + norm(w, xp, eps)) / 3.0
    return xp.abs(sin_phi) / (ds + eps)


class LengthCost:
    def __init__(self, voxel_dims: Sequence[float], penalty: float) -> None:
        self.dims = tuple(float(d) for d in voxel_dims)
        self.penalty = float(penalty)

    def __call__(
        self,
        p1: Sequence[Any],
        p2: Sequence[Any],
        xp: ModuleType = np,
        eps: float = 0.0,
    ) -> Any:
        if self.penalty == 0.0:
            return 0.0
        return self.penalty * length_estimate(p1, p2, self.dims, xp, eps)


class CurvatureCost:
    def __init__(
        self, voxel_dims: Sequence[float], penalty: float, power: float
    ) -> None:
        self.dims = tuple(float(d) for d in voxel_dims)
        self.penalty = float(penalty)
        self.power = float(power)

    def __call__(
        self,
        p1: Sequence[Any],
        p2: Sequence[Any],
        p3: Sequence[Any],
        xp: ModuleType = np,
        eps: float = 0.0,
    ) -> Any:
        if self.penalty == 0.0:
            return 0.0
        kappa = curvature_estimate(p1, p2, p3, self.dims, xp, eps)
        return self.penalty * kappa**self.power


class TorsionCost:
    def __init__(
        self, voxel_dims: Sequence[float], penalty: float, power: float
    ) -> None:
        self.dims = tuple(float(d) for d in voxel_dims)
        self.penalty = float(penalty)
        self.power = float(power)

    def __call__(
        self,
        p1: Sequence[Any],
        p2: Sequence[Any],
        p3: Sequence[Any],
        p4: Sequence[Any],
        xp: ModuleType = np,
        eps: float = 0.0,
    ) -> Any:
        if self.penalty == 0.0:
            return 0.0
        tau = torsion_estimate(p1, p2, p3, p4, self.dims, xp, eps)
        return self.penalty * tau**self.power
