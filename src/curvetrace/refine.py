"""Continuous refinement of a discrete grid path.

The interior points of the path (all but the first two and the last two)
become free real-valued variables, bounded to the grid with a small margin,
and the same objective used by the discrete search (data term line
integrals plus length, curvature and torsion) is minimized with jax
gradients.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import cast

import jax
import jax.numpy as jnp
import jax.scipy.linalg
import jax.scipy.sparse.linalg
import numpy as np
import optax  # type: ignore[reportMissingTypeStubs]
from beartype import beartype
from beartype.typing import Callable, Sequence
from jaxtyping import Real, jaxtyped

from .cost_model import CostModel
from .curve_types import JaxFreePoints, JaxScalar, NpCurvePoints
from .data_term import PiecewiseConstantField
from .errors import InvalidInputError
from .geometry import CurvatureCost, LengthCost, TorsionCost
from .grid import as_volume, normalize_voxel_dims
from .run_io import REFINE_CSV_FIELDS, append_metrics_csv
from .settings import (
    FactorizationMethod,
    RefinementOptions,
    RegularizationSettings,
    SolverMethod,
)
from .utils import debug, debug_helpers

__all__ = [
    "RefinementResult",
    "Termination",
    "make_objective",
    "refine_curve",
]

_EPS = 1e-9
_ARMIJO = 1e-4
_MAX_BACKTRACKS = 40

ObjectiveFn = Callable[[JaxFreePoints], JaxScalar]


class Termination(Enum):
    NOTHING_TO_OPTIMIZE = "nothing_to_optimize"
    FUNCTION_TOLERANCE = "function_tolerance"
    ARGUMENT_TOLERANCE = "argument_tolerance"
    NO_CONVERGENCE = "no_convergence"


@dataclass
class RefinementResult:
    points: NpCurvePoints
    cost: float
    initial_cost: float
    iterations: int
    termination: Termination
    converged: bool
    run_time: float
    history: list[float] = field(default_factory=list)


def _columns(X: jax.Array) -> tuple[jax.Array, jax.Array, jax.Array]:
    return (X[:, 0], X[:, 1], X[:, 2])


def make_objective(
    field_: PiecewiseConstantField,
    settings: RegularizationSettings,
    head: np.ndarray,
    tail: np.ndarray,
) -> ObjectiveFn:
    """
    Returns a JAX function objective(free) -> scalar, where free holds the
    (F, 3) interior points and head/tail the fixed (2, 3) end points.
    """
    head_j = jnp.asarray(head, dtype=jnp.float64)
    tail_j = jnp.asarray(tail, dtype=jnp.float64)
    dims = field_.voxel_dims
    length = LengthCost(dims, settings.length_penalty)
    curvature = CurvatureCost(dims, settings.curvature_penalty, settings.curvature_power)
    torsion = TorsionCost(dims, settings.torsion_penalty, settings.torsion_power)
    integrals = jax.vmap(lambda a, b: field_.line_integral_jax(a, b, _EPS))

    def objective(free: JaxFreePoints) -> JaxScalar:
        X = jnp.concatenate([head_j, free, tail_j], axis=0)
        total = jnp.sum(integrals(X[:-1], X[1:]))
        total += jnp.sum(length(_columns(X[:-1]), _columns(X[1:]), jnp, _EPS))
        total += jnp.sum(
            curvature(_columns(X[:-2]), _columns(X[1:-1]), _columns(X[2:]), jnp, _EPS)
        )
        total += jnp.sum(
            torsion(
                _columns(X[:-3]),
                _columns(X[1:-2]),
                _columns(X[2:-1]),
                _columns(X[3:]),
                jnp,
                _EPS,
            )
        )
        return total

    return objective


def _box(shape: Sequence[int], n_free: int, margin: float) -> tuple[jax.Array, jax.Array]:
    lower = []
    upper = []
    for dim in shape:
        if dim <= 1:
            lower.append(0.0)
            upper.append(0.0)
        else:
            lower.append(margin)
            upper.append(dim - 1 - margin)
    lo = jnp.tile(jnp.asarray(lower, dtype=jnp.float64), (n_free, 1))
    hi = jnp.tile(jnp.asarray(upper, dtype=jnp.float64), (n_free, 1))
    return lo, hi


def _stopped(
    f_old: float,
    f_new: float,
    x_old: jax.Array,
    x_new: jax.Array,
    options: RefinementOptions,
) -> Termination | None:
    ftol = options.function_improvement_tolerance
    xtol = options.argument_improvement_tolerance
    if abs(f_old - f_new) <= ftol * (abs(f_new) + ftol):
        return Termination.FUNCTION_TOLERANCE
    step = float(jnp.linalg.norm(x_new - x_old))
    if step <= xtol * (float(jnp.linalg.norm(x_new)) + xtol):
        return Termination.ARGUMENT_TOLERANCE
    return None


def _damped_cholesky_solve(H: jax.Array, g: jax.Array) -> jax.Array:
    """Solve (H + tau I) d = -g with the smallest tau that makes H + tau I factor."""
    n = H.shape[0]
    eye = jnp.eye(n, dtype=H.dtype)
    beta = 1e-3
    min_diag = float(jnp.min(jnp.diag(H))) if n else 0.0
    tau = 0.0 if min_diag > 0 else beta - min_diag
    for _ in range(64):
        factor = jax.scipy.linalg.cho_factor(H + tau * eye, lower=True)
        if bool(jnp.all(jnp.isfinite(factor[0]))):
            return jax.scipy.linalg.cho_solve(factor, -g)
        tau = max(2.0 * tau, beta)
    return -g


class _Problem:
    """Flattened, masked view of the objective used by the Newton solver."""

    def __init__(self, fun: ObjectiveFn, lower: jax.Array, upper: jax.Array) -> None:
        self.shape = lower.shape
        self.lower = lower.reshape(-1)
        self.upper = upper.reshape(-1)
        self.mask = (self.upper > self.lower).astype(jnp.float64)

        def flat_fun(x: jax.Array) -> jax.Array:
            return fun(x.reshape(self.shape))

        self.value = jax.jit(flat_fun)
        self.grad = jax.jit(lambda x: jax.grad(flat_fun)(x) * self.mask)
        self.hessian = jax.jit(jax.hessian(flat_fun))

    def project(self, x: jax.Array) -> jax.Array:
        return jnp.clip(x, self.lower, self.upper)

    def masked_hessian(self, x: jax.Array) -> jax.Array:
        H = self.hessian(x)
        keep = jnp.outer(self.mask, self.mask)
        return H * keep + jnp.diag(1.0 - self.mask)

    def hvp(self, x: jax.Array) -> Callable[[jax.Array], jax.Array]:
        def matvec(v: jax.Array) -> jax.Array:
            v = v * self.mask
            out = jax.jvp(self.grad, (x,), (v,))[1]
            return out * self.mask + v * (1.0 - self.mask)

        return matvec


def _newton_direction(
    problem: _Problem, x: jax.Array, g: jax.Array, factorization: FactorizationMethod
) -> jax.Array:
    if factorization is FactorizationMethod.DENSE:
        d = _damped_cholesky_solve(problem.masked_hessian(x), g)
    else:
        d, _ = jax.scipy.sparse.linalg.cg(problem.hvp(x), -g, maxiter=max(10, g.size))
    d = d * problem.mask
    if not bool(jnp.all(jnp.isfinite(d))) or float(jnp.dot(d, g)) >= 0.0:
        return -g
    return d


def _line_search(
    problem: _Problem, x: jax.Array, f: float, g: jax.Array, d: jax.Array
) -> tuple[jax.Array, float]:
    """Projected backtracking with an Armijo test; returns x unchanged on failure."""
    alpha = 1.0
    for _ in range(_MAX_BACKTRACKS):
        x_try = problem.project(x + alpha * d)
        f_try = float(problem.value(x_try))
        if np.isfinite(f_try) and f_try <= f + _ARMIJO * float(jnp.dot(g, x_try - x)):
            return x_try, f_try
        alpha *= 0.5
    return x, f


def _record(
    csv_path: Path | None,
    iteration: int,
    cost: float,
    cost_change: float,
    step_norm: float,
    grad_norm: float,
    start_time: float,
    step_start: float,
) -> None:
    if csv_path is None:
        return
    append_metrics_csv(
        csv_path,
        REFINE_CSV_FIELDS,
        {
            "iteration": iteration,
            "cost": cost,
            "cost_change": cost_change,
            "step_norm": step_norm,
            "grad_norm": grad_norm,
            "elapsed_s": float(time.perf_counter() - start_time),
            "step_s": float(time.perf_counter() - step_start),
        },
    )


def _run_lbfgs(
    fun: ObjectiveFn,
    x0: jax.Array,
    lower: jax.Array,
    upper: jax.Array,
    options: RefinementOptions,
    history: list[float],
    metrics_csv: Path | None,
    start_time: float,
) -> tuple[jax.Array, float, int, Termination]:
    mask = (upper > lower).astype(x0.dtype)
    opt = optax.lbfgs()
    opt_state = opt.init(x0)
    value_and_grad = jax.value_and_grad(fun)

    @jax.jit
    def step(
        x: JaxFreePoints, opt_state: optax.OptState
    ) -> tuple[JaxFreePoints, optax.OptState, JaxScalar, JaxScalar]:
        value, grad = value_and_grad(x)
        grad = grad * mask
        updates, opt_state2 = opt.update(
            grad, opt_state, x, value=value, grad=grad, value_fn=fun
        )
        x2 = cast(JaxFreePoints, optax.apply_updates(x, updates))
        x2 = jnp.clip(x2, lower, upper)
        return x2, opt_state2, fun(x2), jnp.linalg.norm(grad)

    x = x0
    f = history[-1]
    best_x, best_f = x, f
    for it in range(1, options.maximum_iterations + 1):
        step_start = time.perf_counter()
        x_new, opt_state, f_new_j, g_norm = step(x, opt_state)
        f_new = float(f_new_j)
        history.append(f_new)
        _record(
            metrics_csv,
            it,
            f_new,
            f - f_new,
            float(jnp.linalg.norm(x_new - x)),
            float(g_norm),
            start_time,
            step_start,
        )
        debug.log_if(options.verbose, f"lbfgs iter {it:5d}  cost={f_new:.10g}")
        if np.isfinite(f_new) and f_new < best_f:
            best_x, best_f = x_new, f_new
        stop = _stopped(f, f_new, x, x_new, options)
        x, f = x_new, f_new
        if stop is not None:
            return best_x, best_f, it, stop
    return best_x, best_f, options.maximum_iterations, Termination.NO_CONVERGENCE


def _run_newton(
    fun: ObjectiveFn,
    x0: jax.Array,
    lower: jax.Array,
    upper: jax.Array,
    options: RefinementOptions,
    history: list[float],
    metrics_csv: Path | None,
    start_time: float,
) -> tuple[jax.Array, float, int, Termination]:
    problem = _Problem(fun, lower, upper)
    x = x0.reshape(-1)
    f = history[-1]
    for it in range(1, options.maximum_iterations + 1):
        step_start = time.perf_counter()
        g = problem.grad(x)
        d = _newton_direction(problem, x, g, options.factorization)
        x_new, f_new = _line_search(problem, x, f, g, d)
        history.append(f_new)
        _record(
            metrics_csv,
            it,
            f_new,
            f - f_new,
            float(jnp.linalg.norm(x_new - x)),
            float(jnp.linalg.norm(g)),
            start_time,
            step_start,
        )
        debug.log_if(options.verbose, f"newton iter {it:5d}  cost={f_new:.10g}")
        stop = _stopped(f, f_new, x, x_new, options)
        x, f = x_new, f_new
        if stop is not None:
            return x.reshape(problem.shape), f, it, stop
    return x.reshape(problem.shape), f, options.maximum_iterations, Termination.NO_CONVERGENCE


@jaxtyped(typechecker=beartype)
def refine_curve(
    points: Real[np.ndarray, "P D"],
    unary: np.ndarray,
    settings: RegularizationSettings | None = None,
    options: RefinementOptions | None = None,
    *,
    voxel_dims: Sequence[float] | None = None,
    metrics_csv: Path | None = None,
) -> RefinementResult:
    """
    Locally minimize the continuous objective over the interior points.

    points may have 2 or 3 columns; 2-column paths get z = 0 and the
    refined points always come back as P x 3. The first two and last two
    points stay fixed. Reaching maximum_iterations is reported through
    converged=False rather than an exception; the returned points are
    never worse than the start.
    """
    settings = settings or RegularizationSettings()
    options = options or RefinementOptions()
    values = as_volume(unary, "unary").astype(np.float64)
    field_ = PiecewiseConstantField(values, normalize_voxel_dims(voxel_dims))
    shape = field_.shape

    if points.shape[1] not in (2, 3):
        raise InvalidInputError("curve points must be P x 2 or P x 3")
    if not np.isfinite(points).all():
        raise InvalidInputError("curve points must be finite")
    if points.shape[0] < 2:
        raise InvalidInputError("a curve needs at least 2 points")

    start_time = time.perf_counter()
    pts = np.asarray(points, dtype=np.float64)
    if pts.shape[1] == 2:
        pts = np.concatenate([pts, np.zeros((pts.shape[0], 1))], axis=1)
    if pts.shape[0] <= 4:
        cost = CostModel(field_, settings).path_cost(pts)
        return RefinementResult(
            points=pts,
            cost=cost,
            initial_cost=cost,
            iterations=0,
            termination=Termination.NOTHING_TO_OPTIMIZE,
            converged=True,
            run_time=time.perf_counter() - start_time,
            history=[cost],
        )

    head, free0, tail = pts[:2], pts[2:-2], pts[-2:]
    lower, upper = _box(shape, free0.shape[0], options.margin)
    x0 = jnp.clip(jnp.asarray(free0), lower, upper)
    fun = make_objective(field_, settings, head, tail)

    initial_cost = float(jax.jit(fun)(x0))
    history = [initial_cost]
    debug.log_if(
        options.verbose,
        f"refine method={options.method.value} free_points={free0.shape[0]} "
        f"initial_cost={initial_cost:.10g}",
    )
    debug_helpers.log_array("refine_x0", np.asarray(x0), enabled=options.verbose)

    if options.method is SolverMethod.NEWTON:
        x, cost, iterations, termination = _run_newton(
            fun, x0, lower, upper, options, history, metrics_csv, start_time
        )
    else:
        x, cost, iterations, termination = _run_lbfgs(
            fun, x0, lower, upper, options, history, metrics_csv, start_time
        )

    if not (np.isfinite(cost) and cost <= initial_cost):
        x, cost = x0, initial_cost

    refined = np.concatenate([head, np.asarray(x, dtype=np.float64), tail], axis=0)
    run_time = time.perf_counter() - start_time
    debug.log_if(
        options.verbose,
        f"refine done termination={termination.value} iterations={iterations} "
        f"cost={cost:.10g} time={run_time:.3f}s",
    )
    return RefinementResult(
        points=refined,
        cost=float(cost),
        initial_cost=initial_cost,
        iterations=iterations,
        termination=termination,
        converged=termination is not Termination.NO_CONVERGENCE,
        run_time=run_time,
        history=history,
    )
