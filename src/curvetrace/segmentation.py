from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .cost_model import CostModel
from .curve_types import NpGridPath, NpVisitMap
from .data_term import PiecewiseConstantField
from .decode import decode_path
from .errors import (
    InvalidInputError,
    ResourceLimitExceededError,
    SearchExhaustedError,
)
from .grid import Connectivity, GridIndexer, as_volume, normalize_voxel_dims
from .settings import GraphMode, MeshLabel, RegularizationSettings, SearchOptions
from .shortest_path import SearchStatus, shortest_path
from .state_graph import NeighborProvider, build_neighbor_provider, select_mode
from .utils import debug, debug_helpers

__all__ = [
    "ExtractionResult",
    "extract_curve",
    "evaluate_path_cost",
]


@dataclass
class ExtractionResult:
    path: NpGridPath
    cost: float
    run_time: float
    evaluations: int
    mode: GraphMode
    connectivity_size: int
    visit_map: NpVisitMap | None = None


def _point_sets(
    point_sets: Sequence[np.ndarray] | None,
    grid: GridIndexer,
    labels: np.ndarray,
    name: str,
) -> set[int]:
    """Linear ids of every point in a list of (S, 2) or (S, 3) point arrays."""
    out: set[int] = set()
    if point_sets is None:
        return out
    for i, points in enumerate(point_sets):
        arr = np.asarray(points)
        if arr.size == 0:
            continue
        if arr.ndim != 2 or arr.shape[1] not in (2, 3):
            raise InvalidInputError(f"Error in defined {name} {i}: expected S x 2 or S x 3")
        if not np.all(np.equal(np.mod(arr, 1), 0)):
            raise InvalidInputError(f"Error in defined {name} {i}: points must be integral")
        for row in arr.astype(np.int64):
            x, y = int(row[0]), int(row[1])
            z = int(row[2]) if arr.shape[1] == 3 else 0
            if not grid.is_valid(x, y, z):
                raise InvalidInputError(f"{name} {i}: point {(x, y, z)} is outside the grid")
            if labels[x, y, z] == MeshLabel.DISALLOWED:
                raise InvalidInputError(f"{name} {i}: point {(x, y, z)} is Disallowed")
            out.add(grid.sub2ind(x, y, z))
    return out


def _visit_map(
    provider: NeighborProvider, visit_order: dict[int, int], shape: tuple[int, ...]
) -> NpVisitMap:
    """Settle order at which each grid point first led a state."""
    out = np.full(shape, np.nan)
    for state, order in sorted(visit_order.items(), key=lambda item: item[1]):
        if state == provider.super_source:
            continue
        point = provider.state_points(state)[-1]
        if np.isnan(out[point]):
            out[point] = float(order)
    return out


def _prepare(
    mesh_map: np.ndarray,
    unary: np.ndarray,
    connectivity: np.ndarray | Connectivity,
    settings: RegularizationSettings,
    voxel_dims: Sequence[float] | None,
) -> tuple[np.ndarray, PiecewiseConstantField, Connectivity, RegularizationSettings]:
    mesh_raw = np.asarray(mesh_map)
    unary_raw = np.asarray(unary)
    if mesh_raw.ndim not in (2, 3):
        raise InvalidInputError("only 2d and 3d grid supported")
    if mesh_raw.ndim != unary_raw.ndim or mesh_raw.shape != unary_raw.shape:
        raise InvalidInputError(
            f"mesh_map shape {mesh_raw.shape} does not match unary shape {unary_raw.shape}"
        )
    labels = as_volume(mesh_raw, "mesh_map")
    if not np.all(np.isin(labels, [label.value for label in MeshLabel])):
        raise InvalidInputError("mesh_map labels must be 0, 1, 2 or 3")
    values = as_volume(unary_raw, "unary").astype(np.float64)
    if not np.isfinite(values).all():
        raise InvalidInputError("unary cost must be finite")
    if float(values.min()) < 0.0:
        raise InvalidInputError("unary cost must be non-negative")

    if not isinstance(connectivity, Connectivity):
        connectivity = Connectivity(connectivity)

    planar = labels.shape[2] == 1 or connectivity.is_planar()
    if planar and settings.torsion_penalty != 0:
        warnings.warn(
            "Torsion is always zero in a plane; torsion_penalty set to 0.",
            UserWarning,
            stacklevel=3,
        )
        settings = dataclasses.replace(settings, torsion_penalty=0.0)

    field = PiecewiseConstantField(values, normalize_voxel_dims(voxel_dims))
    return labels.astype(np.int64), field, connectivity, settings


def extract_curve(
    mesh_map: np.ndarray,
    unary: np.ndarray,
    connectivity: np.ndarray | Connectivity,
    settings: RegularizationSettings | None = None,
    options: SearchOptions | None = None,
    *,
    start_sets: Sequence[np.ndarray] | None = None,
    end_sets: Sequence[np.ndarray] | None = None,
    voxel_dims: Sequence[float] | None = None,
) -> ExtractionResult:
    """
    Minimum-cost curve from the start region to the end region.

    mesh_map labels every cell 0 (Disallowed), 1 (Allowed), 2 (Start) or
    3 (End). start_sets/end_sets add further points to the two regions.
    The graph mode follows from the penalties: torsion needs edge pairs,
    curvature needs edges, otherwise plain grid nodes are searched.

    With options.store_visit_order the result carries visit_map, an
    (M, N, O) volume holding the settle order at which each grid point was
    first reached (NaN where the search never got).

    Raises SearchExhaustedError when no end point is reachable and
    ResourceLimitExceededError when the search outgrows maximum_queue_size.
    """
    settings = settings or RegularizationSettings()
    options = options or SearchOptions()
    verbose = settings.verbose

    labels, field, conn, settings = _prepare(
        mesh_map, unary, connectivity, settings, voxel_dims
    )
    grid = GridIndexer.from_shape(labels.shape)

    mesh_flat = labels.ravel(order="F")
    start_points = set(np.flatnonzero(mesh_flat == MeshLabel.START).tolist())
    end_points = set(np.flatnonzero(mesh_flat == MeshLabel.END).tolist())
    start_points |= _point_sets(start_sets, grid, labels, "start set")
    end_points |= _point_sets(end_sets, grid, labels, "end set")
    if not start_points:
        raise InvalidInputError("the start region is empty")
    if not end_points:
        raise InvalidInputError("the end region is empty")
    if start_points & end_points:
        raise InvalidInputError("the start and end regions overlap")

    mode = select_mode(settings)
    debug.log_if(verbose, f"Connectivity size is {len(conn)}.")
    debug.log_if(
        verbose,
        "Regularization coefficients. "
        f"Length: {settings.length_penalty:g} Curvature: {settings.curvature_penalty:g} "
        f"Torsion: {settings.torsion_penalty:g}",
    )
    debug.log_if(
        verbose,
        f"Regularization powers: curvature: {settings.curvature_power:g} "
        f"torsion: {settings.torsion_power:g}",
    )
    debug.log_if(
        verbose,
        f"mode={mode.value} start={len(start_points)} end={len(end_points)} "
        f"num_threads={options.num_threads}",
    )
    debug_helpers.log_array("unary", field.values, enabled=verbose)

    provider = build_neighbor_provider(
        mode,
        grid,
        conn,
        mesh_flat.tolist(),
        CostModel(field, settings),
        start_points,
        end_points,
    )
    result = shortest_path(
        provider,
        maximum_queue_size=options.maximum_queue_size,
        store_visit_order=options.store_visit_order,
        print_progress=options.print_progress,
        verbose=verbose,
    )

    if result.status is SearchStatus.OVERFLOW:
        raise ResourceLimitExceededError(
            f"maximum_queue_size={options.maximum_queue_size} exceeded after "
            f"{result.evaluations} evaluations",
            evaluations=result.evaluations,
            queue_size=result.queue_size,
        )
    if result.status is SearchStatus.EXHAUSTED:
        raise SearchExhaustedError(
            f"No feasible path from the start region to the end region "
            f"({result.evaluations} evaluations)",
            evaluations=result.evaluations,
        )

    path = decode_path(provider, result.states)
    debug.log_if(
        verbose,
        f"Running time: {result.run_time:g} seconds, Evaluations: {result.evaluations}, "
        f"Path length: {path.shape[0]}, Cost: {result.cost:g}",
    )
    return ExtractionResult(
        path=path,
        cost=result.cost,
        run_time=result.run_time,
        evaluations=result.evaluations,
        mode=mode,
        connectivity_size=len(conn),
        visit_map=(
            _visit_map(provider, result.visit_order, labels.shape)
            if result.visit_order is not None
            else None
        ),
    )


def evaluate_path_cost(
    path: np.ndarray,
    unary: np.ndarray,
    settings: RegularizationSettings | None = None,
    *,
    voxel_dims: Sequence[float] | None = None,
) -> float:
    """Discrete objective of an arbitrary point path under the given settings."""
    settings = settings or RegularizationSettings()
    values = as_volume(np.asarray(unary), "unary").astype(np.float64)
    pts = np.asarray(path, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] not in (2, 3):
        raise InvalidInputError("path must be P x 2 or P x 3")
    if pts.shape[1] == 2:
        pts = np.concatenate([pts, np.zeros((pts.shape[0], 1))], axis=1)
    field = PiecewiseConstantField(values, normalize_voxel_dims(voxel_dims))
    model = CostModel(field, settings)
    return model.path_cost(pts)
