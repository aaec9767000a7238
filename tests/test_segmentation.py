import numpy as np
import pytest

from curvetrace.errors import (
    InvalidInputError,
    ResourceLimitExceededError,
    SearchExhaustedError,
    UnsupportedConfigurationError,
)
from curvetrace.grid import make_connectivity
from curvetrace.segmentation import evaluate_path_cost, extract_curve
from curvetrace.settings import GraphMode, MeshLabel, RegularizationSettings, SearchOptions

FOUR = np.array([[1, 0], [-1, 0], [0, 1], [0, -1]])
EIGHT = make_connectivity(2, 1.5)


def _mesh(shape: tuple[int, ...], start: tuple[int, ...], end: tuple[int, ...]) -> np.ndarray:
    mesh = np.ones(shape, dtype=np.int64)
    mesh[start] = MeshLabel.START
    mesh[end] = MeshLabel.END
    return mesh


def _manhattan_l(n: int) -> np.ndarray:
    legs = [(x, 0, 0) for x in range(n)] + [(n - 1, y, 0) for y in range(1, n)]
    return np.array(legs, dtype=np.int64)


def test_unit_grid_four_neighbors() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    result = extract_curve(mesh, np.ones((5, 5)), FOUR)
    assert result.mode is GraphMode.NODE
    assert result.path.shape == (9, 3)
    assert np.isclose(result.cost, 8.0)
    np.testing.assert_array_equal(result.path[0], [0, 0, 0])
    np.testing.assert_array_equal(result.path[-1], [4, 4, 0])
    steps = np.abs(np.diff(result.path, axis=0)).sum(axis=1)
    assert np.all(steps == 1)
    assert result.connectivity_size == 4
    assert result.evaluations > 0


def test_unit_grid_with_length_penalty() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    settings = RegularizationSettings(length_penalty=1.0)
    result = extract_curve(mesh, np.ones((5, 5)), FOUR, settings)
    assert result.path.shape == (9, 3)
    assert np.isclose(result.cost, 16.0)


def test_curvature_prefers_smooth_path() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    unary = np.ones((5, 5))
    settings = RegularizationSettings(length_penalty=1.0, curvature_penalty=1.0)
    result = extract_curve(mesh, unary, EIGHT, settings)
    assert result.mode is GraphMode.EDGE
    l_path_cost = evaluate_path_cost(_manhattan_l(5), unary, settings)
    assert result.cost <= l_path_cost + 1e-9
    assert np.isclose(result.cost, evaluate_path_cost(result.path, unary, settings))
    for a, b in zip(result.path[:-2], result.path[2:]):
        assert not np.array_equal(a, b)


def test_queue_cap_raises_resource_limit() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    with pytest.raises(ResourceLimitExceededError) as info:
        extract_curve(
            mesh, np.ones((5, 5)), FOUR, options=SearchOptions(maximum_queue_size=1)
        )
    assert info.value.queue_size >= 1


def test_unreachable_end_raises_exhausted() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    mesh[2, :] = MeshLabel.DISALLOWED
    with pytest.raises(SearchExhaustedError):
        extract_curve(mesh, np.ones((5, 5)), EIGHT)


def test_path_avoids_disallowed_and_expensive_cells() -> None:
    mesh = _mesh((7, 7), (0, 3), (6, 3))
    mesh[3, 1:] = MeshLabel.DISALLOWED
    unary = np.ones((7, 7))
    result = extract_curve(mesh, unary, EIGHT)
    for x, y, _ in result.path:
        assert mesh[x, y] != MeshLabel.DISALLOWED
    assert any(x == 3 and y == 0 for x, y, _ in result.path)


def test_three_dimensional_grid() -> None:
    mesh = _mesh((3, 3, 3), (0, 0, 0), (2, 2, 2))
    conn = make_connectivity(3, 1.0)
    result = extract_curve(mesh, np.ones((3, 3, 3)), conn)
    assert result.path.shape == (7, 3)
    assert np.isclose(result.cost, 6.0)


def test_torsion_uses_edge_pairs_in_3d() -> None:
    mesh = _mesh((4, 4, 4), (0, 0, 0), (3, 3, 3))
    unary = np.ones((4, 4, 4))
    settings = RegularizationSettings(torsion_penalty=1.0)
    result = extract_curve(mesh, unary, make_connectivity(3, 1.0), settings)
    assert result.mode is GraphMode.EDGEPAIR
    assert result.path.shape == (10, 3)
    assert np.isclose(result.cost, 9.0)
    assert np.isclose(result.cost, evaluate_path_cost(result.path, unary, settings))


def test_torsion_on_planar_grid_warns_and_is_dropped() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    settings = RegularizationSettings(torsion_penalty=1.0)
    with pytest.warns(UserWarning):
        result = extract_curve(mesh, np.ones((5, 5)), FOUR, settings)
    assert result.mode is GraphMode.NODE
    assert np.isclose(result.cost, 8.0)


def test_start_and_end_sets_extend_regions() -> None:
    mesh = np.ones((5, 5), dtype=np.int64)
    result = extract_curve(
        mesh,
        np.ones((5, 5)),
        FOUR,
        start_sets=[np.array([[0, 0]])],
        end_sets=[np.array([[0, 3, 0]])],
    )
    assert result.path.shape == (4, 3)
    np.testing.assert_array_equal(result.path[-1], [0, 3, 0])


def test_voxel_dims_scale_cost() -> None:
    mesh = _mesh((5, 1), (0, 0), (4, 0))
    conn = np.array([[1, 0], [-1, 0]])
    result = extract_curve(mesh, np.ones((5, 1)), conn, voxel_dims=[2.0, 1.0, 1.0])
    assert np.isclose(result.cost, 8.0)


def test_cost_is_monotone_in_length_penalty() -> None:
    rng = np.random.default_rng(7)
    unary = rng.uniform(0.0, 3.0, size=(8, 8))
    mesh = _mesh((8, 8), (0, 0), (7, 5))
    costs = [
        extract_curve(
            mesh, unary, EIGHT, RegularizationSettings(length_penalty=lam)
        ).cost
        for lam in (0.0, 0.5, 1.0, 2.0)
    ]
    assert all(a <= b + 1e-12 for a, b in zip(costs[:-1], costs[1:]))


def test_cost_is_monotone_in_curvature_penalty() -> None:
    rng = np.random.default_rng(11)
    unary = rng.uniform(0.0, 3.0, size=(8, 8))
    mesh = _mesh((8, 8), (0, 0), (7, 5))
    costs = [
        extract_curve(
            mesh, unary, EIGHT, RegularizationSettings(curvature_penalty=lam)
        ).cost
        for lam in (0.0, 0.5, 1.0, 2.0)
    ]
    assert all(a <= b + 1e-12 for a, b in zip(costs[:-1], costs[1:]))


def test_cost_is_monotone_in_torsion_penalty() -> None:
    rng = np.random.default_rng(5)
    unary = rng.uniform(0.0, 3.0, size=(4, 4, 4))
    mesh = _mesh((4, 4, 4), (0, 0, 0), (3, 3, 3))
    conn = make_connectivity(3, 1.0)
    costs = []
    for lam in (0.0, 0.5, 1.0, 2.0):
        settings = RegularizationSettings(torsion_penalty=lam)
        result = extract_curve(mesh, unary, conn, settings)
        assert np.isclose(result.cost, evaluate_path_cost(result.path, unary, settings))
        costs.append(result.cost)
    assert all(a <= b + 1e-12 for a, b in zip(costs[:-1], costs[1:]))


def test_torsion_is_charged_along_a_helical_corridor() -> None:
    corridor = [(0, 0, 0), (1, 0, 0), (1, 1, 0), (1, 1, 1), (2, 1, 1), (2, 2, 1), (2, 2, 2)]
    unary = np.full((3, 3, 3), 10.0)
    for p in corridor:
        unary[p] = 0.0
    mesh = _mesh((3, 3, 3), (0, 0, 0), (2, 2, 2))
    conn = make_connectivity(3, 1.0)
    for lam in (0.25, 0.5, 1.0, 2.0):
        settings = RegularizationSettings(torsion_penalty=lam)
        result = extract_curve(mesh, unary, conn, settings)
        assert result.mode is GraphMode.EDGEPAIR
        np.testing.assert_array_equal(result.path, np.array(corridor))
        # four right-handed quadruples, each with unit torsion
        assert np.isclose(result.cost, 4.0 * lam)


@pytest.mark.parametrize(
    ("mesh", "unary"),
    [
        (np.ones((4, 4)), np.ones((4, 5))),
        (np.ones((4, 4)), np.ones((4, 4, 1))),
        (np.ones(4), np.ones(4)),
        (np.full((4, 4), 5), np.ones((4, 4))),
    ],
)
def test_rejects_malformed_volumes(mesh: np.ndarray, unary: np.ndarray) -> None:
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, unary, FOUR)


def test_rejects_negative_unary() -> None:
    mesh = _mesh((4, 4), (0, 0), (3, 3))
    unary = np.ones((4, 4))
    unary[1, 1] = -1.0
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, unary, FOUR)


def test_rejects_empty_or_overlapping_regions() -> None:
    unary = np.ones((4, 4))
    no_end = np.ones((4, 4), dtype=np.int64)
    no_end[0, 0] = MeshLabel.START
    with pytest.raises(InvalidInputError):
        extract_curve(no_end, unary, FOUR)

    mesh = _mesh((4, 4), (0, 0), (3, 3))
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, unary, FOUR, end_sets=[np.array([[0, 0]])])


def test_rejects_bad_point_sets() -> None:
    mesh = _mesh((4, 4), (0, 0), (3, 3))
    mesh[1, 1] = MeshLabel.DISALLOWED
    unary = np.ones((4, 4))
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, unary, FOUR, start_sets=[np.array([[9, 0]])])
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, unary, FOUR, start_sets=[np.array([[1, 1]])])
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, unary, FOUR, start_sets=[np.array([1, 1, 0, 0])])


def test_rejects_bad_voxel_dims() -> None:
    mesh = _mesh((4, 4), (0, 0), (3, 3))
    with pytest.raises(InvalidInputError):
        extract_curve(mesh, np.ones((4, 4)), FOUR, voxel_dims=[1.0, -1.0, 1.0])


def test_torsion_with_planar_stencil_warns_and_is_dropped() -> None:
    mesh = _mesh((4, 4, 2), (0, 0, 1), (3, 3, 1))
    settings = RegularizationSettings(torsion_penalty=1.0)
    with pytest.warns(UserWarning):
        result = extract_curve(mesh, np.ones((4, 4, 2)), FOUR, settings)
    assert result.mode is GraphMode.NODE
    assert np.all(result.path[:, 2] == 1)
    assert np.isclose(result.cost, 6.0)


def test_visit_map_is_off_by_default() -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    assert extract_curve(mesh, np.ones((5, 5)), FOUR).visit_map is None


@pytest.mark.parametrize("curvature", [0.0, 1.0])
def test_visit_map_records_settle_order(curvature: float) -> None:
    mesh = _mesh((5, 5), (0, 0), (4, 4))
    result = extract_curve(
        mesh,
        np.ones((5, 5)),
        FOUR,
        RegularizationSettings(curvature_penalty=curvature),
        SearchOptions(store_visit_order=True),
    )
    visit_map = result.visit_map
    assert visit_map is not None
    assert visit_map.shape == (5, 5, 1)
    assert visit_map[4, 4, 0] == result.evaluations
    seen = visit_map[np.isfinite(visit_map)]
    assert len(np.unique(seen)) == seen.size
    assert np.all((seen >= 1) & (seen <= result.evaluations))
    if curvature == 0.0:
        assert visit_map[0, 0, 0] == 1


def test_rejects_invalid_settings() -> None:
    with pytest.raises(InvalidInputError):
        RegularizationSettings(length_penalty=-1.0)
    with pytest.raises(InvalidInputError):
        RegularizationSettings(regularization_radius=0.0)
    with pytest.raises(UnsupportedConfigurationError):
        SearchOptions(store_visit_time=True)


@pytest.mark.parametrize("curvature", [0.0, 1.0])
def test_isolated_start_is_exhausted(curvature: float) -> None:
    mesh = np.zeros((5, 5), dtype=np.int64)
    mesh[0, 0] = MeshLabel.START
    mesh[4, 4] = MeshLabel.END
    settings = RegularizationSettings(curvature_penalty=curvature)
    with pytest.raises(SearchExhaustedError) as info:
        extract_curve(mesh, np.ones((5, 5)), EIGHT, settings)
    assert info.value.evaluations >= 1
