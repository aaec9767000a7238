import numpy as np

from curvetrace.cost_model import CostModel
from curvetrace.data_term import PiecewiseConstantField
from curvetrace.grid import GridIndexer, make_connectivity
from curvetrace.settings import GraphMode, MeshLabel, RegularizationSettings
from curvetrace.shortest_path import SearchStatus, shortest_path
from curvetrace.state_graph import NeighborProvider, build_neighbor_provider


def _provider(
    unary: np.ndarray,
    mode: GraphMode = GraphMode.NODE,
    blocked: list[tuple[int, int, int]] | None = None,
    **penalties: float,
) -> NeighborProvider:
    grid = GridIndexer(*unary.shape)
    labels = np.ones(unary.shape, dtype=np.int64)
    for p in blocked or []:
        labels[p] = MeshLabel.DISALLOWED
    field = PiecewiseConstantField(unary.astype(np.float64), (1.0, 1.0, 1.0))
    return build_neighbor_provider(
        mode,
        grid,
        make_connectivity(2, 1.5),
        labels.ravel(order="F").tolist(),
        CostModel(field, RegularizationSettings(**penalties)),
        [grid.sub2ind(0, 0, 0)],
        [grid.sub2ind(unary.shape[0] - 1, unary.shape[1] - 1, 0)],
    )


def _reference_cost(provider: NeighborProvider) -> float:
    """Plain O(V^2) Dijkstra over the node graph, without a heap."""
    n = provider.num_states
    dist = [float("inf")] * n
    done = [False] * n
    for s in provider.sources():
        dist[s] = 0.0
    for _ in range(n):
        best = min((d, i) for i, d in enumerate(dist) if not done[i])
        d, u = best
        if d == float("inf"):
            break
        done[u] = True
        for v, w in provider.neighbors(u):
            if d + w < dist[v]:
                dist[v] = d + w
    return min(dist[e] for e in provider.end_points)


def test_matches_reference_dijkstra() -> None:
    rng = np.random.default_rng(3)
    unary = rng.uniform(0.0, 5.0, size=(6, 5, 1))
    provider = _provider(unary, length_penalty=0.5)
    result = shortest_path(provider)
    assert result.status is SearchStatus.SUCCESS
    assert np.isclose(result.cost, _reference_cost(provider))


def test_path_cost_equals_sum_of_transitions() -> None:
    rng = np.random.default_rng(4)
    provider = _provider(rng.uniform(0.0, 5.0, size=(6, 6, 1)))
    result = shortest_path(provider)
    total = 0.0
    for a, b in zip(result.states[:-1], result.states[1:]):
        total += dict(provider.neighbors(a))[b]
    assert np.isclose(total, result.cost)
    assert result.states[0] == provider.grid.sub2ind(0, 0, 0)
    assert provider.is_terminal(result.states[-1])


def test_search_is_deterministic() -> None:
    unary = np.ones((7, 7, 1))
    first = shortest_path(_provider(unary))
    second = shortest_path(_provider(unary))
    assert first.states == second.states
    assert first.cost == second.cost
    assert first.evaluations == second.evaluations


def test_super_source_is_stripped() -> None:
    provider = _provider(np.ones((5, 5, 1)), GraphMode.EDGE, curvature_penalty=1.0)
    result = shortest_path(provider)
    assert result.success
    assert provider.super_source not in result.states
    assert provider.state_points(result.states[0])[0] == (0, 0, 0)


def test_visit_order_counts_settled_states() -> None:
    provider = _provider(np.ones((5, 5, 1)))
    result = shortest_path(provider, store_visit_order=True)
    assert result.visit_order is not None
    assert len(result.visit_order) == result.evaluations
    assert sorted(result.visit_order.values()) == list(range(1, result.evaluations + 1))
    assert result.visit_order[provider.grid.sub2ind(0, 0, 0)] == 1


def test_exhausted_when_end_is_walled_off() -> None:
    provider = _provider(np.ones((5, 5, 1)), blocked=[(3, 4, 0), (4, 3, 0), (3, 3, 0)])
    result = shortest_path(provider)
    assert result.status is SearchStatus.EXHAUSTED
    assert result.states == []
    assert result.cost == float("inf")


def test_overflow_when_queue_cap_is_hit() -> None:
    provider = _provider(np.ones((5, 5, 1)))
    result = shortest_path(provider, maximum_queue_size=1)
    assert result.status is SearchStatus.OVERFLOW
    assert not result.success


def test_larger_cap_does_not_change_result() -> None:
    provider = _provider(np.ones((5, 5, 1)))
    small = shortest_path(provider, maximum_queue_size=25)
    large = shortest_path(provider)
    assert small.success
    assert small.cost == large.cost
