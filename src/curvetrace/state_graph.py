"""Implicit state-expanded graphs over a voxel grid.

A state carries as much trailing path history as the active regularizer
needs: one point (length only), one directed edge (curvature) or two
consecutive directed edges (torsion). Neighbors are generated on demand;
the graph is never materialized.

State ids, with K connectivity offsets and grid point id g:

    node      g
    edge      g * K + e
    edgepair  g * K * K + e1 * K + e2

In edge and edgepair mode an extra SuperSource state (id = num_states)
fans out to every state whose first point lies in the start region.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from .cost_model import CostModel
from .curve_types import GridPoint, Neighbor
from .errors import InvalidInputError
from .grid import Connectivity, GridIndexer
from .settings import GraphMode, MeshLabel, RegularizationSettings

_ORIGIN: GridPoint = (0, 0, 0)


def _add(p: GridPoint, o: GridPoint) -> GridPoint:
    return (p[0] + o[0], p[1] + o[1], p[2] + o[2])


class NeighborProvider(ABC):
    """Lazily expands one state of an implicit graph into (state, cost) pairs."""

    mode: GraphMode

    def __init__(
        self,
        grid: GridIndexer,
        connectivity: Connectivity,
        mesh_labels: Sequence[int],
        cost_model: CostModel,
        start_points: Iterable[int],
        end_points: Iterable[int],
    ) -> None:
        self.grid = grid
        self.connectivity = connectivity
        self.K = len(connectivity)
        self.mesh_labels = mesh_labels
        self.cost_model = cost_model
        self.field = cost_model.field
        self.start_points = sorted(set(start_points))
        self.end_points = frozenset(end_points)

        M, N = grid.M, grid.N
        self._linear = [dx + dy * M + dz * M * N for dx, dy, dz in connectivity]
        self._length = [
            float(cost_model.length(_ORIGIN, offset)) for offset in connectivity
        ]
        self._curvature: dict[tuple[int, int], float] = {}
        self._torsion: dict[tuple[int, int, int], float] = {}

    @property
    @abstractmethod
    def num_states(self) -> int: ...

    @property
    def super_source(self) -> int | None:
        return None

    @abstractmethod
    def sources(self) -> list[int]: ...

    @abstractmethod
    def is_terminal(self, state: int) -> bool: ...

    @abstractmethod
    def neighbors(self, state: int) -> list[Neighbor]: ...

    @abstractmethod
    def state_points(self, state: int) -> tuple[GridPoint, ...]:
        """The physical point window encoded by a state, oldest point first."""

    @abstractmethod
    def encode_window(self, points: Sequence[GridPoint]) -> int: ...

    @property
    def window_size(self) -> int:
        return {GraphMode.NODE: 1, GraphMode.EDGE: 2, GraphMode.EDGEPAIR: 3}[self.mode]

    def _open(self, p: GridPoint) -> int | None:
        """Linear id of p if it is inside the grid and not Disallowed."""
        if not self.grid.is_valid(*p):
            return None
        idx = self.grid.sub2ind(*p)
        if self.mesh_labels[idx] == MeshLabel.DISALLOWED:
            return None
        return idx

    def _step_cost(self, start_idx: int, e: int) -> float:
        return self.field.step_cost(start_idx, self.connectivity[e]) + self._length[e]

    def _turn_cost(self, e1: int, e2: int) -> float:
        key = (e1, e2)
        cached = self._curvature.get(key)
        if cached is None:
            p2 = self.connectivity[e1]
            p3 = _add(p2, self.connectivity[e2])
            cached = self.cost_model.triple_cost(_ORIGIN, p2, p3)
            self._curvature[key] = cached
        return cached

    def _twist_cost(self, e1: int, e2: int, e3: int) -> float:
        key = (e1, e2, e3)
        cached = self._torsion.get(key)
        if cached is None:
            p2 = self.connectivity[e1]
            p3 = _add(p2, self.connectivity[e2])
            p4 = _add(p3, self.connectivity[e3])
            cached = self.cost_model.quad_cost(_ORIGIN, p2, p3, p4)
            self._torsion[key] = cached
        return cached

    def _edge_index(self, a: GridPoint, b: GridPoint) -> int:
        return self.connectivity.index_of((b[0] - a[0], b[1] - a[1], b[2] - a[2]))

    def _check_point(self, p: GridPoint) -> None:
        if not self.grid.is_valid(*p):
            raise InvalidInputError(f"point {p} is outside the grid")


class NodeNeighbors(NeighborProvider):
    mode = GraphMode.NODE

    @property
    def num_states(self) -> int:
        return self.grid.size

    def sources(self) -> list[int]:
        return list(self.start_points)

    def is_terminal(self, state: int) -> bool:
        return state in self.end_points

    def neighbors(self, state: int) -> list[Neighbor]:
        p = self.grid.ind2sub(state)
        out: list[Neighbor] = []
        for e, offset in enumerate(self.connectivity):
            q = self._open(_add(p, offset))
            if q is None:
                continue
            out.append((q, self._step_cost(state, e)))
        return out

    def state_points(self, state: int) -> tuple[GridPoint, ...]:
        return (self.grid.ind2sub(state),)

    def encode_window(self, points: Sequence[GridPoint]) -> int:
        (p,) = points
        self._check_point(p)
        return self.grid.sub2ind(*p)


class EdgeNeighbors(NeighborProvider):
    mode = GraphMode.EDGE

    @property
    def num_states(self) -> int:
        return self.grid.size * self.K

    @property
    def super_source(self) -> int:
        return self.num_states

    def sources(self) -> list[int]:
        return [self.super_source]

    def _start_states(self) -> list[Neighbor]:
        out: list[Neighbor] = []
        for g in self.start_points:
            p1 = self.grid.ind2sub(g)
            for e, offset in enumerate(self.connectivity):
                if self._open(_add(p1, offset)) is None:
                    continue
                out.append((g * self.K + e, self._step_cost(g, e)))
        return out

    def is_terminal(self, state: int) -> bool:
        if state >= self.num_states:
            return False
        g, e = divmod(state, self.K)
        return g + self._linear[e] in self.end_points

    def neighbors(self, state: int) -> list[Neighbor]:
        if state == self.super_source:
            return self._start_states()
        g1, e1 = divmod(state, self.K)
        p2 = _add(self.grid.ind2sub(g1), self.connectivity[e1])
        g2 = g1 + self._linear[e1]
        out: list[Neighbor] = []
        for e2, offset in enumerate(self.connectivity):
            q = self._open(_add(p2, offset))
            if q is None or q == g1:
                continue
            cost = self._step_cost(g2, e2) + self._turn_cost(e1, e2)
            out.append((g2 * self.K + e2, cost))
        return out

    def state_points(self, state: int) -> tuple[GridPoint, ...]:
        g, e = divmod(state, self.K)
        p1 = self.grid.ind2sub(g)
        return (p1, _add(p1, self.connectivity[e]))

    def encode_window(self, points: Sequence[GridPoint]) -> int:
        p1, p2 = points
        self._check_point(p1)
        self._check_point(p2)
        return self.grid.sub2ind(*p1) * self.K + self._edge_index(p1, p2)


class EdgePairNeighbors(NeighborProvider):
    mode = GraphMode.EDGEPAIR

    @property
    def num_states(self) -> int:
        return self.grid.size * self.K * self.K

    @property
    def super_source(self) -> int:
        return self.num_states

    def sources(self) -> list[int]:
        return [self.super_source]

    def _start_states(self) -> list[Neighbor]:
        K = self.K
        out: list[Neighbor] = []
        for g1 in self.start_points:
            p1 = self.grid.ind2sub(g1)
            for e1, o1 in enumerate(self.connectivity):
                p2 = _add(p1, o1)
                g2 = self._open(p2)
                if g2 is None:
                    continue
                first = self._step_cost(g1, e1)
                for e2, o2 in enumerate(self.connectivity):
                    g3 = self._open(_add(p2, o2))
                    if g3 is None or g3 == g1:
                        continue
                    cost = first + self._step_cost(g2, e2) + self._turn_cost(e1, e2)
                    out.append((g1 * K * K + e1 * K + e2, cost))
        return out

    def is_terminal(self, state: int) -> bool:
        if state >= self.num_states:
            return False
        KK = self.K * self.K
        g1, rest = divmod(state, KK)
        e1, e2 = divmod(rest, self.K)
        return g1 + self._linear[e1] + self._linear[e2] in self.end_points

    def neighbors(self, state: int) -> list[Neighbor]:
        if state == self.super_source:
            return self._start_states()
        K = self.K
        g1, rest = divmod(state, K * K)
        e1, e2 = divmod(rest, K)
        g2 = g1 + self._linear[e1]
        g3 = g2 + self._linear[e2]
        p3 = self.grid.ind2sub(g3)
        out: list[Neighbor] = []
        for e3, offset in enumerate(self.connectivity):
            q = self._open(_add(p3, offset))
            if q is None or q == g2 or q == g1:
                continue
            cost = (
                self._step_cost(g3, e3)
                + self._turn_cost(e2, e3)
                + self._twist_cost(e1, e2, e3)
            )
            out.append((g2 * K * K + e2 * K + e3, cost))
        return out

    def state_points(self, state: int) -> tuple[GridPoint, ...]:
        K = self.K
        g1, rest = divmod(state, K * K)
        e1, e2 = divmod(rest, K)
        p1 = self.grid.ind2sub(g1)
        p2 = _add(p1, self.connectivity[e1])
        return (p1, p2, _add(p2, self.connectivity[e2]))

    def encode_window(self, points: Sequence[GridPoint]) -> int:
        p1, p2, p3 = points
        for p in points:
            self._check_point(p)
        e1 = self._edge_index(p1, p2)
        e2 = self._edge_index(p2, p3)
        return self.grid.sub2ind(*p1) * self.K * self.K + e1 * self.K + e2


_PROVIDERS: dict[GraphMode, type[NeighborProvider]] = {
    GraphMode.NODE: NodeNeighbors,
    GraphMode.EDGE: EdgeNeighbors,
    GraphMode.EDGEPAIR: EdgePairNeighbors,
}


def build_neighbor_provider(
    mode: GraphMode,
    grid: GridIndexer,
    connectivity: Connectivity,
    mesh_labels: Sequence[int],
    cost_model: CostModel,
    start_points: Iterable[int],
    end_points: Iterable[int],
) -> NeighborProvider:
    provider_cls = _PROVIDERS[mode]
    return provider_cls(
        grid, connectivity, mesh_labels, cost_model, start_points, end_points
    )


def select_mode(settings: RegularizationSettings) -> GraphMode:
    """Smallest state that still carries enough history for the active terms."""
    return settings.mode
