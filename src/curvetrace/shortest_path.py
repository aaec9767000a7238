from __future__ import annotations

import heapq
import time
from dataclasses import dataclass, field
from enum import Enum

from tqdm import tqdm  # type: ignore[reportMissingModuleSource]

from .state_graph import NeighborProvider
from .utils import debug


class SearchStatus(Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    OVERFLOW = "overflow"


@dataclass
class SearchResult:
    status: SearchStatus
    states: list[int] = field(default_factory=list)
    cost: float = float("inf")
    evaluations: int = 0
    queue_size: int = 0
    run_time: float = 0.0
    visit_order: dict[int, int] | None = None

    @property
    def success(self) -> bool:
        return self.status is SearchStatus.SUCCESS


def _reconstruct(
    predecessors: dict[int, int], terminal: int, super_source: int | None
) -> list[int]:
    states = [terminal]
    node = terminal
    while node in predecessors:
        node = predecessors[node]
        states.append(node)
    states.reverse()
    if super_source is not None and states and states[0] == super_source:
        states = states[1:]
    return states


def shortest_path(
    provider: NeighborProvider,
    *,
    maximum_queue_size: int = 1000 * 1000 * 1000,
    store_visit_order: bool = False,
    print_progress: bool = False,
    verbose: bool = False,
) -> SearchResult:
    """
    Label-setting (Dijkstra) search over the provider's implicit graph.

    Every source starts at cost 0. The search stops as soon as a terminal
    state is popped; with non-negative edge costs its label is final.
    maximum_queue_size bounds the number of distinct states ever labelled;
    crossing it ends the search with OVERFLOW instead of truncating.
    Ties in the frontier are broken by state id, so results are
    deterministic.
    """
    start_time = time.perf_counter()
    super_source = provider.super_source

    distances: dict[int, float] = {}
    predecessors: dict[int, int] = {}
    settled: set[int] = set()
    visit_order: dict[int, int] | None = {} if store_visit_order else None
    heap: list[tuple[float, int]] = []

    for source in provider.sources():
        if source not in distances:
            distances[source] = 0.0
            heap.append((0.0, source))
    heapq.heapify(heap)

    evaluations = 0
    status = SearchStatus.EXHAUSTED
    terminal: int | None = None
    progress = tqdm(desc="shortest path", unit="state") if print_progress else None

    def finish(result: SearchResult) -> SearchResult:
        if progress is not None:
            progress.close()
        result.run_time = time.perf_counter() - start_time
        debug.log_if(
            verbose,
            f"shortest_path status={result.status.value} evaluations={result.evaluations} "
            f"queue={result.queue_size} cost={result.cost:.6g} time={result.run_time:.3f}s",
        )
        return result

    if len(distances) > maximum_queue_size:
        return finish(
            SearchResult(SearchStatus.OVERFLOW, queue_size=len(distances), visit_order=visit_order)
        )

    while heap:
        dist, current = heapq.heappop(heap)
        if current in settled or dist > distances[current]:
            continue
        settled.add(current)
        evaluations += 1
        if progress is not None:
            progress.update(1)
        if visit_order is not None:
            visit_order[current] = evaluations

        if provider.is_terminal(current):
            status = SearchStatus.SUCCESS
            terminal = current
            break

        for neighbor, weight in provider.neighbors(current):
            if neighbor in settled:
                continue
            new_dist = dist + weight
            old = distances.get(neighbor)
            if old is None:
                if len(distances) >= maximum_queue_size:
                    status = SearchStatus.OVERFLOW
                    break
            elif new_dist >= old:
                continue
            distances[neighbor] = new_dist
            predecessors[neighbor] = current
            heapq.heappush(heap, (new_dist, neighbor))
        if status is SearchStatus.OVERFLOW:
            break

    if status is SearchStatus.SUCCESS and terminal is not None:
        return finish(
            SearchResult(
                status,
                states=_reconstruct(predecessors, terminal, super_source),
                cost=distances[terminal],
                evaluations=evaluations,
                queue_size=len(distances),
                visit_order=visit_order,
            )
        )
    return finish(
        SearchResult(
            status,
            evaluations=evaluations,
            queue_size=len(distances),
            visit_order=visit_order,
        )
    )
