from __future__ import annotations

import logging
from collections import deque
from typing import Iterator, Optional

from timeline_engine.core.model import CycleReport, Graph

logger = logging.getLogger(__name__)


def detect_cycles(graph: Graph, max_cycles: int = 50) -> CycleReport:
    """Find circular dependency chains among scheduling edges.

    Depth-first search from every unvisited node (ids in sorted order). A back
    edge to a node still on the stack closes a cycle; the cycle is read off the
    stack from that node to the current one. Cycles are rotated to start at
    their smallest id and de-duplicated. Reporting stops after *max_cycles*.
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    state: dict[str, int] = {nid: WHITE for nid in graph.items_by_id}
    successor_ids = {nid: _scheduling_successor_ids(graph, nid) for nid in graph.items_by_id}

    cycles: list[list[str]] = []
    emitted: set[tuple[str, ...]] = set()
    truncated = False

    for root in sorted(state):
        if state[root] != WHITE or truncated:
            continue

        state[root] = GRAY
        path: list[str] = [root]
        position: dict[str, int] = {root: 0}
        stack: list[Iterator[str]] = [iter(successor_ids[root])]

        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                done = path.pop()
                del position[done]
                state[done] = BLACK
                stack.pop()
                continue

            if state[nxt] == GRAY:
                cycle = _canonical(path[position[nxt]:])
                key = tuple(cycle)
                if key not in emitted:
                    if len(cycles) >= max_cycles:
                        truncated = True
                        break
                    emitted.add(key)
                    cycles.append(cycle)
            elif state[nxt] == WHITE:
                state[nxt] = GRAY
                position[nxt] = len(path)
                path.append(nxt)
                stack.append(iter(successor_ids[nxt]))

    cyclic_nodes: set[str] = set()
    cyclic_edges: set[tuple[str, str]] = set()
    for cycle in cycles:
        cyclic_nodes.update(cycle)
        for i, u in enumerate(cycle):
            cyclic_edges.add((u, cycle[(i + 1) % len(cycle)]))

    if cycles:
        logger.info("Found %d circular dependencies (truncated=%s)", len(cycles), truncated)

    return CycleReport(
        cycles=sorted(cycles),
        cyclic_nodes=frozenset(cyclic_nodes),
        cyclic_edges=frozenset(cyclic_edges),
        truncated=truncated,
    )


def find_cycle_through(graph: Graph, source_id: str, target_id: str) -> Optional[list[str]]:
    """Return the cycle a new scheduling edge source -> target would close, if any.

    The cycle is listed starting at source_id, e.g. [source, target, ..., x]
    where x -> source already exists.
    """
    if source_id == target_id:
        return [source_id]
    if source_id not in graph.items_by_id or target_id not in graph.items_by_id:
        return None

    parent: dict[str, Optional[str]] = {target_id: None}
    q: deque[str] = deque([target_id])
    while q:
        cur = q.popleft()
        if cur == source_id:
            chain: list[str] = []
            node: Optional[str] = cur
            while node is not None:
                chain.append(node)
                node = parent[node]
            chain.reverse()  # target ... source
            return [source_id] + chain[:-1]
        for nxt in _scheduling_successor_ids(graph, cur):
            if nxt not in parent:
                parent[nxt] = cur
                q.append(nxt)
    return None


def _scheduling_successor_ids(graph: Graph, node_id: str) -> list[str]:
    return sorted({d.target_id for d in graph.scheduling_successors(node_id)})


def _canonical(cycle: list[str]) -> list[str]:
    i = cycle.index(min(cycle))
    return cycle[i:] + cycle[:i]
