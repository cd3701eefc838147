from __future__ import annotations

import heapq
import logging
from typing import Optional

from timeline_engine.core.model import (
    CriticalPathResult,
    CycleReport,
    Dependency,
    DependencyType,
    Graph,
    ScheduleEntry,
)

logger = logging.getLogger(__name__)

EPS = 1e-9


def compute_critical_path(graph: Graph, cycles: CycleReport) -> CriticalPathResult:
    """Two-pass CPM over the acyclic part of the graph.

    Nodes flagged by the cycle detector, and any remainder a topological sort
    cannot order, are excluded rather than scheduled. Returns an empty result
    when nothing schedulable with at least one scheduling edge remains.
    """
    excluded: set[str] = set(cycles.cyclic_nodes)
    nodes = [nid for nid in sorted(graph.items_by_id) if nid not in excluded]
    node_set = set(nodes)

    preds: dict[str, list[Dependency]] = {n: [] for n in nodes}
    succs: dict[str, list[Dependency]] = {n: [] for n in nodes}
    for dep in graph.dependencies:
        if not dep.type.is_scheduling:
            continue
        if dep.source_id in node_set and dep.target_id in node_set:
            succs[dep.source_id].append(dep)
            preds[dep.target_id].append(dep)

    order = _topological_order(nodes, preds, succs)
    if len(order) != len(nodes):
        leftover = node_set - set(order)
        logger.warning("Excluding %d unschedulable items: %s", len(leftover), sorted(leftover))
        excluded |= leftover

    edge_count = sum(len(succs[n]) for n in order)
    if not order or edge_count == 0:
        return CriticalPathResult.empty(excluded=sorted(excluded))

    dur = {n: graph.items_by_id[n].estimated_duration_days for n in order}

    # Forward pass
    es: dict[str, float] = {}
    ef: dict[str, float] = {}
    for n in order:
        start = 0.0
        for dep in preds[n]:
            start = max(start, _forward_bound(dep, es, ef, dur[n]))
        es[n] = _r(start)
        ef[n] = _r(start + dur[n])

    total = max(ef.values())

    # Backward pass
    ls: dict[str, float] = {}
    lf: dict[str, float] = {}
    for n in reversed(order):
        finish = total
        for dep in succs[n]:
            finish = min(finish, _backward_bound(dep, ls, lf, dur[n]))
        lf[n] = _r(finish)
        ls[n] = _r(finish - dur[n])

    slack: dict[str, float] = {}
    schedule: dict[str, ScheduleEntry] = {}
    for n in order:
        s = max(0.0, _r(ls[n] - es[n]))
        slack[n] = s
        schedule[n] = ScheduleEntry(
            id=n,
            duration=dur[n],
            earliest_start=es[n],
            earliest_finish=ef[n],
            latest_start=ls[n],
            latest_finish=lf[n],
            slack=s,
        )
    is_critical = {n: slack[n] <= EPS for n in order}

    path = _select_critical_chain(order, preds, es, ef, dur, is_critical, total)
    logger.info("Critical path: %d items, %.2f days", len(path), total)

    return CriticalPathResult(
        path=path,
        total_duration_days=_r(total),
        slack={n: slack[n] for n in sorted(slack)},
        is_critical={n: is_critical[n] for n in sorted(is_critical)},
        schedule={n: schedule[n] for n in sorted(schedule)},
        excluded=sorted(excluded),
    )


def _topological_order(
    nodes: list[str],
    preds: dict[str, list[Dependency]],
    succs: dict[str, list[Dependency]],
) -> list[str]:
    indeg = {n: len(preds[n]) for n in nodes}
    ready = [n for n in nodes if indeg[n] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        u = heapq.heappop(ready)
        order.append(u)
        for dep in succs[u]:
            indeg[dep.target_id] -= 1
            if indeg[dep.target_id] == 0:
                heapq.heappush(ready, dep.target_id)
    return order


def _forward_bound(
    dep: Dependency, es: dict[str, float], ef: dict[str, float], d_target: float
) -> float:
    """Earliest start of dep.target implied by dep."""
    p, lag = dep.source_id, dep.lag_days
    kind = dep.type.scheduling_kind
    if kind is DependencyType.SS:
        return es[p] + lag
    if kind is DependencyType.FF:
        return ef[p] + lag - d_target
    if kind is DependencyType.SF:
        return es[p] + lag - d_target
    return ef[p] + lag


def _backward_bound(
    dep: Dependency, ls: dict[str, float], lf: dict[str, float], d_source: float
) -> float:
    """Latest finish of dep.source implied by dep."""
    s, lag = dep.target_id, dep.lag_days
    kind = dep.type.scheduling_kind
    if kind is DependencyType.SS:
        return ls[s] - lag + d_source
    if kind is DependencyType.FF:
        return lf[s] - lag
    if kind is DependencyType.SF:
        return lf[s] - lag + d_source
    return ls[s] - lag


def _select_critical_chain(
    order: list[str],
    preds: dict[str, list[Dependency]],
    es: dict[str, float],
    ef: dict[str, float],
    dur: dict[str, float],
    is_critical: dict[str, bool],
    total: float,
) -> list[str]:
    """Longest chain of critical nodes joined by binding edges, start 0 to finish total.

    Ties on summed duration go to the lexicographically smallest id sequence.
    """
    best: dict[str, tuple[float, list[str]]] = {}
    for n in order:
        if not is_critical[n]:
            continue
        candidate: Optional[tuple[float, list[str]]] = None
        if abs(es[n]) <= EPS:
            candidate = (dur[n], [n])
        for dep in preds[n]:
            p = dep.source_id
            if p not in best or not is_critical[p]:
                continue
            if abs(_forward_bound(dep, es, ef, dur[n]) - es[n]) > EPS:
                continue
            cand = (best[p][0] + dur[n], best[p][1] + [n])
            if candidate is None or _better(cand, candidate):
                candidate = cand
        if candidate is not None:
            best[n] = candidate

    chosen: Optional[tuple[float, list[str]]] = None
    for n, cand in best.items():
        if abs(ef[n] - total) > EPS:
            continue
        if chosen is None or _better(cand, chosen):
            chosen = cand
    return chosen[1] if chosen else []


def _better(a: tuple[float, list[str]], b: tuple[float, list[str]]) -> bool:
    if abs(a[0] - b[0]) > EPS:
        return a[0] > b[0]
    return a[1] < b[1]


def _r(x: float) -> float:
    return round(x, 9) + 0.0
