from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from timeline_engine.core.config.settings import DEFAULT_SETTINGS, EngineSettings
from timeline_engine.core.errors import AnalysisWarning
from timeline_engine.core.graph.link_types import resolve_link_label
from timeline_engine.core.io.contracts import ItemRecord, LinkRecord
from timeline_engine.core.model import Dependency, Graph, ItemStatus, WorkItem

logger = logging.getLogger(__name__)


# Whole words or adjacent word pairs; "Incomplete" must not match "complete".
_STATUS_TERMS: list[tuple[ItemStatus, frozenset[str]]] = [
    (
        "done",
        frozenset(
            {"done", "fixed", "closed", "resolved", "verified", "complete", "completed", "won't fix", "wont fix"}
        ),
    ),
    ("in-progress", frozenset({"progress", "working", "review", "testing"})),
    ("open", frozenset({"open", "new", "submitted", "to do", "todo", "backlog", "reopened"})),
]
_DONE_TERMS = _STATUS_TERMS[0][1]
_NEGATING_PREFIXES = ("un", "in", "non")
_NEGATING_WORDS = frozenset({"not", "non"})


def normalize_status(label: Optional[str]) -> ItemStatus:
    if label is None or not label.strip():
        return "open"
    tokens = re.findall(r"[a-z']+", label.lower())
    if _negates_done(tokens):
        return "open"
    terms = set(tokens) | {f"{a} {b}" for a, b in zip(tokens, tokens[1:])}
    for status, words in _STATUS_TERMS:
        if terms & words:
            return status
    return "other"


def _negates_done(tokens: list[str]) -> bool:
    """'Unresolved', 'incomplete', 'not done' and the like."""
    for i, tok in enumerate(tokens):
        if tok in _DONE_TERMS and i and tokens[i - 1] in _NEGATING_WORDS:
            return True
        for prefix in _NEGATING_PREFIXES:
            if tok.startswith(prefix) and tok[len(prefix):] in _DONE_TERMS:
                return True
    return False


def work_items_from_records(
    records: Iterable[ItemRecord],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> tuple[list[WorkItem], list[AnalysisWarning]]:
    """Convert boundary item records into WorkItems; first occurrence of an id wins."""
    items: list[WorkItem] = []
    warnings: list[AnalysisWarning] = []
    seen: set[str] = set()

    for rec in records:
        if rec.id in seen:
            warnings.append(
                AnalysisWarning(
                    code="W_DUPLICATE_ITEM",
                    message=f"duplicate item id: {rec.id}; keeping the first occurrence",
                    path=f"items.{rec.id}",
                )
            )
            continue
        seen.add(rec.id)

        duration = rec.estimated_duration_days
        if duration is None:
            duration = settings.default_duration_days
        elif duration < 0:
            warnings.append(
                AnalysisWarning(
                    code="W_INVALID_DURATION",
                    message=f"negative duration {duration} for {rec.id}; using default",
                    path=f"items.{rec.id}.estimatedDurationDays",
                )
            )
            duration = settings.default_duration_days

        items.append(
            WorkItem(
                id=rec.id,
                title=rec.title,
                estimated_duration_days=float(duration),
                status=normalize_status(rec.status),
                start_date=rec.start_date,
                due_date=rec.due_date,
                assignee=rec.assignee,
            )
        )
    return items, warnings


def build_graph(
    items: Iterable[WorkItem],
    links: Iterable[LinkRecord],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> Graph:
    """Build the dependency graph with adjacency in both directions.

    Dangling endpoints, self-loops and duplicate (source, target, type) edges
    are dropped and recorded as warnings.
    """
    items_by_id: dict[str, WorkItem] = {}
    for item in items:
        items_by_id.setdefault(item.id, item)

    warnings: list[AnalysisWarning] = []
    dependencies: list[Dependency] = []
    seen: set[tuple] = set()

    for i, link in enumerate(links):
        path = f"links[{i}]"
        resolution = resolve_link_label(link.type_label, default=settings.default_link_type)
        if not resolution.known:
            warnings.append(
                AnalysisWarning(
                    code="W_UNKNOWN_LINK_TYPE",
                    message=f"unknown link type {link.type_label!r}; treated as related (non-scheduling)",
                    path=path,
                )
            )

        source, target = link.source_id, link.target_id
        if resolution.reversed:
            source, target = target, source

        missing = [x for x in (source, target) if x not in items_by_id]
        if missing:
            warnings.append(
                AnalysisWarning(
                    code="W_DANGLING_REFERENCE",
                    message=f"link references unknown item(s): {', '.join(sorted(set(missing)))}",
                    path=path,
                )
            )
            continue

        if source == target:
            warnings.append(
                AnalysisWarning(
                    code="W_SELF_LOOP",
                    message=f"item {source} cannot depend on itself",
                    path=path,
                )
            )
            continue

        dep = Dependency(
            source_id=source,
            target_id=target,
            type=resolution.type,
            lag_days=link.lag_days,
            constraint="soft" if link.constraint == "soft" else "hard",
        )
        if dep.key in seen:
            warnings.append(
                AnalysisWarning(
                    code="W_DUPLICATE_EDGE",
                    message=f"duplicate {dep.type.value} edge {source} -> {target}",
                    path=path,
                )
            )
            continue
        seen.add(dep.key)
        dependencies.append(dep)

    successors: dict[str, list[Dependency]] = {nid: [] for nid in items_by_id}
    predecessors: dict[str, list[Dependency]] = {nid: [] for nid in items_by_id}
    for dep in sorted(dependencies, key=_edge_order):
        successors[dep.source_id].append(dep)
        predecessors[dep.target_id].append(dep)

    for w in warnings:
        logger.warning("%s", w)
    logger.info(
        "Built dependency graph: %d items, %d edges, %d warnings",
        len(items_by_id),
        len(dependencies),
        len(warnings),
    )

    return Graph(
        items_by_id=items_by_id,
        dependencies=sorted(dependencies, key=_edge_order),
        successors=successors,
        predecessors=predecessors,
        warnings=warnings,
    )


def _edge_order(dep: Dependency) -> tuple[str, str, str]:
    return (dep.source_id, dep.target_id, dep.type.value)
