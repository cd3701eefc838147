from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Any, Optional

from timeline_engine.core.config.settings import DEFAULT_SETTINGS, EngineSettings
from timeline_engine.core.errors import AnalysisWarning
from timeline_engine.core.io.contracts import AnalysisOptions
from timeline_engine.core.model import (
    CriticalPathResult,
    CycleReport,
    DependencyType,
    Graph,
    ItemStatus,
    WorkItem,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GanttDependency:
    target_id: str
    type: str
    lag_days: float
    constraint: str


@dataclass(frozen=True)
class GanttItem:
    id: str
    title: str
    status: ItemStatus
    assignee: Optional[str]
    start: Optional[date]
    end: Optional[date]
    due_date: Optional[date]
    duration_days: float
    slack_days: Optional[float]
    on_critical_path: bool
    participates_in_cycle: bool
    dependencies: list[GanttDependency]
    level: int = 0
    children: list["GanttItem"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        root = self._own_dict()
        stack = [(self, root)]
        while stack:
            item, out = stack.pop()
            for child in item.children:
                child_out = child._own_dict()
                out["children"].append(child_out)
                stack.append((child, child_out))
        return root

    def _own_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "assignee": self.assignee,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "due_date": _iso(self.due_date),
            "duration_days": self.duration_days,
            "slack_days": self.slack_days,
            "on_critical_path": self.on_critical_path,
            "participates_in_cycle": self.participates_in_cycle,
            "dependencies": [
                {
                    "target_id": d.target_id,
                    "type": d.type,
                    "lag_days": d.lag_days,
                    "constraint": d.constraint,
                }
                for d in self.dependencies
            ],
            "level": self.level,
            "children": [],
        }


@dataclass(frozen=True)
class ResourceLoad:
    assignee: str
    item_count: int
    total_days: float
    # total_days over the calendar span of the assignee's items; > 1.0 means parallel work
    utilization: Optional[float]


@dataclass(frozen=True)
class ResourceAllocation:
    by_assignee: dict[str, ResourceLoad]
    overloaded: list[str]
    threshold_days: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "by_assignee": {
                name: {
                    "item_count": load.item_count,
                    "total_days": load.total_days,
                    "utilization": load.utilization,
                }
                for name, load in sorted(self.by_assignee.items())
            },
            "overloaded": list(self.overloaded),
            "threshold_days": self.threshold_days,
        }


def resolve_anchor(items: list[WorkItem], options: AnalysisOptions) -> date:
    """Project start: explicit option, else earliest explicit item date, else today."""
    if options.project_start_date is not None:
        return options.project_start_date
    dates = [d for it in items for d in (it.start_date, it.due_date) if d is not None]
    if dates:
        return min(dates)
    return date.today()


def project_gantt(
    graph: Graph,
    cycles: CycleReport,
    critical: CriticalPathResult,
    options: AnalysisOptions,
    anchor: date,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> tuple[list[GanttItem], list[AnalysisWarning]]:
    """One Gantt item per node; nested by subtask edges in hierarchical view.

    Offsets that fall outside the calendar leave the item undated with a
    W_DATE_OUT_OF_RANGE warning.
    """
    on_path = set(critical.path)
    excluded = set(critical.excluded)
    warnings: list[AnalysisWarning] = []

    flat: dict[str, GanttItem] = {}
    for nid in graph.node_ids:
        item = graph.items_by_id[nid]
        try:
            start, end = _dates_for(item, graph, critical, excluded, anchor)
        except (OverflowError, ValueError):
            start, end = None, None
            warnings.append(
                AnalysisWarning(
                    code="W_DATE_OUT_OF_RANGE",
                    message=f"{nid} is scheduled beyond the supported calendar; dates left empty",
                    path=f"items.{nid}",
                )
            )
        entry = critical.schedule.get(nid)
        flat[nid] = GanttItem(
            id=nid,
            title=item.title,
            status=item.status,
            assignee=item.assignee,
            start=start,
            end=end,
            due_date=item.due_date,
            duration_days=item.estimated_duration_days,
            slack_days=entry.slack if entry else None,
            on_critical_path=nid in on_path,
            participates_in_cycle=cycles.participates(nid),
            dependencies=[
                GanttDependency(
                    target_id=d.target_id,
                    type=d.type.value,
                    lag_days=d.lag_days,
                    constraint=d.constraint,
                )
                for d in graph.successors.get(nid, [])
            ],
        )

    if not options.hierarchical_view:
        return [flat[nid] for nid in graph.node_ids], warnings
    nested, nest_warnings = _nest(graph, flat, settings.max_hierarchy_depth)
    return nested, warnings + nest_warnings


def allocate_resources(
    items: list[GanttItem],
    options: AnalysisOptions,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> ResourceAllocation:
    """Per-assignee workload; unassigned items are not counted."""
    threshold = (
        options.overload_threshold_days
        if options.overload_threshold_days is not None
        else settings.overload_threshold_days
    )

    grouped: dict[str, list[GanttItem]] = {}
    for it in flatten(items):
        if it.assignee:
            grouped.setdefault(it.assignee, []).append(it)

    by_assignee: dict[str, ResourceLoad] = {}
    for name in sorted(grouped):
        assigned = grouped[name]
        total = round(sum(it.duration_days for it in assigned), 6)
        starts = [it.start for it in assigned if it.start]
        ends = [it.end for it in assigned if it.end]
        utilization: Optional[float] = None
        if starts and ends:
            span = (max(ends) - min(starts)).days
            if span > 0:
                utilization = round(total / span, 4)
        by_assignee[name] = ResourceLoad(
            assignee=name,
            item_count=len(assigned),
            total_days=total,
            utilization=utilization,
        )

    overloaded = sorted(n for n, load in by_assignee.items() if load.total_days > threshold)
    if overloaded:
        logger.info("Overloaded assignees (> %.1f days): %s", threshold, overloaded)
    return ResourceAllocation(by_assignee=by_assignee, overloaded=overloaded, threshold_days=threshold)


def flatten(items: list[GanttItem]) -> list[GanttItem]:
    """Depth-first, parents before their children."""
    out: list[GanttItem] = []
    stack = list(reversed(items))
    while stack:
        it = stack.pop()
        out.append(it)
        stack.extend(reversed(it.children))
    return out


def _dates_for(
    item: WorkItem,
    graph: Graph,
    critical: CriticalPathResult,
    excluded: set[str],
    anchor: date,
) -> tuple[Optional[date], Optional[date]]:
    entry = critical.schedule.get(item.id)
    constrained = any(
        d.source_id not in excluded for d in graph.scheduling_predecessors(item.id)
    )

    if entry is not None and (constrained or item.start_date is None):
        start = anchor + timedelta(days=math.floor(entry.earliest_start))
        end = anchor + timedelta(days=math.ceil(entry.earliest_finish))
        return start, end

    if item.id in excluded and item.start_date is None:
        # Not schedulable; only explicit dates can be shown.
        return None, item.due_date

    start = item.start_date or anchor
    end = item.due_date or start + timedelta(days=math.ceil(item.estimated_duration_days))
    return start, end


def _nest(
    graph: Graph, flat: dict[str, GanttItem], max_depth: int
) -> tuple[list[GanttItem], list[AnalysisWarning]]:
    warnings: list[AnalysisWarning] = []

    parents: dict[str, list[str]] = {}
    for dep in graph.dependencies:
        if dep.type is DependencyType.SUBTASK:
            parents.setdefault(dep.target_id, []).append(dep.source_id)

    parent_of: dict[str, str] = {}
    for child, ps in sorted(parents.items()):
        ps = sorted(set(ps))
        if len(ps) > 1:
            warnings.append(
                AnalysisWarning(
                    code="W_MULTIPLE_PARENTS",
                    message=f"{child} is a subtask of {', '.join(ps)}; nested under {ps[0]}",
                    path=f"items.{child}",
                )
            )
        parent_of[child] = ps[0]

    children: dict[str, list[str]] = {}
    for child, parent in parent_of.items():
        children.setdefault(parent, []).append(child)

    placed: set[str] = set()
    level_of: dict[str, int] = {}
    kids_of: dict[str, list[str]] = {}
    preorder: list[str] = []
    tops: list[str] = []
    pending: deque[str] = deque(nid for nid in graph.node_ids if nid not in parent_of)
    lifted = 0

    def drain() -> None:
        nonlocal lifted
        while pending:
            top = pending.popleft()
            placed.add(top)
            level_of[top] = 0
            tops.append(top)
            stack = [top]
            while stack:
                nid = stack.pop()
                preorder.append(nid)
                kids: list[str] = []
                for c in sorted(children.get(nid, [])):
                    if c in placed:
                        continue
                    placed.add(c)
                    if level_of[nid] >= max_depth:
                        # Too deep to nest; restart the chain at the top level.
                        pending.append(c)
                        lifted += 1
                        continue
                    level_of[c] = level_of[nid] + 1
                    kids.append(c)
                kids_of[nid] = kids
                stack.extend(reversed(kids))

    drain()
    # Subtask loops have no root; surface each loop at the top level.
    for nid in graph.node_ids:
        if nid not in placed:
            pending.append(nid)
            drain()

    if lifted:
        warnings.append(
            AnalysisWarning(
                code="W_HIERARCHY_DEPTH_CAPPED",
                message=f"{lifted} subtasks nest deeper than {max_depth} levels; shown at the top level",
                path="items",
            )
        )

    built: dict[str, GanttItem] = {}
    for nid in reversed(preorder):
        built[nid] = replace(
            flat[nid], level=level_of[nid], children=[built[c] for c in kids_of[nid]]
        )
    return [built[nid] for nid in tops], warnings


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None
