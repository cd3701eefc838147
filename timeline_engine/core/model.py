from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Literal, Optional

from timeline_engine.core.errors import AnalysisWarning


ItemStatus = Literal["open", "in-progress", "done", "other"]
Constraint = Literal["hard", "soft"]


class DependencyType(str, Enum):
    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"
    BLOCKS = "blocks"
    DEPENDS_ON = "depends-on"
    RELATED = "related"
    SUBTASK = "subtask"

    @property
    def is_scheduling(self) -> bool:
        return self not in (DependencyType.RELATED, DependencyType.SUBTASK)

    @property
    def scheduling_kind(self) -> Optional["DependencyType"]:
        """CPM edge type used in the forward/backward passes (None if non-scheduling)."""
        if self in (DependencyType.BLOCKS, DependencyType.DEPENDS_ON):
            return DependencyType.FS
        if self.is_scheduling:
            return self
        return None

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS: dict[DependencyType, str] = {
    DependencyType.FS: "Finish-to-Start: target starts when source finishes",
    DependencyType.SS: "Start-to-Start: target starts when source starts",
    DependencyType.FF: "Finish-to-Finish: target finishes when source finishes",
    DependencyType.SF: "Start-to-Finish: target finishes when source starts",
    DependencyType.BLOCKS: "Blocks: source must finish before target starts",
    DependencyType.DEPENDS_ON: "Depends on: target needs source finished before it starts",
    DependencyType.RELATED: "Related: informational link, no scheduling effect",
    DependencyType.SUBTASK: "Subtask: target is a child of source in the hierarchy",
}


@dataclass(frozen=True)
class WorkItem:
    id: str
    title: str
    estimated_duration_days: float
    status: ItemStatus = "open"

    start_date: Optional[date] = None
    due_date: Optional[date] = None
    assignee: Optional[str] = None


@dataclass(frozen=True)
class Dependency:
    source_id: str
    target_id: str  # target depends on source
    type: DependencyType
    lag_days: float = 0.0
    constraint: Constraint = "hard"

    @property
    def key(self) -> tuple[str, str, DependencyType]:
        return (self.source_id, self.target_id, self.type)


@dataclass(frozen=True)
class Graph:
    items_by_id: dict[str, WorkItem]
    dependencies: list[Dependency]
    successors: dict[str, list[Dependency]]
    predecessors: dict[str, list[Dependency]]
    warnings: list[AnalysisWarning] = field(default_factory=list)

    @property
    def node_ids(self) -> list[str]:
        return sorted(self.items_by_id)

    def scheduling_successors(self, node_id: str) -> list[Dependency]:
        return [d for d in self.successors.get(node_id, []) if d.type.is_scheduling]

    def scheduling_predecessors(self, node_id: str) -> list[Dependency]:
        return [d for d in self.predecessors.get(node_id, []) if d.type.is_scheduling]


@dataclass(frozen=True)
class CycleReport:
    cycles: list[list[str]]
    cyclic_nodes: frozenset[str]
    cyclic_edges: frozenset[tuple[str, str]]
    truncated: bool = False

    def participates(self, node_id: str) -> bool:
        return node_id in self.cyclic_nodes


@dataclass(frozen=True)
class ScheduleEntry:
    id: str
    duration: float
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float
    slack: float


@dataclass(frozen=True)
class CriticalPathResult:
    path: list[str]
    total_duration_days: float
    slack: dict[str, float]
    is_critical: dict[str, bool]
    schedule: dict[str, ScheduleEntry]
    excluded: list[str] = field(default_factory=list)  # cyclic / unschedulable ids

    @classmethod
    def empty(cls, excluded: Optional[list[str]] = None) -> "CriticalPathResult":
        return cls(
            path=[],
            total_duration_days=0.0,
            slack={},
            is_critical={},
            schedule={},
            excluded=sorted(excluded or []),
        )


@dataclass(frozen=True)
class Bottleneck:
    id: str
    in_degree: int
    out_degree: int

    @property
    def degree(self) -> int:
        return self.in_degree + self.out_degree


@dataclass(frozen=True)
class Cluster:
    ids: list[str]
    cohesion: float


@dataclass(frozen=True)
class NetworkAnalysis:
    node_count: int
    edge_count: int
    density: float
    average_degree: float
    bottlenecks: list[Bottleneck]
    clusters: list[Cluster]
    circular_dependencies: list[list[str]]
    health_score: float
    health_rating: str
    truncated: bool = False
    clusters_truncated: bool = False
