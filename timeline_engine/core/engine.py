from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Iterable, Optional

from timeline_engine.core.cache.result_cache import ResultCache, make_cache_key
from timeline_engine.core.config.settings import DEFAULT_SETTINGS, EngineSettings
from timeline_engine.core.errors import AnalysisWarning, EngineError, sorted_warnings
from timeline_engine.core.graph.build_graph import build_graph, work_items_from_records
from timeline_engine.core.graph.cycles import detect_cycles, find_cycle_through
from timeline_engine.core.graph.link_types import resolve_link_label
from timeline_engine.core.insights.recommendations import (
    critical_path_recommendations,
    dependency_recommendations,
    network_recommendations,
    resource_recommendations,
)
from timeline_engine.core.io.contracts import AnalysisRequest, LinkRecord, parse_request
from timeline_engine.core.model import CriticalPathResult, CycleReport, Graph, NetworkAnalysis
from timeline_engine.core.network.analyze_network import analyze_network
from timeline_engine.core.schedule.critical_path import compute_critical_path
from timeline_engine.core.timeline.filters import apply_filters
from timeline_engine.core.timeline.gantt import (
    GanttItem,
    ResourceAllocation,
    allocate_resources,
    project_gantt,
    resolve_anchor,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultMetadata:
    execution_time_ms: float
    cache_hit: bool = False


@dataclass(frozen=True)
class AnalysisResult:
    items: list[GanttItem]
    critical_path: Optional[CriticalPathResult]
    network: Optional[NetworkAnalysis]
    resource_allocation: Optional[ResourceAllocation]
    recommendations: list[str]
    warnings: list[AnalysisWarning]
    truncated: bool
    anchor_date: date
    filtered_out: list[str] = field(default_factory=list)
    metadata: ResultMetadata = field(default_factory=lambda: ResultMetadata(0.0))

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready view; identical inputs give identical payloads apart from timing."""
        payload: dict[str, Any] = {
            "anchor_date": self.anchor_date.isoformat(),
            "filtered_out": list(self.filtered_out),
            "items": [it.to_dict() for it in self.items],
            "recommendations": list(self.recommendations),
            "warnings": [w.to_dict() for w in self.warnings],
            "truncated": self.truncated,
            "metadata": {
                "execution_time_ms": self.metadata.execution_time_ms,
                "cache_hit": self.metadata.cache_hit,
            },
        }
        if self.critical_path is not None:
            payload["critical_path"] = critical_path_payload(self.critical_path)
        if self.network is not None:
            payload["network"] = network_payload(self.network)
        if self.resource_allocation is not None:
            payload["resource_allocation"] = self.resource_allocation.to_dict()
        return payload


@dataclass(frozen=True)
class DependencyImpact:
    source_id: str
    target_id: str
    type: str
    lag_days: float
    would_create_cycle: bool
    cycle_path: list[str]
    project_delay_days: float
    affected_items: list[str]
    critical_path_changed: bool
    critical_path_before: list[str]
    critical_path_after: list[str]
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "dependency": {
                "source_id": self.source_id,
                "target_id": self.target_id,
                "type": self.type,
                "lag_days": self.lag_days,
            },
            "would_create_cycle": self.would_create_cycle,
            "cycle_path": list(self.cycle_path),
            "project_delay_days": self.project_delay_days,
            "affected_items": list(self.affected_items),
            "critical_path_changed": self.critical_path_changed,
            "critical_path_before": list(self.critical_path_before),
            "critical_path_after": list(self.critical_path_after),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class _Run:
    graph: Graph
    cycles: CycleReport
    critical: CriticalPathResult
    result: AnalysisResult


class TimelineEngine:
    """Runs the analysis pipeline: filter, build, cycles, CPM, network, Gantt.

    The cache is optional and injected; results are only cached for requests
    that carry a project id, keyed by that id and the option fingerprint.
    """

    def __init__(
        self,
        settings: EngineSettings = DEFAULT_SETTINGS,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache

    @classmethod
    def with_cache(cls, settings: EngineSettings = DEFAULT_SETTINGS) -> "TimelineEngine":
        return cls(
            settings,
            ResultCache(ttl_seconds=settings.cache_ttl_seconds, max_keys=settings.cache_max_keys),
        )

    def analyze_mapping(self, obj: dict[str, Any]) -> AnalysisResult:
        request, warnings = parse_request(obj)
        return self.analyze(request, parse_warnings=warnings)

    def analyze(
        self,
        request: AnalysisRequest,
        parse_warnings: Iterable[AnalysisWarning] = (),
    ) -> AnalysisResult:
        started = time.perf_counter()
        parse_warnings = list(parse_warnings)

        if self.cache is not None and request.project_id:
            key = make_cache_key(request.project_id, request.options.fingerprint())
            result, hit = self.cache.get_or_compute(
                key, lambda: self._run(request, parse_warnings).result
            )
        else:
            result, hit = self._run(request, parse_warnings).result, False

        elapsed = round((time.perf_counter() - started) * 1000.0, 3)
        return replace(result, metadata=ResultMetadata(execution_time_ms=elapsed, cache_hit=hit))

    def check_new_dependency(
        self,
        request: AnalysisRequest,
        source_id: str,
        target_id: str,
        type_label: Optional[str] = None,
        lag_days: float = 0.0,
    ) -> DependencyImpact:
        """Impact of adding one link, computed on a copy of the request."""
        before = self._run(request, [])

        resolution = resolve_link_label(type_label, default=self.settings.default_link_type)
        src, tgt = (target_id, source_id) if resolution.reversed else (source_id, target_id)
        for which, nid in (("source_id", source_id), ("target_id", target_id)):
            if nid not in before.graph.items_by_id:
                raise EngineError(
                    code="E_UNKNOWN_ITEM",
                    message=f"{which} references unknown or filtered-out item: {nid}",
                    path=which,
                )

        base = dict(
            source_id=src,
            target_id=tgt,
            type=resolution.type.value,
            lag_days=lag_days,
            critical_path_before=list(before.critical.path),
        )

        cycle = find_cycle_through(before.graph, src, tgt) if resolution.type.is_scheduling else None
        if cycle is not None:
            logger.info("Link %s -> %s would close a cycle: %s", src, tgt, cycle)
            return DependencyImpact(
                **base,
                would_create_cycle=True,
                cycle_path=cycle,
                project_delay_days=0.0,
                affected_items=[],
                critical_path_changed=False,
                critical_path_after=list(before.critical.path),
                recommendations=[
                    "Remove or modify existing dependencies to avoid circular reference"
                ],
            )

        extra = LinkRecord(
            source_id=source_id,
            target_id=target_id,
            type_label=type_label,
            lag_days=lag_days,
        )
        after = self._run(replace(request, links=[*request.links, extra]), [])

        delay = round(max(0.0, _span(after) - _span(before)), 6)
        affected = sorted(
            nid
            for nid in after.graph.items_by_id
            if _earliest_start(after, nid) != _earliest_start(before, nid)
        )
        changed = after.critical.path != before.critical.path

        return DependencyImpact(
            **base,
            would_create_cycle=False,
            cycle_path=[],
            project_delay_days=delay,
            affected_items=affected,
            critical_path_changed=changed,
            critical_path_after=list(after.critical.path),
            recommendations=dependency_recommendations(
                project_delay_days=delay,
                critical_path_changed=changed,
                affected_count=len(affected),
            ),
        )

    def _run(self, request: AnalysisRequest, parse_warnings: list[AnalysisWarning]) -> _Run:
        settings = self.settings
        options = request.options
        warnings: list[AnalysisWarning] = list(parse_warnings)

        items, item_warnings = work_items_from_records(request.items, settings)
        warnings.extend(item_warnings)
        anchor = resolve_anchor(items, options)

        scoped = apply_filters(items, request.links, options)
        graph = build_graph(scoped.items, scoped.links, settings)
        warnings.extend(graph.warnings)

        cycles = detect_cycles(graph, max_cycles=settings.max_reported_cycles)
        if cycles.truncated:
            warnings.append(
                AnalysisWarning(
                    code="W_CYCLE_CAP_REACHED",
                    message=f"more than {settings.max_reported_cycles} cycles; report truncated",
                    path="network.circular_dependencies",
                )
            )

        critical = compute_critical_path(graph, cycles)
        for nid in sorted(set(critical.excluded) - cycles.cyclic_nodes):
            warnings.append(
                AnalysisWarning(
                    code="W_UNSCHEDULABLE",
                    message=f"{nid} sits on an unreported cycle and was not scheduled",
                    path=f"items.{nid}",
                )
            )

        network: Optional[NetworkAnalysis] = None
        if options.include_network:
            network = analyze_network(graph, cycles, settings)
            if network.clusters_truncated:
                warnings.append(
                    AnalysisWarning(
                        code="W_CLUSTER_CAP_REACHED",
                        message=f"more than {settings.max_reported_clusters} clusters; report truncated",
                        path="network.clusters",
                    )
                )

        gantt, gantt_warnings = project_gantt(graph, cycles, critical, options, anchor, settings)
        warnings.extend(gantt_warnings)

        resources = allocate_resources(gantt, options, settings) if options.include_resources else None

        recommendations: list[str] = []
        if network is not None:
            recommendations.extend(network_recommendations(network))
        if options.include_critical_path:
            recommendations.extend(critical_path_recommendations(graph, critical, settings))
        recommendations.extend(resource_recommendations(resources))

        truncated = (
            cycles.truncated
            or bool(network and network.truncated)
            or any(w.code == "W_HIERARCHY_DEPTH_CAPPED" for w in gantt_warnings)
        )
        result = AnalysisResult(
            items=gantt,
            critical_path=critical if options.include_critical_path else None,
            network=network,
            resource_allocation=resources,
            recommendations=recommendations,
            warnings=sorted_warnings(warnings),
            truncated=truncated,
            anchor_date=anchor,
            filtered_out=scoped.excluded_ids,
        )
        logger.info(
            "Analysis done: %d items, %d warnings, truncated=%s",
            len(graph.items_by_id),
            len(result.warnings),
            truncated,
        )
        return _Run(graph=graph, cycles=cycles, critical=critical, result=result)


def critical_path_payload(cp: CriticalPathResult) -> dict[str, Any]:
    return {
        "path": list(cp.path),
        "total_duration_days": cp.total_duration_days,
        "slack": dict(cp.slack),
        "is_critical": dict(cp.is_critical),
        "excluded": list(cp.excluded),
        "schedule": {
            nid: {
                "duration": e.duration,
                "earliest_start": e.earliest_start,
                "earliest_finish": e.earliest_finish,
                "latest_start": e.latest_start,
                "latest_finish": e.latest_finish,
                "slack": e.slack,
            }
            for nid, e in cp.schedule.items()
        },
    }


def network_payload(net: NetworkAnalysis) -> dict[str, Any]:
    return {
        "node_count": net.node_count,
        "edge_count": net.edge_count,
        "density": net.density,
        "average_degree": net.average_degree,
        "bottlenecks": [
            {"id": b.id, "in_degree": b.in_degree, "out_degree": b.out_degree, "degree": b.degree}
            for b in net.bottlenecks
        ],
        "clusters": [{"ids": list(c.ids), "cohesion": c.cohesion} for c in net.clusters],
        "circular_dependencies": [list(c) for c in net.circular_dependencies],
        "health_score": net.health_score,
        "health_rating": net.health_rating,
        "truncated": net.truncated,
    }


def _span(run: _Run) -> float:
    """Project length in days; without scheduling edges the longest single item."""
    if run.critical.schedule:
        return run.critical.total_duration_days
    excluded = set(run.critical.excluded)
    durations = [
        it.estimated_duration_days for nid, it in run.graph.items_by_id.items() if nid not in excluded
    ]
    return max(durations, default=0.0)


def _earliest_start(run: _Run, nid: str) -> float:
    entry = run.critical.schedule.get(nid)
    return entry.earliest_start if entry else 0.0
