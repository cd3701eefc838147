from __future__ import annotations

from typing import Optional

from timeline_engine.core.config.settings import DEFAULT_SETTINGS, EngineSettings
from timeline_engine.core.model import CriticalPathResult, Graph, NetworkAnalysis
from timeline_engine.core.timeline.gantt import ResourceAllocation

HIGH_DENSITY = 0.5
HIGH_AVERAGE_DEGREE = 4.0


def network_recommendations(network: NetworkAnalysis) -> list[str]:
    out: list[str] = []
    if network.circular_dependencies:
        out.append(
            f"{len(network.circular_dependencies)} circular dependencies found - "
            "break them before relying on the schedule"
        )
    if network.density > HIGH_DENSITY:
        out.append("High dependency density detected - consider simplifying relationships")
    if network.bottlenecks:
        out.append(f"{len(network.bottlenecks)} bottleneck items found - prioritize resolving these")
    if network.average_degree > HIGH_AVERAGE_DEGREE:
        out.append("High average dependencies - consider breaking down complex items")
    if not out:
        out.append("Dependency network looks healthy")
    return out


def critical_path_recommendations(
    graph: Graph,
    critical: CriticalPathResult,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> list[str]:
    if not critical.path:
        return []

    out = [f"Critical path identified with {len(critical.path)} items"]

    unfinished = [nid for nid in critical.path if graph.items_by_id[nid].status != "done"]
    if unfinished:
        out.append(f"{len(unfinished)} critical path items need attention")

    near_critical = [
        nid
        for nid, slack in critical.slack.items()
        if not critical.is_critical.get(nid, False) and slack < settings.low_slack_days
    ]
    if near_critical:
        out.append(f"{len(near_critical)} items have minimal slack time")
    return out


def resource_recommendations(resources: Optional[ResourceAllocation]) -> list[str]:
    if resources is None or not resources.overloaded:
        return []
    out: list[str] = []
    for name in resources.overloaded:
        load = resources.by_assignee[name]
        out.append(
            f"{name} is overloaded with {load.total_days:g} days of work "
            f"(threshold {resources.threshold_days:g}) - consider rebalancing"
        )
    return out


def dependency_recommendations(
    *,
    project_delay_days: float,
    critical_path_changed: bool,
    affected_count: int,
) -> list[str]:
    out: list[str] = []
    if project_delay_days > 0:
        out.append(f"This dependency may delay the project by {project_delay_days:g} days")
    if critical_path_changed:
        out.append("This dependency affects the critical path - monitor closely")
    if affected_count > 0:
        out.append(f"{affected_count} items will be affected by this dependency")
    return out
