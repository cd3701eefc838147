from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any

import typer

from timeline_engine.core.config.settings import EngineSettings, SettingsError, load_and_merge
from timeline_engine.core.engine import (
    AnalysisResult,
    TimelineEngine,
    critical_path_payload,
    network_payload,
)
from timeline_engine.core.errors import AnalysisWarning, EngineError, ProjectLoadError
from timeline_engine.core.graph.link_types import describe_link_labels
from timeline_engine.core.io.contracts import AnalysisRequest, parse_request
from timeline_engine.core.io.load_project import load_project
from timeline_engine.core.model import DependencyType
from timeline_engine.core.timeline.gantt import GanttItem, flatten

app = typer.Typer(add_completion=False, no_args_is_help=True)

_SETTINGS_HELP = "Optional YAML file overriding engine defaults"


@app.callback()
def _callback(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        envvar="TIMELINE_LOG_LEVEL",
        help="Logging level: DEBUG|INFO|WARNING|ERROR",
    ),
) -> None:
    """Timeline analysis CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )


@app.command("analyze")
def analyze(
    path: str = typer.Argument(..., help="Path to a project snapshot (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: str | None = typer.Option(
        None, "--settings-file", envvar="TIMELINE_SETTINGS_FILE", help=_SETTINGS_HELP
    ),
    critical_path: bool = typer.Option(False, "--critical-path", help="Include the critical path"),
    resources: bool = typer.Option(False, "--resources", help="Include resource allocation"),
    hierarchical: bool = typer.Option(False, "--hierarchical", help="Nest subtasks under parents"),
    exclude_completed: bool = typer.Option(
        False, "--exclude-completed", help="Drop done items before analysis"
    ),
) -> None:
    """Full timeline analysis: Gantt items, network metrics and recommendations."""
    _check_format(format)
    settings = _settings_or_exit(settings_file)
    request, warnings = _request_or_exit(path)

    options = request.options
    if critical_path:
        options = replace(options, include_critical_path=True)
    if resources:
        options = replace(options, include_resources=True)
    if hierarchical:
        options = replace(options, hierarchical_view=True)
    if exclude_completed:
        options = replace(options, include_completed=False)

    result = TimelineEngine(settings).analyze(replace(request, options=options), warnings)

    if format == "json":
        _emit_json("analyze", result.to_payload())
        return

    _print_result(result)


@app.command("critical-path")
def critical_path_cmd(
    path: str = typer.Argument(..., help="Path to a project snapshot (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: str | None = typer.Option(
        None, "--settings-file", envvar="TIMELINE_SETTINGS_FILE", help=_SETTINGS_HELP
    ),
) -> None:
    """Compute the CPM critical path and per-item slack."""
    _check_format(format)
    settings = _settings_or_exit(settings_file)
    request, warnings = _request_or_exit(path)

    options = replace(request.options, include_critical_path=True, include_network=False)
    result = TimelineEngine(settings).analyze(replace(request, options=options), warnings)
    assert result.critical_path is not None
    cp = result.critical_path

    if format == "json":
        payload = critical_path_payload(cp)
        payload["warnings"] = [w.to_dict() for w in result.warnings]
        _emit_json("critical-path", payload)
        return

    if not cp.path:
        typer.echo("No critical path (no schedulable dependencies)")
    else:
        typer.echo(f"Critical path ({cp.total_duration_days:g} days): {' -> '.join(cp.path)}")
        typer.echo("Slack:")
        for nid, slack in cp.slack.items():
            marker = " *" if cp.is_critical.get(nid) else ""
            typer.echo(f"- {nid}: {slack:g}{marker}")
    if cp.excluded:
        typer.echo(f"Excluded (cyclic): {', '.join(cp.excluded)}")
    _print_warnings(result.warnings)


@app.command("network")
def network_cmd(
    path: str = typer.Argument(..., help="Path to a project snapshot (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: str | None = typer.Option(
        None, "--settings-file", envvar="TIMELINE_SETTINGS_FILE", help=_SETTINGS_HELP
    ),
) -> None:
    """Dependency network metrics: density, bottlenecks, clusters, health."""
    _check_format(format)
    settings = _settings_or_exit(settings_file)
    request, warnings = _request_or_exit(path)

    options = replace(request.options, include_network=True)
    result = TimelineEngine(settings).analyze(replace(request, options=options), warnings)
    assert result.network is not None
    net = result.network

    if format == "json":
        payload = network_payload(net)
        payload["recommendations"] = list(result.recommendations)
        payload["warnings"] = [w.to_dict() for w in result.warnings]
        _emit_json("network", payload)
        return

    typer.echo(
        f"Nodes: {net.node_count}  Edges: {net.edge_count}  "
        f"Density: {net.density:.4f}  Avg degree: {net.average_degree:g}"
    )
    typer.echo(f"Health: {net.health_score:.2f} ({net.health_rating})")
    for b in net.bottlenecks:
        typer.echo(f"- bottleneck {b.id}: in={b.in_degree} out={b.out_degree}")
    for c in net.clusters:
        typer.echo(f"- cluster [{', '.join(c.ids)}] cohesion={c.cohesion:.3f}")
    for cycle in net.circular_dependencies:
        typer.echo(f"- cycle {' -> '.join(cycle + cycle[:1])}")
    for rec in result.recommendations:
        typer.echo(f"* {rec}")
    _print_warnings(result.warnings)


@app.command("check-link")
def check_link(
    path: str = typer.Argument(..., help="Path to a project snapshot (.yaml/.yml/.json)"),
    source: str = typer.Argument(..., help="Source item id"),
    target: str = typer.Argument(..., help="Target item id"),
    link_type: str = typer.Option("FS", "--type", help="Link type label (FS, SS, depends on, ...)"),
    lag: float = typer.Option(0.0, "--lag", help="Lag in days"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: str | None = typer.Option(
        None, "--settings-file", envvar="TIMELINE_SETTINGS_FILE", help=_SETTINGS_HELP
    ),
) -> None:
    """Preview the schedule impact of adding one dependency."""
    _check_format(format)
    settings = _settings_or_exit(settings_file)
    request, _ = _request_or_exit(path)

    try:
        impact = TimelineEngine(settings).check_new_dependency(
            request, source, target, type_label=link_type, lag_days=lag
        )
    except EngineError as e:
        _print_errors([e])
        raise typer.Exit(code=2)

    if format == "json":
        _emit_json("check-link", impact.to_dict())
    else:
        if impact.would_create_cycle:
            typer.echo(f"REJECT: would create cycle {' -> '.join(impact.cycle_path + [impact.source_id])}")
        else:
            typer.echo(
                f"OK: {impact.source_id} -> {impact.target_id} ({impact.type}), "
                f"delay {impact.project_delay_days:g} days, "
                f"{len(impact.affected_items)} items affected"
            )
        for rec in impact.recommendations:
            typer.echo(f"* {rec}")

    if impact.would_create_cycle:
        raise typer.Exit(code=1)


@app.command("link-types")
def link_types() -> None:
    """List the link labels understood by the graph builder."""
    grouped = describe_link_labels()
    typer.echo("Link types:")
    for dep_type in DependencyType:
        labels = grouped.get(dep_type.value, [])
        typer.echo(f"- {dep_type.value}: {dep_type.description}")
        if labels:
            typer.echo(f"    labels: {', '.join(labels)}")


def _check_format(format: str) -> None:
    if format not in ("text", "json"):
        err = EngineError(
            code="E_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: text, json)",
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _settings_or_exit(settings_file: str | None) -> EngineSettings:
    try:
        return load_and_merge(settings_file)
    except FileNotFoundError:
        _print_errors(
            [
                ProjectLoadError(
                    code="E_SETTINGS_FILE_NOT_FOUND",
                    message=f"settings file not found: {settings_file}",
                    path="settings_file",
                )
            ]
        )
        raise typer.Exit(code=1)
    except SettingsError as e:
        _print_errors(
            [
                EngineError(
                    code="E_SETTINGS_FILE_INVALID",
                    message=str(e),
                    file=settings_file,
                    path="settings_file",
                )
            ]
        )
        raise typer.Exit(code=2)


def _request_or_exit(path: str) -> tuple[AnalysisRequest, list[AnalysisWarning]]:
    try:
        project = load_project(path)
    except ProjectLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)
    return parse_request(project)


def _emit_json(command: str, payload: dict[str, Any]) -> None:
    typer.echo(json.dumps({"tool": "timeline", "command": command, **payload}, indent=2, sort_keys=True))


def _print_result(result: AnalysisResult) -> None:
    typer.echo(f"Project start: {result.anchor_date.isoformat()}")
    typer.echo(f"Items: {len(result.items)}")
    for item in flatten(result.items):
        _print_gantt_item(item)

    if result.critical_path is not None:
        cp = result.critical_path
        if cp.path:
            typer.echo(f"Critical path ({cp.total_duration_days:g} days): {' -> '.join(cp.path)}")
        else:
            typer.echo("Critical path: none")

    if result.network is not None:
        net = result.network
        typer.echo(f"Health: {net.health_score:.2f} ({net.health_rating})")

    if result.resource_allocation is not None:
        for name, load in sorted(result.resource_allocation.by_assignee.items()):
            flag = " OVERLOADED" if name in result.resource_allocation.overloaded else ""
            typer.echo(f"- {name}: {load.item_count} items, {load.total_days:g} days{flag}")

    for rec in result.recommendations:
        typer.echo(f"* {rec}")
    if result.truncated:
        typer.echo("NOTE: results truncated")
    _print_warnings(result.warnings)


def _print_gantt_item(item: GanttItem) -> None:
    start = item.start.isoformat() if item.start else "?"
    end = item.end.isoformat() if item.end else "?"
    marks = []
    if item.on_critical_path:
        marks.append("critical")
    if item.participates_in_cycle:
        marks.append("cycle")
    suffix = f" [{', '.join(marks)}]" if marks else ""
    typer.echo(f"{'  ' * (item.level + 1)}- {item.id} {start}..{end} {item.title}{suffix}")


def _print_warnings(warnings: list[AnalysisWarning]) -> None:
    for w in warnings:
        typer.echo(f"WARNING {w}", err=True)


def _print_errors(errors: list[EngineError]) -> None:
    for e in errors:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="timeline")


cli = typer.main.get_command(app)


if __name__ == "__main__":
    main()
