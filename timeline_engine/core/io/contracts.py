from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from timeline_engine.core.errors import AnalysisWarning


@dataclass(frozen=True)
class ItemRecord:
    id: str
    title: str
    estimated_duration_days: Optional[float] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[str] = None
    assignee: Optional[str] = None


@dataclass(frozen=True)
class LinkRecord:
    source_id: str
    target_id: str
    type_label: Optional[str] = None
    lag_days: float = 0.0
    constraint: str = "hard"


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def overlaps(self, start: date, end: date) -> bool:
        return start <= self.end and end >= self.start


@dataclass(frozen=True)
class AnalysisOptions:
    project_start_date: Optional[date] = None
    include_completed: bool = True
    date_range: Optional[DateRange] = None
    hierarchical_view: bool = False
    include_resources: bool = False
    include_critical_path: bool = False
    include_network: bool = True
    overload_threshold_days: Optional[float] = None

    def fingerprint(self) -> dict[str, Any]:
        """Parameters that scope an analysis; used for cache keys."""
        return {
            "project_start_date": _iso(self.project_start_date),
            "include_completed": self.include_completed,
            "date_range": (
                [_iso(self.date_range.start), _iso(self.date_range.end)]
                if self.date_range
                else None
            ),
            "hierarchical_view": self.hierarchical_view,
            "include_resources": self.include_resources,
            "include_critical_path": self.include_critical_path,
            "include_network": self.include_network,
            "overload_threshold_days": self.overload_threshold_days,
        }


@dataclass(frozen=True)
class AnalysisRequest:
    items: list[ItemRecord]
    links: list[LinkRecord]
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    project_id: Optional[str] = None


def parse_request(obj: dict[str, Any]) -> tuple[AnalysisRequest, list[AnalysisWarning]]:
    """Convert a loosely structured request mapping into typed records.

    Accepts the camelCase keys used by the issue tracker as well as snake_case.
    Malformed records are skipped and reported as warnings; nothing is raised.
    """
    file = obj.get("__file__") if isinstance(obj.get("__file__"), str) else None
    warnings: list[AnalysisWarning] = []

    raw_items = obj.get("items")
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_ITEM",
                message="items must be an array; treating as empty",
                file=file,
                path="items",
            )
        )
        raw_items = []

    items: list[ItemRecord] = []
    for i, raw in enumerate(raw_items):
        item = _parse_item(raw, f"items[{i}]", file, warnings)
        if item is not None:
            items.append(item)

    raw_links = obj.get("links")
    if raw_links is None:
        raw_links = []
    if not isinstance(raw_links, list):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_LINK",
                message="links must be an array; treating as empty",
                file=file,
                path="links",
            )
        )
        raw_links = []

    links: list[LinkRecord] = []
    for i, raw in enumerate(raw_links):
        link = _parse_link(raw, f"links[{i}]", file, warnings)
        if link is not None:
            links.append(link)

    options = parse_options(obj.get("options"), file, warnings)

    project_id = _get(obj, "projectId", "project_id")
    request = AnalysisRequest(
        items=items,
        links=links,
        options=options,
        project_id=str(project_id) if project_id is not None else None,
    )
    return request, warnings


def parse_options(
    raw: Any, file: Optional[str], warnings: list[AnalysisWarning]
) -> AnalysisOptions:
    if raw is None:
        return AnalysisOptions()
    if not isinstance(raw, dict):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_OPTION",
                message="options must be an object; using defaults",
                file=file,
                path="options",
            )
        )
        return AnalysisOptions()

    project_start = _parse_date_field(
        _get(raw, "projectStartDate", "project_start_date"),
        "options.projectStartDate",
        file,
        warnings,
    )

    date_range: Optional[DateRange] = None
    raw_range = _get(raw, "dateRange", "date_range")
    if raw_range is not None:
        date_range = _parse_date_range(raw_range, file, warnings)

    threshold = _get(raw, "overloadThresholdDays", "overload_threshold_days")
    if threshold is not None and (
        isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or threshold < 0
    ):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_OPTION",
                message="overloadThresholdDays must be a non-negative number; using default",
                file=file,
                path="options.overloadThresholdDays",
            )
        )
        threshold = None

    return AnalysisOptions(
        project_start_date=project_start,
        include_completed=_flag(raw, "includeCompleted", "include_completed", True),
        date_range=date_range,
        hierarchical_view=_flag(raw, "hierarchicalView", "hierarchical_view", False),
        include_resources=_flag(raw, "includeResources", "include_resources", False),
        include_critical_path=_flag(raw, "includeCriticalPath", "include_critical_path", False),
        include_network=_flag(raw, "includeNetwork", "include_network", True),
        overload_threshold_days=float(threshold) if threshold is not None else None,
    )


def parse_date(v: Any) -> Optional[date]:
    """Parse ISO strings, dates/datetimes and epoch milliseconds. Raises ValueError."""
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, bool):
        raise ValueError(f"not a date: {v!r}")
    if isinstance(v, (int, float)):
        # Trackers report timestamps in epoch milliseconds.
        return datetime.fromtimestamp(v / 1000.0, tz=timezone.utc).date()
    if isinstance(v, str):
        s = v.strip()
        if len(s) == 10:
            return date.fromisoformat(s)
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    raise ValueError(f"not a date: {v!r}")


def _parse_item(
    raw: Any, path: str, file: Optional[str], warnings: list[AnalysisWarning]
) -> Optional[ItemRecord]:
    if not isinstance(raw, dict):
        warnings.append(
            AnalysisWarning(code="W_INVALID_ITEM", message="item must be an object", file=file, path=path)
        )
        return None

    iid = raw.get("id")
    if isinstance(iid, int) and not isinstance(iid, bool):
        iid = str(iid)
    if not isinstance(iid, str) or not iid.strip():
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_ITEM",
                message="id is required and must be a non-empty string",
                file=file,
                path=f"{path}.id",
            )
        )
        return None

    title = _get(raw, "title", "summary")
    duration = _get(raw, "estimatedDurationDays", "estimated_duration_days")
    if duration is not None and not _finite_number(duration):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_DURATION",
                message=f"estimatedDurationDays must be a finite number, got {duration!r}",
                file=file,
                path=f"{path}.estimatedDurationDays",
            )
        )
        duration = None

    status = raw.get("status")
    assignee = raw.get("assignee")
    return ItemRecord(
        id=iid.strip(),
        title=title if isinstance(title, str) else iid.strip(),
        estimated_duration_days=float(duration) if duration is not None else None,
        start_date=_parse_date_field(_get(raw, "startDate", "start_date"), f"{path}.startDate", file, warnings),
        due_date=_parse_date_field(_get(raw, "dueDate", "due_date"), f"{path}.dueDate", file, warnings),
        status=status if isinstance(status, str) else None,
        assignee=assignee if isinstance(assignee, str) and assignee.strip() else None,
    )


def _parse_link(
    raw: Any, path: str, file: Optional[str], warnings: list[AnalysisWarning]
) -> Optional[LinkRecord]:
    if not isinstance(raw, dict):
        warnings.append(
            AnalysisWarning(code="W_INVALID_LINK", message="link must be an object", file=file, path=path)
        )
        return None

    source = _get(raw, "sourceId", "source_id")
    target = _get(raw, "targetId", "target_id")
    if not isinstance(source, str) or not source or not isinstance(target, str) or not target:
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_LINK",
                message="sourceId and targetId are required strings",
                file=file,
                path=path,
            )
        )
        return None

    label = _get(raw, "typeLabel", "type_label")
    if label is None:
        label = raw.get("type")
    if label is not None and not isinstance(label, str):
        label = str(label)

    lag = _get(raw, "lagDays", "lag_days")
    if lag is None:
        lag = 0.0
    if not _finite_number(lag):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_LINK",
                message=f"lagDays must be a finite number, got {lag!r}; using 0",
                file=file,
                path=f"{path}.lagDays",
            )
        )
        lag = 0.0

    constraint = raw.get("constraint", "hard")
    if constraint not in ("hard", "soft"):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_LINK",
                message=f"constraint must be hard|soft, got {constraint!r}; using hard",
                file=file,
                path=f"{path}.constraint",
            )
        )
        constraint = "hard"

    return LinkRecord(
        source_id=source,
        target_id=target,
        type_label=label,
        lag_days=float(lag),
        constraint=constraint,
    )


def _parse_date_range(
    raw: Any, file: Optional[str], warnings: list[AnalysisWarning]
) -> Optional[DateRange]:
    if not isinstance(raw, dict):
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_OPTION",
                message="dateRange must be an object with start/end; ignoring",
                file=file,
                path="options.dateRange",
            )
        )
        return None

    start = _parse_date_field(raw.get("start"), "options.dateRange.start", file, warnings)
    end = _parse_date_field(raw.get("end"), "options.dateRange.end", file, warnings)
    if start is None and end is None:
        return None
    # Open-ended ranges extend to the far past/future.
    start = start or date.min
    end = end or date.max
    if start > end:
        warnings.append(
            AnalysisWarning(
                code="W_DATE_RANGE_SWAPPED",
                message=f"dateRange start {start.isoformat()} is after end {end.isoformat()}; swapped",
                file=file,
                path="options.dateRange",
            )
        )
        start, end = end, start
    return DateRange(start=start, end=end)


def _parse_date_field(
    v: Any, path: str, file: Optional[str], warnings: list[AnalysisWarning]
) -> Optional[date]:
    try:
        return parse_date(v)
    except (ValueError, OverflowError, OSError) as e:
        warnings.append(
            AnalysisWarning(
                code="W_INVALID_DATE",
                message=f"unparseable date {v!r}: {e}",
                file=file,
                path=path,
            )
        )
        return None


def _flag(raw: dict[str, Any], camel: str, snake: str, default: bool) -> bool:
    v = _get(raw, camel, snake)
    return v if isinstance(v, bool) else default


def _get(raw: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in raw:
            return raw[k]
    return None


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _finite_number(v: Any) -> bool:
    return not isinstance(v, bool) and isinstance(v, (int, float)) and math.isfinite(v)
