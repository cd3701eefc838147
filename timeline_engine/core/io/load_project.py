from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import yaml

from timeline_engine.core.errors import ProjectLoadError

_PARSERS: dict[str, tuple[str, Callable[[str], Any], tuple[type[Exception], ...]]] = {
    ".yaml": ("E_YAML_PARSE", yaml.safe_load, (yaml.YAMLError,)),
    ".yml": ("E_YAML_PARSE", yaml.safe_load, (yaml.YAMLError,)),
    ".json": ("E_JSON_PARSE", json.loads, (json.JSONDecodeError,)),
}

# Snapshot section -> expected container type. Absent sections are fine.
_SECTIONS: dict[str, type] = {"items": list, "links": list, "options": dict}


def load_project(path: str) -> dict[str, Any]:
    """Load a tracker snapshot from YAML or JSON.

    The snapshot is a mapping with optional `items` and `links` lists, an
    optional `options` mapping and an optional `projectId` (or `project_id`).
    Section shapes are checked here; individual records are checked by
    parse_request, which skips bad ones with warnings.
    """
    p = Path(path)
    if not p.is_file():
        raise ProjectLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p))

    parser = _PARSERS.get(p.suffix.lower())
    if parser is None:
        raise ProjectLoadError(
            code="E_UNSUPPORTED_FORMAT",
            message=f"supported formats are {', '.join(sorted(_PARSERS))}",
            file=str(p),
        )
    parse_code, parse, parse_errors = parser

    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ProjectLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        data = parse(text)
    except parse_errors as e:
        raise ProjectLoadError(code=parse_code, message=str(e), file=str(p)) from e

    if not isinstance(data, dict):
        raise ProjectLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )

    snapshot: dict[str, Any] = {"__file__": str(p)}
    for section, expected in _SECTIONS.items():
        value = data.get(section)
        if value is not None and not isinstance(value, expected):
            kind = "a list" if expected is list else "a mapping"
            raise ProjectLoadError(
                code="E_INVALID_SNAPSHOT",
                message=f"{section} must be {kind}, got {type(value).__name__}",
                file=str(p),
                path=section,
            )
        snapshot[section] = value

    project_id = data.get("projectId", data.get("project_id"))
    if project_id is not None:
        if isinstance(project_id, bool) or not isinstance(project_id, (str, int)):
            raise ProjectLoadError(
                code="E_INVALID_SNAPSHOT",
                message="projectId must be a string",
                file=str(p),
                path="projectId",
            )
        snapshot["projectId"] = str(project_id)
    return snapshot
