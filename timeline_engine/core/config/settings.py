from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from timeline_engine.core.graph.link_types import LINK_LABELS, normalize_label


@dataclass(frozen=True)
class HealthWeights:
    cycle: float = 0.4
    bottleneck: float = 0.3
    density: float = 0.3
    # Share of nodes expected to be bottlenecks before any penalty applies.
    bottleneck_baseline: float = 0.1
    ideal_density_min: float = 0.01
    ideal_density_max: float = 0.3


@dataclass(frozen=True)
class EngineSettings:
    default_duration_days: float = 1.0
    default_link_type: str = "FS"

    max_reported_cycles: int = 50
    max_reported_clusters: int = 100

    bottleneck_min_degree: int = 3
    bottleneck_min_count: int = 3
    bottleneck_fraction: float = 0.1

    overload_threshold_days: float = 20.0
    low_slack_days: float = 2.0
    max_hierarchy_depth: int = 32

    cache_ttl_seconds: float = 300.0
    cache_max_keys: int = 1000

    health: HealthWeights = field(default_factory=HealthWeights)


DEFAULT_SETTINGS = EngineSettings()


class SettingsError(ValueError):
    pass


_INT_KEYS = {
    "max_reported_cycles",
    "max_reported_clusters",
    "bottleneck_min_degree",
    "bottleneck_min_count",
    "cache_max_keys",
    "max_hierarchy_depth",
}
_STR_KEYS = {"default_link_type"}


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      default_duration_days: 2
      max_reported_cycles: 20
      health:
        cycle: 0.5
        density: 0.2

    Returns a flat mapping of validated overrides; `health` stays a nested mapping.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SettingsError(f"invalid YAML in settings file: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SettingsError("settings file must be a mapping of name -> value")

    known = {f.name for f in fields(EngineSettings)}
    health_known = {f.name for f in fields(HealthWeights)}

    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k not in known:
            raise SettingsError(f"unknown setting: {k}")
        if k == "health":
            if not isinstance(v, dict):
                raise SettingsError("health must be a mapping of weight name -> number")
            weights: dict[str, float] = {}
            for hk, hv in v.items():
                if hk not in health_known:
                    raise SettingsError(f"unknown health weight: {hk}")
                weights[hk] = _number(f"health.{hk}", hv)
            out["health"] = weights
        elif k in _STR_KEYS:
            if not isinstance(v, str) or not v.strip():
                raise SettingsError(f"{k} must be a non-empty string")
            if normalize_label(v) not in LINK_LABELS:
                raise SettingsError(f"{k}: unknown link type {v!r}")
            out[k] = v.strip()
        elif k in _INT_KEYS:
            if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                raise SettingsError(f"{k} must be a non-negative integer")
            out[k] = v
        else:
            out[k] = _number(k, v)
    return out


def merged_settings(overrides: dict[str, Any] | None = None) -> EngineSettings:
    """Return DEFAULT_SETTINGS with optional overrides applied."""
    if not overrides:
        return DEFAULT_SETTINGS
    top = {k: v for k, v in overrides.items() if k != "health"}
    settings = replace(DEFAULT_SETTINGS, **top)
    if "health" in overrides:
        settings = replace(settings, health=replace(settings.health, **overrides["health"]))
    return settings


def load_and_merge(settings_file: str | None) -> EngineSettings:
    if not settings_file:
        return merged_settings()
    return merged_settings(load_settings_file(settings_file))


def _number(name: str, v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
        raise SettingsError(f"{name} must be a non-negative number")
    return float(v)
