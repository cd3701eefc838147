from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from timeline_engine.core.model import DependencyType


@dataclass(frozen=True)
class LinkResolution:
    type: DependencyType
    # True when the label reads "source depends on target", so endpoints must be swapped.
    reversed: bool = False
    known: bool = True


# Normalized label -> (type, reversed). Labels are lower-cased with runs of
# spaces, underscores and dashes collapsed to a single space, so the enum
# values ("depends-on", "blocks", ...) resolve through the same table.
LINK_LABELS: dict[str, tuple[DependencyType, bool]] = {
    # CPM codes
    "fs": (DependencyType.FS, False),
    "finish to start": (DependencyType.FS, False),
    "ss": (DependencyType.SS, False),
    "start to start": (DependencyType.SS, False),
    "start together": (DependencyType.SS, False),
    "ff": (DependencyType.FF, False),
    "finish to finish": (DependencyType.FF, False),
    "finish together": (DependencyType.FF, False),
    "sf": (DependencyType.SF, False),
    "start to finish": (DependencyType.SF, False),
    # Tracker link names
    "blocks": (DependencyType.BLOCKS, False),
    "block": (DependencyType.BLOCKS, False),
    "is blocked by": (DependencyType.BLOCKS, True),
    "blocked by": (DependencyType.BLOCKS, True),
    "depends on": (DependencyType.DEPENDS_ON, True),
    "depends": (DependencyType.DEPENDS_ON, True),
    "depend": (DependencyType.DEPENDS_ON, True),
    "is required for": (DependencyType.DEPENDS_ON, False),
    "required for": (DependencyType.DEPENDS_ON, False),
    "relates to": (DependencyType.RELATED, False),
    "relates": (DependencyType.RELATED, False),
    "related": (DependencyType.RELATED, False),
    "duplicates": (DependencyType.RELATED, False),
    "is duplicated by": (DependencyType.RELATED, False),
    "duplicate": (DependencyType.RELATED, False),
    "subtask": (DependencyType.SUBTASK, False),
    "parent for": (DependencyType.SUBTASK, False),
    "parent of": (DependencyType.SUBTASK, False),
    "subtask of": (DependencyType.SUBTASK, True),
    "child of": (DependencyType.SUBTASK, True),
}


def normalize_label(label: str) -> str:
    return re.sub(r"[\s_\-]+", " ", label.strip().lower()).strip()


def resolve_link_label(label: Optional[str], default: str = "FS") -> LinkResolution:
    """Map a loosely typed tracker label onto a DependencyType.

    A missing/blank label resolves to *default*; unknown labels resolve to
    RELATED with known=False so they never influence scheduling.
    """
    if label is None or not label.strip():
        fallback = LINK_LABELS.get(normalize_label(default), (DependencyType.FS, False))
        return LinkResolution(type=fallback[0], reversed=False)

    hit = LINK_LABELS.get(normalize_label(label))
    if hit is None:
        return LinkResolution(type=DependencyType.RELATED, known=False)

    dep_type, is_reversed = hit
    return LinkResolution(type=dep_type, reversed=is_reversed)


def describe_link_labels() -> dict[str, list[str]]:
    """Group known labels by the dependency type they resolve to."""
    out: dict[str, list[str]] = {t.value: [] for t in DependencyType}
    for label, (dep_type, is_reversed) in sorted(LINK_LABELS.items()):
        out[dep_type.value].append(f"{label} (reversed)" if is_reversed else label)
    return out
