from __future__ import annotations

import logging
from dataclasses import dataclass

from timeline_engine.core.io.contracts import AnalysisOptions, LinkRecord
from timeline_engine.core.model import WorkItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterResult:
    items: list[WorkItem]
    links: list[LinkRecord]
    excluded_ids: list[str]


def apply_filters(
    items: list[WorkItem], links: list[LinkRecord], options: AnalysisOptions
) -> FilterResult:
    """Scope the analysis before the graph is built.

    Completed items (when include_completed is off) and items outside the date
    range are removed, together with every link touching them. Items without
    any explicit date are kept by the date filter.
    """
    kept: list[WorkItem] = []
    excluded: set[str] = set()

    for item in items:
        if not options.include_completed and item.status == "done":
            excluded.add(item.id)
            continue
        if options.date_range is not None and not _in_range(item, options):
            excluded.add(item.id)
            continue
        kept.append(item)

    kept_links = [
        link
        for link in links
        if link.source_id not in excluded and link.target_id not in excluded
    ]
    if excluded:
        logger.info(
            "Filtered out %d items and %d links before analysis",
            len(excluded),
            len(links) - len(kept_links),
        )
    return FilterResult(items=kept, links=kept_links, excluded_ids=sorted(excluded))


def _in_range(item: WorkItem, options: AnalysisOptions) -> bool:
    assert options.date_range is not None
    start = item.start_date or item.due_date
    end = item.due_date or item.start_date
    if start is None or end is None:
        return True
    if start > end:
        start, end = end, start
    return options.date_range.overlaps(start, end)
