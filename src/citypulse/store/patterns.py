"""Pattern and statistics queries over the cold tier."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from citypulse.models import EventCategory
from citypulse.store.base import AggregateFilter, ColdStore, GroupDimension
from citypulse.utils.logging import get_logger
from citypulse.utils.time import utc_now


logger = get_logger(__name__)

AREA_PATTERN_DIMS = (
    GroupDimension.TIME_PERIOD,
    GroupDimension.DAY_TYPE,
    GroupDimension.AREA,
    GroupDimension.SEVERITY,
)
CITYWIDE_PATTERN_DIMS = (
    GroupDimension.TIME_PERIOD,
    GroupDimension.DAY_TYPE,
    GroupDimension.SEVERITY,
)
MIN_PATTERNS = 3


def event_patterns(
    cold: ColdStore,
    category: EventCategory,
    window_days: int,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Recurring (time period, day type, area, severity) buckets for a category.

    Citywide rows need at least two events. When fewer than three rows come
    back, severity-only rows over twice the window are appended.
    """
    if window_days <= 0:
        return []

    filters = AggregateFilter(category=category)
    patterns: list[dict[str, Any]] = []

    for row in cold.aggregate(filters, AREA_PATTERN_DIMS, window_days, now):
        patterns.append({"category": category.value, **row.to_dict()})

    for row in cold.aggregate(filters, CITYWIDE_PATTERN_DIMS, window_days, now):
        if row.frequency >= 2:
            patterns.append({"category": category.value, "area": "citywide", **row.to_dict()})

    patterns.sort(key=lambda item: item["frequency"], reverse=True)
    logger.info(
        "patterns.found category=%s days=%s count=%s", category.value, window_days, len(patterns)
    )

    if len(patterns) < MIN_PATTERNS:
        for row in cold.aggregate(filters, (GroupDimension.SEVERITY,), window_days * 2, now):
            patterns.append(
                {
                    "category": category.value,
                    "time_period": "general",
                    "day_type": "all_days",
                    "area": "citywide",
                    **row.to_dict(),
                }
            )

    return patterns


def event_statistics(
    cold: ColdStore,
    window_days: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Counts per category and severity over the window."""
    rows = cold.aggregate(
        AggregateFilter(),
        (GroupDimension.CATEGORY, GroupDimension.SEVERITY),
        window_days,
        now,
    )
    return {
        "statistics": [row.to_dict() for row in rows],
        "total_events": sum(row.frequency for row in rows),
        "window_days": window_days,
        "generated_at": (now or utc_now()).isoformat(),
    }
