"""Storage tier contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

from citypulse.models import CanonicalEvent, EventCategory, EventSeverity


class GroupDimension(str, Enum):
    """Columns an aggregate query may group by."""

    CATEGORY = "category"
    SEVERITY = "severity"
    AREA = "area"
    TIME_PERIOD = "time_period"
    DAY_TYPE = "day_type"
    DAY = "day"


@dataclass(frozen=True)
class AggregateFilter:
    """Equality filters applied before grouping. ``None`` means any."""

    category: Optional[EventCategory] = None
    severity: Optional[EventSeverity] = None
    area: Optional[str] = None


@dataclass
class AggregateRow:
    dims: dict[str, str] = field(default_factory=dict)
    frequency: int = 0
    avg_confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**self.dims, "frequency": self.frequency, "avg_confidence": self.avg_confidence}


class HotStore(Protocol):
    """TTL-bounded store. Reads return only non-expired records, newest first."""

    def put(self, event: CanonicalEvent, ttl: timedelta) -> None:
        """Store a record that expires ``ttl`` from now."""

    def get_by_id(self, event_id: str) -> Optional[CanonicalEvent]:
        """Point lookup."""

    def query_by_area(self, area: str, limit: int) -> list[CanonicalEvent]:
        """Records whose location area matches, case-insensitively."""

    def query_by_category_severity(
        self,
        category: EventCategory,
        severity: EventSeverity,
        limit: int,
    ) -> list[CanonicalEvent]:
        """Records with this exact category and severity."""

    def query_recent(self, limit: int) -> list[CanonicalEvent]:
        """Most recently created records."""

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Drop expired entries; return how many were removed."""


class ColdStore(Protocol):
    """Append-only analytical store."""

    def append(self, event: CanonicalEvent) -> None:
        """Add a record. Never updates or deletes."""

    def aggregate(
        self,
        filters: AggregateFilter,
        group_by: Sequence[GroupDimension],
        window_days: int,
        now: Optional[datetime] = None,
    ) -> list[AggregateRow]:
        """Counts per group over the last ``window_days``, most frequent first."""

    def query_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        since: datetime,
    ) -> list[CanonicalEvent]:
        """Records created after ``since`` within the radius, newest first."""

    def query_by_category_severity(
        self,
        category: EventCategory,
        severity: EventSeverity,
        limit: int,
        since: datetime,
    ) -> list[CanonicalEvent]:
        """Records created after ``since`` with this category and severity."""

    def query_by_area(self, area: str, limit: int, since: datetime) -> list[CanonicalEvent]:
        """Records created after ``since`` in this area."""

    def query_recent(self, limit: int, since: datetime) -> list[CanonicalEvent]:
        """Records created after ``since``, newest first."""
