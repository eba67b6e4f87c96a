"""In-process hot and cold tiers for local runs and tests."""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from citypulse.models import CanonicalEvent, EventCategory, EventSeverity
from citypulse.store.base import AggregateFilter, AggregateRow, GroupDimension
from citypulse.utils.geo import haversine_km
from citypulse.utils.time import day_type, time_period, utc_now


Clock = Callable[[], datetime]


def _newest_first(events: list[CanonicalEvent]) -> list[CanonicalEvent]:
    return sorted(events, key=lambda event: event.created_at, reverse=True)


def _same_area(event: CanonicalEvent, area: str) -> bool:
    return (event.area or "").strip().lower() == area.strip().lower()


class InMemoryHotStore:
    """Thread-safe dict of records with per-record deadlines.

    Expired entries are hidden at read time and evicted lazily.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, tuple[datetime, CanonicalEvent]] = {}

    def put(self, event: CanonicalEvent, ttl: timedelta) -> None:
        deadline = self._clock() + ttl
        with self._lock:
            self._records[event.id] = (deadline, event)

    def _live(self) -> list[CanonicalEvent]:
        now = self._clock()
        with self._lock:
            expired = [key for key, (deadline, _) in self._records.items() if deadline <= now]
            for key in expired:
                self._records.pop(key, None)
            return [event for _, event in self._records.values()]

    def get_by_id(self, event_id: str) -> Optional[CanonicalEvent]:
        now = self._clock()
        with self._lock:
            item = self._records.get(event_id)
            if not item:
                return None
            deadline, event = item
            if deadline <= now:
                self._records.pop(event_id, None)
                return None
            return event

    def query_by_area(self, area: str, limit: int) -> list[CanonicalEvent]:
        matches = [event for event in self._live() if _same_area(event, area)]
        return _newest_first(matches)[:limit]

    def query_by_category_severity(
        self,
        category: EventCategory,
        severity: EventSeverity,
        limit: int,
    ) -> list[CanonicalEvent]:
        matches = [
            event
            for event in self._live()
            if event.category == category and event.severity == severity
        ]
        return _newest_first(matches)[:limit]

    def query_recent(self, limit: int) -> list[CanonicalEvent]:
        return _newest_first(self._live())[:limit]

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [key for key, (deadline, _) in self._records.items() if deadline <= now]
            for key in expired:
                del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def dimension_value(event: CanonicalEvent, dimension: GroupDimension) -> str:
    """Bucket label of an event along one aggregate dimension."""
    if dimension == GroupDimension.CATEGORY:
        return event.category.value
    if dimension == GroupDimension.SEVERITY:
        return event.severity.value
    if dimension == GroupDimension.AREA:
        return event.area or "unknown"
    if dimension == GroupDimension.TIME_PERIOD:
        return time_period(event.created_at)
    if dimension == GroupDimension.DAY_TYPE:
        return day_type(event.created_at)
    return event.created_at.date().isoformat()


def _matches(event: CanonicalEvent, filters: AggregateFilter) -> bool:
    if filters.category is not None and event.category != filters.category:
        return False
    if filters.severity is not None and event.severity != filters.severity:
        return False
    if filters.area is not None and not _same_area(event, filters.area):
        return False
    return True


class InMemoryColdStore:
    """Append-only list with the same aggregate contract as the SQL tier."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._events: list[CanonicalEvent] = []

    def append(self, event: CanonicalEvent) -> None:
        with self._lock:
            self._events.append(event)

    def _snapshot(self) -> list[CanonicalEvent]:
        with self._lock:
            return list(self._events)

    def aggregate(
        self,
        filters: AggregateFilter,
        group_by: Sequence[GroupDimension],
        window_days: int,
        now: Optional[datetime] = None,
    ) -> list[AggregateRow]:
        cutoff = (now or self._clock()) - timedelta(days=window_days)
        buckets: dict[tuple[str, ...], list[CanonicalEvent]] = defaultdict(list)
        for event in self._snapshot():
            if event.created_at < cutoff or not _matches(event, filters):
                continue
            key = tuple(dimension_value(event, dim) for dim in group_by)
            buckets[key].append(event)

        rows = [
            AggregateRow(
                dims={dim.value: value for dim, value in zip(group_by, key)},
                frequency=len(members),
                avg_confidence=round(
                    sum(member.confidence_score for member in members) / len(members), 3
                ),
            )
            for key, members in buckets.items()
        ]
        rows.sort(key=lambda row: row.frequency, reverse=True)
        return rows

    def query_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        since: datetime,
    ) -> list[CanonicalEvent]:
        matches = [
            event
            for event in self._snapshot()
            if event.created_at >= since
            and event.location is not None
            and event.location.has_coordinates
            and haversine_km(
                latitude, longitude, event.location.latitude, event.location.longitude
            )
            <= radius_km
        ]
        return _newest_first(matches)[:limit]

    def query_by_category_severity(
        self,
        category: EventCategory,
        severity: EventSeverity,
        limit: int,
        since: datetime,
    ) -> list[CanonicalEvent]:
        matches = [
            event
            for event in self._snapshot()
            if event.created_at >= since
            and event.category == category
            and event.severity == severity
        ]
        return _newest_first(matches)[:limit]

    def query_by_area(self, area: str, limit: int, since: datetime) -> list[CanonicalEvent]:
        matches = [
            event
            for event in self._snapshot()
            if event.created_at >= since and _same_area(event, area)
        ]
        return _newest_first(matches)[:limit]

    def query_recent(self, limit: int, since: datetime) -> list[CanonicalEvent]:
        matches = [event for event in self._snapshot() if event.created_at >= since]
        return _newest_first(matches)[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
