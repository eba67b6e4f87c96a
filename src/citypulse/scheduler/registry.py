"""Registry of polling targets and their fetch windows."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol

from citypulse.models import LocationPriority, SourceLocation
from citypulse.utils.geo import valid_coordinates
from citypulse.utils.logging import get_logger
from citypulse.utils.time import utc_now


logger = get_logger(__name__)


def is_eligible(last_fetched_at: Optional[datetime], window: timedelta, now: datetime) -> bool:
    """A location is due when it was never fetched or its window has elapsed."""
    return last_fetched_at is None or now - last_fetched_at >= window


class LocationRepository(Protocol):
    """Durable storage for source locations."""

    def load_all(self) -> list[SourceLocation]:
        """Every stored location, active or not."""

    def save(self, location: SourceLocation) -> None:
        """Insert or update one location."""


@dataclass
class EligibilityStats:
    total: int = 0
    active: int = 0
    in_flight: int = 0
    eligible: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "active": self.active,
            "in_flight": self.in_flight,
            "eligible": dict(self.eligible),
            "by_priority": dict(self.by_priority),
        }


class LocationRegistry:
    """Owns the set of source locations and their per-location fetch state.

    Every read and mutation goes through one lock. ``claim`` marks the
    selected locations as in flight in the same critical section that checks
    eligibility, so two concurrent ticks never fetch the same location.
    Callers receive copies; the registry's own records are never shared.
    """

    def __init__(
        self,
        locations: Iterable[SourceLocation] = (),
        repository: Optional[LocationRepository] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._locations: dict[str, SourceLocation] = {loc.id: loc.model_copy() for loc in locations}
        self._in_flight: set[str] = set()
        self._emergency_in_flight: set[str] = set()
        self._repository = repository

    @classmethod
    def from_repository(cls, repository: LocationRepository) -> "LocationRegistry":
        locations = repository.load_all()
        logger.info("registry.loaded count=%s", len(locations))
        return cls(locations, repository=repository)

    def _persist(self, location: SourceLocation) -> None:
        if self._repository is not None:
            self._repository.save(location)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locations)

    def register(self, location: SourceLocation) -> SourceLocation:
        has_area = bool(location.area.strip())
        if not has_area or not valid_coordinates(location.latitude, location.longitude):
            raise ValueError(f"location {location.short_name()!r} has invalid coordinates or area")
        with self._lock:
            self._locations[location.id] = location.model_copy()
            stored = self._locations[location.id].model_copy()
        self._persist(stored)
        logger.info(
            "registry.register id=%s area=%s priority=%s",
            stored.id,
            stored.area,
            stored.priority.value,
        )
        return stored

    def get(self, location_id: str) -> Optional[SourceLocation]:
        with self._lock:
            location = self._locations.get(location_id)
            return location.model_copy() if location else None

    def snapshot(self, active_only: bool = False) -> list[SourceLocation]:
        with self._lock:
            return [
                location.model_copy()
                for location in self._locations.values()
                if location.active or not active_only
            ]

    def deactivate(self, location_id: str) -> bool:
        with self._lock:
            location = self._locations.get(location_id)
            if location is None:
                return False
            location.active = False
            stored = location.model_copy()
        self._persist(stored)
        logger.info("registry.deactivate id=%s", location_id)
        return True

    def claim(
        self,
        priority: LocationPriority,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> list[SourceLocation]:
        """Select and mark in-flight every due, idle, active location of a tier."""
        now = now or utc_now()
        with self._lock:
            claimed = [
                location
                for location in self._locations.values()
                if location.is_valid_for_fetching()
                and location.priority == priority
                and location.id not in self._in_flight
                and is_eligible(location.last_fetched_at, window, now)
            ]
            self._in_flight.update(location.id for location in claimed)
            return [location.model_copy() for location in claimed]

    def complete(self, location_id: str, events: int, now: Optional[datetime] = None) -> None:
        """Record a finished fetch, successful or not, and return the location to idle."""
        now = now or utc_now()
        with self._lock:
            self._in_flight.discard(location_id)
            location = self._locations.get(location_id)
            if location is None:
                return
            location.last_fetched_at = now
            location.total_fetches += 1
            location.total_events += events
            stored = location.model_copy()
        self._persist(stored)

    def claim_emergency(
        self,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> list[SourceLocation]:
        """Like ``claim`` for the emergency sweep, across every priority."""
        now = now or utc_now()
        with self._lock:
            claimed = [
                location
                for location in self._locations.values()
                if location.active
                and location.id not in self._emergency_in_flight
                and is_eligible(location.last_emergency_sweep_at, window, now)
            ]
            self._emergency_in_flight.update(location.id for location in claimed)
            return [location.model_copy() for location in claimed]

    def complete_emergency(self, location_id: str, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        with self._lock:
            self._emergency_in_flight.discard(location_id)
            location = self._locations.get(location_id)
            if location is None:
                return
            location.last_emergency_sweep_at = now
            stored = location.model_copy()
        self._persist(stored)

    def in_flight(self) -> set[str]:
        with self._lock:
            return set(self._in_flight)

    def eligibility_statistics(
        self,
        windows: dict[LocationPriority, timedelta],
        now: Optional[datetime] = None,
    ) -> EligibilityStats:
        now = now or utc_now()
        stats = EligibilityStats()
        with self._lock:
            stats.total = len(self._locations)
            stats.in_flight = len(self._in_flight)
            for location in self._locations.values():
                if not location.active:
                    continue
                stats.active += 1
                priority = location.priority.value
                stats.by_priority[priority] = stats.by_priority.get(priority, 0) + 1
                window = windows.get(location.priority)
                if window is not None and is_eligible(location.last_fetched_at, window, now):
                    stats.eligible[priority] = stats.eligible.get(priority, 0) + 1
        return stats

    def reset_windows(self, location_ids: Optional[Iterable[str]] = None) -> int:
        """Clear ``last_fetched_at`` so the locations are due on the next tick."""
        with self._lock:
            ids = set(location_ids) if location_ids is not None else set(self._locations)
            reset = []
            for location_id in ids:
                location = self._locations.get(location_id)
                if location is None:
                    continue
                location.last_fetched_at = None
                location.last_emergency_sweep_at = None
                reset.append(location.model_copy())
        for location in reset:
            self._persist(location)
        logger.info("registry.reset_windows count=%s", len(reset))
        return len(reset)
