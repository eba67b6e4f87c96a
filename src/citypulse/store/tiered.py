"""Dual-write and fallback-read across the hot and cold tiers."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from citypulse.config import Settings
from citypulse.errors import StoreReadError, StoreWriteError
from citypulse.models import CanonicalEvent, EventCategory
from citypulse.outcome import Outcome
from citypulse.store.base import ColdStore, HotStore
from citypulse.store.patterns import event_patterns, event_statistics
from citypulse.store.selectors import (
    AreaSelector,
    CategorySeveritySelector,
    NearbySelector,
    Selector,
)
from citypulse.utils.geo import haversine_km
from citypulse.utils.logging import get_logger
from citypulse.utils.time import ensure_utc, utc_now


logger = get_logger(__name__)

Reader = Callable[[Selector], list[CanonicalEvent]]


class TieredStore:
    """Hot tier for "now" queries, cold tier for history and fallback.

    Hot writes are synchronous and their failure is raised to the caller.
    Cold appends run on a background pool; failures are logged and dropped.
    """

    def __init__(
        self,
        hot: HotStore,
        cold: ColdStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.hot = hot
        self.cold = cold
        self.settings = settings or Settings()
        self._clock = clock
        self._cold_executor = ThreadPoolExecutor(
            max_workers=self.settings.cold_write_max_workers,
            thread_name_prefix="cold-write",
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        self._high_activity_areas = self.settings.high_activity_area_set()
        self._high_activity_categories = self.settings.high_activity_category_set()

        self._hot_readers: dict[type, Reader] = {
            NearbySelector: self._hot_nearby,
            CategorySeveritySelector: self._hot_category_severity,
            AreaSelector: self._hot_area,
        }
        self._cold_readers: dict[type, Reader] = {
            NearbySelector: self._cold_nearby,
            CategorySeveritySelector: self._cold_category_severity,
            AreaSelector: self._cold_area,
        }

    # Write path

    def write(self, event: CanonicalEvent) -> bool:
        """Write to both tiers. Return whether the record reached the hot tier.

        Records that have already expired skip the hot tier and are only
        appended to the cold tier.
        """
        remaining = event.expires_at - self._clock()
        written = remaining > timedelta(0)
        if written:
            try:
                self.hot.put(event, remaining)
            except Exception as exc:
                logger.error("store.hot_write.failed id=%s error=%s", event.id, exc)
                raise StoreWriteError(f"hot tier rejected event {event.id}") from exc
        else:
            logger.warning("store.hot_write.skipped_expired id=%s", event.id)

        future = self._cold_executor.submit(self._append_cold, event)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return written

    def _append_cold(self, event: CanonicalEvent) -> None:
        try:
            self.cold.append(event)
        except Exception as exc:
            logger.error(
                "store.cold_write.failed id=%s error=%s",
                event.id,
                exc,
                extra={"event_id": event.id, "category": event.category.value},
            )

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until queued cold appends have finished."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self._cold_executor.shutdown(wait=True)

    # Read path

    def read(self, selector: Selector) -> list[CanonicalEvent]:
        """Answer from the hot tier, replacing it with cold results when needed."""
        hot = self._attempt("hot", self._hot_readers[type(selector)], selector)
        if hot.degraded:
            cold = self._attempt("cold", self._cold_readers[type(selector)], selector)
            if cold.degraded:
                raise StoreReadError(
                    f"both tiers failed for {selector.kind}: hot={hot.error} cold={cold.error}"
                )
            return cold.unwrap()

        hot_events = hot.unwrap()
        reason = self.fallback_reason(selector, hot_events)
        if reason is None:
            return hot_events

        cold = self._attempt("cold", self._cold_readers[type(selector)], selector)
        logger.info(
            "store.read.fallback kind=%s reason=%s hot=%s cold=%s",
            selector.kind,
            reason,
            len(hot_events),
            "failed" if cold.degraded else len(cold.unwrap()),
        )
        return cold.or_else(lambda: hot_events).unwrap()

    def _attempt(self, tier: str, reader: Reader, selector: Selector) -> Outcome[list[CanonicalEvent]]:
        try:
            return Outcome.ok(reader(selector))
        except Exception as exc:
            logger.warning("store.read.%s_failed kind=%s error=%s", tier, selector.kind, exc)
            return Outcome.failed(f"{type(exc).__name__}: {exc}")

    def fallback_reason(
        self,
        selector: Selector,
        hot_events: list[CanonicalEvent],
    ) -> Optional[str]:
        """Why the cold tier should replace this hot result, or None."""
        if not hot_events:
            return "hot_empty"

        freshness = timedelta(hours=self.settings.fallback_freshness_hours)
        if selector.since is not None and ensure_utc(selector.since) < self._clock() - freshness:
            return "historical_window"

        if len(hot_events) < self.settings.fallback_min_results and self._is_high_activity(selector):
            return "sparse_high_activity"

        return None

    def _is_high_activity(self, selector: Selector) -> bool:
        if isinstance(selector, AreaSelector):
            return selector.area.strip().lower() in self._high_activity_areas
        if isinstance(selector, CategorySeveritySelector):
            return selector.category.value in self._high_activity_categories
        return False

    def _since_filter(self, selector: Selector, events: list[CanonicalEvent]) -> list[CanonicalEvent]:
        if selector.since is None:
            return events
        since = ensure_utc(selector.since)
        return [event for event in events if event.created_at >= since]

    def _cold_since(self, selector: Selector) -> datetime:
        if selector.since is not None:
            return ensure_utc(selector.since)
        return self._clock() - timedelta(days=self.settings.cold_query_default_days)

    def _hot_nearby(self, selector: NearbySelector) -> list[CanonicalEvent]:
        # No native radius predicate: over-fetch recent records and filter here.
        candidates = self.hot.query_recent(selector.limit * 2)
        nearby = [
            event
            for event in self._since_filter(selector, candidates)
            if event.location is not None
            and event.location.has_coordinates
            and haversine_km(
                selector.latitude,
                selector.longitude,
                event.location.latitude,
                event.location.longitude,
            )
            <= selector.radius_km
        ]
        return nearby[: selector.limit]

    def _hot_category_severity(self, selector: CategorySeveritySelector) -> list[CanonicalEvent]:
        events = self.hot.query_by_category_severity(
            selector.category, selector.severity, selector.limit
        )
        return self._since_filter(selector, events)

    def _hot_area(self, selector: AreaSelector) -> list[CanonicalEvent]:
        return self._since_filter(selector, self.hot.query_by_area(selector.area, selector.limit))

    def _cold_nearby(self, selector: NearbySelector) -> list[CanonicalEvent]:
        return self.cold.query_nearby(
            selector.latitude,
            selector.longitude,
            selector.radius_km,
            selector.limit,
            self._cold_since(selector),
        )

    def _cold_category_severity(self, selector: CategorySeveritySelector) -> list[CanonicalEvent]:
        return self.cold.query_by_category_severity(
            selector.category, selector.severity, selector.limit, self._cold_since(selector)
        )

    def _cold_area(self, selector: AreaSelector) -> list[CanonicalEvent]:
        return self.cold.query_by_area(selector.area, selector.limit, self._cold_since(selector))

    # Analytics

    def history(self, limit: int = 50, days: Optional[int] = None) -> list[CanonicalEvent]:
        window = days if days is not None else self.settings.cold_query_default_days
        return self.cold.query_recent(limit, self._clock() - timedelta(days=window))

    def patterns(self, category: EventCategory, window_days: int) -> list[dict[str, Any]]:
        return event_patterns(self.cold, category, window_days, self._clock())

    def statistics(self, window_days: int) -> dict[str, Any]:
        return event_statistics(self.cold, window_days, self._clock())

    # Maintenance

    def sweep_expired(self) -> int:
        removed = self.hot.sweep_expired(self._clock())
        logger.info("store.sweep.complete removed=%s", removed)
        return removed
