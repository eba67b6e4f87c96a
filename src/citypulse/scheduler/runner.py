"""Tiered fetch scheduler."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from citypulse.config import Settings
from citypulse.db.client import db_cursor
from citypulse.db.run_log import complete_run_failed, complete_run_success, create_run
from citypulse.ingestion.fetch_serpapi import CandidateFetcher, supported_categories
from citypulse.ingestion.pipeline import IngestionPipeline
from citypulse.models import (
    EventCategory,
    EventSeverity,
    LocationContext,
    LocationPriority,
    SourceLocation,
)
from citypulse.scheduler.registry import LocationRegistry
from citypulse.utils.logging import get_logger
from citypulse.utils.time import utc_now


logger = get_logger(__name__)

HIGH_PRIORITY_CATEGORIES = (EventCategory.EMERGENCY, EventCategory.TRAFFIC)
EMERGENCY_JOB = "emergency"
SWEEP_JOB = "sweep"


@dataclass(frozen=True)
class TickReport:
    job: str
    eligible: int = 0
    succeeded: int = 0
    failed: int = 0
    stored: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "job": self.job,
            "eligible": self.eligible,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "stored": self.stored,
        }


@dataclass(frozen=True)
class _LocationResult:
    location_id: str
    ok: bool
    count: int = 0


class FetchScheduler:
    """Drive fetch -> ingest for every due location, one tier at a time.

    Each claimed location runs on its own worker; a failure in one never
    affects the others and still completes the location's window.
    """

    def __init__(
        self,
        registry: LocationRegistry,
        fetcher: CandidateFetcher,
        pipeline: IngestionPipeline,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        record_runs: bool = False,
        medium_categories: Optional[Sequence[EventCategory]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = registry
        self.fetcher = fetcher
        self.pipeline = pipeline
        self.record_runs = record_runs
        self._clock = clock
        self._categories: dict[LocationPriority, tuple[EventCategory, ...]] = {
            LocationPriority.HIGH: HIGH_PRIORITY_CATEGORIES,
            LocationPriority.MEDIUM: tuple(medium_categories or supported_categories()),
        }
        self.windows: dict[LocationPriority, timedelta] = {
            LocationPriority.HIGH: timedelta(minutes=self.settings.high_priority_window_minutes),
            LocationPriority.MEDIUM: timedelta(minutes=self.settings.standard_window_minutes),
        }
        self.emergency_window = timedelta(minutes=self.settings.emergency_window_minutes)

    def categories_for(self, priority: LocationPriority) -> tuple[EventCategory, ...]:
        if priority not in self._categories:
            raise ValueError(f"no scheduled tier for priority {priority.value}")
        return self._categories[priority]

    def _run_concurrently(
        self,
        fn: Callable[[SourceLocation], _LocationResult],
        locations: list[SourceLocation],
    ) -> list[_LocationResult]:
        if not locations:
            return []
        with ThreadPoolExecutor(
            max_workers=len(locations), thread_name_prefix="fetch"
        ) as executor:
            return list(executor.map(fn, locations))

    def _recorded(self, job: str, run: Callable[[], TickReport]) -> TickReport:
        if not self.record_runs:
            return run()

        with db_cursor(self.settings) as cursor:
            run_id = create_run(cursor, job)
        try:
            report = run()
        except Exception as exc:
            with db_cursor(self.settings) as cursor:
                complete_run_failed(cursor, run_id, exc)
            raise
        with db_cursor(self.settings) as cursor:
            complete_run_success(
                cursor,
                run_id,
                eligible_count=report.eligible,
                succeeded_count=report.succeeded,
                failed_count=report.failed,
                stored_count=report.stored,
            )
        return report

    # Tiered polling

    def run_tier(self, priority: LocationPriority, now: Optional[datetime] = None) -> TickReport:
        return self._recorded(priority.value, lambda: self._run_tier(priority, now))

    def _run_tier(self, priority: LocationPriority, now: Optional[datetime]) -> TickReport:
        categories = self.categories_for(priority)
        now = now or self._clock()
        claimed = self.registry.claim(priority, self.windows[priority], now)
        logger.info("scheduler.tick.start tier=%s eligible=%s", priority.value, len(claimed))

        results = self._run_concurrently(
            lambda location: self._fetch_location(location, categories), claimed
        )
        report = TickReport(
            job=priority.value,
            eligible=len(claimed),
            succeeded=sum(1 for result in results if result.ok),
            failed=sum(1 for result in results if not result.ok),
            stored=sum(result.count for result in results),
        )
        logger.info(
            "scheduler.tick.complete tier=%s eligible=%s succeeded=%s failed=%s stored=%s",
            priority.value,
            report.eligible,
            report.succeeded,
            report.failed,
            report.stored,
        )
        return report

    def _fetch_location(
        self,
        location: SourceLocation,
        categories: Sequence[EventCategory],
    ) -> _LocationResult:
        stored = 0
        ok = False
        try:
            candidates = self.fetcher.fetch(location, categories)
            records = self.pipeline.ingest(candidates, LocationContext.from_source(location))
            stored = len(records)
            ok = True
            logger.info(
                "scheduler.location.complete id=%s area=%s candidates=%s stored=%s",
                location.id,
                location.area,
                len(candidates),
                stored,
            )
        except Exception:
            logger.exception(
                "scheduler.location.failed id=%s area=%s", location.id, location.area
            )
        finally:
            self._complete(location, stored)
        return _LocationResult(location_id=location.id, ok=ok, count=stored)

    def _complete(self, location: SourceLocation, stored: int) -> None:
        try:
            self.registry.complete(location.id, stored, self._clock())
        except Exception:
            logger.exception("scheduler.location.complete_failed id=%s", location.id)

    # Emergency sweep

    def run_emergency_sweep(self, now: Optional[datetime] = None) -> TickReport:
        return self._recorded(EMERGENCY_JOB, lambda: self._run_emergency_sweep(now))

    def _run_emergency_sweep(self, now: Optional[datetime]) -> TickReport:
        now = now or self._clock()
        claimed = self.registry.claim_emergency(self.emergency_window, now)
        logger.info("scheduler.emergency.start eligible=%s", len(claimed))

        results = self._run_concurrently(self._sweep_location, claimed)
        report = TickReport(
            job=EMERGENCY_JOB,
            eligible=len(claimed),
            succeeded=sum(1 for result in results if result.ok),
            failed=sum(1 for result in results if not result.ok),
            stored=sum(result.count for result in results),
        )
        logger.info(
            "scheduler.emergency.complete eligible=%s succeeded=%s failed=%s published=%s",
            report.eligible,
            report.succeeded,
            report.failed,
            report.stored,
        )
        return report

    def _sweep_location(self, location: SourceLocation) -> _LocationResult:
        published = 0
        ok = False
        try:
            candidates = self.fetcher.fetch(location, (EventCategory.EMERGENCY,))
            drafts = self.pipeline.draft(candidates, LocationContext.from_source(location))
            broadcaster = self.pipeline.broadcaster
            for draft in drafts:
                if draft.severity != EventSeverity.CRITICAL:
                    continue
                broadcaster.publish_event(draft)
                broadcaster.publish_alert(draft)
                published += 1
                logger.warning(
                    "scheduler.emergency.critical id=%s area=%s title=%s",
                    draft.id,
                    location.area,
                    draft.title,
                )
            ok = True
        except Exception:
            logger.exception("scheduler.emergency.failed id=%s area=%s", location.id, location.area)
        finally:
            try:
                self.registry.complete_emergency(location.id, self._clock())
            except Exception:
                logger.exception("scheduler.emergency.complete_failed id=%s", location.id)
        return _LocationResult(location_id=location.id, ok=ok, count=published)

    # Maintenance

    def sweep_expired(self) -> TickReport:
        def run() -> TickReport:
            removed = self.pipeline.store.sweep_expired()
            return TickReport(job=SWEEP_JOB, succeeded=1, stored=removed)

        return self._recorded(SWEEP_JOB, run)

    def statistics(self, now: Optional[datetime] = None) -> dict[str, object]:
        stats = self.registry.eligibility_statistics(self.windows, now or self._clock())
        return stats.to_dict()

    # Loop

    def intervals(self) -> dict[str, timedelta]:
        return {
            LocationPriority.HIGH.value: timedelta(
                minutes=self.settings.high_priority_interval_minutes
            ),
            LocationPriority.MEDIUM.value: timedelta(
                minutes=self.settings.standard_interval_minutes
            ),
            EMERGENCY_JOB: timedelta(minutes=self.settings.emergency_interval_minutes),
            SWEEP_JOB: timedelta(minutes=self.settings.sweep_interval_minutes),
        }

    def run_job(self, job: str) -> TickReport:
        if job == EMERGENCY_JOB:
            return self.run_emergency_sweep()
        if job == SWEEP_JOB:
            return self.sweep_expired()
        return self.run_tier(LocationPriority(job))

    def _run_job_logged(self, job: str) -> None:
        try:
            self.run_job(job)
        except Exception:
            logger.exception("scheduler.job.failed job=%s", job)

    def run_forever(self, stop_event: threading.Event, poll_seconds: float = 1.0) -> None:
        """Fire each job at its interval until ``stop_event`` is set.

        Jobs run on their own workers, so a slow tier tick never holds back
        the emergency sweep. A job still running when it comes due again is
        skipped until it finishes. Every job runs once at startup. A job that
        raises is logged and retried at its next interval.
        """
        intervals = self.intervals()
        next_run = {job: time.monotonic() for job in intervals}
        running: dict[str, Future] = {}
        logger.info(
            "scheduler.start intervals=%s",
            {job: int(interval.total_seconds() // 60) for job, interval in intervals.items()},
        )

        with ThreadPoolExecutor(
            max_workers=len(intervals), thread_name_prefix="job"
        ) as executor:
            while not stop_event.is_set():
                current = time.monotonic()
                for job, due in next_run.items():
                    if current < due:
                        continue
                    if job in running and not running[job].done():
                        logger.debug("scheduler.job.still_running job=%s", job)
                        continue
                    running[job] = executor.submit(self._run_job_logged, job)
                    next_run[job] = current + intervals[job].total_seconds()
                stop_event.wait(poll_seconds)

            pending = [name for name, future in running.items() if not future.done()]
            logger.info("scheduler.stopping waiting_for=%s", pending)

        logger.info("scheduler.stop")
