import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from citypulse.config import Settings
from citypulse.enrichment.gateway import EnrichmentGateway
from citypulse.errors import FetchError
from citypulse.ingestion.pipeline import IngestionPipeline
from citypulse.models import (
    EventCategory,
    EventSource,
    LocationPriority,
    RawCandidate,
    SourceLocation,
)
from citypulse.realtime.fanout import Broadcaster, Topic
from citypulse.scheduler.registry import LocationRegistry, is_eligible
from citypulse.scheduler.runner import FetchScheduler
from citypulse.store.memory import InMemoryColdStore, InMemoryHotStore
from citypulse.store.tiered import TieredStore


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def clock():
    return NOW


def _location(location_id, area, priority=LocationPriority.HIGH, **overrides):
    return SourceLocation(
        id=location_id,
        area=area,
        latitude=12.93,
        longitude=77.62,
        priority=priority,
        **overrides,
    )


class FakeFetcher:
    def __init__(self, results):
        self.results = results
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, location, categories):
        with self._lock:
            self.calls.append((location.id, tuple(categories)))
        result = self.results.get(location.id, [])
        if isinstance(result, Exception):
            raise result
        return [candidate.model_copy(update={"area": location.area}) for candidate in result]


def _serp(text, category=EventCategory.TRAFFIC):
    return RawCandidate(text=text, category_hint=category, source_tag=EventSource.SERP)


@pytest.fixture
def make_scheduler():
    created = []

    def build(registry, fetcher, settings=None):
        store = TieredStore(
            InMemoryHotStore(clock), InMemoryColdStore(clock), settings=Settings(), clock=clock
        )
        gateway = EnrichmentGateway(None)
        pipeline = IngestionPipeline(gateway, store, Broadcaster(clock=clock), clock=clock)
        created.append(pipeline)
        return FetchScheduler(
            registry, fetcher, pipeline, settings=settings or Settings(), clock=clock
        )

    yield build
    for pipeline in created:
        pipeline.store.close()
        pipeline.gateway.close()


def test_is_eligible():
    window = timedelta(minutes=10)
    assert is_eligible(None, window, NOW)
    assert is_eligible(NOW - timedelta(minutes=10), window, NOW)
    assert not is_eligible(NOW - timedelta(minutes=9), window, NOW)


def test_claim_selects_due_active_locations_of_one_tier():
    registry = LocationRegistry(
        [
            _location("due", "Koramangala"),
            _location("recent", "Indiranagar", last_fetched_at=NOW - timedelta(minutes=2)),
            _location("medium", "Hebbal", priority=LocationPriority.MEDIUM),
            _location("inactive", "Whitefield", active=False),
        ]
    )
    claimed = registry.claim(LocationPriority.HIGH, timedelta(minutes=10), NOW)
    assert [location.id for location in claimed] == ["due"]
    assert registry.in_flight() == {"due"}


def test_claimed_location_is_not_claimed_twice():
    registry = LocationRegistry([_location(f"loc{index}", f"Area {index}") for index in range(20)])

    def claim():
        return registry.claim(LocationPriority.HIGH, timedelta(minutes=10), NOW)

    with ThreadPoolExecutor(max_workers=8) as executor:
        batches = list(executor.map(lambda _: claim(), range(8)))

    claimed_ids = [location.id for batch in batches for location in batch]
    assert len(claimed_ids) == 20
    assert len(set(claimed_ids)) == 20


def test_complete_updates_counters_and_releases():
    registry = LocationRegistry([_location("a", "Koramangala")])
    registry.claim(LocationPriority.HIGH, timedelta(minutes=10), NOW)
    registry.complete("a", 4, NOW)

    location = registry.get("a")
    assert location.last_fetched_at == NOW
    assert location.total_fetches == 1
    assert location.total_events == 4
    assert registry.in_flight() == set()
    assert registry.claim(LocationPriority.HIGH, timedelta(minutes=10), NOW) == []


def test_registry_hands_out_copies():
    registry = LocationRegistry([_location("a", "Koramangala")])
    snapshot = registry.snapshot()
    snapshot[0].area = "Changed"
    assert registry.get("a").area == "Koramangala"


def test_register_rejects_bad_coordinates():
    registry = LocationRegistry()
    with pytest.raises(ValueError):
        registry.register(SourceLocation(area="Nowhere", latitude=120.0, longitude=77.6))


def test_deactivate_and_reset_windows():
    registry = LocationRegistry(
        [_location("a", "Koramangala", last_fetched_at=NOW), _location("b", "Hebbal")]
    )
    assert registry.deactivate("b")
    assert not registry.deactivate("missing")
    assert registry.reset_windows(["a"]) == 1
    assert registry.get("a").last_fetched_at is None
    assert [location.id for location in registry.snapshot(active_only=True)] == ["a"]


def test_failure_in_one_location_does_not_affect_others(make_scheduler):
    registry = LocationRegistry(
        [
            _location("ok1", "Koramangala"),
            _location("broken", "Indiranagar"),
            _location("ok2", "Whitefield"),
        ]
    )
    fetcher = FakeFetcher(
        {
            "ok1": [_serp("Slow moving traffic near Forum mall")],
            "broken": FetchError("serpapi unavailable"),
            "ok2": [_serp("Traffic piling up at ITPL main road")],
        }
    )
    scheduler = make_scheduler(registry, fetcher)

    report = scheduler.run_tier(LocationPriority.HIGH, NOW)

    assert report.eligible == 3
    assert report.succeeded == 2
    assert report.failed == 1
    assert report.stored == 2
    assert registry.in_flight() == set()
    broken = registry.get("broken")
    assert broken.last_fetched_at == NOW
    assert broken.total_fetches == 1
    assert broken.total_events == 0
    assert registry.get("ok1").total_events == 1


def test_tier_categories(make_scheduler):
    registry = LocationRegistry(
        [
            _location("high", "Koramangala"),
            _location("medium", "Hebbal", priority=LocationPriority.MEDIUM),
        ]
    )
    fetcher = FakeFetcher({})
    scheduler = make_scheduler(registry, fetcher)

    scheduler.run_tier(LocationPriority.HIGH, NOW)
    scheduler.run_tier(LocationPriority.MEDIUM, NOW)

    categories = dict(fetcher.calls)
    assert categories["high"] == (EventCategory.EMERGENCY, EventCategory.TRAFFIC)
    assert EventCategory.CIVIC_ISSUE in categories["medium"]
    assert EventCategory.TRAFFIC in categories["medium"]


def test_low_priority_has_no_tier(make_scheduler):
    scheduler = make_scheduler(LocationRegistry(), FakeFetcher({}))
    with pytest.raises(ValueError):
        scheduler.run_tier(LocationPriority.LOW, NOW)


def test_emergency_sweep_publishes_critical_drafts_only(make_scheduler):
    registry = LocationRegistry(
        [
            _location("a", "Shivajinagar", priority=LocationPriority.MEDIUM),
            _location("b", "Hebbal", last_emergency_sweep_at=NOW - timedelta(minutes=1)),
        ]
    )
    fetcher = FakeFetcher(
        {
            "a": [
                _serp("Fire breaks out in a godown", category=EventCategory.EMERGENCY),
                _serp("Police alert issued for rally", category=EventCategory.EMERGENCY),
            ]
        }
    )
    scheduler = make_scheduler(registry, fetcher)
    events = scheduler.pipeline.broadcaster.subscribe(Topic.EVENTS)
    alerts = scheduler.pipeline.broadcaster.subscribe(Topic.ALERTS)

    report = scheduler.run_emergency_sweep(NOW)

    assert report.eligible == 1
    assert report.stored == 1
    assert fetcher.calls == [("a", (EventCategory.EMERGENCY,))]
    assert [message.name for message in events.drain()] == ["connected", "newEvent"]
    alert_messages = alerts.drain()
    assert [message.name for message in alert_messages] == ["connected", "newAlert"]
    assert alert_messages[1].data["alert"]["severity"] == "CRITICAL"

    location = registry.get("a")
    assert location.last_emergency_sweep_at == NOW
    assert location.last_fetched_at is None
    assert len(scheduler.pipeline.store.hot) == 0


def test_statistics_counts_eligible_per_tier(make_scheduler):
    registry = LocationRegistry(
        [
            _location("a", "Koramangala"),
            _location("b", "Indiranagar", last_fetched_at=NOW - timedelta(minutes=5)),
            _location("c", "Hebbal", priority=LocationPriority.MEDIUM),
        ]
    )
    scheduler = make_scheduler(registry, FakeFetcher({}))

    stats = scheduler.statistics(NOW)

    assert stats["active"] == 3
    assert stats["eligible"] == {"HIGH": 1, "MEDIUM": 1}
    assert stats["by_priority"] == {"HIGH": 2, "MEDIUM": 1}


def test_run_forever_runs_each_job_then_stops(make_scheduler):
    registry = LocationRegistry([_location("a", "Koramangala")])
    fetcher = FakeFetcher({})
    scheduler = make_scheduler(registry, fetcher)
    stop_event = threading.Event()
    ran = []

    def run_job(job):
        ran.append(job)
        if len(ran) == 4:
            stop_event.set()

    scheduler.run_job = run_job
    scheduler.run_forever(stop_event, poll_seconds=0.01)

    assert sorted(ran) == ["HIGH", "MEDIUM", "emergency", "sweep"]


class SweepAwareFetcher:
    """Tier fetches block until an emergency sweep has fetched."""

    def __init__(self, stop_event):
        self.stop_event = stop_event
        self.swept = threading.Event()
        self.tier_saw_sweep = None

    def fetch(self, location, categories):
        if tuple(categories) == (EventCategory.EMERGENCY,):
            self.swept.set()
            return []
        self.tier_saw_sweep = self.swept.wait(timeout=5)
        self.stop_event.set()
        return []


def test_emergency_sweep_runs_while_tier_tick_is_in_progress(make_scheduler):
    registry = LocationRegistry([_location("m", "Hebbal", priority=LocationPriority.MEDIUM)])
    stop_event = threading.Event()
    fetcher = SweepAwareFetcher(stop_event)
    scheduler = make_scheduler(
        registry, fetcher, settings=Settings(EMERGENCY_INTERVAL_MINUTES=0)
    )

    scheduler.run_forever(stop_event, poll_seconds=0.01)

    assert fetcher.tier_saw_sweep is True
    assert registry.get("m").last_emergency_sweep_at == NOW
    assert registry.get("m").last_fetched_at == NOW


def test_low_priority_and_bad_coordinates_are_never_claimed():
    registry = LocationRegistry(
        [
            _location("low", "Yelahanka", priority=LocationPriority.LOW),
            SourceLocation(
                id="bad",
                area="Nowhere",
                latitude=120.0,
                longitude=77.62,
                priority=LocationPriority.HIGH,
            ),
        ]
    )
    window = timedelta(minutes=10)
    assert registry.claim(LocationPriority.LOW, window, NOW) == []
    assert registry.claim(LocationPriority.HIGH, window, NOW) == []
