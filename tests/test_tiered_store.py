from datetime import datetime, timedelta, timezone

import pytest

from citypulse.config import Settings
from citypulse.errors import StoreReadError, StoreWriteError
from citypulse.models import CanonicalEvent, EventCategory, EventSeverity, LocationData
from citypulse.store.memory import InMemoryColdStore, InMemoryHotStore
from citypulse.store.selectors import (
    AreaSelector,
    CategorySeveritySelector,
    NearbySelector,
    parse_selector,
)
from citypulse.store.tiered import TieredStore


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def clock():
    return NOW


def _event(
    event_id,
    area="Jayanagar",
    category=EventCategory.TRAFFIC,
    severity=EventSeverity.LOW,
    created_at=None,
    latitude=None,
    longitude=None,
):
    return CanonicalEvent.create(
        category,
        created_at=created_at or NOW - timedelta(minutes=5),
        id=event_id,
        title=f"Report {event_id}",
        severity=severity,
        location=LocationData(area=area, latitude=latitude, longitude=longitude),
    )


class CountingColdStore(InMemoryColdStore):
    def __init__(self, clock=clock):
        super().__init__(clock)
        self.reads = 0

    def query_by_area(self, area, limit, since):
        self.reads += 1
        return super().query_by_area(area, limit, since)

    def query_by_category_severity(self, category, severity, limit, since):
        self.reads += 1
        return super().query_by_category_severity(category, severity, limit, since)

    def query_nearby(self, latitude, longitude, radius_km, limit, since):
        self.reads += 1
        return super().query_nearby(latitude, longitude, radius_km, limit, since)


class FailingHotStore(InMemoryHotStore):
    def put(self, event, ttl):
        raise ConnectionError("redis down")

    def query_by_area(self, area, limit):
        raise ConnectionError("redis down")


class FailingColdStore(CountingColdStore):
    def append(self, event):
        raise ConnectionError("postgres down")

    def query_by_area(self, area, limit, since):
        self.reads += 1
        raise ConnectionError("postgres down")


@pytest.fixture
def make_store():
    created = []

    def build(hot=None, cold=None):
        store = TieredStore(
            hot if hot is not None else InMemoryHotStore(clock),
            cold if cold is not None else CountingColdStore(),
            settings=Settings(),
            clock=clock,
        )
        created.append(store)
        return store

    yield build
    for store in created:
        store.close()


def test_empty_hot_result_reads_cold_exactly_once(make_store):
    cold = CountingColdStore()
    cold.append(_event("old-1", created_at=NOW - timedelta(days=1)))
    store = make_store(cold=cold)

    events = store.read(AreaSelector(area="Jayanagar"))
    assert [event.id for event in events] == ["old-1"]
    assert cold.reads == 1


def test_enough_hot_results_never_touch_cold(make_store):
    cold = CountingColdStore()
    store = make_store(cold=cold)
    for index in range(3):
        store.write(_event(f"e{index}"))
    store.flush()

    events = store.read(AreaSelector(area="Jayanagar"))
    assert len(events) == 3
    assert cold.reads == 0


def test_sparse_hot_result_for_busy_area_is_replaced_by_cold(make_store):
    cold = CountingColdStore()
    cold.append(_event("h1", area="Koramangala", created_at=NOW - timedelta(days=2)))
    cold.append(_event("h2", area="Koramangala", created_at=NOW - timedelta(days=3)))
    store = make_store(cold=cold)
    store.hot.put(_event("live", area="Koramangala"), timedelta(hours=1))

    events = store.read(AreaSelector(area="koramangala"))
    assert [event.id for event in events] == ["h1", "h2"]
    assert cold.reads == 1


def test_sparse_hot_result_for_quiet_area_is_kept(make_store):
    cold = CountingColdStore()
    store = make_store(cold=cold)
    store.hot.put(_event("live"), timedelta(hours=1))

    events = store.read(AreaSelector(area="Jayanagar"))
    assert [event.id for event in events] == ["live"]
    assert cold.reads == 0


def test_historical_window_reads_cold(make_store):
    cold = CountingColdStore()
    store = make_store(cold=cold)
    for index in range(3):
        store.hot.put(_event(f"e{index}"), timedelta(hours=1))

    store.read(AreaSelector(area="Jayanagar", since=NOW - timedelta(hours=12)))
    assert cold.reads == 1


def test_hot_failure_falls_back_to_cold(make_store):
    cold = CountingColdStore()
    cold.append(_event("old-1", created_at=NOW - timedelta(hours=3)))
    store = make_store(hot=FailingHotStore(clock), cold=cold)

    events = store.read(AreaSelector(area="Jayanagar"))
    assert [event.id for event in events] == ["old-1"]


def test_cold_failure_after_hot_success_returns_hot(make_store):
    store = make_store(cold=FailingColdStore())
    store.hot.put(_event("live", area="Koramangala"), timedelta(hours=1))

    events = store.read(AreaSelector(area="Koramangala"))
    assert [event.id for event in events] == ["live"]


def test_both_tiers_failing_raises(make_store):
    store = make_store(hot=FailingHotStore(clock), cold=FailingColdStore())
    with pytest.raises(StoreReadError):
        store.read(AreaSelector(area="Jayanagar"))


def test_hot_write_failure_raises(make_store):
    cold = CountingColdStore()
    store = make_store(hot=FailingHotStore(clock), cold=cold)
    with pytest.raises(StoreWriteError):
        store.write(_event("e1"))
    store.flush()
    assert len(cold) == 0


def test_cold_write_failure_does_not_raise(make_store):
    store = make_store(cold=FailingColdStore())
    store.write(_event("e1"))
    store.flush()
    assert store.hot.get_by_id("e1") is not None


def test_write_reaches_both_tiers(make_store):
    cold = CountingColdStore()
    store = make_store(cold=cold)
    store.write(_event("e1"))
    store.flush()
    assert store.hot.get_by_id("e1") is not None
    assert len(cold) == 1


def test_hot_entry_lives_until_record_expiry():
    now = [NOW]
    hot = InMemoryHotStore(lambda: now[0])
    store = TieredStore(hot, InMemoryColdStore(), settings=Settings(), clock=lambda: now[0])
    event = _event("e1", created_at=NOW - timedelta(minutes=30))
    store.write(event)
    store.flush()

    now[0] = NOW + timedelta(minutes=89)
    assert hot.get_by_id("e1") is not None
    now[0] = NOW + timedelta(minutes=90)
    assert hot.get_by_id("e1") is None
    store.close()


def test_nearby_filters_hot_by_distance(make_store):
    store = make_store()
    store.hot.put(_event("near", latitude=12.935, longitude=77.624), timedelta(hours=1))
    store.hot.put(_event("near2", latitude=12.94, longitude=77.62), timedelta(hours=1))
    store.hot.put(_event("near3", latitude=12.93, longitude=77.63), timedelta(hours=1))
    store.hot.put(_event("far", latitude=13.10, longitude=77.59), timedelta(hours=1))

    events = store.read(NearbySelector(latitude=12.935, longitude=77.624, radius_km=3))
    assert sorted(event.id for event in events) == ["near", "near2", "near3"]


def test_category_severity_selector(make_store):
    store = make_store()
    for index in range(3):
        store.hot.put(
            _event(f"c{index}", category=EventCategory.WEATHER, severity=EventSeverity.HIGH),
            timedelta(hours=1),
        )
    store.hot.put(_event("other", category=EventCategory.WEATHER), timedelta(hours=1))

    events = store.read(
        CategorySeveritySelector(category=EventCategory.WEATHER, severity=EventSeverity.HIGH)
    )
    assert sorted(event.id for event in events) == ["c0", "c1", "c2"]


def test_parse_selector_dispatches_on_kind():
    selector = parse_selector({"kind": "area", "area": "HSR Layout", "limit": 5})
    assert isinstance(selector, AreaSelector)
    assert selector.limit == 5
    selector = parse_selector({"kind": "nearby", "latitude": 12.9, "longitude": 77.6})
    assert isinstance(selector, NearbySelector)
    assert selector.radius_km == 5.0


def test_sweep_expired_removes_hot_entries(make_store):
    store = make_store()
    store.hot.put(_event("gone"), timedelta(seconds=0))
    store.hot.put(_event("kept"), timedelta(hours=1))
    assert store.sweep_expired() == 1
    assert len(store.hot) == 1


def test_expired_record_skips_hot_tier(make_store):
    cold = CountingColdStore()
    store = make_store(cold=cold)
    assert store.write(_event("fresh"))
    assert not store.write(_event("stale", created_at=NOW - timedelta(hours=3)))
    store.flush()
    assert store.hot.get_by_id("stale") is None
    assert len(cold) == 2
