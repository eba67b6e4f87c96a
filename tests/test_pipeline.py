import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from citypulse.config import Settings
from citypulse.enrichment.gateway import EnrichmentGateway
from citypulse.enrichment.schemas import CategorizeOutput, SentimentOutput
from citypulse.ingestion.pipeline import IngestionPipeline
from citypulse.models import (
    EventCategory,
    EventSeverity,
    EventSource,
    LocationContext,
    RawCandidate,
)
from citypulse.realtime.fanout import Broadcaster, Topic
from citypulse.store.memory import InMemoryColdStore, InMemoryHotStore
from citypulse.store.selectors import AreaSelector
from citypulse.store.tiered import TieredStore
from citypulse.utils.hashing import hash_ids


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def clock():
    return NOW


class RecordingCollaborator:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, name):
        with self._lock:
            self.calls.append(name)

    def synthesize(self, members, context):
        self._record("synthesize")
        return f"Traffic slowdown around Koramangala\n{len(members)} reports merged."

    def categorize(self, text, source_tag):
        self._record("categorize")
        return CategorizeOutput(
            category="CIVIC_ISSUE",
            severity="MODERATE",
            title="Garbage pile on 4th block",
            summary="Garbage not cleared for a week",
            keywords=["garbage"],
            confidence=0.85,
            area="Jayanagar",
        )

    def analyze_sentiment(self, text):
        self._record("analyze_sentiment")
        return SentimentOutput(sentiment="NEGATIVE", score=-0.4, confidence=0.7)

    def predict_severity(self, text, category, location_hint):
        self._record("predict_severity")
        return EventSeverity.MODERATE


class SlowCollaborator(RecordingCollaborator):
    def synthesize(self, members, context):
        time.sleep(1.0)
        return "too late"

    def analyze_sentiment(self, text):
        time.sleep(1.0)
        return SentimentOutput(sentiment="NEGATIVE")

    def predict_severity(self, text, category, location_hint):
        time.sleep(1.0)
        return EventSeverity.CRITICAL


@pytest.fixture
def make_pipeline():
    created = []

    def build(collaborator, timeout_seconds=2.0):
        gateway = EnrichmentGateway(collaborator, timeout_seconds=timeout_seconds)
        store = TieredStore(
            InMemoryHotStore(clock), InMemoryColdStore(clock), settings=Settings(), clock=clock
        )
        pipeline = IngestionPipeline(gateway, store, Broadcaster(clock=clock), clock=clock)
        created.append(pipeline)
        return pipeline

    yield build
    for pipeline in created:
        pipeline.store.close()
        pipeline.gateway.close()


def _serp(text, category=EventCategory.TRAFFIC, area="Koramangala", **overrides):
    payload = {
        "text": text,
        "area": area,
        "category_hint": category,
        "source_tag": EventSource.SERP,
    }
    payload.update(overrides)
    return RawCandidate.model_validate(payload)


TRAFFIC_TEXTS = [
    "Slow moving traffic near Forum mall",
    "Traffic piling up at Sony World junction",
    "Signal timing issue at Koramangala 80 ft road",
    "Heavy traffic on Hosur road towards Silk Board",
    "Vehicles crawling near Koramangala water tank",
]


def test_same_area_traffic_becomes_one_record(make_pipeline):
    collaborator = RecordingCollaborator()
    pipeline = make_pipeline(collaborator)
    candidates = [_serp(text) for text in TRAFFIC_TEXTS]

    records = pipeline.ingest(candidates, LocationContext(area="Koramangala", city="Bengaluru"))
    pipeline.store.flush()

    assert len(records) == 1
    record = records[0]
    assert collaborator.calls == ["synthesize"]
    assert record.category == EventCategory.TRAFFIC
    assert record.expires_at - record.created_at == timedelta(hours=2)
    assert record.id == f"agg_{hash_ids([c.id for c in candidates])}"
    assert record.metadata["aggregated_event_count"] == 5
    assert record.metadata["aggregation_method"] == "ai_synthesis"
    assert sorted(record.contributing_ids) == sorted(c.id for c in candidates)
    assert record.title == "Traffic slowdown around Koramangala"
    assert pipeline.store.hot.get_by_id(record.id) is not None
    assert len(pipeline.store.cold) == 1


def test_empty_batch_writes_nothing(make_pipeline):
    collaborator = RecordingCollaborator()
    pipeline = make_pipeline(collaborator)

    assert pipeline.ingest([]) == []
    pipeline.store.flush()
    assert len(pipeline.store.hot) == 0
    assert len(pipeline.store.cold) == 0
    assert collaborator.calls == []


def test_enrichment_timeout_uses_fallbacks(make_pipeline):
    pipeline = make_pipeline(SlowCollaborator(), timeout_seconds=0.05)
    candidates = [
        RawCandidate(
            title="Slow traffic at Forum",
            text="Cars barely moving near the mall",
            area="Koramangala",
            category_hint=EventCategory.TRAFFIC,
        ),
        RawCandidate(
            title="Signal issue at Sony World",
            text="Lights blinking since morning",
            area="Koramangala",
            category_hint=EventCategory.TRAFFIC,
        ),
    ]

    records = pipeline.ingest(candidates)

    assert len(records) == 1
    record = records[0]
    assert record.severity == EventSeverity.MODERATE
    assert record.confidence_score <= 0.5
    assert record.metadata["aggregation_method"] == "template_fallback"
    assert record.metadata["enrichment_degraded"] is True
    assert "Slow traffic at Forum" in record.ai_summary
    assert "Signal issue at Sony World" in record.ai_summary


def test_critical_record_is_published_before_ingest_returns(make_pipeline):
    pipeline = make_pipeline(RecordingCollaborator())
    subscription = pipeline.broadcaster.subscribe(Topic.EVENTS)
    candidate = _serp(
        "Building collapse reported in Shivajinagar",
        category=EventCategory.EMERGENCY,
        area="Shivajinagar",
    )

    records = pipeline.ingest([candidate])

    assert len(records) == 1
    assert records[0].severity == EventSeverity.CRITICAL
    messages = subscription.drain()
    assert [message.name for message in messages] == ["connected", "newEvent"]
    assert messages[1].data["event"]["id"] == records[0].id
    assert messages[1].data["type"] == "cityEvent"


def test_record_that_misses_the_hot_tier_is_not_published():
    later = NOW + timedelta(days=2)
    cold = InMemoryColdStore(clock)
    store = TieredStore(
        InMemoryHotStore(lambda: later), cold, settings=Settings(), clock=lambda: later
    )
    gateway = EnrichmentGateway(RecordingCollaborator(), timeout_seconds=2.0)
    pipeline = IngestionPipeline(gateway, store, Broadcaster(clock=clock), clock=clock)
    subscription = pipeline.broadcaster.subscribe(Topic.EVENTS)
    candidate = _serp(
        "Building collapse reported in Shivajinagar",
        category=EventCategory.EMERGENCY,
        area="Shivajinagar",
    )

    records = pipeline.ingest([candidate])
    store.flush()

    assert records[0].severity == EventSeverity.CRITICAL
    assert [message.name for message in subscription.drain()] == ["connected"]
    assert len(store.hot) == 0
    assert len(cold) == 1
    store.close()
    gateway.close()


def test_low_severity_records_are_not_published(make_pipeline):
    pipeline = make_pipeline(RecordingCollaborator())
    subscription = pipeline.broadcaster.subscribe(Topic.EVENTS)

    pipeline.ingest([_serp("Slow moving traffic near Forum mall")])

    assert [message.name for message in subscription.drain()] == ["connected"]


def test_user_report_without_hint_is_categorized(make_pipeline):
    collaborator = RecordingCollaborator()
    pipeline = make_pipeline(collaborator)
    candidate = RawCandidate(text="Garbage has not been cleared on 4th block for a week")

    records = pipeline.ingest([candidate], LocationContext(area="Jayanagar"))

    assert sorted(collaborator.calls) == ["analyze_sentiment", "categorize"]
    record = records[0]
    assert record.category == EventCategory.CIVIC_ISSUE
    assert record.title == "Garbage pile on 4th block"
    assert record.confidence_score == 0.85
    assert record.sentiment.score == -0.4
    assert record.area == "Jayanagar"
    assert record.ai_summary == "Garbage not cleared for a week"


def test_user_report_with_hint_predicts_severity(make_pipeline):
    collaborator = RecordingCollaborator()
    pipeline = make_pipeline(collaborator)
    candidate = RawCandidate(
        title="Waterlogging",
        text="Knee deep water under the underpass",
        category_hint=EventCategory.WEATHER,
        area="Hebbal",
    )

    records = pipeline.ingest([candidate])

    assert sorted(collaborator.calls) == ["analyze_sentiment", "predict_severity"]
    assert records[0].severity == EventSeverity.MODERATE
    assert records[0].confidence_score == 0.8


def test_rejected_candidates_are_dropped(make_pipeline):
    pipeline = make_pipeline(RecordingCollaborator())
    records = pipeline.ingest(
        [
            RawCandidate(text="https://example.com/only-a-link", source_tag=EventSource.SERP),
            RawCandidate(text="", source_tag=EventSource.SERP),
        ]
    )
    assert records == []


def test_context_coordinates_fill_missing_location(make_pipeline):
    pipeline = make_pipeline(RecordingCollaborator())
    context = LocationContext(area="Koramangala", latitude=12.935, longitude=77.624)

    records = pipeline.ingest([_serp("Slow moving traffic near Forum mall", area=None)], context)

    assert records[0].location.latitude == 12.935
    assert records[0].area == "Koramangala"


def test_query_reads_through_store(make_pipeline):
    pipeline = make_pipeline(RecordingCollaborator())
    for text in TRAFFIC_TEXTS[:3]:
        pipeline.ingest([_serp(text, area="Jayanagar")])

    events = pipeline.query(AreaSelector(area="Jayanagar"))
    assert len(events) == 3
