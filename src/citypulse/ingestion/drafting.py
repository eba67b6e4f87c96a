"""Turn raw candidates into draft canonical events."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from citypulse.enrichment.fallback import PARTIAL_FALLBACK_CONFIDENCE, fallback_title
from citypulse.enrichment.gateway import EnrichmentGateway
from citypulse.models import (
    CanonicalEvent,
    EventCategory,
    EventSeverity,
    LocationContext,
    LocationData,
    RawCandidate,
    SentimentData,
)
from citypulse.severity import classify, infer_category
from citypulse.utils.text import extract_keywords, truncate_text
from citypulse.utils.time import utc_now


EXTERNAL_CONFIDENCE = 0.7
HINTED_USER_CONFIDENCE = 0.8


def _location(candidate: RawCandidate, context: LocationContext) -> LocationData:
    latitude, longitude = candidate.latitude, candidate.longitude
    if latitude is None or longitude is None:
        latitude, longitude = context.latitude, context.longitude
    return LocationData(
        latitude=latitude,
        longitude=longitude,
        area=candidate.area or context.area,
        address=candidate.address,
    )


class Drafter:
    """Build one draft per candidate.

    External fetches are drafted deterministically. User reports go through
    the enrichment gateway: ``categorize`` when there is no category hint,
    ``predict_severity`` when there is one, and ``analyze_sentiment`` always.
    """

    def __init__(
        self,
        gateway: EnrichmentGateway,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.gateway = gateway
        self._clock = clock

    def draft(self, candidate: RawCandidate, context: LocationContext) -> CanonicalEvent:
        if candidate.is_user_submitted:
            return self._draft_user_report(candidate, context)
        return self._draft_external(candidate, context)

    def _build(
        self,
        candidate: RawCandidate,
        context: LocationContext,
        category: EventCategory,
        severity: EventSeverity,
        title: str,
        keywords: list[str],
        confidence: float,
        summary: Optional[str] = None,
        sentiment: Optional[SentimentData] = None,
        degraded: bool = False,
        area: Optional[str] = None,
    ) -> CanonicalEvent:
        location = _location(candidate, context)
        if area and not location.area:
            location.area = area

        metadata: dict[str, object] = {"enrichment_degraded": degraded}
        if candidate.source_url:
            metadata["source_url"] = candidate.source_url
        if candidate.observed_at:
            metadata["observed_at"] = candidate.observed_at.isoformat()
        if context.source_location_id:
            metadata["source_location_id"] = context.source_location_id

        return CanonicalEvent.create(
            category,
            created_at=self._clock(),
            id=candidate.id,
            title=title,
            description=candidate.text.strip(),
            content=candidate.full_text,
            location=location,
            severity=severity,
            source=candidate.source_tag,
            sentiment=sentiment,
            keywords=keywords,
            ai_summary=summary,
            confidence_score=confidence,
            media=candidate.media,
            metadata=metadata,
        )

    def _draft_external(self, candidate: RawCandidate, context: LocationContext) -> CanonicalEvent:
        text = candidate.full_text
        return self._build(
            candidate,
            context,
            category=candidate.category_hint or infer_category(text),
            severity=classify(text),
            title=candidate.title or fallback_title(candidate.text),
            keywords=extract_keywords(text),
            confidence=EXTERNAL_CONFIDENCE,
        )

    def _draft_user_report(self, candidate: RawCandidate, context: LocationContext) -> CanonicalEvent:
        text = candidate.full_text
        sentiment = self.gateway.analyze_sentiment(text)

        if candidate.category_hint is None:
            categorized = self.gateway.categorize(text, candidate.source_tag)
            result = categorized.unwrap()
            return self._build(
                candidate,
                context,
                category=result.category,
                severity=result.severity,
                title=candidate.title or result.title,
                keywords=result.keywords or extract_keywords(text),
                confidence=result.confidence,
                summary=result.summary or None,
                sentiment=sentiment.unwrap(),
                degraded=categorized.degraded or sentiment.degraded,
                area=result.area,
            )

        severity = self.gateway.predict_severity(
            text, candidate.category_hint, candidate.area or context.area
        )
        return self._build(
            candidate,
            context,
            category=candidate.category_hint,
            severity=severity.unwrap(),
            title=candidate.title or fallback_title(candidate.text),
            keywords=extract_keywords(text),
            confidence=PARTIAL_FALLBACK_CONFIDENCE if severity.degraded else HINTED_USER_CONFIDENCE,
            summary=truncate_text(text, 200),
            sentiment=sentiment.unwrap(),
            degraded=severity.degraded or sentiment.degraded,
        )
