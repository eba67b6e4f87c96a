"""Timeout-bounded access to the enrichment collaborator."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Optional, Protocol, Sequence, TypeVar

from citypulse.config import Settings
from citypulse.enrichment.fallback import (
    fallback_categorization,
    fallback_severity,
    neutral_sentiment,
    template_summary,
)
from citypulse.enrichment.schemas import CategorizeOutput, SentimentOutput
from citypulse.models import (
    CanonicalEvent,
    EventCategory,
    EventSeverity,
    EventSource,
    SentimentData,
)
from citypulse.outcome import Outcome
from citypulse.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


class EnrichmentCollaborator(Protocol):
    """External AI service. Any method may raise or hang."""

    def synthesize(self, members: Sequence[CanonicalEvent], context: str) -> str:
        """Merged human-readable summary for a group."""

    def categorize(self, text: str, source_tag: str) -> CategorizeOutput:
        """Category, severity, title and keywords for one report."""

    def analyze_sentiment(self, text: str) -> SentimentOutput:
        """Sentiment of one report."""

    def predict_severity(
        self,
        text: str,
        category: EventCategory,
        location_hint: Optional[str],
    ) -> EventSeverity:
        """Severity of one report given its category."""


class EnrichmentGateway:
    """Wrap collaborator calls with a timeout and a deterministic fallback.

    No method raises. Each returns an ``Outcome`` whose ``degraded`` flag
    records whether the fallback was used.
    """

    def __init__(
        self,
        collaborator: Optional[EnrichmentCollaborator],
        timeout_seconds: float = 5.0,
        max_workers: int = 8,
    ) -> None:
        self.collaborator = collaborator
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="enrichment"
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EnrichmentGateway":
        settings = settings or Settings()
        collaborator: Optional[EnrichmentCollaborator] = None
        if settings.google_api_key:
            from citypulse.enrichment.gemini import GeminiEnrichmentClient

            collaborator = GeminiEnrichmentClient(settings)
        else:
            logger.warning("enrichment.disabled reason=missing_google_api_key")
        return cls(
            collaborator,
            timeout_seconds=settings.enrichment_timeout_seconds,
            max_workers=settings.enrichment_max_workers,
        )

    @property
    def enabled(self) -> bool:
        return self.collaborator is not None

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> Outcome[T]:
        if self.collaborator is None:
            return Outcome.failed("enrichment collaborator not configured")

        future = self._executor.submit(fn, *args)
        try:
            return Outcome.ok(future.result(timeout=self.timeout_seconds))
        except FuturesTimeoutError:
            future.cancel()
            return Outcome.failed(f"{operation} timed out after {self.timeout_seconds}s")
        except Exception as exc:
            return Outcome.failed(f"{type(exc).__name__}: {exc}")

    def _report(self, operation: str, outcome: Outcome[T]) -> Outcome[T]:
        if outcome.degraded and self.enabled:
            logger.warning("enrichment.fallback operation=%s error=%s", operation, outcome.error)
        return outcome

    def synthesize(self, members: Sequence[CanonicalEvent], context: str) -> Outcome[str]:
        outcome = (
            self._call("synthesize", lambda: self.collaborator.synthesize(members, context))
            .require(lambda text: bool(text and text.strip()), "empty synthesis")
            .or_else(lambda: template_summary(members))
        )
        return self._report("synthesize", outcome)

    def categorize(
        self,
        text: str,
        source_tag: EventSource,
        category_hint: Optional[EventCategory] = None,
    ) -> Outcome[CategorizeOutput]:
        outcome = self._call(
            "categorize",
            lambda: self.collaborator.categorize(text, source_tag.value),
        ).or_else(lambda: fallback_categorization(text, category_hint))
        return self._report("categorize", outcome)

    def analyze_sentiment(self, text: str) -> Outcome[SentimentData]:
        outcome = self._call(
            "analyze_sentiment",
            lambda: _to_sentiment(self.collaborator.analyze_sentiment(text)),
        ).or_else(neutral_sentiment)
        return self._report("analyze_sentiment", outcome)

    def predict_severity(
        self,
        text: str,
        category: EventCategory,
        location_hint: Optional[str] = None,
    ) -> Outcome[EventSeverity]:
        outcome = self._call(
            "predict_severity",
            lambda: EventSeverity(
                self.collaborator.predict_severity(text, category, location_hint)
            ),
        ).or_else(lambda: fallback_severity(text))
        return self._report("predict_severity", outcome)


def _to_sentiment(output: SentimentOutput) -> SentimentData:
    return SentimentData(type=output.sentiment, score=output.score, confidence=output.confidence)
