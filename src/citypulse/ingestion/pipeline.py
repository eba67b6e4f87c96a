"""Write and read entrypoints: ingest raw candidates, query stored events."""

from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from citypulse.config import Settings
from citypulse.enrichment.gateway import EnrichmentGateway
from citypulse.grouping import group
from citypulse.ingestion.aggregate import Aggregator
from citypulse.ingestion.drafting import Drafter
from citypulse.ingestion.quality_gate import CandidateGate
from citypulse.models import CanonicalEvent, LocationContext, RawCandidate
from citypulse.realtime.fanout import Broadcaster, should_fan_out
from citypulse.store.selectors import Selector
from citypulse.store.tiered import TieredStore
from citypulse.utils.logging import get_logger
from citypulse.utils.time import utc_now


logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class IngestionPipeline:
    """gate -> draft -> group -> enrich -> store -> fan out."""

    def __init__(
        self,
        gateway: EnrichmentGateway,
        store: TieredStore,
        broadcaster: Broadcaster,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        gate: Optional[CandidateGate] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.gateway = gateway
        self.store = store
        self.broadcaster = broadcaster
        self.gate = gate or CandidateGate()
        self.drafter = Drafter(gateway, clock=clock)
        self.aggregator = Aggregator(gateway, clock=clock)

    def _run_all(self, fn: Callable[[T], R], items: Sequence[T]) -> list[R]:
        """Apply ``fn`` concurrently and wait for every result, keeping order."""
        if len(items) <= 1:
            return [fn(item) for item in items]
        workers = min(len(items), self.settings.enrichment_max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pipeline") as executor:
            return list(executor.map(fn, items))

    def draft(
        self,
        candidates: Iterable[RawCandidate],
        location_context: Optional[LocationContext] = None,
    ) -> list[CanonicalEvent]:
        """Gate and draft candidates without grouping or storing them."""
        context = location_context or LocationContext()
        gate_result = self.gate.split(candidates)
        if gate_result.rejected:
            reasons = Counter(reject.reason for reject in gate_result.rejected)
            for reason, count in reasons.items():
                logger.info("ingest.reject reason=%s count=%s", reason, count)
        for review in gate_result.reviewed:
            logger.info(
                "ingest.review reason=%s candidate_id=%s",
                review.review_reason,
                review.candidate.id,
            )
        return self._run_all(
            lambda candidate: self.drafter.draft(candidate, context),
            gate_result.accepted,
        )

    def ingest(
        self,
        candidates: Iterable[RawCandidate],
        location_context: Optional[LocationContext] = None,
    ) -> list[CanonicalEvent]:
        """Store one canonical record per near-duplicate group and return them.

        Raises ``StoreWriteError`` if the hot tier rejects a record. Records
        with severity HIGH or above are published to the events topic right
        after their hot write, before this method returns.
        """
        batch = list(candidates)
        if not batch:
            return []

        context = location_context or LocationContext()
        drafts = self.draft(batch, context)
        if not drafts:
            logger.info("ingest.empty_after_gate candidates=%s", len(batch))
            return []

        groups = group(drafts)
        records = self._run_all(
            lambda canonical_group: self.aggregator.build(canonical_group, context),
            groups,
        )

        stored: list[CanonicalEvent] = []
        published = 0
        for record in records:
            in_hot = self.store.write(record)
            stored.append(record)
            if in_hot and should_fan_out(record):
                self.broadcaster.publish_event(record)
                published += 1

        logger.info(
            "ingest.complete area=%s candidates=%s drafts=%s groups=%s stored=%s published=%s",
            context.area,
            len(batch),
            len(drafts),
            len(groups),
            len(stored),
            published,
        )
        return stored

    def query(self, selector: Selector) -> list[CanonicalEvent]:
        return self.store.read(selector)

