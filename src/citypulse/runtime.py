"""Wire stores, enrichment, fan-out and scheduling from settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from citypulse.config import Settings
from citypulse.enrichment.gateway import EnrichmentGateway
from citypulse.ingestion.fetch_serpapi import CandidateFetcher, SerpApiFetcher
from citypulse.ingestion.pipeline import IngestionPipeline
from citypulse.realtime.fanout import Broadcaster
from citypulse.scheduler.registry import LocationRegistry
from citypulse.scheduler.repository import PostgresLocationRepository
from citypulse.scheduler.runner import FetchScheduler
from citypulse.store.memory import InMemoryColdStore, InMemoryHotStore
from citypulse.store.postgres_cold import PostgresColdStore
from citypulse.store.redis_hot import RedisHotStore
from citypulse.store.tiered import TieredStore
from citypulse.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: TieredStore
    broadcaster: Broadcaster
    gateway: EnrichmentGateway
    pipeline: IngestionPipeline
    registry: LocationRegistry
    memory: bool = False

    def scheduler(self, fetcher: Optional[CandidateFetcher] = None) -> FetchScheduler:
        return FetchScheduler(
            self.registry,
            fetcher or SerpApiFetcher(self.settings),
            self.pipeline,
            settings=self.settings,
            record_runs=not self.memory,
        )

    def close(self) -> None:
        self.store.flush()
        self.store.close()
        self.gateway.close()
        self.broadcaster.close_all()

    def __enter__(self) -> "Runtime":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_runtime(settings: Optional[Settings] = None, memory: bool = False) -> Runtime:
    """Build the process-wide components.

    ``memory=True`` uses in-process stores and an empty registry, for dry
    runs. Otherwise Redis backs the hot tier and Postgres the cold tier and
    the location registry.
    """
    settings = settings or Settings()
    if memory:
        store = TieredStore(InMemoryHotStore(), InMemoryColdStore(), settings=settings)
        registry = LocationRegistry()
    else:
        if not settings.has_database():
            raise ValueError("DATABASE_URL or PGHOST must be set (or use --memory)")
        store = TieredStore(
            RedisHotStore.from_settings(settings),
            PostgresColdStore(settings),
            settings=settings,
        )
        registry = LocationRegistry.from_repository(PostgresLocationRepository(settings))

    broadcaster = Broadcaster.from_settings(settings)
    gateway = EnrichmentGateway.from_settings(settings)
    pipeline = IngestionPipeline(gateway, store, broadcaster, settings=settings)
    logger.info(
        "runtime.ready backend=%s enrichment=%s locations=%s",
        "memory" if memory else "redis+postgres",
        "gemini" if gateway.enabled else "fallback",
        len(registry),
    )
    return Runtime(
        settings=settings,
        store=store,
        broadcaster=broadcaster,
        gateway=gateway,
        pipeline=pipeline,
        registry=registry,
        memory=memory,
    )
