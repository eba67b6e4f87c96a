"""Redis-backed hot tier."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

import redis

from citypulse.config import Settings
from citypulse.models import CanonicalEvent, EventCategory, EventSeverity
from citypulse.utils.logging import get_logger
from citypulse.utils.text import normalize_area
from citypulse.utils.time import utc_now


logger = get_logger(__name__)


class RedisHotStore:
    """Records as JSON strings with EXPIREAT, plus sorted-set indexes.

    Index scores are creation timestamps so reads come back newest first.
    Index entries can outlive their record; reads skip and prune them and
    ``sweep_expired`` clears them in bulk using the ``expiry`` index.
    """

    def __init__(
        self,
        client: "redis.Redis",
        prefix: str = "citypulse",
    ) -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RedisHotStore":
        settings = settings or Settings()
        client = redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=2)
        return cls(client, prefix=settings.hot_key_prefix)

    def _event_key(self, event_id: str) -> str:
        return f"{self.prefix}:event:{event_id}"

    def _recent_key(self) -> str:
        return f"{self.prefix}:idx:recent"

    def _expiry_key(self) -> str:
        return f"{self.prefix}:idx:expiry"

    def _area_key(self, area: Optional[str]) -> str:
        return f"{self.prefix}:idx:area:{normalize_area(area)}"

    def _category_severity_key(self, category: EventCategory, severity: EventSeverity) -> str:
        return f"{self.prefix}:idx:catsev:{category.value}:{severity.value}"

    def _index_keys(self, event: CanonicalEvent) -> list[str]:
        return [
            self._recent_key(),
            self._area_key(event.area),
            self._category_severity_key(event.category, event.severity),
        ]

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            logger.warning("hot.ping.failed error=%s", exc)
            return False

    def put(self, event: CanonicalEvent, ttl: timedelta) -> None:
        expire_at = utc_now() + ttl
        created_score = event.created_at.timestamp()

        pipe = self.client.pipeline(transaction=True)
        pipe.set(
            self._event_key(event.id),
            event.model_dump_json(),
            exat=math.ceil(expire_at.timestamp()),
        )
        for index_key in self._index_keys(event):
            pipe.zadd(index_key, {event.id: created_score})
        pipe.zadd(self._expiry_key(), {event.id: expire_at.timestamp()})
        pipe.execute()

    def get_by_id(self, event_id: str) -> Optional[CanonicalEvent]:
        raw = self.client.get(self._event_key(event_id))
        if raw is None:
            return None
        return CanonicalEvent.model_validate_json(raw)

    def _resolve(self, index_key: str, limit: int) -> list[CanonicalEvent]:
        events: list[CanonicalEvent] = []
        now = utc_now()
        page = max(limit, 20)
        start = 0

        while len(events) < limit:
            ids = self.client.zrevrange(index_key, start, start + page - 1)
            if not ids:
                break

            raws = self.client.mget([self._event_key(event_id) for event_id in ids])
            stale: list[str] = []
            for event_id, raw in zip(ids, raws):
                if raw is None:
                    stale.append(event_id)
                    continue
                event = CanonicalEvent.model_validate_json(raw)
                if event.is_expired(now):
                    continue
                events.append(event)
                if len(events) >= limit:
                    break

            if stale:
                self.client.zrem(index_key, *stale)
                logger.debug("hot.prune index=%s count=%s", index_key, len(stale))
            start += page - len(stale)

        return events

    def query_by_area(self, area: str, limit: int) -> list[CanonicalEvent]:
        return self._resolve(self._area_key(area), limit)

    def query_by_category_severity(
        self,
        category: EventCategory,
        severity: EventSeverity,
        limit: int,
    ) -> list[CanonicalEvent]:
        return self._resolve(self._category_severity_key(category, severity), limit)

    def query_recent(self, limit: int) -> list[CanonicalEvent]:
        return self._resolve(self._recent_key(), limit)

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Remove index entries of records whose expiry has passed."""
        cutoff = (now or utc_now()).timestamp()
        expired_ids = self.client.zrangebyscore(self._expiry_key(), "-inf", cutoff)
        if not expired_ids:
            return 0

        index_keys = [self._recent_key()]
        index_keys.extend(self.client.scan_iter(match=f"{self.prefix}:idx:area:*"))
        index_keys.extend(self.client.scan_iter(match=f"{self.prefix}:idx:catsev:*"))

        pipe = self.client.pipeline(transaction=False)
        for index_key in index_keys:
            pipe.zrem(index_key, *expired_ids)
        pipe.zrem(self._expiry_key(), *expired_ids)
        pipe.delete(*[self._event_key(event_id) for event_id in expired_ids])
        pipe.execute()

        logger.info("hot.sweep.complete removed=%s", len(expired_ids))
        return len(expired_ids)
