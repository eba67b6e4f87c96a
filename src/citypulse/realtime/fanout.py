"""Topic-based broadcast to live subscribers."""

from __future__ import annotations

import queue
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from citypulse.config import Settings
from citypulse.models import CanonicalEvent, EventSeverity
from citypulse.utils.logging import get_logger
from citypulse.utils.time import utc_now


logger = get_logger(__name__)

Clock = Callable[[], datetime]

_CLOSED = object()


class Topic(str, Enum):
    EVENTS = "events"
    ALERTS = "alerts"
    MOOD = "mood"
    PREDICTIONS = "predictions"


@dataclass(frozen=True)
class Envelope:
    """One message delivered to a subscriber."""

    topic: Topic
    name: str
    data: dict[str, Any]
    sent_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic.value,
            "name": self.name,
            "data": self.data,
            "sent_at": self.sent_at.isoformat(),
        }


class Subscription:
    """A bounded mailbox for one subscriber of one topic."""

    def __init__(
        self,
        topic: Topic,
        maxsize: int,
        clock: Clock,
        on_close: Callable[["Subscription"], None],
    ) -> None:
        self.id = uuid.uuid4().hex
        self.topic = topic
        self.created_at = clock()
        self.last_active_at = self.created_at
        self._clock = clock
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, envelope: Envelope) -> bool:
        """Enqueue without blocking. False means the send failed."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(envelope)
        except queue.Full:
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        """Next message, or None on timeout or once the handle is closed."""
        if self.closed:
            return None
        self.last_active_at = self._clock()
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        finally:
            self.last_active_at = self._clock()
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> list[Envelope]:
        """Everything queued right now, without waiting."""
        self.last_active_at = self._clock()
        items: list[Envelope] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is not _CLOSED:
                items.append(item)

    def __iter__(self) -> Iterator[Envelope]:
        while not self.closed:
            envelope = self.get(timeout=0.5)
            if envelope is not None:
                yield envelope

    def idle_for(self, now: datetime) -> timedelta:
        return now - self.last_active_at

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        try:
            # wakes a reader blocked in get
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            pass
        self._on_close(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Broadcaster:
    """Owns the topic -> subscriptions registry.

    Handles are dropped when closed, when idle past the timeout, or when a
    publish to them fails. There is no separate heartbeat.
    """

    def __init__(
        self,
        idle_timeout: timedelta = timedelta(minutes=30),
        queue_size: int = 100,
        clock: Clock = utc_now,
    ) -> None:
        self.idle_timeout = idle_timeout
        self.queue_size = queue_size
        self._clock = clock
        self._lock = threading.Lock()
        self._subscriptions: dict[Topic, dict[str, Subscription]] = {topic: {} for topic in Topic}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Broadcaster":
        settings = settings or Settings()
        return cls(
            idle_timeout=timedelta(minutes=settings.fanout_idle_timeout_minutes),
            queue_size=settings.fanout_queue_size,
        )

    def subscribe(self, topic: Topic) -> Subscription:
        topic = Topic(topic)
        subscription = Subscription(topic, self.queue_size, self._clock, self._unregister)
        with self._lock:
            self._subscriptions[topic][subscription.id] = subscription
            total = len(self._subscriptions[topic])

        subscription.offer(
            self._envelope(
                topic,
                "connected",
                {"message": f"Connected to {topic.value} stream", "stream_type": topic.value},
            )
        )
        logger.info("fanout.subscribe topic=%s id=%s total=%s", topic.value, subscription.id, total)
        return subscription

    def _unregister(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscriptions[subscription.topic].pop(subscription.id, None)
        if removed is not None:
            logger.info("fanout.remove topic=%s id=%s", subscription.topic.value, subscription.id)

    def _envelope(self, topic: Topic, name: str, data: dict[str, Any]) -> Envelope:
        return Envelope(topic=topic, name=name, data=data, sent_at=self._clock())

    def publish(self, topic: Topic, name: str, data: dict[str, Any]) -> int:
        """Push to every live handle of ``topic``; return how many accepted it."""
        topic = Topic(topic)
        now = self._clock()
        envelope = self._envelope(topic, name, data)
        with self._lock:
            handles = list(self._subscriptions[topic].values())

        delivered = 0
        for handle in handles:
            if handle.idle_for(now) >= self.idle_timeout:
                logger.info("fanout.idle_timeout topic=%s id=%s", topic.value, handle.id)
                handle.close()
                continue
            if not handle.offer(envelope):
                logger.warning("fanout.send_failed topic=%s id=%s", topic.value, handle.id)
                handle.close()
                continue
            delivered += 1

        logger.debug("fanout.publish topic=%s name=%s delivered=%s", topic.value, name, delivered)
        return delivered

    def publish_event(self, event: CanonicalEvent) -> int:
        data = {
            "type": "cityEvent",
            "event": event.model_dump(mode="json"),
            "timestamp": self._clock().isoformat(),
        }
        return self.publish(Topic.EVENTS, "newEvent", data)

    def publish_alert(self, event: CanonicalEvent) -> int:
        alert = {
            "id": event.id,
            "title": event.title,
            "area": event.area,
            "category": event.category.value,
            "severity": event.severity.value,
            "summary": event.ai_summary or event.description,
        }
        data = {
            "type": "alert",
            "alert": alert,
            "timestamp": self._clock().isoformat(),
            "priority": event.severity.value,
        }
        return self.publish(Topic.ALERTS, "newAlert", data)

    def publish_mood(self, area: str, mood: dict[str, Any]) -> int:
        data = {
            "type": "moodUpdate",
            "area": area,
            "moodData": mood,
            "timestamp": self._clock().isoformat(),
        }
        return self.publish(Topic.MOOD, "moodUpdate", data)

    def publish_prediction(self, prediction: dict[str, Any]) -> int:
        data = {
            "type": "prediction",
            "prediction": prediction,
            "timestamp": self._clock().isoformat(),
        }
        return self.publish(Topic.PREDICTIONS, "newPrediction", data)

    def prune_idle(self) -> int:
        """Close handles idle past the timeout; return how many were closed."""
        now = self._clock()
        with self._lock:
            handles = [
                handle
                for by_id in self._subscriptions.values()
                for handle in by_id.values()
                if handle.idle_for(now) >= self.idle_timeout
            ]
        for handle in handles:
            handle.close()
        return len(handles)

    def connection_stats(self) -> dict[str, Any]:
        with self._lock:
            by_topic = {topic.value: len(by_id) for topic, by_id in self._subscriptions.items()}
        return {
            "total_connections": sum(by_topic.values()),
            "connections_by_topic": by_topic,
            "timestamp": self._clock().isoformat(),
        }

    def close_all(self) -> None:
        with self._lock:
            handles = [
                handle for by_id in self._subscriptions.values() for handle in by_id.values()
            ]
        for handle in handles:
            handle.close()
        logger.info("fanout.close_all closed=%s", len(handles))


def should_fan_out(event: CanonicalEvent) -> bool:
    return event.severity.at_least(EventSeverity.HIGH)
