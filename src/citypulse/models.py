"""Core data models for ingestion, storage and scheduling."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from citypulse.utils.time import ensure_utc, utc_now


class EventCategory(str, Enum):
    TRAFFIC = "TRAFFIC"
    CIVIC_ISSUE = "CIVIC_ISSUE"
    CULTURAL_EVENT = "CULTURAL_EVENT"
    EMERGENCY = "EMERGENCY"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    WEATHER = "WEATHER"
    PUBLIC_TRANSPORT = "PUBLIC_TRANSPORT"
    SAFETY = "SAFETY"
    ENVIRONMENT = "ENVIRONMENT"
    COMMUNITY = "COMMUNITY"
    UTILITY = "UTILITY"
    HEALTH = "HEALTH"
    EDUCATION = "EDUCATION"
    POLICE = "POLICE"
    FIRE = "FIRE"
    OTHER = "OTHER"


class EventSeverity(str, Enum):
    """Ordered severity: LOW < MODERATE < HIGH < CRITICAL."""

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "EventSeverity") -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {
    EventSeverity.LOW: 0,
    EventSeverity.MODERATE: 1,
    EventSeverity.HIGH: 2,
    EventSeverity.CRITICAL: 3,
}


def max_severity(values: Iterable[EventSeverity]) -> EventSeverity:
    return max(values, key=lambda value: value.rank, default=EventSeverity.LOW)


class EventSource(str, Enum):
    USER_REPORT = "USER_REPORT"
    SERP = "SERP"
    NEWS = "NEWS"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"
    SYSTEM_GENERATED = "SYSTEM_GENERATED"
    MANUAL = "MANUAL"
    OTHER = "OTHER"


class SentimentType(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"
    MIXED = "MIXED"


class MediaType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    DOCUMENT = "DOCUMENT"


class LocationPriority(str, Enum):
    """Scheduling tier. LOW locations are never polled."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


CATEGORY_TTL: dict[EventCategory, timedelta] = {
    EventCategory.TRAFFIC: timedelta(hours=2),
    EventCategory.WEATHER: timedelta(hours=6),
    EventCategory.EMERGENCY: timedelta(hours=24),
    EventCategory.CULTURAL_EVENT: timedelta(hours=24),
    EventCategory.INFRASTRUCTURE: timedelta(days=15),
    EventCategory.CIVIC_ISSUE: timedelta(days=30),
    EventCategory.COMMUNITY: timedelta(days=7),
}
DEFAULT_TTL = timedelta(hours=24)


def ttl_for(category: EventCategory) -> timedelta:
    """Hot-tier lifetime for a category."""
    return CATEGORY_TTL.get(category, DEFAULT_TTL)


def expires_for(category: EventCategory, created_at: datetime) -> datetime:
    return created_at + ttl_for(category)


def _new_id() -> str:
    return uuid.uuid4().hex


class LocationData(BaseModel):
    """Where an event happened. Coordinates come as a pair or not at all."""

    model_config = ConfigDict(extra="ignore")

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area: Optional[str] = None
    address: Optional[str] = None
    landmark: Optional[str] = None
    pincode: Optional[str] = None

    @model_validator(mode="after")
    def _require_coordinate_pair(self) -> "LocationData":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be set together")
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class SentimentData(BaseModel):
    type: SentimentType = SentimentType.NEUTRAL
    score: float = Field(default=0.0, ge=-1.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class MediaAttachment(BaseModel):
    """Reference to media already held by blob storage."""

    id: str = Field(default_factory=_new_id)
    url: str
    type: MediaType = MediaType.IMAGE


class RawCandidate(BaseModel):
    """Unstructured input to the pipeline. Consumed once, never persisted."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=_new_id)
    text: str = ""
    title: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area: Optional[str] = None
    address: Optional[str] = None
    media: list[MediaAttachment] = Field(default_factory=list)
    category_hint: Optional[EventCategory] = None
    source_tag: EventSource = EventSource.USER_REPORT
    source_url: Optional[str] = None
    observed_at: Optional[datetime] = None

    @property
    def is_user_submitted(self) -> bool:
        return self.source_tag == EventSource.USER_REPORT

    @property
    def full_text(self) -> str:
        """Title and body joined, as fed to classifiers."""
        parts = [part.strip() for part in (self.title, self.text) if part and part.strip()]
        return "\n".join(parts)


class CanonicalEvent(BaseModel):
    """Deduplicated, enriched unit of record."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    content: str = ""
    location: Optional[LocationData] = None
    category: EventCategory
    severity: EventSeverity = EventSeverity.LOW
    source: EventSource = EventSource.OTHER
    sentiment: Optional[SentimentData] = None
    keywords: list[str] = Field(default_factory=list)
    ai_summary: Optional[str] = None
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    media: list[MediaAttachment] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", "expires_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_expiry(self) -> "CanonicalEvent":
        if self.expires_at - self.created_at != ttl_for(self.category):
            raise ValueError(
                f"expires_at must equal created_at + ttl({self.category.value})"
            )
        return self

    @classmethod
    def create(
        cls,
        category: EventCategory,
        created_at: Optional[datetime] = None,
        **fields: Any,
    ) -> "CanonicalEvent":
        """Build an event whose expiry is derived from its category."""
        created = ensure_utc(created_at or utc_now())
        return cls(
            category=category,
            created_at=created,
            expires_at=expires_for(category, created),
            **fields,
        )

    @property
    def area(self) -> Optional[str]:
        return self.location.area if self.location else None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @property
    def contributing_ids(self) -> list[str]:
        return list(self.metadata.get("contributing_ids", [self.id]))


class SourceLocation(BaseModel):
    """A polling target for the fetch scheduler."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=_new_id)
    latitude: float
    longitude: float
    area: str
    city: str = "Bengaluru"
    state: str = "Karnataka"
    country: str = "India"
    pincode: Optional[str] = None
    landmark: Optional[str] = None
    priority: LocationPriority = LocationPriority.MEDIUM
    active: bool = True
    registered_at: datetime = Field(default_factory=utc_now)
    last_fetched_at: Optional[datetime] = None
    last_emergency_sweep_at: Optional[datetime] = None
    total_fetches: int = 0
    total_events: int = 0

    def formatted_location(self) -> str:
        """Search string such as "Koramangala, Bengaluru, Karnataka, India"."""
        parts = [self.area, self.city, self.state, self.country]
        return ", ".join(part for part in parts if part and part.strip())

    def short_name(self) -> str:
        if self.area and self.city:
            return f"{self.area}, {self.city}"
        return self.area or self.city or "Unknown"

    def is_valid_for_fetching(self) -> bool:
        return (
            self.active
            and self.priority != LocationPriority.LOW
            and -90 <= self.latitude <= 90
            and -180 <= self.longitude <= 180
        )


class LocationContext(BaseModel):
    """Where a batch of candidates was collected, used to fill gaps."""

    area: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source_location_id: Optional[str] = None

    @classmethod
    def from_source(cls, location: SourceLocation) -> "LocationContext":
        return cls(
            area=location.area,
            city=location.city,
            latitude=location.latitude,
            longitude=location.longitude,
            source_location_id=location.id,
        )

    def describe(self) -> str:
        parts = [part for part in (self.area, self.city) if part]
        return ", ".join(parts) or "unknown location"
