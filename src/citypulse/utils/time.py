"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into UTC."""
    if not value:
        return None

    normalized = value.strip().replace("Z", "+00:00")
    try:
        return ensure_utc(datetime.fromisoformat(normalized))
    except ValueError:
        return None


def time_period(value: datetime) -> str:
    """Bucket an hour of day into the traffic periods used by pattern queries."""
    hour = value.hour
    if 6 <= hour <= 10:
        return "morning_rush"
    if 11 <= hour <= 16:
        return "afternoon"
    if 17 <= hour <= 21:
        return "evening_rush"
    return "off_peak"


def day_type(value: datetime) -> str:
    return "weekend" if value.weekday() >= 5 else "weekday"
