"""Deterministic keyword classifiers used when enrichment is unavailable."""

from __future__ import annotations

import re
from typing import Optional

from citypulse.models import EventCategory, EventSeverity


def _word_pattern(words: tuple[str, ...]) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


CRITICAL_TERMS = (
    "crash", "fatal", "death", "died", "killed", "explosion", "fire",
    "collapse", "emergency", "bomb", "violence", "shooting",
)
HIGH_TERMS = (
    "accident", "injured", "hurt", "blocked", "breakdown", "major", "urgent",
    "stuck", "trapped", "medical", "ambulance",
)
MODERATE_TERMS = (
    "slow", "delayed", "issue", "problem", "minor", "disruption", "outage",
    "pothole", "garbage",
)

SEVERITY_LADDER: tuple[tuple[EventSeverity, re.Pattern[str]], ...] = (
    (EventSeverity.CRITICAL, _word_pattern(CRITICAL_TERMS)),
    (EventSeverity.HIGH, _word_pattern(HIGH_TERMS)),
    (EventSeverity.MODERATE, _word_pattern(MODERATE_TERMS)),
)


def classify(text: Optional[str]) -> EventSeverity:
    """Return the first ladder rung whose keywords appear in text, else LOW."""
    if not text or not text.strip():
        return EventSeverity.LOW

    for severity, pattern in SEVERITY_LADDER:
        if pattern.search(text):
            return severity
    return EventSeverity.LOW


CATEGORY_RULES: tuple[tuple[EventCategory, re.Pattern[str]], ...] = (
    (
        EventCategory.EMERGENCY,
        _word_pattern(("fire", "explosion", "ambulance", "emergency", "rescue", "collapse")),
    ),
    (
        EventCategory.TRAFFIC,
        _word_pattern(("traffic", "jam", "congestion", "road", "signal", "accident", "vehicle")),
    ),
    (
        EventCategory.WEATHER,
        _word_pattern(("rain", "flood", "flooding", "storm", "waterlogging", "heatwave")),
    ),
    (
        EventCategory.PUBLIC_TRANSPORT,
        _word_pattern(("metro", "bus", "bmtc", "train", "station")),
    ),
    (
        EventCategory.UTILITY,
        _word_pattern(("power", "electricity", "water supply", "outage", "bescom")),
    ),
    (
        EventCategory.CIVIC_ISSUE,
        _word_pattern(("pothole", "garbage", "streetlight", "drain", "sewage", "footpath")),
    ),
    (
        EventCategory.INFRASTRUCTURE,
        _word_pattern(("construction", "flyover", "bridge", "pipeline", "repair")),
    ),
    (
        EventCategory.POLICE,
        _word_pattern(("police", "theft", "robbery", "arrest")),
    ),
    (
        EventCategory.CULTURAL_EVENT,
        _word_pattern(("festival", "concert", "exhibition", "celebration", "fair")),
    ),
)


def infer_category(text: Optional[str]) -> EventCategory:
    """Keyword guess at a category; COMMUNITY when nothing matches."""
    if not text:
        return EventCategory.COMMUNITY

    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return category
    return EventCategory.COMMUNITY
