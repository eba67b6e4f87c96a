"""Deterministic substitutes for every enrichment operation."""

from __future__ import annotations

from typing import Optional, Sequence

from citypulse.enrichment.schemas import CategorizeOutput
from citypulse.grouping import group_key
from citypulse.models import (
    CanonicalEvent,
    EventCategory,
    EventSeverity,
    SentimentData,
    SentimentType,
)
from citypulse.severity import classify, infer_category
from citypulse.utils.text import extract_keywords, truncate_text, truncate_title


TOTAL_FALLBACK_CONFIDENCE = 0.3
PARTIAL_FALLBACK_CONFIDENCE = 0.5
TEMPLATE_MAX_MEMBERS = 5


def fallback_title(text: Optional[str]) -> str:
    return truncate_title(text) or "Untitled report"


def fallback_severity(text: Optional[str]) -> EventSeverity:
    return classify(text)


def template_summary(members: Sequence[CanonicalEvent]) -> str:
    """List up to five member titles with their areas, then a remainder count."""
    lines = ["Multiple events reported"]
    if members:
        lines[0] += " related to " + " and ".join(group_key(members[0]).split("_"))
    lines[0] += ":"

    for event in members[:TEMPLATE_MAX_MEMBERS]:
        line = f"• {event.title or truncate_text(event.description, 50) + '...'}"
        if event.area:
            line += f" ({event.area})"
        lines.append(line)

    if len(members) > TEMPLATE_MAX_MEMBERS:
        lines.append(f"... and {len(members) - TEMPLATE_MAX_MEMBERS} more events")
    return "\n".join(lines)


def fallback_categorization(
    text: str,
    category_hint: Optional[EventCategory] = None,
) -> CategorizeOutput:
    return CategorizeOutput(
        category=category_hint or infer_category(text),
        severity=classify(text),
        title=fallback_title(text),
        summary=truncate_text(text, 200),
        keywords=extract_keywords(text),
        confidence=TOTAL_FALLBACK_CONFIDENCE,
    )


def neutral_sentiment() -> SentimentData:
    return SentimentData(type=SentimentType.NEUTRAL, score=0.0, confidence=0.0)


def format_single_event(event: CanonicalEvent) -> str:
    """Readable summary of a record that was not merged with anything."""
    parts: list[str] = []
    if event.title:
        parts.append(f"**{event.title}**\n")
    if event.description:
        parts.append(f"{event.description} ")
    if event.area:
        parts.append(f"Location: {event.area}. ")
    if event.severity != EventSeverity.LOW:
        parts.append(f"Severity: {event.severity.value}. ")
    return "".join(parts).strip()


def extract_title(synthesis: str, default: str) -> str:
    """First line of a synthesis that looks like a headline."""
    for line in synthesis.splitlines():
        stripped = line.strip().strip("#*").strip()
        if 10 < len(stripped) < 100:
            return stripped
    return default
