"""LLM output schemas and normalization helpers."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from citypulse.models import EventCategory, EventSeverity, SentimentType


def _clamp(value: float, low: float, high: float) -> float:
    if value < low:
        return low
    if value > high:
        return high
    return value


def truncate_keywords(items: list[str], max_items: int = 10, max_chars: int = 40) -> list[str]:
    """Lowercase, trim and de-duplicate keywords."""
    cleaned: list[str] = []
    for item in items:
        value = (item or "").strip().lower()[:max_chars]
        if not value or value in cleaned:
            continue
        cleaned.append(value)
        if len(cleaned) >= max_items:
            break
    return cleaned


class CategorizeOutput(BaseModel):
    """Structured output for report categorization."""

    category: EventCategory
    severity: EventSeverity
    title: str
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    area: Optional[str] = None
    landmark: Optional[str] = None
    address: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _upper_category(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("severity", mode="before")
    @classmethod
    def _upper_severity(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, value: list[str]) -> list[str]:
        return truncate_keywords(value)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)


class SentimentOutput(BaseModel):
    """Structured output for sentiment analysis."""

    sentiment: SentimentType
    score: float = 0.0
    confidence: float = 0.0

    @field_validator("sentiment", mode="before")
    @classmethod
    def _upper_sentiment(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return _clamp(value, -1.0, 1.0)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)


class SeverityOutput(BaseModel):
    severity: EventSeverity
    reasoning: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _upper_severity(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value


class SynthesisOutput(BaseModel):
    summary: str

    @field_validator("summary")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary must not be empty")
        return value.strip()


