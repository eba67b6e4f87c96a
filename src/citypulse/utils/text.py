"""Text helpers."""

from __future__ import annotations

import re
from typing import Iterable, Optional

STOPWORDS = {
    "the", "a", "an", "and", "or", "of", "in", "on", "at", "to", "for", "near",
    "is", "are", "was", "were", "be", "been", "with", "from", "by", "after",
    "this", "that", "it", "its", "as", "has", "have", "had", "today", "now",
}


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace and trim."""
    return re.sub(r"\s+", " ", text).strip()


def strip_urls(text: str) -> str:
    """Remove URLs from text."""
    return re.sub(r"https?://\S+|www\.\S+", "", text)


def is_link_only(text: str, min_chars: int = 3) -> bool:
    """Return True if text is effectively only URLs or very short."""
    cleaned = normalize_whitespace(strip_urls(text))
    cleaned = re.sub(r"[^\w\s]", "", cleaned)
    return len(cleaned) < min_chars


def normalize_area(area: Optional[str]) -> str:
    """Lowercase an area name and join its words with underscores."""
    if not area or not area.strip():
        return "unknown_area"
    return re.sub(r"\s+", "_", area.strip().lower())


def truncate_title(text: Optional[str], max_chars: int = 60) -> str:
    """First ``max_chars`` of text, cut back to a word boundary."""
    value = normalize_whitespace(text or "")
    if len(value) <= max_chars:
        return value
    cut = value[:max_chars]
    space = cut.rfind(" ")
    if space > max_chars // 2:
        cut = cut[:space]
    return cut.rstrip(" ,.;:-") + "..."


def truncate_text(text: Optional[str], max_chars: int) -> str:
    return normalize_whitespace(text or "")[:max_chars]


def extract_keywords(text: Optional[str], limit: int = 10) -> list[str]:
    """Pick distinct non-stopword tokens in order of first appearance."""
    seen: list[str] = []
    for token in re.findall(r"[a-z][a-z0-9]{2,}", (text or "").lower()):
        if token in STOPWORDS or token in seen:
            continue
        seen.append(token)
        if len(seen) >= limit:
            break
    return seen


def merge_keywords(groups: Iterable[Iterable[str]], limit: int = 20) -> list[str]:
    merged: list[str] = []
    for keywords in groups:
        for keyword in keywords:
            if keyword and keyword not in merged:
                merged.append(keyword)
    return merged[:limit]
