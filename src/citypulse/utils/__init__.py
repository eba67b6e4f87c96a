"""Utility helpers."""

from citypulse.utils.geo import haversine_km
from citypulse.utils.hashing import hash_text
from citypulse.utils.logging import configure_logging, get_logger
from citypulse.utils.text import normalize_area, normalize_whitespace, truncate_title
from citypulse.utils.time import parse_datetime, utc_now

__all__ = [
    "haversine_km",
    "hash_text",
    "configure_logging",
    "get_logger",
    "normalize_area",
    "normalize_whitespace",
    "truncate_title",
    "parse_datetime",
    "utc_now",
]
