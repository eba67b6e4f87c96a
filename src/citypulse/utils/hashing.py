"""Hashing helpers for deterministic record ids."""

from __future__ import annotations

import hashlib
from typing import Iterable


def hash_text(value: str) -> str:
    """Return a short SHA-256 hash for the provided text."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def hash_ids(ids: Iterable[str]) -> str:
    """Order-independent short hash over a collection of ids."""
    return hash_text(",".join(sorted(ids)))
