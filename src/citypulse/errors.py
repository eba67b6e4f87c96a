"""Exception hierarchy for the pipeline."""

from __future__ import annotations


class CityPulseError(Exception):
    """Base class for pipeline errors."""


class FetchError(CityPulseError):
    """A raw candidate source could not be reached or parsed."""


class EnrichmentError(CityPulseError):
    """The enrichment collaborator failed. Never escapes the gateway."""


class StoreError(CityPulseError):
    """Base class for storage failures."""


class StoreWriteError(StoreError):
    """The hot tier rejected a write."""


class StoreReadError(StoreError):
    """Neither storage tier could answer a query."""
