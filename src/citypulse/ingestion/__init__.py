"""Ingestion: gate, draft, group, enrich, store."""

from citypulse.ingestion.pipeline import IngestionPipeline

__all__ = ["IngestionPipeline"]
