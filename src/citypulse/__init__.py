"""City event ingestion and tiered storage pipeline."""

__version__ = "0.1.0"
