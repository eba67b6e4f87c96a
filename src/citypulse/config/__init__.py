"""Configuration package."""

from citypulse.config.settings import Settings

__all__ = ["Settings"]
