"""Location registry and tiered fetch scheduling."""

from citypulse.scheduler.registry import LocationRegistry, is_eligible
from citypulse.scheduler.runner import FetchScheduler, TickReport

__all__ = ["FetchScheduler", "LocationRegistry", "TickReport", "is_eligible"]
