"""Two-tier event storage."""

from citypulse.store.base import AggregateFilter, AggregateRow, ColdStore, GroupDimension, HotStore
from citypulse.store.selectors import (
    AreaSelector,
    CategorySeveritySelector,
    NearbySelector,
    Selector,
    parse_selector,
)
from citypulse.store.tiered import TieredStore

__all__ = [
    "AggregateFilter",
    "AggregateRow",
    "ColdStore",
    "GroupDimension",
    "HotStore",
    "AreaSelector",
    "CategorySeveritySelector",
    "NearbySelector",
    "Selector",
    "parse_selector",
    "TieredStore",
]
