"""Read-path selectors: a closed set of query shapes."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from citypulse.models import EventCategory, EventSeverity


class NearbySelector(BaseModel):
    """Events within ``radius_km`` of a point."""

    kind: Literal["nearby"] = "nearby"
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_km: float = Field(default=5.0, gt=0)
    limit: int = Field(default=50, gt=0)
    since: Optional[datetime] = None


class CategorySeveritySelector(BaseModel):
    kind: Literal["category_severity"] = "category_severity"
    category: EventCategory
    severity: EventSeverity
    limit: int = Field(default=50, gt=0)
    since: Optional[datetime] = None


class AreaSelector(BaseModel):
    kind: Literal["area"] = "area"
    area: str = Field(min_length=1)
    limit: int = Field(default=50, gt=0)
    since: Optional[datetime] = None


Selector = Annotated[
    Union[NearbySelector, CategorySeveritySelector, AreaSelector],
    Field(discriminator="kind"),
]

selector_adapter: TypeAdapter[Selector] = TypeAdapter(Selector)


def parse_selector(payload: dict) -> Selector:
    """Validate a selector from a plain mapping keyed by ``kind``."""
    return selector_adapter.validate_python(payload)
