"""Postgres-backed cold tier (append-only history)."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from psycopg.types.json import Jsonb

from citypulse.config import Settings
from citypulse.db.client import db_cursor
from citypulse.models import CanonicalEvent, EventCategory, EventSeverity
from citypulse.store.base import AggregateFilter, AggregateRow, GroupDimension
from citypulse.utils.logging import get_logger
from citypulse.utils.time import utc_now


logger = get_logger(__name__)

# Hour buckets must match citypulse.utils.time.time_period.
DIMENSION_SQL: dict[GroupDimension, str] = {
    GroupDimension.CATEGORY: "category",
    GroupDimension.SEVERITY: "severity",
    GroupDimension.AREA: "coalesce(area, 'unknown')",
    GroupDimension.TIME_PERIOD: (
        "case"
        " when extract(hour from created_at at time zone 'UTC') between 6 and 10"
        " then 'morning_rush'"
        " when extract(hour from created_at at time zone 'UTC') between 11 and 16"
        " then 'afternoon'"
        " when extract(hour from created_at at time zone 'UTC') between 17 and 21"
        " then 'evening_rush'"
        " else 'off_peak' end"
    ),
    GroupDimension.DAY_TYPE: (
        "case when extract(isodow from created_at at time zone 'UTC') in (6, 7)"
        " then 'weekend' else 'weekday' end"
    ),
    GroupDimension.DAY: "to_char(created_at at time zone 'UTC', 'YYYY-MM-DD')",
}

DISTANCE_KM_SQL = (
    "6371 * 2 * asin(sqrt("
    "power(sin(radians(latitude - %s) / 2), 2)"
    " + cos(radians(%s)) * cos(radians(latitude))"
    " * power(sin(radians(longitude - %s) / 2), 2)"
    "))"
)

INSERT_SQL = """
    insert into city_events_history (
        event_id,
        title,
        description,
        category,
        severity,
        source,
        area,
        latitude,
        longitude,
        confidence_score,
        created_at,
        expires_at,
        record
    )
    values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""


class PostgresColdStore:
    """Append-only event history with SQL aggregation."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()

    def append(self, event: CanonicalEvent) -> None:
        location = event.location
        with db_cursor(self.settings) as cursor:
            cursor.execute(
                INSERT_SQL,
                (
                    event.id,
                    event.title,
                    event.description,
                    event.category.value,
                    event.severity.value,
                    event.source.value,
                    location.area if location else None,
                    location.latitude if location else None,
                    location.longitude if location else None,
                    event.confidence_score,
                    event.created_at,
                    event.expires_at,
                    Jsonb(event.model_dump(mode="json")),
                ),
            )

    def aggregate(
        self,
        filters: AggregateFilter,
        group_by: Sequence[GroupDimension],
        window_days: int,
        now: Optional[datetime] = None,
    ) -> list[AggregateRow]:
        if not group_by:
            raise ValueError("group_by must name at least one dimension")

        cutoff = (now or utc_now()) - timedelta(days=window_days)
        conditions = ["created_at >= %s"]
        params: list[object] = [cutoff]
        if filters.category is not None:
            conditions.append("category = %s")
            params.append(filters.category.value)
        if filters.severity is not None:
            conditions.append("severity = %s")
            params.append(filters.severity.value)
        if filters.area is not None:
            conditions.append("lower(area) = lower(%s)")
            params.append(filters.area)

        select_dims = ", ".join(
            f"{DIMENSION_SQL[dim]} as {dim.value}" for dim in group_by
        )
        positions = ", ".join(str(index) for index in range(1, len(group_by) + 1))
        query = (
            f"select {select_dims}, count(*) as frequency, avg(confidence_score) as avg_confidence"
            f" from city_events_history where {' and '.join(conditions)}"
            f" group by {positions} order by frequency desc"
        )

        with db_cursor(self.settings) as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()

        logger.debug(
            "cold.aggregate group_by=%s rows=%s", [dim.value for dim in group_by], len(rows)
        )
        width = len(group_by)
        return [
            AggregateRow(
                dims={dim.value: str(value) for dim, value in zip(group_by, row[:width])},
                frequency=int(row[width]),
                avg_confidence=round(float(row[width + 1] or 0.0), 3),
            )
            for row in rows
        ]

    def _select_records(self, where: str, params: list[Any], limit: int) -> list[CanonicalEvent]:
        query = (
            f"select record from city_events_history where {where}"
            " order by created_at desc limit %s"
        )
        with db_cursor(self.settings) as cursor:
            cursor.execute(query, [*params, limit])
            rows = cursor.fetchall()
        return [CanonicalEvent.model_validate(row[0]) for row in rows]

    def query_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        since: datetime,
    ) -> list[CanonicalEvent]:
        where = (
            "created_at >= %s and latitude is not null and longitude is not null"
            f" and {DISTANCE_KM_SQL} <= %s"
        )
        return self._select_records(
            where, [since, latitude, latitude, longitude, radius_km], limit
        )

    def query_by_category_severity(
        self,
        category: EventCategory,
        severity: EventSeverity,
        limit: int,
        since: datetime,
    ) -> list[CanonicalEvent]:
        return self._select_records(
            "created_at >= %s and category = %s and severity = %s",
            [since, category.value, severity.value],
            limit,
        )

    def query_by_area(self, area: str, limit: int, since: datetime) -> list[CanonicalEvent]:
        return self._select_records(
            "created_at >= %s and lower(area) = lower(%s)",
            [since, area],
            limit,
        )

    def query_recent(self, limit: int, since: datetime) -> list[CanonicalEvent]:
        return self._select_records("created_at >= %s", [since], limit)
