"""Postgres persistence for source locations."""

from __future__ import annotations

from typing import Optional

from citypulse.config import Settings
from citypulse.db.client import db_cursor
from citypulse.models import SourceLocation


COLUMNS = (
    "id",
    "latitude",
    "longitude",
    "area",
    "city",
    "state",
    "country",
    "pincode",
    "landmark",
    "priority",
    "active",
    "registered_at",
    "last_fetched_at",
    "last_emergency_sweep_at",
    "total_fetches",
    "total_events",
)

SELECT_SQL = f"select {', '.join(COLUMNS)} from source_locations order by registered_at"

UPSERT_SQL = (
    f"insert into source_locations ({', '.join(COLUMNS)}) "
    f"values ({', '.join(['%s'] * len(COLUMNS))}) "
    "on conflict (id) do update set "
    + ", ".join(f"{column} = excluded.{column}" for column in COLUMNS if column != "id")
)


class PostgresLocationRepository:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()

    def load_all(self) -> list[SourceLocation]:
        with db_cursor(self.settings) as cursor:
            cursor.execute(SELECT_SQL)
            rows = cursor.fetchall()
        return [SourceLocation.model_validate(dict(zip(COLUMNS, row))) for row in rows]

    def save(self, location: SourceLocation) -> None:
        values = location.model_dump()
        values["priority"] = location.priority.value
        with db_cursor(self.settings) as cursor:
            cursor.execute(UPSERT_SQL, [values[column] for column in COLUMNS])
