"""Scheduler run logging helpers."""

from __future__ import annotations

from typing import Optional

from psycopg import Cursor
from psycopg.types.json import Jsonb


def create_run(cursor: Cursor, job: str) -> int:
    cursor.execute(
        "insert into scheduler_runs (job, status) values (%s, 'running') returning run_id",
        (job,),
    )
    return int(cursor.fetchone()[0])


def complete_run_success(
    cursor: Cursor,
    run_id: int,
    eligible_count: int,
    succeeded_count: int,
    failed_count: int,
    stored_count: int,
) -> None:
    cursor.execute(
        "update scheduler_runs set status = 'success', finished_at = now(), "
        "eligible_count = %s, succeeded_count = %s, failed_count = %s, stored_count = %s "
        "where run_id = %s",
        (eligible_count, succeeded_count, failed_count, stored_count, run_id),
    )


def complete_run_failed(
    cursor: Cursor,
    run_id: int,
    error: Exception,
    eligible_count: Optional[int] = None,
) -> None:
    cursor.execute(
        "update scheduler_runs set status = 'failed', finished_at = now(), "
        "eligible_count = %s, error_json = %s where run_id = %s",
        (eligible_count, Jsonb({"error": str(error)}), run_id),
    )
