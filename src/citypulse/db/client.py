"""Database connection helpers."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import psycopg

from citypulse.config import Settings


SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def get_connection(settings: Optional[Settings] = None) -> psycopg.Connection:
    """Create a new database connection."""
    settings = settings or Settings()
    return psycopg.connect(settings.get_database_url())


@contextmanager
def db_cursor(settings: Optional[Settings] = None) -> Iterator[psycopg.Cursor]:
    """Yield a cursor with automatic commit/rollback."""
    conn = get_connection(settings)
    try:
        with conn.cursor() as cursor:
            yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def apply_schema(settings: Optional[Settings] = None) -> None:
    """Create tables and indexes if they do not exist."""
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")
    with db_cursor(settings) as cursor:
        cursor.execute(ddl)
