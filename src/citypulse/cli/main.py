"""Typer CLI entry point."""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import orjson
import typer
from pydantic import TypeAdapter, ValidationError

from citypulse.config import Settings
from citypulse.db.client import apply_schema, db_cursor
from citypulse.models import (
    CanonicalEvent,
    EventCategory,
    EventSeverity,
    LocationContext,
    LocationPriority,
    RawCandidate,
    SourceLocation,
)
from citypulse.runtime import Runtime, build_runtime
from citypulse.scheduler.runner import FetchScheduler
from citypulse.store.redis_hot import RedisHotStore
from citypulse.store.selectors import AreaSelector, CategorySeveritySelector, NearbySelector
from citypulse.utils.logging import configure_logging, get_logger
from citypulse.utils.time import utc_now


app = typer.Typer(help="City Pulse event pipeline CLI")
scheduler_app = typer.Typer(help="Fetch scheduler commands")
ingest_app = typer.Typer(help="Ingestion commands")
query_app = typer.Typer(help="Read live and historical events")
store_app = typer.Typer(help="Store maintenance and analytics")
locations_app = typer.Typer(help="Source location registry")
db_app = typer.Typer(help="Database utilities")

app.add_typer(scheduler_app, name="scheduler")
app.add_typer(ingest_app, name="ingest")
app.add_typer(query_app, name="query")
app.add_typer(store_app, name="store")
app.add_typer(locations_app, name="locations")
app.add_typer(db_app, name="db")

logger = get_logger(__name__)

MEMORY_HELP = "Use in-process stores instead of Redis/Postgres (dry run)"
candidate_list_adapter = TypeAdapter(list[RawCandidate])


@app.callback()
def main() -> None:
    """Initialize logging for all commands."""
    settings = Settings()
    configure_logging(settings.log_level)


def _runtime(memory: bool) -> Runtime:
    try:
        return build_runtime(Settings(), memory=memory)
    except ValueError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(1)


def _scheduler(runtime: Runtime) -> FetchScheduler:
    try:
        return runtime.scheduler()
    except ValueError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(1)


def _echo_json(data: Any) -> None:
    typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2, default=str).decode())


def _echo_events(events: list[CanonicalEvent]) -> None:
    _echo_json([event.model_dump(mode="json") for event in events])


# Scheduler


@scheduler_app.command("run")
def scheduler_run(memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP)) -> None:
    """Run every scheduled job at its interval until interrupted."""
    stop_event = threading.Event()
    with _runtime(memory) as runtime:
        scheduler = _scheduler(runtime)
        try:
            scheduler.run_forever(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            logger.info("scheduler.interrupted")


@scheduler_app.command("tick")
def scheduler_tick(
    tier: LocationPriority = typer.Option(LocationPriority.HIGH, help="HIGH or MEDIUM"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Run one tier once."""
    with _runtime(memory) as runtime:
        try:
            report = _scheduler(runtime).run_tier(tier)
        except ValueError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(1)
        _echo_json(report.to_dict())


@scheduler_app.command("emergency")
def scheduler_emergency(memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP)) -> None:
    """Run one emergency sweep."""
    with _runtime(memory) as runtime:
        _echo_json(_scheduler(runtime).run_emergency_sweep().to_dict())


@scheduler_app.command("stats")
def scheduler_stats(memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP)) -> None:
    """Show eligibility counts per tier."""
    with _runtime(memory) as runtime:
        _echo_json(_scheduler(runtime).statistics())


# Ingestion


@ingest_app.command("file")
def ingest_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of candidates"),
    area: Optional[str] = typer.Option(None, help="Area used when a candidate has none"),
    city: Optional[str] = typer.Option(None, help="City for synthesis context"),
    latitude: Optional[float] = typer.Option(None, help="Fallback latitude"),
    longitude: Optional[float] = typer.Option(None, help="Fallback longitude"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Ingest raw candidates from a JSON file."""
    try:
        candidates = candidate_list_adapter.validate_python(orjson.loads(path.read_bytes()))
    except (orjson.JSONDecodeError, ValidationError) as exc:
        typer.echo(f"Invalid candidate file: {exc}", err=True)
        raise typer.Exit(1)

    context = LocationContext(area=area, city=city, latitude=latitude, longitude=longitude)
    with _runtime(memory) as runtime:
        records = runtime.pipeline.ingest(candidates, context)
        _echo_events(records)


# Queries


@query_app.command("nearby")
def query_nearby(
    latitude: float = typer.Option(..., help="Latitude"),
    longitude: float = typer.Option(..., help="Longitude"),
    radius_km: float = typer.Option(5.0, help="Search radius in km"),
    limit: int = typer.Option(50, help="Max records"),
    since_hours: Optional[int] = typer.Option(None, help="Only records from the last N hours"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Events within a radius of a point."""
    since = utc_now() - timedelta(hours=since_hours) if since_hours else None
    selector = NearbySelector(
        latitude=latitude, longitude=longitude, radius_km=radius_km, limit=limit, since=since
    )
    with _runtime(memory) as runtime:
        _echo_events(runtime.pipeline.query(selector))


@query_app.command("area")
def query_area(
    area: str = typer.Option(..., help="Area name"),
    limit: int = typer.Option(50, help="Max records"),
    since_hours: Optional[int] = typer.Option(None, help="Only records from the last N hours"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Events in one area."""
    since = utc_now() - timedelta(hours=since_hours) if since_hours else None
    with _runtime(memory) as runtime:
        _echo_events(runtime.pipeline.query(AreaSelector(area=area, limit=limit, since=since)))


@query_app.command("category")
def query_category(
    category: EventCategory = typer.Option(..., help="Event category"),
    severity: EventSeverity = typer.Option(..., help="Event severity"),
    limit: int = typer.Option(50, help="Max records"),
    since_hours: Optional[int] = typer.Option(None, help="Only records from the last N hours"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Events with one category and severity."""
    since = utc_now() - timedelta(hours=since_hours) if since_hours else None
    selector = CategorySeveritySelector(
        category=category, severity=severity, limit=limit, since=since
    )
    with _runtime(memory) as runtime:
        _echo_events(runtime.pipeline.query(selector))


# Store


@store_app.command("sweep")
def store_sweep(memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP)) -> None:
    """Remove expired entries from the hot tier."""
    with _runtime(memory) as runtime:
        removed = runtime.store.sweep_expired()
        typer.echo(f"Removed {removed} expired entries")


@store_app.command("patterns")
def store_patterns(
    category: EventCategory = typer.Option(..., help="Event category"),
    days: int = typer.Option(30, help="Window in days"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Recurring time/area patterns for a category."""
    with _runtime(memory) as runtime:
        _echo_json(runtime.store.patterns(category, days))


@store_app.command("stats")
def store_stats(
    days: int = typer.Option(7, help="Window in days"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Event counts per category and severity."""
    with _runtime(memory) as runtime:
        _echo_json(runtime.store.statistics(days))


@store_app.command("history")
def store_history(
    limit: int = typer.Option(50, help="Max records"),
    days: Optional[int] = typer.Option(None, help="Window in days (default from settings)"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Most recent records from the cold tier."""
    with _runtime(memory) as runtime:
        _echo_events(runtime.store.history(limit, days))


@store_app.command("ping")
def store_ping() -> None:
    """Check hot tier connectivity."""
    if not RedisHotStore.from_settings(Settings()).ping():
        typer.echo("Redis check failed", err=True)
        raise typer.Exit(1)
    logger.info("store.ping.ok")


# Locations


@locations_app.command("register")
def locations_register(
    area: str = typer.Option(..., help="Area name"),
    latitude: float = typer.Option(..., help="Latitude"),
    longitude: float = typer.Option(..., help="Longitude"),
    priority: LocationPriority = typer.Option(LocationPriority.MEDIUM, help="Polling tier"),
    city: str = typer.Option("Bengaluru", help="City"),
    landmark: Optional[str] = typer.Option(None, help="Nearby landmark"),
    pincode: Optional[str] = typer.Option(None, help="Postal code"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Add a polling target."""
    location = SourceLocation(
        area=area,
        latitude=latitude,
        longitude=longitude,
        priority=priority,
        city=city,
        landmark=landmark,
        pincode=pincode,
    )
    with _runtime(memory) as runtime:
        try:
            stored = runtime.registry.register(location)
        except ValueError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(1)
        _echo_json(stored.model_dump(mode="json"))


@locations_app.command("list")
def locations_list(
    active_only: bool = typer.Option(False, help="Hide deactivated locations"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """List polling targets."""
    with _runtime(memory) as runtime:
        locations = runtime.registry.snapshot(active_only=active_only)
        _echo_json([location.model_dump(mode="json") for location in locations])


@locations_app.command("deactivate")
def locations_deactivate(
    location_id: str = typer.Argument(..., help="Location id"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Stop polling a location."""
    with _runtime(memory) as runtime:
        if not runtime.registry.deactivate(location_id):
            typer.echo(f"Unknown location: {location_id}", err=True)
            raise typer.Exit(1)
        typer.echo(f"Deactivated {location_id}")


@locations_app.command("reset")
def locations_reset(
    location_ids: Optional[list[str]] = typer.Argument(None, help="Ids to reset (default all)"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
) -> None:
    """Make locations due on the next tick."""
    with _runtime(memory) as runtime:
        count = runtime.registry.reset_windows(location_ids or None)
        typer.echo(f"Reset {count} locations")


# Database


@db_app.command("check")
def db_check() -> None:
    """Check database connectivity."""
    try:
        with db_cursor() as cursor:
            cursor.execute("select 1")
            logger.info("db.check.ok")
    except Exception as exc:
        logger.error("db.check.failed: %s", exc)
        typer.echo(f"Database check failed: {exc}", err=True)
        raise typer.Exit(1)


@db_app.command("init")
def db_init() -> None:
    """Create tables and indexes."""
    try:
        apply_schema()
        logger.info("db.init.ok")
    except Exception as exc:
        logger.error("db.init.failed: %s", exc)
        typer.echo(f"Database init failed: {exc}", err=True)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
