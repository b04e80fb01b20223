from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI


def _validate_env() -> None:
    """
    Validate required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - A database URL must be configured; SQLite is not permitted.
    - APL_ENABLED_STATES, when set, may only name known jurisdictions.
    - Every ``<STATE>_SYNC_CRON`` override must be a valid crontab expression.
    """

    from apscheduler.triggers.cron import CronTrigger

    from app.jurisdictions import get_jurisdictions, known_states
    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Database URL ---------------------------------------------------
    database_url = os.getenv("DATABASE_URL", "").strip()
    cloud_database_url = os.getenv("CLOUD_DATABASE_URL", "").strip()
    local_database_url = os.getenv("LOCAL_DATABASE_URL", "").strip()
    if not (database_url or cloud_database_url or local_database_url):
        errors.append(
            "No database URL configured. Set DATABASE_URL, CLOUD_DATABASE_URL or LOCAL_DATABASE_URL."
        )
    elif database_url.startswith("sqlite"):
        errors.append("DATABASE_URL points at SQLite; only PostgreSQL is supported.")

    # --- Jurisdictions --------------------------------------------------
    enabled_raw = os.getenv("APL_ENABLED_STATES", "").strip()
    if enabled_raw:
        unknown = sorted(
            {token.strip().upper() for token in enabled_raw.split(",") if token.strip()} - set(known_states())
        )
        if unknown:
            errors.append(
                f"APL_ENABLED_STATES names unknown jurisdictions: {', '.join(unknown)}. "
                f"Allowed values: {', '.join(known_states())}."
            )

    if not errors:
        for state, config in get_jurisdictions().items():
            for cron in {config.default_cron, *(phase.cron for phase in config.rollout_phases)}:
                try:
                    CronTrigger.from_crontab(cron, timezone=config.timezone)
                except ValueError as exc:
                    errors.append(f"{state}_SYNC_CRON={cron!r} is not a valid crontab expression: {exc}")

    if errors:
        raise RuntimeError(
            "Startup validation failed, missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_db() -> None:
    """Open a session and run SELECT 1. Raises RuntimeError if the DB is unreachable."""
    from sqlalchemy import text

    from db.session import SessionLocal

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc


def _check_schema() -> None:
    """
    Every APL table registered on Base.metadata must exist in the database.

    Does NOT auto-migrate; the operator runs ``alembic upgrade head``.
    """
    from sqlalchemy import inspect as sa_inspect

    import db.models  # noqa: F401 - registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    inspector = sa_inspect(get_engine())
    actual: set[str] = set(inspector.get_table_names())
    expected: set[str] = set(Base.metadata.tables.keys())
    missing = expected - actual

    if missing:
        log = logging.getLogger(__name__)
        log.critical(
            "Schema mismatch: %d APL table(s) absent from the database: %s. "
            "Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Check the DB, build the health monitor, alert history and sync scheduler, and run the scheduler if enabled."""
    log = logging.getLogger(__name__)
    _check_db()
    log.info("Database connectivity confirmed")
    _check_schema()
    log.info("Database schema validated")

    from app.config import get_sync_settings
    from app.scheduler.jobs import build_scheduler
    from app.services.alerting import AlertHistory
    from app.services.health_monitor import HealthMonitor

    settings = get_sync_settings()
    health_monitor = HealthMonitor()
    alert_history = AlertHistory(max_items=settings.alert_history_limit)
    sync_scheduler = build_scheduler(
        health_monitor=health_monitor,
        alert_history=alert_history,
        settings=settings,
    )
    application.state.health_monitor = health_monitor
    application.state.alert_history = alert_history
    application.state.sync_scheduler = sync_scheduler

    if settings.scheduler_enabled:
        sync_scheduler.start()
        log.info("Scheduler started with %d jobs", len(sync_scheduler.scheduler.get_jobs()))
    else:
        log.info("Scheduler disabled by APL_SCHEDULER_ENABLED; manual triggers only")
    try:
        yield
    finally:
        sync_scheduler.shutdown(wait=True)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="WIC APL Sync API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import alerts_router, apl_sync_router, health_router

    application.include_router(apl_sync_router)
    application.include_router(alerts_router)
    application.include_router(health_router)

    return application


app = create_app()
