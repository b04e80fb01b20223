"""
app/api/dependencies.py

Shared FastAPI dependencies for the scheduler, health monitor, and alert
history.

All three are built once in the application lifespan and stored on
``app.state``; routers only ever see them through these getters.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from app.scheduler.jobs import APLSyncScheduler
from app.services.alerting import AlertHistory
from app.services.health_monitor import HealthMonitor


def get_sync_scheduler(request: Request) -> APLSyncScheduler:
    """
    Return the running APL sync scheduler or fail with 503.
    """

    sync_scheduler = getattr(request.app.state, "sync_scheduler", None)
    if sync_scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="APL sync scheduler is not initialised.",
        )
    return sync_scheduler


def get_health_monitor(request: Request) -> HealthMonitor:
    monitor = getattr(request.app.state, "health_monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Health monitor is not initialised.",
        )
    return monitor


def get_alert_history(request: Request) -> AlertHistory:
    history = getattr(request.app.state, "alert_history", None)
    if history is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert history is not initialised.",
        )
    return history
