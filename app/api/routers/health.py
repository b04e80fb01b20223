"""
Health summary, report, and history endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_health_monitor
from app.schemas.health import (
    HealthHistoryResponse,
    HealthSummaryResponse,
    SystemHealthResponse,
    to_system_health_response,
)
from app.services.health_monitor import HealthMonitor

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthSummaryResponse)
def health_summary(monitor: HealthMonitor = Depends(get_health_monitor)) -> HealthSummaryResponse:
    healthy, overall = monitor.health_summary()
    return HealthSummaryResponse(healthy=healthy, status=overall)


@router.get("/report", response_model=SystemHealthResponse)
def health_report(monitor: HealthMonitor = Depends(get_health_monitor)) -> SystemHealthResponse:
    return to_system_health_response(monitor.check_system())


@router.get("/history", response_model=HealthHistoryResponse)
def health_history(
    limit: int = Query(default=10, ge=1, le=100, description="Max reports returned, newest last"),
    monitor: HealthMonitor = Depends(get_health_monitor),
) -> HealthHistoryResponse:
    return HealthHistoryResponse(
        reports=[to_system_health_response(report) for report in monitor.get_history(limit)]
    )
