"""
Schemas for health summary, report, and history endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.domain.health import HealthMetric, StateHealthReport, SystemHealthReport


class HealthSummaryResponse(BaseModel):
    healthy: bool
    status: str


class HealthMetricResponse(BaseModel):
    name: str
    value: float
    unit: str
    threshold: float
    status: str
    message: str
    timestamp: datetime


class StateHealthResponse(BaseModel):
    state: str
    data_source: str
    overall_health: str
    metrics: dict[str, HealthMetricResponse] = Field(default_factory=dict)
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    last_check_time: datetime


class HealthAlertResponse(BaseModel):
    severity: str
    message: str
    state: str | None = None


class SystemHealthResponse(BaseModel):
    timestamp: datetime
    overall_health: str
    healthy: bool
    state_reports: list[StateHealthResponse] = Field(default_factory=list)
    system_metrics: dict[str, Any] = Field(default_factory=dict)
    alerts: list[HealthAlertResponse] = Field(default_factory=list)


class HealthHistoryResponse(BaseModel):
    reports: list[SystemHealthResponse] = Field(default_factory=list)


def _metric_response(metric: HealthMetric) -> HealthMetricResponse:
    return HealthMetricResponse(
        name=metric.name,
        value=metric.value,
        unit=metric.unit,
        threshold=metric.threshold,
        status=metric.status,
        message=metric.message,
        timestamp=metric.timestamp,
    )


def _state_response(report: StateHealthReport) -> StateHealthResponse:
    return StateHealthResponse(
        state=report.state,
        data_source=report.data_source,
        overall_health=report.overall_health,
        metrics={key: _metric_response(metric) for key, metric in report.metrics.items()},
        issues=list(report.issues),
        recommendations=list(report.recommendations),
        last_check_time=report.last_check_time,
    )


def to_system_health_response(report: SystemHealthReport) -> SystemHealthResponse:
    return SystemHealthResponse(
        timestamp=report.timestamp,
        overall_health=report.overall_health,
        healthy=report.healthy,
        state_reports=[_state_response(item) for item in report.state_reports],
        system_metrics=dict(report.system_metrics),
        alerts=[
            HealthAlertResponse(severity=alert.severity, message=alert.message, state=alert.state)
            for alert in report.alerts
        ],
    )
