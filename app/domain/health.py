"""
app/domain/health.py

Derived health report models. Always recomputed from sync status and run
history; never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class HealthStatus:
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    CRITICAL = "critical"


HEALTH_SEVERITY_ORDER: dict[str, int] = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
    HealthStatus.CRITICAL: 3,
}


def worst_status(statuses: list[str]) -> str:
    if not statuses:
        return HealthStatus.HEALTHY
    return max(statuses, key=lambda status: HEALTH_SEVERITY_ORDER[status])


@dataclass(frozen=True)
class HealthMetric:
    name: str
    value: float
    unit: str
    threshold: float
    status: str
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class StateHealthReport:
    state: str
    data_source: str
    overall_health: str
    metrics: dict[str, HealthMetric]
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    last_check_time: datetime | None = None


@dataclass(frozen=True)
class HealthAlert:
    severity: str
    message: str
    state: str | None = None


@dataclass(frozen=True)
class SystemHealthReport:
    timestamp: datetime
    overall_health: str
    state_reports: list[StateHealthReport]
    system_metrics: dict[str, Any]
    alerts: list[HealthAlert] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.overall_health in {HealthStatus.HEALTHY, HealthStatus.DEGRADED}
