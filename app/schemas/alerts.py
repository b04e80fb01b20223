"""
Schemas for the alert history endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.services.alerting import AlertRecord


class AlertResponse(BaseModel):
    id: str
    title: str
    message: str
    severity: str
    state: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None

    @classmethod
    def from_record(cls, record: AlertRecord) -> AlertResponse:
        alert = record.alert
        return cls(
            id=record.id,
            title=alert.title,
            message=alert.message,
            severity=alert.severity,
            state=alert.state,
            details=dict(alert.details),
            timestamp=alert.timestamp,
            acknowledged=record.acknowledged,
            acknowledged_at=record.acknowledged_at,
            acknowledged_by=record.acknowledged_by,
        )


class AlertListResponse(BaseModel):
    alerts: list[AlertResponse] = Field(default_factory=list)


class AlertAcknowledgeRequest(BaseModel):
    acknowledged_by: str | None = Field(default=None, max_length=120)
