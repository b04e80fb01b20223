"""
Alert history and acknowledgement endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from app.api.dependencies import get_alert_history
from app.schemas.alerts import AlertAcknowledgeRequest, AlertListResponse, AlertResponse
from app.services.alerting import AlertHistory

router = APIRouter(prefix="/apl/alerts", tags=["apl-alerts"])


@router.get("", response_model=AlertListResponse)
def list_alerts(
    limit: int = Query(default=50, ge=1, le=500, description="Max alerts returned, newest first"),
    state: str | None = Query(default=None, description="Optional two-letter state filter"),
    unacknowledged: bool = Query(default=False, description="Only alerts not yet acknowledged"),
    history: AlertHistory = Depends(get_alert_history),
) -> AlertListResponse:
    records = history.recent(
        limit=limit,
        state=state.strip().upper() if state else None,
        unacknowledged_only=unacknowledged,
    )
    return AlertListResponse(alerts=[AlertResponse.from_record(record) for record in records])


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
def acknowledge_alert(
    alert_id: str,
    payload: AlertAcknowledgeRequest | None = Body(default=None),
    history: AlertHistory = Depends(get_alert_history),
) -> AlertResponse:
    record = history.acknowledge(alert_id, acknowledged_by=payload.acknowledged_by if payload else None)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No alert with id={alert_id}")
    return AlertResponse.from_record(record)
