"""
APL sync trigger, priority sync, status, run history, and entry lookup endpoints.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_sync_scheduler
from app.errors import ScheduleConflictError, UnknownJurisdictionError
from app.scheduler.jobs import APLSyncScheduler
from app.schemas.apl_sync import (
    APLEntryListResponse,
    APLEntryResponse,
    PrioritySyncListResponse,
    PrioritySyncRequest,
    PrioritySyncResponse,
    SyncRunListResponse,
    SyncRunResponse,
    SyncStatusListResponse,
    SyncStatusResponse,
    SyncTriggerResponse,
)
from app.validators.upc import normalize_upc
from db.models.apl_sync_run import SyncRunStatus
from db.models.apl_sync_status import APLSyncStatus
from db.repositories.apl_entry_repository import APLEntryRepository
from db.repositories.sync_run_repository import SyncRunRepository
from db.repositories.sync_status_repository import SyncStatusRepository
from db.session import get_db

router = APIRouter(prefix="/apl", tags=["apl-sync"])

ERROR_DISPLAY_LIMIT = 10


@router.post("/sync/{state}", response_model=SyncTriggerResponse)
def trigger_sync(
    state: str,
    sync_scheduler: APLSyncScheduler = Depends(get_sync_scheduler),
) -> SyncTriggerResponse:
    try:
        summary = sync_scheduler.trigger_manual(state)
    except UnknownJurisdictionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ScheduleConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    if summary.status == SyncRunStatus.FAILURE:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": summary.error or "APL sync failed",
                "run_id": summary.run_id,
                "consecutive_failures": summary.consecutive_failures,
            },
        )

    return SyncTriggerResponse(**summary.to_dict())


@router.post("/sync", response_model=PrioritySyncResponse)
def trigger_priority_sync(
    payload: PrioritySyncRequest,
    sync_scheduler: APLSyncScheduler = Depends(get_sync_scheduler),
) -> PrioritySyncResponse:
    try:
        result = sync_scheduler.trigger_priority(
            payload.states,
            reason=payload.reason,
            priority=payload.priority,
            requested_by=payload.requested_by,
            notes=payload.notes,
        )
    except UnknownJurisdictionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return PrioritySyncResponse(**result.to_dict())


@router.get("/sync-requests", response_model=PrioritySyncListResponse)
def get_priority_sync_requests(
    limit: int = Query(default=50, ge=1, le=500, description="Max requests returned, newest first"),
    sync_scheduler: APLSyncScheduler = Depends(get_sync_scheduler),
) -> PrioritySyncListResponse:
    requests = sync_scheduler.list_priority_requests(limit=limit)
    return PrioritySyncListResponse(
        requests=[PrioritySyncResponse(**request.to_dict()) for request in requests]
    )


@router.get("/sync-status", response_model=SyncStatusListResponse)
def get_sync_status(
    db: Session = Depends(get_db),
    sync_scheduler: APLSyncScheduler = Depends(get_sync_scheduler),
) -> SyncStatusListResponse:
    rows = {row.state: row for row in SyncStatusRepository(db).list_all()}
    statuses: list[SyncStatusResponse] = []
    for runtime in sync_scheduler.list_statuses():
        statuses.append(_to_status_response(runtime, rows.get(runtime["state"])))
    return SyncStatusListResponse(statuses=statuses)


@router.get("/sync-runs", response_model=SyncRunListResponse)
def get_sync_runs(
    state: str | None = Query(default=None, description="Optional two-letter state filter"),
    limit: int = Query(default=50, ge=1, le=500, description="Max runs returned"),
    db: Session = Depends(get_db),
) -> SyncRunListResponse:
    runs = SyncRunRepository(db).list_runs(state=state, limit=limit)
    return SyncRunListResponse(runs=[SyncRunResponse.model_validate(run) for run in runs])


@router.get("/entries/{state}/{upc}", response_model=APLEntryListResponse)
def get_entries(
    state: str,
    upc: str,
    on: date | None = Query(default=None, description="Only the entry in force on this date"),
    db: Session = Depends(get_db),
) -> APLEntryListResponse:
    normalized = normalize_upc(upc)
    if normalized is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid UPC: {upc!r}",
        )

    state_code = state.strip().upper()
    repository = APLEntryRepository(db)
    if on is None:
        records = repository.get_entries(state=state_code, upc=normalized)
    else:
        current = repository.get_current_entry(state=state_code, upc=normalized, on_date=on)
        records = [current] if current is not None else []
    if not records:
        suffix = f" on={on.isoformat()}" if on is not None else ""
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No APL entries for state={state_code} upc={normalized}{suffix}",
        )
    return APLEntryListResponse(
        state=state_code,
        upc=normalized,
        entries=[APLEntryResponse.model_validate(record) for record in records],
    )


def _capped_messages(stats: dict[str, Any] | None, key: str) -> tuple[list[str], int]:
    if not stats:
        return [], 0
    messages = list(stats.get(key) or [])[:ERROR_DISPLAY_LIMIT]
    total = int(stats.get(f"{key[:-1]}_count", len(messages)) or 0)
    if total > len(messages):
        messages.append(f"... and {total - len(messages)} more")
    return messages, total


def _to_status_response(runtime: dict[str, Any], row: APLSyncStatus | None) -> SyncStatusResponse:
    base = {
        "state": runtime["state"],
        "data_source": runtime["data_source"],
        "is_running": runtime["is_running"],
        "cadence": runtime["cadence"],
        "next_run_time": runtime["next_run_time"],
    }
    if row is None:
        return SyncStatusResponse(status="pending", **base)

    errors, error_count = _capped_messages(row.last_stats, "errors")
    warnings, _ = _capped_messages(row.last_stats, "warnings")
    return SyncStatusResponse(
        status=row.status,
        last_attempt_at=row.last_attempt_at,
        last_sync_at=row.last_sync_at,
        last_success_at=row.last_success_at,
        consecutive_failures=row.consecutive_failures,
        entries_count=row.entries_count,
        file_hash=row.file_hash,
        last_error=row.last_error,
        errors=errors,
        error_count=error_count,
        warnings=warnings,
        **base,
    )
