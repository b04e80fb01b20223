"""
Repository for APL sync run history.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app.domain.apl import IngestionStats
from db.models.apl_sync_run import APLSyncRun, SyncRunStatus, SyncTrigger


class SyncRunRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_run(
        self,
        *,
        state: str,
        data_source: str,
        triggered_by: str = SyncTrigger.SCHEDULER,
        started_at: datetime | None = None,
    ) -> APLSyncRun:
        run = APLSyncRun(
            state=state,
            data_source=data_source,
            status=SyncRunStatus.RUNNING,
            triggered_by=triggered_by,
            started_at=started_at or datetime.now(timezone.utc),
        )
        self._session.add(run)
        self._session.flush()
        return run

    def get_run(self, run_id: uuid.UUID) -> APLSyncRun | None:
        return self._session.get(APLSyncRun, run_id)

    def list_runs(
        self,
        *,
        state: str | None = None,
        since: datetime | None = None,
        limit: int | None = 100,
    ) -> list[APLSyncRun]:
        stmt: Select[tuple[APLSyncRun]] = select(APLSyncRun)

        if state:
            stmt = stmt.where(APLSyncRun.state == state.upper())
        if since is not None:
            stmt = stmt.where(APLSyncRun.started_at >= since)

        stmt = stmt.order_by(APLSyncRun.started_at.desc())
        if limit is not None:
            stmt = stmt.limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def mark_finished(
        self,
        *,
        run_id: uuid.UUID,
        status: str,
        stats: IngestionStats | None = None,
        fingerprint: str | None = None,
        error_message: str | None = None,
        result_payload: dict[str, Any] | None = None,
    ) -> APLSyncRun | None:
        run = self.get_run(run_id)
        if run is None:
            return None

        completed_at = datetime.now(timezone.utc)
        run.status = status
        run.completed_at = completed_at
        run.source_file_hash = fingerprint
        run.error_message = error_message
        run.result_payload = result_payload

        started_at = run.started_at
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=timezone.utc)
        run.duration_ms = max(0, int((completed_at - started_at).total_seconds() * 1000))

        if stats is not None:
            run.total_rows = stats.total_rows
            run.valid_entries = stats.valid_entries
            run.invalid_entries = stats.invalid_entries
            run.duplicates = stats.duplicates
            run.additions = stats.additions
            run.updates = stats.updates
            run.expirations = stats.expirations
        return run
