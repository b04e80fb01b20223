"""
Repository for the per-(state, data_source) sync state machine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, or_, select, update
from sqlalchemy.orm import Session

from db.models.apl_sync_status import APLSyncStatus, SyncStatusValue


class SyncStatusRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, *, state: str, data_source: str) -> APLSyncStatus | None:
        stmt = select(APLSyncStatus).where(
            APLSyncStatus.state == state,
            APLSyncStatus.data_source == data_source,
        )
        return self._session.scalars(stmt).one_or_none()

    def get_or_create(self, *, state: str, data_source: str) -> APLSyncStatus:
        status = self.get(state=state, data_source=data_source)
        if status is not None:
            return status
        status = APLSyncStatus(
            state=state,
            data_source=data_source,
            status=SyncStatusValue.PENDING,
            consecutive_failures=0,
            entries_count=0,
        )
        self._session.add(status)
        self._session.flush()
        return status

    def list_all(self) -> list[APLSyncStatus]:
        stmt: Select[tuple[APLSyncStatus]] = select(APLSyncStatus).order_by(
            APLSyncStatus.state,
            APLSyncStatus.data_source,
        )
        return list(self._session.scalars(stmt).all())

    def get_previous_fingerprint(self, *, state: str, data_source: str) -> str | None:
        status = self.get(state=state, data_source=data_source)
        return status.file_hash if status is not None else None

    def try_mark_running(
        self,
        *,
        state: str,
        data_source: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """
        Claim the run slot for (state, data_source); False if another run holds it.

        The claim is one conditional UPDATE, so two processes racing for the
        same jurisdiction cannot both win. A ``running`` row whose last attempt
        is older than ``stale_before`` is treated as abandoned and reclaimed.
        """

        status = self.get_or_create(state=state, data_source=data_source)
        stmt = (
            update(APLSyncStatus)
            .where(
                APLSyncStatus.state == state,
                APLSyncStatus.data_source == data_source,
                or_(
                    APLSyncStatus.status != SyncStatusValue.RUNNING,
                    APLSyncStatus.last_attempt_at.is_(None),
                    APLSyncStatus.last_attempt_at < stale_before,
                ),
            )
            .values(status=SyncStatusValue.RUNNING, last_attempt_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        self._session.expire(status)
        return result.rowcount == 1

    def mark_success(
        self,
        *,
        state: str,
        data_source: str,
        fingerprint: str | None,
        entries_count: int,
        stats: dict[str, Any] | None = None,
        source_etag: str | None = None,
        source_last_modified: str | None = None,
    ) -> APLSyncStatus:
        now = datetime.now(timezone.utc)
        status = self.get_or_create(state=state, data_source=data_source)
        status.status = SyncStatusValue.SUCCESS
        status.last_sync_at = now
        status.last_success_at = now
        status.consecutive_failures = 0
        status.entries_count = entries_count
        status.file_hash = fingerprint
        status.source_etag = source_etag
        status.source_last_modified = source_last_modified
        status.last_error = None
        status.last_stats = stats
        return status

    def mark_source_unchanged(self, *, state: str, data_source: str) -> APLSyncStatus:
        """
        Record a run that skipped the download because the source was unchanged.

        Counts as a success; the stored fingerprint, validators, and entry
        count are left as they were.
        """

        now = datetime.now(timezone.utc)
        status = self.get_or_create(state=state, data_source=data_source)
        status.status = SyncStatusValue.SUCCESS
        status.last_sync_at = now
        status.last_success_at = now
        status.consecutive_failures = 0
        status.last_error = None
        return status

    def mark_failure(
        self,
        *,
        state: str,
        data_source: str,
        error_message: str,
        stats: dict[str, Any] | None = None,
        data_persisted: bool = False,
        fingerprint: str | None = None,
        entries_count: int | None = None,
        source_etag: str | None = None,
        source_last_modified: str | None = None,
    ) -> APLSyncStatus:
        """
        Record a failed or partially failed run; increments the failure counter by one.

        ``data_persisted`` marks a partial failure: the transaction committed,
        so the fingerprint and entry count move forward with it.
        """

        now = datetime.now(timezone.utc)
        status = self.get_or_create(state=state, data_source=data_source)
        status.status = SyncStatusValue.FAILURE
        status.consecutive_failures = max(0, status.consecutive_failures or 0) + 1
        status.last_error = error_message
        if stats is not None:
            status.last_stats = stats
        if data_persisted:
            status.last_sync_at = now
            if fingerprint is not None:
                status.file_hash = fingerprint
                status.source_etag = source_etag
                status.source_last_modified = source_last_modified
            if entries_count is not None:
                status.entries_count = entries_count
        return status
