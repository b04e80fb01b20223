"""
db/models/apl_sync_run.py

Run history for APL syncs; source of the trailing-window health metrics.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONVariant, TimestampMixin


class SyncRunStatus:
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


FAILED_RUN_STATUSES = frozenset({SyncRunStatus.FAILURE, SyncRunStatus.PARTIAL_FAILURE})


class SyncTrigger:
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    PRIORITY = "priority"


class APLSyncRun(Base, TimestampMixin):
    __tablename__ = "apl_sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    data_source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SyncRunStatus.RUNNING,
        comment="running, success, partial_failure, failure",
    )
    triggered_by: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SyncTrigger.SCHEDULER,
    )
    source_file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invalid_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    additions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expirations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONVariant,
        nullable=True,
        comment="Capped error/warning samples and per-state counters",
    )

    __table_args__ = (
        Index("ix_apl_sync_runs_state_started_at", "state", "started_at"),
        Index("ix_apl_sync_runs_status", "status"),
    )
