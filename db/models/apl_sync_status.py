"""
db/models/apl_sync_status.py

Singleton sync state per (state, data_source).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONVariant, TimestampMixin


class SyncStatusValue:
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


class APLSyncStatus(Base, TimestampMixin):
    __tablename__ = "apl_sync_status"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    data_source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SyncStatusValue.PENDING,
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entries_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="sha256 of the last successfully persisted source file",
    )
    source_etag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_last_modified: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Last-Modified header of the last persisted download, verbatim",
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_stats: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)

    __table_args__ = (
        UniqueConstraint("state", "data_source", name="uq_apl_sync_status_state_data_source"),
    )
