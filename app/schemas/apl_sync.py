"""
Schemas for APL sync trigger, priority sync, status, run history, and entry
lookup endpoints.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SyncTriggerResponse(BaseModel):
    state: str
    run_id: str
    status: str
    triggered_by: str
    started_at: datetime
    completed_at: datetime | None = None
    consecutive_failures: int = 0
    significant_change: bool = False
    source_unchanged: bool = False
    error: str | None = None
    stats: dict[str, Any] | None = None


class SyncStatusResponse(BaseModel):
    state: str
    data_source: str
    status: str
    last_attempt_at: datetime | None = None
    last_sync_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    entries_count: int = 0
    file_hash: str | None = None
    last_error: str | None = None
    errors: list[str] = Field(default_factory=list)
    error_count: int = 0
    warnings: list[str] = Field(default_factory=list)
    is_running: bool = False
    cadence: str | None = None
    next_run_time: str | None = None


class SyncStatusListResponse(BaseModel):
    statuses: list[SyncStatusResponse] = Field(default_factory=list)


class SyncRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    state: str
    data_source: str
    status: str
    triggered_by: str
    source_file_hash: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    total_rows: int = 0
    valid_entries: int = 0
    invalid_entries: int = 0
    duplicates: int = 0
    additions: int = 0
    updates: int = 0
    expirations: int = 0
    error_message: str | None = None


class SyncRunListResponse(BaseModel):
    runs: list[SyncRunResponse] = Field(default_factory=list)


class APLEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    state: str
    upc: str
    eligible: bool
    benefit_category: str
    benefit_subcategory: str | None = None
    participant_types: list[str] | None = None
    size_restriction: dict[str, Any] | None = None
    brand_restriction: dict[str, Any] | None = None
    additional_restrictions: dict[str, Any] | None = None
    effective_date: date
    expiration_date: date | None = None
    data_source: str
    last_updated: datetime
    verified: bool = False
    product_description: str | None = None
    brand: str | None = None
    notes: str | None = None


class APLEntryListResponse(BaseModel):
    state: str
    upc: str
    entries: list[APLEntryResponse] = Field(default_factory=list)


PriorityReasonValue = Literal[
    "formula_shortage",
    "policy_change",
    "manual_override",
    "data_corruption",
    "push_notification",
    "user_report",
]


class PrioritySyncRequest(BaseModel):
    states: list[str] = Field(default_factory=list, description="State codes; empty means every jurisdiction")
    reason: PriorityReasonValue
    priority: Literal["low", "medium", "high", "critical"] = "high"
    requested_by: str = Field(default="api", max_length=120)
    notes: str | None = Field(default=None, max_length=2000)


class PrioritySyncResponse(BaseModel):
    request_id: str
    reason: str
    priority: str
    states: list[str]
    requested_by: str
    requested_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    notes: str | None = None
    status: str
    runs: list[SyncTriggerResponse] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)


class PrioritySyncListResponse(BaseModel):
    requests: list[PrioritySyncResponse] = Field(default_factory=list)
