"""
app/schemas package marker.
"""

from app.schemas.alerts import AlertAcknowledgeRequest, AlertListResponse, AlertResponse
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
from app.schemas.health import (
    HealthHistoryResponse,
    HealthSummaryResponse,
    SystemHealthResponse,
)

__all__ = [
    "AlertAcknowledgeRequest",
    "AlertListResponse",
    "AlertResponse",
    "APLEntryListResponse",
    "APLEntryResponse",
    "HealthHistoryResponse",
    "HealthSummaryResponse",
    "PrioritySyncListResponse",
    "PrioritySyncRequest",
    "PrioritySyncResponse",
    "SyncRunListResponse",
    "SyncRunResponse",
    "SyncStatusListResponse",
    "SyncStatusResponse",
    "SyncTriggerResponse",
    "SystemHealthResponse",
]
