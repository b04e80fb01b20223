"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.apl_entry import APLEntryRecord
from db.models.apl_sync_run import APLSyncRun, SyncRunStatus, SyncTrigger
from db.models.apl_sync_status import APLSyncStatus, SyncStatusValue

__all__ = [
    "APLEntryRecord",
    "APLSyncRun",
    "APLSyncStatus",
    "SyncRunStatus",
    "SyncStatusValue",
    "SyncTrigger",
]
