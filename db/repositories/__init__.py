"""
Repository layer exports.
"""

from db.repositories.apl_entry_repository import APLEntryRepository, UpsertCounts, UpsertOutcome
from db.repositories.sync_run_repository import SyncRunRepository
from db.repositories.sync_status_repository import SyncStatusRepository

__all__ = [
    "APLEntryRepository",
    "SyncRunRepository",
    "SyncStatusRepository",
    "UpsertCounts",
    "UpsertOutcome",
]
