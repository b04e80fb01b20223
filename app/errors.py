"""
app/errors.py

Exception taxonomy for the APL sync pipeline.

Run-level errors (FetchError, StorageError) abort a run and count as a
failure. Row-level problems (RowTransformError, and the RowValidationError
records the validator returns) are counted in IngestionStats and never abort
a run. ScheduleConflictError means a run was refused because the
jurisdiction already has one in flight, in this process or another.
"""

from __future__ import annotations


class APLSyncError(Exception):
    """Base exception for APL sync failures."""


class FetchError(APLSyncError, RuntimeError):
    """
    Raised when the source file cannot be downloaded, read, or parsed.
    """

    def __init__(self, message: str, *, state: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.state = state
        self.status_code = status_code


class RowTransformError(APLSyncError, ValueError):
    """
    Raised when a raw row cannot be converted into a canonical entry.
    """

    def __init__(self, message: str, *, row_number: int | None = None, column: str | None = None) -> None:
        super().__init__(message)
        self.row_number = row_number
        self.column = column


class StorageError(APLSyncError, RuntimeError):
    """
    Raised when the sync transaction fails and has been rolled back.
    """


class ScheduleConflictError(APLSyncError, RuntimeError):
    """
    Raised when a run is requested while one is already in progress.
    """

    def __init__(self, state: str) -> None:
        super().__init__(f"APL sync already running for state={state}")
        self.state = state


class UnknownJurisdictionError(APLSyncError, KeyError):
    """Raised when a state code has no registered jurisdiction config."""

    def __init__(self, state: str) -> None:
        super().__init__(state)
        self.state = state

    def __str__(self) -> str:
        return f"No APL jurisdiction configured for state={self.state!r}"
