"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

DEFAULT_USER_AGENT = "WIC-Benefits-App/1.0 (Non-profit; helping WIC participants)"


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


@dataclass(frozen=True)
class APLSourceSettings:
    """
    HTTP behavior for APL file downloads.
    """

    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_initial_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(frozen=True)
class SyncSettings:
    """
    Scheduler and alerting behavior shared by all jurisdictions.
    """

    scheduler_enabled: bool = True
    alert_threshold: int = 3
    significant_change_threshold: int = 100
    alert_webhook_url: str | None = None
    alert_timeout_seconds: float = 10.0
    misfire_grace_seconds: int = 3600
    health_check_interval_minutes: int = 15
    error_sample_limit: int = 10
    alert_history_limit: int = 500
    priority_history_limit: int = 100
    run_stale_after_minutes: int = 120


@dataclass(frozen=True)
class HealthSettings:
    """
    Threshold ladder anchors for the health monitor.
    """

    freshness_threshold_hours: float = 24.0
    success_rate_threshold: float = 95.0
    error_rate_threshold: float = 5.0
    consecutive_failure_threshold: int = 3
    average_duration_threshold_ms: float = 300_000.0
    window_days: int = 30
    history_limit: int = 100


@lru_cache(maxsize=1)
def get_apl_source_settings() -> APLSourceSettings:
    """
    Return APL download settings from environment variables.
    """

    return APLSourceSettings(
        timeout_seconds=max(1.0, _get_float_env("APL_HTTP_TIMEOUT_SECONDS", 30.0)),
        max_retries=max(0, _get_int_env("APL_HTTP_MAX_RETRIES", 2)),
        backoff_initial_seconds=max(0.1, _get_float_env("APL_HTTP_BACKOFF_INITIAL_SECONDS", 1.0)),
        backoff_multiplier=max(1.0, _get_float_env("APL_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        user_agent=_get_str_env("APL_USER_AGENT", DEFAULT_USER_AGENT),
    )


@lru_cache(maxsize=1)
def get_sync_settings() -> SyncSettings:
    """
    Return scheduler and alerting settings from environment variables.
    """

    return SyncSettings(
        scheduler_enabled=_get_bool_env("APL_SCHEDULER_ENABLED", True),
        alert_threshold=max(1, _get_int_env("APL_ALERT_THRESHOLD", 3)),
        significant_change_threshold=max(1, _get_int_env("APL_SIGNIFICANT_CHANGE_THRESHOLD", 100)),
        alert_webhook_url=_get_optional_str_env("APL_ALERT_WEBHOOK_URL"),
        alert_timeout_seconds=max(1.0, _get_float_env("APL_ALERT_TIMEOUT_SECONDS", 10.0)),
        misfire_grace_seconds=max(1, _get_int_env("APL_MISFIRE_GRACE_SECONDS", 3600)),
        health_check_interval_minutes=max(1, _get_int_env("HEALTH_CHECK_INTERVAL_MINUTES", 15)),
        error_sample_limit=max(1, _get_int_env("APL_ERROR_SAMPLE_LIMIT", 10)),
        alert_history_limit=max(1, _get_int_env("APL_ALERT_HISTORY_LIMIT", 500)),
        priority_history_limit=max(1, _get_int_env("APL_PRIORITY_HISTORY_LIMIT", 100)),
        run_stale_after_minutes=max(1, _get_int_env("APL_RUN_STALE_AFTER_MINUTES", 120)),
    )


@lru_cache(maxsize=1)
def get_health_settings() -> HealthSettings:
    """
    Return health monitor thresholds from environment variables.
    """

    return HealthSettings(
        freshness_threshold_hours=max(1.0, _get_float_env("HEALTH_FRESHNESS_THRESHOLD_HOURS", 24.0)),
        success_rate_threshold=min(100.0, max(0.0, _get_float_env("HEALTH_SUCCESS_RATE_THRESHOLD", 95.0))),
        error_rate_threshold=min(100.0, max(0.0, _get_float_env("HEALTH_ERROR_RATE_THRESHOLD", 5.0))),
        consecutive_failure_threshold=max(1, _get_int_env("HEALTH_CONSECUTIVE_FAILURE_THRESHOLD", 3)),
        average_duration_threshold_ms=max(1.0, _get_float_env("HEALTH_AVERAGE_DURATION_THRESHOLD_MS", 300_000.0)),
        window_days=max(1, _get_int_env("HEALTH_WINDOW_DAYS", 30)),
        history_limit=max(1, _get_int_env("HEALTH_HISTORY_LIMIT", 100)),
    )
