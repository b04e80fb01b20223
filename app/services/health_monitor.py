"""
app/services/health_monitor.py

Derives per-state and system-wide sync health from SyncStatus rows and run
history.

Five metrics per state, each mapped through its own threshold ladder:

  data_freshness        hours since last successful sync
  sync_success_rate     % of finished runs in the trailing window that succeeded
  error_rate            % of finished runs in the window that failed
  average_sync_duration mean run duration (ms) in the window
  consecutive_failures  current failure streak

A state's health is its worst metric. System health is critical if any state
is critical, unhealthy if any is unhealthy, degraded only when more than one
state is degraded, otherwise healthy. Reports are recomputed on every check
and only a bounded history is retained in memory.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session, sessionmaker

from app.config import HealthSettings, get_health_settings
from app.domain.health import (
    HealthAlert,
    HealthMetric,
    HealthStatus,
    StateHealthReport,
    SystemHealthReport,
    worst_status,
)
from app.jurisdictions import JurisdictionConfig, get_jurisdictions
from db.base import as_utc
from db.models.apl_sync_run import FAILED_RUN_STATUSES, SyncRunStatus
from db.repositories.sync_run_repository import SyncRunRepository
from db.repositories.sync_status_repository import SyncStatusRepository

logger = logging.getLogger(__name__)

FRESHNESS_DEGRADED_HOURS = 72.0
FRESHNESS_UNHEALTHY_HOURS = 168.0
SUCCESS_RATE_DEGRADED = 80.0
SUCCESS_RATE_UNHEALTHY = 50.0
ERROR_RATE_DEGRADED = 20.0
ERROR_RATE_UNHEALTHY = 50.0
SYSTEM_FRESHNESS_SCORE_CRITICAL = 50.0


# ---------------------------------------------------------------------------
# Threshold ladders
# ---------------------------------------------------------------------------


def classify_freshness(age_hours: float | None, threshold_hours: float) -> str:
    if age_hours is None:
        return HealthStatus.CRITICAL
    if age_hours <= threshold_hours:
        return HealthStatus.HEALTHY
    if age_hours <= FRESHNESS_DEGRADED_HOURS:
        return HealthStatus.DEGRADED
    if age_hours <= FRESHNESS_UNHEALTHY_HOURS:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def classify_success_rate(rate: float, threshold: float) -> str:
    if rate >= threshold:
        return HealthStatus.HEALTHY
    if rate >= SUCCESS_RATE_DEGRADED:
        return HealthStatus.DEGRADED
    if rate >= SUCCESS_RATE_UNHEALTHY:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def classify_error_rate(rate: float, threshold: float) -> str:
    if rate <= threshold:
        return HealthStatus.HEALTHY
    if rate <= ERROR_RATE_DEGRADED:
        return HealthStatus.DEGRADED
    if rate <= ERROR_RATE_UNHEALTHY:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def classify_duration(average_ms: float, threshold_ms: float) -> str:
    if average_ms <= threshold_ms:
        return HealthStatus.HEALTHY
    if average_ms <= threshold_ms * 2:
        return HealthStatus.DEGRADED
    if average_ms <= threshold_ms * 3:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def classify_consecutive_failures(failures: int, threshold: int) -> str:
    if failures <= 0:
        return HealthStatus.HEALTHY
    if failures < threshold:
        return HealthStatus.DEGRADED
    if failures < threshold * 2:
        return HealthStatus.UNHEALTHY
    return HealthStatus.CRITICAL


def aggregate_system_health(state_healths: list[str]) -> str:
    if HealthStatus.CRITICAL in state_healths:
        return HealthStatus.CRITICAL
    if HealthStatus.UNHEALTHY in state_healths:
        return HealthStatus.UNHEALTHY
    if state_healths.count(HealthStatus.DEGRADED) > 1:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StateSyncSnapshot:
    """
    Raw numbers one state report is derived from.
    """

    last_success_at: datetime | None
    consecutive_failures: int
    total_runs: int
    successful_runs: int
    failed_runs: int
    average_duration_ms: float


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class HealthMonitor:
    """
    Computes health reports on demand and keeps a bounded report history.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        jurisdictions: Mapping[str, JurisdictionConfig] | None = None,
        settings: HealthSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._jurisdictions = dict(jurisdictions) if jurisdictions is not None else get_jurisdictions()
        self._settings = settings or get_health_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._history: deque[SystemHealthReport] = deque(maxlen=self._settings.history_limit)
        self._lock = threading.Lock()

    # --- snapshots -------------------------------------------------------

    def load_snapshot(self, session: Session, config: JurisdictionConfig, *, now: datetime) -> StateSyncSnapshot:
        status = SyncStatusRepository(session).get(state=config.state, data_source=config.data_source)
        runs = SyncRunRepository(session).list_runs(
            state=config.state,
            since=now - timedelta(days=self._settings.window_days),
            limit=None,
        )
        finished = [run for run in runs if run.status != SyncRunStatus.RUNNING]
        successful = sum(1 for run in finished if run.status == SyncRunStatus.SUCCESS)
        failed = sum(1 for run in finished if run.status in FAILED_RUN_STATUSES)
        durations = [run.duration_ms for run in finished if run.duration_ms is not None]

        return StateSyncSnapshot(
            last_success_at=as_utc(status.last_success_at) if status is not None else None,
            consecutive_failures=status.consecutive_failures if status is not None else 0,
            total_runs=len(finished),
            successful_runs=successful,
            failed_runs=failed,
            average_duration_ms=(sum(durations) / len(durations)) if durations else 0.0,
        )

    # --- reports ---------------------------------------------------------

    def build_state_report(
        self,
        config: JurisdictionConfig,
        snapshot: StateSyncSnapshot,
        *,
        now: datetime,
    ) -> StateHealthReport:
        settings = self._settings
        failure_threshold = config.alert_threshold or settings.consecutive_failure_threshold

        age_hours: float | None = None
        if snapshot.last_success_at is not None:
            age_hours = max(0.0, (now - snapshot.last_success_at).total_seconds() / 3600.0)

        success_rate = (
            snapshot.successful_runs / snapshot.total_runs * 100.0 if snapshot.total_runs else 100.0
        )
        error_rate = snapshot.failed_runs / snapshot.total_runs * 100.0 if snapshot.total_runs else 0.0

        metrics = {
            "data_freshness": HealthMetric(
                name="Data Freshness",
                value=-1.0 if age_hours is None else round(age_hours, 2),
                unit="hours",
                threshold=settings.freshness_threshold_hours,
                status=classify_freshness(age_hours, settings.freshness_threshold_hours),
                message="Never synced successfully"
                if age_hours is None
                else f"Last successful sync {int(age_hours)} hours ago",
                timestamp=now,
            ),
            "sync_success_rate": HealthMetric(
                name="Sync Success Rate",
                value=round(success_rate, 2),
                unit="%",
                threshold=settings.success_rate_threshold,
                status=classify_success_rate(success_rate, settings.success_rate_threshold),
                message=f"{success_rate:.1f}% of syncs successful",
                timestamp=now,
            ),
            "error_rate": HealthMetric(
                name="Error Rate",
                value=round(error_rate, 2),
                unit="%",
                threshold=settings.error_rate_threshold,
                status=classify_error_rate(error_rate, settings.error_rate_threshold),
                message=f"{error_rate:.1f}% of syncs failed",
                timestamp=now,
            ),
            "average_sync_duration": HealthMetric(
                name="Average Sync Duration",
                value=round(snapshot.average_duration_ms, 2),
                unit="ms",
                threshold=settings.average_duration_threshold_ms,
                status=classify_duration(snapshot.average_duration_ms, settings.average_duration_threshold_ms),
                message=f"Average sync takes {snapshot.average_duration_ms / 1000:.1f}s",
                timestamp=now,
            ),
            "consecutive_failures": HealthMetric(
                name="Consecutive Failures",
                value=float(snapshot.consecutive_failures),
                unit="count",
                threshold=float(failure_threshold),
                status=classify_consecutive_failures(snapshot.consecutive_failures, failure_threshold),
                message=f"{snapshot.consecutive_failures} consecutive sync failures",
                timestamp=now,
            ),
        }

        issues = self._identify_issues(metrics)
        return StateHealthReport(
            state=config.state,
            data_source=config.data_source,
            overall_health=worst_status([metric.status for metric in metrics.values()]),
            metrics=metrics,
            issues=issues,
            recommendations=self._recommendations(metrics, issues, failure_threshold=failure_threshold),
            last_check_time=now,
        )

    def check_state(self, state: str) -> StateHealthReport:
        """
        Compute one state's report without touching the history.
        """

        config = self._jurisdictions[state.upper()]
        now = self._clock()
        session = self._session_factory()
        try:
            snapshot = self.load_snapshot(session, config, now=now)
        finally:
            session.close()
        return self.build_state_report(config, snapshot, now=now)

    def check_system(self) -> SystemHealthReport:
        """
        Compute a fresh system report for every configured state and record it.
        """

        now = self._clock()
        snapshots: dict[str, StateSyncSnapshot] = {}
        session = self._session_factory()
        try:
            for state, config in self._jurisdictions.items():
                snapshots[state] = self.load_snapshot(session, config, now=now)
        finally:
            session.close()

        state_reports = [
            self.build_state_report(self._jurisdictions[state], snapshot, now=now)
            for state, snapshot in snapshots.items()
        ]

        total = sum(snapshot.total_runs for snapshot in snapshots.values())
        successful = sum(snapshot.successful_runs for snapshot in snapshots.values())
        failed = sum(snapshot.failed_runs for snapshot in snapshots.values())
        weighted_duration = sum(
            snapshot.average_duration_ms * snapshot.total_runs for snapshot in snapshots.values()
        )
        system_metrics = {
            "total_syncs": total,
            "successful_syncs": successful,
            "failed_syncs": failed,
            "average_duration_ms": round(weighted_duration / total, 2) if total else 0.0,
            "data_freshness_score": round(successful / total * 100.0, 2) if total else 0.0,
        }

        report = SystemHealthReport(
            timestamp=now,
            overall_health=aggregate_system_health([item.overall_health for item in state_reports]),
            state_reports=state_reports,
            system_metrics=system_metrics,
            alerts=self._alerts(state_reports, system_metrics),
        )
        with self._lock:
            self._history.append(report)

        logger.info(
            "Health check complete overall=%s states=%s alerts=%s",
            report.overall_health,
            {item.state: item.overall_health for item in state_reports},
            len(report.alerts),
        )
        return report

    # --- history ---------------------------------------------------------

    def get_history(self, limit: int = 10) -> list[SystemHealthReport]:
        with self._lock:
            items = list(self._history)
        return items[-max(1, limit):]

    def get_latest_report(self) -> SystemHealthReport | None:
        with self._lock:
            return self._history[-1] if self._history else None

    def health_summary(self) -> tuple[bool, str]:
        """
        Boolean plus status string for uptime checks; computes a report if none exists.
        """

        report = self.get_latest_report() or self.check_system()
        return report.healthy, report.overall_health

    # --- narrative -------------------------------------------------------

    @staticmethod
    def _identify_issues(metrics: Mapping[str, HealthMetric]) -> list[str]:
        issues: list[str] = []

        freshness = metrics["data_freshness"]
        if freshness.status == HealthStatus.CRITICAL:
            issues.append("Data is critically stale")
        elif freshness.status == HealthStatus.UNHEALTHY:
            issues.append("Data staleness exceeds acceptable threshold")

        if metrics["sync_success_rate"].status != HealthStatus.HEALTHY:
            issues.append(f"Low sync success rate: {metrics['sync_success_rate'].value:.1f}%")
        if metrics["error_rate"].status != HealthStatus.HEALTHY:
            issues.append(f"High error rate: {metrics['error_rate'].value:.1f}%")
        if metrics["consecutive_failures"].value > 0:
            issues.append(f"{int(metrics['consecutive_failures'].value)} consecutive sync failures")
        if metrics["average_sync_duration"].status != HealthStatus.HEALTHY:
            issues.append("Sync duration exceeds normal threshold")
        return issues

    @staticmethod
    def _recommendations(
        metrics: Mapping[str, HealthMetric],
        issues: list[str],
        *,
        failure_threshold: int,
    ) -> list[str]:
        if not issues:
            return ["System is healthy - continue monitoring"]

        recommendations: list[str] = []
        if metrics["data_freshness"].status != HealthStatus.HEALTHY:
            recommendations.append("Trigger manual sync immediately")
        if metrics["consecutive_failures"].value >= failure_threshold:
            recommendations.append("Investigate sync errors in logs")
            recommendations.append("Verify data source availability")
        if metrics["error_rate"].value > 10:
            recommendations.append("Check network connectivity and source URL")
        if metrics["average_sync_duration"].status != HealthStatus.HEALTHY:
            recommendations.append("Check database performance")
        return recommendations

    @staticmethod
    def _alerts(state_reports: list[StateHealthReport], system_metrics: Mapping[str, float]) -> list[HealthAlert]:
        alerts: list[HealthAlert] = []
        for report in state_reports:
            if report.overall_health == HealthStatus.CRITICAL:
                alerts.append(
                    HealthAlert(
                        severity="critical",
                        message=f"{report.state} APL data health is critical",
                        state=report.state,
                    )
                )
            elif report.overall_health == HealthStatus.UNHEALTHY:
                alerts.append(
                    HealthAlert(
                        severity="error",
                        message=f"{report.state} APL data health is unhealthy",
                        state=report.state,
                    )
                )

        if system_metrics["total_syncs"] and system_metrics["data_freshness_score"] < SYSTEM_FRESHNESS_SCORE_CRITICAL:
            alerts.append(
                HealthAlert(severity="critical", message="System-wide data freshness critically low")
            )
        return alerts
