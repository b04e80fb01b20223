"""
app/scheduler/jobs.py

APScheduler-based scheduler for per-jurisdiction APL syncs.

Jobs
----
  apl_sync_<STATE>                 cron, in the jurisdiction's own timezone; the
                                   expression follows the active rollout phase
                                   (see ``refresh_schedule``)
  apl_phase_boundary_<STATE>_<DAY> one-shot, at local midnight of the next day
                                   the jurisdiction's cadence may change
  apl_phase_check                  hourly sweep re-evaluating every cadence, in
                                   case a boundary job was missed
  apl_health_check                 every HEALTH_CHECK_INTERVAL_MINUTES; records
                                   health alerts when they first appear

Runs
----
At most one run per jurisdiction is in flight. Inside one process the per-state
lock is taken without blocking. Across processes (API server, CLI) the run slot
is claimed with a conditional update on apl_sync_status; a ``running`` row
older than APL_RUN_STALE_AFTER_MINUTES is treated as abandoned. A scheduled
tick that loses either race is dropped; a manual or priority trigger gets
``ScheduleConflictError``.

Each run opens an ``apl_sync_runs`` row, runs the ingestion pipeline and
records one of these outcomes:

  success          no row errors; failure streak reset to 0
  success          scheduled tick whose HEAD check found the source unchanged;
                   nothing downloaded
  partial_failure  row errors; data stays committed; streak +1
  failure          fetch/storage/unexpected error; nothing committed; streak +1

An alert fires exactly once per streak, when the streak reaches the
jurisdiction's threshold. Partial failures are not retried automatically.

Health alerts are recorded in the alert history on transition only: a state
that stays critical is recorded once, and is recorded again only after it
recovers and degrades anew.

Lifecycle
---------
``build_scheduler()`` returns a configured ``APLSyncScheduler`` whose jobs are
registered but not started. ``start()`` / ``shutdown()`` are called from the
FastAPI lifespan in main.py.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from sqlalchemy.orm import Session, sessionmaker

from app.config import SyncSettings, get_sync_settings
from app.domain.apl import summarize_messages
from app.domain.health import HealthAlert
from app.errors import APLSyncError, ScheduleConflictError
from app.jurisdictions import JurisdictionConfig, get_jurisdiction, get_jurisdictions
from app.logging_utils import log_event
from app.services.alerting import Alert, AlertHistory, AlertSeverity, AlertSink, build_alert_sink
from app.services.apl_ingestion_service import APLIngestionService, IngestionResult
from app.services.health_monitor import HealthMonitor
from db.models.apl_sync_run import SyncRunStatus, SyncTrigger
from db.repositories.sync_run_repository import SyncRunRepository
from db.repositories.sync_status_repository import SyncStatusRepository

logger = logging.getLogger(__name__)

PHASE_CHECK_JOB_ID = "apl_phase_check"
HEALTH_CHECK_JOB_ID = "apl_health_check"
_HEALTH_ALERT_SEVERITIES = frozenset({AlertSeverity.CRITICAL, AlertSeverity.ERROR})


def sync_job_id(state: str) -> str:
    return f"apl_sync_{state.upper()}"


def phase_boundary_job_id(state: str, boundary: date) -> str:
    return f"apl_phase_boundary_{state.upper()}_{boundary:%Y%m%d}"


class PriorityReason:
    FORMULA_SHORTAGE = "formula_shortage"
    POLICY_CHANGE = "policy_change"
    MANUAL_OVERRIDE = "manual_override"
    DATA_CORRUPTION = "data_corruption"
    PUSH_NOTIFICATION = "push_notification"
    USER_REPORT = "user_report"


PRIORITY_REASONS = frozenset(
    {
        PriorityReason.FORMULA_SHORTAGE,
        PriorityReason.POLICY_CHANGE,
        PriorityReason.MANUAL_OVERRIDE,
        PriorityReason.DATA_CORRUPTION,
        PriorityReason.PUSH_NOTIFICATION,
        PriorityReason.USER_REPORT,
    }
)
PRIORITY_LEVELS = ("low", "medium", "high", "critical")


# ---------------------------------------------------------------------------
# Run summaries
# ---------------------------------------------------------------------------


@dataclass
class SyncRunSummary:
    """
    In-memory record of the most recent run for one jurisdiction.
    """

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
    stats: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "run_id": self.run_id,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "consecutive_failures": self.consecutive_failures,
            "significant_change": self.significant_change,
            "source_unchanged": self.source_unchanged,
            "error": self.error,
            "stats": self.stats,
        }


@dataclass
class PrioritySyncResult:
    """
    One out-of-schedule request covering several jurisdictions, run in order.
    """

    request_id: str
    reason: str
    priority: str
    states: list[str]
    requested_by: str
    requested_at: datetime
    notes: str | None = None
    completed_at: datetime | None = None
    runs: list[SyncRunSummary] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        succeeded = sum(1 for run in self.runs if run.status == SyncRunStatus.SUCCESS)
        if succeeded == len(self.states):
            return "completed"
        if succeeded == 0:
            return "failed"
        return "partial"

    def to_dict(self) -> dict[str, Any]:
        duration_ms = None
        if self.completed_at is not None:
            duration_ms = int((self.completed_at - self.requested_at).total_seconds() * 1000)
        return {
            "request_id": self.request_id,
            "reason": self.reason,
            "priority": self.priority,
            "states": list(self.states),
            "requested_by": self.requested_by,
            "requested_at": self.requested_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": duration_ms,
            "notes": self.notes,
            "status": self.status,
            "runs": [run.to_dict() for run in self.runs],
            "conflicts": list(self.conflicts),
        }


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class APLSyncScheduler:
    """
    Owns the BackgroundScheduler, the per-state locks, and run bookkeeping.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        jurisdictions: Mapping[str, JurisdictionConfig] | None = None,
        ingestion_service: APLIngestionService | None = None,
        alert_sink: AlertSink | None = None,
        alert_history: AlertHistory | None = None,
        health_monitor: HealthMonitor | None = None,
        settings: SyncSettings | None = None,
        scheduler: BackgroundScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._jurisdictions = dict(jurisdictions) if jurisdictions is not None else get_jurisdictions()
        self._settings = settings or get_sync_settings()
        self._ingestion = ingestion_service or APLIngestionService(session_factory=self._session_factory)
        self._alert_history = alert_history
        self._alert_sink = alert_sink or build_alert_sink(self._settings, history=alert_history)
        self._health_monitor = health_monitor
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._locks: dict[str, threading.Lock] = {state: threading.Lock() for state in self._jurisdictions}
        self._cadences: dict[str, str] = {}
        self._boundary_jobs: dict[str, str] = {}
        self._last_results: dict[str, SyncRunSummary] = {}
        self._active_health_alerts: dict[str | None, str] = {}
        self._priority_history: deque[PrioritySyncResult] = deque(
            maxlen=max(1, self._settings.priority_history_limit)
        )
        self._priority_lock = threading.Lock()

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    @property
    def jurisdictions(self) -> dict[str, JurisdictionConfig]:
        return dict(self._jurisdictions)

    @property
    def health_monitor(self) -> HealthMonitor | None:
        return self._health_monitor

    @property
    def alert_history(self) -> AlertHistory | None:
        return self._alert_history

    # --- session helper --------------------------------------------------

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Yield a fresh session; commit on success, roll back on error, always close."""
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # --- registration ----------------------------------------------------

    def register_jobs(self, now: datetime | None = None) -> None:
        """
        Register every jurisdiction's sync and boundary jobs plus the phase and health jobs.
        """

        moment = now or self._clock()
        for state in self._jurisdictions:
            self.refresh_schedule(state, moment)

        self._scheduler.add_job(
            self.refresh_all_schedules,
            trigger="cron",
            minute=5,
            id=PHASE_CHECK_JOB_ID,
            name="APL rollout phase check",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._settings.misfire_grace_seconds,
        )
        if self._health_monitor is not None:
            self._scheduler.add_job(
                self.run_health_check,
                trigger="interval",
                minutes=self._settings.health_check_interval_minutes,
                id=HEALTH_CHECK_JOB_ID,
                name="APL health check",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

    def refresh_schedule(self, state: str, now: datetime | None = None) -> bool:
        """
        Re-register one jurisdiction's job if its applicable cron changed.

        Also keeps the jurisdiction's one-shot boundary job pointed at the next
        local midnight on which the cadence may change. Returns True when the
        sync job was added or rescheduled.
        """

        config = get_jurisdiction(state, self._jurisdictions)
        moment = now or self._clock()
        self._schedule_phase_boundary(config, moment)

        cron = config.select_cadence(moment)
        job_id = sync_job_id(config.state)
        job = self._scheduler.get_job(job_id)

        if job is not None and self._cadences.get(config.state) == cron:
            return False

        trigger = CronTrigger.from_crontab(cron, timezone=config.timezone)
        if job is None:
            self._scheduler.add_job(
                self.tick,
                trigger=trigger,
                args=[config.state],
                id=job_id,
                name=f"{config.name} APL sync",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self._settings.misfire_grace_seconds,
            )
        else:
            self._scheduler.reschedule_job(job_id, trigger=trigger)

        previous = self._cadences.get(config.state)
        self._cadences[config.state] = cron
        phase = config.active_phase(moment)
        logger.info(
            "Scheduler: cadence set state=%s cron=%r previous=%r phase=%s timezone=%s",
            config.state,
            cron,
            previous,
            phase.label if phase is not None else "default",
            config.timezone,
        )
        return True

    def refresh_all_schedules(self) -> None:
        now = self._clock()
        for state in self._jurisdictions:
            try:
                self.refresh_schedule(state, now)
            except Exception as exc:  # noqa: BLE001
                logger.error("Scheduler: cadence refresh failed state=%s: %s", state, exc)

    def on_phase_boundary(self, state: str) -> None:
        """
        One-shot job fired at local midnight when a rollout phase starts or ends.
        """

        logger.info("Scheduler: phase boundary reached state=%s", state)
        try:
            self.refresh_schedule(state)
        except Exception as exc:  # noqa: BLE001
            logger.error("Scheduler: cadence refresh failed state=%s: %s", state, exc)

    def _schedule_phase_boundary(self, config: JurisdictionConfig, moment: datetime) -> datetime | None:
        boundary = config.next_phase_boundary(moment)
        previous_id = self._boundary_jobs.get(config.state)
        if boundary is None:
            if previous_id is not None:
                self._remove_job(previous_id)
                del self._boundary_jobs[config.state]
            return None

        job_id = phase_boundary_job_id(config.state, boundary)
        run_date = datetime.combine(boundary, time.min, tzinfo=ZoneInfo(config.timezone))
        if previous_id == job_id and self._scheduler.get_job(job_id) is not None:
            return run_date
        if previous_id is not None and previous_id != job_id:
            self._remove_job(previous_id)

        self._scheduler.add_job(
            self.on_phase_boundary,
            trigger=DateTrigger(run_date=run_date),
            args=[config.state],
            id=job_id,
            name=f"{config.name} APL phase boundary",
            replace_existing=True,
            misfire_grace_time=self._settings.misfire_grace_seconds,
        )
        self._boundary_jobs[config.state] = job_id
        logger.info(
            "Scheduler: phase boundary scheduled state=%s run_date=%s",
            config.state,
            run_date.isoformat(),
        )
        return run_date

    def _remove_job(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("Scheduler: job already gone id=%s", job_id)

    # --- lifecycle -------------------------------------------------------

    def start(self) -> None:
        self.register_jobs()
        self._scheduler.start()
        logger.info("Scheduler: started states=%s", sorted(self._jurisdictions))

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler: stopped")

    # --- jobs ------------------------------------------------------------

    def tick(self, state: str) -> None:
        """
        Scheduled entry point for one jurisdiction.
        """

        try:
            self.run_sync(state, triggered_by=SyncTrigger.SCHEDULER)
        except ScheduleConflictError as exc:
            logger.info("Scheduler: tick dropped state=%s: %s", state, exc)
        except Exception as exc:  # noqa: BLE001
            logger.error("Scheduler: sync bookkeeping failed state=%s: %s", state, exc)

        try:
            self.refresh_schedule(state)
        except Exception as exc:  # noqa: BLE001
            logger.error("Scheduler: cadence refresh failed state=%s: %s", state, exc)

    def trigger_manual(self, state: str) -> SyncRunSummary:
        """
        Run one jurisdiction now; raises ScheduleConflictError if it is already running.
        """

        return self.run_sync(state, triggered_by=SyncTrigger.MANUAL)

    def trigger_priority(
        self,
        states: Sequence[str] | None,
        *,
        reason: str,
        priority: str = "high",
        requested_by: str = "system",
        notes: str | None = None,
    ) -> PrioritySyncResult:
        """
        Sync several jurisdictions now, one after another, outside the schedule.

        Every state is resolved before anything runs, so an unknown state
        raises UnknownJurisdictionError with no run started. An empty list
        means every configured jurisdiction. A state already in flight is
        reported under ``conflicts`` instead of aborting the request.
        """

        if reason not in PRIORITY_REASONS:
            raise ValueError(f"Unknown priority sync reason: {reason}")
        if priority not in PRIORITY_LEVELS:
            raise ValueError(f"Unknown priority level: {priority}")

        requested = list(states) if states else sorted(self._jurisdictions)
        resolved: list[str] = []
        for state in requested:
            config = get_jurisdiction(state, self._jurisdictions)
            if config.state not in resolved:
                resolved.append(config.state)

        result = PrioritySyncResult(
            request_id=uuid.uuid4().hex,
            reason=reason,
            priority=priority,
            states=resolved,
            requested_by=requested_by,
            requested_at=self._clock(),
            notes=notes,
        )
        log_event(
            logger,
            logging.WARNING,
            "apl_priority_sync_started",
            request_id=result.request_id,
            reason=reason,
            priority=priority,
            states=resolved,
            requested_by=requested_by,
        )

        for state in resolved:
            try:
                result.runs.append(self.run_sync(state, triggered_by=SyncTrigger.PRIORITY))
            except ScheduleConflictError as exc:
                logger.info("Scheduler: priority sync skipped state=%s: %s", state, exc)
                result.conflicts.append(state)

        result.completed_at = self._clock()
        with self._priority_lock:
            self._priority_history.append(result)

        log_event(
            logger,
            logging.INFO if result.status == "completed" else logging.WARNING,
            "apl_priority_sync_finished",
            request_id=result.request_id,
            status=result.status,
            succeeded=[run.state for run in result.runs if run.status == SyncRunStatus.SUCCESS],
            conflicts=result.conflicts,
        )
        return result

    def list_priority_requests(self, limit: int = 50) -> list[PrioritySyncResult]:
        """Newest first."""
        with self._priority_lock:
            items = list(self._priority_history)
        return list(reversed(items))[: max(1, limit)]

    def run_health_check(self) -> list[HealthAlert]:
        """
        Evaluate system health and record alerts that are new since the last check.

        Returns the alerts raised by this check. An alert key is a state (or
        None for the system-wide alert); it is raised again when its severity
        changes, or after it has cleared for at least one check.
        """

        if self._health_monitor is None:
            return []
        try:
            report = self._health_monitor.check_system()
        except Exception as exc:  # noqa: BLE001
            logger.error("Scheduler: health check failed: %s", exc)
            return []

        current: dict[str | None, HealthAlert] = {}
        for health_alert in report.alerts:
            if health_alert.severity in _HEALTH_ALERT_SEVERITIES:
                current.setdefault(health_alert.state, health_alert)

        raised = [
            health_alert
            for key, health_alert in current.items()
            if self._active_health_alerts.get(key) != health_alert.severity
        ]
        for key in self._active_health_alerts:
            if key not in current:
                logger.info("Scheduler: health alert cleared state=%s", key or "system")
        self._active_health_alerts = {key: health_alert.severity for key, health_alert in current.items()}

        for health_alert in raised:
            logger.warning(
                "Scheduler: health alert raised severity=%s state=%s message=%r",
                health_alert.severity,
                health_alert.state or "system",
                health_alert.message,
            )
            if self._alert_history is not None:
                self._alert_history.record(
                    Alert(
                        title="APL sync health alert",
                        message=health_alert.message,
                        severity=health_alert.severity,
                        state=health_alert.state,
                        details={"overall_health": report.overall_health},
                    )
                )
        return raised

    # --- runs ------------------------------------------------------------

    def run_sync(self, state: str, *, triggered_by: str = SyncTrigger.SCHEDULER) -> SyncRunSummary:
        config = get_jurisdiction(state, self._jurisdictions)
        lock = self._locks.setdefault(config.state, threading.Lock())
        if not lock.acquire(blocking=False):
            raise ScheduleConflictError(config.state)
        try:
            return self._execute(config, triggered_by)
        finally:
            lock.release()

    def _execute(self, config: JurisdictionConfig, triggered_by: str) -> SyncRunSummary:
        started_at = self._clock()
        stale_before = started_at - timedelta(minutes=self._settings.run_stale_after_minutes)
        with self._session_scope() as session:
            claimed = SyncStatusRepository(session).try_mark_running(
                state=config.state,
                data_source=config.data_source,
                now=started_at,
                stale_before=stale_before,
            )
            if not claimed:
                logger.info(
                    "Scheduler: run slot held elsewhere state=%s source=%s",
                    config.state,
                    config.data_source,
                )
                raise ScheduleConflictError(config.state)
            run = SyncRunRepository(session).create_run(
                state=config.state,
                data_source=config.data_source,
                triggered_by=triggered_by,
                started_at=started_at,
            )
            run_id: uuid.UUID = run.id

        logger.info(
            "Scheduler: sync starting state=%s source=%s triggered_by=%s run_id=%s",
            config.state,
            config.data_source,
            triggered_by,
            run_id,
        )

        try:
            summary = self._run_and_record(config, run_id, triggered_by, started_at)
        except Exception as exc:
            self._release_run_slot(config, run_id, exc)
            raise

        self._last_results[config.state] = summary
        return summary

    def _run_and_record(
        self,
        config: JurisdictionConfig,
        run_id: uuid.UUID,
        triggered_by: str,
        started_at: datetime,
    ) -> SyncRunSummary:
        try:
            result = self._ingestion.ingest(
                config,
                run_time=started_at,
                check_for_update=triggered_by == SyncTrigger.SCHEDULER,
            )
        except APLSyncError as exc:
            return self._record_failure(config, run_id, triggered_by, started_at, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scheduler: unexpected sync error state=%s", config.state)
            return self._record_failure(config, run_id, triggered_by, started_at, exc)
        return self._record_result(config, run_id, triggered_by, started_at, result)

    def _release_run_slot(self, config: JurisdictionConfig, run_id: uuid.UUID, exc: Exception) -> None:
        """
        Best-effort: record a failure so the status row does not stay ``running``.
        """

        error_message = f"Run bookkeeping failed: {type(exc).__name__}: {exc}"
        logger.error("Scheduler: %s state=%s run_id=%s", error_message, config.state, run_id)
        try:
            with self._session_scope() as session:
                SyncStatusRepository(session).mark_failure(
                    state=config.state,
                    data_source=config.data_source,
                    error_message=error_message,
                )
                SyncRunRepository(session).mark_finished(
                    run_id=run_id,
                    status=SyncRunStatus.FAILURE,
                    error_message=error_message,
                )
        except Exception as cleanup_exc:  # noqa: BLE001
            logger.error(
                "Scheduler: could not release run slot state=%s run_id=%s: %s",
                config.state,
                run_id,
                cleanup_exc,
            )

    def _record_result(
        self,
        config: JurisdictionConfig,
        run_id: uuid.UUID,
        triggered_by: str,
        started_at: datetime,
        result: IngestionResult,
    ) -> SyncRunSummary:
        stats = result.stats
        stats_payload = stats.to_dict(sample_limit=self._settings.error_sample_limit)
        result_payload = {
            **stats_payload,
            "file_format": result.file_format,
            "source_unchanged": result.source_unchanged,
            "upsert_skipped": result.outcome.upsert_skipped,
        }
        version = result.version
        etag = version.etag if version is not None else None
        last_modified = version.last_modified if version is not None else None

        if stats.has_row_errors:
            error_message = self._describe_row_errors(stats.errors)
            run_status = SyncRunStatus.PARTIAL_FAILURE
            with self._session_scope() as session:
                status = SyncStatusRepository(session).mark_failure(
                    state=config.state,
                    data_source=config.data_source,
                    error_message=error_message,
                    stats=stats_payload,
                    data_persisted=True,
                    fingerprint=result.fingerprint,
                    entries_count=stats.valid_entries,
                    source_etag=etag,
                    source_last_modified=last_modified,
                )
                failures = status.consecutive_failures
                SyncRunRepository(session).mark_finished(
                    run_id=run_id,
                    status=run_status,
                    stats=stats,
                    fingerprint=result.fingerprint,
                    error_message=error_message,
                    result_payload=result_payload,
                )
        else:
            error_message = None
            run_status = SyncRunStatus.SUCCESS
            with self._session_scope() as session:
                status_repository = SyncStatusRepository(session)
                if result.source_unchanged:
                    status_repository.mark_source_unchanged(
                        state=config.state,
                        data_source=config.data_source,
                    )
                else:
                    status_repository.mark_success(
                        state=config.state,
                        data_source=config.data_source,
                        fingerprint=result.fingerprint,
                        entries_count=stats.valid_entries,
                        stats=stats_payload,
                        source_etag=etag,
                        source_last_modified=last_modified,
                    )
                failures = 0
                SyncRunRepository(session).mark_finished(
                    run_id=run_id,
                    status=run_status,
                    stats=stats,
                    fingerprint=result.fingerprint,
                    result_payload=result_payload,
                )

        log_event(
            logger,
            logging.WARNING if stats.has_row_errors else logging.INFO,
            "apl_sync_finished",
            state=config.state,
            run_id=str(run_id),
            status=run_status,
            triggered_by=triggered_by,
            consecutive_failures=failures,
            additions=stats.additions,
            updates=stats.updates,
            errors=len(stats.errors),
            source_unchanged=result.source_unchanged,
        )

        if stats.has_row_errors:
            self._maybe_alert_failure(config, failures, error_message or "")
        if result.outcome.significant_change:
            self._alert_sink.send(
                Alert(
                    title=f"{config.state} APL significant change",
                    message=(
                        f"{config.name} APL sync added {stats.additions} entries "
                        f"(threshold {self._settings.significant_change_threshold})"
                    ),
                    severity=AlertSeverity.WARNING,
                    state=config.state,
                    details={"additions": stats.additions, "updates": stats.updates},
                )
            )

        return SyncRunSummary(
            state=config.state,
            run_id=str(run_id),
            status=run_status,
            triggered_by=triggered_by,
            started_at=started_at,
            completed_at=self._clock(),
            consecutive_failures=failures,
            significant_change=result.outcome.significant_change,
            source_unchanged=result.source_unchanged,
            error=error_message,
            stats=stats_payload,
        )

    def _record_failure(
        self,
        config: JurisdictionConfig,
        run_id: uuid.UUID,
        triggered_by: str,
        started_at: datetime,
        exc: Exception,
    ) -> SyncRunSummary:
        error_message = f"{type(exc).__name__}: {exc}"
        with self._session_scope() as session:
            status = SyncStatusRepository(session).mark_failure(
                state=config.state,
                data_source=config.data_source,
                error_message=error_message,
            )
            failures = status.consecutive_failures
            SyncRunRepository(session).mark_finished(
                run_id=run_id,
                status=SyncRunStatus.FAILURE,
                error_message=error_message,
            )

        log_event(
            logger,
            logging.ERROR,
            "apl_sync_failed",
            state=config.state,
            run_id=str(run_id),
            triggered_by=triggered_by,
            consecutive_failures=failures,
            error=error_message,
        )
        self._maybe_alert_failure(config, failures, error_message)

        return SyncRunSummary(
            state=config.state,
            run_id=str(run_id),
            status=SyncRunStatus.FAILURE,
            triggered_by=triggered_by,
            started_at=started_at,
            completed_at=self._clock(),
            consecutive_failures=failures,
            error=error_message,
        )

    def _maybe_alert_failure(self, config: JurisdictionConfig, failures: int, error_message: str) -> None:
        # Equality, not >=: one alert per streak; a success resets the streak.
        if failures != config.alert_threshold:
            return
        self._alert_sink.send(
            Alert(
                title=f"{config.state} APL sync failing",
                message=(
                    f"{config.name} APL sync has failed {failures} consecutive times. "
                    f"Last error: {error_message}"
                ),
                severity=AlertSeverity.ERROR,
                state=config.state,
                details={
                    "consecutive_failures": failures,
                    "data_source": config.data_source,
                },
            )
        )

    def _describe_row_errors(self, errors: list[str]) -> str:
        sample = summarize_messages(errors, limit=self._settings.error_sample_limit)
        return f"{len(errors)} row error(s): " + "; ".join(sample)

    # --- status ----------------------------------------------------------

    def is_running(self, state: str) -> bool:
        lock = self._locks.get(state.upper())
        return lock.locked() if lock is not None else False

    def get_status(self, state: str) -> dict[str, Any]:
        """
        In-memory snapshot: running flag, cadence, next fire time, last result.
        """

        config = get_jurisdiction(state, self._jurisdictions)
        job = self._scheduler.get_job(sync_job_id(config.state))
        next_run_time = getattr(job, "next_run_time", None) if job is not None else None
        last = self._last_results.get(config.state)
        return {
            "state": config.state,
            "data_source": config.data_source,
            "is_running": self.is_running(config.state),
            "cadence": self._cadences.get(config.state) or config.select_cadence(self._clock()),
            "next_run_time": next_run_time.isoformat() if next_run_time is not None else None,
            "last_result": last.to_dict() if last is not None else None,
        }

    def list_statuses(self) -> list[dict[str, Any]]:
        return [self.get_status(state) for state in sorted(self._jurisdictions)]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_scheduler(
    *,
    session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
    jurisdictions: Mapping[str, JurisdictionConfig] | None = None,
    ingestion_service: APLIngestionService | None = None,
    alert_sink: AlertSink | None = None,
    alert_history: AlertHistory | None = None,
    health_monitor: HealthMonitor | None = None,
    settings: SyncSettings | None = None,
) -> APLSyncScheduler:
    """
    Build an ``APLSyncScheduler`` with every job registered.

    Returns a configured but *not yet started* scheduler; the caller owns
    ``start()`` and ``shutdown()``.
    """

    resolved_settings = settings or get_sync_settings()
    sync_scheduler = APLSyncScheduler(
        session_factory=session_factory,
        jurisdictions=jurisdictions,
        ingestion_service=ingestion_service,
        alert_sink=alert_sink,
        alert_history=alert_history,
        health_monitor=health_monitor,
        settings=resolved_settings,
    )
    sync_scheduler.register_jobs()
    return sync_scheduler
