"""
tests/test_api.py

FastAPI endpoint tests. The app is assembled from the routers directly so
no lifespan (database checks, live scheduler) runs; the scheduler and
health monitor are placed on ``app.state`` and ``get_db`` is overridden.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, timezone
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from app.api.routers import alerts_router, apl_sync_router, health_router
from app.config import HealthSettings, SyncSettings
from app.domain.apl import CanonicalEntry, IngestionStats, build_entry_id
from app.errors import FetchError
from app.jurisdictions import JurisdictionConfig
from app.scheduler.jobs import APLSyncScheduler
from app.services.alerting import Alert, AlertHistory, AlertSeverity
from app.services.apl_ingestion_service import IngestionResult
from app.services.health_monitor import HealthMonitor
from app.services.sync_engine import SyncOutcome
from db.repositories import APLEntryRepository
from db.session import get_db

NOW = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)


class _ScriptedIngestion:
    def __init__(self, script: list[Any]) -> None:
        self.script = script

    def ingest(
        self,
        config: JurisdictionConfig,
        *,
        run_time: datetime | None = None,
        check_for_update: bool = False,
    ) -> IngestionResult:
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class _NullSink:
    def send(self, alert: Any) -> None:
        return None


def _result(state: str, errors: list[str]) -> IngestionResult:
    stats = IngestionStats(state=state, total_rows=4 + len(errors), valid_entries=4)
    stats.errors.extend(errors)
    stats.finish()
    outcome = SyncOutcome(
        additions=4,
        updates=0,
        unchanged=0,
        previous_fingerprint=None,
        fingerprint="e" * 64,
        fingerprint_changed=False,
        significant_change=False,
    )
    return IngestionResult(state=state, stats=stats, fingerprint="e" * 64, file_format="xlsx", outcome=outcome)


@pytest.fixture()
def script() -> list[Any]:
    return []


@pytest.fixture()
def alert_history() -> AlertHistory:
    return AlertHistory(max_items=20)


@pytest.fixture()
def client(
    session_factory: sessionmaker[Session],
    mi_config: JurisdictionConfig,
    nc_config: JurisdictionConfig,
    script: list[Any],
    alert_history: AlertHistory,
) -> Iterator[TestClient]:
    jurisdictions = {"MI": mi_config, "NC": nc_config}
    monitor = HealthMonitor(
        session_factory=session_factory,
        jurisdictions=jurisdictions,
        settings=HealthSettings(),
        clock=lambda: NOW,
    )
    scheduler = APLSyncScheduler(
        session_factory=session_factory,
        jurisdictions=jurisdictions,
        ingestion_service=_ScriptedIngestion(script),  # type: ignore[arg-type]
        alert_sink=_NullSink(),
        alert_history=alert_history,
        health_monitor=monitor,
        settings=SyncSettings(),
        clock=lambda: NOW,
    )

    app = FastAPI()
    app.include_router(apl_sync_router)
    app.include_router(alerts_router)
    app.include_router(health_router)
    app.state.sync_scheduler = scheduler
    app.state.alert_history = alert_history
    app.state.health_monitor = monitor

    def _override_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app) as test_client:
        yield test_client


class TestSyncEndpoints:
    def test_manual_trigger_success(self, client: TestClient, script: list[Any]) -> None:
        script.append(_result("MI", []))

        response = client.post("/apl/sync/mi")

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "MI"
        assert body["status"] == "success"
        assert body["triggered_by"] == "manual"

    def test_manual_trigger_failure_is_502(self, client: TestClient, script: list[Any]) -> None:
        script.append(FetchError("MI: source down", state="MI"))

        response = client.post("/apl/sync/MI")

        assert response.status_code == 502
        assert response.json()["detail"]["consecutive_failures"] == 1

    def test_unknown_state_is_404(self, client: TestClient) -> None:
        assert client.post("/apl/sync/ZZ").status_code == 404

    def test_status_lists_every_state_with_capped_errors(self, client: TestClient, script: list[Any]) -> None:
        script.append(_result("MI", [f"Row {row}: Invalid UPC check digit" for row in range(2, 16)]))
        client.post("/apl/sync/MI")

        response = client.get("/apl/sync-status")

        assert response.status_code == 200
        statuses = {item["state"]: item for item in response.json()["statuses"]}
        assert set(statuses) == {"MI", "NC"}
        assert statuses["NC"]["status"] == "pending"

        mi = statuses["MI"]
        assert mi["status"] == "failure"
        assert mi["consecutive_failures"] == 1
        assert mi["entries_count"] == 4
        assert mi["error_count"] == 14
        assert len(mi["errors"]) == 11
        assert mi["errors"][-1] == "... and 4 more"

    def test_run_history(self, client: TestClient, script: list[Any]) -> None:
        script.extend([_result("MI", []), _result("NC", [])])
        client.post("/apl/sync/MI")
        client.post("/apl/sync/NC")

        assert len(client.get("/apl/sync-runs").json()["runs"]) == 2
        runs = client.get("/apl/sync-runs", params={"state": "nc"}).json()["runs"]
        assert [run["state"] for run in runs] == ["NC"]


class TestEntryLookup:
    def test_lookup_normalizes_upc(self, client: TestClient, session_factory: sessionmaker[Session]) -> None:
        effective = date(2026, 1, 1)
        entry = CanonicalEntry(
            id=build_entry_id("MI", "036000291452", effective),
            state="MI",
            upc="036000291452",
            benefit_category="Cereal",
            effective_date=effective,
            data_source="fis",
            last_updated=NOW,
        )
        with session_factory() as session:
            APLEntryRepository(session).upsert_entries([entry])
            session.commit()

        response = client.get("/apl/entries/mi/36000291452")

        assert response.status_code == 200
        body = response.json()
        assert body["upc"] == "036000291452"
        assert [item["id"] for item in body["entries"]] == ["apl_mi_036000291452_20260101"]

    def test_invalid_upc_is_422(self, client: TestClient) -> None:
        assert client.get("/apl/entries/MI/abc").status_code == 422

    def test_missing_entry_is_404(self, client: TestClient) -> None:
        assert client.get("/apl/entries/MI/036000291452").status_code == 404

    def test_lookup_on_date_returns_entry_in_force(
        self, client: TestClient, session_factory: sessionmaker[Session]
    ) -> None:
        entries = [
            CanonicalEntry(
                id=build_entry_id("MI", "036000291452", effective),
                state="MI",
                upc="036000291452",
                benefit_category=category,
                effective_date=effective,
                expiration_date=expiration,
                data_source="fis",
                last_updated=NOW,
            )
            for effective, expiration, category in [
                (date(2025, 10, 1), date(2026, 1, 1), "Cereal"),
                (date(2026, 1, 1), None, "Cereal - Whole Grain"),
            ]
        ]
        with session_factory() as session:
            APLEntryRepository(session).upsert_entries(entries)
            session.commit()

        december = client.get("/apl/entries/MI/036000291452", params={"on": "2025-12-15"}).json()
        february = client.get("/apl/entries/MI/036000291452", params={"on": "2026-02-01"}).json()
        before = client.get("/apl/entries/MI/036000291452", params={"on": "2025-06-01"})

        assert [item["benefit_category"] for item in december["entries"]] == ["Cereal"]
        assert [item["benefit_category"] for item in february["entries"]] == ["Cereal - Whole Grain"]
        assert before.status_code == 404

    def test_lookup_rejects_bad_date(self, client: TestClient) -> None:
        assert client.get("/apl/entries/MI/036000291452", params={"on": "someday"}).status_code == 422


class TestPrioritySyncEndpoints:
    def test_priority_sync_runs_listed_states(self, client: TestClient, script: list[Any]) -> None:
        script.extend([_result("NC", []), _result("MI", [])])

        response = client.post(
            "/apl/sync",
            json={
                "states": ["nc", "mi"],
                "reason": "formula_shortage",
                "priority": "critical",
                "requested_by": "ops",
                "notes": "recall",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["states"] == ["NC", "MI"]
        assert body["status"] == "completed"
        assert [run["triggered_by"] for run in body["runs"]] == ["priority", "priority"]
        assert body["conflicts"] == []

        history = client.get("/apl/sync-requests").json()["requests"]
        assert [item["request_id"] for item in history] == [body["request_id"]]
        assert history[0]["reason"] == "formula_shortage"

    def test_priority_sync_unknown_state_is_404(self, client: TestClient, script: list[Any]) -> None:
        response = client.post("/apl/sync", json={"states": ["MI", "ZZ"], "reason": "policy_change"})

        assert response.status_code == 404
        assert client.get("/apl/sync-requests").json()["requests"] == []

    def test_priority_sync_rejects_unknown_reason(self, client: TestClient) -> None:
        response = client.post("/apl/sync", json={"states": ["MI"], "reason": "because"})
        assert response.status_code == 422


class TestAlertEndpoints:
    def test_lists_newest_first_with_filters(self, client: TestClient, alert_history: AlertHistory) -> None:
        alert_history.record(Alert(title="MI failing", message="m", severity=AlertSeverity.ERROR, state="MI"))
        alert_history.record(Alert(title="NC change", message="m", state="NC"))

        everything = client.get("/apl/alerts").json()["alerts"]
        limited = client.get("/apl/alerts", params={"limit": 1}).json()["alerts"]
        michigan = client.get("/apl/alerts", params={"state": "mi"}).json()["alerts"]

        assert [item["title"] for item in everything] == ["NC change", "MI failing"]
        assert [item["title"] for item in limited] == ["NC change"]
        assert [item["severity"] for item in michigan] == ["error"]
        assert everything[0]["acknowledged"] is False

    def test_acknowledge(self, client: TestClient, alert_history: AlertHistory) -> None:
        record = alert_history.record(Alert(title="MI failing", message="m", state="MI"))

        response = client.post(f"/apl/alerts/{record.id}/acknowledge", json={"acknowledged_by": "ops"})

        assert response.status_code == 200
        assert response.json()["acknowledged"] is True
        assert response.json()["acknowledged_by"] == "ops"
        assert client.get("/apl/alerts", params={"unacknowledged": True}).json()["alerts"] == []

    def test_acknowledge_without_body(self, client: TestClient, alert_history: AlertHistory) -> None:
        record = alert_history.record(Alert(title="MI failing", message="m", state="MI"))

        response = client.post(f"/apl/alerts/{record.id}/acknowledge")

        assert response.status_code == 200
        assert response.json()["acknowledged_by"] is None

    def test_unknown_alert_is_404(self, client: TestClient) -> None:
        assert client.post("/apl/alerts/nope/acknowledge").status_code == 404

    def test_scheduled_health_alert_listed_once(self, client: TestClient) -> None:
        scheduler = client.app.state.sync_scheduler  # type: ignore[attr-defined]

        scheduler.run_health_check()
        scheduler.run_health_check()

        alerts = client.get("/apl/alerts").json()["alerts"]
        assert sorted(item["state"] for item in alerts if item["state"]) == ["MI", "NC"]


class TestHealthEndpoints:
    def test_summary_and_report(self, client: TestClient) -> None:
        summary = client.get("/health")
        assert summary.status_code == 200
        assert summary.json() == {"healthy": False, "status": "critical"}

        report = client.get("/health/report").json()
        assert report["overall_health"] == "critical"
        assert {item["state"] for item in report["state_reports"]} == {"MI", "NC"}

        history = client.get("/health/history", params={"limit": 5}).json()["reports"]
        assert len(history) == 2

    def test_missing_monitor_is_503(self, client: TestClient) -> None:
        client.app.state.health_monitor = None  # type: ignore[attr-defined]
        assert client.get("/health").status_code == 503
