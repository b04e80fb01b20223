"""
tests/test_run_apl_sync.py

Pytest tests for the one-shot sync CLI: exit codes and JSON output. The
module's session factory is swapped for the in-memory SQLite store.
"""

from __future__ import annotations

import io
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import pytest
from sqlalchemy.orm import Session, sessionmaker

import scripts.run_apl_sync as run_apl_sync
from db.models import SyncRunStatus, SyncStatusValue
from db.repositories import SyncRunRepository, SyncStatusRepository


@pytest.fixture(autouse=True)
def _sqlite_sessions(monkeypatch: pytest.MonkeyPatch, session_factory: sessionmaker[Session]) -> None:
    monkeypatch.setattr(run_apl_sync, "SessionLocal", session_factory)
    monkeypatch.delenv("APL_ENABLED_STATES", raising=False)
    monkeypatch.delenv("APL_ALERT_WEBHOOK_URL", raising=False)


def _write_xlsx(path: Path, rows: list[dict]) -> Path:
    buffer = io.BytesIO()
    pd.DataFrame(rows).to_excel(buffer, index=False, engine="openpyxl")
    path.write_bytes(buffer.getvalue())
    return path


def _run(monkeypatch: pytest.MonkeyPatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["run_apl_sync", *argv])
    return run_apl_sync.main()


def test_local_file_sync_succeeds(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    session_factory: sessionmaker[Session],
    tmp_path: Path,
) -> None:
    path = _write_xlsx(
        tmp_path / "mi_apl.xlsx",
        [
            {"UPC": "036000291452", "Category": "Cereal", "Effective Date": "2026-01-01"},
            {"UPC": "042100005264", "Category": "Milk", "Effective Date": "2026-01-01"},
            {"UPC": "Total items: 2", "Category": None, "Effective Date": None},
        ],
    )

    exit_code = _run(monkeypatch, "--state", "mi", "--local-file", str(path))

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["state"] == "MI"
    assert summary["status"] == SyncRunStatus.SUCCESS
    assert summary["triggered_by"] == "manual"
    assert summary["stats"]["valid_entries"] == 2
    with session_factory() as session:
        status = SyncStatusRepository(session).get(state="MI", data_source="fis")
        assert status is not None
        assert status.status == SyncStatusValue.SUCCESS
        assert status.entries_count == 2


def test_row_errors_exit_one(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    path = _write_xlsx(
        tmp_path / "mi_apl.xlsx",
        [
            {"UPC": "036000291452", "Category": "Cereal", "Effective Date": "2026-01-01"},
            {"UPC": "036000291453", "Category": "Milk", "Effective Date": "2026-01-01"},
        ],
    )

    exit_code = _run(monkeypatch, "--state", "MI", "--local-file", str(path))

    assert exit_code == 1
    assert json.loads(capsys.readouterr().out)["status"] == SyncRunStatus.PARTIAL_FAILURE


def test_missing_local_file_exits_one(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    exit_code = _run(monkeypatch, "--state", "MI", "--local-file", str(tmp_path / "absent.xlsx"))

    assert exit_code == 1
    summary = json.loads(capsys.readouterr().out)
    assert summary["status"] == SyncRunStatus.FAILURE
    assert summary["error"].startswith("FetchError")


def test_unknown_state_exits_two(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = _run(monkeypatch, "--state", "ZZ")

    assert exit_code == 2
    body = json.loads(capsys.readouterr().out)
    assert "ZZ" in body["error"]
    assert "MI" in body["known_states"]


def test_run_in_flight_elsewhere_exits_three(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    session_factory: sessionmaker[Session],
    tmp_path: Path,
) -> None:
    with session_factory() as session:
        status = SyncStatusRepository(session).get_or_create(state="MI", data_source="fis")
        status.status = SyncStatusValue.RUNNING
        status.last_attempt_at = datetime.now(timezone.utc)
        session.commit()
    path = _write_xlsx(tmp_path / "mi_apl.xlsx", [{"UPC": "036000291452", "Category": "Cereal"}])

    exit_code = _run(monkeypatch, "--state", "MI", "--local-file", str(path))

    assert exit_code == 3
    assert "already running" in json.loads(capsys.readouterr().out)["error"]
    with session_factory() as session:
        assert SyncRunRepository(session).list_runs(state="MI", limit=None) == []
