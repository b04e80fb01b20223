"""
tests/test_ingestion_service.py

Pytest tests for the ingestion pipeline: row accounting in build_entries,
a full local-file run into SQLite, re-ingesting an identical file on a later
day, and the HEAD pre-check that skips unchanged sources.
"""

from __future__ import annotations

import io
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path

import pandas as pd
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.config import APLSourceSettings
from app.connectors.apl_source import APLSourceAdapter, SourceVersion, UpdateCheck, compute_fingerprint
from app.domain.apl import IngestionStats
from app.errors import FetchError
from app.jurisdictions import JurisdictionConfig
from app.parsers.apl_file_parser import FileFormat, ParsedFile
from app.services.apl_ingestion_service import APLIngestionService
from app.services.sync_engine import SyncEngine
from db.models import APLEntryRecord
from db.repositories import APLEntryRepository, SyncStatusRepository

RUN_TIME = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)

HEADERS = ("UPC", "Category", "Effective Date")


def _parsed(rows: list[dict], headers: tuple[str, ...] = HEADERS) -> ParsedFile:
    return ParsedFile(rows=rows, file_format=FileFormat.XLSX, headers=headers)


def _service(session_factory: sessionmaker[Session]) -> APLIngestionService:
    return APLIngestionService(
        session_factory=session_factory,
        source_adapter=APLSourceAdapter(settings=APLSourceSettings(max_retries=0)),
        sync_engine=SyncEngine(session_factory=session_factory, significant_change_threshold=1),
    )


class TestBuildEntries:
    def test_counts_valid_invalid_and_duplicates(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        stats = IngestionStats(state="MI")
        parsed = _parsed(
            [
                {"UPC": "036000291452", "Category": "Cereal", "Effective Date": "2026-01-01"},
                {"UPC": "036000291452", "Category": "Cereal", "Effective Date": "2026-01-01"},
                {"UPC": "036000291453", "Category": "Milk", "Effective Date": "2026-01-01"},
                {"UPC": "not-a-upc", "Category": "Milk", "Effective Date": "2026-01-01"},
                {"UPC": None, "Category": "Milk", "Effective Date": None},
                {"UPC": "036000291452", "Category": "Cereal", "Effective Date": "2026-02-01"},
            ]
        )

        entries = _service(session_factory).build_entries(mi_config, parsed, stats=stats, run_time=RUN_TIME)

        assert [(entry.upc, entry.effective_date) for entry in entries] == [
            ("036000291452", date(2026, 1, 1)),
            ("036000291452", date(2026, 2, 1)),
        ]
        assert stats.valid_entries == 2
        assert stats.duplicates == 1
        assert stats.invalid_entries == 1
        assert stats.errors == ["Row 4: Invalid UPC check digit: 036000291453"]
        assert "Row 5: skipped, no usable UPC: not-a-upc" in stats.warnings

    def test_missing_upc_column_reported_once(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        stats = IngestionStats(state="MI")
        parsed = _parsed([{"Item": "036000291452", "Category": "Milk"}], headers=("Item", "Category"))

        entries = _service(session_factory).build_entries(mi_config, parsed, stats=stats, run_time=RUN_TIME)

        assert entries == []
        assert len(stats.errors) == 1
        assert stats.errors[0].startswith("No UPC column found")
        assert stats.valid_entries == 0


class TestIngest:
    @staticmethod
    def _write_xlsx(path: Path, rows: list[dict]) -> bytes:
        buffer = io.BytesIO()
        pd.DataFrame(rows).to_excel(buffer, index=False, engine="openpyxl")
        content = buffer.getvalue()
        path.write_bytes(content)
        return content

    def test_local_file_end_to_end(
        self,
        session_factory: sessionmaker[Session],
        mi_config: JurisdictionConfig,
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "mi_apl.xlsx"
        content = self._write_xlsx(
            path,
            [
                {"UPC": "036000291452", "Category": "Cereal", "Package Size": "8.9-36 oz", "Effective Date": "2026-01-01"},
                {"UPC": "042100005264", "Category": "Milk", "Package Size": "1 gal", "Effective Date": "2026-01-01"},
                {"UPC": "036000291453", "Category": "Milk", "Package Size": "1 gal", "Effective Date": "2026-01-01"},
            ],
        )
        config = replace(mi_config, local_file_path=str(path), use_local_file=True)

        result = _service(session_factory).ingest(config, run_time=RUN_TIME)

        assert result.state == "MI"
        assert result.file_format == FileFormat.XLSX
        assert result.fingerprint == compute_fingerprint(content)
        assert result.stats.total_rows == 3
        assert result.stats.valid_entries == 2
        assert result.stats.invalid_entries == 1
        assert result.has_row_errors is True
        assert result.outcome.additions == 2
        assert result.stats.end_time is not None

        with session_factory() as session:
            records = APLEntryRepository(session).get_entries(state="MI", upc="036000291452")
            assert len(records) == 1
            assert records[0].size_restriction == {"unit": "oz", "min_size": 8.9, "max_size": 36.0}
            assert records[0].additional_restrictions == {"whole_grain_required": True}

    def test_volume_bounds_warn(
        self,
        session_factory: sessionmaker[Session],
        mi_config: JurisdictionConfig,
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "mi_apl.xlsx"
        self._write_xlsx(path, [{"UPC": "036000291452", "Category": "Cereal"}])
        config = replace(mi_config, local_file_path=str(path), min_expected_entries=100)

        result = _service(session_factory).ingest(config, run_time=RUN_TIME)

        assert "Only 1 valid entries; expected at least 100" in result.stats.warnings
        assert result.has_row_errors is False

    def test_fetch_error_aborts_before_persisting(
        self,
        session_factory: sessionmaker[Session],
        mi_config: JurisdictionConfig,
        tmp_path: Path,
    ) -> None:
        config = replace(mi_config, local_file_path=str(tmp_path / "missing.xlsx"))

        with pytest.raises(FetchError):
            _service(session_factory).ingest(config, run_time=RUN_TIME)

        with session_factory() as session:
            assert session.scalars(select(APLEntryRecord)).all() == []

    def test_footer_row_is_skipped_not_invalid(
        self,
        session_factory: sessionmaker[Session],
        mi_config: JurisdictionConfig,
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "mi_apl.xlsx"
        self._write_xlsx(
            path,
            [
                {"UPC": "036000291452", "Category": "Cereal", "Effective Date": "2026-01-01"},
                {"UPC": "042100005264", "Category": "Milk", "Effective Date": "2026-01-01"},
                {"UPC": "Total items: 2", "Category": None, "Effective Date": None},
            ],
        )
        config = replace(mi_config, local_file_path=str(path), use_local_file=True)

        result = _service(session_factory).ingest(config, run_time=RUN_TIME)

        assert result.stats.valid_entries == 2
        assert result.stats.invalid_entries == 0
        assert result.stats.errors == []
        assert result.has_row_errors is False
        assert "Row 4: skipped, no usable UPC: Total items: 2" in result.stats.warnings

    def test_identical_file_on_a_later_day_writes_nothing(
        self,
        session_factory: sessionmaker[Session],
        mi_config: JurisdictionConfig,
        tmp_path: Path,
    ) -> None:
        # No effective date column: rows default to the run date.
        path = tmp_path / "mi_apl.xlsx"
        self._write_xlsx(
            path,
            [
                {"UPC": "036000291452", "Category": "Cereal"},
                {"UPC": "042100005264", "Category": "Milk"},
            ],
        )
        config = replace(mi_config, local_file_path=str(path), use_local_file=True)
        service = _service(session_factory)

        first = service.ingest(config, run_time=RUN_TIME)
        with session_factory() as session:
            SyncStatusRepository(session).mark_success(
                state="MI",
                data_source=config.data_source,
                fingerprint=first.fingerprint,
                entries_count=first.stats.valid_entries,
            )
            session.commit()

        second = service.ingest(config, run_time=datetime(2026, 3, 8, 6, 0, tzinfo=timezone.utc))

        assert first.outcome.additions == 2
        assert second.fingerprint == first.fingerprint
        assert second.outcome.upsert_skipped is True
        assert second.outcome.additions == 0
        assert second.outcome.significant_change is False
        assert second.stats.warnings == []
        with session_factory() as session:
            records = APLEntryRepository(session).get_entries(state="MI", upc="036000291452")
            assert [record.effective_date for record in records] == [date(2026, 3, 1)]


class _UnchangedSource:
    def __init__(self, has_update: bool = False) -> None:
        self.has_update = has_update
        self.checked_with: list[SourceVersion | None] = []
        self.fetches = 0

    def check_for_update(self, config: JurisdictionConfig, previous: SourceVersion | None) -> UpdateCheck:
        self.checked_with.append(previous)
        return UpdateCheck(
            state=config.state,
            has_update=self.has_update,
            reason="etag_changed" if self.has_update else "etag_unchanged",
            version=previous,
        )

    def fetch(self, config: JurisdictionConfig):
        self.fetches += 1
        raise FetchError(f"{config.state}: unexpected download", state=config.state)


class TestUpdateCheck:
    @staticmethod
    def _seed_status(session_factory: sessionmaker[Session], config: JurisdictionConfig) -> None:
        with session_factory() as session:
            SyncStatusRepository(session).mark_success(
                state=config.state,
                data_source=config.data_source,
                fingerprint="a" * 64,
                entries_count=12,
                source_etag="v1",
            )
            session.commit()

    def test_unchanged_source_skips_download(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        self._seed_status(session_factory, mi_config)
        source = _UnchangedSource()
        service = APLIngestionService(session_factory=session_factory, source_adapter=source)

        result = service.ingest(mi_config, run_time=RUN_TIME, check_for_update=True)

        assert result.source_unchanged is True
        assert result.fingerprint == "a" * 64
        assert result.outcome.upsert_skipped is True
        assert result.has_row_errors is False
        assert source.fetches == 0
        assert source.checked_with == [SourceVersion(etag="v1")]

    def test_changed_source_downloads(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        self._seed_status(session_factory, mi_config)
        source = _UnchangedSource(has_update=True)
        service = APLIngestionService(session_factory=session_factory, source_adapter=source)

        with pytest.raises(FetchError):
            service.ingest(mi_config, run_time=RUN_TIME, check_for_update=True)
        assert source.fetches == 1

    def test_check_not_requested_downloads(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        self._seed_status(session_factory, mi_config)
        source = _UnchangedSource()
        service = APLIngestionService(session_factory=session_factory, source_adapter=source)

        with pytest.raises(FetchError):
            service.ingest(mi_config, run_time=RUN_TIME)
        assert source.checked_with == []
        assert source.fetches == 1

    def test_previous_failure_forces_download(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        self._seed_status(session_factory, mi_config)
        with session_factory() as session:
            SyncStatusRepository(session).mark_failure(
                state="MI", data_source=mi_config.data_source, error_message="1 row error(s)"
            )
            session.commit()
        source = _UnchangedSource()
        service = APLIngestionService(session_factory=session_factory, source_adapter=source)

        with pytest.raises(FetchError):
            service.ingest(mi_config, run_time=RUN_TIME, check_for_update=True)
        assert source.checked_with == []
