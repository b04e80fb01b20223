"""
tests/test_sync_engine.py

Pytest tests for the Sync Engine against an in-memory SQLite store.

Coverage
--------
- Re-running identical entries writes nothing (idempotent)
- Mutable-field changes counted as updates
- A failing transaction persists nothing and raises StorageError
- A failed run in one state leaves another state's rows intact
- Fingerprint change warnings (new data vs. shape-only change)
- Significant change suppressed on the initial load
- An unchanged fingerprint skips the upsert entirely
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.apl import CanonicalEntry, IngestionStats, build_entry_id
from app.errors import StorageError
from app.jurisdictions import JurisdictionConfig
from app.services.sync_engine import HASH_CHANGE_WARNING, SHAPE_CHANGE_WARNING, SyncEngine
from db.models import APLEntryRecord
from db.repositories import APLEntryRepository, SyncStatusRepository, UpsertCounts

RUN_TIME = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)

UPCS = ("036000291452", "042100005264", "016000275287", "038000138416")


def _entry(state: str, upc: str, *, category: str = "Cereal", data_source: str = "fis") -> CanonicalEntry:
    effective = date(2026, 1, 1)
    return CanonicalEntry(
        id=build_entry_id(state, upc, effective),
        state=state,
        upc=upc,
        benefit_category=category,
        effective_date=effective,
        data_source=data_source,
        last_updated=RUN_TIME,
    )


def _count(session_factory: sessionmaker[Session], state: str | None = None) -> int:
    with session_factory() as session:
        stmt = select(func.count()).select_from(APLEntryRecord)
        if state:
            stmt = stmt.where(APLEntryRecord.state == state)
        return int(session.scalar(stmt) or 0)


def _record_fingerprint(session_factory: sessionmaker[Session], config: JurisdictionConfig, fingerprint: str) -> None:
    with session_factory() as session:
        SyncStatusRepository(session).mark_success(
            state=config.state,
            data_source=config.data_source,
            fingerprint=fingerprint,
            entries_count=0,
        )
        session.commit()


class _FailingRepository(APLEntryRepository):
    """Writes the first entry, then fails as a broken connection would."""

    def upsert_entries(self, entries: Iterable[CanonicalEntry]) -> UpsertCounts:
        for index, entry in enumerate(entries):
            if index == 1:
                raise SQLAlchemyError("connection lost mid-transaction")
            self.upsert_entry(entry)
            self._session.flush()
        return UpsertCounts()


class TestPersist:
    def test_initial_load_adds_everything(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory, significant_change_threshold=2)
        stats = IngestionStats(state="MI")

        outcome = engine.persist(
            config=mi_config,
            entries=[_entry("MI", upc) for upc in UPCS],
            fingerprint="a" * 64,
            stats=stats,
        )

        assert (outcome.additions, outcome.updates, outcome.unchanged) == (4, 0, 0)
        assert (stats.additions, stats.updates) == (4, 0)
        assert outcome.previous_fingerprint is None
        assert outcome.fingerprint_changed is False
        assert outcome.significant_change is False
        assert stats.warnings == []
        assert _count(session_factory, "MI") == 4

    def test_rerun_is_idempotent(self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig) -> None:
        engine = SyncEngine(session_factory=session_factory)
        entries = [_entry("MI", upc) for upc in UPCS]
        engine.persist(config=mi_config, entries=entries, fingerprint="a" * 64, stats=IngestionStats(state="MI"))

        outcome = engine.persist(
            config=mi_config,
            entries=entries,
            fingerprint="a" * 64,
            stats=IngestionStats(state="MI"),
        )

        assert (outcome.additions, outcome.updates, outcome.unchanged) == (0, 0, 4)
        assert _count(session_factory, "MI") == 4

    def test_changed_fields_count_as_updates(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory)
        entries = [_entry("MI", upc) for upc in UPCS]
        engine.persist(config=mi_config, entries=entries, fingerprint="a" * 64, stats=IngestionStats(state="MI"))

        changed = [replace(entries[0], benefit_category="Cereal - Whole Grain"), *entries[1:]]
        outcome = engine.persist(
            config=mi_config,
            entries=changed,
            fingerprint="b" * 64,
            stats=IngestionStats(state="MI"),
        )

        assert (outcome.additions, outcome.updates, outcome.unchanged) == (0, 1, 3)
        with session_factory() as session:
            record = APLEntryRepository(session).get_by_key(
                state="MI", upc=UPCS[0], effective_date=date(2026, 1, 1)
            )
            assert record is not None
            assert record.benefit_category == "Cereal - Whole Grain"


class TestAtomicity:
    def test_failed_transaction_persists_nothing(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory, repository_factory=_FailingRepository)
        stats = IngestionStats(state="MI")

        with pytest.raises(StorageError):
            engine.persist(
                config=mi_config,
                entries=[_entry("MI", upc) for upc in UPCS],
                fingerprint="a" * 64,
                stats=stats,
            )

        assert _count(session_factory) == 0
        assert stats.additions == 0

    def test_failure_in_one_state_leaves_others_intact(
        self,
        session_factory: sessionmaker[Session],
        mi_config: JurisdictionConfig,
        fl_config: JurisdictionConfig,
    ) -> None:
        SyncEngine(session_factory=session_factory).persist(
            config=mi_config,
            entries=[_entry("MI", upc) for upc in UPCS],
            fingerprint="a" * 64,
            stats=IngestionStats(state="MI"),
        )

        failing = SyncEngine(session_factory=session_factory, repository_factory=_FailingRepository)
        with pytest.raises(StorageError):
            failing.persist(
                config=fl_config,
                entries=[_entry("FL", upc) for upc in UPCS],
                fingerprint="c" * 64,
                stats=IngestionStats(state="FL"),
            )

        assert _count(session_factory, "MI") == 4
        assert _count(session_factory, "FL") == 0


class TestChangeDetection:
    def test_hash_change_with_new_rows(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory, significant_change_threshold=2)
        engine.persist(
            config=mi_config,
            entries=[_entry("MI", UPCS[0])],
            fingerprint="a" * 64,
            stats=IngestionStats(state="MI"),
        )
        _record_fingerprint(session_factory, mi_config, "a" * 64)
        stats = IngestionStats(state="MI")

        outcome = engine.persist(
            config=mi_config,
            entries=[_entry("MI", upc) for upc in UPCS],
            fingerprint="b" * 64,
            stats=stats,
        )

        assert outcome.previous_fingerprint == "a" * 64
        assert outcome.fingerprint_changed is True
        assert outcome.additions == 3
        assert outcome.significant_change is True
        assert stats.warnings == [HASH_CHANGE_WARNING]

    def test_shape_change_without_row_changes(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory)
        entries = [_entry("MI", upc) for upc in UPCS]
        engine.persist(config=mi_config, entries=entries, fingerprint="a" * 64, stats=IngestionStats(state="MI"))
        _record_fingerprint(session_factory, mi_config, "a" * 64)
        stats = IngestionStats(state="MI")

        outcome = engine.persist(config=mi_config, entries=entries, fingerprint="b" * 64, stats=stats)

        assert outcome.fingerprint_changed is True
        assert outcome.significant_change is False
        assert stats.warnings == [SHAPE_CHANGE_WARNING]

    def test_same_fingerprint_no_warning(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory)
        _record_fingerprint(session_factory, mi_config, "a" * 64)
        stats = IngestionStats(state="MI")

        outcome = engine.persist(
            config=mi_config,
            entries=[_entry("MI", UPCS[0])],
            fingerprint="a" * 64,
            stats=stats,
        )

        assert outcome.fingerprint_changed is False
        assert stats.warnings == []

    def test_same_fingerprint_skips_upsert(
        self, session_factory: sessionmaker[Session], mi_config: JurisdictionConfig
    ) -> None:
        engine = SyncEngine(session_factory=session_factory, significant_change_threshold=1)
        _record_fingerprint(session_factory, mi_config, "a" * 64)
        stats = IngestionStats(state="MI")

        outcome = engine.persist(
            config=mi_config,
            entries=[_entry("MI", upc) for upc in UPCS],
            fingerprint="a" * 64,
            stats=stats,
        )

        assert outcome.upsert_skipped is True
        assert (outcome.additions, outcome.updates, outcome.unchanged) == (0, 0, 4)
        assert outcome.significant_change is False
        assert (stats.additions, stats.updates) == (0, 0)
        assert _count(session_factory, "MI") == 0
