"""
app/services/sync_engine.py

Transactional persistence of one run's validated entries.

All inserts and updates for a run happen inside a single transaction: a
reader of ``apl_entries`` sees either the whole run or none of it. Any
SQLAlchemy failure rolls the transaction back and surfaces as StorageError.

A run whose fingerprint equals the one stored after the last persisted run
writes nothing: the same bytes always produce the same entries, except that
rows without an effective date would take the new run date and appear as
new identities.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.apl import CanonicalEntry, IngestionStats
from app.errors import StorageError
from app.jurisdictions import JurisdictionConfig
from db.repositories.apl_entry_repository import APLEntryRepository, UpsertCounts
from db.repositories.sync_status_repository import SyncStatusRepository

logger = logging.getLogger(__name__)

SHAPE_CHANGE_WARNING = "data changed shape without changing row counts"
HASH_CHANGE_WARNING = "APL file hash changed - new data detected"


@dataclass(frozen=True)
class SyncOutcome:
    """
    Result of one committed sync transaction.
    """

    additions: int
    updates: int
    unchanged: int
    previous_fingerprint: str | None
    fingerprint: str
    fingerprint_changed: bool
    significant_change: bool
    upsert_skipped: bool = False


class SyncEngine:
    """
    Diffs validated entries against the store and upserts them atomically.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        significant_change_threshold: int = 100,
        repository_factory: Callable[[Session], APLEntryRepository] = APLEntryRepository,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._significant_change_threshold = max(1, significant_change_threshold)
        self._repository_factory = repository_factory

    def persist(
        self,
        *,
        config: JurisdictionConfig,
        entries: Sequence[CanonicalEntry],
        fingerprint: str,
        stats: IngestionStats,
    ) -> SyncOutcome:
        """
        Upsert ``entries`` in one transaction and record counts on ``stats``.
        """

        skipped = False
        session = self._session_factory()
        try:
            with session.begin():
                previous_fingerprint = SyncStatusRepository(session).get_previous_fingerprint(
                    state=config.state,
                    data_source=config.data_source,
                )
                if previous_fingerprint is not None and previous_fingerprint == fingerprint:
                    skipped = True
                    counts = UpsertCounts(unchanged=len(entries))
                else:
                    counts = self._repository_factory(session).upsert_entries(entries)
        except SQLAlchemyError as exc:
            logger.error(
                "APL sync transaction rolled back state=%s entries=%s error=%s",
                config.state,
                len(entries),
                exc,
            )
            raise StorageError(f"{config.state}: sync transaction failed and was rolled back: {exc}") from exc
        finally:
            session.close()

        stats.additions = counts.additions
        stats.updates = counts.updates

        fingerprint_changed = previous_fingerprint is not None and previous_fingerprint != fingerprint
        if fingerprint_changed:
            if counts.additions == 0 and counts.updates == 0:
                stats.warnings.append(SHAPE_CHANGE_WARNING)
                logger.warning(
                    "APL sync state=%s fingerprint changed with no row changes previous=%s current=%s",
                    config.state,
                    previous_fingerprint[:12],
                    fingerprint[:12],
                )
            else:
                stats.warnings.append(HASH_CHANGE_WARNING)

        # The initial load of a state is always large; only later swings count.
        significant_change = (
            previous_fingerprint is not None and counts.additions >= self._significant_change_threshold
        )
        if significant_change:
            logger.warning(
                "APL sync state=%s significant change additions=%s threshold=%s",
                config.state,
                counts.additions,
                self._significant_change_threshold,
            )

        if skipped:
            logger.info(
                "APL sync state=%s fingerprint unchanged=%s; upsert skipped entries=%s",
                config.state,
                fingerprint[:12],
                len(entries),
            )
        else:
            logger.info(
                "APL sync committed state=%s additions=%s updates=%s unchanged=%s",
                config.state,
                counts.additions,
                counts.updates,
                counts.unchanged,
            )
        return SyncOutcome(
            additions=counts.additions,
            updates=counts.updates,
            unchanged=counts.unchanged,
            previous_fingerprint=previous_fingerprint,
            fingerprint=fingerprint,
            fingerprint_changed=fingerprint_changed,
            significant_change=significant_change,
            upsert_skipped=skipped,
        )
