"""
app/services/apl_ingestion_service.py

One jurisdiction's ingestion pipeline:

    fetch -> parse -> transform -> validate -> persist

Stages run strictly in order. A FetchError aborts before any row is
transformed; a StorageError aborts after the transaction has rolled back.
Row-level problems never abort the run; they are counted on IngestionStats.

With ``check_for_update`` set, a HEAD request runs first; when the source
reports the same ETag or Last-Modified as the last persisted download, the
run ends there with ``source_unchanged`` and nothing is downloaded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session, sessionmaker

from app.config import get_sync_settings
from app.connectors.apl_source import APLSourceAdapter, SourceVersion, UpdateCheck
from app.domain.apl import CanonicalEntry, IngestionStats
from app.errors import RowTransformError
from app.jurisdictions import JurisdictionConfig
from app.logging_utils import log_event
from app.mappers.apl_row_transformer import APLRowTransformer
from app.parsers.apl_file_parser import ParsedFile, parse_apl_file
from app.services.sync_engine import SyncEngine, SyncOutcome
from app.validators.apl_entry_validator import APLEntryValidator
from db.repositories.sync_status_repository import SyncStatusRepository

logger = logging.getLogger(__name__)

# Header row is row 1 in the source spreadsheet.
_FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class IngestionResult:
    """
    Outcome of one completed pipeline run.
    """

    state: str
    stats: IngestionStats
    fingerprint: str
    file_format: str
    outcome: SyncOutcome
    version: SourceVersion | None = None
    source_unchanged: bool = False

    @property
    def has_row_errors(self) -> bool:
        return self.stats.has_row_errors


class APLIngestionService:
    """
    Coordinates the source adapter, transformer, validator, and sync engine.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        source_adapter: APLSourceAdapter | None = None,
        sync_engine: SyncEngine | None = None,
        validator: APLEntryValidator | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._source = source_adapter or APLSourceAdapter()
        self._sync_engine = sync_engine or SyncEngine(
            session_factory=self._session_factory,
            significant_change_threshold=get_sync_settings().significant_change_threshold,
        )
        self._validator = validator or APLEntryValidator()

    def ingest(
        self,
        config: JurisdictionConfig,
        *,
        run_time: datetime | None = None,
        check_for_update: bool = False,
    ) -> IngestionResult:
        """
        Run the full pipeline for one jurisdiction.
        """

        started = run_time or datetime.now(timezone.utc)
        stats = IngestionStats(state=config.state, start_time=started)
        logger.info("APL ingestion starting state=%s source=%s", config.state, config.data_source)

        if check_for_update and config.check_for_updates:
            unchanged = self._skip_if_unchanged(config, stats)
            if unchanged is not None:
                return unchanged

        fetched = self._source.fetch(config)
        parsed = parse_apl_file(
            fetched.content,
            state=config.state,
            allow_csv_fallback=config.allow_csv_fallback,
        )
        stats.warnings.extend(parsed.warnings)
        stats.total_rows = len(parsed.rows)

        entries = self.build_entries(config, parsed, stats=stats, run_time=started)
        self._check_expected_volume(config, len(entries), stats)

        outcome = self._sync_engine.persist(
            config=config,
            entries=entries,
            fingerprint=fetched.fingerprint,
            stats=stats,
        )
        stats.finish()

        log_event(
            logger,
            logging.INFO,
            "apl_ingestion_complete",
            state=config.state,
            file_format=parsed.file_format,
            fingerprint=fetched.fingerprint[:12],
            total_rows=stats.total_rows,
            valid_entries=stats.valid_entries,
            invalid_entries=stats.invalid_entries,
            duplicates=stats.duplicates,
            additions=stats.additions,
            updates=stats.updates,
            expirations=stats.expirations,
            errors=len(stats.errors),
            warnings=len(stats.warnings),
            counters=stats.counters,
            duration_ms=stats.duration_ms,
        )
        return IngestionResult(
            state=config.state,
            stats=stats,
            fingerprint=fetched.fingerprint,
            file_format=parsed.file_format,
            outcome=outcome,
            version=fetched.version,
        )

    def _skip_if_unchanged(self, config: JurisdictionConfig, stats: IngestionStats) -> IngestionResult | None:
        with self._session_factory() as session:
            status = SyncStatusRepository(session).get(state=config.state, data_source=config.data_source)
            # Only a clean previous run may be skipped; last_error survives the running claim.
            if status is None or status.file_hash is None or status.last_error is not None:
                return None
            stored = SourceVersion(etag=status.source_etag, last_modified=status.source_last_modified)
            fingerprint = status.file_hash

        check: UpdateCheck = self._source.check_for_update(config, stored)
        if check.has_update:
            return None

        stats.finish()
        log_event(
            logger,
            logging.INFO,
            "apl_ingestion_skipped",
            state=config.state,
            reason=check.reason,
            fingerprint=fingerprint[:12],
        )
        return IngestionResult(
            state=config.state,
            stats=stats,
            fingerprint=fingerprint,
            file_format="unchanged",
            outcome=SyncOutcome(
                additions=0,
                updates=0,
                unchanged=0,
                previous_fingerprint=fingerprint,
                fingerprint=fingerprint,
                fingerprint_changed=False,
                significant_change=False,
                upsert_skipped=True,
            ),
            version=check.version or stored,
            source_unchanged=True,
        )

    def build_entries(
        self,
        config: JurisdictionConfig,
        parsed: ParsedFile,
        *,
        stats: IngestionStats,
        run_time: datetime | None = None,
    ) -> list[CanonicalEntry]:
        """
        Transform and validate parsed rows; duplicates of one identity keep the first row.
        """

        transformer = APLRowTransformer(config, run_time=run_time)
        mapping = transformer.prepare(parsed.headers)
        if mapping.missing_required:
            stats.errors.append(
                f"No UPC column found; headers were: {', '.join(parsed.headers) or '(none)'}"
            )

        accepted: dict[tuple[str, str, date], CanonicalEntry] = {}
        for index, raw_row in enumerate(parsed.rows):
            row_number = index + _FIRST_DATA_ROW
            try:
                entry = transformer.transform(raw_row, row_number=row_number, stats=stats)
            except RowTransformError as exc:
                stats.invalid_entries += 1
                stats.errors.append(f"Row {row_number}: {exc}")
                continue

            if entry is None:
                continue

            validated, errors = self._validator.validate(entry, row_number=row_number)
            if validated is None:
                stats.invalid_entries += 1
                stats.errors.extend(error.describe() for error in errors)
                continue

            if validated.identity_key in accepted:
                stats.duplicates += 1
                continue
            accepted[validated.identity_key] = validated

        stats.valid_entries = len(accepted)
        return list(accepted.values())

    @staticmethod
    def _check_expected_volume(config: JurisdictionConfig, count: int, stats: IngestionStats) -> None:
        if config.min_expected_entries is not None and count < config.min_expected_entries:
            stats.warnings.append(
                f"Only {count} valid entries; expected at least {config.min_expected_entries}"
            )
        if config.max_expected_entries is not None and count > config.max_expected_entries:
            stats.warnings.append(
                f"{count} valid entries exceeds expected maximum {config.max_expected_entries}; "
                "possible parsing error"
            )
