"""
Repository for canonical APL entry persistence and point lookups.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app.domain.apl import CanonicalEntry
from db.models.apl_entry import APLEntryRecord

# Fields a newer run may overwrite on an existing (state, upc, effective_date) row.
MUTABLE_FIELDS: tuple[str, ...] = (
    "eligible",
    "benefit_category",
    "benefit_subcategory",
    "participant_types",
    "size_restriction",
    "brand_restriction",
    "additional_restrictions",
    "expiration_date",
    "product_description",
    "brand",
    "notes",
    "data_source",
)


class UpsertOutcome:
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class UpsertCounts:
    additions: int = 0
    updates: int = 0
    unchanged: int = 0


def entry_to_columns(entry: CanonicalEntry) -> dict[str, Any]:
    """
    Flatten a canonical entry into column values (JSON-safe restriction maps).
    """

    return {
        "eligible": entry.eligible,
        "benefit_category": entry.benefit_category,
        "benefit_subcategory": entry.benefit_subcategory,
        "participant_types": list(entry.participant_types) if entry.participant_types else None,
        "size_restriction": entry.size_restriction.to_dict() if entry.size_restriction else None,
        "brand_restriction": (entry.brand_restriction.to_dict() or None) if entry.brand_restriction else None,
        "additional_restrictions": dict(entry.additional_restrictions) if entry.additional_restrictions else None,
        "expiration_date": entry.expiration_date,
        "product_description": entry.product_description,
        "brand": entry.brand,
        "notes": entry.notes,
        "data_source": entry.data_source,
    }


class APLEntryRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_key(self, *, state: str, upc: str, effective_date: date) -> APLEntryRecord | None:
        stmt = select(APLEntryRecord).where(
            APLEntryRecord.state == state,
            APLEntryRecord.upc == upc,
            APLEntryRecord.effective_date == effective_date,
        )
        return self._session.scalars(stmt).one_or_none()

    def upsert_entry(self, entry: CanonicalEntry) -> str:
        """
        Insert a new row or update mutable fields of the existing one.

        Rows whose mutable fields already match are left untouched so that a
        re-run over identical source data writes nothing.
        """

        columns = entry_to_columns(entry)
        existing = self.get_by_key(state=entry.state, upc=entry.upc, effective_date=entry.effective_date)

        if existing is None:
            self._session.add(
                APLEntryRecord(
                    id=entry.id,
                    state=entry.state,
                    upc=entry.upc,
                    effective_date=entry.effective_date,
                    last_updated=entry.last_updated,
                    verified=entry.verified,
                    **columns,
                )
            )
            return UpsertOutcome.ADDED

        changed = False
        for field_name, value in columns.items():
            if getattr(existing, field_name) != value:
                setattr(existing, field_name, value)
                changed = True

        if not changed:
            return UpsertOutcome.UNCHANGED

        existing.last_updated = entry.last_updated
        return UpsertOutcome.UPDATED

    def upsert_entries(self, entries: Iterable[CanonicalEntry]) -> UpsertCounts:
        additions = updates = unchanged = 0
        for entry in entries:
            outcome = self.upsert_entry(entry)
            if outcome == UpsertOutcome.ADDED:
                additions += 1
            elif outcome == UpsertOutcome.UPDATED:
                updates += 1
            else:
                unchanged += 1
        self._session.flush()
        return UpsertCounts(additions=additions, updates=updates, unchanged=unchanged)

    def get_entries(self, *, state: str, upc: str) -> list[APLEntryRecord]:
        """
        All effective-dated rows for one product, newest first.
        """

        stmt: Select[tuple[APLEntryRecord]] = (
            select(APLEntryRecord)
            .where(APLEntryRecord.state == state.upper(), APLEntryRecord.upc == upc)
            .order_by(APLEntryRecord.effective_date.desc())
        )
        return list(self._session.scalars(stmt).all())

    def get_current_entry(self, *, state: str, upc: str, on_date: date) -> APLEntryRecord | None:
        """
        The row in force on ``on_date``: latest effective date not after it,
        and not yet expired.
        """

        for record in self.get_entries(state=state, upc=upc):
            if record.effective_date > on_date:
                continue
            if record.expiration_date is not None and record.expiration_date <= on_date:
                continue
            return record
        return None
