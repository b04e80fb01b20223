"""
app/domain/apl.py

Domain models for APL ingestion: canonical entries and per-run statistics.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any


class ParticipantType:
    PREGNANT = "pregnant"
    POSTPARTUM = "postpartum"
    BREASTFEEDING = "breastfeeding"
    INFANT = "infant"
    CHILD = "child"


ALL_PARTICIPANT_TYPES: tuple[str, ...] = (
    ParticipantType.PREGNANT,
    ParticipantType.POSTPARTUM,
    ParticipantType.BREASTFEEDING,
    ParticipantType.INFANT,
    ParticipantType.CHILD,
)


class APLDataSource:
    FIS = "fis"
    CONDUENT = "conduent"
    STATE = "state"
    MANUAL = "manual"
    USDA = "usda"


VALID_DATA_SOURCES = frozenset(
    {
        APLDataSource.FIS,
        APLDataSource.CONDUENT,
        APLDataSource.STATE,
        APLDataSource.MANUAL,
        APLDataSource.USDA,
    }
)


@dataclass(frozen=True)
class SizeRestriction:
    """
    Package size constraint: either an exact size or a min/max range.
    """

    unit: str
    exact_size: float | None = None
    min_size: float | None = None
    max_size: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class BrandRestriction:
    """
    Brand constraint carried by the source list.
    """

    allowed_brands: tuple[str, ...] | None = None
    excluded_brands: tuple[str, ...] | None = None
    contract_brand: str | None = None
    contract_start_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.allowed_brands is not None:
            payload["allowed_brands"] = list(self.allowed_brands)
        if self.excluded_brands is not None:
            payload["excluded_brands"] = list(self.excluded_brands)
        if self.contract_brand is not None:
            payload["contract_brand"] = self.contract_brand
        if self.contract_start_date is not None:
            payload["contract_start_date"] = self.contract_start_date.isoformat()
        return payload


@dataclass(frozen=True)
class CanonicalEntry:
    """
    One eligibility record for one product in one jurisdiction.
    """

    id: str
    state: str
    upc: str
    benefit_category: str
    effective_date: date
    data_source: str
    last_updated: datetime
    eligible: bool = True
    verified: bool = False
    benefit_subcategory: str | None = None
    participant_types: tuple[str, ...] | None = None
    size_restriction: SizeRestriction | None = None
    brand_restriction: BrandRestriction | None = None
    additional_restrictions: dict[str, Any] | None = None
    expiration_date: date | None = None
    product_description: str | None = None
    brand: str | None = None
    notes: str | None = None

    @property
    def identity_key(self) -> tuple[str, str, date]:
        return (self.state, self.upc, self.effective_date)


def build_entry_id(state: str, upc: str, effective_date: date) -> str:
    """
    Deterministic entry identifier for (state, upc, effective_date).
    """

    return f"apl_{state.lower()}_{upc}_{effective_date.strftime('%Y%m%d')}"


@dataclass(frozen=True)
class RowValidationError:
    """
    One row-level validation error detail.
    """

    row_number: int
    message: str
    field: str | None = None
    value: str | None = None

    def describe(self) -> str:
        return f"Row {self.row_number}: {self.message}"


@dataclass
class IngestionStats:
    """
    Mutable per-run statistics collected across pipeline stages.
    """

    state: str
    total_rows: int = 0
    valid_entries: int = 0
    invalid_entries: int = 0
    duplicates: int = 0
    additions: int = 0
    updates: int = 0
    expirations: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None

    def increment(self, counter: str, amount: int = 1) -> None:
        self.counters[counter] = self.counters.get(counter, 0) + amount

    def finish(self) -> None:
        self.end_time = datetime.now(timezone.utc)

    @property
    def duration_ms(self) -> int:
        end = self.end_time or datetime.now(timezone.utc)
        return max(0, int((end - self.start_time).total_seconds() * 1000))

    @property
    def has_row_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self, *, sample_limit: int | None = None) -> dict[str, Any]:
        errors = self.errors if sample_limit is None else self.errors[:sample_limit]
        warnings = self.warnings if sample_limit is None else self.warnings[:sample_limit]
        return {
            "state": self.state,
            "total_rows": self.total_rows,
            "valid_entries": self.valid_entries,
            "invalid_entries": self.invalid_entries,
            "duplicates": self.duplicates,
            "additions": self.additions,
            "updates": self.updates,
            "expirations": self.expirations,
            "errors": list(errors),
            "error_count": len(self.errors),
            "warnings": list(warnings),
            "warning_count": len(self.warnings),
            "counters": dict(self.counters),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
        }


def summarize_messages(messages: list[str], *, limit: int = 10) -> list[str]:
    """
    Cap a message list for display, appending a "+N more" marker.
    """

    if len(messages) <= limit:
        return list(messages)
    return [*messages[:limit], f"... and {len(messages) - limit} more"]
