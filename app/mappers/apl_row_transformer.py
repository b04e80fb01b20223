"""
app/mappers/apl_row_transformer.py

Converts raw APL rows into canonical entries.

One transformer instance serves one jurisdiction for one run. Jurisdiction
policy (dye rejection, contract formula tracking, organic/local tallies) is
switched on by JurisdictionConfig flags rather than per-state subclasses.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

from app.domain.apl import (
    ALL_PARTICIPANT_TYPES,
    BrandRestriction,
    CanonicalEntry,
    IngestionStats,
    ParticipantType,
    SizeRestriction,
    build_entry_id,
)
from app.errors import RowTransformError
from app.jurisdictions import JurisdictionConfig
from app.mappers.schema_mapper import MappingResolution, SchemaMapper
from app.validators.upc import normalize_upc

DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
)

_EXCEL_EPOCH = date(1899, 12, 30)
_EXCEL_SERIAL_RANGE = (20_000, 80_000)

_SIZE_RANGE_PATTERN = re.compile(r"(\d+\.?\d*)\s*-\s*(\d+\.?\d*)\s*(oz|lb|gal|g|ml|l)", re.IGNORECASE)
_SIZE_EXACT_PATTERN = re.compile(r"(\d+\.?\d*)\s*(oz|lb|gal|g|ml|l)", re.IGNORECASE)
_UNIT_PATTERN = re.compile(r"\d\s*(oz|lb|gal|g|ml|l)\b", re.IGNORECASE)

_PARTICIPANT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (ParticipantType.PREGNANT, ("pregnant",)),
    (ParticipantType.POSTPARTUM, ("postpartum", "post-partum")),
    (ParticipantType.BREASTFEEDING, ("breastfeeding", "nursing")),
    (ParticipantType.INFANT, ("infant",)),
    (ParticipantType.CHILD, ("child", "children")),
)

ARTIFICIAL_DYE_KEYWORDS: tuple[str, ...] = (
    "red 40",
    "red 3",
    "yellow 5",
    "yellow 6",
    "blue 1",
    "blue 2",
    "green 3",
    "artificial color",
    "artificial dye",
    "fd&c",
    "lake dye",
)

_TRUTHY_FLAGS = frozenset({"yes", "y", "true", "1"})


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        if value != value:
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


def _is_flag_set(value: Any) -> bool:
    text = _text(value)
    return text is not None and text.lower() in _TRUTHY_FLAGS


def parse_participant_types(value: Any) -> tuple[str, ...] | None:
    """
    Parse free-text participant categories; None means all groups.
    """

    text = _text(value)
    if text is None:
        return None

    lowered = text.lower()
    if lowered in {"all", "all participants"}:
        return ALL_PARTICIPANT_TYPES

    matched = tuple(
        participant
        for participant, keywords in _PARTICIPANT_KEYWORDS
        if any(keyword in lowered for keyword in keywords)
    )
    return matched or None


def _parse_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if value != value else float(value)
    match = re.search(r"-?\d+\.?\d*", str(value))
    return float(match.group(0)) if match else None


def parse_size_text(value: Any) -> SizeRestriction | None:
    """
    Parse ``"8.9-36 oz"`` into a range and ``"12 oz"`` into an exact size.

    Unparseable text yields None, never an error.
    """

    text = _text(value)
    if text is None:
        return None

    range_match = _SIZE_RANGE_PATTERN.search(text)
    if range_match:
        return SizeRestriction(
            min_size=float(range_match.group(1)),
            max_size=float(range_match.group(2)),
            unit=range_match.group(3).lower(),
        )

    exact_match = _SIZE_EXACT_PATTERN.search(text)
    if exact_match:
        return SizeRestriction(
            exact_size=float(exact_match.group(1)),
            unit=exact_match.group(2).lower(),
        )
    return None


def parse_size_restriction(size: Any, min_size: Any = None, max_size: Any = None) -> SizeRestriction | None:
    """
    Explicit min/max columns take precedence over the free-text size column.
    """

    parsed_min = _parse_number(min_size)
    parsed_max = _parse_number(max_size)
    if parsed_min is not None or parsed_max is not None:
        unit = "oz"
        size_text = _text(size)
        if size_text:
            unit_match = _UNIT_PATTERN.search(size_text)
            if unit_match:
                unit = unit_match.group(1).lower()
        return SizeRestriction(min_size=parsed_min, max_size=parsed_max, unit=unit)
    return parse_size_text(size)


def parse_date(value: Any) -> date | None:
    """
    Accept date/datetime values, Excel serial numbers, and common date strings.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        try:
            return value.date()
        except ValueError:
            return None
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if value != value:
            return None
        low, high = _EXCEL_SERIAL_RANGE
        if low <= value <= high:
            return _EXCEL_EPOCH + timedelta(days=int(value))
        return None

    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def contains_artificial_dyes(fields: Mapping[str, Any]) -> bool:
    """
    True when the dye flag column is set or dye keywords appear in the text.
    """

    if _is_flag_set(fields.get("artificial_dyes")):
        return True
    haystack = " ".join(
        text
        for text in (_text(fields.get(key)) for key in ("description", "notes", "category"))
        if text
    ).lower()
    return any(keyword in haystack for keyword in ARTIFICIAL_DYE_KEYWORDS)


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------


class APLRowTransformer:
    """
    Maps one jurisdiction's raw rows onto CanonicalEntry values.
    """

    def __init__(
        self,
        config: JurisdictionConfig,
        *,
        run_time: datetime | None = None,
        mapper: SchemaMapper | None = None,
    ) -> None:
        self._config = config
        self._run_time = run_time or datetime.now(timezone.utc)
        self._run_date = self._run_time.date()
        self._mapper = mapper or SchemaMapper(config.column_aliases)
        self._mapping: MappingResolution | None = None

    @property
    def mapping(self) -> MappingResolution | None:
        return self._mapping

    def prepare(self, headers: Sequence[str]) -> MappingResolution:
        """
        Resolve the file's headers once before transforming its rows.
        """

        self._mapping = self._mapper.resolve_mapping(headers)
        return self._mapping

    def transform(
        self,
        raw_row: Mapping[str, Any],
        *,
        row_number: int,
        stats: IngestionStats,
    ) -> CanonicalEntry | None:
        """
        Return a canonical entry, or None for rows that carry no product.

        Rows whose UPC cell holds no usable identifier (footers such as
        "Total items: 12") are skipped with a warning, not counted as invalid.
        Raises RowTransformError when a non-blank effective date cannot be read.
        """

        fields = self._mapper.map_row(raw_row=raw_row, mapping=self._mapping)

        upc_raw = fields.get("upc")
        if _text(upc_raw) is None:
            return None

        upc = normalize_upc(upc_raw)
        if upc is None:
            stats.increment("skipped_rows")
            stats.warnings.append(f"Row {row_number}: skipped, no usable UPC: {_text(upc_raw)}")
            return None

        if self._config.reject_artificial_dyes and contains_artificial_dyes(fields):
            stats.increment("rejected_artificial_dyes")
            stats.warnings.append(
                f"UPC {upc} rejected: contains artificial dyes ({self._config.state} policy)"
            )
            return None

        category = _text(fields.get("category")) or "Unknown"
        subcategory = _text(fields.get("subcategory"))
        benefit_category = f"{category} - {subcategory}" if subcategory else category

        effective_raw = fields.get("effective_date")
        effective_date = parse_date(effective_raw)
        if effective_date is None:
            if _text(effective_raw) is not None:
                raise RowTransformError(
                    f"Unreadable effective date: {_text(effective_raw)}",
                    row_number=row_number,
                    column="effective_date",
                )
            effective_date = self._run_date
        expiration_date = parse_date(fields.get("expiration_date"))
        if expiration_date is not None and expiration_date < self._run_date:
            stats.expirations += 1

        notes = _text(fields.get("notes"))
        brand = _text(fields.get("brand"))

        entry = CanonicalEntry(
            id=build_entry_id(self._config.state, upc, effective_date),
            state=self._config.state,
            upc=upc,
            eligible=True,
            verified=False,
            benefit_category=benefit_category,
            benefit_subcategory=subcategory,
            participant_types=parse_participant_types(fields.get("participant_types")),
            size_restriction=parse_size_restriction(
                fields.get("size"),
                fields.get("min_size"),
                fields.get("max_size"),
            ),
            brand_restriction=self._brand_restriction(fields, category=category, stats=stats),
            additional_restrictions=self._additional_restrictions(
                fields,
                category=category,
                notes=notes,
                stats=stats,
            ),
            effective_date=effective_date,
            expiration_date=expiration_date,
            data_source=self._config.data_source,
            last_updated=self._run_time,
            product_description=_text(fields.get("description")),
            brand=brand,
            notes=notes,
        )
        return entry

    def _brand_restriction(
        self,
        fields: Mapping[str, Any],
        *,
        category: str,
        stats: IngestionStats,
    ) -> BrandRestriction | None:
        contract_brand = _text(fields.get("contract_brand"))
        if self._config.track_contract_formula and contract_brand and "formula" in category.lower():
            stats.increment("contract_formula_changes")
            return BrandRestriction(
                contract_brand=contract_brand,
                contract_start_date=self._config.contract_start_date,
            )

        brand = _text(fields.get("brand"))
        if brand:
            return BrandRestriction(allowed_brands=(brand,))
        return None

    def _additional_restrictions(
        self,
        fields: Mapping[str, Any],
        *,
        category: str,
        notes: str | None,
        stats: IngestionStats,
    ) -> dict[str, Any] | None:
        restrictions: dict[str, Any] = {}

        if "cereal" in category.lower():
            restrictions["whole_grain_required"] = True
        if notes and "sugar" in notes.lower():
            restrictions["sugar_limit"] = True
        if self._config.reject_artificial_dyes:
            restrictions["no_artificial_dyes"] = True

        if self._config.track_organic_local:
            if _is_flag_set(fields.get("organic_only")):
                restrictions["organic_required"] = True
                stats.increment("organic_products")
            if _is_flag_set(fields.get("local_preference")):
                restrictions["local_preference"] = True
                stats.increment("local_products")

        return restrictions or None
