"""
app/validators/apl_entry_validator.py

Structural validation and sanitization for canonical APL entries.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from app.domain.apl import (
    ALL_PARTICIPANT_TYPES,
    VALID_DATA_SOURCES,
    BrandRestriction,
    CanonicalEntry,
    RowValidationError,
    SizeRestriction,
)
from app.validators.upc import validate_check_digit

US_STATE_CODES = frozenset(
    {
        "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
        "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
        "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
        "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
        "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
        "DC", "PR", "GU", "VI", "AS", "MP",
    }
)

MAX_CATEGORY_LENGTH = 100

KNOWN_RESTRICTION_KEYS = frozenset(
    {
        "whole_grain_required",
        "sugar_limit",
        "no_artificial_dyes",
        "organic_required",
        "local_preference",
        "notes",
    }
)


class APLEntryValidator:
    """
    Rejects structurally invalid entries and sanitizes the rest.

    ``validate`` never raises for a bad entry; it returns the reasons instead.
    """

    def validate(
        self,
        entry: CanonicalEntry,
        *,
        row_number: int,
    ) -> tuple[CanonicalEntry | None, list[RowValidationError]]:
        errors: list[RowValidationError] = []

        state = (entry.state or "").strip().upper()
        if state not in US_STATE_CODES:
            errors.append(self._error(row_number, "state", f"Invalid state code: {entry.state}", entry.state))

        upc = (entry.upc or "").strip()
        if not upc.isdigit():
            errors.append(self._error(row_number, "upc", f"UPC must contain only digits: {upc}", upc))
        elif not validate_check_digit(upc):
            errors.append(self._error(row_number, "upc", f"Invalid UPC check digit: {upc}", upc))

        if entry.data_source not in VALID_DATA_SOURCES:
            errors.append(
                self._error(row_number, "data_source", f"Invalid data source: {entry.data_source}", entry.data_source)
            )

        category = (entry.benefit_category or "").strip()
        if not category:
            errors.append(self._error(row_number, "benefit_category", "Benefit category is required"))
        elif len(category) > MAX_CATEGORY_LENGTH:
            errors.append(
                self._error(
                    row_number,
                    "benefit_category",
                    f"Benefit category must be {MAX_CATEGORY_LENGTH} characters or less",
                )
            )

        subcategory = entry.benefit_subcategory.strip() if entry.benefit_subcategory else None
        if subcategory and len(subcategory) > MAX_CATEGORY_LENGTH:
            errors.append(
                self._error(
                    row_number,
                    "benefit_subcategory",
                    f"Benefit subcategory must be {MAX_CATEGORY_LENGTH} characters or less",
                )
            )

        if entry.expiration_date is not None and entry.expiration_date <= entry.effective_date:
            errors.append(
                self._error(
                    row_number,
                    "expiration_date",
                    "Expiration date must be after effective date",
                    entry.expiration_date.isoformat(),
                )
            )

        size = self._sanitize_size(entry.size_restriction, row_number=row_number, errors=errors)
        brand = self._sanitize_brand(entry.brand_restriction, row_number=row_number, errors=errors)

        if errors:
            return None, errors

        return (
            replace(
                entry,
                state=state,
                upc=upc,
                benefit_category=category,
                benefit_subcategory=subcategory or None,
                participant_types=self._sanitize_participants(entry.participant_types),
                size_restriction=size,
                brand_restriction=brand,
                additional_restrictions=self._sanitize_restrictions(entry.additional_restrictions),
                product_description=_strip_or_none(entry.product_description),
                brand=_strip_or_none(entry.brand),
                notes=_strip_or_none(entry.notes),
                verified=False,
            ),
            [],
        )

    def _sanitize_size(
        self,
        size: SizeRestriction | None,
        *,
        row_number: int,
        errors: list[RowValidationError],
    ) -> SizeRestriction | None:
        if size is None:
            return None

        if size.exact_size is not None and size.exact_size <= 0:
            errors.append(self._error(row_number, "size_restriction", "Exact size must be greater than 0"))
            return None

        min_size = max(0.0, size.min_size) if size.min_size is not None else None
        max_size = max(0.0, size.max_size) if size.max_size is not None else None
        if min_size is not None and max_size is not None and min_size > max_size:
            errors.append(self._error(row_number, "size_restriction", "Min size cannot be greater than max size"))
            return None

        return SizeRestriction(
            unit=(size.unit or "oz").strip().lower(),
            exact_size=size.exact_size,
            min_size=min_size,
            max_size=max_size,
        )

    def _sanitize_brand(
        self,
        brand: BrandRestriction | None,
        *,
        row_number: int,
        errors: list[RowValidationError],
    ) -> BrandRestriction | None:
        if brand is None:
            return None

        allowed = _dedupe_strings(brand.allowed_brands)
        excluded = _dedupe_strings(brand.excluded_brands)
        if allowed and excluded:
            errors.append(
                self._error(
                    row_number,
                    "brand_restriction",
                    "Cannot specify both allowed and excluded brands",
                )
            )
            return None

        return BrandRestriction(
            allowed_brands=allowed,
            excluded_brands=excluded,
            contract_brand=_strip_or_none(brand.contract_brand),
            contract_start_date=brand.contract_start_date,
        )

    @staticmethod
    def _sanitize_participants(participants: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if not participants:
            return None
        present = set(participants)
        ordered = tuple(participant for participant in ALL_PARTICIPANT_TYPES if participant in present)
        return ordered or None

    @staticmethod
    def _sanitize_restrictions(restrictions: dict[str, Any] | None) -> dict[str, Any] | None:
        if not restrictions:
            return None
        cleaned = {
            key: value.strip() if isinstance(value, str) else value
            for key, value in restrictions.items()
            if key in KNOWN_RESTRICTION_KEYS
        }
        return cleaned or None

    @staticmethod
    def _error(row_number: int, field: str, message: str, value: Any = None) -> RowValidationError:
        return RowValidationError(
            row_number=row_number,
            field=field,
            message=message,
            value=None if value is None else str(value),
        )


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _dedupe_strings(values: tuple[str, ...] | None) -> tuple[str, ...] | None:
    if not values:
        return None
    seen: dict[str, None] = {}
    for value in values:
        stripped = value.strip()
        if stripped:
            seen.setdefault(stripped, None)
    return tuple(seen) or None
