"""
app/mappers/schema_mapper.py

Alias-driven column resolution for raw APL rows.

Each processor names its columns differently and renames them between
releases. A jurisdiction supplies an ordered alias list per logical field;
the first alias present in the file wins. Exact header matches are tried
before normalized (case/punctuation-insensitive) matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

LOGICAL_FIELDS: tuple[str, ...] = (
    "upc",
    "description",
    "category",
    "subcategory",
    "size",
    "min_size",
    "max_size",
    "participant_types",
    "effective_date",
    "expiration_date",
    "brand",
    "contract_brand",
    "artificial_dyes",
    "organic_only",
    "local_preference",
    "notes",
)

REQUIRED_LOGICAL_FIELDS: tuple[str, ...] = ("upc",)


def normalize_header(header: str) -> str:
    """
    Normalize a column name for flexible matching.
    """

    return "".join(ch for ch in str(header).strip().lower() if ch.isalnum())


def lookup_field(row: Mapping[str, Any], aliases: Sequence[str]) -> Any | None:
    """
    Return the first non-empty value among ``aliases`` in ``row``.

    Exact keys are checked in alias order first, then normalized keys.
    """

    for alias in aliases:
        value = row.get(alias)
        if value is not None and not (isinstance(value, str) and not value.strip()):
            return value

    normalized_row = {normalize_header(key): value for key, value in row.items()}
    for alias in aliases:
        value = normalized_row.get(normalize_header(alias))
        if value is not None and not (isinstance(value, str) and not value.strip()):
            return value
    return None


@dataclass(frozen=True)
class MappingResolution:
    """
    Logical field to source column mapping resolved for one file.
    """

    field_to_source: dict[str, str]
    source_headers: tuple[str, ...]
    match_strategies: dict[str, str]

    @property
    def missing_required(self) -> tuple[str, ...]:
        return tuple(name for name in REQUIRED_LOGICAL_FIELDS if name not in self.field_to_source)


class SchemaMapper:
    """
    Resolves a file's headers against one jurisdiction's alias table.
    """

    def __init__(self, aliases: Mapping[str, Sequence[str]]) -> None:
        self._aliases: dict[str, tuple[str, ...]] = {
            logical: tuple(values) for logical, values in aliases.items() if logical in LOGICAL_FIELDS
        }

    @property
    def aliases(self) -> Mapping[str, tuple[str, ...]]:
        return self._aliases

    def resolve_mapping(self, headers: Sequence[str]) -> MappingResolution:
        """
        Resolve logical fields to the headers present in this file.
        """

        source_headers = tuple(str(header) for header in headers if header is not None and str(header).strip())
        exact_lookup = {header: header for header in source_headers}
        normalized_lookup: dict[str, str] = {}
        for header in source_headers:
            normalized_lookup.setdefault(normalize_header(header), header)

        resolved: dict[str, str] = {}
        strategies: dict[str, str] = {}
        used: set[str] = set()

        for logical_field, candidates in self._aliases.items():
            match = self._first_match(candidates, exact_lookup, used)
            strategy = "exact"
            if match is None:
                match = self._first_match(
                    [normalize_header(candidate) for candidate in candidates],
                    normalized_lookup,
                    used,
                )
                strategy = "normalized"
            if match is not None:
                resolved[logical_field] = match
                strategies[logical_field] = strategy
                used.add(match)

        return MappingResolution(
            field_to_source=resolved,
            source_headers=source_headers,
            match_strategies=strategies,
        )

    def map_row(
        self,
        *,
        raw_row: Mapping[str, Any],
        mapping: MappingResolution | None = None,
    ) -> dict[str, Any]:
        """
        Project one raw row onto logical field names.

        Without a resolved mapping the alias table is applied per row.
        """

        if mapping is None:
            return {
                logical_field: lookup_field(raw_row, candidates)
                for logical_field, candidates in self._aliases.items()
            }
        return {
            logical_field: raw_row.get(source_column)
            for logical_field, source_column in mapping.field_to_source.items()
        }

    @staticmethod
    def _first_match(
        candidates: Sequence[str],
        lookup: Mapping[str, str],
        used: set[str],
    ) -> str | None:
        for candidate in candidates:
            match = lookup.get(candidate)
            if match is not None and match not in used:
                return match
        return None
