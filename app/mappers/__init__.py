"""
app/mappers package marker.
"""

from app.mappers.apl_row_transformer import (
    APLRowTransformer,
    parse_date,
    parse_participant_types,
    parse_size_restriction,
)
from app.mappers.schema_mapper import LOGICAL_FIELDS, MappingResolution, SchemaMapper, lookup_field

__all__ = [
    "APLRowTransformer",
    "LOGICAL_FIELDS",
    "MappingResolution",
    "SchemaMapper",
    "lookup_field",
    "parse_date",
    "parse_participant_types",
    "parse_size_restriction",
]
