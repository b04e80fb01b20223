"""
app/domain package marker.
"""

from app.domain.apl import (
    ALL_PARTICIPANT_TYPES,
    BrandRestriction,
    CanonicalEntry,
    IngestionStats,
    RowValidationError,
    SizeRestriction,
)
from app.domain.health import HealthMetric, HealthStatus, StateHealthReport, SystemHealthReport

__all__ = [
    "ALL_PARTICIPANT_TYPES",
    "BrandRestriction",
    "CanonicalEntry",
    "HealthMetric",
    "HealthStatus",
    "IngestionStats",
    "RowValidationError",
    "SizeRestriction",
    "StateHealthReport",
    "SystemHealthReport",
]
