"""
app/connectors package marker.
"""

from app.connectors.apl_source import APLSourceAdapter, SourceFetchResult, compute_fingerprint

__all__ = [
    "APLSourceAdapter",
    "SourceFetchResult",
    "compute_fingerprint",
]
