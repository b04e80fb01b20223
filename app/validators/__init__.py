"""
app/validators package marker.
"""

from app.validators.apl_entry_validator import APLEntryValidator
from app.validators.upc import calculate_check_digit, normalize_upc, validate_check_digit

__all__ = [
    "APLEntryValidator",
    "calculate_check_digit",
    "normalize_upc",
    "validate_check_digit",
]
