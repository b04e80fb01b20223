"""
app/validators/upc.py

UPC / GTIN normalization and check-digit validation.
"""

from __future__ import annotations

import re
from typing import Any

_NON_DIGITS = re.compile(r"\D")

MIN_UPC_LENGTH = 8
MAX_UPC_LENGTH = 14
CHECKSUM_LENGTHS = frozenset({8, 12, 13, 14})


def _coerce_raw(value: Any) -> str:
    # Spreadsheet readers hand numeric UPCs back as floats.
    if isinstance(value, bool):
        return ""
    if isinstance(value, float):
        if value != value or not value.is_integer():
            return ""
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    return str(value or "")


def expand_upc_e(upc_e: str) -> str:
    """
    Expand an 8-digit UPC-E code to its 12-digit UPC-A form.
    """

    if len(upc_e) != 8 or not upc_e.isdigit():
        raise ValueError(f"UPC-E must be 8 digits, got {upc_e!r}")

    number_system = upc_e[0]
    d1, d2, d3, d4, d5, d6 = upc_e[1:7]
    check = upc_e[7]

    if d6 in "012":
        body = f"{d1}{d2}{d6}0000{d3}{d4}{d5}"
    elif d6 == "3":
        body = f"{d1}{d2}{d3}00000{d4}{d5}"
    elif d6 == "4":
        body = f"{d1}{d2}{d3}{d4}00000{d5}"
    else:
        body = f"{d1}{d2}{d3}{d4}{d5}0000{d6}"

    return f"{number_system}{body}{check}"


def normalize_upc(value: Any) -> str | None:
    """
    Normalize a raw UPC cell to its canonical digit string.

    Non-digits are stripped. 8-digit codes are treated as UPC-E and expanded,
    9-11 digit codes are zero-padded to UPC-A (spreadsheets drop leading
    zeros), and 13/14-digit GTINs with only leading zeros beyond 12 digits are
    reduced to UPC-A. Returns None when the digit count is out of range.
    """

    digits = _NON_DIGITS.sub("", _coerce_raw(value).strip())
    if not digits:
        return None
    if len(digits) < MIN_UPC_LENGTH or len(digits) > MAX_UPC_LENGTH:
        return None

    if len(digits) == 8:
        return expand_upc_e(digits)
    if len(digits) < 12:
        return digits.zfill(12)
    if len(digits) > 12 and set(digits[: len(digits) - 12]) == {"0"}:
        return digits[-12:]
    return digits


def calculate_check_digit(body: str) -> int:
    """
    GTIN check digit for ``body`` (all digits except the check digit).

    Weights alternate 3, 1 starting from the rightmost body digit.
    """

    total = 0
    for index, char in enumerate(reversed(body)):
        weight = 3 if index % 2 == 0 else 1
        total += int(char) * weight
    return (10 - total % 10) % 10


def validate_check_digit(upc: str) -> bool:
    """
    Return True when ``upc`` carries a valid GTIN check digit for its length.
    """

    if not upc or not upc.isdigit() or len(upc) not in CHECKSUM_LENGTHS:
        return False
    return calculate_check_digit(upc[:-1]) == int(upc[-1])
