"""
app/parsers/apl_file_parser.py

Spreadsheet parsing for raw APL files.

XLSX is always attempted first. CSV is only tried when the XLSX parser
fails and the jurisdiction allows the fallback; the file content is never
sniffed to pick a format.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from app.errors import FetchError

logger = logging.getLogger(__name__)

EXCEL_FALLBACK_WARNING = "Excel parsing failed, trying CSV format"


class FileFormat:
    XLSX = "xlsx"
    CSV = "csv"


@dataclass(frozen=True)
class ParsedFile:
    """
    Raw rows as loosely-typed field bags, plus the format that parsed them.
    """

    rows: list[dict[str, Any]]
    file_format: str
    headers: tuple[str, ...]
    warnings: list[str] = field(default_factory=list)


def _frame_to_rows(frame: pd.DataFrame) -> tuple[tuple[str, ...], list[dict[str, Any]]]:
    frame = frame.rename(columns=lambda column: str(column).strip())
    frame = frame.dropna(how="all")
    frame = frame.astype(object).where(pd.notna(frame), None)

    rows: list[dict[str, Any]] = []
    for record in frame.to_dict(orient="records"):
        cleaned = {
            key: (None if isinstance(value, str) and not value.strip() else value)
            for key, value in record.items()
        }
        if all(value is None for value in cleaned.values()):
            continue
        rows.append(cleaned)
    return tuple(frame.columns), rows


def parse_excel(content: bytes) -> ParsedFile:
    """
    Parse the first worksheet of an XLSX workbook.
    """

    frame = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=object, engine="openpyxl")
    headers, rows = _frame_to_rows(frame)
    return ParsedFile(rows=rows, file_format=FileFormat.XLSX, headers=headers)


def parse_csv(content: bytes) -> ParsedFile:
    """
    Parse delimited text with a header row; every cell is read as text.
    """

    frame = pd.read_csv(
        io.BytesIO(content),
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        encoding="utf-8-sig",
    )
    headers, rows = _frame_to_rows(frame)
    return ParsedFile(rows=rows, file_format=FileFormat.CSV, headers=headers)


def parse_apl_file(content: bytes, *, state: str, allow_csv_fallback: bool) -> ParsedFile:
    """
    Parse raw APL bytes, falling back to CSV only on an XLSX parse failure.
    """

    try:
        return parse_excel(content)
    except Exception as excel_exc:  # noqa: BLE001
        if not allow_csv_fallback:
            logger.error("APL parse failed state=%s format=xlsx error=%s", state, excel_exc)
            raise FetchError(f"{state}: APL file could not be parsed as XLSX.", state=state) from excel_exc
        logger.warning("APL parse falling back to CSV state=%s xlsx_error=%s", state, excel_exc)

    try:
        parsed = parse_csv(content)
    except Exception as csv_exc:  # noqa: BLE001
        logger.error("APL parse failed state=%s format=csv error=%s", state, csv_exc)
        raise FetchError(f"{state}: APL file could not be parsed as XLSX or CSV.", state=state) from csv_exc

    return ParsedFile(
        rows=parsed.rows,
        file_format=parsed.file_format,
        headers=parsed.headers,
        warnings=[EXCEL_FALLBACK_WARNING],
    )
