from __future__ import annotations

import io
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

from worksheet.errors import EmptyFileError, SpreadsheetReadError, UnrecognizedFileError

logger = logging.getLogger("worksheet.spreadsheet")

# filename substrings (lowercase) that identify each export
ROSTER_MARKERS = ("ovenctrs",)
REPORT_MARKERS = ("registry_report", "cwreport")


class FileKind(str, Enum):
    ROSTER = "roster"
    REPORT = "report"


def classify_file(filename: str) -> FileKind:
    name = (filename or "").lower()
    if any(m in name for m in ROSTER_MARKERS):
        return FileKind.ROSTER
    if any(m in name for m in REPORT_MARKERS):
        return FileKind.REPORT
    raise UnrecognizedFileError(filename)


def _header_names(cells: List[Any]) -> List[Optional[str]]:
    names: List[Optional[str]] = []
    seen: Dict[str, int] = {}
    for value in cells:
        if value is None or str(value).strip() == "":
            names.append(None)
            continue
        name = str(value)
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        names.append(name)
    return names


def read_rows(data: bytes, filename: str = "") -> List[Dict[str, Any]]:
    """
    First worksheet of an .xlsx workbook -> list of row dicts.

    Keys follow the header row order; empty cells become "". Rows with no
    values at all are skipped. Columns without a header are ignored.
    """
    if not data:
        raise EmptyFileError(filename)
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        logger.exception(f"Error reading workbook {filename!r}")
        raise SpreadsheetReadError(filename, str(e)) from e

    try:
        ws = wb.worksheets[0]
        rows_iter = ws.iter_rows(values_only=True)
        header_cells = next(rows_iter, None)
        if header_cells is None:
            raise EmptyFileError(filename)
        headers = _header_names(list(header_cells))

        rows: List[Dict[str, Any]] = []
        for cells in rows_iter:
            if all(c is None or (isinstance(c, str) and not c.strip()) for c in cells):
                continue
            row: Dict[str, Any] = {}
            for idx, name in enumerate(headers):
                if name is None:
                    continue
                value = cells[idx] if idx < len(cells) else None
                row[name] = "" if value is None else value
            rows.append(row)
    finally:
        wb.close()

    if not rows:
        raise EmptyFileError(filename)
    logger.info(f"Read {len(rows)} row(s) from {filename or 'workbook'}")
    return rows
