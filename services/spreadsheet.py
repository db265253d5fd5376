"""RayScan Inspections — Spreadsheet reader.

Reads the first sheet of a license-export workbook. The export carries a
variable-length preamble, so the header row is located by scanning the
leading rows for a marker cell.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

import pandas as pd

from config import get_settings
from core.exceptions import ExternalServiceError, HeaderNotFoundError
from logger import get_logger

logger = get_logger(__name__)

Source = Union[str, Path, bytes, BinaryIO]


def find_header_row(frame: pd.DataFrame, marker: str, scan_rows: int) -> int:
    """Index of the first row (within ``scan_rows``) with a cell containing ``marker``.

    Raises:
        HeaderNotFoundError: No such row in the window.
    """
    window = min(scan_rows, len(frame))
    for index in range(window):
        for cell in frame.iloc[index].tolist():
            if not pd.isna(cell) and marker in str(cell):
                return index
    raise HeaderNotFoundError(marker, window)


def _header_name(cell: Any) -> Optional[str]:
    if pd.isna(cell):
        return None
    name = str(cell).strip()
    return name or None


def frame_to_rows(frame: pd.DataFrame, header_index: int) -> list[dict[str, Any]]:
    """Rows below the header as dicts; blank cells are left out, blank rows skipped."""
    headers = [_header_name(c) for c in frame.iloc[header_index].tolist()]
    rows: list[dict[str, Any]] = []
    for values in frame.iloc[header_index + 1:].itertuples(index=False, name=None):
        row = {
            name: value
            for name, value in zip(headers, values)
            if name is not None and not pd.isna(value)
        }
        if row:
            rows.append(row)
    return rows


def read_rows(
    source: Source,
    marker: Optional[str] = None,
    scan_rows: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Read a workbook into importer rows.

    Args:
        source: Path, raw bytes or a binary file object.
        marker: Header marker text; defaults to IMPORT_HEADER_MARKER.
        scan_rows: Header search window; defaults to IMPORT_HEADER_SCAN_ROWS.

    Raises:
        HeaderNotFoundError: The marker is not in the search window.
        ExternalServiceError: The workbook cannot be read.
    """
    settings = get_settings().importer
    marker = marker or settings.header_marker
    scan_rows = scan_rows or settings.header_scan_rows

    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        frame = pd.read_excel(source, sheet_name=0, header=None, engine="openpyxl", dtype=object)
    except Exception as e:
        logger.error("Spreadsheet read failed", error=str(e), error_type=type(e).__name__)
        raise ExternalServiceError("spreadsheet", str(e)) from e

    header_index = find_header_row(frame, marker, scan_rows)
    rows = frame_to_rows(frame, header_index)
    logger.info("Spreadsheet parsed", header_row=header_index, rows=len(rows))
    return rows
