"""
Shared utilities for seed-workbook ingestion: header detection, cell
coercion, column renaming.
"""

import logging
import re
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

_EXCEL_EPOCH = pd.Timestamp("1899-12-30")
_TRUE_STRINGS = {"true", "yes", "y", "1", "t"}
_FALSE_STRINGS = {"false", "no", "n", "0", "f", ""}


def normalise_date(val: Any) -> pd.Timestamp | None:
    """Convert an Excel serial number, date string or datetime to a day Timestamp.

    Excel serial numbers use the 1899-12-30 epoch. Returns None for
    unparseable values.
    """
    if val is None:
        return None
    if isinstance(val, (int, float)) and not isinstance(val, bool):
        try:
            return _EXCEL_EPOCH + pd.Timedelta(days=int(val))
        except (ValueError, OverflowError):
            logger.warning("Could not convert serial number %s to date", val)
            return None
    try:
        ts = pd.Timestamp(val)
    except (ValueError, TypeError):
        logger.warning("Could not parse date value: %s", val)
        return None
    if pd.isna(ts):
        return None
    return ts.normalize()


def to_snake_case(name: str) -> str:
    """Convert a header label ("Total Enrollment", "KPI Id") to snake_case."""
    s = str(name).strip()
    s = s.replace("%", "pct").replace("/", "_per_").replace("(", "").replace(")", "")
    s = re.sub(r"([a-z])([A-Z])", r"\1_\2", s)
    s = re.sub(r"[^a-zA-Z0-9]+", "_", s)
    return re.sub(r"_+", "_", s.lower()).strip("_")


def find_header_row(
    sheet,
    signature: set[str],
    max_rows: int = 20,
    min_matches: int = 2,
) -> int | None:
    """Scan an openpyxl sheet for the row naming the expected columns.

    Cells are compared after snake-casing. Returns the 1-based index of the
    first row with at least `min_matches` hits, or None within `max_rows`.
    """
    for row_idx, row in enumerate(sheet.iter_rows(max_row=max_rows, values_only=True), start=1):
        matches = sum(
            1 for val in row
            if val is not None and to_snake_case(val) in signature
        )
        if matches >= min(min_matches, len(signature)):
            return row_idx
    return None


def safe_float(val: Any) -> float | None:
    """Coerce a cell to float, returning None for text, formulas and blanks."""
    if val is None:
        return None
    if isinstance(val, str):
        val = val.strip().replace(",", "").lstrip("$")
        if val.startswith("=") or not val:
            return None
        if val.endswith("%"):
            val = val[:-1]
        try:
            return float(val)
        except ValueError:
            logger.warning("Non-numeric cell value '%s'", val)
            return None
    try:
        return float(val)
    except (ValueError, TypeError):
        return None


def parse_bool(val: Any) -> bool:
    """Read TRUE/FALSE, yes/no and 1/0 cells; blanks are False."""
    if val is None:
        return False
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return val != 0
    text = str(val).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text not in _FALSE_STRINGS:
        logger.warning("Unrecognised boolean cell '%s', reading as False", val)
    return False


def normalise_id(val: Any) -> str | None:
    """Ids come back from Excel as text or floats (12.0); both become '12'."""
    if val is None:
        return None
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    text = str(val).strip()
    return text or None
