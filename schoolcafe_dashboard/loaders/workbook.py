"""
Loader for the seed workbook behind the in-memory backend.

One sheet per table, named after the table (schools, kpis, kpi_values,
kpi_relationships, school_daily_metrics, school_benchmarks). Each sheet
may carry title rows above the header; the header row is found by
matching the table's column names.
"""

import logging
from pathlib import Path

import openpyxl
import pandas as pd

from ..models import (
    KPI_RELATIONSHIP_COLUMNS,
    KPI_VALUE_COLUMNS,
    SCHOOL_BENCHMARK_COLUMNS,
    SCHOOL_COLUMNS,
    SCHOOL_METRIC_COLUMNS,
)
from .utils import find_header_row, normalise_date, normalise_id, parse_bool, safe_float, to_snake_case

logger = logging.getLogger(__name__)

KPI_COLUMNS = [
    "id", "district_id", "name", "unit", "benchmark", "goal",
    "description", "is_hidden", "display_order",
]

# table -> expected columns
SEED_TABLES: dict[str, list[str]] = {
    "schools": SCHOOL_COLUMNS,
    "kpis": KPI_COLUMNS,
    "kpi_values": KPI_VALUE_COLUMNS,
    "kpi_relationships": KPI_RELATIONSHIP_COLUMNS,
    "school_daily_metrics": SCHOOL_METRIC_COLUMNS,
    "school_benchmarks": SCHOOL_BENCHMARK_COLUMNS,
}

_ID_COLUMNS = {"id", "district_id", "school_id", "kpi_id", "source_kpi_id", "target_kpi_id"}
_TEXT_COLUMNS = {"name", "unit", "description", "relationship_type", "formula"}
_BOOL_COLUMNS = {"is_hidden"}
_DATE_COLUMNS = {"date"}


def load_seed_workbook(path: str | Path) -> dict[str, pd.DataFrame]:
    """Load every known table sheet of a seed workbook.

    Assumptions
    -----------
    - Sheet names match table names (case-insensitive).
    - Header labels snake-case to the table's column names.
    - Date cells are Excel dates, serial numbers or yyyy-MM-dd text and are
      stored as yyyy-MM-dd strings, as the database returns them.
    - Unparseable numeric cells become None (with a warning).

    Returns
    -------
    Dict of table name -> DataFrame. Missing sheets are absent from the dict.
    """
    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except Exception:
        logger.exception("Failed to open seed workbook: %s", path)
        raise

    sheets = {name.strip().lower(): name for name in wb.sheetnames}
    tables = {}
    try:
        for table, columns in SEED_TABLES.items():
            sheet_name = sheets.get(table)
            if sheet_name is None:
                logger.warning("Seed workbook %s has no '%s' sheet", path, table)
                continue
            tables[table] = _read_table(wb[sheet_name], table, columns)
    finally:
        wb.close()

    logger.info("Loaded %d tables from %s", len(tables), path)
    return tables


def _read_table(ws, table: str, columns: list[str]) -> pd.DataFrame:
    header_row = find_header_row(ws, set(columns))
    if header_row is None:
        logger.warning("No header row found on sheet '%s'", ws.title)
        return pd.DataFrame(columns=columns)

    rows = ws.iter_rows(min_row=header_row, values_only=True)
    header = [to_snake_case(v) if v is not None else None for v in next(rows)]

    records = []
    for raw in rows:
        if raw is None or all(v is None for v in raw):
            continue
        record = {}
        for col, val in zip(header, raw):
            if col is None:
                continue
            record[col] = _coerce(col, val)
        records.append(record)

    df = pd.DataFrame(records, columns=[c for c in header if c is not None])
    if df.empty:
        logger.warning("Sheet '%s' has a header but no rows", ws.title)
    logger.info("Loaded %d rows into %s", len(df), table)
    return df


def _coerce(column: str, val):
    if column in _ID_COLUMNS:
        return normalise_id(val)
    if column in _DATE_COLUMNS:
        ts = normalise_date(val)
        return ts.strftime("%Y-%m-%d") if ts is not None else None
    if column in _BOOL_COLUMNS:
        return parse_bool(val)
    if column in _TEXT_COLUMNS:
        return str(val).strip() if val is not None else None
    return safe_float(val)


def write_seed_workbook(tables: dict[str, pd.DataFrame], path: str | Path) -> Path:
    """Write tables to a workbook load_seed_workbook can read back."""
    path = Path(path)
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for table, df in tables.items():
        ws = wb.create_sheet(title=table)
        ws.append(list(df.columns))
        for record in df.itertuples(index=False):
            ws.append([_cell(v) for v in record])
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    logger.info("Wrote %d tables to %s", len(tables), path)
    return path


def _cell(val):
    if val is None:
        return None
    if isinstance(val, pd.Timestamp):
        return val.to_pydatetime()
    if isinstance(val, (list, dict, tuple)):
        return str(val)
    if pd.isna(val):
        return None
    if hasattr(val, "item"):
        return val.item()
    return val
