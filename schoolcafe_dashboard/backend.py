"""
Generic query collaborators.

The engine only needs three things from the database: filter by equality,
filter by a date range, and upsert by a composite key. Both backends below
expose exactly that as `select(...)` returning a DataFrame and
`upsert(...)` returning the written row.

To swap the hosted database for a local seed:
    Build an InMemoryBackend from a dict of DataFrames, a simulator run, or
    a seed workbook (see loaders.load_seed_workbook).
"""

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from threading import Lock
from typing import Any

import pandas as pd
from supabase import Client, create_client

from .config import SUPABASE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

# PostgREST / Postgres error codes with a message an administrator can act on
_ERROR_MESSAGES = {
    "PGRST301": "Database connection error. Please try again later.",
    "42501": "You do not have permission to perform this action.",
    "23505": "A record with this information already exists.",
}


class BackendError(Exception):
    """A read or write against the database failed."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


def translate_error(exc: Exception) -> BackendError:
    """Wrap a client exception, mapping known error codes to readable messages."""
    if isinstance(exc, BackendError):
        return exc
    code = getattr(exc, "code", None)
    code = str(code) if code is not None else None
    message = _ERROR_MESSAGES.get(code) or getattr(exc, "message", None) or str(exc)
    return BackendError(message or "An unexpected error occurred. Please try again.", code)


class SupabaseBackend:
    """Query collaborator over a Supabase (PostgREST) project."""

    def __init__(
        self,
        client: Client | None = None,
        url: str = SUPABASE_URL,
        key: str = SUPABASE_KEY,
    ) -> None:
        if client is None:
            if not url or not key:
                raise BackendError(
                    "Missing Supabase settings. Set SUPABASE_URL and SUPABASE_KEY."
                )
            client = create_client(url, key)
        self._client = client

    def select(
        self,
        table: str,
        columns: str = "*",
        eq: Mapping[str, Any] | None = None,
        gte: Mapping[str, Any] | None = None,
        lte: Mapping[str, Any] | None = None,
    ) -> pd.DataFrame:
        query = self._client.table(table).select(columns)
        for col, val in (eq or {}).items():
            query = query.eq(col, val)
        for col, val in (gte or {}).items():
            query = query.gte(col, val)
        for col, val in (lte or {}).items():
            query = query.lte(col, val)

        try:
            result = query.execute()
        except Exception as exc:
            logger.exception("Select on '%s' failed", table)
            raise translate_error(exc) from exc

        rows = result.data or []
        logger.debug("Fetched %d rows from %s", len(rows), table)
        return pd.DataFrame(rows)

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        on_conflict: Iterable[str],
    ) -> dict:
        try:
            result = (
                self._client.table(table)
                .upsert(dict(row), on_conflict=",".join(on_conflict))
                .execute()
            )
        except Exception as exc:
            logger.exception("Upsert on '%s' failed", table)
            raise translate_error(exc) from exc

        return result.data[0] if result.data else dict(row)


class InMemoryBackend:
    """Query collaborator over a dict of DataFrames, one per table.

    Upserts enforce uniqueness of the `on_conflict` key; the last write to
    a key wins.
    """

    def __init__(self, tables: Mapping[str, pd.DataFrame] | None = None) -> None:
        self._tables: dict[str, pd.DataFrame] = {
            name: df.copy() for name, df in (tables or {}).items()
        }
        self._lock = Lock()

    @classmethod
    def from_workbook(cls, path: str | Path) -> "InMemoryBackend":
        from .loaders import load_seed_workbook

        return cls(load_seed_workbook(path))

    def table(self, name: str) -> pd.DataFrame:
        """Copy of a whole table (empty when unknown)."""
        return self._tables.get(name, pd.DataFrame()).copy()

    def select(
        self,
        table: str,
        columns: str = "*",
        eq: Mapping[str, Any] | None = None,
        gte: Mapping[str, Any] | None = None,
        lte: Mapping[str, Any] | None = None,
    ) -> pd.DataFrame:
        df = self._tables.get(table)
        if df is None or df.empty:
            return pd.DataFrame()

        mask = pd.Series(True, index=df.index)
        for col, val in (eq or {}).items():
            if col not in df.columns:
                return pd.DataFrame(columns=df.columns)
            mask &= _equals(df[col], val)
        for col, val in (gte or {}).items():
            mask &= _comparable(df[col], val) >= _scalar(val)
        for col, val in (lte or {}).items():
            mask &= _comparable(df[col], val) <= _scalar(val)

        result = df[mask].reset_index(drop=True)
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",") if c.strip() in result.columns]
            result = result[wanted]
        return result.copy()

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        on_conflict: Iterable[str],
    ) -> dict:
        row = dict(row)
        keys = list(on_conflict)
        missing = [k for k in keys if k not in row]
        if missing:
            raise BackendError(f"Upsert row is missing conflict key(s): {missing}")

        with self._lock:
            df = self._tables.get(table)
            if df is None or df.empty:
                self._tables[table] = pd.DataFrame([row])
                return row

            mask = pd.Series(True, index=df.index)
            for key in keys:
                if key not in df.columns:
                    mask &= False
                else:
                    mask &= _equals(df[key], row[key])

            if mask.any():
                df = df.copy()
                for col, val in row.items():
                    if col not in df.columns:
                        df[col] = None
                    df.loc[mask, col] = val
                self._tables[table] = df
            else:
                self._tables[table] = pd.concat(
                    [df, pd.DataFrame([row])], ignore_index=True
                )
        return row


def _equals(series: pd.Series, val: Any) -> pd.Series:
    if isinstance(val, bool):
        return series.fillna(False).astype(bool) == val
    return series.map(lambda v: None if pd.isna(v) else str(v)) == str(val)


def _comparable(series: pd.Series, val: Any) -> pd.Series:
    if isinstance(val, (int, float)) and not isinstance(val, bool):
        return pd.to_numeric(series, errors="coerce")
    return pd.to_datetime(series, errors="coerce")


def _scalar(val: Any):
    if isinstance(val, (int, float)) and not isinstance(val, bool):
        return val
    return pd.Timestamp(val)
