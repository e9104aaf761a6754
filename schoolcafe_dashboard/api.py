"""
Domain queries over a backend (SupabaseBackend or InMemoryBackend).

Each function issues equality / date-range selects or composite-key
upserts against the named tables and returns DataFrames or KPI objects.
Backend failures propagate as backend.BackendError.
"""

import logging

import pandas as pd

from .config import DRIVES_BENCHMARK
from .models import (
    KPI,
    KPI_VALUE_COLUMNS,
    SCHOOL_BENCHMARK_COLUMNS,
    SCHOOL_COLUMNS,
    SCHOOL_METRIC_COLUMNS,
    DateRange,
    Profile,
)

logger = logging.getLogger(__name__)

SCHOOLS = "schools"
KPIS = "kpis"
KPI_VALUES = "kpi_values"
KPI_RELATIONSHIPS = "kpi_relationships"
SCHOOL_DAILY_METRICS = "school_daily_metrics"
SCHOOL_BENCHMARKS = "school_benchmarks"
USERS = "users"

BENCHMARK_CONFLICT_KEY = ("school_id", "kpi_id")


def get_schools(backend, district_id: str) -> pd.DataFrame:
    df = backend.select(SCHOOLS, eq={"district_id": district_id})
    df = _with_columns(df, SCHOOL_COLUMNS)
    if "name" in df.columns and not df.empty:
        df = df.sort_values("name", kind="stable").reset_index(drop=True)
    logger.info("Loaded %d schools for district %s", len(df), district_id)
    return df


def get_kpis(backend, district_id: str) -> list[KPI]:
    """Visible KPI definitions of a district with their outgoing relationships."""
    df = backend.select(KPIS, eq={"district_id": district_id, "is_hidden": False})
    if df.empty:
        logger.warning("No KPI definitions for district %s", district_id)
        return []

    kpis = []
    for record in df.to_dict("records"):
        rels = backend.select(KPI_RELATIONSHIPS, eq={"source_kpi_id": record["id"]})
        record["relationships"] = rels.to_dict("records") if not rels.empty else []
        kpis.append(KPI.from_record(record))

    kpis.sort(key=lambda k: (k.display_order is None, k.display_order or 0, k.name))
    logger.info("Loaded %d KPIs for district %s", len(kpis), district_id)
    return kpis


def get_kpi_values(
    backend,
    kpi_id: str,
    date_range: DateRange,
    school_id: str | None = None,
) -> pd.DataFrame:
    start, end = date_range.as_query_bounds()
    eq = {"kpi_id": kpi_id}
    if school_id:
        eq["school_id"] = school_id
    df = backend.select(KPI_VALUES, eq=eq, gte={"date": start}, lte={"date": end})
    return _with_columns(df, KPI_VALUE_COLUMNS)


def get_school_daily_metrics(backend, district_id: str, date_range: DateRange) -> pd.DataFrame:
    """Daily metric rows of every school in the district within the range.

    Missing numeric fields are filled with 0.
    """
    start, end = date_range.as_query_bounds()
    logger.info("Fetching metrics for district %s from %s to %s", district_id, start, end)
    df = backend.select(
        SCHOOL_DAILY_METRICS,
        eq={"district_id": district_id},
        gte={"date": start},
        lte={"date": end},
    )
    df = _with_columns(df, SCHOOL_METRIC_COLUMNS)
    if df.empty:
        return df

    numeric_cols = [c for c in SCHOOL_METRIC_COLUMNS if c not in ("id", "school_id", "district_id", "date")]
    for col in numeric_cols:
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0)
    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    return df


def get_school_benchmarks(backend, school_id: str) -> pd.DataFrame:
    df = backend.select(SCHOOL_BENCHMARKS, eq={"school_id": school_id})
    return _with_columns(df, SCHOOL_BENCHMARK_COLUMNS)


def get_district_benchmarks(backend, district_id: str) -> pd.DataFrame:
    """Benchmark overrides of every school in the district, with school names."""
    schools = get_schools(backend, district_id)
    frames = []
    for school in schools.to_dict("records"):
        df = get_school_benchmarks(backend, school["id"])
        if not df.empty:
            frames.append(df.assign(school_name=school.get("name")))
    if not frames:
        return pd.DataFrame(columns=SCHOOL_BENCHMARK_COLUMNS + ["school_name"])
    return pd.concat(frames, ignore_index=True)


def upsert_school_benchmark(backend, school_id: str, kpi_id: str, benchmark: float) -> dict:
    """Write a school override; an existing (school_id, kpi_id) row is replaced."""
    return backend.upsert(
        SCHOOL_BENCHMARKS,
        {"school_id": school_id, "kpi_id": kpi_id, "benchmark": benchmark},
        on_conflict=BENCHMARK_CONFLICT_KEY,
    )


def get_driven_relationships(backend, kpi_id: str) -> pd.DataFrame:
    """`drives_benchmark` edges leaving a KPI, with the target KPI's name.

    target_name is None when the target KPI row does not exist.
    """
    rels = backend.select(
        KPI_RELATIONSHIPS,
        eq={"source_kpi_id": kpi_id, "relationship_type": DRIVES_BENCHMARK},
    )
    if rels.empty:
        return pd.DataFrame(columns=["target_kpi_id", "formula", "target_name"])

    names = []
    for target_id in rels["target_kpi_id"]:
        target = backend.select(KPIS, eq={"id": target_id}) if pd.notna(target_id) else pd.DataFrame()
        names.append(target["name"].iloc[0] if not target.empty else None)

    result = rels.reindex(columns=["target_kpi_id", "formula"]).copy()
    result["target_name"] = names
    return result


def get_latest_enrollment(backend, school_id: str) -> int:
    """total_enrollment from the school's most recent dated metric row, 0 if none."""
    df = backend.select(SCHOOL_DAILY_METRICS, eq={"school_id": school_id})
    if df.empty or "total_enrollment" not in df.columns:
        return 0
    df = df.assign(date=pd.to_datetime(df["date"], errors="coerce")).dropna(subset=["date"])
    if df.empty:
        return 0
    latest = df.sort_values("date", kind="stable").iloc[-1]
    enrollment = pd.to_numeric(latest["total_enrollment"], errors="coerce")
    return 0 if pd.isna(enrollment) else int(enrollment)


def get_profile(backend, user_id: str) -> Profile | None:
    """The users row for `user_id` as a Profile, None when there is no such user."""
    df = backend.select(USERS, eq={"id": user_id})
    if df.empty:
        logger.warning("No user profile for %s", user_id)
        return None
    record = df.iloc[0]
    fields = {}
    for name in Profile.__dataclass_fields__:
        value = record.get(name)
        if value is not None and not pd.isna(value):
            fields[name] = str(value)
    return Profile(**fields)


def _with_columns(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """Ensure the schema columns exist (filled with None) without dropping extras."""
    if df.empty:
        return pd.DataFrame(columns=columns)
    missing = [c for c in columns if c not in df.columns]
    if missing:
        df = df.copy()
        for col in missing:
            df[col] = None
    return df
