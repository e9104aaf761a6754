"""
Value objects and table schemas.

KPI definitions travel as frozen dataclasses; fact rows (KPI values, daily
school metrics, schools, benchmarks) travel as DataFrames with the column
sets listed below.
"""

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

SCHOOL_COLUMNS = [
    "id", "name", "district_id",
    "total_enrollment", "free_count", "reduced_count",
]

KPI_VALUE_COLUMNS = ["id", "kpi_id", "school_id", "date", "value"]

SCHOOL_METRIC_COLUMNS = [
    "id", "school_id", "district_id", "date",
    "total_enrollment", "free_reduced_count", "free_count", "reduced_count",
    "breakfast_count", "lunch_count", "snack_count",
    "free_meal_breakfast", "reduced_meal_breakfast", "paid_meal_breakfast",
    "free_meal_lunch", "reduced_meal_lunch", "paid_meal_lunch",
    "free_meal_snack", "reduced_meal_snack", "paid_meal_snack",
    "reimbursement_amount", "alc_revenue",
    "produced_meals", "served_meals",
    "meal_equivalents", "mplh",
    "program_access_rate", "breakfast_participation_rate", "lunch_participation_rate",
]

SCHOOL_BENCHMARK_COLUMNS = ["school_id", "kpi_id", "benchmark"]

KPI_RELATIONSHIP_COLUMNS = [
    "source_kpi_id", "target_kpi_id", "relationship_type", "formula",
]


@dataclass(frozen=True)
class KPIRelationship:
    target_kpi_id: str
    relationship_type: str
    formula: str | None = None


@dataclass(frozen=True)
class KPI:
    """A named metric definition with its district-level targets."""

    id: str
    name: str
    unit: str
    benchmark: float = 0.0
    goal: float = 0.0
    description: str = ""
    is_hidden: bool = False
    display_order: int | None = None
    relationships: tuple[KPIRelationship, ...] = field(default_factory=tuple)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "KPI":
        """Build a KPI from a backend row, tolerating missing optional fields."""
        relationships = tuple(
            KPIRelationship(
                target_kpi_id=str(rel["target_kpi_id"]),
                relationship_type=rel.get("relationship_type", ""),
                formula=rel.get("formula"),
            )
            for rel in (record.get("relationships") or [])
        )
        display_order = record.get("display_order")
        return cls(
            id=str(record["id"]),
            name=record.get("name", ""),
            unit=record.get("unit") or "",
            benchmark=_as_float(record.get("benchmark")),
            goal=_as_float(record.get("goal")),
            description=record.get("description") or "",
            is_hidden=bool(record.get("is_hidden") or False),
            display_order=int(display_order) if pd.notna(display_order) else None,
            relationships=relationships,
        )


@dataclass(frozen=True)
class DateRange:
    """Resolved reporting window; both bounds inclusive."""

    start: pd.Timestamp
    end: pd.Timestamp

    def contains(self, dates: pd.Series) -> pd.Series:
        """Boolean mask of the dates falling inside the window."""
        return (dates >= self.start) & (dates <= self.end)

    def as_query_bounds(self) -> tuple[str, str]:
        """Return (start, end) as yyyy-MM-dd strings for backend range filters."""
        return self.start.strftime("%Y-%m-%d"), self.end.strftime("%Y-%m-%d")


@dataclass(frozen=True)
class Profile:
    """User profile as handed over by the identity service."""

    id: str
    email: str
    district_id: str
    name: str = ""
    role: str = "director"
    school_id: str | None = None
    avatar_url: str | None = None


def _as_float(val: Any) -> float:
    if val is None:
        return 0.0
    try:
        result = float(val)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if pd.isna(result) else result
