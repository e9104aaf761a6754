"""
Benchmark resolution and propagation.

A KPI's effective daily benchmark for a school is that school's override
when one exists, otherwise the district default on the KPI definition.

Propagation: saving a benchmark for a KPI follows its `drives_benchmark`
relationships. Only a "Meals Served" target is recomputed, as
round(enrollment * new_benchmark / 100); any other target is left alone.
Generalising this into a formula evaluator over `relationship.formula`
is the natural extension point.
"""

import logging
import math
from collections.abc import Mapping

import pandas as pd

from . import api
from .config import (
    FOOD_WASTE,
    MEALS_SERVED,
    PARTICIPATION_RATE,
)
from .derivations import scales_with_serving_days
from .events import BENCHMARKS_UPDATED, EventBus, bus as default_bus
from .models import KPI

logger = logging.getLogger(__name__)

SAVE_IDLE = "idle"
SAVE_SAVING = "saving"
SAVE_SUCCESS = "success"
SAVE_ERROR = "error"


class PropagationError(Exception):
    """Relationship data needed to propagate a benchmark is missing or malformed."""


def resolve_benchmark(kpi: KPI, overrides: Mapping[str, float] | None = None) -> float:
    """School override for the KPI if present, else the district default."""
    if overrides:
        override = overrides.get(kpi.id)
        if override is not None and not pd.isna(override):
            return float(override)
    return kpi.benchmark


def expected_benchmark(
    kpi: KPI,
    serving_days: int,
    school_benchmark: float | None = None,
) -> float:
    """Benchmark to compare the KPI's aggregated value against.

    Count and currency KPIs accumulate their daily benchmark over serving
    days; rates (percent units, Program Access) are compared as-is.
    """
    daily = kpi.benchmark if school_benchmark is None else float(school_benchmark)
    if scales_with_serving_days(kpi):
        return daily * serving_days
    return daily


def overrides_from_frame(benchmarks: pd.DataFrame) -> dict[str, float]:
    """{kpi_id: benchmark} from a school_benchmarks frame."""
    if benchmarks.empty:
        return {}
    return {
        str(row["kpi_id"]): float(row["benchmark"])
        for row in benchmarks.to_dict("records")
        if pd.notna(row.get("benchmark"))
    }


def district_average(district_benchmarks: pd.DataFrame, kpi_id: str) -> float | None:
    """Mean of all school overrides for a KPI, None when no school overrides it."""
    if district_benchmarks.empty:
        return None
    rows = district_benchmarks[district_benchmarks["kpi_id"].astype(str) == str(kpi_id)]
    if rows.empty:
        return None
    return float(pd.to_numeric(rows["benchmark"], errors="coerce").mean())


def propagated_meals_served_benchmark(enrollment: float, participation_benchmark: float) -> int:
    """Daily meals needed for a school to hit a participation benchmark.

    Halves round up, so 12.5 becomes 13.
    """
    return math.floor(enrollment * (participation_benchmark / 100) + 0.5)


def benchmark_field_config(kpi: KPI) -> dict:
    """Form metadata the configuration panel renders for one KPI."""
    config = {
        "kpi_id": kpi.id,
        "name": kpi.name,
        "unit": kpi.unit,
        "default_benchmark": kpi.benchmark,
        "relationships": list(kpi.relationships),
        "read_only": False,
    }

    if kpi.name == MEALS_SERVED:
        config.update(
            format="integer", min=0, max=10000, step=1, read_only=True,
            description="Daily target for total meals served across all meal periods",
        )
    elif kpi.name == PARTICIPATION_RATE:
        config.update(
            format="percentage", min=0, max=100, step=1,
            description="Target percentage of enrolled students participating in meal programs per day",
        )
    elif kpi.name == FOOD_WASTE:
        config.update(
            format="percentage", min=0, max=100, step=1,
            description="Target maximum percentage of prepared food that should go to waste",
        )
    elif kpi.name == "Cost per Meal":
        config.update(
            format="decimal", min=0, max=10, step=0.01,
            description="Target average cost per meal including food, labor, and supplies",
        )
    elif kpi.name == "Meals Per Labor Hour":
        config.update(
            format="decimal", min=0, max=50, step=0.1,
            description="Target number of meal equivalents produced per labor hour",
        )
    else:
        config.update(
            format="decimal", min=0, max=1000, step=1,
            description=kpi.description or "Daily target value for this metric",
        )
    return config


def format_benchmark(value: float, fmt: str) -> str:
    if fmt == "percentage":
        return f"{value:g}%"
    if fmt == "decimal":
        return f"{value:.2f}"
    return str(value)


class BenchmarkService:
    """Saves school benchmark overrides and propagates them.

    Writes are plain upserts on (school_id, kpi_id): concurrent saves of the
    same pair resolve to whichever write lands last.
    """

    def __init__(self, backend, event_bus: EventBus | None = None) -> None:
        self.backend = backend
        self.bus = event_bus or default_bus
        self.save_status = SAVE_IDLE
        self.last_error: Exception | None = None

    def save_school_benchmark(self, school_id: str, kpi_id: str, benchmark: float) -> dict:
        """Upsert one override and recompute the benchmarks it drives."""
        saved = api.upsert_school_benchmark(self.backend, school_id, kpi_id, benchmark)
        self.propagate(school_id, kpi_id, benchmark)
        return saved

    def propagate(self, school_id: str, kpi_id: str, benchmark: float) -> list[dict]:
        """Apply the drives_benchmark relationships leaving `kpi_id`.

        Returns the downstream rows written.
        """
        relationships = api.get_driven_relationships(self.backend, kpi_id)
        if relationships.empty:
            return []

        enrollment = api.get_latest_enrollment(self.backend, school_id)
        written = []
        for rel in relationships.to_dict("records"):
            target_id = rel.get("target_kpi_id")
            target_name = rel.get("target_name")
            if target_id is None or pd.isna(target_id) or target_name is None:
                raise PropagationError(
                    f"KPI {kpi_id} drives a benchmark of unknown KPI {target_id!r}"
                )

            if target_name != MEALS_SERVED:
                logger.info(
                    "No propagation rule for '%s' (driven by KPI %s), skipping",
                    target_name, kpi_id,
                )
                continue

            new_benchmark = propagated_meals_served_benchmark(enrollment, benchmark)
            written.append(
                api.upsert_school_benchmark(self.backend, school_id, str(target_id), new_benchmark)
            )
            logger.info(
                "Propagated benchmark %s -> %s for school %s (enrollment %d)",
                benchmark, new_benchmark, school_id, enrollment,
            )
        return written

    def save_benchmarks(self, school_id: str, benchmarks: Mapping[str, float]) -> bool:
        """Save every override from the configuration panel.

        On success the status becomes "success" and BENCHMARKS_UPDATED is
        published. On failure the status becomes "error", the exception is
        kept in `last_error`, and nothing is published.
        """
        if not school_id:
            logger.warning("No school selected, nothing to save")
            return False

        self.save_status = SAVE_SAVING
        self.last_error = None
        try:
            for kpi_id, value in benchmarks.items():
                self.save_school_benchmark(school_id, kpi_id, value)
        except Exception as exc:
            logger.exception("Error saving benchmarks for school %s", school_id)
            self.save_status = SAVE_ERROR
            self.last_error = exc
            return False

        self.save_status = SAVE_SUCCESS
        self.bus.publish(BENCHMARKS_UPDATED, school_id=school_id)
        return True

    def reset_status(self) -> None:
        self.save_status = SAVE_IDLE
        self.last_error = None
