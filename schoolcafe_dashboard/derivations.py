"""
KPI derivation functions: pure functions with no side effects.

Each known KPI has its own aggregation rule, selected through KpiKind
rather than by comparing name strings at every call site. Unrecognised
KPIs fall back to aggregating their raw KPI value rows.

Numeric policy: every ratio guards its denominator and yields 0 instead
of NaN or an exception.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import pandas as pd

from .config import (
    CUMULATIVE_UNITS,
    DEFAULT_DERIVATION_CONFIG,
    DISTRICT_SCOPE,
    KPI_NAME_ALIASES,
    KPI_REGISTRY,
    SINGLE_DAY_TIMEFRAMES,
    DerivationConfig,
)
from .dates import count_serving_days, previous_period
from .models import KPI, DateRange

logger = logging.getLogger(__name__)


class KpiKind(Enum):
    PROGRAM_ACCESS = "program_access"
    MEALS_SERVED = "meals_served"
    BREAKFAST_PARTICIPATION = "breakfast_participation"
    LUNCH_PARTICIPATION = "lunch_participation"
    SNACK_PARTICIPATION = "snack_participation"
    FOOD_WASTE = "food_waste"
    REVENUE = "revenue"
    GENERIC = "generic"

    @classmethod
    def from_name(cls, name: str) -> "KpiKind":
        """Resolve a KPI name (or one of its aliases) to its kind."""
        canonical = KPI_NAME_ALIASES.get(name, name)
        entry = KPI_REGISTRY.get(canonical)
        if entry is None:
            return cls.GENERIC
        return cls(entry["kind"])

    @property
    def meal_type(self) -> str | None:
        """Meal type a participation kind counts, None for the rest."""
        if self.value.endswith("_participation"):
            return self.value.split("_", 1)[0]
        return None

    @property
    def uses_daily_metrics(self) -> bool:
        return self not in (KpiKind.PROGRAM_ACCESS, KpiKind.GENERIC)


@dataclass
class DerivationContext:
    """Everything a derivation rule may read for one dashboard view.

    Frames are the rows fetched from the backend; `date_range` is the
    resolved current window and `school_scope` is either "district" or a
    school id.
    """

    schools: pd.DataFrame
    metrics: pd.DataFrame
    kpi_values: pd.DataFrame
    date_range: DateRange
    school_scope: str = DISTRICT_SCOPE
    timeframe: str = "month"
    config: DerivationConfig = field(default_factory=lambda: DEFAULT_DERIVATION_CONFIG)
    non_serving: bool = False

    def __post_init__(self) -> None:
        self.schools = _normalise_ids(self.schools, ("id",))
        self.metrics = _normalise_dates(_normalise_ids(self.metrics, ("school_id",)))
        self.kpi_values = _normalise_dates(
            _normalise_ids(self.kpi_values, ("kpi_id", "school_id"))
        )
        self.school_scope = str(self.school_scope)

    @property
    def is_district(self) -> bool:
        return self.school_scope == DISTRICT_SCOPE

    @property
    def is_single_day(self) -> bool:
        return self.timeframe in SINGLE_DAY_TIMEFRAMES

    @property
    def has_data(self) -> bool:
        return not (self.metrics.empty and self.kpi_values.empty)

    def scoped_metrics(self) -> pd.DataFrame:
        """Daily metric rows for the selected scope, any date."""
        if self.is_district or self.metrics.empty:
            return self.metrics
        return self.metrics[self.metrics["school_id"] == self.school_scope]

    def scoped_values(self, kpi_id: str) -> pd.DataFrame:
        """KPI value rows for one KPI and the selected scope, sorted by date."""
        df = self.kpi_values
        if df.empty:
            return df
        df = df[df["kpi_id"] == str(kpi_id)]
        if not self.is_district:
            df = df[df["school_id"] == self.school_scope]
        return df.sort_values("date", kind="stable")

    def serving_days(self, date_range: DateRange | None = None) -> int:
        rng = date_range or self.date_range
        return count_serving_days(rng.start, rng.end, self.config.holiday_calendar)


# ---------------------------------------------------------------------------
# Individual derivation rules
# ---------------------------------------------------------------------------

def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is zero or missing."""
    if denominator is None or pd.isna(denominator) or denominator == 0:
        return 0.0
    result = numerator / denominator
    return 0.0 if pd.isna(result) else float(result)


def column_total(df: pd.DataFrame, columns: list[str] | tuple[str, ...]) -> float:
    """Sum of the given columns over all rows; missing columns count as 0."""
    if df.empty:
        return 0.0
    total = 0.0
    for col in columns:
        if col in df.columns:
            total += pd.to_numeric(df[col], errors="coerce").fillna(0).sum()
    return float(total)


def rows_in_range(df: pd.DataFrame, date_range: DateRange) -> pd.DataFrame:
    if df.empty or "date" not in df.columns:
        return df
    return df[date_range.contains(df["date"])]


def program_access_rate(schools: pd.DataFrame, school_scope: str = DISTRICT_SCOPE) -> float:
    """Share of enrolled students eligible for free or reduced meals, in percent."""
    if schools.empty:
        return 0.0
    if school_scope != DISTRICT_SCOPE:
        schools = schools[schools["id"] == str(school_scope)]
        if schools.empty:
            return 0.0
    enrollment = column_total(schools, ["total_enrollment"])
    free_reduced = column_total(schools, ["free_count", "reduced_count"])
    return safe_ratio(free_reduced, enrollment) * 100


def meals_served(metrics: pd.DataFrame) -> float:
    """Total breakfasts, lunches, and snacks across the given rows."""
    return column_total(metrics, ["breakfast_count", "lunch_count", "snack_count"])


def meal_count(metrics: pd.DataFrame, meal_type: str) -> float:
    """Free + reduced + paid meals of one meal type."""
    return column_total(
        metrics,
        [f"free_meal_{meal_type}", f"reduced_meal_{meal_type}", f"paid_meal_{meal_type}"],
    )


def scope_enrollment(schools: pd.DataFrame, school_scope: str = DISTRICT_SCOPE) -> float:
    """Enrollment of the selected school, or of the whole district."""
    if schools.empty:
        return 0.0
    if school_scope != DISTRICT_SCOPE:
        schools = schools[schools["id"] == str(school_scope)]
    return column_total(schools, ["total_enrollment"])


def participation_adp(
    total_meals: float,
    enrollment: float,
    serving_days: int,
    attendance_factor: float = DEFAULT_DERIVATION_CONFIG.attendance_factor,
) -> float:
    """Average Daily Participation as a percentage.

    ADP = meals / (enrollment * attendance_factor * serving_days) * 100
    """
    return safe_ratio(total_meals, enrollment * attendance_factor * serving_days) * 100


def wasted_portions(metrics: pd.DataFrame) -> float:
    """Sum of max(0, produced - served) per row."""
    if metrics.empty:
        return 0.0
    produced = _numeric(metrics, "produced_meals")
    served = _numeric(metrics, "served_meals")
    return float((produced - served).clip(lower=0).sum())


def food_waste_cost(
    metrics: pd.DataFrame,
    cost_per_portion: float = DEFAULT_DERIVATION_CONFIG.cost_per_portion,
) -> float:
    """Financial impact of over-production, in currency units."""
    return wasted_portions(metrics) * cost_per_portion


def reimbursement_revenue(metrics: pd.DataFrame) -> float:
    """Summary revenue: reimbursements plus a la carte sales."""
    return column_total(metrics, ["reimbursement_amount", "alc_revenue"])


def generic_aggregate(values: pd.DataFrame, unit: str) -> float | None:
    """Mean for percentages, sum for counts and currency, mean otherwise."""
    if values.empty:
        return None
    series = pd.to_numeric(values["value"], errors="coerce").dropna()
    if series.empty:
        return None
    if unit in CUMULATIVE_UNITS:
        return float(series.sum())
    return float(series.mean())


# ---------------------------------------------------------------------------
# Strategies per KPI kind
# ---------------------------------------------------------------------------
Strategy = Callable[[KPI, DerivationContext, DateRange], float | None]


def _program_access_strategy(kpi: KPI, ctx: DerivationContext, rng: DateRange) -> float:
    return program_access_rate(ctx.schools, ctx.school_scope)


def _metrics_strategy(measure: Callable[[pd.DataFrame, DerivationContext, DateRange], float]) -> Strategy:
    def strategy(kpi: KPI, ctx: DerivationContext, rng: DateRange) -> float:
        scoped = ctx.scoped_metrics()
        if scoped.empty:
            return 0.0
        return measure(rows_in_range(scoped, rng), ctx, rng)
    return strategy


def _participation_measure(meal_type: str):
    def measure(rows: pd.DataFrame, ctx: DerivationContext, rng: DateRange) -> float:
        return participation_adp(
            meal_count(rows, meal_type),
            scope_enrollment(ctx.schools, ctx.school_scope),
            ctx.serving_days(rng),
            ctx.config.attendance_factor,
        )
    return measure


def _generic_strategy(kpi: KPI, ctx: DerivationContext, rng: DateRange) -> float | None:
    values = rows_in_range(ctx.scoped_values(kpi.id), rng)
    if values.empty:
        return None
    if not ctx.is_district and ctx.is_single_day:
        return float(values["value"].iloc[-1])
    return generic_aggregate(values, kpi.unit)


_STRATEGIES: dict[KpiKind, Strategy] = {
    KpiKind.PROGRAM_ACCESS: _program_access_strategy,
    KpiKind.MEALS_SERVED: _metrics_strategy(lambda rows, ctx, rng: meals_served(rows)),
    KpiKind.BREAKFAST_PARTICIPATION: _metrics_strategy(_participation_measure("breakfast")),
    KpiKind.LUNCH_PARTICIPATION: _metrics_strategy(_participation_measure("lunch")),
    KpiKind.SNACK_PARTICIPATION: _metrics_strategy(_participation_measure("snack")),
    KpiKind.FOOD_WASTE: _metrics_strategy(
        lambda rows, ctx, rng: food_waste_cost(rows, ctx.config.cost_per_portion)
    ),
    KpiKind.REVENUE: _metrics_strategy(lambda rows, ctx, rng: reimbursement_revenue(rows)),
    KpiKind.GENERIC: _generic_strategy,
}


def aggregate_kpi(
    kpi: KPI,
    ctx: DerivationContext,
    date_range: DateRange | None = None,
) -> float | None:
    """Current value of a KPI over `date_range` (defaults to the context window).

    Returns None when nothing was fetched at all, or when a generic KPI has
    no value rows in the window.
    """
    if not ctx.has_data:
        return None
    kind = KpiKind.from_name(kpi.name)
    return _STRATEGIES[kind](kpi, ctx, date_range or ctx.date_range)


def kpi_trend(kpi: KPI, ctx: DerivationContext) -> float:
    """Change of a KPI versus the immediately preceding window of equal length.

    Program Access is a point-in-time snapshot and always reports 0. For a
    single school on a single-day timeframe, generic KPIs compare their two
    most recent observations instead of period aggregates.
    """
    if ctx.non_serving or not ctx.has_data:
        return 0.0

    kind = KpiKind.from_name(kpi.name)
    if kind is KpiKind.PROGRAM_ACCESS:
        return 0.0

    prior_range = previous_period(ctx.date_range)

    if kind.uses_daily_metrics:
        if len(ctx.scoped_metrics()) < 2:
            return 0.0
        current = _STRATEGIES[kind](kpi, ctx, ctx.date_range) or 0.0
        previous = _STRATEGIES[kind](kpi, ctx, prior_range) or 0.0
        return current - previous

    values = ctx.scoped_values(kpi.id)
    if len(values) < 2:
        return 0.0
    if not ctx.is_district and ctx.is_single_day:
        return float(values["value"].iloc[-1] - values["value"].iloc[-2])

    current = generic_aggregate(rows_in_range(values, ctx.date_range), kpi.unit)
    previous = generic_aggregate(rows_in_range(values, prior_range), kpi.unit)
    if current is None or previous is None:
        return 0.0
    return current - previous


def scales_with_serving_days(kpi: KPI) -> bool:
    """True when a KPI's daily benchmark accumulates over serving days."""
    if KpiKind.from_name(kpi.name) is KpiKind.PROGRAM_ACCESS:
        return False
    return kpi.unit in CUMULATIVE_UNITS


# ---------------------------------------------------------------------------
# Frame helpers
# ---------------------------------------------------------------------------

def _numeric(df: pd.DataFrame, col: str) -> pd.Series:
    if col not in df.columns:
        return pd.Series(0.0, index=df.index)
    return pd.to_numeric(df[col], errors="coerce").fillna(0)


def _normalise_ids(df: pd.DataFrame | None, columns: tuple[str, ...]) -> pd.DataFrame:
    if df is None:
        return pd.DataFrame()
    if df.empty:
        return df
    df = df.copy()
    for col in columns:
        if col in df.columns:
            df[col] = df[col].map(lambda v: None if pd.isna(v) else str(v))
    return df


def _normalise_dates(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty or "date" not in df.columns:
        return df
    if not pd.api.types.is_datetime64_any_dtype(df["date"]):
        df = df.copy()
        df["date"] = pd.to_datetime(df["date"], errors="coerce")
    return df
