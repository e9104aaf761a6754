"""
Configuration: KPI registry, business parameters, timeframe tokens, backend settings.

KPI_REGISTRY maps each known KPI name to its derivation kind, evaluation
direction, and amber-band tolerance (percentage points). DerivationConfig
bundles the business parameters the derivation functions are driven by;
DEFAULT_DERIVATION_CONFIG carries the values the district runs with today.
"""

import os
from dataclasses import dataclass, field

import pandas as pd

# ---------------------------------------------------------------------------
# Backend settings: read from the environment, empty means "demo mode"
# ---------------------------------------------------------------------------
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY", "")

# Where the persisted slice of the application state is written
STATE_FILE = os.environ.get(
    "SCHOOLCAFE_STATE_FILE",
    os.path.join(os.path.expanduser("~"), ".schoolcafe-storage.json"),
)

APP_NAME = "SchoolCafe Operations Dashboard"
DISTRICT_SCOPE = "district"

# ---------------------------------------------------------------------------
# Timeframes
# ---------------------------------------------------------------------------
TIMEFRAMES = (
    "prior-day",
    "day",
    "week",
    "last-week",
    "month",
    "last-month",
    "year",
    "prior-year",
    "all-years",
    "custom",
)
DEFAULT_TIMEFRAME = "month"
SINGLE_DAY_TIMEFRAMES = ("day", "prior-day")

# First academic year the district has data for (July 1, 2020)
ALL_YEARS_EPOCH = pd.Timestamp("2020-07-01")
ACADEMIC_YEAR_START_MONTH = 7

# ---------------------------------------------------------------------------
# Holiday calendar (non-serving weekdays)
# ---------------------------------------------------------------------------
HOLIDAYS: tuple[str, ...] = (
    "2024-12-25", "2024-12-24", "2024-12-23",  # Winter Break
    "2024-11-28", "2024-11-29",                # Thanksgiving
    "2024-01-01",                              # New Year
    "2024-01-15",                              # MLK Day
    "2024-02-19",                              # Presidents Day
    "2024-03-11", "2024-03-12", "2024-03-13",  # Spring Break
    "2024-03-14", "2024-03-15",
    "2024-05-27",                              # Memorial Day
)

# ---------------------------------------------------------------------------
# KPI names and registry
# ---------------------------------------------------------------------------
PROGRAM_ACCESS = "Program Access"
MEALS_SERVED = "Meals Served"
BREAKFAST_PARTICIPATION = "Breakfast Participation"
LUNCH_PARTICIPATION = "Lunch Participation"
SNACK_PARTICIPATION = "Snack Participation"
FOOD_WASTE = "Food Waste"
REVENUE = "Revenue"
PARTICIPATION_RATE = "Participation Rate"

# Relationship type that makes a KPI's benchmark drive another one
DRIVES_BENCHMARK = "drives_benchmark"

# kind: derivation strategy name (see derivations.KpiKind)
# direction: "higher_is_better" or "lower_is_better"
# amber_band: percentage-point tolerance for amber classification
KPI_REGISTRY: dict[str, dict] = {
    PROGRAM_ACCESS: {
        "kind": "program_access",
        "direction": "higher_is_better",
        "amber_band": 5.0,
    },
    MEALS_SERVED: {
        "kind": "meals_served",
        "direction": "higher_is_better",
        "amber_band": 5.0,
    },
    BREAKFAST_PARTICIPATION: {
        "kind": "breakfast_participation",
        "direction": "higher_is_better",
        "amber_band": 5.0,
    },
    LUNCH_PARTICIPATION: {
        "kind": "lunch_participation",
        "direction": "higher_is_better",
        "amber_band": 5.0,
    },
    SNACK_PARTICIPATION: {
        "kind": "snack_participation",
        "direction": "higher_is_better",
        "amber_band": 5.0,
    },
    FOOD_WASTE: {
        "kind": "food_waste",
        "direction": "lower_is_better",
        "amber_band": 10.0,
    },
    REVENUE: {
        "kind": "revenue",
        "direction": "higher_is_better",
        "amber_band": 5.0,
    },
}

# Alternate labels some districts load their KPIs under
KPI_NAME_ALIASES: dict[str, str] = {
    "Eco Dis": PROGRAM_ACCESS,
    "Economically Disadvantaged": PROGRAM_ACCESS,
}

# Units whose benchmark is a daily amount that accumulates over serving days
CUMULATIVE_UNITS = ("#", "$")
PERCENT_UNIT = "%"

# ---------------------------------------------------------------------------
# Business parameters
# ---------------------------------------------------------------------------
MEAL_TYPES = ("breakfast", "lunch", "snack")
ELIGIBILITY_TIERS = ("free", "reduced", "paid")

# Reimbursement / price per meal by meal type and eligibility tier (USD)
MEAL_PRICE_TABLE: dict[str, dict[str, float]] = {
    "breakfast": {"free": 2.50, "reduced": 2.30, "paid": 0.75},
    "lunch": {"free": 3.75, "reduced": 3.35, "paid": 0.50},
    "snack": {"free": 1.00, "reduced": 0.50, "paid": 0.25},
}

# Assumed adult meal uptake: (share of meal count, price)
ADULT_MEAL_UPTAKE: dict[str, tuple[float, float]] = {
    "breakfast": (0.05, 3.50),
    "lunch": (0.08, 4.50),
    "snack": (0.02, 2.00),
}

# Assumed a la carte uptake: {buyer: (share of meal count, price)}
ALC_UPTAKE: dict[str, dict[str, tuple[float, float]]] = {
    "breakfast": {"student": (0.10, 2.00), "adult": (0.02, 2.50)},
    "lunch": {"student": (0.15, 2.50), "adult": (0.03, 3.00)},
    "snack": {"student": (0.20, 1.50), "adult": (0.01, 2.00)},
}

# Average revenue expected per meal served, used for the expected-revenue line
EXPECTED_REVENUE_PER_MEAL: dict[str, float] = {
    "breakfast": 2.00,
    "lunch": 3.00,
    "snack": 0.75,
}


@dataclass(frozen=True)
class DerivationConfig:
    """Business parameters injected into the derivation functions."""

    attendance_factor: float = 0.93
    cost_per_portion: float = 2.50
    carry_over_loss: float = 0.5
    holiday_calendar: frozenset[str] = field(default_factory=lambda: frozenset(HOLIDAYS))
    meal_price_table: dict[str, dict[str, float]] = field(
        default_factory=lambda: MEAL_PRICE_TABLE
    )
    adult_uptake: dict[str, tuple[float, float]] = field(
        default_factory=lambda: ADULT_MEAL_UPTAKE
    )
    alc_uptake: dict[str, dict[str, tuple[float, float]]] = field(
        default_factory=lambda: ALC_UPTAKE
    )
    expected_revenue_per_meal: dict[str, float] = field(
        default_factory=lambda: EXPECTED_REVENUE_PER_MEAL
    )


DEFAULT_DERIVATION_CONFIG = DerivationConfig()

# ---------------------------------------------------------------------------
# School performance grade thresholds (score -> grade)
# ---------------------------------------------------------------------------
GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (95, "A+"),
    (90, "A"),
    (85, "A-"),
    (80, "B+"),
    (75, "B"),
    (70, "B-"),
    (65, "C+"),
    (60, "C"),
    (55, "C-"),
)
