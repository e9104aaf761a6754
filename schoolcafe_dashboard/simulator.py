"""
Simulated data generator for the SchoolCafe dashboard.

Generates a small demo district with realistic school-nutrition figures:
enrollment, eligibility mix, daily meal counts per meal type and tier,
production, revenue and labor. All values are synthetic.
"""

import numpy as np
import pandas as pd

from .backend import InMemoryBackend
from .config import (
    BREAKFAST_PARTICIPATION,
    DRIVES_BENCHMARK,
    ELIGIBILITY_TIERS,
    FOOD_WASTE,
    HOLIDAYS,
    LUNCH_PARTICIPATION,
    MEAL_PRICE_TABLE,
    MEAL_TYPES,
    MEALS_SERVED,
    PARTICIPATION_RATE,
    PROGRAM_ACCESS,
    REVENUE,
    SNACK_PARTICIPATION,
)
from .dates import academic_year_bounds, serving_days_between
from .models import Profile

DEMO_DISTRICT_ID = "demo-district"
DEMO_USER_ID = "user-demo"

_DEFAULT_SEED = 42

# name, enrollment, free share, reduced share
_SCHOOLS = [
    ("Lincoln Elementary", 450, 0.62, 0.08),
    ("Washington Middle", 780, 0.48, 0.10),
    ("Roosevelt High", 1250, 0.41, 0.07),
    ("Jefferson Elementary", 380, 0.71, 0.06),
    ("Madison K-8", 620, 0.55, 0.09),
]

# name, unit, district benchmark, goal, description
_KPIS = [
    (PROGRAM_ACCESS, "%", 60, 70, "Share of students eligible for free or reduced meals"),
    (MEALS_SERVED, "#", 800, 900, "Breakfasts, lunches and snacks served"),
    (BREAKFAST_PARTICIPATION, "%", 35, 40, "Average daily breakfast participation"),
    (LUNCH_PARTICIPATION, "%", 75, 80, "Average daily lunch participation"),
    (SNACK_PARTICIPATION, "%", 25, 30, "Average daily snack participation"),
    (FOOD_WASTE, "$", 100, 75, "Cost of meals produced but not served"),
    (REVENUE, "$", 3000, 3500, "Reimbursements plus a la carte sales"),
    (PARTICIPATION_RATE, "%", 80, 85, "Students participating in meal programs per day"),
    ("Meals Per Labor Hour", "count", 15, 17, "Meal equivalents produced per labor hour"),
]

# Mean share of attending students taking each meal, and its spread
_PARTICIPATION = {
    "breakfast": (0.32, 0.04),
    "lunch": (0.74, 0.05),
    "snack": (0.21, 0.04),
}

# Free and reduced students take meals more often than paid students
_TIER_WEIGHT = {"free": 1.15, "reduced": 1.0, "paid": 0.75}

# Meal-equivalent factors for MEQ / MPLH
_MEAL_EQUIVALENT = {"breakfast": 0.67, "lunch": 1.0, "snack": 0.33}

_ATTENDANCE = 0.93


def generate_schools(district_id: str = DEMO_DISTRICT_ID) -> pd.DataFrame:
    """Schools table of the demo district."""
    rows = []
    for idx, (name, enrollment, free_share, reduced_share) in enumerate(_SCHOOLS, start=1):
        rows.append({
            "id": f"school-{idx}",
            "name": name,
            "district_id": district_id,
            "total_enrollment": enrollment,
            "free_count": int(round(enrollment * free_share)),
            "reduced_count": int(round(enrollment * reduced_share)),
        })
    return pd.DataFrame(rows)


def generate_kpis(district_id: str = DEMO_DISTRICT_ID) -> tuple[pd.DataFrame, pd.DataFrame]:
    """KPI definitions and their relationships.

    Participation Rate drives the Meals Served benchmark.
    """
    kpis = []
    for order, (name, unit, benchmark, goal, description) in enumerate(_KPIS, start=1):
        kpis.append({
            "id": f"kpi-{order}",
            "district_id": district_id,
            "name": name,
            "unit": unit,
            "benchmark": float(benchmark),
            "goal": float(goal),
            "description": description,
            "is_hidden": False,
            "display_order": order,
        })
    kpis_df = pd.DataFrame(kpis)

    ids = dict(zip(kpis_df["name"], kpis_df["id"]))
    relationships = pd.DataFrame([{
        "source_kpi_id": ids[PARTICIPATION_RATE],
        "target_kpi_id": ids[MEALS_SERVED],
        "relationship_type": DRIVES_BENCHMARK,
        "formula": "enrollment * participation_rate / 100",
    }])
    return kpis_df, relationships


def generate_daily_metrics(
    schools: pd.DataFrame,
    start,
    end,
    seed: int = _DEFAULT_SEED,
) -> pd.DataFrame:
    """One metric row per school per serving day in [start, end]."""
    rng = np.random.default_rng(seed)
    days = serving_days_between(start, end, HOLIDAYS)

    rows = []
    for school in schools.to_dict("records"):
        enrollment = school["total_enrollment"]
        free = school["free_count"]
        reduced = school["reduced_count"]
        tiers = {"free": free, "reduced": reduced, "paid": enrollment - free - reduced}
        weight_total = sum(tiers[t] * _TIER_WEIGHT[t] for t in ELIGIBILITY_TIERS)

        for day in days:
            attending = enrollment * _ATTENDANCE
            row = {
                "id": f"{school['id']}-{day:%Y%m%d}",
                "school_id": school["id"],
                "district_id": school["district_id"],
                "date": day.strftime("%Y-%m-%d"),
                "total_enrollment": enrollment,
                "free_reduced_count": free + reduced,
                "free_count": free,
                "reduced_count": reduced,
            }

            reimbursement = 0.0
            meal_equivalents = 0.0
            for meal in MEAL_TYPES:
                mean, spread = _PARTICIPATION[meal]
                share = float(np.clip(rng.normal(mean, spread), 0.05, 0.98))
                count = int(round(attending * share))
                row[f"{meal}_count"] = count

                allocated = 0
                for tier in ELIGIBILITY_TIERS[:-1]:
                    tier_count = int(round(count * tiers[tier] * _TIER_WEIGHT[tier] / weight_total))
                    row[f"{tier}_meal_{meal}"] = tier_count
                    allocated += tier_count
                row[f"paid_meal_{meal}"] = max(count - allocated, 0)

                reimbursement += sum(
                    row[f"{tier}_meal_{meal}"] * MEAL_PRICE_TABLE[meal][tier]
                    for tier in ELIGIBILITY_TIERS
                )
                meal_equivalents += count * _MEAL_EQUIVALENT[meal]

            served = row["breakfast_count"] + row["lunch_count"] + row["snack_count"]
            labor_hours = max(enrollment / 12 * rng.uniform(0.85, 1.15), 1.0)

            row.update({
                "reimbursement_amount": round(reimbursement, 2),
                "alc_revenue": round(row["lunch_count"] * rng.uniform(0.10, 0.20) * 2.50, 2),
                "served_meals": served,
                "produced_meals": int(round(served * rng.uniform(1.0, 1.08))),
                "meal_equivalents": round(meal_equivalents, 1),
                "mplh": round(meal_equivalents / labor_hours, 2),
                "program_access_rate": round((free + reduced) / enrollment * 100, 2),
                "breakfast_participation_rate": round(row["breakfast_count"] / enrollment * 100, 2),
                "lunch_participation_rate": round(row["lunch_count"] / enrollment * 100, 2),
            })
            rows.append(row)

    return pd.DataFrame(rows)


def generate_kpi_values(metrics: pd.DataFrame, kpis: pd.DataFrame) -> pd.DataFrame:
    """Daily value rows of the KPIs that are not derived from the metric table."""
    ids = dict(zip(kpis["name"], kpis["id"]))
    if metrics.empty:
        return pd.DataFrame(columns=["id", "kpi_id", "school_id", "date", "value"])

    rows = []
    for record in metrics.to_dict("records"):
        participation = (
            (record["breakfast_count"] + record["lunch_count"])
            / (record["total_enrollment"] * _ATTENDANCE * 2) * 100
        )
        for name, value in (
            (PARTICIPATION_RATE, round(participation, 2)),
            ("Meals Per Labor Hour", record["mplh"]),
        ):
            rows.append({
                "id": f"{ids[name]}-{record['id']}",
                "kpi_id": ids[name],
                "school_id": record["school_id"],
                "date": record["date"],
                "value": value,
            })
    return pd.DataFrame(rows)


def generate_school_benchmarks(schools: pd.DataFrame, kpis: pd.DataFrame) -> pd.DataFrame:
    """A few school overrides so the configuration panel has something to show."""
    ids = dict(zip(kpis["name"], kpis["id"]))
    first, second = schools["id"].iloc[0], schools["id"].iloc[1]
    return pd.DataFrame([
        {"school_id": first, "kpi_id": ids[BREAKFAST_PARTICIPATION], "benchmark": 40.0},
        {"school_id": first, "kpi_id": ids[FOOD_WASTE], "benchmark": 60.0},
        {"school_id": second, "kpi_id": ids[REVENUE], "benchmark": 4500.0},
    ])


def simulate_district(
    start=None,
    end=None,
    district_id: str = DEMO_DISTRICT_ID,
    seed: int = _DEFAULT_SEED,
    now=None,
) -> dict[str, pd.DataFrame]:
    """Every table of a demo district, keyed by table name.

    Defaults cover the previous and current academic years up to today,
    so every timeframe token has data and a preceding window.
    """
    now = pd.Timestamp.now() if now is None else pd.Timestamp(now)
    if start is None:
        start, _ = academic_year_bounds(-1, now)
    if end is None:
        end = now.normalize()

    schools = generate_schools(district_id)
    kpis, relationships = generate_kpis(district_id)
    metrics = generate_daily_metrics(schools, start, end, seed)

    return {
        "schools": schools,
        "kpis": kpis,
        "kpi_relationships": relationships,
        "school_daily_metrics": metrics,
        "kpi_values": generate_kpi_values(metrics, kpis),
        "school_benchmarks": generate_school_benchmarks(schools, kpis),
        "users": pd.DataFrame([_demo_user(district_id)]),
    }


def build_demo_backend(now=None, seed: int = _DEFAULT_SEED) -> InMemoryBackend:
    return InMemoryBackend(simulate_district(seed=seed, now=now))


def demo_profile(district_id: str = DEMO_DISTRICT_ID) -> Profile:
    return Profile(**_demo_user(district_id))


def _demo_user(district_id: str) -> dict:
    return {
        "id": DEMO_USER_ID,
        "email": "director@demo-district.org",
        "district_id": district_id,
        "name": "Demo Director",
        "role": "director",
        "school_id": None,
        "avatar_url": None,
    }
