"""
Drill-down computations behind the KPI detail panels and school tables.

The summary cards use deliberately simple models (e.g. Revenue as
reimbursements plus a la carte sales). The functions here break the same
rows out in more detail, with the full per-meal price table and assumed
adult / a la carte uptake, so the two views intentionally differ.
"""

import logging
from collections.abc import Mapping

import pandas as pd

from .config import (
    DEFAULT_DERIVATION_CONFIG,
    DISTRICT_SCOPE,
    ELIGIBILITY_TIERS,
    GRADE_THRESHOLDS,
    KPI_NAME_ALIASES,
    KPI_REGISTRY,
    MEAL_TYPES,
    DerivationConfig,
)
from .derivations import column_total, safe_ratio, wasted_portions
from .models import KPI

logger = logging.getLogger(__name__)

# (amber_from, green_from) participation rate thresholds per meal type
PARTICIPATION_BANDS = {
    "breakfast": (25.0, 35.0),
    "lunch": (65.0, 75.0),
    "snack": (15.0, 25.0),
}
WASTE_VALUE_BANDS = (100.0, 250.0)      # green up to, amber up to
MEAL_EQUIVALENT_BANDS = (800.0, 1000.0)  # amber from, green from


def classify_performance(
    actual: float | None,
    benchmark: float | None,
    direction: str,
    amber_band_pct: float = 5.0,
) -> str:
    """Return 'green', 'amber', 'red', or 'grey' against a benchmark.

    - higher_is_better: green at or above the benchmark, amber within
      amber_band_pct percent below it
    - lower_is_better: green at or below the benchmark, amber within
      amber_band_pct percent above it

    Missing values or a zero benchmark give 'grey'.
    """
    if actual is None or benchmark is None or pd.isna(actual) or pd.isna(benchmark):
        return "grey"
    if benchmark == 0:
        return "grey"

    if direction == "lower_is_better":
        if actual <= benchmark:
            return "green"
        return "amber" if actual <= benchmark * (1 + amber_band_pct / 100) else "red"

    if actual >= benchmark:
        return "green"
    return "amber" if actual >= benchmark * (1 - amber_band_pct / 100) else "red"


def kpi_status(kpi: KPI, value: float | None, expected: float | None) -> str:
    """RAG status of a KPI card using the registry's direction and amber band."""
    registry = KPI_REGISTRY.get(KPI_NAME_ALIASES.get(kpi.name, kpi.name), {})
    return classify_performance(
        value,
        expected,
        registry.get("direction", "higher_is_better"),
        registry.get("amber_band", 5.0),
    )


def band_status(value: float, amber_from: float, green_from: float) -> str:
    if value >= green_from:
        return "green"
    if value >= amber_from:
        return "amber"
    return "red"


# ---------------------------------------------------------------------------
# Revenue
# ---------------------------------------------------------------------------

def revenue_breakdown(
    metrics: pd.DataFrame,
    config: DerivationConfig = DEFAULT_DERIVATION_CONFIG,
) -> dict:
    """Detailed revenue model for the Revenue panel.

    Returns
    -------
    Dict with keys:
        reimbursable_revenue, a_la_carte_revenue, total_revenue,
        expected_revenue, difference, difference_pct, by_meal (DataFrame)
    """
    rows = []
    for meal in MEAL_TYPES:
        prices = config.meal_price_table.get(meal, {})
        served = column_total(metrics, [f"{meal}_count"])
        reimbursable = sum(
            column_total(metrics, [f"{tier}_meal_{meal}"]) * prices.get(tier, 0.0)
            for tier in ELIGIBILITY_TIERS
        )
        adult_share, adult_price = config.adult_uptake.get(meal, (0.0, 0.0))
        reimbursable += served * adult_share * adult_price

        a_la_carte = sum(
            served * share * price
            for share, price in config.alc_uptake.get(meal, {}).values()
        )
        expected = served * config.expected_revenue_per_meal.get(meal, 0.0)
        rows.append({
            "meal_type": meal,
            "meals": served,
            "reimbursable_revenue": reimbursable,
            "a_la_carte_revenue": a_la_carte,
            "expected_revenue": expected,
        })

    by_meal = pd.DataFrame(rows)
    reimbursable_total = float(by_meal["reimbursable_revenue"].sum())
    alc_total = float(by_meal["a_la_carte_revenue"].sum())
    expected_total = float(by_meal["expected_revenue"].sum())
    total = reimbursable_total + alc_total
    difference = total - expected_total

    return {
        "reimbursable_revenue": reimbursable_total,
        "a_la_carte_revenue": alc_total,
        "total_revenue": total,
        "expected_revenue": expected_total,
        "difference": difference,
        "difference_pct": safe_ratio(difference, expected_total) * 100,
        "by_meal": by_meal,
    }


# ---------------------------------------------------------------------------
# Meals and enrollment
# ---------------------------------------------------------------------------

def meal_type_breakdown(metrics: pd.DataFrame) -> pd.DataFrame:
    """Meals by type and eligibility tier, with a grand-total row.

    Columns: meal_type, free, reduced, paid, total, free_pct, reduced_pct, paid_pct
    """
    rows = []
    for meal in MEAL_TYPES:
        row = {"meal_type": meal}
        for tier in ELIGIBILITY_TIERS:
            row[tier] = column_total(metrics, [f"{tier}_meal_{meal}"])
        row["total"] = column_total(metrics, [f"{meal}_count"])
        rows.append(row)

    df = pd.DataFrame(rows)
    grand = {"meal_type": "total"}
    for col in (*ELIGIBILITY_TIERS, "total"):
        grand[col] = float(df[col].sum())
    df = pd.concat([df, pd.DataFrame([grand])], ignore_index=True)

    for tier in ELIGIBILITY_TIERS:
        df[f"{tier}_pct"] = [
            safe_ratio(count, total) * 100 for count, total in zip(df[tier], df["total"])
        ]
    return df


def enrollment_breakdown(schools: pd.DataFrame, school_scope: str = DISTRICT_SCOPE) -> dict:
    """Enrollment split by eligibility tier, plus a per-school table for the district."""
    scoped = schools
    if school_scope != DISTRICT_SCOPE and not schools.empty:
        scoped = schools[schools["id"].astype(str) == str(school_scope)]

    total = column_total(scoped, ["total_enrollment"])
    free = column_total(scoped, ["free_count"])
    reduced = column_total(scoped, ["reduced_count"])
    paid = max(0.0, total - free - reduced)

    result = {
        "total_enrollment": total,
        "free_count": free,
        "reduced_count": reduced,
        "paid_count": paid,
        "free_pct": safe_ratio(free, total) * 100,
        "reduced_pct": safe_ratio(reduced, total) * 100,
        "paid_pct": safe_ratio(paid, total) * 100,
        "school_breakdown": pd.DataFrame(),
    }

    if school_scope == DISTRICT_SCOPE and not scoped.empty:
        breakdown = scoped[["name", "total_enrollment", "free_count", "reduced_count"]].copy()
        breakdown = breakdown.fillna(0)
        breakdown["paid_count"] = (
            breakdown["total_enrollment"] - breakdown["free_count"] - breakdown["reduced_count"]
        ).clip(lower=0)
        result["school_breakdown"] = breakdown.rename(columns={"name": "school_name"}).reset_index(drop=True)

    return result


# ---------------------------------------------------------------------------
# Food waste
# ---------------------------------------------------------------------------

def food_waste_breakdown(
    waste: Mapping[str, float],
    config: DerivationConfig = DEFAULT_DERIVATION_CONFIG,
) -> dict:
    """Production accuracy, waste shares, and financial impact.

    `waste` carries planned, produced, served, waste, rts (returned to
    stock), carry_over, left_over and optionally a spoilage mapping of
    temperature / quality / expired portions.
    """
    planned = float(waste.get("planned", 0) or 0)
    produced = float(waste.get("produced", 0) or 0)
    served = float(waste.get("served", 0) or 0)
    wasted = float(waste.get("waste", 0) or 0)
    rts = float(waste.get("rts", 0) or 0)
    carry_over = float(waste.get("carry_over", 0) or 0)
    left_over = float(waste.get("left_over", 0) or 0)
    spoilage = sum(float(v or 0) for v in (waste.get("spoilage") or {}).values())

    production_accuracy = 0.0
    if produced > 0 and planned > 0:
        production_accuracy = (1 - abs(produced - planned) / planned) * 100

    cost = config.cost_per_portion
    wasted_value = wasted * cost
    spoilage_value = spoilage * cost
    carry_over_value = carry_over * cost

    return {
        "planned": planned,
        "produced": produced,
        "served": served,
        "production_accuracy": production_accuracy,
        "serving_accuracy": safe_ratio(served, produced) * 100,
        "waste_pct": safe_ratio(wasted, produced) * 100,
        "rts_pct": safe_ratio(rts, produced) * 100,
        "carry_over_pct": safe_ratio(carry_over, produced) * 100,
        "left_over_pct": safe_ratio(left_over, produced) * 100,
        "spoilage": spoilage,
        "spoilage_pct": safe_ratio(spoilage, produced) * 100,
        "wasted_value": wasted_value,
        "spoilage_value": spoilage_value,
        "rts_value": rts * cost,
        "carry_over_value": carry_over_value,
        "total_impact": wasted_value + spoilage_value + carry_over_value * config.carry_over_loss,
    }


def waste_inputs_from_metrics(metrics: pd.DataFrame) -> dict:
    """Food-waste panel inputs from daily metric rows.

    The metric table carries no production plan or spoilage log, so demand
    (meals served) stands in for the plan and only over-production counts
    as waste.
    """
    served = column_total(metrics, ["served_meals"])
    return {
        "planned": served,
        "produced": column_total(metrics, ["produced_meals"]),
        "served": served,
        "waste": wasted_portions(metrics),
    }


# ---------------------------------------------------------------------------
# Schools
# ---------------------------------------------------------------------------

def latest_metrics_by_school(metrics: pd.DataFrame, school_scope: str = DISTRICT_SCOPE) -> pd.DataFrame:
    """Most recent daily metric row per school (only the selected one for a school scope)."""
    if metrics.empty:
        return metrics
    df = metrics.copy()
    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    latest = (
        df.sort_values("date", kind="stable")
        .groupby("school_id", sort=False)
        .tail(1)
        .reset_index(drop=True)
    )
    if school_scope != DISTRICT_SCOPE:
        latest = latest[latest["school_id"].astype(str) == str(school_scope)].reset_index(drop=True)
    return latest


def school_performance_table(
    metrics: pd.DataFrame,
    config: DerivationConfig = DEFAULT_DERIVATION_CONFIG,
) -> pd.DataFrame:
    """One row per school with waste value and RAG columns for the school table."""
    if metrics.empty:
        return pd.DataFrame()

    df = latest_metrics_by_school(metrics)
    produced = pd.to_numeric(df["produced_meals"], errors="coerce").fillna(0)
    served = pd.to_numeric(df["served_meals"], errors="coerce").fillna(0)
    has_counts = (produced > 0) & (served > 0)
    df["waste_value"] = ((produced - served).clip(lower=0) * config.cost_per_portion).where(has_counts, 0.0)

    green_to, amber_to = WASTE_VALUE_BANDS
    df["waste_rag"] = df["waste_value"].map(
        lambda v: "green" if v <= green_to else ("amber" if v <= amber_to else "red")
    )
    df["meals_rag"] = df["meal_equivalents"].fillna(0).map(
        lambda v: band_status(v, *MEAL_EQUIVALENT_BANDS)
    )
    for meal in ("breakfast", "lunch"):
        col = f"{meal}_participation_rate"
        df[f"{meal}_rag"] = df[col].fillna(0).map(
            lambda v, bands=PARTICIPATION_BANDS[meal]: band_status(v, *bands)
        )
    return df


def performance_grade(row: Mapping) -> dict:
    """Score a school's latest metrics out of 100 and convert it to a letter grade."""
    score = 0
    if _value(row, "program_access_rate") >= 50:
        score += 20
    if _value(row, "breakfast_participation_rate") >= 35:
        score += 15
    if _value(row, "lunch_participation_rate") >= 75:
        score += 15
    if _value(row, "mplh") >= 15:
        score += 20
    if _value(row, "reimbursement_amount") > 0:
        score += 15
    if _value(row, "alc_revenue") > 0:
        score += 5
    if row.get("eod_tasks_completed", True):
        score += 10

    grade = "F"
    for threshold, letter in GRADE_THRESHOLDS:
        if score >= threshold:
            grade = letter
            break
    return {"score": score, "grade": grade}


def school_insights(row: Mapping) -> dict:
    """Strengths, improvement areas, and suggestions for the school score card."""
    checks = [
        ("program_access_rate", 50, "strong program access rate", "program access rate",
         "Consider implementing a community outreach program to increase program awareness"),
        ("breakfast_participation_rate", 35, "healthy breakfast participation", "breakfast participation",
         "Try introducing grab-and-go breakfast options to boost participation"),
        ("lunch_participation_rate", 75, "excellent lunch participation", "lunch participation",
         "Consider student taste tests to align menu options with preferences"),
        ("mplh", 15, "efficient meal production", "meals per labor hour",
         "Review kitchen workflow and consider batch cooking strategies"),
    ]
    strengths, improvements, suggestions = [], [], []
    for field, threshold, strength, improvement, suggestion in checks:
        if _value(row, field) >= threshold:
            strengths.append(strength)
        else:
            improvements.append(improvement)
            suggestions.append(suggestion)

    grade = performance_grade(row)["grade"]
    name = row.get("school_name") or "This school"
    if grade.startswith("A"):
        message = f"Fantastic work! {name} is showing excellent performance "
    elif grade.startswith("B"):
        message = f"Good job! {name} is performing well "
    elif grade.startswith("C"):
        message = f"{name} is showing steady progress "
    else:
        message = f"{name} has opportunities for improvement "
    if strengths:
        message += f"with {' and '.join(strengths)}. "
    if improvements:
        message += f"We can focus on improving {' and '.join(improvements)} to boost your score. "
    if suggestions:
        message += f"Quick tip: {suggestions[0]}"

    return {
        "strengths": strengths,
        "improvements": improvements,
        "suggestions": suggestions,
        "message": message.strip(),
    }


def _value(row: Mapping, field: str) -> float:
    val = row.get(field)
    if val is None or pd.isna(val):
        return 0.0
    return float(val)
