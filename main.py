"""
SchoolCafe Operations Dashboard — End-to-end smoke pipeline.

Builds the simulated demo district (or reads a seed workbook), runs the
aggregation engine over every timeframe and prints the dashboard outputs
with a few acceptance checks.

Usage:
    python main.py [seed_workbook.xlsx]
"""

import logging
import sys
from pathlib import Path

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent))

from schoolcafe_dashboard.backend import InMemoryBackend
from schoolcafe_dashboard.benchmarks import BenchmarkService
from schoolcafe_dashboard.config import DISTRICT_SCOPE, MEALS_SERVED, PARTICIPATION_RATE, TIMEFRAMES
from schoolcafe_dashboard.dashboard import DashboardData, LoadStatus
from schoolcafe_dashboard.details import food_waste_breakdown, revenue_breakdown, waste_inputs_from_metrics
from schoolcafe_dashboard.derivations import rows_in_range
from schoolcafe_dashboard.events import BENCHMARKS_UPDATED, bus
from schoolcafe_dashboard.simulator import DEMO_DISTRICT_ID, demo_profile, simulate_district
from schoolcafe_dashboard.state import AppStateStore

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Run the aggregation engine end to end and print smoke-test outputs."""

    print("=" * 70)
    print("  SCHOOLCAFE — Operations Dashboard")
    print("  Aggregation Engine Smoke Test")
    print("=" * 70)
    print()

    # ------------------------------------------------------------------
    # 1. Source data
    # ------------------------------------------------------------------
    print("[ 1 ] LOADING SOURCE DATA")
    print("-" * 40)

    if len(sys.argv) > 1:
        backend = InMemoryBackend.from_workbook(sys.argv[1])
        print(f"\nSeed workbook: {sys.argv[1]}")
    else:
        backend = InMemoryBackend(simulate_district())
        print("\nSimulated demo district")

    for table in ("schools", "kpis", "school_daily_metrics", "kpi_values", "school_benchmarks"):
        print(f"  {table:22s} {len(backend.table(table)):6d} rows")

    schools = backend.table("schools")
    district_id = str(schools["district_id"].iloc[0]) if not schools.empty else DEMO_DISTRICT_ID

    store = AppStateStore(path=None)
    store.set_user(demo_profile(district_id))
    dashboard = DashboardData(backend, store)

    # ------------------------------------------------------------------
    # 2. KPI cards per timeframe
    # ------------------------------------------------------------------
    print("\n")
    print("[ 2 ] KPI CARDS BY TIMEFRAME (district-wide)")
    print("-" * 40)

    for timeframe in TIMEFRAMES:
        if timeframe == "custom":
            continue
        store.set_selected_timeframe(timeframe)
        rng = dashboard.date_range
        print(
            f"\n{timeframe}: {rng.start:%Y-%m-%d} .. {rng.end:%Y-%m-%d} "
            f"({dashboard.serving_days} serving days, status {dashboard.status.value})"
        )
        if dashboard.is_non_serving_period:
            print(f"  Non-serving period: {dashboard.non_serving_reason}")
        cards = pd.DataFrame(dashboard.get_kpi_cards())
        if not cards.empty:
            print(cards[["name", "unit", "value", "trend", "benchmark", "rag"]].to_string(index=False))

    # ------------------------------------------------------------------
    # 3. Single school drill-down
    # ------------------------------------------------------------------
    print("\n")
    print("[ 3 ] SCHOOL DRILL-DOWN")
    print("-" * 40)

    store.set_selected_timeframe("month")
    school_id = str(dashboard.schools["id"].iloc[0])
    dashboard.set_school(school_id)
    school_metrics = rows_in_range(
        dashboard.metrics[dashboard.metrics["school_id"].astype(str) == school_id],
        dashboard.date_range,
    )

    print(f"\nSchool {school_id}, this month:")
    breakdown = dashboard.get_school_breakdown()
    if not breakdown.empty:
        print(breakdown[["school_name", "score", "grade"]].to_string(index=False))

    revenue = revenue_breakdown(school_metrics)
    print(f"\nRevenue: total ${revenue['total_revenue']:,.2f} vs expected ${revenue['expected_revenue']:,.2f}")
    waste = food_waste_breakdown(waste_inputs_from_metrics(school_metrics))
    print(f"Food waste: accuracy {waste['production_accuracy']:.1f}%, impact ${waste['total_impact']:,.2f}")

    # ------------------------------------------------------------------
    # 4. Benchmark save and propagation
    # ------------------------------------------------------------------
    print("\n")
    print("[ 4 ] BENCHMARK PROPAGATION")
    print("-" * 40)

    dashboard.attach()
    refreshes = []
    bus.subscribe(BENCHMARKS_UPDATED, lambda **payload: refreshes.append(payload))

    kpis = {k.name: k for k in dashboard.kpis}
    service = BenchmarkService(backend)
    ok = service.save_benchmarks(school_id, {kpis[PARTICIPATION_RATE].id: 80})
    print(f"\nSave status: {service.save_status}")

    meals_override = dashboard.benchmark_overrides.get(kpis[MEALS_SERVED].id)
    print(f"Meals Served override after propagation: {meals_override}")

    # ------------------------------------------------------------------
    # 5. Acceptance checks
    # ------------------------------------------------------------------
    print("\n")
    print("[ 5 ] ACCEPTANCE CRITERIA CHECKS")
    print("-" * 40)

    check1 = dashboard.status == LoadStatus.READY
    print(f"\n  [{'PASS' if check1 else 'FAIL'}] Dashboard loaded ({dashboard.status.value})")

    check2 = ok and meals_override is not None
    print(f"  [{'PASS' if check2 else 'FAIL'}] Participation Rate save propagated to Meals Served")

    check3 = len(refreshes) == 1
    print(f"  [{'PASS' if check3 else 'FAIL'}] benchmarks-updated published once ({len(refreshes)})")

    dashboard.set_school(DISTRICT_SCOPE)
    values = [c["value"] for c in dashboard.get_kpi_cards() if c["value"] is not None]
    check4 = not any(pd.isna(v) for v in values)
    print(f"  [{'PASS' if check4 else 'FAIL'}] No NaN KPI values ({len(values)} cards)")

    dashboard.detach()

    print("\n" + "=" * 70)
    print("  Pipeline complete.")
    print("=" * 70)


if __name__ == "__main__":
    main()
