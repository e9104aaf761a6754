import pandas as pd
import pytest

from schoolcafe_dashboard.backend import InMemoryBackend
from schoolcafe_dashboard.config import DRIVES_BENCHMARK
from schoolcafe_dashboard.models import KPI, Profile
from schoolcafe_dashboard.state import AppStateStore

DISTRICT = "d1"

# Wednesday; 2024-01-15 (MLK Day) is a holiday
NOW = pd.Timestamp("2024-01-17 10:30")


def metric_row(school_id, date, breakfast=0, lunch=0, snack=0, produced=0, served=0,
               reimbursement=0.0, alc=0.0, enrollment=1000):
    """One daily metric row; each meal count splits 50/25/25 over free/reduced/paid."""
    row = {
        "id": f"{school_id}-{date}",
        "school_id": school_id,
        "district_id": DISTRICT,
        "date": date,
        "total_enrollment": enrollment,
        "breakfast_count": breakfast,
        "lunch_count": lunch,
        "snack_count": snack,
        "produced_meals": produced,
        "served_meals": served,
        "reimbursement_amount": reimbursement,
        "alc_revenue": alc,
        "meal_equivalents": lunch + breakfast * 0.67 + snack * 0.33,
        "mplh": 16.0,
        "program_access_rate": 50.0,
        "breakfast_participation_rate": breakfast / enrollment * 100,
        "lunch_participation_rate": lunch / enrollment * 100,
    }
    for meal, count in (("breakfast", breakfast), ("lunch", lunch), ("snack", snack)):
        row[f"free_meal_{meal}"] = count // 2
        row[f"reduced_meal_{meal}"] = count // 4
        row[f"paid_meal_{meal}"] = count - count // 2 - count // 4
    return row


@pytest.fixture
def schools_df():
    return pd.DataFrame({
        "id": ["s1", "s2"],
        "name": ["Adams Elementary", "Baker Middle"],
        "district_id": [DISTRICT, DISTRICT],
        "total_enrollment": [1000, 500],
        "free_count": [400, 300],
        "reduced_count": [100, 50],
    })


@pytest.fixture
def metrics_df():
    """Two rows per window: the week of Jan 15 and the week before it."""
    return pd.DataFrame([
        metric_row("s1", "2024-01-16", 100, 300, 50, 500, 480, 1000.0, 100.0),
        metric_row("s1", "2024-01-17", 120, 320, 60, 520, 500, 1100.0, 120.0),
        metric_row("s2", "2024-01-16", 50, 150, 20, 230, 220, 500.0, 40.0, enrollment=500),
        metric_row("s1", "2024-01-09", 90, 280, 40, 420, 410, 900.0, 90.0),
        metric_row("s2", "2024-01-10", 40, 140, 10, 200, 190, 450.0, 30.0, enrollment=500),
    ])


@pytest.fixture
def kpis_df():
    return pd.DataFrame([
        {"id": "k-pa", "district_id": DISTRICT, "name": "Program Access", "unit": "%",
         "benchmark": 60.0, "goal": 70.0, "is_hidden": False, "display_order": 1},
        {"id": "k-ms", "district_id": DISTRICT, "name": "Meals Served", "unit": "#",
         "benchmark": 800.0, "goal": 900.0, "is_hidden": False, "display_order": 2},
        {"id": "k-bp", "district_id": DISTRICT, "name": "Breakfast Participation", "unit": "%",
         "benchmark": 35.0, "goal": 40.0, "is_hidden": False, "display_order": 3},
        {"id": "k-fw", "district_id": DISTRICT, "name": "Food Waste", "unit": "$",
         "benchmark": 100.0, "goal": 75.0, "is_hidden": False, "display_order": 4},
        {"id": "k-rv", "district_id": DISTRICT, "name": "Revenue", "unit": "$",
         "benchmark": 3000.0, "goal": 3500.0, "is_hidden": False, "display_order": 5},
        {"id": "k-pr", "district_id": DISTRICT, "name": "Participation Rate", "unit": "%",
         "benchmark": 75.0, "goal": 80.0, "is_hidden": False, "display_order": 6},
        {"id": "k-cs", "district_id": DISTRICT, "name": "Catering Sales", "unit": "$",
         "benchmark": 50.0, "goal": 60.0, "is_hidden": False, "display_order": 7},
        {"id": "k-old", "district_id": DISTRICT, "name": "Retired Metric", "unit": "#",
         "benchmark": 1.0, "goal": 1.0, "is_hidden": True, "display_order": 8},
    ])


@pytest.fixture
def kpi_values_df():
    return pd.DataFrame([
        {"id": "v1", "kpi_id": "k-pr", "school_id": "s1", "date": "2024-01-09", "value": 70.0},
        {"id": "v2", "kpi_id": "k-pr", "school_id": "s1", "date": "2024-01-16", "value": 80.0},
        {"id": "v3", "kpi_id": "k-pr", "school_id": "s1", "date": "2024-01-17", "value": 84.0},
        {"id": "v4", "kpi_id": "k-pr", "school_id": "s2", "date": "2024-01-16", "value": 60.0},
        {"id": "v5", "kpi_id": "k-cs", "school_id": "s1", "date": "2024-01-16", "value": 100.0},
        {"id": "v6", "kpi_id": "k-cs", "school_id": "s1", "date": "2024-01-17", "value": 150.0},
    ])


@pytest.fixture
def relationships_df():
    return pd.DataFrame([{
        "source_kpi_id": "k-pr",
        "target_kpi_id": "k-ms",
        "relationship_type": DRIVES_BENCHMARK,
        "formula": "enrollment * participation_rate / 100",
    }])


@pytest.fixture
def tables(schools_df, metrics_df, kpis_df, kpi_values_df, relationships_df):
    return {
        "schools": schools_df,
        "school_daily_metrics": metrics_df,
        "kpis": kpis_df,
        "kpi_values": kpi_values_df,
        "kpi_relationships": relationships_df,
        "school_benchmarks": pd.DataFrame([
            {"school_id": "s1", "kpi_id": "k-ms", "benchmark": 500.0},
        ]),
    }


@pytest.fixture
def backend(tables):
    return InMemoryBackend(tables)


@pytest.fixture
def profile():
    return Profile(id="u1", email="director@d1.org", district_id=DISTRICT, name="Director")


@pytest.fixture
def store(profile):
    store = AppStateStore(path=None)
    store.set_user(profile)
    store.set_selected_timeframe("week")
    return store


def make_kpi(name, unit, benchmark=0.0, kpi_id=None):
    return KPI(id=kpi_id or name.lower().replace(" ", "-"), name=name, unit=unit, benchmark=benchmark)
