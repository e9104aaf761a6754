import pandas as pd
import pytest

from schoolcafe_dashboard.details import (
    classify_performance,
    enrollment_breakdown,
    food_waste_breakdown,
    kpi_status,
    latest_metrics_by_school,
    meal_type_breakdown,
    performance_grade,
    revenue_breakdown,
    school_insights,
    school_performance_table,
    waste_inputs_from_metrics,
)

from .conftest import make_kpi, metric_row


def breakfast_only_row():
    return {
        "breakfast_count": 100,
        "free_meal_breakfast": 60,
        "reduced_meal_breakfast": 20,
        "paid_meal_breakfast": 20,
    }


@pytest.mark.parametrize("actual, benchmark, direction, expected", [
    (100, 100, "higher_is_better", "green"),
    (96, 100, "higher_is_better", "amber"),
    (90, 100, "higher_is_better", "red"),
    (100, 100, "lower_is_better", "green"),
    (104, 100, "lower_is_better", "amber"),
    (120, 100, "lower_is_better", "red"),
    (None, 100, "higher_is_better", "grey"),
    (50, 0, "higher_is_better", "grey"),
])
def test_classify_performance(actual, benchmark, direction, expected):
    assert classify_performance(actual, benchmark, direction, 5.0) == expected


def test_kpi_status_uses_registry_direction():
    waste = make_kpi("Food Waste", "$")
    assert kpi_status(waste, 105, 100) == "amber"   # 10% band
    assert kpi_status(make_kpi("Catering Sales", "$"), 105, 100) == "green"


def test_revenue_breakdown_breakfast_only():
    rev = revenue_breakdown(pd.DataFrame([breakfast_only_row()]))

    # 60*2.50 + 20*2.30 + 20*0.75 + adult 100*0.05*3.50
    assert rev["reimbursable_revenue"] == pytest.approx(228.5)
    # student 100*0.10*2.00 + adult 100*0.02*2.50
    assert rev["a_la_carte_revenue"] == pytest.approx(25.0)
    assert rev["expected_revenue"] == pytest.approx(200.0)
    assert rev["total_revenue"] == pytest.approx(253.5)
    assert rev["difference"] == pytest.approx(53.5)
    assert rev["difference_pct"] == pytest.approx(26.75)
    assert list(rev["by_meal"]["meal_type"]) == ["breakfast", "lunch", "snack"]


def test_revenue_breakdown_empty_is_zero():
    rev = revenue_breakdown(pd.DataFrame())
    assert rev["total_revenue"] == 0.0
    assert rev["difference_pct"] == 0.0


def test_meal_type_breakdown():
    df = meal_type_breakdown(pd.DataFrame([breakfast_only_row()])).set_index("meal_type")

    assert df.loc["breakfast", "free_pct"] == pytest.approx(60.0)
    assert df.loc["lunch", "total"] == 0
    assert df.loc["lunch", "free_pct"] == 0.0
    assert df.loc["total", "total"] == 100
    assert df.loc["total", "paid"] == 20


def test_enrollment_breakdown_district(schools_df):
    result = enrollment_breakdown(schools_df)

    assert result["total_enrollment"] == 1500
    assert result["paid_count"] == 650
    assert result["free_pct"] == pytest.approx(700 / 1500 * 100)
    assert list(result["school_breakdown"]["paid_count"]) == [500, 150]


def test_enrollment_breakdown_school(schools_df):
    result = enrollment_breakdown(schools_df, "s2")
    assert result["total_enrollment"] == 500
    assert result["paid_count"] == 150
    assert result["school_breakdown"].empty


def test_food_waste_breakdown():
    result = food_waste_breakdown({
        "planned": 500,
        "produced": 520,
        "served": 480,
        "waste": 40,
        "rts": 10,
        "carry_over": 20,
        "left_over": 0,
        "spoilage": {"temperature": 2, "quality": 3, "expired": 1},
    })

    assert result["production_accuracy"] == pytest.approx(96.0)
    assert result["serving_accuracy"] == pytest.approx(480 / 520 * 100)
    assert result["spoilage"] == 6
    assert result["waste_pct"] == pytest.approx(40 / 520 * 100)
    # waste 40*2.50 + spoilage 6*2.50 + half of carry-over 20*2.50
    assert result["total_impact"] == pytest.approx(140.0)


def test_food_waste_breakdown_nothing_produced():
    result = food_waste_breakdown({"planned": 100})
    assert result["production_accuracy"] == 0.0
    assert result["serving_accuracy"] == 0.0
    assert result["total_impact"] == 0.0


def test_waste_inputs_from_metrics(metrics_df):
    inputs = waste_inputs_from_metrics(metrics_df)
    assert inputs["produced"] == 500 + 520 + 230 + 420 + 200
    assert inputs["waste"] == 20 + 20 + 10 + 10 + 10


def test_performance_grade_full_marks():
    row = {
        "program_access_rate": 55,
        "breakfast_participation_rate": 40,
        "lunch_participation_rate": 80,
        "mplh": 16,
        "reimbursement_amount": 100,
        "alc_revenue": 10,
        "eod_tasks_completed": True,
    }
    assert performance_grade(row) == {"score": 100, "grade": "A+"}


def test_performance_grade_partial():
    row = {
        "program_access_rate": 55,      # 20
        "lunch_participation_rate": 80,  # 15
        "mplh": 16,                      # 20
        "eod_tasks_completed": False,
    }
    assert performance_grade(row) == {"score": 55, "grade": "C-"}
    assert performance_grade({"eod_tasks_completed": False})["grade"] == "F"


def test_school_insights():
    insight = school_insights({
        "school_name": "Adams Elementary",
        "program_access_rate": 60,
        "breakfast_participation_rate": 20,
        "lunch_participation_rate": 80,
        "mplh": 10,
    })
    assert insight["strengths"] == ["strong program access rate", "excellent lunch participation"]
    assert insight["improvements"] == ["breakfast participation", "meals per labor hour"]
    assert insight["message"].startswith("Adams Elementary")
    assert "grab-and-go" in insight["message"]


def test_latest_metrics_by_school(metrics_df):
    latest = latest_metrics_by_school(metrics_df)
    assert dict(zip(latest["school_id"], latest["breakfast_count"])) == {"s1": 120, "s2": 50}
    assert list(latest_metrics_by_school(metrics_df, "s2")["school_id"]) == ["s2"]


def test_school_performance_table():
    metrics = pd.DataFrame([
        metric_row("s1", "2024-01-17", breakfast=400, lunch=800, produced=1300, served=1200),
        metric_row("s2", "2024-01-17", breakfast=10, lunch=20, produced=0, served=30),
    ])
    table = school_performance_table(metrics).set_index("school_id")

    assert table.loc["s1", "waste_value"] == pytest.approx(250.0)
    assert table.loc["s1", "waste_rag"] == "amber"
    assert table.loc["s1", "meals_rag"] == "green"
    assert table.loc["s1", "breakfast_rag"] == "green"
    assert table.loc["s1", "lunch_rag"] == "green"
    assert table.loc["s2", "waste_value"] == 0.0
    assert table.loc["s2", "lunch_rag"] == "red"
