"""
SchoolCafe Operations Dashboard — Interactive Dashboard

Run with:  streamlit run app.py

Uses the hosted database when SUPABASE_URL and SUPABASE_KEY are set,
otherwise a simulated demo district.
"""

import sys
from pathlib import Path

import streamlit as st
import plotly.graph_objects as go
import plotly.express as px
import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parent))

from schoolcafe_dashboard import api
from schoolcafe_dashboard.backend import SupabaseBackend
from schoolcafe_dashboard.benchmarks import (
    SAVE_ERROR,
    SAVE_SUCCESS,
    BenchmarkService,
    benchmark_field_config,
    district_average,
    format_benchmark,
    overrides_from_frame,
    resolve_benchmark,
)
from schoolcafe_dashboard.config import (
    APP_NAME,
    DISTRICT_SCOPE,
    FOOD_WASTE,
    MEALS_SERVED,
    PROGRAM_ACCESS,
    REVENUE,
    SUPABASE_KEY,
    SUPABASE_URL,
    TIMEFRAMES,
)
from schoolcafe_dashboard.dashboard import DashboardData, LoadStatus
from schoolcafe_dashboard.details import (
    enrollment_breakdown,
    food_waste_breakdown,
    meal_type_breakdown,
    revenue_breakdown,
    school_insights,
    school_performance_table,
    waste_inputs_from_metrics,
)
from schoolcafe_dashboard.derivations import rows_in_range
from schoolcafe_dashboard.models import DateRange
from schoolcafe_dashboard.simulator import DEMO_USER_ID, build_demo_backend, demo_profile
from schoolcafe_dashboard.state import AppStateStore, profile_cache_entry

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title=APP_NAME,
    page_icon="🍎",
    layout="wide",
    initial_sidebar_state="expanded",
)

RAG_COLORS = {
    "green": "#2ecc71",
    "amber": "#f39c12",
    "red": "#e74c3c",
    "grey": "#95a5a6",
}

TIMEFRAME_LABELS = {
    "prior-day": "Prior Day",
    "day": "Today",
    "week": "This Week",
    "last-week": "Last Week",
    "month": "This Month",
    "last-month": "Last Month",
    "year": "This School Year",
    "prior-year": "Prior School Year",
    "all-years": "All Years",
    "custom": "Custom Range",
}


# ---------------------------------------------------------------------------
# Backend and session objects (cached)
# ---------------------------------------------------------------------------
@st.cache_resource
def get_backend():
    if SUPABASE_URL and SUPABASE_KEY:
        return SupabaseBackend()
    return build_demo_backend()


def get_session():
    if "dashboard" not in st.session_state:
        store = AppStateStore()
        profile = api.get_profile(get_backend(), DEMO_USER_ID) or demo_profile()
        store.set_user(profile)
        store.set_cached_profile(profile_cache_entry(profile))
        dashboard = DashboardData(get_backend(), store)
        dashboard.attach()
        dashboard.load()
        st.session_state["store"] = store
        st.session_state["dashboard"] = dashboard
        st.session_state["benchmarks"] = BenchmarkService(get_backend())
    return (
        st.session_state["store"],
        st.session_state["dashboard"],
        st.session_state["benchmarks"],
    )


store, dashboard, benchmark_service = get_session()
backend = get_backend()

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.title("SchoolCafe")
st.sidebar.markdown("Operations Dashboard")
st.sidebar.divider()

school_options = {DISTRICT_SCOPE: "District-wide"}
for school in dashboard.schools.to_dict("records"):
    school_options[str(school["id"])] = school["name"]

selected_school = st.sidebar.selectbox(
    "School",
    list(school_options),
    index=list(school_options).index(dashboard.selected_school)
    if dashboard.selected_school in school_options else 0,
    format_func=school_options.get,
)
if selected_school != dashboard.selected_school:
    dashboard.set_school(selected_school)

timeframe = st.sidebar.selectbox(
    "Timeframe",
    TIMEFRAMES,
    index=TIMEFRAMES.index(store.state.selected_timeframe),
    format_func=TIMEFRAME_LABELS.get,
)
if timeframe != store.state.selected_timeframe:
    store.set_selected_timeframe(timeframe)

if timeframe == "custom":
    current = store.state.custom_date_range
    default = (current.start.date(), current.end.date()) if current else ()
    picked = st.sidebar.date_input("Date range", value=default)
    if isinstance(picked, (tuple, list)) and len(picked) == 2:
        new_range = DateRange(pd.Timestamp(picked[0]), pd.Timestamp(picked[1]))
        if new_range != current:
            store.set_custom_date_range(new_range)

page = st.sidebar.radio(
    "Navigate",
    ["Overview", "KPI Details", "Schools", "Benchmarks"],
)

st.sidebar.divider()
if st.sidebar.toggle("Dark mode", value=store.state.dark_mode) != store.state.dark_mode:
    store.toggle_dark_mode()
if st.sidebar.button("Refresh data"):
    dashboard.refresh_data()
st.sidebar.caption(
    "Data: hosted database" if SUPABASE_URL and SUPABASE_KEY else "Data: simulated demo district"
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def format_value(value, unit: str) -> str:
    if value is None:
        return "N/A"
    if unit == "%":
        return f"{value:,.1f}%"
    if unit == "$":
        return f"${value:,.2f}"
    return f"{value:,.0f}"


def kpi_card(card: dict):
    color = RAG_COLORS.get(card["rag"], RAG_COLORS["grey"])
    trend = card["trend"]
    arrow = "▲" if trend > 0 else ("▼" if trend < 0 else "•")

    st.markdown(
        f"""
        <div style="background: linear-gradient(135deg, {color}22, {color}11);
                    border-left: 4px solid {color};
                    border-radius: 8px; padding: 16px; margin-bottom: 8px;">
            <div style="font-size: 13px; color: #888; font-weight: 600; text-transform: uppercase;">{card['name']}</div>
            <div style="font-size: 28px; font-weight: 700; color: #222; margin: 4px 0;">{format_value(card['value'], card['unit'])}</div>
            <div style="font-size: 13px; color: #666;">
                Benchmark: {format_value(card['benchmark'], card['unit'])} &nbsp;|&nbsp;
                <span style="color: {color}; font-weight: 600;">{arrow} {format_value(abs(trend), card['unit'])}</span>
            </div>
        </div>
        """,
        unsafe_allow_html=True,
    )


def current_metrics() -> pd.DataFrame:
    """Metric rows of the selected scope inside the current window."""
    metrics = dashboard.metrics
    if metrics.empty:
        return metrics
    if not dashboard.is_district:
        metrics = metrics[metrics["school_id"].astype(str) == dashboard.selected_school]
    return rows_in_range(metrics, dashboard.date_range)


# ---------------------------------------------------------------------------
# Status banners
# ---------------------------------------------------------------------------
if dashboard.status == LoadStatus.ERROR:
    st.error(f"Could not load dashboard data: {dashboard.error}")
    st.stop()

if dashboard.is_non_serving_period:
    reason = dashboard.non_serving_reason or "non-serving day"
    st.info(f"No meals are served on {dashboard.date_range.start:%A, %B %d} ({reason}).")


# ===========================================================================
# PAGE: Overview
# ===========================================================================
if page == "Overview":
    rng = dashboard.date_range
    st.title("Overview")
    st.caption(
        f"{school_options.get(dashboard.selected_school)} · "
        f"{rng.start:%b %d, %Y} – {rng.end:%b %d, %Y} · {dashboard.serving_days} serving days"
    )

    cards = dashboard.get_kpi_cards()
    if not cards:
        st.warning("No KPIs are configured for this district.")
    else:
        cols = st.columns(3)
        for i, card in enumerate(cards):
            with cols[i % 3]:
                kpi_card(card)

        st.divider()
        st.subheader("Value against benchmark")
        chart_df = pd.DataFrame([
            {
                "kpi": c["name"],
                "pct_of_benchmark": (c["value"] / c["benchmark"] * 100) if c["value"] is not None and c["benchmark"] else None,
                "rag": c["rag"],
            }
            for c in cards
        ]).dropna(subset=["pct_of_benchmark"])

        if not chart_df.empty:
            fig = go.Figure(go.Bar(
                x=chart_df["pct_of_benchmark"],
                y=chart_df["kpi"],
                orientation="h",
                marker_color=[RAG_COLORS.get(r, "#95a5a6") for r in chart_df["rag"]],
                text=chart_df["pct_of_benchmark"].apply(lambda x: f"{x:.0f}%"),
                textposition="outside",
            ))
            fig.update_layout(
                height=400,
                xaxis_title="% of benchmark",
                yaxis_title="",
                plot_bgcolor="rgba(0,0,0,0)",
                margin=dict(l=10, r=10, t=10, b=40),
            )
            fig.add_vline(x=100, line_dash="dash", line_color="#888")
            st.plotly_chart(fig, use_container_width=True)


# ===========================================================================
# PAGE: KPI Details
# ===========================================================================
elif page == "KPI Details":
    st.title("KPI Details")

    metrics = current_metrics()
    kpi_names = [k.name for k in dashboard.kpis]
    selected_kpi = st.selectbox("Select KPI", kpi_names) if kpi_names else None

    if selected_kpi == REVENUE:
        rev = revenue_breakdown(metrics, dashboard.config)
        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Total Revenue", f"${rev['total_revenue']:,.2f}")
        with col2:
            st.metric("Expected Revenue", f"${rev['expected_revenue']:,.2f}")
        with col3:
            st.metric("Difference", f"{rev['difference_pct']:+.1f}%", delta=f"${rev['difference']:+,.2f}")

        by_meal = rev["by_meal"].melt(
            id_vars="meal_type",
            value_vars=["reimbursable_revenue", "a_la_carte_revenue", "expected_revenue"],
            var_name="stream",
            value_name="revenue",
        )
        fig = px.bar(by_meal, x="meal_type", y="revenue", color="stream", barmode="group")
        fig.update_layout(height=400, plot_bgcolor="rgba(0,0,0,0)")
        st.plotly_chart(fig, use_container_width=True)

    elif selected_kpi == MEALS_SERVED:
        meals = meal_type_breakdown(metrics)
        st.dataframe(meals, use_container_width=True, hide_index=True)
        per_type = meals[meals["meal_type"] != "total"].melt(
            id_vars="meal_type", value_vars=["free", "reduced", "paid"],
            var_name="tier", value_name="meals",
        )
        fig = px.bar(per_type, x="meal_type", y="meals", color="tier")
        fig.update_layout(height=400, plot_bgcolor="rgba(0,0,0,0)")
        st.plotly_chart(fig, use_container_width=True)

    elif selected_kpi == PROGRAM_ACCESS:
        enrollment = enrollment_breakdown(dashboard.schools, dashboard.selected_school)
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            st.metric("Enrollment", f"{enrollment['total_enrollment']:,.0f}")
        with col2:
            st.metric("Free", f"{enrollment['free_count']:,.0f}", delta=f"{enrollment['free_pct']:.1f}%", delta_color="off")
        with col3:
            st.metric("Reduced", f"{enrollment['reduced_count']:,.0f}", delta=f"{enrollment['reduced_pct']:.1f}%", delta_color="off")
        with col4:
            st.metric("Paid", f"{enrollment['paid_count']:,.0f}", delta=f"{enrollment['paid_pct']:.1f}%", delta_color="off")
        if not enrollment["school_breakdown"].empty:
            st.dataframe(enrollment["school_breakdown"], use_container_width=True, hide_index=True)

    elif selected_kpi == FOOD_WASTE:
        waste = food_waste_breakdown(waste_inputs_from_metrics(metrics), dashboard.config)
        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Production Accuracy", f"{waste['production_accuracy']:.1f}%")
        with col2:
            st.metric("Serving Accuracy", f"{waste['serving_accuracy']:.1f}%")
        with col3:
            st.metric("Financial Impact", f"${waste['total_impact']:,.2f}")

        fig = go.Figure(go.Bar(
            x=["Planned", "Produced", "Served"],
            y=[waste["planned"], waste["produced"], waste["served"]],
            marker_color=["#3498db", "#f39c12", "#2ecc71"],
        ))
        fig.update_layout(height=350, yaxis_title="Portions", plot_bgcolor="rgba(0,0,0,0)")
        st.plotly_chart(fig, use_container_width=True)

    elif selected_kpi is not None:
        kpi = next(k for k in dashboard.kpis if k.name == selected_kpi)
        values = dashboard.kpi_values
        values = values[values["kpi_id"].astype(str) == kpi.id] if not values.empty else values
        if values.empty:
            st.warning(f"No values recorded for {selected_kpi}.")
        else:
            daily = (
                values.assign(date=pd.to_datetime(values["date"]), value=pd.to_numeric(values["value"]))
                .groupby("date", as_index=False)["value"].mean()
            )
            fig = go.Figure()
            fig.add_trace(go.Scatter(
                x=daily["date"], y=daily["value"], name="Actual", mode="lines+markers",
                line=dict(color="#3498db"),
            ))
            fig.add_hline(
                y=resolve_benchmark(kpi, dashboard.benchmark_overrides),
                line_dash="dash", line_color="#e74c3c",
            )
            fig.update_layout(
                title=f"{selected_kpi} — Daily values",
                yaxis_title=kpi.unit,
                height=400,
                plot_bgcolor="rgba(0,0,0,0)",
            )
            st.plotly_chart(fig, use_container_width=True)


# ===========================================================================
# PAGE: Schools
# ===========================================================================
elif page == "Schools":
    st.title("School Performance")

    breakdown = dashboard.get_school_breakdown()
    if breakdown.empty:
        st.warning("No school metrics for this period.")
    else:
        table = school_performance_table(current_metrics(), dashboard.config)
        table = table.merge(breakdown[["school_id", "school_name", "score", "grade"]], on="school_id", how="left")

        def color_rag(val):
            return f"background-color: {RAG_COLORS.get(val, '#ffffff')}22; color: {RAG_COLORS.get(val, '#333')}"

        display_cols = [
            "school_name", "grade", "score", "meal_equivalents", "meals_rag",
            "breakfast_participation_rate", "breakfast_rag",
            "lunch_participation_rate", "lunch_rag",
            "waste_value", "waste_rag",
        ]
        styled = table[display_cols].style.map(
            color_rag, subset=["meals_rag", "breakfast_rag", "lunch_rag", "waste_rag"]
        )
        st.dataframe(styled, use_container_width=True, hide_index=True)

        if not dashboard.is_district:
            row = breakdown.iloc[0].to_dict()
            insight = school_insights(row)
            st.subheader(f"Score card: {row['grade']} ({row['score']}/100)")
            st.info(insight["message"])


# ===========================================================================
# PAGE: Benchmarks
# ===========================================================================
elif page == "Benchmarks":
    st.title("KPI Benchmarks")

    if dashboard.is_district:
        st.info("Select a school in the sidebar to configure its benchmarks.")
        district = api.get_district_benchmarks(backend, dashboard.district_id)
        rows = [
            {
                "kpi": kpi.name,
                "district_default": kpi.benchmark,
                "school_average": district_average(district, kpi.id),
            }
            for kpi in dashboard.kpis
        ]
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)
    else:
        overrides = overrides_from_frame(api.get_school_benchmarks(backend, dashboard.selected_school))
        with st.form("benchmarks"):
            submitted_values = {}
            for kpi in dashboard.kpis:
                field = benchmark_field_config(kpi)
                current = resolve_benchmark(kpi, overrides)
                if field["format"] == "integer":
                    value = st.number_input(
                        kpi.name, min_value=int(field["min"]), max_value=int(field["max"]),
                        value=int(current), step=int(field["step"]),
                        disabled=field["read_only"], help=field["description"],
                    )
                else:
                    value = st.number_input(
                        kpi.name, min_value=float(field["min"]), max_value=float(field["max"]),
                        value=float(current), step=float(field["step"]),
                        disabled=field["read_only"], help=field["description"],
                    )
                st.caption(f"District default: {format_benchmark(kpi.benchmark, field['format'])}")
                if not field["read_only"] and value != current:
                    submitted_values[kpi.id] = value
            submitted = st.form_submit_button("Save benchmarks")

        if submitted:
            benchmark_service.save_benchmarks(dashboard.selected_school, submitted_values)
            if benchmark_service.save_status == SAVE_SUCCESS:
                st.success("Benchmarks saved.")
            elif benchmark_service.save_status == SAVE_ERROR:
                st.error(f"Could not save benchmarks: {benchmark_service.last_error}")
            benchmark_service.reset_status()
