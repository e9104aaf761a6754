"""
SchoolCafe Operations Dashboard — KPI aggregation and benchmark engine

Turns rows fetched from the district database (schools, daily school
metrics, KPI definitions and values, school benchmark overrides) into the
numbers a school-nutrition dashboard shows: KPI values, trends, expected
benchmarks and drill-down breakdowns.

To swap the hosted database for local data:
    Build a backend.InMemoryBackend from simulator.simulate_district() or a
    seed workbook (loaders.load_seed_workbook). Every query in api.py runs
    unchanged against it.

To connect to Streamlit/Dash:
    Create a dashboard.DashboardData for a district, call load(), then
    get_kpi_cards() for the cards and details.* for the drill-down panels.

To add new KPIs:
    Add the KPI row to the database. Unknown names aggregate their raw KPI
    values (mean for rates, sum for counts and currency). To give a KPI its
    own derivation, add an entry to config.KPI_REGISTRY and a strategy in
    derivations._STRATEGIES.
"""
