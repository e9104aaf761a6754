from types import SimpleNamespace

import pandas as pd
import pytest

from schoolcafe_dashboard import api
from schoolcafe_dashboard.backend import BackendError, InMemoryBackend, SupabaseBackend, translate_error
from schoolcafe_dashboard.models import DateRange


class FakeQuery:
    """Records the PostgREST builder chain the backend issues."""

    def __init__(self, client, table):
        self.client = client
        self.calls = [("table", table)]

    def select(self, columns):
        self.calls.append(("select", columns))
        return self

    def eq(self, column, value):
        self.calls.append(("eq", column, value))
        return self

    def gte(self, column, value):
        self.calls.append(("gte", column, value))
        return self

    def lte(self, column, value):
        self.calls.append(("lte", column, value))
        return self

    def upsert(self, row, on_conflict=""):
        self.calls.append(("upsert", row, on_conflict))
        return self

    def execute(self):
        self.client.executed.append(self.calls)
        if self.client.error is not None:
            raise self.client.error
        return SimpleNamespace(data=self.client.data)


class FakeClient:
    def __init__(self, data=None, error=None):
        self.data = data if data is not None else []
        self.error = error
        self.executed = []

    def table(self, name):
        return FakeQuery(self, name)


class FakeAPIError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


def test_supabase_select_builds_filter_chain():
    client = FakeClient(data=[{"id": "v1", "value": 1.0}])
    backend = SupabaseBackend(client=client)

    df = backend.select(
        "kpi_values",
        eq={"kpi_id": "k1"},
        gte={"date": "2024-01-01"},
        lte={"date": "2024-01-31"},
    )

    assert df.to_dict("records") == [{"id": "v1", "value": 1.0}]
    assert client.executed == [[
        ("table", "kpi_values"),
        ("select", "*"),
        ("eq", "kpi_id", "k1"),
        ("gte", "date", "2024-01-01"),
        ("lte", "date", "2024-01-31"),
    ]]


def test_supabase_upsert_joins_conflict_key():
    client = FakeClient(data=[{"school_id": "s1", "kpi_id": "k1", "benchmark": 5}])
    backend = SupabaseBackend(client=client)

    saved = api.upsert_school_benchmark(backend, "s1", "k1", 5)

    assert saved["benchmark"] == 5
    assert client.executed[0][1] == (
        "upsert", {"school_id": "s1", "kpi_id": "k1", "benchmark": 5}, "school_id,kpi_id"
    )


def test_supabase_errors_are_translated():
    backend = SupabaseBackend(client=FakeClient(error=FakeAPIError("42501", "permission denied")))
    with pytest.raises(BackendError) as excinfo:
        backend.select("schools")
    assert excinfo.value.code == "42501"
    assert "permission" in str(excinfo.value)


def test_supabase_requires_settings():
    with pytest.raises(BackendError):
        SupabaseBackend(url="", key="")


@pytest.mark.parametrize("code, fragment", [
    ("PGRST301", "connection"),
    ("23505", "already exists"),
])
def test_translate_known_codes(code, fragment):
    assert fragment in str(translate_error(FakeAPIError(code, "raw")))


def test_translate_unknown_keeps_message():
    err = translate_error(FakeAPIError("XX000", "boom"))
    assert str(err) == "boom"
    assert err.code == "XX000"


def test_in_memory_equality_and_range(backend):
    df = backend.select(
        "school_daily_metrics",
        eq={"school_id": "s1"},
        gte={"date": "2024-01-10"},
        lte={"date": "2024-01-17"},
    )
    assert sorted(df["date"]) == ["2024-01-16", "2024-01-17"]


def test_in_memory_boolean_filter(backend):
    df = backend.select("kpis", eq={"is_hidden": False})
    assert "k-old" not in set(df["id"])


def test_in_memory_unknown_table_is_empty(backend):
    assert backend.select("orders").empty


def test_in_memory_column_subset(backend):
    df = backend.select("schools", columns="id, name")
    assert list(df.columns) == ["id", "name"]


def test_in_memory_upsert_requires_conflict_key(backend):
    with pytest.raises(BackendError):
        backend.upsert("school_benchmarks", {"school_id": "s1"}, on_conflict=("school_id", "kpi_id"))


def test_in_memory_upsert_into_new_table():
    backend = InMemoryBackend()
    backend.upsert("school_benchmarks", {"school_id": "s1", "kpi_id": "k1", "benchmark": 3}, ("school_id", "kpi_id"))
    assert len(backend.table("school_benchmarks")) == 1


def test_get_kpis_skips_hidden_and_orders(backend):
    kpis = api.get_kpis(backend, "d1")
    assert [k.id for k in kpis][:3] == ["k-pa", "k-ms", "k-bp"]
    assert all(not k.is_hidden for k in kpis)
    participation = next(k for k in kpis if k.id == "k-pr")
    assert participation.relationships[0].target_kpi_id == "k-ms"


def test_get_school_daily_metrics_fills_missing_numbers(tables):
    tables["school_daily_metrics"] = pd.DataFrame([
        {"school_id": "s1", "district_id": "d1", "date": "2024-01-16", "breakfast_count": None},
    ])
    backend = InMemoryBackend(tables)
    rng = DateRange(pd.Timestamp("2024-01-15"), pd.Timestamp("2024-01-21"))

    df = api.get_school_daily_metrics(backend, "d1", rng)

    assert df.loc[0, "breakfast_count"] == 0
    assert df.loc[0, "lunch_count"] == 0
    assert pd.api.types.is_datetime64_any_dtype(df["date"])


def test_get_latest_enrollment(backend):
    assert api.get_latest_enrollment(backend, "s2") == 500
    assert api.get_latest_enrollment(backend, "s9") == 0


def test_latest_enrollment_skips_undated_rows():
    backend = InMemoryBackend({
        "school_daily_metrics": pd.DataFrame([
            {"school_id": "s1", "date": "2024-01-17", "total_enrollment": 1000},
            {"school_id": "s1", "date": None, "total_enrollment": 5},
            {"school_id": "s1", "date": "not a date", "total_enrollment": 7},
        ]),
    })
    assert api.get_latest_enrollment(backend, "s1") == 1000


def test_latest_enrollment_without_dated_rows():
    backend = InMemoryBackend({
        "school_daily_metrics": pd.DataFrame([
            {"school_id": "s1", "date": None, "total_enrollment": 5},
        ]),
    })
    assert api.get_latest_enrollment(backend, "s1") == 0


def test_get_profile():
    backend = InMemoryBackend({
        "users": pd.DataFrame([
            {"id": "u1", "email": "director@d1.org", "district_id": "d1", "name": "Director",
             "role": "director", "school_id": None, "avatar_url": None},
        ]),
    })
    profile = api.get_profile(backend, "u1")
    assert profile.email == "director@d1.org"
    assert profile.district_id == "d1"
    assert profile.school_id is None
    assert api.get_profile(backend, "u2") is None
