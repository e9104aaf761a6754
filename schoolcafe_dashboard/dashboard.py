"""
Aggregation orchestrator: the dashboard's data-fetching view-model.

For a selected scope ("district" or a school id) it resolves the reporting
window, then fetches in order: schools, KPI definitions, daily school
metrics, and, unless the window is a non-serving day, the value rows of
each KPI. Metrics and values are fetched from the start of the preceding
window of equal length so trends can be computed from the same load.

These are the entry points a Streamlit front end calls to populate KPI
cards, drill-down panels and school tables.
"""

import logging
from collections.abc import Callable
from enum import Enum

import pandas as pd

from . import api
from .benchmarks import expected_benchmark, overrides_from_frame, resolve_benchmark
from .config import DEFAULT_DERIVATION_CONFIG, DISTRICT_SCOPE, DerivationConfig
from .dates import (
    count_serving_days,
    is_non_serving_period,
    non_serving_reason,
    previous_period,
    resolve_date_range,
)
from .derivations import DerivationContext, aggregate_kpi, kpi_trend
from .details import kpi_status, latest_metrics_by_school, performance_grade
from .events import BENCHMARKS_UPDATED, EventBus, bus as default_bus
from .models import KPI, KPI_VALUE_COLUMNS, SCHOOL_COLUMNS, DateRange
from .state import AppState, AppStateStore

logger = logging.getLogger(__name__)


class LoadStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class DashboardData:
    """Fetches one scope's rows and answers KPI value / trend / benchmark queries.

    Parameters
    ----------
    backend : SupabaseBackend or InMemoryBackend.
    store : Application state; supplies the timeframe, custom range and user.
    district_id : District to load. Defaults to the signed-in user's district.
    selected_school : "district" or a school id.
    config : Business parameters for the derivations.
    event_bus : Bus carrying BENCHMARKS_UPDATED (process-wide bus by default).
    clock : Zero-argument callable returning "now"; pd.Timestamp.now by default.

    Assumptions
    -----------
    - Loads are synchronous. Each load takes a new generation number and a
      load that is superseded while it runs discards its results.
    - Any failure during a load clears all data and sets status ERROR.
    """

    def __init__(
        self,
        backend,
        store: AppStateStore | None = None,
        district_id: str | None = None,
        selected_school: str = DISTRICT_SCOPE,
        config: DerivationConfig = DEFAULT_DERIVATION_CONFIG,
        event_bus: EventBus | None = None,
        clock: Callable[[], pd.Timestamp] | None = None,
    ) -> None:
        self.backend = backend
        self.store = store if store is not None else AppStateStore(path=None)
        self._district_id = district_id
        self.selected_school = str(selected_school)
        self.config = config
        self.bus = event_bus or default_bus
        self._clock = clock or pd.Timestamp.now

        self.status = LoadStatus.IDLE
        self.error: Exception | None = None
        self._generation = 0
        self._attached = False
        self._clear()
        self.store.subscribe(self._on_state_change)

    # ------------------------------------------------------------------
    # Resolved window
    # ------------------------------------------------------------------
    @property
    def district_id(self) -> str | None:
        if self._district_id:
            return self._district_id
        user = self.store.state.user
        return user.district_id if user is not None else None

    @property
    def timeframe(self) -> str:
        return self.store.state.selected_timeframe

    @property
    def is_district(self) -> bool:
        return self.selected_school == DISTRICT_SCOPE

    @property
    def date_range(self) -> DateRange:
        state = self.store.state
        return resolve_date_range(
            state.selected_timeframe,
            state.custom_date_range,
            now=self._clock(),
            holidays=self.config.holiday_calendar,
        )

    @property
    def serving_days(self) -> int:
        rng = self.date_range
        return count_serving_days(rng.start, rng.end, self.config.holiday_calendar)

    @property
    def is_non_serving_period(self) -> bool:
        return is_non_serving_period(self.timeframe, self.date_range, self.config.holiday_calendar)

    @property
    def non_serving_reason(self) -> str | None:
        if not self.is_non_serving_period:
            return None
        return non_serving_reason(self.date_range.start, self.config.holiday_calendar)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load(self) -> LoadStatus:
        """Fetch every row the current scope and window need."""
        self._generation += 1
        generation = self._generation
        self.status = LoadStatus.LOADING
        self.error = None

        district_id = self.district_id
        if not district_id:
            logger.warning("No district selected, nothing to load")
            self._clear()
            self.status = LoadStatus.READY
            return self.status

        date_range = self.date_range
        non_serving = self.is_non_serving_period
        fetch_range = DateRange(previous_period(date_range).start, date_range.end)
        school_id = None if self.is_district else self.selected_school

        try:
            schools = api.get_schools(self.backend, district_id)
            kpis = api.get_kpis(self.backend, district_id)
            metrics = api.get_school_daily_metrics(self.backend, district_id, fetch_range)

            frames = []
            if non_serving:
                logger.info("Non-serving period %s, skipping KPI value fetch", date_range.start.date())
            else:
                for kpi in kpis:
                    frames.append(api.get_kpi_values(self.backend, kpi.id, fetch_range, school_id))

            overrides = {}
            if school_id is not None:
                overrides = overrides_from_frame(api.get_school_benchmarks(self.backend, school_id))
        except Exception as exc:
            if generation != self._generation:
                logger.info("Superseded load %d failed, ignoring", generation)
                return self.status
            logger.exception("Error loading dashboard data for district %s", district_id)
            self._clear()
            self.status = LoadStatus.ERROR
            self.error = exc
            return self.status

        if generation != self._generation:
            logger.info("Discarding results of superseded load %d", generation)
            return self.status

        frames = [df for df in frames if not df.empty]
        kpi_values = (
            pd.concat(frames, ignore_index=True) if frames
            else pd.DataFrame(columns=KPI_VALUE_COLUMNS)
        )

        self.schools = schools
        self.kpis = kpis
        self.metrics = metrics
        self.kpi_values = kpi_values
        self.benchmark_overrides = overrides
        self._context = DerivationContext(
            schools=schools,
            metrics=metrics,
            kpi_values=kpi_values,
            date_range=date_range,
            school_scope=self.selected_school,
            timeframe=self.timeframe,
            config=self.config,
            non_serving=non_serving,
        )
        self.status = LoadStatus.READY
        logger.info(
            "Loaded %d schools, %d KPIs, %d metric rows, %d KPI value rows (%s, %s)",
            len(schools), len(kpis), len(metrics), len(kpi_values),
            self.selected_school, self.timeframe,
        )
        return self.status

    def refresh_data(self, **_payload) -> LoadStatus:
        """Reload with the current scope; also the BENCHMARKS_UPDATED handler."""
        return self.load()

    def set_school(self, school_scope: str) -> LoadStatus:
        self.selected_school = str(school_scope)
        return self.load()

    def attach(self) -> None:
        """Start listening for benchmark saves."""
        if not self._attached:
            self.bus.subscribe(BENCHMARKS_UPDATED, self.refresh_data)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self.bus.unsubscribe(BENCHMARKS_UPDATED, self.refresh_data)
            self._attached = False
        self.store.unsubscribe(self._on_state_change)

    def _on_state_change(self, old: AppState, new: AppState) -> None:
        if (
            old.selected_timeframe != new.selected_timeframe
            or old.custom_date_range != new.custom_date_range
            or old.user != new.user
        ):
            self.load()

    def _clear(self) -> None:
        self.schools = pd.DataFrame(columns=SCHOOL_COLUMNS)
        self.kpis: list[KPI] = []
        self.metrics = pd.DataFrame()
        self.kpi_values = pd.DataFrame(columns=KPI_VALUE_COLUMNS)
        self.benchmark_overrides: dict[str, float] = {}
        self._context: DerivationContext | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_kpi(self, kpi_id: str) -> KPI | None:
        for kpi in self.kpis:
            if kpi.id == str(kpi_id):
                return kpi
        return None

    def get_aggregated_kpi_value(self, kpi_id: str) -> float | None:
        kpi = self.get_kpi(kpi_id)
        if kpi is None or self._context is None:
            return None
        return aggregate_kpi(kpi, self._context)

    def get_kpi_trend(self, kpi_id: str) -> float:
        kpi = self.get_kpi(kpi_id)
        if kpi is None or self._context is None:
            return 0.0
        return kpi_trend(kpi, self._context)

    def get_expected_benchmark(self, kpi: KPI, school_benchmark: float | None = None) -> float:
        """Benchmark for the whole window; uses the loaded school override when none is given."""
        if school_benchmark is None:
            school_benchmark = resolve_benchmark(kpi, self.benchmark_overrides)
        return expected_benchmark(kpi, self.serving_days, school_benchmark)

    def get_kpi_cards(self) -> list[dict]:
        """One dict per visible KPI: value, trend, expected benchmark and RAG status."""
        cards = []
        for kpi in self.kpis:
            value = self.get_aggregated_kpi_value(kpi.id)
            expected = self.get_expected_benchmark(kpi)
            cards.append({
                "kpi_id": kpi.id,
                "name": kpi.name,
                "unit": kpi.unit,
                "value": value,
                "trend": self.get_kpi_trend(kpi.id),
                "benchmark": expected,
                "goal": kpi.goal,
                "rag": kpi_status(kpi, value, expected),
            })
        return cards

    def get_school_breakdown(self) -> pd.DataFrame:
        """Latest metrics per school in scope with school names and performance grades."""
        latest = latest_metrics_by_school(self.metrics, self.selected_school)
        if latest.empty:
            return latest

        names = {}
        if not self.schools.empty:
            names = dict(zip(self.schools["id"].astype(str), self.schools["name"]))
        latest = latest.copy()
        latest["school_name"] = latest["school_id"].astype(str).map(names)
        grades = [performance_grade(row) for row in latest.to_dict("records")]
        latest["score"] = [g["score"] for g in grades]
        latest["grade"] = [g["grade"] for g in grades]
        return latest.sort_values("school_name", kind="stable").reset_index(drop=True)
