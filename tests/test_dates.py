import pandas as pd
import pytest

from schoolcafe_dashboard.dates import (
    count_serving_days,
    end_of_day,
    is_non_serving_day,
    is_non_serving_period,
    most_recent_serving_day,
    non_serving_reason,
    previous_period,
    resolve_date_range,
)
from schoolcafe_dashboard.models import DateRange

WEDNESDAY = pd.Timestamp("2024-01-17 10:30")


def test_weekends_and_holidays_are_non_serving():
    assert is_non_serving_day("2024-01-20")      # Saturday
    assert is_non_serving_day("2024-01-21")      # Sunday
    assert is_non_serving_day("2024-12-25")      # Wednesday, Winter Break
    assert not is_non_serving_day("2024-01-17")


def test_non_serving_reason():
    assert non_serving_reason("2024-01-15") == "holiday"
    assert non_serving_reason("2024-01-20") == "weekend"
    assert non_serving_reason("2024-01-17") is None


def test_count_serving_days_matches_predicate():
    start, end = pd.Timestamp("2024-01-01"), pd.Timestamp("2024-03-31")
    expected = sum(
        1 for day in pd.date_range(start, end, freq="D") if not is_non_serving_day(day)
    )
    assert count_serving_days(start, end) == expected


def test_count_serving_days_january():
    # 13 weekdays Jan 1-17, minus New Year and MLK Day
    assert count_serving_days("2024-01-01", end_of_day(WEDNESDAY)) == 11


def test_count_serving_days_inverted_interval():
    assert count_serving_days("2024-01-17", "2024-01-10") == 0


def test_custom_holiday_calendar():
    assert count_serving_days("2024-01-15", "2024-01-19", holidays=[]) == 5


def test_week_on_wednesday_is_monday_to_sunday():
    rng = resolve_date_range("week", now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-15")
    assert rng.end == end_of_day(pd.Timestamp("2024-01-21"))


def test_last_week():
    rng = resolve_date_range("last-week", now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-08")
    assert rng.end.normalize() == pd.Timestamp("2024-01-14")


def test_month_runs_to_end_of_today():
    rng = resolve_date_range("month", now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-01")
    assert rng.end == end_of_day(WEDNESDAY)


def test_last_month_handles_leap_february():
    rng = resolve_date_range("last-month", now="2024-03-10")
    assert rng.start == pd.Timestamp("2024-02-01")
    assert rng.end.normalize() == pd.Timestamp("2024-02-29")


@pytest.mark.parametrize("now, first_year", [
    ("2024-01-17", 2023),
    ("2024-06-30", 2023),
    ("2024-07-01", 2024),
    ("2024-11-05", 2024),
])
def test_year_starts_july_first(now, first_year):
    rng = resolve_date_range("year", now=now)
    assert rng.start == pd.Timestamp(year=first_year, month=7, day=1)
    assert rng.end == rng.start + pd.DateOffset(years=1) - pd.Timedelta(days=1)


def test_prior_year_and_all_years():
    prior = resolve_date_range("prior-year", now=WEDNESDAY)
    assert prior.start == pd.Timestamp("2022-07-01")
    assert prior.end == pd.Timestamp("2023-06-30")

    every = resolve_date_range("all-years", now=WEDNESDAY)
    assert every.start == pd.Timestamp("2020-07-01")
    assert every.end == pd.Timestamp("2024-06-30")


def test_day_on_weekend_walks_back_to_friday():
    rng = resolve_date_range("day", now="2024-01-20 09:00")
    assert rng.start == pd.Timestamp("2024-01-19")
    assert rng.end == end_of_day(pd.Timestamp("2024-01-19"))


def test_day_on_serving_day_is_today():
    rng = resolve_date_range("day", now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-17")


def test_prior_day_skips_holiday_and_weekend():
    # Tuesday after MLK Day: Monday is a holiday, so the prior day is Friday
    rng = resolve_date_range("prior-day", now="2024-01-16 08:00")
    assert rng.start == pd.Timestamp("2024-01-12")


def test_most_recent_serving_day_inclusive():
    assert most_recent_serving_day("2024-01-17") == pd.Timestamp("2024-01-17")
    assert most_recent_serving_day("2024-01-21") == pd.Timestamp("2024-01-19")


def test_custom_range_normalised_to_whole_days():
    rng = resolve_date_range("custom", ("2024-01-03 14:00", "2024-01-05 08:00"), now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-03")
    assert rng.end == end_of_day(pd.Timestamp("2024-01-05"))


def test_custom_range_accepts_dict_and_daterange():
    as_dict = resolve_date_range("custom", {"start": "2024-01-03", "end": "2024-01-05"}, now=WEDNESDAY)
    as_range = resolve_date_range(
        "custom", DateRange(pd.Timestamp("2024-01-03"), pd.Timestamp("2024-01-05")), now=WEDNESDAY
    )
    assert as_dict == as_range


@pytest.mark.parametrize("custom", [None, ("2024-01-03", None), {"start": "2024-01-03"}])
def test_custom_without_bounds_falls_back_to_today(custom):
    rng = resolve_date_range("custom", custom, now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-17")
    assert rng.end == end_of_day(WEDNESDAY)


def test_unknown_token_resolves_to_today():
    rng = resolve_date_range("fortnight", now=WEDNESDAY)
    assert rng.start == pd.Timestamp("2024-01-17")


def test_previous_period_of_week():
    prior = previous_period(resolve_date_range("week", now=WEDNESDAY))
    assert prior.start == pd.Timestamp("2024-01-08")
    assert prior.end == end_of_day(pd.Timestamp("2024-01-14"))


def test_previous_period_of_single_day_is_one_day():
    day = resolve_date_range("day", now=WEDNESDAY)
    prior = previous_period(day)
    assert prior.start == pd.Timestamp("2024-01-16")
    assert prior.end < day.start


def test_previous_period_of_academic_year():
    # 2024-07-01 .. 2025-06-30 is 365 days
    prior = previous_period(resolve_date_range("year", now="2024-11-05"))
    assert prior.start == pd.Timestamp("2023-07-01")
    assert prior.end == end_of_day(pd.Timestamp("2024-06-30"))


def test_previous_period_of_month_to_date():
    # Jan 1 .. Jan 17 is 17 days
    prior = previous_period(resolve_date_range("month", now=WEDNESDAY))
    assert prior.start == pd.Timestamp("2023-12-15")
    assert prior.end == end_of_day(pd.Timestamp("2023-12-31"))


def test_previous_period_ignores_time_of_day_on_end():
    midnight = DateRange(pd.Timestamp("2024-01-08"), pd.Timestamp("2024-01-12"))
    late = DateRange(pd.Timestamp("2024-01-08"), end_of_day(pd.Timestamp("2024-01-12")))
    assert previous_period(midnight) == previous_period(late)
    assert previous_period(midnight).start == pd.Timestamp("2024-01-03")


def test_non_serving_period_only_for_single_day_timeframes():
    saturday = DateRange(pd.Timestamp("2024-01-20"), end_of_day(pd.Timestamp("2024-01-20")))
    assert is_non_serving_period("day", saturday)
    assert not is_non_serving_period("week", saturday)
    assert not is_non_serving_period("prior-day", resolve_date_range("prior-day", now="2024-01-21"))
