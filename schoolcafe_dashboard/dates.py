"""
Date-range resolution: timeframe tokens to concrete reporting windows.

A school-nutrition "day" only counts when meals are served, so every
resolver here is aware of weekends and the holiday calendar. Academic
years run July 1 through June 30.
"""

import logging
from collections.abc import Iterable

import pandas as pd

from .config import (
    ACADEMIC_YEAR_START_MONTH,
    ALL_YEARS_EPOCH,
    HOLIDAYS,
    SINGLE_DAY_TIMEFRAMES,
)
from .models import DateRange

logger = logging.getLogger(__name__)

_ONE_DAY = pd.Timedelta(days=1)
_END_OF_DAY = _ONE_DAY - pd.Timedelta(nanoseconds=1)

# Guard against an all-holiday calendar turning the backward walk endless
_MAX_WALK_BACK_DAYS = 366


def start_of_day(ts: pd.Timestamp) -> pd.Timestamp:
    return pd.Timestamp(ts).normalize()


def end_of_day(ts: pd.Timestamp) -> pd.Timestamp:
    return pd.Timestamp(ts).normalize() + _END_OF_DAY


def is_holiday(date, holidays: Iterable[str] | None = None) -> bool:
    """True if the date's yyyy-MM-dd form is in the holiday calendar."""
    calendar = HOLIDAYS if holidays is None else holidays
    return pd.Timestamp(date).strftime("%Y-%m-%d") in calendar


def is_non_serving_day(date, holidays: Iterable[str] | None = None) -> bool:
    """True for Saturdays, Sundays, and holiday-calendar dates."""
    ts = pd.Timestamp(date)
    return ts.dayofweek >= 5 or is_holiday(ts, holidays)


def non_serving_reason(date, holidays: Iterable[str] | None = None) -> str | None:
    """Return 'holiday', 'weekend', or None for a serving day."""
    ts = pd.Timestamp(date)
    if is_holiday(ts, holidays):
        return "holiday"
    if ts.dayofweek >= 5:
        return "weekend"
    return None


def serving_days_between(start, end, holidays: Iterable[str] | None = None) -> pd.DatetimeIndex:
    """Serving days in [start, end] at day granularity (empty when inverted)."""
    first = start_of_day(start)
    last = start_of_day(end)
    if last < first:
        return pd.DatetimeIndex([])

    days = pd.date_range(first, last, freq="D")
    calendar = list(HOLIDAYS if holidays is None else holidays)
    weekday = days.dayofweek < 5
    holiday = days.strftime("%Y-%m-%d").isin(calendar)
    return days[weekday & ~holiday]


def count_serving_days(start, end, holidays: Iterable[str] | None = None) -> int:
    """Count calendar days in [start, end] that are serving days.

    Both bounds are taken at day granularity. An inverted interval counts
    as zero days.
    """
    return len(serving_days_between(start, end, holidays))


def most_recent_serving_day(
    date,
    holidays: Iterable[str] | None = None,
) -> pd.Timestamp:
    """Walk backward one day at a time from `date` (inclusive) to a serving day."""
    current = start_of_day(date)
    for _ in range(_MAX_WALK_BACK_DAYS):
        if not is_non_serving_day(current, holidays):
            return current
        current -= _ONE_DAY
    logger.warning("No serving day found within a year before %s", date)
    return start_of_day(date)


def academic_year_bounds(year_offset: int = 0, now=None) -> tuple[pd.Timestamp, pd.Timestamp]:
    """July 1 / June 30 bounds of the academic year `year_offset` years from the current one."""
    now = _now(now)
    first_year = now.year if now.month >= ACADEMIC_YEAR_START_MONTH else now.year - 1
    first_year += year_offset
    start = pd.Timestamp(year=first_year, month=7, day=1)
    end = pd.Timestamp(year=first_year + 1, month=6, day=30)
    return start, end


def resolve_date_range(
    timeframe: str,
    custom_range: tuple | DateRange | None = None,
    now=None,
    holidays: Iterable[str] | None = None,
) -> DateRange:
    """Map a timeframe token to a concrete DateRange.

    Rules
    -----
    - day:        today, or the most recent serving day when today is not one
    - prior-day:  the most recent serving day before today
    - week:       Monday 00:00 through Sunday end-of-day, current week
    - last-week:  same, previous week
    - month:      first of the month through end of today
    - last-month: previous calendar month
    - year:       current academic year (July 1 - June 30)
    - prior-year: previous academic year
    - all-years:  July 1, 2020 through the end of the current academic year
    - custom:     caller bounds normalised to whole days; missing -> today

    Unknown tokens resolve to today. This function does not raise.
    """
    now = _now(now)
    start = start_of_day(now)
    end = end_of_day(now)

    if timeframe == "prior-day":
        day = most_recent_serving_day(now - _ONE_DAY, holidays)
        start, end = day, end_of_day(day)

    elif timeframe == "day":
        if is_non_serving_day(now, holidays):
            day = most_recent_serving_day(now - _ONE_DAY, holidays)
            start, end = day, end_of_day(day)

    elif timeframe == "week":
        start = start_of_day(now) - pd.Timedelta(days=now.dayofweek)
        end = end_of_day(start + pd.Timedelta(days=6))

    elif timeframe == "last-week":
        start = start_of_day(now) - pd.Timedelta(days=now.dayofweek + 7)
        end = end_of_day(start + pd.Timedelta(days=6))

    elif timeframe == "month":
        start = start_of_day(now).replace(day=1)

    elif timeframe == "last-month":
        first_of_month = start_of_day(now).replace(day=1)
        end = end_of_day(first_of_month - _ONE_DAY)
        start = start_of_day(end).replace(day=1)

    elif timeframe == "year":
        start, end = academic_year_bounds(0, now)

    elif timeframe == "prior-year":
        start, end = academic_year_bounds(-1, now)

    elif timeframe == "all-years":
        start = ALL_YEARS_EPOCH
        _, end = academic_year_bounds(0, now)

    elif timeframe == "custom":
        bounds = _custom_bounds(custom_range)
        if bounds is not None:
            start, end = start_of_day(bounds[0]), end_of_day(bounds[1])
        else:
            logger.warning("Custom timeframe without both bounds, falling back to today")

    return DateRange(start=start, end=end)


def previous_period(date_range: DateRange) -> DateRange:
    """The window of equal length immediately before `date_range`.

    Length counts whole calendar days, both bounds inclusive, so windows
    ending at midnight and at end-of-day measure alike. The window ends
    just before `date_range.start`.
    """
    span_days = max(1, (date_range.end.normalize() - date_range.start.normalize()).days + 1)
    return DateRange(
        start=date_range.start - pd.Timedelta(days=span_days),
        end=date_range.start - pd.Timedelta(nanoseconds=1),
    )


def is_non_serving_period(
    timeframe: str,
    date_range: DateRange,
    holidays: Iterable[str] | None = None,
) -> bool:
    """Only single-day timeframes can land on a non-serving period."""
    if timeframe in SINGLE_DAY_TIMEFRAMES:
        return is_non_serving_day(date_range.start, holidays)
    return False


def _now(now) -> pd.Timestamp:
    return pd.Timestamp.now() if now is None else pd.Timestamp(now)


def _custom_bounds(custom_range) -> tuple[pd.Timestamp, pd.Timestamp] | None:
    if custom_range is None:
        return None
    if isinstance(custom_range, DateRange):
        return custom_range.start, custom_range.end
    if isinstance(custom_range, dict):
        start, end = custom_range.get("start"), custom_range.get("end")
    else:
        try:
            start, end = custom_range
        except (TypeError, ValueError):
            return None
    if start is None or end is None:
        return None
    try:
        return pd.Timestamp(start), pd.Timestamp(end)
    except (TypeError, ValueError):
        logger.warning("Could not parse custom range %s", custom_range)
        return None
