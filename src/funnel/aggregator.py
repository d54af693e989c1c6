"""Proportional allocation of manually entered monthly metrics.

Operators enter one number per month (new followers, appointments
scheduled, appointments showed). A dashboard range rarely lines up with
calendar months, so each month contributes the share of its value that
matches the share of its days covered by the range. Contributions stay
fractional and are rounded once, after summing.
"""
from __future__ import annotations

import calendar
import logging
import math
from collections.abc import Iterable, Iterator
from datetime import date, datetime, timedelta
from typing import Any

from src.funnel.models import (
    AggregatedFunnelResult,
    DateRange,
    ManualTotals,
    MonthlyMetricRecord,
)

logger = logging.getLogger("funnel-dashboard")

_MANUAL_COLUMNS = ("new_followers", "appointments_scheduled", "appointments_showed")


# --- Calendar helpers ---


def parse_date(value: date | datetime | str) -> date:
    """Reduce a date, datetime or ISO string to a calendar date.

    Datetimes keep their own wall-clock date; no timezone conversion happens.
    A bare ``YYYY-MM`` month resolves to its first day.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 7:
        return date.fromisoformat(f"{text}-01")
    return date.fromisoformat(text[:10])


def month_start(day: date) -> date:
    return day.replace(day=1)


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def month_end(day: date) -> date:
    return day.replace(day=days_in_month(day))


def next_month(day: date) -> date:
    return month_end(day) + timedelta(days=1)


def iter_months(since: date, until: date) -> Iterator[date]:
    """Yield the first day of every month touched by [since, until]."""
    current = month_start(since)
    while current <= until:
        yield current
        current = next_month(current)


def overlap_days(date_range: DateRange, start: date, end: date) -> int:
    """Inclusive count of days shared by the range and [start, end]."""
    lo = max(date_range.since, start)
    hi = min(date_range.until, end)
    if hi < lo:
        return 0
    return (hi - lo).days + 1


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# --- Aggregation ---


def aggregate_monthly_metrics(
    date_range: DateRange, records: Iterable[MonthlyMetricRecord]
) -> ManualTotals:
    """Sum each manual field over the range, weighting months by day overlap.

    A field with no contributing record comes back as None, never 0.
    """
    sums = {column: 0.0 for column in _MANUAL_COLUMNS}
    seen = {column: False for column in _MANUAL_COLUMNS}

    for record in records:
        start = month_start(parse_date(record.month_start))
        overlap = overlap_days(date_range, start, month_end(start))
        proportion = overlap / days_in_month(start)
        if proportion <= 0:
            continue

        logger.debug(
            "Month %s: overlap=%d days, proportion=%.4f",
            start.isoformat(),
            overlap,
            proportion,
        )
        for column in _MANUAL_COLUMNS:
            value = getattr(record, column)
            if value is None:
                continue
            sums[column] += value * proportion
            seen[column] = True

    return ManualTotals(
        **{
            column: round_half_up(sums[column]) if seen[column] else None
            for column in _MANUAL_COLUMNS
        }
    )


def _int_or_none(insights: dict[str, Any] | None, key: str) -> int | None:
    if insights is None:
        return None
    value = insights.get(key)
    if value is None:
        return None
    return int(value)


def build_funnel(
    insights: dict[str, Any] | None, manual: ManualTotals
) -> AggregatedFunnelResult:
    """Combine ad-platform insights with manual totals into funnel stages.

    Insights may be None when the ad platform could not be reached; the
    platform-sourced stages are then None as well.
    """
    followers = manual.new_followers
    if followers is None:
        followers = _int_or_none(insights, "followers")

    return AggregatedFunnelResult(
        impressions=_int_or_none(insights, "impressions"),
        reach=_int_or_none(insights, "reach"),
        profile_views=_int_or_none(insights, "profile_visits"),
        new_followers=followers,
        scheduled=manual.appointments_scheduled,
        showed=manual.appointments_showed,
    )
