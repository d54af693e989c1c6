from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Callable

from src.facebook.client import fetch_insights
from src.funnel.models import EXTERNAL_METRICS, DateRange

logger = logging.getLogger("funnel-dashboard")

ACCOUNT_FIELDS = [
    "account_name",
    "spend",
    "impressions",
    "clicks",
    "reach",
    "frequency",
    "cpm",
    "inline_link_clicks",
    "actions",
]
CAMPAIGN_FIELDS = ["campaign_name", "actions"]
DAILY_FIELDS = [
    "spend",
    "impressions",
    "clicks",
    "reach",
    "inline_link_clicks",
    "actions",
]

PROFILE_VISIT_ACTION = "link_click"
FOLLOW_ACTION = "post"
CONVERSATION_ACTION = "onsite_conversion.messaging_conversation_started_7d"

# Meta keeps insights for about 37 months
MAX_LOOKBACK_MONTHS = 36

InsightsLoader = Callable[[str, DateRange], "dict[str, Any] | None"]
CachedLoader = Callable[[DateRange], "dict[str, Any] | None"]


def lookback_limit(today: date | None = None) -> date:
    """Oldest day Meta still answers insights for."""
    today = today or date.today()
    year, month = today.year, today.month - MAX_LOOKBACK_MONTHS
    while month <= 0:
        month += 12
        year -= 1
    return today.replace(year=year, month=month, day=min(today.day, 28))


def sanitize_time_range(
    date_range: DateRange, today: date | None = None
) -> DateRange | None:
    """Clamp ``since`` to the lookback limit.

    Returns None when the whole range is older than the limit, since Meta
    holds no data for it.
    """
    oldest = lookback_limit(today)
    if date_range.since >= oldest:
        return date_range
    if date_range.until < oldest:
        logger.debug("Range %s..%s is past Meta's lookback", date_range.since, date_range.until)
        return None
    logger.info("Clamping insights range start %s to %s", date_range.since, oldest)
    return DateRange(oldest, date_range.until)


def _action_value(actions: list[dict[str, Any]] | None, action_type: str) -> int:
    for item in actions or []:
        if item.get("action_type") == action_type:
            return int(float(item["value"]))
    return 0


def _parse_account_row(row: dict[str, Any]) -> dict[str, Any]:
    actions = row.get("actions", [])
    return {
        "account_name": row.get("account_name", "Unknown"),
        "spend": float(row.get("spend", 0)),
        "impressions": int(row.get("impressions", 0)),
        "clicks": int(row.get("clicks", 0)),
        "reach": int(row.get("reach", 0)),
        "frequency": float(row.get("frequency", 0)),
        "cpm": float(row.get("cpm", 0)),
        "inline_link_clicks": int(row.get("inline_link_clicks", 0)),
        "conversations": _action_value(actions, CONVERSATION_ACTION),
        "date_start": row.get("date_start", ""),
        "date_stop": row.get("date_stop", ""),
    }


def _sum_campaign_actions(rows: list[dict[str, Any]]) -> tuple[int, int]:
    """Profile visits across all platforms, followers from Instagram only."""
    profile_visits = 0
    followers = 0
    for row in rows:
        actions = row.get("actions", [])
        profile_visits += _action_value(actions, PROFILE_VISIT_ACTION)
        if row.get("publisher_platform") == "instagram":
            followers += _action_value(actions, FOLLOW_ACTION)
    return profile_visits, followers


def _parse_daily_row(row: dict[str, Any]) -> dict[str, Any]:
    actions = row.get("actions", [])
    return {
        "date": date.fromisoformat(row["date_start"]),
        "spend": float(row.get("spend", 0)),
        "impressions": int(row.get("impressions", 0)),
        "clicks": int(row.get("clicks", 0)),
        "link_clicks": int(row.get("inline_link_clicks", 0)),
        "reach": int(row.get("reach", 0)),
        "profile_visits": _action_value(actions, PROFILE_VISIT_ACTION),
        "followers": _action_value(actions, FOLLOW_ACTION),
        "conversations": _action_value(actions, CONVERSATION_ACTION),
    }


def _empty_day(day: date) -> dict[str, Any]:
    return {
        "date": day,
        "spend": 0.0,
        "impressions": 0,
        "clicks": 0,
        "link_clicks": 0,
        "reach": 0,
        "profile_visits": 0,
        "followers": 0,
        "conversations": 0,
    }


def get_account_insights(
    account_id: str, date_range: DateRange
) -> dict[str, Any] | None:
    """Fetch aggregated insights for an ad account over a closed range.

    Returns None when Meta has no rows for the range.
    """
    sanitized = sanitize_time_range(date_range)
    if sanitized is None:
        return None
    time_range = sanitized.as_params()

    rows = fetch_insights(
        account_id,
        ACCOUNT_FIELDS,
        {"time_range": time_range, "level": "account"},
    )
    if not rows:
        return None

    result = _parse_account_row(rows[0])

    campaign_rows = fetch_insights(
        account_id,
        CAMPAIGN_FIELDS,
        {
            "time_range": time_range,
            "level": "campaign",
            "breakdowns": ["publisher_platform"],
            "limit": 500,
        },
    )
    profile_visits, followers = _sum_campaign_actions(campaign_rows)
    result["profile_visits"] = profile_visits
    result["followers"] = followers

    logger.debug("Insights for %s %s: %s", account_id, time_range, result)
    return result


def get_daily_insights(account_id: str, date_range: DateRange) -> list[dict[str, Any]]:
    """One row per day of the range, zero-filled where Meta returned nothing.

    Days older than Meta's lookback are left out.
    """
    sanitized = sanitize_time_range(date_range)
    if sanitized is None:
        return []

    rows = fetch_insights(
        account_id,
        DAILY_FIELDS,
        {
            "time_range": sanitized.as_params(),
            "time_increment": 1,
            "level": "account",
            "limit": 1000,
        },
    )
    by_day = {}
    for row in rows:
        parsed = _parse_daily_row(row)
        by_day[parsed["date"]] = parsed

    days = (sanitized.since + timedelta(days=i) for i in range(sanitized.days))
    return [by_day.get(day) or _empty_day(day) for day in days]


class MetaMetricSource:
    """Period-bounded metric sums for one ad account.

    Results are cached per period for the lifetime of the instance, which
    is one request or one report run. When Meta fails and a ``fallback``
    is given, the period is answered from the daily metrics cache instead;
    without cached rows the original error is raised.
    """

    def __init__(
        self,
        account_id: str,
        loader: InsightsLoader = get_account_insights,
        fallback: CachedLoader | None = None,
    ) -> None:
        self.account_id = account_id
        self.loader = loader
        self.fallback = fallback
        self._cache: dict[tuple[date, date], dict[str, Any] | None] = {}

    def get_metric_sum(self, metric: str, since: date, until: date) -> float:
        if metric not in EXTERNAL_METRICS:
            raise ValueError(f"Metric {metric} is not available from Meta")

        key = (since, until)
        if key not in self._cache:
            self._cache[key] = self._load(DateRange(since, until))
        insights = self._cache[key]
        if insights is None:
            return 0
        return float(insights.get(metric, 0))

    def _load(self, period: DateRange) -> dict[str, Any] | None:
        try:
            return self.loader(self.account_id, period)
        except Exception as e:
            if self.fallback is None:
                raise
            cached = self.fallback(period)
            if cached is None:
                raise
            logger.warning(
                "Meta unavailable for %s %s..%s, using cached daily metrics: %s",
                self.account_id,
                period.since,
                period.until,
                e,
            )
            return cached


def default_range(today: date | None = None, days: int = 30) -> DateRange:
    """The last ``days`` days, ending today."""
    today = today or date.today()
    return DateRange(today - timedelta(days=days), today)
