"""Argument parsing for bot commands."""
from __future__ import annotations

import math
from datetime import date

from src.funnel.aggregator import month_start, parse_date
from src.funnel.models import METRICS, PERIODS, DateRange

# Words operators type -> manual metric column
FIELD_ALIASES = {
    "followers": "new_followers",
    "new_followers": "new_followers",
    "scheduled": "appointments_scheduled",
    "appointments_scheduled": "appointments_scheduled",
    "showed": "appointments_showed",
    "appointments_showed": "appointments_showed",
}

# Words operators type -> funnel step metric
STEP_ALIASES = {
    "impressions": "impressions",
    "reach": "reach",
    "visits": "profile_visits",
    "profile_visits": "profile_visits",
    "followers": "followers",
    "scheduled": "scheduled",
    "showed": "showed",
}

EMPTY_VALUES =("-", "none", "null", "")


class UsageError(ValueError):
    """Command arguments do not match the expected usage."""


def resolve_account(args: list[str], accounts: list[str]) -> tuple[str, list[str]]:
    """Pick the ad account from the arguments.

    An explicit ``act_...`` first argument wins; otherwise the only configured
    account is used.
    """
    if args and args[0].startswith("act_"):
        if args[0] not in accounts:
            raise UsageError(f"Account {args[0]} is not configured")
        return args[0], args[1:]
    if len(accounts) == 1:
        return accounts[0], args
    raise UsageError("Several accounts configured: pass the act_ ID first")


def parse_range(args: list[str]) -> DateRange | None:
    if not args:
        return None
    if len(args) != 2:
        raise UsageError("Pass two dates: YYYY-MM-DD YYYY-MM-DD")
    try:
        return DateRange(parse_date(args[0]), parse_date(args[1]))
    except ValueError as e:
        raise UsageError(str(e)) from e


def parse_month(raw: str) -> date:
    try:
        return month_start(parse_date(raw))
    except ValueError as e:
        raise UsageError(f"Invalid month '{raw}', use YYYY-MM") from e


def parse_metric_value(field: str, raw: str) -> tuple[str, int | None]:
    column = FIELD_ALIASES.get(field.lower())
    if column is None:
        raise UsageError(f"Unknown field '{field}', use followers, scheduled or showed")
    if raw.lower() in EMPTY_VALUES:
        return column, None
    try:
        value = int(raw)
    except ValueError as e:
        raise UsageError(f"Invalid value '{raw}', send a whole number or -") from e
    if value < 0:
        raise UsageError("Value cannot be negative")
    return column, value


def parse_goal(args: list[str]) -> dict:
    """``<metric> <target> <monthly|total> [YYYY-MM-DD]``"""
    if len(args) not in (3, 4):
        raise UsageError("Usage: /addgoal <metric> <target> <monthly|total> [YYYY-MM-DD]")
    metric, raw_target, period = args[0].lower(), args[1], args[2].lower()
    if metric not in METRICS:
        raise UsageError(f"Unknown metric '{metric}'. Options: {', '.join(METRICS)}")
    if period not in PERIODS:
        raise UsageError("Period must be monthly or total")
    try:
        target = float(raw_target.replace(",", ""))
    except ValueError as e:
        raise UsageError(f"Invalid target '{raw_target}'") from e
    if not math.isfinite(target) or target <= 0:
        raise UsageError("Target must be greater than zero")

    start = None
    if len(args) == 4:
        try:
            start = parse_date(args[3])
        except ValueError as e:
            raise UsageError(f"Invalid start date '{args[3]}'") from e
    return {"metric": metric, "target": target, "period": period, "start_date": start}


def parse_goal_id(args: list[str], noun: str = "goal") -> int:
    if len(args) != 1 or not args[0].lstrip("#").isdigit():
        raise UsageError(f"Pass the {noun} number, e.g. 3")
    return int(args[0].lstrip("#"))


def parse_month_text(args: list[str], usage: str) -> tuple[date, str]:
    """``YYYY-MM [free text...]``; the text may be empty."""
    if not args:
        raise UsageError(usage)
    return parse_month(args[0]), " ".join(args[1:]).strip()


def parse_comment(args: list[str]) -> tuple[date, str | None, str]:
    """``YYYY-MM [headline |] text``"""
    usage = "Usage: /comment YYYY-MM [headline |] text"
    month, text = parse_month_text(args, usage)
    if not text:
        raise UsageError(usage)
    headline, sep, content = text.partition("|")
    if not sep:
        return month, None, text
    if not content.strip():
        raise UsageError(usage)
    return month, headline.strip() or None, content.strip()


def parse_funnel_steps(args: list[str]) -> list[dict[str, str]]:
    """Ordered metric names, e.g. ``impressions reach followers scheduled``."""
    steps = []
    for raw in args:
        metric = STEP_ALIASES.get(raw.lower(), raw.lower())
        if metric not in STEP_ALIASES.values():
            raise UsageError(
                f"Unknown funnel step '{raw}'. Options: {', '.join(sorted(set(STEP_ALIASES.values())))}"
            )
        if metric in (step["metric"] for step in steps):
            raise UsageError(f"Funnel step '{metric}' listed twice")
        steps.append({"metric": metric})
    return steps
