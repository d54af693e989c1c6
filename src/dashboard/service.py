"""Request-scoped dashboard queries.

Each call works on one account and one session; nothing is shared between
calls. Ad-platform failures degrade to partial results instead of errors,
served from the daily metrics cache where it has data.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from config.settings import DEFAULT_GOAL_EPOCH
from src.facebook.insights import (
    MetaMetricSource,
    default_range,
    get_account_insights,
    get_daily_insights,
)
from src.funnel.aggregator import aggregate_monthly_metrics, build_funnel, month_start
from src.funnel.goals import GoalEvaluator, MetricSource
from src.funnel.models import DateRange, GoalProgress
from src.storage import repository
from src.utils.errors import AccountNotFoundError, TokenExpiredError

logger = logging.getLogger("funnel-dashboard")

InsightsFetcher = Callable[[str, DateRange], Any]
DailyFetcher = Callable[[str, DateRange], "list[dict[str, Any]]"]


def get_dashboard_funnel(
    session: Session,
    provider_account_id: str,
    date_range: DateRange | None = None,
    insights_fetcher: InsightsFetcher = get_account_insights,
) -> dict[str, Any]:
    account = repository.require_account(session, provider_account_id)
    date_range = date_range or default_range()

    insights = None
    warning = None
    try:
        insights = insights_fetcher(provider_account_id, date_range)
        if insights and insights.get("account_name"):
            account.name = insights["account_name"]
        repository.touch_last_synced(session, account)
    except TokenExpiredError as e:
        logger.error("Token expired for %s: %s", provider_account_id, e)
        repository.set_account_status(session, provider_account_id, "error")
        warning = str(e)
    except Exception as e:
        logger.exception("Insights unavailable for %s", provider_account_id)
        warning = str(e)

    if warning is not None:
        cached = repository.aggregate_daily_metrics(session, provider_account_id, date_range)
        if cached is not None:
            logger.info(
                "Serving %d cached day(s) for %s", cached["cached_days"], provider_account_id
            )
            insights = cached
            warning = f"{warning} (showing cached daily data)"

    records = repository.get_monthly_metrics(
        session, provider_account_id, date_range.since, date_range.until
    )
    manual = aggregate_monthly_metrics(date_range, records)
    funnel = build_funnel(insights, manual)
    logger.debug("Funnel for %s %s: %s", provider_account_id, date_range, funnel)

    return {
        "account": {
            "id": account.provider_account_id,
            "name": account.client_name or account.name,
        },
        "range": {"since": date_range.since.isoformat(), "until": date_range.until.isoformat()},
        "insights": insights,
        "funnel": funnel,
        "funnel_steps": repository.get_funnel_config(account),
        "warning": warning,
    }


def sync_daily_metrics(
    session: Session,
    provider_account_id: str,
    date_range: DateRange,
    daily_fetcher: DailyFetcher = get_daily_insights,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Daily rows for the range, filling uncached days from Meta.

    Only finished days (before ``today``) are written to the cache. When
    Meta fails, whatever is cached is returned.
    """
    today = today or date.today()
    cached = repository.get_daily_metrics(
        session, provider_account_id, date_range.since, date_range.until
    )
    found = {row["date"] for row in cached}
    days = (date_range.since + timedelta(days=i) for i in range(date_range.days))
    missing = {day for day in days if day not in found}
    if not missing:
        return cached

    try:
        fetched = daily_fetcher(provider_account_id, date_range)
    except Exception as e:
        logger.warning(
            "Daily insights unavailable for %s, serving %d cached day(s): %s",
            provider_account_id,
            len(cached),
            e,
        )
        return cached

    to_cache = [row for row in fetched if row["date"] in missing and row["date"] < today]
    repository.upsert_daily_metrics(session, provider_account_id, to_cache)
    return fetched or cached


def get_goals_progress(
    session: Session,
    provider_account_id: str,
    selected_range: DateRange | None = None,
    metric_source: MetricSource | None = None,
    epoch: date = DEFAULT_GOAL_EPOCH,
    today: date | None = None,
    include_archived: bool = False,
) -> list[GoalProgress]:
    goals = repository.list_goals(session, provider_account_id, include_archived)
    if not goals:
        return []

    if metric_source is None:
        metric_source = MetaMetricSource(
            provider_account_id,
            fallback=lambda period: repository.aggregate_daily_metrics(
                session, provider_account_id, period
            ),
        )

    records = repository.get_monthly_metrics(session, provider_account_id)
    evaluator = GoalEvaluator(
        records,
        metric_source=metric_source,
        goal_store=repository.GoalStore(session),
        epoch=epoch,
        today=today,
    )
    return evaluator.evaluate_goals(goals, selected_range)


def get_monthly_notes(
    session: Session, provider_account_id: str, month: date | str
) -> dict[str, Any]:
    """Analysis text and comments attached to one month."""
    notes = repository.get_monthly_report(session, provider_account_id, month)
    notes["comments"] = repository.list_comments(session, provider_account_id, month)
    return notes


def get_public_dashboard(
    session: Session,
    public_token: str,
    date_range: DateRange | None = None,
    insights_fetcher: InsightsFetcher = get_account_insights,
    metric_source: MetricSource | None = None,
    epoch: date = DEFAULT_GOAL_EPOCH,
) -> dict[str, Any]:
    """Read-only dashboard for a share link.

    Notes come from the month the range ends in.
    """
    account = repository.get_account_by_public_token(session, public_token)
    if account is None:
        raise AccountNotFoundError("Invalid or expired share link")

    payload = get_dashboard_funnel(
        session, account.provider_account_id, date_range, insights_fetcher
    )
    payload["goals"] = get_goals_progress(
        session,
        account.provider_account_id,
        metric_source=metric_source,
        epoch=epoch,
    )
    until = date.fromisoformat(payload["range"]["until"])
    payload["notes"] = get_monthly_notes(
        session, account.provider_account_id, month_start(until)
    )
    return payload


def share_url(base_url: str, public_token: str) -> str:
    return f"{base_url}/share/{public_token}" if base_url else public_token
