"""Queries over accounts, manual monthly metrics, cached daily insights,
monthly notes and goals.

Every function takes an open session and commits its own writes. Accounts
are addressed by their Meta ad account ID (``act_...``); the integer
primary key never leaves this module.
"""
from __future__ import annotations

import logging
import math
import secrets
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.funnel.aggregator import month_start, parse_date
from src.funnel.models import METRICS, PERIODS, DateRange, Goal, MonthlyMetricRecord
from src.storage.models import (
    AdAccount,
    DailyMetric,
    GoalRow,
    MonthlyComment,
    MonthlyFunnelMetric,
    MonthlyReport,
)
from src.utils.errors import (
    AccountNotFoundError,
    CommentNotFoundError,
    GoalFrozenError,
    GoalNotFoundError,
)

logger = logging.getLogger("funnel-dashboard")

FUNNEL_FIELDS = ("new_followers", "appointments_scheduled", "appointments_showed")

FUNNEL_STEP_METRICS = (
    "impressions",
    "reach",
    "profile_visits",
    "followers",
    "scheduled",
    "showed",
)
DEFAULT_FUNNEL_STEPS = [
    {"id": str(i), "metric": metric} for i, metric in enumerate(FUNNEL_STEP_METRICS, 1)
]


# --- Accounts ---


def list_active_accounts(session: Session) -> list[AdAccount]:
    stmt = select(AdAccount).where(AdAccount.status == "active").order_by(AdAccount.name)
    return list(session.scalars(stmt))


def get_account_by_provider_id(session: Session, provider_account_id: str) -> AdAccount | None:
    if not provider_account_id:
        logger.error("Account lookup called with an empty provider ID")
        return None
    stmt = select(AdAccount).where(AdAccount.provider_account_id == provider_account_id)
    return session.scalars(stmt).first()


def require_account(session: Session, provider_account_id: str) -> AdAccount:
    account = get_account_by_provider_id(session, provider_account_id)
    if account is None:
        raise AccountNotFoundError(f"No account found for {provider_account_id}")
    return account


def get_account_by_public_token(session: Session, public_token: str) -> AdAccount | None:
    if not public_token:
        return None
    stmt = select(AdAccount).where(AdAccount.public_token == public_token)
    return session.scalars(stmt).first()


def upsert_account(
    session: Session, provider_account_id: str, name: str = "", status: str = "active"
) -> AdAccount:
    account = get_account_by_provider_id(session, provider_account_id)
    if account is None:
        account = AdAccount(provider_account_id=provider_account_id, name=name, status=status)
        session.add(account)
        logger.info("Registered ad account %s", provider_account_id)
    else:
        if name:
            account.name = name
        account.status = status
    session.commit()
    return account


def set_account_status(session: Session, provider_account_id: str, status: str) -> None:
    account = require_account(session, provider_account_id)
    account.status = status
    session.commit()
    logger.info("Account %s status set to %s", provider_account_id, status)


def touch_last_synced(session: Session, account: AdAccount) -> None:
    account.last_synced_at = datetime.now(timezone.utc)
    session.commit()


def rotate_public_token(session: Session, provider_account_id: str) -> str:
    """Issue a new share token; the previous link stops working."""
    account = require_account(session, provider_account_id)
    account.public_token = secrets.token_urlsafe(24)
    session.commit()
    return account.public_token


def get_funnel_config(account: AdAccount) -> list[dict[str, str]]:
    config = account.dashboard_config or {}
    return config.get("funnel_steps") or [dict(step) for step in DEFAULT_FUNNEL_STEPS]


def save_funnel_config(
    session: Session, provider_account_id: str, funnel_steps: list[dict[str, Any]]
) -> list[dict[str, str]]:
    steps = []
    for i, step in enumerate(funnel_steps, 1):
        metric = step.get("metric")
        if metric not in FUNNEL_STEP_METRICS:
            raise ValueError(f"Unknown funnel metric: {metric}")
        steps.append({"id": str(step.get("id") or i), "metric": metric})

    account = require_account(session, provider_account_id)
    config = dict(account.dashboard_config or {})
    config["funnel_steps"] = steps
    account.dashboard_config = config
    session.commit()
    return steps


# --- Monthly manual metrics ---


def _to_record(row: MonthlyFunnelMetric, provider_account_id: str) -> MonthlyMetricRecord:
    return MonthlyMetricRecord(
        account_id=provider_account_id,
        month_start=row.month_start,
        new_followers=row.new_followers,
        appointments_scheduled=row.appointments_scheduled,
        appointments_showed=row.appointments_showed,
    )


def get_monthly_metrics(
    session: Session,
    provider_account_id: str,
    since: date | None = None,
    until: date | None = None,
) -> list[MonthlyMetricRecord]:
    """All manual records of an account, optionally limited to the months
    touched by [since, until]."""
    account = require_account(session, provider_account_id)
    stmt = select(MonthlyFunnelMetric).where(MonthlyFunnelMetric.ad_account_id == account.id)
    if since is not None:
        stmt = stmt.where(MonthlyFunnelMetric.month_start >= month_start(since))
    if until is not None:
        stmt = stmt.where(MonthlyFunnelMetric.month_start <= month_start(until))
    stmt = stmt.order_by(MonthlyFunnelMetric.month_start)
    return [_to_record(row, provider_account_id) for row in session.scalars(stmt)]


def get_month_metrics(
    session: Session, provider_account_id: str, month: date | str
) -> MonthlyMetricRecord | None:
    first_day = month_start(parse_date(month))
    records = get_monthly_metrics(session, provider_account_id, first_day, first_day)
    return records[0] if records else None


def update_funnel_metric(
    session: Session,
    provider_account_id: str,
    month: date | str,
    field: str,
    value: int | None,
) -> MonthlyMetricRecord:
    """Set one manual field for a month, creating the month row if needed.

    ``None`` clears the field back to "not entered".
    """
    if field not in FUNNEL_FIELDS:
        raise ValueError(f"Unknown funnel field: {field}")
    if value is not None and value < 0:
        raise ValueError(f"{field} cannot be negative")

    account = require_account(session, provider_account_id)
    first_day = month_start(parse_date(month))
    stmt = select(MonthlyFunnelMetric).where(
        MonthlyFunnelMetric.ad_account_id == account.id,
        MonthlyFunnelMetric.month_start == first_day,
    )
    row = session.scalars(stmt).first()
    if row is None:
        row = MonthlyFunnelMetric(ad_account_id=account.id, month_start=first_day)
        session.add(row)

    setattr(row, field, value)
    session.commit()
    logger.info(
        "Funnel metric %s for %s %s set to %s",
        field,
        provider_account_id,
        first_day.strftime("%Y-%m"),
        value,
    )
    return _to_record(row, provider_account_id)


# --- Cached daily insights ---

DAILY_FIELDS = (
    "spend",
    "impressions",
    "clicks",
    "link_clicks",
    "reach",
    "profile_visits",
    "followers",
    "conversations",
)


def _daily_dict(row: DailyMetric) -> dict[str, Any]:
    data = {"date": row.date}
    data.update({name: getattr(row, name) for name in DAILY_FIELDS})
    return data


def get_daily_metrics(
    session: Session, provider_account_id: str, since: date, until: date
) -> list[dict[str, Any]]:
    account = require_account(session, provider_account_id)
    stmt = (
        select(DailyMetric)
        .where(
            DailyMetric.ad_account_id == account.id,
            DailyMetric.date >= since,
            DailyMetric.date <= until,
        )
        .order_by(DailyMetric.date)
    )
    return [_daily_dict(row) for row in session.scalars(stmt)]


def upsert_daily_metrics(
    session: Session, provider_account_id: str, rows: list[dict[str, Any]]
) -> int:
    """Insert or overwrite one cached row per day. Returns the rows written."""
    if not rows:
        return 0
    account = require_account(session, provider_account_id)
    days = [row["date"] for row in rows]
    stmt = select(DailyMetric).where(
        DailyMetric.ad_account_id == account.id, DailyMetric.date.in_(days)
    )
    existing = {row.date: row for row in session.scalars(stmt)}

    for data in rows:
        row = existing.get(data["date"])
        if row is None:
            row = DailyMetric(ad_account_id=account.id, date=data["date"])
            session.add(row)
            existing[data["date"]] = row
        for name in DAILY_FIELDS:
            setattr(row, name, data.get(name) or 0)
    session.commit()
    logger.info("Cached %d daily row(s) for %s", len(rows), provider_account_id)
    return len(rows)


def aggregate_daily_metrics(
    session: Session, provider_account_id: str, date_range: DateRange
) -> dict[str, Any] | None:
    """Insights-shaped totals rebuilt from the daily cache, or None when
    nothing is cached for the range.

    Reach is not additive across days; the largest daily reach is reported
    as a lower bound.
    """
    rows = get_daily_metrics(session, provider_account_id, date_range.since, date_range.until)
    if not rows:
        return None

    totals: dict[str, Any] = {
        name: sum(row[name] for row in rows) for name in DAILY_FIELDS if name != "reach"
    }
    totals["reach"] = max(row["reach"] for row in rows)
    totals["inline_link_clicks"] = totals.pop("link_clicks")
    totals["cpm"] = totals["spend"] / totals["impressions"] * 1000 if totals["impressions"] else 0.0
    totals["date_start"] = rows[0]["date"].isoformat()
    totals["date_stop"] = rows[-1]["date"].isoformat()
    totals["cached_days"] = len(rows)
    return totals


# --- Monthly notes ---


def set_client_name(session: Session, provider_account_id: str, client_name: str) -> AdAccount:
    account = require_account(session, provider_account_id)
    account.client_name = client_name.strip()
    session.commit()
    return account


def get_monthly_report(
    session: Session, provider_account_id: str, month: date | str
) -> dict[str, Any]:
    """Analysis text of a month plus the account's client name.

    A month without a saved report yields empty text.
    """
    account = require_account(session, provider_account_id)
    first_day = month_start(parse_date(month))
    stmt = select(MonthlyReport).where(
        MonthlyReport.ad_account_id == account.id,
        MonthlyReport.month_start == first_day,
    )
    report = session.scalars(stmt).first()
    return {
        "month": first_day.strftime("%Y-%m"),
        "client_name": account.client_name or "",
        "analysis_text": report.analysis_text if report else "",
    }


def upsert_monthly_report(
    session: Session, provider_account_id: str, month: date | str, analysis_text: str
) -> dict[str, Any]:
    account = require_account(session, provider_account_id)
    first_day = month_start(parse_date(month))
    stmt = select(MonthlyReport).where(
        MonthlyReport.ad_account_id == account.id,
        MonthlyReport.month_start == first_day,
    )
    report = session.scalars(stmt).first()
    if report is None:
        report = MonthlyReport(ad_account_id=account.id, month_start=first_day)
        session.add(report)
    report.analysis_text = analysis_text.strip()
    session.commit()
    logger.info("Saved analysis for %s %s", provider_account_id, first_day.strftime("%Y-%m"))
    return get_monthly_report(session, provider_account_id, first_day)


def _comment_dict(row: MonthlyComment) -> dict[str, Any]:
    return {
        "id": row.id,
        "month": row.month_start.strftime("%Y-%m"),
        "headline": row.headline,
        "content": row.content,
        "author": row.author,
        "created_at": row.created_at,
    }


def _require_comment_row(session: Session, comment_id: int) -> MonthlyComment:
    row = session.get(MonthlyComment, comment_id)
    if row is None:
        raise CommentNotFoundError(f"Comment {comment_id} not found")
    return row


def list_comments(
    session: Session, provider_account_id: str, month: date | str
) -> list[dict[str, Any]]:
    """Comments of a month, newest first."""
    account = require_account(session, provider_account_id)
    stmt = (
        select(MonthlyComment)
        .where(
            MonthlyComment.ad_account_id == account.id,
            MonthlyComment.month_start == month_start(parse_date(month)),
        )
        .order_by(MonthlyComment.created_at.desc(), MonthlyComment.id.desc())
    )
    return [_comment_dict(row) for row in session.scalars(stmt)]


def add_comment(
    session: Session,
    provider_account_id: str,
    month: date | str,
    content: str,
    headline: str | None = None,
    author: str = "",
) -> dict[str, Any]:
    if not content or not content.strip():
        raise ValueError("Comment cannot be empty")
    account = require_account(session, provider_account_id)
    row = MonthlyComment(
        ad_account_id=account.id,
        month_start=month_start(parse_date(month)),
        headline=(headline or "").strip() or None,
        content=content.strip(),
        author=author,
    )
    session.add(row)
    session.commit()
    logger.info("Comment %s added to %s %s", row.id, provider_account_id, row.month_start)
    return _comment_dict(row)


def update_comment(
    session: Session, comment_id: int, content: str, headline: str | None = None
) -> dict[str, Any]:
    if not content or not content.strip():
        raise ValueError("Comment cannot be empty")
    row = _require_comment_row(session, comment_id)
    row.content = content.strip()
    row.headline = (headline or "").strip() or None
    session.commit()
    return _comment_dict(row)


def delete_comment(session: Session, comment_id: int) -> None:
    row = _require_comment_row(session, comment_id)
    session.delete(row)
    session.commit()
    logger.info("Deleted comment %s", comment_id)


# --- Goals ---


def _to_goal(row: GoalRow, provider_account_id: str) -> Goal:
    return Goal(
        id=row.id,
        account_id=provider_account_id,
        metric=row.metric,
        target=row.target,
        period=row.period,
        start_date=row.start_date,
        archived=bool(row.archived),
        completed_at=row.completed_at,
        final_value=row.final_value,
        created_at=row.created_at,
    )


def _require_goal_row(session: Session, goal_id: int) -> GoalRow:
    row = session.get(GoalRow, goal_id)
    if row is None:
        raise GoalNotFoundError(f"Goal {goal_id} not found")
    return row


def list_goals(
    session: Session, provider_account_id: str, include_archived: bool = False
) -> list[Goal]:
    account = require_account(session, provider_account_id)
    stmt = select(GoalRow).where(GoalRow.ad_account_id == account.id)
    if not include_archived:
        stmt = stmt.where(GoalRow.archived.is_(False))
    stmt = stmt.order_by(GoalRow.created_at, GoalRow.id)
    return [_to_goal(row, provider_account_id) for row in session.scalars(stmt)]


def get_goal(session: Session, goal_id: int) -> Goal:
    row = _require_goal_row(session, goal_id)
    account = session.get(AdAccount, row.ad_account_id)
    return _to_goal(row, account.provider_account_id)


def save_goal(
    session: Session,
    provider_account_id: str,
    metric: str,
    target: float,
    period: str,
    start_date: date | str | None = None,
    goal_id: int | None = None,
) -> Goal:
    """Create a goal, or update an open one when ``goal_id`` is given."""
    if metric not in METRICS:
        raise ValueError(f"Unknown goal metric: {metric}")
    if period not in PERIODS:
        raise ValueError(f"Unknown goal period: {period}")
    if target is None or not math.isfinite(target) or target <= 0:
        raise ValueError("Goal target must be greater than zero")
    start = parse_date(start_date) if start_date else None

    account = require_account(session, provider_account_id)
    if goal_id is None:
        row = GoalRow(ad_account_id=account.id, archived=False)
        session.add(row)
    else:
        row = _require_goal_row(session, goal_id)
        if row.ad_account_id != account.id:
            raise GoalNotFoundError(f"Goal {goal_id} not found for {provider_account_id}")
        changed = (row.metric, row.target, row.period, row.start_date) != (
            metric,
            target,
            period,
            start,
        )
        if row.completed_at is not None and changed:
            raise GoalFrozenError(f"Goal {goal_id} is completed and can no longer be edited")

    row.metric = metric
    row.target = target
    row.period = period
    row.start_date = start
    session.commit()
    logger.info("Saved %s goal %s: %s >= %s", period, row.id, metric, target)
    return _to_goal(row, provider_account_id)


def delete_goal(session: Session, goal_id: int) -> None:
    row = _require_goal_row(session, goal_id)
    session.delete(row)
    session.commit()
    logger.info("Deleted goal %s", goal_id)


def set_goal_archived(session: Session, goal_id: int, archived: bool) -> Goal:
    """Archiving hides a goal; it does not touch its completion."""
    row = _require_goal_row(session, goal_id)
    row.archived = archived
    session.commit()
    return get_goal(session, goal_id)


def mark_goal_completed(
    session: Session, goal_id: int, completed_at: date, final_value: float
) -> bool:
    """Record the first completion of a goal.

    Only open goals are updated, so a repeated call is a no-op. Returns
    whether this call performed the write.
    """
    stmt = (
        update(GoalRow)
        .where(GoalRow.id == goal_id, GoalRow.completed_at.is_(None))
        .values(completed_at=completed_at, final_value=final_value)
    )
    result = session.execute(stmt)
    session.commit()
    return result.rowcount == 1


class GoalStore:
    """Completion writer handed to the goal evaluator."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def mark_completed(self, goal_id: int, completed_at: date, final_value: float) -> bool:
        try:
            return mark_goal_completed(self.session, goal_id, completed_at, final_value)
        except Exception:
            self.session.rollback()
            raise
