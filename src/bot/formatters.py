from __future__ import annotations

from typing import Any

from src.funnel.models import METRIC_LABELS, AggregatedFunnelResult, GoalProgress

# Funnel step metric -> attribute on AggregatedFunnelResult
_STEP_FIELDS = {
    "impressions": ("Impressions", "impressions"),
    "reach": ("Reach", "reach"),
    "profile_visits": ("Profile visits", "profile_views"),
    "followers": ("New followers", "new_followers"),
    "scheduled": ("Scheduled", "scheduled"),
    "showed": ("Showed", "showed"),
}

BAR_WIDTH = 10


def format_funnel_report(payload: dict[str, Any]) -> str:
    account = payload["account"]
    funnel: AggregatedFunnelResult = payload["funnel"]
    rng = payload["range"]

    lines = [
        f"*{_esc(account['name'] or account['id'])}*  \\(`{_esc(account['id'])}`\\)",
        f"{_esc(rng['since'])} → {_esc(rng['until'])}",
        "",
    ]

    previous = None
    for step in payload.get("funnel_steps", []):
        label, attr = _STEP_FIELDS[step["metric"]]
        value = getattr(funnel, attr)
        line = f"{label}: *{_esc(_number(value))}*"
        if value is not None and previous:
            line += f" \\({_esc(f'{value / previous * 100:.1f}')}%\\)"
        lines.append(line)
        previous = value

    insights = payload.get("insights")
    if insights:
        lines.append("")
        spend = _esc(f"${insights['spend']:,.2f}")
        lines.append(f"Spend: *{spend}*")
        lines.append(f"Conversations: *{_esc(_number(insights.get('conversations')))}*")

    if payload.get("warning"):
        lines.append("")
        lines.append(f"⚠️ {_esc(payload['warning'])}")

    return "\n".join(lines)


def format_goals(account_id: str, progress: list[GoalProgress]) -> str:
    if not progress:
        return f"*{_esc(account_id)}*\nNo goals yet\\. Add one with /addgoal\\."

    lines = [f"🎯 *Goals* \\(`{_esc(account_id)}`\\)", ""]
    for item in progress:
        lines.append(format_goal_line(item))
    return "\n".join(lines)


def format_goal_line(item: GoalProgress) -> str:
    goal = item.goal
    label = METRIC_LABELS.get(goal.metric, goal.metric)
    period = "monthly" if goal.period == "monthly" else "total"
    if goal.start_date:
        period += f" from {goal.start_date.isoformat()}"

    filled = int(item.percentage / 100 * BAR_WIDTH)
    bar = "▓" * filled + "░" * (BAR_WIDTH - filled)

    head = f"\\#{goal.id} *{_esc(label)}* \\({_esc(period)}\\)"
    if goal.archived:
        head += " 🗄"
    body = (
        f"{bar} {_esc(_number(item.current))} / {_esc(_number(goal.target))} "
        f"\\({_esc(f'{item.percentage:.1f}')}%\\)"
    )
    lines = [head, body]
    if item.period_current:
        lines.append(f"\\+{_esc(_number(item.period_current))} in selected period")
    if item.completed:
        when = item.completed_at.strftime("%b %Y")
        suffix = "" if item.persisted else " \\(not saved yet\\)"
        lines.append(f"🏆 Reached in {_esc(when)}{suffix}")
    for note in item.notes:
        lines.append(f"⚠️ {_esc(note)}")
    return "\n".join(lines) + "\n"


def format_monthly_notes(account_id: str, notes: dict[str, Any]) -> str:
    title = notes.get("client_name") or account_id
    lines = [f"📝 *{_esc(title)}* \\- {_esc(notes['month'])}", ""]

    analysis = notes.get("analysis_text")
    lines.append(_esc(analysis) if analysis else "_No analysis yet_")

    comments = notes.get("comments") or []
    if comments:
        lines.append("")
        lines.append(f"*Comments* \\({len(comments)}\\)")
    for comment in comments:
        head = f"\\#{comment['id']}"
        if comment.get("headline"):
            head += f" *{_esc(comment['headline'])}*"
        if comment.get("author"):
            head += f" \\- {_esc(comment['author'])}"
        lines.append(head)
        lines.append(_esc(comment["content"]))
    return "\n".join(lines)


def format_month_metrics(account_id: str, month: str, record) -> str:
    """Manual values entered for one month; ``record`` may be None."""
    lines = [f"*{_esc(account_id)}* \\- {_esc(month)}"]
    for label, attr in (
        ("New followers", "new_followers"),
        ("Scheduled", "appointments_scheduled"),
        ("Showed", "appointments_showed"),
    ):
        value = getattr(record, attr) if record is not None else None
        lines.append(f"{label}: *{_esc(_number(value))}*")
    return "\n".join(lines)


def format_funnel_steps(account_id: str, steps: list[dict[str, str]]) -> str:
    lines = [f"🔻 *Funnel steps* \\(`{_esc(account_id)}`\\)"]
    for i, step in enumerate(steps, 1):
        label = _STEP_FIELDS[step["metric"]][0]
        lines.append(f"{i}\\. {_esc(label)}")
    return "\n".join(lines)


def format_success(msg: str) -> str:
    return f"✅ {_esc(msg)}"


def format_error(msg: str) -> str:
    return f"❌ {_esc(msg)}"


# --- Helpers ---


def _esc(text: str) -> str:
    """Escape MarkdownV2 special characters."""
    special = r"_*[]()~`>#+-=|{}.!"
    out = []
    for ch in str(text):
        if ch in special:
            out.append(f"\\{ch}")
        else:
            out.append(ch)
    return "".join(out)


def _number(value: float | int | None) -> str:
    """Thousands-separated number, or an em dash when there is no data."""
    if value is None:
        return "—"
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.2f}"
    return f"{int(value):,}"
