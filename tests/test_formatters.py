from __future__ import annotations

from datetime import date

from src.bot import formatters
from src.funnel.models import AggregatedFunnelResult, Goal, GoalProgress, MonthlyMetricRecord
from src.storage.repository import DEFAULT_FUNNEL_STEPS


def payload(**overrides):
    base = {
        "account": {"id": "act_123", "name": "Clinic"},
        "range": {"since": "2025-12-15", "until": "2025-12-31"},
        "insights": {"spend": 1234.5, "conversations": 12},
        "funnel": AggregatedFunnelResult(1000, 800, 200, 50, None, None),
        "funnel_steps": DEFAULT_FUNNEL_STEPS,
        "warning": None,
    }
    base.update(overrides)
    return base


def test_escape():
    assert formatters._esc("a.b-c(d)") == "a\\.b\\-c\\(d\\)"


def test_number():
    assert formatters._number(None) == "—"
    assert formatters._number(1234) == "1,234"
    assert formatters._number(12.0) == "12"
    assert formatters._number(12.5) == "12.50"


def test_funnel_report_shows_missing_steps_as_dash():
    text = formatters.format_funnel_report(payload())
    assert "Impressions: *1,000*" in text
    assert "Reach: *800* \\(80\\.0%\\)" in text
    assert "Scheduled: *—*" in text
    assert "Spend: *$1,234\\.50*" in text


def test_funnel_report_warning_without_insights():
    text = formatters.format_funnel_report(
        payload(insights=None, funnel=AggregatedFunnelResult(scheduled=3), warning="Token expired")
    )
    assert "Spend" not in text
    assert "⚠️ Token expired" in text


def test_goal_line_completed():
    goal = Goal(1, "act_123", "scheduled", 10, "total", date(2025, 1, 1))
    item = GoalProgress(goal, current=13, completed_at=date(2025, 2, 28), final_value=13)
    line = formatters.format_goal_line(item)
    assert "▓" * 10 in line
    assert "13 / 10" in line
    assert "🏆 Reached in Feb 2025" in line
    assert "not saved" not in line


def test_goal_line_unsaved_and_notes():
    goal = Goal(2, "act_123", "followers", 100, "monthly")
    item = GoalProgress(
        goal,
        current=50,
        completed_at=date(2025, 3, 31),
        persisted=False,
        notes=["followers unavailable for 2025-03"],
    )
    line = formatters.format_goal_line(item)
    assert "▓" * 5 + "░" * 5 in line
    assert "not saved yet" in line
    assert "followers unavailable for 2025\\-03" in line


def test_goals_empty():
    assert "No goals yet" in formatters.format_goals("act_123", [])


def test_monthly_notes():
    notes = {
        "month": "2025-03",
        "client_name": "Glow Clinic",
        "analysis_text": "Cost per lead down 12.5%",
        "comments": [
            {"id": 7, "headline": "Promo", "content": "Launched Friday", "author": "Ana"},
            {"id": 6, "headline": None, "content": "Slow week", "author": ""},
        ],
    }
    text = formatters.format_monthly_notes("act_123", notes)
    assert text.startswith("📝 *Glow Clinic* \\- 2025\\-03")
    assert "Cost per lead down 12\\.5%" in text
    assert "*Comments* \\(2\\)" in text
    assert "\\#7 *Promo* \\- Ana" in text
    assert "\\#6\nSlow week" in text


def test_monthly_notes_empty():
    text = formatters.format_monthly_notes(
        "act_123", {"month": "2025-03", "client_name": "", "analysis_text": "", "comments": []}
    )
    assert "act\\_123" in text
    assert "_No analysis yet_" in text
    assert "Comments" not in text


def test_month_metrics():
    record = MonthlyMetricRecord("act_123", date(2025, 3, 1), new_followers=1200, appointments_showed=0)
    text = formatters.format_month_metrics("act_123", "2025-03", record)
    assert "New followers: *1,200*" in text
    assert "Scheduled: *—*" in text
    assert "Showed: *0*" in text
    assert "Showed: *—*" in formatters.format_month_metrics("act_123", "2025-03", None)


def test_funnel_steps():
    text = formatters.format_funnel_steps(
        "act_123", [{"metric": "reach"}, {"metric": "profile_visits"}]
    )
    assert "1\\. Reach" in text
    assert "2\\. Profile visits" in text
