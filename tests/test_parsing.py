from __future__ import annotations

from datetime import date

import pytest

from src.bot.parsing import (
    UsageError,
    parse_goal,
    parse_comment,
    parse_funnel_steps,
    parse_goal_id,
    parse_metric_value,
    parse_month,
    parse_month_text,
    parse_range,
    resolve_account,
)
from src.funnel.models import DateRange


def test_resolve_account_single():
    assert resolve_account(["2025-01"], ["act_1"]) == ("act_1", ["2025-01"])


def test_resolve_account_explicit():
    assert resolve_account(["act_2", "x"], ["act_1", "act_2"]) == ("act_2", ["x"])
    with pytest.raises(UsageError):
        resolve_account(["act_9"], ["act_1", "act_2"])
    with pytest.raises(UsageError):
        resolve_account([], ["act_1", "act_2"])


def test_parse_range():
    assert parse_range([]) is None
    assert parse_range(["2025-01-01", "2025-01-31"]) == DateRange(date(2025, 1, 1), date(2025, 1, 31))
    with pytest.raises(UsageError):
        parse_range(["2025-02-01", "2025-01-01"])
    with pytest.raises(UsageError):
        parse_range(["2025-02-01"])


def test_parse_month():
    assert parse_month("2025-12") == date(2025, 12, 1)
    assert parse_month("2025-12-15") == date(2025, 12, 1)
    with pytest.raises(UsageError):
        parse_month("december")


def test_parse_metric_value():
    assert parse_metric_value("followers", "62") == ("new_followers", 62)
    assert parse_metric_value("Showed", "-") == ("appointments_showed", None)
    assert parse_metric_value("scheduled", "0") == ("appointments_scheduled", 0)
    for field, raw in (("likes", "1"), ("followers", "1.5"), ("followers", "-3")):
        with pytest.raises(UsageError):
            parse_metric_value(field, raw)


def test_parse_goal():
    assert parse_goal(["followers", "1,000", "total", "2025-01-01"]) == {
        "metric": "followers",
        "target": 1000.0,
        "period": "total",
        "start_date": date(2025, 1, 1),
    }
    assert parse_goal(["scheduled", "40", "monthly"])["start_date"] is None


@pytest.mark.parametrize(
    "args",
    [
        ["likes", "10", "total"],
        ["followers", "abc", "total"],
        ["followers", "0", "total"],
        ["followers", "nan", "total"],
        ["followers", "inf", "total"],
        ["followers", "-inf", "total"],
        ["followers", "10", "weekly"],
        ["followers", "10"],
        ["followers", "10", "total", "someday"],
    ],
)
def test_parse_goal_rejects(args):
    with pytest.raises(UsageError):
        parse_goal(args)


def test_parse_goal_id():
    assert parse_goal_id(["3"]) == 3
    assert parse_goal_id(["#3"]) == 3
    with pytest.raises(UsageError):
        parse_goal_id(["three"])


def test_parse_goal_id_names_the_thing():
    with pytest.raises(UsageError, match="comment number"):
        parse_goal_id([], noun="comment")


def test_parse_month_text():
    assert parse_month_text(["2025-03", "Good", "month"], "usage") == (date(2025, 3, 1), "Good month")
    assert parse_month_text(["2025-03"], "usage") == (date(2025, 3, 1), "")
    with pytest.raises(UsageError, match="usage"):
        parse_month_text([], "usage")


def test_parse_comment():
    assert parse_comment(["2025-03", "Slow", "week"]) == (date(2025, 3, 1), None, "Slow week")
    assert parse_comment(["2025-03", "Promo", "|", "Launched", "Friday"]) == (
        date(2025, 3, 1),
        "Promo",
        "Launched Friday",
    )
    assert parse_comment(["2025-03", "|", "No", "headline"]) == (date(2025, 3, 1), None, "No headline")


@pytest.mark.parametrize("args", [[], ["2025-03"], ["2025-03", "Promo", "|"], ["march", "text"]])
def test_parse_comment_rejects(args):
    with pytest.raises(UsageError):
        parse_comment(args)


def test_parse_funnel_steps():
    assert parse_funnel_steps(["Impressions", "visits", "scheduled"]) == [
        {"metric": "impressions"},
        {"metric": "profile_visits"},
        {"metric": "scheduled"},
    ]
    with pytest.raises(UsageError):
        parse_funnel_steps(["clicks"])
    with pytest.raises(UsageError):
        parse_funnel_steps(["reach", "reach"])
