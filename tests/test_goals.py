from __future__ import annotations

from datetime import date

import pytest

from src.funnel.goals import GoalEvaluator
from src.funnel.models import DateRange, Goal, MonthlyMetricRecord

TODAY = date(2025, 4, 15)


def record(month: str, followers=None, scheduled=None, showed=None) -> MonthlyMetricRecord:
    return MonthlyMetricRecord(
        account_id="act_123",
        month_start=date.fromisoformat(month),
        new_followers=followers,
        appointments_scheduled=scheduled,
        appointments_showed=showed,
    )


def goal(metric="scheduled", target=10, period="total", start=date(2025, 1, 1), **kwargs) -> Goal:
    return Goal(id=1, account_id="act_123", metric=metric, target=target, period=period, start_date=start, **kwargs)


class FakeSource:
    def __init__(self, per_month: float = 0, fail_months: tuple[int, ...] = ()):
        self.per_month = per_month
        self.fail_months = fail_months
        self.calls: list[tuple[str, date, date]] = []

    def get_metric_sum(self, metric, since, until):
        self.calls.append((metric, since, until))
        if since.month in self.fail_months:
            raise ConnectionError("meta down")
        return self.per_month


class ExplodingSource:
    def get_metric_sum(self, metric, since, until):
        raise AssertionError("source must not be called")


class FakeStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.rows: dict[int, tuple[date, float]] = {}
        self.calls = 0

    def mark_completed(self, goal_id, completed_at, final_value):
        self.calls += 1
        if self.fail:
            raise RuntimeError("db down")
        if goal_id in self.rows:
            return False
        self.rows[goal_id] = (completed_at, final_value)
        return True


def test_total_goal_completes_in_crossing_month():
    records = [record("2025-01-01", scheduled=5), record("2025-02-01", scheduled=8), record("2025-03-01", scheduled=20)]
    store = FakeStore()
    progress = GoalEvaluator(records, goal_store=store, today=TODAY).evaluate(goal())

    assert progress.completed_at == date(2025, 2, 28)
    assert progress.final_value == 13
    assert progress.current == 13
    assert progress.persisted
    assert store.rows == {1: (date(2025, 2, 28), 13)}


def test_total_goal_stops_iterating_after_crossing():
    source = FakeSource(per_month=6)
    evaluator = GoalEvaluator([], metric_source=source, goal_store=FakeStore(), today=TODAY)
    progress = evaluator.evaluate(goal(metric="conversations"))

    assert progress.final_value == 12
    assert [since for _, since, _ in source.calls] == [date(2025, 1, 1), date(2025, 2, 1)]


def test_total_goal_first_month_starts_at_start_date():
    records = [record("2025-01-01", scheduled=31)]
    progress = GoalEvaluator(records, today=TODAY).evaluate(
        goal(target=100, start=date(2025, 1, 22))
    )
    # Jan 22..31 is 10 of 31 days
    assert progress.current == 10
    assert progress.completed_at is None


def test_total_goal_without_start_uses_epoch():
    records = [record("2024-06-01", scheduled=4), record("2025-02-01", scheduled=4)]
    evaluator = GoalEvaluator(records, epoch=date(2024, 1, 1), today=TODAY)
    progress = evaluator.evaluate(goal(target=100, start=None))
    assert progress.current == 8


def test_total_goal_starting_in_future_is_zero():
    progress = GoalEvaluator([], today=TODAY).evaluate(goal(start=date(2025, 6, 1)))
    assert progress.current == 0
    assert not progress.completed


def test_monthly_goal_uses_start_date_month():
    records = [record("2025-03-01", scheduled=4), record("2025-04-01", scheduled=50)]
    store = FakeStore()
    progress = GoalEvaluator(records, goal_store=store, today=TODAY).evaluate(
        goal(target=4, period="monthly", start=date(2025, 3, 10))
    )
    assert progress.current == 4
    assert progress.completed_at == date(2025, 3, 31)
    assert store.rows[1] == (date(2025, 3, 31), 4)


def test_monthly_goal_defaults_to_current_month():
    records = [record("2025-04-01", scheduled=3)]
    source = FakeSource(per_month=2)
    progress = GoalEvaluator(records, metric_source=source, today=TODAY).evaluate(
        goal(metric="conversations", target=5, period="monthly", start=None)
    )
    assert progress.current == 2
    # Platform sums never run past today
    assert source.calls == [("conversations", date(2025, 4, 1), TODAY)]


def test_monthly_goal_not_reached_stays_open():
    records = [record("2025-03-01", scheduled=3)]
    store = FakeStore()
    progress = GoalEvaluator(records, goal_store=store, today=TODAY).evaluate(
        goal(target=4, period="monthly", start=date(2025, 3, 1))
    )
    assert progress.current == 3
    assert not progress.completed
    assert store.calls == 0


def test_completed_goal_is_read_only():
    done = goal(completed_at=date(2025, 2, 28), final_value=13)
    store = FakeStore(fail=True)
    evaluator = GoalEvaluator(
        [record("2025-01-01", scheduled=500)],
        metric_source=ExplodingSource(),
        goal_store=store,
        today=TODAY,
    )
    for _ in range(3):
        progress = evaluator.evaluate(done, DateRange(date(2025, 1, 1), date(2025, 1, 31)))
        assert progress.completed_at == date(2025, 2, 28)
        assert progress.final_value == 13
        assert progress.current == 13
    assert store.calls == 0


def test_repeated_evaluation_never_changes_completion():
    records = [record("2025-01-01", scheduled=5), record("2025-02-01", scheduled=8)]
    store = FakeStore()
    target = goal()
    first = GoalEvaluator(records, goal_store=store, today=TODAY).evaluate(target)

    corrected = [record("2025-01-01", scheduled=50)]
    second = GoalEvaluator(corrected, goal_store=store, today=TODAY).evaluate(target)

    assert (first.completed_at, first.final_value) == (second.completed_at, second.final_value)
    assert store.calls == 1


def test_redetecting_same_crossing_does_not_rewrite():
    records = [record("2025-01-01", scheduled=5), record("2025-02-01", scheduled=8)]
    store = FakeStore()
    GoalEvaluator(records, goal_store=store, today=TODAY).evaluate(goal())
    # A second pass that loaded the goal before the first write landed
    progress = GoalEvaluator(records, goal_store=store, today=TODAY).evaluate(goal())

    assert store.calls == 2
    assert store.rows == {1: (date(2025, 2, 28), 13)}
    assert progress.final_value == 13


def test_persistence_failure_keeps_goal_open():
    records = [record("2025-01-01", scheduled=5), record("2025-02-01", scheduled=8)]
    target = goal()
    progress = GoalEvaluator(records, goal_store=FakeStore(fail=True), today=TODAY).evaluate(target)

    assert progress.completed_at == date(2025, 2, 28)
    assert progress.final_value == 13
    assert not progress.persisted
    assert target.completed_at is None

    retry_store = FakeStore()
    retry = GoalEvaluator(records, goal_store=retry_store, today=TODAY).evaluate(target)
    assert retry.persisted
    assert retry_store.rows == {1: (date(2025, 2, 28), 13)}
    assert target.completed_at == date(2025, 2, 28)


def test_external_failure_counts_zero_and_keeps_manual():
    records = [record("2025-01-01", followers=5)]
    source = FakeSource(per_month=3, fail_months=(2,))
    progress = GoalEvaluator(records, metric_source=source, today=TODAY).evaluate(
        goal(metric="followers", target=100, start=date(2025, 1, 1))
    )
    # Jan manual 5 (platform skipped), Feb failed -> 0, Mar 3, Apr 3
    assert progress.current == 11
    assert progress.notes == ["followers unavailable for 2025-02"]


def test_manual_followers_replace_platform_followers():
    records = [record("2025-03-01", followers=7)]
    source = FakeSource(per_month=100)
    progress = GoalEvaluator(records, metric_source=source, today=TODAY).evaluate(
        goal(metric="followers", target=1000, period="monthly", start=date(2025, 3, 5))
    )
    assert progress.current == 7
    assert source.calls == []


def test_manual_only_metric_ignores_source():
    records = [record("2025-03-01", showed=2)]
    progress = GoalEvaluator(records, metric_source=ExplodingSource(), today=TODAY).evaluate(
        goal(metric="showed", target=5, period="monthly", start=date(2025, 3, 1))
    )
    assert progress.current == 2


def test_period_current_for_selected_range():
    source = FakeSource(per_month=4)
    evaluator = GoalEvaluator([], metric_source=source, today=TODAY)
    progress = evaluator.evaluate(
        goal(metric="conversations", target=100, start=date(2025, 3, 1)),
        DateRange(date(2025, 2, 1), date(2025, 3, 31)),
    )
    assert progress.current == 8  # March + April
    assert progress.period_current == 4  # clipped to the goal start
    assert progress.percentage == pytest.approx(8.0)


def test_evaluate_goals_keeps_order():
    records = [record("2025-03-01", scheduled=4)]
    goals = [
        goal(target=1, period="monthly", start=date(2025, 3, 1)),
        Goal(id=2, account_id="act_123", metric="showed", target=1, period="total", start_date=date(2025, 1, 1)),
    ]
    result = GoalEvaluator(records, today=TODAY).evaluate_goals(goals)
    assert [p.goal.id for p in result] == [1, 2]
    assert result[0].completed
    assert not result[1].completed


def test_unknown_period_raises():
    with pytest.raises(ValueError):
        GoalEvaluator([], today=TODAY).evaluate(goal(period="weekly"))
