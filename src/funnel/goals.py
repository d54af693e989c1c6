"""Goal progress evaluation.

A goal is OPEN until its accumulated value first reaches the target, at
which point it becomes COMPLETED: ``completed_at`` is set to the end of the
month where the crossing happened and ``final_value`` keeps the value at
that moment. Completed goals are never recomputed.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Protocol

from src.funnel.aggregator import (
    aggregate_monthly_metrics,
    iter_months,
    month_end,
    month_start,
)
from src.funnel.models import (
    EXTERNAL_METRICS,
    DateRange,
    Goal,
    GoalProgress,
    MonthlyMetricRecord,
)

logger = logging.getLogger("funnel-dashboard")


class MetricSource(Protocol):
    def get_metric_sum(self, metric: str, since: date, until: date) -> float: ...


class CompletionStore(Protocol):
    def mark_completed(
        self, goal_id: int, completed_at: date, final_value: float
    ) -> bool: ...


def _normalize(value: float) -> float | int:
    if float(value).is_integer():
        return int(value)
    return round(value, 2)


class GoalEvaluator:
    """Evaluates the goals of one account within one request.

    ``records`` is the account's manual monthly data, fetched once and shared
    read-only across goals. ``metric_source`` and ``goal_store`` are optional:
    without a source only manual data counts, without a store completions
    are reported but not persisted.
    """

    def __init__(
        self,
        records: Sequence[MonthlyMetricRecord],
        metric_source: MetricSource | None = None,
        goal_store: CompletionStore | None = None,
        epoch: date = date(2024, 1, 1),
        today: date | None = None,
    ) -> None:
        self.records = tuple(records)
        self.metric_source = metric_source
        self.goal_store = goal_store
        self.epoch = epoch
        self.today = today or date.today()

    # --- Public API ---

    def evaluate(
        self, goal: Goal, selected_range: DateRange | None = None
    ) -> GoalProgress:
        if goal.is_completed:
            return GoalProgress(
                goal=goal,
                current=goal.final_value if goal.final_value is not None else 0,
                completed_at=goal.completed_at,
                final_value=goal.final_value,
            )

        notes: list[str] = []
        if goal.period == "monthly":
            progress = self._evaluate_monthly(goal, notes)
        elif goal.period == "total":
            progress = self._evaluate_total(goal, notes)
        else:
            raise ValueError(f"Unknown goal period: {goal.period}")

        if selected_range is not None:
            progress.period_current = self._period_value(goal, selected_range, notes)
        progress.notes = notes
        return progress

    def evaluate_goals(
        self, goals: Iterable[Goal], selected_range: DateRange | None = None
    ) -> list[GoalProgress]:
        return [self.evaluate(goal, selected_range) for goal in goals]

    # --- Periods ---

    def _evaluate_monthly(self, goal: Goal, notes: list[str]) -> GoalProgress:
        reference = goal.start_date or self.today
        start = month_start(reference)
        window = DateRange(start, month_end(start))
        accumulated = self._window_value(goal.metric, window, notes)

        progress = GoalProgress(goal=goal, current=accumulated)
        if accumulated >= goal.target:
            self._complete(progress, window.until, accumulated)
        return progress

    def _evaluate_total(self, goal: Goal, notes: list[str]) -> GoalProgress:
        start = goal.start_date or self.epoch
        running: float | int = 0
        progress = GoalProgress(goal=goal, current=0)

        for first_day in iter_months(start, self.today):
            window = DateRange(max(start, first_day), month_end(first_day))
            running = _normalize(running + self._window_value(goal.metric, window, notes))
            if running >= goal.target:
                progress.current = running
                self._complete(progress, window.until, running)
                return progress

        progress.current = running
        return progress

    def _period_value(
        self, goal: Goal, selected_range: DateRange, notes: list[str]
    ) -> float | int:
        since = selected_range.since
        if goal.period == "total" and goal.start_date and goal.start_date > since:
            since = goal.start_date
        if since > selected_range.until:
            return 0
        return self._window_value(goal.metric, DateRange(since, selected_range.until), notes)

    # --- Accumulation ---

    def _window_value(
        self, metric: str, window: DateRange, notes: list[str]
    ) -> float | int:
        manual = aggregate_monthly_metrics(window, self.records).for_metric(metric)

        external: float = 0
        # Manual follower counts replace the platform's estimate
        use_external = metric in EXTERNAL_METRICS and not (
            metric == "followers" and manual is not None
        )
        until = min(window.until, self.today)
        if use_external and self.metric_source is not None and until >= window.since:
            try:
                external = float(
                    self.metric_source.get_metric_sum(metric, window.since, until)
                )
            except Exception as e:
                logger.warning(
                    "Metric source failed for %s %s..%s, counting 0: %s",
                    metric,
                    window.since,
                    until,
                    e,
                )
                notes.append(f"{metric} unavailable for {window.since:%Y-%m}")

        return _normalize((manual or 0) + external)

    # --- Completion ---

    def _complete(
        self, progress: GoalProgress, completed_at: date, value: float | int
    ) -> None:
        goal = progress.goal
        progress.completed_at = completed_at
        progress.final_value = value

        if self.goal_store is None or goal.id is None:
            progress.persisted = False
            return

        try:
            changed = self.goal_store.mark_completed(goal.id, completed_at, value)
        except Exception:
            logger.exception("Failed to persist completion of goal %s", goal.id)
            progress.persisted = False
            return

        if not changed:
            logger.info("Goal %s was already completed in the store", goal.id)
            return

        logger.info(
            "Goal %s (%s) completed at %s with %s",
            goal.id,
            goal.metric,
            completed_at,
            value,
        )
        goal.completed_at = completed_at
        goal.final_value = value
