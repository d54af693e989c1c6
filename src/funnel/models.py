from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from src.utils.errors import InvalidRangeError

METRICS = (
    "followers",
    "conversations",
    "impressions",
    "reach",
    "spend",
    "profile_visits",
    "scheduled",
    "showed",
)
PERIODS = ("monthly", "total")

# Goal metric -> column of the monthly manual record
MANUAL_FIELDS = {
    "followers": "new_followers",
    "scheduled": "appointments_scheduled",
    "showed": "appointments_showed",
}

# Metrics the ad platform can sum over a period
EXTERNAL_METRICS = (
    "followers",
    "conversations",
    "impressions",
    "reach",
    "spend",
    "profile_visits",
)

METRIC_LABELS = {
    "followers": "Followers",
    "conversations": "Conversations",
    "impressions": "Impressions",
    "reach": "Reach",
    "spend": "Spend",
    "profile_visits": "Profile visits",
    "scheduled": "Appointments scheduled",
    "showed": "Appointments showed",
}


@dataclass(frozen=True)
class DateRange:
    since: date
    until: date

    def __post_init__(self) -> None:
        if self.since is None or self.until is None:
            raise InvalidRangeError("Date range needs both since and until")
        if self.since > self.until:
            raise InvalidRangeError(
                f"Invalid range: since {self.since} is after until {self.until}"
            )

    @property
    def days(self) -> int:
        return (self.until - self.since).days + 1

    def as_params(self) -> dict[str, str]:
        """Meta Graph API time_range payload."""
        return {
            "since": self.since.strftime("%Y-%m-%d"),
            "until": self.until.strftime("%Y-%m-%d"),
        }


@dataclass(frozen=True)
class MonthlyMetricRecord:
    account_id: str
    month_start: date
    new_followers: int | None = None
    appointments_scheduled: int | None = None
    appointments_showed: int | None = None


@dataclass(frozen=True)
class ManualTotals:
    new_followers: int | None = None
    appointments_scheduled: int | None = None
    appointments_showed: int | None = None

    def for_metric(self, metric: str) -> int | None:
        column = MANUAL_FIELDS.get(metric)
        if column is None:
            return None
        return getattr(self, column)


@dataclass(frozen=True)
class AggregatedFunnelResult:
    impressions: int | None = None
    reach: int | None = None
    profile_views: int | None = None
    new_followers: int | None = None
    scheduled: int | None = None
    showed: int | None = None

    def as_dict(self) -> dict[str, int | None]:
        return {
            "impressions": self.impressions,
            "reach": self.reach,
            "profile_views": self.profile_views,
            "new_followers": self.new_followers,
            "scheduled": self.scheduled,
            "showed": self.showed,
        }


@dataclass
class Goal:
    id: int | None
    account_id: str
    metric: str
    target: float
    period: str
    start_date: date | None = None
    archived: bool = False
    completed_at: date | None = None
    final_value: float | None = None
    created_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class GoalProgress:
    goal: Goal
    current: float
    period_current: float = 0
    completed_at: date | None = None
    final_value: float | None = None
    persisted: bool = True
    notes: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    @property
    def percentage(self) -> float:
        target = self.goal.target or 1
        return min(100.0, max(0.0, self.current / target * 100))

    def as_dict(self) -> dict:
        return {
            "id": self.goal.id,
            "metric": self.goal.metric,
            "target": self.goal.target,
            "period": self.goal.period,
            "start_date": self.goal.start_date.isoformat() if self.goal.start_date else None,
            "archived": self.goal.archived,
            "current": self.current,
            "period_current": self.period_current,
            "percentage": round(self.percentage, 1),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "final_value": self.final_value,
        }
