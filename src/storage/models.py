from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from src.storage.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdAccount(Base):
    __tablename__ = "ad_accounts"

    id = Column(Integer, primary_key=True)
    provider_account_id = Column(String, unique=True, nullable=False, index=True)  # act_...
    name = Column(String, nullable=False, default="")
    client_name = Column(String, nullable=False, default="")  # shown on reports and share links
    status = Column(String, nullable=False, default="active")  # active, error, inactive
    public_token = Column(String, unique=True, nullable=True, index=True)
    dashboard_config = Column(JSON, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<AdAccount(provider_account_id={self.provider_account_id}, name={self.name}, status={self.status})>"


class MonthlyFunnelMetric(Base):
    __tablename__ = "monthly_funnel_metrics"

    id = Column(Integer, primary_key=True)
    ad_account_id = Column(Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False)
    month_start = Column(Date, nullable=False)  # first day of the month

    # NULL means "not entered yet", distinct from 0
    new_followers = Column(Integer, nullable=True)
    appointments_scheduled = Column(Integer, nullable=True)
    appointments_showed = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("ad_account_id", "month_start", name="uix_funnel_account_month"),
    )


class GoalRow(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True)
    ad_account_id = Column(Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    metric = Column(String, nullable=False)
    target = Column(Float, nullable=False)
    period = Column(String, nullable=False)  # 'monthly', 'total'
    start_date = Column(Date, nullable=True)
    archived = Column(Boolean, nullable=False, default=False)

    # Set once, together, when the target is first reached
    completed_at = Column(Date, nullable=True)
    final_value = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class DailyMetric(Base):
    """Per-day Meta insights; serves as fallback when the API is unavailable."""

    __tablename__ = "daily_metrics"

    id = Column(Integer, primary_key=True)
    ad_account_id = Column(Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)

    spend = Column(Float, nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    link_clicks = Column(Integer, nullable=False, default=0)
    reach = Column(Integer, nullable=False, default=0)
    profile_visits = Column(Integer, nullable=False, default=0)
    followers = Column(Integer, nullable=False, default=0)
    conversations = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("ad_account_id", "date", name="uix_daily_account_date"),
    )


class MonthlyReport(Base):
    __tablename__ = "monthly_reports"

    id = Column(Integer, primary_key=True)
    ad_account_id = Column(Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False)
    month_start = Column(Date, nullable=False)
    analysis_text = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("ad_account_id", "month_start", name="uix_report_account_month"),
    )


class MonthlyComment(Base):
    __tablename__ = "monthly_comments"

    id = Column(Integer, primary_key=True)
    ad_account_id = Column(Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    month_start = Column(Date, nullable=False)
    headline = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    author = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
