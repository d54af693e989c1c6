from __future__ import annotations

import datetime
import logging
import zoneinfo

from sqlalchemy.orm import sessionmaker
from telegram.ext import Application

from config.settings import Settings
from src.bot.formatters import format_error, format_funnel_report, format_goals
from src.bot.handlers import register_handlers
from src.dashboard import service
from src.facebook.client import init_facebook_api
from src.funnel.aggregator import month_start
from src.funnel.models import DateRange
from src.storage import repository
from src.storage.database import create_db_engine, init_db, make_session_factory, session_scope
from src.utils.logger import setup_logger

logger: logging.Logger = None  # type: ignore[assignment]
settings: Settings = None  # type: ignore[assignment]
session_factory: sessionmaker = None  # type: ignore[assignment]


def month_to_date(today: datetime.date) -> DateRange:
    return DateRange(month_start(today), today)


def local_today(timezone: str) -> datetime.date:
    """Calendar day in the report timezone, independent of the host clock."""
    return datetime.datetime.now(zoneinfo.ZoneInfo(timezone)).date()


def build_daily_messages(
    factory: sessionmaker, account_id: str, today: datetime.date, epoch: datetime.date
) -> list[str]:
    """Month-to-date funnel plus goal progress; evaluating goals also records
    completions and the run tops up the daily metrics cache."""
    with session_scope(factory) as session:
        service.sync_daily_metrics(session, account_id, month_to_date(today), today=today)
        payload = service.get_dashboard_funnel(session, account_id, month_to_date(today))
        progress = service.get_goals_progress(
            session, account_id, epoch=epoch, today=today
        )
    return [format_funnel_report(payload), format_goals(account_id, progress)]


async def send_daily_report(context) -> None:
    """Scheduled job: send daily report to the configured chat."""
    logger.info("Running scheduled daily report")
    today = local_today(settings.timezone)
    for acct in settings.ad_account_ids:
        try:
            messages = build_daily_messages(
                session_factory, acct, today, settings.goal_epoch
            )
        except Exception as e:
            logger.error("Daily report error for %s: %s", acct, e)
            messages = [format_error(f"Error for {acct}: {e}")]
        for text in messages:
            await context.bot.send_message(
                chat_id=settings.telegram_chat_id,
                text=text,
                parse_mode="MarkdownV2",
            )
    logger.info("Daily report sent")


def bootstrap(cfg: Settings) -> sessionmaker:
    """Prepare the database and register configured accounts."""
    engine = create_db_engine(cfg.database_url)
    init_db(engine)
    factory = make_session_factory(engine)
    with session_scope(factory) as session:
        for acct in cfg.ad_account_ids:
            repository.upsert_account(session, acct)
    return factory


def main() -> None:
    global logger, settings, session_factory

    settings = Settings.load()
    logger = setup_logger(log_file=settings.log_file)
    logger.info("Starting Funnel Dashboard bot")

    init_facebook_api(settings)
    session_factory = bootstrap(settings)

    app = Application.builder().token(settings.telegram_bot_token).build()

    register_handlers(app, settings, session_factory)

    # Schedule daily report
    tz = zoneinfo.ZoneInfo(settings.timezone)
    report_time = datetime.time(
        hour=settings.report_time_hour, minute=0, tzinfo=tz
    )
    app.job_queue.run_daily(
        send_daily_report,
        time=report_time,
        name="daily_report",
    )
    logger.info(
        "Daily report scheduled at %02d:00 %s",
        settings.report_time_hour,
        settings.timezone,
    )

    logger.info("Bot is running. Press Ctrl+C to stop.")
    app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
