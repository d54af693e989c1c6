#!/usr/bin/env python3
"""Standalone script to build funnel and goal reports and send them via Telegram.

Intended to be run by a scheduler (cron, GitHub Actions), but works locally too.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Allow imports from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import requests

from config.settings import Settings
from src.bot.formatters import format_funnel_report, format_goals
from src.dashboard import service
from src.facebook.client import init_facebook_api
from src.facebook.insights import default_range
from src.main import bootstrap, build_daily_messages, local_today
from src.storage.database import session_scope

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def send_telegram(token: str, chat_id: int, text: str) -> None:
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    resp = requests.post(url, json={
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "MarkdownV2",
    }, timeout=30)
    resp.raise_for_status()
    logger.info("Telegram message sent (chat_id=%s)", chat_id)


def main() -> None:
    parser = argparse.ArgumentParser(description="Send funnel and goal report to Telegram")
    parser.add_argument("--last30", action="store_true", help="Report the last 30 days instead of month to date")
    args = parser.parse_args()

    settings = Settings.load()
    init_facebook_api(settings)
    factory = bootstrap(settings)
    today = local_today(settings.timezone)

    for account_id in settings.ad_account_ids:
        logger.info("Building report for %s ...", account_id)
        try:
            if args.last30:
                with session_scope(factory) as session:
                    payload = service.get_dashboard_funnel(session, account_id, default_range(today))
                    progress = service.get_goals_progress(
                        session, account_id, epoch=settings.goal_epoch, today=today
                    )
                messages = [format_funnel_report(payload), format_goals(account_id, progress)]
            else:
                messages = build_daily_messages(factory, account_id, today, settings.goal_epoch)

            for text in messages:
                send_telegram(settings.telegram_bot_token, settings.telegram_chat_id, text)
        except Exception:
            logger.exception("Failed to process account %s", account_id)

    logger.info("Done.")


if __name__ == "__main__":
    main()
