#!/usr/bin/env python3
"""Write dashboard/data.json: the read-only share view for every account with a share link.

Each entry holds the month-to-date and last 30 days funnels, the daily series,
goal progress and the current month's notes, keyed by public token. Intended
to be run daily.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path

# Allow imports from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import Settings
from src.dashboard import service
from src.facebook.client import init_facebook_api
from src.facebook.insights import default_range
from src.main import bootstrap, local_today, month_to_date
from src.storage import repository
from src.storage.database import session_scope

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

DATA_FILE = Path(__file__).resolve().parent.parent / "dashboard" / "data.json"


def save(data: dict) -> None:
    DATA_FILE.parent.mkdir(parents=True, exist_ok=True)
    DATA_FILE.write_text(json.dumps(data, indent=2) + "\n")


def _funnel_entry(payload: dict) -> dict:
    return {
        "range": payload["range"],
        "funnel": payload["funnel"].as_dict(),
        "funnel_steps": payload["funnel_steps"],
        "warning": payload["warning"],
    }


def _notes_entry(notes: dict) -> dict:
    comments = [
        {**comment, "created_at": comment["created_at"].isoformat()}
        for comment in notes["comments"]
    ]
    return {**notes, "comments": comments}


def build_share_entry(session, public_token: str, today: date, epoch: date) -> dict:
    mtd = service.get_public_dashboard(session, public_token, month_to_date(today), epoch=epoch)
    last30 = service.get_public_dashboard(session, public_token, default_range(today), epoch=epoch)
    daily = service.sync_daily_metrics(
        session, mtd["account"]["id"], default_range(today), today=today
    )
    return {
        "account_name": mtd["account"]["name"],
        "month_to_date": _funnel_entry(mtd),
        "last_30_days": _funnel_entry(last30),
        "daily": [{**row, "date": row["date"].isoformat()} for row in daily],
        "goals": [item.as_dict() for item in mtd["goals"]],
        "notes": _notes_entry(mtd["notes"]),
    }


def main() -> None:
    settings = Settings.load()
    init_facebook_api(settings)
    factory = bootstrap(settings)
    today = local_today(settings.timezone)

    data = {"last_updated": None, "shares": {}}
    with session_scope(factory) as session:
        accounts = [a for a in repository.list_active_accounts(session) if a.public_token]
        for account in accounts:
            logger.info("Exporting share view for %s ...", account.provider_account_id)
            try:
                data["shares"][account.public_token] = build_share_entry(
                    session, account.public_token, today, settings.goal_epoch
                )
            except Exception:
                logger.exception("Failed to export account %s", account.provider_account_id)

    data["last_updated"] = datetime.now(timezone.utc).isoformat()
    save(data)
    logger.info("Share data written to %s", DATA_FILE)


if __name__ == "__main__":
    main()
