from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_DATABASE_URL = f"sqlite:///{PROJECT_ROOT / 'data' / 'funnel.db'}"
DEFAULT_GOAL_EPOCH = date(2024, 1, 1)


def _require(name: str) -> str:
    val = os.getenv(name, "").strip()
    if not val or val.startswith("your-"):
        print(f"ERROR: environment variable {name} is not set. Check your .env file.")
        sys.exit(1)
    return val


def _parse_epoch(raw: str) -> date:
    if not raw:
        return DEFAULT_GOAL_EPOCH
    try:
        return date.fromisoformat(raw)
    except ValueError:
        print(f"ERROR: GOAL_EPOCH '{raw}' must be a YYYY-MM-DD date")
        sys.exit(1)


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    telegram_chat_id: int
    facebook_app_id: str
    facebook_app_secret: str
    facebook_access_token: str
    ad_account_ids: list[str] = field(default_factory=list)
    database_url: str = DEFAULT_DATABASE_URL
    goal_epoch: date = DEFAULT_GOAL_EPOCH
    timezone: str = "America/Sao_Paulo"
    report_time_hour: int = 9
    log_file: str = ""
    share_base_url: str = ""

    @classmethod
    def load(cls) -> Settings:
        raw_accounts = _require("FB_AD_ACCOUNT_IDS")
        accounts = [a.strip() for a in raw_accounts.split(",") if a.strip()]
        for acct in accounts:
            if not acct.startswith("act_"):
                print(f"ERROR: ad account ID '{acct}' must start with 'act_'")
                sys.exit(1)

        return cls(
            telegram_bot_token=_require("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=int(_require("TELEGRAM_CHAT_ID")),
            facebook_app_id=_require("FACEBOOK_APP_ID"),
            facebook_app_secret=_require("FACEBOOK_APP_SECRET"),
            facebook_access_token=_require("FACEBOOK_ACCESS_TOKEN"),
            ad_account_ids=accounts,
            database_url=os.getenv("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL,
            goal_epoch=_parse_epoch(os.getenv("GOAL_EPOCH", "").strip()),
            timezone=os.getenv("TIMEZONE", "America/Sao_Paulo").strip(),
            report_time_hour=int(os.getenv("REPORT_TIME_HOUR", "9")),
            log_file=os.getenv("LOG_FILE", "").strip(),
            share_base_url=os.getenv("SHARE_BASE_URL", "").strip().rstrip("/"),
        )
