"""Meta Marketing API access.

Every insights read goes through :func:`fetch_insights`, which turns SDK
errors into the project's error types and waits out throttling before
giving up.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from facebook_business.adobjects.adaccount import AdAccount
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError

from src.utils.errors import (
    FunnelDashboardError,
    InvalidAccountError,
    PermissionError_,
    RateLimitError,
    TokenExpiredError,
)

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger("funnel-dashboard")

MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 5


def init_facebook_api(settings: Settings) -> FacebookAdsApi:
    api = FacebookAdsApi.init(
        app_id=settings.facebook_app_id,
        app_secret=settings.facebook_app_secret,
        access_token=settings.facebook_access_token,
    )
    logger.info(
        "Meta API initialized for %d ad account(s)", len(settings.ad_account_ids)
    )
    return api


def normalize_account_id(account_id: str) -> str:
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def classify_error(exc: FacebookRequestError, account_id: str = "") -> FunnelDashboardError:
    code = exc.api_error_code()
    subcode = exc.api_error_subcode() or 0
    msg = exc.api_error_message() or str(exc)
    where = f" for {account_id}" if account_id else ""

    # Expired, revoked or password-changed token; the account needs a reconnect
    if code == 190 or subcode in (463, 467):
        return TokenExpiredError(f"Meta token expired{where}: {msg}")

    # App, user and ad-account level throttling
    if code in (4, 17, 32, 613, 80000, 80004):
        return RateLimitError(f"Meta rate limit{where} ({code}): {msg}")

    if code in (10, 200, 273, 294):
        return PermissionError_(f"No insights permission{where} ({code}): {msg}")

    if code == 100:
        return InvalidAccountError(f"Invalid insights request{where}: {msg}")

    return FunnelDashboardError(f"Meta API error{where} ({code}): {msg}")


def fetch_insights(
    account_id: str,
    fields: list[str],
    params: dict[str, Any],
    sleep: Callable[[float], None] = time.sleep,
) -> list[dict[str, Any]]:
    """Run one insights query and return its rows as plain dicts.

    Rate-limited calls are retried with exponential backoff; every other
    API error is raised at once as a ``FunnelDashboardError``.
    """
    account = AdAccount(normalize_account_id(account_id))
    attempt = 1
    while True:
        try:
            cursor = account.get_insights(fields=fields, params=params)
            return [dict(row) for row in cursor]
        except FacebookRequestError as e:
            error = classify_error(e, account_id)
            if not isinstance(error, RateLimitError) or attempt >= MAX_ATTEMPTS:
                raise error from e
            wait = RETRY_BACKOFF_SECONDS * 2 ** (attempt - 1)
            logger.warning(
                "Rate limited on %s (attempt %d/%d), waiting %ds",
                account_id,
                attempt,
                MAX_ATTEMPTS,
                wait,
            )
            sleep(wait)
            attempt += 1
