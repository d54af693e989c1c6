from __future__ import annotations

import json

import pytest
from facebook_business.exceptions import FacebookRequestError

from src.facebook import client
from src.utils.errors import (
    FunnelDashboardError,
    InvalidAccountError,
    PermissionError_,
    RateLimitError,
    TokenExpiredError,
)


def _api_error(code: int, subcode: int | None = None) -> FacebookRequestError:
    error = {"code": code, "message": f"error {code}"}
    if subcode is not None:
        error["error_subcode"] = subcode
    return FacebookRequestError("Call was not successful", {}, 400, {}, json.dumps({"error": error}))


class FakeAccount:
    """Stands in for AdAccount; raises the queued errors before answering."""

    errors: list[Exception] = []
    rows: list[dict] = []
    calls = 0

    def __init__(self, account_id):
        self.account_id = account_id

    def get_insights(self, fields, params):
        FakeAccount.calls += 1
        if FakeAccount.errors:
            raise FakeAccount.errors.pop(0)
        return iter(FakeAccount.rows)


@pytest.fixture()
def fake_account(monkeypatch):
    FakeAccount.errors = []
    FakeAccount.rows = [{"spend": "1.5"}]
    FakeAccount.calls = 0
    monkeypatch.setattr(client, "AdAccount", FakeAccount)
    return FakeAccount


@pytest.mark.parametrize(
    "code,subcode,expected",
    [
        (190, None, TokenExpiredError),
        (102, 463, TokenExpiredError),
        (17, None, RateLimitError),
        (80004, None, RateLimitError),
        (200, None, PermissionError_),
        (100, None, InvalidAccountError),
        (1, None, FunnelDashboardError),
    ],
)
def test_classify_error(code, subcode, expected):
    error = client.classify_error(_api_error(code, subcode), "act_123")
    assert type(error) is expected
    assert "act_123" in str(error)


def test_fetch_insights_returns_plain_rows(fake_account):
    rows = client.fetch_insights("123", ["spend"], {}, sleep=lambda s: None)
    assert rows == [{"spend": "1.5"}]
    assert fake_account.calls == 1


def test_fetch_insights_retries_rate_limits(fake_account):
    fake_account.errors = [_api_error(17), _api_error(4)]
    waits = []

    rows = client.fetch_insights("act_123", ["spend"], {}, sleep=waits.append)

    assert rows == [{"spend": "1.5"}]
    assert fake_account.calls == 3
    assert waits == [client.RETRY_BACKOFF_SECONDS, client.RETRY_BACKOFF_SECONDS * 2]


def test_fetch_insights_gives_up_after_max_attempts(fake_account):
    fake_account.errors = [_api_error(17) for _ in range(client.MAX_ATTEMPTS)]
    waits = []

    with pytest.raises(RateLimitError):
        client.fetch_insights("act_123", ["spend"], {}, sleep=waits.append)
    assert fake_account.calls == client.MAX_ATTEMPTS
    assert len(waits) == client.MAX_ATTEMPTS - 1


def test_fetch_insights_expired_token_not_retried(fake_account):
    fake_account.errors = [_api_error(190)]
    waits = []

    with pytest.raises(TokenExpiredError):
        client.fetch_insights("act_123", ["spend"], {}, sleep=waits.append)
    assert fake_account.calls == 1
    assert waits == []
