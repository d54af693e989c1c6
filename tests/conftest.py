from __future__ import annotations

import pytest

from src.storage import repository
from src.storage.database import create_db_engine, init_db, make_session_factory

ACCOUNT_ID = "act_123"


@pytest.fixture()
def session_factory():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture()
def account(session):
    return repository.upsert_account(session, ACCOUNT_ID, name="Clinic")
