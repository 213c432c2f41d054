from __future__ import annotations

import random
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.settlement import SettlementEngine
from app.database.engine import create_db_engine, init_schema
from app.database.repo import Repo
from app.database.session import session_scope
from tests.helpers import DEFAULT_POLICY, NOW


@pytest.fixture()
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'settlement.db'}", echo=False)
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def make_account(session_factory):
    def _make(account_id: str, balance: str = "10000.00") -> str:
        with session_scope(session_factory) as s:
            Repo(s).accounts.create(account_id, balance=Decimal(balance), username=account_id)
        return account_id

    return _make


@pytest.fixture()
def balance_of(session_factory):
    def _get(account_id: str) -> Decimal:
        with session_scope(session_factory) as s:
            return Repo(s).accounts.get(account_id).balance

    return _get


@pytest.fixture()
def settlement(session_factory) -> SettlementEngine:
    return SettlementEngine(
        session_factory=session_factory,
        policy=DEFAULT_POLICY,
        rng=random.Random(1234),
        min_wager=Decimal("0.01"),
        clock=lambda: NOW,
    )
