"""Shared test fixtures for rsuledger."""

from datetime import date
from decimal import Decimal

import pytest

from rsuledger.db.price_store import PriceStore
from rsuledger.db.repository import LedgerRepository
from rsuledger.db.schema import create_schema
from rsuledger.engines.ledger import GrantLedger
from rsuledger.engines.timeline import TimelineReconstructor
from rsuledger.models.enums import GrantStatus
from rsuledger.models.grant import Grant, Tranche


@pytest.fixture
def db_conn(tmp_path):
    conn = create_schema(tmp_path / "test.db")
    yield conn
    conn.close()


@pytest.fixture
def repo(db_conn) -> LedgerRepository:
    return LedgerRepository(db_conn)


@pytest.fixture
def prices(db_conn) -> PriceStore:
    return PriceStore(db_conn)


@pytest.fixture
def ledger(repo: LedgerRepository, prices: PriceStore) -> GrantLedger:
    return GrantLedger(repo, prices)


@pytest.fixture
def reconstructor(repo: LedgerRepository, prices: PriceStore) -> TimelineReconstructor:
    return TimelineReconstructor(repo, prices)


@pytest.fixture
def sample_grant() -> Grant:
    """100 ACME shares worth 10,000 at grant, vesting 25 a quarter."""
    return Grant(
        id="grant-001",
        user_id="alice",
        symbol="acme",
        company="Acme Corp",
        grant_date=date(2021, 1, 15),
        total_shares=100,
        total_value=Decimal("10000"),
        plan_id="quarterly-1yr",
        status=GrantStatus.ACTIVE,
        tranches=[
            Tranche(vest_date=date(2021, 4, 15), shares=25),
            Tranche(vest_date=date(2021, 7, 15), shares=25),
            Tranche(vest_date=date(2021, 10, 15), shares=25),
            Tranche(vest_date=date(2022, 1, 15), shares=25),
        ],
    )
