"""Shared fixtures for copy-trading tests."""

import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from src.copytrade.ledger import VirtualLedger
from src.copytrade.models import Side, TradeEvent
from src.copytrade.price_cache import PriceCache
from src.copytrade.registry import SubscriptionRegistry
from src.copytrade.replicas import ReplicaStore
from src.storage.db import Database

SOURCE = "0xsource"


class FakeClock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db():
    """Create an initialized sqlite database in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        database = Database(Path(tmpdir) / "test.db")
        database.initialize()
        yield database


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def prices(clock):
    return PriceCache(max_age=300, clock=clock)


@pytest.fixture
def registry(db):
    return SubscriptionRegistry(db, test_mode=False)


@pytest.fixture
def store(db, clock):
    return ReplicaStore(db, clock=clock)


@pytest.fixture
def ledger(db, prices, clock):
    return VirtualLedger(db, prices=prices, clock=clock)


@pytest.fixture
def make_trade():
    """Factory for TradeEvents with sensible defaults."""
    counter = {"n": 0}

    def _make(
        side: Side = Side.BUY,
        shares: str = "100",
        price: str = "0.5",
        asset_id: str = "token-yes",
        condition_id: str = "cond-1",
        title: str = "Will it rain tomorrow?",
        outcome: str = "Yes",
        dedup_key: str = None,
        outcome_index: int = None,
    ) -> TradeEvent:
        counter["n"] += 1
        return TradeEvent(
            source_account=SOURCE,
            asset_id=asset_id,
            condition_id=condition_id,
            side=side,
            shares=Decimal(shares),
            price=Decimal(price),
            title=title,
            outcome=outcome,
            timestamp=1_700_000_000.0,
            dedup_key=dedup_key or f"0xtx{counter['n']}-{asset_id or condition_id}",
            outcome_index=outcome_index,
        )

    return _make
