"""Test fixtures for trade_sync tests."""

from datetime import datetime, UTC
from unittest.mock import MagicMock

import pytest

from ledger_db.database import DatabaseFactory
from ledger_db.settings import DatabaseSettings

from trade_sync.config import AccountConfig, TradeSyncConfig
from trade_sync.fetcher import SyncWindow
from trade_sync.ledger import TradeLedger
from trade_sync.monitor import SyncMonitor
from trade_sync.orchestrator import SyncOrchestrator
from trade_sync.quota import DatabaseQuotaProvider
from trade_sync.state import SyncStateStore

# 2025-01-01 00:00:00 UTC
T0 = 1735689600000
NOW = datetime(2025, 1, 2, tzinfo=UTC)


@pytest.fixture
def db():
    """Fresh in-memory ledger database."""
    database = DatabaseFactory(DatabaseSettings(db_type="sqlite", db_name=":memory:"))
    database.create_tables()
    yield database
    database.drop_tables()


@pytest.fixture
def ledger(db):
    return TradeLedger(db)


@pytest.fixture
def store():
    return SyncStateStore()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def sample_config():
    return TradeSyncConfig(
        accounts=[AccountConfig(name="acc-1", api_key="test_key", api_secret="test_secret")],
        database_url="sqlite:///:memory:",
    )


@pytest.fixture
def window():
    return SyncWindow(start=datetime(2025, 1, 1, tzinfo=UTC), end=NOW)


@pytest.fixture
def make_execution():
    """Factory for Bybit execution list records."""

    def _make(exec_id, side, price, qty, ts, fee="0.1", symbol="BTCUSDT", order_id=None, closed="0"):
        return {
            "symbol": symbol,
            "execId": exec_id,
            "orderId": order_id or f"o-{exec_id}",
            "side": side,
            "execPrice": str(price),
            "execQty": str(qty),
            "closedSize": str(closed),
            "execFee": str(fee),
            "execType": "Trade",
            "orderType": "Limit",
            "isMaker": True,
            "execTime": str(ts),
        }

    return _make


@pytest.fixture
def round_trip(make_execution):
    """+2 @ 100 then -2 @ 110 on BTCUSDT, 0.1 fee each: net P&L 19.8."""
    return [
        make_execution("f1", "Buy", "100", "2", T0 + 1000),
        make_execution("f2", "Sell", "110", "2", T0 + 2000, closed="2"),
    ]


@pytest.fixture
def round_trip_pnl():
    """Venue closed P&L for the round trip: gross 20 less both fees."""
    return [{"symbol": "BTCUSDT", "orderId": "o-f2", "closedPnl": "19.8", "updatedTime": str(T0 + 2000)}]


@pytest.fixture
def make_fetcher():
    """Factory for a mocked BybitFetcher returning fixed payloads."""

    def _make(fills=(), orders=(), income=(), closed_pnl=()):
        fetcher = MagicMock()
        fetcher.fetch_raw_fills.return_value = (list(fills), False)
        fetcher.fetch_raw_orders.return_value = (list(orders), False)
        fetcher.fetch_raw_income.return_value = (list(income), False)
        fetcher.fetch_closed_pnl.return_value = (list(closed_pnl), False)
        return fetcher

    return _make


@pytest.fixture
def make_orchestrator(db, ledger, store, notifier, sample_config):
    """Factory wiring a SyncOrchestrator around one mocked fetcher for acc-1."""

    def _make(fetcher, daily_limit=10, clock=None):
        clock = clock or (lambda: NOW)
        monitor = SyncMonitor(store, notifier, sample_config.backoff, clock=clock)
        quota = DatabaseQuotaProvider(db, daily_limit=daily_limit, clock=clock)
        return SyncOrchestrator(
            fetchers={"acc-1": fetcher},
            ledger=ledger,
            store=store,
            monitor=monitor,
            quota=quota,
            config=sample_config,
            clock=clock,
        )

    return _make
