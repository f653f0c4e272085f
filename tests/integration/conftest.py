"""Shared fixtures for integration tests.

The exchange is replaced by FakeBybitSession, a stand-in for the pybit HTTP
session. Everything above it (rate-limited client, fetcher, normalizer,
ledger_core pipeline, SQLite ledger, monitor) is real.
"""

from datetime import datetime, UTC, timedelta
from unittest.mock import MagicMock, patch

import pytest

from bybit_adapter.rest_client import BybitRestClient
from ledger_db.database import DatabaseFactory
from ledger_db.settings import DatabaseSettings

from trade_sync.config import AccountConfig, TradeSyncConfig
from trade_sync.fetcher import BybitFetcher, SyncWindow
from trade_sync.ledger import TradeLedger
from trade_sync.monitor import SyncMonitor
from trade_sync.orchestrator import SyncOrchestrator
from trade_sync.quota import DatabaseQuotaProvider
from trade_sync.state import SyncStateStore

# 2025-01-01 00:00:00 UTC
T0 = 1735689600000
NOW = datetime(2025, 1, 2, tzinfo=UTC)


class FakeBybitSession:
    """Serves canned account history the way pybit's HTTP session does.

    Records are filtered by startTime/endTime (and transaction type) and
    paged with nextPageCursor, ``page_size`` records per page.
    """

    def __init__(self, page_size: int = 2):
        self.executions: list[dict] = []
        self.orders: list[dict] = []
        self.transactions: list[dict] = []
        self.closed_pnl: list[dict] = []
        self.page_size = page_size
        self.fail_with: Exception | None = None
        self.calls: list[str] = []

    def _serve(self, method: str, records: list[dict], time_key: str, params: dict) -> dict:
        self.calls.append(method)
        if self.fail_with is not None:
            raise self.fail_with

        start = params.get("startTime", 0)
        end = params.get("endTime", 2**63)
        matching = [r for r in records if start <= int(r[time_key]) <= end]
        if "type" in params:
            matching = [r for r in matching if r.get("type") == params["type"]]

        offset = int(params.get("cursor") or 0)
        page = matching[offset:offset + self.page_size]
        next_offset = offset + self.page_size
        cursor = str(next_offset) if next_offset < len(matching) else ""
        return {"retCode": 0, "retMsg": "OK", "result": {"list": page, "nextPageCursor": cursor}}

    def get_executions(self, **params):
        return self._serve("get_executions", self.executions, "execTime", params)

    def get_order_history(self, **params):
        return self._serve("get_order_history", self.orders, "updatedTime", params)

    def get_transaction_log(self, **params):
        return self._serve("get_transaction_log", self.transactions, "transactionTime", params)

    def get_closed_pnl(self, **params):
        return self._serve("get_closed_pnl", self.closed_pnl, "updatedTime", params)


class Clock:
    """Settable clock shared by orchestrator, monitor and quota."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def session():
    return FakeBybitSession()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def db():
    """In-memory SQLite ledger."""
    database = DatabaseFactory(DatabaseSettings(db_type="sqlite", db_name=":memory:"))
    database.create_tables()
    yield database
    database.drop_tables()


@pytest.fixture
def config():
    return TradeSyncConfig(
        accounts=[AccountConfig(name="main", api_key="test_key", api_secret="test_secret")],
        database_url="sqlite:///:memory:",
    )


@pytest.fixture
def window():
    return SyncWindow(start=datetime(2025, 1, 1, tzinfo=UTC), end=NOW)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def store():
    return SyncStateStore()


@pytest.fixture
def orchestrator(session, clock, db, config, notifier, store):
    """SyncOrchestrator for account "main" backed by the fake session."""
    with patch("bybit_adapter.rest_client.HTTP", return_value=session):
        client = BybitRestClient(api_key="test_key", api_secret="test_secret", testnet=True)

    return SyncOrchestrator(
        fetchers={"main": BybitFetcher(client, config.sync)},
        ledger=TradeLedger(db),
        store=store,
        monitor=SyncMonitor(store, notifier, config.backoff, clock=clock),
        quota=DatabaseQuotaProvider(db, daily_limit=config.sync.daily_quota, clock=clock),
        config=config,
        clock=clock,
    )


@pytest.fixture
def make_execution():
    """Factory for Bybit execution list records."""

    def _make(exec_id, side, price, qty, ts, fee="0.1", symbol="BTCUSDT", closed="0"):
        return {
            "symbol": symbol,
            "execId": exec_id,
            "orderId": f"o-{exec_id}",
            "side": side,
            "execPrice": str(price),
            "execQty": str(qty),
            "closedSize": str(closed),
            "execFee": str(fee),
            "execType": "Trade",
            "orderType": "Market",
            "isMaker": False,
            "execTime": str(ts),
        }

    return _make


@pytest.fixture
def make_settlement():
    """Factory for SETTLEMENT (funding) transaction log records."""

    def _make(tx_id, change, ts, symbol="BTCUSDT"):
        return {
            "id": tx_id,
            "symbol": symbol,
            "type": "SETTLEMENT",
            "side": "Buy",
            "transactionTime": str(ts),
            "change": str(change),
            "currency": "USDT",
        }

    return _make


@pytest.fixture
def seeded_session(session, make_execution, make_settlement):
    """Two BTCUSDT round trips plus one funding payment while the first was open.

    Trade 1: long 2 @ 100 -> 110, fees 0.2, funding -0.5, net 19.3
    Trade 2: short 1 @ 120 -> 115 in two partial closes, fees 0.3, net 4.7

    Venue closed P&L is reported per closing order, net of the fees it
    carries: 19.8 for e2, 2.35 each for e4 and e5.
    """
    session.executions = [
        make_execution("e1", "Buy", "100", "2", T0 + 1_000),
        make_execution("e2", "Sell", "110", "2", T0 + 60_000, closed="2"),
        make_execution("e3", "Sell", "120", "1", T0 + 120_000),
        make_execution("e4", "Buy", "115", "0.5", T0 + 180_000, closed="0.5"),
        make_execution("e5", "Buy", "115", "0.5", T0 + 240_000, closed="0.5"),
    ]
    session.transactions = [make_settlement("s1", "-0.5", T0 + 30_000)]
    session.closed_pnl = [
        {"symbol": "BTCUSDT", "orderId": "o-e2", "closedPnl": "19.8", "updatedTime": str(T0 + 60_000)},
        {"symbol": "BTCUSDT", "orderId": "o-e4", "closedPnl": "2.35", "updatedTime": str(T0 + 180_000)},
        {"symbol": "BTCUSDT", "orderId": "o-e5", "closedPnl": "2.35", "updatedTime": str(T0 + 240_000)},
    ]
    return session
