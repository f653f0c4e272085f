"""Test fixtures for bybit_adapter tests."""

import pytest


@pytest.fixture
def sample_executions():
    """Sample Bybit execution list records (REST /v5/execution/list)."""
    return [
        {
            "symbol": "BTCUSDT",
            "execId": "exec-001",
            "orderId": "order-001",
            "orderLinkId": "",
            "side": "Buy",
            "execPrice": "42500.50",
            "execQty": "0.1",
            "execFee": "0.425",
            "execType": "Trade",
            "orderType": "Limit",
            "isMaker": True,
            "closedSize": "0",
            "execTime": "1704639600000",
        },
        {
            "symbol": "BTCUSDT",
            "execId": "exec-002",
            "orderId": "order-002",
            "side": "Sell",
            "execPrice": "42600.00",
            "execQty": "0.1",
            "execFee": "0.426",
            "execType": "Trade",
            "orderType": "Market",
            "isMaker": False,
            "closedSize": "0.1",
            "execTime": "1704643200000",
        },
        {
            "symbol": "BTCUSDT",
            "execId": "exec-003",
            "orderId": "",
            "side": "Buy",
            "execPrice": "42550.00",
            "execQty": "0.1",
            "execFee": "0.01",
            "execType": "Funding",  # taken from the transaction log instead
            "execTime": "1704643200000",
        },
    ]


@pytest.fixture
def sample_orders():
    """Sample Bybit order history records (REST /v5/order/history)."""
    return [
        {
            "orderId": "order-001",
            "symbol": "BTCUSDT",
            "side": "Buy",
            "orderType": "Limit",
            "price": "42500.50",
            "avgPrice": "42500.50",
            "qty": "0.1",
            "cumExecQty": "0.1",
            "orderStatus": "Filled",
            "positionIdx": 0,
            "createdTime": "1704639590000",
            "updatedTime": "1704639600000",
        },
        {
            "orderId": "order-002",
            "symbol": "BTCUSDT",
            "side": "Sell",
            "orderType": "Market",
            "price": "0",
            "avgPrice": "42600.00",
            "qty": "0.1",
            "cumExecQty": "0.1",
            "orderStatus": "Filled",
            "positionIdx": 0,
            "createdTime": "1704643199000",
            "updatedTime": "1704643200000",
        },
    ]


@pytest.fixture
def sample_transactions():
    """Sample Bybit transaction log records (REST /v5/account/transaction-log)."""
    return [
        {
            "id": "tx-001",
            "symbol": "BTCUSDT",
            "category": "linear",
            "side": "Buy",
            "type": "SETTLEMENT",
            "transactionTime": "1704640000000",
            "funding": "0.0425",
            "change": "-0.0425",
            "currency": "USDT",
        },
        {
            "id": "tx-002",
            "symbol": "BTCUSDT",
            "category": "linear",
            "side": "Sell",
            "type": "TRADE",  # duplicates a fill
            "transactionTime": "1704643200000",
            "change": "9.574",
            "currency": "USDT",
        },
    ]


@pytest.fixture
def sample_closed_pnl():
    """Sample Bybit closed P&L records (REST /v5/position/closed-pnl)."""
    return [
        {
            "symbol": "BTCUSDT",
            "orderId": "order-002",
            "side": "Sell",
            "qty": "0.1",
            "closedSize": "0.1",
            "avgEntryPrice": "42500.50",
            "avgExitPrice": "42600.00",
            "closedPnl": "9.099",
            "createdTime": "1704643200000",
            "updatedTime": "1704643200000",
        },
    ]
