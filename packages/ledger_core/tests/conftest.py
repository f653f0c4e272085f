"""Test fixtures for ledger_core tests."""

from decimal import Decimal

import pytest

from ledger_core.events import EventKind, RawEvent


@pytest.fixture
def make_fill():
    """Factory for fill events. Positive qty buys, negative qty sells.

    ``closed`` is the venue-reported quantity the fill closed.
    """

    def _make(
        event_id, ts, qty, price, instrument="BTCUSDT", fee="0", order_id=None, order_type=None, is_maker=None, closed=0
    ):
        qty = Decimal(str(qty))
        return RawEvent(
            event_id=event_id,
            kind=EventKind.FILL,
            instrument=instrument,
            timestamp_ms=ts,
            side="Buy" if qty > 0 else "Sell",
            price=Decimal(str(price)),
            quantity=abs(qty),
            fee=Decimal(str(fee)),
            fee_asset="USDT",
            order_id=order_id,
            order_type=order_type,
            is_maker=is_maker,
            closed_quantity=Decimal(str(closed)),
        )

    return _make


@pytest.fixture
def make_income():
    """Factory for income (funding) events."""

    def _make(event_id, ts, amount, instrument="BTCUSDT", income_type="SETTLEMENT"):
        return RawEvent(
            event_id=event_id,
            kind=EventKind.INCOME,
            instrument=instrument,
            timestamp_ms=ts,
            realized_pnl=Decimal(str(amount)),
            income_type=income_type,
        )

    return _make


@pytest.fixture
def make_order():
    """Factory for order events."""

    def _make(order_id, ts, order_type="Limit", instrument="BTCUSDT", side="Buy"):
        return RawEvent(
            event_id=order_id,
            kind=EventKind.ORDER,
            instrument=instrument,
            timestamp_ms=ts,
            side=side,
            order_id=order_id,
            order_type=order_type,
        )

    return _make
