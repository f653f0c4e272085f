"""Convert Bybit REST account history records into ledger_core RawEvents.

Three payload shapes are normalized:
- Execution list records -> Fill events
- Order history records -> Order events
- Transaction log records (funding settlements, fee refunds) -> Income events

Closed P&L records are summed per closing order for reconciliation.

Malformed records are dropped one by one and counted; they never abort the
batch. The output is de-duplicated by venue id and sorted by
(timestamp, event_id).

Bybit API Reference:
- Execution: https://bybit-exchange.github.io/docs/v5/order/execution
- Order: https://bybit-exchange.github.io/docs/v5/order/order-list
- Transaction Log: https://bybit-exchange.github.io/docs/v5/account/transaction-log
- Closed PnL: https://bybit-exchange.github.io/docs/v5/position/close-pnl
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from ledger_core.errors import MalformedRecordError
from ledger_core.events import EventKind, RawEvent, SideType, sort_events

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Execution types that change position size
FILL_EXEC_TYPES = frozenset({"Trade", "AdlTrade", "BustTrade", "BlockTrade", "Delivery"})

# Transaction log types that carry P&L income (TRADE rows duplicate fills)
INCOME_TRANSACTION_TYPES = frozenset({"SETTLEMENT", "FEE_REFUND", "BONUS"})

# positionIdx values of hedge-mode positions: 1 = long side, 2 = short side
HEDGE_POSITION_IDX = ("1", "2")


def instrument_key(symbol: str, position_idx=None) -> str:
    """Instrument key: the symbol, suffixed with the hedge-mode position index."""
    idx = str(position_idx) if position_idx is not None else ""
    if idx in HEDGE_POSITION_IDX:
        return f"{symbol}:{idx}"
    return symbol


def settle_coin(symbol: str) -> str:
    """Settlement (fee) asset of a linear contract."""
    if symbol.endswith("USDT"):
        return "USDT"
    if symbol.endswith("PERP") or symbol.endswith("USDC"):
        return "USDC"
    return ""


def _required(record: dict, key: str) -> str:
    value = record.get(key)
    if value is None or value == "":
        raise MalformedRecordError(f"missing required field '{key}'", record)
    return str(value)


def _decimal(record: dict, key: str, default: Optional[Decimal] = None) -> Decimal:
    raw = record.get(key)
    if raw is None or raw == "":
        if default is not None:
            return default
        raise MalformedRecordError(f"missing required field '{key}'", record)
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise MalformedRecordError(f"field '{key}' is not a number: {raw!r}", record)
    if not value.is_finite():
        raise MalformedRecordError(f"field '{key}' is not finite: {raw!r}", record)
    return value


def _timestamp_ms(record: dict, *keys: str) -> int:
    for key in keys:
        raw = record.get(key)
        if raw not in (None, ""):
            try:
                return int(str(raw))
            except ValueError:
                raise MalformedRecordError(f"field '{key}' is not a timestamp: {raw!r}", record)
    raise MalformedRecordError(f"missing required field '{keys[0]}'", record)


def _bool(value) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


@dataclass
class NormalizationResult:
    """Normalized events plus per-batch data quality counters."""

    events: list[RawEvent] = field(default_factory=list)
    dropped: int = 0  # malformed records
    duplicates: int = 0  # repeated venue ids within the batch
    skipped: int = 0  # well-formed records that carry no ledger activity
    errors: list[str] = field(default_factory=list)

    @property
    def fills(self) -> list[RawEvent]:
        return [e for e in self.events if e.kind == EventKind.FILL]


class BybitNormalizer:
    """Converts Bybit account history records to RawEvents.

    Responsibilities:
    - Parse Bybit string fields into Decimal and epoch ms
    - Map execution/order/transaction records onto fill/order/income events
    - Derive hedge-mode instrument keys from order positionIdx
    - Drop and count malformed records
    - De-duplicate by venue id and sort deterministically
    """

    def normalize(
        self,
        fills: Iterable[dict] = (),
        orders: Iterable[dict] = (),
        income: Iterable[dict] = (),
    ) -> NormalizationResult:
        """Normalize one batch of raw payloads. Pure: no I/O, no shared state."""
        fills, orders, income = list(fills), list(orders), list(income)
        result = NormalizationResult()

        position_idx_by_order = {
            str(o.get("orderId")): o.get("positionIdx")
            for o in orders
            if o.get("orderId") and o.get("positionIdx") is not None
        }
        hedged_symbols = {
            o.get("symbol")
            for o in orders
            if str(o.get("positionIdx", "")) in HEDGE_POSITION_IDX
        }

        candidates: list[RawEvent] = []
        for kind, records, convert in (
            (EventKind.FILL, fills, lambda r: self.normalize_execution(r, position_idx_by_order)),
            (EventKind.ORDER, orders, self.normalize_order),
            (EventKind.INCOME, income, lambda r: self.normalize_transaction(r, hedged_symbols)),
        ):
            for record in records:
                try:
                    event = convert(record)
                except MalformedRecordError as e:
                    result.dropped += 1
                    result.errors.append(f"{kind}: {e}")
                    logger.warning(f"Dropped malformed {kind} record: {e}")
                    continue
                if event is None:
                    result.skipped += 1
                    continue
                candidates.append(event)

        seen: set[tuple[EventKind, str]] = set()
        for event in candidates:
            key = (event.kind, event.event_id)
            if key in seen:
                result.duplicates += 1
                continue
            seen.add(key)
            result.events.append(event)

        result.events = sort_events(result.events)
        logger.debug(
            f"Normalized {len(result.events)} events "
            f"(dropped={result.dropped}, duplicates={result.duplicates}, skipped={result.skipped})"
        )
        return result

    def normalize_execution(self, record: dict, position_idx_by_order: Optional[dict] = None) -> Optional[RawEvent]:
        """Convert an execution list record into a Fill event.

        Bybit execution record format:
        {
            "execId": "exec-123",
            "symbol": "BTCUSDT",
            "orderId": "order-456",
            "side": "Buy",
            "execPrice": "42500.50",
            "execQty": "0.1",
            "execFee": "0.425",
            "execType": "Trade",
            "orderType": "Limit",
            "isMaker": true,
            "closedSize": "0",
            "execTime": "1704639600000"
        }

        ``closedSize`` is the part of the fill that reduced an existing
        position; it is zero for opening fills.

        Returns:
            Fill RawEvent, or None for non-fill execution types (e.g. Funding,
            which is taken from the transaction log instead).

        Raises:
            MalformedRecordError: If required fields are missing or invalid
        """
        exec_type = record.get("execType", "Trade")
        if exec_type not in FILL_EXEC_TYPES:
            logger.debug(f"Skipping execution {record.get('execId')} with execType={exec_type}")
            return None

        event_id = _required(record, "execId")
        symbol = _required(record, "symbol")
        side = _required(record, "side")
        if side not in (SideType.BUY, SideType.SELL):
            raise MalformedRecordError(f"unknown side {side!r}", record)

        price = _decimal(record, "execPrice")
        quantity = _decimal(record, "execQty")
        if price <= _ZERO or quantity <= _ZERO:
            raise MalformedRecordError(f"non-positive price/qty in execution {event_id}", record)
        closed_quantity = _decimal(record, "closedSize", _ZERO)
        if closed_quantity < _ZERO or closed_quantity > quantity:
            raise MalformedRecordError(f"closedSize {closed_quantity} outside execQty in execution {event_id}", record)

        order_id = record.get("orderId") or None
        position_idx = record.get("positionIdx")
        if position_idx is None and order_id and position_idx_by_order:
            position_idx = position_idx_by_order.get(str(order_id))

        return RawEvent(
            event_id=event_id,
            kind=EventKind.FILL,
            instrument=instrument_key(symbol, position_idx),
            timestamp_ms=_timestamp_ms(record, "execTime"),
            side=side,
            price=price,
            quantity=quantity,
            fee=_decimal(record, "execFee", _ZERO),
            fee_asset=record.get("feeCurrency") or settle_coin(symbol),
            order_id=order_id,
            order_type=record.get("orderType") or None,
            is_maker=_bool(record.get("isMaker")),
            closed_quantity=closed_quantity,
        )

    def normalize_order(self, record: dict) -> RawEvent:
        """Convert an order history record into an Order event.

        Bybit order record format:
        {
            "orderId": "order-456",
            "symbol": "BTCUSDT",
            "side": "Buy",
            "orderType": "Limit",
            "price": "42500",
            "qty": "0.1",
            "orderStatus": "Filled",
            "positionIdx": 0,
            "createdTime": "1704639590000",
            "updatedTime": "1704639600000"
        }

        Raises:
            MalformedRecordError: If required fields are missing or invalid
        """
        order_id = _required(record, "orderId")
        symbol = _required(record, "symbol")
        return RawEvent(
            event_id=order_id,
            kind=EventKind.ORDER,
            instrument=instrument_key(symbol, record.get("positionIdx")),
            timestamp_ms=_timestamp_ms(record, "updatedTime", "createdTime"),
            side=record.get("side", ""),
            price=_decimal(record, "avgPrice", _decimal(record, "price", _ZERO)),
            quantity=_decimal(record, "cumExecQty", _decimal(record, "qty", _ZERO)),
            order_id=order_id,
            order_type=record.get("orderType") or None,
        )

    def normalize_transaction(self, record: dict, hedged_symbols: Optional[set] = None) -> Optional[RawEvent]:
        """Convert a transaction log record into an Income event.

        Bybit transaction log record format (funding settlement):
        {
            "id": "592324_XRPUSDT_161440249321",
            "symbol": "XRPUSDT",
            "type": "SETTLEMENT",
            "side": "Buy",
            "transactionTime": "1704643200000",
            "funding": "0.0081",
            "change": "-0.0081",
            "currency": "USDT"
        }

        ``change`` is the signed cash credit to the account and becomes
        realized_pnl. In hedge mode, the settlement side picks the position.

        Returns:
            Income RawEvent, or None for transaction types that are not income.

        Raises:
            MalformedRecordError: If required fields are missing or invalid
        """
        tx_type = _required(record, "type")
        if tx_type not in INCOME_TRANSACTION_TYPES:
            return None

        event_id = _required(record, "id")
        symbol = _required(record, "symbol")

        position_idx = None
        if hedged_symbols and symbol in hedged_symbols:
            position_idx = "1" if record.get("side") == SideType.BUY else "2"

        return RawEvent(
            event_id=event_id,
            kind=EventKind.INCOME,
            instrument=instrument_key(symbol, position_idx),
            timestamp_ms=_timestamp_ms(record, "transactionTime"),
            fee=_ZERO,
            fee_asset=record.get("currency") or settle_coin(symbol),
            realized_pnl=_decimal(record, "change"),
            income_type=tx_type,
        )

    def closed_pnl_by_order(self, records: Iterable[dict]) -> dict[str, Decimal]:
        """Sum closed P&L records per closing order id.

        Bybit closed P&L record format:
        {
            "symbol": "BTCUSDT",
            "orderId": "order-002",
            "side": "Sell",
            "closedSize": "0.1",
            "closedPnl": "9.099",
            "updatedTime": "1704643200000"
        }

        ``closedPnl`` is net of the opening and closing trading fees of the
        closed quantity. Malformed records are logged and skipped.
        """
        totals: dict[str, Decimal] = {}
        for record in records:
            try:
                order_id = _required(record, "orderId")
                pnl = _decimal(record, "closedPnl")
            except MalformedRecordError as e:
                logger.warning(f"Skipped malformed closed pnl record: {e}")
                continue
            totals[order_id] = totals.get(order_id, _ZERO) + pnl
        return totals
