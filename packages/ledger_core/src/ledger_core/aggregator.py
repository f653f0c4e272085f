"""Reduce closed position lifecycles into aggregated trade records.

Sign convention:
- fees are positive costs and are summed across all events regardless of asset
- fill P&L is gross: exit notional minus entry notional, direction-adjusted
- income realized_pnl is a signed cash credit (funding received > 0, paid < 0)
  and is added to realized_pnl as-is
- net_pnl = realized_pnl - total_fees
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import Iterable, Optional

from ledger_core.events import DirectionType, EventKind
from ledger_core.grouper import PositionLifecycle
from ledger_core.pnl import (
    DECIMAL_CONTEXT,
    calc_net_pnl,
    classify_result,
    weighted_average,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def compute_provenance_hash(event_ids: Iterable[str]) -> str:
    """Order-independent SHA-256 over the set of source event ids.

    Canonical form: the de-duplicated ids sorted ascending, serialized as a
    compact JSON array.
    """
    canonical = json.dumps(sorted(set(event_ids)), separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AggregatedTrade:
    """Immutable summary of one closed lifecycle."""

    instrument: str
    direction: DirectionType
    entry_price: Decimal
    exit_price: Decimal
    total_quantity: Decimal
    realized_pnl: Decimal
    total_fees: Decimal
    opened_at: int  # epoch ms
    closed_at: int  # epoch ms
    source_event_ids: tuple[str, ...]
    funding: Decimal = _ZERO
    fee_assets: tuple[str, ...] = ()
    entry_order_type: Optional[str] = None
    exit_order_type: Optional[str] = None
    is_maker: Optional[bool] = None
    fill_count: int = 0
    exit_order_ids: tuple[str, ...] = ()  # orders of the closing fills

    @property
    def net_pnl(self) -> Decimal:
        return calc_net_pnl(self.realized_pnl, self.total_fees)

    @property
    def fill_pnl(self) -> Decimal:
        """Realized P&L from price movement only (excluding income)."""
        return self.realized_pnl - self.funding

    @property
    def is_income_only(self) -> bool:
        """Zero-duration trade built from income booked while flat."""
        return self.fill_count == 0 and self.total_quantity == _ZERO and self.realized_pnl == self.funding

    @property
    def hold_time_ms(self) -> int:
        return self.closed_at - self.opened_at

    @property
    def hold_time_minutes(self) -> Decimal:
        return Decimal(self.hold_time_ms) / Decimal(60_000)

    @property
    def result(self) -> str:
        return classify_result(self.net_pnl)

    @property
    def provenance_hash(self) -> str:
        return compute_provenance_hash(self.source_event_ids)


def aggregate(lifecycle: PositionLifecycle) -> AggregatedTrade:
    """Collapse a closed lifecycle into one AggregatedTrade.

    Fill P&L is the cash flow of the lifecycle: exit notional minus entry
    notional for longs, the reverse for shorts. Over a lifecycle that returns
    to flat this equals the sum of per-close P&L against a moving average cost.

    Raises:
        ValueError: If the lifecycle is not closed or has no events.
    """
    if not lifecycle.is_closed:
        raise ValueError(f"Cannot aggregate {lifecycle.status} lifecycle for {lifecycle.instrument}")
    if not lifecycle.events:
        raise ValueError(f"Cannot aggregate empty lifecycle for {lifecycle.instrument}")

    # Income-only lifecycles have no opening fill; they aggregate as long.
    direction = lifecycle.direction or DirectionType.LONG

    entry_qty = entry_notional = _ZERO
    exit_qty = exit_notional = _ZERO
    fees = funding = _ZERO
    fee_assets: list[str] = []
    entry_fills = []
    exit_fills = []

    with localcontext(DECIMAL_CONTEXT):
        for event in lifecycle.events:
            fees += event.fee
            if event.kind == EventKind.FILL and event.fee_asset and event.fee_asset not in fee_assets:
                fee_assets.append(event.fee_asset)

            if event.kind == EventKind.INCOME:
                funding += event.realized_pnl or _ZERO
                continue
            if event.kind != EventKind.FILL:
                continue

            if (event.signed_quantity > 0) == (direction == DirectionType.LONG):
                entry_qty += event.quantity
                entry_notional += event.price * event.quantity
                entry_fills.append(event)
            else:
                exit_qty += event.quantity
                exit_notional += event.price * event.quantity
                exit_fills.append(event)

        if exit_qty != entry_qty:
            raise ValueError(
                f"Closed lifecycle for {lifecycle.instrument} exits {exit_qty} of {entry_qty} entered"
            )
        cash_flow = exit_notional - entry_notional
        realized = (cash_flow if direction == DirectionType.LONG else -cash_flow) + funding

    order_types = {o.order_id or o.event_id: o.order_type for o in lifecycle.orders}

    def _order_type(fill) -> Optional[str]:
        if fill is None:
            return None
        return fill.order_type or order_types.get(fill.order_id)

    first_entry = entry_fills[0] if entry_fills else None
    last_exit = exit_fills[-1] if exit_fills else None

    return AggregatedTrade(
        instrument=lifecycle.instrument,
        direction=direction,
        entry_price=weighted_average(entry_notional, entry_qty),
        exit_price=weighted_average(exit_notional, exit_qty),
        total_quantity=entry_qty,
        realized_pnl=realized,
        total_fees=fees,
        opened_at=lifecycle.opened_at,
        closed_at=lifecycle.closed_at,
        source_event_ids=tuple(sorted(set(lifecycle.event_ids))),
        funding=funding,
        fee_assets=tuple(fee_assets),
        entry_order_type=_order_type(first_entry),
        exit_order_type=_order_type(last_exit),
        is_maker=first_entry.is_maker if first_entry else None,
        fill_count=len(entry_fills) + len(exit_fills),
        exit_order_ids=tuple(sorted({f.order_id for f in exit_fills if f.order_id})),
    )


@dataclass(frozen=True)
class AggregationFailure:
    """A closed lifecycle that could not be aggregated."""

    instrument: str
    opened_at: int
    event_ids: tuple[str, ...]
    error: str


@dataclass
class AggregationBatch:
    trades: list[AggregatedTrade] = field(default_factory=list)
    failures: list[AggregationFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def aggregate_all(lifecycles: Iterable[PositionLifecycle]) -> AggregationBatch:
    """Aggregate every closed lifecycle; open and incomplete ones are skipped.

    Lifecycles are independent, so a lifecycle that fails to aggregate is
    recorded in ``failures`` and the rest of the batch carries on. The result
    only depends on the input set.
    """
    batch = AggregationBatch()
    skipped = 0
    for lifecycle in lifecycles:
        if not lifecycle.is_closed:
            skipped += 1
            continue
        try:
            batch.trades.append(aggregate(lifecycle))
        except (ValueError, ArithmeticError) as e:
            logger.warning(f"Failed to aggregate {lifecycle.instrument} lifecycle opened at {lifecycle.opened_at}: {e}")
            batch.failures.append(
                AggregationFailure(
                    instrument=lifecycle.instrument,
                    opened_at=lifecycle.opened_at,
                    event_ids=lifecycle.event_ids,
                    error=str(e),
                )
            )
    if skipped:
        logger.debug(f"Skipped {skipped} open or incomplete lifecycles during aggregation")
    return batch
