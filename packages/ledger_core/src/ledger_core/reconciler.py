"""Cross-check aggregated net P&L against the venue-reported period total.

The sign convention is delta = venue_reported - aggregated.

Reconciliation is observability only: an out-of-tolerance result is a signal
for the sync monitor and never undoes persisted trades.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Iterable, Mapping

from ledger_core.aggregator import AggregatedTrade
from ledger_core.pnl import DECIMAL_CONTEXT

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReconciliationTolerance:
    """Allowed |delta| = max(absolute_epsilon, relative_epsilon * |venue total|)."""

    absolute_epsilon: Decimal = Decimal("0.01")
    relative_epsilon: Decimal = Decimal("0.001")

    def allowed(self, venue_reported_total: Decimal) -> Decimal:
        with localcontext(DECIMAL_CONTEXT):
            return max(self.absolute_epsilon, self.relative_epsilon * abs(venue_reported_total))


@dataclass(frozen=True)
class ReconciliationResult:
    period_start: int  # epoch ms, inclusive
    period_end: int  # epoch ms, inclusive
    aggregated_total_pnl: Decimal
    venue_reported_total_pnl: Decimal
    delta: Decimal
    within_tolerance: bool
    tolerance: Decimal
    trade_count: int


def sum_net_pnl(trades: Iterable[AggregatedTrade], period_start: int, period_end: int) -> tuple[Decimal, int]:
    """Sum net P&L of trades whose closed_at falls in [period_start, period_end]."""
    total = _ZERO
    count = 0
    with localcontext(DECIMAL_CONTEXT):
        for trade in trades:
            if period_start <= trade.closed_at <= period_end:
                total += trade.net_pnl
                count += 1
    return total, count


def venue_total_for_trades(
    trades: Iterable[AggregatedTrade],
    closed_pnl_by_order: Mapping[str, Decimal],
    period_start: int,
    period_end: int,
) -> Decimal:
    """Venue-reported net P&L covering exactly the trades closed in the period.

    The venue reports closed P&L per closing order, net of trading fees. Only
    the closing orders of the given trades are counted, so partial closes of
    positions that are still open (or that opened before the fetched history)
    stay out of the total, as they do on the aggregated side. Income carried
    by the trades is added as booked; income on open positions is excluded on
    both sides.
    """
    order_ids: set[str] = set()
    income = _ZERO
    with localcontext(DECIMAL_CONTEXT):
        for trade in trades:
            if period_start <= trade.closed_at <= period_end:
                order_ids.update(trade.exit_order_ids)
                income += trade.funding
        closed = sum((closed_pnl_by_order.get(o, _ZERO) for o in sorted(order_ids)), _ZERO)
        return closed + income


def reconcile(
    trades: Iterable[AggregatedTrade],
    venue_reported_total: Decimal,
    period_start: int,
    period_end: int,
    tolerance: ReconciliationTolerance | None = None,
) -> ReconciliationResult:
    """Compare Σ(realized_pnl - total_fees) with the venue's total for the period.

    Args:
        trades: Valid aggregated trades (any closed_at; filtered to the period).
        venue_reported_total: Independently reported net P&L for the period.
        period_start: Period start in epoch ms (inclusive).
        period_end: Period end in epoch ms (inclusive).
        tolerance: Tolerance settings, defaults to ReconciliationTolerance().

    Returns:
        ReconciliationResult with delta = venue_reported - aggregated.
    """
    tolerance = tolerance or ReconciliationTolerance()
    aggregated, count = sum_net_pnl(trades, period_start, period_end)

    with localcontext(DECIMAL_CONTEXT):
        delta = venue_reported_total - aggregated
    allowed = tolerance.allowed(venue_reported_total)
    within = abs(delta) <= allowed

    if within:
        logger.info(f"Reconciliation OK: {count} trades, aggregated={aggregated} venue={venue_reported_total}")
    else:
        logger.warning(
            f"Reconciliation mismatch: aggregated={aggregated} venue={venue_reported_total} "
            f"delta={delta} allowed={allowed}"
        )

    return ReconciliationResult(
        period_start=period_start,
        period_end=period_end,
        aggregated_total_pnl=aggregated,
        venue_reported_total_pnl=venue_reported_total,
        delta=delta,
        within_tolerance=within,
        tolerance=allowed,
        trade_count=count,
    )
