"""Pure P&L and averaging helpers.

Single source of truth for the trade economics formulas used by the
aggregator, validator and reconciler. All functions are pure and use Decimal.
"""

from decimal import Context, Decimal, ROUND_HALF_EVEN, localcontext

from ledger_core.events import DirectionType


_ZERO = Decimal("0")

# Additions and multiplications of venue-quoted values are exact under this
# context; only the averaging divisions round (28 significant digits).
DECIMAL_CONTEXT = Context(prec=28, rounding=ROUND_HALF_EVEN)

# Largest relative difference two groupings of the same events may show.
# Sums are exact, so only weighted-average divisions contribute.
AGGREGATION_EPSILON = Decimal("1E-18")

# |net pnl| below this is a breakeven trade.
BREAKEVEN_THRESHOLD = Decimal("0.001")


def calc_realised_pnl(
    direction: DirectionType,
    entry_price: Decimal,
    exit_price: Decimal,
    quantity: Decimal,
) -> Decimal:
    """Gross P&L of closing ``quantity`` at ``exit_price`` against ``entry_price``.

    Long: (exit - entry) * qty
    Short: (entry - exit) * qty
    """
    with localcontext(DECIMAL_CONTEXT):
        if direction == DirectionType.LONG:
            return (exit_price - entry_price) * quantity
        return (entry_price - exit_price) * quantity


def weighted_average(notional: Decimal, quantity: Decimal) -> Decimal:
    """Quantity-weighted average price; zero when there is no quantity."""
    if quantity == _ZERO:
        return _ZERO
    with localcontext(DECIMAL_CONTEXT):
        return notional / quantity


def calc_net_pnl(realized_pnl: Decimal, total_fees: Decimal) -> Decimal:
    """Net P&L: realized minus fees (fees are positive costs)."""
    with localcontext(DECIMAL_CONTEXT):
        return realized_pnl - total_fees


def classify_result(net_pnl: Decimal) -> str:
    """Return 'win', 'loss' or 'breakeven' for a net P&L value."""
    if net_pnl > BREAKEVEN_THRESHOLD:
        return "win"
    if net_pnl < -BREAKEVEN_THRESHOLD:
        return "loss"
    return "breakeven"


def relative_difference(value: Decimal, reference: Decimal) -> Decimal:
    """|value - reference| / |reference|, or |value| when reference is zero."""
    with localcontext(DECIMAL_CONTEXT):
        if reference == _ZERO:
            return abs(value)
        return abs(value - reference) / abs(reference)
