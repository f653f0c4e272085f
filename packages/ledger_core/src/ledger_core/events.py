"""
Canonical exchange activity events consumed by the aggregation pipeline.

Venue adapters translate their payloads into three kinds of events: fills,
orders and income. Events are immutable (frozen dataclasses) and are ordered
by timestamp_ms, then event_id, then kind, so grouping produces the same
result regardless of the order in which the venue delivered them.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Optional


_ZERO = Decimal("0")


class EventKind(StrEnum):
    """Semantic kinds of venue activity."""
    FILL = "fill"
    ORDER = "order"
    INCOME = "income"


class SideType(StrEnum):
    """Order side as reported by the venue."""
    BUY = "Buy"
    SELL = "Sell"


class DirectionType(StrEnum):
    """Position direction of a lifecycle."""
    LONG = "long"
    SHORT = "short"


@dataclass(frozen=True)
class RawEvent:
    """
    A single normalized venue record.

    Fills change the position size, orders never do (they only carry order
    metadata such as the order type), and income events (funding, rebates,
    settlements) carry a signed cash amount in realized_pnl.
    """
    event_id: str
    kind: EventKind
    instrument: str
    timestamp_ms: int
    side: str = ""  # 'Buy' or 'Sell', empty for income
    price: Decimal = _ZERO
    quantity: Decimal = _ZERO
    fee: Decimal = _ZERO  # positive when paid
    fee_asset: str = ""
    realized_pnl: Optional[Decimal] = None
    income_type: Optional[str] = None
    order_id: Optional[str] = None
    order_type: Optional[str] = None
    is_maker: Optional[bool] = None
    closed_quantity: Decimal = _ZERO  # venue-reported part of a fill that reduced an existing position

    def __post_init__(self):
        if not self.event_id:
            raise ValueError("RawEvent requires a non-empty event_id")
        if not isinstance(self.kind, EventKind):
            raise ValueError(f"RawEvent kind must be an EventKind, got {self.kind!r}")
        if self.kind == EventKind.FILL and self.side not in (SideType.BUY, SideType.SELL):
            raise ValueError(f"Fill {self.event_id} must have side Buy or Sell, got {self.side!r}")
        if self.closed_quantity < _ZERO or self.closed_quantity > self.quantity:
            raise ValueError(
                f"Fill {self.event_id} closed_quantity {self.closed_quantity} outside [0, {self.quantity}]"
            )

    @property
    def sort_key(self) -> tuple[int, str, str]:
        """Deterministic ordering key: timestamp, then venue id, then kind."""
        return (self.timestamp_ms, self.event_id, self.kind.value)

    @property
    def signed_quantity(self) -> Decimal:
        """Position size change caused by this event (zero for orders and income)."""
        if self.kind != EventKind.FILL:
            return _ZERO
        return self.quantity if self.side == SideType.BUY else -self.quantity


def sort_events(events) -> list[RawEvent]:
    """Return events in ascending (timestamp, event_id, kind) order."""
    return sorted(events, key=lambda e: e.sort_key)
