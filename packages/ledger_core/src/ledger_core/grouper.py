"""Partition a normalized event stream into position lifecycles.

A lifecycle is the span during which an instrument's net position is
non-zero: it opens when the running signed size leaves zero and closes when
the size returns to exactly zero. Events are processed per instrument in
(timestamp, event_id, kind) order so the boundaries are identical for any
delivery order and for any replay over a superset of the same events.

A window of history can start while a position is already open. Fills carry
the venue-reported closed quantity, so a fill that closes more than the
lifecycle being tracked holds exposes quantity opened before the first event
seen. Such lifecycles are marked incomplete and withheld with the open ones.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal, localcontext
from enum import StrEnum
from typing import Iterable, Optional

from ledger_core.events import DirectionType, EventKind, RawEvent, sort_events
from ledger_core.pnl import DECIMAL_CONTEXT

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Suffix for the opening half of a fill that flips the position through zero.
FLIP_SUFFIX = "#flip"


class LifecycleStatus(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    INCOMPLETE = "incomplete"  # holds quantity opened before the first event seen


@dataclass
class PositionLifecycle:
    """Ordered, append-only events of one instrument between open and full close.

    ``orders`` holds order events whose order id matches a fill in this
    lifecycle. They never affect size and are kept apart from ``events``.
    """

    instrument: str
    events: list[RawEvent] = field(default_factory=list)
    orders: list[RawEvent] = field(default_factory=list)
    status: LifecycleStatus = LifecycleStatus.OPEN

    @property
    def opened_at(self) -> int:
        return self.events[0].timestamp_ms

    @property
    def closed_at(self) -> int:
        return self.events[-1].timestamp_ms

    @property
    def event_ids(self) -> tuple[str, ...]:
        return tuple(e.event_id for e in self.events)

    @property
    def fills(self) -> list[RawEvent]:
        return [e for e in self.events if e.kind == EventKind.FILL]

    @property
    def direction(self) -> Optional[DirectionType]:
        """Direction implied by the opening fill, None for income-only lifecycles."""
        for event in self.events:
            if event.kind == EventKind.FILL:
                return DirectionType.LONG if event.signed_quantity > 0 else DirectionType.SHORT
        return None

    @property
    def is_closed(self) -> bool:
        return self.status == LifecycleStatus.CLOSED

    def running_sizes(self) -> list[Decimal]:
        """Signed position size after each event, in order."""
        sizes = []
        size = _ZERO
        for event in self.events:
            size += event.signed_quantity
            sizes.append(size)
        return sizes


@dataclass
class GroupingResult:
    """Closed lifecycles (ready to aggregate) plus the withheld ones.

    ``open`` lifecycles are still running at the end of the stream;
    ``incomplete`` ones reach back before the first event seen.
    """

    closed: list[PositionLifecycle] = field(default_factory=list)
    open: list[PositionLifecycle] = field(default_factory=list)
    incomplete: list[PositionLifecycle] = field(default_factory=list)
    unattached_orders: int = 0

    @property
    def lifecycles(self) -> list[PositionLifecycle]:
        return self.closed + self.open + self.incomplete


def split_fill(event: RawEvent, closing_quantity: Decimal) -> tuple[RawEvent, RawEvent]:
    """Split a fill that crosses zero into its closing and opening parts.

    The closing part keeps the venue id; the opening part gets a derived id.
    The fee is split pro rata to quantity so the two parts sum to the original.
    """
    with localcontext(DECIMAL_CONTEXT):
        opening_quantity = event.quantity - closing_quantity
        closing_fee = event.fee * closing_quantity / event.quantity
        opening_fee = event.fee - closing_fee
    closing = replace(
        event,
        quantity=closing_quantity,
        fee=closing_fee,
        closed_quantity=min(event.closed_quantity, closing_quantity),
    )
    opening = replace(
        event,
        event_id=f"{event.event_id}{FLIP_SUFFIX}",
        quantity=opening_quantity,
        fee=opening_fee,
        realized_pnl=None,
        closed_quantity=_ZERO,
    )
    return closing, opening


def _income_only(instrument: str, events: list[RawEvent]) -> list[PositionLifecycle]:
    return [PositionLifecycle(instrument, [e], status=LifecycleStatus.CLOSED) for e in events]


class LifecycleGrouper:
    """Groups events into position lifecycles per instrument.

    Responsibilities:
    - Order events per instrument by (timestamp, event_id, kind)
    - Track the running signed position size
    - Open a lifecycle on zero -> non-zero, close it on return to zero
    - Split fills that flip the position through zero
    - Attach income to the lifecycle it falls in (or a zero-duration one when flat)
    - Withhold lifecycles that close quantity opened before the stream started
    - Attach order events to the lifecycle holding their fills

    Example:
        result = LifecycleGrouper().group(events)
        for lifecycle in result.closed:
            trade = aggregate(lifecycle)
    """

    def group(self, events: Iterable[RawEvent]) -> GroupingResult:
        by_instrument: dict[str, list[RawEvent]] = defaultdict(list)
        for event in events:
            by_instrument[event.instrument].append(event)

        result = GroupingResult()
        for instrument in sorted(by_instrument):
            closed, trailing, incomplete, unattached = self._group_instrument(
                instrument, sort_events(by_instrument[instrument])
            )
            result.closed.extend(closed)
            if trailing is not None:
                result.open.append(trailing)
            result.incomplete.extend(incomplete)
            result.unattached_orders += unattached

        logger.debug(
            f"Grouped {len(result.closed)} closed, {len(result.open)} open and "
            f"{len(result.incomplete)} incomplete lifecycles across {len(by_instrument)} instruments"
        )
        return result

    def _group_instrument(
        self, instrument: str, ordered: list[RawEvent]
    ) -> tuple[list[PositionLifecycle], Optional[PositionLifecycle], list[PositionLifecycle], int]:
        closed: list[PositionLifecycle] = []
        incomplete: list[PositionLifecycle] = []
        current: Optional[PositionLifecycle] = None
        prefix: Optional[PositionLifecycle] = None  # incomplete lifecycle still collecting closes
        size = _ZERO
        flat_income: list[RawEvent] = []
        orders: list[RawEvent] = []

        for event in ordered:
            if event.kind == EventKind.ORDER:
                orders.append(event)
                continue

            delta = event.signed_quantity
            if delta == _ZERO:
                # Income (or a zero-size fill) never moves the position.
                if current is None:
                    flat_income.append(event)
                else:
                    current.events.append(event)
                continue

            reducing = current is not None and (delta > 0) != (size > 0)
            closable = abs(size) if reducing else _ZERO
            if event.closed_quantity > closable:
                if current is not None:
                    current.status = LifecycleStatus.INCOMPLETE
                    incomplete.append(current)
                    prefix = current
                elif prefix is None:
                    prefix = PositionLifecycle(instrument, status=LifecycleStatus.INCOMPLETE)
                    incomplete.append(prefix)
                prefix.events.extend(flat_income)
                flat_income.clear()
                logger.debug(
                    f"Fill {event.event_id} on {instrument} closes {event.closed_quantity} "
                    f"against {closable} tracked; withholding lifecycle"
                )

                if event.closed_quantity < event.quantity:
                    closing, opening = split_fill(event, event.closed_quantity)
                    prefix.events.append(closing)
                    current = PositionLifecycle(instrument, [opening])
                    size = opening.signed_quantity
                    prefix = None
                else:
                    prefix.events.append(event)
                    current = None
                    size = _ZERO
                continue

            if current is None:
                closed.extend(_income_only(instrument, flat_income))
                flat_income.clear()
                prefix = None
                current = PositionLifecycle(instrument, [event])
                size = delta
                continue

            new_size = size + delta
            if new_size == _ZERO:
                current.events.append(event)
                current.status = LifecycleStatus.CLOSED
                closed.append(current)
                current = None
                size = _ZERO
            elif (new_size > 0) == (size > 0):
                current.events.append(event)
                size = new_size
            else:
                closing, opening = split_fill(event, abs(size))
                logger.debug(f"Position flip on {instrument} at fill {event.event_id}")
                current.events.append(closing)
                current.status = LifecycleStatus.CLOSED
                closed.append(current)
                current = PositionLifecycle(instrument, [opening])
                size = new_size

        closed.extend(_income_only(instrument, flat_income))

        unattached = self._attach_orders(closed + incomplete + ([current] if current else []), orders)
        return closed, current, incomplete, unattached

    @staticmethod
    def _attach_orders(lifecycles: list[PositionLifecycle], orders: list[RawEvent]) -> int:
        """Attach order events to the lifecycle holding a fill of the same order."""
        owner: dict[str, PositionLifecycle] = {}
        for lifecycle in lifecycles:
            for fill in lifecycle.fills:
                if fill.order_id:
                    owner.setdefault(fill.order_id, lifecycle)

        unattached = 0
        for order in orders:
            lifecycle = owner.get(order.order_id or order.event_id)
            if lifecycle is None:
                unattached += 1
            else:
                lifecycle.orders.append(order)
        return unattached


def group_lifecycles(events: Iterable[RawEvent]) -> GroupingResult:
    """Convenience wrapper around ``LifecycleGrouper().group``."""
    return LifecycleGrouper().group(events)
