"""Structural validation of aggregated trades before persistence.

Rejections keep a trade out of storage. Warnings are informational data
quality signals and never reject a trade. Income booked while the position
was flat aggregates to a zero-duration trade without prices or quantity;
such trades are valid.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Iterable

from ledger_core.aggregator import AggregatedTrade
from ledger_core.errors import ValidationRejection
from ledger_core.pnl import calc_realised_pnl, relative_difference

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Rejection reasons
NON_POSITIVE_ENTRY_PRICE = "non_positive_entry_price"
NON_POSITIVE_EXIT_PRICE = "non_positive_exit_price"
NON_POSITIVE_QUANTITY = "non_positive_quantity"
CLOSED_BEFORE_OPENED = "closed_before_opened"
MISSING_SOURCE_EVENTS = "missing_source_events"

# Warnings
ZERO_FEES = "zero_fees"
LONG_HOLD_TIME = "long_hold_time"
PNL_CROSS_CHECK_DRIFT = "pnl_cross_check_drift"

MAX_HOLD_TIME_MS = 30 * 24 * 60 * 60 * 1000
PNL_DRIFT_WARNING = Decimal("0.01")


class ValidationStatus(StrEnum):
    VALID = "valid"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ValidationOutcome:
    trade: AggregatedTrade
    status: ValidationStatus
    reasons: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.status == ValidationStatus.VALID


@dataclass
class ValidationSummary:
    """Result of validating a batch of trades."""

    valid: list[AggregatedTrade] = field(default_factory=list)
    rejected: list[ValidationOutcome] = field(default_factory=list)
    reason_counts: Counter = field(default_factory=Counter)
    warning_counts: Counter = field(default_factory=Counter)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


def _rejection_reasons(trade: AggregatedTrade) -> list[str]:
    reasons = []
    # Income booked while flat has no prices or quantity by construction.
    if not trade.is_income_only:
        if trade.entry_price <= _ZERO:
            reasons.append(NON_POSITIVE_ENTRY_PRICE)
        if trade.exit_price <= _ZERO:
            reasons.append(NON_POSITIVE_EXIT_PRICE)
        if trade.total_quantity <= _ZERO:
            reasons.append(NON_POSITIVE_QUANTITY)
    if trade.closed_at < trade.opened_at:
        reasons.append(CLOSED_BEFORE_OPENED)
    if not trade.source_event_ids:
        reasons.append(MISSING_SOURCE_EVENTS)
    return reasons


def _warnings(trade: AggregatedTrade) -> list[str]:
    if trade.is_income_only:
        return []

    warnings = []
    if trade.total_fees == _ZERO:
        warnings.append(ZERO_FEES)
    if trade.hold_time_ms > MAX_HOLD_TIME_MS:
        warnings.append(LONG_HOLD_TIME)

    # Fill P&L of a lifecycle that returned to flat equals the average-price
    # P&L up to rounding; a gap means the trade was not built from its fills.
    expected = calc_realised_pnl(
        trade.direction, trade.entry_price, trade.exit_price, trade.total_quantity
    )
    if expected != _ZERO and relative_difference(trade.fill_pnl, expected) > PNL_DRIFT_WARNING:
        warnings.append(PNL_CROSS_CHECK_DRIFT)
    return warnings


def validate(trade: AggregatedTrade) -> ValidationOutcome:
    """Check one trade against the rejection rules.

    Warnings are only computed for trades that pass.
    """
    reasons = _rejection_reasons(trade)
    if reasons:
        return ValidationOutcome(trade, ValidationStatus.REJECTED, reasons=tuple(reasons))
    return ValidationOutcome(trade, ValidationStatus.VALID, warnings=tuple(_warnings(trade)))


def ensure_valid(trade: AggregatedTrade) -> AggregatedTrade:
    """Return the trade unchanged or raise ValidationRejection."""
    outcome = validate(trade)
    if not outcome.is_valid:
        raise ValidationRejection(trade, outcome.reasons)
    return trade


def validate_all(trades: Iterable[AggregatedTrade]) -> ValidationSummary:
    summary = ValidationSummary()
    for trade in trades:
        outcome = validate(trade)
        if outcome.is_valid:
            summary.valid.append(trade)
            summary.warning_counts.update(outcome.warnings)
        else:
            summary.rejected.append(outcome)
            summary.reason_counts.update(outcome.reasons)
            logger.warning(
                f"Rejected {trade.instrument} trade closed at {trade.closed_at}: "
                f"{', '.join(outcome.reasons)}"
            )
    return summary
