"""Exceptions raised by the aggregation pipeline."""


class LedgerError(Exception):
    """Base class for ledger pipeline errors."""


class MalformedRecordError(LedgerError):
    """A single venue record is missing required fields or has unparsable values.

    The record is dropped and counted; the batch carries on.
    """

    def __init__(self, message: str, record: dict | None = None):
        super().__init__(message)
        self.record = record


class ValidationRejection(LedgerError):
    """An aggregated trade violates a structural rule and must not be persisted."""

    def __init__(self, trade, reasons: tuple[str, ...]):
        super().__init__(
            f"Trade {trade.instrument} closed_at={trade.closed_at} rejected: {', '.join(reasons)}"
        )
        self.trade = trade
        self.reasons = reasons


class ReconciliationMismatch(LedgerError):
    """Aggregated P&L diverges from the venue-reported total beyond tolerance."""

    def __init__(self, result):
        super().__init__(
            f"Reconciliation mismatch for [{result.period_start}, {result.period_end}]: "
            f"venue={result.venue_reported_total_pnl} aggregated={result.aggregated_total_pnl} "
            f"delta={result.delta} (venue - aggregated) tolerance={result.tolerance}"
        )
        self.result = result
