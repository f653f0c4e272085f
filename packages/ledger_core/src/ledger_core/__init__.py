"""
ledger_core - Pure trade aggregation pipeline with zero exchange dependencies.

Turns normalized fills, orders and income events into closed position
lifecycles, aggregated trades, validation outcomes and reconciliation results.
"""

from ledger_core.events import RawEvent, EventKind, SideType, DirectionType, sort_events
from ledger_core.errors import (
    LedgerError,
    MalformedRecordError,
    ValidationRejection,
    ReconciliationMismatch,
)
from ledger_core.grouper import (
    LifecycleGrouper,
    LifecycleStatus,
    PositionLifecycle,
    GroupingResult,
    group_lifecycles,
)
from ledger_core.aggregator import (
    AggregatedTrade,
    AggregationBatch,
    AggregationFailure,
    aggregate,
    aggregate_all,
    compute_provenance_hash,
)
from ledger_core.validator import (
    ValidationStatus,
    ValidationOutcome,
    ValidationSummary,
    validate,
    validate_all,
    ensure_valid,
)
from ledger_core.reconciler import (
    ReconciliationTolerance,
    ReconciliationResult,
    reconcile,
    venue_total_for_trades,
)

__version__ = "0.1.0"

__all__ = [
    "RawEvent",
    "EventKind",
    "SideType",
    "DirectionType",
    "sort_events",
    "LedgerError",
    "MalformedRecordError",
    "ValidationRejection",
    "ReconciliationMismatch",
    "LifecycleGrouper",
    "LifecycleStatus",
    "PositionLifecycle",
    "GroupingResult",
    "group_lifecycles",
    "AggregatedTrade",
    "AggregationBatch",
    "AggregationFailure",
    "aggregate",
    "aggregate_all",
    "compute_provenance_hash",
    "ValidationStatus",
    "ValidationOutcome",
    "ValidationSummary",
    "validate",
    "validate_all",
    "ensure_valid",
    "ReconciliationTolerance",
    "ReconciliationResult",
    "reconcile",
    "venue_total_for_trades",
]
