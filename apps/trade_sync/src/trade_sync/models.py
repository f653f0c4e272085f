"""Run summary and health state shared by the orchestrator and monitor."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ledger_core.reconciler import ReconciliationResult
from ledger_db.enums import SyncStatus


@dataclass
class SyncRun:
    """Summary of one sync attempt for an account.

    This is what callers of SyncOrchestrator.run_sync receive; internal
    errors are folded into ``status`` and ``error``.
    """

    account_id: str
    started_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SyncStatus = SyncStatus.RUNNING
    finished_at: Optional[datetime] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    events_fetched: int = 0
    events_dropped: int = 0
    trades_aggregated: int = 0
    trades_rejected: int = 0
    trades_inserted: int = 0
    open_lifecycles: int = 0
    incomplete_lifecycles: int = 0
    resume_from: Optional[datetime] = None  # where the next incremental window picks up
    reconciliation: Optional[ReconciliationResult] = None
    rejection_reasons: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    recorded: bool = True  # False for refusals that never reached running

    @property
    def reconciliation_delta(self) -> Optional[Decimal]:
        return self.reconciliation.delta if self.reconciliation else None

    @property
    def within_tolerance(self) -> Optional[bool]:
        return self.reconciliation.within_tolerance if self.reconciliation else None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class SyncHealth:
    """Per-account failure streak and backoff gate. Written only by SyncMonitor."""

    consecutive_failures: int = 0
    next_allowed_attempt_at: Optional[datetime] = None
    last_result: SyncStatus = SyncStatus.IDLE
    last_error: Optional[str] = None
    last_run_at: Optional[datetime] = None

    def allows_attempt(self, now: datetime) -> bool:
        return self.next_allowed_attempt_at is None or now >= self.next_allowed_attempt_at
