"""Exceptions raised inside a sync run.

None of these escape SyncOrchestrator.run_sync: refusals and failures are
reported to the caller through the returned SyncRun.
"""

from datetime import datetime

from ledger_core.errors import LedgerError


class SyncError(LedgerError):
    """Base class for orchestration errors."""

    reason = "error"


class TransientFetchError(SyncError):
    """A venue query failed (network, auth, rate limit). Retried via backoff."""

    reason = "fetch_failed"

    def __init__(self, kind: str, cause: BaseException):
        super().__init__(f"Failed to fetch {kind}: {type(cause).__name__}: {cause}")
        self.kind = kind
        self.cause = cause


class SingleFlightConflict(SyncError):
    """Another run is already in progress for the account."""

    reason = "sync_in_progress"

    def __init__(self, account_id: str, active_run_id: str):
        super().__init__(f"Sync already in progress for {account_id} (run {active_run_id})")
        self.account_id = account_id
        self.active_run_id = active_run_id


class QuotaExhausted(SyncError):
    """No sync runs left today for the account."""

    reason = "quota_exhausted"

    def __init__(self, account_id: str, current: int, maximum: int):
        super().__init__(f"Daily sync quota exhausted for {account_id} ({current}/{maximum})")
        self.account_id = account_id
        self.current = current
        self.maximum = maximum


class BackoffActive(SyncError):
    """The account is cooling down after consecutive failures."""

    reason = "backoff_active"

    def __init__(self, account_id: str, next_allowed_attempt_at: datetime):
        super().__init__(
            f"Sync for {account_id} not allowed before {next_allowed_attempt_at.isoformat()}"
        )
        self.account_id = account_id
        self.next_allowed_attempt_at = next_allowed_attempt_at


class SyncCancelled(SyncError):
    """The run timed out or was cancelled before persistence."""

    reason = "cancelled"
