"""Cross-run shared state: single-flight registry and per-account health.

One SyncStateStore is created per process and passed to both the
orchestrator and the monitor. Every mutation happens under one lock, so a
scheduled and a manual trigger racing on the same account cannot both
acquire it or lose a health update.
"""

import logging
import threading
from typing import Callable, Optional

from trade_sync.errors import SingleFlightConflict
from trade_sync.models import SyncHealth

logger = logging.getLogger(__name__)


class SyncStateStore:
    """Thread-safe holder of active runs and SyncHealth per account."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active_runs: dict[str, str] = {}
        self._health: dict[str, SyncHealth] = {}
        self._account_locks: dict[str, threading.Lock] = {}

    def try_acquire(self, account_id: str, run_id: str) -> None:
        """Mark run_id as the running sync for the account.

        Raises:
            SingleFlightConflict: If another run holds the account.
        """
        with self._lock:
            active = self._active_runs.get(account_id)
            if active is not None:
                raise SingleFlightConflict(account_id, active)
            self._active_runs[account_id] = run_id
        logger.debug(f"{account_id}: run {run_id} acquired single-flight slot")

    def release(self, account_id: str, run_id: str) -> None:
        """Free the account if run_id still holds it."""
        with self._lock:
            if self._active_runs.get(account_id) == run_id:
                del self._active_runs[account_id]

    def active_run(self, account_id: str) -> Optional[str]:
        with self._lock:
            return self._active_runs.get(account_id)

    def get_health(self, account_id: str) -> SyncHealth:
        with self._lock:
            return self._health.get(account_id, SyncHealth())

    def update_health(self, account_id: str, fn: Callable[[SyncHealth], SyncHealth]) -> SyncHealth:
        """Atomically replace the account's health with fn(current)."""
        with self._lock:
            updated = fn(self._health.get(account_id, SyncHealth()))
            self._health[account_id] = updated
            return updated

    def account_lock(self, account_id: str) -> threading.Lock:
        """Lock serializing ledger writes for one account."""
        with self._lock:
            lock = self._account_locks.get(account_id)
            if lock is None:
                lock = self._account_locks[account_id] = threading.Lock()
            return lock
