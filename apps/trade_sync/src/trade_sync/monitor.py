"""Sync Monitor: failure streaks, exponential backoff and alerts.

The monitor is the only writer of SyncHealth. It records every finished
run, gates the next attempt with

    next_allowed_attempt_at = now + min(base * 2**min(failures, cap), max)

and raises notification-worthy alerts. Alert delivery is best-effort and
never affects the run.
"""

import logging
from dataclasses import replace
from datetime import datetime, UTC, timedelta
from typing import Callable, Optional

from ledger_db.enums import SyncStatus

from trade_sync.config import BackoffConfig
from trade_sync.models import SyncHealth, SyncRun
from trade_sync.notifier import AlertKind, Notifier
from trade_sync.state import SyncStateStore

logger = logging.getLogger(__name__)


class SyncMonitor:
    def __init__(
        self,
        store: SyncStateStore,
        notifier: Optional[Notifier] = None,
        backoff: Optional[BackoffConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._store = store
        self._notifier = notifier
        self._backoff = backoff or BackoffConfig()
        self._clock = clock

    def backoff_seconds(self, failures: int) -> float:
        """Delay before the next attempt after ``failures`` consecutive failures."""
        if failures <= 0:
            return 0.0
        exponent = min(failures, self._backoff.cap_exponent)
        return min(self._backoff.base_seconds * 2**exponent, self._backoff.max_backoff_seconds)

    def can_attempt(self, account_id: str, now: Optional[datetime] = None) -> bool:
        return self._store.get_health(account_id).allows_attempt(now or self._clock())

    def record(self, run: SyncRun) -> SyncHealth:
        """Fold a finished run into the account's health and emit alerts."""
        now = self._clock()

        def _apply(health: SyncHealth) -> SyncHealth:
            if run.status == SyncStatus.FAILED:
                failures = health.consecutive_failures + 1
                return replace(
                    health,
                    consecutive_failures=failures,
                    next_allowed_attempt_at=now + timedelta(seconds=self.backoff_seconds(failures)),
                    last_result=run.status,
                    last_error=run.error,
                    last_run_at=now,
                )
            return SyncHealth(last_result=run.status, last_run_at=now)

        health = self._store.update_health(run.account_id, _apply)

        if run.status == SyncStatus.FAILED:
            logger.warning(
                f"{run.account_id}: sync failed ({health.consecutive_failures} in a row), "
                f"next attempt at {health.next_allowed_attempt_at.isoformat()}"
            )
        else:
            logger.info(f"{run.account_id}: sync {run.status}, failure streak reset")

        self._emit_alerts(run, health)
        return health

    def _emit_alerts(self, run: SyncRun, health: SyncHealth) -> None:
        if run.status == SyncStatus.FAILED:
            self._notify(run.account_id, AlertKind.SYNC_FAILED, {"run": run.id, "error": run.error})
            if health.consecutive_failures >= self._backoff.max_consecutive_failures:
                self._notify(
                    run.account_id,
                    AlertKind.REPEATED_FAILURES,
                    {
                        "consecutive_failures": health.consecutive_failures,
                        "next_attempt": health.next_allowed_attempt_at.isoformat(),
                    },
                )
            return

        if run.within_tolerance is False:
            result = run.reconciliation
            self._notify(
                run.account_id,
                AlertKind.RECONCILIATION_MISMATCH,
                {
                    "aggregated": result.aggregated_total_pnl,
                    "venue": result.venue_reported_total_pnl,
                    "delta": result.delta,
                    "tolerance": result.tolerance,
                },
            )
        if run.trades_rejected or run.warnings:
            details = {"rejected": run.trades_rejected}
            details.update(run.rejection_reasons)
            if run.warnings:
                details["warnings"] = "; ".join(run.warnings)
            self._notify(run.account_id, AlertKind.DATA_QUALITY, details)

    def _notify(self, account_id: str, kind: AlertKind, details: dict) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(account_id, kind, details)
        except Exception as e:
            logger.warning(f"Notifier raised for {kind} ({account_id}): {e}")
