"""Tests for SyncMonitor backoff and alerting."""

from datetime import datetime, UTC, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from ledger_core.reconciler import ReconciliationResult
from ledger_db.enums import SyncStatus

from trade_sync.config import BackoffConfig
from trade_sync.models import SyncRun
from trade_sync.monitor import SyncMonitor
from trade_sync.notifier import AlertKind

NOW = datetime(2025, 1, 2, tzinfo=UTC)


def _run(status, **kwargs):
    return SyncRun(account_id="acc-1", started_at=NOW, status=status, **kwargs)


def _reconciliation(within_tolerance):
    return ReconciliationResult(
        period_start=0,
        period_end=1,
        aggregated_total_pnl=Decimal("100"),
        venue_reported_total_pnl=Decimal("101") if not within_tolerance else Decimal("100"),
        delta=Decimal("1") if not within_tolerance else Decimal("0"),
        within_tolerance=within_tolerance,
        tolerance=Decimal("0.101"),
        trade_count=3,
    )


@pytest.fixture
def monitor(store, notifier):
    return SyncMonitor(store, notifier, BackoffConfig(), clock=lambda: NOW)


class TestBackoff:
    def test_backoff_seconds(self, monitor):
        assert monitor.backoff_seconds(0) == 0.0
        assert monitor.backoff_seconds(1) == 60
        assert monitor.backoff_seconds(3) == 240

    def test_backoff_capped(self, store):
        monitor = SyncMonitor(store, backoff=BackoffConfig(base_seconds=30, cap_exponent=6, max_backoff_seconds=1000))

        assert monitor.backoff_seconds(6) == 1000
        assert monitor.backoff_seconds(50) == 1000

    def test_exponent_capped(self, store):
        monitor = SyncMonitor(store, backoff=BackoffConfig(base_seconds=1, cap_exponent=2, max_backoff_seconds=3600))

        assert monitor.backoff_seconds(10) == 4

    def test_three_failures_back_off_at_least_240s(self, monitor):
        for _ in range(3):
            health = monitor.record(_run(SyncStatus.FAILED, error="fetch_failed"))

        assert health.consecutive_failures == 3
        assert health.next_allowed_attempt_at >= NOW + timedelta(seconds=240)
        assert health.next_allowed_attempt_at <= NOW + timedelta(seconds=3600)
        assert not monitor.can_attempt("acc-1", NOW + timedelta(seconds=239))
        assert monitor.can_attempt("acc-1", NOW + timedelta(seconds=240))

    @pytest.mark.parametrize("status", [SyncStatus.SUCCEEDED, SyncStatus.PARTIAL])
    def test_success_resets(self, monitor, status):
        monitor.record(_run(SyncStatus.FAILED, error="x"))
        monitor.record(_run(SyncStatus.FAILED, error="x"))

        health = monitor.record(_run(status))

        assert health.consecutive_failures == 0
        assert health.next_allowed_attempt_at is None
        assert health.last_result == status
        assert monitor.can_attempt("acc-1")

    def test_accounts_independent(self, monitor):
        monitor.record(_run(SyncStatus.FAILED, error="x"))

        assert monitor.can_attempt("acc-2")
        assert not monitor.can_attempt("acc-1")


class TestAlerts:
    def test_failed_run_alerts(self, monitor, notifier):
        monitor.record(_run(SyncStatus.FAILED, error="fetch_failed: boom"))

        notifier.notify.assert_called_once()
        account_id, kind, details = notifier.notify.call_args.args
        assert account_id == "acc-1"
        assert kind == AlertKind.SYNC_FAILED
        assert details["error"] == "fetch_failed: boom"

    def test_repeated_failures_alert_at_threshold(self, monitor, notifier):
        monitor.record(_run(SyncStatus.FAILED, error="x"))
        monitor.record(_run(SyncStatus.FAILED, error="x"))
        assert AlertKind.REPEATED_FAILURES not in [c.args[1] for c in notifier.notify.call_args_list]

        monitor.record(_run(SyncStatus.FAILED, error="x"))

        assert notifier.notify.call_args.args[1] == AlertKind.REPEATED_FAILURES

    def test_reconciliation_mismatch_alert(self, monitor, notifier):
        monitor.record(_run(SyncStatus.PARTIAL, reconciliation=_reconciliation(False)))

        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.args[1] == AlertKind.RECONCILIATION_MISMATCH
        assert notifier.notify.call_args.args[2]["delta"] == Decimal("-1")

    def test_data_quality_alert(self, monitor, notifier):
        monitor.record(
            _run(
                SyncStatus.PARTIAL,
                reconciliation=_reconciliation(True),
                trades_rejected=2,
                rejection_reasons={"non_positive_quantity": 2},
            )
        )

        assert notifier.notify.call_args.args[1] == AlertKind.DATA_QUALITY
        assert notifier.notify.call_args.args[2]["rejected"] == 2

    def test_clean_run_no_alert(self, monitor, notifier):
        monitor.record(_run(SyncStatus.SUCCEEDED, reconciliation=_reconciliation(True)))

        notifier.notify.assert_not_called()

    def test_notifier_failure_swallowed(self, store):
        notifier = MagicMock()
        notifier.notify.side_effect = RuntimeError("telegram down")
        monitor = SyncMonitor(store, notifier, clock=lambda: NOW)

        health = monitor.record(_run(SyncStatus.FAILED, error="x"))

        assert health.consecutive_failures == 1

    def test_no_notifier(self, store):
        monitor = SyncMonitor(store, clock=lambda: NOW)

        health = monitor.record(_run(SyncStatus.FAILED, error="x"))

        assert health.consecutive_failures == 1
