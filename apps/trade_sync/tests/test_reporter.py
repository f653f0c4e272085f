"""Tests for trade_sync reporter."""

import json
from datetime import datetime, UTC
from decimal import Decimal

from ledger_core.reconciler import ReconciliationResult
from ledger_db.enums import SyncStatus

from trade_sync.models import SyncRun
from trade_sync.reporter import build_table, print_console, run_to_dict, save_json


def _make_run(**overrides):
    data = dict(
        account_id="main",
        started_at=datetime(2025, 1, 2, tzinfo=UTC),
        finished_at=datetime(2025, 1, 2, 0, 0, 5, tzinfo=UTC),
        status=SyncStatus.PARTIAL,
        window_start=datetime(2025, 1, 1, tzinfo=UTC),
        window_end=datetime(2025, 1, 2, tzinfo=UTC),
        events_fetched=12,
        trades_aggregated=3,
        trades_rejected=1,
        trades_inserted=2,
        rejection_reasons={"non_positive_quantity": 1},
        reconciliation=ReconciliationResult(
            period_start=0,
            period_end=1,
            aggregated_total_pnl=Decimal("100.00"),
            venue_reported_total_pnl=Decimal("101.00"),
            delta=Decimal("1.00"),
            within_tolerance=False,
            tolerance=Decimal("0.101"),
            trade_count=2,
        ),
    )
    data.update(overrides)
    return SyncRun(**data)


class TestRunToDict:
    def test_fields(self):
        data = run_to_dict(_make_run())

        assert data["status"] == "partial"
        assert data["trades_inserted"] == 2
        assert data["reconciliation"]["delta"] == Decimal("1.00")
        assert data["reconciliation"]["within_tolerance"] is False

    def test_resume_point_and_incomplete_count(self):
        resume = datetime(2025, 1, 1, 12, tzinfo=UTC)
        data = run_to_dict(_make_run(incomplete_lifecycles=1, resume_from=resume))

        assert data["incomplete_lifecycles"] == 1
        assert data["resume_from"] == resume

    def test_without_reconciliation(self):
        data = run_to_dict(_make_run(reconciliation=None, status=SyncStatus.FAILED, error="fetch_failed: x"))

        assert data["reconciliation"] is None
        assert data["error"] == "fetch_failed: x"


class TestConsole:
    def test_table_has_row_per_run(self):
        table = build_table([_make_run(), _make_run(account_id="other", window_start=None)])

        assert table.row_count == 2

    def test_print_console_does_not_raise(self):
        print_console([_make_run(), _make_run(status=SyncStatus.FAILED, error="backoff_active: wait")])


class TestSaveJson:
    def test_writes_file(self, tmp_path):
        path = save_json([_make_run()], str(tmp_path))

        with open(path) as f:
            data = json.load(f)

        assert data["runs"][0]["account_id"] == "main"
        assert data["runs"][0]["reconciliation"]["delta"] == "1.00"
        assert data["runs"][0]["started_at"] == "2025-01-02T00:00:00+00:00"
