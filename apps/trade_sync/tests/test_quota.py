"""Tests for DatabaseQuotaProvider."""

from datetime import datetime, UTC, timedelta

from trade_sync.quota import DatabaseQuotaProvider, QuotaStatus


class TestQuotaStatus:
    def test_remaining(self):
        assert QuotaStatus(current=3, max=10).remaining == 7
        assert QuotaStatus(current=12, max=10).remaining == 0


class TestDatabaseQuotaProvider:
    def test_fresh_account_has_full_quota(self, db):
        quota = DatabaseQuotaProvider(db, daily_limit=5)

        status = quota.get_remaining_sync_quota("acc-1")

        assert status == QuotaStatus(current=0, max=5)

    def test_consume_counts_runs(self, db):
        quota = DatabaseQuotaProvider(db, daily_limit=2)

        quota.consume("acc-1")
        status = quota.consume("acc-1")

        assert status.current == 2
        assert status.remaining == 0
        assert quota.get_remaining_sync_quota("acc-1").remaining == 0
        assert quota.get_remaining_sync_quota("acc-2").remaining == 2

    def test_quota_resets_next_utc_day(self, db):
        now = [datetime(2025, 1, 1, 23, 0, tzinfo=UTC)]
        quota = DatabaseQuotaProvider(db, daily_limit=1, clock=lambda: now[0])
        quota.consume("acc-1")
        assert quota.get_remaining_sync_quota("acc-1").remaining == 0

        now[0] += timedelta(hours=2)

        assert quota.get_remaining_sync_quota("acc-1").remaining == 1
