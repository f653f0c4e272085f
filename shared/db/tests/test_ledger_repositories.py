"""Tests for ledger repositories."""

from datetime import date, datetime, UTC
from decimal import Decimal

from ledger_db.enums import SyncStatus
from ledger_db.models import SyncRunRecord
from ledger_db.repositories import (
    AggregatedTradeRepository,
    SyncQuotaRepository,
    SyncRunRepository,
)
from ledger_db.utils import as_utc


class TestAggregatedTradeRepository:
    def test_bulk_insert_returns_inserted_count(self, session, make_trade_record):
        repo = AggregatedTradeRepository(session)

        inserted = repo.bulk_insert([make_trade_record("h1"), make_trade_record("h2")])

        assert inserted == 2
        assert repo.count_by_account("acc-1") == 2

    def test_bulk_insert_skips_existing_provenance(self, session, make_trade_record):
        repo = AggregatedTradeRepository(session)
        repo.bulk_insert([make_trade_record("h1")])

        inserted = repo.bulk_insert([make_trade_record("h1"), make_trade_record("h3")])

        assert inserted == 1
        assert repo.count_by_account("acc-1") == 2

    def test_same_provenance_allowed_for_other_account(self, session, make_trade_record):
        repo = AggregatedTradeRepository(session)
        repo.bulk_insert([make_trade_record("h1")])

        inserted = repo.bulk_insert([make_trade_record("h1", account_id="acc-2")])

        assert inserted == 1

    def test_bulk_insert_empty(self, session):
        assert AggregatedTradeRepository(session).bulk_insert([]) == 0

    def test_values_round_trip(self, session, make_trade_record):
        repo = AggregatedTradeRepository(session)
        repo.bulk_insert([make_trade_record("h1")])

        stored = repo.get_by_account_range(
            "acc-1", datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 2, tzinfo=UTC)
        )[0]

        assert stored.entry_price == Decimal("100")
        assert stored.net_pnl == Decimal("19.8")
        assert stored.source_event_ids == ["f1", "f2"]
        assert stored.created_at is not None

    def test_get_by_account_range_filters(self, session, make_trade_record):
        repo = AggregatedTradeRepository(session)
        repo.bulk_insert([
            make_trade_record("h1", closed_at=datetime(2025, 1, 1, 10, tzinfo=UTC)),
            make_trade_record("h2", closed_at=datetime(2025, 1, 3, 10, tzinfo=UTC)),
            make_trade_record("h3", closed_at=datetime(2025, 1, 1, 11, tzinfo=UTC), instrument="ETHUSDT"),
            make_trade_record("h4", account_id="acc-2", closed_at=datetime(2025, 1, 1, 10, tzinfo=UTC)),
        ])

        start, end = datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 2, tzinfo=UTC)

        assert [t.provenance_hash for t in repo.get_by_account_range("acc-1", start, end)] == ["h1", "h3"]
        assert [t.provenance_hash for t in repo.get_by_account_range("acc-1", start, end, "ETHUSDT")] == ["h3"]

    def test_linked_to_sync_run(self, session, sample_run, make_trade_record):
        repo = AggregatedTradeRepository(session)

        inserted = repo.bulk_insert([make_trade_record("h1", sync_run_id=sample_run.run_id)])

        assert inserted == 1


class TestSyncRunRepository:
    def test_create_and_get(self, session):
        repo = SyncRunRepository(session)
        run = repo.create(SyncRunRecord(account_id="acc-1", status="running", started_at=datetime.now(UTC)))

        assert repo.get_by_id(run.run_id) is run
        assert len(run.run_id) == 36

    def test_latest_completed_ignores_failed(self, session):
        repo = SyncRunRepository(session)
        repo.create(SyncRunRecord(account_id="a", status=SyncStatus.SUCCEEDED, started_at=datetime(2025, 1, 1, tzinfo=UTC)))
        partial = repo.create(SyncRunRecord(account_id="a", status=SyncStatus.PARTIAL, started_at=datetime(2025, 1, 2, tzinfo=UTC)))
        repo.create(SyncRunRecord(account_id="a", status=SyncStatus.FAILED, started_at=datetime(2025, 1, 3, tzinfo=UTC)))

        assert repo.get_latest_completed("a").run_id == partial.run_id

    def test_latest_completed_keeps_resume_point(self, session):
        repo = SyncRunRepository(session)
        resume = datetime(2025, 1, 1, 12, tzinfo=UTC)
        repo.create(
            SyncRunRecord(account_id="a", status=SyncStatus.SUCCEEDED, started_at=resume, resume_from=resume)
        )

        assert as_utc(repo.get_latest_completed("a").resume_from) == resume
        assert repo.get_latest_completed("b") is None

    def test_get_by_account_id_newest_first(self, session):
        repo = SyncRunRepository(session)
        for day in (1, 3, 2):
            repo.create(SyncRunRecord(account_id="a", status="failed", started_at=datetime(2025, 1, day, tzinfo=UTC)))

        runs = repo.get_by_account_id("a", limit=2)

        assert [as_utc(r.started_at).day for r in runs] == [3, 2]


class TestSyncQuotaRepository:
    def test_count_defaults_to_zero(self, session):
        assert SyncQuotaRepository(session).get_count("acc-1", date(2025, 1, 1)) == 0

    def test_increment(self, session):
        repo = SyncQuotaRepository(session)

        assert repo.increment("acc-1", date(2025, 1, 1)) == 1
        assert repo.increment("acc-1", date(2025, 1, 1)) == 2
        assert repo.increment("acc-1", date(2025, 1, 2)) == 1
        assert repo.get_count("acc-2", date(2025, 1, 1)) == 0
