"""Test fixtures for ledger database tests."""

import pytest
from datetime import datetime, UTC
from decimal import Decimal

from ledger_db.database import DatabaseFactory
from ledger_db.models import AggregatedTradeRecord, SyncRunRecord
from ledger_db.settings import DatabaseSettings


@pytest.fixture
def db_settings():
    """In-memory SQLite settings for testing."""
    return DatabaseSettings(
        db_type="sqlite",
        db_name=":memory:",
        echo_sql=False,
    )


@pytest.fixture
def db(db_settings):
    """Create fresh database for each test."""
    database = DatabaseFactory(db_settings)
    database.create_tables()
    yield database
    database.drop_tables()


@pytest.fixture
def session(db):
    """Provide a session for each test, rolled back afterwards."""
    session = db.session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sample_run(session):
    run = SyncRunRecord(
        account_id="acc-1",
        status="running",
        started_at=datetime(2025, 1, 1, tzinfo=UTC),
    )
    session.add(run)
    session.flush()
    return run


@pytest.fixture
def make_trade_record():
    """Factory for AggregatedTradeRecord rows."""

    def _make(provenance_hash="h1", account_id="acc-1", closed_at=None, instrument="BTCUSDT", sync_run_id=None):
        closed_at = closed_at or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        return AggregatedTradeRecord(
            account_id=account_id,
            provenance_hash=provenance_hash,
            sync_run_id=sync_run_id,
            instrument=instrument,
            direction="long",
            entry_price=Decimal("100"),
            exit_price=Decimal("110"),
            total_quantity=Decimal("2"),
            realized_pnl=Decimal("20"),
            total_fees=Decimal("0.2"),
            funding=Decimal("0"),
            net_pnl=Decimal("19.8"),
            result="win",
            opened_at=datetime(2025, 1, 1, 11, 0, tzinfo=UTC),
            closed_at=closed_at,
            hold_time_minutes=Decimal("60"),
            fee_assets=["USDT"],
            source_event_ids=["f1", "f2"],
        )

    return _make
