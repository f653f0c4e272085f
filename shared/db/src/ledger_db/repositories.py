"""Repository pattern for ledger database operations, scoped by account."""

from datetime import date, datetime
from typing import Generic, TypeVar, Optional, List

from sqlalchemy import insert, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ledger_db.enums import SyncStatus
from ledger_db.models import (
    Base,
    AggregatedTradeRecord,
    SyncRunRecord,
    SyncQuotaUsage,
)


T = TypeVar("T", bound=Base)


def _insert_ignoring_conflicts(session: Session, model, rows: list[dict], index_elements: list[str]):
    """Build an INSERT that skips rows violating the given unique index."""
    db_dialect = session.get_bind().dialect.name
    if db_dialect == "postgresql":
        stmt = postgresql_insert(model).values(rows)
        return stmt.on_conflict_do_nothing(index_elements=index_elements)
    if db_dialect == "sqlite":
        stmt = sqlite_insert(model).values(rows)
        return stmt.on_conflict_do_nothing(index_elements=index_elements)
    # Fallback for unsupported dialects - no conflict handling
    return insert(model).values(rows)


class BaseRepository(Generic[T]):
    """Base repository with common write operations.

    Usage:
        repo = SyncRunRepository(session)
        run = repo.create(SyncRunRecord(account_id="main", ...))
    """

    def __init__(self, session: Session, model_class: type[T]):
        self.session = session
        self.model_class = model_class

    def create(self, entity: T) -> T:
        """Insert entity and flush so generated fields are populated."""
        self.session.add(entity)
        self.session.flush()
        return entity

    def update(self, entity: T) -> T:
        """Merge entity state into the session."""
        merged = self.session.merge(entity)
        self.session.flush()
        return merged


class AggregatedTradeRepository(BaseRepository[AggregatedTradeRecord]):
    """Repository for aggregated trades.

    Inserts are idempotent on (account_id, provenance_hash).
    """

    def __init__(self, session: Session):
        super().__init__(session, AggregatedTradeRecord)

    def bulk_insert(self, trades: List[AggregatedTradeRecord]) -> int:
        """Insert trades, silently skipping ones whose provenance already exists.

        Args:
            trades: AggregatedTradeRecord instances to insert.

        Returns:
            Number of trades inserted (excluding duplicates).
        """
        if not trades:
            return 0

        trades_data = [
            {
                "account_id": t.account_id,
                "provenance_hash": t.provenance_hash,
                "sync_run_id": t.sync_run_id,
                "instrument": t.instrument,
                "direction": t.direction,
                "entry_price": t.entry_price,
                "exit_price": t.exit_price,
                "total_quantity": t.total_quantity,
                "realized_pnl": t.realized_pnl,
                "total_fees": t.total_fees,
                "funding": t.funding,
                "net_pnl": t.net_pnl,
                "result": t.result,
                "opened_at": t.opened_at,
                "closed_at": t.closed_at,
                "hold_time_minutes": t.hold_time_minutes,
                "entry_order_type": t.entry_order_type,
                "exit_order_type": t.exit_order_type,
                "is_maker": t.is_maker,
                "fee_assets": t.fee_assets,
                "source_event_ids": t.source_event_ids,
            }
            for t in trades
        ]

        stmt = _insert_ignoring_conflicts(
            self.session,
            AggregatedTradeRecord,
            trades_data,
            index_elements=["account_id", "provenance_hash"],
        )
        result = self.session.execute(stmt)
        self.session.flush()

        # rowcount excludes rows skipped by ON CONFLICT DO NOTHING
        return result.rowcount if result.rowcount else 0

    def get_by_account_range(
        self,
        account_id: str,
        start_ts: datetime,
        end_ts: datetime,
        instrument: Optional[str] = None,
    ) -> List[AggregatedTradeRecord]:
        """Get trades closed within [start_ts, end_ts], ordered by closed_at."""
        query = self.session.query(AggregatedTradeRecord).filter(
            AggregatedTradeRecord.account_id == account_id,
            AggregatedTradeRecord.closed_at >= start_ts,
            AggregatedTradeRecord.closed_at <= end_ts,
        )
        if instrument:
            query = query.filter(AggregatedTradeRecord.instrument == instrument)
        return query.order_by(AggregatedTradeRecord.closed_at, AggregatedTradeRecord.id).all()

    def count_by_account(self, account_id: str) -> int:
        return (
            self.session.query(AggregatedTradeRecord)
            .filter(AggregatedTradeRecord.account_id == account_id)
            .count()
        )


class SyncRunRepository(BaseRepository[SyncRunRecord]):
    """Repository for sync run history."""

    def __init__(self, session: Session):
        super().__init__(session, SyncRunRecord)

    def get_by_id(self, run_id: str) -> Optional[SyncRunRecord]:
        return self.session.get(SyncRunRecord, run_id)

    def get_by_account_id(self, account_id: str, limit: int = 50) -> List[SyncRunRecord]:
        """Get most recent runs for an account, newest first."""
        return (
            self.session.query(SyncRunRecord)
            .filter(SyncRunRecord.account_id == account_id)
            .order_by(SyncRunRecord.started_at.desc())
            .limit(limit)
            .all()
        )

    def get_latest_completed(self, account_id: str) -> Optional[SyncRunRecord]:
        """Get the latest succeeded or partial run; its resume_from anchors the next incremental window."""
        return (
            self.session.query(SyncRunRecord)
            .filter(
                SyncRunRecord.account_id == account_id,
                SyncRunRecord.status.in_([SyncStatus.SUCCEEDED.value, SyncStatus.PARTIAL.value]),
            )
            .order_by(SyncRunRecord.started_at.desc())
            .first()
        )


class SyncQuotaRepository(BaseRepository[SyncQuotaUsage]):
    """Repository for per-account daily sync counters."""

    def __init__(self, session: Session):
        super().__init__(session, SyncQuotaUsage)

    def get_count(self, account_id: str, usage_date: date) -> int:
        result = (
            self.session.query(SyncQuotaUsage.run_count)
            .filter(
                SyncQuotaUsage.account_id == account_id,
                SyncQuotaUsage.usage_date == usage_date,
            )
            .first()
        )
        return result[0] if result else 0

    def increment(self, account_id: str, usage_date: date) -> int:
        """Atomically add one run to the day's counter.

        Ensures the row exists, then increments in SQL so concurrent callers
        never lose an update.

        Returns:
            The counter value after the increment.
        """
        stmt = _insert_ignoring_conflicts(
            self.session,
            SyncQuotaUsage,
            [{"account_id": account_id, "usage_date": usage_date, "run_count": 0}],
            index_elements=["account_id", "usage_date"],
        )
        self.session.execute(stmt)
        self.session.execute(
            update(SyncQuotaUsage)
            .where(
                SyncQuotaUsage.account_id == account_id,
                SyncQuotaUsage.usage_date == usage_date,
            )
            .values(run_count=SyncQuotaUsage.run_count + 1)
        )
        self.session.flush()
        return self.get_count(account_id, usage_date)
