"""Persistence collaborator: writes aggregated trades and sync runs."""

import logging
from datetime import datetime, UTC
from typing import Iterable, Optional

from ledger_core.aggregator import AggregatedTrade
from ledger_core.validator import ensure_valid
from ledger_db.database import DatabaseFactory
from ledger_db.models import AggregatedTradeRecord, SyncRunRecord
from ledger_db.repositories import AggregatedTradeRepository, SyncRunRepository
from ledger_db.utils import as_utc

from trade_sync.models import SyncRun

logger = logging.getLogger(__name__)


def _from_ms(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)


def trade_to_record(account_id: str, trade: AggregatedTrade, sync_run_id: Optional[str] = None) -> AggregatedTradeRecord:
    """Convert a pipeline AggregatedTrade to its database row."""
    return AggregatedTradeRecord(
        account_id=account_id,
        provenance_hash=trade.provenance_hash,
        sync_run_id=sync_run_id,
        instrument=trade.instrument,
        direction=trade.direction.value,
        entry_price=trade.entry_price,
        exit_price=trade.exit_price,
        total_quantity=trade.total_quantity,
        realized_pnl=trade.realized_pnl,
        total_fees=trade.total_fees,
        funding=trade.funding,
        net_pnl=trade.net_pnl,
        result=trade.result,
        opened_at=_from_ms(trade.opened_at),
        closed_at=_from_ms(trade.closed_at),
        hold_time_minutes=trade.hold_time_minutes,
        entry_order_type=trade.entry_order_type,
        exit_order_type=trade.exit_order_type,
        is_maker=trade.is_maker,
        fee_assets=list(trade.fee_assets),
        source_event_ids=list(trade.source_event_ids),
    )


class TradeLedger:
    """Idempotent writes of aggregated trades plus the sync run history.

    Example:
        ledger = TradeLedger(db)
        inserted = ledger.upsert_aggregated_trades("main", trades)
    """

    def __init__(self, db: DatabaseFactory):
        self._db = db

    def upsert_aggregated_trades(
        self,
        account_id: str,
        trades: Iterable[AggregatedTrade],
        sync_run_id: Optional[str] = None,
    ) -> int:
        """Insert trades in one transaction, skipping already-known provenance.

        Returns:
            Number of newly inserted trades.

        Raises:
            ValidationRejection: If any trade fails validation; nothing is written.
        """
        records = []
        for trade in trades:
            ensure_valid(trade)
            records.append(trade_to_record(account_id, trade, sync_run_id))

        with self._db.get_session() as session:
            inserted = AggregatedTradeRepository(session).bulk_insert(records)

        logger.info(f"{account_id}: inserted {inserted} of {len(records)} aggregated trades")
        return inserted

    def record_sync_run(self, run: SyncRun) -> None:
        """Create or update the sync_runs row for a run."""
        reconciliation = run.reconciliation
        record = SyncRunRecord(
            run_id=run.id,
            account_id=run.account_id,
            status=run.status.value,
            started_at=run.started_at,
            finished_at=run.finished_at,
            window_start=run.window_start,
            window_end=run.window_end,
            events_fetched=run.events_fetched,
            events_dropped=run.events_dropped,
            trades_aggregated=run.trades_aggregated,
            trades_rejected=run.trades_rejected,
            trades_inserted=run.trades_inserted,
            open_lifecycles=run.open_lifecycles,
            incomplete_lifecycles=run.incomplete_lifecycles,
            resume_from=run.resume_from,
            aggregated_total_pnl=reconciliation.aggregated_total_pnl if reconciliation else None,
            venue_reported_total_pnl=reconciliation.venue_reported_total_pnl if reconciliation else None,
            reconciliation_delta=reconciliation.delta if reconciliation else None,
            within_tolerance=reconciliation.within_tolerance if reconciliation else None,
            error=run.error,
        )
        with self._db.get_session() as session:
            SyncRunRepository(session).update(record)

    def resume_point(self, account_id: str) -> Optional[datetime]:
        """Where the latest succeeded or partial run asks the next window to start."""
        with self._db.get_session() as session:
            run = SyncRunRepository(session).get_latest_completed(account_id)
            return as_utc(run.resume_from) if run is not None else None

    def get_trades(self, account_id: str, start: datetime, end: datetime, instrument: Optional[str] = None) -> list[dict]:
        """Read path: trades closed within [start, end] as plain dicts."""
        with self._db.get_session() as session:
            rows = AggregatedTradeRepository(session).get_by_account_range(account_id, start, end, instrument)
            return [
                {
                    "instrument": r.instrument,
                    "direction": r.direction,
                    "entry_price": r.entry_price,
                    "exit_price": r.exit_price,
                    "total_quantity": r.total_quantity,
                    "realized_pnl": r.realized_pnl,
                    "total_fees": r.total_fees,
                    "net_pnl": r.net_pnl,
                    "result": r.result,
                    "opened_at": as_utc(r.opened_at),
                    "closed_at": as_utc(r.closed_at),
                    "provenance_hash": r.provenance_hash,
                }
                for r in rows
            ]
