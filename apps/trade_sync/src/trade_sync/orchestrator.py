"""Sync Orchestrator: one sync run per account.

State machine: idle -> running -> succeeded | partial | failed.

A run is admitted only if no other run holds the account (single-flight),
the account is not in backoff (unless forced) and daily quota remains.
Once running it fans out the fetches for fills, orders, income and the
venue closed P&L records, then normalizes, groups, aggregates and
validates the batch, persists the valid trades in one transaction and
reconciles them against the venue P&L of their own closing orders.

Everything before persistence runs under the caller's timeout. A timeout
discards the batch, so a run either persists its whole batch or nothing;
the run summary only picks up the batch counters once the batch is
accepted.

Each completed run records a resume point: the opening time of its
earliest open lifecycle, or its window end when the account was flat.
The next incremental window starts there, minus the configured overlap,
so a position is always fetched from its opening fill.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from decimal import Decimal
from typing import Callable, Mapping, Optional

from bybit_adapter.normalizer import BybitNormalizer
from ledger_core.aggregator import AggregatedTrade, aggregate_all
from ledger_core.errors import ReconciliationMismatch
from ledger_core.grouper import group_lifecycles
from ledger_core.reconciler import ReconciliationTolerance, reconcile, venue_total_for_trades
from ledger_core.validator import validate_all
from ledger_db.enums import SyncStatus

from trade_sync.config import TradeSyncConfig
from trade_sync.errors import (
    BackoffActive,
    QuotaExhausted,
    SyncCancelled,
    SyncError,
    TransientFetchError,
)
from trade_sync.fetcher import BybitFetcher, FetchBundle, SyncWindow
from trade_sync.ledger import TradeLedger
from trade_sync.models import SyncRun
from trade_sync.monitor import SyncMonitor
from trade_sync.quota import DatabaseQuotaProvider
from trade_sync.state import SyncStateStore

logger = logging.getLogger(__name__)

AGGREGATION_FAILED = "aggregation_failed"


@dataclass
class _Batch:
    """Output of the pure pipeline stages for one run.

    Built off the event loop; copied onto the run only after it is accepted.
    """

    trades: list[AggregatedTrade]
    reported_total: Decimal
    truncated: list[str]
    resume_from: datetime
    events_fetched: int = 0
    events_dropped: int = 0
    open_lifecycles: int = 0
    incomplete_lifecycles: int = 0
    trades_aggregated: int = 0
    trades_rejected: int = 0
    rejection_reasons: dict[str, int] = field(default_factory=dict)

    def apply_to(self, run: SyncRun) -> None:
        run.events_fetched = self.events_fetched
        run.events_dropped = self.events_dropped
        run.open_lifecycles = self.open_lifecycles
        run.incomplete_lifecycles = self.incomplete_lifecycles
        run.trades_aggregated = self.trades_aggregated
        run.trades_rejected = self.trades_rejected
        run.rejection_reasons = dict(self.rejection_reasons)
        run.resume_from = self.resume_from


class SyncOrchestrator:
    """Runs guarded, idempotent syncs of exchange activity into the ledger.

    Example:
        orchestrator = SyncOrchestrator(
            fetchers={"main": BybitFetcher(client)},
            ledger=TradeLedger(db),
            store=store,
            monitor=SyncMonitor(store, notifier),
            quota=DatabaseQuotaProvider(db),
        )
        run = await orchestrator.run_sync("main", timeout=300)
    """

    def __init__(
        self,
        fetchers: Mapping[str, BybitFetcher],
        ledger: TradeLedger,
        store: SyncStateStore,
        monitor: SyncMonitor,
        quota: DatabaseQuotaProvider,
        config: Optional[TradeSyncConfig] = None,
        normalizer: Optional[BybitNormalizer] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._fetchers = dict(fetchers)
        self._ledger = ledger
        self._store = store
        self._monitor = monitor
        self._quota = quota
        self._config = config or TradeSyncConfig()
        self._normalizer = normalizer or BybitNormalizer()
        self._clock = clock
        self._tolerance = ReconciliationTolerance(
            absolute_epsilon=Decimal(str(self._config.reconciliation.absolute_epsilon)),
            relative_epsilon=Decimal(str(self._config.reconciliation.relative_epsilon)),
        )

    async def run_sync(
        self,
        account_id: str,
        window: Optional[SyncWindow] = None,
        force: bool = False,
        timeout: Optional[float] = None,
    ) -> SyncRun:
        """Run one sync for the account and return its summary.

        Args:
            account_id: Configured account name.
            window: Time window to sync. Defaults to an incremental window
                starting at the last completed run's resume point.
            force: Ignore an active failure backoff.
            timeout: Seconds allowed before persistence. Defaults to
                sync.timeout_seconds from config.

        Returns:
            The finished SyncRun. Refused runs come back failed with the
            refusal reason in ``error`` and ``recorded=False``.
        """
        run = SyncRun(account_id=account_id, started_at=self._clock())

        if account_id not in self._fetchers:
            return self._refuse(run, f"unknown_account: no fetcher configured for {account_id}")

        try:
            self._store.try_acquire(account_id, run.id)
        except SyncError as e:
            return self._refuse(run, f"{e.reason}: {e}")

        try:
            try:
                self._check_backoff(account_id, force)
                await self._claim_quota(account_id)
            except SyncError as e:
                return self._refuse(run, f"{e.reason}: {e}")

            return await self._execute(run, window, timeout or self._config.sync.timeout_seconds)
        finally:
            self._store.release(account_id, run.id)

    def _refuse(self, run: SyncRun, reason: str) -> SyncRun:
        logger.warning(f"{run.account_id}: sync refused - {reason}")
        run.status = SyncStatus.FAILED
        run.error = reason
        run.finished_at = self._clock()
        run.recorded = False
        return run

    def _check_backoff(self, account_id: str, force: bool) -> None:
        health = self._store.get_health(account_id)
        if health.allows_attempt(self._clock()):
            return
        if force:
            logger.info(f"{account_id}: forcing sync despite backoff until {health.next_allowed_attempt_at}")
            return
        raise BackoffActive(account_id, health.next_allowed_attempt_at)

    async def _claim_quota(self, account_id: str) -> None:
        status = await asyncio.to_thread(self._quota.get_remaining_sync_quota, account_id)
        if status.remaining <= 0:
            raise QuotaExhausted(account_id, status.current, status.max)
        await asyncio.to_thread(self._quota.consume, account_id)

    def _default_window(self, account_id: str) -> SyncWindow:
        """Incremental window from the last completed run's resume point, minus overlap.

        Without a completed run the window covers the last lookback_days.
        """
        now = self._clock()
        overlap = timedelta(minutes=self._config.sync.overlap_minutes)
        resume = self._ledger.resume_point(account_id)
        if resume is None:
            return SyncWindow(start=now - timedelta(days=self._config.sync.lookback_days), end=now)

        start = resume - overlap
        if start >= now:
            start = now - max(overlap, timedelta(minutes=1))
        return SyncWindow(start=start, end=now)

    async def _execute(self, run: SyncRun, window: Optional[SyncWindow], timeout: float) -> SyncRun:
        account_id = run.account_id
        try:
            if window is None:
                window = await asyncio.to_thread(self._default_window, account_id)
            run.window_start, run.window_end = window.start, window.end
            await asyncio.to_thread(self._ledger.record_sync_run, run)
            logger.info(
                f"{account_id}: sync {run.id} started for {window.start.isoformat()} .. {window.end.isoformat()}"
            )

            try:
                batch = await asyncio.wait_for(self._produce(account_id, window), timeout=timeout)
            except TimeoutError as e:
                raise SyncCancelled(f"timed out after {timeout}s before persistence") from e
            batch.apply_to(run)

            run.trades_inserted = await asyncio.to_thread(self._persist, account_id, batch.trades, run.id)

            result = reconcile(
                batch.trades, batch.reported_total, window.start_ms, window.end_ms, self._tolerance
            )
            run.reconciliation = result
            if not result.within_tolerance:
                run.error = str(ReconciliationMismatch(result))
            run.warnings.extend(f"{kind} truncated at page limit" for kind in batch.truncated)

            clean = run.trades_rejected == 0 and result.within_tolerance and not run.warnings
            run.status = SyncStatus.SUCCEEDED if clean else SyncStatus.PARTIAL
        except asyncio.CancelledError:
            run.status = SyncStatus.FAILED
            run.error = f"{SyncCancelled.reason}: cancelled by caller"
            await asyncio.shield(asyncio.to_thread(self._finish, run))
            raise
        except SyncError as e:
            logger.error(f"{account_id}: sync {run.id} failed: {e}")
            run.status = SyncStatus.FAILED
            run.error = f"{e.reason}: {e}"
        except Exception as e:
            logger.exception(f"{account_id}: sync {run.id} failed with unexpected error")
            run.status = SyncStatus.FAILED
            run.error = f"internal_error: {type(e).__name__}: {e}"

        await asyncio.to_thread(self._finish, run)
        return run

    async def _produce(self, account_id: str, window: SyncWindow) -> _Batch:
        bundle = await self._fetch(self._fetchers[account_id], window)
        return await asyncio.to_thread(self._process, account_id, bundle)

    async def _fetch(self, fetcher: BybitFetcher, window: SyncWindow) -> FetchBundle:
        """Fan out the four fetches, fan in once all have finished."""
        kinds = ("fills", "orders", "income", "closed_pnl")
        results = await asyncio.gather(
            asyncio.to_thread(fetcher.fetch_raw_fills, window),
            asyncio.to_thread(fetcher.fetch_raw_orders, window),
            asyncio.to_thread(fetcher.fetch_raw_income, window),
            asyncio.to_thread(fetcher.fetch_closed_pnl, window),
            return_exceptions=True,
        )

        failures = [(kind, r) for kind, r in zip(kinds, results) if isinstance(r, BaseException)]
        for kind, error in failures:
            logger.error(f"Fetching {kind} failed: {type(error).__name__}: {error}")
        if failures:
            kind, error = failures[0]
            raise TransientFetchError(kind, error)

        (fills, _), (orders, _), (income, _), (closed_pnl, _) = results
        truncated = [kind for kind, (_, flag) in zip(kinds, results) if flag]
        return FetchBundle(
            window=window,
            fills=fills,
            orders=orders,
            income=income,
            closed_pnl=closed_pnl,
            truncated=truncated,
        )

    def _process(self, account_id: str, bundle: FetchBundle) -> _Batch:
        """Normalize -> group -> aggregate -> validate. Holds the valid trades and run counters."""
        window = bundle.window
        normalized = self._normalizer.normalize(bundle.fills, bundle.orders, bundle.income)
        grouping = group_lifecycles(normalized.events)
        aggregation = aggregate_all(grouping.closed)
        summary = validate_all(aggregation.trades)

        reasons = dict(summary.reason_counts)
        if aggregation.failed_count:
            reasons[AGGREGATION_FAILED] = aggregation.failed_count

        closed_pnl = self._normalizer.closed_pnl_by_order(bundle.closed_pnl)
        reported_total = venue_total_for_trades(summary.valid, closed_pnl, window.start_ms, window.end_ms)

        if bundle.truncated:
            # unfetched pages may hold fills; the next run starts over
            resume_from = window.start
        elif grouping.open:
            opened_at = min(lc.opened_at for lc in grouping.open)
            resume_from = min(datetime.fromtimestamp(opened_at / 1000, tz=UTC), window.end)
        else:
            resume_from = window.end

        logger.info(
            f"{account_id}: {len(normalized.events)} events -> {len(grouping.closed)} closed / "
            f"{len(grouping.open)} open / {len(grouping.incomplete)} incomplete lifecycles -> "
            f"{len(summary.valid)} valid, {summary.rejected_count} rejected, "
            f"{aggregation.failed_count} failed trades"
        )
        return _Batch(
            trades=summary.valid,
            reported_total=reported_total,
            truncated=list(bundle.truncated),
            resume_from=resume_from,
            events_fetched=bundle.events_fetched,
            events_dropped=normalized.dropped,
            open_lifecycles=len(grouping.open),
            incomplete_lifecycles=len(grouping.incomplete),
            trades_aggregated=len(aggregation.trades),
            trades_rejected=summary.rejected_count + aggregation.failed_count,
            rejection_reasons=reasons,
        )

    def _persist(self, account_id: str, trades: list[AggregatedTrade], run_id: str) -> int:
        with self._store.account_lock(account_id):
            return self._ledger.upsert_aggregated_trades(account_id, trades, sync_run_id=run_id)

    def _finish(self, run: SyncRun) -> None:
        run.finished_at = self._clock()
        try:
            self._ledger.record_sync_run(run)
        except Exception:
            logger.exception(f"{run.account_id}: failed to record sync run {run.id}")
        self._monitor.record(run)
        logger.info(
            f"{run.account_id}: sync {run.id} {run.status} - fetched={run.events_fetched} "
            f"dropped={run.events_dropped} aggregated={run.trades_aggregated} "
            f"rejected={run.trades_rejected} incomplete={run.incomplete_lifecycles} "
            f"inserted={run.trades_inserted} delta={run.reconciliation_delta}"
        )
