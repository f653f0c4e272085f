"""Fetch raw account history from Bybit for one sync window.

Read-only: no orders placed. Every method is blocking and is run from a
worker thread by the orchestrator; all threads share one rate-limited
BybitRestClient.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from typing import Callable, Optional

from bybit_adapter.normalizer import INCOME_TRANSACTION_TYPES
from bybit_adapter.rest_client import BybitRestClient

from trade_sync.config import SyncConfig

logger = logging.getLogger(__name__)

# Bybit rejects history queries spanning more than 7 days
MAX_QUERY_WINDOW = timedelta(days=7)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class SyncWindow:
    """Closed time interval [start, end] of account activity to sync."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("SyncWindow bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValueError(f"SyncWindow end {self.end} must be after start {self.start}")

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "SyncWindow":
        end = now or datetime.now(UTC)
        return cls(start=end - timedelta(days=days), end=end)

    @property
    def start_ms(self) -> int:
        return _to_ms(self.start)

    @property
    def end_ms(self) -> int:
        return _to_ms(self.end)

    def slices(self, max_span: timedelta = MAX_QUERY_WINDOW) -> list[tuple[int, int]]:
        """Split into consecutive non-overlapping [start_ms, end_ms] chunks."""
        span_ms = int(max_span.total_seconds() * 1000)
        chunks = []
        cursor = self.start_ms
        end_ms = self.end_ms
        while cursor <= end_ms:
            chunk_end = min(cursor + span_ms, end_ms)
            chunks.append((cursor, chunk_end))
            cursor = chunk_end + 1
        return chunks


@dataclass
class FetchBundle:
    """Fan-in of the concurrent fetches for one run."""

    window: SyncWindow
    fills: list[dict] = field(default_factory=list)
    orders: list[dict] = field(default_factory=list)
    income: list[dict] = field(default_factory=list)
    closed_pnl: list[dict] = field(default_factory=list)
    truncated: list[str] = field(default_factory=list)

    @property
    def events_fetched(self) -> int:
        return len(self.fills) + len(self.orders) + len(self.income)


class BybitFetcher:
    """Fetches fills, orders, income and venue closed P&L for a window."""

    def __init__(self, client: BybitRestClient, sync_config: Optional[SyncConfig] = None):
        self._client = client
        self._config = sync_config or SyncConfig()

    def _sliced(
        self,
        fetch_all: Callable[[int, int], tuple[list[dict], bool]],
        window: SyncWindow,
        label: str,
    ) -> tuple[list[dict], bool]:
        records: list[dict] = []
        truncated = False
        for start_ms, end_ms in window.slices():
            batch, batch_truncated = fetch_all(start_ms, end_ms)
            records.extend(batch)
            truncated = truncated or batch_truncated
        if truncated:
            logger.warning(f"{label}: page limit reached, some records in the window were not fetched")
        logger.info(f"Fetched {len(records)} {label} for {window.start.isoformat()} .. {window.end.isoformat()}")
        return records, truncated

    def fetch_raw_fills(self, window: SyncWindow) -> tuple[list[dict], bool]:
        """Execution list records in the window.

        Returns:
            Tuple of (records, truncated flag)
        """
        return self._sliced(
            lambda s, e: self._client.get_executions_all(
                start_time=s, end_time=e, max_pages=self._config.executions_max_pages
            ),
            window,
            "executions",
        )

    def fetch_raw_orders(self, window: SyncWindow) -> tuple[list[dict], bool]:
        """Order history records in the window."""
        return self._sliced(
            lambda s, e: self._client.get_order_history_all(
                start_time=s, end_time=e, max_pages=self._config.orders_max_pages
            ),
            window,
            "orders",
        )

    def fetch_raw_income(self, window: SyncWindow) -> tuple[list[dict], bool]:
        """Transaction log records of the income types (funding, refunds, bonuses)."""
        records: list[dict] = []
        truncated = False
        for tx_type in sorted(INCOME_TRANSACTION_TYPES):
            batch, batch_truncated = self._transactions(window, tx_type)
            records.extend(batch)
            truncated = truncated or batch_truncated
        return records, truncated

    def _transactions(self, window: SyncWindow, tx_type: str) -> tuple[list[dict], bool]:
        return self._sliced(
            lambda s, e: self._client.get_transaction_log_all(
                type=tx_type, start_time=s, end_time=e, max_pages=self._config.transactions_max_pages
            ),
            window,
            f"{tx_type} transactions",
        )

    def fetch_closed_pnl(self, window: SyncWindow) -> tuple[list[dict], bool]:
        """Closed P&L records (one per closing order) updated in the window.

        The orchestrator matches them to the closing orders of the trades it
        reconciles, so closes of positions that are still open never count.
        """
        return self._sliced(
            lambda s, e: self._client.get_closed_pnl_all(
                start_time=s, end_time=e, max_pages=self._config.closed_pnl_max_pages
            ),
            window,
            "closed pnl records",
        )
