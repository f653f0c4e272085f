"""Daily sync quota backed by the sync_quota_usage table."""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, UTC
from typing import Callable

from ledger_db.database import DatabaseFactory
from ledger_db.repositories import SyncQuotaRepository

logger = logging.getLogger(__name__)

DEFAULT_DAILY_QUOTA = 10


@dataclass(frozen=True)
class QuotaStatus:
    current: int
    max: int

    @property
    def remaining(self) -> int:
        return max(0, self.max - self.current)


class DatabaseQuotaProvider:
    """Counts sync runs per account per UTC day.

    Example:
        quota = DatabaseQuotaProvider(db, daily_limit=10)
        if quota.get_remaining_sync_quota("main").remaining > 0:
            quota.consume("main")
    """

    def __init__(
        self,
        db: DatabaseFactory,
        daily_limit: int = DEFAULT_DAILY_QUOTA,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._db = db
        self._daily_limit = daily_limit
        self._clock = clock
        self._lock = threading.Lock()

    def _today(self) -> date:
        return self._clock().astimezone(UTC).date()

    def get_remaining_sync_quota(self, account_id: str) -> QuotaStatus:
        with self._db.get_session() as session:
            current = SyncQuotaRepository(session).get_count(account_id, self._today())
        return QuotaStatus(current=current, max=self._daily_limit)

    def consume(self, account_id: str) -> QuotaStatus:
        """Count one run against today's quota."""
        with self._lock:
            with self._db.get_session() as session:
                current = SyncQuotaRepository(session).increment(account_id, self._today())
        logger.debug(f"{account_id}: sync quota {current}/{self._daily_limit}")
        return QuotaStatus(current=current, max=self._daily_limit)
