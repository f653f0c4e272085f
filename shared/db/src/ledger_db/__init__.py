"""
Persistence layer for the trade ledger.

Supports SQLite (development) and PostgreSQL (production).
"""

from ledger_db.settings import DatabaseSettings
from ledger_db.database import DatabaseFactory
from ledger_db.enums import SyncStatus
from ledger_db.models import Base, AggregatedTradeRecord, SyncRunRecord, SyncQuotaUsage
from ledger_db.repositories import (
    BaseRepository,
    AggregatedTradeRepository,
    SyncRunRepository,
    SyncQuotaRepository,
)
from ledger_db.utils import redact_db_url, as_utc

__all__ = [
    # Settings
    "DatabaseSettings",
    # Database
    "DatabaseFactory",
    # Models
    "Base",
    "AggregatedTradeRecord",
    "SyncRunRecord",
    "SyncQuotaUsage",
    "SyncStatus",
    # Repositories
    "BaseRepository",
    "AggregatedTradeRepository",
    "SyncRunRepository",
    "SyncQuotaRepository",
    # Utils
    "redact_db_url",
    "as_utc",
]
