"""trade_sync - guarded, idempotent sync of exchange activity into the trade ledger."""

from trade_sync.models import SyncRun, SyncHealth
from trade_sync.fetcher import BybitFetcher, FetchBundle, SyncWindow
from trade_sync.ledger import TradeLedger
from trade_sync.monitor import SyncMonitor
from trade_sync.notifier import AlertKind, Notifier
from trade_sync.orchestrator import SyncOrchestrator
from trade_sync.quota import DatabaseQuotaProvider, QuotaStatus
from trade_sync.state import SyncStateStore

__all__ = [
    "SyncRun",
    "SyncHealth",
    "BybitFetcher",
    "FetchBundle",
    "SyncWindow",
    "TradeLedger",
    "SyncMonitor",
    "AlertKind",
    "Notifier",
    "SyncOrchestrator",
    "DatabaseQuotaProvider",
    "QuotaStatus",
    "SyncStateStore",
]
