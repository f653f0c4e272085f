"""Main entry point for trade_sync.

Usage:
    python -m trade_sync.main --config conf/trade_sync.yaml
    python -m trade_sync.main -c conf/trade_sync.yaml --account main --days 30 --force --debug
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from bybit_adapter.rest_client import BybitRestClient
from ledger_db.database import DatabaseFactory
from ledger_db.enums import SyncStatus
from ledger_db.settings import DatabaseSettings

from trade_sync.config import TradeSyncConfig, load_config
from trade_sync.fetcher import BybitFetcher, SyncWindow
from trade_sync.ledger import TradeLedger
from trade_sync.monitor import SyncMonitor
from trade_sync.notifier import Notifier
from trade_sync.orchestrator import SyncOrchestrator
from trade_sync.quota import DatabaseQuotaProvider
from trade_sync.reporter import print_console, save_json
from trade_sync.state import SyncStateStore


def setup_logging(debug: bool = False) -> None:
    """Set up logging with console output."""
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_formatter = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    root_logger.addHandler(console_handler)

    # Reduce noise from libraries
    logging.getLogger("pybit").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("TeleBot").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def build_orchestrator(config: TradeSyncConfig, db: DatabaseFactory) -> SyncOrchestrator:
    """Wire clients, stores and collaborators for every configured account."""
    fetchers = {
        account.name: BybitFetcher(
            BybitRestClient(
                api_key=account.api_key,
                api_secret=account.api_secret,
                testnet=account.testnet,
            ),
            config.sync,
        )
        for account in config.accounts
    }

    telegram_config = None
    if config.notification and config.notification.telegram:
        telegram_config = config.notification.telegram
    notifier = Notifier(telegram_config)

    store = SyncStateStore()
    return SyncOrchestrator(
        fetchers=fetchers,
        ledger=TradeLedger(db),
        store=store,
        monitor=SyncMonitor(store, notifier, config.backoff),
        quota=DatabaseQuotaProvider(db, daily_limit=config.sync.daily_quota),
        config=config,
    )


async def main(
    config_path: Optional[str] = None,
    accounts: Optional[list[str]] = None,
    days: Optional[int] = None,
    force: bool = False,
    timeout: Optional[float] = None,
    output_dir: Optional[str] = None,
    debug: bool = False,
) -> int:
    """Main async entry point.

    Returns:
        Exit code: 0 if every run succeeded or was partial, 1 otherwise
    """
    setup_logging(debug=debug)

    try:
        config = load_config(config_path)
        logger.info(f"Loaded config with {len(config.accounts)} accounts")
    except FileNotFoundError as e:
        logger.error(f"Config file not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Config error: {e}")
        return 1

    selected = accounts or [a.name for a in config.accounts]
    unknown = [name for name in selected if config.get_account(name) is None]
    if unknown:
        logger.error(f"Unknown account(s): {', '.join(unknown)}")
        return 1
    if not selected:
        logger.error("No accounts configured")
        return 1

    settings = DatabaseSettings(database_url=config.database_url) if config.database_url else DatabaseSettings()
    db = DatabaseFactory(settings)
    try:
        db.create_tables()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    orchestrator = build_orchestrator(config, db)
    window = SyncWindow.last_days(days) if days else None

    runs = await asyncio.gather(
        *(orchestrator.run_sync(name, window=window, force=force, timeout=timeout) for name in selected)
    )

    print_console(list(runs))
    if output_dir:
        save_json(list(runs), output_dir)

    return 1 if any(run.status == SyncStatus.FAILED for run in runs) else 0


def cli() -> None:
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="Trade Sync - aggregate Bybit fills into a reconciled trade ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to YAML config file (default: conf/trade_sync.yaml)",
    )
    parser.add_argument(
        "--account", "-a",
        action="append",
        default=None,
        help="Account to sync (repeatable, default: all configured accounts)",
    )
    parser.add_argument(
        "--days", "-d",
        type=int,
        default=None,
        help="Sync the last N days instead of the incremental window",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if the account is in failure backoff",
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=None,
        help="Seconds allowed before persistence (default: from config)",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Directory for a JSON copy of the run summaries",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    try:
        exit_code = asyncio.run(
            main(
                config_path=args.config,
                accounts=args.account,
                days=args.days,
                force=args.force,
                timeout=args.timeout,
                output_dir=args.output,
                debug=args.debug,
            )
        )
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    cli()
