"""Console and JSON output for sync run summaries.

Uses rich library for color-coded terminal tables.
"""

import json
import logging
from datetime import datetime, UTC
from decimal import Decimal
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from ledger_db.enums import SyncStatus

from trade_sync.models import SyncRun

logger = logging.getLogger(__name__)

console = Console()

_STATUS_STYLES = {
    SyncStatus.SUCCEEDED: "bold green",
    SyncStatus.PARTIAL: "bold yellow",
    SyncStatus.FAILED: "bold red",
}


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and datetime types."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def _format_value(val) -> str:
    if val is None:
        return "-"
    if isinstance(val, Decimal):
        # Show up to 8 decimal places, strip trailing zeros
        text = f"{val:.8f}".rstrip("0").rstrip(".")
        return text if text not in ("", "-0") else "0"
    if isinstance(val, datetime):
        return val.strftime("%Y-%m-%d %H:%M:%S")
    return str(val)


def _status_text(status: SyncStatus) -> Text:
    return Text(str(status).upper(), style=_STATUS_STYLES.get(status, "dim"))


def build_table(runs: list[SyncRun]) -> Table:
    """One row per run."""
    table = Table(title="Trade Sync", show_header=True, header_style="bold cyan")
    table.add_column("Account", style="white")
    table.add_column("Status", justify="center")
    table.add_column("Window", min_width=20)
    table.add_column("Fetched", justify="right")
    table.add_column("Dropped", justify="right")
    table.add_column("Trades", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Open", justify="right")
    table.add_column("Delta", justify="right")

    for run in runs:
        window = (
            f"{_format_value(run.window_start)} .. {_format_value(run.window_end)}"
            if run.window_start
            else "-"
        )
        delta = Text(_format_value(run.reconciliation_delta))
        if run.within_tolerance is False:
            delta.stylize("bold red")
        elif run.within_tolerance:
            delta.stylize("green")

        table.add_row(
            run.account_id,
            _status_text(run.status),
            window,
            str(run.events_fetched),
            str(run.events_dropped),
            str(run.trades_aggregated),
            str(run.trades_rejected),
            str(run.trades_inserted),
            str(run.open_lifecycles),
            delta,
        )
    return table


def print_console(runs: list[SyncRun]) -> None:
    """Print run summaries with errors and warnings below the table."""
    console.print()
    console.print(build_table(runs))
    for run in runs:
        if run.error:
            console.print(f"  [red]{run.account_id}: {escape(run.error)}[/red]")
        for warning in run.warnings:
            console.print(f"  [yellow]{run.account_id}: {escape(warning)}[/yellow]")
        for reason, count in sorted(run.rejection_reasons.items()):
            console.print(f"  [yellow]{run.account_id}: rejected {count} x {reason}[/yellow]")
    console.print()


def run_to_dict(run: SyncRun) -> dict:
    """Convert a SyncRun to a JSON-serializable dict."""
    result = run.reconciliation
    return {
        "run_id": run.id,
        "account_id": run.account_id,
        "status": str(run.status),
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "window_start": run.window_start,
        "window_end": run.window_end,
        "events_fetched": run.events_fetched,
        "events_dropped": run.events_dropped,
        "trades_aggregated": run.trades_aggregated,
        "trades_rejected": run.trades_rejected,
        "trades_inserted": run.trades_inserted,
        "open_lifecycles": run.open_lifecycles,
        "incomplete_lifecycles": run.incomplete_lifecycles,
        "resume_from": run.resume_from,
        "rejection_reasons": run.rejection_reasons,
        "warnings": run.warnings,
        "error": run.error,
        "reconciliation": None
        if result is None
        else {
            "aggregated_total_pnl": result.aggregated_total_pnl,
            "venue_reported_total_pnl": result.venue_reported_total_pnl,
            "delta": result.delta,
            "tolerance": result.tolerance,
            "within_tolerance": result.within_tolerance,
            "trade_count": result.trade_count,
        },
    }


def save_json(runs: list[SyncRun], output_dir: str = "output") -> str:
    """Save run summaries to a timestamped JSON file.

    Returns:
        Path to the saved JSON file
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    filepath = output_path / f"trade_sync_{timestamp}.json"

    with open(filepath, "w") as f:
        json.dump({"runs": [run_to_dict(r) for r in runs]}, f, indent=2, cls=_DecimalEncoder)

    logger.info(f"Results saved to {filepath}")
    return str(filepath)
