"""Command line interface for ledgersync.

Configuration comes from ``LEDGERSYNC_*`` environment variables, optionally
through a ``.env`` file in the working directory.
"""

import logging
import time
from datetime import datetime
from typing import Annotated, Optional

import cyclopts
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ledgersync.config import SyncSettings
from ledgersync.cycle import SyncResult
from ledgersync.engine import SyncEngine
from ledgersync.exceptions import SyncError
from ledgersync.ledger import LedgerStore

app = cyclopts.App(name="ledgersync", help="Bidirectional file sync with a remote store")

load_dotenv()


def _get_console() -> Console:
    """Get a Rich console for output."""
    return Console()


def _configure_logging(settings: SyncSettings, verbose: bool = False) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _format_time(timestamp: float) -> str:
    if not timestamp:
        return "Never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _build_engine(settings: SyncSettings, console: Console) -> SyncEngine | None:
    try:
        return SyncEngine.from_settings(settings)
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


def _print_result(console: Console, result: SyncResult) -> None:
    table = Table(title="Sync Summary", show_header=False, box=None)
    table.add_column("Operation", style="cyan", no_wrap=True)
    table.add_column("Count", style="white", justify="right")

    table.add_row("Uploaded", str(result.uploaded))
    table.add_row("Downloaded", str(result.downloaded))
    table.add_row("Deleted locally", str(result.deleted_local))
    table.add_row("Deleted remotely", str(result.deleted_remote))
    table.add_row("Renamed", str(result.renames))
    table.add_row("Conflicts", str(result.conflicts))
    table.add_row("Duration", f"{result.duration:.1f}s")
    console.print(table)

    if result.success:
        if result.total_operations == 0:
            console.print("[green]✓ Everything up to date[/green]")
        else:
            console.print(
                f"[green]✓ Sync complete ({result.total_operations} operations)[/green]"
            )
        return

    console.print(
        Panel(
            Text("\n".join(result.errors), style="red"),
            title=f"Sync failed ({len(result.errors)} errors)",
            border_style="red",
        )
    )


def _run_once(engine: SyncEngine, console: Console, full: bool = False) -> SyncResult:
    with console.status("[cyan]Syncing...[/cyan]") as status:
        engine.progress = lambda message, current, total: status.update(
            f"[cyan]{message}[/cyan] [dim]({current}/{total})[/dim]"
        )
        try:
            result = engine.force_full_sync() if full else engine.sync()
        finally:
            engine.progress = None

    _print_result(console, result)
    return result


@app.command
def sync(
    *,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
    interval: Annotated[
        Optional[float],
        cyclopts.Parameter(help="Repeat every N minutes until interrupted"),
    ] = None,
):
    """Run a sync cycle.

    Uploads local changes, detects renames, propagates deletions and
    downloads remote changes. With --interval, keeps syncing on a timer.

    Example:
        ledgersync sync
        ledgersync sync --interval 5
    """
    console = _get_console()
    settings = SyncSettings()
    _configure_logging(settings, verbose)

    engine = _build_engine(settings, console)
    if engine is None:
        raise SystemExit(1)

    if interval is None:
        result = _run_once(engine, console)
        if not result.success:
            raise SystemExit(1)
        return

    if interval <= 0:
        console.print("[red]Error: --interval must be positive[/red]")
        raise SystemExit(1)

    console.print(
        f"[cyan]Syncing every {interval:g} minutes. Press Ctrl+C to stop.[/cyan]"
    )
    try:
        while True:
            _run_once(engine, console)
            time.sleep(interval * 60)
    except KeyboardInterrupt:
        engine.cancel()
        console.print("[yellow]Auto-sync stopped[/yellow]")


@app.command
def force_full_sync(
    *,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
):
    """Forget the sync state and re-compare every file.

    The device id is kept. Files identical on both sides are registered
    without being transferred.

    Example:
        ledgersync force-full-sync
    """
    console = _get_console()
    settings = SyncSettings()
    _configure_logging(settings, verbose)

    engine = _build_engine(settings, console)
    if engine is None:
        raise SystemExit(1)

    console.print("[yellow]Resetting sync state...[/yellow]")
    result = _run_once(engine, console, full=True)
    if not result.success:
        raise SystemExit(1)


@app.command
def status():
    """Show configuration and local sync state.

    Example:
        ledgersync status
    """
    console = _get_console()
    settings = SyncSettings()

    ledger_store = LedgerStore(
        settings.ledger_path, legacy_path=settings.legacy_ledger_path
    )
    ledger = ledger_store.load()
    has_state = ledger_store.path.exists()

    table = Table(title="Sync Status", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Local root", str(settings.local_root))
    if settings.s3_bucket:
        prefix = f"{settings.s3_prefix.strip('/')}/" if settings.s3_prefix else ""
        table.add_row("Remote", f"s3://{settings.s3_bucket}/{prefix}{settings.remote_root}")
    else:
        table.add_row("Remote", "[red]✗ No S3 bucket configured[/red]")
    table.add_row("Conflict strategy", settings.conflict_strategy.value)
    table.add_row("Sync attachments", "✓ Yes" if settings.sync_attachments else "✗ No")
    table.add_row("Max file size", f"{settings.max_file_size_mb:g} MB")
    table.add_row("Excluded folders", ", ".join(settings.excluded_folders) or "-")
    table.add_row("", "")
    table.add_row(
        "Device ID", ledger.device_id if has_state else "[dim]Assigned on first sync[/dim]"
    )
    table.add_row("Tracked files", str(len(ledger.items)))
    table.add_row("Last sync", _format_time(ledger.last_sync_time))

    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
