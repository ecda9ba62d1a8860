"""
flashsync ledger - Inspect and clear the retry ledger.
"""

from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from flashsync.cli.common import load_settings
from flashsync.exceptions import LedgerIOFailure
from flashsync.service.app import build_ledger

app = typer.Typer(name="ledger", help="Inspect or clear the retry ledger")

console = Console()


@app.command("show")
def show(
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    entries: bool = typer.Option(False, "--entries", help="List individual entries"),
) -> None:
    """Show ledger statistics."""
    ledger = build_ledger(load_settings(project_dir, env=env))
    try:
        stats = ledger.stats()
        listed = ledger.drain_for_retry() if entries else []
    except LedgerIOFailure as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    console.print(f"\n[bold]Retry ledger:[/bold] {stats['path']}")
    console.print(f"  Entries: {stats['total_entries']}, records: {stats['total_records']}")
    if stats["oldest_recorded_at"] is not None:
        oldest = datetime.fromtimestamp(stats["oldest_recorded_at"], tz=UTC).isoformat()
        console.print(f"  Oldest entry: {oldest}")
    for reason, count in sorted(stats["entries_by_reason"].items()):
        console.print(f"    [cyan]{reason}[/cyan]: {count}")

    if listed:
        table = Table(title="Entries")
        table.add_column("id", style="dim")
        table.add_column("recorded")
        table.add_column("records", justify="right")
        table.add_column("reason")
        for entry in listed:
            recorded = datetime.fromtimestamp(entry.recorded_at or 0, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")
            table.add_row(entry.entry_id or "-", recorded, str(len(entry.batch)), entry.reason)
        console.print(table)


@app.command("clear")
def clear(
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Empty the ledger, discarding every pending retry."""
    ledger = build_ledger(load_settings(project_dir, env=env))
    try:
        count = len(ledger)
        if count == 0:
            console.print("Ledger is already empty")
            return
        if not yes:
            typer.confirm(f"Discard {count} ledger entries?", abort=True)
        ledger.clear()
    except LedgerIOFailure as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]Cleared {count} ledger entries[/green]")
