"""
flashsync run - Run a single sync tick.
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from flashsync.cli.common import load_settings
from flashsync.core.types import TickOutcome, TickResult
from flashsync.exceptions import FlashSyncError
from flashsync.service.app import open_orchestrator
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.cli.run")

app = typer.Typer(name="run", help="Run one sync tick", invoke_without_command=True)

console = Console()

FAILED_OUTCOMES = {TickOutcome.UPSTREAM_FAILED, TickOutcome.STORE_FAILED, TickOutcome.LEDGER_FAILED}


async def _run_once(settings) -> TickResult:
    async with open_orchestrator(settings) as orchestrator:
        return await orchestrator.run_tick()


def render_result(result: TickResult) -> Table:
    table = Table(title=f"Tick: {result.outcome.value}", show_header=False)
    table.add_column("field", style="cyan")
    table.add_column("value")
    for label, value in (
        ("fingerprint", result.fingerprint or "-"),
        ("replayed", result.replayed),
        ("candidates", result.candidates),
        ("written", result.written),
        ("eligible", result.eligible),
        ("published", result.published),
        ("failed", result.failed),
        ("ledgered", result.ledgered),
        ("duration", f"{result.duration_s:.2f}s"),
    ):
        table.add_row(label, str(value))
    for error in result.errors:
        table.add_row("[red]error[/red]", error)
    return table


@app.callback()
def run(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    no_skip: bool = typer.Option(False, "--no-skip", help="Disable off-peak and backoff skips for this tick"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Run exactly one tick: replay the ledger, fetch, and process if due.
    """
    if ctx.invoked_subcommand is None:
        settings = load_settings(project_dir, env=env, verbose=verbose)
        if no_skip:
            settings.schedule.offpeak_skip_probability = 0.0
            settings.schedule.backoff_coefficient = 0.0

        try:
            result = asyncio.run(_run_once(settings))
        except FlashSyncError as e:
            logger.error(f"Tick could not start: {e}")
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from e

        console.print(render_result(result))
        if result.outcome in FAILED_OUTCOMES:
            raise typer.Exit(1)
