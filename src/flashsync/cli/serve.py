"""
flashsync serve - Long-running scheduler.

Runs the sync task on its interval or cron schedule until SIGINT/SIGTERM.
The tick in progress is allowed to finish; records its publisher did not get
to are ledgered.
"""

import asyncio
from pathlib import Path

import typer

from flashsync.cli.common import load_settings
from flashsync.config.settings import SyncSettings
from flashsync.exceptions import FlashSyncError
from flashsync.service.app import build_scheduler, open_orchestrator
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.cli.serve")

app = typer.Typer(name="serve", help="Run the sync scheduler until stopped", invoke_without_command=True)


async def run_service(settings: SyncSettings) -> None:
    stop_event = asyncio.Event()
    async with open_orchestrator(settings, stop_event=stop_event) as orchestrator:
        scheduler = build_scheduler(settings, orchestrator, stop_event)
        scheduler.install_signal_handlers()
        await scheduler.run()


@app.callback()
def serve(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Run the sync scheduler.
    """
    if ctx.invoked_subcommand is None:
        settings = load_settings(project_dir, env=env, verbose=verbose)
        sched = settings.schedule
        logger.info(f"Starting flashsync ({f'cron {sched.cron!r}' if sched.cron else f'every {sched.every_s}s'})")
        try:
            asyncio.run(run_service(settings))
        except FlashSyncError as e:
            logger.error(f"Service failed: {e}")
            raise typer.Exit(1) from e
