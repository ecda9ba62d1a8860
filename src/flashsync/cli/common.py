"""
Shared CLI helpers: settings loading and logging setup.
"""

from pathlib import Path

import typer

from flashsync.config import SyncSettings, load_config
from flashsync.exceptions import ConfigurationError
from flashsync.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("flashsync.cli")


def load_settings(project_dir: Path, env: str | None = None, verbose: bool = False) -> SyncSettings:
    """
    Load settings for a CLI command and configure logging.

    Relative ledger and DuckDB paths are resolved against the project directory.
    Exits with status 1 on configuration errors.
    """
    try:
        settings = SyncSettings.from_config(load_config(project_dir, env=env))
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if verbose:
        settings.logging["level"] = "DEBUG"
    setup_logging_from_config({"logging": settings.logging}, project_dir)

    ledger_path = Path(settings.ledger.path)
    if not ledger_path.is_absolute():
        settings.ledger.path = str(project_dir / ledger_path)

    if settings.store.url.startswith("duckdb://"):
        db_path = settings.store.url.split("://", 1)[1]
        if db_path and db_path != ":memory:" and not Path(db_path).is_absolute():
            settings.store.url = f"duckdb://{project_dir / db_path}"

    return settings
