"""
flashsync config - Show the effective configuration.

Credentials in URLs are masked.
"""

from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.syntax import Syntax

from flashsync.cli.common import load_settings

app = typer.Typer(name="config", help="Show effective configuration", invoke_without_command=True)

console = Console()


@app.callback()
def config(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Print the effective settings (config files + environment overrides).
    """
    if ctx.invoked_subcommand is None:
        settings = load_settings(project_dir, env=env)
        files = [p.name for p in sorted(project_dir.glob("config*.yaml"))]
        console.print(f"\n[bold]Configuration[/bold] ({', '.join(files) or 'environment only'})\n")
        content = yaml.safe_dump(settings.redacted(), sort_keys=False)
        console.print(Syntax(content, "yaml", theme="monokai"))
