"""
Main CLI entry point.
"""

import typer

from flashsync import __version__
from flashsync.cli import config, ledger, run, serve


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"flashsync version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="flashsync",
    help="flashsync - sync the upstream flash feed into the store and the delivery queue",
    add_completion=False,
)

app.add_typer(run.app, name="run")
app.add_typer(serve.app, name="serve")
app.add_typer(ledger.app, name="ledger")
app.add_typer(config.app, name="config")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    flashsync - sync the upstream flash feed into the store and the delivery queue.

    Run 'flashsync <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
