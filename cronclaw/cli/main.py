"""cronclaw command line entry point"""

import logging

import typer
from rich.logging import RichHandler

from .. import __version__
from .cron_cmd import cron_app

app = typer.Typer(help="cronclaw - persistent job scheduler", no_args_is_help=True)
app.add_typer(cron_app, name="cron")


def _version_callback(value: bool):
    if value:
        typer.echo(f"cronclaw {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Configure logging for all subcommands"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=False)],
    )


if __name__ == "__main__":
    app()
