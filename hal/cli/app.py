"""Main Typer app definition and routing.

This is the canonical entry point for the CLI. The app and its callback are
defined here; command modules register themselves on `app` and are imported
at the bottom of this file.
"""
from __future__ import annotations

import typer

from hal import __version__
from hal.cli.common import get_console

# Create Typer app
app = typer.Typer(
    name="hal",
    help="Run coding-agent CLIs in a loop until every PRD story passes",
    add_completion=False,
)

# Rich console for output - use singleton from common module
console = get_console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"hal version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Hal - iterative execution runtime for coding-agent CLIs.

    Reads .hal/prompt.md and .hal/prd.json, runs the selected engine once per
    iteration and stops when the PRD reports every story as passing.
    """
    # If no subcommand and no --help, show help
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


# =========================================================================
# Command Registration
# =========================================================================
# Command modules decorate `app`; they must be imported after it exists.
import hal.cli.loop_commands  # noqa: F401, E402
import hal.cli.engine_commands  # noqa: F401, E402
import hal.cli.task_commands  # noqa: F401, E402


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
