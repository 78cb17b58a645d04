"""Shared helpers for CLI commands.

Console singleton, config loading with CLI-friendly errors, logging setup
and Ctrl-C handling. Must not import from the command modules.
"""
from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from hal.cli.ux import EXIT_USER_ERROR, format_error
from hal.config import ConfigError, HalConfig, load_config
from hal.context import RunContext

# Console singleton
_console: Optional[Console] = None


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def load_config_or_exit(hal_dir: str, config_path: Optional[str] = None) -> HalConfig:
    """Load configuration, exiting with a user error when it is invalid."""
    try:
        return load_config(config_path, hal_dir=hal_dir)
    except ConfigError as e:
        source = config_path or f"{hal_dir}/config.yaml"
        typer.echo(format_error("INVALID_CONFIG", str(e), hint=f"Check {source}"), err=True)
        raise typer.Exit(EXIT_USER_ERROR)


def setup_logging(verbose: bool) -> None:
    """Route diagnostic logging to stderr; debug level when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@contextmanager
def cancel_on_interrupt(ctx: RunContext) -> Iterator[RunContext]:
    """
    Cancel ctx on the first Ctrl-C instead of raising KeyboardInterrupt.

    A second Ctrl-C falls back to the default handler. Outside the main
    thread signal handlers cannot be installed and nothing changes.
    """
    if threading.current_thread() is not threading.main_thread():
        yield ctx
        return

    previous = signal.getsignal(signal.SIGINT)

    def handle(signum, frame) -> None:
        signal.signal(signal.SIGINT, signal.default_int_handler)
        get_console().print("\n[yellow]Interrupted, stopping...[/yellow]")
        ctx.cancel()

    signal.signal(signal.SIGINT, handle)
    try:
        yield ctx
    finally:
        signal.signal(signal.SIGINT, previous)
