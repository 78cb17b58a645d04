"""`hal engines` and `hal prompt`."""
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from hal.cli.app import app
from hal.cli.common import cancel_on_interrupt, get_console, load_config_or_exit, setup_logging
from hal.cli.ux import EXIT_SYSTEM_ERROR, exit_with_error
from hal.context import RunContext
from hal.engine.display import Display, HeaderContext
from hal.engine.registry import available_engines, new_engine
from hal.errors import EngineNotFoundError, LLMError, get_user_action_message
from hal.gitinfo import get_git_info

console = get_console()


@app.command("engines")
def engines() -> None:
    """List available engines and whether their CLI is installed."""
    table = Table(title="Engines")
    table.add_column("Engine", style="cyan")
    table.add_column("CLI")
    table.add_column("Installed")

    for name in available_engines():
        engine = new_engine(name)
        installed = shutil.which(engine.cli_command) is not None
        table.add_row(
            name,
            engine.cli_command,
            "[green]yes[/green]" if installed else "[dim]no[/dim]",
        )
    console.print(table)


@app.command("prompt")
def prompt(
    text: Optional[str] = typer.Argument(
        None,
        help="Prompt text. Use --file to read it from a file instead.",
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="Read the prompt from this file.",
    ),
    engine: Optional[str] = typer.Option(
        None,
        "--engine",
        "-e",
        help="Engine to use (claude, codex, pi, amp).",
    ),
    hal_dir: str = typer.Option(
        ".hal",
        "--dir",
        help="Hal directory holding config.yaml.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show debug logging on stderr.",
    ),
) -> None:
    """Send one prompt with live progress and print the agent's reply."""
    setup_logging(verbose)
    if file is not None:
        if not file.is_file():
            exit_with_error("FILE_NOT_FOUND", f"Prompt file not found: {file}")
        text = file.read_text(encoding="utf-8")
    if not text:
        exit_with_error("INVALID_INPUT", "No prompt given", hint="Pass prompt text or --file")

    config = load_config_or_exit(hal_dir)
    engine_name = engine or config.engine
    engine_config = config.engine_config(engine_name)
    try:
        eng = new_engine(engine_name, engine_config)
    except EngineNotFoundError as e:
        exit_with_error("UNKNOWN_ENGINE", str(e), hint="Run `hal engines` to list engines")
        return

    display = Display()
    repo, branch = get_git_info()
    display.show_command_header(
        "Prompt",
        "",
        HeaderContext(engine=eng.name, model=engine_config.model, repo=repo, branch=branch),
    )

    with RunContext() as ctx, cancel_on_interrupt(ctx):
        display.bind_context(ctx)
        try:
            reply = eng.stream_prompt(text, display, ctx)
        except LLMError as e:
            display.show_error(str(e))
            action = get_user_action_message(e)
            if action:
                console.print(action)
            raise typer.Exit(EXIT_SYSTEM_ERROR)

    display.show_command_success("Prompt complete")
    console.print(reply, markup=False, highlight=False)
