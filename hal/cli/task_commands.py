"""`hal tasks`: list and check off markdown checkbox tasks."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.text import Text

from hal.cli.app import app
from hal.cli.common import get_console
from hal.cli.ux import exit_with_error
from hal.tasks import TaskFileError, load_tasks, mark_complete

console = get_console()


@app.command("tasks")
def tasks(
    file: Path = typer.Argument(..., help="Markdown file with - [ ] tasks."),
    complete: Optional[int] = typer.Option(
        None,
        "--complete",
        "-c",
        help="Mark the task starting on this line (1-based) as done.",
    ),
) -> None:
    """List pending tasks in a markdown file, or check one off."""
    if not file.is_file():
        exit_with_error("FILE_NOT_FOUND", f"Task file not found: {file}")

    if complete is not None:
        try:
            mark_complete(file, complete)
        except TaskFileError as e:
            exit_with_error("INVALID_LINE", str(e), hint="Run `hal tasks FILE` to see task lines")
        console.print(f"[green]✓[/green] Marked line {complete} complete")
        return

    pending = load_tasks(file)
    if not pending:
        console.print("[green]No pending tasks.[/green]")
        return

    for task in pending:
        first, _, rest = task.description.partition("\n")
        console.print(Text.assemble((f"{task.line_number:>4}", "dim"), "  ", first))
        for line in rest.splitlines():
            console.print(Text(f"      {line}"))
    console.print(f"\n{len(pending)} pending", style="dim")
