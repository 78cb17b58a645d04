"""
Markdown checkbox task files.

A pending task is a line starting with "- [ ] ". Indented lines directly
below it continue its description. "- [x] " and "- [X] " lines are done.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

PENDING_PREFIX = "- [ ] "
DONE_PREFIXES = ("- [x] ", "- [X] ")


class TaskFileError(Exception):
    """Raised when a task cannot be marked complete."""


@dataclass
class Task:
    """A pending task and where it starts."""
    description: str   # Includes continuation lines, joined with newlines
    line_number: int   # 1-based


def parse_tasks(text: str) -> list[Task]:
    """Extract every pending task from markdown text, in file order."""
    tasks: list[Task] = []
    current = None

    for number, line in enumerate(text.splitlines(), start=1):
        if line.startswith(PENDING_PREFIX):
            if current is not None:
                tasks.append(current)
            current = Task(description=line[len(PENDING_PREFIX):], line_number=number)
            continue

        if line.startswith(DONE_PREFIXES):
            if current is not None:
                tasks.append(current)
                current = None
            continue

        if current is not None and line[:1] in (" ", "\t"):
            current.description += "\n" + line.lstrip(" \t")
            continue

        if current is not None:
            tasks.append(current)
            current = None

    if current is not None:
        tasks.append(current)
    return tasks


def load_tasks(path: Union[str, Path]) -> list[Task]:
    return parse_tasks(Path(path).read_text(encoding="utf-8"))


def mark_complete_content(text: str, line_number: int) -> str:
    """
    Return text with the task on line_number checked off.

    Every line of the result ends with a newline; nothing else changes.

    Raises:
        TaskFileError: If line_number is out of range or not a pending task.
    """
    if line_number < 1:
        raise TaskFileError(f"invalid line number: {line_number} (must be >= 1)")

    lines = text.splitlines()
    if not lines:
        raise TaskFileError("file is empty")
    if line_number > len(lines):
        raise TaskFileError(
            f"line number {line_number} exceeds file length ({len(lines)} lines)"
        )

    target = lines[line_number - 1]
    if not target.startswith("- [ ]"):
        raise TaskFileError(f"line {line_number} is not a pending task (expected '- [ ]')")
    lines[line_number - 1] = "- [x]" + target[len("- [ ]"):]

    return "".join(line + "\n" for line in lines)


def mark_complete(path: Union[str, Path], line_number: int) -> None:
    """Check off the task on line_number of the file at path, in place."""
    path = Path(path)
    updated = mark_complete_content(path.read_text(encoding="utf-8"), line_number)
    path.write_text(updated, encoding="utf-8")
