"""CLI UX utilities for consistent behavior across commands.

Provides:
- Consistent error formatting
- Semantic exit codes
"""
from __future__ import annotations

from typing import Optional

import typer

# Semantic exit codes
EXIT_SUCCESS = 0         # Complete, or stopped at the iteration limit
EXIT_USER_ERROR = 1      # Bad input, missing files, unknown engine
EXIT_SYSTEM_ERROR = 2    # Engine failures, timeouts, cancellation


def format_error(
    code: str,
    message: str,
    *,
    expected: Optional[str] = None,
    got: Optional[str] = None,
    hint: Optional[str] = None,
) -> str:
    """Format error message consistently.

    Standard format:
        Error: [CODE] Message
          Expected: ...
          Got: ...
          Hint: ...
    """
    lines = [f"Error: [{code}] {message}"]

    if expected:
        lines.append(f"  Expected: {expected}")
    if got:
        lines.append(f"  Got: {got}")
    if hint:
        lines.append(f"  Hint: {hint}")

    return "\n".join(lines)


def exit_with_error(
    code: str,
    message: str,
    *,
    expected: Optional[str] = None,
    got: Optional[str] = None,
    hint: Optional[str] = None,
    exit_code: int = EXIT_USER_ERROR,
) -> None:
    """Print formatted error to stderr and exit."""
    typer.echo(
        format_error(code, message, expected=expected, got=got, hint=hint),
        err=True
    )
    raise typer.Exit(exit_code)
