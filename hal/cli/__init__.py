"""CLI package for hal.

Modules:
    app.py              - Main Typer app, version callback, command registration
    loop_commands.py    - `hal run`: the iteration loop
    engine_commands.py  - `hal engines` and `hal prompt`
    task_commands.py    - `hal tasks`: markdown checkbox task files
    common.py           - Shared helpers (console, config, logging, Ctrl-C)
    ux.py               - Error formatting and exit codes

Usage:
    from hal.cli import app, cli_main
"""
from hal.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
