"""`hal run`: drive an engine over the PRD until it is done."""
from __future__ import annotations

from typing import Optional

import typer

from hal.cli.app import app
from hal.cli.common import cancel_on_interrupt, get_console, load_config_or_exit, setup_logging
from hal.cli.ux import EXIT_SYSTEM_ERROR, EXIT_USER_ERROR, exit_with_error
from hal.config import ConfigError, parse_duration
from hal.context import RunContext
from hal.engine.display import Display
from hal.errors import EngineNotFoundError, LLMError, get_user_action_message
from hal.loop import LoopConfig, LoopError, LoopRunner
from hal.retry import RetryPolicy

console = get_console()


@app.command("run")
def run(
    iterations: Optional[int] = typer.Argument(
        None,
        help="Maximum iterations (0 for unlimited). Defaults to the configured value.",
    ),
    engine: Optional[str] = typer.Option(
        None,
        "--engine",
        "-e",
        help="Engine to use (claude, codex, pi, amp).",
    ),
    retries: Optional[int] = typer.Option(
        None,
        "--retries",
        help="Max retries per iteration on transient failures.",
    ),
    retry_delay: Optional[str] = typer.Option(
        None,
        "--retry-delay",
        help="Base retry delay, e.g. 5s or 1m.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would execute without running.",
    ),
    story: str = typer.Option(
        "",
        "--story",
        "-s",
        help="Run a specific story by ID (e.g., US-001).",
    ),
    hal_dir: str = typer.Option(
        ".hal",
        "--dir",
        help="Hal directory holding prompt.md and prd.json.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Config file (default: <dir>/config.yaml when present).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show debug logging on stderr.",
    ),
) -> None:
    """Run the Hal loop."""
    setup_logging(verbose)
    config = load_config_or_exit(hal_dir, config_path)

    policy = config.retry.to_policy()
    if retries is not None:
        if retries < 0:
            exit_with_error("INVALID_INPUT", "--retries must not be negative", got=str(retries))
        policy = RetryPolicy(
            max_retries=retries,
            base_delay_seconds=policy.base_delay_seconds,
            max_delay_seconds=policy.max_delay_seconds,
            jitter_percent=policy.jitter_percent,
        )
    if retry_delay is not None:
        try:
            policy.base_delay_seconds = parse_duration(retry_delay, "--retry-delay")
        except ConfigError as e:
            exit_with_error("INVALID_INPUT", str(e), expected="a duration like 5s or 1m")

    engine_name = engine or config.engine
    # hal_dir from the config file wins over --dir
    loop_config = LoopConfig(
        hal_dir=config.hal_dir,
        max_iterations=iterations if iterations is not None else config.max_iterations,
        engine=engine_name,
        engine_config=config.engine_config(engine_name),
        retry=policy,
        dry_run=dry_run,
        story_id=story,
        iteration_delay_seconds=config.loop.iteration_delay_seconds,
    )

    try:
        runner = LoopRunner(loop_config, display=Display())
    except EngineNotFoundError as e:
        exit_with_error("UNKNOWN_ENGINE", str(e), hint="Run `hal engines` to list engines")
        return

    with RunContext() as ctx, cancel_on_interrupt(ctx):
        result = runner.run(ctx)

    if result.error is None:
        raise typer.Exit(0)

    if isinstance(result.error, LoopError):
        exit_with_error(
            "SETUP_FAILED",
            str(result.error),
            hint=f"Check that {config.hal_dir}/prompt.md and {config.hal_dir}/prd.json exist",
            exit_code=EXIT_USER_ERROR,
        )

    if isinstance(result.error, LLMError):
        action = get_user_action_message(result.error)
        if action:
            console.print(action)
    raise typer.Exit(EXIT_SYSTEM_ERROR)
