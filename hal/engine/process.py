"""
Subprocess plumbing shared by every engine adapter.

This module provides:
- run_process(): spawn an engine CLI detached from the controlling terminal,
  stream its stdout line by line to a callback, capture stderr, and enforce
  the per-invocation deadline and run-wide cancellation
- stream_events(): run_process() wired to an adapter parser and the display
- invocation_error(): map a failed ProcessOutput to the right LLMError

Cancellation kills the whole process group so that shells and helpers
spawned by the agent die with it. Everything read from stdout before the
kill is kept and returned.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from hal.context import CancelReason, RunContext
from hal.engine.text import format_duration
from hal.engine.types import OutputParser
from hal.errors import (
    CLINotFoundError,
    ErrorClassifier,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    LLMError,
)

if TYPE_CHECKING:
    from hal.engine.display import Display

logger = logging.getLogger(__name__)

# Grace period for stderr/stdin helper threads after the process exits
_HELPER_JOIN_SECONDS = 5.0


@dataclass
class ProcessOutput:
    """Everything captured from one engine process.

    stdout is decoded as UTF-8 with invalid bytes replaced; raw_stdout keeps
    the exact bytes the process wrote.
    """
    stdout: str
    stderr: str
    returncode: Optional[int]
    duration: float
    timed_out: bool = False
    cancelled: bool = False
    raw_stdout: bytes = b""

    @property
    def failed(self) -> bool:
        return self.timed_out or self.cancelled or self.returncode != 0


def run_process(
    args: list[str],
    *,
    ctx: Optional[RunContext] = None,
    timeout: Optional[float] = None,
    stdin_text: Optional[str] = None,
    on_line: Optional[Callable[[str], None]] = None,
    cwd: Optional[str] = None,
) -> ProcessOutput:
    """
    Run an engine CLI to completion (or until cancelled).

    Args:
        args: Command line, binary first.
        ctx: Run-wide cancellation context.
        timeout: Per-invocation deadline in seconds.
        stdin_text: Prompt to pipe through stdin. None leaves stdin closed.
        on_line: Called on this thread for every stdout line, in order,
            without its trailing newline.
        cwd: Working directory for the process.

    Returns:
        ProcessOutput with the captured streams and how the process ended.

    Raises:
        CLINotFoundError: If the binary does not exist.
    """
    parent = ctx if ctx is not None else RunContext.background()
    call_ctx = parent.with_timeout(timeout)
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            args,
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            start_new_session=True,  # Detach from the controlling TTY
        )
    except FileNotFoundError:
        call_ctx.close()
        raise CLINotFoundError(args[0])
    except PermissionError as e:
        call_ctx.close()
        raise CLINotFoundError(args[0], f"{args[0]} CLI is not executable: {e}")

    stderr_chunks: list[bytes] = []
    helpers = [
        threading.Thread(target=_drain, args=(proc.stderr, stderr_chunks), daemon=True),
    ]
    if stdin_text is not None:
        helpers.append(
            threading.Thread(target=_feed, args=(proc.stdin, stdin_text), daemon=True)
        )
    finished = threading.Event()
    watchdog = threading.Thread(
        target=_watch,
        args=(proc, call_ctx, finished),
        name="hal-process-watchdog",
        daemon=True,
    )
    for thread in helpers:
        thread.start()
    watchdog.start()

    stdout_chunks: list[bytes] = []
    try:
        for raw in proc.stdout:
            stdout_chunks.append(raw)
            if on_line is not None:
                on_line(_decode(raw).rstrip("\r\n"))
    except BaseException:
        # Interrupted while streaming (Ctrl-C, display failure): never leave
        # the agent running behind us.
        _kill_group(proc)
        raise
    finally:
        returncode = proc.wait()
        # Read the reason before close() marks the context as finished.
        reason = call_ctx.reason
        finished.set()
        call_ctx.close()
        watchdog.join()
        for thread in helpers:
            thread.join(_HELPER_JOIN_SECONDS)
        proc.stdout.close()

    # A process that finished cleanly as the deadline fired still succeeded.
    killed = returncode != 0
    timed_out = killed and reason is CancelReason.DEADLINE_EXCEEDED
    cancelled = killed and reason is CancelReason.CANCELLED

    raw_stdout = b"".join(stdout_chunks)
    return ProcessOutput(
        stdout=_decode(raw_stdout),
        stderr=_decode(b"".join(stderr_chunks)),
        returncode=returncode,
        duration=time.monotonic() - start,
        timed_out=timed_out,
        cancelled=cancelled,
        raw_stdout=raw_stdout,
    )


def stream_events(
    args: list[str],
    parser: OutputParser,
    display: Optional[Display] = None,
    *,
    ctx: Optional[RunContext] = None,
    timeout: Optional[float] = None,
    stdin_text: Optional[str] = None,
    on_record: Optional[Callable[[str], None]] = None,
) -> ProcessOutput:
    """
    Run an engine CLI, feeding every stdout line through parser to display.

    on_record, when given, sees each raw line after its event was shown;
    adapters use it to collect assistant text.
    """
    def handle(line: str) -> None:
        event = parser.parse_line(line)
        if display is not None:
            display.show_event(event)
        if on_record is not None:
            on_record(line)

    return run_process(args, ctx=ctx, timeout=timeout, stdin_text=stdin_text, on_line=handle)


def invocation_error(
    output: ProcessOutput,
    timeout: float,
    action: str = "execution",
    partial: Optional[str] = None,
) -> LLMError:
    """
    Build the error for a failed invocation.

    Deadlines and cancellations get their own exception types so callers can
    tell them apart from ordinary process failures.

    Args:
        output: Captured process output.
        timeout: The deadline that applied, in seconds.
        action: "execution" or "prompt", used as the message prefix.
        partial: What the caller collected before the failure. Defaults to
            the process stdout.

    Returns:
        The LLMError describing the failure.
    """
    captured = output.stdout if partial is None else partial
    if output.timed_out:
        return ExecutionTimeoutError(
            f"{action} timed out after {format_duration(timeout)}",
            timeout_seconds=timeout,
            stderr=output.stderr,
            output=captured,
        )
    if output.cancelled:
        return ExecutionCancelledError(
            f"{action} cancelled", stderr=output.stderr, output=captured
        )

    error_type = ErrorClassifier.classify(
        stderr=output.stderr,
        stdout="",
        returncode=output.returncode if output.returncode is not None else -1,
    )
    return ErrorClassifier.create_error(
        error_type,
        f"{action} failed: exit status {output.returncode} (stderr: {output.stderr.strip()})",
        stderr=output.stderr,
        returncode=output.returncode if output.returncode is not None else -1,
        output=captured,
    )


def _watch(proc: subprocess.Popen, ctx: RunContext, finished: threading.Event) -> None:
    ctx.wait()
    if finished.is_set() or proc.poll() is not None:
        return
    logger.debug("killing engine process group %s (%s)", proc.pid, ctx.reason)
    _kill_group(proc)


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass
    except AttributeError:
        # No process groups on this platform
        proc.kill()


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _drain(stream, chunks: list[bytes]) -> None:
    for chunk in stream:
        chunks.append(chunk)
    stream.close()


def _feed(stream, text: str) -> None:
    try:
        stream.write(text.encode("utf-8"))
        stream.close()
    except OSError as e:
        # The CLI exited before reading its whole prompt; the exit status
        # reports the real problem.
        logger.debug("prompt write interrupted: %s", e)
