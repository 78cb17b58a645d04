"""
Codex CLI adapter.

`codex exec --json` emits JSONL records:

    thread.started                  session start (no model reported)
    item.started / item.completed   command_execution, agent_message, reasoning
    turn.completed                  end of turn with usage

Codex never says whether a turn succeeded. Success is inferred from the
absence of a failed command during the turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from hal.engine.process import invocation_error, run_process, stream_events
from hal.engine.text import get_dict, get_number, get_str, load_json_object, sum_fields, truncate
from hal.engine.types import EngineConfig, Event, EventData, EventType, Result, is_complete
from hal.errors import CLINotFoundError

if TYPE_CHECKING:
    from hal.context import RunContext
    from hal.engine.display import Display

logger = logging.getLogger(__name__)

_USAGE_FIELDS = ("input_tokens", "output_tokens", "cached_input_tokens")


class CodexParser:
    """
    Parser for Codex JSONL output.

    Attributes:
        command_failed: A command failed during the current turn. Folded into
            the turn's Result and then reset.
        has_failure: A command failed at any point in the run. Never reset.
        last_result: The most recent Result event.
        total_tokens: Sum of token usage over all turns.
    """

    def __init__(self) -> None:
        self.command_failed = False
        self.has_failure = False
        self.last_result: Optional[Event] = None
        self.total_tokens = 0

    def parse_line(self, line: str) -> Optional[Event]:
        raw = load_json_object(line)
        if raw is None:
            return None

        kind = get_str(raw, "type")
        if kind == "thread.started":
            # The stream carries no model; leave it empty rather than guess.
            return Event(type=EventType.INIT)
        if kind in ("item.started", "item.completed"):
            return self._parse_item(raw, kind)
        if kind == "turn.completed":
            return self._parse_turn_completed(raw)
        return None

    def _parse_item(self, raw: dict[str, Any], kind: str) -> Optional[Event]:
        item = get_dict(raw, "item")
        item_type = get_str(item, "type")
        if item_type == "command_execution":
            return self._parse_command(item, kind)
        if item_type == "agent_message":
            return Event(type=EventType.TEXT, detail=truncate(get_str(item, "text"), 80))
        if item_type == "reasoning":
            return Event(
                type=EventType.TEXT,
                tool="thinking",
                detail=truncate(get_str(item, "text"), 60),
            )
        return None

    def _parse_command(self, item: dict[str, Any], kind: str) -> Event:
        command = extract_command(get_str(item, "command"))
        event = Event(type=EventType.TOOL, tool="run", detail=truncate(command, 50))

        if kind == "item.completed":
            exit_code = get_number(item, "exit_code")
            if exit_code is not None and exit_code != 0:
                self.command_failed = True
                self.has_failure = True
                event.type = EventType.ERROR
                event.data.message = "command failed"

        if get_str(item, "status") == "in_progress":
            event.detail = truncate(command, 45) + "..."
        return event

    def _parse_turn_completed(self, raw: dict[str, Any]) -> Event:
        tokens = sum_fields(get_dict(raw, "usage"), _USAGE_FIELDS)
        success = not self.command_failed
        self.command_failed = False

        event = Event(type=EventType.RESULT, data=EventData(success=success, tokens=tokens))
        self.last_result = event
        self.total_tokens += tokens
        return event

    def success(self) -> bool:
        """Last turn's verdict, else whether any command failed."""
        if self.last_result is not None:
            return self.last_result.data.success
        return not self.has_failure


def extract_command(command: str) -> str:
    """
    Unwrap a shell wrapper to the inner command.

    "/usr/bin/bash -lc 'echo hello world'" -> "echo hello world"
    """
    for marker in ("-lc '", "-c '"):
        idx = command.find(marker)
        if idx != -1:
            start = idx + len(marker)
            end = command.rfind("'")
            if end > start:
                return command[start:end]
    return command


def agent_message_text(line: str) -> str:
    """Text of a completed agent_message record, or ''."""
    raw = load_json_object(line)
    if raw is None or get_str(raw, "type") != "item.completed":
        return ""
    item = get_dict(raw, "item")
    if get_str(item, "type") != "agent_message":
        return ""
    return get_str(item, "text")


@dataclass
class CodexEngine:
    """Runs prompts through `codex exec`, piping the prompt on stdin."""

    config: EngineConfig = field(default_factory=EngineConfig)

    name = "codex"
    cli_command = "codex"

    def build_args(self, json_output: bool = True) -> list[str]:
        args = [self.cli_command, "exec", "--dangerously-bypass-approvals-and-sandbox"]
        if json_output:
            args.append("--json")
        if self.config.model:
            args += ["--model", self.config.model]
        args.append("-")  # Read prompt from stdin
        return args

    def execute(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> Result:
        timeout = self.config.resolve_timeout()
        parser = CodexParser()
        try:
            output = stream_events(
                self.build_args(), parser, display, ctx=ctx, timeout=timeout, stdin_text=prompt
            )
        except CLINotFoundError as e:
            return Result(success=False, error=e)

        if output.failed:
            logger.debug("codex exited with %s", output.returncode)
            return Result(
                success=False,
                output=output.stdout,
                duration=output.duration,
                error=invocation_error(output, timeout),
            )

        return Result(
            success=parser.success(),
            complete=is_complete(output.stdout),
            output=output.stdout,
            duration=output.duration,
            tokens=parser.total_tokens,
        )

    def prompt(self, prompt: str, ctx: Optional[RunContext] = None) -> str:
        timeout = self.config.resolve_timeout()
        output = run_process(
            self.build_args(json_output=False), ctx=ctx, timeout=timeout, stdin_text=prompt
        )
        if output.failed:
            # Codex sometimes exits non-zero after printing a complete answer.
            flaky_exit = (
                not output.timed_out
                and not output.cancelled
                and output.stdout.strip()
                and not output.stderr.strip()
            )
            if flaky_exit:
                logger.debug("ignoring codex exit status %s with clean output", output.returncode)
                return output.stdout
            raise invocation_error(output, timeout, action="prompt")
        return output.stdout

    def stream_prompt(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> str:
        timeout = self.config.resolve_timeout()
        collected: list[str] = []
        try:
            output = stream_events(
                self.build_args(),
                CodexParser(),
                display,
                ctx=ctx,
                timeout=timeout,
                stdin_text=prompt,
                on_record=lambda line: collected.append(agent_message_text(line)),
            )
        finally:
            if display is not None:
                display.stop_spinner()

        if output.failed:
            raise invocation_error(
                output, timeout, action="prompt", partial="".join(collected)
            )
        return "".join(collected)
