"""
Claude Code adapter.

Claude prints one JSON object per line with --output-format stream-json.
The records this adapter understands:

    system/init   session start, carries the model
    assistant     message with content blocks (text, tool_use)
    result        end of turn: subtype, duration_ms, usage

The prompt goes on the command line; everything else is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from hal.engine.process import invocation_error, run_process, stream_events
from hal.engine.text import (
    get_dict,
    get_list,
    get_number,
    get_str,
    load_json_object,
    short_path,
    sum_fields,
    truncate,
)
from hal.engine.types import EngineConfig, Event, EventData, EventType, Result, is_complete
from hal.errors import CLINotFoundError

if TYPE_CHECKING:
    from hal.context import RunContext
    from hal.engine.display import Display

logger = logging.getLogger(__name__)

_USAGE_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_read_input_tokens",
    "cache_creation_input_tokens",
)


class ClaudeParser:
    """
    Parser for Claude's stream-json output.

    Remembers the first result it sees so Execute can report success
    without re-parsing the captured output.
    """

    def __init__(self) -> None:
        self.first_result: Optional[Event] = None
        self.total_tokens = 0

    def parse_line(self, line: str) -> Optional[Event]:
        raw = load_json_object(line)
        if raw is None:
            return None

        kind = get_str(raw, "type")
        if kind == "system":
            return self._parse_system(raw)
        if kind == "assistant":
            return self._parse_assistant(raw)
        if kind == "result":
            return self._parse_result(raw)
        return None

    def _parse_system(self, raw: dict[str, Any]) -> Optional[Event]:
        if get_str(raw, "subtype") != "init":
            return None
        return Event(type=EventType.INIT, data=EventData(model=get_str(raw, "model")))

    def _parse_assistant(self, raw: dict[str, Any]) -> Optional[Event]:
        content = get_list(get_dict(raw, "message"), "content")
        for block in content:
            if isinstance(block, dict) and get_str(block, "type") == "tool_use":
                return _tool_event(block)
        return None

    def _parse_result(self, raw: dict[str, Any]) -> Event:
        tokens = sum_fields(get_dict(raw, "usage"), _USAGE_FIELDS)
        event = Event(
            type=EventType.RESULT,
            data=EventData(
                success=get_str(raw, "subtype") == "success",
                duration_ms=get_number(raw, "duration_ms") or 0.0,
                tokens=tokens,
            ),
        )
        if self.first_result is None:
            self.first_result = event
        self.total_tokens += tokens
        return event


def _tool_event(block: dict[str, Any]) -> Event:
    name = get_str(block, "name")
    args = get_dict(block, "input")
    event = Event(type=EventType.TOOL, tool=name.lower())

    if name in ("Read", "Write", "Edit"):
        event.detail = short_path(get_str(args, "file_path"))
    elif name == "Glob":
        event.detail = get_str(args, "pattern")
    elif name == "Grep":
        event.detail = truncate(get_str(args, "pattern"), 40)
    elif name == "Bash":
        event.tool = "run"
        event.detail = truncate(get_str(args, "description") or get_str(args, "command"), 50)
    elif name == "Task":
        event.tool = "task"
        event.detail = truncate(get_str(args, "description"), 50)
    elif name == "WebFetch":
        event.tool = "fetch"
        event.detail = truncate(get_str(args, "url"), 50)
    elif name == "WebSearch":
        event.tool = "search"
        event.detail = truncate(get_str(args, "query"), 40)
    return event


def assistant_text(line: str) -> str:
    """Concatenated text blocks of an assistant record, or ''."""
    raw = load_json_object(line)
    if raw is None or get_str(raw, "type") != "assistant":
        return ""
    parts = []
    for block in get_list(get_dict(raw, "message"), "content"):
        if isinstance(block, dict) and get_str(block, "type") == "text":
            parts.append(get_str(block, "text"))
    return "".join(parts)


@dataclass
class ClaudeEngine:
    """Runs prompts through the `claude` CLI."""

    config: EngineConfig = field(default_factory=EngineConfig)

    name = "claude"
    cli_command = "claude"

    def build_args(self, prompt: str) -> list[str]:
        """Arguments for streaming execution."""
        args = [
            self.cli_command,
            "-p",
            "--dangerously-skip-permissions",
            "--verbose",
            "--output-format", "stream-json",
        ]
        if self.config.model:
            args += ["--model", self.config.model]
        args.append(prompt)
        return args

    def build_prompt_args(self, prompt: str) -> list[str]:
        """Arguments for plain-text Prompt calls."""
        args = [self.cli_command, "-p", "--dangerously-skip-permissions"]
        if self.config.model:
            args += ["--model", self.config.model]
        args.append(prompt)
        return args

    def execute(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> Result:
        timeout = self.config.resolve_timeout()
        parser = ClaudeParser()
        try:
            output = stream_events(self.build_args(prompt), parser, display, ctx=ctx, timeout=timeout)
        except CLINotFoundError as e:
            return Result(success=False, error=e)

        if output.failed:
            logger.debug("claude exited with %s", output.returncode)
            return Result(
                success=False,
                output=output.stdout,
                duration=output.duration,
                error=invocation_error(output, timeout),
            )

        # No result record at all is treated as success.
        success = parser.first_result.data.success if parser.first_result else True
        return Result(
            success=success,
            complete=is_complete(output.stdout),
            output=output.stdout,
            duration=output.duration,
            tokens=parser.total_tokens,
        )

    def prompt(self, prompt: str, ctx: Optional[RunContext] = None) -> str:
        timeout = self.config.resolve_timeout()
        output = run_process(self.build_prompt_args(prompt), ctx=ctx, timeout=timeout)
        if output.failed:
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
                self.build_args(prompt),
                ClaudeParser(),
                display,
                ctx=ctx,
                timeout=timeout,
                on_record=lambda line: collected.append(assistant_text(line)),
            )
        finally:
            if display is not None:
                display.stop_spinner()

        if output.failed:
            raise invocation_error(
                output, timeout, action="prompt", partial="".join(collected)
            )
        return "".join(collected)
