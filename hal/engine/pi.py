"""
Pi coding agent adapter.

`pi --mode json` emits JSONL with these top-level records:

    session                          session metadata (first line)
    message_start                    message begins; assistant ones carry the model
    message_update                   streaming content under assistantMessageEvent:
                                     toolcall_*, text_*, thinking_*
    message_end / turn_end           usage totals
    tool_execution_start/update/end  tool lifecycle; end reports isError
    agent_end                        run finished

Long prompts are silently truncated when passed as arguments, so the prompt
always goes through stdin.
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

_USAGE_FIELDS = ("input", "output", "cacheRead", "cacheWrite")


class PiParser:
    """
    Stateful parser for one pi run.

    Attributes:
        model: First model reported by an assistant message.
        total_tokens: Running token total. Never decreases.
        has_failure: A tool execution reported an error.
        thinking: A thinking block is open.
    """

    def __init__(self) -> None:
        self.model = ""
        self.total_tokens = 0
        self.has_failure = False
        self.thinking = False
        self._text: list[str] = []

    @property
    def collected_text(self) -> str:
        """All assistant text seen so far."""
        return "".join(self._text)

    def parse_line(self, line: str) -> Optional[Event]:
        raw = load_json_object(line)
        if raw is None:
            return None

        kind = get_str(raw, "type")
        if kind == "session":
            # The real model arrives with the first assistant message.
            return Event(type=EventType.INIT, data=EventData(model=""))
        if kind == "message_start":
            return self._parse_message_start(raw)
        if kind == "message_update":
            return self._parse_message_update(raw)
        if kind in ("message_end", "turn_end"):
            message = get_dict(raw, "message")
            if kind == "turn_end" or get_str(message, "role") == "assistant":
                self._accumulate_usage(message)
            return None
        if kind == "tool_execution_end":
            return self._parse_tool_execution_end(raw)
        if kind == "agent_end":
            return Event(
                type=EventType.RESULT,
                data=EventData(success=not self.has_failure, tokens=self.total_tokens),
            )
        return None

    def _parse_message_start(self, raw: dict[str, Any]) -> Optional[Event]:
        message = get_dict(raw, "message")
        if get_str(message, "role") != "assistant":
            return None
        model = get_str(message, "model")
        if not model or self.model:
            return None
        self.model = model
        return Event(type=EventType.INIT, data=EventData(model=model))

    def _parse_message_update(self, raw: dict[str, Any]) -> Optional[Event]:
        update = get_dict(raw, "assistantMessageEvent")
        kind = get_str(update, "type")

        if kind == "toolcall_end":
            # A tool call implicitly ends any open thinking block.
            self.thinking = False
            return _tool_event(get_dict(update, "toolCall"))
        if kind == "text_end":
            content = get_str(update, "content")
            if content:
                self._text.append(content)
            return None
        if kind == "thinking_start":
            self.thinking = True
            return _thinking("start")
        if kind == "thinking_delta":
            return _thinking("delta") if self.thinking else None
        if kind == "thinking_end":
            if not self.thinking:
                return None
            self.thinking = False
            return _thinking("end")
        return None

    def _parse_tool_execution_end(self, raw: dict[str, Any]) -> Optional[Event]:
        if raw.get("isError") is not True:
            return None
        self.has_failure = True

        message = f"{get_str(raw, 'toolName')} failed"
        for block in get_list(get_dict(raw, "result"), "content"):
            text = get_str(block, "text") if isinstance(block, dict) else ""
            if text:
                message = truncate(text, 80)
                break
        return Event(type=EventType.ERROR, data=EventData(message=message))

    def _accumulate_usage(self, message: dict[str, Any]) -> None:
        usage = get_dict(message, "usage")
        if not usage:
            return
        # totalTokens is cumulative for the turn and replaces the running
        # total; a smaller value never lowers it.
        total = get_number(usage, "totalTokens")
        if total is not None and total > 0:
            tokens = int(total)
        else:
            tokens = sum_fields(usage, _USAGE_FIELDS)
        self.total_tokens = max(self.total_tokens, tokens)


def _thinking(phase: str) -> Event:
    return Event(type=EventType.THINKING, data=EventData(message=phase))


def _tool_event(call: dict[str, Any]) -> Event:
    name = get_str(call, "name").lower()
    args = get_dict(call, "arguments")
    event = Event(type=EventType.TOOL, tool=name)

    if name in ("read", "write", "edit", "ls"):
        event.detail = short_path(get_str(args, "path"))
    elif name == "bash":
        event.tool = "run"
        event.detail = truncate(get_str(args, "command"), 50)
    elif name == "grep":
        event.detail = truncate(get_str(args, "pattern"), 40)
    elif name == "find":
        event.detail = truncate(get_str(args, "pattern") or get_str(args, "path"), 40)
    return event


@dataclass
class PiEngine:
    """Runs prompts through the `pi` CLI."""

    config: EngineConfig = field(default_factory=EngineConfig)

    name = "pi"
    cli_command = "pi"

    def build_args(self, json_output: bool = True) -> list[str]:
        args = [self.cli_command, "-p", "--no-session"]
        if json_output:
            args += ["--mode", "json"]
        if self.config.provider:
            args += ["--provider", self.config.provider]
        if self.config.model:
            args += ["--model", self.config.model]
        return args

    def execute(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> Result:
        timeout = self.config.resolve_timeout()
        parser = PiParser()
        try:
            output = stream_events(
                self.build_args(), parser, display, ctx=ctx, timeout=timeout, stdin_text=prompt
            )
        except CLINotFoundError as e:
            return Result(success=False, error=e)

        if output.failed:
            logger.debug("pi exited with %s", output.returncode)
            return Result(
                success=False,
                output=output.stdout,
                duration=output.duration,
                tokens=parser.total_tokens,
                error=invocation_error(output, timeout),
            )

        return Result(
            success=not parser.has_failure,
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
            raise invocation_error(output, timeout, action="prompt")
        return output.stdout

    def stream_prompt(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> str:
        timeout = self.config.resolve_timeout()
        parser = PiParser()
        try:
            output = stream_events(
                self.build_args(), parser, display, ctx=ctx, timeout=timeout, stdin_text=prompt
            )
        finally:
            if display is not None:
                display.stop_spinner()

        if output.failed:
            raise invocation_error(
                output, timeout, action="prompt", partial=parser.collected_text
            )
        return parser.collected_text
