"""
Amp adapter.

Amp prints mostly plain text. Lines that look like file or shell activity
become tool events; the occasional JSON `tool` or `result` record is honoured.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from hal.engine.process import invocation_error, run_process, stream_events
from hal.engine.text import get_str, truncate
from hal.engine.types import EngineConfig, Event, EventData, EventType, Result, is_complete
from hal.errors import CLINotFoundError

if TYPE_CHECKING:
    from hal.context import RunContext
    from hal.engine.display import Display

logger = logging.getLogger(__name__)


class AmpParser:
    """Heuristic parser for Amp's output."""

    def parse_line(self, line: str) -> Optional[Event]:
        line = line.strip()
        if not line:
            return None

        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            return _parse_plain_text(line)
        if not isinstance(raw, dict):
            return None

        kind = get_str(raw, "type")
        if kind == "tool":
            return Event(type=EventType.TOOL, tool=get_str(raw, "tool").lower())
        if kind == "result":
            return Event(
                type=EventType.RESULT,
                data=EventData(success=raw.get("success") is True),
            )
        return None


def _parse_plain_text(line: str) -> Optional[Event]:
    lower = line.lower()
    if "reading" in lower or "read file" in lower:
        return Event(type=EventType.TOOL, tool="read", detail=extract_path(line))
    if "writing" in lower or "write file" in lower:
        return Event(type=EventType.TOOL, tool="write", detail=extract_path(line))
    if "running" in lower or "executing" in lower:
        return Event(type=EventType.TOOL, tool="run", detail=truncate(line, 50))
    return None


def extract_path(line: str) -> str:
    """First whitespace-separated word that looks like a path, or ''."""
    for word in line.split():
        if "/" in word or "." in word:
            return truncate(word, 40)
    return ""


@dataclass
class AmpEngine:
    """Runs prompts through the `amp` CLI."""

    config: EngineConfig = field(default_factory=EngineConfig)

    name = "amp"
    cli_command = "amp"

    def build_args(self, prompt: str) -> list[str]:
        return [self.cli_command, "-p", prompt]

    def execute(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> Result:
        timeout = self.config.resolve_timeout()
        try:
            output = stream_events(
                self.build_args(prompt), AmpParser(), display, ctx=ctx, timeout=timeout
            )
        except CLINotFoundError as e:
            return Result(success=False, error=e)

        if output.failed:
            logger.debug("amp exited with %s", output.returncode)
            return Result(
                success=False,
                output=output.stdout,
                duration=output.duration,
                error=invocation_error(output, timeout),
            )

        # Amp reports no verdict; a clean exit is success.
        return Result(
            success=True,
            complete=is_complete(output.stdout),
            output=output.stdout,
            duration=output.duration,
        )

    def prompt(self, prompt: str, ctx: Optional[RunContext] = None) -> str:
        timeout = self.config.resolve_timeout()
        output = run_process(self.build_args(prompt), ctx=ctx, timeout=timeout)
        if output.failed:
            raise invocation_error(output, timeout, action="prompt")
        return output.stdout

    def stream_prompt(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> str:
        # Nothing structured to stream; show a spinner while Prompt runs.
        if display is not None:
            display.start_spinner("thinking...")
        try:
            return self.prompt(prompt, ctx=ctx)
        finally:
            if display is not None:
                display.stop_spinner()
