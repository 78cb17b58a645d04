"""
Shared vocabulary between engine adapters, the display and the loop.

Every adapter normalizes its tool's wire format into Event objects; every
invocation ends in a Result. Nothing downstream of an adapter looks at the
raw output format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from hal.context import RunContext
    from hal.engine.display import Display

# Per-invocation deadline when no timeout is configured (seconds)
DEFAULT_TIMEOUT = 15 * 60

# Inline marker an agent prints when it believes all work is done
COMPLETION_MARKER = "<promise>COMPLETE</promise>"


class EventType(str, Enum):
    """Category of a normalized engine event."""
    INIT = "init"           # Session initialization
    TOOL = "tool"           # Tool invocation
    TEXT = "text"           # Assistant text
    THINKING = "thinking"   # Reasoning lifecycle (start/delta/end)
    RESULT = "result"       # End of turn
    ERROR = "error"         # Failure observed in the stream
    UNKNOWN = "unknown"     # Unrecognized event


@dataclass
class EventData:
    """Optional structured payload carried by an event."""
    model: str = ""                            # Model name (init events)
    success: bool = False                      # Success flag (result events)
    tokens: int = 0                            # Token count (result events)
    duration_ms: float = 0.0                   # Duration (result events)
    message: str = ""                          # Error text or thinking phase


@dataclass
class Event:
    """One normalized unit of progress information."""
    type: EventType
    tool: str = ""                             # Lowercase verb: read, write, run, fetch...
    detail: str = ""                           # Display-sized argument
    data: EventData = field(default_factory=EventData)


@dataclass
class Result:
    """Terminal outcome of one engine invocation."""
    success: bool = False
    complete: bool = False                     # Completion marker seen (advisory)
    output: str = ""                           # Raw captured stdout
    duration: float = 0.0                      # Seconds
    tokens: int = 0
    error: Optional[Exception] = None


@dataclass
class EngineConfig:
    """
    Optional per-engine overrides.

    Empty or zero values mean "use the adapter default", never an error.
    """
    model: str = ""                            # Model ID passed to the CLI
    provider: str = ""                         # Provider name (pi only)
    timeout: Optional[float] = None            # Per-invocation timeout in seconds

    def resolve_timeout(self) -> float:
        """Return the configured timeout, or DEFAULT_TIMEOUT."""
        if self.timeout is None or self.timeout <= 0:
            return DEFAULT_TIMEOUT
        return self.timeout


def is_complete(output: str) -> bool:
    """Check whether output carries the completion marker."""
    return COMPLETION_MARKER in output


class OutputParser(Protocol):
    """Turns one line of raw engine output into an Event, or None to skip it."""

    def parse_line(self, line: str) -> Optional[Event]:
        ...


class Engine(Protocol):
    """Contract every engine adapter satisfies."""

    name: str
    cli_command: str

    def execute(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> Result:
        """Run the prompt with streaming output, forwarding events to display."""
        ...

    def prompt(self, prompt: str, ctx: Optional[RunContext] = None) -> str:
        """Run the prompt without streaming and return the raw text."""
        ...

    def stream_prompt(
        self,
        prompt: str,
        display: Optional[Display] = None,
        ctx: Optional[RunContext] = None,
    ) -> str:
        """Stream progress to display and return only the assistant's text."""
        ...
