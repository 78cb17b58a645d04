"""
Spinner finite state machine.

The display never changes what it shows without going through this machine.
Every transition must appear in VALID_TRANSITIONS; anything else raises, and
callers reset to IDLE rather than render a stale activity line.

    From           Allowed to
    ------------   ---------------------------------------
    IDLE           THINKING, IDLE
    THINKING       TOOL_ACTIVITY, COMPLETION, ERROR
    TOOL_ACTIVITY  THINKING, TOOL_ACTIVITY, COMPLETION, ERROR
    COMPLETION     IDLE
    ERROR          IDLE
"""

from __future__ import annotations

import time
from enum import IntEnum
from typing import Optional


class SpinnerState(IntEnum):
    """Visible activity states."""
    IDLE = 0
    THINKING = 1
    TOOL_ACTIVITY = 2
    COMPLETION = 3
    ERROR = 4


_STATE_NAMES = {
    SpinnerState.IDLE: "Idle",
    SpinnerState.THINKING: "Thinking",
    SpinnerState.TOOL_ACTIVITY: "ToolActivity",
    SpinnerState.COMPLETION: "Completion",
    SpinnerState.ERROR: "Error",
}


def state_name(state: int) -> str:
    """Human-readable state name, Unknown(n) for anything unlisted."""
    try:
        return _STATE_NAMES[SpinnerState(state)]
    except ValueError:
        return f"Unknown({int(state)})"


VALID_TRANSITIONS: dict[SpinnerState, frozenset[SpinnerState]] = {
    SpinnerState.IDLE: frozenset({SpinnerState.THINKING, SpinnerState.IDLE}),
    SpinnerState.THINKING: frozenset({
        SpinnerState.TOOL_ACTIVITY,
        SpinnerState.COMPLETION,
        SpinnerState.ERROR,
    }),
    SpinnerState.TOOL_ACTIVITY: frozenset({
        SpinnerState.THINKING,
        SpinnerState.TOOL_ACTIVITY,
        SpinnerState.COMPLETION,
        SpinnerState.ERROR,
    }),
    SpinnerState.COMPLETION: frozenset({SpinnerState.IDLE}),
    SpinnerState.ERROR: frozenset({SpinnerState.IDLE}),
}


class SpinnerTransitionError(Exception):
    """Raised when a transition is not in the allow-list."""

    def __init__(self, from_state: int, to_state: int) -> None:
        super().__init__(
            f"invalid spinner transition: {state_name(from_state)} → {state_name(to_state)}"
        )
        self.from_state = from_state
        self.to_state = to_state


def transition(from_state: int, to_state: int) -> None:
    """
    Validate a transition.

    Raises:
        SpinnerTransitionError: If to_state is not reachable from from_state.
    """
    try:
        targets = VALID_TRANSITIONS[SpinnerState(from_state)]
        allowed = SpinnerState(to_state) in targets
    except ValueError:
        allowed = False
    if not allowed:
        raise SpinnerTransitionError(from_state, to_state)


class SpinnerFSM:
    """
    Current spinner state plus the bits of context the display needs.

    Not thread-safe on its own; the display guards it with its render lock.
    """

    def __init__(self) -> None:
        self._state = SpinnerState.IDLE
        self._message = ""
        self._last_tool = ""
        self.thinking_start: Optional[float] = None

    @property
    def state(self) -> SpinnerState:
        return self._state

    @property
    def message(self) -> str:
        return self._message

    @property
    def last_tool(self) -> str:
        return self._last_tool

    def set_last_tool(self, key: str) -> None:
        self._last_tool = key

    def go_to(self, state: SpinnerState, message: str = "") -> None:
        """
        Move to state with message.

        Entering THINKING stamps thinking_start. On an invalid transition
        nothing changes.

        Raises:
            SpinnerTransitionError: If the transition is not allowed.
        """
        transition(self._state, state)
        self._state = SpinnerState(state)
        self._message = message
        if self._state == SpinnerState.THINKING:
            self.thinking_start = time.monotonic()

    def reset(self) -> None:
        """Return to IDLE and forget message, last tool and thinking start."""
        self._state = SpinnerState.IDLE
        self._message = ""
        self._last_tool = ""
        self.thinking_start = None

    def thinking_elapsed(self) -> float:
        """Seconds spent in the current THINKING state, 0 otherwise."""
        if self._state != SpinnerState.THINKING or self.thinking_start is None:
            return 0.0
        return max(0.0, time.monotonic() - self.thinking_start)
