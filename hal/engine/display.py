"""
Terminal display for engine runs.

Renders normalized events as an append-only history of tool lines plus a
single animated status line, and prints the loop's headers and summaries.

Concurrency:
- _render_lock guards everything the animation tick reads or writes
  (FSM, counters, the terminal itself)
- _spin_lock guards only the spinner lifecycle (running flag, message,
  stop event, thread handle)
- The event path stops the animation BEFORE taking _render_lock, and the
  tick takes _render_lock before _spin_lock, so the two paths can never
  wait on each other in opposite orders.

When the output is not a terminal no animation thread is started and no
control codes are written; state is still tracked.
"""

from __future__ import annotations

import random
import sys
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, TextIO

from rich import box
from rich.console import Console
from rich.control import Control, ControlType
from rich.panel import Panel
from rich.style import Style
from rich.text import Text

from hal.engine.spinner import SpinnerFSM, SpinnerState, SpinnerTransitionError
from hal.engine.styles import (
    BOX_ERROR,
    BOX_HEADER,
    BOX_SUCCESS,
    BOX_WARNING,
    COMMAND_ICON,
    ITERATION_BAR_WIDTH,
    SPINNER_BRACKET_COLOR,
    SPINNER_GRADIENT,
    SPINNER_TEXT_GLOW_COLOR,
    SPINNER_TEXT_HIGHLIGHT_COLOR,
    SPINNER_TICK_SECONDS,
    STYLE_BOLD,
    STYLE_COMMAND_ICON,
    STYLE_ERROR,
    STYLE_INFO,
    STYLE_MUTED,
    STYLE_PROGRESS_EMPTY,
    STYLE_PROGRESS_FILLED,
    STYLE_SUCCESS,
    STYLE_TOOL_ARROW,
    STYLE_TOOL_BASH,
    STYLE_TOOL_READ,
    STYLE_TOOL_WRITE,
    STYLE_WARNING,
    TOOL_ARROW,
)
from hal.engine.text import format_duration, format_tokens, truncate
from hal.engine.types import Event, EventType

if TYPE_CHECKING:
    from hal.context import RunContext

# HAL personality words with trailing ... for measured speech
HAL_THINKING_WORDS = [
    "processing...", "observing...", "analyzing...", "computing...",
    "considering...", "reasoning...", "calculating...", "monitoring...",
    "evaluating...", "assessing...",
]

HAL_WORKING_WORDS = [
    "executing...", "operating...", "performing...",
]


def random_hal_word(words: list[str]) -> str:
    return random.choice(words)


@dataclass
class HeaderContext:
    """Engine/model/git info shown in command and loop headers."""
    engine: str
    model: str = ""
    repo: str = ""
    branch: str = ""


@dataclass
class StoryInfo:
    """The story an iteration is working on."""
    id: str
    title: str


class Display:
    """
    Terminal output with an animated spinner and formatted status.

    Args:
        out: Stream to write to (default: stdout).
        is_tty: Force terminal behaviour on or off. None auto-detects.
        width: Override the terminal width (mostly for tests).
    """

    def __init__(
        self,
        out: Optional[TextIO] = None,
        *,
        is_tty: Optional[bool] = None,
        width: Optional[int] = None,
    ) -> None:
        self.out = out if out is not None else sys.stdout
        self._console = Console(
            file=self.out,
            force_terminal=is_tty,
            highlight=False,
            soft_wrap=True,
            width=width,
        )
        self.is_tty = self._console.is_terminal

        self._render_lock = threading.Lock()
        self._spin_lock = threading.Lock()  # Separate lock for the spinner lifecycle
        self._spinning = False
        self._spin_message = ""
        self._spin_stop: Optional[threading.Event] = None
        self._spin_thread: Optional[threading.Thread] = None
        self._ctx: Optional[RunContext] = None

        self.fsm = SpinnerFSM()
        now = time.monotonic()
        self._start_time = now
        self._loop_start = now

        # Stats tracking
        self.total_tokens = 0
        self.iteration_count = 0
        self.max_iterations = 0

        # Suppresses duplicate model lines after the first init event
        self.model_shown = False

    @property
    def width(self) -> int:
        return self._console.width

    def bind_context(self, ctx: Optional[RunContext]) -> None:
        """Stop animating as soon as ctx is cancelled."""
        self._ctx = ctx

    # ------------------------------------------------------------------
    # Spinner lifecycle
    # ------------------------------------------------------------------

    def start_spinner(self, message: str) -> None:
        """
        Begin the gradient spinner, or update its message if already running.

        On a non-terminal stream the spinner is only marked as running.
        """
        with self._spin_lock:
            if self._spinning:
                self._spin_message = message
                return
            self._spinning = True
            self._spin_message = message

            if not self.is_tty:
                return

            stop = threading.Event()
            thread = threading.Thread(
                target=self._animate,
                args=(stop,),
                name="hal-spinner",
                daemon=True,
            )
            self._spin_stop = stop
            self._spin_thread = thread
            thread.start()

    def stop_spinner(self) -> None:
        """Stop the spinner and wait for the animation thread to clear its line."""
        with self._spin_lock:
            if not self._spinning:
                return
            self._spinning = False
            stop, thread = self._spin_stop, self._spin_thread
            self._spin_stop = None
            self._spin_thread = None

        # Join outside _spin_lock: the tick needs it to read the message.
        if stop is not None and thread is not None:
            stop.set()
            thread.join()

    def is_spinner_active(self) -> bool:
        with self._spin_lock:
            return self._spinning

    def _current_spinner_message(self) -> str:
        with self._spin_lock:
            return self._spin_message

    def _animate(self, stop: threading.Event) -> None:
        frame = 0
        first = True
        while not stop.wait(SPINNER_TICK_SECONDS):
            if self._ctx is not None and self._ctx.done:
                break
            with self._render_lock:
                message = self._spinner_display_message(self._current_spinner_message())
                self._draw_spinner(message, frame, first)
            first = False
            frame += 1

        with self._render_lock:
            self._clear_line()

    def _spinner_display_message(self, base: str) -> str:
        # Caller holds _render_lock.
        elapsed = self.fsm.thinking_elapsed()
        if elapsed > 0:
            return f"{base} {format_duration(int(elapsed))}"
        return base

    def _draw_spinner(self, message: str, frame: int, first: bool) -> None:
        bracket = Style(color=SPINNER_BRACKET_COLOR)
        dot = Style(color=SPINNER_GRADIENT[frame % len(SPINNER_GRADIENT)], bold=True)

        line = Text("   ")
        line.append("[", style=bracket)
        line.append("●", style=dot)
        line.append("]", style=bracket)
        line.append(" ")
        line.append_text(render_animated_spinner_text(message, frame))

        if not first:
            self._clear_line()
        self._console.print(line, end="")

    def _clear_line(self) -> None:
        if self.is_tty:
            self._console.control(
                Control(ControlType.CARRIAGE_RETURN, (ControlType.ERASE_IN_LINE, 2))
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def show_event(self, event: Optional[Event]) -> None:
        """Render one normalized event and drive the spinner FSM."""
        if event is None:
            return

        # Tool events and thinking deltas update the spinner in place;
        # everything else ends the current animation first.
        keeps_spinner = event.type == EventType.TOOL or (
            event.type == EventType.THINKING and event.data.message == "delta"
        )
        if not keeps_spinner:
            self.stop_spinner()

        spinner_message = ""

        with self._render_lock:
            if event.type == EventType.INIT:
                spinner_message = self._on_init(event)
            elif event.type == EventType.TOOL:
                spinner_message = self._on_tool(event)
            elif event.type == EventType.RESULT:
                self._on_result(event)
            elif event.type == EventType.ERROR:
                self._on_error(event)
            elif event.type == EventType.THINKING:
                spinner_message = self._on_thinking(event)
            elif event.type == EventType.TEXT:
                spinner_message = random_hal_word(HAL_WORKING_WORDS)
                self._go_to(SpinnerState.TOOL_ACTIVITY, spinner_message)

        if spinner_message:
            self.start_spinner(spinner_message)

    def _go_to(self, state: SpinnerState, message: str = "") -> None:
        # An FSM in an unexpected state is reset rather than left corrupted.
        try:
            self.fsm.go_to(state, message)
        except SpinnerTransitionError:
            self.fsm.reset()

    def _on_init(self, event: Event) -> str:
        self.fsm.reset()
        if event.data.model and not self.model_shown:
            self._console.print(Text(f"   model: {event.data.model}", style=STYLE_MUTED))
            self.model_shown = True
        self.fsm.go_to(SpinnerState.THINKING, random_hal_word(HAL_THINKING_WORDS))
        return self.fsm.message

    def _on_tool(self, event: Event) -> str:
        key = f"{event.tool}\x00{event.detail}"
        if key == self.fsm.last_tool:
            return ""

        label = event.tool + (f" {event.detail}" if event.detail else "")
        tool_message = truncate(label, max(self.width // 2, 10))
        self._go_to(SpinnerState.TOOL_ACTIVITY, tool_message)
        self.fsm.set_last_tool(key)

        if self.is_tty and self.is_spinner_active():
            # Clear the live spinner line before writing a history line.
            self._clear_line()

        line = Text("   ")
        line.append(TOOL_ARROW, style=STYLE_TOOL_ARROW)
        line.append(" ")
        line.append(label, style=_tool_style(event.tool))
        self._console.print(line)

        return tool_message

    def _on_result(self, event: Event) -> None:
        self._go_to(SpinnerState.COMPLETION)
        self.fsm.reset()

        line = Text("   ")
        if event.data.success:
            line.append("[OK]", style=STYLE_SUCCESS)
        else:
            line.append("[!!]", style=STYLE_ERROR)
        line.append(f" {int(event.data.duration_ms / 1000)}s", style=STYLE_MUTED)

        if event.data.tokens > 0:
            self.total_tokens += event.data.tokens
            line.append(f" │ {format_tokens(event.data.tokens)} tokens", style=STYLE_MUTED)
        self._console.print(line)

    def _on_error(self, event: Event) -> None:
        self._go_to(SpinnerState.ERROR, event.data.message)
        self.fsm.reset()

        line = Text("   ")
        line.append("[!!]", style=STYLE_ERROR)
        line.append(" ")
        line.append(event.data.message, style=STYLE_ERROR)
        self._console.print(line)

    def _on_thinking(self, event: Event) -> str:
        phase = event.data.message
        if phase == "start":
            self.fsm.reset()
            self.fsm.go_to(SpinnerState.THINKING, random_hal_word(HAL_THINKING_WORDS))
            return self.fsm.message

        if phase == "delta":
            # The running spinner already shows elapsed time.
            if not self.is_spinner_active():
                return random_hal_word(HAL_THINKING_WORDS)
            return ""

        if phase == "end":
            summary = format_thinking_complete(self.fsm.thinking_start)
            self._go_to(SpinnerState.COMPLETION)
            self.fsm.reset()

            line = Text("   ")
            line.append(TOOL_ARROW, style=STYLE_TOOL_ARROW)
            line.append(" ")
            line.append(summary, style=STYLE_MUTED)
            self._console.print(line)
        return ""

    # ------------------------------------------------------------------
    # Headers and summaries
    # ------------------------------------------------------------------

    def show_loop_header(self, hctx: HeaderContext, max_iterations: int) -> None:
        """Print the boxed loop header and start the session clock."""
        self.max_iterations = max_iterations
        self._loop_start = time.monotonic()

        detail = f"engine: {hctx.engine}"
        if hctx.model:
            detail += f" · model: {hctx.model}"
            self.model_shown = True
        if max_iterations > 0:
            detail += f" │ max {max_iterations} iterations"
        else:
            detail += " │ unlimited iterations"

        self._print_box(
            _title_text("Hal Loop"),
            [detail, format_repo_branch(hctx.repo, hctx.branch)],
            BOX_HEADER,
        )
        self._console.print()

    def show_command_header(self, title: str, context: str, hctx: HeaderContext) -> None:
        """Print a boxed header for a one-shot command and reset the stats."""
        self._loop_start = time.monotonic()
        self.total_tokens = 0

        detail = f"{context} │ engine: {hctx.engine}" if context else f"engine: {hctx.engine}"
        if hctx.model:
            detail += f" · model: {hctx.model}"
            self.model_shown = True

        self._print_box(
            _title_text(title),
            [detail, format_repo_branch(hctx.repo, hctx.branch)],
            BOX_HEADER,
        )
        self._console.print()

    def show_iteration_header(
        self,
        current: int,
        max_iterations: int,
        story: Optional[StoryInfo] = None,
    ) -> None:
        """Print the iteration banner with a progress bar."""
        with self._render_lock:
            self.iteration_count = current
            self.max_iterations = max_iterations
            self._start_time = time.monotonic()
            self.fsm.reset()

            line = Text()
            if max_iterations > 0:
                line.append(f"[{current}/{max_iterations}]", style=STYLE_BOLD)
                progress = (current - 1) / max_iterations
                filled = min(int(progress * ITERATION_BAR_WIDTH), ITERATION_BAR_WIDTH)
                line.append(" ")
                line.append("█" * filled, style=STYLE_PROGRESS_FILLED)
                line.append("░" * (ITERATION_BAR_WIDTH - filled), style=STYLE_PROGRESS_EMPTY)
            else:
                line.append(f"[{current}]", style=STYLE_BOLD)

            if story is not None:
                line.append("  ")
                line.append(story.id, style=STYLE_INFO)
                line.append(f": {truncate(story.title, max(self.width // 2, 10))}")
            self._console.print(line)

    def show_iteration_complete(self, current: int) -> None:
        self.stop_spinner()
        self._console.print()  # Blank line separates iterations

    def show_success(self, message: str) -> None:
        """Print the success box with final stats."""
        self.stop_spinner()
        stats = [
            f"Iterations: {self.iteration_count}",
            f"Total time: {self._elapsed()}",
            f"Total tokens: {format_tokens(self.total_tokens)}",
        ]
        self._console.print()
        self._print_box(
            Text(f"[OK] {message}", style=STYLE_SUCCESS),
            [" │ ".join(stats)],
            BOX_SUCCESS,
        )

    def show_error(self, message: str) -> None:
        """Print the error box."""
        self.stop_spinner()
        self._console.print()
        self._print_box(
            Text("[!!] Error", style=STYLE_ERROR),
            [message, f"After {self.iteration_count} iterations ({self._elapsed()})"],
            BOX_ERROR,
            muted_from=1,
        )

    def show_max_iterations(self) -> None:
        """Print the max-iterations box. This is a stopping point, not a failure."""
        self.stop_spinner()
        stats = [
            f"Completed: {self.iteration_count}/{self.max_iterations} iterations",
            f"Total time: {self._elapsed()}",
            f"Total tokens: {format_tokens(self.total_tokens)}",
        ]
        self._console.print()
        self._print_box(
            Text("[!] Max iterations reached", style=STYLE_WARNING),
            [" │ ".join(stats)],
            BOX_WARNING,
        )

    def show_command_success(self, title: str, details: str = "") -> None:
        """Print the success box for a one-shot command."""
        self.stop_spinner()
        detail = f"{details} │ Duration: {self._elapsed()}" if details else f"Duration: {self._elapsed()}"
        if self.total_tokens > 0:
            detail += f" │ Tokens: {format_tokens(self.total_tokens)}"
        self._console.print()
        self._print_box(Text(f"[OK] {title}", style=STYLE_SUCCESS), [detail], BOX_SUCCESS)

    def show_info(self, message: str, style: Optional[Style] = None) -> None:
        self._console.print(Text(message, style=style or ""))

    def show_warning(self, message: str) -> None:
        self.stop_spinner()
        self._console.print(Text(f"   ⚠ {message}", style=STYLE_WARNING))

    def show_retry(self, attempt: int, max_attempts: int, delay_seconds: float) -> None:
        self.stop_spinner()
        text = f"... retrying in {format_duration(delay_seconds)} (attempt {attempt}/{max_attempts})"
        self._console.print(Text(f"   {text}", style=STYLE_WARNING))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _elapsed(self) -> str:
        return format_duration(round(time.monotonic() - self._loop_start))

    def _print_box(
        self,
        title: Text,
        lines: list[str],
        border: str,
        muted_from: int = 0,
    ) -> None:
        content = Text()
        content.append_text(title)
        for index, line in enumerate(lines):
            if not line:
                continue
            content.append("\n")
            content.append(line, style=STYLE_MUTED if index >= muted_from else "")
        self._console.print(Panel(content, box=box.ROUNDED, border_style=border, padding=(0, 1)))


def _tool_style(tool: str) -> Style:
    name = tool.lower()
    if name == "read":
        return STYLE_TOOL_READ
    if name in ("write", "edit"):
        return STYLE_TOOL_WRITE
    if name in ("bash", "run"):
        return STYLE_TOOL_BASH
    return STYLE_INFO


def _title_text(title: str) -> Text:
    text = Text()
    text.append(COMMAND_ICON, style=STYLE_COMMAND_ICON)
    text.append(" ")
    text.append(title, style=STYLE_BOLD)
    return text


def format_repo_branch(repo: str, branch: str) -> str:
    """Build "repo: X · branch: Y", omitting empty segments."""
    parts = []
    if repo:
        parts.append(f"repo: {repo}")
    if branch:
        parts.append(f"branch: {branch}")
    return " · ".join(parts)


def format_thinking_complete(start: Optional[float], now: Optional[float] = None) -> str:
    """Summary line for a finished reasoning phase (start is a monotonic timestamp)."""
    if start is None:
        return "reasoning complete"
    elapsed = (now if now is not None else time.monotonic()) - start
    if elapsed < 0:
        return "reasoning complete"
    return f"reasoning complete {format_duration(int(elapsed))}"


def render_animated_spinner_text(message: str, frame: int) -> Text:
    """Shimmer: one highlighted character sweeping across the message."""
    text = Text()
    if not message:
        return text

    highlight_idx = frame % len(message)
    glow = Style(color=SPINNER_TEXT_GLOW_COLOR)
    highlight = Style(color=SPINNER_TEXT_HIGHLIGHT_COLOR, bold=True)

    for i, ch in enumerate(message):
        distance = abs(i - highlight_idx)
        if distance == 0:
            text.append(ch, style=highlight)
        elif distance == 1:
            text.append(ch, style=glow)
        else:
            text.append(ch, style=STYLE_MUTED)
    return text
