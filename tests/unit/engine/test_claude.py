"""Tests for the Claude adapter: stream-json parsing and CLI invocation."""

import json
import sys
import threading

import pytest

from hal.context import RunContext
from hal.engine.claude import ClaudeEngine, ClaudeParser, assistant_text
from hal.engine.types import COMPLETION_MARKER, EngineConfig, EventType
from hal.errors import CLINotFoundError, ExecutionCancelledError, LLMError

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")


def record(**fields) -> str:
    return json.dumps(fields)


def tool_use(name: str, **args) -> str:
    return record(
        type="assistant",
        message={"content": [{"type": "tool_use", "name": name, "input": args}]},
    )


INIT = record(type="system", subtype="init", model="claude-sonnet-4")
RESULT = record(
    type="result",
    subtype="success",
    duration_ms=4200,
    usage={
        "input_tokens": 50,
        "output_tokens": 40,
        "cache_read_input_tokens": 20,
        "cache_creation_input_tokens": 10,
    },
)


def script_printing(*lines: str) -> str:
    """Shell body that prints lines verbatim."""
    return "cat <<'EOF'\n" + "\n".join(lines) + "\nEOF"


# =============================================================================
# Parser
# =============================================================================


class TestClaudeParser:

    def test_init_read_result_sequence(self):
        parser = ClaudeParser()
        events = [
            parser.parse_line(INIT),
            parser.parse_line(tool_use("Read", file_path="/home/dev/project/src/app.py")),
            parser.parse_line(RESULT),
        ]

        assert [e.type for e in events] == [EventType.INIT, EventType.TOOL, EventType.RESULT]
        assert events[0].data.model == "claude-sonnet-4"
        assert events[1].tool == "read"
        assert events[1].detail == ".../src/app.py"
        assert events[2].data.success is True
        assert events[2].data.tokens == 120
        assert events[2].data.duration_ms == 4200
        assert parser.total_tokens == 120

    @pytest.mark.parametrize("name,args,tool,detail", [
        ("Write", {"file_path": "a/b/c.py"}, "write", ".../b/c.py"),
        ("Edit", {"file_path": "c.py"}, "edit", "c.py"),
        ("Glob", {"pattern": "**/*.py"}, "glob", "**/*.py"),
        ("Grep", {"pattern": "x" * 60}, "grep", "x" * 37 + "..."),
        ("Bash", {"command": "pytest -q", "description": "Run tests"}, "run", "Run tests"),
        ("Bash", {"command": "pytest -q"}, "run", "pytest -q"),
        ("Task", {"description": "Explore"}, "task", "Explore"),
        ("WebFetch", {"url": "https://example.com"}, "fetch", "https://example.com"),
        ("WebSearch", {"query": "python typer"}, "search", "python typer"),
        ("TodoWrite", {"todos": []}, "todowrite", ""),
    ])
    def test_tool_details(self, name, args, tool, detail):
        event = ClaudeParser().parse_line(tool_use(name, **args))
        assert event.type == EventType.TOOL
        assert event.tool == tool
        assert event.detail == detail

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "not json",
        "[1, 2, 3]",
        '{"type": "user"}',
        '{"type": "system", "subtype": "compact"}',
        record(type="assistant", message={"content": [{"type": "text", "text": "hi"}]}),
        record(type="assistant", message="oops"),
    ])
    def test_skipped_lines(self, line):
        assert ClaudeParser().parse_line(line) is None

    def test_error_result(self):
        event = ClaudeParser().parse_line(record(type="result", subtype="error_max_turns"))
        assert event.data.success is False
        assert event.data.tokens == 0

    def test_first_result_kept(self):
        parser = ClaudeParser()
        parser.parse_line(record(type="result", subtype="error_during_execution"))
        parser.parse_line(RESULT)
        assert parser.first_result.data.success is False
        assert parser.total_tokens == 120

    def test_assistant_text(self):
        line = record(type="assistant", message={"content": [
            {"type": "text", "text": "Hello "},
            {"type": "tool_use", "name": "Read", "input": {}},
            {"type": "text", "text": "world"},
        ]})
        assert assistant_text(line) == "Hello world"
        assert assistant_text(RESULT) == ""
        assert assistant_text("garbage") == ""


# =============================================================================
# Engine
# =============================================================================


class TestClaudeArgs:

    def test_streaming_args(self):
        assert ClaudeEngine().build_args("do it") == [
            "claude", "-p", "--dangerously-skip-permissions", "--verbose",
            "--output-format", "stream-json", "do it",
        ]

    def test_model_flag(self):
        args = ClaudeEngine(EngineConfig(model="opus")).build_args("p")
        assert args[-3:] == ["--model", "opus", "p"]

    def test_prompt_args(self):
        assert ClaudeEngine().build_prompt_args("q") == [
            "claude", "-p", "--dangerously-skip-permissions", "q",
        ]

    def test_identity(self):
        engine = ClaudeEngine()
        assert engine.name == "claude"
        assert engine.cli_command == "claude"


@posix_only
class TestClaudeExecution:

    def test_execute_reports_result(self, fake_cli, plain_display):
        display, buffer = plain_display
        fake_cli("claude", script_printing(
            INIT,
            tool_use("Read", file_path="src/app.py"),
            RESULT,
            "all stories done " + COMPLETION_MARKER,
        ))

        result = ClaudeEngine().execute("go", display)

        assert result.success is True
        assert result.complete is True
        assert result.tokens == 120
        assert result.error is None
        assert "▶ read src/app.py" in buffer.getvalue()
        assert display.total_tokens == 120

    def test_execute_uses_first_result(self, fake_cli):
        fake_cli("claude", script_printing(
            record(type="result", subtype="error_during_execution"),
            RESULT,
        ))
        result = ClaudeEngine().execute("go")
        assert result.success is False
        assert result.error is None

    def test_execute_without_result_record_succeeds(self, fake_cli):
        fake_cli("claude", script_printing(INIT))
        assert ClaudeEngine().execute("go").success is True

    def test_execute_nonzero_exit(self, fake_cli):
        fake_cli("claude", "echo 'Error: overloaded' >&2; exit 1")

        result = ClaudeEngine().execute("go")

        assert result.success is False
        assert isinstance(result.error, LLMError)
        assert "overloaded" in str(result.error)
        assert result.error.should_retry

    def test_execute_missing_cli(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PATH", str(tmp_path))
        result = ClaudeEngine().execute("go")
        assert result.success is False
        assert isinstance(result.error, CLINotFoundError)

    def test_prompt_returns_stdout(self, fake_cli):
        fake_cli("claude", 'echo "answer: $3"')
        assert ClaudeEngine().prompt("what?") == "answer: what?\n"

    def test_prompt_failure_raises(self, fake_cli):
        fake_cli("claude", "echo 'not logged in' >&2; exit 1")
        with pytest.raises(LLMError) as exc_info:
            ClaudeEngine().prompt("q")
        assert str(exc_info.value).startswith("prompt failed")

    def test_stream_prompt_collects_text(self, fake_cli, plain_display):
        display, _ = plain_display
        fake_cli("claude", script_printing(
            INIT,
            record(type="assistant", message={"content": [{"type": "text", "text": "Hello "}]}),
            tool_use("Read", file_path="README.md"),
            record(type="assistant", message={"content": [{"type": "text", "text": "there"}]}),
            RESULT,
        ))

        text = ClaudeEngine().stream_prompt("hi", display)

        assert text == "Hello there"
        assert not display.is_spinner_active()

    def test_stream_prompt_cancel_keeps_partial_reply(self, fake_cli):
        fake_cli("claude", script_printing(
            record(type="assistant", message={"content": [{"type": "text", "text": "PARTIAL-REPLY"}]}),
        ) + "\nsleep 30")
        ctx = RunContext()
        timer = threading.Timer(0.5, ctx.cancel)
        timer.start()
        try:
            with pytest.raises(ExecutionCancelledError) as exc_info:
                ClaudeEngine().stream_prompt("hi", None, ctx)
        finally:
            timer.cancel()

        assert str(exc_info.value) == "prompt cancelled"
        assert exc_info.value.output == "PARTIAL-REPLY"

    def test_prompt_timeout_keeps_stdout(self, fake_cli):
        fake_cli("claude", 'echo "half an answer"; sleep 30')
        engine = ClaudeEngine(EngineConfig(timeout=0.5))

        with pytest.raises(LLMError) as exc_info:
            engine.prompt("q")

        assert str(exc_info.value).startswith("prompt timed out")
        assert exc_info.value.output == "half an answer\n"
