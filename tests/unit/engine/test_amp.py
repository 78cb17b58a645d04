"""Tests for the Amp adapter."""

import sys

import pytest

from hal.engine.amp import AmpEngine, AmpParser, extract_path
from hal.engine.types import COMPLETION_MARKER, EngineConfig, EventType
from hal.errors import ExecutionTimeoutError, LLMError

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")


class TestAmpParser:

    @pytest.mark.parametrize("line,tool,detail", [
        ("Reading src/main.py", "read", "src/main.py"),
        ("read file config.yaml now", "read", "config.yaml"),
        ("Writing docs/README.md", "write", "docs/README.md"),
        ("write file out", "write", ""),
        ("Running npm test", "run", "Running npm test"),
        ("Executing make", "run", "Executing make"),
    ])
    def test_plain_text_activity(self, line, tool, detail):
        event = AmpParser().parse_line(line)
        assert event.type == EventType.TOOL
        assert event.tool == tool
        assert event.detail == detail

    def test_json_tool_record(self):
        event = AmpParser().parse_line('{"type": "tool", "tool": "Bash"}')
        assert event.type == EventType.TOOL
        assert event.tool == "bash"

    @pytest.mark.parametrize("raw,success", [
        ('{"type": "result", "success": true}', True),
        ('{"type": "result", "success": false}', False),
        ('{"type": "result", "success": "yes"}', False),
        ('{"type": "result"}', False),
    ])
    def test_json_result_record(self, raw, success):
        event = AmpParser().parse_line(raw)
        assert event.type == EventType.RESULT
        assert event.data.success is success

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "Thinking about the problem",
        "[1, 2]",
        '{"type": "status"}',
    ])
    def test_skipped_lines(self, line):
        assert AmpParser().parse_line(line) is None

    def test_extract_path_truncates(self):
        assert extract_path("Reading " + "a/" * 30) == ("a/" * 30)[:37] + "..."
        assert extract_path("nothing here") == ""


class TestAmpEngine:

    def test_args(self):
        assert AmpEngine().build_args("do it") == ["amp", "-p", "do it"]

    @posix_only
    def test_clean_exit_is_success(self, fake_cli):
        fake_cli("amp", f"echo 'Reading src/a.py'; echo '{COMPLETION_MARKER}'")
        result = AmpEngine().execute("go")
        assert result.success is True
        assert result.complete is True

    @posix_only
    def test_failed_exit(self, fake_cli):
        fake_cli("amp", "echo 'rate limit exceeded' >&2; exit 2")
        result = AmpEngine().execute("go")
        assert result.success is False
        assert isinstance(result.error, LLMError)
        assert result.error.should_retry

    @posix_only
    def test_timeout(self, fake_cli):
        fake_cli("amp", "sleep 30")
        result = AmpEngine(EngineConfig(timeout=0.3)).execute("go")
        assert isinstance(result.error, ExecutionTimeoutError)

    @posix_only
    def test_stream_prompt_stops_spinner(self, fake_cli, plain_display):
        display, _ = plain_display
        fake_cli("amp", 'echo "reply to $2"')

        assert AmpEngine().stream_prompt("hi", display) == "reply to hi\n"
        assert not display.is_spinner_active()

    @posix_only
    def test_stream_prompt_stops_spinner_on_error(self, fake_cli, plain_display):
        display, _ = plain_display
        fake_cli("amp", "exit 1")

        with pytest.raises(LLMError):
            AmpEngine().stream_prompt("hi", display)
        assert not display.is_spinner_active()
