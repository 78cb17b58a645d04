"""Tests for `hal run` and the top-level app."""

import json

import pytest

import hal.loop
from hal import __version__
from hal.cli import app
from hal.engine.types import COMPLETION_MARKER, Result
from hal.errors import CLINotFoundError, ExecutionTimeoutError


@pytest.fixture
def quick_config(hal_dir):
    """No pause between iterations and no retries."""
    (hal_dir / "config.yaml").write_text(
        "loop:\n  iteration_delay: 0\nretry:\n  max_retries: 0\n"
    )
    return hal_dir


@pytest.fixture
def use_engine(monkeypatch):
    """Make the loop build the given engine whatever name is requested."""
    def install(engine):
        monkeypatch.setattr(hal.loop, "new_engine", lambda name, cfg=None: engine)
        return engine
    return install


class TestApp:

    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"hal version {__version__}" in result.output

    def test_no_command_shows_help(self, cli_runner):
        result = cli_runner.invoke(app, [])
        assert result.exit_code == 0
        assert "run" in result.output
        assert "tasks" in result.output


class TestRunCommand:

    def test_dry_run(self, cli_runner, hal_dir):
        result = cli_runner.invoke(app, ["run", "--dry-run", "--dir", str(hal_dir)])
        assert result.exit_code == 0
        assert "US-002" in result.output

    def test_complete_exits_zero(self, cli_runner, quick_config, fake_engine, use_engine):
        def finish(n):
            path = quick_config / "prd.json"
            data = json.loads(path.read_text())
            for story in data["userStories"]:
                story["passes"] = True
            path.write_text(json.dumps(data))

        engine = use_engine(fake_engine(
            [Result(success=True, complete=True, output=COMPLETION_MARKER)], before_each=finish
        ))

        result = cli_runner.invoke(app, ["run", "--dir", str(quick_config)])

        assert result.exit_code == 0
        assert engine.calls == 1
        assert "All tasks complete!" in result.output

    def test_max_iterations_exits_zero(self, cli_runner, quick_config, fake_engine, use_engine):
        engine = use_engine(fake_engine([Result(success=True)]))

        result = cli_runner.invoke(app, ["run", "2", "--dir", str(quick_config)])

        assert result.exit_code == 0
        assert engine.calls == 2
        assert "Max iterations reached" in result.output

    def test_engine_failure_exits_two(self, cli_runner, quick_config, fake_engine, use_engine):
        error = ExecutionTimeoutError("execution timed out after 15m0s", timeout_seconds=900)
        use_engine(fake_engine([Result(success=False, error=error)]))

        result = cli_runner.invoke(app, ["run", "3", "--dir", str(quick_config)])

        assert result.exit_code == 2
        assert "timed out" in result.output

    def test_missing_cli_prints_install_hint(self, cli_runner, quick_config, fake_engine, use_engine):
        use_engine(fake_engine([Result(success=False, error=CLINotFoundError("codex"))]))

        result = cli_runner.invoke(app, ["run", "1", "--dir", str(quick_config)])

        assert result.exit_code == 2
        assert "npm i -g @openai/codex" in result.output

    def test_retries_override(self, cli_runner, quick_config, fake_engine, use_engine):
        engine = use_engine(fake_engine([
            Result(success=False, error=Exception("503 service unavailable")),
            Result(success=True),
        ]))

        result = cli_runner.invoke(app, [
            "run", "1", "--retries", "2", "--retry-delay", "0s", "--dir", str(quick_config),
        ])

        assert result.exit_code == 0
        assert engine.calls == 2

    def test_hal_dir_from_config_file(self, cli_runner, hal_dir, tmp_path):
        config_file = tmp_path / "custom.yaml"
        config_file.write_text(f"hal_dir: {hal_dir}\n")

        result = cli_runner.invoke(app, [
            "run", "--dry-run", "--dir", str(tmp_path / "elsewhere"), "--config", str(config_file),
        ])

        assert result.exit_code == 0
        assert "US-002" in result.output

    def test_missing_prd_exits_one(self, cli_runner, hal_dir):
        (hal_dir / "prd.json").unlink()
        result = cli_runner.invoke(app, ["run", "--dir", str(hal_dir)])
        assert result.exit_code == 1
        assert "prd.json not found" in result.output

    def test_unknown_story_exits_one(self, cli_runner, hal_dir):
        result = cli_runner.invoke(app, ["run", "--dry-run", "-s", "US-404", "--dir", str(hal_dir)])
        assert result.exit_code == 1
        assert "story not found: US-404" in result.output

    def test_unknown_engine_exits_one(self, cli_runner, hal_dir):
        result = cli_runner.invoke(app, ["run", "-e", "gemini", "--dir", str(hal_dir)])
        assert result.exit_code == 1
        assert "UNKNOWN_ENGINE" in result.output

    def test_invalid_config_exits_one(self, cli_runner, hal_dir):
        (hal_dir / "config.yaml").write_text("retry: [1, 2]\n")
        result = cli_runner.invoke(app, ["run", "--dir", str(hal_dir)])
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output

    def test_invalid_retry_delay(self, cli_runner, hal_dir):
        result = cli_runner.invoke(app, ["run", "--retry-delay", "soon", "--dir", str(hal_dir)])
        assert result.exit_code == 1
        assert "INVALID_INPUT" in result.output

    def test_negative_retries(self, cli_runner, hal_dir):
        result = cli_runner.invoke(app, ["run", "--retries", "-1", "--dir", str(hal_dir)])
        assert result.exit_code == 1
