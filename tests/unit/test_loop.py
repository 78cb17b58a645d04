"""Tests for the iteration loop.

Uses scripted engines and a real prd.json in a temporary directory.
"""

import json
import threading

import pytest

import hal.loop
from hal.context import RunContext
from hal.engine.types import COMPLETION_MARKER, Result
from hal.errors import ExecutionCancelledError, ExecutionTimeoutError
from hal.logger import HalLogger
from hal.loop import LoopConfig, LoopError, LoopRunner
from hal.retry import RetryPolicy

NO_WAIT = RetryPolicy(max_retries=2, base_delay_seconds=0, max_delay_seconds=0)


@pytest.fixture(autouse=True)
def no_git(monkeypatch):
    monkeypatch.setattr(hal.loop, "get_git_info", lambda: ("demo", "main"))


@pytest.fixture
def run_logger(tmp_path):
    return HalLogger("run-test", tmp_path / "logs")


def loop_config(hal_dir, **overrides) -> LoopConfig:
    settings = dict(
        hal_dir=str(hal_dir),
        max_iterations=3,
        retry=NO_WAIT,
        iteration_delay_seconds=0,
    )
    settings.update(overrides)
    return LoopConfig(**settings)


def completed(output: str = "done " + COMPLETION_MARKER) -> Result:
    return Result(success=True, complete=True, output=output)


def mark_all_passing(hal_dir) -> None:
    path = hal_dir / "prd.json"
    data = json.loads(path.read_text())
    for story in data["userStories"]:
        story["passes"] = True
    path.write_text(json.dumps(data))


def events(logger: HalLogger, event_type: str) -> list:
    path = logger.log_path()
    if not path.exists():
        return []
    entries = [json.loads(line) for line in path.read_text().splitlines()]
    return [e for e in entries if e["event_type"] == event_type]


# =============================================================================
# Outcomes
# =============================================================================


class TestLoopOutcomes:

    def test_completion_confirmed_by_prd(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        engine = fake_engine([completed()], before_each=lambda n: mark_all_passing(hal_dir))

        result = LoopRunner(loop_config(hal_dir), engine, display, run_logger).run()

        assert result.success is True
        assert result.complete is True
        assert result.iterations == 1
        assert result.error is None
        assert "All tasks complete!" in buffer.getvalue()
        assert len(events(run_logger, "loop_complete")) == 1

    def test_completion_contradicted_by_prd(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display

        def flip_on_second_call(n):
            if n == 2:
                mark_all_passing(hal_dir)

        engine = fake_engine([completed()], before_each=flip_on_second_call)

        result = LoopRunner(loop_config(hal_dir), engine, display, run_logger).run()

        assert result.complete is True
        assert result.iterations >= 2
        assert engine.calls == 2
        assert "Agent signaled COMPLETE but US-002 is still pending" in buffer.getvalue()
        contradictions = events(run_logger, "completion_contradiction")
        assert len(contradictions) == 1
        assert contradictions[0]["level"] == "warn"
        assert contradictions[0]["data"]["pending_story"] == "US-002"

    def test_max_iterations_is_not_an_error(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        engine = fake_engine([Result(success=True, output="progress")])

        result = LoopRunner(loop_config(hal_dir, max_iterations=3), engine, display, run_logger).run()

        assert result.success is True
        assert result.complete is False
        assert result.error is None
        assert result.iterations == 3
        assert engine.calls == 3
        assert "Max iterations reached" in buffer.getvalue()
        assert events(run_logger, "max_iterations_reached")[0]["data"]["iterations"] == 3

    def test_error_stops_loop(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        error = ExecutionTimeoutError("execution timed out after 15m0s", timeout_seconds=900)
        engine = fake_engine([Result(success=True), Result(success=False, error=error)])

        result = LoopRunner(loop_config(hal_dir, max_iterations=5), engine, display, run_logger).run()

        assert result.success is False
        assert result.error is error
        assert result.iterations == 2
        assert engine.calls == 2
        assert "execution timed out after 15m0s" in buffer.getvalue()
        logged = events(run_logger, "loop_error")
        assert logged[0]["data"]["error_type"] == "ExecutionTimeoutError"

    def test_transient_errors_retried_within_iteration(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        engine = fake_engine([
            Result(success=False, error=Exception("529 overloaded")),
            completed(),
        ], before_each=lambda n: n == 2 and mark_all_passing(hal_dir))

        result = LoopRunner(loop_config(hal_dir), engine, display, run_logger).run()

        assert result.complete is True
        assert result.iterations == 1
        assert engine.calls == 2
        assert "attempt 2/3" in buffer.getvalue()
        assert len(events(run_logger, "retry_scheduled")) == 1

    def test_unlimited_iterations(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        engine = fake_engine([completed()], before_each=lambda n: n == 25 and mark_all_passing(hal_dir))

        result = LoopRunner(loop_config(hal_dir, max_iterations=0), engine, display, run_logger).run()

        assert result.complete is True
        assert result.iterations == 25
        assert "unlimited iterations" in buffer.getvalue()

    def test_cancel_between_iterations(self, hal_dir, fake_engine, plain_display, run_logger):
        display, _ = plain_display
        ctx = RunContext()
        engine = fake_engine([Result(success=True)], before_each=lambda n: ctx.cancel())

        result = LoopRunner(
            loop_config(hal_dir, iteration_delay_seconds=30), engine, display, run_logger
        ).run(ctx)

        assert result.success is False
        assert isinstance(result.error, ExecutionCancelledError)
        assert result.iterations == 1

    def test_iteration_results_logged(self, hal_dir, fake_engine, plain_display, run_logger):
        display, _ = plain_display
        engine = fake_engine([Result(success=True, tokens=77, duration=1.25)])

        LoopRunner(loop_config(hal_dir, max_iterations=2), engine, display, run_logger).run()

        logged = events(run_logger, "iteration_result")
        assert [e["data"]["iteration"] for e in logged] == [1, 2]
        assert logged[0]["data"]["tokens"] == 77
        assert logged[0]["data"]["duration_seconds"] == 1.25
        starts = events(run_logger, "iteration_start")
        assert starts[0]["data"]["story_id"] == "US-002"


# =============================================================================
# Setup failures
# =============================================================================


class TestLoopSetup:

    def test_missing_prompt(self, hal_dir, fake_engine, plain_display, run_logger):
        (hal_dir / "prompt.md").unlink()
        engine = fake_engine([completed()])

        result = LoopRunner(loop_config(hal_dir), engine, plain_display[0], run_logger).run()

        assert isinstance(result.error, LoopError)
        assert str(result.error).startswith("failed to load prompt")
        assert engine.calls == 0

    def test_missing_prd(self, hal_dir, fake_engine, plain_display, run_logger):
        (hal_dir / "prd.json").unlink()

        result = LoopRunner(loop_config(hal_dir), fake_engine([completed()]), plain_display[0], run_logger).run()

        assert isinstance(result.error, LoopError)
        assert "prd.json not found" in str(result.error)
        assert result.success is False

    def test_invalid_prd(self, hal_dir, fake_engine, plain_display, run_logger):
        (hal_dir / "prd.json").write_text("{not json")

        result = LoopRunner(loop_config(hal_dir), fake_engine([completed()]), plain_display[0], run_logger).run()

        assert str(result.error).startswith("failed to load PRD")

    def test_unknown_story(self, hal_dir, fake_engine, plain_display, run_logger):
        result = LoopRunner(
            loop_config(hal_dir, story_id="US-999"), fake_engine([completed()]), plain_display[0], run_logger
        ).run()

        assert str(result.error) == "story not found: US-999"
        assert events(run_logger, "loop_error")[0]["data"]["error"] == "story not found: US-999"

    def test_engine_built_from_registry(self, hal_dir):
        runner = LoopRunner(loop_config(hal_dir, engine="codex"))
        assert runner.engine.name == "codex"
        assert runner.logger.logs_dir == hal_dir / "logs"


# =============================================================================
# Dry run
# =============================================================================


class TestDryRun:

    def test_shows_next_story_without_running(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        engine = fake_engine([completed()])

        result = LoopRunner(loop_config(hal_dir, dry_run=True), engine, display, run_logger).run()

        output = buffer.getvalue()
        assert engine.calls == 0
        assert result.success is True
        assert result.complete is False
        assert "Dry-run mode" in output
        assert "ID:    US-002" in output
        assert "Title: Story US-002" in output
        assert "  - US-002 works" in output
        assert "prompt.md" in output

    def test_specific_story(self, hal_dir, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        LoopRunner(
            loop_config(hal_dir, dry_run=True, story_id="US-001"), fake_engine([completed()]), display, run_logger
        ).run()
        assert "ID:    US-001" in buffer.getvalue()

    def test_nothing_pending(self, hal_dir, prd_writer, make_story, fake_engine, plain_display, run_logger):
        display, buffer = plain_display
        prd_writer(hal_dir, [make_story("US-001", 1, passes=True)])

        result = LoopRunner(loop_config(hal_dir, dry_run=True), fake_engine([completed()]), display, run_logger).run()

        assert result.complete is True
        assert "All stories are complete!" in buffer.getvalue()


class TestStoryHeader:

    def test_header_follows_prd_updates(self, hal_dir, prd_writer, make_story, fake_engine, plain_display, run_logger):
        display, buffer = plain_display

        def advance(n):
            if n == 1:
                prd_writer(hal_dir, [make_story("US-002", 2, passes=True), make_story("US-003", 3)])

        engine = fake_engine([Result(success=True)], before_each=advance)
        LoopRunner(loop_config(hal_dir, max_iterations=2), engine, display, run_logger).run()

        output = buffer.getvalue()
        assert "US-002: Story US-002" in output
        assert "US-003: Story US-003" in output
