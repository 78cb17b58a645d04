"""
Iteration loop.

Each iteration re-reads prd.json, runs the engine once through the retry
wrapper and interprets the outcome:

    pending -> executing -> complete | error | next iteration

An agent's completion marker is only accepted once prd.json agrees that no
story is pending. Running out of iterations is a normal stopping point, not
a failure.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from hal.config import PRD_FILE, PROMPT_FILE
from hal.context import RunContext
from hal.engine.display import Display, HeaderContext, StoryInfo
from hal.engine.registry import new_engine
from hal.engine.types import Engine, EngineConfig, Result
from hal.errors import ExecutionCancelledError
from hal.gitinfo import get_git_info
from hal.logger import HalLogger, new_run_id
from hal.prd import PRD, PRDError, UserStory, load_prd
from hal.retry import RetryPolicy, execute_with_retry

logger = logging.getLogger(__name__)


class LoopError(Exception):
    """Raised for problems with the hal directory: missing prompt, PRD or story."""


@dataclass
class LoopConfig:
    """Settings for one loop run."""
    hal_dir: str = ".hal"
    max_iterations: int = 10                   # <= 0 means unlimited
    engine: str = "claude"
    engine_config: EngineConfig = field(default_factory=EngineConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    dry_run: bool = False                      # Show the next story without running it
    story_id: str = ""                         # Work on this story instead of the next pending one
    iteration_delay_seconds: float = 2.0


@dataclass
class LoopResult:
    """Outcome of a loop run."""
    iterations: int = 0                        # Iterations started
    complete: bool = False                     # Every story passes
    success: bool = False                      # Finished without an error
    error: Optional[Exception] = None


class LoopRunner:
    """
    Runs an engine repeatedly against the PRD in hal_dir.

    Args:
        config: Loop settings.
        engine: Engine to run. Built from config.engine when None.
        display: Terminal display. A stdout display when None.
        logger: Structured run log. Written under <hal_dir>/logs when None.

    Raises:
        EngineNotFoundError: If config.engine is not a known engine.
    """

    def __init__(
        self,
        config: LoopConfig,
        engine: Optional[Engine] = None,
        display: Optional[Display] = None,
        logger: Optional[HalLogger] = None,
    ) -> None:
        self.config = config
        self.engine = engine if engine is not None else new_engine(config.engine, config.engine_config)
        self.display = display if display is not None else Display()
        self.logger = logger if logger is not None else HalLogger(
            new_run_id(), Path(config.hal_dir) / "logs"
        )

    @property
    def hal_path(self) -> Path:
        return Path(self.config.hal_dir)

    def run(self, ctx: Optional[RunContext] = None) -> LoopResult:
        """Run the loop until completion, failure, cancellation or the iteration limit."""
        ctx = ctx or RunContext.background()
        self.display.bind_context(ctx)

        try:
            prompt = self._load_prompt()
            target = self._target_story()
        except LoopError as e:
            self.logger.error("loop_error", {"error": str(e)})
            return LoopResult(success=False, error=e)

        if self.config.dry_run:
            return self._dry_run(target)

        return self._run_iterations(prompt, target, ctx)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _load_prompt(self) -> str:
        path = self.hal_path / PROMPT_FILE
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise LoopError(f"failed to load prompt: {e}") from e

    def _load_prd(self) -> PRD:
        path = self.hal_path / PRD_FILE
        if not path.exists():
            raise LoopError(f"prd.json not found at {path}")
        try:
            return load_prd(self.hal_path)
        except (OSError, PRDError) as e:
            raise LoopError(f"failed to load PRD: {e}") from e

    def _target_story(self) -> Optional[UserStory]:
        prd = self._load_prd()
        if self.config.story_id:
            story = prd.find_story_by_id(self.config.story_id)
            if story is None:
                raise LoopError(f"story not found: {self.config.story_id}")
            return story
        return prd.current_story()

    def _dry_run(self, target: Optional[UserStory]) -> LoopResult:
        show = self.display.show_info
        show("Dry-run mode: showing what would execute\n")
        if target is None:
            self.display.show_success("All stories are complete!")
            return LoopResult(success=True, complete=True)

        show("Next story to execute:")
        show(f"  ID:    {target.id}")
        show(f"  Title: {target.title}")
        show(f"  Description: {target.description}")
        show("\nAcceptance Criteria:")
        for criterion in target.acceptance_criteria:
            show(f"  - {criterion}")
        show(f"\nPrompt file: {self.hal_path / PROMPT_FILE}")
        return LoopResult(success=True)

    # ------------------------------------------------------------------
    # Iterations
    # ------------------------------------------------------------------

    def _header_context(self) -> HeaderContext:
        repo, branch = get_git_info()
        return HeaderContext(
            engine=self.engine.name,
            model=self.config.engine_config.model,
            repo=repo,
            branch=branch,
        )

    def _story_info(self, target: Optional[UserStory]) -> Optional[StoryInfo]:
        """Current story, read fresh from prd.json."""
        try:
            prd = load_prd(self.hal_path)
        except (OSError, PRDError) as e:
            logger.debug("could not re-read PRD: %s", e)
            prd = None

        if self.config.story_id:
            story = prd.find_story_by_id(self.config.story_id) if prd else None
            story = story or target
        else:
            story = prd.current_story() if prd else None

        if story is None:
            return None
        return StoryInfo(id=story.id, title=story.title)

    def _pending_story(self) -> Optional[UserStory]:
        """Pending story according to prd.json, None if all pass or it cannot be read."""
        try:
            return load_prd(self.hal_path).current_story()
        except (OSError, PRDError) as e:
            logger.debug("could not verify completion against PRD: %s", e)
            return None

    def _run_iterations(
        self,
        prompt: str,
        target: Optional[UserStory],
        ctx: RunContext,
    ) -> LoopResult:
        max_iterations = self.config.max_iterations
        self.display.show_loop_header(self._header_context(), max_iterations)
        self.logger.info("loop_start", {
            "engine": self.engine.name,
            "max_iterations": max_iterations,
            "story_id": self.config.story_id or None,
        })

        result = LoopResult()
        counter = itertools.count(1) if max_iterations <= 0 else range(1, max_iterations + 1)

        for i in counter:
            story = self._story_info(target)
            self.display.show_iteration_header(i, max_iterations, story)
            self.logger.info("iteration_start", {
                "iteration": i,
                "story_id": story.id if story else None,
            })

            exec_result = execute_with_retry(
                lambda: self.engine.execute(prompt, self.display, ctx),
                ctx,
                self.config.retry,
                on_retry=self._on_retry,
            )
            result.iterations = i
            self._log_iteration(i, exec_result)

            if exec_result.error is not None:
                self.display.show_error(str(exec_result.error))
                self.logger.error("loop_error", {
                    "iteration": i,
                    "error": str(exec_result.error),
                    "error_type": type(exec_result.error).__name__,
                })
                result.error = exec_result.error
                result.success = False
                return result

            if exec_result.complete:
                pending = self._pending_story()
                if pending is None:
                    self.display.show_success("All tasks complete!")
                    self.logger.info("loop_complete", {"iterations": i})
                    result.complete = True
                    result.success = True
                    return result

                # The agent claimed completion but the PRD disagrees.
                self.display.show_warning(
                    f"Agent signaled COMPLETE but {pending.id} is still pending"
                )
                self.logger.warn("completion_contradiction", {
                    "iteration": i,
                    "pending_story": pending.id,
                })

            self.display.show_iteration_complete(i)

            if ctx.wait(self.config.iteration_delay_seconds):
                result.error = ExecutionCancelledError("run cancelled")
                self.logger.warn("loop_error", {"iteration": i, "error": "run cancelled"})
                return result

        # Max iterations reached - not an error, just a stopping point
        self.display.show_max_iterations()
        self.logger.info("max_iterations_reached", {"iterations": result.iterations})
        result.success = True
        result.complete = False
        return result

    def _on_retry(
        self,
        attempt: int,
        max_attempts: int,
        delay: float,
        error: Optional[Exception],
    ) -> None:
        self.display.show_retry(attempt, max_attempts, delay)
        self.logger.warn("retry_scheduled", {
            "attempt": attempt,
            "max_attempts": max_attempts,
            "delay_seconds": delay,
            "error": str(error) if error else None,
        })

    def _log_iteration(self, iteration: int, exec_result: Result) -> None:
        self.logger.info("iteration_result", {
            "iteration": iteration,
            "success": exec_result.success,
            "complete": exec_result.complete,
            "duration_seconds": round(exec_result.duration, 3),
            "tokens": exec_result.tokens,
            "error": str(exec_result.error) if exec_result.error else None,
        })
