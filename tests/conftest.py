# tests/conftest.py

import io
import json
import os
import stat
from pathlib import Path
from typing import Callable, Optional

import pytest
from typer.testing import CliRunner

from hal.engine.display import Display
from hal.engine.types import Result


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def plain_display():
    """Display writing to a buffer, as if piped to a file."""
    buffer = io.StringIO()
    return Display(buffer, is_tty=False, width=100), buffer


def _story(story_id: str, priority: int, passes: bool = False) -> dict:
    return {
        "id": story_id,
        "title": f"Story {story_id}",
        "description": f"Implement {story_id}",
        "acceptanceCriteria": [f"{story_id} works", "tests pass"],
        "priority": priority,
        "passes": passes,
        "notes": "",
    }


def write_prd(hal_dir: Path, stories: list[dict]) -> Path:
    path = hal_dir / "prd.json"
    path.write_text(json.dumps({
        "project": "demo",
        "branchName": "hal/demo",
        "description": "Demo project",
        "userStories": stories,
    }, indent=2))
    return path


@pytest.fixture
def make_story():
    """Build a prd.json story dict."""
    return _story


@pytest.fixture
def hal_dir(tmp_path):
    """A .hal directory with a prompt and a PRD holding one pending story."""
    directory = tmp_path / ".hal"
    directory.mkdir()
    (directory / "prompt.md").write_text("Implement the next story.\n")
    write_prd(directory, [_story("US-001", 1, passes=True), _story("US-002", 2)])
    return directory


@pytest.fixture
def prd_writer():
    """Rewrite a hal directory's prd.json with the given stories."""
    return write_prd


class FakeEngine:
    """Engine returning scripted results; an optional hook runs before each one."""

    name = "fake"
    cli_command = "fake"

    def __init__(
        self,
        results: list[Result],
        before_each: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.results = list(results)
        self.before_each = before_each
        self.calls = 0

    def execute(self, prompt, display=None, ctx=None) -> Result:
        self.calls += 1
        if self.before_each is not None:
            self.before_each(self.calls)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    def prompt(self, prompt, ctx=None) -> str:
        return "ok"

    def stream_prompt(self, prompt, display=None, ctx=None) -> str:
        return "ok"


@pytest.fixture
def fake_engine():
    """Factory for scripted engines."""
    return FakeEngine


@pytest.fixture
def fake_cli(tmp_path, monkeypatch):
    """
    Install an executable shell script on PATH under the given name.

    Usage:
        fake_cli("claude", 'echo hello')
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    def install(name: str, body: str) -> Path:
        script = bin_dir / name
        script.write_text("#!/bin/sh\n" + body + "\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return install
