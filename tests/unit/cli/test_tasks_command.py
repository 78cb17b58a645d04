"""Tests for `hal tasks`."""

import pytest

from hal.cli import app


@pytest.fixture
def task_file(tmp_path):
    path = tmp_path / "tasks.md"
    path.write_text("# Plan\n- [ ] Write [core] parser\n  with tests\n- [x] Setup\n- [ ] Ship\n")
    return path


class TestTasksCommand:

    def test_lists_pending(self, cli_runner, task_file):
        result = cli_runner.invoke(app, ["tasks", str(task_file)])

        assert result.exit_code == 0
        assert "Write [core] parser" in result.output
        assert "with tests" in result.output
        assert "Setup" not in result.output
        assert "2 pending" in result.output

    def test_nothing_pending(self, cli_runner, tmp_path):
        path = tmp_path / "done.md"
        path.write_text("- [x] all done\n")
        result = cli_runner.invoke(app, ["tasks", str(path)])
        assert result.exit_code == 0
        assert "No pending tasks." in result.output

    def test_complete(self, cli_runner, task_file):
        result = cli_runner.invoke(app, ["tasks", str(task_file), "--complete", "5"])

        assert result.exit_code == 0
        assert "Marked line 5 complete" in result.output
        assert task_file.read_text().splitlines()[4] == "- [x] Ship"

    def test_complete_invalid_line(self, cli_runner, task_file):
        result = cli_runner.invoke(app, ["tasks", str(task_file), "-c", "4"])
        assert result.exit_code == 1
        assert "INVALID_LINE" in result.output
        assert "line 4 is not a pending task" in result.output

    def test_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["tasks", str(tmp_path / "missing.md")])
        assert result.exit_code == 1
        assert "FILE_NOT_FOUND" in result.output
