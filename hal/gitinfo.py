"""Repository name and branch for display headers."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(*args: str, cwd: Optional[str] = None) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=cwd,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def get_git_info(cwd: Optional[str] = None) -> tuple[str, str]:
    """
    Return (repo basename, current branch).

    Either value is "" when git is missing, cwd is not a repository, or the
    HEAD is detached.
    """
    root = _git("rev-parse", "--show-toplevel", cwd=cwd)
    if root is None:
        return "", ""
    repo = Path(root).name if root else ""

    branch = _git("branch", "--show-current", cwd=cwd)
    return repo, branch or ""
