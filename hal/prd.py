"""
PRD model.

A PRD lives in <hal_dir>/prd.json. Work units are user stories; older files
keep them under "tasks", which is still honoured. The file is the only
authority on what is pending: the agent updates `passes` as it finishes work,
so callers re-read it instead of caching it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

PRD_FILE = "prd.json"


class PRDError(Exception):
    """Raised when prd.json cannot be read or parsed."""


@dataclass
class UserStory:
    """One unit of work in the PRD."""
    id: str = ""
    title: str = ""
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    priority: int = 0                # Lower runs first
    passes: bool = False             # Set by the agent once verified
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the prd.json representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "priority": self.priority,
            "passes": self.passes,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserStory:
        """Create from a prd.json story object."""
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            acceptance_criteria=[str(c) for c in data.get("acceptanceCriteria") or []],
            priority=int(data.get("priority") or 0),
            passes=bool(data.get("passes", False)),
            notes=str(data.get("notes") or ""),
        )


@dataclass
class PRD:
    """Contents of prd.json."""
    project: str = ""
    branch_name: str = ""
    description: str = ""
    user_stories: list[UserStory] = field(default_factory=list)
    tasks: list[UserStory] = field(default_factory=list)  # Legacy name for stories

    def current_story(self) -> Optional[UserStory]:
        """
        The next story to work on: the lowest priority number not yet passing.

        User stories are considered first; tasks only when no user story is
        pending. Ties go to the earlier entry. None when everything passes.
        """
        for stories in (self.user_stories, self.tasks):
            current: Optional[UserStory] = None
            for story in stories:
                if story.passes:
                    continue
                if current is None or story.priority < current.priority:
                    current = story
            if current is not None:
                return current
        return None

    def progress(self) -> tuple[int, int]:
        """Return (completed, total) across stories and tasks."""
        everything = self.user_stories + self.tasks
        return sum(1 for s in everything if s.passes), len(everything)

    def find_story_by_id(self, story_id: str) -> Optional[UserStory]:
        for story in self.user_stories + self.tasks:
            if story.id == story_id:
                return story
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "project": self.project,
            "branchName": self.branch_name,
            "description": self.description,
            "userStories": [s.to_dict() for s in self.user_stories],
        }
        if self.tasks:
            data["tasks"] = [s.to_dict() for s in self.tasks]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PRD:
        return cls(
            project=str(data.get("project", "")),
            branch_name=str(data.get("branchName", "")),
            description=str(data.get("description", "")),
            user_stories=[UserStory.from_dict(s) for s in data.get("userStories") or []],
            tasks=[UserStory.from_dict(s) for s in data.get("tasks") or []],
        )


def load_prd(hal_dir: Union[str, Path], filename: str = PRD_FILE) -> PRD:
    """
    Read and parse a PRD file.

    Args:
        hal_dir: Directory holding the PRD.
        filename: PRD file name inside hal_dir.

    Returns:
        Parsed PRD.

    Raises:
        FileNotFoundError: If the file does not exist.
        PRDError: If the file is not a valid PRD.
    """
    path = Path(hal_dir) / filename
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PRDError(f"invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise PRDError(f"{path} must contain a JSON object")
    try:
        return PRD.from_dict(data)
    except (TypeError, ValueError, AttributeError) as e:
        raise PRDError(f"invalid PRD in {path}: {e}") from e


def save_prd(prd: PRD, hal_dir: Union[str, Path], filename: str = PRD_FILE) -> Path:
    """Write prd back to disk, pretty-printed. Returns the path written."""
    path = Path(hal_dir) / filename
    path.write_text(json.dumps(prd.to_dict(), indent=2) + "\n", encoding="utf-8")
    return path
