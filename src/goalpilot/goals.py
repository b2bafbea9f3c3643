"""Typed goal records consumed by the automation engine."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

GoalId = Union[int, str]

_LABEL_RE = re.compile(
    r"^\s*(?P<label>original request|user answer|current request|selected project assets)\s*:\s*(?P<rest>.*)$",
    re.IGNORECASE,
)


class RecordModel(BaseModel):
    """Base Pydantic model for read-only goal payloads."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)


class UncoveredLine(RecordModel):
    """One uncovered location reported by a coverage run."""

    workspace: str
    file: str
    line: Any = None
    lines: Any = None

    @classmethod
    def parse(cls, value: Any) -> Optional["UncoveredLine"]:
        """Build a record from a raw entry; ``None`` when workspace or file is missing."""
        if isinstance(value, UncoveredLine):
            return value
        if not isinstance(value, Mapping):
            return None
        workspace = value.get("workspace")
        file = value.get("file")
        if not isinstance(workspace, str) or not isinstance(file, str):
            return None
        return cls(workspace=workspace, file=file, line=value.get("line"), lines=value.get("lines"))


class GoalMetadata(RecordModel):
    """Optional hints attached to a goal by the planner or the test runner."""

    style_only: bool = Field(default=False, alias="styleOnly")
    uncovered_lines: Any = Field(default=None, alias="uncoveredLines")

    @property
    def has_uncovered_lines(self) -> bool:
        return isinstance(self.uncovered_lines, list) and len(self.uncovered_lines) > 0


class Goal(RecordModel):
    """Single natural-language coding task submitted for autonomous execution."""

    id: GoalId
    prompt: str = ""
    title: str = ""
    metadata: GoalMetadata = Field(default_factory=GoalMetadata)
    children: List["Goal"] = Field(default_factory=list)

    @field_validator("prompt", "title", mode="before")
    @classmethod
    def _blank_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("metadata", "children", mode="before")
    @classmethod
    def _empty_containers(cls, value: Any, info: Any) -> Any:
        if value is None:
            return {} if info.field_name == "metadata" else []
        return value

    @classmethod
    def coerce(cls, value: Any) -> "Goal":
        if isinstance(value, Goal):
            return value
        return cls.model_validate(value)


def extract_labeled_section(prompt: Any, label: str) -> Optional[str]:
    """Return the text following ``<label>:`` in ``prompt``.

    Content on the label line wins; otherwise the next non-empty line is used.
    """
    if not isinstance(prompt, str):
        return None
    lines = prompt.splitlines()
    wanted = label.strip().lower()
    for index, line in enumerate(lines):
        match = _LABEL_RE.match(line)
        if not match or match.group("label").lower() != wanted:
            continue
        rest = match.group("rest").strip()
        if rest:
            return rest
        for following in lines[index + 1 :]:
            stripped = following.strip()
            if not stripped:
                continue
            if _LABEL_RE.match(following):
                return None
            return stripped
        return None
    return None


def goal_display_label(goal: Goal) -> str:
    """Choose the clearest human label for status messages."""
    for label in ("Original request", "User answer"):
        section = extract_labeled_section(goal.prompt, label)
        if section:
            return section
    title = goal.title.strip() if isinstance(goal.title, str) else ""
    return title or "Goal"


def primary_instruction(prompt: Any) -> str:
    """Return the instruction a goal is really about.

    Labeled prompts are reduced to their ``Current request:`` (falling back to
    ``Original request:``) section; unlabeled prompts are returned as-is.
    """
    if not isinstance(prompt, str):
        return ""
    for label in ("Current request", "Original request"):
        section = extract_labeled_section(prompt, label)
        if section:
            return section
    return prompt


Goal.model_rebuild()

__all__ = [
    "Goal",
    "GoalId",
    "GoalMetadata",
    "RecordModel",
    "UncoveredLine",
    "extract_labeled_section",
    "goal_display_label",
    "primary_instruction",
]
