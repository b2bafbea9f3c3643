"""Offline collaborators for replaying a recorded goal run without a model."""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

import yaml

from ..automation import GoalPhase, StageName
from ..automation.errors import FileOperationError, GoalNotFoundError
from ..goals import Goal
from ..structured import ApplySummary, coerce_edit, edit_path, edit_type
from .paths import flatten_file_tree, normalize_repo_path

__all__ = [
    "DryRunWorkspace",
    "GoalBoard",
    "ReplayTranscript",
    "ScriptedModel",
    "load_replay_document",
]


def load_replay_document(path: Path) -> Any:
    """Read a YAML (or JSON) document used by the replay command."""
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


@dataclass(slots=True)
class ReplayTranscript:
    """Recorded model answers: one reflection plus queued responses per stage."""

    reflection: Any = None
    has_reflection: bool = False
    responses: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Any) -> "ReplayTranscript":
        if not isinstance(data, Mapping):
            raise ValueError("Transcript must be a mapping with 'reflection' and/or 'responses'.")
        raw_responses = data.get("responses") or {}
        if not isinstance(raw_responses, Mapping):
            raise ValueError("Transcript 'responses' must map stage names to lists.")
        responses: Dict[str, List[str]] = {}
        for stage, entries in raw_responses.items():
            items = entries if isinstance(entries, list) else [entries]
            responses[str(stage)] = [_as_text(item) for item in items]
        return cls(
            reflection=data.get("reflection"),
            has_reflection="reflection" in data,
            responses=responses,
        )


class ScriptedModel:
    """Stand-in for the model that replays transcript responses in order."""

    def __init__(self, transcript: ReplayTranscript) -> None:
        self._transcript = transcript
        self._queues: Dict[str, Deque[str]] = {
            stage: deque(entries) for stage, entries in transcript.responses.items()
        }
        self.requests: List[Any] = []

    def request_scope_reflection(self, goal: Goal, messages: Sequence[Any]) -> Any:
        if not self._transcript.has_reflection:
            raise LookupError("Transcript has no scope reflection")
        return self._transcript.reflection

    def request_stage_edits(self, prompt: Any) -> str:
        self.requests.append(prompt)
        stage = getattr(prompt, "stage", None)
        key = stage.value if isinstance(stage, StageName) else str(stage)
        queue = self._queues.get(key)
        if not queue:
            return ""
        return queue.popleft()


class DryRunWorkspace:
    """Records edits against an in-memory path index instead of the disk."""

    def __init__(self, known_paths: Sequence[str] = ()) -> None:
        self.paths = {normalize_repo_path(path) for path in known_paths if normalize_repo_path(path)}
        self.applied: List[Dict[str, Any]] = []

    @classmethod
    def from_tree(cls, tree: Any) -> "DryRunWorkspace":
        return cls(flatten_file_tree(tree))

    def file_tree(self) -> List[str]:
        return sorted(self.paths)

    def apply_edits(
        self,
        edits: Sequence[Any],
        *,
        stage: StageName,
        on_file_applied: Optional[Callable[[str], Any]] = None,
    ) -> ApplySummary:
        applied = 0
        skipped = 0
        touched: List[str] = []
        for raw in edits:
            edit = coerce_edit(raw)
            path = edit_path(edit) if edit is not None else ""
            if not path:
                skipped += 1
                continue
            kind = edit_type(edit)
            if kind == "modify" and path not in self.paths:
                raise FileOperationError(
                    path,
                    status=404,
                    message=f"File not found: {path}",
                    operation="modify",
                )
            if kind == "delete":
                self.paths.discard(path)
            else:
                self.paths.add(path)
            applied += 1
            touched.append(path)
            self.applied.append({"stage": stage.value, "type": kind, "path": path})
            if on_file_applied is not None:
                on_file_applied(path)
        return ApplySummary(applied=applied, skipped=skipped, paths=tuple(touched))


class GoalBoard:
    """In-memory goal tracker keyed by goal id."""

    def __init__(self, goals: Sequence[Goal]) -> None:
        self.phases: Dict[Any, GoalPhase] = {}
        self._goals: List[Goal] = []
        for goal in goals:
            self._register(goal)
        self.history: List[tuple[Any, str]] = []

    def _register(self, goal: Goal) -> None:
        self._goals.append(goal)
        self.phases[goal.id] = GoalPhase.PLANNING
        for child in goal.children:
            self._register(child)

    def remove(self, goal_id: Any) -> None:
        self.phases.pop(goal_id, None)
        self._goals = [goal for goal in self._goals if goal.id != goal_id]

    def advance_goal_phase(self, goal_id: Any, phase: GoalPhase) -> None:
        if goal_id not in self.phases:
            raise GoalNotFoundError(f"Goal {goal_id} not found")
        self.phases[goal_id] = GoalPhase(phase)
        self.history.append((goal_id, GoalPhase(phase).value))

    def fetch_goals(self, project_id: Any = None) -> List[Dict[str, Any]]:
        return [
            {"id": goal.id, "title": goal.title, "phase": self.phases[goal.id].value}
            for goal in self._goals
        ]


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)
