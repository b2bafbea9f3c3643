from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from goalpilot.automation import GoalPhase, StageName  # noqa: E402
from goalpilot.automation.engine import GoalCollaborators, GoalNotifier, ProjectContext  # noqa: E402


class RecordingNotifier(GoalNotifier):
    """Notifier that keeps every hook invocation for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.messages: list[tuple[str, str]] = []
        self.goal_counts: list[int] = []
        self.focused: list[str] = []

    def set_preview_panel_tab(self, tab: str) -> None:
        self.calls.append(("set_preview_panel_tab", (tab,)))

    def set_goal_count(self, count: int) -> None:
        self.goal_counts.append(count)

    def post_message(self, text: str, *, variant: str = "status") -> None:
        self.messages.append((variant, text))

    def goals_updated(self, project_id: Any) -> None:
        self.calls.append(("goals_updated", (project_id,)))

    def focus_file(self, project_id: Any, path: str) -> None:
        self.focused.append(path)


@dataclass(slots=True)
class FakeServices:
    """Scriptable async collaborators for driving ``run_goal`` in tests.

    ``responses`` maps a stage name to queued model answers: mappings are
    JSON-encoded, strings are returned verbatim and exceptions are raised.
    ``apply_results`` works the same way for the apply step.
    """

    responses: dict[str, list[Any]] = field(default_factory=dict)
    reflection: Any = None
    apply_results: list[Any] = field(default_factory=list)
    advance_errors: dict[str, BaseException] = field(default_factory=dict)
    goals: Any = field(default_factory=lambda: [{"id": 1}])
    tree: list[Any] = field(default_factory=list)
    prompts: list[Any] = field(default_factory=list)
    applied: list[tuple[str, list[Any]]] = field(default_factory=list)
    phases: list[tuple[Any, str]] = field(default_factory=list)
    reflection_calls: int = 0
    events: list[str] = field(default_factory=list)

    async def request_stage_edits(self, prompt: Any) -> str:
        self.events.append(f"request:{prompt.stage.value}")
        self.prompts.append(prompt)
        queue = self.responses.get(prompt.stage.value) or []
        if not queue:
            return ""
        answer = queue.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        if isinstance(answer, str):
            return answer
        return json.dumps(answer)

    async def apply_edits(self, edits: list[Any], *, stage: StageName, on_file_applied: Any) -> Any:
        self.events.append(f"apply:{stage.value}")
        self.applied.append((stage.value, list(edits)))
        if self.apply_results:
            result = self.apply_results.pop(0)
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                return result
        for edit in edits:
            on_file_applied(edit.path)
        return {"applied": len(edits), "skipped": 0}

    async def request_scope_reflection(self, goal: Any, messages: Any) -> Any:
        self.events.append("reflection")
        self.reflection_calls += 1
        if isinstance(self.reflection, BaseException):
            raise self.reflection
        return self.reflection

    async def advance_goal_phase(self, goal_id: Any, phase: GoalPhase) -> None:
        self.events.append(f"phase:{phase.value}")
        error = self.advance_errors.get(phase.value)
        if error is not None:
            raise error
        self.phases.append((goal_id, phase.value))

    async def fetch_goals(self, project_id: Any) -> Any:
        self.events.append("fetchGoals")
        if isinstance(self.goals, BaseException):
            raise self.goals
        return self.goals

    def collaborators(self, **overrides: Any) -> GoalCollaborators:
        values: dict[str, Any] = {
            "request_stage_edits": self.request_stage_edits,
            "apply_edits": self.apply_edits,
            "advance_goal_phase": self.advance_goal_phase,
            "fetch_goals": self.fetch_goals,
            "request_scope_reflection": self.request_scope_reflection,
        }
        values.update(overrides)
        return GoalCollaborators(**values)

    def context(self) -> ProjectContext:
        return ProjectContext(project_id="proj-1", project_info="Project: demo", file_tree=list(self.tree))

    def requests_for(self, stage: str) -> list[Any]:
        return [prompt for prompt in self.prompts if prompt.stage.value == stage]


def modify(path: str, search: str = "old", replace: str = "new") -> dict[str, Any]:
    return {"type": "modify", "path": path, "replacements": [{"search": search, "replace": replace}]}


def upsert(path: str, content: str = "content") -> dict[str, Any]:
    return {"type": "upsert", "path": path, "content": content}


def edits(*items: dict[str, Any]) -> dict[str, Any]:
    return {"edits": list(items)}


@pytest.fixture()
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def _clear_goalpilot_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GOALPILOT_ALLOW_EMPTY_STAGE", raising=False)
    monkeypatch.delenv("GOALPILOT_DISABLE_SCOPE_REFLECTION", raising=False)
