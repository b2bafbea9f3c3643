from __future__ import annotations

import asyncio

from conftest import FakeServices, edits, modify

from goalpilot.automation.batch import process_goals
from goalpilot.automation.engine import RunOptions
from goalpilot.automation.errors import GoalNotFoundError


def _process(services: FakeServices, goals, notifier=None, **kwargs):
    process_parent_goals = kwargs.pop("process_parent_goals", False)
    options = RunOptions(enable_scope_reflection=False, **kwargs)
    return asyncio.run(
        process_goals(
            goals,
            services.context(),
            services.collaborators(),
            options,
            notifier,
            process_parent_goals=process_parent_goals,
        )
    )


def test_empty_or_invalid_input_processes_nothing(services) -> None:
    assert _process(services, []).to_dict() == {"success": True, "processed": 0}
    assert _process(services, None).to_dict() == {"success": True, "processed": 0}


def test_children_run_before_parents_and_parents_are_skipped(services) -> None:
    services.responses["implementation"] = [edits(modify(f"frontend/src/{name}.jsx")) for name in ("A", "B", "C")]
    goals = [
        {"id": "parent", "prompt": "Build the page", "children": [{"id": "a", "prompt": "A"}, {"id": "b", "prompt": "B"}]},
        {"id": "c", "prompt": "C"},
    ]

    outcome = _process(services, goals)

    assert outcome.to_dict() == {"success": True, "processed": 3}
    ready = [goal_id for goal_id, phase in services.phases if phase == "ready"]
    assert ready == ["a", "b", "c"]


def test_parent_goals_processed_when_requested(services) -> None:
    services.responses["implementation"] = [edits(modify("frontend/src/A.jsx")), edits(modify("frontend/src/P.jsx"))]
    goals = [{"id": "parent", "prompt": "Parent", "children": [{"id": "a", "prompt": "A"}]}]

    outcome = _process(services, goals, process_parent_goals=True)

    assert outcome.processed == 2
    assert [goal_id for goal_id, phase in services.phases if phase == "ready"] == ["a", "parent"]


def test_failure_stops_the_batch(services) -> None:
    goals = [{"id": 1, "prompt": "One"}, {"id": 2, "prompt": "Two"}]

    outcome = _process(services, goals, implementation_attempt_sequence=[1])

    assert outcome.to_dict() == {"success": False, "processed": 0}
    assert len(services.prompts) == 1


def test_skipped_goal_does_not_count_or_stop(services) -> None:
    services.advance_errors["testing"] = GoalNotFoundError("gone")
    goals = [{"id": 1, "prompt": "One"}, {"id": 2, "prompt": "Two"}]

    outcome = _process(services, goals)

    assert outcome.to_dict() == {"success": True, "processed": 0}
    assert services.events.count("phase:testing") == 2


def test_cancellation_before_next_goal(services, notifier) -> None:
    services.responses["implementation"] = [edits(modify("frontend/src/A.jsx"))]
    goals = [{"id": 1, "prompt": "One"}, {"id": 2, "prompt": "Two"}]

    def should_cancel() -> bool:
        return any(text.startswith("Completed") for _, text in notifier.messages)

    outcome = _process(services, goals, notifier, should_cancel=should_cancel)

    assert outcome.to_dict() == {"success": False, "processed": 1, "cancelled": True}
    assert len(services.prompts) == 1
    assert ("goals_updated", ("proj-1",)) in notifier.calls
