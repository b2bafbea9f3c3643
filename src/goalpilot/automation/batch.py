"""Run a planned goal tree one goal at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from ..goals import Goal
from ..tools.telemetry import automation_log
from .cancellation import CancellationToken
from .engine import GoalCollaborators, GoalNotifier, ProjectContext, RunOptions, run_goal
from .errors import GoalCancelled

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    success: bool
    processed: int
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "processed": self.processed}
        if self.cancelled:
            payload["cancelled"] = True
        return payload


async def process_goals(
    goals: Any,
    context: ProjectContext,
    collaborators: GoalCollaborators,
    options: Optional[RunOptions] = None,
    notifier: Optional[GoalNotifier] = None,
    *,
    process_parent_goals: bool = False,
) -> BatchOutcome:
    """Process ``goals`` depth-first, children before their parent.

    Parents with children are only run themselves when
    ``process_parent_goals`` is set. A goal that vanished mid-run (``skipped``)
    is not counted and does not stop the batch; any other failure does.
    """
    if not isinstance(goals, (list, tuple)) or not goals:
        return BatchOutcome(success=True, processed=0)

    run_options = options or RunOptions()
    token = CancellationToken.coerce(run_options.should_cancel, run_options.should_pause, run_options.pause_interval)
    if notifier is not None:
        try:
            notifier.set_preview_panel_tab("goals")
        except Exception:
            LOGGER.debug("Notifier hook set_preview_panel_tab failed", exc_info=True)

    processed = 0

    async def _walk(nodes: Sequence[Any]) -> Optional[BatchOutcome]:
        nonlocal processed
        for raw in nodes:
            goal = Goal.coerce(raw)
            if goal.children:
                stopped = await _walk(goal.children)
                if stopped is not None:
                    return stopped
                if not process_parent_goals:
                    continue

            try:
                await token.checkpoint(f"goal {goal.id}")
            except GoalCancelled:
                return BatchOutcome(success=False, processed=processed, cancelled=True)

            outcome = await run_goal(goal, context, collaborators, run_options, notifier)
            if outcome.cancelled:
                return BatchOutcome(success=False, processed=processed, cancelled=True)
            if outcome.skipped:
                automation_log("processGoals:skipped", goalId=goal.id)
                continue
            if not outcome.success:
                return BatchOutcome(success=False, processed=processed)
            processed += 1
        return None

    stopped = await _walk(goals)
    automation_log("processGoals:done", processed=processed, stopped=stopped is not None)
    return stopped or BatchOutcome(success=True, processed=processed)


__all__ = ["BatchOutcome", "process_goals"]
