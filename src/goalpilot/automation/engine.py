"""Per-goal automation engine: scope reflection, stage loop and retries."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..config import ALLOW_EMPTY_STAGE_ENV, DISABLE_SCOPE_REFLECTION_ENV, env_flag
from ..goals import Goal, goal_display_label
from ..prompts import StagePrompt, build_scope_reflection_prompt
from ..structured import ApplySummary, edit_path, edit_text
from ..tools.edit_parsing import parse_edits as default_parse_edits
from ..tools.paths import flatten_file_tree as default_flatten_file_tree
from ..tools.paths import normalize_repo_path, resolve_attempt_sequence, suggest_paths_by_basename, unique_sorted
from ..tools.telemetry import automation_log
from . import INSTRUCTION_ONLY_PHASES, GoalPhase, StageName
from .cancellation import DEFAULT_PAUSE_INTERVAL, CancellationToken
from .classifier import classify_instruction_only_goal, describe_instruction_only_outcome
from .coverage import CoverageScope, build_coverage_scope, validate_edits_against_coverage
from .errors import (
    EmptyEditsError,
    GoalCancelled,
    ScopeViolationError,
    StageFailedError,
    extract_file_op_failure,
    extract_replacement_failure,
    is_goal_missing_error,
)
from .reflection import (
    ScopeContract,
    parse_scope_reflection_text,
    resolve_scope_contract,
    validate_edits_against_reflection as default_reflection_validator,
)
from .retry import (
    EmptyEdits,
    FileOpFailed,
    ReplacementFailed,
    RetryContext,
    ScopeViolation,
    StageFailure,
    build_retry_context,
    describe_file_op_failure,
)

if TYPE_CHECKING:
    from ..config import AutomationSettings

LOGGER = logging.getLogger(__name__)

NO_EDITS_APPLIED_MESSAGE = (
    "No repo edits were applied for this goal. The LLM likely returned no usable edits (or edits were skipped)."
)

SHARED_PATH_PREFIXES = ("shared/",)

RequestStageEdits = Callable[[StagePrompt], Any]
ParseEdits = Callable[[Any], Sequence[Any]]
ApplyEdits = Callable[..., Any]
RequestScopeReflection = Callable[[Goal, list], Any]
AdvanceGoalPhase = Callable[[Any, GoalPhase], Any]
FetchGoals = Callable[[Any], Any]
FlattenFileTree = Callable[[Any], Sequence[Any]]
ReflectionValidator = Callable[[Sequence[Any], Optional[ScopeContract]], Any]
RefreshFileTree = Callable[[], Any]


@dataclass(slots=True)
class TouchTracker:
    """Caller-owned record of which code areas a run has modified.

    Flags are only ever set, never cleared, so several runs may share one
    tracker.
    """

    frontend: bool = False
    backend: bool = False
    observed: bool = False

    def record(self, path: Any) -> None:
        normalized = normalize_repo_path(path)
        if not normalized:
            return
        if normalized.startswith("frontend/"):
            self.frontend = True
            self.observed = True
        elif normalized.startswith("backend/"):
            self.backend = True
            self.observed = True
        elif normalized.startswith(SHARED_PATH_PREFIXES):
            self.frontend = True
            self.backend = True
            self.observed = True

    def to_dict(self) -> dict[str, bool]:
        return {"frontend": self.frontend, "backend": self.backend, "__observed": self.observed}


@dataclass(frozen=True, slots=True)
class Outcome:
    """Terminal result of one goal run."""

    success: bool
    error: Optional[str] = None
    cancelled: bool = False
    skipped: bool = False
    skipped_reason: Optional[str] = None
    stage_summaries: Dict[str, ApplySummary] = field(default_factory=dict)

    @classmethod
    def succeeded(cls, summaries: Optional[Dict[str, ApplySummary]] = None) -> "Outcome":
        return cls(success=True, stage_summaries=dict(summaries or {}))

    @classmethod
    def instruction_only(cls, reason: str) -> "Outcome":
        return cls(success=True, skipped_reason=reason)

    @classmethod
    def failed(cls, error: str) -> "Outcome":
        return cls(success=False, error=error)

    @classmethod
    def cancelled_run(cls) -> "Outcome":
        return cls(success=False, cancelled=True)

    @classmethod
    def goal_missing(cls) -> "Outcome":
        return cls(success=False, skipped=True)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            if self.skipped_reason:
                payload["skippedReason"] = self.skipped_reason
            return payload
        if self.cancelled:
            payload["cancelled"] = True
        elif self.skipped:
            payload["skipped"] = True
        else:
            payload["error"] = self.error or "Unknown error"
        return payload


class GoalNotifier:
    """Presentation hooks invoked at fixed transition points.

    The engine never reads return values and logs (then ignores) anything a
    hook raises. Subclass and override what the host UI needs.
    """

    def set_preview_panel_tab(self, tab: str) -> None:
        return None

    def set_goal_count(self, count: int) -> None:
        return None

    def post_message(self, text: str, *, variant: str = "status") -> None:
        return None

    def goals_updated(self, project_id: Any) -> None:
        return None

    def focus_file(self, project_id: Any, path: str) -> None:
        return None


@dataclass(slots=True)
class ProjectContext:
    """Project identity plus the repository tree known at run start."""

    project_id: Any = None
    project_info: str = ""
    file_tree: Any = None


@dataclass(slots=True)
class GoalCollaborators:
    """External services the engine drives; callables may be sync or async."""

    request_stage_edits: RequestStageEdits
    apply_edits: ApplyEdits
    advance_goal_phase: AdvanceGoalPhase
    fetch_goals: FetchGoals
    request_scope_reflection: Optional[RequestScopeReflection] = None
    parse_edits: ParseEdits = default_parse_edits
    flatten_file_tree: FlattenFileTree = default_flatten_file_tree
    validate_edits_against_reflection: ReflectionValidator = default_reflection_validator
    refresh_file_tree: Optional[RefreshFileTree] = None


@dataclass(slots=True)
class RunOptions:
    """Per-run knobs. ``None`` flags fall back to the ``GOALPILOT_*`` environment."""

    tests_attempt_sequence: Any = None
    implementation_attempt_sequence: Any = None
    enable_scope_reflection: Optional[bool] = None
    allow_empty_stage_edits: Optional[bool] = None
    test_failure_context: Any = None
    touch_tracker: Optional[TouchTracker] = None
    should_cancel: Optional[Callable[[], bool]] = None
    should_pause: Optional[Callable[[], bool]] = None
    pause_interval: float = DEFAULT_PAUSE_INTERVAL
    file_tree_limit: int = 400

    @classmethod
    def from_settings(cls, settings: "AutomationSettings", **overrides: Any) -> "RunOptions":
        values: dict[str, Any] = {
            "tests_attempt_sequence": list(settings.tests_attempts),
            "implementation_attempt_sequence": list(settings.implementation_attempts),
            "enable_scope_reflection": settings.enable_scope_reflection,
            "allow_empty_stage_edits": settings.allow_empty_stage_edits,
            "pause_interval": settings.pause_poll_seconds,
            "file_tree_limit": settings.file_tree_limit,
        }
        values.update(overrides)
        return cls(**values)

    def scope_reflection_enabled(self) -> bool:
        if isinstance(self.enable_scope_reflection, bool):
            return self.enable_scope_reflection
        return not env_flag(DISABLE_SCOPE_REFLECTION_ENV)

    def empty_stage_edits_allowed(self) -> bool:
        if isinstance(self.allow_empty_stage_edits, bool):
            return self.allow_empty_stage_edits
        return env_flag(ALLOW_EMPTY_STAGE_ENV)


class _GoalVanished(Exception):
    """The goal-tracking service rejected a phase advance with a 404."""


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class GoalRun:
    """State machine for a single goal: ``stage x attempt`` with checkpoints."""

    def __init__(
        self,
        goal: Goal,
        context: ProjectContext,
        collaborators: GoalCollaborators,
        options: RunOptions,
        notifier: Optional[GoalNotifier] = None,
    ) -> None:
        self.goal = goal
        self.context = context
        self.collaborators = collaborators
        self.options = options
        self.notifier = notifier or GoalNotifier()
        self.token = CancellationToken.coerce(options.should_cancel, options.should_pause, options.pause_interval)
        self.tests_sequence = resolve_attempt_sequence(options.tests_attempt_sequence)
        self.implementation_sequence = resolve_attempt_sequence(options.implementation_attempt_sequence)
        self.contract = resolve_scope_contract(None, goal=goal, test_failure_context=options.test_failure_context)
        self.coverage: Optional[CoverageScope] = None
        self.known_paths: list[str] = []
        self.referenced_assets: set[str] = set()
        self.summaries: Dict[str, ApplySummary] = {}
        self._last_focused = ""

    async def execute(self) -> Outcome:
        goal = self.goal
        automation_log(
            "processGoal:start",
            projectId=self.context.project_id,
            goalId=goal.id,
            prompt=goal.prompt[:240],
        )
        try:
            kind = classify_instruction_only_goal(goal.prompt)
            if kind is not None:
                return await self._complete_instruction_only(kind.value, describe_instruction_only_outcome(kind))
            return await self._run_pipeline()
        except GoalCancelled as exc:
            automation_log("processGoal:cancelled", goalId=goal.id, checkpoint=str(exc))
            return Outcome.cancelled_run()
        except _GoalVanished:
            return await self._handle_goal_missing()
        except StageFailedError as exc:
            return self._fail(str(exc))
        except Exception as exc:
            LOGGER.exception("Goal %s failed", goal.id)
            return self._fail(str(exc) or exc.__class__.__name__, status=getattr(exc, "status", None))

    async def _complete_instruction_only(self, reason: str, note: str) -> Outcome:
        automation_log("processGoal:instructionOnly:skip", goalId=self.goal.id, type=reason)
        for phase in INSTRUCTION_ONLY_PHASES:
            await self._advance(phase)
        self._notify("set_preview_panel_tab", "goals")
        await self._refresh_goal_count()
        self._notify("post_message", f"Completed ({note}): {goal_display_label(self.goal)}", variant="status")
        return Outcome.instruction_only(reason)

    async def _run_pipeline(self) -> Outcome:
        await self._reflect_scope()
        await self._load_file_tree()
        self.coverage = build_coverage_scope(self.goal.metadata.uncovered_lines, self.known_paths)
        if self.coverage is not None:
            automation_log(
                "processGoal:coverageScope",
                goalId=self.goal.id,
                workspaces=self.coverage.workspace_prefixes,
                testDirs=self.coverage.test_dir_prefixes,
            )

        await self._advance(GoalPhase.TESTING)
        await self._refresh_goal_count()
        self._notify("set_preview_panel_tab", "files")

        if self.contract.tests_needed and self.tests_sequence:
            await self._run_stage(StageName.TESTS, self.tests_sequence)
            if self.collaborators.refresh_file_tree is not None:
                await self._load_file_tree()
        else:
            automation_log(
                "processGoal:llm:tests:skipped",
                goalId=self.goal.id,
                reason="scope-reflection" if self.tests_sequence else "empty-attempt-sequence",
            )

        await self._advance(GoalPhase.IMPLEMENTING)
        if self.implementation_sequence:
            await self._run_stage(StageName.IMPLEMENTATION, self.implementation_sequence)
        else:
            automation_log("processGoal:llm:implementation:skipped", goalId=self.goal.id)

        self._notify("set_preview_panel_tab", "goals")
        await self._advance(GoalPhase.VERIFYING)
        await self._advance(GoalPhase.READY)
        await self._refresh_goal_count()
        automation_log(
            "processGoal:complete",
            goalId=self.goal.id,
            stages={stage: summary.to_dict() for stage, summary in self.summaries.items()},
        )
        self._notify("post_message", f"Completed: {goal_display_label(self.goal)}", variant="status")
        return Outcome.succeeded(self.summaries)

    async def _reflect_scope(self) -> None:
        requester = self.collaborators.request_scope_reflection
        if requester is None or not self.options.scope_reflection_enabled():
            return
        messages = build_scope_reflection_prompt(self.goal.prompt, self.context.project_info)
        try:
            raw = await self._call("scopeReflection", requester, self.goal, messages)
        except GoalCancelled:
            raise
        except Exception as exc:
            LOGGER.warning("Scope reflection failed for goal %s: %s", self.goal.id, exc)
            automation_log("processGoal:scopeReflection:error", goalId=self.goal.id, message=str(exc))
            return
        if isinstance(raw, str):
            raw = parse_scope_reflection_text(raw)
        self.contract = resolve_scope_contract(
            raw,
            goal=self.goal,
            test_failure_context=self.options.test_failure_context,
        )
        automation_log(
            "processGoal:scopeReflection",
            goalId=self.goal.id,
            reflected=self.contract.reflected,
            testsNeeded=self.contract.tests_needed,
            mustChange=self.contract.must_change,
            mustAvoid=self.contract.must_avoid,
            requiredAssetPaths=self.contract.required_asset_paths,
        )

    async def _load_file_tree(self) -> None:
        tree = self.context.file_tree
        refresher = self.collaborators.refresh_file_tree
        if refresher is not None:
            try:
                tree = await self._call("fileTree", refresher)
            except GoalCancelled:
                raise
            except Exception as exc:
                LOGGER.warning("Failed to fetch project file tree: %s", exc)
                automation_log("processGoal:fileTree:error", message=str(exc), status=getattr(exc, "status", None))
                return
            self.context.file_tree = tree
        paths = [normalize_repo_path(path) for path in self.collaborators.flatten_file_tree(tree) or []]
        self.known_paths = unique_sorted(paths)
        automation_log(
            "processGoal:fileTree",
            totalPaths=len(self.known_paths),
            includedPaths=min(len(self.known_paths), self.options.file_tree_limit),
        )

    async def _run_stage(self, stage: StageName, sequence: Sequence[int]) -> ApplySummary:
        """Run ``stage`` through its attempt sequence.

        Returns the apply summary of the first successful attempt. Exhausting
        the sequence raises :class:`StageFailedError` with a display message.
        """
        retry: Optional[RetryContext] = None
        last_index = len(sequence) - 1
        for index, attempt in enumerate(sequence):
            prompt = self._stage_prompt(stage, attempt, retry)
            raw = await self._call(f"{stage.value}:request", self.collaborators.request_stage_edits, prompt)
            edits = list(self.collaborators.parse_edits(raw) or [])
            automation_log(
                f"processGoal:llm:{stage.value}:parsedEdits",
                attempt=attempt,
                count=len(edits),
                sample=[{"path": edit_path(edit)} for edit in edits[:5]],
            )

            failure = self._validate(stage, edits)
            if failure is None and not edits:
                if self.options.empty_stage_edits_allowed():
                    automation_log(f"processGoal:llm:{stage.value}:emptyEditsAllowed", attempt=attempt)
                    summary = ApplySummary()
                    self.summaries[stage.value] = summary
                    return summary
                failure = EmptyEdits(stage)

            if failure is None:
                summary, failure = await self._apply(stage, edits)
                if summary is not None:
                    self._note_referenced_assets(edits)
                    self.summaries[stage.value] = summary
                    automation_log(
                        f"processGoal:llm:{stage.value}:applySummary",
                        attempt=attempt,
                        applied=summary.applied,
                        skipped=summary.skipped,
                    )
                    return summary

            self._log_failure(stage, attempt, failure)
            if index == last_index:
                raise StageFailedError(self._terminal_message(stage, failure))
            if isinstance(failure, (FileOpFailed, ReplacementFailed)) and self.collaborators.refresh_file_tree is not None:
                await self._load_file_tree()
            next_is_last = index + 1 == last_index
            missing = self._missing_assets() if stage == StageName.IMPLEMENTATION and next_is_last else []
            retry = build_retry_context(
                failure,
                stage=stage,
                previous=retry,
                known_paths=self.known_paths,
                missing_assets=missing,
            )
        raise StageFailedError(self._terminal_message(stage, EmptyEdits(stage)))

    def _stage_prompt(self, stage: StageName, attempt: int, retry: Optional[RetryContext]) -> StagePrompt:
        limit = max(self.options.file_tree_limit, 0)
        return StagePrompt(
            stage=stage,
            attempt=attempt,
            goal_prompt=self.goal.prompt,
            project_info=self.context.project_info,
            file_tree=tuple(self.known_paths[:limit]),
            retry_context=retry,
            scope_contract=self.contract,
            coverage_scope=self.coverage,
            test_failure_context=self.options.test_failure_context,
        )

    def _validate(self, stage: StageName, edits: Sequence[Any]) -> Optional[StageFailure]:
        violation = validate_edits_against_coverage(edits, self.coverage)
        if violation is not None:
            return violation
        raw = self.collaborators.validate_edits_against_reflection(edits, self.contract)
        return _coerce_violation(raw)

    async def _apply(self, stage: StageName, edits: list[Any]) -> tuple[Optional[ApplySummary], Optional[StageFailure]]:
        try:
            result = await self._call(
                f"{stage.value}:apply",
                self.collaborators.apply_edits,
                edits,
                stage=stage,
                on_file_applied=self._on_file_applied,
            )
        except GoalCancelled:
            raise
        except ScopeViolationError as exc:
            return None, ScopeViolation(message=exc.message, path=exc.path, rule=exc.rule)
        except EmptyEditsError:
            return None, EmptyEdits(stage)
        except Exception as exc:
            replacement = extract_replacement_failure(exc)
            if replacement is not None:
                return None, ReplacementFailed(replacement)
            details = extract_file_op_failure(exc)
            if details is None:
                raise
            return None, FileOpFailed(details)
        return ApplySummary.coerce(result), None

    def _terminal_message(self, stage: StageName, failure: StageFailure) -> str:
        if stage == StageName.TESTS:
            if isinstance(failure, EmptyEdits):
                return str(EmptyEditsError(stage))
            return self._describe_failure(failure)

        if isinstance(failure, EmptyEdits):
            required = list(self.contract.required_asset_paths)
            if required:
                missing = self._missing_assets() or required
                return (
                    "No repo edits were applied for this goal. The edits must reference the "
                    f"selected asset paths: {', '.join(missing)}."
                )
            return NO_EDITS_APPLIED_MESSAGE
        return f"No repo edits were applied for this goal. {self._describe_failure(failure)}"

    def _describe_failure(self, failure: StageFailure) -> str:
        message = _failure_message(failure)
        if isinstance(failure, FileOpFailed) and failure.failure.path:
            suggestions = suggest_paths_by_basename(failure.failure.path, self.known_paths)
            if suggestions:
                message = f"{message}. Existing paths with similar names: {', '.join(suggestions)}"
        return message

    def _log_failure(self, stage: StageName, attempt: int, failure: StageFailure) -> None:
        if isinstance(failure, ScopeViolation):
            automation_log(
                f"processGoal:llm:{stage.value}:scopeViolation",
                attempt=attempt,
                message=failure.message,
                rule=failure.rule,
                path=failure.path,
                kind=failure.kind,
            )
        elif isinstance(failure, EmptyEdits):
            automation_log(f"processGoal:llm:{stage.value}:emptyEdits", attempt=attempt)
        elif isinstance(failure, ReplacementFailed):
            automation_log(
                f"processGoal:llm:{stage.value}:replacementFailure",
                attempt=attempt,
                path=failure.failure.path,
                message=failure.failure.message,
            )
        else:
            automation_log(
                f"processGoal:llm:{stage.value}:fileOpFailure",
                attempt=attempt,
                path=failure.failure.path,
                status=failure.failure.status,
                operation=failure.failure.operation,
            )

    def _on_file_applied(self, path: Any) -> None:
        normalized = normalize_repo_path(path)
        if self.options.touch_tracker is not None:
            self.options.touch_tracker.record(normalized)
        if not normalized or normalized == self._last_focused:
            return
        self._last_focused = normalized
        self._notify("focus_file", self.context.project_id, normalized)

    def _note_referenced_assets(self, edits: Sequence[Any]) -> None:
        for asset in self.contract.required_asset_paths:
            for edit in edits:
                if asset == edit_path(edit) or asset in edit_text(edit):
                    self.referenced_assets.add(asset)
                    break

    def _missing_assets(self) -> list[str]:
        return [asset for asset in self.contract.required_asset_paths if asset not in self.referenced_assets]

    async def _advance(self, phase: GoalPhase) -> None:
        try:
            await self._call(f"phase:{phase.value}", self.collaborators.advance_goal_phase, self.goal.id, phase)
        except GoalCancelled:
            raise
        except Exception as exc:
            if is_goal_missing_error(exc):
                raise _GoalVanished(phase.value) from exc
            raise
        self._notify("goals_updated", self.context.project_id)
        automation_log("processGoal:phase", goalId=self.goal.id, phase=phase)

    async def _refresh_goal_count(self) -> int:
        goals = await self._call("fetchGoals", self.collaborators.fetch_goals, self.context.project_id)
        count = len(goals) if isinstance(goals, list) else 0
        self._notify("set_goal_count", count)
        self._notify("goals_updated", self.context.project_id)
        return count

    async def _handle_goal_missing(self) -> Outcome:
        try:
            goals = await _resolve(self.collaborators.fetch_goals(self.context.project_id))
        except Exception as exc:
            LOGGER.warning("Failed to refresh goals after missing goal %s: %s", self.goal.id, exc)
            goals = None
        count = len(goals) if isinstance(goals, list) else 0
        self._notify("set_goal_count", count)
        self._notify("goals_updated", self.context.project_id)
        automation_log("processGoal:goalMissing", goalId=self.goal.id, goalCount=count)
        return Outcome.goal_missing()

    def _fail(self, message: str, *, status: Any = None) -> Outcome:
        automation_log(
            "processGoal:error",
            projectId=self.context.project_id,
            goalId=self.goal.id,
            message=message,
            status=status,
        )
        self._notify("post_message", f"Error processing goal: {message}", variant="error")
        return Outcome.failed(message)

    async def _call(self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        await self.token.checkpoint(f"before {label}")
        result = await _resolve(func(*args, **kwargs))
        await self.token.checkpoint(f"after {label}")
        return result

    def _notify(self, method: str, *args: Any, **kwargs: Any) -> None:
        hook = getattr(self.notifier, method, None)
        if not callable(hook):
            return
        try:
            hook(*args, **kwargs)
        except Exception:
            LOGGER.debug("Notifier hook %s failed", method, exc_info=True)


def _coerce_violation(raw: Any) -> Optional[ScopeViolation]:
    if raw is None or raw is False:
        return None
    if isinstance(raw, ScopeViolation):
        return raw
    if isinstance(raw, Mapping):
        message = raw.get("message")
        path = raw.get("path")
        rule = raw.get("rule")
        return ScopeViolation(
            message=message if isinstance(message, str) and message else "Proposed edits exceeded the requested scope.",
            path=path if isinstance(path, str) and path else None,
            rule=rule if isinstance(rule, str) else None,
        )
    return ScopeViolation(message=str(raw))


def _failure_message(failure: StageFailure) -> str:
    if isinstance(failure, ScopeViolation):
        return failure.message
    if isinstance(failure, FileOpFailed):
        return describe_file_op_failure(failure.failure)
    if isinstance(failure, ReplacementFailed):
        return failure.failure.message
    return NO_EDITS_APPLIED_MESSAGE


async def run_goal(
    goal: Union[Goal, Mapping[str, Any]],
    context: ProjectContext,
    collaborators: GoalCollaborators,
    options: Optional[RunOptions] = None,
    notifier: Optional[GoalNotifier] = None,
) -> Outcome:
    """Drive one goal from classification to the ``ready`` phase.

    Never raises for collaborator failures: every terminal state is reported
    through the returned :class:`Outcome`.
    """
    run = GoalRun(Goal.coerce(goal), context, collaborators, options or RunOptions(), notifier)
    return await run.execute()


__all__ = [
    "GoalCollaborators",
    "GoalNotifier",
    "GoalRun",
    "NO_EDITS_APPLIED_MESSAGE",
    "Outcome",
    "ProjectContext",
    "RunOptions",
    "TouchTracker",
    "run_goal",
]
