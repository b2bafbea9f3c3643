"""Prompt templates and helpers shared across goal automation stages."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .automation import StageName
from .automation.coverage import CoverageScope, format_coverage_context
from .automation.reflection import ScopeContract, format_scope_reflection_context
from .automation.retry import RetryContext, RetryKind

JSON_EDITS_INSTRUCTION = (
    "You are an automated code editor. Return ONLY valid JSON. Output format: {\"edits\":[...]} where each edit is one of: "
    "{\"type\":\"modify\",\"path\":\"...\",\"replacements\":[{\"search\":\"<exact unique snippet>\",\"replace\":\"<replacement>\"}]}, "
    "{\"type\":\"upsert\",\"path\":\"...\",\"content\":\"<full file content>\"}, "
    "{\"type\":\"delete\",\"path\":\"...\",\"recursive\":false}. "
    "Prefer type=\"modify\" with replacements. Each search MUST match exactly once. Use repo-relative POSIX paths. "
    "For styling requests, scope changes to the explicitly requested element, component or selector. "
    "Do NOT change global selectors (body, html, :root, *) unless the request explicitly asks for app-wide styling."
)

STRICT_JSON_WARNING = (
    "Previous response was not valid JSON. Reply again using ONLY a single JSON object that matches the required schema. "
)

SCOPE_REFLECTION_INSTRUCTION = (
    "You are a careful planning assistant. Think step-by-step about what the user actually requested. "
    "Return ONLY valid JSON with keys: reasoning (string), mustChange (array of repo paths or areas that must change), "
    "mustAvoid (array of paths/areas that should remain untouched), mustHave (array of required behaviors or UI outcomes), "
    "requiredAssetPaths (array of project asset paths the change must reference) and testsNeeded (boolean). "
    "Mention only work that is strictly required to satisfy the request. Leave arrays empty when uncertain."
)

_STAGE_FOCUS = {
    StageName.TESTS: (
        "Focus only on adding/updating tests first (TDD). Do not implement the feature beyond minimal scaffolding "
        "needed for tests to compile. If you are unsure about precise replacements in test files, prefer a full-file upsert."
    ),
    StageName.IMPLEMENTATION: (
        "Now implement the feature so the tests pass. Keep edits minimal and localized. "
        "Do not weaken or remove required functionality to make tests pass."
    ),
}


@dataclass(frozen=True, slots=True)
class StagePrompt:
    """Everything the edit-request collaborator needs for one attempt."""

    stage: StageName
    attempt: int
    goal_prompt: str
    project_info: str = ""
    file_tree: tuple[str, ...] = ()
    retry_context: Optional[RetryContext] = None
    scope_contract: Optional[ScopeContract] = None
    coverage_scope: Optional[CoverageScope] = None
    test_failure_context: Any = None
    extra_context: tuple[str, ...] = field(default_factory=tuple)

    def to_messages(self) -> list[dict[str, str]]:
        return build_edits_prompt(self)


def render_file_tree(paths: Sequence[str]) -> str:
    """Render the repository listing block included in stage prompts."""
    if not paths:
        return ""
    body = "\n".join(paths)
    return f"## Repo File Tree (top {len(paths)} paths)\n{body}"


def render_retry_notice(retry_context: Optional[RetryContext]) -> str:
    """Explain the previous attempt's failure to the model."""
    if retry_context is None:
        return ""
    notices = []
    if retry_context.message or retry_context.path or retry_context.search_snippet:
        target = retry_context.path or "the target file"
        reason = retry_context.message or "the replacement snippet did not match the current file."
        notice = (
            f"Previous attempt failed while editing {target} because {reason} "
            "Provide replacements that exactly match the latest file contents. "
            "If you are unsure, output the entire updated file using type=\"upsert\"."
        )
        snippet = (retry_context.search_snippet or "").strip()
        if snippet:
            notice += f" Problematic search snippet: {snippet[:200]}"
        notices.append(notice)
        lowered = (retry_context.message or "").lower()
        replacement = retry_context.kind == RetryKind.REPLACEMENT_FAILURE
        if replacement and "ambiguous" in lowered:
            notices.append(
                "The previous search snippet matched multiple locations. "
                "Use a longer, unique snippet with surrounding lines or return a full-file upsert."
            )
        elif replacement and "not found" in lowered:
            notices.append(
                "The previous search snippet did not match the file. "
                "Copy an exact, current snippet from the file content or return a full-file upsert."
            )
    if retry_context.scope_warning and retry_context.scope_warning.strip():
        notices.append(f"Scope reminder: {retry_context.scope_warning.strip()}")
    if retry_context.suggested_paths:
        notices.append(f"Existing paths with similar names: {', '.join(retry_context.suggested_paths)}")
    if not notices:
        return ""
    return "## Retry Notice\n" + "\n\n".join(notices)


def render_test_failure_context(context: Any) -> str:
    """Format failing test jobs (label, status, command, failures, logs)."""
    if not isinstance(context, Mapping):
        return ""
    jobs = context.get("jobs")
    if not isinstance(jobs, list) or not jobs:
        return ""
    rendered = (_render_failure_job(job, index) for index, job in enumerate(jobs))
    sections = [section for section in rendered if section]
    if not sections:
        return ""
    return "## Test Failure Context\n" + "\n\n".join(sections)


def build_edits_prompt(stage_prompt: StagePrompt) -> list[dict[str, str]]:
    """Return the chat messages requesting edits for one stage attempt."""
    stage_label = "tests" if stage_prompt.stage == StageName.TESTS else "implementation"
    focus = _STAGE_FOCUS.get(stage_prompt.stage, _STAGE_FOCUS[StageName.IMPLEMENTATION])

    blocks = []
    if stage_prompt.project_info.strip():
        blocks.append(stage_prompt.project_info.strip())
    tree_block = render_file_tree(stage_prompt.file_tree)
    if tree_block:
        blocks.append(tree_block)
    blocks.append(f"Task: {stage_prompt.goal_prompt}")
    blocks.append(
        f"Stage: {stage_label}. {focus} Honor layout/placement constraints in the task (e.g., top of page, full-width)."
    )
    for block in (
        format_scope_reflection_context(stage_prompt.scope_contract),
        format_coverage_context(stage_prompt.coverage_scope),
        render_test_failure_context(stage_prompt.test_failure_context),
        *stage_prompt.extra_context,
    ):
        if block:
            blocks.append(block)
    blocks.append("Return edits JSON only.")
    retry_notice = render_retry_notice(stage_prompt.retry_context)
    if retry_notice:
        blocks.append(retry_notice)

    system = (STRICT_JSON_WARNING if stage_prompt.attempt > 1 else "") + JSON_EDITS_INSTRUCTION
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "\n\n".join(blocks)},
    ]


def build_scope_reflection_prompt(goal_prompt: Any, project_info: str = "") -> list[dict[str, str]]:
    """Return the chat messages for the once-per-run scope reflection."""
    parts = []
    if isinstance(project_info, str) and project_info.strip():
        parts.append(f"Project context:\n{project_info.strip()}")
    if isinstance(goal_prompt, str) and goal_prompt.strip():
        parts.append(f"User goal:\n{goal_prompt.strip()}")
    context = "\n\n".join(parts) or "User goal provided above."
    return [
        {"role": "system", "content": SCOPE_REFLECTION_INSTRUCTION},
        {
            "role": "user",
            "content": (
                f"{context}\n\nDescribe the smallest set of changes that satisfy the goal "
                "and list areas that should remain untouched."
            ),
        },
    ]


def _render_failure_job(job: Any, index: int) -> str:
    if not isinstance(job, Mapping):
        return ""
    label = job.get("label") or job.get("type") or job.get("kind") or f"Job {index + 1}"
    details = []
    if job.get("status"):
        details.append(f"Status: {job['status']}")
    if job.get("command"):
        args = job.get("args")
        suffix = f" {' '.join(str(arg) for arg in args)}" if isinstance(args, list) and args else ""
        details.append(f"Command: {job['command']}{suffix}")
    failures = job.get("testFailures")
    if isinstance(failures, list) and failures:
        details.append("Failing tests:\n- " + "\n- ".join(str(item) for item in failures))
    if job.get("error"):
        details.append(f"Error: {job['error']}")
    if job.get("coverage"):
        details.append(f"Coverage summary: {json.dumps(job['coverage'], default=str)}")
    uncovered = job.get("uncoveredLines")
    if isinstance(uncovered, list) and uncovered:
        summaries = []
        for entry in uncovered[:8]:
            if not isinstance(entry, Mapping):
                continue
            workspace = entry.get("workspace") if isinstance(entry.get("workspace"), str) else ""
            file = entry.get("file") if isinstance(entry.get("file"), str) else ""
            display = "/".join(part for part in (workspace.strip(), file.strip()) if part)
            if display:
                summaries.append(display)
        if summaries:
            details.append(f"Uncovered lines: {', '.join(summaries)}")
    logs = job.get("recentLogs")
    if isinstance(logs, list) and logs:
        tail = [str(line) for line in logs[-20:]]
        details.append("Recent logs:\n" + "\n".join(tail))
    if not details:
        return f"### {label}"
    return f"### {label}\n" + "\n".join(details)


__all__ = [
    "JSON_EDITS_INSTRUCTION",
    "SCOPE_REFLECTION_INSTRUCTION",
    "STRICT_JSON_WARNING",
    "StagePrompt",
    "build_edits_prompt",
    "build_scope_reflection_prompt",
    "render_file_tree",
    "render_retry_notice",
    "render_test_failure_context",
]
