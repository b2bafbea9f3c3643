"""Translate stage failures into the hint carried by the next attempt."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence, Union

from ..tools.paths import MAX_SUGGESTED_PATHS, suggest_paths_by_basename
from . import StageName
from .errors import FileOpFailure, ReplacementFailure

TESTS_EMPTY_EDITS_DIRECTIVE = (
    "Previous attempt returned zero edits. Provide at least one edit that adds or updates the required test files."
)
IMPLEMENTATION_EMPTY_EDITS_DIRECTIVE = (
    "Previous attempt returned zero edits. Provide the exact modifications needed to complete the feature request."
)


@dataclass(frozen=True, slots=True)
class ScopeViolation:
    """Edits landed outside the scope contract or the coverage guard."""

    message: str
    path: Optional[str] = None
    rule: Optional[str] = None
    kind: str = "scope"
    suggested_paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class EmptyEdits:
    """The model produced nothing usable for ``stage``."""

    stage: StageName


@dataclass(frozen=True, slots=True)
class FileOpFailed:
    """The apply step could not write a target file."""

    failure: FileOpFailure


@dataclass(frozen=True, slots=True)
class ReplacementFailed:
    """A replacement search matched nothing or more than one location."""

    failure: ReplacementFailure


StageFailure = Union[ScopeViolation, EmptyEdits, FileOpFailed, ReplacementFailed]


class RetryKind(str, Enum):
    SCOPE_VIOLATION = "scopeViolation"
    EMPTY_EDITS = "emptyEdits"
    FILE_OP_FAILURE = "fileOpFailure"
    REPLACEMENT_FAILURE = "replacementFailure"
    ASSET_SHORTFALL = "assetShortfall"


@dataclass(frozen=True, slots=True)
class RetryContext:
    """Prompt-ready explanation of why the previous attempt failed."""

    kind: RetryKind
    message: str
    path: Optional[str] = None
    scope_warning: Optional[str] = None
    suggested_paths: tuple[str, ...] = field(default_factory=tuple)
    search_snippet: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path, "message": self.message}
        if self.scope_warning:
            payload["scopeWarning"] = self.scope_warning
        if self.suggested_paths:
            payload["suggestedPaths"] = list(self.suggested_paths)
        if self.search_snippet:
            payload["searchSnippet"] = self.search_snippet
        return payload


def empty_edits_directive(stage: StageName) -> str:
    if stage == StageName.TESTS:
        return TESTS_EMPTY_EDITS_DIRECTIVE
    return IMPLEMENTATION_EMPTY_EDITS_DIRECTIVE


def asset_shortfall_directive(missing_assets: Sequence[str]) -> str:
    listed = ", ".join(missing_assets)
    return (
        "Previous attempt returned zero edits. The goal requires the selected project assets, "
        f"so reference these asset paths in your edits: {listed}."
    )


def describe_file_op_failure(failure: FileOpFailure) -> str:
    base = failure.message.strip() if failure.message else ""
    if not base:
        operation = failure.operation or "write"
        base = f"Failed to {operation} {failure.path or 'the target file'}"
    status = failure.numeric_status
    if status is not None:
        return f"{base} (HTTP {status})"
    return base


def build_retry_context(
    failure: StageFailure,
    *,
    stage: StageName,
    previous: Optional[RetryContext] = None,
    known_paths: Iterable[Any] = (),
    missing_assets: Sequence[str] = (),
) -> RetryContext:
    """Return the :class:`RetryContext` for the attempt after ``failure``.

    Failures without a location of their own inherit the previous attempt's
    ``path`` and ``scope_warning`` so the model keeps its bearings.
    """
    inherited_path = previous.path if previous else None
    inherited_warning = previous.scope_warning if previous else None

    if isinstance(failure, ScopeViolation):
        return RetryContext(
            kind=RetryKind.SCOPE_VIOLATION,
            message=failure.message,
            path=failure.path,
            scope_warning=failure.message,
            suggested_paths=tuple(failure.suggested_paths[:MAX_SUGGESTED_PATHS]),
        )

    if isinstance(failure, EmptyEdits):
        if missing_assets and stage == StageName.IMPLEMENTATION:
            return RetryContext(
                kind=RetryKind.ASSET_SHORTFALL,
                message=asset_shortfall_directive(missing_assets),
                path=inherited_path,
                scope_warning=inherited_warning,
            )
        return RetryContext(
            kind=RetryKind.EMPTY_EDITS,
            message=empty_edits_directive(stage),
            path=inherited_path,
            scope_warning=inherited_warning,
        )

    if isinstance(failure, ReplacementFailed):
        replacement = failure.failure
        return RetryContext(
            kind=RetryKind.REPLACEMENT_FAILURE,
            message=replacement.message,
            path=replacement.path or inherited_path,
            scope_warning=inherited_warning,
            search_snippet=replacement.search_snippet,
        )

    details = failure.failure
    suggestions = suggest_paths_by_basename(details.path, known_paths) if details.path else []
    return RetryContext(
        kind=RetryKind.FILE_OP_FAILURE,
        message=describe_file_op_failure(details),
        path=details.path or inherited_path,
        scope_warning=inherited_warning,
        suggested_paths=tuple(suggestions),
    )


__all__ = [
    "EmptyEdits",
    "FileOpFailed",
    "IMPLEMENTATION_EMPTY_EDITS_DIRECTIVE",
    "RetryContext",
    "RetryKind",
    "ReplacementFailed",
    "ScopeViolation",
    "StageFailure",
    "TESTS_EMPTY_EDITS_DIRECTIVE",
    "asset_shortfall_directive",
    "build_retry_context",
    "describe_file_op_failure",
    "empty_edits_directive",
]
