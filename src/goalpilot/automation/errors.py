"""Structured failures exchanged between the engine and its collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class FileOpFailure:
    """Details of a file write/create/delete the apply step could not perform."""

    path: Optional[str]
    status: Any = None
    message: str = ""
    operation: str = ""

    @property
    def numeric_status(self) -> Optional[int]:
        if isinstance(self.status, bool) or not isinstance(self.status, int):
            return None
        return self.status


REPLACEMENT_NOT_FOUND_MESSAGE = "Replacement search text not found"
REPLACEMENT_AMBIGUOUS_MESSAGE = "Replacement search text is ambiguous"


@dataclass(frozen=True, slots=True)
class ReplacementFailure:
    """A modify edit whose search text did not resolve to exactly one location."""

    path: Optional[str]
    message: str = REPLACEMENT_NOT_FOUND_MESSAGE
    search_snippet: Optional[str] = None

    @property
    def ambiguous(self) -> bool:
        return "ambiguous" in self.message.lower()


class AutomationError(RuntimeError):
    """Base error raised for goal automation failures."""


class ScopeViolationError(AutomationError):
    """Raised when proposed edits exceed the declared scope."""

    def __init__(self, message: str, *, path: Optional[str] = None, rule: Optional[str] = None) -> None:
        super().__init__(message or "Proposed edits exceeded the requested scope.")
        self.message = str(self)
        self.path = path
        self.rule = rule


class EmptyEditsError(AutomationError):
    """Raised when a stage produced no usable edits."""

    def __init__(self, stage: Any) -> None:
        label = "tests" if str(getattr(stage, "value", stage)) == "tests" else "implementation"
        super().__init__(f"LLM returned no edits for the {label} stage.")
        self.stage = label


class FileOperationError(AutomationError):
    """Raised by apply collaborators when a target file cannot be written."""

    def __init__(
        self,
        path: Optional[str],
        *,
        status: Any = None,
        message: Optional[str] = None,
        operation: str = "write",
    ) -> None:
        text = message or f"Failed to {operation} file: {path}"
        super().__init__(text)
        self.file_op_failure = FileOpFailure(path=path, status=status, message=text, operation=operation)


class ReplacementError(AutomationError):
    """Raised by apply collaborators when a replacement search cannot be resolved."""

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        ambiguous: bool = False,
        search_snippet: Optional[str] = None,
    ) -> None:
        text = REPLACEMENT_AMBIGUOUS_MESSAGE if ambiguous else REPLACEMENT_NOT_FOUND_MESSAGE
        super().__init__(text)
        self.replacement_failure = ReplacementFailure(path=path, message=text, search_snippet=search_snippet)


class GoalNotFoundError(AutomationError):
    """Raised when the goal-tracking service no longer knows the goal."""

    status = 404


class GoalCancelled(AutomationError):
    """Unwinds a run after a cooperative cancellation checkpoint fired."""


class StageFailedError(AutomationError):
    """Terminal failure of a stage after its attempt sequence was exhausted."""


def extract_file_op_failure(error: BaseException) -> Optional[FileOpFailure]:
    """Return the file-operation payload attached to ``error``, if any."""
    raw = getattr(error, "file_op_failure", None)
    if isinstance(raw, FileOpFailure):
        return raw
    if isinstance(raw, Mapping):
        path = raw.get("path")
        message = raw.get("message")
        return FileOpFailure(
            path=path if isinstance(path, str) and path else None,
            status=raw.get("status"),
            message=message if isinstance(message, str) else "",
            operation=str(raw.get("operation") or ""),
        )
    return None


def extract_replacement_failure(error: BaseException) -> Optional[ReplacementFailure]:
    """Return the unresolved-replacement payload for ``error``, if it is one.

    Errors without a payload are recognised by their message alone.
    """
    raw = getattr(error, "replacement_failure", None)
    if isinstance(raw, ReplacementFailure):
        return raw
    if isinstance(raw, Mapping):
        path = raw.get("path")
        message = raw.get("message")
        snippet = raw.get("searchSnippet", raw.get("search_snippet"))
        return ReplacementFailure(
            path=path if isinstance(path, str) and path else None,
            message=message if isinstance(message, str) and message else REPLACEMENT_NOT_FOUND_MESSAGE,
            search_snippet=snippet if isinstance(snippet, str) and snippet else None,
        )
    if str(error) in (REPLACEMENT_NOT_FOUND_MESSAGE, REPLACEMENT_AMBIGUOUS_MESSAGE):
        return ReplacementFailure(path=None, message=str(error))
    return None


def is_goal_missing_error(error: BaseException) -> bool:
    """Recognise 404-style rejections from the goal-tracking service."""
    if isinstance(error, GoalNotFoundError):
        return True
    if getattr(error, "status", None) == 404:
        return True
    response = getattr(error, "response", None)
    if response is None:
        return False
    return getattr(response, "status_code", None) == 404 or getattr(response, "status", None) == 404


__all__ = [
    "AutomationError",
    "EmptyEditsError",
    "FileOpFailure",
    "FileOperationError",
    "GoalCancelled",
    "GoalNotFoundError",
    "REPLACEMENT_AMBIGUOUS_MESSAGE",
    "REPLACEMENT_NOT_FOUND_MESSAGE",
    "ReplacementError",
    "ReplacementFailure",
    "ScopeViolationError",
    "StageFailedError",
    "extract_file_op_failure",
    "extract_replacement_failure",
    "is_goal_missing_error",
]
