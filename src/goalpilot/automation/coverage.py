"""Coverage scope guard: keep coverage-only goals inside test folders."""

from __future__ import annotations

import math
import posixpath
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from ..goals import UncoveredLine
from ..structured import edit_path
from ..tools.paths import MAX_SUGGESTED_PATHS, normalize_repo_path
from .reflection import is_test_file_path
from .retry import ScopeViolation

TEST_FILES_ONLY_MESSAGE = "Coverage fixes are limited to test files only."
TEST_FOLDERS_MESSAGE = "Coverage fixes must stay within dedicated test folders for the target workspace."

TEST_DIR_SEGMENTS = frozenset({"__tests__", "__test__", "tests", "test", "spec", "specs"})
_PY_TEST_FILE_RE = re.compile(r"(^|/)(test_[^/]+|[^/]+_test)\.py$")


@dataclass(frozen=True, slots=True)
class UncoveredTarget:
    workspace: str
    file: str
    lines: tuple[int, ...] = ()

    @property
    def display_path(self) -> str:
        return "/".join(part for part in (self.workspace, self.file) if part)


@dataclass(frozen=True, slots=True)
class CoverageScope:
    """Paths a coverage goal may touch.

    ``workspace_prefixes`` are ``"<workspace>/"`` strings; ``test_dir_prefixes``
    are folders already holding tests, taken from the flattened repo tree.
    """

    workspace_prefixes: tuple[str, ...]
    test_dir_prefixes: tuple[str, ...]
    targets: tuple[UncoveredTarget, ...] = ()

    def test_dirs_for(self, workspace_prefix: Optional[str]) -> list[str]:
        if not workspace_prefix:
            return list(self.test_dir_prefixes)
        return [prefix for prefix in self.test_dir_prefixes if prefix.startswith(workspace_prefix)]

    def workspace_of(self, path: str) -> Optional[str]:
        for prefix in self.workspace_prefixes:
            if path.startswith(prefix):
                return prefix
        return None


def is_test_shaped_path(path: Any) -> bool:
    """True for test files or anything living under a test folder."""
    normalized = normalize_repo_path(path)
    if not normalized:
        return False
    if is_test_file_path(normalized) or _PY_TEST_FILE_RE.search(normalized):
        return True
    segments = normalized.split("/")[:-1]
    return any(segment in TEST_DIR_SEGMENTS for segment in segments)


def resolve_relative_segments(path: Any) -> Optional[str]:
    """Collapse ``.`` and ``..`` segments; ``None`` when the path escapes the repo."""
    normalized = normalize_repo_path(path)
    if not normalized:
        return None
    resolved = posixpath.normpath(normalized)
    if resolved in (".", "..") or ".." in resolved.split("/"):
        return None
    return resolved


def build_coverage_scope(uncovered_lines: Any, known_paths: Iterable[Any] = ()) -> Optional[CoverageScope]:
    """Derive the coverage scope from ``metadata.uncoveredLines``.

    Non-list or empty input means the goal is not a coverage goal.
    """
    if not isinstance(uncovered_lines, list) or not uncovered_lines:
        return None

    workspaces: list[str] = []
    targets: list[UncoveredTarget] = []
    for raw in uncovered_lines:
        entry = UncoveredLine.parse(raw)
        if entry is None:
            continue
        trimmed = entry.workspace.strip().strip("/")
        if trimmed and f"{trimmed}/" not in workspaces:
            workspaces.append(f"{trimmed}/")
        targets.append(UncoveredTarget(workspace=trimmed, file=entry.file.strip(), lines=_coerce_lines(entry)))

    return CoverageScope(
        workspace_prefixes=tuple(workspaces),
        test_dir_prefixes=tuple(collect_test_dir_prefixes(known_paths, workspaces)),
        targets=tuple(targets),
    )


def collect_test_dir_prefixes(known_paths: Iterable[Any], workspace_prefixes: Sequence[str] = ()) -> list[str]:
    """Return folders (with trailing ``/``) that already hold tests."""
    prefixes: set[str] = set()
    for raw in known_paths:
        path = normalize_repo_path(raw)
        if not path:
            continue
        if workspace_prefixes and not any(path.startswith(prefix) for prefix in workspace_prefixes):
            continue
        segments = path.split("/")
        for index, segment in enumerate(segments):
            if segment in TEST_DIR_SEGMENTS and index < len(segments) - 1:
                prefixes.add("/".join(segments[: index + 1]) + "/")
                break
            if segment in TEST_DIR_SEGMENTS and index == len(segments) - 1 and "." not in segment:
                prefixes.add(path + "/")
                break
        else:
            if is_test_file_path(path) or _PY_TEST_FILE_RE.search(path):
                parent = posixpath.dirname(path)
                prefixes.add(f"{parent}/" if parent else "")
    return sorted(prefix for prefix in prefixes if prefix)


def validate_edits_against_coverage(
    edits: Sequence[Any],
    scope: Optional[CoverageScope],
) -> Optional[ScopeViolation]:
    """Reject any edit that would leave the coverage goal's test folders."""
    if scope is None:
        return None

    for edit in edits:
        raw_path = edit_path(edit)
        if not raw_path:
            continue

        path = resolve_relative_segments(raw_path)
        if path is None:
            return ScopeViolation(
                message=TEST_FILES_ONLY_MESSAGE, path=raw_path, rule="coverage-test-files", kind="coverage"
            )
        if not is_test_shaped_path(path):
            return ScopeViolation(message=TEST_FILES_ONLY_MESSAGE, path=path, rule="coverage-test-files", kind="coverage")

        if any(path.startswith(prefix) for prefix in scope.test_dir_prefixes):
            continue

        workspace = scope.workspace_of(path)
        if scope.workspace_prefixes and workspace is None:
            return _outside_test_folders(path, scope.test_dir_prefixes)

        existing = scope.test_dirs_for(workspace)
        if not existing:
            continue
        return _outside_test_folders(path, existing)
    return None


def format_coverage_context(scope: Optional[CoverageScope]) -> str:
    """Render coverage hints for the stage prompt."""
    if scope is None:
        return ""
    lines = ["## Coverage Goal", TEST_FILES_ONLY_MESSAGE]
    summaries = []
    for target in scope.targets[:4]:
        if not target.display_path:
            continue
        if target.lines:
            preview = ", ".join(str(line) for line in target.lines[:8])
            suffix = ", ..." if len(target.lines) > 8 else ""
            summaries.append(f"{target.display_path} ({preview}{suffix})")
        else:
            summaries.append(target.display_path)
    if summaries:
        lines.append(f"Uncovered lines: {'; '.join(summaries)}")
    if scope.test_dir_prefixes:
        lines.append(f"Existing test folders: {', '.join(prefix.rstrip('/') for prefix in scope.test_dir_prefixes[:8])}")
    return "\n".join(lines)


def _outside_test_folders(path: str, candidates: Sequence[str]) -> ScopeViolation:
    suggestions = tuple(prefix.rstrip("/") for prefix in list(candidates)[:MAX_SUGGESTED_PATHS])
    return ScopeViolation(
        message=TEST_FOLDERS_MESSAGE,
        path=path,
        rule="coverage-test-folders",
        kind="coverage",
        suggested_paths=suggestions,
    )


def _coerce_lines(entry: UncoveredLine) -> tuple[int, ...]:
    raw = entry.lines
    if not isinstance(raw, list):
        raw = [entry.line]
    lines: list[int] = []
    for value in raw:
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and math.isfinite(value):
            lines.append(int(value))
    return tuple(lines)


__all__ = [
    "CoverageScope",
    "TEST_FILES_ONLY_MESSAGE",
    "TEST_FOLDERS_MESSAGE",
    "UncoveredTarget",
    "build_coverage_scope",
    "collect_test_dir_prefixes",
    "format_coverage_context",
    "is_test_shaped_path",
    "resolve_relative_segments",
    "validate_edits_against_coverage",
]
