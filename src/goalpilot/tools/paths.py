"""Repository path helpers shared by the automation engine."""

from __future__ import annotations

import posixpath
import re
from collections.abc import Mapping
from typing import Any, Iterable, Sequence

DEFAULT_ATTEMPT_SEQUENCE: tuple[int, ...] = (1, 2)
MAX_SUGGESTED_PATHS = 4

_LEADING_SLASHES_RE = re.compile(r"^/+")


def normalize_repo_path(value: Any) -> str:
    """Return a repo-relative POSIX path, or ``""`` for non-string input."""
    if not isinstance(value, str):
        return ""
    return _LEADING_SLASHES_RE.sub("", value.replace("\\", "/"))


def path_basename(value: Any) -> str:
    normalized = normalize_repo_path(value).rstrip("/")
    if not normalized:
        return ""
    return posixpath.basename(normalized)


def flatten_file_tree(nodes: Any, acc: list[str] | None = None) -> list[str]:
    """Flatten a nested ``{path|filePath|name, children}`` tree into paths.

    Folders and files are both emitted, parents before their children.
    Plain string nodes are taken as paths. Non-list input and falsy nodes
    are ignored.
    """
    collected: list[str] = [] if acc is None else acc
    if not isinstance(nodes, (list, tuple)):
        return collected

    for node in nodes:
        if isinstance(node, str):
            node_path = normalize_repo_path(node)
            if node_path:
                collected.append(node_path)
            continue
        if not node or not isinstance(node, Mapping):
            continue
        raw = node.get("path") or node.get("filePath") or node.get("name") or ""
        node_path = normalize_repo_path(raw)
        if node_path:
            collected.append(node_path)
        children = node.get("children")
        if isinstance(children, (list, tuple)) and children:
            flatten_file_tree(children, collected)
    return collected


def resolve_attempt_sequence(value: Any) -> list[int]:
    """Coerce caller input into an ordered list of positive attempt indices.

    Lists keep their positive integer entries (numeric strings allowed) in
    first-seen order; an empty result skips the stage entirely. A single
    positive integer becomes a one-element sequence. Anything else falls back
    to :data:`DEFAULT_ATTEMPT_SEQUENCE`.
    """
    if isinstance(value, (list, tuple)):
        sequence: list[int] = []
        for item in value:
            number = _coerce_int(item)
            if number is not None and number > 0 and number not in sequence:
                sequence.append(number)
        return sequence

    number = _coerce_int(value)
    if number is not None and number > 0:
        return [number]
    return list(DEFAULT_ATTEMPT_SEQUENCE)


def suggest_paths_by_basename(
    target: Any,
    known_paths: Iterable[Any],
    *,
    limit: int = MAX_SUGGESTED_PATHS,
) -> list[str]:
    """Return up to ``limit`` known paths sharing ``target``'s basename."""
    basename = path_basename(target)
    if not basename:
        return []
    suggestions: list[str] = []
    for candidate in known_paths:
        if not isinstance(candidate, str):
            continue
        normalized = normalize_repo_path(candidate)
        if not normalized or normalized in suggestions:
            continue
        if path_basename(normalized) == basename:
            suggestions.append(normalized)
            if len(suggestions) >= limit:
                break
    return suggestions


def unique_sorted(paths: Sequence[str]) -> list[str]:
    return sorted({path for path in paths if path})


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            return None
    return None


__all__ = [
    "DEFAULT_ATTEMPT_SEQUENCE",
    "MAX_SUGGESTED_PATHS",
    "flatten_file_tree",
    "normalize_repo_path",
    "path_basename",
    "resolve_attempt_sequence",
    "suggest_paths_by_basename",
    "unique_sorted",
]
