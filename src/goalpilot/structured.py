"""Typed payloads that describe the repository edits a model proposes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from .tools.paths import normalize_repo_path


@dataclass(frozen=True, slots=True)
class Replacement:
    """Search/replace pair applied to an existing file."""

    search: Any
    replace: Any


@dataclass(frozen=True, slots=True)
class ModifyEdit:
    """In-place edit made of unique search/replace pairs."""

    path: Any
    replacements: tuple[Replacement, ...] = ()
    type: Literal["modify"] = "modify"


@dataclass(frozen=True, slots=True)
class UpsertEdit:
    """Complete file payload that creates or overwrites ``path``."""

    path: Any
    content: Any = ""
    type: Literal["upsert"] = "upsert"


@dataclass(frozen=True, slots=True)
class DeleteEdit:
    """Removal of a file or folder."""

    path: Any
    recursive: bool = False
    type: Literal["delete"] = "delete"


Edit = Union[ModifyEdit, UpsertEdit, DeleteEdit]


@dataclass(frozen=True, slots=True)
class ApplySummary:
    """Counts reported by the apply collaborator for one stage."""

    applied: int = 0
    skipped: int = 0
    paths: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def coerce(cls, value: Any) -> "ApplySummary":
        if isinstance(value, ApplySummary):
            return value
        if isinstance(value, Mapping):
            return cls(
                applied=_as_count(value.get("applied")),
                skipped=_as_count(value.get("skipped")),
                paths=tuple(str(item) for item in value.get("paths") or ()),
            )
        return cls()

    def to_dict(self) -> dict[str, int]:
        return {"applied": self.applied, "skipped": self.skipped}


def edit_path(edit: Any) -> str:
    """Return the normalised repo path targeted by ``edit`` (``""`` if none)."""
    if isinstance(edit, Mapping):
        return normalize_repo_path(edit.get("path"))
    return normalize_repo_path(getattr(edit, "path", None))


def edit_type(edit: Any) -> str:
    raw = edit.get("type") if isinstance(edit, Mapping) else getattr(edit, "type", None)
    return raw.lower() if isinstance(raw, str) else ""


def edit_text(edit: Any) -> str:
    """Concatenate the textual payload carried by an edit (strings only)."""
    kind = edit_type(edit)
    if kind == "upsert":
        content = edit.get("content") if isinstance(edit, Mapping) else getattr(edit, "content", None)
        return content if isinstance(content, str) else ""
    if kind == "modify":
        fragments: list[str] = []
        for replacement in _replacements_of(edit):
            for value in (_field(replacement, "search"), _field(replacement, "replace")):
                if isinstance(value, str):
                    fragments.append(value)
        return "\n".join(fragments)
    return ""


def coerce_edit(raw: Any) -> Edit | None:
    """Build a typed edit from a loosely-shaped model payload."""
    if isinstance(raw, (ModifyEdit, UpsertEdit, DeleteEdit)):
        return raw
    if not isinstance(raw, Mapping):
        return None
    kind = edit_type(raw)
    path = raw.get("path")
    if kind == "modify":
        replacements = tuple(
            Replacement(search=_field(item, "search"), replace=_field(item, "replace"))
            for item in _replacements_of(raw)
        )
        return ModifyEdit(path=path, replacements=replacements)
    if kind == "delete":
        return DeleteEdit(path=path, recursive=raw.get("recursive") is True)
    if kind == "upsert" or "content" in raw:
        return UpsertEdit(path=path, content=raw.get("content"))
    return None


def _replacements_of(edit: Any) -> list[Any]:
    raw = edit.get("replacements") if isinstance(edit, Mapping) else getattr(edit, "replacements", None)
    if isinstance(raw, (list, tuple)):
        return [item for item in raw if item is not None]
    return []


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


__all__ = [
    "ApplySummary",
    "DeleteEdit",
    "Edit",
    "ModifyEdit",
    "Replacement",
    "UpsertEdit",
    "coerce_edit",
    "edit_path",
    "edit_text",
    "edit_type",
]
