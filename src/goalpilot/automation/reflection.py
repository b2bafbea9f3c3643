"""Scope reflection handshake and the scope contract derived from it."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from ..goals import Goal
from ..structured import edit_path, edit_text
from ..tools.edit_parsing import parse_json_object
from ..tools.paths import normalize_repo_path
from .retry import ScopeViolation

MAX_REFLECTION_ENTRIES = 12

_TEST_FIX_RE = re.compile(r"fix\s+failing\s+test|failing\s+test|test\s+failure")
_TEST_FILE_RE = re.compile(r"(^|/)__tests__/|\.(test|spec)\.[jt]sx?$")
_ASSET_HEADING_RE = re.compile(r"^\s*selected project assets\s*:\s*$", re.IGNORECASE)
_STYLE_FILE_RE = re.compile(r"\.(css|scss|sass|less)$", re.IGNORECASE)
_GLOBAL_SELECTOR_RE = re.compile(r"(?:^|[\s,}])(?:html|body|:root|\*)\s*[{,]", re.MULTILINE)
_GLOBAL_STYLE_PROMPT_RE = re.compile(
    r"\b(global(?:ly)?|app[- ]wide|site[- ]wide|page[- ]wide|everywhere|"
    r"(?:entire|whole) (?:app|application|site|page)|all pages)\b"
)
_NAV_PROMPT_RE = re.compile(r"\b(navbar|nav bar|navigation bar|navigation|nav)\b")
_WORD_RE = re.compile(r"[a-z][a-z0-9-]+")

_STYLE_STOP_WORDS = frozenset(
    {
        "a", "an", "and", "the", "to", "of", "on", "in", "with", "have", "has", "make", "set",
        "change", "update", "use", "give", "turn", "it", "its", "be", "is", "are", "so", "that",
        "this", "for", "as", "into", "from", "should", "look", "looks", "style", "styles",
        "styling", "color", "colour", "colors", "background", "text", "font", "bold", "italic",
        "white", "black", "blue", "red", "green", "yellow", "orange", "purple", "pink", "gray",
        "grey", "dark", "light", "bigger", "smaller", "larger", "more", "less", "bar",
    }
)


@dataclass(frozen=True, slots=True)
class StyleScope:
    """How far a style-only goal may reach into shared stylesheets."""

    mode: str
    enforce_target_scoping: bool
    forbid_global_selectors: bool
    target_hints: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "enforceTargetScoping": self.enforce_target_scoping,
            "forbidGlobalSelectors": self.forbid_global_selectors,
            "targetHints": list(self.target_hints),
        }


@dataclass(frozen=True, slots=True)
class ScopeContract:
    """Authoritative scope for one goal run."""

    tests_needed: bool = False
    must_change: Any = field(default_factory=list)
    must_avoid: Any = field(default_factory=list)
    must_have: tuple[str, ...] = ()
    required_asset_paths: tuple[str, ...] = ()
    reasoning: str = ""
    reflected: bool = False
    style_scope: Optional[StyleScope] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "testsNeeded": self.tests_needed,
            "mustChange": _clone_list(self.must_change),
            "mustAvoid": _clone_list(self.must_avoid),
            "requiredAssetPaths": list(self.required_asset_paths),
        }
        if self.style_scope is not None:
            payload["styleScope"] = self.style_scope.to_dict()
        return payload


def normalize_reflection_list(value: Any) -> list[str]:
    """Return trimmed, non-empty string entries capped at twelve items."""
    if not isinstance(value, (list, tuple)):
        return []
    entries = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return entries[:MAX_REFLECTION_ENTRIES]


def is_test_file_path(path: Any) -> bool:
    if not isinstance(path, str) or not path:
        return False
    return bool(_TEST_FILE_RE.search(path))


def is_test_fix_prompt(prompt: Any) -> bool:
    return isinstance(prompt, str) and bool(_TEST_FIX_RE.search(prompt.lower()))


def extract_selected_asset_paths(prompt: Any) -> list[str]:
    """Parse the ``- path`` list that follows a ``Selected project assets:`` heading."""
    if not isinstance(prompt, str):
        return []
    assets: list[str] = []
    in_block = False
    list_started = False
    for line in prompt.splitlines():
        if not in_block:
            in_block = bool(_ASSET_HEADING_RE.match(line))
            continue
        stripped = line.strip()
        if not stripped:
            if list_started:
                break
            continue
        if not stripped.startswith("- "):
            if list_started:
                break
            in_block = False
            continue
        list_started = True
        candidate = normalize_repo_path(stripped[2:].strip().strip("`'\""))
        if candidate and candidate not in assets:
            assets.append(candidate)
    return assets


def derive_style_scope_contract(prompt: Any) -> Optional[StyleScope]:
    """Infer whether a styling request is app-wide or aimed at one element."""
    if not isinstance(prompt, str) or not prompt.strip():
        return None
    lowered = prompt.lower()
    if _GLOBAL_STYLE_PROMPT_RE.search(lowered):
        return StyleScope(mode="global", enforce_target_scoping=False, forbid_global_selectors=False)

    hints: list[str] = []
    if _NAV_PROMPT_RE.search(lowered):
        hints.extend(["navbar", "navigation", "nav"])
    for word in _WORD_RE.findall(lowered):
        if word in _STYLE_STOP_WORDS or word in hints or len(word) < 3:
            continue
        hints.append(word)
    return StyleScope(
        mode="targeted",
        enforce_target_scoping=True,
        forbid_global_selectors=True,
        target_hints=tuple(hints),
    )


def parse_scope_reflection_text(raw_text: Any) -> Optional[dict[str, Any]]:
    """Decode a reflection response; ``None`` when no JSON object is present."""
    return parse_json_object(raw_text)


def resolve_scope_contract(
    raw: Any,
    *,
    goal: Goal,
    test_failure_context: Any = None,
) -> ScopeContract:
    """Merge the model's reflection with goal metadata into a :class:`ScopeContract`.

    Non-mapping reflections count as "no information". Test-failure context,
    uncovered coverage lines and failing-test prompts force the tests stage on;
    style-only goals switch it off again unless a test failure is being fixed.
    """
    reflected = isinstance(raw, Mapping)
    data: Mapping[str, Any] = raw if reflected else {}

    declared = _first_present(data, "testsNeeded", "tests_needed")
    if isinstance(declared, bool):
        tests_needed = declared
    else:
        tests_needed = reflected

    if test_failure_context or goal.metadata.has_uncovered_lines or is_test_fix_prompt(goal.prompt):
        tests_needed = True
    if goal.metadata.style_only and not test_failure_context:
        tests_needed = False

    reflected_assets = _first_present(data, "requiredAssetPaths", "required_asset_paths")
    assets = _merge_unique(
        [normalize_repo_path(item) for item in _iter_strings(reflected_assets)],
        extract_selected_asset_paths(goal.prompt),
    )

    reasoning = data.get("reasoning")
    return ScopeContract(
        tests_needed=tests_needed,
        must_change=_clone_list(_first_present(data, "mustChange", "must_change", default=[])),
        must_avoid=_clone_list(_first_present(data, "mustAvoid", "must_avoid", default=[])),
        must_have=tuple(normalize_reflection_list(_first_present(data, "mustHave", "must_have"))),
        required_asset_paths=tuple(assets),
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
        reflected=reflected,
        style_scope=derive_style_scope_contract(goal.prompt) if goal.metadata.style_only else None,
    )


def derive_reflection_path_prefixes(entries: Iterable[Any]) -> list[str]:
    """Map ``mustAvoid`` entries to path prefixes used for edit checks."""
    prefixes: list[str] = []

    def _add(prefix: str) -> None:
        if prefix not in prefixes:
            prefixes.append(prefix)

    for entry in entries:
        if not isinstance(entry, str) or not entry.strip():
            continue
        lowered = entry.strip().lower()
        if " " not in lowered:
            normalized = normalize_repo_path(entry.strip())
            if normalized:
                _add(normalized if normalized.endswith("/") else f"{normalized}/")
                continue
        if "backend" in lowered:
            _add("backend/")
        if "frontend" in lowered:
            _add("frontend/")
        if "test" in lowered:
            _add("frontend/src/__tests__/")
            _add("backend/tests/")
            _add("tests/")
    return prefixes


def validate_edits_against_reflection(edits: Sequence[Any], contract: Optional[ScopeContract]) -> Optional[ScopeViolation]:
    """Return the first edit that breaks ``contract``, or ``None``."""
    if contract is None or not edits:
        return None

    avoid_prefixes = derive_reflection_path_prefixes(normalize_reflection_list(contract.must_avoid))
    for edit in edits:
        path = edit_path(edit)
        if not path:
            continue

        if contract.reflected and not contract.tests_needed and is_test_file_path(path):
            return ScopeViolation(
                message="Scope reasoning determined new or updated tests are unnecessary for this goal.",
                path=path,
                rule="tests-not-needed",
                kind="tests-not-needed",
            )

        for prefix in avoid_prefixes:
            if path.startswith(prefix) or f"{path}/" == prefix:
                return ScopeViolation(
                    message=f"Edit to {path} conflicts with scope guidance to avoid {prefix}.",
                    path=path,
                    rule=prefix,
                    kind="forbidden-area",
                )

        violation = _check_style_scope(edit, path, contract.style_scope)
        if violation is not None:
            return violation
    return None


def format_scope_reflection_context(contract: Optional[ScopeContract]) -> str:
    """Render the contract as a prompt block."""
    if contract is None:
        return ""
    must_change = normalize_reflection_list(contract.must_change)
    must_avoid = normalize_reflection_list(contract.must_avoid)
    lines = []
    if contract.reasoning:
        lines.append(f"Summary: {contract.reasoning}")
    lines.append(f"Must change: {', '.join(must_change) or 'None noted'}")
    lines.append(f"Avoid changing: {', '.join(must_avoid) or 'None noted'}")
    lines.append(f"Must have: {', '.join(contract.must_have) or 'None noted'}")
    lines.append(f"Tests required: {'Yes' if contract.tests_needed else 'No'}")
    if contract.required_asset_paths:
        lines.append(f"Required asset paths: {', '.join(contract.required_asset_paths)}")
    if contract.style_scope is not None and contract.style_scope.mode == "targeted":
        hints = ", ".join(contract.style_scope.target_hints) or "the requested element"
        lines.append(f"Style scope: targeted at {hints}; do not change global selectors.")
    return "## Scope Reflection\n" + "\n".join(lines)


def _check_style_scope(edit: Any, path: str, scope: Optional[StyleScope]) -> Optional[ScopeViolation]:
    if scope is None or scope.mode != "targeted" or not scope.enforce_target_scoping:
        return None
    if not _STYLE_FILE_RE.search(path):
        return None
    lowered_path = path.lower()
    if any(hint in lowered_path for hint in scope.target_hints):
        return None

    text = edit_text(edit)
    if scope.forbid_global_selectors and _GLOBAL_SELECTOR_RE.search(text):
        return ScopeViolation(
            message=(
                f"Edit to {path} changes global selectors (html, body, :root, *) for a request "
                "scoped to a specific element."
            ),
            path=path,
            rule="targeted-style-scope",
            kind="style-scope-global-selector",
        )
    lowered_text = text.lower()
    if not any(hint in lowered_text for hint in scope.target_hints):
        return ScopeViolation(
            message=f"Edit to {path} does not target the element named in the request.",
            path=path,
            rule="targeted-style-scope",
            kind="style-scope-target-missing",
        )
    return None


def _first_present(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _clone_list(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return list(value)
    return value


def _iter_strings(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _merge_unique(*groups: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for item in group:
            if item and item not in merged:
                merged.append(item)
    return merged


__all__ = [
    "MAX_REFLECTION_ENTRIES",
    "ScopeContract",
    "StyleScope",
    "derive_reflection_path_prefixes",
    "derive_style_scope_contract",
    "extract_selected_asset_paths",
    "format_scope_reflection_context",
    "is_test_file_path",
    "is_test_fix_prompt",
    "normalize_reflection_list",
    "parse_scope_reflection_text",
    "resolve_scope_contract",
    "validate_edits_against_reflection",
]
