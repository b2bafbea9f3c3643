"""Recover edit lists and JSON objects from noisy model output."""

from __future__ import annotations

import ast
import json
import re
from typing import Any

from ..structured import Edit, coerce_edit


def parse_edits(raw_text: Any) -> list[Edit]:
    """Extract typed edits from raw model output.

    Accepts ``{"edits": [...]}`` objects, bare arrays, fenced JSON and
    near-JSON (smart quotes, trailing commas, Python literals). Never raises;
    unparsable or non-string input yields an empty list.
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return []

    payload = extract_json_payload(raw_text, key="edits")
    if isinstance(payload, dict):
        entries = payload.get("edits")
    else:
        entries = payload
    if not isinstance(entries, list):
        return []

    edits: list[Edit] = []
    for entry in entries:
        edit = coerce_edit(entry)
        if edit is not None:
            edits.append(edit)
    return edits


def parse_json_object(raw_text: Any) -> dict[str, Any] | None:
    """Return the first JSON object embedded in ``raw_text`` or ``None``."""
    if not isinstance(raw_text, str) or not raw_text.strip():
        return None
    payload = extract_json_payload(raw_text)
    return payload if isinstance(payload, dict) else None


def extract_json_payload(raw_text: str, *, key: str | None = None) -> Any:
    """Parse the most plausible JSON value found in ``raw_text``."""
    text = _normalise_json_string(raw_text.strip())
    candidates: list[str] = [text]
    stripped = _strip_code_fence(text)
    if stripped not in candidates:
        candidates.append(stripped)
    if key:
        keyed = _extract_balanced(text, start=_find_key_object_start(text, key))
        if keyed:
            candidates.append(keyed)
    embedded = _extract_balanced(stripped)
    if embedded and embedded not in candidates:
        candidates.append(embedded)

    for candidate in candidates:
        parsed = _loads_loose(candidate)
        if parsed is not None:
            return parsed
    return None


def _loads_loose(candidate: str) -> Any | None:
    if not candidate:
        return None
    for attempt in (candidate, _strip_trailing_commas(candidate), _collapse_double_braces(candidate)):
        try:
            return json.loads(attempt)
        except json.JSONDecodeError:
            pythonic = _coerce_python_literal(attempt)
            if pythonic is not None:
                return pythonic
    return None


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if "```" not in payload:
        return payload
    match = re.search(r"```(?:json)?\s*\n?(.*?)```", payload, re.IGNORECASE | re.DOTALL)
    if not match:
        return payload
    return match.group(1).strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise common non-JSON characters emitted by models."""
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0xFF07: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _collapse_double_braces(payload: str) -> str:
    if not payload.startswith("{{") or not payload.endswith("}}"):
        return payload
    return payload[1:-1]


def _find_key_object_start(text: str, key: str) -> int | None:
    match = re.search(r"\{\s*[\"']?" + re.escape(key) + r"[\"']?\s*:", text)
    return match.start() if match else None


def _extract_balanced(text: str, *, start: int | None = None) -> str | None:
    """Return the first balanced ``{...}``/``[...]`` block, honouring strings."""
    if start is None:
        positions = [index for index in (text.find("{"), text.find("[")) if index >= 0]
        if not positions:
            return None
        start = min(positions)

    expected: list[str] = []
    quote: str | None = None
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "\"'":
            quote = char
        elif char in "{[":
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected:
                return _strip_trailing_commas(text[start : index + 1].strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    literal_source = re.sub(r"\btrue\b", "True", candidate)
    literal_source = re.sub(r"\bfalse\b", "False", literal_source)
    literal_source = re.sub(r"\bnull\b", "None", literal_source)
    try:
        literal = ast.literal_eval(literal_source)
    except (SyntaxError, ValueError, MemoryError, RecursionError):
        return None
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    """Convert Python literals into JSON-compatible structures recursively."""
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


__all__ = ["extract_json_payload", "parse_edits", "parse_json_object"]
