"""Detect goals whose whole intent is an orchestration instruction."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

from ..goals import primary_instruction


class InstructionOnlyKind(str, Enum):
    """Goals the engine completes without requesting any edits."""

    BRANCH_ONLY = "branch-only"
    STAGE_ONLY = "stage-only"
    VERIFICATION_ONLY = "verification-only"


_BRANCH_RE = re.compile(r"\bcreate (?:a |the )?(?:new )?(?:git |working |feature )?branch\b")
_STAGE_RE = re.compile(r"^stage\s|\bstage (?:the|all) (?:updated|changed|modified)\b")
_VERIFY_RE = re.compile(
    r"^(?:verify|confirm)\b"
    r"|\b(?:run|start|launch)\s+(?:the\s+)?dev server\b.*\b(?:verify|confirm|check)\b"
    r"|\b(?:verify|confirm|check)\b.*\bdev server\b"
)

_OUTCOME_NOTES = {
    InstructionOnlyKind.BRANCH_ONLY: "Branch setup handled automatically",
    InstructionOnlyKind.STAGE_ONLY: "Files are already staged after edits",
    InstructionOnlyKind.VERIFICATION_ONLY: "Verification happens automatically after edits",
}


def classify_instruction_only_goal(prompt: Any) -> Optional[InstructionOnlyKind]:
    """Classify ``prompt`` as an instruction-only goal, or return ``None``.

    Matching is a case-insensitive heuristic over the goal's primary
    instruction, so labeled follow-up prompts are judged by their current
    request rather than by quoted history.
    """
    normalized = primary_instruction(prompt).strip().lower()
    if not normalized:
        return None
    if _BRANCH_RE.search(normalized):
        return InstructionOnlyKind.BRANCH_ONLY
    if _STAGE_RE.search(normalized):
        return InstructionOnlyKind.STAGE_ONLY
    if _VERIFY_RE.search(normalized):
        return InstructionOnlyKind.VERIFICATION_ONLY
    return None


def describe_instruction_only_outcome(kind: Optional[InstructionOnlyKind]) -> str:
    if kind is None:
        return "No edits required"
    return _OUTCOME_NOTES.get(kind, "No edits required")


__all__ = [
    "InstructionOnlyKind",
    "classify_instruction_only_goal",
    "describe_instruction_only_outcome",
]
