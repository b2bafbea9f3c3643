"""Shared stage enumerations and execution ordering for goal automation."""

from __future__ import annotations

from enum import Enum


class StageName(str, Enum):
    """Edit-generation stages executed for every goal run."""

    TESTS = "tests"
    IMPLEMENTATION = "implementation"
    VERIFICATION = "verification"


class GoalPhase(str, Enum):
    """Externally tracked lifecycle phases of a goal."""

    PLANNING = "planning"
    TESTING = "testing"
    IMPLEMENTING = "implementing"
    VERIFYING = "verifying"
    READY = "ready"


STAGE_SEQUENCE = [
    StageName.TESTS,
    StageName.IMPLEMENTATION,
    StageName.VERIFICATION,
]

INSTRUCTION_ONLY_PHASES = [
    GoalPhase.TESTING,
    GoalPhase.IMPLEMENTING,
    GoalPhase.VERIFYING,
    GoalPhase.READY,
]


__all__ = ["GoalPhase", "INSTRUCTION_ONLY_PHASES", "STAGE_SEQUENCE", "StageName"]
