"""Path and telemetry helpers used by the automation engine."""

from .paths import (
    DEFAULT_ATTEMPT_SEQUENCE,
    MAX_SUGGESTED_PATHS,
    flatten_file_tree,
    normalize_repo_path,
    resolve_attempt_sequence,
    suggest_paths_by_basename,
)
from .telemetry import TELEMETRY_LOGGER, automation_log

__all__ = [
    "DEFAULT_ATTEMPT_SEQUENCE",
    "MAX_SUGGESTED_PATHS",
    "TELEMETRY_LOGGER",
    "automation_log",
    "flatten_file_tree",
    "normalize_repo_path",
    "resolve_attempt_sequence",
    "suggest_paths_by_basename",
]
