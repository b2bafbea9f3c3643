"""YAML configuration for goal automation runs."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .tools.paths import DEFAULT_ATTEMPT_SEQUENCE

DEFAULT_CONFIG_NAME = "goalpilot.yaml"

ALLOW_EMPTY_STAGE_ENV = "GOALPILOT_ALLOW_EMPTY_STAGE"
DISABLE_SCOPE_REFLECTION_ENV = "GOALPILOT_DISABLE_SCOPE_REFLECTION"

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "automation": {
        "tests_attempts": list(DEFAULT_ATTEMPT_SEQUENCE),
        "implementation_attempts": list(DEFAULT_ATTEMPT_SEQUENCE),
        "enable_scope_reflection": True,
        "allow_empty_stage_edits": False,
        "pause_poll_seconds": 0.25,
        "file_tree_limit": 400,
    },
    "logging": {
        "level": "INFO",
        "telemetry": True,
    },
}


class ConfigError(ValueError):
    """Raised when the configuration file cannot be loaded or validated."""


class AutomationSettings(BaseModel):
    """Per-run defaults applied to every goal."""

    model_config = ConfigDict(extra="ignore")

    tests_attempts: List[int] = Field(default_factory=lambda: list(DEFAULT_ATTEMPT_SEQUENCE))
    implementation_attempts: List[int] = Field(default_factory=lambda: list(DEFAULT_ATTEMPT_SEQUENCE))
    enable_scope_reflection: bool = True
    allow_empty_stage_edits: bool = False
    pause_poll_seconds: float = Field(default=0.25, gt=0)
    file_tree_limit: int = Field(default=400, ge=0)

    @field_validator("tests_attempts", "implementation_attempts", mode="before")
    @classmethod
    def _coerce_attempts(cls, value: Any) -> Any:
        if value is None:
            return list(DEFAULT_ATTEMPT_SEQUENCE)
        if isinstance(value, int) and not isinstance(value, bool):
            return [value]
        return value

    @field_validator("tests_attempts", "implementation_attempts")
    @classmethod
    def _positive_attempts(cls, value: List[int]) -> List[int]:
        if any(item <= 0 for item in value):
            raise ValueError("attempt indices must be positive integers")
        return value


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"
    telemetry: bool = True

    @field_validator("level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        normalised = value.strip().upper()
        if normalised not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return normalised


class GoalPilotConfig(BaseModel):
    """Top-level configuration document."""

    model_config = ConfigDict(extra="ignore")

    automation: AutomationSettings = Field(default_factory=AutomationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("automation", "logging", mode="before")
    @classmethod
    def _empty_section(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GoalPilotConfig":
        try:
            config = cls.model_validate(dict(data))
        except ValidationError as error:
            raise ConfigError(f"Invalid configuration: {error}") from error
        return config.with_env_overrides()

    def with_env_overrides(self, environ: Optional[Mapping[str, str]] = None) -> "GoalPilotConfig":
        """Apply ``GOALPILOT_*`` flags on top of file values."""
        env = os.environ if environ is None else environ
        updates: Dict[str, Any] = {}
        if ALLOW_EMPTY_STAGE_ENV in env:
            updates["allow_empty_stage_edits"] = _is_truthy(env[ALLOW_EMPTY_STAGE_ENV])
        if DISABLE_SCOPE_REFLECTION_ENV in env and _is_truthy(env[DISABLE_SCOPE_REFLECTION_ENV]):
            updates["enable_scope_reflection"] = False
        if not updates:
            return self
        automation = self.automation.model_copy(update=updates)
        return self.model_copy(update={"automation": automation})


def default_config_data() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Optional[Dict[str, Any]] = None) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data or default_config_data(), handle, sort_keys=False)


def load_config(config_path: Optional[Path] = None) -> GoalPilotConfig:
    """Load and validate the YAML configuration.

    A missing file yields the defaults (with environment overrides); a file
    that is not a mapping or holds invalid values raises :class:`ConfigError`.
    """
    if config_path is None or not config_path.exists():
        return GoalPilotConfig().with_env_overrides()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return GoalPilotConfig.from_mapping(data)


def env_flag(name: str, environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return _is_truthy(env.get(name, ""))


def _is_truthy(value: Any) -> bool:
    return str(value).strip().lower() in _TRUTHY


__all__ = [
    "ALLOW_EMPTY_STAGE_ENV",
    "AutomationSettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DISABLE_SCOPE_REFLECTION_ENV",
    "GoalPilotConfig",
    "LoggingSettings",
    "default_config_data",
    "env_flag",
    "load_config",
    "write_config",
]
