"""CLI commands for inspecting and replaying goal automation runs."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from .automation.classifier import classify_instruction_only_goal
from .automation.engine import GoalCollaborators, ProjectContext, RunOptions, TouchTracker, run_goal
from .automation.reflection import derive_style_scope_contract, extract_selected_asset_paths
from .config import DEFAULT_CONFIG_NAME, ConfigError, GoalPilotConfig, load_config, write_config
from .goals import Goal
from .tools.replay import DryRunWorkspace, GoalBoard, ReplayTranscript, ScriptedModel, load_replay_document
from .tools.telemetry import TELEMETRY_LOGGER

APP_HELP = "Goal automation CLI entry point."

app = typer.Typer(help=APP_HELP)


def _configure_logging(config: GoalPilotConfig, override: Optional[str] = None) -> None:
    level_name = (override or config.logging.level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)
    TELEMETRY_LOGGER.disabled = not config.logging.telemetry


def _load_config_or_exit(config_path: Optional[Path]) -> GoalPilotConfig:
    path = config_path or Path(DEFAULT_CONFIG_NAME)
    if config_path is not None and not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")
    try:
        return load_config(path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _load_document(path: Path, label: str) -> Any:
    if not path.exists():
        raise typer.BadParameter(f"{label} not found: {path}")
    try:
        return load_replay_document(path)
    except Exception as error:
        typer.echo(f"Failed to parse {label.lower()}: {error}")
        raise typer.Exit(code=1) from error


@app.command()
def init(
    config: Path = typer.Option(Path(DEFAULT_CONFIG_NAME), "--config", help="Where to write the config file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file."),
) -> None:
    """Write the default configuration file."""
    if config.exists() and not force:
        typer.echo(f"Config already exists at {config}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config)
    typer.echo(f"Wrote default configuration to {config}.")


@app.command()
def classify(prompt: str = typer.Argument(..., help="Goal prompt text.")) -> None:
    """Print the instruction-only classification of PROMPT (or ``none``)."""
    kind = classify_instruction_only_goal(prompt)
    typer.echo(kind.value if kind is not None else "none")


@app.command()
def scope(prompt: str = typer.Argument(..., help="Goal prompt text.")) -> None:
    """Print selected asset paths and the derived style scope as JSON."""
    style_scope = derive_style_scope_contract(prompt)
    payload = {
        "requiredAssetPaths": extract_selected_asset_paths(prompt),
        "styleScope": style_scope.to_dict() if style_scope is not None else None,
    }
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def replay(
    goal_file: Path = typer.Argument(..., help="YAML/JSON goal record."),
    transcript: Path = typer.Option(..., "--transcript", help="Recorded model responses."),
    tree: Optional[Path] = typer.Option(None, "--tree", help="Repository file tree (list or nested nodes)."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to the configuration file."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
) -> None:
    """Run a goal offline against scripted model responses."""
    settings = _load_config_or_exit(config)
    _configure_logging(settings, log_level)

    goal_data = _load_document(goal_file, "Goal file")
    try:
        goal = Goal.coerce(goal_data)
        script = ReplayTranscript.from_mapping(_load_document(transcript, "Transcript"))
    except ValueError as error:
        typer.echo(f"Invalid replay input: {error}")
        raise typer.Exit(code=1) from error

    tree_data = _load_document(tree, "Tree file") if tree is not None else []
    model = ScriptedModel(script)
    workspace = DryRunWorkspace.from_tree(tree_data)
    board = GoalBoard([goal])
    tracker = TouchTracker()

    collaborators = GoalCollaborators(
        request_stage_edits=model.request_stage_edits,
        apply_edits=workspace.apply_edits,
        advance_goal_phase=board.advance_goal_phase,
        fetch_goals=board.fetch_goals,
        request_scope_reflection=model.request_scope_reflection,
        refresh_file_tree=workspace.file_tree,
    )
    options = RunOptions.from_settings(settings.automation, touch_tracker=tracker)
    context = ProjectContext(project_id="replay", project_info=f"Goal file: {goal_file.name}", file_tree=tree_data)

    outcome = asyncio.run(run_goal(goal, context, collaborators, options))

    payload = {
        "outcome": outcome.to_dict(),
        "phase": board.phases[goal.id].value,
        "requests": len(model.requests),
        "applied": workspace.applied,
        "touched": tracker.to_dict(),
    }
    typer.echo(json.dumps(payload, indent=2))
    if not outcome.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
