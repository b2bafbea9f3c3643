from __future__ import annotations

import json
import textwrap

import yaml
from typer.testing import CliRunner

from goalpilot.cli import app


def _write(path, text: str) -> None:
    path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")


def test_init_writes_default_config(tmp_path) -> None:
    config_path = tmp_path / "goalpilot.yaml"
    runner = CliRunner()

    result = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["automation"]["tests_attempts"] == [1, 2]

    again = runner.invoke(app, ["init", "--config", str(config_path)])
    assert again.exit_code == 1
    forced = runner.invoke(app, ["init", "--config", str(config_path), "--force"])
    assert forced.exit_code == 0


def test_classify_command() -> None:
    runner = CliRunner()

    assert runner.invoke(app, ["classify", "Stage the updated files"]).output.strip() == "stage-only"
    assert runner.invoke(app, ["classify", "Add a footer"]).output.strip() == "none"


def test_scope_command_prints_assets_and_style_scope() -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["scope", "Make the navbar blue\nSelected project assets:\n- uploads/bg.png"])

    payload = json.loads(result.output)
    assert payload["requiredAssetPaths"] == ["uploads/bg.png"]
    assert payload["styleScope"]["mode"] == "targeted"
    assert "navbar" in payload["styleScope"]["targetHints"]


def test_replay_runs_goal_offline(tmp_path) -> None:
    goal_path = tmp_path / "goal.yaml"
    transcript_path = tmp_path / "transcript.yaml"
    tree_path = tmp_path / "tree.json"
    _write(goal_path, """
        id: 1
        prompt: Add a footer
    """)
    _write(transcript_path, """
        reflection:
          testsNeeded: true
          mustChange: [frontend/src/App.jsx]
        responses:
          tests:
            - edits:
                - type: upsert
                  path: frontend/src/__tests__/Footer.test.jsx
                  content: "test('footer', () => {})"
          implementation:
            - edits:
                - type: modify
                  path: frontend/src/Footer.jsx
                  replacements: [{search: a, replace: b}]
            - edits:
                - type: modify
                  path: frontend/src/components/Footer.jsx
                  replacements: [{search: a, replace: b}]
    """)
    tree_path.write_text(json.dumps(["frontend/src/App.jsx", "frontend/src/components/Footer.jsx"]), encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["replay", str(goal_path), "--transcript", str(transcript_path), "--tree", str(tree_path)],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output[result.output.index('{\n  "outcome"'):])
    assert payload["outcome"] == {"success": True}
    assert payload["phase"] == "ready"
    assert payload["requests"] == 3
    assert [entry["path"] for entry in payload["applied"]] == [
        "frontend/src/__tests__/Footer.test.jsx",
        "frontend/src/components/Footer.jsx",
    ]
    assert payload["touched"]["frontend"] is True


def test_replay_reports_failure_exit_code(tmp_path) -> None:
    goal_path = tmp_path / "goal.json"
    transcript_path = tmp_path / "transcript.json"
    goal_path.write_text(json.dumps({"id": 2, "prompt": "Add dark mode"}), encoding="utf-8")
    transcript_path.write_text(json.dumps({"responses": {"implementation": []}}), encoding="utf-8")

    result = CliRunner().invoke(app, ["replay", str(goal_path), "--transcript", str(transcript_path)])

    assert result.exit_code == 1
    assert '"success": false' in result.output
