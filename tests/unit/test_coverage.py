from __future__ import annotations

from goalpilot.automation.coverage import (
    TEST_FILES_ONLY_MESSAGE,
    TEST_FOLDERS_MESSAGE,
    build_coverage_scope,
    collect_test_dir_prefixes,
    is_test_shaped_path,
    resolve_relative_segments,
    validate_edits_against_coverage,
)
from goalpilot.structured import ModifyEdit, UpsertEdit

UNCOVERED = [{"workspace": "frontend", "file": "src/App.jsx", "line": 1}]


def test_non_list_or_empty_means_not_a_coverage_goal() -> None:
    assert build_coverage_scope(None) is None
    assert build_coverage_scope([]) is None
    assert build_coverage_scope({"workspace": "frontend"}) is None


def test_invalid_entries_are_ignored_and_empty_workspace_adds_no_prefix() -> None:
    scope = build_coverage_scope(
        [
            {"workspace": 3, "file": "x.js"},
            {"workspace": " ", "file": "root.js", "lines": [1, 2.0, True, "3"]},
            {"workspace": "/backend/", "file": "server.js"},
        ]
    )

    assert scope.workspace_prefixes == ("backend/",)
    assert scope.targets[0].lines == (1, 2)


def test_is_test_shaped_path() -> None:
    assert is_test_shaped_path("frontend/src/__tests__/App.jsx")
    assert is_test_shaped_path("frontend/src/App.test.jsx")
    assert is_test_shaped_path("backend/tests/test_routes.py")
    assert not is_test_shaped_path("frontend/src/App.jsx")
    assert not is_test_shaped_path("")


def test_collect_test_dir_prefixes_limits_to_workspaces() -> None:
    known = [
        "frontend/src/__tests__/App.test.jsx",
        "frontend/src/Button.spec.jsx",
        "backend/tests/routes.test.js",
    ]

    assert collect_test_dir_prefixes(known, ["frontend/"]) == ["frontend/src/", "frontend/src/__tests__/"]


def test_source_edit_is_rejected() -> None:
    scope = build_coverage_scope(UNCOVERED)

    violation = validate_edits_against_coverage([ModifyEdit(path="frontend/src/App.jsx")], scope)

    assert violation.message == TEST_FILES_ONLY_MESSAGE
    assert violation.path == "frontend/src/App.jsx"


def test_new_test_folder_allowed_when_workspace_has_none() -> None:
    scope = build_coverage_scope(UNCOVERED, ["frontend/src/App.jsx"])

    assert validate_edits_against_coverage([UpsertEdit(path="frontend/src/__tests__/App.test.jsx")], scope) is None


def test_new_test_folder_rejected_when_existing_folders_known() -> None:
    known = ["frontend/src/__tests__/App.test.jsx"]
    scope = build_coverage_scope(UNCOVERED, known)

    violation = validate_edits_against_coverage([UpsertEdit(path="frontend/tests/App.test.jsx")], scope)

    assert violation.message == TEST_FOLDERS_MESSAGE
    assert violation.suggested_paths == ("frontend/src/__tests__",)


def test_test_file_outside_workspace_is_rejected() -> None:
    scope = build_coverage_scope(UNCOVERED)

    violation = validate_edits_against_coverage([UpsertEdit(path="backend/tests/app.test.js")], scope)

    assert violation.message == TEST_FOLDERS_MESSAGE


def test_empty_paths_are_exempt_and_no_scope_means_no_check() -> None:
    scope = build_coverage_scope(UNCOVERED)

    assert validate_edits_against_coverage([UpsertEdit(path="")], scope) is None
    assert validate_edits_against_coverage([ModifyEdit(path="frontend/src/App.jsx")], None) is None


def test_relative_segments_are_resolved_before_checks() -> None:
    assert resolve_relative_segments("frontend/./src/__tests__/App.test.jsx") == "frontend/src/__tests__/App.test.jsx"
    assert resolve_relative_segments("frontend/src/__tests__/../App.jsx") == "frontend/src/App.jsx"
    assert resolve_relative_segments("../outside/App.test.jsx") is None
    assert resolve_relative_segments("frontend/../../App.test.jsx") is None
    assert resolve_relative_segments("..") is None


def test_parent_segment_cannot_escape_test_folder() -> None:
    scope = build_coverage_scope(UNCOVERED, ["frontend/src/__tests__/App.test.jsx"])

    violation = validate_edits_against_coverage([ModifyEdit(path="frontend/src/__tests__/../App.jsx")], scope)
    assert violation is not None
    assert violation.message == TEST_FILES_ONLY_MESSAGE
    assert violation.path == "frontend/src/App.jsx"

    escaped = validate_edits_against_coverage([UpsertEdit(path="frontend/src/__tests__/../../../../x.test.jsx")], scope)
    assert escaped is not None
    assert escaped.message == TEST_FILES_ONLY_MESSAGE
    assert escaped.path == "frontend/src/__tests__/../../../../x.test.jsx"

    nested = validate_edits_against_coverage([UpsertEdit(path="frontend/src/__tests__/./App.more.test.jsx")], scope)
    assert nested is None
