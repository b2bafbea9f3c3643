from __future__ import annotations

from goalpilot.structured import DeleteEdit, ModifyEdit, UpsertEdit
from goalpilot.tools.edit_parsing import parse_edits, parse_json_object


def test_parse_edits_from_fenced_json() -> None:
    raw = (
        "Here you go:\n```json\n"
        '{"edits": [{"type": "modify", "path": "src/a.js", "replacements": [{"search": "a", "replace": "b"}]},'
        ' {"type": "upsert", "path": "src/b.js", "content": "x"},'
        ' {"type": "delete", "path": "old", "recursive": true},]}\n```'
    )

    edits = parse_edits(raw)

    assert [type(edit) for edit in edits] == [ModifyEdit, UpsertEdit, DeleteEdit]
    assert edits[0].replacements[0].replace == "b"
    assert edits[2].recursive is True


def test_parse_edits_accepts_bare_arrays_and_python_literals() -> None:
    assert parse_edits('[{"type": "upsert", "path": "a.txt", "content": "hi"}]')[0].path == "a.txt"
    assert parse_edits("{'edits': [{'type': 'upsert', 'path': 'b.txt', 'content': None}]}")[0].path == "b.txt"


def test_parse_edits_never_raises() -> None:
    assert parse_edits("") == []
    assert parse_edits(None) == []
    assert parse_edits("no json at all") == []
    assert parse_edits('{"edits": "nope"}') == []
    assert parse_edits('{"edits": [{"unknown": 1}, 5]}') == []


def test_parse_json_object_with_smart_quotes() -> None:
    assert parse_json_object("Result: {“testsNeeded”: true}") == {"testsNeeded": True}
    assert parse_json_object("[1, 2]") is None
