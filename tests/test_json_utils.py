from __future__ import annotations

import json
from datetime import date

import pytest

from pathtrace.utils.json_utils import iter_step_lines, read_json, read_records, write_json


def test_write_json_replaces_target_in_place(tmp_path):
    target = tmp_path / "out" / "annotated.json"
    write_json(target, {"root": {"id": "a"}, "when": date(2026, 1, 2), "path": tmp_path}, indent=4)

    text = target.read_text(encoding="utf-8")
    assert text.endswith("\n")
    assert '    "root"' in text
    data = read_json(target)
    assert data["when"] == "2026-01-02"
    assert data["path"] == str(tmp_path)

    write_json(target, {"root": None})
    assert read_json(target) == {"root": None}
    assert [p.name for p in target.parent.iterdir()] == ["annotated.json"]


def test_iter_step_lines_skips_blank_and_non_object_lines(tmp_path):
    path = tmp_path / "steps.jsonl"
    path.write_text('{"stepName": "a"}\n\n[1, 2]\n"text"\n{"stepName": "b"}\n', encoding="utf-8")
    assert [r["stepName"] for r in iter_step_lines(path)] == ["a", "b"]


def test_iter_step_lines_reports_line_number(tmp_path):
    path = tmp_path / "steps.jsonl"
    path.write_text('{"stepName": "a"}\n{"stepName": \n', encoding="utf-8")
    with pytest.raises(ValueError) as exc_info:
        list(iter_step_lines(path))
    assert f"{path}:2:" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, json.JSONDecodeError)


def test_read_records_accepts_each_export_shape(tmp_path):
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"steps": [{"stepName": "a"}]}), encoding="utf-8")
    assert read_records(wrapped) == [{"stepName": "a"}]

    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([{"stepName": "b"}]), encoding="utf-8")
    assert read_records(bare) == [{"stepName": "b"}]

    lines = tmp_path / "lines.jsonl"
    lines.write_text('{"stepName": "c"}\n', encoding="utf-8")
    assert read_records(lines) == [{"stepName": "c"}]

    scalar = tmp_path / "scalar.json"
    scalar.write_text("42", encoding="utf-8")
    assert read_records(scalar) == []
