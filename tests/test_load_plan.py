"""Tests for the task plan validation script."""

import json

from conftest import GUIDED_PAYLOAD
from mindtrail.load_plan import main, summarize_plan
from mindtrail.models import TaskPlan

PLAN = {
    "bigConcept": "Newton's laws",
    "tasks": [
        {"id": "video-1", "title": "Watch", "viewType": "video_player", "contentPayload": GUIDED_PAYLOAD},
        {"id": "map-1", "title": "Map it", "viewType": "mindmap_editor"},
    ],
}


def test_summarize_plan():
    """Test the per-task summary lines."""
    lines = summarize_plan(TaskPlan.model_validate(PLAN))

    assert lines == [
        "1. [video_player] video-1: Watch (guided: 2 key ideas, 2 blanks, 2 practice questions)",
        "2. [mindmap_editor] map-1: Map it",
    ]


def test_main_valid_plan(tmp_path, capsys):
    """Test validating a plan file."""
    plan_path = tmp_path / "plan.json"
    plan_path.write_text(json.dumps(PLAN, ensure_ascii=False), encoding="utf-8")

    assert main([str(plan_path)]) == 0

    out = capsys.readouterr().out
    assert "Big concept: Newton's laws" in out
    assert "✓ Plan is valid (2 tasks)" in out


def test_main_invalid_plan(tmp_path, capsys):
    """Test that schema errors are reported with exit code 1."""
    plan_path = tmp_path / "plan.json"
    plan_path.write_text(json.dumps({"tasks": []}), encoding="utf-8")

    assert main([str(plan_path)]) == 1
    assert "Invalid plan" in capsys.readouterr().out


def test_main_missing_file_and_usage(tmp_path):
    """Test unreadable files and wrong usage."""
    assert main([str(tmp_path / "missing.json")]) == 1
    assert main([]) == 2
