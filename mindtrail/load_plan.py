"""Validate a task plan JSON file and print a per-task summary.

Usage:
    python -m mindtrail.load_plan plan.json
"""

import json
import sys
from pathlib import Path

from pydantic import ValidationError

from mindtrail.models import TaskPlan


def summarize_plan(plan: TaskPlan) -> list[str]:
    """One line per task: index, id, view type and guided details."""
    lines = []
    for idx, task in enumerate(plan.tasks, start=1):
        line = f"{idx}. [{task.view_type}] {task.id}: {task.title}"
        payload = task.guided_payload
        if payload is not None and payload.learning_objective:
            blanks = sum(idea.blank_count for idea in payload.key_ideas)
            line += (
                f" (guided: {len(payload.key_ideas)} key ideas, {blanks} blanks, "
                f"{len(payload.practice_questions)} practice questions)"
            )
        lines.append(line)
    return lines


def main(argv: list[str]) -> int:
    if len(argv) != 1:
        print("Usage: python -m mindtrail.load_plan plan.json")
        return 2

    plan_path = Path(argv[0])
    print(f"Loading task plan from {plan_path}...")

    # Read and validate JSON
    try:
        with open(plan_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        plan = TaskPlan.model_validate(data)
    except (OSError, json.JSONDecodeError) as e:
        print(f"✗ Could not read plan: {e}")
        return 1
    except ValidationError as e:
        print(f"✗ Invalid plan:\n{e}")
        return 1

    if plan.big_concept:
        print(f"Big concept: {plan.big_concept}")
    for line in summarize_plan(plan):
        print(f"  {line}")

    print(f"\n✓ Plan is valid ({len(plan.tasks)} tasks)")
    print("  Start the server with: uvicorn mindtrail.main:app --reload")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
