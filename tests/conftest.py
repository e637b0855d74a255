"""Shared fixtures: task plans, a scripted tutor channel and in-memory persistence fakes."""

import json
from typing import Optional

import pytest

from mindtrail.models import Task, TaskPlan

GUIDED_PAYLOAD = {
    "learningObjective": "Explain Newton's first law with an everyday example",
    "taskDesignJson": {
        "why_it_matters": {
            "meaning_anchor": "Seat belts exist because of inertia",
            "advance_organizer": "Force changes motion; no force, no change",
        }
    },
    "keyIdeas": [
        {"text": "An object keeps moving __KEY__ unless a __KEY__ acts on it", "blanks": ["uniformly", "force"]},
        {"text": "Inertia is the tendency to resist changes in motion", "blanks": []},
    ],
    "practiceQuestions": [
        {
            "question": "Which example shows inertia?",
            "options": ["A bus braking suddenly", "A stone sinking in water"],
            "correctAnswer": "A",
        },
        {"question": "Explain inertia in your own words"},
    ],
    "exitTicket": {"question": "Where did you notice inertia today?"},
}


def make_task(task_id: str, view_type: str = "mindmap_editor", guided: bool = False, **extra) -> Task:
    data = {
        "id": task_id,
        "title": f"Task {task_id}",
        "viewType": view_type,
        "description": "Build a concept map of the lesson",
        "outputGoal": "A map with at least three connected concepts",
        "evaluationCriteria": "Concepts are linked with meaningful relations",
    }
    if guided:
        data["contentPayload"] = json.dumps(GUIDED_PAYLOAD, ensure_ascii=False)
    data.update(extra)
    return Task.model_validate(data)


@pytest.fixture
def guided_task():
    return make_task("video-1", view_type="video_player", guided=True)


@pytest.fixture
def three_task_plan():
    return TaskPlan(
        tasks=[
            make_task("map-1"),
            make_task("text-1", view_type="text_editor"),
            make_task("table-1", view_type="table_editor"),
        ],
        big_concept="Newton's laws",
    )


@pytest.fixture
def guided_plan(guided_task):
    return TaskPlan(tasks=[guided_task, make_task("map-1")])


class ScriptedChannel:
    """Tutor channel returning scripted replies; Exception entries are raised."""

    def __init__(self, *replies, default: str = "Keep going!"):
        self.replies = list(replies)
        self.default = default
        self.calls: list[dict] = []

    async def send_message(self, transcript, utterance, system_instruction, language):
        self.calls.append(
            {
                "transcript": list(transcript),
                "utterance": utterance,
                "system_instruction": system_instruction,
                "language": language,
            }
        )
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


class MemorySlot:
    """Resume slot held in memory."""

    def __init__(self, value: Optional[str] = None):
        self.value = value
        self.cleared = False

    def load(self) -> Optional[str]:
        return self.value

    def save(self, value: str) -> None:
        self.value = value

    def clear(self) -> None:
        self.value = None
        self.cleared = True


class MemorySink:
    """Progress sink collecting reports."""

    def __init__(self):
        self.reports: list[tuple[int, bool, int]] = []

    def report_progress(self, percent: int, is_finished: bool, last_task_index: int) -> None:
        self.reports.append((percent, is_finished, last_task_index))


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
