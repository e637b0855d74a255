"""Task progression across an ordered plan.

The controller holds the current task index, restores it from a resume slot,
gates "done" requests per task, recognises tutor completion phrases and moves
the learner to the next task or into the terminal finished state.
"""

import logging
from typing import Optional, Protocol

from mindtrail.config import TUTOR_LANGUAGE
from mindtrail.errors import SessionFinishedError
from mindtrail.gates import GateRegistry
from mindtrail.heuristics import is_task_completion_message
from mindtrail.models import Task, TaskPlan
from mindtrail.prompts import completion_check_instruction, transition_instruction

# pylint: disable=broad-exception-caught

logger = logging.getLogger("mindtrail.progression")


class ResumeSlot(Protocol):
    """Single external key holding the current task index."""

    def load(self) -> Optional[str]: ...

    def save(self, value: str) -> None: ...

    def clear(self) -> None: ...


class ProgressSink(Protocol):
    """Fire-and-forget receiver of course progress."""

    def report_progress(self, percent: int, is_finished: bool, last_task_index: int) -> None: ...


def restore_index(raw: Optional[str], task_count: int) -> int:
    """Parse a stored index and clamp it into the plan; anything unparsable means 0."""
    if raw is None:
        return 0
    try:
        index = int(str(raw).strip())
    except ValueError:
        logger.warning("Ignoring invalid stored task index: %r", raw)
        return 0
    return max(0, min(index, task_count - 1))


class TaskProgressionController:
    """Current position in a TaskPlan plus completion gating."""

    def __init__(
        self,
        plan: TaskPlan,
        resume_slot: Optional[ResumeSlot] = None,
        progress_sink: Optional[ProgressSink] = None,
        language: str = TUTOR_LANGUAGE,
    ):
        self.plan = plan
        self.resume_slot = resume_slot
        self.progress_sink = progress_sink
        self.language = language
        self.finished = False
        self.completed_tasks: set[str] = set()
        self._gates = GateRegistry("task")
        self.current_index = self._load_index()

    # ------------------------------------------------------------------
    # Position
    # ------------------------------------------------------------------

    @property
    def task_count(self) -> int:
        return len(self.plan.tasks)

    @property
    def current_task(self) -> Task:
        return self.plan.tasks[self.current_index]

    @property
    def is_last_task(self) -> bool:
        return self.current_index == self.task_count - 1

    @property
    def current_task_complete(self) -> bool:
        """True once the tutor has confirmed the current task."""
        return self.current_task.id in self.completed_tasks

    @property
    def done_in_flight(self) -> bool:
        return self._gates.get(self.current_task.id).busy

    # ------------------------------------------------------------------
    # Completion gating
    # ------------------------------------------------------------------

    def completion_check_instruction(self, surface_context: str) -> str:
        return completion_check_instruction(self.current_task, surface_context, self.language)

    def begin_done(self, surface_context: str) -> Optional[tuple[str, str]]:
        """Claim the current task's gate.

        Returns:
            (task_id, instruction), or None when a check is already in flight
        """
        self._ensure_active()
        task = self.current_task
        if not self._gates.get(task.id).try_acquire():
            logger.info("Ignoring duplicate done request for task %s", task.id)
            return None
        return task.id, self.completion_check_instruction(surface_context)

    def end_done(self, task_id: str) -> None:
        self._gates.get(task_id).release()

    def apply_verdict(self, task_id: str, approved: bool) -> bool:
        """Settle the completion check requested for `task_id`.

        A verdict for a task that is no longer current is dropped.
        """
        if self.finished:
            return False
        if task_id != self.current_task.id:
            logger.info("Dropping completion verdict for task %s (now at %s)", task_id, self.current_task.id)
            return self.current_task_complete
        if approved and task_id not in self.completed_tasks:
            logger.info("Task %s confirmed complete by tutor", task_id)
            self.completed_tasks.add(task_id)
        return self.current_task_complete

    def observe_reply(self, text: str, task_id: Optional[str] = None) -> bool:
        """Mark the task complete when a completion-check reply states completion."""
        if self.finished:
            return False
        return self.apply_verdict(task_id or self.current_task.id, is_task_completion_message(text))

    def mark_current_complete(self) -> None:
        """Record completion decided elsewhere (the guided flow's final step)."""
        self.completed_tasks.add(self.current_task.id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self, previous_context: str) -> Optional[str]:
        """Move to the next task.

        Persists the new index, reports progress and returns the single
        transition instruction for the tutor. On the last task the session
        finishes instead and None is returned.

        Raises:
            SessionFinishedError: the session already finished
        """
        self._ensure_active()
        if self.is_last_task:
            self.finish()
            return None

        previous_index = self.current_index
        previous_task = self.current_task
        self.current_index += 1
        logger.info(
            "→ ENTERING task %d/%d (%s)", self.current_index + 1, self.task_count, self.current_task.id
        )

        self._save_index()
        self._report(round((previous_index + 1) / self.task_count * 100), False, self.current_index)

        return transition_instruction(
            previous_task, previous_context, self.current_task, self.language
        )

    def finish(self) -> None:
        """Enter the terminal finished state.

        Raises:
            SessionFinishedError: the session already finished
        """
        self._ensure_active()
        self.finished = True
        logger.info("← Session finished at task %d/%d", self.current_index + 1, self.task_count)
        self._report(100, True, self.task_count - 1)

    def restart(self) -> None:
        """Clear the resume slot and return to the first task."""
        self.current_index = 0
        self.finished = False
        self.completed_tasks.clear()
        self._gates = GateRegistry("task")
        if self.resume_slot is not None:
            try:
                self.resume_slot.clear()
            except Exception as e:
                logger.error("Failed to clear resume slot: %s", e)
        logger.info("Progression restarted")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_active(self) -> None:
        if self.finished:
            raise SessionFinishedError("Session is finished; restart to continue")

    def _load_index(self) -> int:
        if self.resume_slot is None:
            return 0
        try:
            raw = self.resume_slot.load()
        except Exception as e:
            logger.error("Failed to read resume slot: %s", e)
            return 0
        index = restore_index(raw, self.task_count)
        if index:
            logger.info("Resuming at task %d/%d", index + 1, self.task_count)
        return index

    def _save_index(self) -> None:
        if self.resume_slot is None:
            return
        try:
            self.resume_slot.save(str(self.current_index))
        except Exception as e:
            logger.error("Failed to save resume slot: %s", e)

    def _report(self, percent: int, is_finished: bool, last_task_index: int) -> None:
        if self.progress_sink is None:
            return
        try:
            self.progress_sink.report_progress(percent, is_finished, last_task_index)
        except Exception as e:
            logger.error("Progress report failed: %s", e)
