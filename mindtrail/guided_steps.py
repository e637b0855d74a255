"""Five-stage guided flow for tasks that carry a learning objective.

Stages: Clarify Objective -> Consume Material -> Summarize Key Ideas ->
Practice -> Reflect. The learner says "done", the tutor verifies the stage
and appends the pass marker when it approves. The machine never judges
answers itself; it only looks for the marker.
"""

import json
import logging
from typing import Literal, Optional

from mindtrail.gates import GateRegistry
from mindtrail.heuristics import has_pass_marker, strip_pass_marker
from mindtrail.models import GuidedPayload, Task, split_question_options
from mindtrail.prompts import GUIDED_STEP_TITLES, step_verification_instruction

logger = logging.getLogger("mindtrail.guided_steps")

STEP_COUNT = len(GUIDED_STEP_TITLES)

# Reading/viewing stages the tutor approves unconditionally
LIGHTWEIGHT_STEPS = (1, 2)

AdvanceOutcome = Literal["advanced", "handoff", "blocked"]


class GuidedStepMachine:
    """Stage state, learner artifacts and marker gating for one guided task."""

    def __init__(self, task: Task, payload: GuidedPayload):
        self.task = task
        self.payload = payload
        self.step = 1
        self.max_step_reached = 1
        self.advance_offered = False
        self.completed = False

        self.blank_answers: dict[tuple[int, int], str] = {}
        self.choice_answers: dict[int, int] = {}
        self.practice_text_answers: dict[int, str] = {}
        self.exit_ticket_answer = ""

        self._gates = GateRegistry(f"guided:{task.id}")

    @classmethod
    def for_task(cls, task: Task) -> Optional["GuidedStepMachine"]:
        """Build a machine when the task carries a learning objective."""
        payload = task.guided_payload
        if payload is None or payload.learning_objective is None:
            return None
        return cls(task, payload)

    @property
    def step_title(self) -> str:
        return GUIDED_STEP_TITLES[self.step - 1]

    @property
    def done_in_flight(self) -> bool:
        return self._gates.get(self.step).busy

    # ------------------------------------------------------------------
    # Learner artifacts
    # ------------------------------------------------------------------

    def fill_blank(self, idea_index: int, blank_index: int, value: str) -> None:
        """Record one blank answer. Ideas without placeholders take one free answer."""
        if not 0 <= idea_index < len(self.payload.key_ideas):
            raise ValueError(f"Unknown key idea: {idea_index}")
        slots = max(self.payload.key_ideas[idea_index].blank_count, 1)
        if not 0 <= blank_index < slots:
            raise ValueError(f"Key idea {idea_index} has no blank {blank_index}")
        self.blank_answers[(idea_index, blank_index)] = value

    def choose_option(self, question_index: int, option_index: int) -> None:
        options = self._options(question_index)
        if not 0 <= option_index < len(options):
            raise ValueError(f"Question {question_index} has no option {option_index}")
        self.choice_answers[question_index] = option_index

    def answer_practice(self, question_index: int, text: str) -> None:
        self._options(question_index)
        self.practice_text_answers[question_index] = text

    def answer_exit_ticket(self, text: str) -> None:
        self.exit_ticket_answer = text

    def _options(self, question_index: int) -> list[str]:
        if not 0 <= question_index < len(self.payload.practice_questions):
            raise ValueError(f"Unknown practice question: {question_index}")
        question = self.payload.practice_questions[question_index]
        return split_question_options(question.question, question.options)[1]

    # ------------------------------------------------------------------
    # Progress description
    # ------------------------------------------------------------------

    def key_idea_answers(self) -> list[list[str]]:
        answers = []
        for idx, idea in enumerate(self.payload.key_ideas):
            slots = max(idea.blank_count, 1)
            answers.append([self.blank_answers.get((idx, b), "") for b in range(slots)])
        return answers

    def progress_summary(self) -> str:
        """Describe the learner's artifacts for the current stage."""
        prefix = f'Current step "{self.step_title}":'
        if self.step == 1:
            return f"{prefix} the learner has read the learning objective."
        if self.step == 2:
            return f"{prefix} the learner has gone through the material."
        if self.step == 3:
            answers = self.key_idea_answers()
            total = sum(len(a) for a in answers)
            filled = sum(1 for a in answers for value in a if value.strip())
            return (
                f"{prefix} blanks filled {filled}/{total}. "
                f"Learner answers: {json.dumps(answers, ensure_ascii=False)}"
            )
        if self.step == 4:
            lines = []
            answered = 0
            for idx, question in enumerate(self.payload.practice_questions):
                options = split_question_options(question.question, question.options)[1]
                if options and idx in self.choice_answers:
                    choice = self.choice_answers[idx]
                    lines.append(f"Q{idx + 1}: {chr(65 + choice)}. {options[choice]}")
                    answered += 1
                elif not options and self.practice_text_answers.get(idx, "").strip():
                    lines.append(f"Q{idx + 1}: {self.practice_text_answers[idx]}")
                    answered += 1
                else:
                    lines.append(f"Q{idx + 1}: (unanswered)")
            return f"{prefix} answered {answered}/{len(self.payload.practice_questions)}. " + "; ".join(lines)
        return f"{prefix} exit ticket answer: {self.exit_ticket_answer or '(empty)'}"

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def begin_done(self) -> Optional[tuple[int, str]]:
        """Claim the current stage's gate and build its verification instruction.

        Returns:
            (stage, instruction), or None when a request for this stage is
            already in flight
        """
        gate = self._gates.get(self.step)
        if not gate.try_acquire():
            logger.info("Ignoring duplicate done request for guided step %d", self.step)
            return None
        instruction = step_verification_instruction(
            self.step,
            self.task,
            self.progress_summary(),
            lightweight=self.step in LIGHTWEIGHT_STEPS,
        )
        return self.step, instruction

    def end_done(self, step: int) -> None:
        """Release the gate claimed by begin_done."""
        self._gates.get(step).release()

    def apply_verdict(self, step: int, approved: bool) -> bool:
        """Settle the verification requested for `step`.

        The latest verdict decides the offer: a rejection withdraws an earlier
        approval. A verdict for a stage the learner has since left is dropped.
        """
        if step != self.step:
            logger.info("Dropping verdict for guided step %d (now at step %d)", step, self.step)
            return self.advance_offered
        self.advance_offered = approved
        logger.info("Step %d %s by tutor", step, "approved" if approved else "not approved")
        return self.advance_offered

    def observe_reply(self, text: str, step: Optional[int] = None) -> bool:
        """Offer advancement if and only if the reply carries the pass marker."""
        return self.apply_verdict(self.step if step is None else step, has_pass_marker(text))

    def advance(self) -> AdvanceOutcome:
        """Move past an approved stage. After the last stage, hand off to the task flow."""
        if not self.advance_offered:
            return "blocked"
        self.advance_offered = False
        if self.step < STEP_COUNT:
            logger.info("→ ENTERING guided step %d (%s)", self.step + 1, GUIDED_STEP_TITLES[self.step])
            self.step += 1
            self.max_step_reached = max(self.max_step_reached, self.step)
            return "advanced"
        self.completed = True
        logger.info("← Guided flow finished for task %s", self.task.id)
        return "handoff"

    def enter(self, step: int) -> None:
        """Revisit a stage already reached; artifacts are kept."""
        if not 1 <= step <= self.max_step_reached:
            raise ValueError(f"Step {step} has not been reached yet (max {self.max_step_reached})")
        if step != self.step:
            self.step = step
            self.advance_offered = False

    @staticmethod
    def strip_marker(reply: str) -> str:
        return strip_pass_marker(reply)
