"""Learning session orchestration.

LearningSession is the single owner of a learner's mutable state: the
transcript, the action log, the current task's editors and the progression
machines. HTTP handlers receive it explicitly; nothing here is global.
"""

import json
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal, Optional, TypedDict

from mindtrail.config import IDLE_POLL_SECONDS, IDLE_THRESHOLD_SECONDS, RENDER_DEBOUNCE_MS, TUTOR_LANGUAGE
from mindtrail.diagram import ConversionResult, markup_to_graph
from mindtrail.errors import EntityNotFoundError, MindtrailError, SessionFinishedError
from mindtrail.graph_editor import GraphChange, GraphEditor, MarkupView
from mindtrail.guidance import GuidanceTriggerEngine, IdleWatcher
from mindtrail.guided_steps import GuidedStepMachine
from mindtrail.metrics import extract_engagement_metrics
from mindtrail.models import (
    ChatMessage,
    EdgeKind,
    EngagementMetrics,
    GuidedArtifactRequest,
    NodeKind,
    Position,
    Task,
    TaskPlan,
    VisualizationEdge,
    VisualizationGraph,
    VisualizationNode,
)
from mindtrail.progression import ProgressSink, ResumeSlot, TaskProgressionController
from mindtrail.prompts import (
    GUIDED_STEP_TITLES,
    apology_message,
    button_utterance,
    stuck_instruction,
    tutor_instruction,
)
from mindtrail.text_dsl import parse_text
from mindtrail.tutor_flow import create_done_graph, initial_state
from mindtrail.tutor_channel import TutorChannel

# pylint: disable=broad-exception-caught

logger = logging.getLogger("mindtrail.session")

# A done click within this window after an edit that followed an earlier done
# counts as one improvement cycle
IMPROVEMENT_WINDOW_SECONDS = 300

ReportGenerator = Callable[[str, EngagementMetrics], Awaitable[Any]]
AdvanceOutcome = Literal["step", "task", "finished", "blocked"]
Surface = Literal["mindmap", "table", "text", "math"]

_ARTIFACT_LABELS = {
    "blank": "key idea blank",
    "choice": "practice choice",
    "practice_text": "practice answer",
    "exit_ticket": "exit ticket",
}

_VIEWING_CONTEXT = {
    "image_gallery": "Learner is viewing an image for this task.",
    "video_player": "Learner is watching a video.",
    "interactive_experiment": "Learner is performing an interactive experiment.",
}


class GuidedStateDict(TypedDict):
    """Type definition for the guided flow part of a session snapshot."""

    step: int
    title: str
    max_step_reached: int
    advance_offered: bool
    completed: bool
    done_in_flight: bool


class SessionStateDict(TypedDict):
    """Type definition for a JSON-ready session snapshot."""

    session_id: str
    task_index: int
    task_count: int
    task: dict
    finished: bool
    advance_offered: bool
    guided: Optional[GuidedStateDict]
    graph: dict
    progress: dict
    markup: Optional[str]
    diagnostic: Optional[str]
    surfaces: dict
    messages: list[dict]
    edit_counts: dict[str, int]
    improvement_count: int
    metrics: Optional[dict]


class LearningSession:
    """One learner working through one TaskPlan."""

    def __init__(
        self,
        plan: TaskPlan,
        channel: TutorChannel,
        resume_slot: Optional[ResumeSlot] = None,
        progress_sink: Optional[ProgressSink] = None,
        language: str = TUTOR_LANGUAGE,
        report_generator: Optional[ReportGenerator] = None,
        on_api_key_error: Optional[Callable[[], None]] = None,
        session_id: Optional[str] = None,
        idle_threshold: float = IDLE_THRESHOLD_SECONDS,
        idle_poll_seconds: float = IDLE_POLL_SECONDS,
        render_delay_ms: int = RENDER_DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.plan = plan
        self.channel = channel
        self.language = language
        self.report_generator = report_generator
        self.on_api_key_error = on_api_key_error
        self.idle_poll_seconds = idle_poll_seconds
        self.render_delay_ms = render_delay_ms
        self._clock = clock
        self._wall_clock = wall_clock

        self.progression = TaskProgressionController(plan, resume_slot, progress_sink, language)
        self.guidance = GuidanceTriggerEngine(idle_threshold, clock=clock)
        self.done_flow = create_done_graph(channel)

        self.transcript: list[ChatMessage] = []
        self.log: list[str] = []
        self.metrics: Optional[EngagementMetrics] = None
        self.report: Any = None
        self.improvement_count = 0

        self.editor: Optional[GraphEditor] = None
        self.markup_view: Optional[MarkupView] = None
        self.idle_watcher: Optional[IdleWatcher] = None
        self.guided: Optional[GuidedStepMachine] = None
        self._pending_guidance: list[str] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        # Bumped on every task entry; in-flight verdicts from older visits are dropped
        self._task_visit = 0

        self._enter_task()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_task(self) -> Task:
        return self.progression.current_task

    @property
    def finished(self) -> bool:
        return self.progression.finished

    @property
    def guided_active(self) -> bool:
        return self.guided is not None and not self.guided.completed

    @property
    def advance_offered(self) -> bool:
        """Whether the learner is currently offered an advance affordance."""
        if self.finished:
            return False
        if self.guided_active:
            return self.guided.advance_offered
        return self.progression.current_task_complete

    def surface_context(self) -> str:
        """Describe the learner's work on the current task's surface."""
        view = self.current_task.view_type
        if view == "mindmap_editor":
            graph = self.editor.graph
            if graph.type == "mindmap":
                self.markup_view.debouncer.flush()
                body = self.markup_view.markup or json.dumps(graph.to_dict(), ensure_ascii=False)
                context = f"Learner's mind map:\n{body}"
            else:
                labels = ", ".join(n.label for n in graph.nodes)
                context = (
                    f"Learner's {graph.type}:\nNodes: {labels}\nEdges: {len(graph.edges)} connections\n"
                    f"{json.dumps(graph.to_dict(), ensure_ascii=False)}"
                )
            confusion = graph.confusion_labels()
            if confusion:
                context += f"\nConfusion points: {', '.join(confusion)}"
            return context
        if view == "table_editor":
            table = self.surfaces["table"]
            return (
                f"Learner's table:\nColumns: {', '.join(str(c) for c in table.get('columns', []))}\n"
                f"Rows: {json.dumps(table.get('rows', []), ensure_ascii=False)}"
            )
        if view == "text_editor":
            return f"Learner's text:\n{self.surfaces['text']}"
        if view == "math_editor":
            return f"Learner's math work:\n{self.surfaces['math']}"
        return _VIEWING_CONTEXT.get(view, f"Learner is working on a {view} task.")

    def snapshot(self) -> SessionStateDict:
        self.markup_view.debouncer.flush()
        guided: Optional[GuidedStateDict] = None
        if self.guided is not None:
            guided = {
                "step": self.guided.step,
                "title": self.guided.step_title,
                "max_step_reached": self.guided.max_step_reached,
                "advance_offered": self.guided.advance_offered,
                "completed": self.guided.completed,
                "done_in_flight": self.guided.done_in_flight,
            }
        return {
            "session_id": self.session_id,
            "task_index": self.progression.current_index,
            "task_count": self.progression.task_count,
            "task": self.current_task.model_dump(by_alias=True),
            "finished": self.finished,
            "advance_offered": self.advance_offered,
            "guided": guided,
            "graph": self.editor.graph.to_dict(),
            "progress": self.editor.progress.model_dump(),
            "markup": self.markup_view.markup,
            "diagnostic": self.markup_view.diagnostic,
            "surfaces": dict(self.surfaces),
            "messages": [
                {"role": m.role, "text": m.display_text, "timestamp": m.timestamp}
                for m in self.transcript
            ],
            "edit_counts": dict(self.edit_counts),
            "improvement_count": self.improvement_count,
            "metrics": self.metrics.model_dump() if self.metrics else None,
        }

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> Optional[str]:
        """Send a learner message. Returns the tutor reply for display, or None on failure."""
        self._ensure_active()
        text = text.strip()
        if not text:
            raise ValueError("Message cannot be empty")
        self._add_log(f'User Input: "{text}"')
        return await self._converse(text, self._tutor_instruction())

    async def request_guidance(self, prompt: str) -> Optional[str]:
        """Deliver a hidden guidance note; only the tutor reply enters the transcript."""
        if self.finished:
            return None
        return await self._ask(prompt, self._tutor_instruction())

    async def stuck(self) -> Optional[str]:
        """Ask for one hint about the current step or task."""
        self._ensure_active()
        self._add_log("Clicked I'm stuck")
        guided_context = None
        if self.guided_active:
            guided_context = (
                f"\nGuided step {self.guided.step}/{len(GUIDED_STEP_TITLES)}: {self.guided.step_title}\n"
                f"{self.guided.progress_summary()}"
            )
        note = stuck_instruction(self.surface_context(), guided_context)
        return await self._converse(button_utterance("stuck", self.language), self._tutor_instruction(note))

    async def done(self) -> Optional[str]:
        """Request verification of the current guided step or task.

        The verdict is settled against the task and step that asked for it;
        if the learner has moved on by the time the reply arrives, the reply
        is shown but decides nothing.

        Returns the tutor reply for display, or None when a request for the
        same step or task is already in flight or the tutor failed.
        """
        self._ensure_active()
        visit = self._task_visit
        guided = self.guided if self.guided_active else None
        if guided is not None:
            claim = guided.begin_done()
            if claim is None:
                return None
            key, hidden = claim
            release = guided.end_done
            mode = "guided_step"
        else:
            claim = self.progression.begin_done(self.surface_context())
            if claim is None:
                return None
            key, hidden = claim
            release = self.progression.end_done
            mode = "task_completion"

        try:
            self._track_improvement()
            self._add_log("Clicked I'm done")
            utterance = button_utterance("done", self.language)
            self.transcript.append(ChatMessage(role="learner", text=utterance))
            state = initial_state(
                mode,
                self.transcript[:-1],
                utterance,
                self._tutor_instruction(hidden),
                self.language,
            )
            result = await self._guarded(self.done_flow.ainvoke(state))
            if result is None:
                return None
            reply = result["reply"] or ""
            self._record_reply(reply)
            if self.finished or visit != self._task_visit:
                logger.info("Dropping done verdict for %s: learner moved on", key)
            elif guided is not None:
                guided.apply_verdict(key, result["approved"])
            else:
                self.progression.apply_verdict(key, result["approved"])
            return ChatMessage(role="tutor", text=reply).display_text
        finally:
            release(key)

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    async def advance(self, skip_guided: bool = False) -> AdvanceOutcome:
        """Advance one guided step, or move on to the next task.

        Raises:
            SessionFinishedError: the session already finished
        """
        self._ensure_active()
        if self.guided_active and not skip_guided:
            outcome = self.guided.advance()
            if outcome == "blocked":
                return "blocked"
            if outcome == "advanced":
                self._add_log(f"Entered guided step {self.guided.step}: {self.guided.step_title}")
                return "step"
            self.progression.mark_current_complete()

        previous_context = self.surface_context()
        instruction = self.progression.advance(previous_context)
        if instruction is None:
            await self._complete_session()
            return "finished"

        self._enter_task()
        self._add_log(
            f"Started Task {self.progression.current_index + 1}: {self.current_task.title}"
        )
        await self._ask(instruction, self._tutor_instruction())
        return "task"

    def require_guided(self) -> GuidedStepMachine:
        self._ensure_active()
        if self.guided is None:
            raise MindtrailError("Current task has no guided steps")
        return self.guided

    def enter_guided_step(self, step: int) -> None:
        guided = self.require_guided()
        guided.enter(step)
        self._add_log(f"Revisited guided step {step}: {guided.step_title}")

    def record_guided_artifact(self, request: GuidedArtifactRequest) -> None:
        """Store one learner artifact of the guided flow."""
        guided = self.require_guided()
        if request.artifact == "blank":
            guided.fill_blank(request.idea_index, request.blank_index, request.value)
        elif request.artifact == "choice":
            guided.choose_option(request.question_index, request.option_index)
        elif request.artifact == "practice_text":
            guided.answer_practice(request.question_index, request.value)
        else:
            guided.answer_exit_ticket(request.value)
        self._add_log(f"Guided step {guided.step} answer saved: {_ARTIFACT_LABELS[request.artifact]}")

    async def finish(self) -> EngagementMetrics:
        """Finish the course from any task.

        Raises:
            SessionFinishedError: the session already finished
        """
        self.progression.finish()
        return await self._complete_session()

    def restart(self) -> None:
        """Return to the first task with an empty transcript and log."""
        self.progression.restart()
        self.transcript.clear()
        self.log.clear()
        self.metrics = None
        self.report = None
        self.improvement_count = 0
        self._enter_task()
        logger.info("Session %s restarted", self.session_id)

    def close(self) -> None:
        """Stop background work owned by the session."""
        if self.idle_watcher is not None:
            self.idle_watcher.cancel()
        if self.markup_view is not None:
            self.markup_view.close()
        if self._unsubscribe is not None:
            self._unsubscribe()

    # ------------------------------------------------------------------
    # Graph editing
    # ------------------------------------------------------------------

    async def add_node(
        self, label: str, kind: NodeKind = "concept", position: Optional[Position] = None
    ) -> VisualizationNode:
        self._ensure_active()
        node = self.editor.add_node(label, kind, position)
        await self._flush_guidance()
        return node

    async def update_node(
        self,
        node_id: str,
        label: Optional[str] = None,
        position: Optional[Position] = None,
        kind: Optional[NodeKind] = None,
    ) -> VisualizationNode:
        self._ensure_active()
        node = self.editor.update_node(node_id, label=label, position=position, kind=kind)
        await self._flush_guidance()
        return node

    async def mark_confusion(self, node_id: str) -> VisualizationNode:
        self._ensure_active()
        node = self.editor.mark_confusion(node_id)
        await self._flush_guidance()
        return node

    async def delete_node(self, node_id: str) -> None:
        self._ensure_active()
        self.editor.delete_node(node_id)

    async def add_edge(
        self, source: str, target: str, label: Optional[str] = None, kind: EdgeKind = "hierarchical"
    ) -> VisualizationEdge:
        self._ensure_active()
        edge = self.editor.add_edge(source, target, label, kind)
        await self._flush_guidance()
        return edge

    async def delete_edge(self, edge_id: str) -> None:
        self._ensure_active()
        self.editor.delete_edge(edge_id)

    async def apply_dsl(self, text: str) -> VisualizationGraph:
        """Replace the graph with one parsed from the text DSL."""
        self._ensure_active()
        graph = parse_text(text, self.editor.graph.type)
        self.editor.replace(graph)
        await self._flush_guidance()
        return self.editor.graph

    async def apply_markup(self, code: str) -> ConversionResult:
        """Replace the graph with one parsed from diagram markup.

        When nothing could be parsed the previous graph stays and the
        diagnostic is surfaced instead.
        """
        self._ensure_active()
        result = markup_to_graph(code)
        # A pending render would overwrite the diagnostic set below
        self.markup_view.debouncer.flush()
        if not result.graph.nodes and result.diagnostic:
            logger.warning("Markup rejected, keeping previous graph: %s", result.diagnostic)
            self.markup_view.diagnostic = result.diagnostic
            return result
        self.editor.replace(result.graph)
        self.markup_view.debouncer.flush()
        self.markup_view.diagnostic = result.diagnostic
        await self._flush_guidance()
        return result

    def update_surface(self, surface: Surface, content: Any) -> None:
        """Store the content of a table, text or math editor."""
        self._ensure_active()
        if surface not in ("table", "text", "math"):
            raise ValueError(f"Unknown surface: {surface}")
        if surface == "table":
            if not isinstance(content, dict):
                raise ValueError("Table content must be an object with columns and rows")
            content = {"columns": list(content.get("columns", [])), "rows": list(content.get("rows", []))}
        else:
            content = str(content or "")
        self.surfaces[surface] = content
        self._count_edit(surface)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_active(self) -> None:
        if self.finished:
            raise SessionFinishedError("Session is finished; restart to continue")

    def _enter_task(self) -> None:
        """Reset every per-task piece of state for the current task."""
        self.close()
        task = self.current_task
        self._task_visit += 1

        self.editor = GraphEditor(graph_type="mindmap")
        self.markup_view = MarkupView(self.editor, self.render_delay_ms)
        self._unsubscribe = self.editor.subscribe(self._on_graph_change)
        self._pending_guidance = []
        self.guidance.reset()
        self.guided = GuidedStepMachine.for_task(task)

        self.surfaces: dict[str, Any] = {"table": {"columns": [], "rows": []}, "text": "", "math": ""}
        self.edit_counts: dict[str, int] = {"mindmap": 0, "table": 0, "text": 0, "math": 0}
        self._last_done_at: Optional[float] = None
        self._edited_since_done = False

        self.idle_watcher = IdleWatcher(
            self.guidance,
            lambda: self.editor.graph,
            self._deliver_idle_guidance,
            self.idle_poll_seconds,
        )
        if task.view_type == "mindmap_editor":
            try:
                self.idle_watcher.start()
            except RuntimeError:
                logger.debug("No running event loop; idle watcher not started")

        logger.info(
            "→ ENTERING task %s (%s, guided=%s)", task.id, task.view_type, self.guided is not None
        )

    async def _deliver_idle_guidance(self, prompt: str) -> None:
        await self.request_guidance(prompt)

    def _on_graph_change(self, change: GraphChange) -> None:
        self._count_edit("mindmap", change.action)
        prompt = self.guidance.record(change)
        if prompt is not None:
            self._pending_guidance.append(prompt)

    async def _flush_guidance(self) -> None:
        while self._pending_guidance:
            await self.request_guidance(self._pending_guidance.pop(0))

    def _count_edit(self, surface: str, detail: Optional[str] = None) -> None:
        self.edit_counts[surface] += 1
        self._add_log(f"Edited {surface}" + (f": {detail}" if detail else ""))
        if self._last_done_at is not None:
            self._edited_since_done = True

    def _track_improvement(self) -> None:
        now = self._clock()
        if (
            self._last_done_at is not None
            and self._edited_since_done
            and now - self._last_done_at < IMPROVEMENT_WINDOW_SECONDS
        ):
            self.improvement_count += 1
            logger.info("Improvement cycle %d completed", self.improvement_count)
        self._edited_since_done = False
        self._last_done_at = now

    def _add_log(self, text: str) -> None:
        self.log.append(f"[{self._wall_clock():%H:%M:%S}] {text}")

    def _tutor_instruction(self, extra_context: Optional[str] = None) -> str:
        return tutor_instruction(self.current_task, self.surface_context(), self.language, extra_context)

    async def _converse(self, utterance: str, instruction: str) -> Optional[str]:
        """Append a visible learner message and ask the tutor."""
        self.transcript.append(ChatMessage(role="learner", text=utterance))
        return await self._ask(utterance, instruction, history=self.transcript[:-1])

    async def _ask(
        self, utterance: str, instruction: str, history: Optional[list[ChatMessage]] = None
    ) -> Optional[str]:
        history = list(self.transcript) if history is None else history
        reply = await self._guarded(
            self.channel.send_message(history, utterance, instruction, self.language)
        )
        if reply is None:
            return None
        self._record_reply(reply)
        return ChatMessage(role="tutor", text=reply).display_text

    async def _guarded(self, awaitable: Awaitable[Any]) -> Any:
        """Await a tutor call; failures become an apology in the transcript."""
        try:
            return await awaitable
        except EntityNotFoundError as e:
            logger.error("Tutor rejected API key or model: %s", e)
            if self.on_api_key_error is not None:
                try:
                    self.on_api_key_error()
                except Exception as callback_error:
                    logger.error("API key error callback failed: %s", callback_error)
        except Exception as e:
            logger.error("Tutor request failed: %s", e, exc_info=True)
        self.transcript.append(ChatMessage(role="tutor", text=apology_message(self.language)))
        return None

    def _record_reply(self, reply: str) -> None:
        """Append a tutor reply. Only done() turns a reply into a gating verdict."""
        self.transcript.append(ChatMessage(role="tutor", text=reply))
        self._add_log(f'AI Response: "{reply[:30]}..."')

    async def _complete_session(self) -> EngagementMetrics:
        """Run the metrics extractor and the report generator after finishing."""
        self.close()
        self.metrics = extract_engagement_metrics(
            self.transcript, self.log, self.progression.task_count
        )
        learning_log = "\n".join(self.log)
        if self.report_generator is not None:
            try:
                self.report = await self.report_generator(learning_log, self.metrics)
            except Exception as e:
                logger.error("Report generation failed: %s", e, exc_info=True)
                self.report = None
        logger.info("← Session %s complete", self.session_id)
        return self.metrics
