"""Guidance triggers for the graph editor.

Decides from graph changes and idle time when the tutor should be asked for
feedback, and composes the hidden guidance note sent to the tutor.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Literal, Optional

from mindtrail.config import IDLE_POLL_SECONDS, IDLE_THRESHOLD_SECONDS
from mindtrail.graph_editor import GraphChange
from mindtrail.models import GraphType, VisualizationGraph

# pylint: disable=broad-exception-caught

logger = logging.getLogger("mindtrail.guidance")

VisualizationAction = Literal["node_created", "edge_created", "confusion_marked", "idle"]

_TYPE_LABELS: dict[GraphType, str] = {
    "mindmap": "mind map",
    "conceptmap": "concept map",
    "knowledgegraph": "knowledge graph",
}


def should_trigger(
    action: VisualizationAction,
    previous_node_count: int,
    current_node_count: int,
    previous_edge_count: int,
    current_edge_count: int,
    idle_seconds: float = 0.0,
    idle_threshold: float = IDLE_THRESHOLD_SECONDS,
) -> bool:
    """Decision table for requesting tutor feedback."""
    if action == "node_created" and previous_node_count == 0 and current_node_count == 1:
        return True
    if action == "node_created" and current_node_count == 3 and current_edge_count == 0:
        return True
    if action == "edge_created" and previous_edge_count == 0 and current_edge_count == 1:
        return True
    if action == "confusion_marked":
        return True
    if action == "idle" and idle_seconds >= idle_threshold:
        return True
    return False


def _stage_nudge(graph: VisualizationGraph) -> str:
    if not graph.nodes:
        return 'Ask the learner: "What is the core idea of this lesson?"'
    if not graph.edges:
        return (
            f"The learner has {len(graph.nodes)} concepts but no connections yet. "
            'Ask: "How do these ideas relate to each other?"'
        )
    return 'The structure is taking shape. Ask: "What important idea or relation is still missing?"'


def compose_guidance_prompt(
    graph: VisualizationGraph, action: VisualizationAction, idle_seconds: float = 0.0
) -> str:
    """Compose the hidden tutor note describing the learner's graph."""
    confusion_count = len(graph.confusion_labels())
    prompt = (
        f"The learner is building a {_TYPE_LABELS.get(graph.type, 'visualization')}:\n"
        f"- Nodes: {len(graph.nodes)}\n"
        f"- Connections: {len(graph.edges)}\n"
        f"- Confusion points: {confusion_count}\n\n"
    )

    if action == "node_created" and graph.nodes:
        prompt += f'The learner just created the node "{graph.nodes[-1].label}". '
    elif action == "edge_created" and graph.edges:
        edge = graph.edges[-1]
        source = graph.node_by_id(edge.source)
        target = graph.node_by_id(edge.target)
        prompt += (
            f"The learner just connected {source.label if source else '?'} -> "
            f"{target.label if target else '?'}. "
            'Ask what this relation shows and which other concepts are related. '
        )
    elif action == "confusion_marked":
        labels = ", ".join(graph.confusion_labels()) or "a concept"
        prompt += (
            f"The learner marked a confusion point ({labels}). Encourage them and ask "
            "which part of the concept feels unclear. "
        )
    elif action == "idle":
        minutes = max(1, round(idle_seconds / 60))
        prompt += (
            f"The learner has not edited for about {minutes} minute(s). "
            "Gently ask whether they are stuck. "
        )

    prompt += _stage_nudge(graph)
    prompt += "\nReply with ONE short Socratic question or hint. Do not give the answer."
    return prompt


class GuidanceTriggerEngine:
    """Tracks editor activity and fires guidance prompts.

    The idle timer restarts on every graph change and after every idle trigger,
    so a continuous idle period fires at most once per threshold window.
    """

    def __init__(
        self,
        idle_threshold: float = IDLE_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_threshold = idle_threshold
        self._clock = clock
        self._last_action_at = clock()

    @property
    def idle_seconds(self) -> float:
        return self._clock() - self._last_action_at

    def record(self, change: GraphChange) -> Optional[str]:
        """Register a graph change; returns a guidance prompt when one is due."""
        self._last_action_at = self._clock()
        if change.action not in ("node_created", "edge_created", "confusion_marked"):
            return None

        if should_trigger(
            change.action,
            change.previous_node_count,
            change.progress.total_nodes,
            change.previous_edge_count,
            change.progress.total_edges,
        ):
            logger.info("Guidance triggered by %s", change.action)
            return compose_guidance_prompt(change.graph, change.action)
        return None

    def check_idle(self, graph: VisualizationGraph) -> Optional[str]:
        """Poll the idle timer; fires once and restarts the timer."""
        idle = self.idle_seconds
        if not should_trigger("idle", 0, 0, 0, 0, idle_seconds=idle, idle_threshold=self.idle_threshold):
            return None
        self._last_action_at = self._clock()
        logger.info("Guidance triggered by idle learner (%.0fs)", idle)
        return compose_guidance_prompt(graph, "idle", idle)

    def reset(self) -> None:
        self._last_action_at = self._clock()


class IdleWatcher:
    """Recurring asyncio poll of the idle timer.

    Must be cancelled when the task changes or the session closes so a stale
    poll never fires against the next task's graph.
    """

    def __init__(
        self,
        engine: GuidanceTriggerEngine,
        graph_provider: Callable[[], VisualizationGraph],
        on_trigger: Callable[[str], Awaitable[None]],
        poll_seconds: float = IDLE_POLL_SECONDS,
    ):
        self._engine = engine
        self._graph_provider = graph_provider
        self._on_trigger = on_trigger
        self.poll_seconds = poll_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._engine.reset()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def poll_once(self) -> bool:
        """Run one idle check. Returns True when guidance was sent."""
        prompt = self._engine.check_idle(self._graph_provider())
        if prompt is None:
            return False
        try:
            await self._on_trigger(prompt)
        except Exception as e:
            logger.error("Idle guidance delivery failed: %s", e, exc_info=True)
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_seconds)
            await self.poll_once()
