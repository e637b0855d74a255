"""In-memory graph edit model with change notifications.

The editor owns the learner's current graph. Every successful mutation
recomputes the progress snapshot and notifies subscribers with a
GraphChange; a rejected mutation leaves the graph untouched and notifies
nobody.
"""

import asyncio
import logging
from typing import Callable, Literal, Optional

from pydantic import BaseModel

from mindtrail.config import RENDER_DEBOUNCE_MS
from mindtrail.diagram import graph_to_markup
from mindtrail.errors import DiagramConversionError, GraphEditError
from mindtrail.models import (
    EdgeKind,
    GraphType,
    NodeKind,
    Position,
    VisualizationEdge,
    VisualizationGraph,
    VisualizationNode,
    VisualizationProgress,
)

# pylint: disable=broad-exception-caught

logger = logging.getLogger("mindtrail.graph_editor")

# Minimum structure that counts as a complete graph
MIN_NODES = 3
MIN_EDGES = 2

GraphAction = Literal[
    "node_created",
    "node_updated",
    "node_deleted",
    "confusion_marked",
    "edge_created",
    "edge_updated",
    "edge_deleted",
    "type_changed",
    "replaced",
    "reset",
]


class GraphChange(BaseModel):
    """Notification payload sent after every successful mutation."""

    action: GraphAction
    graph: VisualizationGraph
    progress: VisualizationProgress
    previous_node_count: int
    previous_edge_count: int


GraphListener = Callable[[GraphChange], None]


def calculate_completion_rate(node_count: int, edge_count: int) -> int:
    """Completion score in [0, 100]: half for nodes, half for edges."""
    node_score = min(max(node_count, 0) / MIN_NODES, 1) * 50
    edge_score = min(max(edge_count, 0) / MIN_EDGES, 1) * 50
    return max(0, min(100, int(round(node_score + edge_score))))


def calculate_progress(graph: VisualizationGraph) -> VisualizationProgress:
    return VisualizationProgress(
        total_nodes=len(graph.nodes),
        total_edges=len(graph.edges),
        confusion_point_count=len(graph.confusion_labels()),
        completion_rate=calculate_completion_rate(len(graph.nodes), len(graph.edges)),
    )


class GraphEditor:
    """Owns the current graph and exposes create/edit/delete operations."""

    def __init__(self, graph: Optional[VisualizationGraph] = None, graph_type: GraphType = "mindmap"):
        self._graph = graph.model_copy(deep=True) if graph else VisualizationGraph(type=graph_type)
        self._graph.refresh_metadata()
        self._listeners: list[GraphListener] = []
        self.progress = calculate_progress(self._graph)

    @property
    def graph(self) -> VisualizationGraph:
        return self._graph

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(
        self, label: str, kind: NodeKind = "concept", position: Optional[Position] = None
    ) -> VisualizationNode:
        label = (label or "").strip()
        if not label:
            raise GraphEditError("Node label cannot be empty")

        counts = self._counts()
        node = VisualizationNode(id=self._next_id("node"), label=label, kind=kind, position=position)
        self._graph.nodes.append(node)
        if self._graph.metadata.central_concept is None:
            self._graph.metadata.central_concept = label
        self._commit("confusion_marked" if kind == "confusion" else "node_created", counts)
        return node

    def update_node(
        self,
        node_id: str,
        label: Optional[str] = None,
        position: Optional[Position] = None,
        kind: Optional[NodeKind] = None,
    ) -> VisualizationNode:
        node = self._require_node(node_id)
        if label is not None and not label.strip():
            raise GraphEditError("Node label cannot be empty")

        counts = self._counts()
        became_confusion = kind == "confusion" and not node.is_confusion
        if label is not None:
            if self._graph.metadata.central_concept == node.label:
                self._graph.metadata.central_concept = label.strip()
            node.label = label.strip()
        if position is not None:
            node.position = position
        if kind is not None:
            node.kind = kind
        self._commit("confusion_marked" if became_confusion else "node_updated", counts)
        return node

    def mark_confusion(self, node_id: str) -> VisualizationNode:
        node = self._require_node(node_id)
        counts = self._counts()
        node.kind = "confusion"
        self._commit("confusion_marked", counts)
        return node

    def delete_node(self, node_id: str) -> None:
        """Remove a node together with every edge touching it."""
        node = self._require_node(node_id)
        counts = self._counts()
        self._graph.nodes = [n for n in self._graph.nodes if n.id != node_id]
        self._graph.edges = [e for e in self._graph.edges if node_id not in (e.source, e.target)]
        if self._graph.metadata.central_concept == node.label:
            root = self._graph.root_node()
            self._graph.metadata.central_concept = root.label if root else None
        self._commit("node_deleted", counts)

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(
        self, source: str, target: str, label: Optional[str] = None, kind: EdgeKind = "hierarchical"
    ) -> VisualizationEdge:
        self._require_node(source)
        self._require_node(target)

        counts = self._counts()
        edge = VisualizationEdge(
            id=self._next_id("edge"), source=source, target=target, label=label or None, kind=kind
        )
        self._graph.edges.append(edge)
        self._commit("edge_created", counts)
        return edge

    def update_edge(
        self, edge_id: str, label: Optional[str] = None, kind: Optional[EdgeKind] = None
    ) -> VisualizationEdge:
        edge = self._require_edge(edge_id)
        counts = self._counts()
        if label is not None:
            edge.label = label or None
        if kind is not None:
            edge.kind = kind
        self._commit("edge_updated", counts)
        return edge

    def delete_edge(self, edge_id: str) -> None:
        self._require_edge(edge_id)
        counts = self._counts()
        self._graph.edges = [e for e in self._graph.edges if e.id != edge_id]
        self._commit("edge_deleted", counts)

    # ------------------------------------------------------------------
    # Whole-graph operations
    # ------------------------------------------------------------------

    def set_type(self, graph_type: GraphType) -> None:
        """Relabel the graph type; nodes and edges are kept verbatim."""
        counts = self._counts()
        self._graph.type = graph_type
        self._commit("type_changed", counts)

    def replace(self, graph: VisualizationGraph) -> None:
        """Load a graph produced by another surface (DSL, markup, template)."""
        counts = self._counts()
        self._graph = graph.model_copy(deep=True)
        self._commit("replaced", counts)

    def reset(self, graph_type: Optional[GraphType] = None) -> None:
        counts = self._counts()
        self._graph = VisualizationGraph(type=graph_type or self._graph.type)
        self._commit("reset", counts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _counts(self) -> tuple[int, int]:
        return len(self._graph.nodes), len(self._graph.edges)

    def _next_id(self, prefix: str) -> str:
        existing = {n.id for n in self._graph.nodes} | {e.id for e in self._graph.edges}
        seq = len(self._graph.nodes) if prefix == "node" else len(self._graph.edges)
        while f"{prefix}_{seq}" in existing:
            seq += 1
        return f"{prefix}_{seq}"

    def _require_node(self, node_id: str) -> VisualizationNode:
        node = self._graph.node_by_id(node_id)
        if node is None:
            raise GraphEditError(f"Unknown node: {node_id}")
        return node

    def _require_edge(self, edge_id: str) -> VisualizationEdge:
        for edge in self._graph.edges:
            if edge.id == edge_id:
                return edge
        raise GraphEditError(f"Unknown edge: {edge_id}")

    def _commit(self, action: GraphAction, previous: tuple[int, int]) -> None:
        self._graph.refresh_metadata()
        self.progress = calculate_progress(self._graph)
        change = GraphChange(
            action=action,
            graph=self._graph,
            progress=self.progress,
            previous_node_count=previous[0],
            previous_edge_count=previous[1],
        )
        logger.debug(
            "Graph %s: %d nodes, %d edges, %d%% complete",
            action,
            self.progress.total_nodes,
            self.progress.total_edges,
            self.progress.completion_rate,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error("Graph listener failed after %s: %s", action, e, exc_info=True)


# ============================================================================
# Debounced Markup Rendering
# ============================================================================


class RenderDebouncer:
    """Coalesces bursts of render requests into one call.

    Uses the running asyncio loop; without a loop the render runs immediately.
    """

    def __init__(self, render: Callable[[], None], delay_ms: int = RENDER_DEBOUNCE_MS):
        self._render = render
        self.delay_ms = delay_ms
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._render()
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay_ms / 1000, self._fire)

    def flush(self) -> None:
        """Render now if a render is pending."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._render()


class MarkupView:
    """Diagram markup kept in sync with a GraphEditor through a debouncer.

    A failed render keeps the last good markup and records a diagnostic.
    """

    def __init__(self, editor: GraphEditor, delay_ms: int = RENDER_DEBOUNCE_MS):
        self._editor = editor
        self.markup: Optional[str] = None
        self.diagnostic: Optional[str] = None
        self.render_count = 0
        self.debouncer = RenderDebouncer(self.render, delay_ms)
        self._unsubscribe = editor.subscribe(lambda _change: self.debouncer.schedule())

    def render(self) -> None:
        graph = self._editor.graph
        if graph.type != "mindmap":
            self.diagnostic = None
            return
        try:
            self.markup = graph_to_markup(graph)
            self.diagnostic = None
            self.render_count += 1
        except DiagramConversionError as e:
            logger.warning("Markup render failed, keeping previous markup: %s", e)
            self.diagnostic = str(e)

    def close(self) -> None:
        self.debouncer.cancel()
        self._unsubscribe()
