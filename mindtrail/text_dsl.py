"""Line-oriented text DSL for building graphs quickly.

Supported lines:
- ``A``                         isolated concept
- ``A -> B``                    connection (``-->`` also accepted)
- ``A -> relationship -> B``    labelled connection
- ``A [confusion] -> B``        confusion marker on either endpoint

Labels are the node key only while a single text is parsed. The parser keeps
an explicit label -> id table and emits a canonical graph with opaque ids;
downstream code works with ids only.
"""

import logging
import re
from typing import Optional

from mindtrail.models import (
    GraphMetadata,
    GraphType,
    VisualizationEdge,
    VisualizationGraph,
    VisualizationNode,
)

logger = logging.getLogger("mindtrail.text_dsl")

CONFUSION_MARKER = "[confusion]"

_ARROW_RE = re.compile(r"\s*--?>\s*")
_CONFUSION_RE = re.compile(r"\s*\[(?:confusion|困惑点)\]\s*", re.IGNORECASE)


def strip_confusion_marker(label: str) -> tuple[str, bool]:
    """Remove confusion markers from a label.

    Returns:
        (clean label, whether a marker was present). A label that consists of
        the marker alone is kept verbatim and not flagged.
    """
    if not _CONFUSION_RE.search(label):
        return label.strip(), False
    cleaned = _CONFUSION_RE.sub(" ", label).strip()
    if not cleaned:
        return label.strip(), False
    return cleaned, True


class _LabelTable:
    """Maps DSL labels to the canonical node ids created for them."""

    def __init__(self) -> None:
        self.nodes: list[VisualizationNode] = []
        self._ids: dict[str, str] = {}

    def get_or_create(self, raw_label: str) -> VisualizationNode:
        label, is_confusion = strip_confusion_marker(raw_label)
        node_id = self._ids.get(label)
        if node_id is None:
            node_id = f"node_{len(self.nodes)}"
            self._ids[label] = node_id
            node = VisualizationNode(
                id=node_id, label=label, kind="confusion" if is_confusion else "concept"
            )
            self.nodes.append(node)
            return node

        node = next(n for n in self.nodes if n.id == node_id)
        if is_confusion:
            node.kind = "confusion"
        return node


def parse_text(text: Optional[str], graph_type: GraphType = "conceptmap") -> VisualizationGraph:
    """Parse DSL text into a fresh graph that replaces the previous one.

    Never raises: text that does not form a valid arrow statement becomes a
    bare node label.

    Args:
        text: Multi-line DSL input
        graph_type: Type of the resulting graph

    Returns:
        Parsed graph (empty graph with empty metadata for blank input)
    """
    lines = [line.strip() for line in (text or "").split("\n")]
    lines = [line for line in lines if line]
    if not lines:
        return VisualizationGraph(type=graph_type)

    table = _LabelTable()
    edges: list[VisualizationEdge] = []

    for line in lines:
        parts = [p.strip() for p in _ARROW_RE.split(line)]
        parts = [p for p in parts if p]

        if len(parts) < 2:
            # No usable arrow statement: the whole line names one node
            table.get_or_create(parts[0] if parts else line)
            continue

        relationship = " -> ".join(parts[1:-1]) or None
        source = table.get_or_create(parts[0])
        target = table.get_or_create(parts[-1])
        edges.append(
            VisualizationEdge(
                id=f"edge_{len(edges)}",
                source=source.id,
                target=target.id,
                label=relationship,
                kind="related" if relationship else "hierarchical",
            )
        )

    graph = VisualizationGraph(type=graph_type, nodes=table.nodes, edges=edges)
    root = graph.root_node()
    graph.metadata = GraphMetadata(
        central_concept=root.label if root else None,
        confusion_points=graph.confusion_labels(),
    )
    logger.debug("Parsed %d DSL lines into %d nodes, %d edges", len(lines), len(graph.nodes), len(edges))
    return graph


def _dsl_label(node: VisualizationNode) -> str:
    return f"{node.label} {CONFUSION_MARKER}" if node.is_confusion else node.label


def graph_to_text(graph: VisualizationGraph) -> str:
    """Flatten a graph back into DSL lines.

    Edges come first in edge order, then isolated nodes. Nodes sharing a label
    collapse into one node when the text is parsed again.
    """
    lines: list[str] = []
    connected: set[str] = set()

    for edge in graph.edges:
        source = graph.node_by_id(edge.source)
        target = graph.node_by_id(edge.target)
        if source is None or target is None:
            continue
        connected.update((source.id, target.id))
        if edge.label:
            lines.append(f"{_dsl_label(source)} -> {edge.label} -> {_dsl_label(target)}")
        else:
            lines.append(f"{_dsl_label(source)} -> {_dsl_label(target)}")

    for node in graph.nodes:
        if node.id not in connected:
            lines.append(_dsl_label(node))

    return "\n".join(lines)
