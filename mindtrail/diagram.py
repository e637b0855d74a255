"""Conversion between the canonical graph and diagram markup.

Two markup dialects are understood:
- ``mindmap``: a root declaration followed by indentation-delimited children
- ``graph``/``flowchart``: node declarations and arrow edges

Only mindmap graphs can be rendered back to markup. Markup parsing never
raises; unsupported or malformed input produces a best-effort graph plus a
diagnostic string for the caller to log or display.
"""

import logging
import re
from typing import Optional

from pydantic import BaseModel

from mindtrail.errors import DiagramConversionError
from mindtrail.models import GraphMetadata, VisualizationEdge, VisualizationGraph, VisualizationNode

logger = logging.getLogger("mindtrail.diagram")

CONFUSION_PREFIX = "❓"
INDENT = "    "

# Labels containing shape delimiters are emitted as quoted square nodes
_NEEDS_QUOTING_RE = re.compile(r"[()\[\]{}\"]")
_CONFUSION_PREFIX_RE = re.compile(r"^" + CONFUSION_PREFIX + r"\s*")

# Flowchart: node reference with optional shape, e.g. A, A[x], A["x"], A(x), A((x)), A{x}
_NODE_RE = re.compile(
    r"\s*(?P<id>\w+)\s*"
    r"(?:\(\((?P<circle>.*?)\)\)|\[(?P<quoted>\"[^\"]*\")\]|\[(?P<square>.*?)\]|\((?P<round>.*?)\)|\{(?P<brace>.*?)\})?"
)
# Flowchart: arrow with optional |label| or "label"
_ARROW_RE = re.compile(
    r"\s*(?:-->|---|--|==>|-\.->)\s*(?:\|(?P<pipe>[^|]*)\||\"(?P<quote>[^\"]*)\")?\s*"
)
# Mindmap: optional id followed by a shaped label
_SHAPE_RE = re.compile(
    r"^\s*\w*\s*(?:\(\((?P<circle>.*)\)\)|\{\{(?P<hexagon>.*)\}\}|\[(?P<square>.*)\]|\((?P<round>.*)\))\s*$"
)

_FLOWCHART_SKIP = {"subgraph", "end", "style", "classDef", "class", "click", "linkStyle", "direction"}


class ConversionResult(BaseModel):
    """Graph produced from markup plus an optional human-readable diagnostic."""

    graph: VisualizationGraph
    diagnostic: Optional[str] = None


# ============================================================================
# Graph -> Markup
# ============================================================================


def _markup_text(node: VisualizationNode) -> str:
    label = node.label.replace("\n", " ").strip()
    return f"{CONFUSION_PREFIX} {label}" if node.is_confusion else label


def _quote(text: str) -> str:
    return '"' + text.replace('"', "#quot;") + '"'


def _markup_label(node: VisualizationNode, token: str) -> str:
    """Child line for a node; bracketed labels become ``token["label"]``."""
    text = _markup_text(node)
    if _NEEDS_QUOTING_RE.search(text):
        return f"{token}[{_quote(text)}]"
    return text


def _root_label(node: VisualizationNode) -> str:
    text = _markup_text(node)
    return _quote(text) if _NEEDS_QUOTING_RE.search(text) else text


def graph_to_markup(graph: VisualizationGraph) -> str:
    """Render a mindmap graph as indented mindmap markup.

    The hierarchy is walked depth-first from the central concept. Labels
    containing brackets or quotes are emitted quoted so they survive parsing.

    A mindmap has a single root, so nodes not reachable from the central
    concept (every node of an edgeless graph, or the other trees of a forest)
    are attached under the root as first-level branches. Parsing the markup
    back therefore yields root edges that a forest did not have; the round
    trip is exact for graphs where every node is reachable from the root.

    Raises:
        DiagramConversionError: If the graph is not a mindmap
    """
    if graph.type != "mindmap":
        raise DiagramConversionError(f"Only mindmap graphs can be converted to markup (got {graph.type})")

    root = graph.central_node()
    if root is None:
        return "mindmap"

    lines = ["mindmap", f"  Root(({_root_label(root)}))"]
    emitted = {root.id}

    def emit(node: VisualizationNode, depth: int) -> None:
        emitted.add(node.id)
        lines.append(INDENT * depth + _markup_label(node, f"n{len(emitted) - 1}"))

    def walk(node_id: str, depth: int) -> None:
        for edge in graph.outgoing(node_id):
            child = graph.node_by_id(edge.target)
            if child is None or child.id in emitted:
                continue
            emit(child, depth)
            walk(child.id, depth + 1)

    walk(root.id, 1)

    detached = [node for node in graph.nodes if node.id not in emitted]
    if detached and graph.edges:
        logger.info("Attaching %d unreachable node(s) under the mindmap root", len(detached))
    for node in detached:
        if node.id in emitted:
            continue
        emit(node, 1)
        walk(node.id, 2)

    return "\n".join(lines)


# ============================================================================
# Markup -> Graph
# ============================================================================


def _unquote(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        raw = raw[1:-1]
    return raw.replace("#quot;", '"')


def _split_confusion(raw: str) -> tuple[str, bool]:
    raw = _unquote(raw).strip()
    is_confusion = raw.startswith(CONFUSION_PREFIX)
    return _CONFUSION_PREFIX_RE.sub("", raw).strip(), is_confusion


def _finish(graph_type: str, nodes: list, edges: list, central: Optional[str], notes: list[str]) -> ConversionResult:
    graph = VisualizationGraph(type=graph_type, nodes=nodes, edges=edges)
    if nodes:
        graph.metadata = GraphMetadata(central_concept=central, confusion_points=graph.confusion_labels())
    return ConversionResult(graph=graph, diagnostic="; ".join(notes) if notes else None)


def _parse_flowchart(lines: list[str]) -> ConversionResult:
    nodes: list[VisualizationNode] = []
    edges: list[VisualizationEdge] = []
    declared: dict[str, VisualizationNode] = {}
    notes: list[str] = []

    def register(match: re.Match) -> VisualizationNode:
        token = match.group("id")
        shaped = next(
            (
                match.group(g)
                for g in ("circle", "quoted", "square", "round", "brace")
                if match.group(g) is not None
            ),
            None,
        )
        node = declared.get(token)
        if node is None:
            label, is_confusion = _split_confusion(shaped) if shaped is not None else (token, False)
            node = VisualizationNode(
                id=f"node_{len(nodes)}",
                label=label or token,
                kind="confusion" if is_confusion else "concept",
            )
            declared[token] = node
            nodes.append(node)
        elif shaped is not None and node.label == token:
            # Auto-created by an earlier edge, now declared with a label
            label, is_confusion = _split_confusion(shaped)
            node.label = label or token
            if is_confusion:
                node.kind = "confusion"
        return node

    for number, line in enumerate(lines[1:], start=2):
        stripped = line.strip()
        if stripped.split()[0] in _FLOWCHART_SKIP:
            continue

        match = _NODE_RE.match(stripped)
        if match is None:
            notes.append(f"line {number}: unrecognised statement skipped")
            continue
        previous = register(match)
        pos = match.end()

        while pos < len(stripped):
            arrow = _ARROW_RE.match(stripped, pos)
            if arrow is None:
                notes.append(f"line {number}: trailing text ignored")
                break
            target_match = _NODE_RE.match(stripped, arrow.end())
            if target_match is None:
                notes.append(f"line {number}: edge without target ignored")
                break
            target = register(target_match)
            label = arrow.group("pipe") or arrow.group("quote")
            edges.append(
                VisualizationEdge(
                    id=f"edge_{len(edges)}",
                    source=previous.id,
                    target=target.id,
                    label=label.strip() if label and label.strip() else None,
                    kind="hierarchical",
                )
            )
            previous = target
            pos = target_match.end()

    central = nodes[0].label if nodes else None
    return _finish("conceptmap", nodes, edges, central, notes)


def _indent_width(line: str) -> int:
    prefix = line[: len(line) - len(line.lstrip())]
    return len(prefix.replace("\t", INDENT))


def _mindmap_label(line: str) -> str:
    text = line.strip()
    shape = _SHAPE_RE.match(text)
    if shape:
        text = next(shape.group(g) for g in ("circle", "hexagon", "square", "round") if shape.group(g) is not None)
    return text


def _parse_mindmap(lines: list[str]) -> ConversionResult:
    nodes: list[VisualizationNode] = []
    edges: list[VisualizationEdge] = []
    notes: list[str] = []

    body = [line for line in lines[1:] if not line.strip().startswith("::")]
    if not body:
        return _finish("mindmap", nodes, edges, None, notes)

    root_label, root_confused = _split_confusion(_mindmap_label(body[0]))
    root = VisualizationNode(
        id="node_0", label=root_label or "Root", kind="confusion" if root_confused else "concept"
    )
    nodes.append(root)

    # (indentation, node id); the root is never popped
    stack: list[tuple[int, str]] = [(_indent_width(body[0]), root.id)]

    for line in body[1:]:
        label, is_confusion = _split_confusion(_mindmap_label(line))
        if not label:
            notes.append(f"empty mindmap entry skipped: {line.strip()!r}")
            continue
        indent = _indent_width(line)
        while len(stack) > 1 and stack[-1][0] >= indent:
            stack.pop()

        node = VisualizationNode(
            id=f"node_{len(nodes)}", label=label, kind="confusion" if is_confusion else "concept"
        )
        nodes.append(node)
        edges.append(
            VisualizationEdge(id=f"edge_{len(edges)}", source=stack[-1][1], target=node.id, kind="hierarchical")
        )
        stack.append((indent, node.id))

    return _finish("mindmap", nodes, edges, root.label, notes)


def markup_to_graph(code: Optional[str]) -> ConversionResult:
    """Parse diagram markup into a graph.

    The dialect is chosen by the first token: ``graph``/``flowchart`` yields a
    conceptmap, ``mindmap`` yields a mindmap. Anything else yields an empty
    mindmap and a diagnostic.
    """
    lines = [line.rstrip() for line in (code or "").split("\n")]
    lines = [line for line in lines if line.strip() and not line.strip().startswith("%%")]

    if not lines:
        return ConversionResult(graph=VisualizationGraph(type="mindmap"))

    first = lines[0].strip()
    if first.startswith(("graph", "flowchart")):
        return _parse_flowchart(lines)
    if first.startswith("mindmap"):
        return _parse_mindmap(lines)

    return ConversionResult(
        graph=VisualizationGraph(type="mindmap"),
        diagnostic=f"Unsupported diagram format: {first}",
    )
