"""Tests for diagram markup conversion (mindmap and flowchart dialects)."""

import pytest

from mindtrail.diagram import graph_to_markup, markup_to_graph
from mindtrail.errors import DiagramConversionError
from mindtrail.models import VisualizationGraph
from mindtrail.text_dsl import parse_text


def _parent_pairs(graph):
    labels = {n.id: n.label for n in graph.nodes}
    return {(labels[e.source], labels[e.target]) for e in graph.edges}


# ============================================================================
# Graph -> Markup
# ============================================================================


def test_mindmap_markup_rendering():
    """Test depth-first rendering with unreachable nodes as first-level branches."""
    graph = parse_text("A -> B\nA -> C\nB -> D\nE [confusion]", "mindmap")

    assert graph_to_markup(graph) == (
        "mindmap\n"
        "  Root((A))\n"
        "    B\n"
        "        D\n"
        "    C\n"
        "    ❓ E"
    )


def test_empty_mindmap_renders_header_only():
    """Test that an empty mindmap renders as the bare header."""
    assert graph_to_markup(VisualizationGraph(type="mindmap")) == "mindmap"


def test_non_mindmap_cannot_be_rendered():
    """Test that only mindmap graphs convert to markup."""
    graph = parse_text("A -> B", "conceptmap")

    with pytest.raises(DiagramConversionError):
        graph_to_markup(graph)


def test_bracketed_labels_are_quoted():
    """Test that labels with shape delimiters are emitted as quoted nodes."""
    graph = parse_text('F(x) -> [Note]\nF(x) -> say "hi"', "mindmap")

    assert graph_to_markup(graph) == (
        'mindmap\n  Root(("F(x)"))\n    n1["[Note]"]\n    n2["say #quot;hi#quot;"]'
    )


def test_bracketed_labels_round_trip():
    """Test that brackets inside labels survive graph -> markup -> graph."""
    graph = parse_text("力(F) -> 加速度[a]\n力(F) -> 质量{m} [confusion]", "mindmap")
    result = markup_to_graph(graph_to_markup(graph))

    assert [n.label for n in result.graph.nodes] == ["力(F)", "加速度[a]", "质量{m}"]
    assert [n.kind for n in result.graph.nodes] == ["concept", "concept", "confusion"]
    assert _parent_pairs(result.graph) == _parent_pairs(graph)


def test_unreachable_tree_attached_under_root():
    """Test that a second tree of a forest is rendered below the root."""
    graph = parse_text("A -> B\nC -> D", "mindmap")
    markup = graph_to_markup(graph)

    assert markup == "mindmap\n  Root((A))\n    B\n    C\n        D"
    assert _parent_pairs(markup_to_graph(markup).graph) == {("A", "B"), ("A", "C"), ("C", "D")}


def test_confused_root_round_trips():
    """Test the confusion prefix on the root declaration."""
    graph = parse_text("Inertia [confusion] -> Mass", "mindmap")
    markup = graph_to_markup(graph)

    assert "Root((❓ Inertia))" in markup

    parsed = markup_to_graph(markup).graph
    assert parsed.nodes[0].label == "Inertia"
    assert parsed.nodes[0].kind == "confusion"


def test_mindmap_round_trip_preserves_tree():
    """Test graph -> markup -> graph for a tree keeps labels, kinds and parents."""
    graph = parse_text(
        "Energy -> Kinetic\nEnergy -> Potential\nKinetic -> Motion\nPotential -> Height [confusion]",
        "mindmap",
    )
    result = markup_to_graph(graph_to_markup(graph))

    assert result.diagnostic is None
    assert result.graph.type == "mindmap"
    assert _parent_pairs(result.graph) == _parent_pairs(graph)
    assert {n.label: n.kind for n in result.graph.nodes} == {n.label: n.kind for n in graph.nodes}
    assert result.graph.metadata.central_concept == "Energy"


# ============================================================================
# Markup -> Graph
# ============================================================================


def test_parse_indented_mindmap():
    """Test that indentation decides the parent of each entry."""
    code = """mindmap
  root((Energy))
    Kinetic
      Motion
    Potential
      ::icon(fa fa-book)
"""
    result = markup_to_graph(code)

    assert [n.label for n in result.graph.nodes] == ["Energy", "Kinetic", "Motion", "Potential"]
    assert _parent_pairs(result.graph) == {
        ("Energy", "Kinetic"),
        ("Kinetic", "Motion"),
        ("Energy", "Potential"),
    }


def test_parse_mindmap_shaped_children():
    """Test that child shapes are unwrapped to their labels."""
    code = "mindmap\n  Root((Waves))\n    a[Sound]\n    b(Light)\n    {{Water}}"
    graph = markup_to_graph(code).graph

    assert [n.label for n in graph.nodes] == ["Waves", "Sound", "Light", "Water"]


def test_parse_flowchart():
    """Test node shapes, pipe labels and late declarations in a flowchart."""
    code = """graph TD
  %% forces and motion
  A[Force] -->|causes| B(Motion)
  B --> C
  C[Change]
"""
    result = markup_to_graph(code)
    graph = result.graph

    assert result.diagnostic is None
    assert graph.type == "conceptmap"
    assert [n.label for n in graph.nodes] == ["Force", "Motion", "Change"]
    assert graph.edges[0].label == "causes"
    assert graph.edges[1].label is None
    assert graph.metadata.central_concept == "Force"


def test_parse_flowchart_chained_edges():
    """Test that one line can chain several arrows."""
    graph = markup_to_graph("flowchart LR\n  A --> B --> C").graph

    assert _parent_pairs(graph) == {("A", "B"), ("B", "C")}


def test_parse_flowchart_skips_layout_statements():
    """Test that subgraph/style statements are ignored without a diagnostic."""
    code = "graph TD\n  subgraph Forces\n  A --> B\n  end\n  style A fill:#f9f"
    result = markup_to_graph(code)

    assert result.diagnostic is None
    assert len(result.graph.nodes) == 2


def test_flowchart_diagnostic_for_bad_line():
    """Test that an unreadable line is skipped and reported."""
    result = markup_to_graph("graph TD\n  A --> B\n  --> C")

    assert len(result.graph.nodes) == 2
    assert "line 3: unrecognised statement skipped" in result.diagnostic


def test_unsupported_format():
    """Test that unknown dialects give an empty mindmap and a diagnostic."""
    result = markup_to_graph("sequenceDiagram\n  Alice->>Bob: hi")

    assert result.graph.type == "mindmap"
    assert result.graph.nodes == []
    assert result.diagnostic.startswith("Unsupported diagram format")


def test_empty_markup():
    """Test that empty markup is an empty mindmap without a diagnostic."""
    result = markup_to_graph("")

    assert result.graph.nodes == []
    assert result.diagnostic is None
