"""Tests for the line-oriented text DSL parser and serializer."""

from collections import Counter

from mindtrail.text_dsl import graph_to_text, parse_text, strip_confusion_marker

NEWTON_TEXT = "牛顿第一定律 -> 惯性\n惯性 -> 描述 -> 静止或匀速"


def _labelled_edges(graph):
    labels = {n.id: n.label for n in graph.nodes}
    return Counter((labels[e.source], labels[e.target], e.label) for e in graph.edges)


def test_parse_newton_example():
    """Test the canonical two-line example with one labelled relation."""
    graph = parse_text(NEWTON_TEXT)

    assert [n.label for n in graph.nodes] == ["牛顿第一定律", "惯性", "静止或匀速"]
    assert len(graph.edges) == 2
    assert graph.edges[0].label is None
    assert graph.edges[0].kind == "hierarchical"
    assert graph.edges[1].label == "描述"
    assert graph.edges[1].kind == "related"
    assert graph.metadata.central_concept == "牛顿第一定律"
    assert graph.metadata.confusion_points == []


def test_repeated_labels_share_one_node():
    """Test that a label used on several lines maps to a single node id."""
    graph = parse_text(NEWTON_TEXT)

    inertia = next(n for n in graph.nodes if n.label == "惯性")
    assert graph.edges[0].target == inertia.id
    assert graph.edges[1].source == inertia.id
    assert [n.id for n in graph.nodes] == ["node_0", "node_1", "node_2"]


def test_empty_input_gives_empty_graph():
    """Test that blank input yields the empty graph with empty metadata."""
    expected = {"type": "conceptmap", "nodes": [], "edges": [], "metadata": {}}

    assert parse_text("").to_dict() == expected
    assert parse_text("  \n\n   ").to_dict() == expected
    assert parse_text(None).to_dict() == expected


def test_graph_type_is_kept():
    """Test that the requested graph type is used."""
    assert parse_text("A -> B", "mindmap").type == "mindmap"
    assert parse_text("", "knowledgegraph").type == "knowledgegraph"


def test_bare_lines_become_isolated_nodes():
    """Test lines without a usable arrow statement."""
    graph = parse_text("Energy\nMass -> \n-> Speed")

    assert [n.label for n in graph.nodes] == ["Energy", "Mass", "Speed"]
    assert graph.edges == []


def test_double_dash_arrow_and_spacing():
    """Test that '-->' and missing spaces are accepted."""
    graph = parse_text("A-->B\nB   ->   C")

    assert [n.label for n in graph.nodes] == ["A", "B", "C"]
    assert len(graph.edges) == 2


def test_multi_part_relationship_is_joined():
    """Test that extra middle parts join into one relationship label."""
    graph = parse_text("Force -> changes -> velocity of -> Object")

    assert len(graph.nodes) == 2
    assert graph.edges[0].label == "changes -> velocity of"


def test_confusion_markers():
    """Test both confusion markers on either endpoint."""
    graph = parse_text("惯性 [困惑点] -> 质量\nForce -> Acceleration [confusion]")

    kinds = {n.label: n.kind for n in graph.nodes}
    assert kinds == {
        "惯性": "confusion",
        "质量": "concept",
        "Force": "concept",
        "Acceleration": "confusion",
    }
    assert graph.metadata.confusion_points == ["惯性", "Acceleration"]


def test_confusion_marker_on_later_mention():
    """Test that a marker on a repeated label flags the existing node."""
    graph = parse_text("A -> B\nB [confusion] -> C")

    assert len(graph.nodes) == 3
    assert graph.nodes[1].kind == "confusion"


def test_marker_alone_is_a_plain_label():
    """Test that a line consisting only of the marker is kept verbatim."""
    assert strip_confusion_marker("[confusion]") == ("[confusion]", False)
    assert strip_confusion_marker(" 惯性 [困惑点] ") == ("惯性", True)
    assert strip_confusion_marker("Mass") == ("Mass", False)

    graph = parse_text("[confusion]")
    assert graph.nodes[0].label == "[confusion]"
    assert graph.nodes[0].kind == "concept"


def test_graph_to_text_output():
    """Test serialization order: edges first, then isolated nodes."""
    graph = parse_text(NEWTON_TEXT + "\nGalileo\n惯性 [confusion]")

    assert graph_to_text(graph) == (
        "牛顿第一定律 -> 惯性 [confusion]\n"
        "惯性 [confusion] -> 描述 -> 静止或匀速\n"
        "Galileo"
    )


def test_text_round_trip_is_stable():
    """Test that parse -> serialize -> parse keeps the labelled edge multiset."""
    text = "Force -> causes -> Acceleration\nMass [困惑点] -> Acceleration\nInertia\nForce -> Mass"
    first = parse_text(text)
    second = parse_text(graph_to_text(first))

    assert _labelled_edges(first) == _labelled_edges(second)
    assert {n.label: n.kind for n in first.nodes} == {n.label: n.kind for n in second.nodes}
    assert graph_to_text(second) == graph_to_text(first)
