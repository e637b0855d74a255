"""Tests for the graph edit model, completion scoring and debounced markup rendering."""

import asyncio
from unittest.mock import patch

import pytest

from mindtrail.errors import DiagramConversionError, GraphEditError
from mindtrail.graph_editor import (
    GraphEditor,
    MarkupView,
    RenderDebouncer,
    calculate_completion_rate,
)


@pytest.fixture
def editor():
    return GraphEditor(graph_type="mindmap")


# ============================================================================
# Completion Rate
# ============================================================================


@pytest.mark.parametrize(
    "nodes,edges,expected",
    [
        (0, 0, 0),
        (3, 0, 50),
        (0, 2, 50),
        (3, 2, 100),
        (10, 10, 100),
        (1, 0, 17),
        (0, 1, 25),
        (-4, -1, 0),
    ],
)
def test_completion_rate(nodes, edges, expected):
    """Test the half-nodes, half-edges completion score."""
    assert calculate_completion_rate(nodes, edges) == expected


def test_completion_rate_always_in_bounds():
    """Test the score stays inside [0, 100]."""
    for nodes in range(0, 8):
        for edges in range(0, 8):
            assert 0 <= calculate_completion_rate(nodes, edges) <= 100


# ============================================================================
# Editor Operations
# ============================================================================


def test_add_node_sets_central_concept(editor):
    """Test that the first node becomes the central concept."""
    first = editor.add_node("Energy")
    editor.add_node("Mass")

    assert first.id == "node_0"
    assert editor.graph.metadata.central_concept == "Energy"
    assert editor.progress.total_nodes == 2


def test_empty_label_rejected(editor):
    """Test that blank labels are refused on create and update."""
    node = editor.add_node("Energy")

    with pytest.raises(GraphEditError):
        editor.add_node("   ")
    with pytest.raises(GraphEditError):
        editor.update_node(node.id, label="")
    assert [n.label for n in editor.graph.nodes] == ["Energy"]


def test_edge_to_unknown_node_leaves_graph_unchanged(editor):
    """Test that a rejected edge neither mutates nor notifies."""
    node = editor.add_node("Energy")
    changes = []
    editor.subscribe(changes.append)

    with pytest.raises(GraphEditError):
        editor.add_edge(node.id, "node_99")

    assert editor.graph.edges == []
    assert changes == []


def test_listener_receives_change_with_previous_counts(editor):
    """Test the notification payload."""
    changes = []
    editor.subscribe(changes.append)

    a = editor.add_node("A")
    b = editor.add_node("B")
    editor.add_edge(a.id, b.id, label="causes")

    assert [c.action for c in changes] == ["node_created", "node_created", "edge_created"]
    assert (changes[1].previous_node_count, changes[1].progress.total_nodes) == (1, 2)
    assert (changes[2].previous_edge_count, changes[2].progress.total_edges) == (0, 1)


def test_confusion_actions(editor):
    """Test that confusion nodes and marks report confusion_marked."""
    changes = []
    editor.subscribe(changes.append)

    editor.add_node("Inertia", kind="confusion")
    node = editor.add_node("Mass")
    editor.mark_confusion(node.id)

    assert [c.action for c in changes] == ["confusion_marked", "node_created", "confusion_marked"]
    assert editor.graph.metadata.confusion_points == ["Inertia", "Mass"]
    assert editor.progress.confusion_point_count == 2


def test_delete_node_removes_incident_edges(editor):
    """Test cascading edge removal and central concept fallback."""
    a = editor.add_node("A")
    b = editor.add_node("B")
    c = editor.add_node("C")
    editor.add_edge(a.id, b.id)
    editor.add_edge(b.id, c.id)

    editor.delete_node(a.id)

    assert [n.label for n in editor.graph.nodes] == ["B", "C"]
    assert len(editor.graph.edges) == 1
    assert editor.graph.metadata.central_concept == "B"


def test_ids_are_not_reused_after_delete(editor):
    """Test that new nodes never collide with existing ids."""
    a = editor.add_node("A")
    editor.add_node("B")
    editor.delete_node(a.id)

    c = editor.add_node("C")

    assert c.id == "node_2"
    assert len({n.id for n in editor.graph.nodes}) == 2


def test_update_node_renames_central_concept(editor):
    """Test that renaming the central node updates the metadata."""
    node = editor.add_node("Energy")
    editor.update_node(node.id, label="Power")

    assert editor.graph.metadata.central_concept == "Power"


def test_set_type_keeps_nodes(editor):
    """Test that switching graph type only relabels the graph."""
    a = editor.add_node("A")
    b = editor.add_node("B")
    editor.add_edge(a.id, b.id)

    editor.set_type("knowledgegraph")

    assert editor.graph.type == "knowledgegraph"
    assert len(editor.graph.nodes) == 2
    assert len(editor.graph.edges) == 1


def test_unsubscribe_and_failing_listener(editor):
    """Test that unsubscribed listeners stop and failing ones do not block others."""
    received = []

    def broken(_change):
        raise RuntimeError("listener bug")

    editor.subscribe(broken)
    unsubscribe = editor.subscribe(received.append)
    editor.add_node("A")
    unsubscribe()
    editor.add_node("B")

    assert len(received) == 1


# ============================================================================
# Debounced Rendering
# ============================================================================


def test_markup_view_renders_without_loop(editor):
    """Test that renders run immediately when no event loop is running."""
    view = MarkupView(editor)
    editor.add_node("Energy")

    assert view.markup == "mindmap\n  Root((Energy))"
    assert view.render_count == 1


def test_markup_view_keeps_markup_for_non_mindmap(editor):
    """Test that non-mindmap graphs keep the last rendered markup."""
    view = MarkupView(editor)
    editor.add_node("Energy")
    editor.set_type("conceptmap")
    editor.add_node("Mass")

    assert view.markup == "mindmap\n  Root((Energy))"
    assert view.diagnostic is None


def test_markup_view_failed_render_keeps_previous(editor):
    """Test that a failed render records a diagnostic and keeps old markup."""
    view = MarkupView(editor)
    editor.add_node("Energy")

    with patch(
        "mindtrail.graph_editor.graph_to_markup",
        side_effect=DiagramConversionError("render failed"),
    ):
        editor.add_node("Mass")

    assert view.markup == "mindmap\n  Root((Energy))"
    assert view.diagnostic == "render failed"


@pytest.mark.asyncio
async def test_debouncer_coalesces_bursts():
    """Test that several schedules inside the window render once."""
    renders = []
    debouncer = RenderDebouncer(lambda: renders.append(1), delay_ms=20)

    debouncer.schedule()
    debouncer.schedule()
    debouncer.schedule()
    assert renders == []
    assert debouncer.pending

    await asyncio.sleep(0.1)

    assert renders == [1]
    assert not debouncer.pending


@pytest.mark.asyncio
async def test_debouncer_flush_and_cancel():
    """Test that flush renders at once and cancel drops the pending render."""
    renders = []
    debouncer = RenderDebouncer(lambda: renders.append(1), delay_ms=1000)

    debouncer.schedule()
    debouncer.flush()
    assert renders == [1]

    debouncer.schedule()
    debouncer.cancel()
    await asyncio.sleep(0)
    assert renders == [1]
    assert not debouncer.pending
