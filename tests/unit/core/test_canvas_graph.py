"""
Unit tests for core/canvas_graph.py - host-facing graph operations

Tests:
- add_node placement, snapping, singletons and auto-connect
- remove_node with the hypothesis cascade
- payload updates and validation
- edge operations and the starter template
- Error handling (NodeNotFoundError, EdgeNotFoundError, PayloadError)
"""
import pytest

from core.schemas import (
    CanvasGraph,
    CanvasNode,
    CanvasEdge,
    Position,
    Size,
    ModelPayload,
    HypothesisPayload,
    VariantPayload,
)
from core.canvas_graph import (
    GraphError,
    NodeNotFoundError,
    EdgeNotFoundError,
    SingletonViolationError,
    PayloadError,
    add_node,
    remove_node,
    update_node_data,
    set_node_measured,
    move_node,
    add_edge,
    remove_edge,
    disconnect_outputs,
    attached_variants,
    initialize_canvas,
)


# =============================================================================
# ADD NODE
# =============================================================================

def test_add_node_to_empty_graph(empty_graph):
    graph, node = add_node(empty_graph, "compiler")
    assert graph.node_count == 1
    assert graph.edge_count == 0
    assert node.id.startswith("compiler-")
    assert node.position == Position(x=480, y=300)
    assert empty_graph.node_count == 0  # input untouched


def test_add_node_snaps_explicit_position(empty_graph):
    _, node = add_node(empty_graph, "critique", position=Position(x=13, y=27))
    assert node.position == Position(x=20, y=20)


def test_add_node_auto_connects_section(empty_graph):
    graph, compiler = add_node(empty_graph, "compiler")
    graph, section = add_node(graph, "objectivesMetrics")
    assert graph.has_edge(f"edge-{section.id}-to-{compiler.id}")


def test_add_node_attaches_existing_model(empty_graph):
    graph, model = add_node(empty_graph, "model")
    graph, hypothesis = add_node(graph, "hypothesis")
    assert graph.has_edge(f"edge-{model.id}-to-{hypothesis.id}")


def test_add_node_with_payload(empty_graph):
    graph, node = add_node(empty_graph, "hypothesis", data=HypothesisPayload(ref_id="s9"))
    assert graph.get_node(node.id).data.ref_id == "s9"


def test_add_node_rejects_wrong_payload(empty_graph):
    with pytest.raises(PayloadError):
        add_node(empty_graph, "hypothesis", data=VariantPayload(ref_id="r1"))


def test_add_node_rejects_unknown_type(empty_graph):
    with pytest.raises(PayloadError) as exc_info:
        add_node(empty_graph, "designer")
    assert "designer" in str(exc_info.value)


def test_add_second_section_of_same_type_fails(pipeline_graph):
    with pytest.raises(SingletonViolationError) as exc_info:
        add_node(pipeline_graph, "designBrief")
    assert exc_info.value.existing_id == "designBrief-1"
    assert isinstance(exc_info.value, GraphError)


def test_add_different_sections_is_allowed(pipeline_graph):
    graph, node = add_node(pipeline_graph, "designConstraints")
    assert graph.has_edge(f"edge-{node.id}-to-compiler-1")


# =============================================================================
# REMOVE NODE
# =============================================================================

def test_remove_node_drops_touching_edges(pipeline_graph):
    graph = remove_node(pipeline_graph, "compiler-1")
    assert not graph.has_node("compiler-1")
    assert all("compiler-1" not in (e.source, e.target) for e in graph.edges)
    assert graph.node_count == 4


def test_remove_hypothesis_cascades_to_its_variants(pipeline_graph):
    graph = remove_node(pipeline_graph, "hypothesis-s1")
    assert not graph.has_node("hypothesis-s1")
    assert not graph.has_node("variant-1")
    assert {e.id for e in graph.edges} == {
        "edge-designBrief-1-to-compiler-1",
        "edge-model-1-to-compiler-1",
    }


def test_remove_hypothesis_keeps_archived_and_foreign_variants(pipeline_graph):
    archived = CanvasNode.create(
        "variant", id="variant-archived",
        data=VariantPayload(ref_id="r0", variant_strategy_id="s1", pinned_run_id="run-1"),
    )
    foreign = CanvasNode.create(
        "variant", id="variant-foreign",
        data=VariantPayload(ref_id="r5", variant_strategy_id="s2"),
    )
    graph = CanvasGraph(
        nodes=pipeline_graph.nodes + (archived, foreign),
        edges=pipeline_graph.edges + (CanvasEdge.create("hypothesis-s1", "variant-foreign"),),
    )
    graph = remove_node(graph, "hypothesis-s1")
    assert graph.has_node("variant-archived")
    assert graph.has_node("variant-foreign")
    assert not graph.has_node("variant-1")


def test_remove_missing_node_raises(pipeline_graph):
    with pytest.raises(NodeNotFoundError) as exc_info:
        remove_node(pipeline_graph, "ghost")
    assert exc_info.value.node_id == "ghost"


def test_attached_variants(pipeline_graph):
    assert [v.id for v in attached_variants(pipeline_graph, "hypothesis-s1")] == ["variant-1"]
    assert attached_variants(pipeline_graph, "compiler-1") == []


# =============================================================================
# PAYLOAD UPDATES
# =============================================================================

def test_update_node_data_merges_fields(pipeline_graph):
    graph = update_node_data(pipeline_graph, "model-1", title="Renamed")
    data = graph.get_node("model-1").data
    assert data == ModelPayload(title="Renamed", provider_id="provider", model_id="model")


def test_update_node_data_converts_sequences(pipeline_graph):
    graph = update_node_data(pipeline_graph, "variant-1", version_ids=["r1", "r2"])
    assert graph.get_node("variant-1").data.version_ids == ("r1", "r2")


def test_update_node_data_unknown_field(pipeline_graph):
    with pytest.raises(PayloadError):
        update_node_data(pipeline_graph, "model-1", temperature=0.3)


def test_update_node_data_wrong_type(pipeline_graph):
    with pytest.raises(PayloadError):
        update_node_data(pipeline_graph, "hypothesis-s1", ref_id=5)


def test_update_node_data_missing_node(pipeline_graph):
    with pytest.raises(NodeNotFoundError):
        update_node_data(pipeline_graph, "ghost", title="x")


def test_set_node_measured(pipeline_graph):
    graph = set_node_measured(pipeline_graph, "compiler-1", 320, 512)
    assert graph.get_node("compiler-1").measured == Size(width=320, height=512)


def test_move_node_snaps(pipeline_graph):
    graph = move_node(pipeline_graph, "compiler-1", Position(x=501, y=309))
    assert graph.get_node("compiler-1").position == Position(x=500, y=300)


# =============================================================================
# EDGES
# =============================================================================

def test_add_edge_validates(pipeline_graph):
    graph, created = add_edge(pipeline_graph, "hypothesis-s1", "compiler-1")
    assert not created
    assert graph is pipeline_graph


def test_remove_edge(pipeline_graph):
    graph = remove_edge(pipeline_graph, "edge-model-1-to-compiler-1")
    assert graph.edge_count == 4
    assert not graph.has_edge("edge-model-1-to-compiler-1")


def test_remove_missing_edge_raises(pipeline_graph):
    with pytest.raises(EdgeNotFoundError):
        remove_edge(pipeline_graph, "edge-x-to-y")


def test_disconnect_outputs(pipeline_graph):
    graph = disconnect_outputs(pipeline_graph, "model-1")
    assert graph.node_count == 5
    assert all(e.source != "model-1" for e in graph.edges)
    assert graph.edge_count == 3


def test_disconnect_outputs_missing_node(pipeline_graph):
    with pytest.raises(NodeNotFoundError):
        disconnect_outputs(pipeline_graph, "ghost")


# =============================================================================
# TEMPLATE
# =============================================================================

def test_initialize_canvas(empty_graph):
    graph = initialize_canvas(empty_graph)
    brief, compiler = graph.nodes
    assert brief.type == "designBrief" and compiler.type == "compiler"
    assert brief.position == Position(x=0, y=300)
    assert compiler.position == Position(x=480, y=300)
    assert graph.edges == (CanvasEdge.create(brief.id, compiler.id),)


def test_initialize_non_empty_canvas_is_noop(pipeline_graph):
    assert initialize_canvas(pipeline_graph) is pipeline_graph
