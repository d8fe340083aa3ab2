"""
Unit tests for core/connections.py - ConnectionValidator and auto-connect

Tests the directional connection table, validated connect, and the
edges synthesized when a node is added.
"""
import itertools

import pytest

from core.ontology import NodeType, SECTION_NODE_TYPES
from core.schemas import CanvasNode, CanvasEdge, CanvasGraph, HypothesisPayload, VariantPayload
from core.connections import (
    VALID_CONNECTIONS,
    is_valid_connection,
    valid_targets,
    valid_sources,
    connect,
    strategies_conflict,
    auto_connect,
    build_model_edges_from_parent,
    find_missing_prerequisite,
    _validate_connections,
)

ALL_TYPES = [t.value for t in NodeType]

ALLOWED = {
    *((section, "compiler") for section in SECTION_NODE_TYPES),
    ("designSystem", "hypothesis"),
    ("compiler", "hypothesis"),
    ("hypothesis", "variant"),
    ("variant", "compiler"),
    ("variant", "existingDesign"),
    ("variant", "critique"),
    ("critique", "compiler"),
    ("model", "compiler"),
    ("model", "hypothesis"),
    ("model", "designSystem"),
}


# =============================================================================
# VALIDATOR TABLE
# =============================================================================

def test_connection_matrix_is_exact():
    """Every (source, target) pair over the closed type set matches the table."""
    for source, target in itertools.product(ALL_TYPES, ALL_TYPES):
        assert is_valid_connection(source, target) == ((source, target) in ALLOWED), (source, target)


def test_table_is_directional():
    assert is_valid_connection("compiler", "hypothesis")
    assert not is_valid_connection("hypothesis", "compiler")
    assert is_valid_connection("variant", "critique")
    assert is_valid_connection("critique", "compiler")
    assert not is_valid_connection("critique", "variant")


def test_unknown_types_never_connect():
    assert not is_valid_connection("designer", "compiler")
    assert not is_valid_connection("compiler", "designer")
    assert valid_targets("designer") == frozenset()


def test_valid_sources_inverts_table():
    assert valid_sources("critique") == {"variant"}
    assert valid_sources("variant") == {"hypothesis"}
    assert "model" in valid_sources("designSystem")


def test_table_only_names_known_types():
    assert _validate_connections() == []
    assert set(VALID_CONNECTIONS) <= set(ALL_TYPES)


# =============================================================================
# CONNECT
# =============================================================================

def test_connect_valid_pair(pipeline_graph):
    graph = CanvasGraph(
        nodes=pipeline_graph.nodes + (CanvasNode.create("critique", id="critique-1"),),
        edges=pipeline_graph.edges,
    )
    new_graph, created = connect(graph, "variant-1", "critique-1")
    assert created
    edge = new_graph.get_edge("edge-variant-1-to-critique-1")
    assert edge.status == "idle" and edge.type == "dataFlow"
    assert graph.edge_count == 5  # input untouched


def test_connect_invalid_pair_is_noop(pipeline_graph):
    graph, created = connect(pipeline_graph, "variant-1", "hypothesis-s1")
    assert not created
    assert graph is pipeline_graph


def test_connect_duplicate_is_noop(pipeline_graph):
    graph, created = connect(pipeline_graph, "designBrief-1", "compiler-1")
    assert not created
    assert graph.edge_count == 5


def test_connect_missing_node_is_noop(pipeline_graph):
    graph, created = connect(pipeline_graph, "designBrief-1", "compiler-404")
    assert not created


def _with_variant(graph, node_id, strategy_id):
    variant = CanvasNode.create(
        "variant", id=node_id, data=VariantPayload(ref_id="r9", variant_strategy_id=strategy_id)
    )
    return CanvasGraph(nodes=graph.nodes + (variant,), edges=graph.edges)


def test_connect_refuses_variant_of_other_strategy(pipeline_graph):
    graph = _with_variant(pipeline_graph, "variant-s2", "s2")
    new_graph, created = connect(graph, "hypothesis-s1", "variant-s2")
    assert not created
    assert new_graph is graph


def test_connect_accepts_variant_of_same_strategy(pipeline_graph):
    graph = _with_variant(pipeline_graph, "variant-s1b", "s1")
    new_graph, created = connect(graph, "hypothesis-s1", "variant-s1b")
    assert created
    assert new_graph.has_edge("edge-hypothesis-s1-to-variant-s1b")


def _node_with_ref(strategy_id):
    return CanvasNode.create("hypothesis", id=f"hypothesis-{strategy_id}", data=HypothesisPayload(ref_id=strategy_id))


def test_unbound_nodes_never_conflict():
    hypothesis = CanvasNode.create("hypothesis", id="h")
    bound = CanvasNode.create("variant", id="v", data=VariantPayload(variant_strategy_id="s2"))
    assert not strategies_conflict(hypothesis, bound)
    assert not strategies_conflict(_node_with_ref("s1"), CanvasNode.create("variant", id="v0"))
    assert strategies_conflict(_node_with_ref("s1"), bound)


# =============================================================================
# AUTO-CONNECT
# =============================================================================

def _node(node_type, node_id):
    return CanvasNode.create(node_type, id=node_id)


def test_new_section_connects_to_single_compiler():
    nodes = [_node("compiler", "c1")]
    edges = auto_connect("s", "researchContext", nodes)
    assert [(e.source, e.target) for e in edges] == [("s", "c1")]


def test_new_section_with_two_compilers_connects_nothing():
    nodes = [_node("compiler", "c1"), _node("compiler", "c2")]
    assert auto_connect("s", "researchContext", nodes) == []


def test_first_compiler_collects_every_section():
    nodes = [_node("designBrief", "b"), _node("researchContext", "r"), _node("variant", "v")]
    edges = auto_connect("c", "compiler", nodes)
    assert [(e.source, e.target) for e in edges] == [("b", "c"), ("r", "c")]


def test_second_compiler_collects_nothing_from_sections():
    nodes = [_node("designBrief", "b"), _node("compiler", "c1")]
    assert auto_connect("c2", "compiler", nodes) == []


def test_design_system_feeds_every_hypothesis():
    nodes = [_node("hypothesis", "h1"), _node("hypothesis", "h2")]
    edges = auto_connect("ds", "designSystem", nodes)
    assert [(e.source, e.target) for e in edges] == [("ds", "h1"), ("ds", "h2")]


def test_hypothesis_receives_every_design_system():
    nodes = [_node("designSystem", "ds1"), _node("designSystem", "ds2")]
    edges = auto_connect("h", "hypothesis", nodes)
    assert [(e.source, e.target) for e in edges] == [("ds1", "h"), ("ds2", "h")]


def test_processing_node_gets_first_model():
    nodes = [_node("model", "m1"), _node("model", "m2")]
    edges = auto_connect("h", "hypothesis", nodes)
    assert [(e.source, e.target) for e in edges] == [("m1", "h")]


def test_new_model_feeds_unattached_processing_nodes():
    nodes = [
        _node("model", "m1"),
        _node("compiler", "c"),
        _node("hypothesis", "h"),
        _node("designSystem", "ds"),
    ]
    existing = [CanvasEdge.create("m1", "c")]
    edges = auto_connect("m2", "model", nodes, existing)
    assert [(e.source, e.target) for e in edges] == [("m2", "h"), ("m2", "ds")]


def test_auto_connect_skips_existing_edges_and_self():
    nodes = [_node("compiler", "c1"), _node("designBrief", "b")]
    existing = [CanvasEdge.create("b", "c1")]
    assert auto_connect("b", "designBrief", nodes, existing) == []


def test_auto_connect_edges_are_idle_and_valid():
    nodes = [_node("designBrief", "b"), _node("model", "m"), _node("existingDesign", "e")]
    for edge in auto_connect("c", "compiler", nodes):
        assert edge.status == "idle"
        types = {n.id: n.type for n in nodes}
        types["c"] = "compiler"
        assert is_valid_connection(types[edge.source], types[edge.target])


# =============================================================================
# GROWTH HELPERS
# =============================================================================

def test_children_inherit_parent_models(pipeline_graph):
    nodes = pipeline_graph.nodes + (_node("hypothesis", "hypothesis-s2"),)
    edges = build_model_edges_from_parent("compiler-1", ["hypothesis-s2"], nodes, pipeline_graph.edges)
    assert [e.id for e in edges] == ["edge-model-1-to-hypothesis-s2"]


def test_children_fall_back_to_first_model():
    nodes = [_node("compiler", "c"), _node("model", "m"), _node("hypothesis", "h")]
    edges = build_model_edges_from_parent("c", ["h"], nodes, [])
    assert [(e.source, e.target) for e in edges] == [("m", "h")]


def test_children_without_any_model_get_nothing():
    nodes = [_node("compiler", "c"), _node("hypothesis", "h")]
    assert build_model_edges_from_parent("c", ["h"], nodes, []) == []


@pytest.mark.parametrize("node_type,expected", [
    ("compiler", "model"),
    ("hypothesis", "model"),
    ("designSystem", "model"),
    ("critique", None),
])
def test_missing_prerequisite(node_type, expected):
    assert find_missing_prerequisite(node_type, []) == expected


def test_prerequisite_satisfied_by_existing_model():
    assert find_missing_prerequisite("compiler", [_node("model", "m")]) is None
