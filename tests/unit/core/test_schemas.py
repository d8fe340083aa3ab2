"""
Unit tests for core/schemas.py - graph values and persisted shape

Tests:
- Id conventions
- Payload switching on node type
- Node/edge factories and CanvasGraph queries
- Snapshot conversion from and to builtins
"""
import msgspec
import pytest

from core.schemas import (
    Position,
    Size,
    CanvasNode,
    CanvasEdge,
    CanvasGraph,
    CanvasSnapshot,
    Viewport,
    SectionPayload,
    ModelPayload,
    HypothesisPayload,
    VariantPayload,
    DesignSystemPayload,
    build_edge_id,
    build_node_id,
    payload_type_for,
    empty_payload,
    decode_payload,
    node_from_builtins,
    snapshot_from_builtins,
    snapshot_to_builtins,
    encode_snapshot,
    decode_raw,
)


# =============================================================================
# IDS
# =============================================================================

def test_node_id_is_prefixed_with_type():
    node_id = build_node_id("hypothesis")
    assert node_id.startswith("hypothesis-")
    assert build_node_id("hypothesis") != node_id


def test_edge_id_is_deterministic():
    assert build_edge_id("a", "b") == "edge-a-to-b"
    assert build_edge_id("a", "b") != build_edge_id("b", "a")


# =============================================================================
# PAYLOADS
# =============================================================================

def test_payload_type_switch():
    assert payload_type_for("designBrief") is SectionPayload
    assert payload_type_for("model") is ModelPayload
    assert payload_type_for("variant") is VariantPayload
    assert payload_type_for("designer") is None


def test_empty_payload_unknown_type_raises():
    with pytest.raises(msgspec.ValidationError):
        empty_payload("designer")


def test_decode_payload_uses_camel_case_keys():
    payload = decode_payload("variant", {
        "refId": "r2",
        "variantStrategyId": "s1",
        "versionIds": ["r1", "r2"],
        "legacyField": True,
    })
    assert payload == VariantPayload(ref_id="r2", variant_strategy_id="s1", version_ids=("r1", "r2"))


def test_decode_payload_rejects_wrong_field_type():
    with pytest.raises(msgspec.ValidationError):
        decode_payload("hypothesis", {"refId": 12})


def test_payload_encodes_camel_case_and_omits_defaults():
    raw = msgspec.to_builtins(HypothesisPayload(ref_id="s1"))
    assert raw == {"refId": "s1"}


# =============================================================================
# GRAPH ELEMENTS
# =============================================================================

def test_node_create_generates_id_and_empty_payload():
    node = CanvasNode.create("designSystem")
    assert node.id.startswith("designSystem-")
    assert node.data == DesignSystemPayload()
    assert node.position == Position()
    assert node.measured is None


def test_node_create_accepts_explicit_id():
    node = CanvasNode.create("compiler", id="compiler-fixed")
    assert node.id == "compiler-fixed"


def test_is_section():
    assert CanvasNode.create("researchContext").is_section
    assert not CanvasNode.create("critique").is_section


def test_edge_create_defaults():
    edge = CanvasEdge.create("a", "b")
    assert edge.id == "edge-a-to-b"
    assert edge.type == "dataFlow"
    assert edge.status == "idle"


def test_values_are_immutable():
    node = CanvasNode.create("compiler")
    with pytest.raises(AttributeError):
        node.type = "model"


def test_graph_queries(pipeline_graph):
    assert pipeline_graph.node_count == 5
    assert pipeline_graph.edge_count == 5
    assert pipeline_graph.has_node("compiler-1")
    assert not pipeline_graph.has_node("compiler-2")
    assert pipeline_graph.get_edge("edge-compiler-1-to-hypothesis-s1").status == "complete"
    assert [n.id for n in pipeline_graph.nodes_of_type("variant")] == ["variant-1"]


# =============================================================================
# SNAPSHOT CONVERSION
# =============================================================================

def test_node_from_builtins_switches_payload():
    node = node_from_builtins({
        "id": "hypothesis-s1",
        "type": "hypothesis",
        "position": {"x": 10, "y": 20},
        "measured": {"width": 320, "height": 410},
        "data": {"refId": "s1"},
        "selected": True,
    })
    assert isinstance(node.data, HypothesisPayload)
    assert node.data.ref_id == "s1"
    assert node.measured == Size(width=320, height=410)


def test_node_from_builtins_requires_type():
    with pytest.raises(msgspec.ValidationError):
        node_from_builtins({"id": "x", "data": {}})


def test_snapshot_defaults():
    snapshot = CanvasSnapshot()
    assert snapshot.viewport == Viewport(x=0, y=0, zoom=0.85)
    assert snapshot.show_mini_map and snapshot.show_grid and snapshot.auto_layout
    assert snapshot.col_gap == 160


def test_snapshot_builtins_roundtrip(pipeline_graph):
    snapshot = CanvasSnapshot().with_graph(pipeline_graph)
    raw = snapshot_to_builtins(snapshot)

    assert "showMiniMap" in raw and "colGap" in raw
    assert raw["nodes"][4]["data"] == {"refId": "r1", "variantStrategyId": "s1", "versionIds": ["r1"]}

    assert snapshot_from_builtins(raw) == snapshot


def test_encode_snapshot_is_json(pipeline_graph):
    data = encode_snapshot(CanvasSnapshot().with_graph(pipeline_graph))
    raw = decode_raw(data)
    assert raw["autoLayout"] is True
    assert len(raw["edges"]) == 5
