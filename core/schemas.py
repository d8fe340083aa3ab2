"""
LATTICE SCHEMAS - The Grammar of the Canvas

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure sentences).

This module defines the structures that flow through every core call:
- Position / Size: Geometry of a node
- Node payloads: One concrete payload shape per node type (tagged by type)
- CanvasNode / CanvasEdge: The graph elements
- CanvasGraph: The explicit graph value threaded through pure functions
- CanvasSnapshot: The persisted, versioned shape (graph + view settings)
- Serialization helpers for the persisted JSON form

Design Principles:
1. IMMUTABLE VALUES: Graph structures are frozen msgspec.Structs. Every
   operation returns a new value built with msgspec.structs.replace.
2. TAGGED PAYLOADS: A node's `data` is decoded into the payload class that
   its `type` selects (payload_type_for is the type switch).
3. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
4. CAMEL CASE ON DISK: Persisted keys keep the canvas's camelCase names
   (refId, variantStrategyId, colGap, ...).
"""
import msgspec
from typing import Optional, Dict, Any, List, Tuple, Type, Union
import uuid

from core.ontology import (
    NodeType,
    EdgeType,
    EdgeStatus,
    SECTION_NODE_TYPES,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def generate_id() -> str:
    """Generate a new UUID hex string for node ids."""
    return uuid.uuid4().hex


def build_node_id(node_type: str) -> str:
    """Node id convention: `{type}-{uuid}`."""
    return f"{node_type}-{generate_id()}"


def build_edge_id(source_id: str, target_id: str) -> str:
    """
    Edge id convention: `edge-{source}-to-{target}`.

    Deterministic in (source, target), so at most one edge can exist
    per ordered pair.
    """
    return f"edge-{source_id}-to-{target_id}"


# =============================================================================
# GEOMETRY
# =============================================================================

class Position(msgspec.Struct, kw_only=True, frozen=True):
    """Top-left corner of a node on the canvas."""
    x: float = 0.0
    y: float = 0.0


class Size(msgspec.Struct, kw_only=True, frozen=True):
    """Last size reported by the rendering layer."""
    width: float
    height: float


# =============================================================================
# NODE PAYLOADS (One Shape per Node Type)
# =============================================================================

class SectionPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """Section nodes keep their content in the external spec store."""
    pass


class ModelPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """Provider/model selection feeding processing nodes."""
    title: Optional[str] = None
    provider_id: Optional[str] = None
    model_id: Optional[str] = None


class CompilerPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    Compiler node data.

    provider_id/model_id only appear on snapshots older than the model-node
    extraction step; current graphs attach a model node instead.
    """
    provider_id: Optional[str] = None
    model_id: Optional[str] = None


class DesignSystemPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """Self-contained design system (content lives in the node)."""
    title: Optional[str] = None
    content: Optional[str] = None
    images: Tuple[Dict[str, Any], ...] = ()
    provider_id: Optional[str] = None
    model_id: Optional[str] = None


class HypothesisPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    One generation strategy on the canvas.

    ref_id is the foreign key of the strategy this node is bound to.
    """
    ref_id: Optional[str] = None
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    format: Optional[str] = None
    last_run_provider_id: Optional[str] = None
    last_run_model_id: Optional[str] = None
    last_run_format: Optional[str] = None


class VariantPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    Generated output for one strategy (the version stack).

    - ref_id: the ACTIVE result id
    - variant_strategy_id: the strategy this stack belongs to
    - version_ids: every result id attached to this node, oldest first
    - pinned_run_id: set on archived copies forked off a hypothesis
    """
    ref_id: Optional[str] = None
    variant_strategy_id: Optional[str] = None
    pinned_run_id: Optional[str] = None
    version_ids: Tuple[str, ...] = ()


class CritiquePayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """User feedback on a variant, fed back into a compiler."""
    title: Optional[str] = None
    strengths: Optional[str] = None
    improvements: Optional[str] = None
    direction: Optional[str] = None


NodePayload = Union[
    SectionPayload,
    ModelPayload,
    CompilerPayload,
    DesignSystemPayload,
    HypothesisPayload,
    VariantPayload,
    CritiquePayload,
]

PAYLOAD_TYPES: Dict[str, Type[msgspec.Struct]] = {
    NodeType.DESIGN_BRIEF.value: SectionPayload,
    NodeType.EXISTING_DESIGN.value: SectionPayload,
    NodeType.RESEARCH_CONTEXT.value: SectionPayload,
    NodeType.OBJECTIVES_METRICS.value: SectionPayload,
    NodeType.DESIGN_CONSTRAINTS.value: SectionPayload,
    NodeType.MODEL.value: ModelPayload,
    NodeType.COMPILER.value: CompilerPayload,
    NodeType.DESIGN_SYSTEM.value: DesignSystemPayload,
    NodeType.HYPOTHESIS.value: HypothesisPayload,
    NodeType.VARIANT.value: VariantPayload,
    NodeType.CRITIQUE.value: CritiquePayload,
}


def payload_type_for(node_type: str) -> Optional[Type[msgspec.Struct]]:
    """The payload class a node type carries, or None for unknown types."""
    return PAYLOAD_TYPES.get(node_type)


def empty_payload(node_type: str) -> NodePayload:
    """
    Default payload for a freshly created node.

    Raises:
        msgspec.ValidationError: If node_type is not a known node type
    """
    payload_cls = payload_type_for(node_type)
    if payload_cls is None:
        raise msgspec.ValidationError(f"Unknown node type: {node_type}")
    return payload_cls()


def decode_payload(node_type: str, raw: Optional[Dict[str, Any]]) -> NodePayload:
    """
    Convert an untyped `data` dict into the payload class for node_type.

    Unknown keys are ignored, so payloads written by older schema versions
    still load.

    Raises:
        msgspec.ValidationError: If the type is unknown or a field has the
            wrong shape
    """
    payload_cls = payload_type_for(node_type)
    if payload_cls is None:
        raise msgspec.ValidationError(f"Unknown node type: {node_type}")
    return msgspec.convert(raw or {}, type=payload_cls)


# =============================================================================
# GRAPH ELEMENTS
# =============================================================================

class CanvasNode(msgspec.Struct, kw_only=True, frozen=True):
    """
    A visual unit representing one pipeline stage.

    `data` holds the NodePayload selected by `type`; use payload_type_for
    to switch on it rather than reading fields blindly.
    """
    id: str
    type: str
    position: Position = msgspec.field(default_factory=Position)
    measured: Optional[Size] = None
    data: Any = msgspec.field(default_factory=SectionPayload)

    @classmethod
    def create(
        cls,
        type: str,
        position: Optional[Position] = None,
        data: Optional[NodePayload] = None,
        **kwargs
    ) -> "CanvasNode":
        """Factory method to create a node with a generated id."""
        node_id = kwargs.pop("id", None) or build_node_id(type)
        return cls(
            id=node_id,
            type=type,
            position=position or Position(),
            data=data if data is not None else empty_payload(type),
            **kwargs
        )

    @property
    def is_section(self) -> bool:
        return self.type in SECTION_NODE_TYPES


class CanvasEdge(msgspec.Struct, kw_only=True, frozen=True):
    """A directed, type-validated data-flow connection."""
    id: str
    source: str
    target: str
    type: str = EdgeType.DATA_FLOW.value
    status: str = EdgeStatus.IDLE.value

    @classmethod
    def create(
        cls,
        source: str,
        target: str,
        status: str = EdgeStatus.IDLE.value,
    ) -> "CanvasEdge":
        """Factory method; the id is derived from (source, target)."""
        return cls(
            id=build_edge_id(source, target),
            source=source,
            target=target,
            status=status,
        )


class CanvasGraph(msgspec.Struct, kw_only=True, frozen=True):
    """
    The explicit graph value.

    The host owns the current graph and passes it into each core
    function, receiving a new graph back. Nothing in the core holds on
    to a graph between calls.
    """
    nodes: Tuple[CanvasNode, ...] = ()
    edges: Tuple[CanvasEdge, ...] = ()

    def get_node(self, node_id: str) -> Optional[CanvasNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Optional[CanvasEdge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def has_node(self, node_id: str) -> bool:
        return self.get_node(node_id) is not None

    def has_edge(self, edge_id: str) -> bool:
        return self.get_edge(edge_id) is not None

    def nodes_of_type(self, node_type: str) -> List[CanvasNode]:
        return [n for n in self.nodes if n.type == node_type]

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)


# =============================================================================
# PERSISTED SNAPSHOT
# =============================================================================

DEFAULT_ZOOM = 0.85


class Viewport(msgspec.Struct, kw_only=True, frozen=True):
    """Pan/zoom of the canvas view."""
    x: float = 0.0
    y: float = 0.0
    zoom: float = DEFAULT_ZOOM


class CanvasSnapshot(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    The persisted canvas state (current schema shape).

    show_mini_map/show_grid are the display flags, col_gap is the layout
    gap in pixels and auto_layout enables re-layout after mutations.
    """
    nodes: Tuple[CanvasNode, ...] = ()
    edges: Tuple[CanvasEdge, ...] = ()
    viewport: Viewport = msgspec.field(default_factory=Viewport)
    show_mini_map: bool = True
    show_grid: bool = True
    col_gap: float = 160
    auto_layout: bool = True

    @property
    def graph(self) -> CanvasGraph:
        return CanvasGraph(nodes=self.nodes, edges=self.edges)

    def with_graph(self, graph: CanvasGraph) -> "CanvasSnapshot":
        """Return a copy of this snapshot holding `graph`."""
        return msgspec.structs.replace(self, nodes=graph.nodes, edges=graph.edges)


class _SnapshotEnvelope(msgspec.Struct, kw_only=True, rename="camel"):
    """Snapshot with nodes left untyped until their payloads are switched."""
    nodes: List[Dict[str, Any]] = msgspec.field(default_factory=list)
    edges: List[CanvasEdge] = msgspec.field(default_factory=list)
    viewport: Viewport = msgspec.field(default_factory=Viewport)
    show_mini_map: bool = True
    show_grid: bool = True
    col_gap: float = 160
    auto_layout: bool = True


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders; reuse these instances across the application
_snapshot_encoder = msgspec.json.Encoder()
_raw_decoder = msgspec.json.Decoder()


def node_from_builtins(raw: Dict[str, Any]) -> CanvasNode:
    """
    Build a CanvasNode from a plain dict, switching the payload on `type`.

    Raises:
        msgspec.ValidationError: If the dict does not describe a valid node
    """
    if not isinstance(raw, dict):
        raise msgspec.ValidationError(f"Expected a node object, got {type(raw).__name__}")
    node_type = raw.get("type")
    if not isinstance(node_type, str):
        raise msgspec.ValidationError("Node is missing its type")
    shell = dict(raw)
    data = shell.pop("data", None)
    node = msgspec.convert(shell, type=CanvasNode)
    return msgspec.structs.replace(node, data=decode_payload(node_type, data))


def snapshot_from_builtins(raw: Dict[str, Any]) -> CanvasSnapshot:
    """
    Build a CanvasSnapshot from plain builtins in the current schema shape.

    Raises:
        msgspec.ValidationError: If any part has the wrong shape
    """
    envelope = msgspec.convert(raw, type=_SnapshotEnvelope)
    return CanvasSnapshot(
        nodes=tuple(node_from_builtins(n) for n in envelope.nodes),
        edges=tuple(envelope.edges),
        viewport=envelope.viewport,
        show_mini_map=envelope.show_mini_map,
        show_grid=envelope.show_grid,
        col_gap=envelope.col_gap,
        auto_layout=envelope.auto_layout,
    )


def encode_snapshot(snapshot: CanvasSnapshot) -> bytes:
    """Serialize a snapshot to JSON bytes."""
    return _snapshot_encoder.encode(snapshot)


def decode_raw(data: Union[bytes, str]) -> Any:
    """
    Decode JSON into untyped builtins (no schema applied).

    Raises:
        msgspec.DecodeError: If the input is not valid JSON
    """
    return _raw_decoder.decode(data)


def snapshot_to_builtins(snapshot: CanvasSnapshot) -> Dict[str, Any]:
    """
    Convert a snapshot to the builtins its JSON form decodes to.

    Sequences come back as lists, the shape migrations and hosts read.
    """
    return decode_raw(encode_snapshot(snapshot))
