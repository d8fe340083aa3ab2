"""
LATTICE VISUALIZATION CORE - The Canvas Renderer's Data Model

This module provides the data structures and serialization for the
canvas's inspection layer. It turns a laid-out CanvasGraph into flat,
render-ready records and exports them as Apache Arrow IPC.

Architecture:
- VizNode/VizEdge: Lightweight render-focused representations
- GraphSnapshot: Full canvas state (positions, lineage flags, metrics)
- MutationEvent: Individual canvas mutation for temporal debugging

Performance:
- Uses polars for Arrow IPC serialization
- Colors and layer indices are computed here, not by the client
"""
import msgspec
from typing import Optional, Dict, List, Any, Tuple
from enum import Enum
from datetime import datetime, timezone
import io

import polars as pl

from core.ontology import NodeType, EdgeStatus, role_of, node_width
from core.schemas import CanvasGraph
from core.graph_index import GraphIndex
from core.layout import node_height
from core.lineage import Lineage, EMPTY_LINEAGE, lineage_dim_state


# =============================================================================
# COLOR PALETTES (Consistent across views)
# =============================================================================

# Node colors by type (hex)
NODE_COLORS: Dict[str, str] = {
    NodeType.DESIGN_BRIEF.value: "#E63946",
    NodeType.EXISTING_DESIGN.value: "#E76F51",
    NodeType.RESEARCH_CONTEXT.value: "#F4A261",
    NodeType.OBJECTIVES_METRICS.value: "#E9C46A",
    NodeType.DESIGN_CONSTRAINTS.value: "#D4A373",
    NodeType.MODEL.value: "#8D99AE",
    NodeType.COMPILER.value: "#2A9D8F",
    NodeType.DESIGN_SYSTEM.value: "#A8DADC",
    NodeType.HYPOTHESIS.value: "#457B9D",
    NodeType.VARIANT.value: "#264653",
    NodeType.CRITIQUE.value: "#E83E8C",
    "default": "#6C757D",
}

# Edge colors by data-flow status
EDGE_COLORS: Dict[str, str] = {
    EdgeStatus.IDLE.value: "#ADB5BD",        # Light gray
    EdgeStatus.PROCESSING.value: "#17A2B8",  # Cyan
    EdgeStatus.COMPLETE.value: "#28A745",    # Green
    EdgeStatus.ERROR.value: "#DC3545",       # Red
    "default": "#6C757D",
}


# =============================================================================
# MUTATION TYPES (For event logging)
# =============================================================================

class MutationType(str, Enum):
    """Types of canvas mutations for event tracking."""
    NODE_CREATED = "NODE_CREATED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_DELETED = "NODE_DELETED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_DELETED = "EDGE_DELETED"
    STATUS_CHANGED = "STATUS_CHANGED"
    LAYOUT_APPLIED = "LAYOUT_APPLIED"
    MIGRATION_APPLIED = "MIGRATION_APPLIED"
    BATCH_UPDATE = "BATCH_UPDATE"


class MutationEvent(msgspec.Struct, kw_only=True):
    """
    Individual mutation event for temporal debugging.

    Buffered in memory and optionally appended to a JSONL file.
    """
    timestamp: str
    sequence: int
    mutation_type: str                  # MutationType value
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None

    # Source/target for edges
    edge_id: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    edge_type: Optional[str] = None

    # Layout, migration and batch events
    node_count: int = 0
    edge_count: int = 0
    from_version: Optional[int] = None
    to_version: Optional[int] = None
    detail: Optional[str] = None


# =============================================================================
# VISUALIZATION DATA STRUCTURES
# =============================================================================

class VizNode(msgspec.Struct, kw_only=True):
    """
    Lightweight node representation for rendering.
    """
    id: str
    type: str
    role: str
    label: str                          # Short display label
    color: str                          # Hex color code
    x: float
    y: float
    width: float
    height: float
    layer: int = 0                      # Column index after layout
    dim_state: str = "none"             # Lineage highlight state

    @classmethod
    def from_canvas_node(
        cls,
        node,  # CanvasNode
        layer: int = 0,
        dim_state: str = "none",
    ) -> "VizNode":
        """Create VizNode from a CanvasNode."""
        role = role_of(node.type)
        label = getattr(node.data, "title", None) or f"{node.type}:{node.id[-8:]}"
        return cls(
            id=node.id,
            type=node.type,
            role=role.value if role is not None else "unknown",
            label=label[:40],
            color=NODE_COLORS.get(node.type, NODE_COLORS["default"]),
            x=node.position.x,
            y=node.position.y,
            width=float(node_width(node.type)),
            height=float(node_height(node)),
            layer=layer,
            dim_state=dim_state,
        )


class VizEdge(msgspec.Struct, kw_only=True):
    """
    Lightweight edge representation for rendering.
    """
    id: str
    source: str                         # Source node ID
    target: str                         # Target node ID
    status: str                         # Data-flow status
    color: str                          # Hex color code
    in_lineage: bool = False

    @classmethod
    def from_canvas_edge(cls, edge, in_lineage: bool = False) -> "VizEdge":
        """Create VizEdge from a CanvasEdge."""
        return cls(
            id=edge.id,
            source=edge.source,
            target=edge.target,
            status=edge.status,
            color=EDGE_COLORS.get(edge.status, EDGE_COLORS["default"]),
            in_lineage=in_lineage,
        )


class GraphSnapshot(msgspec.Struct, kw_only=True):
    """
    Complete canvas state for one render.
    """
    timestamp: str
    node_count: int
    edge_count: int
    nodes: List[VizNode]
    edges: List[VizEdge]

    # Graph metrics for display
    layer_count: int = 0
    has_cycle: bool = False
    dangling_edge_count: int = 0

    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return msgspec.to_builtins(self)


def create_snapshot(
    graph: CanvasGraph,
    current_lineage: Optional[Lineage] = None,
    selected_id: Optional[str] = None,
    label: str = "",
) -> GraphSnapshot:
    """
    Create a GraphSnapshot from a (laid-out) CanvasGraph.

    Layers are the distinct X columns in left-to-right order, so this
    reflects whatever positions the graph currently holds.

    Args:
        graph: Canvas graph, normally straight out of layout
        current_lineage: Active lineage for highlight flags
        selected_id: The selected node (not dimmed, not ringed)
        label: Human-readable label

    Returns:
        GraphSnapshot ready for rendering
    """
    current_lineage = current_lineage or EMPTY_LINEAGE
    columns = sorted({n.position.x for n in graph.nodes})
    layer_of = {x: i for i, x in enumerate(columns)}

    viz_nodes = [
        VizNode.from_canvas_node(
            node,
            layer=layer_of[node.position.x],
            dim_state=lineage_dim_state(current_lineage, node.id, node.id == selected_id),
        )
        for node in graph.nodes
    ]
    viz_edges = [
        VizEdge.from_canvas_edge(edge, in_lineage=current_lineage.contains_edge(edge.id))
        for edge in graph.edges
    ]

    index = GraphIndex.from_graph(graph)
    return GraphSnapshot(
        timestamp=datetime.now(timezone.utc).isoformat(),
        node_count=len(viz_nodes),
        edge_count=len(viz_edges),
        nodes=viz_nodes,
        edges=viz_edges,
        layer_count=len(columns),
        has_cycle=index.has_cycle(),
        dangling_edge_count=len(index.dangling_edges),
        label=label,
    )


# =============================================================================
# ARROW IPC SERIALIZATION
# =============================================================================

def serialize_to_arrow(snapshot: GraphSnapshot) -> Tuple[bytes, bytes]:
    """
    Serialize GraphSnapshot to Apache Arrow IPC format.

    Returns:
        Tuple of (nodes_arrow_bytes, edges_arrow_bytes)
    """
    # Nodes DataFrame
    nodes_df = pl.DataFrame({
        "id": [n.id for n in snapshot.nodes],
        "type": [n.type for n in snapshot.nodes],
        "role": [n.role for n in snapshot.nodes],
        "label": [n.label for n in snapshot.nodes],
        "color": [n.color for n in snapshot.nodes],
        "x": [n.x for n in snapshot.nodes],
        "y": [n.y for n in snapshot.nodes],
        "width": [n.width for n in snapshot.nodes],
        "height": [n.height for n in snapshot.nodes],
        "layer": [n.layer for n in snapshot.nodes],
        "dim_state": [n.dim_state for n in snapshot.nodes],
    }, schema={
        "id": pl.Utf8,
        "type": pl.Utf8,
        "role": pl.Utf8,
        "label": pl.Utf8,
        "color": pl.Utf8,
        "x": pl.Float64,
        "y": pl.Float64,
        "width": pl.Float64,
        "height": pl.Float64,
        "layer": pl.Int64,
        "dim_state": pl.Utf8,
    })

    # Edges DataFrame
    edges_df = pl.DataFrame({
        "id": [e.id for e in snapshot.edges],
        "source": [e.source for e in snapshot.edges],
        "target": [e.target for e in snapshot.edges],
        "status": [e.status for e in snapshot.edges],
        "color": [e.color for e in snapshot.edges],
        "in_lineage": [e.in_lineage for e in snapshot.edges],
    }, schema={
        "id": pl.Utf8,
        "source": pl.Utf8,
        "target": pl.Utf8,
        "status": pl.Utf8,
        "color": pl.Utf8,
        "in_lineage": pl.Boolean,
    })

    # Serialize to Arrow IPC
    nodes_buffer = io.BytesIO()
    edges_buffer = io.BytesIO()

    nodes_df.write_ipc(nodes_buffer)
    edges_df.write_ipc(edges_buffer)

    return nodes_buffer.getvalue(), edges_buffer.getvalue()


def read_arrow_nodes(data: bytes) -> pl.DataFrame:
    """Load a nodes table written by serialize_to_arrow."""
    return pl.read_ipc(io.BytesIO(data))
