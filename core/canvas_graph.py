"""
LATTICE CANVAS GRAPH - Host-Facing Graph Operations

Every operation takes the current CanvasGraph and returns a new one.
Nothing here keeps state between calls; CanvasStore (canvas_store.py)
is the optional convenience wrapper that holds "the current graph".

Error policy:
- Structural operations on ids that do not exist raise (NodeNotFoundError,
  EdgeNotFoundError). The host asked for something specific and it is
  not there.
- Connecting two nodes is a validity question, not an error: add_edge
  returns (graph, False) for invalid or duplicate pairs.
- Adding a second node of a singleton section type raises
  SingletonViolationError.
"""
from typing import Any, Iterable, List, Optional, Set, Tuple

import msgspec

from core.ontology import NodeType, is_known_type, is_section_type
from core.schemas import (
    CanvasNode,
    CanvasEdge,
    CanvasGraph,
    Position,
    Size,
    build_node_id,
    empty_payload,
    payload_type_for,
)
from core.connections import auto_connect, connect
from core.layout import (
    DEFAULT_COL_GAP,
    DEFAULT_CANVAS_Y,
    column_x,
    compute_default_position,
    snap,
)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph operations."""
    pass


class NodeNotFoundError(GraphError):
    """Raised when a node id is not in the graph."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class EdgeNotFoundError(GraphError):
    """Raised when an edge id is not in the graph."""
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge not found: {edge_id}")


class SingletonViolationError(GraphError):
    """Raised when adding a second node of a singleton section type."""
    def __init__(self, node_type: str, existing_id: str):
        self.node_type = node_type
        self.existing_id = existing_id
        super().__init__(f"Section '{node_type}' already exists: {existing_id}")


class PayloadError(GraphError):
    """Raised when node data does not fit the payload of its type."""
    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(f"Invalid data for {node_id}: {message}")


class MigrationError(GraphError):
    """Raised inside a migration step; never escapes migrate()."""
    pass


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _require_node(graph: CanvasGraph, node_id: str) -> CanvasNode:
    node = graph.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    return node


def replace_node(graph: CanvasGraph, node: CanvasNode) -> CanvasGraph:
    """Swap in a node with the same id (raises if absent)."""
    _require_node(graph, node.id)
    return CanvasGraph(
        nodes=tuple(node if n.id == node.id else n for n in graph.nodes),
        edges=graph.edges,
    )


def without_nodes(graph: CanvasGraph, node_ids: Iterable[str]) -> CanvasGraph:
    """Drop nodes and every edge touching them. Unknown ids are ignored."""
    removed = set(node_ids)
    if not removed:
        return graph
    return CanvasGraph(
        nodes=tuple(n for n in graph.nodes if n.id not in removed),
        edges=tuple(e for e in graph.edges if e.source not in removed and e.target not in removed),
    )


def attached_variants(graph: CanvasGraph, hypothesis_id: str) -> List[CanvasNode]:
    """Variant nodes reached by the hypothesis's outgoing edges, in edge order."""
    by_id = {n.id: n for n in graph.nodes}
    result: List[CanvasNode] = []
    seen: Set[str] = set()
    for edge in graph.edges:
        if edge.source != hypothesis_id or edge.target in seen:
            continue
        target = by_id.get(edge.target)
        if target is not None and target.type == NodeType.VARIANT.value:
            seen.add(target.id)
            result.append(target)
    return result


# =============================================================================
# NODE OPERATIONS
# =============================================================================

def add_node(
    graph: CanvasGraph,
    node_type: str,
    position: Optional[Position] = None,
    column_gap: float = DEFAULT_COL_GAP,
    data: Optional[Any] = None,
) -> Tuple[CanvasGraph, CanvasNode]:
    """
    Add a node of node_type and auto-connect it.

    Args:
        graph: Current graph
        node_type: One of the NodeType values
        position: Where to drop the node; computed from the canonical
            columns when omitted. Always snapped to the grid.
        column_gap: Column gap used for the default position
        data: Initial payload (must match node_type); empty when omitted

    Returns:
        (new graph, the created node)

    Raises:
        PayloadError: If node_type is unknown or data is the wrong payload
        SingletonViolationError: If a section of this type already exists
    """
    if not is_known_type(node_type):
        raise PayloadError(node_type, f"unknown node type '{node_type}'")

    if is_section_type(node_type):
        for existing in graph.nodes:
            if existing.type == node_type:
                raise SingletonViolationError(node_type, existing.id)

    payload_cls = payload_type_for(node_type)
    if data is not None and not isinstance(data, payload_cls):
        raise PayloadError(node_type, f"expected {payload_cls.__name__}, got {type(data).__name__}")

    node_id = build_node_id(node_type)
    if position is None:
        position = compute_default_position(node_type, graph.nodes, column_x(column_gap))

    node = CanvasNode(
        id=node_id,
        type=node_type,
        position=snap(position),
        data=data if data is not None else empty_payload(node_type),
    )
    new_edges = auto_connect(node_id, node_type, graph.nodes, graph.edges)
    return CanvasGraph(nodes=graph.nodes + (node,), edges=graph.edges + tuple(new_edges)), node


def remove_node(graph: CanvasGraph, node_id: str) -> CanvasGraph:
    """
    Remove a node and every edge touching it.

    Removing a hypothesis also removes the variants bound to it (attached
    through its edges and sharing its strategy id). Archived copies have
    no edge to the hypothesis and are kept.

    Raises:
        NodeNotFoundError: If node_id is not in the graph
    """
    node = _require_node(graph, node_id)
    removed = {node_id}

    if node.type == NodeType.HYPOTHESIS.value:
        strategy_id = node.data.ref_id
        for variant in attached_variants(graph, node_id):
            if strategy_id is None or variant.data.variant_strategy_id in (None, strategy_id):
                removed.add(variant.id)

    return without_nodes(graph, removed)


def update_node_data(graph: CanvasGraph, node_id: str, **partial: Any) -> CanvasGraph:
    """
    Merge fields into a node's payload.

    Field names are the payload's Python names (ref_id, version_ids, ...).

    Raises:
        NodeNotFoundError: If node_id is not in the graph
        PayloadError: If a field does not exist on the payload or has the
            wrong type
    """
    node = _require_node(graph, node_id)
    payload = node.data
    payload_cls = type(payload)

    unknown = [name for name in partial if name not in payload_cls.__struct_fields__]
    if unknown:
        raise PayloadError(node_id, f"unknown fields {unknown} for {node.type}")

    try:
        merged = msgspec.structs.replace(payload, **partial)
        # Round-trip through builtins so field types are checked
        merged = msgspec.convert(msgspec.to_builtins(merged), type=payload_cls)
    except (msgspec.ValidationError, TypeError) as e:
        raise PayloadError(node_id, str(e)) from e

    return replace_node(graph, msgspec.structs.replace(node, data=merged))


def set_node_measured(graph: CanvasGraph, node_id: str, width: float, height: float) -> CanvasGraph:
    """
    Record the size the renderer measured for a node.

    Raises:
        NodeNotFoundError: If node_id is not in the graph
    """
    node = _require_node(graph, node_id)
    return replace_node(graph, msgspec.structs.replace(node, measured=Size(width=width, height=height)))


def move_node(graph: CanvasGraph, node_id: str, position: Position) -> CanvasGraph:
    """Place a node by hand (snapped). Raises NodeNotFoundError."""
    node = _require_node(graph, node_id)
    return replace_node(graph, msgspec.structs.replace(node, position=snap(position)))


# =============================================================================
# EDGE OPERATIONS
# =============================================================================

def add_edge(graph: CanvasGraph, source_id: str, target_id: str) -> Tuple[CanvasGraph, bool]:
    """Validated edge creation; see connections.connect. Never raises."""
    return connect(graph, source_id, target_id)


def remove_edge(graph: CanvasGraph, edge_id: str) -> CanvasGraph:
    """
    Remove a single edge.

    Raises:
        EdgeNotFoundError: If edge_id is not in the graph
    """
    if not graph.has_edge(edge_id):
        raise EdgeNotFoundError(edge_id)
    return CanvasGraph(nodes=graph.nodes, edges=tuple(e for e in graph.edges if e.id != edge_id))


def disconnect_outputs(graph: CanvasGraph, node_id: str) -> CanvasGraph:
    """
    Remove every outgoing edge of a node.

    Raises:
        NodeNotFoundError: If node_id is not in the graph
    """
    _require_node(graph, node_id)
    return CanvasGraph(nodes=graph.nodes, edges=tuple(e for e in graph.edges if e.source != node_id))


# =============================================================================
# TEMPLATE
# =============================================================================

def initialize_canvas(graph: CanvasGraph, column_gap: float = DEFAULT_COL_GAP) -> CanvasGraph:
    """
    Seed an empty canvas with the starter template: design brief -> compiler.

    A non-empty graph is returned unchanged.
    """
    if graph.nodes:
        return graph

    columns = column_x(column_gap)
    brief = CanvasNode.create(
        NodeType.DESIGN_BRIEF.value,
        position=snap(Position(x=columns.sections, y=DEFAULT_CANVAS_Y)),
    )
    compiler = CanvasNode.create(
        NodeType.COMPILER.value,
        position=snap(Position(x=columns.compiler, y=DEFAULT_CANVAS_Y)),
    )
    edge = CanvasEdge.create(brief.id, compiler.id)
    return CanvasGraph(nodes=(brief, compiler), edges=(edge,))
