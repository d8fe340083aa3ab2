"""
LATTICE CONNECTIONS - Which Edges May Exist

The connection table is DIRECTIONAL: valid(A, B) says nothing about
valid(B, A). Every edge the core creates (manual connect, auto-connect,
growth after compile or generate) goes through `is_valid_connection`.
Edges read from old snapshots are NOT re-validated; stale invalid edges
are tolerated but never created.

Auto-connect rules when a node is added:
  new section      -> the compiler, only if exactly one compiler exists
  first compiler   <- every existing section
  new designSystem -> every existing hypothesis
  new hypothesis   <- every existing designSystem
  new processing   <- the first existing model
  new model        -> every processing node that has no model yet
"""
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple
import warnings

from core.ontology import (
    NodeType,
    SECTION_NODE_TYPES,
    MODEL_CONSUMER_TYPES,
    is_known_type,
    is_section_type,
)
from core.schemas import CanvasNode, CanvasEdge, CanvasGraph, build_edge_id


# =============================================================================
# CONNECTION TABLE
# =============================================================================

_SECTION_TARGETS = frozenset({NodeType.COMPILER.value})

VALID_CONNECTIONS: Dict[str, FrozenSet[str]] = {
    **{section: _SECTION_TARGETS for section in SECTION_NODE_TYPES},
    NodeType.DESIGN_SYSTEM.value: frozenset({NodeType.HYPOTHESIS.value}),
    NodeType.COMPILER.value: frozenset({NodeType.HYPOTHESIS.value}),
    NodeType.HYPOTHESIS.value: frozenset({NodeType.VARIANT.value}),
    NodeType.VARIANT.value: frozenset({
        NodeType.COMPILER.value,
        NodeType.EXISTING_DESIGN.value,
        NodeType.CRITIQUE.value,
    }),
    NodeType.CRITIQUE.value: frozenset({NodeType.COMPILER.value}),
    NodeType.MODEL.value: frozenset(MODEL_CONSUMER_TYPES),
}


def is_valid_connection(source_type: str, target_type: str) -> bool:
    """
    Check whether an edge source_type -> target_type is allowed.

    Never raises; unknown types are simply not connectable.
    """
    return target_type in VALID_CONNECTIONS.get(source_type, frozenset())


def valid_targets(source_type: str) -> FrozenSet[str]:
    """Target types a node of source_type may connect to."""
    return VALID_CONNECTIONS.get(source_type, frozenset())


def valid_sources(target_type: str) -> FrozenSet[str]:
    """Source types that may connect to a node of target_type."""
    return frozenset(s for s, targets in VALID_CONNECTIONS.items() if target_type in targets)


# =============================================================================
# CONNECT
# =============================================================================

def strategies_conflict(source: CanvasNode, target: CanvasNode) -> bool:
    """
    True when a hypothesis -> variant edge would join two different strategies.

    Unbound nodes (no strategy id on either side) never conflict.
    """
    if source.type != NodeType.HYPOTHESIS.value or target.type != NodeType.VARIANT.value:
        return False
    source_strategy = getattr(source.data, "ref_id", None)
    target_strategy = getattr(target.data, "variant_strategy_id", None)
    return bool(source_strategy and target_strategy and source_strategy != target_strategy)


def connect(graph: CanvasGraph, source_id: str, target_id: str) -> Tuple[CanvasGraph, bool]:
    """
    Add a validated edge between two existing nodes.

    Returns (graph, False) unchanged when either node is missing, the
    type pair is not allowed, the hypothesis and variant are bound to
    different strategies, or the edge already exists.

    Args:
        graph: Current graph
        source_id: Id of the source node
        target_id: Id of the target node

    Returns:
        (new graph, True) on success, (graph, False) otherwise
    """
    source = graph.get_node(source_id)
    target = graph.get_node(target_id)
    if source is None or target is None:
        return graph, False
    if not is_valid_connection(source.type, target.type):
        return graph, False
    if strategies_conflict(source, target):
        return graph, False
    if graph.has_edge(build_edge_id(source_id, target_id)):
        return graph, False

    edge = CanvasEdge.create(source_id, target_id)
    return CanvasGraph(nodes=graph.nodes, edges=graph.edges + (edge,)), True


# =============================================================================
# AUTO-CONNECT
# =============================================================================

def _make_edge(source: CanvasNode, target: CanvasNode) -> Optional[CanvasEdge]:
    if source.id == target.id or not is_valid_connection(source.type, target.type):
        return None
    if strategies_conflict(source, target):
        return None
    return CanvasEdge.create(source.id, target.id)


def _model_attached_ids(nodes: Sequence[CanvasNode], edges: Iterable[CanvasEdge]) -> Set[str]:
    model_ids = {n.id for n in nodes if n.type == NodeType.MODEL.value}
    return {e.target for e in edges if e.source in model_ids}


def build_model_edge_for_node(
    new_node: CanvasNode,
    existing_nodes: Sequence[CanvasNode],
) -> Optional[CanvasEdge]:
    """Edge from the first model on the canvas to a new model-consuming node."""
    if new_node.type not in MODEL_CONSUMER_TYPES:
        return None
    for node in existing_nodes:
        if node.type == NodeType.MODEL.value and node.id != new_node.id:
            return _make_edge(node, new_node)
    return None


def auto_connect(
    new_id: str,
    new_type: str,
    existing_nodes: Sequence[CanvasNode],
    existing_edges: Iterable[CanvasEdge] = (),
) -> List[CanvasEdge]:
    """
    Synthesize the edges a newly added node should get.

    Args:
        new_id: Id of the node being added
        new_type: Its node type
        existing_nodes: Nodes already on the canvas (the new node may be included)
        existing_edges: Edges already on the canvas

    Returns:
        Validated, idle edges in deterministic order (no duplicates, none
        that already exist)
    """
    existing_edges = list(existing_edges)
    others = [n for n in existing_nodes if n.id != new_id]
    new_node = CanvasNode(id=new_id, type=new_type)
    candidates: List[Optional[CanvasEdge]] = []

    compilers = [n for n in others if n.type == NodeType.COMPILER.value]

    if is_section_type(new_type):
        if len(compilers) == 1:
            candidates.append(_make_edge(new_node, compilers[0]))

    elif new_type == NodeType.COMPILER.value:
        if not compilers:
            candidates.extend(_make_edge(n, new_node) for n in others if is_section_type(n.type))

    elif new_type == NodeType.DESIGN_SYSTEM.value:
        candidates.extend(
            _make_edge(new_node, n) for n in others if n.type == NodeType.HYPOTHESIS.value
        )

    elif new_type == NodeType.HYPOTHESIS.value:
        candidates.extend(
            _make_edge(n, new_node) for n in others if n.type == NodeType.DESIGN_SYSTEM.value
        )

    if new_type in MODEL_CONSUMER_TYPES:
        candidates.append(build_model_edge_for_node(new_node, others))

    elif new_type == NodeType.MODEL.value:
        attached = _model_attached_ids(others, existing_edges)
        candidates.extend(
            _make_edge(new_node, n) for n in others
            if n.type in MODEL_CONSUMER_TYPES and n.id not in attached
        )

    seen = {e.id for e in existing_edges}
    edges: List[CanvasEdge] = []
    for edge in candidates:
        if edge is None or edge.id in seen:
            continue
        seen.add(edge.id)
        edges.append(edge)
    return edges


def build_model_edges_from_parent(
    parent_id: str,
    child_ids: Sequence[str],
    nodes: Sequence[CanvasNode],
    edges: Iterable[CanvasEdge],
) -> List[CanvasEdge]:
    """
    Model edges for nodes grown out of a parent (e.g. hypotheses from a compiler).

    Children inherit every model feeding the parent. When the parent has
    no model, the first model on the canvas is used; with no model at all,
    no edges are produced.
    """
    by_id = {n.id: n for n in nodes}
    models = [
        by_id[e.source] for e in edges
        if e.target == parent_id
        and e.source in by_id
        and by_id[e.source].type == NodeType.MODEL.value
    ]
    if not models:
        models = [n for n in nodes if n.type == NodeType.MODEL.value][:1]

    result: List[CanvasEdge] = []
    seen = set()
    for model in models:
        for child_id in child_ids:
            child = by_id.get(child_id)
            if child is None:
                continue
            edge = _make_edge(model, child)
            if edge is not None and edge.id not in seen:
                seen.add(edge.id)
                result.append(edge)
    return result


def find_missing_prerequisite(node_type: str, nodes: Sequence[CanvasNode]) -> Optional[str]:
    """
    Node type that must be added alongside node_type, if any.

    Model-consuming nodes need at least one model on the canvas.
    """
    if node_type in MODEL_CONSUMER_TYPES and not any(n.type == NodeType.MODEL.value for n in nodes):
        return NodeType.MODEL.value
    return None


# =============================================================================
# MODULE INITIALIZATION
# =============================================================================

def _validate_connections() -> List[str]:
    """Every type in the table must be a known node type."""
    errors = []
    for source_type, targets in VALID_CONNECTIONS.items():
        if not is_known_type(source_type):
            errors.append(f"Unknown source type in VALID_CONNECTIONS: {source_type}")
        for target_type in targets:
            if not is_known_type(target_type):
                errors.append(f"Unknown target type for {source_type}: {target_type}")
    return errors


_validation_errors = _validate_connections()
if _validation_errors:
    for err in _validation_errors:
        warnings.warn(f"Connection table validation: {err}")
