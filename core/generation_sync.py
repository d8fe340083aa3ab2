"""
LATTICE GENERATION SYNC - Reconciling Results onto the Canvas

Generation runs outside the core. When results come back, the host hands
them to this module, which grows or updates the graph to reflect them.

Version stacking:
    One variant node per (source, strategy). A new result for a strategy
    that already has a variant node does NOT create a sibling; it moves the
    node's active pointer (data.ref_id) and appends to data.version_ids.

Also here:
- sync_after_compile: replace a compiler's hypotheses with a fresh set
- fork_hypothesis_variants: archive the current variants of a hypothesis
- mark_result / set_edge_status_*: per-result completion callbacks
- find_orphans / prune_orphans: drop nodes whose backing entity vanished
- VersionStack: navigation over a variant's version history

All functions are synchronous and return new graph values.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import msgspec

from core.ontology import NodeType, EdgeStatus
from core.schemas import (
    CanvasNode,
    CanvasEdge,
    CanvasGraph,
    Position,
    HypothesisPayload,
    VariantPayload,
    build_node_id,
)
from core.connections import is_valid_connection, build_model_edges_from_parent
from core.layout import (
    DEFAULT_COL_GAP,
    column_x,
    compute_hypothesis_positions,
    snap,
)
from core.canvas_graph import (
    NodeNotFoundError,
    PayloadError,
    attached_variants,
    remove_node,
    replace_node,
    without_nodes,
)

logger = logging.getLogger("lattice.sync")

# Vertical offset applied to variants archived by a fork
FORK_OFFSET_Y = 200
UNKNOWN_RUN_ID = "unknown"


class GenerationResultRef(msgspec.Struct, kw_only=True, frozen=True):
    """One completed (or started) generation: which strategy, which result."""
    strategy_id: str
    result_id: str


# =============================================================================
# EDGE STATUS
# =============================================================================

def _with_status(edge: CanvasEdge, status: str) -> CanvasEdge:
    if edge.status == status:
        return edge
    return msgspec.structs.replace(edge, status=status)


def set_edge_status_by_source(graph: CanvasGraph, source_id: str, status: str) -> CanvasGraph:
    """Set the status of every edge leaving source_id."""
    status = EdgeStatus(status).value
    return CanvasGraph(
        nodes=graph.nodes,
        edges=tuple(_with_status(e, status) if e.source == source_id else e for e in graph.edges),
    )


def set_edge_status_by_target(graph: CanvasGraph, target_id: str, status: str) -> CanvasGraph:
    """Set the status of every edge entering target_id."""
    status = EdgeStatus(status).value
    return CanvasGraph(
        nodes=graph.nodes,
        edges=tuple(_with_status(e, status) if e.target == target_id else e for e in graph.edges),
    )


def mark_result(
    graph: CanvasGraph,
    node_map: Mapping[str, str],
    strategy_id: str,
    status: str,
) -> CanvasGraph:
    """
    Per-result completion callback.

    Uses the map returned by sync_generation to find the variant node for
    strategy_id and sets its incoming edge status (complete or error).
    Unknown strategies leave the graph unchanged.
    """
    node_id = node_map.get(strategy_id)
    if node_id is None or not graph.has_node(node_id):
        logger.debug("No variant node mapped for strategy %s", strategy_id)
        return graph
    return set_edge_status_by_target(graph, node_id, status)


# =============================================================================
# GENERATION SYNC (Version Stacking)
# =============================================================================

def _variants_by_strategy(graph: CanvasGraph, source_id: str) -> Dict[str, CanvasNode]:
    by_strategy: Dict[str, CanvasNode] = {}
    for variant in attached_variants(graph, source_id):
        strategy_id = variant.data.variant_strategy_id
        if strategy_id is not None:
            by_strategy.setdefault(strategy_id, variant)
    return by_strategy


def sync_generation(
    graph: CanvasGraph,
    source_id: str,
    results: Iterable[GenerationResultRef],
    column_gap: float = DEFAULT_COL_GAP,
) -> Tuple[CanvasGraph, Dict[str, str]]:
    """
    Attach a batch of generation results to the variants of source_id.

    For each result:
    - a variant successor bound to the strategy exists: its active result
      becomes result_id, result_id is appended to its history (once) and
      the connecting edge goes to `processing`
    - otherwise: a new variant is created in the variant column at the
      source's height, with a `processing` edge from the source

    Args:
        graph: Current graph
        source_id: The node the results were generated from (a hypothesis)
        results: Results to attach, in order
        column_gap: Column gap used to place new variants

    Returns:
        (new graph, {strategy_id: variant node id}). An unknown source, or
        one that cannot feed a variant, returns the graph unchanged and an
        empty map.
        Results for a strategy other than the hypothesis source's own are
        skipped and left out of the map.
    """
    source = graph.get_node(source_id)
    if source is None:
        logger.debug("sync_generation: unknown source %s", source_id)
        return graph, {}
    if not is_valid_connection(source.type, NodeType.VARIANT.value):
        logger.warning("sync_generation: %s nodes cannot feed variants", source.type)
        return graph, {}

    existing = _variants_by_strategy(graph, source_id)
    variant_x = column_x(column_gap).variant
    node_map: Dict[str, str] = {}
    bound_strategy = getattr(source.data, "ref_id", None) if source.type == NodeType.HYPOTHESIS.value else None

    for result in results:
        if bound_strategy and result.strategy_id != bound_strategy:
            logger.warning(
                "sync_generation: result %s is for strategy %s, but %s is bound to %s; skipped",
                result.result_id, result.strategy_id, source_id, bound_strategy,
            )
            continue
        current = existing.get(result.strategy_id)
        if current is not None:
            current = graph.get_node(current.id)
            versions = current.data.version_ids
            if not versions and current.data.ref_id:
                versions = (current.data.ref_id,)
            if result.result_id not in versions:
                versions = versions + (result.result_id,)
            data = msgspec.structs.replace(
                current.data,
                ref_id=result.result_id,
                variant_strategy_id=result.strategy_id,
                version_ids=versions,
            )
            graph = replace_node(graph, msgspec.structs.replace(current, data=data))
            graph = CanvasGraph(
                nodes=graph.nodes,
                edges=tuple(
                    _with_status(e, EdgeStatus.PROCESSING.value)
                    if e.source == source_id and e.target == current.id else e
                    for e in graph.edges
                ),
            )
            node_map[result.strategy_id] = current.id
            continue

        variant = CanvasNode(
            id=build_node_id(NodeType.VARIANT.value),
            type=NodeType.VARIANT.value,
            position=snap(Position(x=variant_x, y=source.position.y)),
            data=VariantPayload(
                ref_id=result.result_id,
                variant_strategy_id=result.strategy_id,
                version_ids=(result.result_id,),
            ),
        )
        edge = CanvasEdge.create(source_id, variant.id, status=EdgeStatus.PROCESSING.value)
        graph = CanvasGraph(nodes=graph.nodes + (variant,), edges=graph.edges + (edge,))
        existing[result.strategy_id] = variant
        node_map[result.strategy_id] = variant.id

    return graph, node_map


# =============================================================================
# COMPILE SYNC
# =============================================================================

def sync_after_compile(
    graph: CanvasGraph,
    compiler_id: str,
    strategy_ids: Sequence[str],
    column_gap: float = DEFAULT_COL_GAP,
) -> CanvasGraph:
    """
    Replace a compiler's hypotheses with one hypothesis per strategy.

    The compiler's previous hypotheses and the variants attached to them are
    removed. New hypotheses get id `hypothesis-{strategy_id}`, a `complete`
    edge from the compiler, a position in a centred stack at the compiler's
    height, and the compiler's model(s).

    An unknown compiler leaves the graph unchanged.
    """
    compiler = graph.get_node(compiler_id)
    if compiler is None:
        logger.debug("sync_after_compile: unknown compiler %s", compiler_id)
        return graph

    old_hypotheses: List[str] = []
    for edge in graph.edges:
        if edge.source != compiler_id:
            continue
        target = graph.get_node(edge.target)
        if target is not None and target.type == NodeType.HYPOTHESIS.value:
            old_hypotheses.append(target.id)

    removed: Set[str] = set(old_hypotheses)
    for hypothesis_id in old_hypotheses:
        removed.update(v.id for v in attached_variants(graph, hypothesis_id))
    graph = without_nodes(graph, removed)

    positions = compute_hypothesis_positions(
        len(strategy_ids),
        compiler.position.y,
        column_x(column_gap),
    )

    nodes = list(graph.nodes)
    edges = list(graph.edges)
    edge_ids = {e.id for e in edges}
    hypothesis_ids: List[str] = []

    for strategy_id, position in zip(strategy_ids, positions):
        node_id = f"{NodeType.HYPOTHESIS.value}-{strategy_id}"
        if node_id in hypothesis_ids:
            continue
        hypothesis_ids.append(node_id)
        if not any(n.id == node_id for n in nodes):
            nodes.append(CanvasNode(
                id=node_id,
                type=NodeType.HYPOTHESIS.value,
                position=position,
                data=HypothesisPayload(ref_id=strategy_id),
            ))
        edge = CanvasEdge.create(compiler_id, node_id, status=EdgeStatus.COMPLETE.value)
        if edge.id not in edge_ids:
            edge_ids.add(edge.id)
            edges.append(edge)

    for edge in build_model_edges_from_parent(compiler_id, hypothesis_ids, nodes, edges):
        if edge.id not in edge_ids:
            edge_ids.add(edge.id)
            edges.append(edge)

    logger.debug(
        "Compiler %s: replaced %d hypotheses with %d",
        compiler_id, len(old_hypotheses), len(hypothesis_ids),
    )
    return CanvasGraph(nodes=tuple(nodes), edges=tuple(edges))


# =============================================================================
# FORK (Archive Current Variants)
# =============================================================================

def fork_hypothesis_variants(
    graph: CanvasGraph,
    hypothesis_id: str,
    run_ids: Optional[Mapping[str, str]] = None,
) -> CanvasGraph:
    """
    Archive the variants currently attached to a hypothesis.

    Each attached variant with a strategy id is pinned to the run that
    produced its active result (looked up by strategy id in run_ids,
    "unknown" when missing) and moved down by FORK_OFFSET_Y. The
    hypothesis -> variant edges are then removed, so the next generation
    creates fresh variant nodes.
    """
    variants = attached_variants(graph, hypothesis_id)
    if not variants:
        return graph

    run_ids = run_ids or {}
    variant_ids = {v.id for v in variants}
    nodes = []
    for node in graph.nodes:
        strategy_id = node.data.variant_strategy_id if node.id in variant_ids else None
        if strategy_id is None:
            nodes.append(node)
            continue
        nodes.append(msgspec.structs.replace(
            node,
            position=Position(x=node.position.x, y=node.position.y + FORK_OFFSET_Y),
            data=msgspec.structs.replace(
                node.data,
                pinned_run_id=run_ids.get(strategy_id, UNKNOWN_RUN_ID),
            ),
        ))

    edges = tuple(
        e for e in graph.edges
        if not (e.source == hypothesis_id and e.target in variant_ids)
    )
    return CanvasGraph(nodes=tuple(nodes), edges=edges)


# =============================================================================
# ORPHAN PRUNING
# =============================================================================

def find_orphans(
    graph: CanvasGraph,
    valid_strategy_ids: Iterable[str],
    valid_result_ids: Iterable[str],
) -> List[str]:
    """
    Ids of nodes whose backing entity no longer exists.

    - hypothesis whose ref_id is not a known strategy
    - variant whose active ref_id is not a known result
    Nodes without a ref_id are never orphans.
    """
    strategies = set(valid_strategy_ids)
    results = set(valid_result_ids)
    orphans: List[str] = []
    for node in graph.nodes:
        if node.type == NodeType.HYPOTHESIS.value:
            ref_id = node.data.ref_id
            if ref_id and ref_id not in strategies:
                orphans.append(node.id)
        elif node.type == NodeType.VARIANT.value:
            ref_id = node.data.ref_id
            if ref_id and ref_id not in results:
                orphans.append(node.id)
    return orphans


def prune_orphans(
    graph: CanvasGraph,
    valid_strategy_ids: Iterable[str],
    valid_result_ids: Iterable[str],
) -> CanvasGraph:
    """Remove every orphan through remove_node (hypothesis cascade included)."""
    for node_id in find_orphans(graph, valid_strategy_ids, valid_result_ids):
        if graph.has_node(node_id):
            graph = remove_node(graph, node_id)
    return graph


# =============================================================================
# VERSION STACK NAVIGATION
# =============================================================================

class VersionStack:
    """
    Navigation over a variant's result history.

    The stack is presented newest first: index 0 is the latest result.

    Usage:
        stack = VersionStack.for_node(variant)
        older = stack.go_older()        # result id, or None at the end
        graph = select_version(graph, variant.id, older)
    """

    def __init__(self, version_ids: Sequence[str], active_id: Optional[str]):
        self.versions: List[str] = list(reversed(version_ids))
        self.active_id = active_id

    @classmethod
    def for_node(cls, node: CanvasNode) -> "VersionStack":
        if node.type != NodeType.VARIANT.value:
            raise PayloadError(node.id, f"{node.type} nodes have no version stack")
        return cls(node.data.version_ids, node.data.ref_id)

    @property
    def index(self) -> int:
        """Position of the active result (-1 when it is not in the history)."""
        if self.active_id in self.versions:
            return self.versions.index(self.active_id)
        return -1

    @property
    def total(self) -> int:
        return len(self.versions)

    def go_newer(self) -> Optional[str]:
        """Result id one step newer than the active one, if any."""
        if self.index <= 0:
            return None
        return self.versions[self.index - 1]

    def go_older(self) -> Optional[str]:
        """Result id one step older than the active one, if any."""
        if self.index < 0 or self.index >= self.total - 1:
            return None
        return self.versions[self.index + 1]

    def select(self, index: int) -> Optional[str]:
        """Result id at a newest-first index, or None when out of range."""
        if 0 <= index < self.total:
            return self.versions[index]
        return None

    def __repr__(self) -> str:
        return f"VersionStack(index={self.index}, total={self.total})"


def select_version(graph: CanvasGraph, node_id: str, result_id: str) -> CanvasGraph:
    """
    Make result_id the active result of a variant.

    Raises:
        NodeNotFoundError: If node_id is not in the graph
        PayloadError: If node_id is not a variant or result_id is not in
            its history
    """
    node = graph.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    if node.type != NodeType.VARIANT.value:
        raise PayloadError(node_id, f"{node.type} nodes have no version stack")
    if result_id not in node.data.version_ids:
        raise PayloadError(node_id, f"result {result_id} is not in the version history")
    return replace_node(
        graph,
        msgspec.structs.replace(node, data=msgspec.structs.replace(node.data, ref_id=result_id)),
    )
