"""
LATTICE LAYOUT - Topology-Driven Node Placement

Computes screen coordinates for every node purely from graph topology.
The host calls `layout` after every structural mutation; because the
function is idempotent, redundant calls are always safe.

Algorithm (layered, Sugiyama-style):
1. Adjacency from edges (edges to unknown ids are ignored)
2. Longest-path rank: rank(n) = 1 + max(rank(parent)), 0 without parents.
   A node already on the traversal stack reports 0 (cycle guard).
3. Per-type rank overrides (design systems, models, disconnected variants)
4. Layers by rank, empty layers dropped
5. First layer ordered by type priority, later layers by parent barycenter
6. X: cumulative offset (widest node in layer + column gap)
7. Y: stack each layer, centered against the tallest layer
8. Single-node layers nudged toward their neighbours' centers
9. Whole graph shifted so the top node sits at TOP_MARGIN
10. Every coordinate snapped to GRID_SIZE

The placement helpers at the bottom (column_x, compute_default_position,
...) decide where a node lands BEFORE layout runs, using the same
canonical columns.
"""
import logging
import math
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import msgspec

from core.ontology import (
    NodeType,
    NODE_W_DEFAULT,
    NODE_W_VARIANT,
    FALLBACK_HEIGHTS,
    is_section_type,
    type_priority,
    fallback_height,
    node_width,
)
from core.schemas import CanvasNode, CanvasEdge, CanvasGraph, Position
from core.graph_index import GraphIndex

logger = logging.getLogger("lattice.layout")


# =============================================================================
# CONSTANTS
# =============================================================================

GRID_SIZE = 20
NODE_SPACING = 60
TOP_MARGIN = 100
CENTER_OFFSET = 200

# Rank of the canonical variant column (sections, compiler, hypothesis, variant)
DEFAULT_OUTPUT_RANK = 3

DEFAULT_COL_GAP = 160
MIN_COL_GAP = 80
MAX_COL_GAP = 320

# Anchor Y when no existing node can be used
DEFAULT_CANVAS_Y = 300

# Critiques sit one extra column right of the variants
CRITIQUE_COLUMN_OFFSET = 80


# =============================================================================
# GEOMETRY HELPERS
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def snap_value(value: float) -> float:
    """Nearest multiple of GRID_SIZE (halves round up)."""
    return float(_round_half_up(value / GRID_SIZE) * GRID_SIZE)


def snap(position: Position) -> Position:
    """Snap a position to the nearest grid point."""
    return Position(x=snap_value(position.x), y=snap_value(position.y))


def _snapped(x: float, y: float) -> Position:
    return Position(x=snap_value(x), y=snap_value(y))


def node_height(node: CanvasNode) -> float:
    """Measured height, or the type's fallback height when unmeasured."""
    if node.measured is not None:
        return node.measured.height
    return fallback_height(node.type)


def clamp_column_gap(gap: float) -> float:
    """Clamp a user-supplied column gap into [MIN_COL_GAP, MAX_COL_GAP]."""
    return max(MIN_COL_GAP, min(MAX_COL_GAP, gap))


class Columns(msgspec.Struct, kw_only=True, frozen=True):
    """Canonical column X positions for a given gap."""
    sections: float
    compiler: float
    hypothesis: float
    variant: float


def column_x(gap: float = DEFAULT_COL_GAP) -> Columns:
    """
    Compute the four canonical column positions.

    sections -> compiler -> hypothesis -> variant, each NODE_W_DEFAULT + gap
    to the right of the previous one.
    """
    sections = 0.0
    compiler = sections + NODE_W_DEFAULT + gap
    hypothesis = compiler + NODE_W_DEFAULT + gap
    variant = hypothesis + NODE_W_DEFAULT + gap
    return Columns(sections=sections, compiler=compiler, hypothesis=hypothesis, variant=variant)


# =============================================================================
# RANK ASSIGNMENT
# =============================================================================

def _assign_ranks(node_ids: Sequence[str], index: GraphIndex) -> Dict[str, int]:
    """
    Longest-path ranks from incoming edges.

    Iterative version of a memoized depth-first recursion: each frame
    holds a node and an iterator over its remaining parents. A parent
    that is still on the stack contributes rank 0 instead of being
    revisited, so cycles terminate.
    """
    rank: Dict[str, int] = {}
    on_stack = set()
    best: Dict[str, int] = {}

    for root in node_ids:
        if root in rank:
            continue
        frames: List[Tuple[str, Iterator[str]]] = [(root, iter(index.parents(root)))]
        on_stack.add(root)
        best[root] = -1

        while frames:
            node_id, pending = frames[-1]
            descended = False
            for parent_id in pending:
                if parent_id in rank:
                    best[node_id] = max(best[node_id], rank[parent_id])
                elif parent_id in on_stack:
                    best[node_id] = max(best[node_id], 0)
                else:
                    on_stack.add(parent_id)
                    best[parent_id] = -1
                    frames.append((parent_id, iter(index.parents(parent_id))))
                    descended = True
                    break
            if descended:
                continue

            frames.pop()
            on_stack.discard(node_id)
            rank[node_id] = best.pop(node_id) + 1
            if frames:
                caller = frames[-1][0]
                best[caller] = max(best[caller], rank[node_id])

    return rank


def _apply_rank_overrides(
    nodes: Sequence[CanvasNode],
    index: GraphIndex,
    rank: Dict[str, int],
) -> None:
    """
    Per-type rank corrections applied after longest-path labelling.

    - designSystem: only has outgoing edges, so it is pinned to the
      compiler column.
    - model: one column before its leftmost target, or the compiler
      column when it feeds nothing.
    - variant without incoming edges (archived copies): the column of the
      connected variants, or DEFAULT_OUTPUT_RANK when there are none.
    """
    compiler_ranks = [rank.get(n.id, 1) for n in nodes if n.type == NodeType.COMPILER.value]
    compiler_rank = max([1] + compiler_ranks)

    for node in nodes:
        if node.type == NodeType.DESIGN_SYSTEM.value:
            rank[node.id] = compiler_rank

    for node in nodes:
        if node.type != NodeType.MODEL.value:
            continue
        targets = index.children(node.id)
        if targets:
            min_target = min(rank.get(t, 0) for t in targets)
            rank[node.id] = max(0, min_target - 1)
        else:
            rank[node.id] = compiler_rank

    connected = [
        rank.get(n.id, 0) for n in nodes
        if n.type == NodeType.VARIANT.value and index.in_degree(n.id) > 0
    ]
    variant_rank = max([0] + connected)
    if variant_rank <= 0:
        variant_rank = DEFAULT_OUTPUT_RANK

    for node in nodes:
        if node.type == NodeType.VARIANT.value and index.in_degree(node.id) == 0:
            rank[node.id] = variant_rank


# =============================================================================
# LAYER ORDERING
# =============================================================================

def _build_layers(nodes: Sequence[CanvasNode], rank: Dict[str, int]) -> List[List[CanvasNode]]:
    by_rank: Dict[int, List[CanvasNode]] = {}
    for node in nodes:
        by_rank.setdefault(rank.get(node.id, 0), []).append(node)
    return [by_rank[r] for r in sorted(by_rank)]


def _order_layers(layers: List[List[CanvasNode]], index: GraphIndex) -> None:
    """Sort layers in place: type priority first, barycenter afterwards."""
    layers[0].sort(key=lambda n: type_priority(n.type))

    for li in range(1, len(layers)):
        prev_order = {n.id: i for i, n in enumerate(layers[li - 1])}

        def barycenter(node: CanvasNode) -> float:
            placed = [prev_order[p] for p in index.parents(node.id) if p in prev_order]
            if not placed:
                return math.inf
            return sum(placed) / len(placed)

        # Stable sort keeps input order among equal barycenters
        layers[li].sort(key=barycenter)


# =============================================================================
# LAYOUT
# =============================================================================

def layout(
    nodes: Iterable[CanvasNode],
    edges: Iterable[CanvasEdge],
    column_gap: float = DEFAULT_COL_GAP,
) -> List[CanvasNode]:
    """
    Compute positions for every node from graph topology.

    Pure, deterministic and idempotent. Never raises for graph content:
    edges to unknown node ids are skipped, cycles are tolerated and
    unmeasured nodes use their type's fallback height.

    Args:
        nodes: Current nodes (positions are ignored)
        edges: Current edges
        column_gap: Horizontal gap between layers, in pixels

    Returns:
        New nodes in the same order with updated positions
    """
    nodes = list(nodes)
    if not nodes:
        return []

    index = GraphIndex.from_parts(nodes, edges)
    if index.dangling_edges:
        logger.debug("Layout skipped %d dangling edges", len(index.dangling_edges))
    if index.has_cycle():
        logger.debug("Layout input contains a cycle; back edges rank as 0")

    node_ids = [n.id for n in nodes]
    rank = _assign_ranks(node_ids, index)
    _apply_rank_overrides(nodes, index, rank)

    layers = _build_layers(nodes, rank)
    _order_layers(layers, index)

    # X: cumulative column offsets
    layer_x: List[float] = []
    cur_x = 0.0
    for layer in layers:
        layer_x.append(cur_x)
        cur_x += max(node_width(n.type) for n in layer) + column_gap

    # Y: stack each layer, centered on the tallest layer
    layer_heights = [
        sum(node_height(n) for n in layer) + max(0, len(layer) - 1) * NODE_SPACING
        for layer in layers
    ]
    center_y = CENTER_OFFSET + max(layer_heights) / 2

    positions: Dict[str, Position] = {}
    heights: Dict[str, float] = {n.id: node_height(n) for n in nodes}
    for li, layer in enumerate(layers):
        y = center_y - layer_heights[li] / 2
        for node in layer:
            positions[node.id] = _snapped(layer_x[li], y)
            y += heights[node.id] + NODE_SPACING

    # Nudge single-node layers toward their neighbours
    for layer in layers:
        if len(layer) != 1:
            continue
        node = layer[0]
        anchors = [
            positions[other].y + heights[other] / 2
            for other in index.parents(node.id) + index.children(node.id)
            if other in positions
        ]
        if anchors:
            target_y = sum(anchors) / len(anchors) - heights[node.id] / 2
            positions[node.id] = _snapped(positions[node.id].x, target_y)

    # Normalize so the topmost node starts at TOP_MARGIN
    min_y = min(p.y for p in positions.values())
    y_shift = TOP_MARGIN - min_y
    if abs(y_shift) > 1:
        positions = {
            node_id: _snapped(p.x, p.y + y_shift)
            for node_id, p in positions.items()
        }

    return [msgspec.structs.replace(n, position=positions[n.id]) for n in nodes]


def layout_graph(graph: CanvasGraph, column_gap: float = DEFAULT_COL_GAP) -> CanvasGraph:
    """Apply `layout` to a graph value."""
    return msgspec.structs.replace(graph, nodes=tuple(layout(graph.nodes, graph.edges, column_gap)))


# =============================================================================
# PLACEMENT HELPERS (Before Layout)
# =============================================================================

def _stacked_below(nodes: Iterable[CanvasNode], start: float = CENTER_OFFSET) -> float:
    y = start
    for node in nodes:
        y += node_height(node) + NODE_SPACING
    return y


def _bottom_edge(nodes: Sequence[CanvasNode]) -> float:
    return max(n.position.y + node_height(n) for n in nodes)


def compute_default_position(
    node_type: str,
    existing_nodes: Sequence[CanvasNode],
    columns: Columns,
) -> Position:
    """
    Where a user-added node lands before auto-layout runs.

    Args:
        node_type: Type of the node being added
        existing_nodes: Nodes already on the canvas
        columns: Canonical columns from column_x

    Returns:
        Snapped position
    """
    if node_type in (NodeType.MODEL.value, NodeType.DESIGN_SYSTEM.value):
        processing = [
            n for n in existing_nodes
            if n.type in (NodeType.COMPILER.value, NodeType.DESIGN_SYSTEM.value, NodeType.MODEL.value)
        ]
        return _snapped(columns.compiler, _stacked_below(processing))

    if is_section_type(node_type):
        sections = [n for n in existing_nodes if is_section_type(n.type)]
        return _snapped(columns.sections, _stacked_below(sections))

    if node_type == NodeType.COMPILER.value:
        compilers = [n for n in existing_nodes if n.type == NodeType.COMPILER.value]
        if not compilers:
            return _snapped(columns.compiler, DEFAULT_CANVAS_Y)
        return _snapped(columns.compiler, _bottom_edge(compilers) + NODE_SPACING)

    if node_type == NodeType.HYPOTHESIS.value:
        hypotheses = [n for n in existing_nodes if n.type == NodeType.HYPOTHESIS.value]
        return _snapped(columns.hypothesis, _stacked_below(hypotheses))

    if node_type == NodeType.CRITIQUE.value:
        critiques = [n for n in existing_nodes if n.type == NodeType.CRITIQUE.value]
        variants = [n for n in existing_nodes if n.type == NodeType.VARIANT.value]
        if critiques:
            y = _bottom_edge(critiques) + NODE_SPACING
        elif variants:
            y = _bottom_edge(variants) + NODE_SPACING
        else:
            y = DEFAULT_CANVAS_Y
        return _snapped(columns.variant + NODE_W_VARIANT + CRITIQUE_COLUMN_OFFSET, y)

    return _snapped(columns.variant, DEFAULT_CANVAS_Y)


def compute_adjacent_position(consumer_position: Position, gap: float) -> Position:
    """
    Place a prerequisite node one column left of the node that consumes it.

    Used when adding a model-consuming node to a canvas without a model:
    the model lands in the column before its consumer.
    """
    return _snapped(max(0.0, consumer_position.x - NODE_W_DEFAULT - gap), consumer_position.y)


def compute_hypothesis_positions(
    count: int,
    center_y: float,
    columns: Columns,
    estimated_height: Optional[float] = None,
) -> List[Position]:
    """Vertically centred stack of `count` hypothesis positions around center_y."""
    if count <= 0:
        return []
    height = estimated_height if estimated_height is not None else FALLBACK_HEIGHTS[NodeType.HYPOTHESIS.value]
    total_height = count * height + (count - 1) * NODE_SPACING
    start_y = center_y - total_height / 2
    return [
        _snapped(columns.hypothesis, start_y + i * (height + NODE_SPACING))
        for i in range(count)
    ]
