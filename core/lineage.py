"""
LATTICE LINEAGE - Selection Highlighting

Given a selected node, find everything connected to it: ancestors,
descendants, and siblings that share a target. The host highlights the
lineage and dims everything else.

Traversal is an explicit stack over both edge directions with a visited
set, so it is cycle-safe and has no recursion limit.
"""
from typing import FrozenSet, Iterable, List, Optional, Set

import msgspec

from core.schemas import CanvasEdge
from core.graph_index import GraphIndex


# =============================================================================
# RESULT TYPE
# =============================================================================

DIM_NONE = "none"
DIM_HIGHLIGHT = "highlight"
DIM_DIM = "dim"


class Lineage(msgspec.Struct, kw_only=True, frozen=True):
    """Nodes and edges reachable from a seed, in either direction."""
    node_ids: FrozenSet[str] = frozenset()
    edge_ids: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.node_ids

    def contains_node(self, node_id: str) -> bool:
        return node_id in self.node_ids

    def contains_edge(self, edge_id: str) -> bool:
        return edge_id in self.edge_ids


EMPTY_LINEAGE = Lineage()


# =============================================================================
# TRAVERSAL
# =============================================================================

def lineage(edges: Iterable[CanvasEdge], seed_id: Optional[str]) -> Lineage:
    """
    Collect the connected component around seed_id.

    Args:
        edges: Current edges (node ids are taken from their endpoints)
        seed_id: The selected node, or None for no selection

    Returns:
        Lineage with every visited node and traversed edge. A seed with no
        neighbours (or no seed) yields the empty lineage: highlighting a
        single element conveys nothing.
    """
    if seed_id is None:
        return EMPTY_LINEAGE

    index = GraphIndex.from_edges(edges)
    if seed_id not in index:
        return EMPTY_LINEAGE

    visited: Set[str] = {seed_id}
    edge_ids: Set[str] = set()
    stack: List[str] = [seed_id]

    while stack:
        current = stack.pop()
        for edge in index.incident_edges(current):
            edge_ids.add(edge.id)
            neighbour = edge.target if edge.source == current else edge.source
            if neighbour not in visited:
                visited.add(neighbour)
                stack.append(neighbour)

    if len(visited) <= 1:
        return EMPTY_LINEAGE
    return Lineage(node_ids=frozenset(visited), edge_ids=frozenset(edge_ids))


def lineage_dim_state(current: Lineage, node_id: str, is_selected: bool = False) -> str:
    """
    Visual state of a node while a lineage is active.

    - "none": no lineage active, or the node is the selected one
    - "highlight": node is in the lineage
    - "dim": node is outside the lineage
    """
    if current.is_empty:
        return DIM_NONE
    if current.contains_node(node_id):
        return DIM_NONE if is_selected else DIM_HIGHLIGHT
    return DIM_DIM
