"""
LATTICE GRAPH INDEX - The Bridge to rustworkx

Bridges the canvas's string ids with rustworkx's integer indices so the
algorithms in layout.py, lineage.py and generation_sync.py can ask
neighbour questions in O(degree) instead of scanning the edge list.

Architecture (The Bridge Pattern):
  Python Layer (Canvas Values)
  - Uses string ids: "compiler-3f2a...", "edge-a-to-b"
  - Calls: index.parents("compiler-3f2a..."), index.incident_edges(...)

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (id -> index)
  - _inv_map: Dict[int, str]   (index -> id)

  Rust Layer (rustworkx.PyDiGraph)
  - Integer indices, multigraph so stale duplicate edges are all kept

An index is built from one graph snapshot and never mutated afterwards.
Every neighbour query returns results in edge insertion order, so callers
stay deterministic no matter how rustworkx orders its adjacency lists.
"""
import rustworkx as rx
from typing import Dict, Iterable, List, Optional, Tuple

from core.schemas import CanvasNode, CanvasEdge, CanvasGraph


# Edge payload stored in rustworkx: (insertion order, edge)
_EdgeRef = Tuple[int, CanvasEdge]


class GraphIndex:
    """
    Read-only adjacency index over a canvas graph.

    Usage:
        index = GraphIndex.from_graph(graph)
        index.parents(node_id)          # ids of incoming neighbours
        index.out_edges(node_id)        # CanvasEdge objects leaving node_id

        # Edges only (node ids are discovered from edge endpoints)
        index = GraphIndex.from_edges(edges)
    """

    def __init__(self):
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}
        self._nodes: Dict[str, CanvasNode] = {}
        self._edge_count = 0
        self._dangling: List[CanvasEdge] = []

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def from_graph(cls, graph: CanvasGraph) -> "GraphIndex":
        """Index a full graph value."""
        return cls.from_parts(graph.nodes, graph.edges)

    @classmethod
    def from_parts(
        cls,
        nodes: Iterable[CanvasNode],
        edges: Iterable[CanvasEdge],
    ) -> "GraphIndex":
        """
        Index nodes and the edges between them.

        Edges that reference an unknown node id are not indexed; they are
        kept in `dangling_edges` for diagnostics.
        """
        index = cls()
        for node in nodes:
            index._add_node(node.id, node)
        for edge in edges:
            if edge.source in index._node_map and edge.target in index._node_map:
                index._add_edge(edge)
            else:
                index._dangling.append(edge)
        return index

    @classmethod
    def from_edges(cls, edges: Iterable[CanvasEdge]) -> "GraphIndex":
        """Index an edge list, creating a node entry for every endpoint."""
        index = cls()
        for edge in edges:
            for node_id in (edge.source, edge.target):
                if node_id not in index._node_map:
                    index._add_node(node_id, None)
            index._add_edge(edge)
        return index

    def _add_node(self, node_id: str, node: Optional[CanvasNode]) -> None:
        if node_id in self._node_map:
            return
        idx = self._graph.add_node(node_id)
        self._node_map[node_id] = idx
        self._inv_map[idx] = node_id
        if node is not None:
            self._nodes[node_id] = node

    def _add_edge(self, edge: CanvasEdge) -> None:
        src_idx = self._node_map[edge.source]
        tgt_idx = self._node_map[edge.target]
        self._graph.add_edge(src_idx, tgt_idx, (self._edge_count, edge))
        self._edge_count += 1

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def node_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.num_edges()

    @property
    def dangling_edges(self) -> List[CanvasEdge]:
        """Edges skipped because an endpoint is not in the graph."""
        return list(self._dangling)

    def node_ids(self) -> List[str]:
        """All indexed node ids, in insertion order."""
        return list(self._node_map)

    def get_node(self, node_id: str) -> Optional[CanvasNode]:
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    # =========================================================================
    # NEIGHBOUR QUERIES
    # =========================================================================

    def in_edges(self, node_id: str) -> List[CanvasEdge]:
        """Edges pointing TO a node, in insertion order."""
        idx = self._node_map.get(node_id)
        if idx is None:
            return []
        refs: List[_EdgeRef] = [payload for _, _, payload in self._graph.in_edges(idx)]
        return [edge for _, edge in sorted(refs, key=lambda ref: ref[0])]

    def out_edges(self, node_id: str) -> List[CanvasEdge]:
        """Edges pointing FROM a node, in insertion order."""
        idx = self._node_map.get(node_id)
        if idx is None:
            return []
        refs: List[_EdgeRef] = [payload for _, _, payload in self._graph.out_edges(idx)]
        return [edge for _, edge in sorted(refs, key=lambda ref: ref[0])]

    def incident_edges(self, node_id: str) -> List[CanvasEdge]:
        """Incoming then outgoing edges of a node."""
        return self.in_edges(node_id) + self.out_edges(node_id)

    def parents(self, node_id: str) -> List[str]:
        """Source ids of incoming edges (one entry per edge)."""
        return [edge.source for edge in self.in_edges(node_id)]

    def children(self, node_id: str) -> List[str]:
        """Target ids of outgoing edges (one entry per edge)."""
        return [edge.target for edge in self.out_edges(node_id)]

    def in_degree(self, node_id: str) -> int:
        idx = self._node_map.get(node_id)
        return self._graph.in_degree(idx) if idx is not None else 0

    # =========================================================================
    # GRAPH ANALYSIS (Rust-Accelerated)
    # =========================================================================

    def has_cycle(self) -> bool:
        """Check if the indexed graph contains any cycles."""
        return not rx.is_directed_acyclic_graph(self._graph)

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._node_map

    def __repr__(self) -> str:
        return f"GraphIndex(nodes={self.node_count}, edges={self.edge_count})"
