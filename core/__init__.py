"""
LATTICE CORE - Central exports for the canvas graph engine.

This module provides access to:
- Graph model (CanvasGraph, CanvasNode, CanvasEdge, payloads)
- Connection rules and auto-connect
- Lineage, layout and generation sync
- Snapshot migration

CanvasStore lives in core.canvas_store and is imported from there; it
depends on the infrastructure package.
"""

from core.ontology import (
    NodeType,
    NodeRole,
    EdgeType,
    EdgeStatus,
)
from core.schemas import (
    Position,
    Size,
    CanvasNode,
    CanvasEdge,
    CanvasGraph,
    CanvasSnapshot,
    Viewport,
)
from core.canvas_graph import (
    GraphError,
    NodeNotFoundError,
    EdgeNotFoundError,
    SingletonViolationError,
    PayloadError,
    MigrationError,
    add_node,
    remove_node,
    update_node_data,
    add_edge,
    remove_edge,
    disconnect_outputs,
    initialize_canvas,
)
from core.connections import (
    is_valid_connection,
    connect,
    strategies_conflict,
    auto_connect,
    build_model_edges_from_parent,
)
from core.lineage import Lineage, lineage
from core.layout import layout, layout_graph, compute_default_position
from core.generation_sync import (
    GenerationResultRef,
    VersionStack,
    sync_generation,
    sync_after_compile,
    fork_hypothesis_variants,
    prune_orphans,
    select_version,
)
from core.migrations import CURRENT_SCHEMA_VERSION, migrate, load_snapshot, dump_snapshot

__all__ = [
    # Ontology
    "NodeType",
    "NodeRole",
    "EdgeType",
    "EdgeStatus",
    # Model
    "Position",
    "Size",
    "CanvasNode",
    "CanvasEdge",
    "CanvasGraph",
    "CanvasSnapshot",
    "Viewport",
    # Errors
    "GraphError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "SingletonViolationError",
    "PayloadError",
    "MigrationError",
    # Graph operations
    "add_node",
    "remove_node",
    "update_node_data",
    "add_edge",
    "remove_edge",
    "disconnect_outputs",
    "initialize_canvas",
    # Connections
    "is_valid_connection",
    "connect",
    "strategies_conflict",
    "auto_connect",
    "build_model_edges_from_parent",
    # Lineage / layout
    "Lineage",
    "lineage",
    "layout",
    "layout_graph",
    "compute_default_position",
    # Generation sync
    "GenerationResultRef",
    "VersionStack",
    "sync_generation",
    "sync_after_compile",
    "fork_hypothesis_variants",
    "prune_orphans",
    "select_version",
    # Migration
    "CURRENT_SCHEMA_VERSION",
    "migrate",
    "load_snapshot",
    "dump_snapshot",
]
