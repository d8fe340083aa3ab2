"""
LATTICE VISUALIZATION - Render-Ready Canvas Export

This package provides the inspection layer for the canvas:
- core: Mutation event types, render records, Arrow IPC export
"""

from viz.core import (
    VizNode,
    VizEdge,
    GraphSnapshot,
    MutationEvent,
    MutationType,
    create_snapshot,
    serialize_to_arrow,
    read_arrow_nodes,
)

__all__ = [
    "VizNode",
    "VizEdge",
    "GraphSnapshot",
    "MutationEvent",
    "MutationType",
    "create_snapshot",
    "serialize_to_arrow",
    "read_arrow_nodes",
]
