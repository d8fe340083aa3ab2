"""
LATTICE CANVAS STORE - The Host-Side Convenience Wrapper

The core functions are pure: they take a graph and return a graph.
CanvasStore is what a single-threaded host keeps around to hold "the
current canvas" between calls:

- the current CanvasSnapshot (graph + view settings)
- the active lineage for the selected node
- the strategy -> variant node map from the last generation sync
- a MutationLogger that records every change as events

Every mutating method runs the matching pure function, diffs the old and
new graph into mutation events, and re-runs layout when auto-layout is on.

Usage:
    store = CanvasStore.load(raw_json, from_version=12, stores=external)
    store.initialize()
    node = store.add_node("hypothesis")
    store.select(node.id)
    data = store.dump()
"""
import logging
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

import msgspec

from core.schemas import CanvasGraph, CanvasNode, CanvasSnapshot, Position, Viewport
from core.canvas_graph import (
    add_node,
    add_edge,
    remove_node,
    remove_edge,
    disconnect_outputs,
    update_node_data,
    set_node_measured,
    move_node,
    initialize_canvas,
)
from core.connections import find_missing_prerequisite
from core.layout import layout_graph, clamp_column_gap, compute_adjacent_position
from core.lineage import Lineage, EMPTY_LINEAGE, lineage, lineage_dim_state
from core.generation_sync import (
    GenerationResultRef,
    sync_generation,
    sync_after_compile,
    fork_hypothesis_variants,
    mark_result,
    select_version,
    prune_orphans,
    set_edge_status_by_source,
    set_edge_status_by_target,
)
from core.migrations import (
    CURRENT_SCHEMA_VERSION,
    fresh_snapshot,
    load_snapshot,
    dump_snapshot,
)
from infrastructure.config import CanvasConfig
from infrastructure.logger import MutationLogger, configure_logger, get_logger

_diag = logging.getLogger("lattice.store")


class CanvasStore:
    """
    Holds the current canvas and applies host operations to it.

    Not thread-safe: the host serializes calls (the mutation logger
    itself is thread-safe).
    """

    def __init__(
        self,
        snapshot: Optional[CanvasSnapshot] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ):
        self._snapshot = snapshot if snapshot is not None else fresh_snapshot()
        self._logger = mutation_logger or get_logger()
        self._lineage: Lineage = EMPTY_LINEAGE
        self._selected_id: Optional[str] = None
        self._variant_node_map: Dict[str, str] = {}

    # =========================================================================
    # LOAD / SAVE
    # =========================================================================

    @classmethod
    def load(
        cls,
        data: Union[bytes, str, None],
        from_version: int = CURRENT_SCHEMA_VERSION,
        stores: Optional[Mapping[str, str]] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ) -> "CanvasStore":
        """Decode and migrate a persisted snapshot into a new store."""
        snapshot = load_snapshot(data, from_version, stores)
        store = cls(snapshot, mutation_logger)
        if from_version < CURRENT_SCHEMA_VERSION:
            store._logger.log_migration_applied(
                from_version,
                CURRENT_SCHEMA_VERSION,
                len(snapshot.nodes),
                len(snapshot.edges),
            )
        return store

    @classmethod
    def from_config(
        cls,
        config: CanvasConfig,
        mutation_logger: Optional[MutationLogger] = None,
    ) -> "CanvasStore":
        """
        Empty store built from a loaded configuration.

        The [layout] section sets the column gap and auto-layout flag. The
        [logging] section sets the "lattice" log level and, when no
        mutation_logger is given, replaces the global mutation logger.
        """
        config.logging.apply_level()
        if mutation_logger is None:
            mutation_logger = configure_logger(config.logging.to_logger_config())
        snapshot = msgspec.structs.replace(
            fresh_snapshot(),
            col_gap=config.column_gap,
            auto_layout=config.layout.auto_layout,
        )
        return cls(snapshot, mutation_logger)

    def dump(self) -> bytes:
        """Encode the current snapshot (CURRENT_SCHEMA_VERSION shape)."""
        return dump_snapshot(self._snapshot)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def snapshot(self) -> CanvasSnapshot:
        return self._snapshot

    @property
    def graph(self) -> CanvasGraph:
        return self._snapshot.graph

    @property
    def col_gap(self) -> float:
        return self._snapshot.col_gap

    @property
    def auto_layout(self) -> bool:
        return self._snapshot.auto_layout

    @property
    def lineage(self) -> Lineage:
        return self._lineage

    @property
    def variant_node_map(self) -> Dict[str, str]:
        return dict(self._variant_node_map)

    @property
    def mutation_logger(self) -> MutationLogger:
        return self._logger

    # =========================================================================
    # COMMIT (Diff + Log + Auto-Layout)
    # =========================================================================

    def _log_diff(self, before: CanvasGraph, after: CanvasGraph) -> None:
        old_nodes = {n.id: n for n in before.nodes}
        new_nodes = {n.id: n for n in after.nodes}
        old_edges = {e.id: e for e in before.edges}
        new_edges = {e.id: e for e in after.edges}

        for node_id, node in old_nodes.items():
            if node_id not in new_nodes:
                self._logger.log_node_deleted(node_id, node.type)
        for edge_id, edge in old_edges.items():
            if edge_id not in new_edges:
                self._logger.log_edge_deleted(edge_id, edge.source, edge.target, edge.type)

        for node_id, node in new_nodes.items():
            old = old_nodes.get(node_id)
            if old is None:
                self._logger.log_node_created(node_id, node.type)
            elif old.data != node.data:
                self._logger.log_node_updated(node_id, node.type, detail="data")
            elif old.measured != node.measured:
                self._logger.log_node_updated(node_id, node.type, detail="measured")

        for edge_id, edge in new_edges.items():
            old = old_edges.get(edge_id)
            if old is None:
                self._logger.log_edge_created(edge_id, edge.source, edge.target, edge.type)
            elif old.status != edge.status:
                self._logger.log_status_changed(
                    edge_id, old.status, edge.status, edge.source, edge.target,
                )

    def _commit(self, graph: CanvasGraph, relayout: bool = True) -> None:
        before = self._snapshot.graph
        self._log_diff(before, graph)
        self._snapshot = self._snapshot.with_graph(graph)
        if relayout and self._snapshot.auto_layout:
            self.apply_layout()
        if self._selected_id is not None:
            self._refresh_lineage()

    def apply_layout(self) -> None:
        """Re-run layout on the current graph."""
        graph = self._snapshot.graph
        if not graph.nodes:
            return
        self._snapshot = self._snapshot.with_graph(layout_graph(graph, self.col_gap))
        self._logger.log_layout_applied(graph.node_count, graph.edge_count, self.col_gap)

    # =========================================================================
    # HOST OPERATIONS
    # =========================================================================

    def initialize(self) -> None:
        """Seed an empty canvas with the starter template, then lay it out."""
        graph = initialize_canvas(self.graph, self.col_gap)
        if graph is self.graph:
            if self.auto_layout:
                self.apply_layout()
            return
        self._commit(graph)

    def add_node(
        self,
        node_type: str,
        position: Optional[Position] = None,
        data: Optional[msgspec.Struct] = None,
        add_prerequisites: bool = True,
    ) -> CanvasNode:
        """
        Add a node (see canvas_graph.add_node); returns the laid-out node.

        A model-consuming node added to a canvas with no model brings a
        model along, one column to its left, wired through auto-connect.
        Both land in a single commit.
        """
        graph, node = add_node(self.graph, node_type, position, self.col_gap, data)
        if add_prerequisites:
            missing = find_missing_prerequisite(node_type, self.graph.nodes)
            if missing is not None:
                _diag.debug("add_node: %s needs a %s; adding one", node.id, missing)
                graph, _ = add_node(graph, missing, compute_adjacent_position(node.position, self.col_gap), self.col_gap)
        self._commit(graph)
        return self.graph.get_node(node.id)

    def remove_node(self, node_id: str) -> None:
        self._commit(remove_node(self.graph, node_id))
        if self._selected_id == node_id:
            self.select(None)

    def connect(self, source_id: str, target_id: str) -> bool:
        """Validated connect; False when nothing changed."""
        graph, created = add_edge(self.graph, source_id, target_id)
        if created:
            self._commit(graph)
        return created

    def remove_edge(self, edge_id: str) -> None:
        self._commit(remove_edge(self.graph, edge_id))

    def disconnect_outputs(self, node_id: str) -> None:
        self._commit(disconnect_outputs(self.graph, node_id))

    def update_node_data(self, node_id: str, **partial) -> None:
        self._commit(update_node_data(self.graph, node_id, **partial), relayout=False)

    def set_measured(self, node_id: str, width: float, height: float) -> None:
        """Content-driven resize reported by the renderer."""
        self._commit(set_node_measured(self.graph, node_id, width, height))

    def move_node(self, node_id: str, position: Position) -> None:
        """Manual drag; kept until the next layout pass."""
        self._commit(move_node(self.graph, node_id, position), relayout=False)

    # =========================================================================
    # GENERATION GROWTH
    # =========================================================================

    def sync_after_compile(self, compiler_id: str, strategy_ids: Sequence[str]) -> None:
        graph = sync_after_compile(self.graph, compiler_id, strategy_ids, self.col_gap)
        self._logger.log_batch_update(
            f"compile {compiler_id}: {len(strategy_ids)} strategies",
            graph.node_count, graph.edge_count,
        )
        self._commit(graph)

    def sync_after_generate(
        self,
        source_id: str,
        results: Iterable[GenerationResultRef],
    ) -> Dict[str, str]:
        """
        Attach results to variants.

        The returned map is merged into the one mark_result reads, so hosts
        may sync each result as it completes.
        """
        graph, node_map = sync_generation(self.graph, source_id, results, self.col_gap)
        self._variant_node_map.update(node_map)
        if node_map:
            self._logger.log_batch_update(
                f"generate {source_id}: {len(node_map)} strategies",
                graph.node_count, graph.edge_count,
            )
        self._commit(graph)
        return dict(node_map)

    def mark_result(self, strategy_id: str, status: str) -> None:
        self._commit(mark_result(self.graph, self._variant_node_map, strategy_id, status), relayout=False)

    def select_version(self, node_id: str, result_id: str) -> None:
        """Make an older or newer result the active one on a variant."""
        self._commit(select_version(self.graph, node_id, result_id), relayout=False)

    def clear_variant_node_map(self) -> None:
        self._variant_node_map = {}

    def fork_hypothesis_variants(
        self,
        hypothesis_id: str,
        run_ids: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._commit(fork_hypothesis_variants(self.graph, hypothesis_id, run_ids))

    def prune_orphans(self, valid_strategy_ids: Iterable[str], valid_result_ids: Iterable[str]) -> None:
        graph = prune_orphans(self.graph, valid_strategy_ids, valid_result_ids)
        if graph is not self.graph:
            removed = self.graph.node_count - graph.node_count
            _diag.info("Pruned %d orphaned nodes", removed)
            self._commit(graph)

    def set_edge_status_by_source(self, source_id: str, status: str) -> None:
        self._commit(set_edge_status_by_source(self.graph, source_id, status), relayout=False)

    def set_edge_status_by_target(self, target_id: str, status: str) -> None:
        self._commit(set_edge_status_by_target(self.graph, target_id, status), relayout=False)

    # =========================================================================
    # SELECTION / LINEAGE
    # =========================================================================

    def _refresh_lineage(self) -> None:
        self._lineage = lineage(self.graph.edges, self._selected_id)

    def select(self, node_id: Optional[str]) -> Lineage:
        """Select a node (None clears) and recompute its lineage."""
        self._selected_id = node_id
        if node_id is None:
            self._lineage = EMPTY_LINEAGE
        else:
            self._refresh_lineage()
        return self._lineage

    def dim_state(self, node_id: str) -> str:
        return lineage_dim_state(self._lineage, node_id, node_id == self._selected_id)

    # =========================================================================
    # VIEW SETTINGS
    # =========================================================================

    def set_col_gap(self, gap: float) -> None:
        """Clamp and apply a new column gap, then re-layout."""
        self._snapshot = msgspec.structs.replace(self._snapshot, col_gap=clamp_column_gap(gap))
        self.apply_layout()

    def toggle_auto_layout(self) -> bool:
        enabled = not self._snapshot.auto_layout
        self._snapshot = msgspec.structs.replace(self._snapshot, auto_layout=enabled)
        if enabled:
            self.apply_layout()
        return enabled

    def toggle_mini_map(self) -> bool:
        self._snapshot = msgspec.structs.replace(self._snapshot, show_mini_map=not self._snapshot.show_mini_map)
        return self._snapshot.show_mini_map

    def toggle_grid(self) -> bool:
        self._snapshot = msgspec.structs.replace(self._snapshot, show_grid=not self._snapshot.show_grid)
        return self._snapshot.show_grid

    def set_viewport(self, x: float, y: float, zoom: float) -> None:
        self._snapshot = msgspec.structs.replace(self._snapshot, viewport=Viewport(x=x, y=y, zoom=zoom))

    def reset(self) -> None:
        """Clear the graph and view, keeping the display settings."""
        self._commit(CanvasGraph(), relayout=False)
        self._snapshot = msgspec.structs.replace(self._snapshot, viewport=Viewport())
        self.select(None)
        self._variant_node_map = {}

    def __repr__(self) -> str:
        return f"CanvasStore(nodes={self.graph.node_count}, edges={self.graph.edge_count})"
