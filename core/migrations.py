"""
LATTICE MIGRATIONS - Persisted Snapshot Upgrades

Snapshots are stored with a schema version. On load, every migration step
whose `applies_below` is greater than the stored version runs in order,
each one a pure function over untyped builtins (dicts and lists). The
result is then converted into the current CanvasSnapshot shape.

Two external stores may be READ during migration, to backfill fields that
moved between versions:
- "lattice-generation":    {"state": {"results": [{"id", "variantStrategyId"}]}}
- "lattice-active-canvas": {"state": {"spec": {"sections": {...}}}}
Both are passed in as raw JSON strings keyed by those names.

Failure policy: any decode, step or conversion failure discards the
snapshot and returns a fresh empty canvas. The loss is logged; it never
propagates.
"""
import copy
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import msgspec

from core.ontology import NodeType, EdgeStatus, EdgeType, is_known_type, MODEL_CONSUMER_TYPES
from core.schemas import (
    CanvasSnapshot,
    build_edge_id,
    decode_raw,
    encode_snapshot,
    snapshot_from_builtins,
    snapshot_to_builtins,
)
from core.canvas_graph import MigrationError
from core.layout import DEFAULT_COL_GAP

logger = logging.getLogger("lattice.migrations")

CURRENT_SCHEMA_VERSION = 14

GENERATION_STORE_KEY = "lattice-generation"
SPEC_STORE_KEY = "lattice-active-canvas"
DESIGN_SYSTEM_SECTION = "design-system"
DESIGN_SYSTEM_TITLE = "Design System"

MIGRATED_MODEL_PREFIX = "model-migrated"
MIGRATED_MODEL_OFFSET_X = 400
MIGRATED_MODEL_DEFAULT_Y = 300

RawState = Dict[str, Any]


def fresh_state() -> RawState:
    """Empty canvas with default view settings, as builtins."""
    return snapshot_to_builtins(CanvasSnapshot(col_gap=DEFAULT_COL_GAP))


def fresh_snapshot() -> CanvasSnapshot:
    return CanvasSnapshot(col_gap=DEFAULT_COL_GAP)


# =============================================================================
# EXTERNAL STORES (Read-Only)
# =============================================================================

class StoreReader:
    """Lazy, read-only view over the external stores passed to migrate()."""

    def __init__(self, stores: Optional[Mapping[str, str]] = None):
        self._stores = stores or {}
        self._parsed: Dict[str, Any] = {}

    def _state(self, key: str) -> Dict[str, Any]:
        if key not in self._parsed:
            raw = self._stores.get(key)
            parsed: Any = None
            if raw:
                try:
                    parsed = decode_raw(raw)
                except msgspec.DecodeError:
                    logger.warning("Store %s is not valid JSON; ignoring it", key)
            state = parsed.get("state") if isinstance(parsed, dict) else None
            self._parsed[key] = state if isinstance(state, dict) else {}
        return self._parsed[key]

    def strategy_by_result(self) -> Dict[str, str]:
        """result id -> variant strategy id, from the generation store."""
        results = self._state(GENERATION_STORE_KEY).get("results")
        mapping: Dict[str, str] = {}
        if not isinstance(results, list):
            return mapping
        for result in results:
            if not isinstance(result, dict):
                continue
            result_id = result.get("id")
            strategy_id = result.get("variantStrategyId")
            if result_id and strategy_id:
                mapping[result_id] = strategy_id
        return mapping

    def design_system_section(self) -> Dict[str, Any]:
        """The legacy design-system section of the spec store (may be empty)."""
        spec = self._state(SPEC_STORE_KEY).get("spec")
        sections = spec.get("sections") if isinstance(spec, dict) else None
        section = sections.get(DESIGN_SYSTEM_SECTION) if isinstance(sections, dict) else None
        if not isinstance(section, dict):
            return {"content": "", "images": []}
        return {
            "content": section.get("content") or "",
            "images": list(section.get("images") or []),
        }


# =============================================================================
# STEP HELPERS
# =============================================================================

def _nodes(state: RawState) -> List[Dict[str, Any]]:
    nodes = state.get("nodes") or []
    if not isinstance(nodes, (list, tuple)) or not all(isinstance(n, dict) for n in nodes):
        raise MigrationError("nodes must be a list of objects")
    return list(nodes)


def _edges(state: RawState) -> List[Dict[str, Any]]:
    edges = state.get("edges") or []
    if not isinstance(edges, (list, tuple)) or not all(isinstance(e, dict) for e in edges):
        raise MigrationError("edges must be a list of objects")
    return list(edges)


def _data(node: Dict[str, Any]) -> Dict[str, Any]:
    data = node.get("data")
    return data if isinstance(data, dict) else {}


def _replace_in_id(value: Any, old: str, new: str) -> Any:
    return value.replace(old, new, 1) if isinstance(value, str) else value


def _hypothesis_variant_edges(nodes: List[Dict[str, Any]], existing: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """hypothesis -> variant edges for every variant sharing the hypothesis's strategy."""
    present = {(e.get("source"), e.get("target")) for e in existing}
    variants = [n for n in nodes if n.get("type") == NodeType.VARIANT.value]
    new_edges = []
    for hypothesis in nodes:
        if hypothesis.get("type") != NodeType.HYPOTHESIS.value:
            continue
        strategy_id = _data(hypothesis).get("refId")
        if not strategy_id:
            continue
        for variant in variants:
            if _data(variant).get("variantStrategyId") != strategy_id:
                continue
            pair = (hypothesis["id"], variant["id"])
            if pair in present:
                continue
            present.add(pair)
            new_edges.append({
                "id": build_edge_id(*pair),
                "source": pair[0],
                "target": pair[1],
                "type": EdgeType.DATA_FLOW.value,
            })
    return new_edges


# =============================================================================
# MIGRATION STEPS
# =============================================================================

def reset_canvas(state: RawState, stores: StoreReader) -> RawState:
    """Snapshot too old to upgrade incrementally: start over."""
    return fresh_state()


def rename_incubator(state: RawState, stores: StoreReader) -> RawState:
    """'incubator' nodes became 'designer'; the fixed incubator id became 'generator-node'."""
    def rename_id(value: Any) -> Any:
        return "generator-node" if value == "incubator-node" else value

    return {
        **state,
        "nodes": [
            {
                **n,
                "type": "designer" if n.get("type") == "incubator" else n.get("type"),
                "id": rename_id(n.get("id")),
            }
            for n in _nodes(state)
        ],
        "edges": [
            {
                **e,
                "source": rename_id(e.get("source")),
                "target": rename_id(e.get("target")),
                "id": _replace_in_id(e.get("id"), "incubator", "designer"),
            }
            for e in _edges(state)
        ],
    }


def rename_generator(state: RawState, stores: StoreReader) -> RawState:
    """'generator' node type renamed to 'designer'."""
    return {
        **state,
        "nodes": [
            {**n, "type": "designer" if n.get("type") == "generator" else n.get("type")}
            for n in _nodes(state)
        ],
        "edges": [
            {**e, "id": _replace_in_id(e.get("id"), "generator", "designer")}
            for e in _edges(state)
        ],
    }


def backfill_variant_strategy(state: RawState, stores: StoreReader) -> RawState:
    """Variants gained variantStrategyId; recover it from the generation store."""
    strategy_by_result = stores.strategy_by_result()
    nodes = []
    for node in _nodes(state):
        data = _data(node)
        if node.get("type") == NodeType.VARIANT.value and not data.get("variantStrategyId"):
            strategy_id = strategy_by_result.get(data.get("refId"))
            if strategy_id:
                node = {**node, "data": {**data, "variantStrategyId": strategy_id}}
        nodes.append(node)
    return {**state, "nodes": nodes}


def remove_designers(state: RawState, stores: StoreReader) -> RawState:
    """Designer nodes merged into hypotheses; hypotheses now feed variants directly."""
    nodes = _nodes(state)
    edges = _edges(state)
    designer_ids = {n.get("id") for n in nodes if n.get("type") == "designer"}
    kept_nodes = [n for n in nodes if n.get("type") != "designer"]
    kept_edges = [
        e for e in edges
        if e.get("source") not in designer_ids and e.get("target") not in designer_ids
    ]
    return {
        **state,
        "nodes": kept_nodes,
        "edges": kept_edges + _hypothesis_variant_edges(kept_nodes, kept_edges),
    }


def ensure_hypothesis_variant_edges(state: RawState, stores: StoreReader) -> RawState:
    """Add any missing hypothesis -> variant edge."""
    edges = _edges(state)
    new_edges = _hypothesis_variant_edges(_nodes(state), edges)
    if not new_edges:
        return state
    return {**state, "edges": edges + new_edges}


def _design_system_edges(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    present = {e.get("id") for e in edges}
    design_ids = [n["id"] for n in nodes if n.get("type") == NodeType.DESIGN_SYSTEM.value]
    hypothesis_ids = [n["id"] for n in nodes if n.get("type") == NodeType.HYPOTHESIS.value]
    new_edges = []
    for design_id in design_ids:
        for hypothesis_id in hypothesis_ids:
            edge_id = build_edge_id(design_id, hypothesis_id)
            if edge_id in present:
                continue
            present.add(edge_id)
            new_edges.append({
                "id": edge_id,
                "source": design_id,
                "target": hypothesis_id,
                "type": EdgeType.DATA_FLOW.value,
            })
    return new_edges


def embed_design_system(state: RawState, stores: StoreReader) -> RawState:
    """Design system content moved from the spec store into the node itself."""
    section = stores.design_system_section()
    nodes = []
    for node in _nodes(state):
        if node.get("type") == NodeType.DESIGN_SYSTEM.value:
            node = {
                **node,
                "data": {
                    **_data(node),
                    "title": DESIGN_SYSTEM_TITLE,
                    "content": section["content"],
                    "images": section["images"],
                },
            }
        nodes.append(node)
    edges = _edges(state)
    return {**state, "nodes": nodes, "edges": edges + _design_system_edges(nodes, edges)}


def recover_design_system(state: RawState, stores: StoreReader) -> RawState:
    """Retry the design system recovery for nodes that are still empty."""
    nodes = _nodes(state)
    missing = any(
        n.get("type") == NodeType.DESIGN_SYSTEM.value and not _data(n).get("content")
        for n in nodes
    )
    if not missing:
        return state

    section = stores.design_system_section()
    if not section["content"] and not section["images"]:
        return state

    recovered = []
    for node in nodes:
        data = _data(node)
        if node.get("type") == NodeType.DESIGN_SYSTEM.value and not data.get("content"):
            node = {
                **node,
                "data": {
                    **data,
                    "title": data.get("title") or DESIGN_SYSTEM_TITLE,
                    "content": section["content"],
                    "images": section["images"],
                },
            }
        recovered.append(node)
    return {**state, "nodes": recovered}


def extract_model_nodes(state: RawState, stores: StoreReader) -> RawState:
    """
    Inline providerId/modelId on processing nodes became dedicated model nodes.

    One model node per distinct (provider, model) pair, placed left of the
    nodes it feeds at their average height.
    """
    nodes = _nodes(state)
    edges = _edges(state)

    combos: Dict[tuple, List[Dict[str, Any]]] = {}
    for node in nodes:
        if node.get("type") not in MODEL_CONSUMER_TYPES:
            continue
        data = _data(node)
        provider_id, model_id = data.get("providerId"), data.get("modelId")
        if provider_id and model_id:
            combos.setdefault((provider_id, model_id), []).append(node)

    if not combos:
        return state

    model_nodes = []
    model_edges = []
    for i, ((provider_id, model_id), targets) in enumerate(combos.items()):
        model_node_id = f"{MIGRATED_MODEL_PREFIX}-{i}"
        short_name = model_id.split("/")[-1]
        ys = [(t.get("position") or {}).get("y", MIGRATED_MODEL_DEFAULT_Y) for t in targets]
        xs = [(t.get("position") or {}).get("x", 0) for t in targets]
        model_nodes.append({
            "id": model_node_id,
            "type": NodeType.MODEL.value,
            "position": {
                "x": max(0, min(xs) - MIGRATED_MODEL_OFFSET_X),
                "y": sum(ys) / len(ys),
            },
            "data": {
                "title": f"{provider_id} / {short_name}",
                "providerId": provider_id,
                "modelId": model_id,
            },
        })
        for target in targets:
            model_edges.append({
                "id": build_edge_id(model_node_id, target["id"]),
                "source": model_node_id,
                "target": target["id"],
                "type": EdgeType.DATA_FLOW.value,
                "data": {"status": EdgeStatus.IDLE.value},
            })

    stripped = []
    for node in nodes:
        if node.get("type") in MODEL_CONSUMER_TYPES:
            data = {k: v for k, v in _data(node).items() if k not in ("providerId", "modelId")}
            node = {**node, "data": data}
        stripped.append(node)

    return {**state, "nodes": stripped + model_nodes, "edges": edges + model_edges}


def normalize_graph(state: RawState, stores: StoreReader) -> RawState:
    """
    Bring nodes and edges to the current shape.

    - nodes of unknown type are dropped, with their edges
    - variants with an active result but no history get a one-entry history
    - edge status moves from data.status to a top-level field
    - edge ids follow the edge-{source}-to-{target} convention, one per pair
    - edges missing an endpoint are skipped
    """
    nodes = []
    dropped = set()
    for node in _nodes(state):
        if not is_known_type(node.get("type")):
            dropped.add(node.get("id"))
            continue
        data = _data(node)
        if node["type"] == NodeType.VARIANT.value and data.get("refId") and not data.get("versionIds"):
            data = {**data, "versionIds": [data["refId"]]}
        nodes.append({**node, "data": data})

    if dropped:
        logger.info("Dropped %d nodes of unknown type during migration", len(dropped))

    edges = []
    seen = set()
    valid_statuses = {s.value for s in EdgeStatus}
    for edge in _edges(state):
        source, target = edge.get("source"), edge.get("target")
        if not isinstance(source, str) or not isinstance(target, str) or not source or not target:
            logger.warning("Skipping edge %s without both endpoints during migration", edge.get("id"))
            continue
        if source in dropped or target in dropped:
            continue
        edge_id = build_edge_id(source, target)
        if edge_id in seen:
            continue
        seen.add(edge_id)
        legacy = edge.get("data") if isinstance(edge.get("data"), dict) else {}
        status = edge.get("status") or legacy.get("status") or EdgeStatus.IDLE.value
        edges.append({
            "id": edge_id,
            "source": source,
            "target": target,
            "type": EdgeType.DATA_FLOW.value,
            "status": status if status in valid_statuses else EdgeStatus.IDLE.value,
        })

    return {**state, "nodes": nodes, "edges": edges}


# =============================================================================
# MIGRATION CHAIN
# =============================================================================

class MigrationStep(msgspec.Struct, kw_only=True, frozen=True):
    """One upgrade: runs when the stored version is below applies_below."""
    applies_below: int
    name: str
    fn: Callable[[RawState, StoreReader], RawState]


MIGRATIONS: List[MigrationStep] = [
    MigrationStep(applies_below=2, name="reset_pre_v2", fn=reset_canvas),
    MigrationStep(applies_below=3, name="rename_incubator", fn=rename_incubator),
    MigrationStep(applies_below=4, name="reset_multi_compiler", fn=reset_canvas),
    MigrationStep(applies_below=6, name="rename_generator", fn=rename_generator),
    MigrationStep(applies_below=7, name="backfill_variant_strategy", fn=backfill_variant_strategy),
    MigrationStep(applies_below=9, name="remove_designers", fn=remove_designers),
    MigrationStep(applies_below=10, name="ensure_hypothesis_variant_edges", fn=ensure_hypothesis_variant_edges),
    MigrationStep(applies_below=11, name="embed_design_system", fn=embed_design_system),
    MigrationStep(applies_below=12, name="recover_design_system", fn=recover_design_system),
    MigrationStep(applies_below=13, name="extract_model_nodes", fn=extract_model_nodes),
    MigrationStep(applies_below=14, name="normalize_graph", fn=normalize_graph),
]


def pending_steps(from_version: int) -> List[MigrationStep]:
    """Steps that apply to a snapshot stored at from_version, in order."""
    return [step for step in MIGRATIONS if from_version < step.applies_below]


def migrate(
    raw_snapshot: Any,
    from_version: int,
    stores: Optional[Mapping[str, str]] = None,
) -> CanvasSnapshot:
    """
    Upgrade a decoded snapshot to the current shape.

    Args:
        raw_snapshot: Decoded JSON (dict) as stored at from_version
        from_version: Schema version the snapshot was written with
        stores: Raw JSON of the external stores, keyed by store name

    Returns:
        The migrated CanvasSnapshot, or a fresh empty snapshot when the
        input cannot be migrated
    """
    if not isinstance(raw_snapshot, dict):
        logger.warning("Discarding canvas snapshot: expected an object, got %s", type(raw_snapshot).__name__)
        return fresh_snapshot()

    reader = StoreReader(stores)
    state: RawState = copy.deepcopy(raw_snapshot)
    step_name = "convert"
    try:
        for step in pending_steps(from_version):
            step_name = step.name
            state = step.fn(state, reader)
            logger.debug("Applied migration %s", step.name)
        step_name = "convert"
        return snapshot_from_builtins(state)
    except (MigrationError, msgspec.ValidationError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(
            "Discarding canvas snapshot v%s: %s failed (%s)", from_version, step_name, e,
        )
        return fresh_snapshot()


def load_snapshot(
    data: Union[bytes, str, None],
    from_version: int,
    stores: Optional[Mapping[str, str]] = None,
) -> CanvasSnapshot:
    """Decode persisted JSON and migrate it; malformed JSON gives a fresh canvas."""
    if not data:
        return fresh_snapshot()
    try:
        raw = decode_raw(data)
    except msgspec.DecodeError as e:
        logger.warning("Discarding canvas snapshot: invalid JSON (%s)", e)
        return fresh_snapshot()
    return migrate(raw, from_version, stores)


def dump_snapshot(snapshot: CanvasSnapshot) -> bytes:
    """Encode a snapshot at CURRENT_SCHEMA_VERSION."""
    return encode_snapshot(snapshot)
