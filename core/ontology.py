"""
LATTICE ONTOLOGY - The Dictionary of the Canvas

If schemas.py is the Grammar (how a canvas graph is structured),
ontology.py is the Dictionary (the words a canvas graph may use).

This module defines:
- Enums: The vocabulary (NodeType, NodeRole, EdgeType, EdgeStatus)
- Role grouping: which node types are inputs, processing, outputs or feedback
- Sizing constants: widths and fallback heights for unmeasured nodes
- Type priority: palette ordering, also used to order the first layout layer

Key Principle: the set of node types is CLOSED.
Every table in this module is keyed by NodeType and checked for
completeness when the module loads.
"""
from typing import Dict, FrozenSet, List, Optional
from enum import Enum
import warnings


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Types of nodes on the canvas."""
    # Singleton input sections (content lives in the external spec store)
    DESIGN_BRIEF = "designBrief"
    EXISTING_DESIGN = "existingDesign"
    RESEARCH_CONTEXT = "researchContext"
    OBJECTIVES_METRICS = "objectivesMetrics"
    DESIGN_CONSTRAINTS = "designConstraints"
    # Configuration
    MODEL = "model"                  # Provider/model selection, many allowed
    # Processing
    COMPILER = "compiler"            # Turns sections into strategies
    DESIGN_SYSTEM = "designSystem"   # Self-contained design tokens/images
    HYPOTHESIS = "hypothesis"        # One strategy (data.refId = strategy id)
    # Output
    VARIANT = "variant"              # Generated result(s) for one strategy
    # Feedback
    CRITIQUE = "critique"            # User critique of a variant


class NodeRole(str, Enum):
    """Role grouping used for layering and palette ordering."""
    INPUT = "input"
    PROCESSING = "processing"
    OUTPUT = "output"
    FEEDBACK = "feedback"


class EdgeType(str, Enum):
    """Types of edges. The canvas only carries data flow."""
    DATA_FLOW = "dataFlow"


class EdgeStatus(str, Enum):
    """Data-flow status carried by an edge."""
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


# =============================================================================
# ROLE GROUPING
# =============================================================================

SECTION_NODE_TYPES: FrozenSet[str] = frozenset({
    NodeType.DESIGN_BRIEF.value,
    NodeType.EXISTING_DESIGN.value,
    NodeType.RESEARCH_CONTEXT.value,
    NodeType.OBJECTIVES_METRICS.value,
    NodeType.DESIGN_CONSTRAINTS.value,
})

NODE_ROLES: Dict[str, NodeRole] = {
    NodeType.DESIGN_BRIEF.value: NodeRole.INPUT,
    NodeType.EXISTING_DESIGN.value: NodeRole.INPUT,
    NodeType.RESEARCH_CONTEXT.value: NodeRole.INPUT,
    NodeType.OBJECTIVES_METRICS.value: NodeRole.INPUT,
    NodeType.DESIGN_CONSTRAINTS.value: NodeRole.INPUT,
    NodeType.MODEL.value: NodeRole.INPUT,
    NodeType.COMPILER.value: NodeRole.PROCESSING,
    NodeType.DESIGN_SYSTEM.value: NodeRole.PROCESSING,
    NodeType.HYPOTHESIS.value: NodeRole.PROCESSING,
    NodeType.VARIANT.value: NodeRole.OUTPUT,
    NodeType.CRITIQUE.value: NodeRole.FEEDBACK,
}

# Processing types that need a model attached before they can run
MODEL_CONSUMER_TYPES: FrozenSet[str] = frozenset({
    NodeType.COMPILER.value,
    NodeType.HYPOTHESIS.value,
    NodeType.DESIGN_SYSTEM.value,
})

# Section node type -> section id in the external spec store
NODE_TYPE_TO_SECTION: Dict[str, str] = {
    NodeType.DESIGN_BRIEF.value: "design-brief",
    NodeType.EXISTING_DESIGN.value: "existing-design",
    NodeType.RESEARCH_CONTEXT.value: "research-context",
    NodeType.OBJECTIVES_METRICS.value: "objectives-metrics",
    NodeType.DESIGN_CONSTRAINTS.value: "design-constraints",
}

# Palette order; also the sort key for the first layout layer
TYPE_ORDER: List[str] = [
    NodeType.DESIGN_BRIEF.value,
    NodeType.EXISTING_DESIGN.value,
    NodeType.RESEARCH_CONTEXT.value,
    NodeType.OBJECTIVES_METRICS.value,
    NodeType.DESIGN_CONSTRAINTS.value,
    NodeType.MODEL.value,
    NodeType.COMPILER.value,
    NodeType.DESIGN_SYSTEM.value,
    NodeType.HYPOTHESIS.value,
    NodeType.VARIANT.value,
    NodeType.CRITIQUE.value,
]

_TYPE_PRIORITY: Dict[str, int] = {t: i for i, t in enumerate(TYPE_ORDER)}
UNKNOWN_TYPE_PRIORITY = 99


# =============================================================================
# SIZING (Fallbacks until the renderer measures a node)
# =============================================================================

NODE_W_DEFAULT = 320
NODE_W_VARIANT = 480

SECTION_FALLBACK_HEIGHT = 200
UNKNOWN_FALLBACK_HEIGHT = 200

FALLBACK_HEIGHTS: Dict[str, int] = {
    NodeType.MODEL.value: 180,
    NodeType.COMPILER.value: 220,
    NodeType.DESIGN_SYSTEM.value: 300,
    NodeType.HYPOTHESIS.value: 340,
    NodeType.VARIANT.value: 400,
    NodeType.CRITIQUE.value: 260,
}


# =============================================================================
# LOOKUP FUNCTIONS
# =============================================================================

def is_section_type(node_type: str) -> bool:
    """True for the five singleton section types."""
    return node_type in SECTION_NODE_TYPES


def is_known_type(node_type: str) -> bool:
    """Check if a string is a valid NodeType value."""
    return node_type in NODE_ROLES


def role_of(node_type: str) -> Optional[NodeRole]:
    """Role of a node type, or None for unknown types."""
    return NODE_ROLES.get(node_type)


def type_priority(node_type: str) -> int:
    """Palette position of a node type (unknown types sort last)."""
    return _TYPE_PRIORITY.get(node_type, UNKNOWN_TYPE_PRIORITY)


def fallback_height(node_type: str) -> int:
    """Height to assume for a node the renderer has not measured yet."""
    if node_type in SECTION_NODE_TYPES:
        return SECTION_FALLBACK_HEIGHT
    return FALLBACK_HEIGHTS.get(node_type, UNKNOWN_FALLBACK_HEIGHT)


def node_width(node_type: str) -> int:
    """Rendered width of a node type (variants are wider)."""
    if node_type == NodeType.VARIANT.value:
        return NODE_W_VARIANT
    return NODE_W_DEFAULT


# =============================================================================
# MODULE INITIALIZATION
# =============================================================================

def _validate_ontology() -> List[str]:
    """Validate that every table covers exactly the closed set of node types."""
    errors = []
    valid_node_types = {nt.value for nt in NodeType}

    missing_roles = valid_node_types - set(NODE_ROLES)
    if missing_roles:
        errors.append(f"Node types without a role: {sorted(missing_roles)}")

    if set(TYPE_ORDER) != valid_node_types or len(TYPE_ORDER) != len(valid_node_types):
        errors.append("TYPE_ORDER must list every node type exactly once")

    for node_type in SECTION_NODE_TYPES:
        if node_type not in NODE_TYPE_TO_SECTION:
            errors.append(f"Section type without a spec section: {node_type}")

    for node_type in FALLBACK_HEIGHTS:
        if node_type not in valid_node_types:
            errors.append(f"Invalid node type in FALLBACK_HEIGHTS: {node_type}")

    return errors


# Run validation on module load
_validation_errors = _validate_ontology()
if _validation_errors:
    for err in _validation_errors:
        warnings.warn(f"Ontology validation: {err}")
