"""
Pytest configuration and shared fixtures for the Lattice test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the global mutation logger before each test to ensure isolation."""
    from infrastructure.logger import reset_logger

    reset_logger()

    yield

    # Cleanup after test
    reset_logger()


@pytest.fixture
def empty_graph():
    """Provide an empty CanvasGraph."""
    from core.schemas import CanvasGraph
    return CanvasGraph()


@pytest.fixture
def pipeline_graph():
    """
    Provide a small, fully wired pipeline with fixed ids.

        designBrief-1 --> compiler-1 --> hypothesis-s1 --> variant-1
        model-1 ---------^   model-1 ----^
    """
    from core.schemas import (
        CanvasGraph,
        CanvasNode,
        CanvasEdge,
        Position,
        HypothesisPayload,
        VariantPayload,
        ModelPayload,
    )

    nodes = (
        CanvasNode.create("designBrief", id="designBrief-1", position=Position(x=0, y=300)),
        CanvasNode.create(
            "model", id="model-1", position=Position(x=0, y=600),
            data=ModelPayload(title="Provider / model", provider_id="provider", model_id="model"),
        ),
        CanvasNode.create("compiler", id="compiler-1", position=Position(x=480, y=300)),
        CanvasNode.create(
            "hypothesis", id="hypothesis-s1", position=Position(x=960, y=300),
            data=HypothesisPayload(ref_id="s1"),
        ),
        CanvasNode.create(
            "variant", id="variant-1", position=Position(x=1440, y=300),
            data=VariantPayload(ref_id="r1", variant_strategy_id="s1", version_ids=("r1",)),
        ),
    )
    edges = (
        CanvasEdge.create("designBrief-1", "compiler-1"),
        CanvasEdge.create("model-1", "compiler-1"),
        CanvasEdge.create("compiler-1", "hypothesis-s1", status="complete"),
        CanvasEdge.create("model-1", "hypothesis-s1"),
        CanvasEdge.create("hypothesis-s1", "variant-1", status="complete"),
    )
    return CanvasGraph(nodes=nodes, edges=edges)


@pytest.fixture
def mutation_logger():
    """Provide an in-memory MutationLogger (no file sink)."""
    from infrastructure.logger import MutationLogger, LoggerConfig
    return MutationLogger(LoggerConfig(enable_file_log=False, buffer_size=1000))
