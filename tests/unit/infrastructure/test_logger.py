"""
Unit tests for infrastructure/logger.py - the mutation logger

Tests:
- Event buffer queries and ring-buffer bounds
- Typed logging methods
- JSONL file sink (write, read back, corrupt lines)
- Subscribers and the global logger
"""
from datetime import datetime, timezone

from infrastructure.logger import (
    EventBuffer,
    FileLogger,
    LoggerConfig,
    MutationLogger,
    configure_logger,
    get_logger,
    reset_logger,
)
from viz.core import MutationEvent, MutationType


def _event(sequence, node_id=None, mutation_type=MutationType.NODE_CREATED.value, timestamp=None):
    return MutationEvent(
        timestamp=timestamp or f"2025-01-01T00:00:{sequence:02d}+00:00",
        sequence=sequence,
        mutation_type=mutation_type,
        node_id=node_id,
    )


# =============================================================================
# EVENT BUFFER
# =============================================================================

class TestEventBuffer:

    def test_ring_buffer_drops_oldest(self):
        buffer = EventBuffer(max_size=3)
        for i in range(5):
            buffer.append(_event(i))
        assert len(buffer) == 3
        assert [e.sequence for e in buffer.get_last(10)] == [2, 3, 4]

    def test_get_last(self):
        buffer = EventBuffer()
        for i in range(5):
            buffer.append(_event(i))
        assert [e.sequence for e in buffer.get_last(2)] == [3, 4]

    def test_select(self):
        buffer = EventBuffer()
        for i in range(5):
            buffer.append(_event(i, node_id="even" if i % 2 == 0 else "odd"))
        assert [e.sequence for e in buffer.select(lambda e: e.node_id == "even")] == [0, 2, 4]

    def test_get_last_non_positive(self):
        buffer = EventBuffer()
        buffer.append(_event(1))
        assert buffer.get_last(0) == []

    def test_sequence_increments(self):
        buffer = EventBuffer()
        assert [buffer.next_sequence() for _ in range(3)] == [1, 2, 3]

    def test_clear(self):
        buffer = EventBuffer()
        buffer.append(_event(1))
        buffer.clear()
        assert len(buffer) == 0


# =============================================================================
# MUTATION LOGGER
# =============================================================================

class TestMutationLogger:

    def test_node_events(self, mutation_logger):
        mutation_logger.log_node_created("compiler-1", "compiler")
        mutation_logger.log_node_updated("compiler-1", "compiler", detail="measured")
        mutation_logger.log_node_deleted("compiler-1", "compiler")

        events = mutation_logger.get_events_for_node("compiler-1")
        assert [e.mutation_type for e in events] == ["NODE_CREATED", "NODE_UPDATED", "NODE_DELETED"]
        assert [e.sequence for e in events] == [1, 2, 3]
        assert events[1].detail == "measured"

    def test_edge_events_are_found_by_endpoint(self, mutation_logger):
        mutation_logger.log_edge_created("edge-a-to-b", "a", "b", "dataFlow")
        mutation_logger.log_status_changed("edge-a-to-b", "idle", "processing", "a", "b")
        mutation_logger.log_edge_deleted("edge-a-to-b", "a", "b", "dataFlow")

        assert len(mutation_logger.get_events_for_node("a")) == 3
        assert len(mutation_logger.get_events_for_node("b")) == 3
        changed = mutation_logger.get_events_by_type("STATUS_CHANGED")[0]
        assert (changed.old_status, changed.new_status) == ("idle", "processing")

    def test_layout_migration_and_batch_events(self, mutation_logger):
        mutation_logger.log_layout_applied(5, 4, 160.0)
        mutation_logger.log_migration_applied(12, 14, 5, 4)
        mutation_logger.log_batch_update("compile", 7, 6)

        layout, migration, batch = mutation_logger.get_recent_events()
        assert layout.detail == "column_gap=160"
        assert (migration.from_version, migration.to_version) == (12, 14)
        assert (batch.node_count, batch.edge_count) == (7, 6)

    def test_node_timeline(self, mutation_logger):
        mutation_logger.log_edge_created("edge-a-to-b", "a", "b", "dataFlow")
        mutation_logger.log_status_changed("edge-a-to-b", "idle", "complete", "a", "b")
        timeline = mutation_logger.get_node_timeline("b")
        assert [t["type"] for t in timeline] == ["EDGE_CREATED", "STATUS_CHANGED"]
        assert timeline[1]["new_status"] == "complete"

    def test_subscribers(self, mutation_logger):
        received = []
        mutation_logger.subscribe(received.append)
        mutation_logger.log_node_created("a", "model")
        mutation_logger.unsubscribe(received.append)
        mutation_logger.log_node_created("b", "model")
        assert [e.node_id for e in received] == ["a"]

    def test_failing_subscriber_does_not_break_logging(self, mutation_logger):
        def broken(event):
            raise RuntimeError("boom")

        mutation_logger.subscribe(broken)
        event = mutation_logger.log_node_created("a", "model")
        assert event.node_id == "a"
        assert len(mutation_logger.get_recent_events()) == 1

    def test_clear(self, mutation_logger):
        mutation_logger.log_node_created("a", "model")
        mutation_logger.clear()
        assert mutation_logger.get_recent_events() == []


# =============================================================================
# FILE SINK
# =============================================================================

def test_file_logger_roundtrip(tmp_path):
    with MutationLogger(LoggerConfig(enable_file_log=True, log_path=tmp_path)) as logger:
        logger.log_node_created("variant-1", "variant")
        logger.log_status_changed("edge-h-to-v", "processing", "complete", "h", "variant-1")

    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    events = FileLogger(tmp_path).read_log(today)
    assert [e.mutation_type for e in events] == ["NODE_CREATED", "STATUS_CHANGED"]
    assert events[1].new_status == "complete"


def test_file_logger_skips_corrupt_lines(tmp_path):
    good = _event(1, node_id="a")
    path = tmp_path / "mutations_2025-01-01.jsonl"
    path.write_text(
        '{"timestamp": "2025-01-01T00:00:01+00:00", "sequence": 1, "mutation_type": "NODE_CREATED", "node_id": "a"}\n'
        "not json\n"
        "\n"
        '{"sequence": "wrong"}\n',
        encoding="utf-8",
    )
    events = FileLogger(tmp_path).read_log("2025-01-01")
    assert events == [good]


def test_read_missing_log(tmp_path):
    assert FileLogger(tmp_path).read_log("1999-01-01") == []


def test_log_path_string_is_converted(tmp_path):
    config = LoggerConfig(log_path=str(tmp_path))
    assert config.log_path == tmp_path


# =============================================================================
# GLOBAL LOGGER
# =============================================================================

def test_global_logger_is_shared():
    assert get_logger() is get_logger()


def test_configure_logger_replaces_global():
    first = get_logger()
    second = configure_logger(LoggerConfig(buffer_size=5))
    assert second is not first
    assert get_logger() is second
    assert get_logger().config.buffer_size == 5


def test_reset_logger():
    first = get_logger()
    reset_logger()
    assert get_logger() is not first
