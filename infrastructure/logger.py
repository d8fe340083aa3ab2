"""
LATTICE MUTATION LOGGER - The Temporal Debugger

Records every canvas mutation with a timestamp and sequence number for
playback and analysis.

Architecture:
- MutationLogger: Core logging interface
- FileLogger: Newline-delimited JSON log, one file per day
- EventBuffer: In-memory ring buffer for recent events

Usage:
    logger = MutationLogger()
    logger.log_node_created("compiler-1a2b", "compiler")
    logger.log_status_changed("edge-a-to-b", "idle", "processing", "a", "b")

    # Playback
    for event in logger.get_events_for_node("b"):
        print(f"{event.sequence} {event.timestamp}: {event.mutation_type}")

Design:
- Thread-safe: buffer and file sink are lock-protected
- Configurable: file logging on/off, buffer size, log directory
- Subscribers: callbacks receive every event as it is emitted
"""
import msgspec
from typing import Optional, Dict, List, Any, Callable
from datetime import datetime, timezone
from dataclasses import dataclass
from pathlib import Path
from collections import deque
import threading
import logging
import io

from viz.core import MutationType, MutationEvent

_diag = logging.getLogger("lattice.logger")

LOG_FILE_PREFIX = "mutations_"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    enable_file_log: bool = False       # Enable file-based logging
    log_path: Optional[Path] = None     # Directory for daily JSONL files
    buffer_size: int = 10000            # Events kept in memory

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")
        elif not isinstance(self.log_path, Path):
            self.log_path = Path(self.log_path)


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Bounded, lock-protected history of recent canvas events.

    Also owns the sequence counter, so sequence numbers keep increasing
    after old events fall off the end.
    """

    def __init__(self, max_size: int = 10000):
        self._events: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        with self._lock:
            self._events.append(event)

    def get_last(self, n: int) -> List[MutationEvent]:
        """The n newest events, oldest first."""
        with self._lock:
            if n <= 0:
                return []
            return list(self._events)[-n:]

    def select(self, predicate: Callable[[MutationEvent], bool]) -> List[MutationEvent]:
        """Buffered events matching predicate, in emission order."""
        with self._lock:
            return [e for e in self._events if predicate(e)]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        """Drop buffered events; the sequence counter keeps counting."""
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# =============================================================================
# FILE LOGGER
# =============================================================================

class FileLogger:
    """
    Append-only JSONL sink, one file per UTC day.

    Files are named mutations_YYYY-MM-DD.jsonl inside log_path. Each line
    is one MutationEvent encoded with msgspec.
    """

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._handle: Optional[io.TextIOWrapper] = None
        self._handle_date: Optional[str] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(type=MutationEvent)

        log_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, date: str) -> Path:
        return self._log_path / f"{LOG_FILE_PREFIX}{date}.jsonl"

    def write(self, event: MutationEvent) -> None:
        """Append one event to today's file."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        with self._lock:
            try:
                if self._handle_date != today:
                    self._close_handle()
                    self._handle = self.path_for(today).open("a", encoding="utf-8")
                    self._handle_date = today
                self._handle.write(self._encoder.encode(event).decode("utf-8") + "\n")
                self._handle.flush()
            except OSError as e:
                _diag.warning("Mutation log write failed: %s", e)

    def _close_handle(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._handle_date = None

    def close(self) -> None:
        with self._lock:
            self._close_handle()

    def read_log(self, date: str) -> List[MutationEvent]:
        """Events recorded on date (YYYY-MM-DD). Corrupt lines are skipped."""
        path = self.path_for(date)
        if not path.exists():
            return []

        events = []
        with path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(self._decoder.decode(line))
                except msgspec.DecodeError:
                    _diag.debug("Skipping corrupt line %d in %s", lineno, path)
        return events


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Main logging interface for canvas mutations.

    Provides a unified API for logging events to:
    - In-memory buffer (always)
    - File-based logs (configurable)
    - Subscribers (any callable)

    Thread-safe for concurrent logging.

    Usage:
        logger = MutationLogger()

        # Log events
        logger.log_node_created("variant-9f", "variant")
        logger.log_edge_created("edge-h-to-v", "h", "v", "dataFlow")

        # Query events
        events = logger.get_events_for_node("variant-9f")
        recent = logger.get_recent_events(100)
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()

        # Core components
        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_logger: Optional[FileLogger] = None

        # Initialize file logger
        if self.config.enable_file_log and self.config.log_path:
            self._file_logger = FileLogger(self.config.log_path)

        # Event subscribers
        self._subscribers: List[Callable[[MutationEvent], None]] = []

    def _now(self) -> str:
        """Get current UTC timestamp."""
        return datetime.now(timezone.utc).isoformat()

    def _event(self, mutation_type: MutationType, **fields: Any) -> MutationEvent:
        return MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=mutation_type.value,
            **fields,
        )

    def _emit(self, event: MutationEvent) -> MutationEvent:
        """Emit an event to all destinations."""
        # Buffer (always)
        self._buffer.append(event)

        # File logger
        if self._file_logger:
            self._file_logger.write(event)

        # Subscribers; a failing subscriber must not break the mutation
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                _diag.warning("Subscriber error: %s", e)

        return event

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def log_node_created(self, node_id: str, node_type: str) -> MutationEvent:
        """Log a node creation event."""
        return self._emit(self._event(
            MutationType.NODE_CREATED, node_id=node_id, node_type=node_type,
        ))

    def log_node_updated(
        self,
        node_id: str,
        node_type: str,
        detail: Optional[str] = None,
    ) -> MutationEvent:
        """Log a node update event (payload, size or position)."""
        return self._emit(self._event(
            MutationType.NODE_UPDATED, node_id=node_id, node_type=node_type, detail=detail,
        ))

    def log_node_deleted(self, node_id: str, node_type: str) -> MutationEvent:
        """Log a node deletion event."""
        return self._emit(self._event(
            MutationType.NODE_DELETED, node_id=node_id, node_type=node_type,
        ))

    def log_status_changed(
        self,
        edge_id: str,
        old_status: str,
        new_status: str,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> MutationEvent:
        """Log an edge status change."""
        return self._emit(self._event(
            MutationType.STATUS_CHANGED,
            edge_id=edge_id,
            old_status=old_status,
            new_status=new_status,
            source_id=source_id,
            target_id=target_id,
        ))

    def log_edge_created(
        self,
        edge_id: str,
        source_id: str,
        target_id: str,
        edge_type: str,
    ) -> MutationEvent:
        """Log an edge creation event."""
        return self._emit(self._event(
            MutationType.EDGE_CREATED,
            edge_id=edge_id,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
        ))

    def log_edge_deleted(
        self,
        edge_id: str,
        source_id: str,
        target_id: str,
        edge_type: str,
    ) -> MutationEvent:
        """Log an edge deletion event."""
        return self._emit(self._event(
            MutationType.EDGE_DELETED,
            edge_id=edge_id,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
        ))

    def log_layout_applied(self, node_count: int, edge_count: int, column_gap: float) -> MutationEvent:
        """Log an auto-layout pass."""
        return self._emit(self._event(
            MutationType.LAYOUT_APPLIED,
            node_count=node_count,
            edge_count=edge_count,
            detail=f"column_gap={column_gap:g}",
        ))

    def log_migration_applied(
        self,
        from_version: int,
        to_version: int,
        node_count: int,
        edge_count: int,
    ) -> MutationEvent:
        """Log a snapshot load that went through the migration chain."""
        return self._emit(self._event(
            MutationType.MIGRATION_APPLIED,
            from_version=from_version,
            to_version=to_version,
            node_count=node_count,
            edge_count=edge_count,
        ))

    def log_batch_update(self, detail: str, node_count: int = 0, edge_count: int = 0) -> MutationEvent:
        """Log a multi-node operation (compile sync, generation sync, pruning)."""
        return self._emit(self._event(
            MutationType.BATCH_UPDATE,
            detail=detail,
            node_count=node_count,
            edge_count=edge_count,
        ))

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        """Get the n most recent events."""
        return self._buffer.get_last(n)

    def get_events_for_node(self, node_id: str) -> List[MutationEvent]:
        """Events about node_id, including edge events where it is an endpoint."""
        return self._buffer.select(
            lambda e: node_id in (e.node_id, e.source_id, e.target_id)
        )

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        """Events of one MutationType value."""
        return self._buffer.select(lambda e: e.mutation_type == mutation_type)

    def get_node_timeline(self, node_id: str) -> List[Dict[str, Any]]:
        """
        Get a timeline of mutations for a node.

        Returns a simplified list of mutations for debugging.
        """
        return [
            {
                "time": e.timestamp,
                "type": e.mutation_type,
                "edge": e.edge_id,
                "old_status": e.old_status,
                "new_status": e.new_status,
            }
            for e in self.get_events_for_node(node_id)
        ]

    def clear(self) -> None:
        """Drop buffered events (file logs are kept)."""
        self._buffer.clear()

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        """Subscribe to mutation events."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        """Unsubscribe from mutation events."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        """Close all resources."""
        if self._file_logger:
            self._file_logger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

# Global logger instance
_global_logger: Optional[MutationLogger] = None


def get_logger() -> MutationLogger:
    """Get or create the global logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = MutationLogger()
    return _global_logger


def configure_logger(config: LoggerConfig) -> MutationLogger:
    """Configure and return a new global logger."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = MutationLogger(config)
    return _global_logger


def reset_logger() -> None:
    """Close and forget the global logger (tests)."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = None
