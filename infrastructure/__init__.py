"""
LATTICE INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- logger: Mutation event logging (ring buffer, JSONL file sink, subscribers)
- config: TOML configuration loaded into typed structs
"""

from infrastructure.logger import (
    LoggerConfig,
    MutationLogger,
    get_logger,
    configure_logger,
    reset_logger,
)
from infrastructure.config import (
    CanvasConfig,
    LayoutConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "LoggerConfig",
    "MutationLogger",
    "get_logger",
    "configure_logger",
    "reset_logger",
    "CanvasConfig",
    "LayoutConfig",
    "LoggingConfig",
    "load_config",
]
