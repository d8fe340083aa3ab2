"""
LATTICE CONFIG - Typed Configuration from canvas.toml

Loads config/canvas.toml with tomllib and converts it into typed msgspec
Structs. A missing or malformed file never stops the engine: a warning is
emitted and defaults are used.
"""
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging
import tomllib
import warnings

import msgspec

from core.layout import DEFAULT_COL_GAP, clamp_column_gap
from infrastructure.logger import LoggerConfig

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "canvas.toml"


class LayoutConfig(msgspec.Struct, kw_only=True, frozen=True):
    """[layout] section."""
    column_gap: float = DEFAULT_COL_GAP
    auto_layout: bool = True


class LoggingConfig(msgspec.Struct, kw_only=True, frozen=True):
    """[logging] section."""
    enable_file_log: bool = False
    log_dir: str = "./workspace/logs"
    buffer_size: int = 10000
    level: str = "INFO"

    def to_logger_config(self) -> LoggerConfig:
        return LoggerConfig(
            enable_file_log=self.enable_file_log,
            log_path=Path(self.log_dir),
            buffer_size=self.buffer_size,
        )

    def apply_level(self) -> None:
        """Set the level of the "lattice" stdlib logger hierarchy."""
        logging.getLogger("lattice").setLevel(self.level.upper())


class CanvasConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Top-level configuration."""
    layout: LayoutConfig = msgspec.field(default_factory=LayoutConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)

    @property
    def column_gap(self) -> float:
        """Configured gap, clamped to the supported range."""
        return clamp_column_gap(self.layout.column_gap)


def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the raw TOML configuration.

    Returns:
        Dict with all configuration sections (empty on failure)
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}


def load_config(path: Optional[Union[str, Path]] = None) -> CanvasConfig:
    """
    Load and validate configuration.

    Args:
        path: TOML file to read; config/canvas.toml when omitted

    Returns:
        CanvasConfig (defaults for anything missing or invalid)
    """
    raw = load_toml_config(path)
    try:
        return msgspec.convert(raw, type=CanvasConfig)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid configuration, using defaults: {e}")
        return CanvasConfig()
