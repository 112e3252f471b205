"""
RingDEX TOML Configuration Loader

Loads config.toml with environment variable overrides (dataclass +
from_dict + from_file).

Environment variable mapping:
    [engine] engine_address           → RINGDEX_ENGINE_ADDRESS
    [engine] fee_token                → RINGDEX_FEE_TOKEN
    [engine] max_ring_size            → RINGDEX_MAX_RING_SIZE
    [engine] rate_ratio_cvs_threshold → RINGDEX_RATE_RATIO_CVS_THRESHOLD
    [logging] level                   → RINGDEX_LOG_LEVEL
    [logging] file                    → RINGDEX_LOG_FILE
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from eth_utils import is_address

from ..constants import (
    DEFAULT_MAX_RING_SIZE,
    DEFAULT_RATE_RATIO_CVS_THRESHOLD,
    MIN_RING_SIZE,
    ZERO_ADDRESS,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class EngineSectionConfig:
    """[engine] section."""
    engine_address: str = ZERO_ADDRESS
    fee_token: str = ZERO_ADDRESS
    max_ring_size: int = DEFAULT_MAX_RING_SIZE
    rate_ratio_cvs_threshold: int = DEFAULT_RATE_RATIO_CVS_THRESHOLD

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSectionConfig":
        return cls(
            engine_address=data.get("engine_address", ZERO_ADDRESS),
            fee_token=data.get("fee_token", ZERO_ADDRESS),
            max_ring_size=int(data.get("max_ring_size", DEFAULT_MAX_RING_SIZE)),
            rate_ratio_cvs_threshold=int(
                data.get("rate_ratio_cvs_threshold", DEFAULT_RATE_RATIO_CVS_THRESHOLD)
            ),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("RINGDEX_ENGINE_ADDRESS"):
            self.engine_address = v
        if v := os.environ.get("RINGDEX_FEE_TOKEN"):
            self.fee_token = v
        if v := os.environ.get("RINGDEX_MAX_RING_SIZE"):
            self.max_ring_size = int(v)
        if v := os.environ.get("RINGDEX_RATE_RATIO_CVS_THRESHOLD"):
            self.rate_ratio_cvs_threshold = int(v)

    def validate(self) -> None:
        if not is_address(self.engine_address):
            raise ConfigurationError(f"Invalid engine_address: {self.engine_address}")
        if not is_address(self.fee_token):
            raise ConfigurationError(f"Invalid fee_token: {self.fee_token}")
        if self.max_ring_size < MIN_RING_SIZE:
            raise ConfigurationError(f"max_ring_size must be >= {MIN_RING_SIZE}")
        if self.rate_ratio_cvs_threshold < 0:
            raise ConfigurationError("rate_ratio_cvs_threshold must be >= 0")


@dataclass
class LoggingSectionConfig:
    """[logging] section."""
    level: str = "INFO"
    file: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSectionConfig":
        return cls(
            level=data.get("level", "INFO"),
            file=data.get("file", ""),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("RINGDEX_LOG_LEVEL"):
            self.level = v
        if v := os.environ.get("RINGDEX_LOG_FILE"):
            self.file = v

    def validate(self) -> None:
        if self.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Invalid log level: {self.level}")


@dataclass
class EngineConfig:
    """
    Unified engine configuration.

    Loads every section of config.toml and applies environment variable
    overrides. This is the single source of truth at runtime.
    """
    engine: EngineSectionConfig = field(default_factory=EngineSectionConfig)
    logging: LoggingSectionConfig = field(default_factory=LoggingSectionConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create EngineConfig from a parsed TOML dict."""
        return cls(
            engine=EngineSectionConfig.from_dict(data.get("engine", {})),
            logging=LoggingSectionConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        """
        Load configuration from a TOML file.

        A missing file yields the defaults (with env overrides applied).
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            raw = tomli.load(f)

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.engine.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        self.engine.validate()
        self.logging.validate()
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics)."""
        return {
            "engine": {
                "engine_address": self.engine.engine_address,
                "fee_token": self.engine.fee_token,
                "max_ring_size": self.engine.max_ring_size,
                "rate_ratio_cvs_threshold": self.engine.rate_ratio_cvs_threshold,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
        }


def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    Resolution order:
        1. Explicit *path* argument
        2. RINGDEX_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("RINGDEX_CONFIG", "config.toml")

    return EngineConfig.from_file(path)
