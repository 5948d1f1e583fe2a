"""
Conatus Configuration Management

Centralized configuration for the automation core with:
- Environment-based configuration
- Type-safe settings with Pydantic
- JSON file loading and saving
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels for Conatus."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AutomationConfig(BaseModel):
    """Configuration for the workflow execution engine."""
    action_timeout_seconds: float = 30.0
    credential_timeout_seconds: float = 10.0
    transform_timeout_seconds: float = 60.0
    query_timeout_seconds: float = 60.0
    max_block_depth: int = 64
    max_parallel_actions: Optional[int] = None  # None = unbounded fan-out
    history_max_records: int = 10000

    @field_validator("max_block_depth")
    @classmethod
    def depth_positive(cls, v: int) -> int:
        """Depth cap must allow at least the top-level pass."""
        if v < 1:
            raise ValueError("max_block_depth must be >= 1")
        return v


class TriggerConfig(BaseModel):
    """Configuration for contextual trigger evaluation."""
    time_tolerance_seconds: float = 60.0
    location_margin_meters: float = 50.0
    near_default_radius_meters: float = 500.0
    location_flag_ttl_seconds: int = 86400
    location_lookup_timeout_seconds: float = 10.0
    store_timeout_seconds: float = 5.0
    usage_pattern_min_actions: int = 3


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""
    level: LogLevel = LogLevel.INFO
    format: Literal["json", "console"] = "json"


class ConatusConfig(BaseSettings):
    """
    Main Conatus Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with CONATUS_
    (e.g., CONATUS_AUTOMATION__MAX_BLOCK_DEPTH=32).
    """

    environment: Literal["development", "staging", "production"] = "development"

    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "CONATUS_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def from_file(cls, config_path: Path) -> "ConatusConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


# Global configuration instance (lazy loaded)
_config: Optional[ConatusConfig] = None


def get_config() -> ConatusConfig:
    """Get the global Conatus configuration instance."""
    global _config
    if _config is None:
        _config = ConatusConfig()
    return _config


def set_config(config: ConatusConfig) -> None:
    """Set the global Conatus configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
