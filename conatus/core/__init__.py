"""Conatus Core Module - configuration and logging shared by all subsystems."""

from conatus.core.config import ConatusConfig, get_config, set_config, reset_config
from conatus.core.log_config import setup_logging

__all__ = [
    "ConatusConfig",
    "get_config",
    "set_config",
    "reset_config",
    "setup_logging",
]
