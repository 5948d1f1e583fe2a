"""
Tests for Conatus configuration and logging setup.
"""

import pytest
import structlog
from pydantic import ValidationError

from conatus.core.config import (
    AutomationConfig,
    ConatusConfig,
    LoggingConfig,
    LogLevel,
    get_config,
    reset_config,
    set_config,
)
from conatus.core.log_config import setup_logging


class TestConfig:
    """Tests for configuration loading."""

    def teardown_method(self):
        reset_config()

    def test_defaults(self):
        config = ConatusConfig()

        assert config.automation.max_block_depth == 64
        assert config.automation.max_parallel_actions is None
        assert config.triggers.time_tolerance_seconds == 60
        assert config.triggers.location_margin_meters == 50
        assert config.triggers.near_default_radius_meters == 500
        assert config.triggers.location_flag_ttl_seconds == 86400
        assert config.logging.level == LogLevel.INFO

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CONATUS_AUTOMATION__MAX_BLOCK_DEPTH", "8")
        monkeypatch.setenv("CONATUS_TRIGGERS__TIME_TOLERANCE_SECONDS", "30")

        config = ConatusConfig()

        assert config.automation.max_block_depth == 8
        assert config.triggers.time_tolerance_seconds == 30

    def test_depth_must_be_positive(self):
        with pytest.raises(ValidationError):
            AutomationConfig(max_block_depth=0)

    def test_file_round_trip(self, tmp_path):
        path = tmp_path / "conf" / "conatus.json"
        ConatusConfig(environment="staging", automation=AutomationConfig(max_parallel_actions=4)).to_file(path)

        loaded = ConatusConfig.from_file(path)

        assert loaded.environment == "staging"
        assert loaded.automation.max_parallel_actions == 4

        with pytest.raises(FileNotFoundError):
            ConatusConfig.from_file(tmp_path / "missing.json")

    def test_global_instance(self):
        custom = ConatusConfig(environment="production")
        set_config(custom)

        assert get_config() is custom

        reset_config()
        assert get_config() is not custom


class TestLogging:
    """Tests for structured logging setup."""

    def teardown_method(self):
        structlog.reset_defaults()
        reset_config()

    def test_setup_logging(self):
        setup_logging(LoggingConfig(level=LogLevel.DEBUG, format="json"))
        structlog.get_logger("conatus.test").info("workflow_saved", workflow_id="wf-1")

        assert structlog.is_configured()
        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)

    def test_setup_logging_from_global_config(self):
        set_config(ConatusConfig(logging=LoggingConfig(format="console")))

        setup_logging()

        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)
