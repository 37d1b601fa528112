"""
Unit tests for orchestrator configuration.
"""

import importlib
import os
from datetime import datetime
from unittest.mock import patch

import pytest

import peering.config as config_module
from peering.errors import ConfigurationError


def _reload_config():
    """
    Reload the peering.config module to ensure environment changes are picked up.
    """
    importlib.reload(config_module)
    return config_module.Config


class TestConfig:
    """Test configuration defaults, validation and path generation."""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        """Test default values when no environment variables are set."""
        Config = _reload_config()
        assert Config.MAX_WORKERS == 4
        assert Config.MAX_RETRIES == 5
        assert Config.PEERING_TAG_KEY == "Peering"
        assert Config.REPORT_PREFIX == "logs/peering"
        Config.validate()

    @patch.dict(os.environ, {"ENVIRONMENTS_DIR": "envs"}, clear=True)
    def test_get_peering_file_for_env(self):
        """Test peer file path generation from the environment layout."""
        Config = _reload_config()
        path = Config.get_peering_file("staging")
        assert path == os.path.join("envs", "staging", "peering.yaml")

    @patch.dict(os.environ, {"PEERING_CONFIG_PATH": "/etc/peering.yaml"}, clear=True)
    def test_explicit_config_path_wins_without_env(self):
        """Test PEERING_CONFIG_PATH is used unless an environment is named."""
        Config = _reload_config()
        assert Config.get_peering_file() == "/etc/peering.yaml"
        assert Config.get_peering_file("production").endswith(
            os.path.join("production", "peering.yaml")
        )

    def test_get_marker_value(self):
        """Test marker tag values for each side of an edge."""
        Config = _reload_config()
        assert Config.get_marker_value("app", True) == "app-source"
        assert Config.get_marker_value("app", False) == "app-peer"

    @patch.dict(os.environ, {"REPORT_PREFIX": "logs/peering"}, clear=True)
    def test_get_report_key(self):
        """Test report key generation."""
        Config = _reload_config()
        run_time = datetime(2024, 1, 15, 10, 30, 45)
        assert Config.get_report_key(run_time) == "logs/peering/2024/01/15/run-103045.json"

    @patch.dict(
        os.environ,
        {"MAX_WORKERS": "zero", "MAX_RETRIES": "0", "PEERING_TAG_KEY": ""},
        clear=True,
    )
    def test_validate_collects_every_problem(self):
        """Test config validation reports all invalid settings at once."""
        Config = _reload_config()
        with pytest.raises(ConfigurationError) as exc_info:
            Config.validate()

        violations = exc_info.value.violations
        assert "MAX_WORKERS must be a positive integer" in violations
        assert "MAX_RETRIES must be a positive integer" in violations
        assert "PEERING_TAG_KEY must not be empty" in violations

    @patch.dict(
        os.environ, {"RETRY_BASE_DELAY": "10", "RETRY_MAX_DELAY": "5"}, clear=True
    )
    def test_validate_retry_delays(self):
        """Test the backoff cap must not be below the base delay."""
        Config = _reload_config()
        with pytest.raises(ConfigurationError) as exc_info:
            Config.validate()
        assert exc_info.value.violations == ["RETRY_MAX_DELAY must be >= RETRY_BASE_DELAY"]
