"""
Unit tests for configuration loading and validation.

Tests strict validation, credential requirements and API base derivation.
"""

import os
import tempfile

import pytest
import yaml

from vps_carryover.config.loader import (
    OverUsagePolicy,
    PanelConfig,
    build_api_base,
    load_panel_config,
    parse_over_usage_policy,
    write_default_config,
)
from vps_carryover.core.errors import ConfigUnavailable


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a complete configuration loads correctly."""
        config_path = self._write_config({
            "host": "10.0.0.5",
            "key": "apikey",
            "password": "apipass",
            "parallel_jobs": 8,
            "over_usage_policy": "allow-negative",
            "page_size": 25,
            "connect_timeout": 5,
            "request_timeout": 30.5,
            "retries": 2,
            "verify_tls": False,
            "log_dir": self.temp_dir,
        })

        config = load_panel_config(config_path)

        assert config.host == "10.0.0.5"
        assert config.parallel_jobs == 8
        assert config.over_usage_policy == OverUsagePolicy.ALLOW_NEGATIVE
        assert config.page_size == 25
        assert config.connect_timeout == 5.0
        assert config.request_timeout == 30.5
        assert config.retries == 2
        assert config.verify_tls is False
        assert str(config.change_log_path).startswith(self.temp_dir)

    def test_defaults_applied(self):
        """Test that optional settings fall back to defaults."""
        config_path = self._write_config({"host": "panel", "key": "k", "password": "p"})

        config = load_panel_config(config_path)

        assert config.parallel_jobs == 5
        assert config.over_usage_policy == OverUsagePolicy.CLAMP
        assert config.page_size == 50
        assert config.retries == 0
        assert config.verify_tls is True
        assert config.run_log_path.name == "reset_band.log"
        assert config.change_log_path.name == "reset_band_changes.log"

    def test_api_base_replaces_credentials(self):
        """Test that an explicit API base makes credentials optional."""
        config_path = self._write_config({"api_base": "https://panel:4085/index.php?adminapikey=a&adminapipass=b"})

        config = load_panel_config(config_path)

        assert config.resolved_api_base == "https://panel:4085/index.php?adminapikey=a&adminapipass=b"

    def test_missing_file(self):
        """Test that a missing file is reported as unavailable config."""
        with pytest.raises(ConfigUnavailable, match="not found"):
            load_panel_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_empty_file(self):
        """Test that an empty file is reported as unavailable config."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        with pytest.raises(ConfigUnavailable, match="empty"):
            load_panel_config(config_path)

    def test_missing_credentials(self):
        """Test that missing credentials are reported by name."""
        config_path = self._write_config({"host": "panel", "key": ""})

        with pytest.raises(ConfigUnavailable) as exc_info:
            load_panel_config(config_path)

        assert "key" in str(exc_info.value)
        assert "password" in str(exc_info.value)

    def test_default_template_requires_configuration(self):
        """Test that the written template is not usable until filled in."""
        config_path = os.path.join(self.temp_dir, "sub", "vps.yaml")

        assert write_default_config(config_path) is True
        assert write_default_config(config_path) is False
        with pytest.raises(ConfigUnavailable):
            load_panel_config(config_path)

    def test_unknown_keys_rejected(self):
        """Test that unknown keys are rejected."""
        config_path = self._write_config({"host": "h", "key": "k", "password": "p", "paralel_jobs": 3})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_panel_config(config_path)

    def test_invalid_policy(self):
        """Test that an unknown over-usage policy is rejected."""
        config_path = self._write_config({"host": "h", "key": "k", "password": "p", "over_usage_policy": "ignore"})

        with pytest.raises(ValueError, match="must be one of"):
            load_panel_config(config_path)

    @pytest.mark.parametrize("field,value", [
        ("parallel_jobs", 0),
        ("parallel_jobs", "4"),
        ("page_size", 0),
        ("retries", -1),
        ("request_timeout", 0),
        ("verify_tls", "yes"),
    ])
    def test_invalid_values(self, field, value):
        """Test that invalid numeric and boolean values are rejected."""
        config_path = self._write_config({"host": "h", "key": "k", "password": "p", field: value})

        with pytest.raises(ValueError):
            load_panel_config(config_path)

    def test_invalid_yaml(self):
        """Test that broken YAML raises a YAML error."""
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("host: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_panel_config(config_path)


class TestApiBase:
    """Test API base URL derivation."""

    def test_default_port_added(self):
        assert build_api_base("10.0.0.5", "k", "p") == (
            "https://10.0.0.5:4085/index.php?adminapikey=k&adminapipass=p"
        )

    def test_scheme_and_slash_stripped(self):
        assert build_api_base("http://panel.example.com/", "k", "p") == (
            "https://panel.example.com:4085/index.php?adminapikey=k&adminapipass=p"
        )

    def test_explicit_port_kept(self):
        assert build_api_base("https://panel.example.com:8443", "k", "p").startswith(
            "https://panel.example.com:8443/index.php?"
        )

    def test_credentials_quoted(self):
        assert build_api_base("panel", "k&x", "p=1").endswith("adminapikey=k%26x&adminapipass=p%3D1")


class TestOverrides:
    """Test runtime overrides of loaded configuration."""

    def test_none_values_ignored(self):
        config = PanelConfig(host="h", key="k", password="p")

        overridden = config.with_overrides(parallel_jobs=None, over_usage_policy=OverUsagePolicy.SKIP)

        assert overridden.parallel_jobs == 5
        assert overridden.over_usage_policy == OverUsagePolicy.SKIP
        assert config.over_usage_policy == OverUsagePolicy.CLAMP

    def test_override_validated(self):
        with pytest.raises(ValueError):
            PanelConfig().with_overrides(parallel_jobs=0)

    def test_policy_parsing_case_insensitive(self):
        assert parse_over_usage_policy(" Skip ") == OverUsagePolicy.SKIP
