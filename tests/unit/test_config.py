"""Unit tests for configuration module."""

import json

import pytest

from vcd_migrate.config import (
    Config,
    LoggingConfig,
    ReadinessConfig,
    VcdEndpointConfig,
)

# Test constants
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 120
DEFAULT_SETTLE_DELAY = 30.0
TEST_MAX_ATTEMPTS = 10


class TestVcdEndpointConfig:
    """Test vCD endpoint configuration."""

    def test_valid_config(self):
        """Test creating a valid endpoint config."""
        config = VcdEndpointConfig(
            host="vcd.example.com", username="administrator", password="secret"
        )
        assert config.base_url == "https://vcd.example.com"
        assert config.login == "administrator@System"
        assert config.api_version == "29.0"
        assert config.password.get_secret_value() == "secret"

    def test_host_scheme_is_stripped(self):
        """Test that a scheme and trailing slash are removed from the host."""
        config = VcdEndpointConfig(host="https://vcd.example.com/", username="admin")
        assert config.host == "vcd.example.com"

    def test_empty_username_validation(self):
        """Test that an empty user name raises validation error."""
        with pytest.raises(ValueError, match="Username cannot be empty"):
            VcdEndpointConfig(host="vcd.example.com", username="   ")

    def test_unsupported_api_version(self):
        """Test that only versions with a locator are accepted."""
        with pytest.raises(ValueError, match="API version must be one of"):
            VcdEndpointConfig(host="vcd.example.com", username="admin", api_version="31.0")

    def test_password_is_not_printed(self):
        """Test that the password does not leak through repr."""
        config = VcdEndpointConfig(host="vcd", username="admin", password="hunter2")
        assert "hunter2" not in repr(config)


class TestReadinessConfig:
    """Test the readiness polling policy."""

    def test_default_values(self):
        """Test default configuration values."""
        config = ReadinessConfig()
        assert config.poll_interval == DEFAULT_POLL_INTERVAL
        assert config.max_attempts == DEFAULT_MAX_ATTEMPTS
        assert config.settle_delay == DEFAULT_SETTLE_DELAY
        assert config.backoff == "fixed"
        assert config.max_elapsed is None

    def test_validation_bounds(self):
        """Test configuration validation bounds."""
        config = ReadinessConfig(max_attempts=TEST_MAX_ATTEMPTS, backoff="exponential")
        assert config.max_attempts == TEST_MAX_ATTEMPTS

        with pytest.raises(ValueError):
            ReadinessConfig(max_attempts=0)
        with pytest.raises(ValueError):
            ReadinessConfig(poll_interval=-1)
        with pytest.raises(ValueError):
            ReadinessConfig(backoff="random")


class TestLoggingConfig:
    """Test logging configuration."""

    def test_level_is_normalized(self):
        """Test that the log level is upper-cased."""
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_format(self):
        """Test that unknown formats are rejected."""
        with pytest.raises(ValueError, match="Log format must be"):
            LoggingConfig(format="xml")


class TestConfig:
    """Test main configuration class."""

    def test_from_env(self, monkeypatch):
        """Test creating config from environment variables."""
        monkeypatch.setenv("VCD_TARGET_HOST", "target.example.com")
        monkeypatch.setenv("VCD_TARGET_USER", "admin")
        monkeypatch.setenv("VCD_TARGET_PASSWORD", "target-secret")
        monkeypatch.setenv("VCD_SOURCE_HOST", "source.example.com")
        monkeypatch.setenv("VCD_SOURCE_USER", "admin")
        monkeypatch.setenv("VCD_SOURCE_API_VERSION", "27.0")
        monkeypatch.setenv("VCD_POLL_INTERVAL", "2")
        monkeypatch.setenv("VCD_SETTLE_DELAY", "0")
        monkeypatch.setenv("VCD_PROVIDER_VDC", "pvdc-gold")
        monkeypatch.delenv("VCD_SOURCE_PASSWORD", raising=False)

        config = Config.from_env()

        assert config.target.host == "target.example.com"
        assert config.target.password.get_secret_value() == "target-secret"
        assert config.source.api_version == "27.0"
        assert config.source.password is None
        assert config.readiness.poll_interval == 2.0
        assert config.readiness.settle_delay == 0.0
        assert config.provider.provider_vdc == "pvdc-gold"

    def test_from_env_without_source(self, monkeypatch):
        """Test that the source endpoint is optional."""
        monkeypatch.setenv("VCD_TARGET_HOST", "target.example.com")
        monkeypatch.setenv("VCD_TARGET_USER", "admin")
        monkeypatch.delenv("VCD_SOURCE_HOST", raising=False)
        monkeypatch.delenv("VCD_SOURCE_USER", raising=False)

        assert Config.from_env().source is None

    def test_from_env_missing_target(self, monkeypatch):
        """Test that the target endpoint is required."""
        monkeypatch.delenv("VCD_TARGET_HOST", raising=False)
        monkeypatch.delenv("VCD_TARGET_USER", raising=False)

        with pytest.raises(ValueError, match="VCD_TARGET_HOST"):
            Config.from_env()

    def test_from_yaml_file(self, tmp_path):
        """Test loading configuration from a YAML file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "target:\n"
            "  host: target.example.com\n"
            "  username: admin\n"
            "readiness:\n"
            "  poll_interval: 1\n"
            "  max_attempts: 10\n"
            "provider:\n"
            "  vcenter: vc-target\n"
        )

        config = Config.from_file(config_file)

        assert config.source is None
        assert config.target.host == "target.example.com"
        assert config.readiness.max_attempts == TEST_MAX_ATTEMPTS
        assert config.provider.vcenter == "vc-target"

    def test_from_json_file(self, tmp_path):
        """Test loading configuration from a JSON file."""
        config_file = tmp_path / "config.json"
        config_file.write_text(
            json.dumps({"target": {"host": "t.example.com", "username": "admin"}})
        )

        assert Config.from_file(config_file).target.host == "t.example.com"

    def test_from_file_unsupported_format(self, tmp_path):
        """Test that unknown file formats are rejected."""
        config_file = tmp_path / "config.toml"
        config_file.write_text("")

        with pytest.raises(ValueError, match="Unsupported configuration file format"):
            Config.from_file(config_file)

    def test_from_file_missing(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            Config.from_file(tmp_path / "absent.yaml")
