"""Tests for the collector registry module."""

import tempfile
from pathlib import Path

import pytest

from catalog_replay.collector.registry import (
    BackCursorConfig,
    CollectorConfig,
    CollectorRegistry,
    GlobalConfig,
    RateLimitConfig,
    get_default_registry,
    reset_default_registry,
)
from catalog_replay.core.errors import ConfigError

from conftest import dt


def write_config(content: str) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(content)
        return f.name


class TestRateLimitConfig:
    """Tests for RateLimitConfig."""

    def test_default_values(self) -> None:
        """Test default rate limit values."""
        config = RateLimitConfig()
        assert config.requests_per_second == 5.0
        assert config.burst_limit == 10

    def test_from_dict(self) -> None:
        """Test creating from dictionary."""
        config = RateLimitConfig.from_dict({"requests_per_second": 2.5, "burst_limit": 3})
        assert config.requests_per_second == 2.5
        assert config.burst_limit == 3


class TestBackCursorConfig:
    """Tests for BackCursorConfig."""

    def test_default_is_now(self) -> None:
        """Test the default back cursor kind."""
        assert BackCursorConfig.from_dict(None).kind == "now"

    def test_fixed(self) -> None:
        """Test a fixed back cursor parses its value."""
        config = BackCursorConfig.from_dict({"kind": "fixed", "value": "2024-01-01T00:00:05Z"})
        assert config.value == dt(5)

    @pytest.mark.parametrize(
        "data",
        [
            {"kind": "yesterday"},
            {"kind": "fixed"},
            {"kind": "fixed", "value": "soon"},
            {"kind": "cursor"},
            {"kind": "http"},
        ],
    )
    def test_invalid(self, data: dict) -> None:
        """Test incomplete or unknown back cursors raise ConfigError."""
        with pytest.raises(ConfigError):
            BackCursorConfig.from_dict(data)


class TestCollectorConfig:
    """Tests for CollectorConfig."""

    def test_from_dict_minimal(self) -> None:
        """Test creating with minimal data."""
        config = CollectorConfig.from_dict(
            {"name": "registration", "index_url": "https://catalog.test/index.json", "consumer": "log"}
        )
        assert config.enabled is True
        assert config.cursor_name == "registration-cursor.json"
        assert config.start is None
        assert config.batch_size is None
        assert config.back_cursor.kind == "now"
        assert config.consumer_config == {}

    def test_from_dict_full(self) -> None:
        """Test creating with full data."""
        config = CollectorConfig.from_dict(
            {
                "name": "snapshots",
                "index_url": "https://catalog.test/index.json",
                "consumer": "snapshot",
                "enabled": False,
                "description": "Snapshot writer",
                "cursor_name": "snap.json",
                "start": "2024-01-01T00:00:01Z",
                "batch_size": 50,
                "poll_interval_seconds": 2,
                "back_cursor": {"kind": "cursor", "cursors": ["registration"]},
                "consumer_config": {"compress": True},
            }
        )
        assert config.enabled is False
        assert config.cursor_name == "snap.json"
        assert config.start == dt(1)
        assert config.batch_size == 50
        assert config.poll_interval_seconds == 2.0
        assert config.back_cursor.cursors == ["registration"]
        assert config.consumer_config == {"compress": True}

    def test_missing_required_field(self) -> None:
        """Test a collector without a consumer is rejected."""
        with pytest.raises(ConfigError):
            CollectorConfig.from_dict({"name": "x", "index_url": "https://catalog.test/index.json"})

    def test_invalid_start(self) -> None:
        """Test an unparseable start timestamp is rejected."""
        with pytest.raises(ConfigError):
            CollectorConfig.from_dict(
                {"name": "x", "index_url": "https://catalog.test/index.json", "consumer": "log", "start": "never"}
            )


class TestCollectorRegistry:
    """Tests for CollectorRegistry."""

    @pytest.fixture
    def sample_config(self) -> str:
        """Create a sample configuration YAML."""
        return """
global:
  default_rate_limit:
    requests_per_second: 2.0
    burst_limit: 4
  user_agent: "TestAgent/1.0"
  cursor_storage_path: "/tmp/cursors"
  max_retries: 5

collectors:
  - name: registration
    index_url: https://catalog.test/index.json
    consumer: log
    enabled: true
    description: "Test collector"

  - name: audit
    index_url: https://catalog.test/index.json
    consumer: audit
    enabled: false
"""

    def test_load_config(self, sample_config: str) -> None:
        """Test loading configuration from YAML."""
        config_path = write_config(sample_config)

        try:
            registry = CollectorRegistry()
            registry.load_config(config_path)

            assert registry.global_config.user_agent == "TestAgent/1.0"
            assert registry.global_config.default_rate_limit.requests_per_second == 2.0
            assert registry.global_config.max_retries == 5
            assert registry.config_path == Path(config_path).resolve()

            assert len(registry.list_collectors()) == 2
            collector = registry.get_collector("registration")
            assert collector is not None
            assert collector.description == "Test collector"
            assert registry.get_collector("missing") is None

        finally:
            Path(config_path).unlink()

    def test_list_enabled_collectors(self, sample_config: str) -> None:
        """Test listing only enabled collectors."""
        config_path = write_config(sample_config)

        try:
            registry = CollectorRegistry()
            registry.load_config(config_path)

            enabled = registry.list_enabled_collectors()
            assert [c.name for c in enabled] == ["registration"]

        finally:
            Path(config_path).unlink()

    def test_enable_disable_collector(self, sample_config: str) -> None:
        """Test enabling and disabling collectors."""
        config_path = write_config(sample_config)

        try:
            registry = CollectorRegistry()
            registry.load_config(config_path)

            assert registry.disable_collector("registration") is True
            assert registry.get_collector("registration").enabled is False

            assert registry.enable_collector("audit") is True
            assert registry.get_collector("audit").enabled is True

            assert registry.enable_collector("non-existent") is False
            assert registry.disable_collector("non-existent") is False

        finally:
            Path(config_path).unlink()

    def test_duplicate_names(self) -> None:
        """Test two collectors with one name are rejected."""
        config_path = write_config(
            """
collectors:
  - {name: a, index_url: "https://catalog.test/index.json", consumer: log}
  - {name: a, index_url: "https://catalog.test/index.json", consumer: audit}
"""
        )

        try:
            with pytest.raises(ConfigError):
                CollectorRegistry().load_config(config_path)
        finally:
            Path(config_path).unlink()

    def test_invalid_yaml(self) -> None:
        """Test broken YAML raises ConfigError."""
        config_path = write_config("collectors: [unclosed")

        try:
            with pytest.raises(ConfigError):
                CollectorRegistry().load_config(config_path)
        finally:
            Path(config_path).unlink()

    def test_config_not_found(self) -> None:
        """Test error when config file not found."""
        with pytest.raises(FileNotFoundError):
            CollectorRegistry().load_config("/non/existent/path.yaml")

    def test_defaults_without_global_section(self) -> None:
        """Test the global defaults apply when the section is absent."""
        config_path = write_config("collectors: []\n")

        try:
            registry = CollectorRegistry()
            registry.load_config(config_path)
            assert registry.global_config == GlobalConfig()
            assert registry.list_collectors() == []
        finally:
            Path(config_path).unlink()


class TestGlobalRegistry:
    """Tests for the global registry functions."""

    def test_env_path(self, sample_yaml_path: str, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test CATALOG_CONFIG_PATH selects the configuration file."""
        monkeypatch.setenv("CATALOG_CONFIG_PATH", sample_yaml_path)
        reset_default_registry()

        try:
            registry = get_default_registry()
            assert registry.get_collector("env-collector") is not None
            assert get_default_registry() is registry
        finally:
            reset_default_registry()

    def test_reset_default_registry(self) -> None:
        """Test resetting the global registry."""
        registry1 = get_default_registry()
        reset_default_registry()
        registry2 = get_default_registry()

        assert registry2 is not registry1
        reset_default_registry()

    @pytest.fixture
    def sample_yaml_path(self) -> str:
        """A configuration file with a single collector."""
        path = write_config(
            "collectors:\n  - {name: env-collector, index_url: 'https://catalog.test/index.json', consumer: log}\n"
        )
        yield path
        Path(path).unlink()
