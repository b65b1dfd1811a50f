"""
Collector Registry Module
=========================

Manages collector configurations loaded from YAML files. A collector
names the catalog to replay, the consumer that receives its batches,
where its cursor lives and how the upper bound of each cycle is chosen.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from catalog_replay.core.errors import ConfigError
from catalog_replay.core.timestamps import parse_timestamp

BACK_CURSOR_KINDS = ("now", "fixed", "cursor", "http")


@dataclass
class RateLimitConfig:
    """Rate limiting configuration for catalog requests."""

    requests_per_second: float = 5.0
    burst_limit: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            requests_per_second=float(data.get("requests_per_second", 5.0)),
            burst_limit=int(data.get("burst_limit", 10)),
        )


@dataclass
class BackCursorConfig:
    """
    How a collector's back cursor is built.

    Kinds:
    - now: wall-clock time at the start of each cycle
    - fixed: a constant timestamp (``value``)
    - cursor: the minimum of other collectors' stored cursors (``cursors``)
    - http: a cursor document published at ``uri``
    """

    kind: str = "now"
    value: datetime | None = None
    cursors: list[str] = field(default_factory=list)
    uri: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BackCursorConfig:
        """Create from dictionary."""
        if data is None:
            return cls()

        kind = data.get("kind", "now")
        if kind not in BACK_CURSOR_KINDS:
            raise ConfigError(f"Unknown back cursor kind '{kind}' (expected one of {', '.join(BACK_CURSOR_KINDS)})")

        value = None
        if data.get("value") is not None:
            try:
                value = parse_timestamp(data["value"])
            except ValueError as e:
                raise ConfigError(str(e)) from e

        config = cls(
            kind=kind,
            value=value,
            cursors=list(data.get("cursors", [])),
            uri=data.get("uri"),
        )
        if kind == "fixed" and config.value is None:
            raise ConfigError("Back cursor kind 'fixed' requires a value")
        if kind == "cursor" and not config.cursors:
            raise ConfigError("Back cursor kind 'cursor' requires at least one cursor name")
        if kind == "http" and not config.uri:
            raise ConfigError("Back cursor kind 'http' requires a uri")
        return config


@dataclass
class CollectorConfig:
    """Configuration for a single collector."""

    name: str
    index_url: str
    consumer: str
    enabled: bool = True
    description: str = ""
    cursor_name: str = ""
    start: datetime | None = None
    batch_size: int | None = None
    poll_interval_seconds: float = 5.0
    back_cursor: BackCursorConfig = field(default_factory=BackCursorConfig)
    consumer_config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.cursor_name:
            self.cursor_name = f"{self.name}-cursor.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollectorConfig:
        """Create from dictionary."""
        for key in ("name", "index_url", "consumer"):
            if not data.get(key):
                raise ConfigError(f"Collector is missing required field '{key}'")

        start = None
        if data.get("start") is not None:
            try:
                start = parse_timestamp(data["start"])
            except ValueError as e:
                raise ConfigError(f"Collector '{data['name']}': {e}") from e

        batch_size = data.get("batch_size")
        return cls(
            name=data["name"],
            index_url=data["index_url"],
            consumer=data["consumer"],
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            cursor_name=data.get("cursor_name", ""),
            start=start,
            batch_size=int(batch_size) if batch_size else None,
            poll_interval_seconds=float(data.get("poll_interval_seconds", 5.0)),
            back_cursor=BackCursorConfig.from_dict(data.get("back_cursor")),
            consumer_config=data.get("consumer_config", {}) or {},
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "CatalogReplay/0.1"
    cursor_storage_path: str = "~/.catalog_replay/cursors"
    compress_cursors: bool = False
    request_timeout: int = 30
    max_retries: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(
                data.get("default_rate_limit")
            ),
            user_agent=data.get("user_agent", "CatalogReplay/0.1"),
            cursor_storage_path=data.get(
                "cursor_storage_path", "~/.catalog_replay/cursors"
            ),
            compress_cursors=bool(data.get("compress_cursors", False)),
            request_timeout=int(data.get("request_timeout", 30)),
            max_retries=int(data.get("max_retries", 3)),
        )


class CollectorRegistry:
    """
    Registry for managing collector configurations.

    Loads collector definitions from a YAML file and provides methods
    to query and manage them.
    """

    def __init__(self) -> None:
        self._collectors: dict[str, CollectorConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def config_path(self) -> Path | None:
        """Path of the loaded configuration file, if any."""
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the collectors.yaml file

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigError: If the file content is invalid
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {config_path}")

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))

        self._collectors.clear()
        for collector_data in data.get("collectors", []) or []:
            collector = CollectorConfig.from_dict(collector_data)
            if collector.name in self._collectors:
                raise ConfigError(f"Duplicate collector name '{collector.name}'")
            self._collectors[collector.name] = collector

    def add_collector(self, collector: CollectorConfig) -> None:
        """Register a collector configuration."""
        self._collectors[collector.name] = collector

    def get_collector(self, name: str) -> CollectorConfig | None:
        """
        Get a collector configuration by name.

        Args:
            name: Collector name

        Returns:
            CollectorConfig if found, None otherwise
        """
        return self._collectors.get(name)

    def list_collectors(self) -> list[CollectorConfig]:
        """Get all registered collectors."""
        return list(self._collectors.values())

    def list_enabled_collectors(self) -> list[CollectorConfig]:
        """Get all enabled collectors."""
        return [c for c in self._collectors.values() if c.enabled]

    def enable_collector(self, name: str) -> bool:
        """
        Enable a collector.

        Returns:
            True if collector was found and enabled, False otherwise
        """
        collector = self._collectors.get(name)
        if collector is None:
            return False
        collector.enabled = True
        return True

    def disable_collector(self, name: str) -> bool:
        """
        Disable a collector.

        Returns:
            True if collector was found and disabled, False otherwise
        """
        collector = self._collectors.get(name)
        if collector is None:
            return False
        collector.enabled = False
        return True


# Global registry instance
_default_registry: CollectorRegistry | None = None


def get_default_registry() -> CollectorRegistry:
    """
    Get the default collector registry instance.

    Loads configuration from the path specified in CATALOG_CONFIG_PATH
    environment variable, or falls back to config/collectors.yaml.

    Returns:
        The global CollectorRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = CollectorRegistry()

        config_path = os.environ.get("CATALOG_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            # config/collectors.yaml relative to the project root
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "collectors.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
