"""Batch consumers, looked up by the ``consumer`` name in collectors.yaml."""

from __future__ import annotations

from typing import Any

from catalog_replay.collector.consumers.audit import AuditConsumer, AuditIssue
from catalog_replay.collector.consumers.base import BatchConsumer
from catalog_replay.collector.consumers.logging_consumer import LoggingConsumer
from catalog_replay.collector.consumers.snapshot import SnapshotConsumer
from catalog_replay.core.errors import ConfigError

CONSUMER_REGISTRY: dict[str, type[BatchConsumer]] = {
    consumer_class.CONSUMER_NAME: consumer_class
    for consumer_class in (LoggingConsumer, SnapshotConsumer, AuditConsumer)
}


def get_consumer(name: str, config: dict[str, Any] | None = None) -> BatchConsumer:
    """
    Instantiate the consumer registered under ``name``.

    Raises:
        ConfigError: If no consumer has that name
    """
    consumer_class = CONSUMER_REGISTRY.get(name)
    if consumer_class is None:
        raise ConfigError(f"Consumer '{name}' not found (available: {', '.join(list_consumers())})")
    return consumer_class(config)


def register_consumer(name: str, consumer_class: type[BatchConsumer]) -> None:
    """Make a BatchConsumer subclass available under ``name``."""
    if not issubclass(consumer_class, BatchConsumer):
        raise TypeError(f"{consumer_class} must inherit from BatchConsumer")
    CONSUMER_REGISTRY[name] = consumer_class


def list_consumers() -> list[str]:
    return sorted(CONSUMER_REGISTRY)


def get_consumer_info(name: str) -> dict[str, str] | None:
    consumer_class = CONSUMER_REGISTRY.get(name)
    return consumer_class.describe() if consumer_class else None


__all__ = [
    "CONSUMER_REGISTRY",
    "get_consumer",
    "register_consumer",
    "list_consumers",
    "get_consumer_info",
    "BatchConsumer",
    "LoggingConsumer",
    "SnapshotConsumer",
    "AuditConsumer",
    "AuditIssue",
]
