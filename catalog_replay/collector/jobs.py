"""
Collection Jobs Module
======================

Builds collectors from configuration and runs them, either inline or as
arq tasks. Uses Redis as the job queue backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import httpx
from arq import create_pool
from arq.connections import RedisSettings
from arq.constants import result_key_prefix

from catalog_replay.collector.batching import get_batching_strategy
from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.client import CatalogClient
from catalog_replay.collector.commit_collector import CommitCollector
from catalog_replay.collector.consumers import get_consumer
from catalog_replay.collector.cursor import (
    AggregateCursor,
    DurableCursor,
    HttpReadCursor,
    MemoryCursor,
    NowCursor,
    ReadCursor,
)
from catalog_replay.collector.poller import Poller, PollSummary
from catalog_replay.collector.registry import (
    CollectorConfig,
    CollectorRegistry,
    GlobalConfig,
    get_default_registry,
)
from catalog_replay.collector.storage import CursorStorage, LocalFileStorage, get_default_storage
from catalog_replay.core.errors import Cancelled, ConfigError
from catalog_replay.core.timestamps import EPOCH, format_timestamp

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of a collection job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CollectionResult:
    """Result of one collection cycle run as a job."""

    job_id: str
    collector_name: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    accepted: bool = False
    front_cursor: str | None = None
    pages_fetched: int = 0
    batches_dispatched: int = 0
    items_dispatched: int = 0
    checkpoints_saved: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "collector_name": self.collector_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "accepted": self.accepted,
            "front_cursor": self.front_cursor,
            "pages_fetched": self.pages_fetched,
            "batches_dispatched": self.batches_dispatched,
            "items_dispatched": self.items_dispatched,
            "checkpoints_saved": self.checkpoints_saved,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollectionResult:
        """Inverse of to_dict."""
        return cls(
            job_id=data["job_id"],
            collector_name=data["collector_name"],
            status=JobStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            accepted=data.get("accepted", False),
            front_cursor=data.get("front_cursor"),
            pages_fetched=data.get("pages_fetched", 0),
            batches_dispatched=data.get("batches_dispatched", 0),
            items_dispatched=data.get("items_dispatched", 0),
            checkpoints_saved=data.get("checkpoints_saved", 0),
            errors=list(data.get("errors", [])),
            duration_seconds=data.get("duration_seconds"),
        )


def build_storage(global_config: GlobalConfig) -> LocalFileStorage:
    """Cursor storage for the configured path (CURSOR_STORAGE_PATH overrides it)."""
    return get_default_storage(global_config.cursor_storage_path, compress=global_config.compress_cursors)


def build_client(
    global_config: GlobalConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CatalogClient:
    """Catalog client configured from the global settings."""
    return CatalogClient(
        user_agent=global_config.user_agent,
        timeout=global_config.request_timeout,
        max_retries=global_config.max_retries,
        rate_limit=global_config.default_rate_limit,
        transport=transport,
    )


def build_front_cursor(config: CollectorConfig, storage: CursorStorage) -> DurableCursor:
    """The durable cursor a collector advances."""
    return DurableCursor(
        storage,
        storage.resolve_uri(config.cursor_name),
        default=config.start or EPOCH,
    )


def build_back_cursor(
    config: CollectorConfig,
    storage: CursorStorage,
    client: CatalogClient,
    registry: CollectorRegistry | None = None,
) -> ReadCursor:
    """
    The upper bound of a collector's window.

    For kind ``cursor`` each entry is the name of another collector (its
    cursor file is looked up in the registry) or a cursor file name.
    """
    back = config.back_cursor
    if back.kind == "now":
        return NowCursor()
    if back.kind == "fixed":
        return MemoryCursor(back.value)
    if back.kind == "http":
        return HttpReadCursor(client, back.uri)

    cursors = []
    for name in back.cursors:
        other = registry.get_collector(name) if registry is not None else None
        cursor_name = other.cursor_name if other is not None else name
        cursors.append(DurableCursor(storage, storage.resolve_uri(cursor_name)))
    return AggregateCursor(cursors)


def build_collector(config: CollectorConfig, client: CatalogClient) -> CommitCollector:
    """
    Create the collector for a configuration.

    Raises:
        ConfigError: If the configured consumer does not exist
    """
    return CommitCollector(
        config.index_url,
        client,
        get_consumer(config.consumer, config.consumer_config),
        batching=get_batching_strategy(config.batch_size),
    )


def _get_enabled_config(registry: CollectorRegistry, collector_name: str) -> CollectorConfig:
    config = registry.get_collector(collector_name)
    if config is None:
        raise ConfigError(f"Collector '{collector_name}' not found")
    if not config.enabled:
        raise ConfigError(f"Collector '{collector_name}' is disabled")
    return config


async def run_collection_cycle(
    collector_name: str,
    registry: CollectorRegistry | None = None,
    storage: CursorStorage | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    cancellation_token: CancellationToken | None = None,
    job_id: str | None = None,
) -> CollectionResult:
    """
    Run one collection cycle for a configured collector.

    Failures are reported on the result rather than raised; the cursor
    stays at its last checkpoint and the next cycle repeats the work.

    Args:
        collector_name: Name of the collector in the registry
        registry: Registry to use (defaults to the global one)
        storage: Cursor storage (defaults to the configured path)
        transport: Optional httpx transport, for tests
        cancellation_token: Optional cancellation signal
        job_id: Job identifier to report

    Returns:
        CollectionResult
    """
    registry = registry or get_default_registry()
    result = CollectionResult(
        job_id=job_id or str(uuid4()),
        collector_name=collector_name,
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )

    collector: CommitCollector | None = None
    front: DurableCursor | None = None
    try:
        config = _get_enabled_config(registry, collector_name)
        storage = storage or build_storage(registry.global_config)

        async with build_client(registry.global_config, transport) as client:
            collector = build_collector(config, client)
            front = build_front_cursor(config, storage)
            back = build_back_cursor(config, storage, client, registry)

            logger.info(f"Collecting '{collector_name}' from {config.index_url}")
            result.accepted = await collector.run(front, back, cancellation_token)

        result.status = JobStatus.COMPLETED

    except Cancelled:
        logger.info(f"Collection '{collector_name}' cancelled")
        result.status = JobStatus.CANCELLED

    except Exception as e:
        logger.exception(f"Collection job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))

    finally:
        if collector is not None:
            stats = collector.stats
            result.pages_fetched = stats.pages_fetched
            result.batches_dispatched = stats.batches_dispatched
            result.items_dispatched = stats.items_dispatched
            result.checkpoints_saved = stats.checkpoints_saved
        if front is not None:
            result.front_cursor = format_timestamp(front.value)
        result.completed_at = datetime.now(UTC)
        result.duration_seconds = (result.completed_at - result.started_at).total_seconds()

    return result


async def poll_collector(
    collector_name: str,
    registry: CollectorRegistry | None = None,
    storage: CursorStorage | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    cancellation_token: CancellationToken | None = None,
    max_cycles: int | None = None,
    interval: float | None = None,
) -> PollSummary:
    """
    Poll a configured collector until cancelled.

    Raises:
        ConfigError: If the collector is unknown, disabled or misconfigured
    """
    registry = registry or get_default_registry()
    config = _get_enabled_config(registry, collector_name)
    storage = storage or build_storage(registry.global_config)

    async with build_client(registry.global_config, transport) as client:
        poller = Poller(
            build_collector(config, client),
            build_front_cursor(config, storage),
            build_back_cursor(config, storage, client, registry),
            interval=config.poll_interval_seconds if interval is None else interval,
            cancellation_token=cancellation_token,
        )
        logger.info(f"Polling '{collector_name}' every {poller.interval}s")
        return await poller.run(max_cycles=max_cycles)


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


async def collect_source(ctx: dict[str, Any], collector_name: str) -> dict[str, Any]:
    """
    arq task: run one collection cycle.

    arq runs at most one job per job id; enqueue_collection derives the id
    from the collector name so two cycles never share a front cursor.
    """
    result = await run_collection_cycle(collector_name, job_id=ctx.get("job_id"))
    return result.to_dict()


async def enqueue_collection(collector_name: str) -> str | None:
    """
    Enqueue a collection cycle for async processing.

    The job id is fixed per collector. arq refuses an id while its job key
    or its result key exists, so the result of a finished cycle is dropped
    first; a cycle that is still queued or running keeps blocking.

    Returns:
        Job ID, or None if a cycle for this collector is already queued
    """
    job_id = f"collect:{collector_name}"
    redis = await create_pool(get_redis_settings())
    try:
        await redis.delete(result_key_prefix + job_id)
        job = await redis.enqueue_job("collect_source", collector_name, _job_id=job_id)
    finally:
        await redis.close()
    return job.job_id if job is not None else None


async def get_job_status(job_id: str) -> dict[str, Any] | None:
    """
    Get the status of a collection job.

    Args:
        job_id: Job ID to look up

    Returns:
        Job info dict, or None if not found
    """
    redis = await create_pool(get_redis_settings())
    try:
        from arq.jobs import Job, JobStatus as ArqJobStatus

        job = Job(job_id, redis)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        info = await job.result_info()
    finally:
        await redis.close()

    return {
        "job_id": job_id,
        "status": status.value,
        "result": info.result if info is not None else None,
    }


class WorkerSettings:
    """arq worker settings."""

    functions = [collect_source]
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 3600  # 1 hour
    keep_result = 86400  # 24 hours
