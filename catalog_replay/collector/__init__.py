"""
Catalog Replay Collector
========================

This package replays an append-only catalog of commits to downstream
consumers, checkpointing progress in a durable cursor.

Cycle Stages:
1. Index - Read the catalog index and select pages after the front cursor
2. Fetch - Read each page through the rate limited catalog client
3. Window - Keep items committed inside (front, back]
4. Batch - Group items by commit timestamp
5. Dispatch - Hand batches to the consumer in ascending order
6. Checkpoint - Save the front cursor once a timestamp group is complete
"""

from catalog_replay.collector.batching import (
    BatchingStrategy,
    ChunkedTimestampBatchingStrategy,
    TimestampBatchingStrategy,
    get_batching_strategy,
)
from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.client import CatalogClient, TokenBucket
from catalog_replay.collector.commit_collector import (
    CatalogIndexReader,
    CollectionStats,
    CommitCollector,
)
from catalog_replay.collector.cursor import (
    AggregateCursor,
    DurableCursor,
    HttpReadCursor,
    MemoryCursor,
    NowCursor,
    ReadCursor,
    ReadWriteCursor,
)
from catalog_replay.collector.jobs import (
    CollectionResult,
    JobStatus,
    enqueue_collection,
    get_job_status,
    poll_collector,
    run_collection_cycle,
)
from catalog_replay.collector.poller import Poller, PollSummary
from catalog_replay.collector.registry import (
    CollectorConfig,
    CollectorRegistry,
    RateLimitConfig,
    get_default_registry,
)
from catalog_replay.collector.storage import (
    CursorStorage,
    LocalFileStorage,
    MemoryStorage,
    get_default_storage,
)

__all__ = [
    # Batching
    "BatchingStrategy",
    "ChunkedTimestampBatchingStrategy",
    "TimestampBatchingStrategy",
    "get_batching_strategy",
    # Client
    "CancellationToken",
    "CatalogClient",
    "TokenBucket",
    # Collector
    "CatalogIndexReader",
    "CollectionStats",
    "CommitCollector",
    "Poller",
    "PollSummary",
    # Cursors
    "AggregateCursor",
    "DurableCursor",
    "HttpReadCursor",
    "MemoryCursor",
    "NowCursor",
    "ReadCursor",
    "ReadWriteCursor",
    # Storage
    "CursorStorage",
    "LocalFileStorage",
    "MemoryStorage",
    "get_default_storage",
    # Registry
    "CollectorConfig",
    "CollectorRegistry",
    "RateLimitConfig",
    "get_default_registry",
    # Jobs
    "CollectionResult",
    "JobStatus",
    "enqueue_collection",
    "get_job_status",
    "poll_collector",
    "run_collection_cycle",
]
