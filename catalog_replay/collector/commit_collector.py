"""
Commit Collector Module
=======================

Replays the catalog to a batch consumer in commit-timestamp order.

One collection cycle:
1. Fetch the catalog index and select pages committed after the front cursor
2. Fetch each page and keep items inside the (front, back] window
3. Group the items into batches with the batching strategy; a page's last
   timestamp group is held back and merged with the next page, so a commit
   spanning two pages is still dispatched and checkpointed as one unit
4. Dispatch the batches to the consumer in ascending timestamp order
5. Checkpoint the front cursor when the timestamp changes between batches
   and after the last batch of every page

The cursor is never saved while batches sharing a timestamp are still
pending, so a crash replays at most the interrupted timestamp group (plus
anything after it) on the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from catalog_replay.collector.batching import BatchingStrategy, TimestampBatchingStrategy
from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.client import CatalogClient
from catalog_replay.collector.consumers.base import BatchConsumer
from catalog_replay.collector.cursor import ReadCursor, ReadWriteCursor
from catalog_replay.core.errors import Cancelled, ConsumerFailure
from catalog_replay.core.models import CatalogItem, CatalogItemBatch, read_items
from catalog_replay.core.timestamps import format_timestamp

logger = logging.getLogger(__name__)


@dataclass
class CollectionStats:
    """Counters for one collection cycle."""

    started_at: datetime | None = None
    completed_at: datetime | None = None
    pages_fetched: int = 0
    batches_dispatched: int = 0
    items_dispatched: int = 0
    checkpoints_saved: int = 0
    accepted: bool = False
    final_cursor: datetime | None = None
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "pages_fetched": self.pages_fetched,
            "batches_dispatched": self.batches_dispatched,
            "items_dispatched": self.items_dispatched,
            "checkpoints_saved": self.checkpoints_saved,
            "accepted": self.accepted,
            "final_cursor": format_timestamp(self.final_cursor) if self.final_cursor else None,
            "duration_seconds": self.duration_seconds,
        }


class CommitCollector:
    """
    Collects catalog commits and hands them to a consumer in batches.

    A collector instance must not run two cycles concurrently against the
    same front cursor; the poll driver awaits each cycle before starting
    the next one.
    """

    def __init__(
        self,
        index_uri: str,
        client: CatalogClient,
        consumer: BatchConsumer,
        batching: BatchingStrategy | None = None,
    ) -> None:
        self.index_uri = index_uri
        self.client = client
        self.consumer = consumer
        self.batching = batching or TimestampBatchingStrategy()
        self.stats = CollectionStats()

    async def run(
        self,
        front: ReadWriteCursor,
        back: ReadCursor,
        cancellation_token: CancellationToken | None = None,
    ) -> bool:
        """Load both cursors and run one collection cycle."""
        await front.load(cancellation_token)
        await back.load(cancellation_token)
        logger.debug(f"Loaded cursors front={front} back={back}")
        return await self.fetch(front, back, cancellation_token)

    async def fetch(
        self,
        front: ReadWriteCursor,
        back: ReadCursor,
        cancellation_token: CancellationToken | None = None,
    ) -> bool:
        """
        Run one collection cycle over the (front, back] window.

        Args:
            front: Cursor of the last fully processed commit; advanced and saved here
            back: Upper bound of the window
            cancellation_token: Optional cancellation signal

        Returns:
            Whether the last dispatched batch was accepted. False when the
            consumer asked to pause, or when there was nothing to dispatch.

        Raises:
            TransientFetchError: If a catalog document cannot be fetched
            MalformedDocument: If a catalog document is invalid
            ConsumerFailure: If the consumer raises while processing a batch
            StorageUnavailable: If the front cursor cannot be saved
            Cancelled: If cancellation is observed
        """
        self.stats = CollectionStats(started_at=datetime.now(UTC))
        started = time.monotonic()
        accept_next_batch = False

        try:
            pages = await self.fetch_catalog_pages(front, cancellation_token)
            # Trailing timestamp group of the previous page, dispatched with
            # the next page in case that page continues the same commit.
            pending: list[CatalogItem] = []

            for position, page_ref in enumerate(pages):
                page = await self.client.get_json_document(page_ref.uri, cancellation_token)
                self.stats.pages_fetched += 1
                context = page.get("@context")

                own_items = [
                    item
                    for item in read_items(page, page_ref.uri)
                    if front.value < item.commit_timestamp <= back.value
                ]
                items = pending + own_items
                pending = []
                if own_items and position < len(pages) - 1:
                    trailing = max(item.commit_timestamp for item in items)
                    pending = [item for item in items if item.commit_timestamp == trailing]
                    items = [item for item in items if item.commit_timestamp != trailing]

                if not items:
                    if pending:
                        continue
                    logger.debug(f"No items inside the window in page {page_ref.uri}")
                    if not accept_next_batch:
                        break
                    continue

                accept_next_batch = await self._process_batches(items, context, front, cancellation_token)
                if not accept_next_batch:
                    break
        finally:
            self.stats.accepted = accept_next_batch
            self.stats.final_cursor = front.value
            self.stats.completed_at = datetime.now(UTC)
            self.stats.duration_seconds = time.monotonic() - started

        return accept_next_batch

    async def fetch_catalog_pages(
        self,
        front: ReadCursor,
        cancellation_token: CancellationToken | None = None,
    ) -> list[CatalogItem]:
        """Fetch the index and return page references newer than ``front``, oldest first."""
        started = time.monotonic()
        root = await self.client.get_json_document(self.index_uri, cancellation_token)
        logger.debug(f"Read catalog index {self.index_uri} in {time.monotonic() - started:.3f}s")

        pages = [page for page in read_items(root, self.index_uri) if page.commit_timestamp > front.value]
        pages.sort(key=lambda page: page.sort_key)
        logger.info(f"{len(pages)} catalog page(s) committed after {front}")
        return pages

    async def _process_batches(
        self,
        items: list[CatalogItem],
        context: Any,
        front: ReadWriteCursor,
        cancellation_token: CancellationToken | None,
    ) -> bool:
        """Batch one page's items, dispatch them and checkpoint the front cursor."""
        batches = sorted(self.batching.create_batches(items), key=lambda batch: batch.commit_timestamp)
        last_batch = batches[-1]
        previous_commit_timestamp: datetime | None = None
        accept_next_batch = False

        for batch in batches:
            # Only checkpoint once every batch at the previous timestamp is done.
            if previous_commit_timestamp is not None and previous_commit_timestamp != batch.commit_timestamp:
                await self._checkpoint(front, previous_commit_timestamp, "timestamp changed", cancellation_token)

            accept_next_batch = await self._dispatch(
                batch,
                context,
                batch.commit_timestamp == last_batch.commit_timestamp,
                cancellation_token,
            )

            if batch is last_batch:
                await self._checkpoint(front, batch.commit_timestamp, "last batch in page", cancellation_token)

            previous_commit_timestamp = batch.commit_timestamp

            if not accept_next_batch:
                logger.info(f"Consumer declined further batches after {format_timestamp(batch.commit_timestamp)}")
                break

        return accept_next_batch

    async def _dispatch(
        self,
        batch: CatalogItemBatch,
        context: Any,
        is_last_batch: bool,
        cancellation_token: CancellationToken | None,
    ) -> bool:
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()

        started = time.monotonic()
        try:
            accepted = await self.consumer.process_batch(
                batch.values,
                context,
                batch.commit_timestamp,
                is_last_batch,
                client=self.client,
                cancellation_token=cancellation_token,
            )
        except (Cancelled, asyncio.CancelledError):
            raise
        except Exception as e:
            raise ConsumerFailure(
                f"Consumer '{self.consumer.CONSUMER_NAME}' failed on batch "
                f"{format_timestamp(batch.commit_timestamp)}: {e}",
                batch.commit_timestamp,
            ) from e

        self.stats.batches_dispatched += 1
        self.stats.items_dispatched += len(batch)
        logger.debug(
            f"Processed batch {format_timestamp(batch.commit_timestamp)} "
            f"({len(batch)} item(s)) in {time.monotonic() - started:.3f}s"
        )
        return bool(accepted)

    async def _checkpoint(
        self,
        front: ReadWriteCursor,
        value: datetime,
        reason: str,
        cancellation_token: CancellationToken | None,
    ) -> None:
        previous = front.value
        front.value = value
        try:
            await front.save(cancellation_token)
        except BaseException:
            front.value = previous
            raise
        self.stats.checkpoints_saved += 1
        logger.info(f"Front cursor saved at {front} ({reason})")


class CatalogIndexReader:
    """
    Reads every leaf entry of a catalog, regardless of any cursor.

    Intended for bulk tooling that plans work over the whole catalog (for
    example splitting a reindex into independent key ranges).
    """

    def __init__(self, index_uri: str, client: CatalogClient) -> None:
        self.index_uri = index_uri
        self.client = client

    async def get_entries(self, cancellation_token: CancellationToken | None = None) -> list[CatalogItem]:
        """Return all leaf entries ordered by commit timestamp, then URI."""
        root = await self.client.get_json_document(self.index_uri, cancellation_token)
        entries: list[CatalogItem] = []
        for page_ref in sorted(read_items(root, self.index_uri), key=lambda page: page.sort_key):
            page = await self.client.get_json_document(page_ref.uri, cancellation_token)
            entries.extend(read_items(page, page_ref.uri))
        entries.sort(key=lambda entry: entry.sort_key)
        return entries
