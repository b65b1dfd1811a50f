"""Consumer that logs batches, with an optional batch budget."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from catalog_replay.collector.consumers.base import BatchConsumer
from catalog_replay.core.timestamps import format_timestamp

logger = logging.getLogger(__name__)


class LoggingConsumer(BatchConsumer):
    """
    Logs every batch it receives.

    Config:
        max_batches: Pause the collector after this many batches per
            consumer instance (unlimited when unset)
        log_items: Also log each item URI
    """

    CONSUMER_NAME = "log"
    CONSUMER_VERSION = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        max_batches = self.config.get("max_batches")
        self.max_batches = int(max_batches) if max_batches is not None else None
        self.log_items = bool(self.config.get("log_items", False))
        self.batches_seen = 0
        self.items_seen = 0

    async def process_batch(
        self,
        items: Sequence[dict[str, Any]],
        context: Any | None,
        commit_timestamp: datetime,
        is_last_batch: bool,
        *,
        client=None,
        cancellation_token=None,
    ) -> bool:
        self.batches_seen += 1
        self.items_seen += len(items)

        logger.info(
            f"Batch {format_timestamp(commit_timestamp)}: {len(items)} item(s)"
            + (" [last in page]" if is_last_batch else "")
        )
        if self.log_items:
            for item in items:
                logger.info(f"  {item.get('@type', '?')} {item.get('@id')}")

        if self.max_batches is not None and self.batches_seen >= self.max_batches:
            logger.info(f"Batch budget of {self.max_batches} reached; pausing collector")
            return False
        return True
