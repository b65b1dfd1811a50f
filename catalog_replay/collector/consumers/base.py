"""
Consumer Base Module
====================

Defines the abstract base class for downstream batch consumers.
A consumer receives every batch the commit collector produces, in
ascending commit-timestamp order, and tells the collector whether to
keep going.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from catalog_replay.collector.cancellation import CancellationToken
    from catalog_replay.collector.client import CatalogClient


class BatchConsumer(ABC):
    """
    Abstract base class for batch consumers.

    Subclasses must implement process_batch. Consumers must be idempotent:
    after a failure the collector replays every batch from the last saved
    cursor, so a batch may be delivered more than once. Checkpointing is
    owned by the collector; consumers never see the cursors.
    """

    # Consumer identification (override in subclasses)
    CONSUMER_NAME: str = "base"
    CONSUMER_VERSION: str = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        """
        Initialize the consumer.

        Args:
            config: Optional consumer_config from collectors.yaml
        """
        self.config = config or {}

    @abstractmethod
    async def process_batch(
        self,
        items: Sequence[dict[str, Any]],
        context: Any | None,
        commit_timestamp: datetime,
        is_last_batch: bool,
        *,
        client: CatalogClient | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> bool:
        """
        Process one batch of catalog entries.

        Args:
            items: Raw JSON payloads of the batch, in batch order
            context: The page's ``@context`` value, if any
            commit_timestamp: Commit timestamp shared by the batch
            is_last_batch: True for the last timestamp dispatched with the
                current page; the collector checkpoints right after it
            client: Catalog client, for consumers that fetch more documents
            cancellation_token: Cancellation signal of the running cycle

        When another page follows, a page's latest timestamp group is held
        back and dispatched with the next page, in case that page continues
        the same commit. So ``is_last_batch`` can be set on a timestamp
        earlier than the page's latest one, and a held-back group arrives
        with the next page's ``context``.

        Returns:
            True to receive the next batch, False to pause the collector.
            Raising fails the cycle without advancing the cursor.
        """
        pass

    @classmethod
    def describe(cls) -> dict[str, str]:
        """Name, version and class of this consumer type."""
        return {"name": cls.CONSUMER_NAME, "version": cls.CONSUMER_VERSION, "class": cls.__name__}
