"""
Batching Strategies
===================

A batching strategy turns the items selected from one catalog page into
the ordered batches handed to a consumer. Batches must come out in
ascending commit-timestamp order and a batch never mixes timestamps.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from catalog_replay.core.models import CatalogItem, CatalogItemBatch


class BatchingStrategy(ABC):
    """Abstract base class for batching strategies."""

    @abstractmethod
    def create_batches(self, items: Iterable[CatalogItem]) -> list[CatalogItemBatch]:
        """
        Group items into batches.

        Args:
            items: Catalog items, in any order

        Returns:
            Batches ordered by ascending commit timestamp
        """
        pass


def group_by_timestamp(items: Iterable[CatalogItem]) -> dict[datetime, list[CatalogItem]]:
    """Group items by exact commit timestamp, in ascending timestamp order."""
    groups: dict[datetime, list[CatalogItem]] = defaultdict(list)
    for item in items:
        groups[item.commit_timestamp].append(item)
    return {ts: groups[ts] for ts in sorted(groups)}


class TimestampBatchingStrategy(BatchingStrategy):
    """One batch per distinct commit timestamp."""

    def create_batches(self, items: Iterable[CatalogItem]) -> list[CatalogItemBatch]:
        return [
            CatalogItemBatch(commit_timestamp=ts, items=tuple(group))
            for ts, group in group_by_timestamp(items).items()
        ]


class ChunkedTimestampBatchingStrategy(BatchingStrategy):
    """
    Timestamp grouping with an upper bound on batch size.

    A timestamp group larger than ``max_batch_size`` is split into
    consecutive batches sharing that timestamp. The collector never
    checkpoints between them.
    """

    def __init__(self, max_batch_size: int) -> None:
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
        self.max_batch_size = max_batch_size

    def create_batches(self, items: Iterable[CatalogItem]) -> list[CatalogItemBatch]:
        batches: list[CatalogItemBatch] = []
        for ts, group in group_by_timestamp(items).items():
            ordered = sorted(group, key=lambda item: item.sort_key)
            for start in range(0, len(ordered), self.max_batch_size):
                chunk = ordered[start : start + self.max_batch_size]
                batches.append(CatalogItemBatch(commit_timestamp=ts, items=tuple(chunk)))
        return batches


def get_batching_strategy(batch_size: int | None = None) -> BatchingStrategy:
    """Default strategy, or the chunked variant when a batch size is given."""
    if batch_size:
        return ChunkedTimestampBatchingStrategy(batch_size)
    return TimestampBatchingStrategy()
