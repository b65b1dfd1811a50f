"""Tests for batching strategies."""

import pytest

from catalog_replay.collector.batching import (
    ChunkedTimestampBatchingStrategy,
    TimestampBatchingStrategy,
    get_batching_strategy,
)
from catalog_replay.core.models import CatalogItem

from conftest import dt, ts


def item(second: int, name: str) -> CatalogItem:
    return CatalogItem.from_dict({"@id": f"https://catalog.test/{name}.json", "commitTimeStamp": ts(second)})


class TestTimestampBatchingStrategy:
    """Tests for TimestampBatchingStrategy."""

    def test_one_batch_per_timestamp(self) -> None:
        """Test grouping by exact timestamp in ascending order."""
        items = [item(3, "d"), item(1, "a"), item(2, "c"), item(2, "b")]

        batches = TimestampBatchingStrategy().create_batches(items)

        assert [b.commit_timestamp for b in batches] == [dt(1), dt(2), dt(3)]
        assert [len(b) for b in batches] == [1, 2, 1]
        assert [i.uri for i in batches[1].items] == ["https://catalog.test/b.json", "https://catalog.test/c.json"]

    def test_empty(self) -> None:
        """Test no items produce no batches."""
        assert TimestampBatchingStrategy().create_batches([]) == []


class TestChunkedTimestampBatchingStrategy:
    """Tests for ChunkedTimestampBatchingStrategy."""

    def test_large_group_split(self) -> None:
        """Test a large group becomes consecutive batches of one timestamp."""
        items = [item(1, name) for name in "edcba"] + [item(2, "f")]

        batches = ChunkedTimestampBatchingStrategy(2).create_batches(items)

        assert [b.commit_timestamp for b in batches] == [dt(1), dt(1), dt(1), dt(2)]
        assert [len(b) for b in batches] == [2, 2, 1, 1]
        assert batches[0].items[0].uri == "https://catalog.test/a.json"

    def test_never_mixes_timestamps(self) -> None:
        """Test chunks never contain more than one timestamp."""
        items = [item(1, "a"), item(2, "b"), item(2, "c"), item(3, "d")]

        for batch in ChunkedTimestampBatchingStrategy(3).create_batches(items):
            assert {i.commit_timestamp for i in batch.items} == {batch.commit_timestamp}

    def test_invalid_size(self) -> None:
        """Test a non-positive batch size is rejected."""
        with pytest.raises(ValueError):
            ChunkedTimestampBatchingStrategy(0)


def test_get_batching_strategy() -> None:
    """Test strategy selection from configuration."""
    assert isinstance(get_batching_strategy(None), TimestampBatchingStrategy)
    strategy = get_batching_strategy(10)
    assert isinstance(strategy, ChunkedTimestampBatchingStrategy)
    assert strategy.max_batch_size == 10
