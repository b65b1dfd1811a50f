"""Tests for the poll driver."""

import asyncio

import pytest

from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.commit_collector import CommitCollector
from catalog_replay.collector.cursor import DurableCursor, MemoryCursor
from catalog_replay.collector.poller import Poller
from catalog_replay.collector.storage import MemoryStorage

from conftest import FakeCatalog, RecordingConsumer, dt, ts


class TestPoller:
    """Tests for Poller."""

    @pytest.mark.asyncio
    async def test_runs_until_max_cycles(self, catalog: FakeCatalog) -> None:
        """Test cycles repeat and later cycles dispatch nothing new."""
        catalog.add_page([(ts(1), "A"), (ts(2), "B")])
        consumer = RecordingConsumer()
        front = MemoryCursor()
        poller = Poller(
            CommitCollector(catalog.index_url, catalog.client(), consumer),
            front,
            MemoryCursor(dt(2)),
            interval=0,
        )

        summary = await poller.run(max_cycles=3)

        assert summary.cycles == 3
        assert summary.failed_cycles == 0
        assert summary.batches_dispatched == 2
        assert summary.cancelled is False
        assert consumer.timestamps == [dt(1), dt(2)]
        assert front.value == dt(2)

    @pytest.mark.asyncio
    async def test_picks_up_new_commits(self, catalog: FakeCatalog) -> None:
        """Test commits appended between cycles are collected by the next one."""
        catalog.add_page([(ts(1), "A")])
        consumer = RecordingConsumer()
        front = MemoryCursor()
        poller = Poller(
            CommitCollector(catalog.index_url, catalog.client(), consumer),
            front,
            MemoryCursor(dt(9)),
            interval=0,
        )

        await poller.run(max_cycles=1)
        catalog.add_page([(ts(2), "B")])
        await poller.run(max_cycles=1)

        assert consumer.timestamps == [dt(1), dt(2)]

    @pytest.mark.asyncio
    async def test_failed_cycle_is_retried(self, catalog: FakeCatalog) -> None:
        """Test a failing cycle is logged and the same window repeated."""
        catalog.add_page([(ts(1), "A"), (ts(2), "B"), (ts(2), "C")])
        storage = MemoryStorage()
        consumer = RecordingConsumer(fail_at=dt(2))
        front = DurableCursor(storage, storage.resolve_uri("front.json"))
        poller = Poller(
            CommitCollector(catalog.index_url, catalog.client(), consumer),
            front,
            MemoryCursor(dt(2)),
            interval=0,
        )

        summary = await poller.run(max_cycles=2)

        assert summary.failed_cycles == 1
        assert consumer.timestamps == [dt(1), dt(2), dt(2)]
        assert len(consumer.calls[2][1]) == 2
        assert front.value == dt(2)

    @pytest.mark.asyncio
    async def test_cancel_while_sleeping(self, catalog: FakeCatalog) -> None:
        """Test cancellation wakes the idle sleep and stops the loop."""
        token = CancellationToken()
        poller = Poller(
            CommitCollector(catalog.index_url, catalog.client(), RecordingConsumer()),
            MemoryCursor(),
            MemoryCursor(dt(9)),
            interval=60,
            cancellation_token=token,
        )

        task = asyncio.create_task(poller.run())
        await asyncio.sleep(0.05)
        token.cancel()
        summary = await asyncio.wait_for(task, timeout=5)

        assert summary.cancelled is True
        assert summary.cycles == 1
