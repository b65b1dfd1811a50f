"""
Poll Driver
===========

Runs collection cycles back to back, sleeping between cycles when the
collector has nothing more to do, until cancelled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.commit_collector import CommitCollector
from catalog_replay.collector.cursor import ReadCursor, ReadWriteCursor
from catalog_replay.core.errors import Cancelled

logger = logging.getLogger(__name__)


@dataclass
class PollSummary:
    """What a poll loop did before it stopped."""

    cycles: int = 0
    failed_cycles: int = 0
    batches_dispatched: int = 0
    cancelled: bool = False


class Poller:
    """
    Repeatedly invokes a collector against one front cursor.

    Cycles never overlap: each one is awaited before the next starts, which
    keeps the collector the single writer of the front cursor. A cycle that
    returns True is followed immediately by another; a cycle that returns
    False, or fails, is followed by a sleep of ``interval`` seconds. A
    failed cycle leaves the cursor at its last checkpoint, so the next one
    repeats the same window of work.
    """

    def __init__(
        self,
        collector: CommitCollector,
        front: ReadWriteCursor,
        back: ReadCursor,
        interval: float = 5.0,
        cancellation_token: CancellationToken | None = None,
    ) -> None:
        self.collector = collector
        self.front = front
        self.back = back
        self.interval = interval
        self.cancellation_token = cancellation_token or CancellationToken()
        self._front_loaded = False

    async def run(self, max_cycles: int | None = None) -> PollSummary:
        """
        Poll until cancelled, or until ``max_cycles`` cycles have run.

        Returns:
            PollSummary of the loop
        """
        summary = PollSummary()
        token = self.cancellation_token

        try:
            while max_cycles is None or summary.cycles < max_cycles:
                token.raise_if_cancelled()

                if not self._front_loaded:
                    await self.front.load(token)
                    self._front_loaded = True

                summary.cycles += 1
                try:
                    await self.back.load(token)
                    accepted = await self.collector.fetch(self.front, self.back, token)
                except Cancelled:
                    raise
                except Exception:
                    summary.failed_cycles += 1
                    # Reload on the next cycle; the failed one may have left
                    # an in-memory value that was never saved.
                    self._front_loaded = False
                    logger.exception(f"Collection cycle {summary.cycles} failed; cursor left at last checkpoint")
                    accepted = False
                else:
                    summary.batches_dispatched += self.collector.stats.batches_dispatched
                    logger.info(
                        f"Cycle {summary.cycles} done: {self.collector.stats.batches_dispatched} batch(es), "
                        f"front cursor {self.front}"
                    )

                if max_cycles is not None and summary.cycles >= max_cycles:
                    break
                if not accepted:
                    await token.sleep(self.interval)
        except Cancelled:
            summary.cancelled = True
            logger.info("Polling cancelled")

        return summary
