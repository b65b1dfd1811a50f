"""Cooperative cancellation for collection cycles."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from catalog_replay.core.errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """
    Cancellation signal threaded through every I/O call of a cycle.

    The collector checks the token before each network call and before each
    batch dispatch. ``guard`` additionally abandons an in-flight awaitable
    when the token fires while it is pending.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if the token has fired."""
        if self._event.is_set():
            raise Cancelled("Operation was cancelled")

    async def wait(self) -> None:
        """Wait until the token fires."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for up to ``seconds``, waking early on cancellation.

        Raises:
            Cancelled: If the token fires before or during the sleep
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token fires first.

        Raises:
            Cancelled: If the token fires before the awaitable completes
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise Cancelled("Operation was cancelled")


async def guarded(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await through ``token.guard`` when a token is supplied."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)
