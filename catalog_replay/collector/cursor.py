"""
Cursor Module
=============

Cursors mark replay progress through the catalog. A read cursor only
exposes a value (typically the upper bound of a collection window); a
read-write cursor can also be saved, and is owned by the collector.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.storage import CursorStorage
from catalog_replay.core.errors import MalformedDocument
from catalog_replay.core.models import CursorEnvelope
from catalog_replay.core.timestamps import EPOCH, format_timestamp, normalize_timestamp

if TYPE_CHECKING:
    from catalog_replay.collector.client import CatalogClient

logger = logging.getLogger(__name__)


class ReadCursor(ABC):
    """A position in the catalog, expressed as a commit timestamp."""

    def __init__(self, value: datetime = EPOCH) -> None:
        self._value = normalize_timestamp(value)

    @property
    def value(self) -> datetime:
        return self._value

    @abstractmethod
    async def load(self, cancellation_token: CancellationToken | None = None) -> None:
        """Refresh ``value`` from wherever the cursor is kept."""
        pass

    def __str__(self) -> str:
        return format_timestamp(self._value)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self})"


class ReadWriteCursor(ReadCursor):
    """A cursor the collector advances and persists."""

    @ReadCursor.value.setter
    def value(self, value: datetime) -> None:
        self._value = normalize_timestamp(value)

    @abstractmethod
    async def save(self, cancellation_token: CancellationToken | None = None) -> None:
        """Persist ``value``."""
        pass


class MemoryCursor(ReadWriteCursor):
    """A cursor that lives only in memory. Load and save do nothing."""

    @classmethod
    def now(cls) -> MemoryCursor:
        """Cursor at the current wall-clock time."""
        return cls(datetime.now(UTC))

    async def load(self, cancellation_token: CancellationToken | None = None) -> None:
        pass

    async def save(self, cancellation_token: CancellationToken | None = None) -> None:
        pass


class NowCursor(ReadCursor):
    """Read cursor that takes the wall-clock time each time it is loaded."""

    def __init__(self) -> None:
        super().__init__(datetime.now(UTC))

    async def load(self, cancellation_token: CancellationToken | None = None) -> None:
        self._value = datetime.now(UTC)


class DurableCursor(ReadWriteCursor):
    """
    A cursor persisted as ``{"value": "<timestamp>"}`` in a CursorStorage.

    When storage holds no document for the cursor, ``load`` falls back to
    the default supplied at construction.
    """

    def __init__(
        self,
        storage: CursorStorage,
        resource_uri: str,
        default: datetime = EPOCH,
    ) -> None:
        super().__init__(default)
        self.storage = storage
        self.resource_uri = resource_uri
        self.default = normalize_timestamp(default)

    async def load(self, cancellation_token: CancellationToken | None = None) -> None:
        """
        Restore the persisted value.

        Raises:
            StorageUnavailable: If the storage cannot be read
            MalformedDocument: If the stored document is not a cursor envelope
        """
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()

        content = self.storage.load(self.resource_uri)
        if content is None:
            self._value = self.default
            logger.debug(f"No cursor stored at {self.resource_uri}; using default {self}")
            return

        try:
            envelope = CursorEnvelope.model_validate_json(content)
        except ValidationError as e:
            raise MalformedDocument(
                f"Invalid cursor document at {self.resource_uri}: {e}",
                uri=self.resource_uri,
            ) from e
        self._value = envelope.value

    async def save(self, cancellation_token: CancellationToken | None = None) -> None:
        """
        Persist the current value, replacing the stored document.

        Raises:
            StorageUnavailable: If the storage cannot be written
        """
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()
        self.storage.save(self.resource_uri, CursorEnvelope(value=self._value).to_json())


class AggregateCursor(ReadCursor):
    """
    Read cursor whose value is the minimum of several other cursors.

    Useful as the back cursor of a job that must not run ahead of any of
    the jobs it depends on.
    """

    def __init__(self, cursors: Iterable[ReadCursor]) -> None:
        self.cursors = list(cursors)
        if not self.cursors:
            raise ValueError("AggregateCursor requires at least one cursor")
        super().__init__(min(c.value for c in self.cursors))

    async def load(self, cancellation_token: CancellationToken | None = None) -> None:
        for cursor in self.cursors:
            await cursor.load(cancellation_token)
        self._value = min(c.value for c in self.cursors)


class HttpReadCursor(ReadCursor):
    """Read cursor loaded from a cursor document published over HTTP."""

    def __init__(self, client: CatalogClient, uri: str, default: datetime = EPOCH) -> None:
        super().__init__(default)
        self.client = client
        self.uri = uri

    async def load(self, cancellation_token: CancellationToken | None = None) -> None:
        """
        Raises:
            TransientFetchError: If the document cannot be fetched
            MalformedDocument: If the document is not a cursor envelope
        """
        document = await self.client.get_json_document(self.uri, cancellation_token)
        try:
            envelope = CursorEnvelope.model_validate(document)
        except ValidationError as e:
            raise MalformedDocument(f"Invalid cursor document at {self.uri}: {e}", uri=self.uri) from e
        self._value = envelope.value

