"""Shared fixtures: an in-memory catalog served through httpx.MockTransport."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx
import pytest

from catalog_replay.collector.client import CatalogClient
from catalog_replay.collector.consumers.base import BatchConsumer
from catalog_replay.core.timestamps import parse_timestamp

BASE_URL = "https://catalog.test/v3/catalog0"

CONTEXT = {
    "@vocab": "http://schema.nuget.org/schema#",
    "nuget": "http://schema.nuget.org/schema#",
}


def ts(second: int) -> str:
    """Commit timestamp string for a second offset on a fixed day."""
    return f"2024-01-01T00:00:{second:02d}.0000000Z"


def dt(second: int) -> datetime:
    """Parsed form of ts()."""
    return parse_timestamp(ts(second))


class FakeCatalog:
    """A catalog index with pages, served by a MockTransport handler."""

    def __init__(self, base_url: str = BASE_URL) -> None:
        self.base_url = base_url
        self.pages: dict[str, list[dict[str, Any]]] = {}
        self.page_timestamps: dict[str, str] = {}
        self.documents: dict[str, Any] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[str] = []

    @property
    def index_url(self) -> str:
        return f"{self.base_url}/index.json"

    def entry(self, timestamp: str, name: str, **extra: Any) -> dict[str, Any]:
        data = {
            "@id": f"{self.base_url}/data/{name.lower()}.1.0.0.json",
            "@type": "nuget:PackageDetails",
            "commitTimeStamp": timestamp,
            "nuget:id": name,
            "nuget:version": "1.0.0",
        }
        data.update(extra)
        return data

    def add_page(self, entries: Sequence[tuple[str, str]], page_timestamp: str | None = None) -> str:
        """Add a page of (timestamp, package name) entries; returns its URL."""
        url = f"{self.base_url}/page{len(self.pages)}.json"
        items = [self.entry(timestamp, name) for timestamp, name in entries]
        self.pages[url] = items
        self.page_timestamps[url] = page_timestamp or max(item["commitTimeStamp"] for item in items)
        return url

    def index_document(self) -> dict[str, Any]:
        return {
            "@id": self.index_url,
            "@type": ["CatalogRoot", "AppendOnlyCatalog"],
            "@context": CONTEXT,
            "count": len(self.pages),
            "items": [
                {
                    "@id": url,
                    "@type": "CatalogPage",
                    "commitTimeStamp": self.page_timestamps[url],
                    "count": len(items),
                }
                for url, items in self.pages.items()
            ],
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)

        if url in self.failures:
            return httpx.Response(self.failures[url])
        if url == self.index_url:
            return httpx.Response(200, json=self.index_document())
        if url in self.pages:
            return httpx.Response(
                200,
                json={"@id": url, "@type": "CatalogPage", "@context": CONTEXT, "items": self.pages[url]},
            )
        if url in self.documents:
            document = self.documents[url]
            if isinstance(document, str):
                return httpx.Response(200, text=document)
            return httpx.Response(200, json=document)
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, **kwargs: Any) -> CatalogClient:
        kwargs.setdefault("backoff_base", 0)
        kwargs.setdefault("max_retries", 2)
        return CatalogClient(transport=self.transport(), **kwargs)


class RecordingConsumer(BatchConsumer):
    """Records every dispatch; can reject or fail at a chosen timestamp."""

    CONSUMER_NAME = "recording"
    CONSUMER_VERSION = "test"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        reject_at: datetime | None = None,
        fail_at: datetime | None = None,
        fail_times: int = 1,
    ) -> None:
        super().__init__(config)
        self.reject_at = reject_at
        self.fail_at = fail_at
        self.fail_times = fail_times
        self.calls: list[tuple[datetime, list[str], bool]] = []
        self.processed: list[str] = []

    @property
    def timestamps(self) -> list[datetime]:
        return [call[0] for call in self.calls]

    async def process_batch(
        self,
        items,
        context,
        commit_timestamp,
        is_last_batch,
        *,
        client=None,
        cancellation_token=None,
    ) -> bool:
        self.calls.append((commit_timestamp, [item["@id"] for item in items], is_last_batch))
        for position, item in enumerate(items):
            if commit_timestamp == self.fail_at and self.fail_times > 0 and position == len(items) - 1:
                self.fail_times -= 1
                raise RuntimeError("downstream store unavailable")
            self.processed.append(item["@id"])
        return commit_timestamp != self.reject_at


@pytest.fixture
def catalog() -> FakeCatalog:
    """An empty fake catalog."""
    return FakeCatalog()
