"""
Catalog Client Module
=====================

Fetches catalog documents over HTTP: JSON documents for the collector
and RDF graph documents for consumers that need richer payloads.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
import rdflib

from catalog_replay.collector.cancellation import CancellationToken, guarded
from catalog_replay.core.errors import MalformedDocument, TransientFetchError

if TYPE_CHECKING:
    from catalog_replay.collector.registry import RateLimitConfig

logger = logging.getLogger(__name__)

# Status codes worth another attempt; anything else fails immediately.
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class TokenBucket:
    """
    Token bucket rate limiter shared by all requests of a client.

    Allows bursting up to burst_limit requests, then enforces
    the steady-state rate of requests_per_second.
    """

    def __init__(self, requests_per_second: float, burst_limit: int) -> None:
        self.requests_per_second = requests_per_second
        self.burst_limit = burst_limit
        self.tokens = float(burst_limit)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Take a token, sleeping until one is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.last_update = now

            self.tokens = min(
                self.burst_limit, self.tokens + elapsed * self.requests_per_second
            )

            if self.tokens < 1.0:
                wait_time = (1.0 - self.tokens) / self.requests_per_second
                await asyncio.sleep(wait_time)
                self.tokens = 0.0
            else:
                self.tokens -= 1.0


class CatalogClient:
    """
    HTTP client for catalog index, page and leaf documents.

    Features:
    - One pooled httpx.AsyncClient per CatalogClient
    - Token bucket rate limiting
    - Retries with exponential backoff for timeouts, transport errors and
      retryable status codes
    - HTTP failures raised as TransientFetchError, parse failures as
      MalformedDocument

    Use as an async context manager, or call ``aclose`` when done.
    """

    def __init__(
        self,
        user_agent: str = "CatalogReplay/0.1",
        timeout: float = 30.0,
        max_retries: int = 3,
        rate_limit: RateLimitConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = 1.0,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.request_count = 0

        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._rate_limiter = (
            TokenBucket(rate_limit.requests_per_second, rate_limit.burst_limit)
            if rate_limit is not None
            else None
        )

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_text(
        self,
        uri: str,
        cancellation_token: CancellationToken | None = None,
    ) -> str:
        """
        Fetch a document body as text.

        Args:
            uri: Absolute document URI
            cancellation_token: Optional cancellation signal

        Returns:
            Response body

        Raises:
            TransientFetchError: On network failure or a non-success status
            Cancelled: If cancellation is observed
        """
        last_error: TransientFetchError | None = None

        for attempt in range(self.max_retries):
            if cancellation_token is not None:
                cancellation_token.raise_if_cancelled()
            if self._rate_limiter is not None:
                await guarded(self._rate_limiter.acquire(), cancellation_token)

            try:
                self.request_count += 1
                response = await guarded(self._get_client().get(uri), cancellation_token)
            except httpx.TimeoutException:
                last_error = TransientFetchError(f"Timeout after {self.timeout}s fetching {uri}", uri)
                logger.warning(f"Timeout fetching {uri} (attempt {attempt + 1}/{self.max_retries})")
            except httpx.HTTPError as e:
                last_error = TransientFetchError(f"HTTP error fetching {uri}: {e}", uri)
                logger.warning(f"HTTP error fetching {uri}: {e} (attempt {attempt + 1}/{self.max_retries})")
            else:
                if response.is_success:
                    return response.text

                last_error = TransientFetchError(
                    f"HTTP {response.status_code} fetching {uri}",
                    uri,
                    status_code=response.status_code,
                )
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise last_error
                logger.warning(
                    f"HTTP {response.status_code} fetching {uri} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )

            if attempt < self.max_retries - 1:
                delay = self.backoff_base * 2**attempt
                if cancellation_token is not None:
                    await cancellation_token.sleep(delay)
                else:
                    await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    async def get_json_document(
        self,
        uri: str,
        cancellation_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """
        Fetch and parse a JSON document.

        Raises:
            TransientFetchError: On HTTP failure
            MalformedDocument: If the body is not a JSON object
        """
        text = await self.get_text(uri, cancellation_token)
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedDocument(f"Invalid JSON in {uri}: {e}", uri=uri) from e

        if not isinstance(document, dict):
            raise MalformedDocument(f"Expected a JSON object in {uri}", uri=uri)
        return document

    async def get_graph_document(
        self,
        uri: str,
        cancellation_token: CancellationToken | None = None,
    ) -> rdflib.Graph:
        """
        Fetch a JSON-LD document and load it into an RDF graph.

        Raises:
            TransientFetchError: On HTTP failure
            MalformedDocument: If the body cannot be parsed as JSON-LD
        """
        text = await self.get_text(uri, cancellation_token)
        graph = rdflib.Graph()
        try:
            graph.parse(data=text, format="json-ld", publicID=uri)
        except Exception as e:
            raise MalformedDocument(f"Invalid JSON-LD in {uri}: {e}", uri=uri) from e
        return graph
