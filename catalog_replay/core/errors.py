"""Error taxonomy for the catalog replay pipeline."""

from __future__ import annotations

from datetime import datetime


class CatalogReplayError(Exception):
    """Base exception for catalog replay."""


class ConfigError(CatalogReplayError):
    """Raised when collector configuration is invalid or missing."""


class TransientFetchError(CatalogReplayError):
    """Raised when a catalog document cannot be fetched over HTTP."""

    def __init__(self, message: str, uri: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.uri = uri
        self.status_code = status_code


class MalformedDocument(CatalogReplayError):
    """Raised when a document is missing required fields or cannot be parsed."""

    def __init__(self, message: str, uri: str | None = None) -> None:
        super().__init__(message)
        self.uri = uri


class ConsumerFailure(CatalogReplayError):
    """Raised when a batch consumer fails while processing a batch."""

    def __init__(self, message: str, commit_timestamp: datetime) -> None:
        super().__init__(message)
        self.commit_timestamp = commit_timestamp


class StorageUnavailable(CatalogReplayError):
    """Raised when cursor storage cannot be read or written."""

    def __init__(self, message: str, resource_uri: str | None = None) -> None:
        super().__init__(message)
        self.resource_uri = resource_uri


class Cancelled(CatalogReplayError):
    """Raised when cooperative cancellation is observed."""
