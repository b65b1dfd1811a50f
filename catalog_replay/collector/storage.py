"""
Cursor Storage Module
=====================

Provides abstract and concrete implementations for durably storing
small documents (cursor envelopes) keyed by a resource URI.
"""

from __future__ import annotations

import gzip
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import unquote, urlparse

from catalog_replay.core.errors import StorageUnavailable


class CursorStorage(ABC):
    """
    Abstract base class for cursor storage.

    Implementations persist a single text document per resource URI.
    Reading a URI that was never written returns None rather than raising.
    Load and save counts are kept per instance for diagnostics.
    """

    def __init__(self) -> None:
        self.save_count = 0
        self.load_count = 0

    @property
    @abstractmethod
    def base_address(self) -> str:
        """Base URI every resource in this storage lives under."""
        pass

    @abstractmethod
    def save(self, resource_uri: str, content: str) -> None:
        """
        Persist content, replacing any previous value.

        Args:
            resource_uri: URI of the resource (see resolve_uri)
            content: Text content to store

        Raises:
            StorageUnavailable: If the backing store cannot be written
        """
        pass

    @abstractmethod
    def load(self, resource_uri: str) -> str | None:
        """
        Load previously saved content.

        Args:
            resource_uri: URI of the resource

        Returns:
            The stored content, or None if nothing was saved

        Raises:
            StorageUnavailable: If the backing store cannot be read
        """
        pass

    @abstractmethod
    def exists(self, resource_uri: str) -> bool:
        """Check whether content is stored for a resource."""
        pass

    @abstractmethod
    def delete(self, resource_uri: str) -> bool:
        """
        Delete stored content.

        Returns:
            True if deleted, False if not found
        """
        pass

    def resolve_uri(self, name: str) -> str:
        """Build the resource URI for a name relative to this storage."""
        return self.base_address + name.lstrip("/")

    def get_name(self, resource_uri: str) -> str:
        """Inverse of resolve_uri."""
        if not resource_uri.startswith(self.base_address):
            raise ValueError(
                f"Resource '{resource_uri}' is not located under '{self.base_address}'"
            )
        return resource_uri[len(self.base_address):]

    def reset_statistics(self) -> None:
        """Reset the load and save counters."""
        self.save_count = 0
        self.load_count = 0


class MemoryStorage(CursorStorage):
    """In-memory storage, for tests and one-off runs."""

    def __init__(self, base_address: str = "memory:///") -> None:
        super().__init__()
        self._base_address = base_address if base_address.endswith("/") else base_address + "/"
        self.content: dict[str, str] = {}

    @property
    def base_address(self) -> str:
        return self._base_address

    def save(self, resource_uri: str, content: str) -> None:
        self.content[self.get_name(resource_uri)] = content
        self.save_count += 1

    def load(self, resource_uri: str) -> str | None:
        self.load_count += 1
        return self.content.get(self.get_name(resource_uri))

    def exists(self, resource_uri: str) -> bool:
        return self.get_name(resource_uri) in self.content

    def delete(self, resource_uri: str) -> bool:
        return self.content.pop(self.get_name(resource_uri), None) is not None


class LocalFileStorage(CursorStorage):
    """
    Local filesystem storage for cursors.

    Resources are ``file://`` URIs under ``base_path``. Writes go to a
    temporary file in the target directory which is then renamed over the
    destination, so a concurrent load sees either the old or the new
    document. With ``compress`` enabled content is gzip compressed and
    stored with a ``.gz`` suffix.
    """

    def __init__(self, base_path: str | Path, compress: bool = False) -> None:
        """
        Initialize local file storage.

        Args:
            base_path: Base directory for storing cursors
            compress: Gzip stored content
        """
        super().__init__()
        self.base_path = Path(base_path).expanduser().resolve()
        self.compress = compress
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(
                f"Cannot create storage directory {self.base_path}: {e}",
                resource_uri=str(self.base_path),
            ) from e

    @property
    def base_address(self) -> str:
        return self.base_path.as_uri() + "/"

    def _get_path(self, resource_uri: str) -> Path:
        """Map a resource URI onto a file below base_path."""
        name = unquote(urlparse(self.get_name(resource_uri)).path)
        path = (self.base_path / name).resolve()
        if not path.is_relative_to(self.base_path):
            raise ValueError(f"Resource '{resource_uri}' escapes storage root")
        if self.compress:
            path = path.with_name(path.name + ".gz")
        return path

    def save(self, resource_uri: str, content: str) -> None:
        """Atomically write content to the local filesystem."""
        path = self._get_path(resource_uri)
        data = content.encode("utf-8")
        if self.compress:
            data = gzip.compress(data, compresslevel=6)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageUnavailable(f"Failed to save {resource_uri}: {e}", resource_uri) from e

        self.save_count += 1

    def load(self, resource_uri: str) -> str | None:
        """Read content from the local filesystem."""
        path = self._get_path(resource_uri)
        self.load_count += 1

        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"Failed to load {resource_uri}: {e}", resource_uri) from e

        if self.compress:
            data = gzip.decompress(data)
        return data.decode("utf-8")

    def exists(self, resource_uri: str) -> bool:
        return self._get_path(resource_uri).exists()

    def delete(self, resource_uri: str) -> bool:
        path = self._get_path(resource_uri)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StorageUnavailable(f"Failed to delete {resource_uri}: {e}", resource_uri) from e
        return True

    def get_storage_stats(self) -> dict:
        """Get storage statistics."""
        files = [p for p in self.base_path.rglob("*") if p.is_file() and not p.name.startswith(".")]
        return {
            "total_cursors": len(files),
            "total_size_bytes": sum(p.stat().st_size for p in files),
            "save_count": self.save_count,
            "load_count": self.load_count,
        }


def get_default_storage(base_path: str | None = None, compress: bool = False) -> LocalFileStorage:
    """
    Get local cursor storage.

    The CURSOR_STORAGE_PATH environment variable takes precedence over
    base_path; with neither set, ~/.catalog_replay/cursors is used.
    """
    path = os.environ.get("CURSOR_STORAGE_PATH") or base_path or "~/.catalog_replay/cursors"
    return LocalFileStorage(path, compress=compress)
