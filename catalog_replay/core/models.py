"""Pydantic models and value types for catalog documents."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from catalog_replay.core.errors import MalformedDocument
from catalog_replay.core.timestamps import CommitTimestamp, format_timestamp


class CursorEnvelope(BaseModel):
    """Persisted cursor document: ``{"value": "<timestamp>"}``."""

    model_config = ConfigDict(extra="allow")

    value: CommitTimestamp

    def to_json(self) -> str:
        """Serialize with the catalog timestamp format."""
        return json.dumps({"value": format_timestamp(self.value)})


class CatalogItem(BaseModel):
    """
    A reference to a catalog document stamped with a commit timestamp.

    Used both for page references in the catalog index and for leaf commit
    entries inside a page. ``value`` keeps the raw JSON object so consumers
    see the full commit record.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    uri: str = Field(alias="@id", min_length=1)
    commit_timestamp: CommitTimestamp = Field(alias="commitTimeStamp")
    value: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Any, document_uri: str | None = None) -> CatalogItem:
        """
        Create from a JSON object found in an index or page document.

        Raises:
            MalformedDocument: If ``@id`` or ``commitTimeStamp`` is missing or invalid
        """
        if not isinstance(data, dict):
            raise MalformedDocument(
                f"Catalog item must be a JSON object, got {type(data).__name__}",
                uri=document_uri,
            )
        try:
            return cls.model_validate(
                {
                    "@id": data.get("@id"),
                    "commitTimeStamp": data.get("commitTimeStamp"),
                    "value": data,
                }
            )
        except ValidationError as e:
            raise MalformedDocument(
                f"Invalid catalog item in {document_uri or 'document'}: {e}",
                uri=document_uri,
            ) from e

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Deterministic ordering: commit timestamp, then URI."""
        return (self.commit_timestamp, self.uri)


@dataclass
class CatalogItemBatch:
    """A group of catalog items dispatched to a consumer together."""

    commit_timestamp: datetime
    items: tuple[CatalogItem, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.items = tuple(sorted(self.items, key=lambda item: item.sort_key))

    def __len__(self) -> int:
        return len(self.items)

    @property
    def values(self) -> list[dict[str, Any]]:
        """Raw JSON payloads of the items, in batch order."""
        return [item.value for item in self.items]


def read_items(document: Any, document_uri: str | None = None) -> list[CatalogItem]:
    """
    Extract the ``items`` array of an index or page document.

    Raises:
        MalformedDocument: If the document has no ``items`` list or an item is invalid
    """
    if not isinstance(document, dict):
        raise MalformedDocument("Catalog document must be a JSON object", uri=document_uri)
    items = document.get("items")
    if not isinstance(items, list):
        raise MalformedDocument("Catalog document has no 'items' array", uri=document_uri)
    return [CatalogItem.from_dict(item, document_uri) for item in items]
