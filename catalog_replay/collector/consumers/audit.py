"""
Audit Consumer
==============

Validates catalog entries as they are replayed and records any issues.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from catalog_replay.collector.consumers.base import BatchConsumer
from catalog_replay.core.errors import MalformedDocument, TransientFetchError
from catalog_replay.core.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

PACKAGE_DETAILS_TYPE = "nuget:PackageDetails"
PACKAGE_DELETE_TYPE = "nuget:PackageDelete"


@dataclass
class AuditIssue:
    """A problem found in one catalog entry."""

    uri: str | None
    commit_timestamp: datetime
    rule: str
    message: str


def _types(item: dict[str, Any]) -> list[str]:
    value = item.get("@type")
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


class AuditConsumer(BatchConsumer):
    """
    Checks each entry of every batch.

    Rules:
    1. Entries carry an ``@id`` and an ``@type``
    2. An entry's ``commitTimeStamp`` equals the batch timestamp
    3. Package entries carry ``nuget:id`` and ``nuget:version``
    4. A package identity appears at most once per batch
    5. With ``fetch_graphs``, a package details document loads as a
       non-empty RDF graph

    Config:
        fetch_graphs: Fetch each package details document (default False)
        fail_fast: Pause the collector after a batch with issues (default False)
        max_recorded_issues: Most recent issues kept in ``issues`` (default 1000);
            ``issue_count`` keeps the running total
    """

    CONSUMER_NAME = "audit"
    CONSUMER_VERSION = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        self.fetch_graphs = bool(self.config.get("fetch_graphs", False))
        self.fail_fast = bool(self.config.get("fail_fast", False))
        self.issues: deque[AuditIssue] = deque(maxlen=int(self.config.get("max_recorded_issues", 1000)))
        self.issue_count = 0
        self.entries_checked = 0

    def validate_entry(self, item: dict[str, Any], commit_timestamp: datetime) -> list[AuditIssue]:
        """Apply the static rules to one entry."""
        issues: list[AuditIssue] = []
        uri = item.get("@id")

        def issue(rule: str, message: str) -> None:
            issues.append(AuditIssue(uri=uri, commit_timestamp=commit_timestamp, rule=rule, message=message))

        if not uri:
            issue("missing-id", "Entry has no @id")

        types = _types(item)
        if not types:
            issue("missing-type", "Entry has no @type")

        try:
            entry_ts = parse_timestamp(item.get("commitTimeStamp"))
            if entry_ts != commit_timestamp:
                issue(
                    "timestamp-mismatch",
                    f"Entry commitTimeStamp {format_timestamp(entry_ts)} "
                    f"differs from batch {format_timestamp(commit_timestamp)}",
                )
        except ValueError:
            issue("invalid-timestamp", f"Invalid commitTimeStamp: {item.get('commitTimeStamp')!r}")

        if PACKAGE_DETAILS_TYPE in types or PACKAGE_DELETE_TYPE in types:
            if not item.get("nuget:id"):
                issue("missing-package-id", "Package entry has no nuget:id")
            if not item.get("nuget:version"):
                issue("missing-package-version", "Package entry has no nuget:version")

        return issues

    async def process_batch(
        self,
        items: Sequence[dict[str, Any]],
        context: Any | None,
        commit_timestamp: datetime,
        is_last_batch: bool,
        *,
        client=None,
        cancellation_token=None,
    ) -> bool:
        batch_issues: list[AuditIssue] = []
        seen: set[tuple[str, str]] = set()

        for item in items:
            self.entries_checked += 1
            batch_issues.extend(self.validate_entry(item, commit_timestamp))

            package_id = item.get("nuget:id")
            version = item.get("nuget:version")
            if package_id and version:
                identity = (str(package_id).lower(), str(version).lower())
                if identity in seen:
                    batch_issues.append(
                        AuditIssue(
                            uri=item.get("@id"),
                            commit_timestamp=commit_timestamp,
                            rule="duplicate-package",
                            message=f"{package_id} {version} appears more than once in the batch",
                        )
                    )
                seen.add(identity)

            if self.fetch_graphs and client is not None and PACKAGE_DETAILS_TYPE in _types(item) and item.get("@id"):
                batch_issues.extend(
                    await self._check_graph(item["@id"], commit_timestamp, client, cancellation_token)
                )

        for found in batch_issues:
            logger.warning(f"Audit [{found.rule}] {found.uri}: {found.message}")
        self.issues.extend(batch_issues)
        self.issue_count += len(batch_issues)

        if batch_issues and self.fail_fast:
            logger.error(f"{len(batch_issues)} audit issue(s) at {format_timestamp(commit_timestamp)}; pausing collector")
            return False
        return True

    async def _check_graph(self, uri: str, commit_timestamp: datetime, client, cancellation_token) -> list[AuditIssue]:
        try:
            graph = await client.get_graph_document(uri, cancellation_token)
        except MalformedDocument as e:
            return [AuditIssue(uri=uri, commit_timestamp=commit_timestamp, rule="invalid-graph", message=str(e))]
        except TransientFetchError as e:
            # Anything but a missing document is retried with the whole batch.
            if e.status_code != 404:
                raise
            return [AuditIssue(uri=uri, commit_timestamp=commit_timestamp, rule="missing-document", message=str(e))]
        if len(graph) == 0:
            return [AuditIssue(uri=uri, commit_timestamp=commit_timestamp, rule="empty-graph", message="Document has no triples")]
        return []
