"""
Snapshot Consumer
=================

Writes every batch to the local filesystem as a JSON document.

Directory structure:
    {output_dir}/YYYY/MM/DD/{timestamp}-{digest}.json[.gz]

The digest is taken over the item URIs, so a replayed batch overwrites
its earlier snapshot instead of adding a second one.
"""

from __future__ import annotations

import gzip
import hashlib
import json
import logging
import os
from collections import deque
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from catalog_replay.collector.consumers.base import BatchConsumer
from catalog_replay.core.timestamps import format_timestamp, normalize_timestamp

logger = logging.getLogger(__name__)


class SnapshotConsumer(BatchConsumer):
    """
    Persists batches as JSON snapshots.

    Config:
        output_dir: Directory to write to (default ~/.catalog_replay/snapshots)
        compress: Gzip snapshots (default False)
        max_recorded_paths: Most recent paths kept in ``written`` (default 1000);
            ``snapshots_written`` keeps the running total
    """

    CONSUMER_NAME = "snapshot"
    CONSUMER_VERSION = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        output_dir = self.config.get("output_dir", "~/.catalog_replay/snapshots")
        self.output_dir = Path(output_dir).expanduser().resolve()
        self.compress = bool(self.config.get("compress", False))
        self.written: deque[Path] = deque(maxlen=int(self.config.get("max_recorded_paths", 1000)))
        self.snapshots_written = 0

    def get_snapshot_path(self, commit_timestamp: datetime, items: Sequence[dict[str, Any]]) -> Path:
        """Build the snapshot path for a batch."""
        ts = normalize_timestamp(commit_timestamp)
        digest = hashlib.sha256(
            "\n".join(str(item.get("@id", "")) for item in items).encode("utf-8")
        ).hexdigest()[:12]
        stamp = format_timestamp(ts).replace(":", "-")
        suffix = ".json.gz" if self.compress else ".json"
        return self.output_dir / ts.strftime("%Y/%m/%d") / f"{stamp}-{digest}{suffix}"

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
        path = self.get_snapshot_path(commit_timestamp, items)
        document = {
            "commitTimeStamp": format_timestamp(commit_timestamp),
            "@context": context,
            "items": list(items),
        }
        data = json.dumps(document, indent=2, sort_keys=True).encode("utf-8")
        if self.compress:
            data = gzip.compress(data, compresslevel=6)

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

        self.written.append(path)
        self.snapshots_written += 1
        logger.debug(f"Wrote snapshot {path} ({len(items)} item(s))")
        return True


def read_snapshot(path: str | Path) -> dict[str, Any]:
    """Load a snapshot written by SnapshotConsumer."""
    path = Path(path)
    with open(path, "rb") as f:
        data = f.read()
    if path.suffix == ".gz":
        data = gzip.decompress(data)
    return json.loads(data)
