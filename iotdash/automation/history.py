"""Bounded, newest-first log of automation executions.

Loaded once at startup and held in memory; every append writes the whole
log back to its own blob, independent of the automation collection.
"""

from __future__ import annotations

import asyncio
import json
import time

from loguru import logger

from iotdash.automation.models import ExecutionRecord
from iotdash.storage import BlobStore

DEFAULT_HISTORY_LIMIT = 50


class ExecutionHistory:
    """Newest-first execution records, capped at ``limit`` entries."""

    def __init__(
        self,
        blob_store: BlobStore,
        key: str = "automation_history",
        limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        if limit <= 0:
            raise ValueError(f"History limit must be positive, got {limit}")
        self._blobs = blob_store
        self.key = key
        self.limit = limit
        self._records: list[ExecutionRecord] = []
        self._lock = asyncio.Lock()

    # -- persistence ---------------------------------------------------------

    def load(self) -> None:
        """Load the log. Missing or unreadable data → empty log."""
        self._records = []
        raw = self._blobs.load_blob(self.key)
        if not raw or not raw.strip():
            logger.debug(f"[Automation/History] no stored history under '{self.key}'")
            return
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error(f"[Automation/History] failed to decode '{self.key}': {exc}")
            return

        entries = data.get("records") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            logger.error(
                f"[Automation/History] unexpected layout in '{self.key}' "
                f"({type(entries).__name__}), starting empty"
            )
            return
        for d in entries:
            try:
                self._records.append(ExecutionRecord.from_dict(d))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning(f"[Automation/History] skipping malformed record: {exc!r}")
        del self._records[self.limit:]
        logger.info(f"[Automation/History] loaded {len(self._records)} records")

    def _save_sync(self, records: list[ExecutionRecord]) -> None:
        data = {
            "version": 1,
            "updated_at": time.time(),
            "records": [r.to_dict() for r in records],
        }
        self._blobs.save_blob(
            self.key, json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        )

    # -- mutation ------------------------------------------------------------

    async def append(self, record: ExecutionRecord) -> None:
        """Insert *record* at the head, drop the oldest beyond the limit, persist."""
        async with self._lock:
            staged = [record, *self._records][: self.limit]
            self._save_sync(staged)
            self._records = staged

    async def clear(self) -> None:
        async with self._lock:
            self._save_sync([])
            self._records = []
        logger.info("[Automation/History] cleared")

    # -- queries -------------------------------------------------------------

    @property
    def records(self) -> list[ExecutionRecord]:
        """All retained records, newest first (a copy)."""
        return list(self._records)

    def for_automation(self, automation_id: str) -> list[ExecutionRecord]:
        return [r for r in self._records if r.automation_id == automation_id]

    def latest(self) -> ExecutionRecord | None:
        return self._records[0] if self._records else None

    def __len__(self) -> int:
        return len(self._records)
