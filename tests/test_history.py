"""Tests for iotdash.automation.history — the bounded execution log."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from iotdash.automation.history import DEFAULT_HISTORY_LIMIT, ExecutionHistory
from iotdash.automation.models import ExecutionRecord
from iotdash.errors import StorageError
from iotdash.storage import FileBlobStore, MemoryBlobStore


def _record(i: int, automation_id: str = "auto-1", success: bool = True) -> ExecutionRecord:
    return ExecutionRecord(
        automation_id=automation_id,
        timestamp=1000.0 + i,
        success=success,
        message=f"run {i}",
        record_id=f"rec-{i}",
    )


class TestExecutionHistory:
    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            ExecutionHistory(MemoryBlobStore(), limit=0)

    @pytest.mark.asyncio
    async def test_newest_first(self):
        history = ExecutionHistory(MemoryBlobStore())
        for i in range(3):
            await history.append(_record(i))
        assert [r.record_id for r in history.records] == ["rec-2", "rec-1", "rec-0"]
        assert history.latest().record_id == "rec-2"

    @pytest.mark.asyncio
    async def test_capped_at_default_limit(self):
        history = ExecutionHistory(MemoryBlobStore())
        for i in range(DEFAULT_HISTORY_LIMIT + 1):
            await history.append(_record(i))
        assert len(history) == 50
        assert history.records[0].record_id == "rec-50"
        # The oldest record was dropped.
        assert "rec-0" not in {r.record_id for r in history.records}

    @pytest.mark.asyncio
    async def test_custom_limit(self):
        history = ExecutionHistory(MemoryBlobStore(), limit=2)
        for i in range(5):
            await history.append(_record(i))
        assert [r.record_id for r in history.records] == ["rec-4", "rec-3"]

    @pytest.mark.asyncio
    async def test_records_is_a_copy(self):
        history = ExecutionHistory(MemoryBlobStore())
        await history.append(_record(0))
        history.records.clear()
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_for_automation(self):
        history = ExecutionHistory(MemoryBlobStore())
        await history.append(_record(0, "a"))
        await history.append(_record(1, "b"))
        await history.append(_record(2, "a"))
        assert [r.record_id for r in history.for_automation("a")] == ["rec-2", "rec-0"]

    @pytest.mark.asyncio
    async def test_persisted_on_append(self):
        blobs = MemoryBlobStore()
        history = ExecutionHistory(blobs)
        await history.append(_record(0))
        data = json.loads(blobs.blobs["automation_history"])
        assert data["version"] == 1
        assert data["records"][0]["message"] == "run 0"

    @pytest.mark.asyncio
    async def test_reload(self, tmp_path):
        blobs = FileBlobStore(tmp_path)
        history = ExecutionHistory(blobs)
        for i in range(3):
            await history.append(_record(i, success=i != 1))

        reloaded = ExecutionHistory(FileBlobStore(tmp_path))
        reloaded.load()
        assert reloaded.records == history.records
        assert reloaded.records[1].success is False

    @pytest.mark.asyncio
    async def test_clear(self):
        blobs = MemoryBlobStore()
        history = ExecutionHistory(blobs)
        await history.append(_record(0))
        await history.clear()
        assert len(history) == 0
        assert history.latest() is None
        assert json.loads(blobs.blobs["automation_history"])["records"] == []

    def test_load_missing(self):
        history = ExecutionHistory(MemoryBlobStore())
        history.load()
        assert len(history) == 0

    def test_load_corrupt(self):
        history = ExecutionHistory(MemoryBlobStore({"automation_history": b"{not json"}))
        history.load()
        assert len(history) == 0

    def test_load_skips_malformed_records(self):
        payload = {
            "version": 1,
            "records": [_record(1).to_dict(), {"record_id": "broken"}, _record(0).to_dict()],
        }
        blobs = MemoryBlobStore({"automation_history": json.dumps(payload).encode()})
        history = ExecutionHistory(blobs)
        history.load()
        assert [r.record_id for r in history.records] == ["rec-1", "rec-0"]

    def test_load_truncates_to_limit(self):
        payload = {"records": [_record(i).to_dict() for i in range(10, 0, -1)]}
        blobs = MemoryBlobStore({"automation_history": json.dumps(payload).encode()})
        history = ExecutionHistory(blobs, limit=3)
        history.load()
        assert [r.record_id for r in history.records] == ["rec-10", "rec-9", "rec-8"]

    @pytest.mark.parametrize("raw", [
        b"null",
        b"5",
        b'{"records": null}',
        b'{"records": "rec-1"}',
    ])
    def test_load_wrong_layout_starts_empty(self, raw):
        history = ExecutionHistory(MemoryBlobStore({"automation_history": raw}))
        history.load()
        assert len(history) == 0

    def test_load_skips_records_of_wrong_type(self):
        payload = {"records": [None, "rec-1", 7, _record(0).to_dict()]}
        blobs = MemoryBlobStore({"automation_history": json.dumps(payload).encode()})
        history = ExecutionHistory(blobs)
        history.load()
        assert [r.record_id for r in history.records] == ["rec-0"]

    @pytest.mark.asyncio
    async def test_failed_append_keeps_records(self):
        blobs = MemoryBlobStore()
        history = ExecutionHistory(blobs)
        await history.append(_record(0))
        blobs.save_blob = MagicMock(side_effect=StorageError("disk full"))
        with pytest.raises(StorageError):
            await history.append(_record(1))
        assert [r.record_id for r in history.records] == ["rec-0"]
