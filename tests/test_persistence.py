"""
Tests for atomic JSON snapshots and the debounced writer.
"""

import asyncio
import json

import pytest

from vaultrag.errors import StoreInitializationError
from vaultrag.persistence import DebouncedWriter, read_json, write_json_atomic


class TestJsonFiles:

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "nested" / "data.json"
        write_json_atomic(path, {"a": [1, 2], "b": "ü"})
        assert read_json(path) == {"a": [1, 2], "b": "ü"}
        assert path.read_text(encoding="utf-8") == '{"a":[1,2],"b":"ü"}'

    def test_no_temp_files_left(self, tmp_path):
        path = tmp_path / "data.json"
        write_json_atomic(path, [1])
        write_json_atomic(path, [2])
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    def test_missing_file_reads_none(self, tmp_path):
        assert read_json(tmp_path / "absent.json") is None

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("{not json")
        with pytest.raises(StoreInitializationError):
            read_json(path)

    def test_failed_write_keeps_previous_file(self, tmp_path):
        path = tmp_path / "data.json"
        write_json_atomic(path, {"ok": True})
        with pytest.raises(TypeError):
            write_json_atomic(path, {"bad": object()})
        assert json.loads(path.read_text()) == {"ok": True}
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]


class TestDebouncedWriter:

    def test_without_loop_only_marks_dirty(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay=0.01)
        writer.schedule()
        assert writer.dirty
        assert not writer.pending
        assert writes == []
        assert writer.flush() is True
        assert writes == [1]
        assert not writer.dirty

    def test_flush_when_clean_does_nothing(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1))
        assert writer.flush() is False
        assert writes == []

    def test_failed_flush_stays_dirty(self):
        def fail():
            raise OSError("disk full")

        writer = DebouncedWriter(fail)
        writer.schedule()
        with pytest.raises(OSError):
            writer.flush()
        assert writer.dirty

    def test_negative_delay_clamped(self):
        writer = DebouncedWriter(lambda: None)
        writer.delay = -5
        assert writer.delay == 0.0

    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_write(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay=0.05)
        for _ in range(10):
            writer.schedule()
        assert writer.pending
        await asyncio.sleep(0.15)
        assert writes == [1]
        assert not writer.dirty
        assert not writer.pending

    @pytest.mark.asyncio
    async def test_flush_cancels_pending_timer(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay=0.05)
        writer.schedule()
        writer.flush()
        await asyncio.sleep(0.1)
        assert writes == [1]

    @pytest.mark.asyncio
    async def test_deferred_write_error_is_logged_not_raised(self, caplog):
        def fail():
            raise OSError("read-only filesystem")

        writer = DebouncedWriter(fail, delay=0.01, name="test")
        writer.schedule()
        await asyncio.sleep(0.05)
        assert writer.dirty
        assert "read-only filesystem" in caplog.text
