"""
Unit tests for the log file reaper.
"""
import asyncio
import os
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from scheduler_lifecycle.services.log_reaper_service import LogReaperService


CUTOFF = datetime(2026, 5, 16, 12, 0, 0, tzinfo=timezone.utc)


def _write(path: Path, modified_at: datetime, size: int = 10) -> Path:
    path.write_bytes(b"x" * size)
    timestamp = modified_at.timestamp()
    os.utime(path, (timestamp, timestamp))
    return path


class TestLogReaper:

    @pytest.mark.asyncio
    async def test_deletes_only_old_matching_files(self, tmp_path):
        """
        GIVEN old and recent .log/.txt files plus an old file of another type
        WHEN the reaper runs
        THEN only the old .log and .txt files are deleted
        """
        old_log = _write(tmp_path / "app-1.log", CUTOFF - timedelta(days=1), size=100)
        old_txt = _write(tmp_path / "app-1.txt", CUTOFF - timedelta(days=2), size=50)
        recent_log = _write(tmp_path / "app-2.log", CUTOFF + timedelta(days=1))
        old_other = _write(tmp_path / "data.csv", CUTOFF - timedelta(days=10))

        outcome = await LogReaperService().reap(tmp_path, CUTOFF)

        assert outcome.deleted_count == 2
        assert outcome.bytes_freed == 150
        assert outcome.errors == []
        assert not old_log.exists()
        assert not old_txt.exists()
        assert recent_log.exists()
        assert old_other.exists()

    @pytest.mark.asyncio
    async def test_missing_directory_is_not_an_error(self, tmp_path):
        outcome = await LogReaperService().reap(tmp_path / "does-not-exist", CUTOFF)

        assert outcome.deleted_count == 0
        assert outcome.errors == []

    @pytest.mark.asyncio
    async def test_subdirectories_are_not_scanned(self, tmp_path):
        nested = tmp_path / "archive"
        nested.mkdir()
        nested_log = _write(nested / "old.log", CUTOFF - timedelta(days=5))

        outcome = await LogReaperService().reap(tmp_path, CUTOFF)

        assert outcome.deleted_count == 0
        assert nested_log.exists()

    @pytest.mark.asyncio
    async def test_per_file_failure_is_skipped(self, tmp_path):
        """
        GIVEN two old log files where deleting the first fails
        WHEN the reaper runs
        THEN the failure is recorded and the second file is still deleted
        """
        locked = _write(tmp_path / "a.log", CUTOFF - timedelta(days=3))
        deletable = _write(tmp_path / "b.log", CUTOFF - timedelta(days=3))
        original_unlink = Path.unlink

        def unlink(self, *args, **kwargs):
            if self.name == "a.log":
                raise PermissionError("file is locked")
            return original_unlink(self, *args, **kwargs)

        with patch.object(Path, "unlink", unlink):
            outcome = await LogReaperService().reap(tmp_path, CUTOFF)

        assert outcome.deleted_count == 1
        assert len(outcome.errors) == 1
        assert "a.log" in outcome.errors[0]
        assert locked.exists()
        assert not deletable.exists()

    @pytest.mark.asyncio
    async def test_custom_patterns(self, tmp_path):
        gz = _write(tmp_path / "old.log.gz", CUTOFF - timedelta(days=3))
        log = _write(tmp_path / "old.log", CUTOFF - timedelta(days=3))

        outcome = await LogReaperService().reap(tmp_path, CUTOFF, patterns=["*.gz"])

        assert outcome.deleted_count == 1
        assert not gz.exists()
        assert log.exists()

    @pytest.mark.asyncio
    async def test_reap_all_sums_directories(self, tmp_path):
        first = tmp_path / "api"
        second = tmp_path / "worker"
        first.mkdir()
        second.mkdir()
        _write(first / "a.log", CUTOFF - timedelta(days=1), size=5)
        _write(second / "b.txt", CUTOFF - timedelta(days=1), size=7)

        outcome = await LogReaperService().reap_all([first, second, tmp_path / "missing"], CUTOFF)

        assert outcome.deleted_count == 2
        assert outcome.bytes_freed == 12

    @pytest.mark.asyncio
    async def test_cancellation_stops_the_sweep(self, tmp_path):
        _write(tmp_path / "a.log", CUTOFF - timedelta(days=1))
        cancel_event = asyncio.Event()
        cancel_event.set()

        outcome = await LogReaperService().reap(tmp_path, CUTOFF, cancel_event=cancel_event)

        assert outcome.cancelled
        assert outcome.deleted_count == 0
