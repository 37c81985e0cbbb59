"""Tests for the single-instance run lock."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from chefsync.services.lock_service import (
    LockOutcome,
    LockRecord,
    RunLock,
    descendant_pids,
    is_running,
    process_start_tick,
)

if TYPE_CHECKING:
    from pathlib import Path

linux_only = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs /proc")

STALE_AFTER = 600.0
MARKER_TIME = 1_000_000.0


def _stale_marker(path: Path, content: str = "") -> None:
    path.write_text(content)
    os.utime(path, (MARKER_TIME, MARKER_TIME))


def _lock_at(path: Path, now: float) -> RunLock:
    return RunLock(path, STALE_AFTER, clock=lambda: now)


class TestAcquire:
    def test_acquires_when_free(self, tmp_path: Path) -> None:
        lock = RunLock(tmp_path / "state" / "run.lock", STALE_AFTER)
        assert lock.acquire() is LockOutcome.ACQUIRED
        record = lock.read_record()
        assert record is not None
        assert record.pid == os.getpid()
        assert record.run_token == lock.record.run_token  # type: ignore[union-attr]

    def test_second_acquire_sees_fresh_lock(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        assert RunLock(path, STALE_AFTER).acquire() is LockOutcome.ACQUIRED
        assert RunLock(path, STALE_AFTER).acquire() is LockOutcome.ALREADY_HELD_FRESH
        assert path.exists()

    def test_age_just_below_threshold_is_fresh(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path)
        lock = _lock_at(path, MARKER_TIME + STALE_AFTER - 1)
        assert lock.acquire() is LockOutcome.ALREADY_HELD_FRESH

    def test_age_exactly_at_threshold_reclaims(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path)
        lock = _lock_at(path, MARKER_TIME + STALE_AFTER)
        assert lock.acquire() is LockOutcome.ACQUIRED_AFTER_RECLAIM
        record = lock.read_record()
        assert record is not None
        assert record.pid == os.getpid()
        assert path.stat().st_mtime > MARKER_TIME

    def test_reclaim_logs_warning(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path)
        with caplog.at_level("WARNING", logger="chefsync.services.lock_service"):
            _lock_at(path, MARKER_TIME + STALE_AFTER * 2).acquire()
        assert any("stale" in r.getMessage() for r in caplog.records)

    def test_exited_holder_is_not_signalled(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path, LockRecord(pid=4_194_303).model_dump_json())
        with (
            patch("chefsync.services.lock_service.is_running", return_value=False),
            patch("chefsync.services.lock_service.os.kill") as mock_kill,
        ):
            outcome = _lock_at(path, MARKER_TIME + STALE_AFTER).acquire()
        assert outcome is LockOutcome.ACQUIRED_AFTER_RECLAIM
        mock_kill.assert_not_called()

    def test_reclaim_kills_holder_and_descendants(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path, LockRecord(pid=4242, process_start=77).model_dump_json())
        with (
            patch("chefsync.services.lock_service.is_running", return_value=True),
            patch("chefsync.services.lock_service.process_start_tick", return_value=77),
            patch("chefsync.services.lock_service.descendant_pids", return_value=[4244, 4243]),
            patch("chefsync.services.lock_service.os.kill") as mock_kill,
        ):
            outcome = _lock_at(path, MARKER_TIME + STALE_AFTER).acquire()
        assert outcome is LockOutcome.ACQUIRED_AFTER_RECLAIM
        killed = [call.args[0] for call in mock_kill.call_args_list]
        assert killed == [4244, 4243, 4242]

    def test_reused_pid_is_not_killed(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path, LockRecord(pid=4242, process_start=77).model_dump_json())
        with (
            patch("chefsync.services.lock_service.is_running", return_value=True),
            patch("chefsync.services.lock_service.process_start_tick", return_value=99),
            patch("chefsync.services.lock_service.os.kill") as mock_kill,
        ):
            outcome = _lock_at(path, MARKER_TIME + STALE_AFTER).acquire()
        assert outcome is LockOutcome.ACQUIRED_AFTER_RECLAIM
        mock_kill.assert_not_called()

    def test_marker_replaced_during_reclaim_is_left_alone(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        _stale_marker(path, LockRecord(pid=4242).model_dump_json())
        lock = _lock_at(path, MARKER_TIME + STALE_AFTER)
        winner = LockRecord(pid=5151)
        read_record = lock.read_record

        def take_over_then_read() -> LockRecord | None:
            path.unlink()
            path.write_text(winner.model_dump_json())
            return read_record()

        with (
            patch.object(lock, "read_record", side_effect=take_over_then_read),
            patch("chefsync.services.lock_service.is_running", return_value=True),
            patch("chefsync.services.lock_service.os.kill") as mock_kill,
        ):
            outcome = lock.acquire()
        assert outcome is LockOutcome.ALREADY_HELD_FRESH
        mock_kill.assert_not_called()
        current = lock.read_record()
        assert current is not None
        assert current.run_token == winner.run_token

    @linux_only
    def test_reclaim_terminates_a_real_process(self, tmp_path: Path) -> None:
        proc = subprocess.Popen(["sleep", "60"])
        try:
            record = LockRecord(pid=proc.pid, process_start=process_start_tick(proc.pid))
            path = tmp_path / "run.lock"
            _stale_marker(path, record.model_dump_json())
            outcome = _lock_at(path, MARKER_TIME + STALE_AFTER).acquire()
            assert outcome is LockOutcome.ACQUIRED_AFTER_RECLAIM
            assert proc.wait(timeout=10) == -signal.SIGKILL
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()


class TestRelease:
    def test_release_removes_marker(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        lock = RunLock(path, STALE_AFTER)
        lock.acquire()
        lock.release()
        assert not path.exists()

    def test_release_without_marker_is_fine(self, tmp_path: Path) -> None:
        RunLock(tmp_path / "run.lock", STALE_AFTER).release()

    def test_held_releases_on_error(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        lock = RunLock(path, STALE_AFTER)
        with pytest.raises(RuntimeError), lock.held() as outcome:
            assert outcome is LockOutcome.ACQUIRED
            assert path.exists()
            raise RuntimeError("boom")
        assert not path.exists()

    def test_held_releases_on_keyboard_interrupt(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        with pytest.raises(KeyboardInterrupt), RunLock(path, STALE_AFTER).held():
            raise KeyboardInterrupt
        assert not path.exists()

    def test_held_releases_when_acquire_is_interrupted(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        lock = RunLock(path, STALE_AFTER)
        create = lock._create

        def create_then_interrupt() -> bool:
            create()
            raise KeyboardInterrupt

        with (
            patch.object(lock, "_create", side_effect=create_then_interrupt),
            pytest.raises(KeyboardInterrupt),
            lock.held(),
        ):
            pass
        assert not path.exists()

    def test_held_keeps_a_fresh_lock_owned_by_someone_else(self, tmp_path: Path) -> None:
        path = tmp_path / "run.lock"
        RunLock(path, STALE_AFTER).acquire()
        with RunLock(path, STALE_AFTER).held() as outcome:
            assert outcome is LockOutcome.ALREADY_HELD_FRESH
        assert path.exists()


@linux_only
class TestProcHelpers:
    def test_start_tick_of_self(self) -> None:
        assert isinstance(process_start_tick(os.getpid()), int)

    def test_descendants_include_child(self) -> None:
        proc = subprocess.Popen(["sleep", "60"])
        try:
            assert proc.pid in descendant_pids(os.getpid())
        finally:
            proc.kill()
            proc.wait()

    def test_is_running(self) -> None:
        assert is_running(os.getpid())
