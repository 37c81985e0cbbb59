"""Lock service: at most one synchronization run at a time.

The lock is a marker file created with ``O_EXCL``. Its modification time is
the acquisition time; its content is a JSON ``LockRecord`` naming the holder.
A marker older than the staleness threshold is taken over: the recorded
holder and its descendants are killed and a fresh marker is written.
"""

from __future__ import annotations

import logging
import os
import signal
import time
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

_PROC = Path("/proc")
_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


class LockOutcome(StrEnum):
    """Result of trying to acquire the run lock."""

    ACQUIRED = "acquired"
    ALREADY_HELD_FRESH = "already_held_fresh"
    ACQUIRED_AFTER_RECLAIM = "acquired_after_reclaim"


class LockRecord(BaseModel):
    """Holder details written into the lock marker."""

    pid: int = Field(description="Process ID holding the lock")
    process_start: int | None = Field(
        default=None, description="Kernel start time of the holder, to detect PID reuse"
    )
    run_token: str = Field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def _proc_stat_fields(pid: int) -> list[str] | None:
    """Fields of /proc/<pid>/stat after the command name, or None if unavailable."""
    try:
        raw = (_PROC / str(pid) / "stat").read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    # The command name is parenthesised and may itself contain spaces or parens
    _, _, rest = raw.rpartition(")")
    fields = rest.split()
    return fields or None


def process_start_tick(pid: int) -> int | None:
    """Start time of ``pid`` in clock ticks since boot (Linux only)."""
    fields = _proc_stat_fields(pid)
    if fields is None or len(fields) < 20:
        return None
    try:
        return int(fields[19])
    except ValueError:
        return None


def descendant_pids(pid: int) -> list[int]:
    """All descendants of ``pid``, deepest first. Empty where /proc is unavailable."""
    children: dict[int, list[int]] = {}
    try:
        entries = list(_PROC.iterdir())
    except OSError:
        return []
    for entry in entries:
        if not entry.name.isdigit():
            continue
        fields = _proc_stat_fields(int(entry.name))
        if fields is None or len(fields) < 2:
            continue
        try:
            parent = int(fields[1])
        except ValueError:
            continue
        children.setdefault(parent, []).append(int(entry.name))

    found: list[int] = []
    stack = list(children.get(pid, []))
    while stack:
        child = stack.pop()
        found.append(child)
        stack.extend(children.get(child, []))
    found.reverse()
    return found


def is_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RunLock:
    """Single-instance lock backed by a marker file."""

    def __init__(
        self,
        path: Path,
        stale_after: float,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.stale_after = stale_after
        self._clock = clock
        self.record: LockRecord | None = None

    def _create(self) -> bool:
        """Create the marker exclusively. Returns False if it already exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        pid = os.getpid()
        record = LockRecord(pid=pid, process_start=process_start_tick(pid))
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        self.record = record
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(record.model_dump_json())
        return True

    def _stamp(self) -> tuple[int, int] | None:
        """Identify the current marker by inode and mtime, or None if it is missing."""
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return stat.st_ino, stat.st_mtime_ns

    def read_record(self) -> LockRecord | None:
        """Return the holder recorded in the marker, or None if missing or unreadable."""
        try:
            return LockRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as exc:
            logger.warning("Unreadable lock record in %s: %s", self.path, exc)
            return None

    def _terminate_holder(self, record: LockRecord | None) -> None:
        if record is None:
            logger.warning("No holder recorded in %s; replacing the marker only", self.path)
            return
        if record.pid == os.getpid():
            return
        if not is_running(record.pid):
            logger.info("Previous lock holder %d is no longer running", record.pid)
            return
        current_start = process_start_tick(record.pid)
        if (
            record.process_start is not None
            and current_start is not None
            and current_start != record.process_start
        ):
            logger.warning(
                "PID %d now belongs to an unrelated process; not terminating it", record.pid
            )
            return

        victims = [*descendant_pids(record.pid), record.pid]
        logger.warning(
            "Terminating stale run %d and %d descendant(s)", record.pid, len(victims) - 1
        )
        for victim in victims:
            try:
                os.kill(victim, _KILL_SIGNAL)
            except ProcessLookupError:
                continue

    def acquire(self) -> LockOutcome:
        """Try to become the single running instance."""
        if self._create():
            logger.debug("Acquired lock %s", self.path)
            return LockOutcome.ACQUIRED

        stamp = self._stamp()
        if stamp is None:
            # The holder released between our create attempt and the stat
            return LockOutcome.ACQUIRED if self._create() else LockOutcome.ALREADY_HELD_FRESH

        age = self._clock() - stamp[1] / 1e9
        if age < self.stale_after:
            logger.warning(
                "Another run holds %s (age %.0fs, stale after %.0fs); nothing to do",
                self.path,
                age,
                self.stale_after,
            )
            return LockOutcome.ALREADY_HELD_FRESH

        logger.warning(
            "Lock %s is stale (age %.0fs, stale after %.0fs); reclaiming it",
            self.path,
            age,
            self.stale_after,
        )
        # Only the marker judged stale may be acted on; a changed stamp means another run
        # already reclaimed it.
        record = self.read_record()
        if self._stamp() == stamp:
            self._terminate_holder(record)
            if self._stamp() == stamp:
                self.path.unlink(missing_ok=True)
                if self._create():
                    return LockOutcome.ACQUIRED_AFTER_RECLAIM
        logger.warning("Another run took over %s first", self.path)
        return LockOutcome.ALREADY_HELD_FRESH

    def release(self) -> None:
        """Remove the marker."""
        self.path.unlink(missing_ok=True)
        self.record = None
        logger.debug("Released lock %s", self.path)

    @contextmanager
    def held(self) -> Iterator[LockOutcome]:
        """Acquire for the duration of the block; release on every exit path if acquired."""
        try:
            yield self.acquire()
        finally:
            # record is set once this run has written the marker, even if acquire was cut short
            if self.record is not None:
                self.release()
