"""Sync service: one locked run from working-copy update to checkpoint advance."""

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from chefsync.exceptions import (
    CleanupError,
    CloneError,
    CommandError,
    ConfigurationError,
    ExitCode,
    RevertError,
    RevisionQueryError,
    RunInterrupted,
    SyncError,
    UpdateError,
)
from chefsync.services.checkpoint_service import CheckpointStore
from chefsync.services.hook_service import SyncHooks, load_hooks
from chefsync.services.knife_service import KnifeClient
from chefsync.services.lock_service import LockOutcome, RunLock
from chefsync.services.publish_service import publish
from chefsync.services.resolve_service import ChangeSet, resolve_changes
from chefsync.vcs.registry import get_backend

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from chefsync.config import Settings
    from chefsync.services.publish_service import ConfigServerClient
    from chefsync.vcs.base import VcsBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INTERRUPT_SIGNALS = ("SIGTERM", "SIGHUP")


@dataclass
class RunResult:
    """Outcome of a run: the exit status plus what was published."""

    exit_code: int
    message: str
    change_set: ChangeSet | None = None
    head: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.OK


@dataclass
class StatusReport:
    """What a run would do right now, without doing it."""

    checkpoint: str
    local_head: str
    latest: str
    change_set: ChangeSet


@contextmanager
def interruptible() -> Iterator[None]:
    """Turn SIGTERM and SIGHUP into RunInterrupted so cleanup blocks still run."""

    def _raise(signum: int, frame: Any) -> None:
        raise RunInterrupted(signum)

    previous: dict[int, Any] = {}
    for name in _INTERRUPT_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            previous[signum] = signal.signal(signum, _raise)
        except ValueError:
            # Signal handlers can only be installed from the main thread
            continue
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _stage(error_cls: type[SyncError], description: str, func: Callable[..., T], *args: Any) -> T:
    """Call an external-tool operation, converting its failure into ``error_cls``."""
    try:
        return func(*args)
    except CommandError as exc:
        msg = f"{description} failed: {exc}"
        raise error_cls(msg, output=exc.output) from exc


class SyncService:
    """Runs lock, working-copy sync, resolve, publish and checkpoint advance in order."""

    def __init__(
        self,
        settings: Settings,
        vcs: VcsBackend,
        client: ConfigServerClient,
        *,
        hooks: SyncHooks | None = None,
        lock: RunLock | None = None,
        checkpoints: CheckpointStore | None = None,
    ) -> None:
        self.settings = settings
        self.vcs = vcs
        self.client = client
        self.hooks = hooks or SyncHooks(settings)
        self.lock = lock or RunLock(settings.lock_path, settings.lock_stale_after_seconds)
        self.checkpoints = checkpoints or CheckpointStore(settings.checkpoint_path)

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncService:
        """Build the service with the configured VCS backend, knife client and hooks."""
        vcs = get_backend(settings.vcs_backend, settings.working_copy)
        client = KnifeClient(
            settings.working_copy,
            settings.cookbook_paths,
            settings.role_path,
            command=settings.knife_command,
            config_file=settings.knife_config,
        )
        return cls(settings, vcs, client, hooks=load_hooks(settings))

    def sync_working_copy(self) -> None:
        """Check out the repository, or clean, revert and update the existing working copy."""
        working_copy = self.settings.working_copy
        if not working_copy.exists():
            logger.info("Working copy %s missing; cloning %s", working_copy, self.settings.repo_url)
            _stage(CloneError, "Clone", self.vcs.clone, self.settings.repo_url)
            return
        _stage(CleanupError, "Working-copy cleanup", self.vcs.clean_untracked)
        _stage(RevertError, "Reverting local changes", self.vcs.revert_local_changes)
        _stage(UpdateError, "Update", self.vcs.update_to_head)
        logger.debug("Working copy %s updated", working_copy)

    def _resolve(self, checkpoint: str, head: str) -> ChangeSet:
        return resolve_changes(
            self.vcs,
            self.settings.working_copy,
            checkpoint,
            head,
            self.settings.cookbook_paths,
            self.settings.role_path,
            role_extensions=self.settings.role_extensions,
        )

    def _run_locked(self) -> RunResult:
        self.hooks.after_lock()
        self.sync_working_copy()
        self.hooks.after_sync()

        checkpoint = self.checkpoints.load()
        head = _stage(
            RevisionQueryError, "Reading the working-copy revision", self.vcs.local_head_revision
        )
        if head == checkpoint:
            logger.info("Already synchronized at revision %s", head)
            return RunResult(ExitCode.OK, f"Already at revision {head}", ChangeSet(), head)

        change_set = self._resolve(checkpoint, head)
        if change_set.is_empty:
            logger.info("No cookbook or role changes between %s and %s", checkpoint, head)
        else:
            publish(change_set, self.client)

        self.checkpoints.save(head)
        return RunResult(ExitCode.OK, f"Synchronized to revision {head}", change_set, head)

    def run(self) -> RunResult:
        """Perform one run. Failures are logged and reported through the exit code."""
        self.hooks.before_lock()
        try:
            # Handlers cover the whole time the marker exists, including acquire and release
            with interruptible(), self.lock.held() as outcome:
                if outcome is LockOutcome.ALREADY_HELD_FRESH:
                    return RunResult(ExitCode.OK, "Another run is in progress")
                result = self._run_locked()
        except SyncError as exc:
            result = RunResult(int(exc.exit_code), str(exc))
            logger.error("%s (exit status %d)", exc, result.exit_code)
            if exc.output:
                logger.error("Command output:\n%s", exc.output)
        else:
            logger.info(result.message)
        self.hooks.after_run(result)
        return result

    def status(self) -> StatusReport:
        """Resolve the pending change set against the working copy as it is."""
        if not self.settings.working_copy.exists():
            msg = f"Working copy {self.settings.working_copy} does not exist yet"
            raise ConfigurationError(msg)
        checkpoint = self.checkpoints.load()
        head = _stage(
            RevisionQueryError, "Reading the working-copy revision", self.vcs.local_head_revision
        )
        latest = _stage(
            RevisionQueryError, "Reading the latest upstream revision", self.vcs.latest_revision
        )
        change_set = ChangeSet() if head == checkpoint else self._resolve(checkpoint, head)
        return StatusReport(checkpoint, head, latest, change_set)
