"""Error taxonomy and process exit codes.

Convention:
- ``CommandError``: an external tool (git, svn, knife) exited non-zero.
  Raised by the VCS adapters and the knife client; never reaches the exit
  status directly.
- ``SyncError`` subclasses: a failed stage of a run. Each carries the stable
  exit code the orchestrator reports and, when available, the captured output
  of the command that failed. Services wrap ``CommandError`` into the
  stage-specific subclass with ``raise ... from exc``.
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Process exit statuses. Values are part of the scripting interface."""

    OK = 0
    INTERNAL_ERROR = 1
    CLEANUP_FAILED = 2
    REVERT_FAILED = 3
    UPDATE_FAILED = 4
    REVISION_QUERY_FAILED = 5
    COOKBOOK_UPLOAD_FAILED = 6
    COOKBOOK_DELETE_FAILED = 7
    ROLE_UPLOAD_FAILED = 8
    ROLE_DELETE_FAILED = 9
    UNSUPPORTED_BACKEND = 10
    CLONE_FAILED = 11
    DIFF_FAILED = 12
    CONFIG_ERROR = 13
    CHECKPOINT_FAILED = 14


class CommandError(Exception):
    """An external command exited with a non-zero status."""

    def __init__(self, argv: Sequence[str], returncode: int, output: str) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output
        super().__init__(f"{' '.join(self.argv)} exited with status {returncode}")


class SyncError(Exception):
    """Base class for failures that end a run with a specific exit code."""

    exit_code: ExitCode = ExitCode.INTERNAL_ERROR

    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class CloneError(SyncError):
    exit_code = ExitCode.CLONE_FAILED


class CleanupError(SyncError):
    exit_code = ExitCode.CLEANUP_FAILED


class RevertError(SyncError):
    exit_code = ExitCode.REVERT_FAILED


class UpdateError(SyncError):
    exit_code = ExitCode.UPDATE_FAILED


class RevisionQueryError(SyncError):
    exit_code = ExitCode.REVISION_QUERY_FAILED


class DiffQueryError(SyncError):
    """A diff summary query failed while resolving changes."""

    exit_code = ExitCode.DIFF_FAILED

    def __init__(
        self, path: str, from_revision: str, to_revision: str, *, output: str = ""
    ) -> None:
        self.path = path
        self.from_revision = from_revision
        self.to_revision = to_revision
        super().__init__(
            f"Diff query for {path!r} failed for revisions {from_revision}:{to_revision}",
            output=output,
        )


class CookbookUploadError(SyncError):
    exit_code = ExitCode.COOKBOOK_UPLOAD_FAILED


class CookbookDeleteError(SyncError):
    exit_code = ExitCode.COOKBOOK_DELETE_FAILED


class RoleUploadError(SyncError):
    exit_code = ExitCode.ROLE_UPLOAD_FAILED


class RoleDeleteError(SyncError):
    exit_code = ExitCode.ROLE_DELETE_FAILED


class UnsupportedBackendError(SyncError):
    exit_code = ExitCode.UNSUPPORTED_BACKEND


class ConfigurationError(SyncError):
    """Invalid or incomplete configuration, detected before any mutation."""

    exit_code = ExitCode.CONFIG_ERROR


class CheckpointError(SyncError):
    exit_code = ExitCode.CHECKPOINT_FAILED


class RunInterrupted(SyncError):
    """The run received a termination signal."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return 128 + self.signum
