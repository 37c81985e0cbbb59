"""VCS port: the protocol backends implement and the data classes they return."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from chefsync.exceptions import CommandError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

BOOTSTRAP_REVISION = "0"


class ChangeKind(StrEnum):
    """Kind of change reported by a diff summary."""

    ADDED = "A"
    MODIFIED = "M"
    DELETED = "D"


@dataclass(frozen=True)
class DiffEntry:
    """One changed path. ``path`` is POSIX-style, relative to the working-copy root."""

    kind: ChangeKind
    path: str


@runtime_checkable
class VcsBackend(Protocol):
    """Operations the synchronizer needs from a version-control client."""

    name: str
    working_copy: Path

    def clone(self, url: str) -> None:
        """Create the working copy from ``url``."""
        ...

    def clean_untracked(self) -> None:
        """Remove files that are not under version control."""
        ...

    def revert_local_changes(self) -> None:
        """Discard local modifications to tracked files."""
        ...

    def update_to_head(self) -> None:
        """Bring the working copy up to the latest upstream revision."""
        ...

    def diff_summary(self, path: str, from_revision: str, to_revision: str) -> list[DiffEntry]:
        """List changes under ``path`` between two revisions."""
        ...

    def was_directory(self, path: str, revision: str) -> bool:
        """Return whether ``path`` was a directory at ``revision``."""
        ...

    def local_head_revision(self) -> str:
        """Return the revision the working copy is at."""
        ...

    def latest_revision(self) -> str:
        """Return the latest revision available upstream."""
        ...


def run_command(
    argv: list[str],
    *,
    cwd: Path | None = None,
) -> str:
    """Run an external command and return its stdout.

    Raises CommandError with the combined stdout and stderr when the command
    exits non-zero or cannot be started.
    """
    logger.debug("Running %s", " ".join(argv))
    try:
        result = subprocess.run(
            argv,
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        raise CommandError(argv, 127, str(exc)) from exc
    if result.returncode != 0:
        output = "\n".join(part.strip() for part in (result.stdout, result.stderr) if part.strip())
        raise CommandError(argv, result.returncode, output)
    return result.stdout
