"""Subversion backend: working-copy management and diff queries via the svn CLI."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from chefsync.exceptions import CommandError
from chefsync.vcs.base import ChangeKind, DiffEntry, run_command

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_REVISION_RE = re.compile(r"^\d+$")


def parse_summarize(output: str) -> list[DiffEntry]:
    """Parse ``svn diff --summarize`` output.

    Each line is two status columns (item, properties) followed by the path.
    Property-only changes count as modifications.
    """
    entries: list[DiffEntry] = []
    for line in output.splitlines():
        if len(line) < 3 or not line[2:].strip():
            continue
        item_status, prop_status = line[0], line[1]
        path = line[2:].strip().replace("\\", "/")
        if item_status == "A":
            entries.append(DiffEntry(ChangeKind.ADDED, path))
        elif item_status == "D":
            entries.append(DiffEntry(ChangeKind.DELETED, path))
        elif item_status == "M" or (item_status == " " and prop_status == "M"):
            entries.append(DiffEntry(ChangeKind.MODIFIED, path))
    return entries


class SvnBackend:
    """Wraps svn CLI operations on the working copy."""

    name = "svn"

    def __init__(self, working_copy: Path) -> None:
        self.working_copy = working_copy

    def _run(self, *args: str) -> str:
        """Run an svn command in the working copy."""
        return run_command(["svn", "--non-interactive", *args], cwd=self.working_copy)

    def clone(self, url: str) -> None:
        self.working_copy.parent.mkdir(parents=True, exist_ok=True)
        run_command(["svn", "--non-interactive", "checkout", url, str(self.working_copy)])
        logger.info("Checked out %s into %s", url, self.working_copy)

    def clean_untracked(self) -> None:
        self._run("cleanup")
        self._run("cleanup", "--remove-unversioned")

    def revert_local_changes(self) -> None:
        self._run("revert", "-R", ".")

    def update_to_head(self) -> None:
        self._run("update")

    def diff_summary(self, path: str, from_revision: str, to_revision: str) -> list[DiffEntry]:
        revision_range = f"{from_revision}:{to_revision}"
        if not (_REVISION_RE.match(from_revision) and _REVISION_RE.match(to_revision)):
            argv = ["svn", "diff", "--summarize", "-r", revision_range, path]
            raise CommandError(argv, 1, f"invalid revision range {revision_range!r}")
        output = self._run("diff", "--summarize", "-r", revision_range, path)
        return parse_summarize(output)

    def was_directory(self, path: str, revision: str) -> bool:
        if not _REVISION_RE.match(revision):
            argv = ["svn", "info", "-r", revision, path]
            raise CommandError(argv, 1, f"invalid revision {revision!r}")
        # Removed paths are gone from the working copy; ask the repository by URL
        root_url = self._run("info", "--show-item", "url", ".").strip()
        target = f"{root_url}/{path}@{revision}"
        return self._run("info", "--show-item", "kind", target).strip() == "dir"

    def local_head_revision(self) -> str:
        return self._run("info", "--show-item", "revision").strip()

    def latest_revision(self) -> str:
        return self._run("info", "--show-item", "revision", "-r", "HEAD").strip()
