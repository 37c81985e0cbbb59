"""Git backend: working-copy management and diff queries via the git CLI."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from chefsync.exceptions import CommandError
from chefsync.vcs.base import ChangeKind, DiffEntry, run_command

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_COMMIT_RE = re.compile(r"^[0-9a-f]{4,40}$")


def parse_name_status(output: str) -> list[DiffEntry]:
    """Parse ``git diff --name-status --no-renames`` output."""
    entries: list[DiffEntry] = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        parts = stripped.split("\t")
        if len(parts) < 2:
            continue
        status = parts[0][:1]
        if status in {"A", "C"}:
            entries.append(DiffEntry(ChangeKind.ADDED, parts[-1]))
        elif status in {"M", "T"}:
            entries.append(DiffEntry(ChangeKind.MODIFIED, parts[-1]))
        elif status == "D":
            entries.append(DiffEntry(ChangeKind.DELETED, parts[-1]))
    return entries


class GitBackend:
    """Wraps git CLI operations on the working copy."""

    name = "git"

    def __init__(self, working_copy: Path) -> None:
        self.working_copy = working_copy

    def _run(self, *args: str) -> str:
        """Run a git command in the working copy."""
        return run_command(["git", "-c", "core.quotePath=false", *args], cwd=self.working_copy)

    def clone(self, url: str) -> None:
        self.working_copy.parent.mkdir(parents=True, exist_ok=True)
        run_command(["git", "clone", "--", url, str(self.working_copy)])
        logger.info("Cloned %s into %s", url, self.working_copy)

    def clean_untracked(self) -> None:
        # Ignored files survive: knife credentials usually live in an ignored .chef/
        self._run("clean", "-fd")

    def revert_local_changes(self) -> None:
        self._run("reset", "--hard", "HEAD")

    def update_to_head(self) -> None:
        self._run("pull", "--ff-only")

    def diff_summary(self, path: str, from_revision: str, to_revision: str) -> list[DiffEntry]:
        for revision in (from_revision, to_revision):
            if not _COMMIT_RE.match(revision):
                argv = ["git", "diff", f"{from_revision}..{to_revision}"]
                raise CommandError(argv, 128, f"invalid commit hash {revision!r}")
        output = self._run(
            "diff", "--name-status", "--no-renames", from_revision, to_revision, "--", path
        )
        return parse_name_status(output)

    def was_directory(self, path: str, revision: str) -> bool:
        if not _COMMIT_RE.match(revision):
            argv = ["git", "cat-file", "-t", f"{revision}:{path}"]
            raise CommandError(argv, 128, f"invalid commit hash {revision!r}")
        return self._run("cat-file", "-t", f"{revision}:{path}").strip() == "tree"

    def local_head_revision(self) -> str:
        return self._run("rev-parse", "HEAD").strip()

    def latest_revision(self) -> str:
        output = self._run("ls-remote", "origin", "HEAD").strip()
        if not output:
            raise CommandError(["git", "ls-remote", "origin", "HEAD"], 1, "remote has no HEAD")
        return output.split()[0]
