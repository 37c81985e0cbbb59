"""Shared test fixtures and fakes for chefsync."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import pytest

from chefsync.config import Settings
from chefsync.exceptions import CommandError
from chefsync.vcs.base import ChangeKind, DiffEntry

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from chefsync.services.resolve_service import CookbookSelection


class FakeVcs:
    """In-memory VCS backend.

    ``changes`` is the diff between any two revisions, with paths relative to
    the working copy; ``diff_summary`` returns the entries below the queried
    path, the way a real client scopes a diff. A path counts as a directory at
    the old revision when it is listed in ``directories`` or some change lies
    below it.
    """

    name = "fake"

    def __init__(
        self,
        working_copy: Path,
        changes: Iterable[tuple[str, str]] = (),
        *,
        head: str = "15",
        latest: str | None = None,
        directories: Iterable[str] = (),
    ) -> None:
        self.working_copy = working_copy
        self.changes = [DiffEntry(ChangeKind(kind), path) for kind, path in changes]
        self.directories = {PurePosixPath(path) for path in directories}
        self.head = head
        self.latest = latest or head
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[str, CommandError] = {}

    def fail(self, operation: str, output: str = "boom") -> None:
        self.failures[operation] = CommandError(["fake", operation], 1, output)

    def _call(self, operation: str, *args: str) -> None:
        self.calls.append((operation, *args))
        if operation in self.failures:
            raise self.failures[operation]

    def clone(self, url: str) -> None:
        self._call("clone", url)
        self.working_copy.mkdir(parents=True)

    def clean_untracked(self) -> None:
        self._call("clean_untracked")

    def revert_local_changes(self) -> None:
        self._call("revert_local_changes")

    def update_to_head(self) -> None:
        self._call("update_to_head")

    def diff_summary(self, path: str, from_revision: str, to_revision: str) -> list[DiffEntry]:
        self._call("diff_summary", path, from_revision, to_revision)
        scope = PurePosixPath(path)
        return [
            entry
            for entry in self.changes
            if scope == PurePosixPath(".") or scope in PurePosixPath(entry.path).parents
        ]

    def was_directory(self, path: str, revision: str) -> bool:
        self._call("was_directory", path, revision)
        target = PurePosixPath(path)
        return target in self.directories or any(
            target in PurePosixPath(entry.path).parents for entry in self.changes
        )

    def local_head_revision(self) -> str:
        self._call("local_head_revision")
        return self.head

    def latest_revision(self) -> str:
        self._call("latest_revision")
        return self.latest


class RecordingClient:
    """Configuration-server client that records calls instead of running knife."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []
        self.failures: set[str] = set()

    def _call(self, operation: str, argument: object) -> None:
        self.calls.append((operation, argument))
        if operation in self.failures:
            raise CommandError(["knife", operation], 100, f"{operation} rejected")

    def upload_cookbooks(self, names: CookbookSelection) -> None:
        self._call("upload_cookbooks", names)

    def delete_cookbook(self, name: str) -> None:
        self._call("delete_cookbook", name)

    def upload_role_files(self, file_names: Sequence[str]) -> None:
        self._call("upload_role_files", tuple(file_names))

    def delete_role(self, name: str) -> None:
        self._call("delete_role", name)


def make_tree(root: Path, paths: Iterable[str]) -> None:
    """Create files (``a/b.rb``) and directories (``a/c/``) below ``root``."""
    for rel in paths:
        target = root / rel
        if rel.endswith("/"):
            target.mkdir(parents=True, exist_ok=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f"# {rel}\n")


@pytest.fixture
def working_copy(tmp_path: Path) -> Path:
    """A working copy with two cookbooks and two roles."""
    wc = tmp_path / "chef-repo"
    make_tree(
        wc,
        [
            "cookbooks/mysql/metadata.rb",
            "cookbooks/mysql/recipes/default.rb",
            "cookbooks/nginx/metadata.rb",
            "roles/web.rb",
            "roles/db.rb",
        ],
    )
    return wc


@pytest.fixture
def test_settings(working_copy: Path, tmp_path: Path) -> Settings:
    """Settings pointing at the temporary working copy and state directory."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        vcs_backend="git",
        working_copy=working_copy,
        state_dir=tmp_path / "state",
        syslog=False,
    )
