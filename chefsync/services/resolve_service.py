"""Resolve service: compute which cookbooks and roles changed between two revisions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Final, Literal

from chefsync.exceptions import CommandError, DiffQueryError
from chefsync.vcs.base import BOOTSTRAP_REVISION, ChangeKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from chefsync.vcs.base import DiffEntry, VcsBackend

logger = logging.getLogger(__name__)

DEFAULT_ROLE_EXTENSIONS: Final[tuple[str, ...]] = (".rb", ".json")


class UploadAll(Enum):
    """Sentinel type for "upload every cookbook"."""

    ALL = "all"


ALL_COOKBOOKS: Final = UploadAll.ALL

CookbookSelection = tuple[str, ...] | Literal[UploadAll.ALL]


@dataclass(frozen=True)
class ChangeSet:
    """What to publish. Name tuples are sorted and free of duplicates.

    ``roles_to_upload`` holds role file names (``web.rb``), ``roles_to_delete``
    holds logical role names (``db``).
    """

    cookbooks_to_upload: CookbookSelection = ()
    cookbooks_to_delete: tuple[str, ...] = ()
    roles_to_upload: tuple[str, ...] = ()
    roles_to_delete: tuple[str, ...] = ()

    @property
    def uploads_all_cookbooks(self) -> bool:
        return self.cookbooks_to_upload is ALL_COOKBOOKS

    @property
    def is_empty(self) -> bool:
        return not (
            self.uploads_all_cookbooks
            or self.cookbooks_to_upload
            or self.cookbooks_to_delete
            or self.roles_to_upload
            or self.roles_to_delete
        )

    def summary(self) -> str:
        """One-line description for logs."""
        def names(values: tuple[str, ...]) -> str:
            return ", ".join(values) or "-"

        uploads = "all" if self.cookbooks_to_upload is ALL_COOKBOOKS else names(
            self.cookbooks_to_upload
        )
        return (
            f"cookbooks upload [{uploads}] delete [{names(self.cookbooks_to_delete)}]; "
            f"roles upload [{names(self.roles_to_upload)}] "
            f"delete [{names(self.roles_to_delete)}]"
        )


def normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    """Return extensions with a leading dot (``rb`` and ``.rb`` are equivalent)."""
    return frozenset(ext if ext.startswith(".") else f".{ext}" for ext in extensions if ext)


def _watched(path: str) -> PurePosixPath:
    return PurePosixPath(path.replace("\\", "/"))


def _relative_parts(entry: DiffEntry, watched: PurePosixPath) -> tuple[str, ...]:
    """Path components of ``entry`` below ``watched``, or () if it is not below it."""
    try:
        return PurePosixPath(entry.path).relative_to(watched).parts
    except ValueError:
        return ()


def _diff(vcs: VcsBackend, path: str, checkpoint: str, head: str) -> list[DiffEntry]:
    try:
        return vcs.diff_summary(path, checkpoint, head)
    except CommandError as exc:
        raise DiffQueryError(path, checkpoint, head, output=exc.output) from exc


def _was_directory(vcs: VcsBackend, path: str, checkpoint: str) -> bool:
    try:
        return vcs.was_directory(path, checkpoint)
    except CommandError as exc:
        raise DiffQueryError(path, checkpoint, checkpoint, output=exc.output) from exc


def _scan_cookbook_path(
    vcs: VcsBackend,
    root: Path,
    cookbook_path: str,
    checkpoint: str,
    head: str,
    watched_dirs: frozenset[Path],
) -> tuple[set[str], set[str]]:
    """Classify the top-level entries that changed under one cookbook path."""
    watched = _watched(cookbook_path)
    candidates: set[str] = set()
    nested: set[str] = set()
    for entry in _diff(vcs, cookbook_path, checkpoint, head):
        parts = _relative_parts(entry, watched)
        if parts:
            candidates.add(parts[0])
            if len(parts) > 1:
                nested.add(parts[0])

    added: set[str] = set()
    deleted: set[str] = set()
    for name in candidates:
        candidate = root / watched / name
        if candidate.is_file():
            logger.debug("Skipping plain file %s in %s", name, cookbook_path)
            continue
        if candidate.resolve() in watched_dirs:
            logger.debug("Skipping %s in %s: it is a watched path itself", name, cookbook_path)
            continue
        if candidate.exists():
            added.add(name)
        elif name in nested or _was_directory(vcs, str(watched / name), checkpoint):
            deleted.add(name)
        else:
            logger.debug("Skipping removed plain file %s in %s", name, cookbook_path)

    logger.debug(
        "%s: %d changed, %d removed cookbook(s)", cookbook_path, len(added), len(deleted)
    )
    return added, deleted


def _scan_role_path(
    vcs: VcsBackend,
    role_path: str,
    checkpoint: str,
    head: str,
    extensions: frozenset[str],
) -> tuple[set[str], set[str]]:
    watched = _watched(role_path)
    upload: set[str] = set()
    delete: set[str] = set()
    for entry in _diff(vcs, role_path, checkpoint, head):
        parts = _relative_parts(entry, watched)
        # Roles are flat files directly inside the role path
        if len(parts) != 1:
            continue
        name = PurePosixPath(parts[0])
        if name.suffix not in extensions:
            continue
        if entry.kind is ChangeKind.DELETED:
            delete.add(name.stem)
        else:
            upload.add(name.name)

    delete -= {PurePosixPath(name).stem for name in upload}
    return upload, delete


def list_role_files(
    role_dir: Path, extensions: Iterable[str] = DEFAULT_ROLE_EXTENSIONS
) -> list[str]:
    """Names of the role files directly inside ``role_dir``, sorted."""
    wanted = normalize_extensions(extensions)
    if not role_dir.is_dir():
        logger.warning("Role path %s is not a directory; no roles to upload", role_dir)
        return []
    return sorted(p.name for p in role_dir.iterdir() if p.is_file() and p.suffix in wanted)


def resolve_changes(
    vcs: VcsBackend,
    working_copy: Path,
    checkpoint: str,
    head: str,
    cookbook_paths: Sequence[str],
    role_path: str,
    *,
    role_extensions: Iterable[str] = DEFAULT_ROLE_EXTENSIONS,
) -> ChangeSet:
    """Compute the change set between ``checkpoint`` and ``head``.

    At the bootstrap revision every cookbook and every role file is uploaded
    and nothing is deleted. Otherwise each cookbook path is diffed on its own
    and the per-path results are merged; a name that is both added somewhere
    and deleted somewhere is only uploaded, so the outcome does not depend on
    the order of ``cookbook_paths``.

    Raises DiffQueryError if any diff query fails.
    """
    extensions = normalize_extensions(role_extensions)
    root = working_copy.resolve()

    if checkpoint == BOOTSTRAP_REVISION:
        roles = list_role_files(root / _watched(role_path), extensions)
        logger.info("Bootstrap run: uploading all cookbooks and %d role(s)", len(roles))
        return ChangeSet(cookbooks_to_upload=ALL_COOKBOOKS, roles_to_upload=tuple(roles))

    unique_paths = list(dict.fromkeys(cookbook_paths))
    watched_dirs = frozenset((root / _watched(p)).resolve() for p in [*unique_paths, role_path])

    additions: set[str] = set()
    deletions: set[str] = set()
    for cookbook_path in unique_paths:
        added, deleted = _scan_cookbook_path(
            vcs, root, cookbook_path, checkpoint, head, watched_dirs
        )
        additions |= added
        deletions |= deleted

    moved = deletions & additions
    if moved:
        logger.info("Cookbook(s) moved between paths, not deleting: %s", ", ".join(sorted(moved)))
    deletions -= additions

    role_uploads, role_deletes = _scan_role_path(vcs, role_path, checkpoint, head, extensions)

    change_set = ChangeSet(
        cookbooks_to_upload=tuple(sorted(additions)),
        cookbooks_to_delete=tuple(sorted(deletions)),
        roles_to_upload=tuple(sorted(role_uploads)),
        roles_to_delete=tuple(sorted(role_deletes)),
    )
    logger.info("Changes %s..%s: %s", checkpoint, head, change_set.summary())
    return change_set
