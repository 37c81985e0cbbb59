"""Backend registry for version-control clients."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chefsync.exceptions import UnsupportedBackendError
from chefsync.vcs.git import GitBackend
from chefsync.vcs.svn import SvnBackend

if TYPE_CHECKING:
    from pathlib import Path

    from chefsync.vcs.base import VcsBackend

BACKENDS: dict[str, type[GitBackend] | type[SvnBackend]] = {
    "git": GitBackend,
    "svn": SvnBackend,
}


def get_backend(name: str, working_copy: Path) -> VcsBackend:
    """Create the backend registered under ``name``.

    Raises UnsupportedBackendError if the name is unknown.
    """
    backend_cls = BACKENDS.get(name.strip().lower())
    if backend_cls is None:
        msg = f"Unsupported VCS backend: {name!r}. Available: {list(BACKENDS)}"
        raise UnsupportedBackendError(msg)
    return backend_cls(working_copy)


def list_backends() -> list[str]:
    """Return the names of the supported backends."""
    return list(BACKENDS.keys())
