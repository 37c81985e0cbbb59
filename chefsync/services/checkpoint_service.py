"""Checkpoint service: persists the last fully published revision."""

from __future__ import annotations

import logging
import os
import tempfile
from typing import TYPE_CHECKING

from chefsync.exceptions import CheckpointError
from chefsync.vcs.base import BOOTSTRAP_REVISION

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Reads and writes the single-line checkpoint file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> str:
        """Return the stored revision, or the bootstrap revision if there is none."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(
                "No checkpoint at %s, starting from revision %s", self.path, BOOTSTRAP_REVISION
            )
            return BOOTSTRAP_REVISION
        lines = text.strip().splitlines()
        if not lines:
            return BOOTSTRAP_REVISION
        return lines[0].strip()

    def save(self, revision: str) -> None:
        """Replace the stored revision.

        The new value is written to a temporary file next to the checkpoint and
        moved over it, so readers see either the old or the new revision.
        """
        if not revision.strip():
            msg = "Refusing to save an empty checkpoint revision"
            raise CheckpointError(msg)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(f"{revision.strip()}\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass
            msg = f"Failed to write checkpoint {self.path}: {exc}"
            raise CheckpointError(msg) from exc
        logger.info("Checkpoint advanced to revision %s", revision)
