"""Knife service: cookbook and role operations on the Chef server via the knife CLI."""

from __future__ import annotations

import logging
import os
import shlex
from typing import TYPE_CHECKING

from chefsync.services.resolve_service import ALL_COOKBOOKS
from chefsync.vcs.base import run_command

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from chefsync.services.resolve_service import CookbookSelection

logger = logging.getLogger(__name__)


class KnifeClient:
    """Wraps knife CLI operations, run from the working copy."""

    def __init__(
        self,
        working_copy: Path,
        cookbook_paths: Sequence[str],
        role_path: str,
        *,
        command: str = "knife",
        config_file: Path | None = None,
    ) -> None:
        self.working_copy = working_copy
        self.cookbook_paths = list(cookbook_paths)
        self.role_path = role_path
        self.command = shlex.split(command)
        self.config_file = config_file

    def _run(self, *args: str) -> str:
        """Run a knife command in the working copy."""
        argv = [*self.command, *args]
        if self.config_file is not None:
            argv += ["--config", str(self.config_file)]
        output = run_command(argv, cwd=self.working_copy)
        if output.strip():
            logger.debug("knife: %s", output.strip())
        return output

    @property
    def _cookbook_path_arg(self) -> str:
        return os.pathsep.join(str(self.working_copy / p) for p in self.cookbook_paths)

    def upload_cookbooks(self, names: CookbookSelection) -> None:
        if names is ALL_COOKBOOKS:
            logger.info("Uploading all cookbooks")
            self._run("cookbook", "upload", "--all", "--cookbook-path", self._cookbook_path_arg)
            return
        logger.info("Uploading cookbook(s): %s", ", ".join(names))
        self._run("cookbook", "upload", *names, "--cookbook-path", self._cookbook_path_arg)

    def delete_cookbook(self, name: str) -> None:
        logger.info("Deleting cookbook %s", name)
        self._run("cookbook", "delete", name, "--all", "--yes")

    def upload_role_files(self, file_names: Sequence[str]) -> None:
        logger.info("Uploading role file(s): %s", ", ".join(file_names))
        paths = [f"{self.role_path.rstrip('/')}/{name}" for name in file_names]
        self._run("role", "from", "file", *paths)

    def delete_role(self, name: str) -> None:
        logger.info("Deleting role %s", name)
        self._run("role", "delete", name, "--yes")
