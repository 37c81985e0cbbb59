"""Application configuration loaded from environment variables and a TOML file."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chefsync.exceptions import ConfigurationError


class Settings(BaseSettings):
    """chefsync settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHEFSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Version control
    vcs_backend: str = "svn"
    repo_url: str = ""
    working_copy: Path = Path("./chef-repo")

    # Watched paths, relative to the working copy
    cookbook_paths: list[str] = Field(default_factory=lambda: ["cookbooks"])
    role_path: str = "roles"
    role_extensions: list[str] = Field(default_factory=lambda: [".rb", ".json"])

    # Persisted state
    state_dir: Path = Path("./state")
    checkpoint_file: Path | None = None
    lock_file: Path | None = None
    lock_stale_after_seconds: int = Field(default=3600, ge=1)

    # Configuration server
    knife_command: str = "knife"
    knife_config: Path | None = None

    # Extension hooks, as "package.module:ClassName"
    hooks: str | None = None

    # Logging
    debug: bool = False
    syslog: bool = True
    log_file: Path | None = None

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> Settings:
        """Load settings from a TOML file. File values take precedence over the environment."""
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            msg = f"Config file not found: {path}"
            raise ConfigurationError(msg) from exc
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid TOML in {path}: {exc}"
            raise ConfigurationError(msg) from exc
        # Tables are allowed for readability; they are flattened into top-level keys.
        flat: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, dict):
                flat.update(value)
            else:
                flat[key] = value
        flat.update(overrides)
        return cls(**flat)

    @property
    def checkpoint_path(self) -> Path:
        return self.checkpoint_file or self.state_dir / "last-revision"

    @property
    def lock_path(self) -> Path:
        return self.lock_file or self.state_dir / "chefsync.lock"

    def validate_paths(self) -> None:
        """Reject configurations that cannot produce a correct run."""
        problems: list[str] = []
        if not self.cookbook_paths:
            problems.append("cookbook_paths must name at least one directory")
        for watched in [*self.cookbook_paths, self.role_path]:
            candidate = Path(watched)
            if candidate.is_absolute() or ".." in candidate.parts:
                problems.append(f"watched path {watched!r} must be relative to the working copy")
        if not self.working_copy.exists() and not self.repo_url:
            problems.append(
                f"working copy {self.working_copy} does not exist and no repo_url is set"
            )
        if self.working_copy.exists() and not self.working_copy.is_dir():
            problems.append(f"working copy {self.working_copy} is not a directory")

        if problems:
            joined = "; ".join(problems)
            raise ConfigurationError(f"Invalid configuration: {joined}")
