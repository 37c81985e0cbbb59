"""Hook service: deployment-specific logic at fixed points of a run."""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from chefsync.exceptions import ConfigurationError

if TYPE_CHECKING:
    from chefsync.config import Settings
    from chefsync.services.sync_service import RunResult

logger = logging.getLogger(__name__)


class SyncHooks:
    """No-op hooks. Subclass and override the points you need.

    ``before_lock`` runs even when another run holds the lock; the others run
    only for a run that acquired it.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def before_lock(self) -> None:
        pass

    def after_lock(self) -> None:
        pass

    def after_sync(self) -> None:
        pass

    def after_run(self, result: RunResult) -> None:
        pass


def load_hooks(settings: Settings) -> SyncHooks:
    """Instantiate the hooks class named by ``settings.hooks`` ("module:ClassName").

    Returns the no-op hooks when none are configured.
    """
    if not settings.hooks:
        return SyncHooks(settings)

    module_name, _, class_name = settings.hooks.partition(":")
    if not module_name or not class_name:
        msg = f"hooks must look like 'package.module:ClassName', got {settings.hooks!r}"
        raise ConfigurationError(msg)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Cannot import hooks module {module_name!r}: {exc}"
        raise ConfigurationError(msg) from exc

    hooks_cls = getattr(module, class_name, None)
    if not isinstance(hooks_cls, type) or not issubclass(hooks_cls, SyncHooks):
        msg = f"{settings.hooks!r} is not a SyncHooks subclass"
        raise ConfigurationError(msg)
    logger.debug("Loaded hooks %s", settings.hooks)
    return hooks_cls(settings)
