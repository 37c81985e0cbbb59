"""Publish service: apply a resolved change set to the configuration server."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from chefsync.exceptions import (
    CommandError,
    CookbookDeleteError,
    CookbookUploadError,
    RoleDeleteError,
    RoleUploadError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chefsync.services.resolve_service import ChangeSet, CookbookSelection

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfigServerClient(Protocol):
    """Operations the publisher needs from the configuration server."""

    def upload_cookbooks(self, names: CookbookSelection) -> None: ...

    def delete_cookbook(self, name: str) -> None: ...

    def upload_role_files(self, file_names: Sequence[str]) -> None: ...

    def delete_role(self, name: str) -> None: ...


def publish(change_set: ChangeSet, client: ConfigServerClient) -> None:
    """Upload cookbooks, delete cookbooks, upload roles, then delete roles.

    Empty phases are skipped. The first failing call aborts everything after
    it and is re-raised as the error for its phase; nothing is retried here.
    """
    if change_set.uploads_all_cookbooks or change_set.cookbooks_to_upload:
        try:
            client.upload_cookbooks(change_set.cookbooks_to_upload)
        except CommandError as exc:
            msg = f"Cookbook upload failed: {exc}"
            raise CookbookUploadError(msg, output=exc.output) from exc
    else:
        logger.debug("No cookbooks to upload")

    if not change_set.cookbooks_to_delete:
        logger.debug("No cookbooks to delete")
    for name in change_set.cookbooks_to_delete:
        try:
            client.delete_cookbook(name)
        except CommandError as exc:
            msg = f"Deleting cookbook {name!r} failed: {exc}"
            raise CookbookDeleteError(msg, output=exc.output) from exc

    if change_set.roles_to_upload:
        try:
            client.upload_role_files(change_set.roles_to_upload)
        except CommandError as exc:
            msg = f"Role upload failed: {exc}"
            raise RoleUploadError(msg, output=exc.output) from exc
    else:
        logger.debug("No roles to upload")

    if not change_set.roles_to_delete:
        logger.debug("No roles to delete")
    for name in change_set.roles_to_delete:
        try:
            client.delete_role(name)
        except CommandError as exc:
            msg = f"Deleting role {name!r} failed: {exc}"
            raise RoleDeleteError(msg, output=exc.output) from exc
