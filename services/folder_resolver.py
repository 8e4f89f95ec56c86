import logging
import threading
import weakref
from typing import Any, Optional

from sqlalchemy.orm import Session

import models
from config import config
from services.entity_types import EntityType
from services.errors import DriveApiError, FolderResolutionError

logger = logging.getLogger("toolboard_drive.folders")

# Folder find-or-create is a read-then-write against Drive. Serialize it per
# organization inside this process so concurrent exports reuse one folder.
# Entries live only while some export holds a reference to the lock.
_org_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_org_locks_guard = threading.Lock()


def _lock_for(org_id: str) -> threading.Lock:
    with _org_locks_guard:
        lock = _org_locks.get(org_id)
        if lock is None:
            lock = threading.Lock()
            _org_locks[org_id] = lock
        return lock


class FolderResolver:
    def __init__(self, db: Session, root_folder_name: Optional[str] = None):
        self.db = db
        self.root_folder_name = root_folder_name or config.DRIVE_ROOT_FOLDER_NAME

    def resolve_target_folder(
        self,
        drive: Any,
        integration: models.OrganizationIntegration,
        explicit_folder_id: Optional[str],
        entity_type: EntityType,
        recorded_folder_id: Optional[str] = None,
    ) -> str:
        """
        Destination folder for an export.

        An explicit folder id chosen by the user is returned verbatim. A folder
        recorded by an earlier export is reused while it is neither deleted nor
        trashed. Otherwise `<root>/<category>` is found or created, where root
        is the sentinel folder cached on the integration record.
        """
        if explicit_folder_id:
            return explicit_folder_id

        with _lock_for(integration.organization_id):
            try:
                if recorded_folder_id and self._is_live(drive, recorded_folder_id):
                    return recorded_folder_id
                root_id = self._ensure_root_folder(drive, integration)
                return self._ensure_subfolder(drive, root_id, entity_type.folder_name)
            except DriveApiError as e:
                raise FolderResolutionError(
                    f"Failed to resolve Drive folder ({e.operation}, status {e.status})",
                    details=e.body,
                ) from e

    @staticmethod
    def _is_live(drive: Any, folder_id: str) -> bool:
        try:
            folder = drive.get_file(folder_id, fields="id, trashed")
        except DriveApiError as e:
            if not e.is_not_found:
                raise
            logger.info("Recorded Drive folder is gone", extra={"folder_id": folder_id})
            return False
        if folder.get("trashed"):
            logger.info("Recorded Drive folder is trashed", extra={"folder_id": folder_id})
            return False
        return True

    def _ensure_root_folder(self, drive: Any, integration: models.OrganizationIntegration) -> str:
        cached_id = integration.root_folder_id
        if cached_id:
            try:
                file = drive.get_file(cached_id, fields="id, trashed")
                if not file.get("trashed"):
                    return cached_id
                logger.info("Cached Drive root folder is trashed", extra={"folder_id": cached_id})
            except DriveApiError as e:
                logger.info(
                    "Cached Drive root folder is unreachable",
                    extra={"folder_id": cached_id, "status": e.status},
                )

        existing = drive.find_folder(self.root_folder_name, "root")
        if existing:
            folder_id = existing["id"]
        else:
            folder_id = drive.create_folder(self.root_folder_name)["id"]
            logger.info("Created Drive root folder", extra={"folder_id": folder_id})

        integration.root_folder_id = folder_id
        integration.root_folder_name = self.root_folder_name
        self.db.commit()
        return folder_id

    def _ensure_subfolder(self, drive: Any, parent_id: str, name: str) -> str:
        existing = drive.find_folder(name, parent_id)
        if existing:
            return existing["id"]
        created = drive.create_folder(name, parent_id=parent_id)
        logger.info("Created Drive category folder", extra={"folder_id": created["id"], "folder_name": name})
        return created["id"]
