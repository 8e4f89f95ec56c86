import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from services.entity_types import EntityType

logger = logging.getLogger("toolboard_drive.references")


class ReferenceStore:
    """
    Persistence for entity -> Drive file mappings.
    At most one row exists per (organization, entity type, entity id); the
    unique constraint backs that up when two exports of one entity race.
    """

    def __init__(self, db: Session):
        self.db = db

    def _query(self, org_id: str, entity_type: EntityType, entity_id: str):
        return self.db.query(models.DriveFileReference).filter(
            models.DriveFileReference.organization_id == org_id,
            models.DriveFileReference.entity_type == entity_type.value,
            models.DriveFileReference.entity_id == entity_id,
        )

    def get_reference(
        self,
        org_id: str,
        entity_type: EntityType,
        entity_id: str,
        resolved_id: Optional[str] = None,
    ) -> Optional[models.DriveFileReference]:
        """Reference keyed by the caller's id, else one keyed by the resolved document id."""
        reference = self._query(org_id, entity_type, entity_id).first()
        if reference is None and resolved_id and resolved_id != entity_id:
            reference = self._query(org_id, entity_type, resolved_id).first()
        return reference

    def list_references(self, org_id: str, entity_type: Optional[EntityType] = None) -> List[models.DriveFileReference]:
        query = self.db.query(models.DriveFileReference).filter(
            models.DriveFileReference.organization_id == org_id
        )
        if entity_type is not None:
            query = query.filter(models.DriveFileReference.entity_type == entity_type.value)
        return query.order_by(models.DriveFileReference.id).all()

    def upsert_reference(
        self,
        org_id: str,
        entity_type: EntityType,
        entity_id: str,
        drive_file_id: str,
        folder_id: Optional[str],
        resolved_id: Optional[str] = None,
    ) -> models.DriveFileReference:
        """
        Record a successful export, always keyed by the caller-supplied entity id.

        A row stored under the resolved document id by an older export is taken
        over and re-keyed to the caller's id.
        """
        reference = self.get_reference(org_id, entity_type, entity_id, resolved_id)
        if reference is None:
            reference = models.DriveFileReference(
                organization_id=org_id,
                entity_type=entity_type.value,
                entity_id=entity_id,
            )
            self.db.add(reference)
        self._apply(reference, entity_id, drive_file_id, folder_id)

        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent export of the same entity wrote the caller-keyed row first; last write wins
            logger.info(
                "Race detected writing drive reference, updating the existing row",
                extra={"entity_type": entity_type.value, "entity_id": entity_id},
            )
            self.db.rollback()
            reference = self._query(org_id, entity_type, entity_id).first()
            if reference is None:
                raise
            self._apply(reference, entity_id, drive_file_id, folder_id)
            self.db.commit()

        self.db.refresh(reference)
        return reference

    @staticmethod
    def _apply(
        reference: models.DriveFileReference,
        entity_id: str,
        drive_file_id: str,
        folder_id: Optional[str],
    ) -> None:
        reference.drive_file_id = drive_file_id
        reference.drive_folder_id = folder_id
        reference.last_synced_at = datetime.now(timezone.utc)
        reference.entity_id = entity_id
