import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sqlalchemy.orm import Session

import models
from services.entity_types import EntityType
from services.errors import EntityNotFoundError

logger = logging.getLogger("toolboard_drive.entities")

ENTITY_MODELS = {
    EntityType.CHECKLIST: models.Checklist,
    EntityType.GEMBA_DOC: models.GembaDoc,
    EntityType.FILE_DIRECTORY_FILE: models.FileDirectoryFile,
    EntityType.TEXT_DISPLAY: models.MenuItem,
}

NOT_FOUND_MESSAGES = {
    EntityType.CHECKLIST: "Checklist not found",
    EntityType.GEMBA_DOC: "SOP document not found",
    EntityType.FILE_DIRECTORY_FILE: "File not found",
    EntityType.TEXT_DISPLAY: "Text display item not found",
}


@dataclass
class ExportSource:
    entity_type: EntityType
    record: Any
    related: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def title(self) -> str:
        if self.entity_type == EntityType.TEXT_DISPLAY:
            return self.record.name
        if self.entity_type == EntityType.FILE_DIRECTORY_FILE:
            return self.record.file_name
        return self.record.title


class EntityResolver:
    """
    Loads the document behind an export request.

    The UI addresses checklists and SOP documents ("tools") by a stable menu item
    id that can be rebound to another document. resolve() follows that link so
    the current document is rendered; references stay keyed by the caller's id.
    """

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, org_id: str, entity_type: EntityType, entity_id: str) -> str:
        if not entity_type.is_tool:
            return entity_id

        model = ENTITY_MODELS[entity_type]
        direct = self.db.query(model.id).filter(model.id == entity_id, model.organization_id == org_id)
        if direct.first() is not None:
            return entity_id

        link = (
            self.db.query(models.MenuItemDocument)
            .filter(
                models.MenuItemDocument.menu_item_id == entity_id,
                models.MenuItemDocument.document_type == entity_type.value,
                models.MenuItemDocument.archived_at.is_(None),
                models.MenuItemDocument.document_id.isnot(None),
            )
            .order_by(models.MenuItemDocument.created_at.desc())
            .first()
        )
        if link is None:
            return entity_id

        logger.info(
            "Resolved menu item to linked document",
            extra={"entity_type": entity_type.value, "menu_item_id": entity_id, "document_id": link.document_id},
        )
        return link.document_id

    def load(self, org_id: str, entity_type: EntityType, entity_id: str) -> ExportSource:
        """Load the record and its child rows; records of other organizations are not found."""
        model = ENTITY_MODELS[entity_type]
        record = self.db.query(model).filter(model.id == entity_id, model.organization_id == org_id).first()
        if record is None:
            raise EntityNotFoundError(NOT_FOUND_MESSAGES[entity_type])

        if entity_type == EntityType.CHECKLIST:
            return ExportSource(entity_type, record, self._checklist_related(record.id))
        if entity_type == EntityType.GEMBA_DOC:
            return ExportSource(entity_type, record, self._gemba_related(record.id))
        return ExportSource(entity_type, record)

    def _checklist_related(self, checklist_id: str) -> Dict[str, List[Any]]:
        sections = (
            self.db.query(models.ChecklistSection)
            .filter(models.ChecklistSection.checklist_id == checklist_id)
            .all()
        )
        section_ids = [s.id for s in sections]
        items = []
        if section_ids:
            items = (
                self.db.query(models.ChecklistItem)
                .filter(models.ChecklistItem.section_id.in_(section_ids))
                .all()
            )
        return {"sections": sections, "items": items}

    def _gemba_related(self, doc_id: str) -> Dict[str, List[Any]]:
        pages = (
            self.db.query(models.GembaDocPage)
            .filter(models.GembaDocPage.gemba_doc_id == doc_id)
            .all()
        )
        page_ids = [p.id for p in pages]
        cells = []
        if page_ids:
            cells = (
                self.db.query(models.GembaDocCell)
                .filter(models.GembaDocCell.page_id.in_(page_ids))
                .all()
            )
        return {"pages": pages, "cells": cells}
