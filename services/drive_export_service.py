"""
Export orchestration: token -> folder -> render -> write -> reference.

One export is a single sequential chain of provider calls; nothing is retried
and any DriveExportError aborts the attempt. Bulk re-sync runs exports one
after another and only reports failures.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

import models
from cache import cache_service
from config import config
from services.document_renderer import Branding, DocumentRenderer
from services.drive_writer import DriveWriter
from services.entity_resolver import EntityResolver
from services.entity_types import EntityType
from services.errors import DriveApiError, DriveExportError, FolderResolutionError, IntegrationNotConnectedError
from services.folder_resolver import FolderResolver
from services.google_drive_mock import GoogleDriveMockService
from services.google_drive_real import GoogleDriveRealService
from services.google_oauth import TokenManager
from services.reference_store import ReferenceStore
from utils.prometheus import DRIVE_EXPORT_DURATION_SECONDS, DRIVE_EXPORTS_TOTAL
from utils.structured_logging import export_logger

logger = logging.getLogger("toolboard_drive.export")

DriveClientFactory = Callable[[str], Any]


def default_drive_client_factory(access_token: str) -> Any:
    if config.USE_MOCK_DRIVE:
        return GoogleDriveMockService(db_file=config.MOCK_DRIVE_DB_FILE)
    return GoogleDriveRealService(access_token)


@dataclass
class ExportRequest:
    entity_type: EntityType
    entity_id: str
    folder_id: Optional[str] = None
    recorded_folder_id: Optional[str] = None


@dataclass
class ExportResult:
    drive_file_id: str
    folder_id: str
    entity_id: str
    resolved_id: str
    created: bool


@dataclass
class ResyncReport:
    total: int = 0
    succeeded: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class VerifyReport:
    invalid_ids: List[int] = field(default_factory=list)
    removed_entity_ids: List[str] = field(default_factory=list)


class DriveExportService:
    def __init__(
        self,
        db: Session,
        drive_client_factory: Optional[DriveClientFactory] = None,
        token_manager: Optional[TokenManager] = None,
        renderer: Optional[DocumentRenderer] = None,
        writer: Optional[DriveWriter] = None,
    ):
        self.db = db
        self.drive_client_factory = drive_client_factory or default_drive_client_factory
        self.token_manager = token_manager or TokenManager(db)
        self.renderer = renderer or DocumentRenderer()
        self.writer = writer or DriveWriter()
        self.folders = FolderResolver(db)
        self.entities = EntityResolver(db)
        self.references = ReferenceStore(db)

    # --- integration ---

    def find_integration(self, org_id: str) -> Optional[models.OrganizationIntegration]:
        return (
            self.db.query(models.OrganizationIntegration)
            .filter(
                models.OrganizationIntegration.organization_id == org_id,
                models.OrganizationIntegration.provider == "google_drive",
                models.OrganizationIntegration.status == "connected",
            )
            .first()
        )

    def get_integration(self, org_id: str) -> models.OrganizationIntegration:
        integration = self.find_integration(org_id)
        if integration is None:
            raise IntegrationNotConnectedError()
        return integration

    def _drive_for(self, integration: models.OrganizationIntegration) -> Any:
        access_token = self.token_manager.ensure_valid_access_token(integration)
        return self.drive_client_factory(access_token)

    def _branding(self, org_id: str) -> Branding:
        org = self.db.query(models.Organization).filter(models.Organization.id == org_id).first()
        if org is None:
            return Branding()
        return Branding(accent_color=org.accent_color, logo_url=org.logo_url)

    # --- export ---

    def export(self, org_id: str, request: ExportRequest) -> ExportResult:
        entity_type = request.entity_type
        started = time.monotonic()
        export_logger.info(
            "export",
            status="started",
            message="Drive export started",
            organization_id=org_id,
            entity_type=entity_type.value,
            entity_id=request.entity_id,
        )
        try:
            result = self._export(org_id, request)
        except DriveExportError as e:
            DRIVE_EXPORTS_TOTAL.labels(entity_type=entity_type.value, status="error").inc()
            export_logger.error(
                "export",
                message="Drive export failed",
                error=e,
                organization_id=org_id,
                entity_type=entity_type.value,
                entity_id=request.entity_id,
            )
            raise
        finally:
            DRIVE_EXPORT_DURATION_SECONDS.labels(entity_type=entity_type.value).observe(time.monotonic() - started)

        DRIVE_EXPORTS_TOTAL.labels(entity_type=entity_type.value, status="success").inc()
        export_logger.info(
            "export",
            message="Drive export succeeded",
            organization_id=org_id,
            entity_type=entity_type.value,
            entity_id=request.entity_id,
            drive_file_id=result.drive_file_id,
            created=result.created,
        )
        return result

    def _export(self, org_id: str, request: ExportRequest) -> ExportResult:
        entity_type = request.entity_type
        integration = self.get_integration(org_id)

        resolved_id = self.entities.resolve(org_id, entity_type, request.entity_id)
        source = self.entities.load(org_id, entity_type, resolved_id)

        drive = self._drive_for(integration)
        folder_id = self.folders.resolve_target_folder(
            drive, integration, request.folder_id, entity_type, recorded_folder_id=request.recorded_folder_id
        )

        payload = self.renderer.render(entity_type, source.record, source.related, self._branding(org_id))

        existing = self.references.get_reference(org_id, entity_type, request.entity_id, resolved_id)
        existing_file_id = existing.drive_file_id if existing else None

        drive_file_id = self.writer.write(drive, folder_id, entity_type, source.title, payload, existing_file_id)

        self.references.upsert_reference(
            org_id, entity_type, request.entity_id, drive_file_id, folder_id, resolved_id=resolved_id
        )
        return ExportResult(
            drive_file_id=drive_file_id,
            folder_id=folder_id,
            entity_id=request.entity_id,
            resolved_id=resolved_id,
            created=drive_file_id != existing_file_id,
        )

    def resync(self, org_id: str, entity_type: Optional[EntityType] = None) -> ResyncReport:
        """Re-export every previously exported entity of the organization, best effort."""
        report = ResyncReport()
        references = [
            (EntityType(ref.entity_type), ref.entity_id, ref.drive_folder_id)
            for ref in self.references.list_references(org_id, entity_type)
        ]
        report.total = len(references)

        for ref_type, entity_id, folder_id in references:
            try:
                self.export(org_id, ExportRequest(ref_type, entity_id, recorded_folder_id=folder_id))
                report.succeeded += 1
            except Exception as e:
                self.db.rollback()
                logger.warning(
                    "Re-sync of entity failed",
                    extra={"entity_type": ref_type.value, "entity_id": entity_id, "error": str(e)},
                )
                report.failures.append({"entity_type": ref_type.value, "entity_id": entity_id, "error": str(e)})

        export_logger.info(
            "resync",
            status="success" if not report.failures else "partial",
            message="Drive re-sync finished",
            organization_id=org_id,
            total=report.total,
            succeeded=report.succeeded,
            failed=len(report.failures),
        )
        return report

    def verify_references(self, org_id: str) -> VerifyReport:
        """
        Report references whose Drive file was deleted or trashed.
        References are left untouched; the next export recreates the file.
        """
        report = VerifyReport()
        integration = self.find_integration(org_id)
        references = self.references.list_references(org_id)
        if integration is None or not references:
            return report

        drive = self._drive_for(integration)
        for ref in references:
            try:
                file = drive.get_file(ref.drive_file_id, fields="id, trashed")
            except DriveApiError as e:
                if not e.is_not_found:
                    logger.warning(
                        "Could not verify drive reference",
                        extra={"reference_id": ref.id, "status": e.status},
                    )
                    continue
                file = None

            if file is None or file.get("trashed"):
                report.invalid_ids.append(ref.id)
                report.removed_entity_ids.append(ref.entity_id)

        return report

    # --- destination folder picker ---

    def list_folders(self, org_id: str, parent_id: str = "root") -> List[Dict[str, Any]]:
        cache_key = f"drive:folders:{org_id}:{parent_id}"
        cached = cache_service.get_from_cache(cache_key)
        if cached is not None:
            return cached

        drive = self._drive_for(self.get_integration(org_id))
        try:
            folders = [{"id": f["id"], "name": f.get("name")} for f in drive.list_folders(parent_id)]
        except DriveApiError as e:
            raise FolderResolutionError(f"Failed to list Drive folders (status {e.status})", details=e.body) from e

        cache_service.set_in_cache(cache_key, folders)
        return folders

    def create_folder(self, org_id: str, name: str, parent_id: str = "root") -> Dict[str, Any]:
        drive = self._drive_for(self.get_integration(org_id))
        try:
            created = drive.create_folder(name, parent_id=parent_id)
        except DriveApiError as e:
            raise FolderResolutionError(f"Failed to create Drive folder (status {e.status})", details=e.body) from e

        cache_service.delete_key(f"drive:folders:{org_id}:{parent_id}")
        return {"id": created["id"], "name": created.get("name") or name}

    def connection_status(self, org_id: str) -> Dict[str, Any]:
        integration = self.find_integration(org_id)
        references = self.references.list_references(org_id)
        return {
            "connected": integration is not None,
            "connected_email": integration.connected_email if integration else None,
            "references": references,
        }
