import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session, sessionmaker

import database
from auth.dependencies import OrgContext, get_org_context, require_org_admin
from config import config, normalize_cors_origins
from database import get_db
from schemas.drive_export import (
    AuthorizeUrlResponse,
    ConnectionStatusResponse,
    CreateFolderRequest,
    DriveFolder,
    DriveReferenceResponse,
    ExportRequest,
    ExportResponse,
    FolderListResponse,
    ResyncRequest,
    ResyncResponse,
    VerifyResponse,
)
from services import drive_export_service
from services.drive_export_service import DriveClientFactory, DriveExportService
from services.entity_types import EntityType
from services.errors import DriveExportError, MissingRefreshTokenError
from services.google_oauth import GoogleOAuthClient, connect_integration, decode_state, encode_state
from services.reference_store import ReferenceStore

logger = logging.getLogger("toolboard_drive.routers.drive_export")

router = APIRouter()


# Dependency Injection for the Drive client and OAuth client
def get_drive_client_factory() -> DriveClientFactory:
    return drive_export_service.default_drive_client_factory


def get_oauth_client() -> GoogleOAuthClient:
    return GoogleOAuthClient()


def get_session_factory() -> sessionmaker:
    """Background jobs outlive the request session and open their own."""
    return database.SessionLocal


def get_export_service(
    db: Session = Depends(get_db),
    drive_client_factory: DriveClientFactory = Depends(get_drive_client_factory),
) -> DriveExportService:
    return DriveExportService(db, drive_client_factory=drive_client_factory)


def _parse_type(value: Optional[str]) -> Optional[EntityType]:
    return EntityType.parse(value) if value else None


@router.post("/export", response_model=ExportResponse)
def export_entity(
    body: ExportRequest,
    org: OrgContext = Depends(require_org_admin),
    service: DriveExportService = Depends(get_export_service),
):
    """
    Export one entity to the organization's Google Drive.
    Re-exporting the same (type, id) updates the file created the first time.
    """
    if not body.type or not body.id:
        raise HTTPException(status_code=400, detail="Missing type or id")

    entity_type = EntityType.parse(body.type)
    result = service.export(
        org.organization_id,
        drive_export_service.ExportRequest(entity_type, body.id, body.folderId),
    )
    return ExportResponse(
        drive_file_id=result.drive_file_id,
        message="Exported to Google Drive",
    )


def run_resync(session_factory: sessionmaker, drive_client_factory: DriveClientFactory,
               org_id: str, entity_type: Optional[EntityType]) -> None:
    db = session_factory()
    try:
        DriveExportService(db, drive_client_factory=drive_client_factory).resync(org_id, entity_type)
    finally:
        db.close()


@router.post("/resync", response_model=ResyncResponse)
def resync_exports(
    background_tasks: BackgroundTasks,
    body: Optional[ResyncRequest] = None,
    org: OrgContext = Depends(require_org_admin),
    db: Session = Depends(get_db),
    drive_client_factory: DriveClientFactory = Depends(get_drive_client_factory),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """Queue a re-export of everything this organization has exported before."""
    entity_type = _parse_type(body.type if body else None)
    queued = len(ReferenceStore(db).list_references(org.organization_id, entity_type))
    if queued:
        background_tasks.add_task(
            run_resync, session_factory, drive_client_factory, org.organization_id, entity_type
        )
    return ResyncResponse(queued=queued)


@router.get("/status", response_model=ConnectionStatusResponse)
def connection_status(
    org: OrgContext = Depends(get_org_context),
    service: DriveExportService = Depends(get_export_service),
):
    status = service.connection_status(org.organization_id)
    return ConnectionStatusResponse(
        connected=status["connected"],
        connected_email=status["connected_email"],
        references=[DriveReferenceResponse.model_validate(ref) for ref in status["references"]],
    )


@router.get("/folders", response_model=FolderListResponse)
def list_folders(
    parent_id: str = Query("root"),
    org: OrgContext = Depends(require_org_admin),
    service: DriveExportService = Depends(get_export_service),
):
    return FolderListResponse(folders=service.list_folders(org.organization_id, parent_id))


@router.post("/folders", response_model=DriveFolder)
def create_folder(
    body: CreateFolderRequest,
    org: OrgContext = Depends(require_org_admin),
    service: DriveExportService = Depends(get_export_service),
):
    return service.create_folder(org.organization_id, body.name, body.parentId or "root")


@router.post("/verify", response_model=VerifyResponse)
def verify_references(
    org: OrgContext = Depends(require_org_admin),
    service: DriveExportService = Depends(get_export_service),
):
    """Report exported files that no longer exist in Drive. Nothing is deleted."""
    report = service.verify_references(org.organization_id)
    return VerifyResponse(invalidIds=report.invalid_ids, removedEntityIds=report.removed_entity_ids)


# --- OAuth consent round trip ---

def _allowed_origin(origin: Optional[str]) -> str:
    allowed = normalize_cors_origins(config.CORS_ORIGINS) + [config.APP_ORIGIN]
    if origin and origin.rstrip("/") in allowed:
        return origin.rstrip("/")
    return config.APP_ORIGIN


def _admin_redirect(origin: str, query: str) -> RedirectResponse:
    return RedirectResponse(url=f"{origin}/admin/organization?{query}", status_code=302)


@router.get("/oauth/authorize", response_model=AuthorizeUrlResponse)
def authorize(
    request: Request,
    org: OrgContext = Depends(require_org_admin),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
):
    state = encode_state(org.organization_id, _allowed_origin(request.headers.get("origin")))
    return AuthorizeUrlResponse(url=oauth.build_authorization_url(state))


@router.get("/oauth/callback")
def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
):
    """Google redirects the browser here after consent; always answer with a redirect."""
    if error:
        return _admin_redirect(config.APP_ORIGIN, f"drive_error={quote(error)}")
    if not code or not state:
        return _admin_redirect(config.APP_ORIGIN, "drive_error=missing_params")

    try:
        payload = decode_state(state)
    except ValueError:
        return _admin_redirect(config.APP_ORIGIN, "drive_error=invalid_state")

    origin = _allowed_origin(payload.get("origin"))
    org_id = payload["org_id"]

    try:
        tokens = oauth.exchange_code(code)
    except DriveExportError as e:
        logger.error("OAuth code exchange failed", extra={"organization_id": org_id, "error": e.message})
        return _admin_redirect(origin, "drive_error=token_exchange_failed")

    email = oauth.fetch_user_email(tokens["access_token"])
    try:
        connect_integration(db, org_id, tokens, email)
    except MissingRefreshTokenError:
        logger.warning("OAuth consent returned no refresh token", extra={"organization_id": org_id})
        return _admin_redirect(origin, "drive_error=missing_refresh_token")
    logger.info("Google Drive connected", extra={"organization_id": org_id})
    return _admin_redirect(origin, "drive_connected=true")
