"""
End-to-end tests for /api/drive/* against a SQLite database and the in-memory Drive fake.
"""

import base64
import json
import os
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import database
import models
import routers.drive_export
from config import config
from database import Base
from main import app
from services.errors import DriveApiError
from services.google_drive_mock import GoogleDriveMockService
from services.google_drive_real import DOCUMENT_MIME_TYPE, PDF_MIME_TYPE
from services.google_oauth import decode_state, encode_state

# Setup Test DB
DB_FILE = "./test_drive_export_api.db"
engine = create_engine(f"sqlite:///{DB_FILE}", connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_JWT_SECRET = "test-secret-for-drive-export-api-0123456789"

mock_drive = GoogleDriveMockService()


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


def _token(user_id: str, secret: str = TEST_JWT_SECRET) -> str:
    payload = {"sub": user_id, "role": "authenticated", "exp": int(time.time()) + 3600}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {_token(user_id)}"}


def _far_future():
    return datetime.now(timezone.utc) + timedelta(days=30)


def _seed(db):
    db.add_all([
        models.Organization(id="org-1", name="Plant One", accent_color="22, 90%, 54%"),
        models.Organization(id="org-2", name="Plant Two"),
        models.Organization(id="org-3", name="Plant Three"),
        models.Profile(id="admin-1", organization_id="org-1"),
        models.Profile(id="member-1", organization_id="org-1"),
        models.Profile(id="admin-2", organization_id="org-2"),
        models.Profile(id="admin-3", organization_id="org-3"),
        models.UserRole(user_id="admin-1", organization_id="org-1", role="admin"),
        models.UserRole(user_id="member-1", organization_id="org-1", role="employee"),
        models.UserRole(user_id="admin-2", organization_id="org-2", role="admin"),
        models.UserRole(user_id="admin-3", organization_id="org-3", role="admin"),
        models.OrganizationIntegration(
            organization_id="org-1", provider="google_drive", status="connected",
            access_token="live-token", refresh_token="refresh-1", token_expires_at=_far_future(),
            connected_email="owner@plant-one.test",
        ),
        # org-3 has an expired token whose refresh the provider rejects
        models.OrganizationIntegration(
            organization_id="org-3", provider="google_drive", status="connected",
            access_token="stale", refresh_token="revoked", token_expires_at=datetime.now(timezone.utc),
        ),
        models.MenuItem(id="menu-item-123", organization_id="org-1", name="Shift Notes",
                        description="Hand over open issues.", item_type="text_display"),
        models.Checklist(id="cl-1", organization_id="org-1", title="Opening Checklist"),
        models.ChecklistSection(id="sec-1", checklist_id="cl-1", title="Safety", display_mode="numbered"),
        models.ChecklistItem(id="item-1", section_id="sec-1", text="Wear gloves", sort_order=0),
        models.Checklist(id="cl-bound", organization_id="org-1", title="Closing Checklist"),
        models.ChecklistSection(id="sec-2", checklist_id="cl-bound", title="Lockup"),
        models.ChecklistItem(id="item-2", section_id="sec-2", text="Lock rear door", sort_order=0),
        models.MenuItemDocument(id="link-1", menu_item_id="menu-closing", document_id="cl-bound",
                                document_type="checklist"),
        models.Checklist(id="cl-3", organization_id="org-3", title="Plant Three Checklist"),
        models.FileDirectoryFile(id="file-1", organization_id="org-1", menu_item_id="menu-files",
                                 file_name="manual.pdf", file_type="application/pdf",
                                 file_url="https://storage.test/manual.pdf"),
    ])
    db.commit()


@pytest.fixture(scope="module")
def client():
    if os.path.exists(DB_FILE):
        os.remove(DB_FILE)
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    _seed(db)
    db.close()

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[routers.drive_export.get_drive_client_factory] = lambda: (lambda token: mock_drive)
    app.dependency_overrides[routers.drive_export.get_session_factory] = lambda: TestingSessionLocal

    with patch.object(config, "SUPABASE_JWT_SECRET", TEST_JWT_SECRET), \
         patch.object(config, "APP_ORIGIN", "https://app.toolboard.test"), \
         patch.object(config, "CORS_ORIGINS", "https://app.toolboard.test,https://preview.toolboard.test"):
        with TestClient(app) as c:
            yield c

    app.dependency_overrides.clear()
    engine.dispose()
    if os.path.exists(DB_FILE):
        os.remove(DB_FILE)


@pytest.fixture(autouse=True)
def clean_drive():
    mock_drive.db = {"files": {}}
    mock_drive.calls.clear()
    yield
    db = TestingSessionLocal()
    db.query(models.DriveFileReference).delete()
    db.commit()
    db.close()


def _references(org_id="org-1"):
    db = TestingSessionLocal()
    try:
        return [
            (r.entity_type, r.entity_id, r.drive_file_id, r.drive_folder_id)
            for r in db.query(models.DriveFileReference).filter(
                models.DriveFileReference.organization_id == org_id
            ).order_by(models.DriveFileReference.id)
        ]
    finally:
        db.close()


def _export(client, body, user="admin-1"):
    return client.post("/api/drive/export", json=body, headers=auth(user))


# --- authentication and validation ---

def test_missing_bearer_is_unauthorized(client):
    response = client.post("/api/drive/export", json={"type": "checklist", "id": "cl-1"})
    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"


def test_header_fallback_is_not_accepted(client):
    response = client.post(
        "/api/drive/export", json={"type": "checklist", "id": "cl-1"}, headers={"x-user-id": "admin-1"}
    )
    assert response.status_code == 401


def test_token_with_wrong_signature_is_unauthorized(client):
    headers = {"Authorization": f"Bearer {_token('admin-1', secret='another-secret-of-sufficient-length-000')}"}
    response = client.post("/api/drive/export", json={"type": "checklist", "id": "cl-1"}, headers=headers)
    assert response.status_code == 401


def test_user_without_organization(client):
    response = _export(client, {"type": "checklist", "id": "cl-1"}, user="stranger")
    assert response.status_code == 400
    assert response.json()["error"] == "No organization found"


def test_non_admin_is_forbidden(client):
    response = _export(client, {"type": "checklist", "id": "cl-1"}, user="member-1")
    assert response.status_code == 403
    assert response.json()["error"] == "Admin access required"


@pytest.mark.parametrize("body", [{}, {"type": "checklist"}, {"id": "cl-1"}])
def test_missing_type_or_id(client, body):
    response = _export(client, body)
    assert response.status_code == 400
    assert response.json()["error"] == "Missing type or id"


def test_unsupported_type(client):
    response = _export(client, {"type": "spreadsheet", "id": "x"})
    assert response.status_code == 400
    assert response.json()["code"] == "unsupported_type"
    assert mock_drive.calls == []


def test_drive_not_connected(client):
    response = _export(client, {"type": "checklist", "id": "cl-1"}, user="admin-2")
    assert response.status_code == 400
    assert response.json()["error"] == "Google Drive not connected. Please connect first."


def test_entity_not_found(client):
    response = _export(client, {"type": "checklist", "id": "missing"})
    assert response.status_code == 404
    assert response.json()["error"] == "Checklist not found"
    assert _references() == []


# --- export flows ---

def test_text_display_end_to_end(client):
    response = _export(client, {"type": "text_display", "id": "menu-item-123"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    file_id = body["drive_file_id"]

    exported = mock_drive.get_file(file_id)
    assert exported["name"] == "Shift Notes"
    assert exported["mimeType"] == DOCUMENT_MIME_TYPE
    assert b"<h1>Shift Notes</h1><p>Hand over open issues.</p>" in mock_drive.get_content(file_id)

    text_folder = mock_drive.files_named("Text")[0]
    root = mock_drive.files_named("_app_storage")[0]
    assert exported["parents"] == [text_folder["id"]]
    assert text_folder["parents"] == [root["id"]]

    assert _references() == [("text_display", "menu-item-123", file_id, text_folder["id"])]


def test_reexport_is_idempotent(client):
    first = _export(client, {"type": "checklist", "id": "cl-1"}).json()["drive_file_id"]
    second = _export(client, {"type": "checklist", "id": "cl-1"}).json()["drive_file_id"]

    assert first == second
    assert mock_drive.get_file(first)["mimeType"] == PDF_MIME_TYPE
    assert len(mock_drive.files_named("Opening Checklist.pdf")) == 1
    assert len(mock_drive.files_named("Checklists")) == 1
    assert len(_references()) == 1
    assert [f for f in mock_drive.db["files"].values() if f["name"].startswith("_temp_")] == []


def test_orphaned_reference_is_recovered(client):
    first = _export(client, {"type": "checklist", "id": "cl-1"}).json()["drive_file_id"]
    mock_drive.trash_file(first)

    response = _export(client, {"type": "checklist", "id": "cl-1"})

    assert response.status_code == 200
    second = response.json()["drive_file_id"]
    assert second != first
    assert [r[2] for r in _references()] == [second]


def test_menu_item_is_resolved_but_reference_keeps_caller_id(client):
    response = _export(client, {"type": "checklist", "id": "menu-closing"})

    assert response.status_code == 200
    file_id = response.json()["drive_file_id"]
    assert mock_drive.get_file(file_id)["name"] == "Closing Checklist.pdf"
    assert b"Lock rear door" in mock_drive.get_content(file_id)
    assert [r[1] for r in _references()] == ["menu-closing"]


def test_explicit_folder_skips_folder_resolution(client):
    chosen = mock_drive.create_folder("Shared with floor")["id"]

    response = _export(client, {"type": "checklist", "id": "cl-1", "folderId": chosen})

    assert response.status_code == 200
    assert mock_drive.get_file(response.json()["drive_file_id"])["parents"] == [chosen]
    assert mock_drive.files_named("_app_storage") == []
    assert _references()[0][3] == chosen


def test_directory_file_is_uploaded_as_is(client):
    stored = MagicMock(status_code=200, content=b"%PDF-1.7 manual", headers={"content-type": "application/pdf"})
    with patch("services.document_renderer.requests.get", return_value=stored) as mock_get:
        response = _export(client, {"type": "file_directory_file", "id": "file-1"})

    assert response.status_code == 200
    file_id = response.json()["drive_file_id"]
    mock_get.assert_called_once()
    assert mock_drive.get_file(file_id)["mimeType"] == "application/pdf"
    assert mock_drive.get_content(file_id) == b"%PDF-1.7 manual"
    assert mock_drive.get_file(file_id)["parents"] == [mock_drive.files_named("Files")[0]["id"]]


def test_pdf_export_failure_cleans_up_and_reports(client):
    failure = DriveApiError(500, {"error": {"message": "conversion failed"}}, "export_file")
    with patch.object(mock_drive, "export_file", side_effect=failure):
        response = _export(client, {"type": "checklist", "id": "cl-1"})

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "pdf_export_failed"
    assert body["details"] == {"error": {"message": "conversion failed"}}
    assert [f for f in mock_drive.db["files"].values() if f["name"].startswith("_temp_")] == []
    assert _references() == []


def test_token_refresh_failure_surfaces_provider_body(client):
    rejected = MagicMock(status_code=400, ok=False, text="invalid_grant")
    rejected.json.return_value = {"error": "invalid_grant"}
    with patch("services.google_oauth.requests.post", return_value=rejected):
        response = _export(client, {"type": "checklist", "id": "cl-3"}, user="admin-3")

    assert response.status_code == 500
    assert response.json()["code"] == "token_refresh_failed"
    assert response.json()["details"] == {"error": "invalid_grant"}
    assert mock_drive.calls == []


# --- status, folders, verify, resync ---

def test_status_is_visible_to_members(client):
    _export(client, {"type": "checklist", "id": "cl-1"})

    response = client.get("/api/drive/status", headers=auth("member-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["connected"] is True
    assert body["connected_email"] == "owner@plant-one.test"
    assert [(r["entity_type"], r["entity_id"]) for r in body["references"]] == [("checklist", "cl-1")]


def test_folder_picker_lists_and_creates(client):
    created = client.post("/api/drive/folders", json={"name": "Audits"}, headers=auth("admin-1"))
    assert created.status_code == 200
    assert created.json()["name"] == "Audits"

    listed = client.get("/api/drive/folders", headers=auth("admin-1"))
    assert listed.status_code == 200
    assert listed.json()["folders"] == [{"id": created.json()["id"], "name": "Audits"}]

    nested = client.get(f"/api/drive/folders?parent_id={created.json()['id']}", headers=auth("admin-1"))
    assert nested.json()["folders"] == []


def test_folder_picker_requires_admin(client):
    assert client.get("/api/drive/folders", headers=auth("member-1")).status_code == 403


def test_verify_reports_missing_files_without_deleting(client):
    kept = _export(client, {"type": "checklist", "id": "cl-1"}).json()["drive_file_id"]
    gone = _export(client, {"type": "text_display", "id": "menu-item-123"}).json()["drive_file_id"]
    mock_drive.delete_file(gone)

    response = client.post("/api/drive/verify", headers=auth("admin-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["removedEntityIds"] == ["menu-item-123"]
    assert len(body["invalidIds"]) == 1
    assert {r[2] for r in _references()} == {kept, gone}


def test_resync_reexports_previous_exports(client):
    first = _export(client, {"type": "checklist", "id": "cl-1"}).json()["drive_file_id"]
    _export(client, {"type": "text_display", "id": "menu-item-123"})
    mock_drive.calls.clear()

    response = client.post("/api/drive/resync", json={"type": "checklist"}, headers=auth("admin-1"))

    assert response.status_code == 200
    assert response.json() == {"queued": 1}
    assert "export_file" in mock_drive.calls
    assert [r[2] for r in _references() if r[0] == "checklist"] == [first]


def test_resync_without_body_queues_everything(client):
    _export(client, {"type": "checklist", "id": "cl-1"})
    _export(client, {"type": "text_display", "id": "menu-item-123"})

    response = client.post("/api/drive/resync", headers=auth("admin-1"))

    assert response.json() == {"queued": 2}


# --- OAuth consent round trip ---

def test_authorize_url_carries_org_state(client):
    response = client.get(
        "/api/drive/oauth/authorize",
        headers={**auth("admin-1"), "Origin": "https://preview.toolboard.test"},
    )

    assert response.status_code == 200
    query = parse_qs(urlparse(response.json()["url"]).query)
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert decode_state(query["state"][0]) == {"org_id": "org-1", "origin": "https://preview.toolboard.test"}


def test_callback_connects_integration(client):
    oauth = MagicMock()
    oauth.exchange_code.return_value = {"access_token": "a-2", "refresh_token": "r-2", "expires_in": 3600}
    oauth.fetch_user_email.return_value = "admin@plant-two.test"
    app.dependency_overrides[routers.drive_export.get_oauth_client] = lambda: oauth
    try:
        response = client.get(
            "/api/drive/oauth/callback",
            params={"code": "auth-code", "state": encode_state("org-2", "https://preview.toolboard.test")},
            follow_redirects=False,
        )
    finally:
        del app.dependency_overrides[routers.drive_export.get_oauth_client]

    assert response.status_code == 302
    assert response.headers["location"] == "https://preview.toolboard.test/admin/organization?drive_connected=true"
    oauth.exchange_code.assert_called_once_with("auth-code")

    db = TestingSessionLocal()
    try:
        integration = db.query(models.OrganizationIntegration).filter(
            models.OrganizationIntegration.organization_id == "org-2"
        ).one()
        assert integration.status == "connected"
        assert integration.refresh_token == "r-2"
        assert integration.connected_email == "admin@plant-two.test"
    finally:
        db.query(models.OrganizationIntegration).filter(
            models.OrganizationIntegration.organization_id == "org-2"
        ).delete()
        db.commit()
        db.close()


@pytest.mark.parametrize("params, expected", [
    ({"error": "access_denied"}, "drive_error=access_denied"),
    ({"code": "x"}, "drive_error=missing_params"),
    ({"code": "x", "state": "garbage"}, "drive_error=invalid_state"),
])
def test_callback_errors_redirect_to_app(client, params, expected):
    response = client.get("/api/drive/oauth/callback", params=params, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == f"https://app.toolboard.test/admin/organization?{expected}"


def test_callback_rejects_unsigned_state(client):
    oauth = MagicMock()
    oauth.exchange_code.return_value = {"access_token": "a-x", "refresh_token": "attacker-r", "expires_in": 3600}
    forged = base64.urlsafe_b64encode(json.dumps({"org_id": "org-1"}).encode("utf-8")).decode("ascii")
    app.dependency_overrides[routers.drive_export.get_oauth_client] = lambda: oauth
    try:
        response = client.get(
            "/api/drive/oauth/callback",
            params={"code": "attacker-code", "state": forged},
            follow_redirects=False,
        )
    finally:
        del app.dependency_overrides[routers.drive_export.get_oauth_client]

    assert response.headers["location"] == "https://app.toolboard.test/admin/organization?drive_error=invalid_state"
    oauth.exchange_code.assert_not_called()
    db = TestingSessionLocal()
    try:
        integration = db.query(models.OrganizationIntegration).filter(
            models.OrganizationIntegration.organization_id == "org-1"
        ).one()
        assert integration.refresh_token == "refresh-1"
        assert integration.connected_email == "owner@plant-one.test"
    finally:
        db.close()


def test_callback_without_refresh_token_does_not_connect(client):
    oauth = MagicMock()
    oauth.exchange_code.return_value = {"access_token": "a-x", "expires_in": 3600}
    oauth.fetch_user_email.return_value = "admin@plant-two.test"
    app.dependency_overrides[routers.drive_export.get_oauth_client] = lambda: oauth
    try:
        response = client.get(
            "/api/drive/oauth/callback",
            params={"code": "auth-code", "state": encode_state("org-2", "https://preview.toolboard.test")},
            follow_redirects=False,
        )
    finally:
        del app.dependency_overrides[routers.drive_export.get_oauth_client]

    assert response.status_code == 302
    assert response.headers["location"] == (
        "https://preview.toolboard.test/admin/organization?drive_error=missing_refresh_token"
    )
    db = TestingSessionLocal()
    try:
        assert db.query(models.OrganizationIntegration).filter(
            models.OrganizationIntegration.organization_id == "org-2"
        ).count() == 0
    finally:
        db.close()


def test_callback_ignores_unknown_origin(client):
    oauth = MagicMock()
    oauth.exchange_code.side_effect = routers.drive_export.DriveExportError("Token exchange failed")
    app.dependency_overrides[routers.drive_export.get_oauth_client] = lambda: oauth
    try:
        response = client.get(
            "/api/drive/oauth/callback",
            params={"code": "x", "state": encode_state("org-2", "https://evil.test")},
            follow_redirects=False,
        )
    finally:
        del app.dependency_overrides[routers.drive_export.get_oauth_client]

    assert response.headers["location"] == "https://app.toolboard.test/admin/organization?drive_error=token_exchange_failed"


# --- service endpoints ---

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["connected_integrations"] >= 1


def test_metrics_exposes_export_counters(client):
    _export(client, {"type": "checklist", "id": "cl-1"})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "drive_exports_total" in response.text
    assert "drive_export_duration_seconds" in response.text


def test_other_organizations_documents_are_not_exportable(client):
    response = _export(client, {"type": "checklist", "id": "cl-3"})

    assert response.status_code == 404
    assert mock_drive.calls == []
