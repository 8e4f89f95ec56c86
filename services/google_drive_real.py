import io
import json
import logging
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from services.errors import DriveApiError

logger = logging.getLogger("toolboard_drive.drive")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DOCUMENT_MIME_TYPE = "application/vnd.google-apps.document"
PDF_MIME_TYPE = "application/pdf"

FILE_FIELDS = "id, name, mimeType, parents, trashed, webViewLink"


def escape_query_value(value: str) -> str:
    """Escape a literal for use inside a single-quoted Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def folder_query(name: str, parent_id: str) -> str:
    return (
        f"name = '{escape_query_value(name)}' and mimeType = '{FOLDER_MIME_TYPE}' "
        f"and '{escape_query_value(parent_id)}' in parents and trashed = false"
    )


def _error_body(error: HttpError) -> Any:
    try:
        return json.loads(error.content.decode("utf-8"))
    except (ValueError, AttributeError):
        return error.content.decode("utf-8", errors="replace") if error.content else None


class GoogleDriveRealService:
    """
    Drive v3 client acting as the organization's linked Google account.

    Every provider failure surfaces as DriveApiError(status, body); callers
    decide whether that is a folder, write or export failure. Nothing is retried.
    """

    def __init__(self, access_token: str, service: Any = None):
        if service is None:
            creds = Credentials(token=access_token)
            service = build("drive", "v3", credentials=creds, cache_discovery=False)
        self.service = service

    def _execute(self, request, operation: str):
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status if e.resp is not None else 0
            logger.warning("Drive API call failed", extra={"operation": operation, "status": status})
            raise DriveApiError(int(status), _error_body(e), operation) from e

    def get_file(self, file_id: str, fields: str = FILE_FIELDS) -> Dict[str, Any]:
        return self._execute(
            self.service.files().get(fileId=file_id, fields=fields, supportsAllDrives=True),
            "get_file",
        )

    def find_folder(self, name: str, parent_id: str) -> Optional[Dict[str, Any]]:
        """First non-trashed folder called `name` directly under `parent_id`, if any."""
        result = self._execute(
            self.service.files().list(
                q=folder_query(name, parent_id),
                fields="files(id, name)",
                pageSize=10,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ),
            "find_folder",
        )
        files = result.get("files", [])
        return files[0] if files else None

    def list_folders(self, parent_id: str) -> List[Dict[str, Any]]:
        query = (
            f"mimeType = '{FOLDER_MIME_TYPE}' and '{escape_query_value(parent_id)}' in parents "
            "and trashed = false"
        )
        result = self._execute(
            self.service.files().list(
                q=query,
                fields="files(id, name)",
                orderBy="name",
                pageSize=100,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ),
            "list_folders",
        )
        return result.get("files", [])

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        file_metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            file_metadata["parents"] = [parent_id]

        return self._execute(
            self.service.files().create(body=file_metadata, fields="id, name, parents", supportsAllDrives=True),
            "create_folder",
        )

    def create_file(
        self,
        name: str,
        content: bytes,
        mime_type: str,
        parent_id: Optional[str] = None,
        target_mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Multipart upload: JSON metadata part followed by the media part.
        `target_mime_type` asks Drive to convert the upload (e.g. HTML -> Google Doc).
        """
        file_metadata: Dict[str, Any] = {"name": name}
        if parent_id:
            file_metadata["parents"] = [parent_id]
        if target_mime_type:
            file_metadata["mimeType"] = target_mime_type

        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
        return self._execute(
            self.service.files().create(
                body=file_metadata,
                media_body=media,
                fields="id, name, mimeType, parents",
                supportsAllDrives=True,
            ),
            "create_file",
        )

    def update_file(
        self,
        file_id: str,
        content: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Replace content and/or rename in place. Content without a name is a media-only PATCH."""
        kwargs: Dict[str, Any] = {"fileId": file_id, "fields": "id, name, mimeType", "supportsAllDrives": True}
        if name:
            kwargs["body"] = {"name": name}
        if content is not None:
            kwargs["media_body"] = MediaIoBaseUpload(
                io.BytesIO(content), mimetype=mime_type or "application/octet-stream", resumable=False
            )
        return self._execute(self.service.files().update(**kwargs), "update_file")

    def export_file(self, file_id: str, mime_type: str = PDF_MIME_TYPE) -> bytes:
        return self._execute(self.service.files().export(fileId=file_id, mimeType=mime_type), "export_file")

    def delete_file(self, file_id: str) -> None:
        self._execute(self.service.files().delete(fileId=file_id, supportsAllDrives=True), "delete_file")
