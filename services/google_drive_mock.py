import base64
import datetime
import json
import os
import uuid
from typing import Any, Dict, List, Optional

from services.errors import DriveApiError
from services.google_drive_real import DOCUMENT_MIME_TYPE, FOLDER_MIME_TYPE, PDF_MIME_TYPE


class GoogleDriveMockService:
    """
    Stand-in for GoogleDriveRealService used in local development (USE_MOCK_DRIVE=true)
    and tests. State lives in memory, or in a JSON file when `db_file` is given so
    that separate requests share one fake Drive.
    """

    def __init__(self, db_file: Optional[str] = None):
        self.db_file = db_file
        self.calls: List[str] = []
        self._load_db()

    def _load_db(self):
        if self.db_file and os.path.exists(self.db_file):
            with open(self.db_file, "r") as f:
                try:
                    self.db = json.load(f)
                    return
                except json.JSONDecodeError:
                    pass
        if not getattr(self, "db", None):
            self.db = {"files": {}}

    def _save_db(self):
        if self.db_file:
            with open(self.db_file, "w") as f:
                json.dump(self.db, f, indent=2)

    def _record(self, operation: str):
        self.calls.append(operation)

    def _require(self, file_id: str, operation: str) -> Dict[str, Any]:
        self._load_db()
        file = self.db["files"].get(file_id)
        if file is None:
            raise DriveApiError(404, {"error": {"code": 404, "message": f"File not found: {file_id}."}}, operation)
        return file

    def _require_parent(self, parent_id: Optional[str], operation: str) -> None:
        # Drive answers 404 for a deleted parent; a trashed one is treated the same here
        if not parent_id or parent_id == "root":
            return
        parent = self._require(parent_id, operation)
        if parent["trashed"]:
            raise DriveApiError(404, {"error": {"code": 404, "message": f"File not found: {parent_id}."}}, operation)

    def _new_file(self, name: str, mime_type: str, parent_id: Optional[str], content: Optional[bytes] = None) -> Dict[str, Any]:
        file_id = str(uuid.uuid4())
        file = {
            "id": file_id,
            "name": name,
            "mimeType": mime_type,
            "parents": [parent_id or "root"],
            "trashed": False,
            "createdTime": datetime.datetime.now().isoformat(),
            "webViewLink": f"https://mock-drive.google.com/file/{file_id}",
        }
        if content is not None:
            file["content"] = base64.b64encode(content).decode("ascii")
        self.db["files"][file_id] = file
        self._save_db()
        return file

    @staticmethod
    def _public(file: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in file.items() if k != "content"}

    # --- client interface ---

    def get_file(self, file_id: str, fields: str = "") -> Dict[str, Any]:
        self._record("get_file")
        return self._public(self._require(file_id, "get_file"))

    def find_folder(self, name: str, parent_id: str) -> Optional[Dict[str, Any]]:
        self._record("find_folder")
        self._load_db()
        for file in self.db["files"].values():
            if (
                file["name"] == name
                and file["mimeType"] == FOLDER_MIME_TYPE
                and parent_id in file["parents"]
                and not file["trashed"]
            ):
                return {"id": file["id"], "name": file["name"]}
        return None

    def list_folders(self, parent_id: str) -> List[Dict[str, Any]]:
        self._record("list_folders")
        self._load_db()
        folders = [
            {"id": f["id"], "name": f["name"]}
            for f in self.db["files"].values()
            if f["mimeType"] == FOLDER_MIME_TYPE and parent_id in f["parents"] and not f["trashed"]
        ]
        return sorted(folders, key=lambda f: f["name"])

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        self._record("create_folder")
        self._load_db()
        self._require_parent(parent_id, "create_folder")
        return self._public(self._new_file(name, FOLDER_MIME_TYPE, parent_id))

    def create_file(
        self,
        name: str,
        content: bytes,
        mime_type: str,
        parent_id: Optional[str] = None,
        target_mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._record("create_file")
        self._load_db()
        self._require_parent(parent_id, "create_file")
        return self._public(self._new_file(name, target_mime_type or mime_type, parent_id, content))

    def update_file(
        self,
        file_id: str,
        content: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._record("update_file")
        file = self._require(file_id, "update_file")
        if name:
            file["name"] = name
        if content is not None:
            file["content"] = base64.b64encode(content).decode("ascii")
        self._save_db()
        return self._public(file)

    def export_file(self, file_id: str, mime_type: str = PDF_MIME_TYPE) -> bytes:
        self._record("export_file")
        file = self._require(file_id, "export_file")
        if file["mimeType"] != DOCUMENT_MIME_TYPE:
            raise DriveApiError(403, {"error": {"code": 403, "message": "Export only supports Docs Editors files."}}, "export_file")
        return b"%PDF-1.4\n" + self.get_content(file_id)

    def delete_file(self, file_id: str) -> None:
        self._record("delete_file")
        self._require(file_id, "delete_file")
        del self.db["files"][file_id]
        self._save_db()

    # --- test helpers ---

    def trash_file(self, file_id: str) -> None:
        self._require(file_id, "trash_file")["trashed"] = True
        self._save_db()

    def get_content(self, file_id: str) -> bytes:
        encoded = self._require(file_id, "get_content").get("content")
        return base64.b64decode(encoded) if encoded else b""

    def files_named(self, name: str) -> List[Dict[str, Any]]:
        self._load_db()
        return [self._public(f) for f in self.db["files"].values() if f["name"] == name]
