from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ExportRequest(BaseModel):
    # type and id are validated by the endpoint so the error body matches the
    # other 400 responses instead of FastAPI's 422
    type: Optional[str] = Field(None, description="checklist, gemba_doc, file_directory_file or text_display")
    id: Optional[str] = Field(None, description="Entity id, or the menu item id of a tool")
    folderId: Optional[str] = Field(None, description="Explicit destination folder; skips folder resolution")
    appUrl: Optional[str] = Field(None, description="Page the export was started from")


class ExportResponse(BaseModel):
    success: bool = True
    drive_file_id: str
    message: str


class ResyncRequest(BaseModel):
    type: Optional[str] = Field(None, description="Limit the re-sync to one entity type")


class ResyncResponse(BaseModel):
    queued: int


class DriveFolder(BaseModel):
    id: str
    name: Optional[str] = None


class FolderListResponse(BaseModel):
    folders: List[DriveFolder]


class CreateFolderRequest(BaseModel):
    name: str = Field(..., min_length=1)
    parentId: Optional[str] = Field(None, description="Parent folder; defaults to the Drive root")


class VerifyResponse(BaseModel):
    invalidIds: List[int]
    removedEntityIds: List[str]


class DriveReferenceResponse(BaseModel):
    entity_type: str
    entity_id: str
    drive_file_id: str
    drive_folder_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConnectionStatusResponse(BaseModel):
    connected: bool
    connected_email: Optional[str] = None
    references: List[DriveReferenceResponse] = []


class AuthorizeUrlResponse(BaseModel):
    url: str
