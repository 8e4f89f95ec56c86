"""
Error taxonomy for the Drive export pipeline.

Every error is terminal for the export attempt that raised it. The HTTP layer
maps status_code onto the response and attaches `details` (usually the raw
provider body) for diagnostics.
"""

from typing import Any, Optional


class DriveExportError(Exception):
    status_code = 500
    code = "drive_export_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class MissingRefreshTokenError(DriveExportError):
    status_code = 400
    code = "reconnect_required"

    def __init__(self, message: str = "No refresh token. Please reconnect Google Drive.", details: Optional[Any] = None):
        super().__init__(message, details)


class IntegrationNotConnectedError(DriveExportError):
    status_code = 400
    code = "drive_not_connected"

    def __init__(self, message: str = "Google Drive not connected. Please connect first.", details: Optional[Any] = None):
        super().__init__(message, details)


class UnsupportedTypeError(DriveExportError):
    status_code = 400
    code = "unsupported_type"


class AuthorizationError(DriveExportError):
    status_code = 403
    code = "forbidden"


class EntityNotFoundError(DriveExportError):
    status_code = 404
    code = "not_found"


class TokenRefreshError(DriveExportError):
    code = "token_refresh_failed"


class FolderResolutionError(DriveExportError):
    code = "folder_resolution_failed"


class RenderError(DriveExportError):
    code = "render_failed"


class PdfExportError(DriveExportError):
    code = "pdf_export_failed"


class DriveWriteError(DriveExportError):
    code = "drive_write_failed"


class DriveApiError(Exception):
    """Raised by Drive clients for any non-2xx provider response."""

    def __init__(self, status: int, body: Any = None, operation: str = "drive"):
        super().__init__(f"Drive API {operation} failed with status {status}")
        self.status = status
        self.body = body
        self.operation = operation

    @property
    def is_not_found(self) -> bool:
        return self.status == 404
