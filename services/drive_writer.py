"""
Writes rendered payloads to Drive, creating a file or updating one in place.

PDF exports round-trip the HTML through a temporary Google Doc: Drive converts
the HTML upload to a native document, which is then exported as PDF. The
temporary document is always deleted, including when the export or the final
write fails.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from services.document_renderer import BinaryPayload, HtmlPayload, RenderedPayload
from services.entity_types import EntityType, OutputKind
from services.errors import DriveApiError, DriveWriteError, PdfExportError
from services.google_drive_real import DOCUMENT_MIME_TYPE, PDF_MIME_TYPE

logger = logging.getLogger("toolboard_drive.writer")

TEMP_DOCUMENT_PREFIX = "_temp_"


def pdf_name(title: str) -> str:
    return title if title.lower().endswith(".pdf") else f"{title}.pdf"


def _write_error(message: str, error: DriveApiError) -> DriveWriteError:
    return DriveWriteError(f"{message} (status {error.status})", details=error.body)


def _require_id(response: Any, operation: str) -> str:
    file_id = response.get("id") if isinstance(response, dict) else None
    if not file_id:
        raise DriveWriteError(f"Drive {operation} returned no file id", details=response)
    return file_id


@contextmanager
def temporary_native_document(drive: Any, folder_id: str, title: str, html: str) -> Iterator[str]:
    """Create a throwaway Google Doc from HTML and delete it on exit."""
    try:
        created = drive.create_file(
            name=f"{TEMP_DOCUMENT_PREFIX}{title}",
            content=html.encode("utf-8"),
            mime_type="text/html",
            parent_id=folder_id,
            target_mime_type=DOCUMENT_MIME_TYPE,
        )
    except DriveApiError as e:
        raise _write_error("Failed to create temporary document", e) from e
    temp_id = _require_id(created, "temporary document create")

    try:
        yield temp_id
    finally:
        try:
            drive.delete_file(temp_id)
        except DriveApiError as e:
            # Leaves an orphaned _temp_ doc on Drive; the original outcome still wins
            logger.warning(
                "Failed to delete temporary document",
                extra={"temp_file_id": temp_id, "status": e.status},
            )


class DriveWriter:
    def write(
        self,
        drive: Any,
        folder_id: str,
        entity_type: EntityType,
        title: str,
        payload: RenderedPayload,
        existing_file_id: Optional[str] = None,
    ) -> str:
        kind = entity_type.output_kind
        if kind == OutputKind.BINARY:
            if not isinstance(payload, BinaryPayload):
                raise DriveWriteError(f"{entity_type.value} exports expect a binary payload")
            return self._write_binary(drive, folder_id, title, payload, existing_file_id)

        if not isinstance(payload, HtmlPayload):
            raise DriveWriteError(f"{entity_type.value} exports expect an HTML payload")
        if kind == OutputKind.PDF:
            return self._write_pdf(drive, folder_id, title, payload, existing_file_id)
        if kind == OutputKind.NATIVE_DOC:
            return self._write_native_doc(drive, folder_id, title, payload, existing_file_id)
        raise DriveWriteError(f"Unhandled output kind {kind}")

    def _write_binary(
        self, drive: Any, folder_id: str, name: str, payload: BinaryPayload, existing_file_id: Optional[str]
    ) -> str:
        try:
            if existing_file_id and self._is_live(drive, existing_file_id):
                drive.update_file(existing_file_id, content=payload.content, mime_type=payload.mime_type)
                return existing_file_id
            created = drive.create_file(
                name=name, content=payload.content, mime_type=payload.mime_type, parent_id=folder_id
            )
        except DriveApiError as e:
            raise _write_error("Failed to upload file to Drive", e) from e
        return _require_id(created, "file create")

    def _write_native_doc(
        self, drive: Any, folder_id: str, title: str, payload: HtmlPayload, existing_file_id: Optional[str]
    ) -> str:
        content = payload.html.encode("utf-8")
        try:
            if existing_file_id and self._is_live(drive, existing_file_id):
                updated = drive.update_file(existing_file_id, content=content, mime_type="text/html", name=title)
                return _require_id(updated, "document update")
            created = drive.create_file(
                name=title,
                content=content,
                mime_type="text/html",
                parent_id=folder_id,
                target_mime_type=DOCUMENT_MIME_TYPE,
            )
        except DriveApiError as e:
            raise _write_error("Failed to write Google Doc", e) from e
        return _require_id(created, "document create")

    def _write_pdf(
        self, drive: Any, folder_id: str, title: str, payload: HtmlPayload, existing_file_id: Optional[str]
    ) -> str:
        with temporary_native_document(drive, folder_id, title, payload.html) as temp_id:
            try:
                pdf_bytes = drive.export_file(temp_id, PDF_MIME_TYPE)
            except DriveApiError as e:
                raise PdfExportError(f"PDF export failed (status {e.status})", details=e.body) from e

            target_name = pdf_name(title)
            if existing_file_id and self._is_live(drive, existing_file_id):
                try:
                    drive.update_file(existing_file_id, content=pdf_bytes, mime_type=PDF_MIME_TYPE)
                    drive.update_file(existing_file_id, name=target_name)
                except DriveApiError as e:
                    raise _write_error("Failed to update PDF on Drive", e) from e
                return existing_file_id

            try:
                created = drive.create_file(
                    name=target_name, content=pdf_bytes, mime_type=PDF_MIME_TYPE, parent_id=folder_id
                )
            except DriveApiError as e:
                raise _write_error("Failed to upload PDF to Drive", e) from e
            return _require_id(created, "PDF create")

    @staticmethod
    def _is_live(drive: Any, file_id: str) -> bool:
        """False when the previously exported file was deleted or trashed out-of-band."""
        try:
            file = drive.get_file(file_id, fields="id, trashed")
        except DriveApiError as e:
            if e.is_not_found:
                logger.info("Previously exported file is gone, creating a new one", extra={"drive_file_id": file_id})
                return False
            raise _write_error("Failed to check existing Drive file", e) from e
        if file.get("trashed"):
            logger.info("Previously exported file is trashed, creating a new one", extra={"drive_file_id": file_id})
            return False
        return True
