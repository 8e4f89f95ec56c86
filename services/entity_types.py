from enum import Enum

from services.errors import UnsupportedTypeError


class OutputKind(str, Enum):
    PDF = "pdf"
    NATIVE_DOC = "native_doc"
    BINARY = "binary"


class EntityType(str, Enum):
    """Exportable document categories, keyed by their wire value."""

    CHECKLIST = "checklist"
    GEMBA_DOC = "gemba_doc"
    FILE_DIRECTORY_FILE = "file_directory_file"
    TEXT_DISPLAY = "text_display"

    @classmethod
    def parse(cls, value: str) -> "EntityType":
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedTypeError(f"Unsupported type: {value}")

    @property
    def folder_name(self) -> str:
        return CATEGORY_FOLDER_NAMES.get(self, DEFAULT_CATEGORY_FOLDER)

    @property
    def output_kind(self) -> OutputKind:
        return OUTPUT_KINDS[self]

    @property
    def is_tool(self) -> bool:
        """Tools are addressed through menu items that may be rebound to another document."""
        return self in (EntityType.CHECKLIST, EntityType.GEMBA_DOC)


DEFAULT_CATEGORY_FOLDER = "Other"

CATEGORY_FOLDER_NAMES = {
    EntityType.CHECKLIST: "Checklists",
    EntityType.GEMBA_DOC: "SOPs",
    EntityType.FILE_DIRECTORY_FILE: "Files",
    EntityType.TEXT_DISPLAY: "Text",
}

OUTPUT_KINDS = {
    EntityType.CHECKLIST: OutputKind.PDF,
    EntityType.GEMBA_DOC: OutputKind.PDF,
    EntityType.FILE_DIRECTORY_FILE: OutputKind.BINARY,
    EntityType.TEXT_DISPLAY: OutputKind.NATIVE_DOC,
}
