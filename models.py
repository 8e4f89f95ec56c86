from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.sql import func
from database import Base


# --- SUPABASE APPLICATION MODELS ---
# These models map to existing tables in the main application database (Supabase).
# We define them here so the export pipeline can read organizations, roles and
# the documents it renders.


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String, primary_key=True)  # UUID
    name = Column(String)
    accent_color = Column(String, nullable=True)  # "H, S%, L%"
    logo_url = Column(String, nullable=True)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)  # Same as the Supabase auth user id
    organization_id = Column(String, ForeignKey("organizations.id"), index=True)
    full_name = Column(String)


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)
    organization_id = Column(String, index=True)
    role = Column(String)  # admin, employee


class Checklist(Base):
    __tablename__ = "checklists"

    id = Column(String, primary_key=True)
    organization_id = Column(String, index=True)
    title = Column(String)
    description = Column(Text, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)


class ChecklistSection(Base):
    __tablename__ = "checklist_sections"

    id = Column(String, primary_key=True)
    checklist_id = Column(String, ForeignKey("checklists.id"), index=True)
    title = Column(String)
    display_mode = Column(String, default="checkbox")  # checkbox, numbered
    sort_order = Column(Integer, default=0)


class ChecklistItem(Base):
    __tablename__ = "checklist_items"

    id = Column(String, primary_key=True)
    section_id = Column(String, ForeignKey("checklist_sections.id"), index=True)
    parent_item_id = Column(String, nullable=True, index=True)
    text = Column(Text)
    notes = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0)


class GembaDoc(Base):
    """SOP document laid out as pages of image/caption grids."""
    __tablename__ = "gemba_docs"

    id = Column(String, primary_key=True)
    organization_id = Column(String, index=True)
    title = Column(String)
    description = Column(Text, nullable=True)
    grid_rows = Column(Integer, default=2)
    grid_columns = Column(Integer, default=2)
    orientation = Column(String, default="landscape")
    archived_at = Column(DateTime(timezone=True), nullable=True)


class GembaDocPage(Base):
    __tablename__ = "gemba_doc_pages"

    id = Column(String, primary_key=True)
    gemba_doc_id = Column(String, ForeignKey("gemba_docs.id"), index=True)
    page_number = Column(Integer)


class GembaDocCell(Base):
    __tablename__ = "gemba_doc_cells"

    id = Column(String, primary_key=True)
    page_id = Column(String, ForeignKey("gemba_doc_pages.id"), index=True)
    position = Column(Integer)  # 0-based, row-major
    image_url = Column(String, nullable=True)
    step_number = Column(String, nullable=True)
    step_text = Column(Text, nullable=True)


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(String, primary_key=True)
    organization_id = Column(String, index=True)
    name = Column(String)
    description = Column(Text, nullable=True)
    item_type = Column(String, nullable=True)


class MenuItemDocument(Base):
    """
    Links a stable menu item ("tool") to the document currently bound to it.
    A menu item may be rebound over time; the newest non-archived link wins.
    """
    __tablename__ = "menu_item_documents"

    id = Column(String, primary_key=True)
    menu_item_id = Column(String, index=True)
    document_id = Column(String, nullable=True)
    document_type = Column(String)  # checklist, gemba_doc
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FileDirectoryFile(Base):
    __tablename__ = "file_directory_files"

    id = Column(String, primary_key=True)
    organization_id = Column(String, index=True)
    menu_item_id = Column(String, index=True)
    file_name = Column(String)
    file_type = Column(String, nullable=True)
    file_url = Column(String)


# --- DRIVE EXPORT MODELS ---


class OrganizationIntegration(Base):
    """
    One row per organization per external provider.
    A connected record always carries a refresh token; the access token is only
    trusted while token_expires_at is comfortably in the future.
    """
    __tablename__ = "organization_integrations"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String, index=True)
    provider = Column(String, default="google_drive", index=True)
    status = Column(String, default="connected", index=True)  # connected, disconnected
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    root_folder_id = Column(String, nullable=True)
    root_folder_name = Column(String, nullable=True)
    connected_email = Column(String, nullable=True)
    connected_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class DriveFileReference(Base):
    """
    Maps an exported entity to the Drive file it was last written to.
    entity_id is always the id the caller exported with (possibly a menu item id).
    """
    __tablename__ = "drive_file_references"
    __table_args__ = (
        UniqueConstraint("organization_id", "entity_type", "entity_id", name="uq_drive_ref_entity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String, index=True)
    entity_type = Column(String, index=True)  # checklist, gemba_doc, file_directory_file, text_display
    entity_id = Column(String, index=True)
    drive_file_id = Column(String, index=True)
    drive_folder_id = Column(String, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
