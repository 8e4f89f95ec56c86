from datetime import datetime, timedelta, timezone

from database import SessionLocal, engine
import models

DEMO_ORG_ID = "org-demo"
DEMO_ADMIN_ID = "user-admin"


def seed_data():
    """Seed a demo organization with one of each exportable document (SQLite only)."""
    if "sqlite" not in str(engine.url):
        print("Refusing to seed a non-SQLite database.")
        return

    db = SessionLocal()
    try:
        # Clear previous demo data so the script can be re-run
        print("Clearing demo data...")
        for model in (
            models.DriveFileReference,
            models.OrganizationIntegration,
            models.MenuItemDocument,
            models.MenuItem,
            models.FileDirectoryFile,
            models.GembaDocCell,
            models.GembaDocPage,
            models.GembaDoc,
            models.ChecklistItem,
            models.ChecklistSection,
            models.Checklist,
            models.UserRole,
            models.Profile,
            models.Organization,
        ):
            db.query(model).delete()

        print("Seeding demo organization...")
        db.add(models.Organization(id=DEMO_ORG_ID, name="Demo Plant", accent_color="22, 90%, 54%"))
        db.add(models.Profile(id=DEMO_ADMIN_ID, organization_id=DEMO_ORG_ID, full_name="Demo Admin"))
        db.add(models.UserRole(user_id=DEMO_ADMIN_ID, organization_id=DEMO_ORG_ID, role="admin"))

        # Checklist reachable through a menu item
        db.add(models.Checklist(id="cl-opening", organization_id=DEMO_ORG_ID, title="Opening Checklist"))
        db.add(models.ChecklistSection(
            id="sec-1", checklist_id="cl-opening", title="Before shift", display_mode="numbered", sort_order=0
        ))
        db.add(models.ChecklistItem(id="item-1", section_id="sec-1", text="Check safety gear", sort_order=0))
        db.add(models.ChecklistItem(
            id="item-1a", section_id="sec-1", parent_item_id="item-1", text="Gloves", sort_order=0
        ))
        db.add(models.MenuItem(id="menu-opening", organization_id=DEMO_ORG_ID, name="Opening", item_type="checklist"))
        db.add(models.MenuItemDocument(
            id="link-opening", menu_item_id="menu-opening", document_id="cl-opening", document_type="checklist"
        ))

        # Gemba doc
        db.add(models.GembaDoc(
            id="gd-press", organization_id=DEMO_ORG_ID, title="Press Setup", grid_rows=1, grid_columns=2
        ))
        db.add(models.GembaDocPage(id="gd-press-p1", gemba_doc_id="gd-press", page_number=1))
        db.add(models.GembaDocCell(id="gd-press-c0", page_id="gd-press-p1", position=0, step_text="Power off"))

        # Text display
        db.add(models.MenuItem(
            id="menu-welcome", organization_id=DEMO_ORG_ID, name="Welcome",
            description="Read before your first shift.", item_type="text_display",
        ))

        # Mock-mode integration; tokens are never sent anywhere when USE_MOCK_DRIVE=true
        db.add(models.OrganizationIntegration(
            organization_id=DEMO_ORG_ID, provider="google_drive", status="connected",
            access_token="mock-access-token", refresh_token="mock-refresh-token",
            token_expires_at=datetime.now(timezone.utc) + timedelta(days=3650),
        ))

        db.commit()
        print("Demo data seeded.")
    finally:
        db.close()


if __name__ == "__main__":
    seed_data()
