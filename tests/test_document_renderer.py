"""
Tests for HTML rendering of checklists, SOP documents and text records.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from services.document_renderer import (
    CHECKBOX_GLYPH,
    DEFAULT_ACCENT_HEX,
    BinaryPayload,
    Branding,
    DocumentRenderer,
    FetchedFile,
    HtmlPayload,
    hsl_to_hex,
)
from services.entity_types import EntityType
from services.errors import RenderError


def _section(id, title, display_mode="checkbox", sort_order=0):
    return SimpleNamespace(id=id, title=title, display_mode=display_mode, sort_order=sort_order)


def _item(id, section_id, text, sort_order=0, parent_item_id=None, notes=None):
    return SimpleNamespace(
        id=id, section_id=section_id, text=text, sort_order=sort_order, parent_item_id=parent_item_id, notes=notes
    )


@pytest.fixture
def renderer():
    return DocumentRenderer(fetch=MagicMock())


@pytest.fixture
def checklist_fixture():
    checklist = SimpleNamespace(id="cl-1", title="Opening Checklist")
    sections = [
        _section("s-check", "Floor", display_mode="checkbox", sort_order=1),
        _section("s-num", "Safety", display_mode="numbered", sort_order=0),
    ]
    items = [
        _item("i-1", "s-num", "Wear gloves", sort_order=0),
        _item("i-1b", "s-num", "Nitrile", sort_order=1, parent_item_id="i-1"),
        _item("i-1a", "s-num", "Cut resistant", sort_order=0, parent_item_id="i-1"),
        _item("i-2", "s-check", "Sweep aisle", sort_order=0, notes="Use the red broom"),
        _item("i-3", "s-check", "Empty bins", sort_order=1),
    ]
    return checklist, sections, items


def test_hsl_to_hex_default_accent():
    assert hsl_to_hex("22, 90%, 54%") == DEFAULT_ACCENT_HEX


@pytest.mark.parametrize("value, expected", [
    ("0, 100%, 50%", "#ff0000"),
    ("120, 100%, 25%", "#008000"),
    ("0, 0%, 100%", "#ffffff"),
])
def test_hsl_to_hex_known_colors(value, expected):
    assert hsl_to_hex(value) == expected


@pytest.mark.parametrize("value", [
    None, "", "red", "22, 90, 54", "22, 90%", "abc, 90%, 54%", "22, 190%, 54%",
    "nan, 50%, 50%", "inf, 50%, 50%", "22, nan%, 54%",
])
def test_hsl_to_hex_malformed_falls_back(value):
    assert hsl_to_hex(value) == DEFAULT_ACCENT_HEX


def test_checklist_markers(renderer, checklist_fixture):
    checklist, sections, items = checklist_fixture

    html = renderer.render_checklist(checklist, sections, items, Branding())

    assert html.count("1.") == 1
    assert ">A.</span>" in html
    assert ">B.</span>" in html
    assert html.count(CHECKBOX_GLYPH) == 2


def test_checklist_ordering(renderer, checklist_fixture):
    checklist, sections, items = checklist_fixture

    html = renderer.render_checklist(checklist, sections, items, Branding())

    # numbered section has the lower sort_order
    assert html.index("Safety") < html.index("Floor")
    assert html.index("Cut resistant") < html.index("Nitrile")
    assert html.index("Sweep aisle") < html.index("Empty bins")


def test_checklist_is_deterministic(renderer, checklist_fixture):
    checklist, sections, items = checklist_fixture
    branding = Branding(accent_color="200, 50%, 40%", logo_url="https://cdn.example.test/logo.png")

    first = renderer.render_checklist(checklist, sections, items, branding)
    second = renderer.render_checklist(checklist, list(reversed(sections)), list(reversed(items)), branding)

    assert first == second


def test_checklist_accent_and_notes(renderer, checklist_fixture):
    checklist, sections, items = checklist_fixture

    html = renderer.render_checklist(checklist, sections, items, Branding(accent_color="0, 100%, 50%"))

    assert "border-left: 4px solid #ff0000" in html
    assert "<em>(Use the red broom)</em>" in html


def test_checklist_without_logo_has_no_img(renderer, checklist_fixture):
    checklist, sections, items = checklist_fixture

    html = renderer.render_checklist(checklist, sections, items, Branding(logo_url=None))

    assert "<img" not in html


def test_checklist_escapes_text(renderer):
    checklist = SimpleNamespace(id="cl-x", title="<script>alert(1)</script>")

    html = renderer.render_checklist(checklist, [], [], Branding())

    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_checklist_missing_title_raises(renderer):
    with pytest.raises(RenderError):
        renderer.render_checklist(SimpleNamespace(id="cl-x", title=None), [], [], Branding())


def test_gemba_doc_grid(renderer):
    doc = SimpleNamespace(
        id="gd-1", title="Press Setup", description="Weekly setup", grid_rows=2, grid_columns=3
    )
    pages = [SimpleNamespace(id="p-2", page_number=2), SimpleNamespace(id="p-1", page_number=1)]
    cells = [
        SimpleNamespace(id="c-0", page_id="p-1", position=0, image_url="https://img.test/a.png",
                        step_number=None, step_text="Power off"),
        SimpleNamespace(id="c-4", page_id="p-1", position=4, image_url=None,
                        step_number=None, step_text="Lock out"),
        SimpleNamespace(id="c-9", page_id="p-2", position=0, image_url=None,
                        step_number=None, step_text="Inspect die"),
    ]

    html = renderer.render_gemba_doc(doc, pages, cells, Branding(logo_url="https://cdn.test/logo.png"))

    assert html.count("<tr><td") == 6  # header row plus 2 grid rows, per page
    assert html.count("width: 33%;") == 12
    assert html.count("<img src=\"https://cdn.test/logo.png\"") == 2
    assert html.count("Press Setup</h1>") == 1
    assert html.count("page-break-after: always;") == 1
    assert html.index("Power off") < html.index("Lock out") < html.index("Inspect die")
    assert ">5</span>" in html  # position 4 badge


def test_gemba_doc_missing_title_raises(renderer):
    doc = SimpleNamespace(id="gd-1", title="", description=None, grid_rows=1, grid_columns=1)
    with pytest.raises(RenderError):
        renderer.render_gemba_doc(doc, [], [], Branding())


def test_text_render(renderer):
    record = SimpleNamespace(id="menu-1", name="Welcome", description="Read <this>")

    payload = renderer.render(EntityType.TEXT_DISPLAY, record)

    assert isinstance(payload, HtmlPayload)
    assert "<h1>Welcome</h1><p>Read &lt;this&gt;</p>" in payload.html


def test_file_fetch_prefers_stored_mime_type():
    fetch = MagicMock(return_value=FetchedFile(content=b"%PDF", content_type="application/octet-stream"))
    renderer = DocumentRenderer(fetch=fetch)
    record = SimpleNamespace(id="f-1", file_name="manual.pdf", file_type="application/pdf",
                             file_url="https://files.test/manual.pdf")

    payload = renderer.render(EntityType.FILE_DIRECTORY_FILE, record)

    assert isinstance(payload, BinaryPayload)
    assert payload.content == b"%PDF"
    assert payload.mime_type == "application/pdf"
    fetch.assert_called_once_with("https://files.test/manual.pdf")


def test_file_fetch_ignores_extension_only_type():
    fetch = MagicMock(return_value=FetchedFile(content=b"data", content_type="image/png"))
    renderer = DocumentRenderer(fetch=fetch)
    record = SimpleNamespace(id="f-2", file_name="photo", file_type="png", file_url="https://files.test/p")

    assert renderer.render(EntityType.FILE_DIRECTORY_FILE, record).mime_type == "image/png"


def test_file_fetch_failure_raises_render_error():
    fetch = MagicMock(side_effect=requests.ConnectionError("unreachable"))
    renderer = DocumentRenderer(fetch=fetch)
    record = SimpleNamespace(id="f-3", file_name="x.txt", file_type=None, file_url="https://files.test/x")

    with pytest.raises(RenderError):
        renderer.render(EntityType.FILE_DIRECTORY_FILE, record)
