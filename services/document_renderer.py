"""
Turns exportable entities into something the Drive writer can upload.

Checklists, SOP documents and text records become self-contained HTML with
inline styles (Drive's HTML import ignores stylesheets); directory files are
passed through as raw bytes fetched from their stored URL.
"""
import colorsys
import math
import html
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from config import config
from services.entity_types import EntityType
from services.errors import RenderError

logger = logging.getLogger("toolboard_drive.renderer")

# hsl(22, 90%, 54%), the application's default accent
DEFAULT_ACCENT_HEX = "#f36e20"
CHECKBOX_GLYPH = "&#9744;"
SECTION_HEADER_BACKGROUND = "#f5f5f5"


@dataclass
class Branding:
    accent_color: Optional[str] = None
    logo_url: Optional[str] = None


@dataclass
class HtmlPayload:
    html: str
    mime_type: str = "text/html"


@dataclass
class BinaryPayload:
    content: bytes
    mime_type: str = "application/octet-stream"


RenderedPayload = Union[HtmlPayload, BinaryPayload]


@dataclass
class FetchedFile:
    content: bytes
    content_type: Optional[str] = None


def hsl_to_hex(value: Optional[str], default: str = DEFAULT_ACCENT_HEX) -> str:
    """
    Convert an "H, S%, L%" string (e.g. "22, 90%, 54%") to "#rrggbb".
    Anything that does not parse yields `default`.
    """
    if not value:
        return default
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 3 or not parts[1].endswith("%") or not parts[2].endswith("%"):
        return default
    try:
        hue = float(parts[0])
        saturation = float(parts[1][:-1])
        lightness = float(parts[2][:-1])
    except ValueError:
        return default
    if not math.isfinite(hue) or not (0 <= saturation <= 100 and 0 <= lightness <= 100):
        return default

    r, g, b = colorsys.hls_to_rgb((hue % 360) / 360.0, lightness / 100.0, saturation / 100.0)
    return "#{:02x}{:02x}{:02x}".format(round(r * 255), round(g * 255), round(b * 255))


def _text(value: Any) -> str:
    return html.escape(str(value)) if value is not None else ""


def _required(record: Any, attr: str, label: str) -> str:
    value = getattr(record, attr, None)
    if value is None or not str(value).strip():
        raise RenderError(f"Cannot render {label}: missing {attr}")
    return str(value)


def _sorted(records: List[Any], key: str) -> List[Any]:
    return sorted(records, key=lambda r: (getattr(r, key, None) is None, getattr(r, key, None) or 0))


def _document(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{_text(title)}</title></head>"
        f"<body style=\"font-family: Arial, Helvetica, sans-serif; color: #1a1a1a;\">{body}</body></html>"
    )


def _logo(logo_url: Optional[str]) -> str:
    if not logo_url:
        return ""
    return f"<img src=\"{html.escape(logo_url, quote=True)}\" alt=\"Logo\" height=\"64\" style=\"height: 64px;\">"


def _default_fetch(url: str) -> FetchedFile:
    resp = requests.get(url, timeout=config.HTTP_TIMEOUT_SECONDS)
    resp.raise_for_status()
    content_type = resp.headers.get("content-type")
    if content_type:
        content_type = content_type.split(";")[0].strip()
    return FetchedFile(content=resp.content, content_type=content_type)


class DocumentRenderer:
    def __init__(self, fetch: Callable[[str], FetchedFile] = _default_fetch):
        self.fetch = fetch

    def render(
        self,
        entity_type: EntityType,
        entity_record: Any,
        related_records: Optional[Dict[str, List[Any]]] = None,
        branding: Optional[Branding] = None,
    ) -> RenderedPayload:
        related = related_records or {}
        branding = branding or Branding()

        if entity_type == EntityType.CHECKLIST:
            return HtmlPayload(self.render_checklist(
                entity_record, related.get("sections", []), related.get("items", []), branding
            ))
        if entity_type == EntityType.GEMBA_DOC:
            return HtmlPayload(self.render_gemba_doc(
                entity_record, related.get("pages", []), related.get("cells", []), branding
            ))
        if entity_type == EntityType.TEXT_DISPLAY:
            return HtmlPayload(self.render_text(entity_record))
        if entity_type == EntityType.FILE_DIRECTORY_FILE:
            return self.fetch_file(entity_record)
        raise RenderError(f"No renderer for entity type {entity_type}")

    # --- checklist ---

    def render_checklist(self, checklist: Any, sections: List[Any], items: List[Any], branding: Branding) -> str:
        title = _required(checklist, "title", "checklist")
        accent = hsl_to_hex(branding.accent_color)

        header = (
            "<table style=\"width: 100%; border-collapse: collapse; border-bottom: 2px solid #000000; margin-bottom: 16px;\"><tr>"
            f"<td style=\"width: 20%; text-align: left; vertical-align: middle;\">{_logo(branding.logo_url)}</td>"
            f"<td style=\"text-align: center; vertical-align: middle;\"><h1 style=\"font-weight: bold; margin: 0;\">{_text(title)}</h1></td>"
            "<td style=\"width: 20%;\"></td>"
            "</tr></table>"
        )

        blocks = []
        for section in _sorted(sections, "sort_order"):
            blocks.append(self._render_section(section, items, accent))

        return _document(title, header + "".join(blocks))

    def _render_section(self, section: Any, items: List[Any], accent: str) -> str:
        numbered = (getattr(section, "display_mode", None) or "checkbox") == "numbered"
        section_items = [i for i in items if i.section_id == section.id]
        top_level = _sorted([i for i in section_items if not i.parent_item_id], "sort_order")

        lines = []
        for index, item in enumerate(top_level):
            marker = f"{index + 1}." if numbered else CHECKBOX_GLYPH
            lines.append(self._render_item(item, marker, depth=0))

            children = _sorted([c for c in section_items if c.parent_item_id == item.id], "sort_order")
            for child_index, child in enumerate(children):
                child_marker = f"{chr(65 + child_index % 26)}." if numbered else CHECKBOX_GLYPH
                lines.append(self._render_item(child, child_marker, depth=1))

        return (
            "<div style=\"margin-bottom: 18px;\">"
            f"<div style=\"background-color: {SECTION_HEADER_BACKGROUND}; border-left: 4px solid {accent}; "
            f"padding: 6px 10px; font-weight: bold;\">{_text(section.title)}</div>"
            f"{''.join(lines)}"
            "</div>"
        )

    @staticmethod
    def _render_item(item: Any, marker: str, depth: int) -> str:
        notes = getattr(item, "notes", None)
        notes_html = f" <em>({_text(notes)})</em>" if notes else ""
        return (
            f"<p style=\"margin: 4px 0 4px {8 + depth * 24}px; padding-bottom: 4px; border-bottom: 1px solid #e5e5e5;\">"
            f"<span style=\"display: inline-block; min-width: 24px; font-weight: bold;\">{marker}</span> "
            f"{_text(item.text)}{notes_html}</p>"
        )

    # --- SOP (gemba) document ---

    def render_gemba_doc(self, doc: Any, pages: List[Any], cells: List[Any], branding: Branding) -> str:
        title = _required(doc, "title", "SOP document")
        accent = hsl_to_hex(branding.accent_color)
        rows = max(int(getattr(doc, "grid_rows", None) or 1), 1)
        columns = max(int(getattr(doc, "grid_columns", None) or 1), 1)

        ordered_pages = _sorted(pages, "page_number")
        rendered = []
        for page_index, page in enumerate(ordered_pages):
            page_cells = {c.position: c for c in cells if c.page_id == page.id}
            is_last = page_index == len(ordered_pages) - 1
            rendered.append(self._render_gemba_page(
                doc, title, page_index + 1, page_cells, rows, columns, accent, branding, is_last
            ))

        return _document(title, "".join(rendered))

    def _render_gemba_page(
        self,
        doc: Any,
        title: str,
        page_number: int,
        page_cells: Dict[int, Any],
        rows: int,
        columns: int,
        accent: str,
        branding: Branding,
        is_last: bool,
    ) -> str:
        heading = ""
        if page_number == 1:
            description = getattr(doc, "description", None)
            heading = (
                f"<h1 style=\"margin: 0; font-weight: bold;\">{_text(title)}</h1>"
                f"<p style=\"margin: 4px 0 0 0; color: #666666;\">{_text(description)}</p>"
            )

        header = (
            "<table style=\"width: 100%; border-collapse: collapse; margin-bottom: 8px;\"><tr>"
            f"<td style=\"width: 20%; text-align: left; vertical-align: middle;\">{_logo(branding.logo_url)}</td>"
            f"<td style=\"text-align: center; vertical-align: middle;\">{heading}</td>"
            f"<td style=\"width: 20%; text-align: right; vertical-align: middle; color: {accent}; "
            f"font-size: 20px; font-weight: bold;\">{page_number}</td>"
            "</tr></table>"
        )

        width = 100 // columns
        grid_rows = []
        for row in range(rows):
            tds = []
            for column in range(columns):
                position = row * columns + column
                cell = page_cells.get(position)
                tds.append(self._render_gemba_cell(cell, position, width, accent))
            grid_rows.append(f"<tr>{''.join(tds)}</tr>")

        page_break = "" if is_last else "page-break-after: always;"
        return (
            f"<div style=\"{page_break}\">{header}"
            f"<table style=\"width: 100%; border-collapse: separate; border-spacing: 6px;\">{''.join(grid_rows)}</table>"
            "</div>"
        )

    @staticmethod
    def _render_gemba_cell(cell: Any, position: int, width: int, accent: str) -> str:
        if cell is None or not (cell.image_url or cell.step_text):
            return f"<td style=\"width: {width}%;\"></td>"

        image = ""
        if cell.image_url:
            image = (
                f"<img src=\"{html.escape(cell.image_url, quote=True)}\" alt=\"Step {position + 1}\" "
                "style=\"width: 100%; max-height: 220px;\">"
            )
        return (
            f"<td style=\"width: {width}%; vertical-align: top; border: 1px solid #dddddd; padding: 4px;\">"
            f"<span style=\"background-color: {accent}; color: #ffffff; font-weight: bold; padding: 2px 8px;\">"
            f"{position + 1}</span>"
            f"<div>{image}</div>"
            f"<p style=\"margin: 4px 0 0 0;\">{_text(cell.step_text)}</p>"
            "</td>"
        )

    # --- text record ---

    def render_text(self, record: Any) -> str:
        name = _required(record, "name", "text record")
        body = f"<h1>{_text(name)}</h1><p>{_text(getattr(record, 'description', None))}</p>"
        return _document(name, body)

    # --- directory file ---

    def fetch_file(self, file_record: Any) -> BinaryPayload:
        _required(file_record, "file_name", "directory file")
        url = _required(file_record, "file_url", "directory file")
        try:
            fetched = self.fetch(url)
        except requests.RequestException as e:
            logger.error("Failed to fetch stored file", extra={"file_id": getattr(file_record, "id", None)})
            raise RenderError(f"Failed to fetch stored file: {e}") from e

        # file_type is sometimes a bare extension; only trust it when it looks like a MIME type
        stored_type = getattr(file_record, "file_type", None)
        if not stored_type or "/" not in stored_type:
            stored_type = None
        mime_type = stored_type or fetched.content_type or "application/octet-stream"
        return BinaryPayload(content=fetched.content, mime_type=mime_type)
