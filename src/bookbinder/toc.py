"""Table of contents: entries, rendering and the page-count correction.

The TOC sits in front of the pages it lists, so its own length shifts every
number in it. The build reserves an estimated number of pages, renders the
TOC, measures it and, when the measurement differs, analyzes once more with
the measured size and renders again. Line layout depends only on the entries
(titles are truncated against a fixed number column), so the second render
always has the length the second analysis reserved.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import fitz
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from .analyze import AnalysisResult, ContentType, Section, analyze_manifest
from .book_config import DEFAULT_LAYOUT
from .errors import RenderError
from .manifest import Manifest
from .pdfinfo import get_page_count

# Width reserved for page numbers, wide enough for four digits
NUMBER_COLUMN = "0000"


@dataclass(frozen=True)
class TOCEntry:
    title: str
    page_number: int
    is_part: bool = False
    is_back_matter: bool = False
    target_page: int = 0   # physical page the entry points at


@dataclass(frozen=True)
class TOCLine:
    page_index: int     # 0-based page within the TOC
    x: float
    y: float
    text: str
    number: str
    bold: bool
    entry: TOCEntry


@dataclass
class TOCLayout:
    page_size: tuple[float, float]
    page_count: int
    lines: list[TOCLine] = field(default_factory=list)


def generate_toc(analysis:AnalysisResult) -> list[TOCEntry]:
    """One entry per part divider, work and back-matter item.

    Body and back counters advance over every page of their section, blanks
    included, so the numbers match what the overlay engine stamps.
    """
    entries = []
    body_num = 1
    back_num = 1

    for item in analysis.items:
        if item.section is Section.FRONT:
            continue

        if item.type is ContentType.PART_DIVIDER:
            entries.append(TOCEntry(item.title, body_num, is_part=True, target_page=item.start_page))
        elif item.type is ContentType.WORK:
            entries.append(TOCEntry(item.title, body_num, target_page=item.start_page))
        elif item.type is ContentType.BACK_MATTER:
            entries.append(TOCEntry(item.title, back_num, is_back_matter=True, target_page=item.start_page))

        if item.section is Section.BODY:
            body_num += item.page_count
        else:
            back_num += item.page_count

    return entries


def _fit_title(title:str, font:str, size:float, max_width:float) -> str:
    if stringWidth(title, font, size) <= max_width:
        return title
    while title and stringWidth(title + "...", font, size) > max_width:
        title = title[:-1]
    return title.rstrip() + "..."


def layout_toc(entries:list[TOCEntry], page_size, toc_config:dict|None=None) -> TOCLayout:
    cfg = toc_config or DEFAULT_LAYOUT["toc"]
    width, height = page_size
    left = cfg["margin_left"]
    right = width - cfg["margin_right"]
    top = height - cfg["margin_top"]
    bottom = cfg["margin_bottom"]
    number_w = stringWidth(NUMBER_COLUMN, cfg["font"], cfg["font_size"])

    page_idx = 0
    y = top - cfg["heading_size"] - cfg["line_height"]
    lines = []
    in_part = False

    for entry in entries:
        gap = 0
        if entry.is_part:
            gap = cfg["part_gap"] if lines else 0
            in_part = True
        elif entry.is_back_matter and in_part:
            gap = cfg["part_gap"]
            in_part = False

        needed = gap + cfg["line_height"]
        if y - needed < bottom:
            page_idx += 1
            y = top
            gap = 0
        y -= gap

        indent = cfg["indent"] if (in_part and not entry.is_part) else 0
        font = cfg["bold_font"] if entry.is_part else cfg["font"]
        x = left + indent
        max_w = right - x - number_w - 12
        text = _fit_title(entry.title, font, cfg["font_size"], max_w)
        lines.append(TOCLine(page_idx, x, y, text, str(entry.page_number), entry.is_part, entry))
        y -= cfg["line_height"]

    return TOCLayout(page_size=(width, height), page_count=page_idx + 1, lines=lines)


def estimate_toc_page_count(entries:list[TOCEntry], page_size, toc_config:dict|None=None) -> int:
    return layout_toc(entries, page_size, toc_config).page_count


def render_toc_pdf(entries:list[TOCEntry], out_pdf:Path, page_size, toc_config:dict|None=None) -> TOCLayout:
    """Render the TOC as a text PDF with dotted leaders and right-aligned numbers."""
    cfg = toc_config or DEFAULT_LAYOUT["toc"]
    layout = layout_toc(entries, page_size, cfg)
    width, height = layout.page_size
    right = width - cfg["margin_right"]
    logging.info(f"Rendering TOC with {len(entries)} entries ({layout.page_count} pages) to {out_pdf}")

    try:
        c = canvas.Canvas(str(out_pdf), pagesize=(width, height), invariant=1)
        for page_idx in range(layout.page_count):
            if page_idx == 0:
                c.setFont(cfg["heading_font"], cfg["heading_size"])
                c.drawCentredString(width / 2, height - cfg["margin_top"] - cfg["heading_size"], cfg["heading"])
            for line in [ln for ln in layout.lines if ln.page_index == page_idx]:
                font = cfg["bold_font"] if line.bold else cfg["font"]
                c.setFont(font, cfg["font_size"])
                c.drawString(line.x, line.y, line.text)
                text_w = stringWidth(line.text, font, cfg["font_size"])
                number_w = stringWidth(line.number, font, cfg["font_size"])
                leader_x = line.x + text_w + 6
                leader_w = right - leader_x - number_w - 6
                dot_w = stringWidth(".", font, cfg["font_size"])
                if leader_w > dot_w:
                    c.drawString(leader_x, line.y, "." * int(leader_w / dot_w))
                c.drawRightString(right, line.y, line.number)
            c.showPage()
        c.save()
    except (OSError, ValueError, KeyError) as e:
        raise RenderError(f"failed to render table of contents: {e}") from e
    return layout


def resolve_toc(manifest:Manifest, analysis:AnalysisResult, build_dir:Path, page_size,
                toc_config:dict|None=None, render=render_toc_pdf):
    """Render the TOC and correct the analysis for its real length.

    Returns ``(analysis, entries, layout)`` where ``analysis`` has the TOC
    item pointing at the rendered PDF. ``render`` receives
    ``(entries, out_pdf, page_size, toc_config)``.
    """
    if analysis.toc_index < 0:
        return analysis, [], None

    build_dir = Path(build_dir)
    build_dir.mkdir(parents=True, exist_ok=True)
    toc_pdf = build_dir / "toc.pdf"

    entries = generate_toc(analysis)
    layout = render(entries, toc_pdf, page_size, toc_config)
    actual = get_page_count(toc_pdf)
    logging.info(f"TOC round 1: estimated {analysis.toc_page_estimate} pages, rendered {actual}")

    if actual != analysis.toc_page_estimate:
        analysis = analyze_manifest(manifest, toc_pages=actual)
        entries = generate_toc(analysis)
        layout = render(entries, toc_pdf, page_size, toc_config)
        remeasured = get_page_count(toc_pdf)
        logging.info(f"TOC round 2: reserved {actual} pages, rendered {remeasured}")
        if remeasured != actual:
            raise RenderError(
                f"table of contents did not settle: reserved {actual} pages but rendered {remeasured}"
            )

    return analysis.with_toc_pdf(toc_pdf), entries, layout


def add_toc_links(pdf_path:Path, layout:TOCLayout|None, toc_first_page:int, toc_config:dict|None=None) -> int:
    """Add GoTo links from every TOC line to the page it lists. Returns the link count."""
    if layout is None or not layout.lines:
        return 0
    cfg = toc_config or DEFAULT_LAYOUT["toc"]
    font_size = cfg["font_size"]
    pdf_path = Path(pdf_path)

    try:
        doc = fitz.open(str(pdf_path))
    except (RuntimeError, ValueError) as e:
        raise RenderError(f"failed to open {pdf_path} for TOC links: {e}") from e

    links_added = 0
    try:
        for line in layout.lines:
            toc_page = toc_first_page - 1 + line.page_index
            dest = line.entry.target_page - 1
            if not (0 <= toc_page < len(doc)) or not (0 <= dest < len(doc)):
                logging.debug(f"TOC link for '{line.entry.title}' out of range")
                continue
            page = doc[toc_page]
            page_h = page.rect.height
            right = page.rect.width - cfg["margin_right"]
            # ReportLab's origin is bottom-left, PyMuPDF's is top-left
            rect = fitz.Rect(line.x, page_h - line.y - font_size * 0.8, right, page_h - line.y + font_size * 0.3)
            page.insert_link({"kind": fitz.LINK_GOTO, "page": dest, "from": rect})
            links_added += 1

        tmp_path = pdf_path.with_suffix(".linked.pdf")
        doc.save(str(tmp_path))
    except (RuntimeError, ValueError) as e:
        raise RenderError(f"failed to add TOC links to {pdf_path}: {e}") from e
    finally:
        doc.close()

    os.replace(tmp_path, pdf_path)
    logging.info(f"Added {links_added} clickable TOC links")
    return links_added
