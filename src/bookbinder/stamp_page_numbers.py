"""Stamp page numbers and running headers onto a merged book PDF.

Numbers come from three counters (front matter in lowercase roman, body and
back matter in arabic). Every page advances the counter of its section, even
when its number is hidden, so the stamped numbers always agree with the
table of contents.

Overlays are drawn with reportlab, one small canvas per page, and merged onto
the page with pypdf. The PDF is read once, stamped page by page and written
back in place.
"""
import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.pdfgen import canvas
from tqdm import tqdm

from .analyze import ContentItem, ContentType, Section
from .book_config import DEFAULT_LAYOUT
from .errors import ReadError, RenderError
from .fonts import ensure_fonts
from .manifest import Manifest, Typography
from .pdfinfo import page_box_size


@dataclass
class OverlayConfig:
    typography: Typography = field(default_factory=Typography)
    book_title: str = ""
    margin_bottom: float = DEFAULT_LAYOUT["margin_bottom"]
    margin_top: float = DEFAULT_LAYOUT["margin_top"]
    margin_inner: float = DEFAULT_LAYOUT["margin_inner"]
    margin_outer: float = DEFAULT_LAYOUT["margin_outer"]
    header_y_position: float = DEFAULT_LAYOUT["header_y_position"]
    verso_header: str = "book_title"
    recto_header: str = "essay_title"
    page_number_position: str = "centered"
    suppress_page_numbers: str = "both"

    @classmethod
    def from_manifest(cls, manifest:Manifest, layout:dict|None=None) -> "OverlayConfig":
        layout = layout or DEFAULT_LAYOUT
        return cls(
            typography=manifest.typography,
            book_title=manifest.title,
            margin_bottom=layout["margin_bottom"],
            margin_top=layout["margin_top"],
            margin_inner=layout["margin_inner"],
            margin_outer=layout["margin_outer"],
            header_y_position=layout["header_y_position"],
            verso_header=manifest.verso_header,
            recto_header=manifest.recto_header,
            page_number_position=manifest.page_number_position,
            suppress_page_numbers=manifest.suppress_page_numbers,
        )


_ROMAN = [
    (1000, "m"), (900, "cm"), (500, "d"), (400, "cd"),
    (100, "c"), (90, "xc"), (50, "l"), (40, "xl"),
    (10, "x"), (9, "ix"), (5, "v"), (4, "iv"), (1, "i"),
]


def to_roman(n:int) -> str:
    """Lowercase roman numeral; empty for anything below 1."""
    out = []
    for value, numeral in _ROMAN:
        while n >= value:
            out.append(numeral)
            n -= value
    return "".join(out)


@dataclass
class NumberTracker:
    """Running page counters, carried across separately stamped pieces of a book."""
    front: int = 1
    body: int = 1
    back: int = 1

    def next_number(self, mapping) -> str:
        """Display string for ``mapping``'s page. Advances that section's counter."""
        section = mapping.section
        if section is Section.FRONT:
            text = to_roman(self.front)
            self.front += 1
        elif section is Section.BODY:
            text = str(self.body)
            self.body += 1
        else:
            text = str(self.back)
            self.back += 1
        return text

    def advance(self, section:Section, pages:int):
        if section is Section.FRONT:
            self.front += pages
        elif section is Section.BODY:
            self.body += pages
        else:
            self.back += pages


def should_show_page_number_with_config(mapping, suppress:str) -> bool:
    t = mapping.item.type
    if t is ContentType.BLANK:
        return False
    if t is ContentType.FRONT_MATTER and mapping.page_in_item == 1:
        return False
    if t is ContentType.PART_DIVIDER:
        return suppress in ("never", "essay_starts")
    if mapping.is_first_page_of_work():
        return suppress in ("never", "section_starts")
    return True


def header_text(kind:str, book_title:str, item:ContentItem) -> str:
    if kind == "book_title":
        return book_title
    if kind == "section_title":
        return item.part_title
    if kind == "essay_title":
        return item.title if item.type is ContentType.WORK else ""
    return ""


def page_number_position(physical_page:int, config:OverlayConfig):
    """``(anchor, dx, dy)`` for the page number, or None when numbers are off.

    Anchors are ``bottom-center``, ``bottom-left`` and ``bottom-right``; ``dx``
    is measured from that anchor and ``dy`` from the bottom edge.
    """
    verso = physical_page % 2 == 0
    if config.page_number_position == "none":
        return None
    if config.page_number_position == "outer":
        if verso:
            return "bottom-left", config.margin_outer, config.margin_bottom
        return "bottom-right", -config.margin_outer, config.margin_bottom
    # centre of the text block, which sits toward the outer edge
    offset = (config.margin_inner - config.margin_outer) / 2
    return "bottom-center", (-offset if verso else offset), config.margin_bottom


def header_position(physical_page:int, config:OverlayConfig):
    if physical_page % 2 == 0:
        return "top-left", config.margin_outer, config.header_y_position
    return "top-right", -config.margin_outer, config.header_y_position


@dataclass
class PageStamp:
    physical_page: int
    number: str|None = None
    header: str|None = None


def plan_page_stamps(mappings, config:OverlayConfig, tracker:NumberTracker|None=None) -> list[PageStamp]:
    """What to draw on each page. Advances ``tracker`` over every mapping."""
    if tracker is None:
        tracker = NumberTracker()
    stamps = []
    for m in mappings:
        number = tracker.next_number(m)
        stamp = PageStamp(m.physical_page)
        if config.page_number_position != "none" and should_show_page_number_with_config(m, config.suppress_page_numbers):
            stamp.number = number
        if m.should_show_header():
            kind = config.verso_header if m.is_verso() else config.recto_header
            stamp.header = header_text(kind, config.book_title, m.item) or None
        stamps.append(stamp)
    return stamps


def compute_visible_page_numbers(mappings, config:OverlayConfig, tracker:NumberTracker|None=None) -> list:
    """Displayed number for every page, None where no number is drawn."""
    return [s.number for s in plan_page_stamps(mappings, config, tracker)]


def _draw(c, text, font, size, anchor, dx, dy, width, height):
    c.setFont(font, size)
    if anchor.startswith("top"):
        # dy is the top of the text; reportlab draws from the baseline
        y = height - dy - size
    else:
        y = dy
    if anchor.endswith("center"):
        c.drawCentredString(width / 2 + dx, y, text)
    elif anchor.endswith("left"):
        c.drawString(dx, y, text)
    else:
        c.drawRightString(width + dx, y, text)


def make_overlay(stamp:PageStamp, width:float, height:float, config:OverlayConfig, fonts:dict):
    """A one-page overlay PDF holding ``stamp``'s number and header."""
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(width, height), invariant=1)
    typo = config.typography
    if stamp.number:
        anchor, dx, dy = page_number_position(stamp.physical_page, config)
        _draw(c, stamp.number, fonts["page_number"], typo.page_number_size, anchor, dx, dy, width, height)
    if stamp.header:
        anchor, dx, dy = header_position(stamp.physical_page, config)
        _draw(c, stamp.header, fonts["header"], typo.header_size, anchor, dx, dy, width, height)
    c.showPage()
    c.save()
    packet.seek(0)
    return PdfReader(packet).pages[0]


def stamp_page_numbers(pdf_path:Path, stamps:list[PageStamp], config:OverlayConfig, fonts:dict,
                       show_progress:bool=False) -> int:
    """Merge ``stamps`` onto the pages of ``pdf_path`` and rewrite it. Returns pages stamped."""
    pdf_path = Path(pdf_path)
    out_path = pdf_path.with_suffix('.paged.pdf')
    try:
        reader = PdfReader(str(pdf_path))
        pages = list(reader.pages)
    except (OSError, PyPdfError, ValueError, KeyError) as e:
        raise ReadError(f"failed to read PDF {pdf_path}: {e}", path=pdf_path) from e
    if len(pages) != len(stamps):
        raise RenderError(f"{pdf_path}: {len(pages)} pages but {len(stamps)} page mappings")

    writer = PdfWriter()
    stamped = 0
    for page, stamp in tqdm(zip(pages, stamps), total=len(pages), desc="Stamping", unit="page",
                            disable=not show_progress):
        wp = writer.add_page(page)
        if not (stamp.number or stamp.header):
            continue
        try:
            width, height = page_box_size(wp)
            overlay = make_overlay(stamp, width, height, config, fonts)
            box = wp.mediabox
            if float(box.left) or float(box.bottom):
                wp.merge_translated_page(overlay, float(box.left), float(box.bottom))
            else:
                wp.merge_page(overlay)
        except (PyPdfError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise RenderError(f"failed to stamp page {stamp.physical_page}: {e}", page=stamp.physical_page) from e
        stamped += 1

    try:
        writer.write(str(out_path))
        os.replace(out_path, pdf_path)
    except OSError as e:
        raise RenderError(f"failed to write stamped PDF {pdf_path}: {e}") from e
    return stamped


def apply_overlays(pdf_path:Path, mappings, config:OverlayConfig, tracker:NumberTracker|None=None,
                   show_progress:bool=False, stamp_through:int=0) -> NumberTracker:
    """Stamp numbers and headers onto ``pdf_path`` in place.

    ``mappings`` describe the file's pages in order. ``tracker`` carries the
    counters in and out, so a book can be stamped in pieces. With
    ``stamp_through`` set, pages after that physical page are left bare (the
    counters still advance over them).
    """
    fonts = ensure_fonts(config.typography)
    tracker = tracker if tracker is not None else NumberTracker()
    stamps = plan_page_stamps(mappings, config, tracker)
    if stamp_through:
        stamps = [s if s.physical_page <= stamp_through else PageStamp(s.physical_page) for s in stamps]

    stamped = stamp_page_numbers(pdf_path, stamps, config, fonts, show_progress=show_progress)
    logging.info(f"Stamped {stamped} of {len(stamps)} pages in {pdf_path}")
    return tracker
