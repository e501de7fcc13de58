"""Concatenate analyzed items into one PDF and record what lands on each page."""
import logging
from dataclasses import dataclass, field
from pathlib import Path

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.pdfgen import canvas

from .analyze import AnalysisResult, ContentItem, ContentType, Section
from .book_config import DEFAULT_LAYOUT
from .errors import ReadError, RenderError
from .manifest import expand_path
from .pdfinfo import get_page_size, is_landscape, page_box_size


class NumberStyle:
    NONE = "none"
    ROMAN = "roman"
    ARABIC = "arabic"


@dataclass(frozen=True)
class PageMapping:
    physical_page: int
    item: ContentItem
    page_in_item: int

    @property
    def section(self) -> Section:
        return self.item.section

    def is_first_page_of_work(self) -> bool:
        return self.item.type is ContentType.WORK and self.page_in_item == 1

    def should_show_header(self) -> bool:
        return self.item.type is ContentType.WORK and self.page_in_item > 1

    def should_show_page_number(self) -> bool:
        t = self.item.type
        if t in (ContentType.BLANK, ContentType.PART_DIVIDER):
            return False
        if t in (ContentType.FRONT_MATTER, ContentType.WORK) and self.page_in_item == 1:
            return False
        return True

    def number_style(self) -> str:
        t = self.item.type
        if t in (ContentType.FRONT_MATTER, ContentType.TOC):
            return NumberStyle.ROMAN
        if t in (ContentType.PART_DIVIDER, ContentType.WORK, ContentType.BACK_MATTER):
            return NumberStyle.ARABIC
        return NumberStyle.NONE

    def is_verso(self) -> bool:
        return self.physical_page % 2 == 0

    def is_recto(self) -> bool:
        return self.physical_page % 2 == 1


@dataclass
class MergeResult:
    output_path: Path
    total_pages: int
    page_mappings: list[PageMapping] = field(default_factory=list)
    rotated_pages: list[int] = field(default_factory=list)


def create_blank_page(out_pdf:Path, width:float, height:float):
    try:
        c = canvas.Canvas(str(out_pdf), pagesize=(width, height), invariant=1)
        c.showPage()
        c.save()
    except OSError as e:
        raise RenderError(f"failed to create blank page {out_pdf}: {e}") from e


def blank_page_path(build_dir:Path, size) -> Path:
    """Blank filler of the given size, created on first use."""
    width, height = size
    path = Path(build_dir) / f"blank-{round(width)}x{round(height)}.pdf"
    if not path.exists():
        logging.debug(f"Creating blank page {width}x{height} at {path}")
        create_blank_page(path, width, height)
    return path


def default_page_size(analysis:AnalysisResult, layout:dict|None=None, template_path:str="") -> tuple[float, float]:
    """Page size for fillers and the TOC: a PDF template, else the first real item, else the layout."""
    layout = layout or DEFAULT_LAYOUT
    if template_path and template_path.lower().endswith(".pdf") and Path(expand_path(template_path)).exists():
        return get_page_size(template_path)
    for item in analysis.items:
        if item.pdf and item.type is not ContentType.TOC:
            return get_page_size(item.pdf)
    return layout["page_width"], layout["page_height"]


def _read(pdf_path) -> PdfReader:
    try:
        reader = PdfReader(expand_path(str(pdf_path)))
        _ = len(reader.pages)
        return reader
    except (OSError, PyPdfError, ValueError, KeyError) as e:
        raise ReadError(f"failed to read PDF {pdf_path}: {e}", path=pdf_path) from e


def rotation_for_page(physical_page:int) -> int:
    """Quarter turn for a landscape page; its top edge ends up on the spine side."""
    return -90 if physical_page % 2 == 1 else 90


def _upright(page, physical_page:int) -> bool:
    """Turn a landscape page to portrait and bake any /Rotate into its content.

    Overlays are drawn in unrotated page space, so merged pages must carry no
    /Rotate. Returns True when the page was turned.
    """
    turned = is_landscape(page)
    if turned:
        page.rotate(rotation_for_page(physical_page))
    if page.rotation % 360:
        page.transfer_rotation_to_content()
    return turned


def merge_with_tracking(items:list[ContentItem], build_dir:Path, out_pdf:Path, default_size) -> MergeResult:
    """Concatenate ``items`` into ``out_pdf``, one PageMapping per page.

    Blank items are filled with a page sized like the most recent real page.
    A TOC item without a rendered PDF is filled with blanks. Landscape pages
    are turned to portrait. Nothing is written until every source has been
    read.
    """
    build_dir = Path(build_dir)
    build_dir.mkdir(parents=True, exist_ok=True)
    writer = PdfWriter()
    mappings = []
    rotated = []
    last_size = None

    def add_blank(item, page_in_item):
        size = last_size or tuple(default_size)
        # a fresh reader per filler so no page object is shared between positions
        writer.add_page(_read(blank_page_path(build_dir, size)).pages[0])
        mappings.append(PageMapping(item.start_page + page_in_item - 1, item, page_in_item))

    for item in items:
        if item.is_blank or (item.type is ContentType.TOC and not item.pdf):
            for p in range(1, item.page_count + 1):
                add_blank(item, p)
            continue

        reader = _read(item.pdf)
        if len(reader.pages) != item.page_count:
            raise ReadError(
                f"{item.title or item.pdf}: expected {item.page_count} pages, found {len(reader.pages)}",
                path=item.pdf,
            )
        for p, page in enumerate(reader.pages, start=1):
            physical = item.start_page + p - 1
            wp = writer.add_page(page)
            try:
                if _upright(wp, physical):
                    rotated.append(physical)
            except (PyPdfError, ValueError, KeyError) as e:
                raise RenderError(f"failed to rotate page {physical} ({item.title}): {e}", page=physical) from e
            mappings.append(PageMapping(physical, item, p))
            last_size = page_box_size(wp)

    if not mappings:
        raise ReadError("no PDFs to merge")

    out_pdf = Path(out_pdf)
    writer.write(str(out_pdf))
    if rotated:
        logging.info(f"Turned {len(rotated)} landscape pages to portrait: {rotated}")
    logging.info(f"Merged {len(items)} items into {out_pdf} ({len(mappings)} pages)")
    return MergeResult(output_path=out_pdf, total_pages=len(mappings), page_mappings=mappings,
                       rotated_pages=rotated)


def merge_analysis(analysis:AnalysisResult, build_dir:Path, out_pdf:Path, default_size=None) -> MergeResult:
    if default_size is None:
        default_size = default_page_size(analysis)
    return merge_with_tracking(analysis.items, build_dir, out_pdf, default_size)


def build_bookmarks(items:list[ContentItem]) -> list[tuple[str, int, int]]:
    """Outline entries ``(title, physical_page, level)`` for dividers, works and back matter."""
    bookmarks = []
    divider_part = None
    for item in items:
        if item.type is ContentType.TOC:
            bookmarks.append(("Contents", item.start_page, 0))
        elif item.type is ContentType.PART_DIVIDER:
            divider_part = item.title
            bookmarks.append((item.title, item.start_page, 0))
        elif item.type is ContentType.WORK:
            level = 1 if item.part_title and item.part_title == divider_part else 0
            bookmarks.append((item.title, item.start_page, level))
        elif item.type is ContentType.BACK_MATTER:
            divider_part = None
            bookmarks.append((item.title, item.start_page, 0))
    return bookmarks


def merge_files(paths:list[Path], out_pdf:Path, bookmarks:list[tuple[str, int, int]]|None=None) -> int:
    """Concatenate whole PDFs, optionally adding outline items. Returns the page count."""
    if not paths:
        raise ReadError("no files to merge")
    readers = [_read(p) for p in paths]
    merger = PdfWriter()
    for reader in readers:
        for page in reader.pages:
            merger.add_page(page)

    if bookmarks:
        parent = None
        for title, page, level in bookmarks:
            if not (1 <= page <= len(merger.pages)):
                logging.debug(f"Bookmark '{title}' points past the end ({page})")
                continue
            if level == 0:
                parent = merger.add_outline_item(title, page - 1)
            else:
                merger.add_outline_item(title, page - 1, parent=parent)

    total = len(merger.pages)
    merger.write(str(out_pdf))
    logging.info(f"Stitched {len(paths)} PDFs into {out_pdf} ({total} pages)")
    return total
