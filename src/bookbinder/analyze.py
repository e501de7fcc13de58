"""Pagination model: assign physical page ranges to every manifest item.

One left-to-right pass over the manifest with a running page cursor. Items
that must open on a right-hand page get a synthetic blank in front of them
whenever the cursor is on an even (left-hand) page.

Every item is also charged to a numbering section: front matter (roman),
body (arabic) or back matter (arabic, restarting at 1). A blank that opens a
section belongs to the section before it, so each section starts at its own
page 1 on a recto.
"""
import enum
import logging
from dataclasses import dataclass, field, replace

from .book_config import DEFAULT_LAYOUT
from .manifest import Manifest, Part, Work
from .pdfinfo import get_page_count


class ContentType(enum.Enum):
    FRONT_MATTER = "front_matter"
    TOC = "toc"
    PART_DIVIDER = "part_divider"
    WORK = "work"
    BACK_MATTER = "back_matter"
    BLANK = "blank"


class Section(enum.Enum):
    FRONT = "front"
    BODY = "body"
    BACK = "back"


TOC_TITLE = "Table of Contents"


@dataclass(frozen=True)
class ContentItem:
    type: ContentType
    title: str
    pdf: str
    page_count: int
    start_page: int
    end_page: int
    section: Section
    part_title: str = ""
    work_id: int|None = None

    @property
    def is_blank(self) -> bool:
        return self.type is ContentType.BLANK


@dataclass(frozen=True)
class PartAnalysis:
    part_index: int
    part_id: int
    part_title: str
    start_page: int
    end_page: int
    page_count: int
    work_count: int
    item_start_index: int
    item_end_index: int


@dataclass
class AnalysisResult:
    items: list[ContentItem] = field(default_factory=list)
    front_matter_pages: int = 0
    body_pages: int = 0
    back_matter_pages: int = 0
    total_pages: int = 0
    toc_index: int = -1
    toc_page_estimate: int = 2
    part_analyses: list[PartAnalysis] = field(default_factory=list)

    @property
    def toc_item(self) -> ContentItem|None:
        if self.toc_index < 0:
            return None
        return self.items[self.toc_index]

    def get_part_items(self, part_idx:int) -> list[ContentItem]:
        if part_idx < 0 or part_idx >= len(self.part_analyses):
            return []
        pa = self.part_analyses[part_idx]
        return self.items[pa.item_start_index:pa.item_end_index + 1]

    def with_toc_pdf(self, pdf_path) -> "AnalysisResult":
        """Copy of this result whose TOC item points at the rendered TOC PDF."""
        if self.toc_index < 0:
            return self
        items = list(self.items)
        items[self.toc_index] = replace(items[self.toc_index], pdf=str(pdf_path))
        return replace(self, items=items)


def needs_blank_for_recto(current_page:int) -> bool:
    return current_page % 2 == 0


class _Paginator:
    """Running cursor shared by the analysis helpers."""

    def __init__(self, result:AnalysisResult):
        self.result = result
        self.cursor = 1
        self.section = Section.FRONT

    def add(self, type_:ContentType, title:str, pdf:str, page_count:int, **extra) -> ContentItem:
        item = ContentItem(
            type=type_,
            title=title,
            pdf=pdf,
            page_count=page_count,
            start_page=self.cursor,
            end_page=self.cursor + page_count - 1,
            section=self.section,
            **extra,
        )
        self.result.items.append(item)
        self.cursor += page_count
        return item

    def recto(self, part_title:str=""):
        """Emit a blank if the cursor sits on a verso. Returns True when one was added."""
        if not needs_blank_for_recto(self.cursor):
            return False
        self.add(ContentType.BLANK, "", "", 1, part_title=part_title)
        logging.debug(f"Inserted blank at page {self.cursor - 1} for recto start")
        return True

    def enter(self, section:Section, recto:bool=True):
        """Start a new numbering section; its opening blank stays in the previous one."""
        if recto:
            # charged to the old section, so the new counter reads 1 on its first recto
            self.recto()
        self.section = section


def analyze_manifest(manifest:Manifest, toc_pages:int|None=None) -> AnalysisResult:
    """Assign page ranges to every item of ``manifest``.

    ``toc_pages`` is the number of pages reserved for the table of contents;
    the layout default is used when it is not given. Any PDF whose page count
    cannot be read aborts the analysis with ReadError.
    """
    if toc_pages is None:
        toc_pages = DEFAULT_LAYOUT["toc_page_estimate"]
    result = AnalysisResult(toc_page_estimate=toc_pages)
    pager = _Paginator(result)

    for fm in manifest.front_matter:
        if fm.is_toc_placeholder:
            pager.recto()
            result.toc_index = len(result.items)
            pager.add(ContentType.TOC, TOC_TITLE, "", toc_pages)
            continue
        pager.add(ContentType.FRONT_MATTER, fm.type, fm.pdf, get_page_count(fm.pdf))

    result.front_matter_pages = pager.cursor - 1
    first_body = True

    if manifest.has_parts():
        for part_idx, part in enumerate(manifest.parts):
            if first_body:
                pager.enter(Section.BODY, recto=True)
                result.front_matter_pages = pager.cursor - 1
                first_body = False
            part_start_page = pager.cursor
            item_start_idx = len(result.items)
            _add_part(pager, part, manifest.works_start_recto)
            result.part_analyses.append(PartAnalysis(
                part_index=part_idx,
                part_id=part.id,
                part_title=part.title,
                start_page=part_start_page,
                end_page=pager.cursor - 1,
                page_count=pager.cursor - part_start_page,
                work_count=len(part.works),
                item_start_index=item_start_idx,
                item_end_index=len(result.items) - 1,
            ))
    else:
        for work in manifest.works:
            if first_body:
                pager.enter(Section.BODY, recto=manifest.works_start_recto)
                result.front_matter_pages = pager.cursor - 1
                first_body = False
            _add_work(pager, work, "", manifest.works_start_recto)

    body_end = pager.cursor
    for idx, bm in enumerate(manifest.back_matter):
        if idx == 0:
            pager.enter(Section.BACK, recto=True)
            body_end = pager.cursor
        else:
            pager.recto()
        pager.add(ContentType.BACK_MATTER, bm.type, bm.pdf, get_page_count(bm.pdf))

    result.body_pages = body_end - 1 - result.front_matter_pages
    result.back_matter_pages = pager.cursor - body_end
    result.total_pages = pager.cursor - 1

    blanks = sum(1 for item in result.items if item.is_blank)
    logging.info(
        f"Analyzed {len(result.items)} items: {result.total_pages} pages "
        f"(front {result.front_matter_pages}, body {result.body_pages}, "
        f"back {result.back_matter_pages}, {blanks} blanks, TOC reserved {toc_pages})"
    )
    return result


def _add_part(pager:_Paginator, part:Part, works_start_recto:bool):
    pager.recto(part_title=part.title)
    if part.has_divider:
        pager.add(ContentType.PART_DIVIDER, part.title, part.pdf, get_page_count(part.pdf),
                  part_title=part.title)
    for work in part.works:
        _add_work(pager, work, part.title, works_start_recto)


def _add_work(pager:_Paginator, work:Work, part_title:str, works_start_recto:bool):
    if works_start_recto:
        pager.recto(part_title=part_title)
    pager.add(ContentType.WORK, work.title, work.pdf, get_page_count(work.pdf),
              part_title=part_title, work_id=work.id)


def analyze_by_parts(manifest:Manifest, toc_pages:int|None=None) -> list[PartAnalysis]:
    return analyze_manifest(manifest, toc_pages).part_analyses
