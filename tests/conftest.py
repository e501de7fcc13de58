# Shared fixtures: source PDFs drawn with reportlab and manifests built from them.
# Fixture text never contains digits, so stamped page numbers can be read back
# with pypdf text extraction.

import re

import pytest
from pypdf import PdfReader
from reportlab.pdfgen import canvas

from bookbinder.manifest import BackMatterItem, FrontMatterItem, Manifest, Part, Work
from bookbinder.merge import PageMapping

NAMES = ["Alpha", "Beta", "Gamma", "Delta", "Epsilon", "Zeta", "Eta", "Theta"]
TRADE = (432, 648)


@pytest.fixture(autouse=True)
def isolated_cache(tmp_path, monkeypatch):
    """Keep cache writes out of the home directory"""
    monkeypatch.setenv("BOOKBINDER_CACHE_DIR", str(tmp_path / "cache-root"))


@pytest.fixture
def make_pdf(tmp_path):
    """Factory writing a PDF with ``pages`` pages of plain text"""
    src = tmp_path / "src"
    src.mkdir(exist_ok=True)

    def _make(name, pages, size=TRADE, text="Lorem ipsum dolor"):
        path = src / f"{name}.pdf"
        c = canvas.Canvas(str(path), pagesize=size, invariant=1)
        for _ in range(pages):
            c.setFont("Helvetica", 12)
            c.drawString(72, size[1] / 2, text)
            c.showPage()
        c.save()
        return str(path)

    return _make


@pytest.fixture
def flat_manifest(tmp_path, make_pdf):
    """Factory for a book of works without parts"""

    def _make(work_pages=(2, 3, 2), front_pages=(1, 1), toc=True, back_pages=(), **kwargs):
        front = [
            FrontMatterItem(type=f"front {NAMES[i].lower()}", pdf=make_pdf(f"front_{NAMES[i].lower()}", n))
            for i, n in enumerate(front_pages)
        ]
        if toc:
            front.append(FrontMatterItem(type="toc", placeholder=True))
        works = [
            Work(id=i + 1, title=f"Essay {NAMES[i]}", pdf=make_pdf(f"work_{NAMES[i].lower()}", n))
            for i, n in enumerate(work_pages)
        ]
        back = [
            BackMatterItem(type=f"Notes {NAMES[i]}", pdf=make_pdf(f"back_{NAMES[i].lower()}", n))
            for i, n in enumerate(back_pages)
        ]
        return Manifest(
            title="Collected Essays",
            output_path=str(tmp_path / "out" / "book.pdf"),
            front_matter=front,
            works=works,
            back_matter=back,
            **kwargs,
        )

    return _make


@pytest.fixture
def parts_manifest(tmp_path, make_pdf):
    """Factory for a book of parts.

    ``parts`` is a list of ``(divider_pages, [work pages...])``; a divider of
    zero pages means the part has no divider. Part ids are 10, 20, 30...
    """

    def _make(parts=((1, [1]), (1, [2]), (1, [1])), front_pages=(1,), toc=True, back_pages=(1,), **kwargs):
        front = [
            FrontMatterItem(type=f"front {NAMES[i].lower()}", pdf=make_pdf(f"front_{NAMES[i].lower()}", n))
            for i, n in enumerate(front_pages)
        ]
        if toc:
            front.append(FrontMatterItem(type="toc", placeholder=True))
        built = []
        for p_idx, (divider_pages, work_pages) in enumerate(parts):
            part_name = NAMES[p_idx]
            works = [
                Work(
                    id=(p_idx + 1) * 100 + w_idx,
                    title=f"Essay {part_name} {NAMES[w_idx]}",
                    pdf=make_pdf(f"work_{part_name.lower()}_{NAMES[w_idx].lower()}", n),
                )
                for w_idx, n in enumerate(work_pages)
            ]
            built.append(Part(
                id=(p_idx + 1) * 10,
                title=f"Part {part_name}",
                pdf=make_pdf(f"part_{part_name.lower()}", divider_pages) if divider_pages else "",
                works=works,
            ))
        back = [
            BackMatterItem(type=f"Notes {NAMES[i]}", pdf=make_pdf(f"back_{NAMES[i].lower()}", n))
            for i, n in enumerate(back_pages)
        ]
        return Manifest(
            title="Collected Essays",
            output_path=str(tmp_path / "out" / "book.pdf"),
            front_matter=front,
            parts=built,
            back_matter=back,
            **kwargs,
        )

    return _make


def mappings_for(items):
    """One PageMapping per page of ``items``, as the merger records them"""
    return [
        PageMapping(item.start_page + p - 1, item, p)
        for item in items
        for p in range(1, item.page_count + 1)
    ]


def page_texts(pdf_path):
    reader = PdfReader(str(pdf_path))
    return [page.extract_text() or "" for page in reader.pages]


def digits(text):
    return re.findall(r"\d+", text)


def items_of(analysis, content_type):
    return [item for item in analysis.items if item.type is content_type]
