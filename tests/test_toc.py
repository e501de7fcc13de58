# Table of contents: entries, layout and the page-count correction

import pytest
from reportlab.pdfgen import canvas

from bookbinder.analyze import ContentType, analyze_manifest
from bookbinder.errors import RenderError
from bookbinder.pdfinfo import get_page_count
from bookbinder.toc import (
    TOCEntry, estimate_toc_page_count, generate_toc, layout_toc, render_toc_pdf, resolve_toc,
)

from conftest import TRADE


def fake_render(page_counts):
    """Render stand-in producing the given page counts on successive calls"""
    calls = []

    def _render(entries, out_pdf, page_size, toc_config):
        pages = page_counts[min(len(calls), len(page_counts) - 1)]
        calls.append(list(entries))
        c = canvas.Canvas(str(out_pdf), pagesize=page_size, invariant=1)
        for _ in range(pages):
            c.showPage()
        c.save()

    _render.calls = calls
    return _render


def test_entries_for_flat_book(flat_manifest):
    analysis = analyze_manifest(flat_manifest(), toc_pages=2)
    entries = generate_toc(analysis)
    assert [(e.title, e.page_number, e.target_page) for e in entries] == [
        ("Essay Alpha", 1, 5),
        ("Essay Beta", 3, 7),
        ("Essay Gamma", 7, 11),
    ]
    assert not any(e.is_part or e.is_back_matter for e in entries)


def test_entries_for_parts_and_back_matter(parts_manifest):
    analysis = analyze_manifest(parts_manifest(), toc_pages=2)
    entries = generate_toc(analysis)
    assert [(e.title, e.page_number, e.is_part, e.is_back_matter) for e in entries] == [
        ("Part Alpha", 1, True, False),
        ("Essay Alpha Alpha", 3, False, False),
        ("Part Beta", 5, True, False),
        ("Essay Beta Alpha", 7, False, False),
        ("Part Gamma", 9, True, False),
        ("Essay Gamma Alpha", 11, False, False),
        ("Notes Alpha", 1, False, True),
    ]
    # body numbers count from the first body page
    for e in entries:
        if not e.is_back_matter:
            assert e.page_number == e.target_page - analysis.front_matter_pages


def test_layout_ignores_number_width():
    small = [TOCEntry(f"Essay {chr(65 + i % 26)} on things", 1) for i in range(80)]
    large = [TOCEntry(e.title, 9999) for e in small]
    a = layout_toc(small, TRADE)
    b = layout_toc(large, TRADE)
    assert a.page_count == b.page_count
    assert [(ln.page_index, ln.text) for ln in a.lines] == [(ln.page_index, ln.text) for ln in b.lines]


def test_long_titles_are_truncated():
    entry = TOCEntry("A very long essay title " * 10, 12)
    line = layout_toc([entry], TRADE).lines[0]
    assert line.text.endswith("...")
    assert len(line.text) < len(entry.title)


def test_works_in_parts_are_indented():
    entries = [TOCEntry("Part One", 1, is_part=True), TOCEntry("Essay", 3), TOCEntry("Notes", 1, is_back_matter=True)]
    lines = layout_toc(entries, TRADE).lines
    assert lines[1].x > lines[0].x
    assert lines[2].x == lines[0].x
    assert lines[0].bold and not lines[1].bold


def test_rendered_page_count_matches_layout(tmp_path):
    entries = [TOCEntry(f"Essay number {chr(65 + i % 26)}", i + 1) for i in range(60)]
    out = tmp_path / "toc.pdf"
    layout = render_toc_pdf(entries, out, TRADE)
    assert layout.page_count > 1
    assert get_page_count(out) == layout.page_count
    assert estimate_toc_page_count(entries, TRADE) == layout.page_count


def test_resolve_without_toc(flat_manifest, tmp_path):
    m = flat_manifest(toc=False)
    analysis = analyze_manifest(m)
    render = fake_render([1])
    result, entries, layout = resolve_toc(m, analysis, tmp_path / "build", TRADE, render=render)
    assert result is analysis
    assert entries == []
    assert layout is None
    assert render.calls == []


def test_resolve_single_round_when_estimate_holds(flat_manifest, tmp_path):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    render = fake_render([2])
    result, entries, _ = resolve_toc(m, analysis, tmp_path / "build", TRADE, render=render)
    assert len(render.calls) == 1
    assert result.toc_item.pdf == str(tmp_path / "build" / "toc.pdf")
    assert [i.start_page for i in result.items] == [i.start_page for i in analysis.items]
    assert analysis.toc_item.pdf == ""


def test_resolve_reanalyzes_when_toc_grows(flat_manifest, tmp_path):
    """Estimate of two pages, rendered three: every later item moves by one"""
    m = flat_manifest(works_start_recto=False)
    analysis = analyze_manifest(m, toc_pages=2)
    render = fake_render([3])
    result, entries, _ = resolve_toc(m, analysis, tmp_path / "build", TRADE, render=render)

    assert len(render.calls) == 2
    assert result.toc_item.page_count == 3
    after = analysis.toc_index + 1
    for before, now in zip(analysis.items[after:], result.items[after:]):
        assert now.start_page == before.start_page + 1
    assert [e.target_page for e in entries] == [6, 8, 11]
    # body numbering starts after the front matter either way
    assert [e.page_number for e in entries] == [1, 3, 6]


def test_resolve_fails_when_toc_does_not_settle(flat_manifest, tmp_path):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    with pytest.raises(RenderError, match="did not settle"):
        resolve_toc(m, analysis, tmp_path / "build", TRADE, render=fake_render([3, 4]))


def test_resolve_with_real_renderer(flat_manifest, tmp_path):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    result, entries, layout = resolve_toc(m, analysis, tmp_path / "build", TRADE)
    assert get_page_count(result.toc_item.pdf) == result.toc_item.page_count == layout.page_count
    assert [e.target_page for e in entries] == [i.start_page for i in result.items if i.type is ContentType.WORK]


SHAPES = [
    ("flat", {}),
    ("flat", {"front_pages": (1, 1, 1), "back_pages": (1, 2)}),
    ("flat", {"work_pages": (1, 1, 1), "works_start_recto": False, "back_pages": (3,)}),
    ("parts", {}),
    ("parts", {"parts": ((2, [1, 3]), (0, [2]), (1, [1, 1])), "front_pages": (2,)}),
    ("parts", {"parts": ((1, [2]), (0, []), (1, [2]))}),
    ("parts", {"parts": ((1, [1]), (1, [2])), "works_start_recto": False, "back_pages": ()}),
]


def check_layout(analysis, works_start_recto):
    items = analysis.items
    assert items[0].start_page == 1
    assert items[-1].end_page == analysis.total_pages
    for prev, item in zip(items, items[1:]):
        assert prev.end_page + 1 == item.start_page
    for item in items:
        assert item.end_page - item.start_page + 1 == item.page_count
        if item.type in (ContentType.TOC, ContentType.PART_DIVIDER, ContentType.BACK_MATTER):
            assert item.start_page % 2 == 1, item
        if item.type is ContentType.WORK and works_start_recto:
            assert item.start_page % 2 == 1, item
    assert analysis.front_matter_pages + analysis.body_pages + analysis.back_matter_pages == analysis.total_pages
    for pa in analysis.part_analyses:
        assert pa.end_page - pa.start_page + 1 == pa.page_count
        assert sum(i.page_count for i in analysis.get_part_items(pa.part_index)) == pa.page_count


@pytest.mark.parametrize("rendered", [1, 2, 3])
@pytest.mark.parametrize("kind,kwargs", SHAPES)
def test_layout_holds_before_and_after_correction(flat_manifest, parts_manifest, tmp_path, kind, kwargs, rendered):
    m = (flat_manifest if kind == "flat" else parts_manifest)(**kwargs)
    analysis = analyze_manifest(m, toc_pages=2)
    check_layout(analysis, m.works_start_recto)

    result, entries, _ = resolve_toc(m, analysis, tmp_path / "build", TRADE, render=fake_render([rendered]))
    assert result.toc_item.page_count == rendered
    check_layout(result, m.works_start_recto)
    targets = [i.start_page for i in result.items
               if i.type in (ContentType.PART_DIVIDER, ContentType.WORK, ContentType.BACK_MATTER)]
    assert [e.target_page for e in entries] == targets
