# Overlay engine: counters, suppression, headers, positions and stamping

import warnings
from pathlib import Path

import pytest
import reportlab
from reportlab.pdfbase import pdfmetrics

from bookbinder.analyze import ContentItem, ContentType, Section, analyze_manifest
from bookbinder.errors import FontError, RenderError
from bookbinder.fonts import ensure_fonts, resolve_font
from bookbinder.manifest import Typography
from bookbinder.merge import PageMapping, merge_analysis
from bookbinder.stamp_page_numbers import (
    NumberTracker, OverlayConfig, apply_overlays, compute_visible_page_numbers, header_text,
    page_number_position, plan_page_stamps, should_show_page_number_with_config, to_roman,
)

from conftest import digits, mappings_for, page_texts


def config_for(manifest):
    return OverlayConfig.from_manifest(manifest)


@pytest.mark.parametrize("n,expected", [(1, "i"), (4, "iv"), (9, "ix"), (14, "xiv"), (40, "xl"), (1999, "mcmxcix")])
def test_to_roman(n, expected):
    assert to_roman(n) == expected


def test_to_roman_below_one():
    assert to_roman(0) == ""


def test_tracker_advances_per_section():
    front = ContentItem(ContentType.FRONT_MATTER, "Title", "", 2, 1, 2, Section.FRONT)
    work = ContentItem(ContentType.WORK, "Essay", "", 2, 3, 4, Section.BODY)
    back = ContentItem(ContentType.BACK_MATTER, "Notes", "", 1, 5, 5, Section.BACK)
    tracker = NumberTracker()
    shown = [tracker.next_number(m) for m in mappings_for([front, work, back])]
    assert shown == ["i", "ii", "1", "2", "1"]
    assert tracker == NumberTracker(front=3, body=3, back=2)


def test_visible_numbers_default_policy(flat_manifest):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    visible = compute_visible_page_numbers(mappings_for(analysis.items), config_for(m))
    assert visible == [None, None, "iii", "iv", None, "2", None, "4", "5", None, None, "8"]


def test_visible_numbers_never_suppress(flat_manifest):
    m = flat_manifest(suppress_page_numbers="never")
    analysis = analyze_manifest(m, toc_pages=2)
    visible = compute_visible_page_numbers(mappings_for(analysis.items), config_for(m))
    assert visible == [None, None, "iii", "iv", "1", "2", "3", "4", "5", None, "7", "8"]


def test_section_and_essay_start_policies(parts_manifest):
    m = parts_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    mappings = mappings_for(analysis.items)

    m.suppress_page_numbers = "section_starts"
    visible = compute_visible_page_numbers(mappings, config_for(m))
    # dividers on 5, 9 and 13; work openings on 7, 11 and 15
    assert [visible[p - 1] for p in (5, 9, 13)] == [None, None, None]
    assert [visible[p - 1] for p in (7, 11, 15)] == ["3", "7", "11"]

    m.suppress_page_numbers = "essay_starts"
    visible = compute_visible_page_numbers(mappings, config_for(m))
    assert [visible[p - 1] for p in (5, 9, 13)] == ["1", "5", "9"]
    assert [visible[p - 1] for p in (7, 11, 15)] == [None, None, None]
    assert visible[11] == "8"
    assert visible[16] == "1"


def test_blank_and_front_openings_never_numbered():
    blank = ContentItem(ContentType.BLANK, "", "", 1, 4, 4, Section.BODY)
    front = ContentItem(ContentType.FRONT_MATTER, "Title", "", 1, 1, 1, Section.FRONT)
    for policy in ("never", "section_starts", "essay_starts", "both"):
        assert not should_show_page_number_with_config(PageMapping(4, blank, 1), policy)
        assert not should_show_page_number_with_config(PageMapping(1, front, 1), policy)


def test_numbers_off(flat_manifest):
    m = flat_manifest(page_number_position="none")
    analysis = analyze_manifest(m, toc_pages=2)
    assert compute_visible_page_numbers(mappings_for(analysis.items), config_for(m)) == [None] * 12


def test_tracker_carries_across_pieces(parts_manifest):
    m = parts_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    config = config_for(m)
    whole = compute_visible_page_numbers(mappings_for(analysis.items), config)

    tracker = NumberTracker()
    pieces = []
    first = analysis.part_analyses[0]
    pieces += compute_visible_page_numbers(mappings_for(analysis.items[:first.item_start_index]), config, tracker)
    for pa in analysis.part_analyses:
        pieces += compute_visible_page_numbers(mappings_for(analysis.get_part_items(pa.part_index)), config, tracker)
    pieces += compute_visible_page_numbers(
        mappings_for(analysis.items[analysis.part_analyses[-1].item_end_index + 1:]), config, tracker)
    assert pieces == whole


def test_header_text():
    work = ContentItem(ContentType.WORK, "On Walking", "", 3, 5, 7, Section.BODY, part_title="Early")
    assert header_text("book_title", "Collected", work) == "Collected"
    assert header_text("section_title", "Collected", work) == "Early"
    assert header_text("essay_title", "Collected", work) == "On Walking"
    assert header_text("none", "Collected", work) == ""


def test_headers_planned_on_inner_work_pages(flat_manifest):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    stamps = plan_page_stamps(mappings_for(analysis.items), config_for(m))
    headers = {s.physical_page: s.header for s in stamps if s.header}
    assert headers == {
        6: "Collected Essays",
        8: "Collected Essays",
        9: "Essay Beta",
        12: "Collected Essays",
    }


def test_empty_section_title_skips_header(flat_manifest):
    m = flat_manifest(verso_header="section_title")
    analysis = analyze_manifest(m, toc_pages=2)
    stamps = plan_page_stamps(mappings_for(analysis.items), config_for(m))
    assert [s.physical_page for s in stamps if s.header] == [9]


def test_page_number_position():
    config = OverlayConfig()
    anchor, dx, dy = page_number_position(2, config)
    assert anchor == "bottom-center"
    assert dx == pytest.approx(-3.6)
    assert dy == 36.0
    assert page_number_position(3, config)[1] == pytest.approx(3.6)

    config.page_number_position = "outer"
    assert page_number_position(2, config) == ("bottom-left", 46.8, 36.0)
    assert page_number_position(3, config) == ("bottom-right", -46.8, 36.0)

    config.page_number_position = "none"
    assert page_number_position(3, config) is None


def test_apply_overlays_stamps_numbers_and_headers(flat_manifest, tmp_path):
    m = flat_manifest(suppress_page_numbers="never")
    analysis = analyze_manifest(m, toc_pages=2)
    out = tmp_path / "merged.pdf"
    merged = merge_analysis(analysis, tmp_path / "build", out)

    tracker = apply_overlays(out, merged.page_mappings, config_for(m))

    texts = page_texts(out)
    assert len(texts) == 12
    assert [digits(t) for t in texts[4:]] == [["1"], ["2"], ["3"], ["4"], ["5"], [], ["7"], ["8"]]
    assert "iii" in texts[2]
    assert "Collected Essays" in texts[5]
    assert "Essay Beta" in texts[8]
    assert "Essay Beta" not in texts[6]
    assert tracker == NumberTracker(front=5, body=9, back=1)


def test_apply_overlays_stamp_through(flat_manifest, tmp_path):
    m = flat_manifest(suppress_page_numbers="never")
    analysis = analyze_manifest(m, toc_pages=2)
    out = tmp_path / "merged.pdf"
    merged = merge_analysis(analysis, tmp_path / "build", out)

    tracker = apply_overlays(out, merged.page_mappings, config_for(m), stamp_through=6)

    texts = page_texts(out)
    assert digits(texts[5]) == ["2"]
    assert all(digits(t) == [] for t in texts[6:])
    assert tracker.body == 9


def test_overlays_on_turned_landscape_pages(flat_manifest, make_pdf, tmp_path):
    m = flat_manifest(suppress_page_numbers="never")
    m.works[0].pdf = make_pdf("wide_alpha", 2, size=(648, 432))
    analysis = analyze_manifest(m, toc_pages=2)
    out = tmp_path / "merged.pdf"
    merged = merge_analysis(analysis, tmp_path / "build", out)
    assert merged.rotated_pages == [5, 6]

    apply_overlays(out, merged.page_mappings, config_for(m))

    texts = page_texts(out)
    assert digits(texts[4]) == ["1"]
    assert digits(texts[5]) == ["2"]
    assert "Collected Essays" in texts[5]


def test_stamping_modifies_writer_pages_only(flat_manifest, tmp_path):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    out = tmp_path / "merged.pdf"
    merged = merge_analysis(analysis, tmp_path / "build", out)
    with warnings.catch_warnings():
        warnings.filterwarnings("error", message=".*not assigned to a writer.*")
        apply_overlays(out, merged.page_mappings, config_for(m))


def test_apply_overlays_rejects_mismatched_mappings(flat_manifest, tmp_path):
    m = flat_manifest()
    analysis = analyze_manifest(m, toc_pages=2)
    out = tmp_path / "merged.pdf"
    merged = merge_analysis(analysis, tmp_path / "build", out)
    with pytest.raises(RenderError):
        apply_overlays(out, merged.page_mappings[:-1], config_for(m))


def test_apply_overlays_unknown_font(flat_manifest, tmp_path):
    m = flat_manifest()
    m.typography = Typography(header_font="No Such Typeface Zzq")
    analysis = analyze_manifest(m, toc_pages=2)
    out = tmp_path / "merged.pdf"
    merged = merge_analysis(analysis, tmp_path / "build", out)
    with pytest.raises(FontError):
        apply_overlays(out, merged.page_mappings, config_for(m))


def test_ensure_fonts_aliases():
    assert ensure_fonts(Typography()) == {"header": "Times-Roman", "page_number": "Times-Roman"}
    assert resolve_font("Helvetica") == "Helvetica"
    assert resolve_font("Courier New") == "Courier"


def test_resolve_font_registers_truetype_once():
    font_dir = Path(reportlab.__file__).parent / "fonts"
    name = resolve_font("Vera", font_dirs=[font_dir])
    assert name == "Vera"
    assert "Vera" in pdfmetrics.getRegisteredFontNames()
    assert resolve_font("Vera", font_dirs=[font_dir]) == "Vera"


def test_resolve_font_missing(tmp_path):
    with pytest.raises(FontError, match="font not found"):
        resolve_font("No Such Typeface Zzq", font_dirs=[tmp_path])
