"""Single-pass book build: analyze, resolve the TOC, merge, stamp, link, copy."""
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from .analyze import AnalysisResult, ContentType, analyze_manifest
from .book_config import get_config
from .errors import RenderError
from .fonts import ensure_fonts
from .manifest import Manifest, expand_path
from .merge import build_bookmarks, default_page_size, merge_analysis, merge_files
from .stamp_page_numbers import OverlayConfig, apply_overlays, to_roman
from .toc import add_toc_links, resolve_toc


@dataclass
class BuildResult:
    success: bool
    output_path: Path
    total_pages: int
    work_count: int
    warnings: list[str] = field(default_factory=list)
    duration: float = 0.0


def report(on_progress, stage:str, current:int, total:int, message:str):
    if on_progress is not None:
        on_progress(stage, current, total, message)


def copy_to_output(src:Path, output_path) -> Path:
    out = Path(expand_path(str(output_path)))
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, out)
    except OSError as e:
        raise RenderError(f"failed to write output {out}: {e}") from e
    return out


def max_works_cutoff(analysis:AnalysisResult, max_works:int) -> int:
    """Last physical page of the ``max_works``-th work, 0 for no limit."""
    if max_works <= 0:
        return 0
    works = [item for item in analysis.items if item.type is ContentType.WORK]
    if max_works >= len(works):
        return 0
    return works[max_works - 1].end_page


def build_book(manifest:Manifest, build_dir=None, output_path=None, max_works:int=0,
               add_links:bool=True, on_progress=None, show_progress:bool=False,
               layout:dict|None=None) -> BuildResult:
    """Build the whole book in one pass.

    Intermediate files go to ``build_dir`` (a temporary directory, removed
    afterwards, when not given). The finished PDF is copied to
    ``output_path`` or the manifest's output path.
    """
    started = time.monotonic()
    layout = layout or get_config()
    temp_dir = None
    if build_dir is None:
        temp_dir = tempfile.mkdtemp(prefix="bookbinder-")
        build_dir = temp_dir
    build_dir = Path(build_dir)
    build_dir.mkdir(parents=True, exist_ok=True)
    warnings = []

    try:
        report(on_progress, "analyze", 0, 1, "Analyzing manifest")
        analysis = analyze_manifest(manifest, toc_pages=layout["toc_page_estimate"])
        page_size = default_page_size(analysis, layout, manifest.template_path)

        report(on_progress, "toc", 0, 1, "Generating table of contents")
        analysis, entries, toc_layout = resolve_toc(manifest, analysis, build_dir, page_size, layout["toc"])

        report(on_progress, "merge", 0, len(analysis.items), f"Merging {len(analysis.items)} items")
        merged = merge_analysis(analysis, build_dir, build_dir / "merged.pdf", default_size=page_size)

        config = OverlayConfig.from_manifest(manifest, layout)
        ensure_fonts(config.typography)
        cutoff = max_works_cutoff(analysis, max_works)
        if cutoff:
            msg = f"Page numbers and headers stop after work {max_works} (page {cutoff})"
            logging.warning(msg)
            warnings.append(msg)

        report(on_progress, "overlay", 0, merged.total_pages, "Stamping page numbers and headers")
        apply_overlays(merged.output_path, merged.page_mappings, config,
                       show_progress=show_progress, stamp_through=cutoff)

        final_pdf = build_dir / "book.pdf"
        merge_files([merged.output_path], final_pdf, bookmarks=build_bookmarks(analysis.items))
        if add_links and analysis.toc_item is not None:
            report(on_progress, "links", 0, len(entries), "Adding table of contents links")
            add_toc_links(final_pdf, toc_layout, analysis.toc_item.start_page, layout["toc"])

        out = copy_to_output(final_pdf, output_path or manifest.output_path)
        report(on_progress, "done", 1, 1, f"Wrote {out}")
    finally:
        if temp_dir is not None:
            shutil.rmtree(temp_dir, ignore_errors=True)

    duration = time.monotonic() - started
    logging.info(f"Compiled book written to {out} ({merged.total_pages} pages, {duration:.1f}s)")
    return BuildResult(
        success=True,
        output_path=out,
        total_pages=merged.total_pages,
        work_count=len(manifest.all_works()),
        warnings=warnings,
        duration=duration,
    )


def describe_plan(analysis:AnalysisResult) -> list[str]:
    """Readable page plan, one line per item, for dry runs."""
    lines = [
        f"{analysis.total_pages} pages: front {analysis.front_matter_pages}, "
        f"body {analysis.body_pages}, back {analysis.back_matter_pages}"
    ]
    counters = {"front": 1, "body": 1, "back": 1}
    for item in analysis.items:
        section = item.section.value
        first = counters[section]
        counters[section] += item.page_count
        shown = to_roman(first) if section == "front" else str(first)
        if item.start_page == item.end_page:
            pages = f"{item.start_page}"
        else:
            pages = f"{item.start_page}-{item.end_page}"
        title = item.title if not item.is_blank else "(blank)"
        if item.type is ContentType.WORK and item.part_title:
            title = f"  {title}"
        lines.append(f"{pages:>9}  {section:<5} {shown:>6}  {item.type.value:<12} {title}")
    for pa in analysis.part_analyses:
        lines.append(
            f"part {pa.part_index} (id {pa.part_id}) '{pa.part_title}': "
            f"pages {pa.start_page}-{pa.end_page}, {pa.work_count} works"
        )
    return lines
