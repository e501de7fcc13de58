"""Part-based incremental builds.

A book with parts can be rebuilt one part at a time. Each stamped part is
kept in a per-book cache directory; parts that were not selected are reused
from there as they are. The front group (everything before the first part,
TOC included) and the back group are rendered on every run, so the TOC is
always current. A single NumberTracker runs through the whole book, skipping
over cached parts, so page numbers stay continuous.

Cache layout, keyed by the part's id::

    part-<id>-merged.pdf     merged part, no overlays
    part-<id>-overlaid.pdf   merged part with numbers and headers
    part-<id>.json           fingerprint of the sources the part was built from
"""
import enum
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .analyze import AnalysisResult, PartAnalysis, analyze_manifest
from .book_config import get_cache_dir, get_config
from .build import copy_to_output, report
from .errors import CacheError, RenderError, ValidationError
from .fonts import ensure_fonts
from .manifest import Manifest, expand_path
from .merge import build_bookmarks, default_page_size, merge_files, merge_with_tracking
from .pdfinfo import get_last_page_size
from .stamp_page_numbers import NumberTracker, OverlayConfig, apply_overlays
from .toc import add_toc_links, resolve_toc


class PartStatus(enum.Enum):
    REBUILT = "rebuilt"
    CACHED = "cached"
    FAST = "fast"    # merged without overlays


@dataclass
class PipelineOptions:
    manifest: Manifest
    collection_id: str|int|None = None
    cache_dir: Path|None = None
    output_path: str|None = None
    selected_parts: list[int] = field(default_factory=list)
    rebuild_all: bool = False
    add_links: bool = True
    on_progress: object = None
    show_progress: bool = False
    layout: dict|None = None


@dataclass
class PartBuildResult:
    part_index: int
    part_id: int
    title: str
    status: PartStatus
    output_path: Path|None
    page_count: int
    warnings: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    success: bool
    output_path: Path
    total_pages: int
    work_count: int
    parts_built: int = 0
    parts_cached: int = 0
    parts: list[PartBuildResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration: float = 0.0


def part_cache_path(cache_dir, part_id) -> Path:
    return Path(cache_dir) / f"part-{part_id}-overlaid.pdf"


def part_merged_path(cache_dir, part_id) -> Path:
    return Path(cache_dir) / f"part-{part_id}-merged.pdf"


def part_fingerprint_path(cache_dir, part_id) -> Path:
    return Path(cache_dir) / f"part-{part_id}.json"


def is_part_cached(cache_dir, part_id) -> bool:
    return part_cache_path(cache_dir, part_id).is_file()


def clear_part_cache(cache_dir, part_id) -> int:
    """Remove every cached file of one part. Returns the number of files removed."""
    removed = 0
    for path in (part_cache_path(cache_dir, part_id), part_merged_path(cache_dir, part_id),
                 part_fingerprint_path(cache_dir, part_id)):
        if path.exists():
            path.unlink()
            removed += 1
    logging.info(f"Cleared cache for part {part_id} ({removed} files)")
    return removed


def clear_all_parts_cache(cache_dir) -> int:
    cache_dir = Path(cache_dir)
    if not cache_dir.is_dir():
        return 0
    removed = 0
    for path in cache_dir.glob("part-*"):
        if path.is_file():
            path.unlink()
            removed += 1
    logging.info(f"Cleared {removed} cached part files from {cache_dir}")
    return removed


def parse_selected_parts(text:str) -> list[int]:
    """``"0,2"`` -> ``[0, 2]``. Empty input selects nothing."""
    if not text or not text.strip():
        return []
    parts = set()
    for chunk in text.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            idx = int(chunk)
        except ValueError as e:
            raise ValidationError(f"invalid part index '{chunk}'") from e
        if idx < 0:
            raise ValidationError(f"invalid part index '{chunk}'")
        parts.add(idx)
    return sorted(parts)


def format_selected_parts(parts) -> str:
    return ",".join(str(p) for p in parts)


def part_fingerprint(items, pa:PartAnalysis) -> dict:
    sources = []
    for item in items:
        if not item.pdf:
            continue
        path = expand_path(item.pdf)
        try:
            st = os.stat(path)
            sources.append({"pdf": item.pdf, "size": st.st_size, "mtime": st.st_mtime})
        except OSError:
            sources.append({"pdf": item.pdf, "size": None, "mtime": None})
    return {
        "part_id": pa.part_id,
        "start_page": pa.start_page,
        "page_count": pa.page_count,
        "sources": sources,
    }


def write_fingerprint(cache_dir, part_id, fingerprint:dict):
    with open(part_fingerprint_path(cache_dir, part_id), "w", encoding="utf-8") as f:
        json.dump(fingerprint, f, indent=2)


def stale_reason(cache_dir, part_id, fingerprint:dict) -> str|None:
    """Why a cached part no longer matches its sources, or None when it does."""
    path = part_fingerprint_path(cache_dir, part_id)
    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
    except OSError:
        return "no fingerprint recorded"
    except json.JSONDecodeError:
        return "fingerprint is unreadable"

    if saved.get("start_page") != fingerprint["start_page"]:
        return f"start page moved from {saved.get('start_page')} to {fingerprint['start_page']}"
    if saved.get("sources") != fingerprint["sources"]:
        return "source PDFs changed"
    return None


def load_cached_part(cache_dir, pa:PartAnalysis) -> Path:
    """Path of a usable cached part. Raises CacheError when it cannot be reused."""
    path = part_cache_path(cache_dir, pa.part_id)
    try:
        count = len(PdfReader(str(path)).pages)
    except (OSError, PyPdfError, ValueError, KeyError) as e:
        raise CacheError(f"cached part {pa.part_index} is unreadable: {e}", part_id=pa.part_id) from e
    if count != pa.page_count:
        raise CacheError(
            f"cached part {pa.part_index} has {count} pages, expected {pa.page_count}",
            part_id=pa.part_id,
        )
    return path


def _advance_over(tracker:NumberTracker, items):
    for item in items:
        tracker.advance(item.section, item.page_count)


def _render_group(items, name:str, work_dir:Path, page_size, config, tracker, show_progress) -> Path:
    out = work_dir / f"{name}.pdf"
    merged = merge_with_tracking(items, work_dir, out, page_size)
    apply_overlays(out, merged.page_mappings, config, tracker, show_progress=show_progress)
    return out


def _rebuild_part(pa, items, cache_dir, work_dir, page_size, config, tracker, show_progress) -> PartBuildResult:
    merged_path = part_merged_path(cache_dir, pa.part_id)
    overlaid_path = part_cache_path(cache_dir, pa.part_id)
    merged = merge_with_tracking(items, work_dir, merged_path, page_size)
    shutil.copyfile(merged_path, overlaid_path)
    apply_overlays(overlaid_path, merged.page_mappings, config, tracker, show_progress=show_progress)
    write_fingerprint(cache_dir, pa.part_id, part_fingerprint(items, pa))
    logging.info(f"Rebuilt part {pa.part_index} '{pa.part_title}' ({merged.total_pages} pages)")
    return PartBuildResult(pa.part_index, pa.part_id, pa.part_title, PartStatus.REBUILT,
                           overlaid_path, merged.total_pages)


def _fast_part(pa, items, cache_dir, work_dir, page_size, tracker, reason:str) -> PartBuildResult:
    merged_path = part_merged_path(cache_dir, pa.part_id)
    merged = merge_with_tracking(items, work_dir, merged_path, page_size)
    _advance_over(tracker, items)
    msg = f"Part {pa.part_index} '{pa.part_title}' has no overlays ({reason}); rebuild it with --parts {pa.part_index}"
    logging.warning(msg)
    return PartBuildResult(pa.part_index, pa.part_id, pa.part_title, PartStatus.FAST,
                           merged_path, merged.total_pages, warnings=[msg])


def _cached_part(pa, items, cache_dir, tracker) -> PartBuildResult:
    path = load_cached_part(cache_dir, pa)
    warnings = []
    reason = stale_reason(cache_dir, pa.part_id, part_fingerprint(items, pa))
    if reason:
        msg = f"Cached part {pa.part_index} '{pa.part_title}' may be stale: {reason}"
        logging.warning(msg)
        warnings.append(msg)
    _advance_over(tracker, items)
    logging.info(f"Reusing cached part {pa.part_index} '{pa.part_title}' from {path}")
    return PartBuildResult(pa.part_index, pa.part_id, pa.part_title, PartStatus.CACHED,
                           path, pa.page_count, warnings=warnings)


def _empty_part(pa, rebuild:bool) -> PartBuildResult:
    """A part without divider or works and no leading blank: nothing to merge or cache."""
    logging.info(f"Part {pa.part_index} '{pa.part_title}' has no pages")
    status = PartStatus.REBUILT if rebuild else PartStatus.CACHED
    return PartBuildResult(pa.part_index, pa.part_id, pa.part_title, status, None, 0)


def _check_selection(selected, analysis:AnalysisResult):
    n = len(analysis.part_analyses)
    for idx in selected:
        if idx < 0 or idx >= n:
            raise ValidationError(f"part index {idx} out of range (0-{n - 1})")


def build_with_parts(options:PipelineOptions) -> PipelineResult:
    started = time.monotonic()
    manifest = options.manifest
    if not manifest.has_parts():
        raise ValidationError("manifest: part builds need a manifest with parts")
    if options.cache_dir is None and options.collection_id is None:
        raise ValidationError("part builds need a cache directory or a collection id")

    layout = options.layout or get_config()
    cache_dir = Path(options.cache_dir) if options.cache_dir is not None else get_cache_dir(options.collection_id)
    work_dir = cache_dir / "work"
    work_dir.mkdir(parents=True, exist_ok=True)
    on_progress = options.on_progress
    selected = set(options.selected_parts)

    report(on_progress, "analyze", 0, 1, "Analyzing manifest")
    analysis = analyze_manifest(manifest, toc_pages=layout["toc_page_estimate"])
    _check_selection(selected, analysis)
    page_size = default_page_size(analysis, layout, manifest.template_path)

    report(on_progress, "toc", 0, 1, "Generating table of contents")
    analysis, entries, toc_layout = resolve_toc(manifest, analysis, work_dir, page_size, layout["toc"])

    config = OverlayConfig.from_manifest(manifest, layout)
    ensure_fonts(config.typography)
    tracker = NumberTracker()
    pieces = []
    warnings = []

    # blank fillers take the size of the last page stitched so far
    size = page_size
    first = analysis.part_analyses[0]
    front_items = analysis.items[:first.item_start_index]
    if front_items:
        report(on_progress, "front", 0, 1, "Rendering front matter")
        pieces.append(_render_group(front_items, "front", work_dir, size, config, tracker,
                                    options.show_progress))
        size = get_last_page_size(pieces[-1])

    parts = []
    total_parts = len(analysis.part_analyses)
    for pa in analysis.part_analyses:
        items = analysis.get_part_items(pa.part_index)
        report(on_progress, "part", pa.part_index, total_parts, f"Part {pa.part_index}: {pa.part_title}")
        rebuild = options.rebuild_all or pa.part_index in selected

        if not items:
            result = _empty_part(pa, rebuild)
        elif rebuild:
            result = _rebuild_part(pa, items, cache_dir, work_dir, size, config, tracker,
                                   options.show_progress)
        elif not is_part_cached(cache_dir, pa.part_id):
            result = _fast_part(pa, items, cache_dir, work_dir, size, tracker, "not cached")
        else:
            try:
                result = _cached_part(pa, items, cache_dir, tracker)
            except CacheError as e:
                result = _fast_part(pa, items, cache_dir, work_dir, size, tracker, str(e))

        parts.append(result)
        warnings.extend(result.warnings)
        if result.output_path is not None:
            pieces.append(result.output_path)
            size = get_last_page_size(result.output_path)

    last = analysis.part_analyses[-1]
    back_items = analysis.items[last.item_end_index + 1:]
    if back_items:
        report(on_progress, "back", 0, 1, "Rendering back matter")
        pieces.append(_render_group(back_items, "back", work_dir, size, config, tracker,
                                    options.show_progress))

    report(on_progress, "stitch", 0, len(pieces), f"Stitching {len(pieces)} pieces")
    final_pdf = work_dir / "book.pdf"
    total = merge_files(pieces, final_pdf, bookmarks=build_bookmarks(analysis.items))
    if total != analysis.total_pages:
        raise RenderError(f"stitched book has {total} pages, expected {analysis.total_pages}")

    if options.add_links and analysis.toc_item is not None:
        report(on_progress, "links", 0, len(entries), "Adding table of contents links")
        add_toc_links(final_pdf, toc_layout, analysis.toc_item.start_page, layout["toc"])

    out = copy_to_output(final_pdf, options.output_path or manifest.output_path)
    report(on_progress, "done", 1, 1, f"Wrote {out}")

    duration = time.monotonic() - started
    built = sum(1 for p in parts if p.status is PartStatus.REBUILT)
    cached = sum(1 for p in parts if p.status is PartStatus.CACHED)
    logging.info(
        f"Compiled book written to {out} ({total} pages; {built} parts rebuilt, "
        f"{cached} cached, {len(parts) - built - cached} without overlays; {duration:.1f}s)"
    )
    return PipelineResult(
        success=True,
        output_path=out,
        total_pages=total,
        work_count=len(manifest.all_works()),
        parts_built=built,
        parts_cached=cached,
        parts=parts,
        warnings=warnings,
        duration=duration,
    )
