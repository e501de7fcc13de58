#!/usr/bin/env python3
"""
Build a book PDF from a JSON manifest.

- Analyze the manifest and assign every page its place in the book,
- Render the table of contents with correct page numbers,
- Merge front matter, parts, works and back matter, with recto blanks,
- Stamp page numbers and running headers, add TOC links and bookmarks.

Usage example:

build-book \
  --manifest "collected.json" \
  --output "Collected_Essays.pdf" \
  --parts 0,2 \
  --collection 42

Without --parts or --rebuild-all the whole book is built in one pass.
"""
import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .analyze import analyze_manifest
from .book_config import get_cache_dir, get_config
from .build import build_book, describe_plan
from .errors import BookBuildError
from .manifest import load_manifest
from .pipeline import (
    PipelineOptions, build_with_parts, clear_all_parts_cache, clear_part_cache,
    format_selected_parts, parse_selected_parts,
)


def _progress(stage, current, total, message):
    logging.debug(f"[{stage} {current}/{total}] {message}")


def _apply_typography(manifest, args):
    typo = manifest.typography
    overrides = {}
    if args.header_font:
        overrides["header_font"] = args.header_font
    if args.header_size:
        overrides["header_size"] = args.header_size
    if args.page_number_font:
        overrides["page_number_font"] = args.page_number_font
    if args.page_number_size:
        overrides["page_number_size"] = args.page_number_size
    if overrides:
        manifest.typography = replace(typo, **overrides)
        logging.info(f"Typography overrides: {overrides}")


def _cache_dir(args, manifest_path:Path) -> Path:
    if args.cache_dir:
        return Path(args.cache_dir).expanduser()
    return get_cache_dir(args.collection or manifest_path.stem)


def _clear_cache(cache_dir:Path, ids:str):
    if ids == "all":
        removed = clear_all_parts_cache(cache_dir)
    else:
        removed = 0
        for part_id in [p.strip() for p in ids.split(",") if p.strip()]:
            removed += clear_part_cache(cache_dir, part_id)
    print(f"Removed {removed} cached files from {cache_dir}")


def build_parser():
    ap = argparse.ArgumentParser(description='Build a paginated book PDF from a manifest')
    ap.add_argument('--manifest', required=True, help='Book manifest (JSON)')
    ap.add_argument('--output', default=None, help='Output PDF (defaults to the manifest outputPath)')
    ap.add_argument('--build-dir', default=None, help='Keep intermediate files here')
    ap.add_argument('--layout', default=None, help='Layout configuration name (trade, letter)')
    group = ap.add_mutually_exclusive_group()
    group.add_argument('--parts', default=None, help='Comma-separated part indexes to rebuild, e.g. 0,2')
    group.add_argument('--rebuild-all', action='store_true', help='Rebuild every part and refresh the cache')
    ap.add_argument('--collection', default=None, help='Cache key for this book (defaults to the manifest name)')
    ap.add_argument('--cache-dir', default=None, help='Part cache directory (overrides --collection)')
    ap.add_argument('--clear-cache', nargs='?', const='all', default=None, metavar='IDS',
                    help='Remove cached parts (comma-separated part ids, or all) and exit')
    ap.add_argument('--max-works', type=int, default=0, help='Only stamp pages up to the N-th work')
    ap.add_argument('--dry-run', action='store_true', help='Print the page plan without building')
    ap.add_argument('--no-links', action='store_true', help='Do not add clickable TOC links')
    ap.add_argument('--header-font', default=None)
    ap.add_argument('--header-size', type=int, default=None)
    ap.add_argument('--page-number-font', default=None)
    ap.add_argument('--page-number-size', type=int, default=None)
    ap.add_argument('--verbose', action='store_true')
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    logging.info("Starting the book build.")
    manifest_path = Path(args.manifest).expanduser()

    try:
        if args.clear_cache is not None:
            _clear_cache(_cache_dir(args, manifest_path), args.clear_cache)
            return 0

        manifest = load_manifest(manifest_path)
        _apply_typography(manifest, args)
        layout = get_config(args.layout)

        if args.dry_run:
            analysis = analyze_manifest(manifest, toc_pages=layout["toc_page_estimate"])
            for line in describe_plan(analysis):
                print(line)
            return 0

        use_parts = manifest.has_parts() and (args.parts is not None or args.rebuild_all)
        if use_parts:
            selected = parse_selected_parts(args.parts or "")
            logging.info(f"Part build: parts [{format_selected_parts(selected)}], rebuild_all={args.rebuild_all}")
            result = build_with_parts(PipelineOptions(
                manifest=manifest,
                cache_dir=_cache_dir(args, manifest_path),
                output_path=args.output,
                selected_parts=selected,
                rebuild_all=args.rebuild_all,
                add_links=not args.no_links,
                on_progress=_progress,
                show_progress=True,
                layout=layout,
            ))
        else:
            if args.parts is not None or args.rebuild_all:
                logging.warning("Manifest has no parts; building the whole book")
            result = build_book(
                manifest,
                build_dir=args.build_dir,
                output_path=args.output,
                max_works=args.max_works,
                add_links=not args.no_links,
                on_progress=_progress,
                show_progress=True,
                layout=layout,
            )
    except BookBuildError as e:
        logging.error(f"{e}")
        print(f"Build failed: {e}", file=sys.stderr)
        return 1

    print(f"Compiled book written to {result.output_path}")
    print(f"  {result.total_pages} pages, {result.work_count} works, {result.duration:.1f}s")
    if use_parts:
        print(f"  parts rebuilt: {result.parts_built}, cached: {result.parts_cached}")
        for part in result.parts:
            print(f"    [{part.part_index}] {part.title}: {part.status.value} ({part.page_count} pages)")
    for warning in result.warnings:
        print(f"  warning: {warning}")
    return 0


if __name__=='__main__':
    sys.exit(main())
