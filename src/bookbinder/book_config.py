#!/usr/bin/env python3
"""
Configuration for book assembly.
Contains layout settings that can be easily modified.
"""
import os
from pathlib import Path

# Default layout: a 6x9 inch trade paperback, measured in PDF points
DEFAULT_LAYOUT = {
    "name": "trade-6x9",
    "description": "6x9 inch trade paperback",
    "page_width": 432.0,
    "page_height": 648.0,

    # Overlay placement
    "margin_bottom": 36.0,       # page-number baseline above the bottom edge
    "margin_top": 57.6,
    "margin_inner": 54.0,        # binding side
    "margin_outer": 46.8,        # outside edge
    "header_y_position": 36.0,   # top of running header below the top edge

    "typography": {
        "headerFont": "Times New Roman",
        "headerSize": 10,
        "pageNumberFont": "Times New Roman",
        "pageNumberSize": 10,
    },

    # Pages reserved for the table of contents before it is rendered
    "toc_page_estimate": 2,

    # Table of contents layout
    "toc": {
        "heading": "Contents",
        "heading_font": "Times-Bold",
        "heading_size": 16,
        "font": "Times-Roman",
        "bold_font": "Times-Bold",
        "font_size": 11,
        "line_height": 15,
        "part_gap": 8,
        "indent": 14,
        "margin_top": 72.0,
        "margin_bottom": 72.0,
        "margin_left": 54.0,
        "margin_right": 54.0,
    },
}

# Letter-sized proofs, handy for printing galleys on a desk printer
LETTER_LAYOUT = dict(
    DEFAULT_LAYOUT,
    name="letter",
    description="US letter galley proof",
    page_width=612.0,
    page_height=792.0,
    margin_inner=72.0,
    margin_outer=54.0,
)

# Available configurations
LAYOUT_CONFIGS = {
    "trade": DEFAULT_LAYOUT,
    "letter": LETTER_LAYOUT,
}

# Cached part builds live under this directory unless BOOKBINDER_CACHE_DIR is set
DEFAULT_CACHE_ROOT = Path("~/.bookbinder/book-builds")


def get_config(layout_name=None):
    """Get configuration for a specific layout."""
    if layout_name and layout_name in LAYOUT_CONFIGS:
        return LAYOUT_CONFIGS[layout_name]
    return DEFAULT_LAYOUT


def get_cache_root() -> Path:
    env_path = os.environ.get("BOOKBINDER_CACHE_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CACHE_ROOT.expanduser()


def get_cache_dir(collection_id) -> Path:
    """Cache directory for one book, keyed by its collection identity."""
    return get_cache_root() / f"coll-{collection_id}"
