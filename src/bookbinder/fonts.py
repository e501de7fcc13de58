"""Explicit font setup for overlays.

Call ``ensure_fonts`` before stamping. It is idempotent: fonts already known
to ReportLab are not registered again.
"""
import logging
import os
from pathlib import Path

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase._fontdata import standardFonts
from reportlab.pdfbase.ttfonts import TTFError, TTFont

from .errors import FontError

# Common word-processor names mapped onto the 14 standard PDF fonts
FONT_ALIASES = {
    "times new roman": "Times-Roman",
    "times": "Times-Roman",
    "times roman": "Times-Roman",
    "helvetica": "Helvetica",
    "arial": "Helvetica",
    "courier": "Courier",
    "courier new": "Courier",
}

FONT_DIRS = [
    Path("~/.bookbinder/fonts"),
    Path("~/Library/Fonts"),
    Path("/Library/Fonts"),
    Path("/System/Library/Fonts/Supplemental"),
    Path("~/.local/share/fonts"),
    Path("/usr/share/fonts/truetype"),
    Path("/usr/share/fonts"),
]


def _font_dirs(extra=None) -> list[Path]:
    dirs = [Path(d) for d in (extra or [])]
    env = os.environ.get("BOOKBINDER_FONT_DIR")
    if env:
        dirs.append(Path(env))
    dirs.extend(FONT_DIRS)
    return [d.expanduser() for d in dirs]


def _find_font_file(name:str, dirs:list[Path]) -> Path|None:
    wanted = {name.lower(), name.lower().replace(" ", ""), name.lower().replace(" ", "-")}
    for d in dirs:
        if not d.is_dir():
            continue
        for path in d.rglob("*"):
            if path.suffix.lower() in (".ttf", ".otf") and path.stem.lower() in wanted:
                return path
    return None


def resolve_font(name:str, font_dirs=None) -> str:
    """Return the ReportLab font name for ``name``, registering a TrueType file if needed."""
    if not name:
        raise FontError("font name is empty")
    registered = pdfmetrics.getRegisteredFontNames()
    if name in registered or name in standardFonts:
        return name
    alias = FONT_ALIASES.get(name.lower())
    if alias:
        return alias

    path = Path(name).expanduser()
    if path.suffix.lower() not in (".ttf", ".otf") or not path.exists():
        path = _find_font_file(name, _font_dirs(font_dirs))
    if path is None:
        raise FontError(f"font not found: {name}")

    font_name = path.stem
    if font_name not in registered:
        try:
            pdfmetrics.registerFont(TTFont(font_name, str(path)))
        except (TTFError, OSError) as e:
            raise FontError(f"failed to register font {name} from {path}: {e}") from e
        logging.info(f"Registered font {font_name} from {path}")
    return font_name


def ensure_fonts(typography, font_dirs=None) -> dict[str, str]:
    """Make the header and page-number fonts available to ReportLab.

    Returns ``{"header": name, "page_number": name}`` with the names to draw with.
    """
    return {
        "header": resolve_font(typography.header_font, font_dirs),
        "page_number": resolve_font(typography.page_number_font, font_dirs),
    }
