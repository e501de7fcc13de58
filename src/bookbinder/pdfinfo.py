"""Page counts and page sizes of source PDFs."""
import logging

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .errors import ReadError
from .manifest import expand_path

LETTER_SIZE = (612.0, 792.0)


def _open(pdf_path) -> PdfReader:
    expanded = expand_path(str(pdf_path))
    try:
        return PdfReader(expanded)
    except (OSError, PyPdfError, ValueError) as e:
        raise ReadError(f"failed to read PDF {pdf_path}: {e}", path=pdf_path) from e


def get_page_count(pdf_path) -> int:
    reader = _open(pdf_path)
    try:
        count = len(reader.pages)
    except (PyPdfError, ValueError, KeyError) as e:
        raise ReadError(f"failed to read PDF {pdf_path}: {e}", path=pdf_path) from e
    logging.debug(f"{pdf_path}: {count} pages")
    return count


def page_box_size(page) -> tuple[float, float]:
    """Displayed width and height of a page, letter size when the box is degenerate.

    A ``/Rotate`` of 90 or 270 swaps the media box sides.
    """
    box = page.mediabox
    width = float(box.right) - float(box.left)
    height = float(box.top) - float(box.bottom)
    if width <= 0 or height <= 0:
        return LETTER_SIZE
    if page.rotation % 180 == 90:
        return height, width
    return width, height


def is_landscape(page) -> bool:
    width, height = page_box_size(page)
    return width > height


def get_page_size(pdf_path, page_num:int=1) -> tuple[float, float]:
    """Media box size of a 1-based page."""
    reader = _open(pdf_path)
    try:
        if len(reader.pages) == 0:
            return LETTER_SIZE
        if page_num < 1 or page_num > len(reader.pages):
            raise ReadError(f"page {page_num} out of range (1-{len(reader.pages)}) in {pdf_path}", path=pdf_path)
        return page_box_size(reader.pages[page_num - 1])
    except (PyPdfError, ValueError, KeyError) as e:
        raise ReadError(f"failed to read PDF {pdf_path}: {e}", path=pdf_path) from e


def get_last_page_size(pdf_path) -> tuple[float, float]:
    return get_page_size(pdf_path, get_page_count(pdf_path) or 1)
