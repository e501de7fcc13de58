"""Exception hierarchy for book builds."""


class BookBuildError(Exception):
    """Base class for every error raised by a book build."""


class ValidationError(BookBuildError):
    """The manifest is malformed. Raised before any PDF is read."""


class ReadError(BookBuildError):
    """A referenced PDF is missing or cannot be read."""

    def __init__(self, message:str, path=None):
        super().__init__(message)
        self.path = path


class RenderError(BookBuildError):
    """Rendering the TOC, a blank page or a page overlay failed."""

    def __init__(self, message:str, page:int|None=None):
        super().__init__(message)
        self.page = page


class CacheError(BookBuildError):
    """A cached part PDF is unreadable or does not match the current analysis.

    The part pipeline never lets this escape: it is turned into a warning and
    the part is rendered again without overlays.
    """

    def __init__(self, message:str, part_id=None):
        super().__init__(message)
        self.part_id = part_id


class FontError(BookBuildError):
    """A typography font cannot be resolved or registered."""
