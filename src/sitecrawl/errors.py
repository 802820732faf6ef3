"""Exception hierarchy for the crawler.

Navigation and extraction errors stay inside a single target: the page
processor turns them into failure PageResults. Setup, storage and capture
errors reach the caller as a failure of the whole job.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CrawlerError):
    """Bad caller input (URL, options). Raised before a job starts."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NavigationError(CrawlerError):
    """Page load failed: timeout, DNS failure, connection reset."""

    def __init__(self, url: str, message: str, transient: bool = True):
        self.url = url
        self.transient = transient
        super().__init__(message)


class ExtractionError(CrawlerError):
    """A script evaluated against a loaded page failed."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(message)


class StorageError(CrawlerError):
    """Screenshot bytes could not be written."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class JobSetupError(CrawlerError):
    """The job cannot start: malformed seed or browser pool failure."""


class CaptureError(CrawlerError):
    """A single-page job (screenshot, text extraction) failed on its one target."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(message)
