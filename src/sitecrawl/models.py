"""Data models for crawl jobs and their results."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from sitecrawl.config import CrawlOptions
from sitecrawl.errors import JobSetupError
from sitecrawl.url_utils import is_absolute_http_url


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CrawlTarget:
    """A unit of work in the frontier."""

    url: str
    depth: int = 0
    retry_count: int = 0

    def child(self, url: str) -> "CrawlTarget":
        """Target for a link discovered on this page, one level deeper."""
        return CrawlTarget(url=url, depth=self.depth + 1)

    def retried(self) -> "CrawlTarget":
        """Same target with one more retry spent."""
        return replace(self, retry_count=self.retry_count + 1)


@dataclass(frozen=True)
class CrawlJob:
    """One crawl invocation. Immutable once started."""

    seed_urls: tuple[str, ...]
    options: CrawlOptions = field(default_factory=CrawlOptions)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.seed_urls:
            raise JobSetupError("At least one seed URL is required")
        for url in self.seed_urls:
            if not is_absolute_http_url(url):
                raise JobSetupError(f"Malformed seed URL: {url!r}")

    @property
    def max_requests(self) -> int:
        return self.options.max_requests

    @property
    def max_depth(self) -> int:
        return self.options.max_depth


@dataclass(frozen=True)
class LinkInfo:
    """An outbound anchor found on a page."""

    url: str
    text: str = ""
    title: Optional[str] = None

    def to_dict(self) -> dict:
        return {"url": self.url, "text": self.text, "title": self.title}


@dataclass(frozen=True)
class PageResult:
    """Outcome of processing one target: a success or a failure record."""

    url: str
    depth: int
    crawled_at: datetime = field(default_factory=utc_now)

    # Success fields
    title: Optional[str] = None
    snippet: str = ""
    content_length: int = 0
    links: tuple[LinkInfo, ...] = ()

    # Failure fields
    error: Optional[str] = None
    error_type: Optional[str] = None
    retries: int = 0
    # Whether the scheduler may try this target again; not part of the record
    retryable: bool = field(default=False, repr=False, compare=False)

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def succeeded(
        cls,
        url: str,
        depth: int,
        title: Optional[str],
        snippet: str,
        content_length: int,
        links: tuple[LinkInfo, ...],
    ) -> "PageResult":
        return cls(
            url=url,
            depth=depth,
            title=title,
            snippet=snippet,
            content_length=content_length,
            links=tuple(links),
        )

    @classmethod
    def failed(
        cls,
        url: str,
        depth: int,
        error: str,
        error_type: str,
        retries: int = 0,
        retryable: bool = False,
    ) -> "PageResult":
        return cls(
            url=url,
            depth=depth,
            error=error,
            error_type=error_type,
            retries=retries,
            retryable=retryable,
        )

    def to_dict(self) -> dict[str, Any]:
        """Success record or failure record, ready for JSON."""
        if not self.success:
            return {
                "url": self.url,
                "error": self.error,
                "error_type": self.error_type,
                "retries": self.retries,
                "depth": self.depth,
                "crawled_at": self.crawled_at.isoformat(),
            }
        return {
            "url": self.url,
            "title": self.title,
            "snippet": self.snippet,
            "content_length": self.content_length,
            "links": [link.to_dict() for link in self.links],
            "depth": self.depth,
            "crawled_at": self.crawled_at.isoformat(),
        }


@dataclass(frozen=True)
class CrawlStats:
    """Summary statistics for a finished job."""

    requests_total: int
    crawl_duration: float  # seconds
    started_at: datetime
    completed_at: datetime

    def to_dict(self) -> dict:
        return {
            "requests_total": self.requests_total,
            "crawl_duration": round(self.crawl_duration, 3),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass(frozen=True)
class CrawlReport:
    """Final output of a crawl job, in completion order."""

    pages: tuple[PageResult, ...]
    stats: CrawlStats

    @property
    def successes(self) -> list[PageResult]:
        return [page for page in self.pages if page.success]

    @property
    def failures(self) -> list[PageResult]:
        return [page for page in self.pages if not page.success]

    def to_dict(self) -> dict:
        return {
            "pages": [page.to_dict() for page in self.pages],
            "stats": self.stats.to_dict(),
        }


@dataclass(frozen=True)
class ScreenshotMetadata:
    """Capture settings recorded alongside a screenshot."""

    timestamp: datetime
    format: str
    quality: int
    full_page: bool

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "format": self.format,
            "quality": self.quality,
            "full_page": self.full_page,
        }


@dataclass(frozen=True)
class ScreenshotResult:
    """Reference to a stored screenshot plus its capture metadata."""

    image_url: str
    metadata: ScreenshotMetadata

    def to_dict(self) -> dict:
        return {"image_url": self.image_url, "metadata": self.metadata.to_dict()}


@dataclass(frozen=True)
class TextSection:
    """A heading or paragraph in document order."""

    type: str  # "heading" or "paragraph"
    text: str
    level: Optional[int] = None  # 1-6 for headings

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"type": self.type, "text": self.text}
        if self.level is not None:
            data["level"] = self.level
        return data


@dataclass(frozen=True)
class TextExtractionResult:
    """Structured text of a single page."""

    url: str
    title: str
    sections: tuple[TextSection, ...]
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "title": self.title,
            "sections": [section.to_dict() for section in self.sections],
            "timestamp": self.timestamp.isoformat(),
        }
