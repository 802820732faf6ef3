"""Bounded-depth, bounded-concurrency web crawler built on a headless browser pool."""

from sitecrawl.config import CrawlOptions, ScreenshotOptions, Settings, TextExtractionOptions
from sitecrawl.crawler import SiteCrawler, capture_screenshot, start_crawl
from sitecrawl.errors import (
    CaptureError,
    CrawlerError,
    ExtractionError,
    JobSetupError,
    NavigationError,
    StorageError,
    ValidationError,
)
from sitecrawl.models import (
    CrawlJob,
    CrawlReport,
    CrawlStats,
    CrawlTarget,
    LinkInfo,
    PageResult,
    ScreenshotMetadata,
    ScreenshotResult,
    TextExtractionResult,
    TextSection,
)

__version__ = "0.1.0"

__all__ = [
    "SiteCrawler",
    "start_crawl",
    "capture_screenshot",
    "CrawlOptions",
    "ScreenshotOptions",
    "TextExtractionOptions",
    "Settings",
    "CrawlJob",
    "CrawlTarget",
    "CrawlReport",
    "CrawlStats",
    "PageResult",
    "LinkInfo",
    "ScreenshotMetadata",
    "ScreenshotResult",
    "TextSection",
    "TextExtractionResult",
    "CrawlerError",
    "ValidationError",
    "NavigationError",
    "ExtractionError",
    "StorageError",
    "JobSetupError",
    "CaptureError",
]
