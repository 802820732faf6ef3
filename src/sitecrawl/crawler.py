"""Entry points for callers: start a crawl, capture a screenshot, extract page text.

Each call builds its own job, session pool, frontier and aggregator; nothing
is shared between calls.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar, Union

from sitecrawl.config import (
    CrawlOptions,
    ScreenshotOptions,
    Settings,
    TextExtractionOptions,
    settings as default_settings,
)
from sitecrawl.errors import (
    CaptureError,
    ExtractionError,
    JobSetupError,
    NavigationError,
)
from sitecrawl.infrastructure import BrowserPool
from sitecrawl.models import CrawlJob, CrawlReport, ScreenshotResult, TextExtractionResult
from sitecrawl.processor import PageProcessor
from sitecrawl.scheduler import CrawlScheduler
from sitecrawl.storage import LocalScreenshotStorage, ScreenshotStorage
from sitecrawl.url_utils import is_absolute_http_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Builds an unstarted pool for the given number of concurrent sessions
PoolFactory = Callable[[int], Any]

OptionsInput = Union[CrawlOptions, Mapping[str, Any], None]


class SiteCrawler:
    """Runs crawl, screenshot and text-extraction jobs against a browser pool.

    Example:
        >>> crawler = SiteCrawler()
        >>> report = await crawler.start_crawl("https://example.com", max_requests=5, depth=1)
        >>> report.stats.requests_total
        5
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        pool_factory: Optional[PoolFactory] = None,
        storage: Optional[ScreenshotStorage] = None,
    ):
        """Initialize the crawler.

        Args:
            settings: Process settings (environment-derived defaults if omitted)
            pool_factory: Callable returning an unstarted pool for a given size
            storage: Screenshot storage (local directory from settings if omitted)
        """
        self.settings = settings or default_settings
        self._pool_factory = pool_factory or self._default_pool
        self.storage = storage or LocalScreenshotStorage(
            self.settings.screenshot_dir, self.settings.screenshot_url_prefix
        )

    def _default_pool(self, max_size: int) -> BrowserPool:
        return BrowserPool(
            max_size=max_size,
            headless=self.settings.headless,
            user_agent=self.settings.user_agent,
            browser_type=self.settings.browser_type,
        )

    @asynccontextmanager
    async def _open_pool(self, size: int) -> AsyncIterator[Any]:
        """Start a pool for one job and always stop it afterwards.

        Raises:
            JobSetupError: If the pool cannot be created or started
        """
        try:
            pool = self._pool_factory(size)
            await pool.start()
        except JobSetupError:
            raise
        except Exception as e:
            raise JobSetupError(f"Could not start browser pool: {e}") from e

        try:
            yield pool
        finally:
            await pool.stop()

    async def start_crawl(
        self,
        seed_url: Union[str, Sequence[str]],
        max_requests: Optional[int] = None,
        depth: Optional[int] = None,
        options: OptionsInput = None,
    ) -> CrawlReport:
        """Crawl from one or more seeds and return the report.

        Page-level failures are part of the report; only setup problems raise.

        Args:
            seed_url: Absolute http(s) URL, or a sequence of them
            max_requests: Overrides ``options.max_requests``
            depth: Overrides ``options.max_depth``
            options: CrawlOptions or a mapping of option names to values

        Returns:
            CrawlReport with results in completion order

        Raises:
            ValidationError: If the options are invalid
            JobSetupError: If a seed is malformed or the pool cannot start
        """
        crawl_options = _crawl_options(options, max_requests=max_requests, max_depth=depth)
        seeds = (seed_url,) if isinstance(seed_url, str) else tuple(seed_url)
        job = CrawlJob(seed_urls=seeds, options=crawl_options)

        async with self._open_pool(crawl_options.max_concurrency) as pool:
            scheduler = CrawlScheduler(job, pool)
            return await scheduler.run()

    async def capture_screenshot(
        self,
        url: str,
        options: Union[ScreenshotOptions, Mapping[str, Any], None] = None,
    ) -> ScreenshotResult:
        """Capture a JPEG of one page and store it.

        Raises:
            ValidationError: If the options are invalid
            JobSetupError: If the URL is malformed or the pool cannot start
            StorageError: If the image cannot be written
            CaptureError: If the page cannot be loaded or captured
        """
        screenshot_options = (
            options if isinstance(options, ScreenshotOptions)
            else ScreenshotOptions.from_mapping(options)
        )
        _require_url(url)
        processor = PageProcessor()

        async def capture(session) -> ScreenshotResult:
            return await asyncio.wait_for(
                processor.capture_screenshot(session, url, screenshot_options, self.storage),
                timeout=screenshot_options.request_handler_timeout_secs,
            )

        async with self._open_pool(1) as pool:
            result = await _run_single_page(
                pool, url, screenshot_options.max_request_retries, capture, "capture screenshot"
            )

        logger.info(f"Screenshot of {url} stored at {result.image_url}")
        return result

    async def extract_text(
        self,
        url: str,
        options: Union[TextExtractionOptions, Mapping[str, Any], None] = None,
    ) -> TextExtractionResult:
        """Extract the title, headings and paragraphs of one page.

        Raises:
            ValidationError: If the options are invalid
            JobSetupError: If the URL is malformed or the pool cannot start
            CaptureError: If the page cannot be loaded or read
        """
        text_options = (
            options if isinstance(options, TextExtractionOptions)
            else TextExtractionOptions.from_mapping(options)
        )
        _require_url(url)
        processor = PageProcessor()

        async def extract(session) -> TextExtractionResult:
            return await asyncio.wait_for(
                processor.extract_text(session, url, text_options),
                timeout=text_options.request_handler_timeout_secs,
            )

        async with self._open_pool(1) as pool:
            return await _run_single_page(
                pool, url, text_options.max_request_retries, extract, "extract text"
            )


def _crawl_options(options: OptionsInput, **overrides: Any) -> CrawlOptions:
    if isinstance(options, CrawlOptions):
        if all(value is None for value in overrides.values()):
            return options
        return CrawlOptions.from_mapping(options.model_dump(), **overrides)
    return CrawlOptions.from_mapping(options, **overrides)


def _require_url(url: str) -> None:
    if not is_absolute_http_url(url):
        raise JobSetupError(f"Malformed URL: {url!r}")


async def _run_single_page(
    pool: Any,
    url: str,
    max_retries: int,
    operation: Callable[[Any], Awaitable[T]],
    action: str,
) -> T:
    """Run a single-target operation, retrying transient navigation failures.

    StorageError propagates untouched; other page errors become CaptureError.
    """
    attempt = 0
    while True:
        session = await pool.checkout()
        failed = True
        try:
            result = await operation(session)
            failed = False
            return result
        except (NavigationError, asyncio.TimeoutError) as e:
            transient = getattr(e, "transient", True)
            message = getattr(e, "message", None) or str(e) or "timed out"
            if transient and attempt < max_retries:
                attempt += 1
                logger.info(f"  🔄 Retrying ({attempt}/{max_retries}) {action}: {url} ({message})")
                continue
            raise CaptureError(url, f"Failed to {action}: {message}") from e
        except ExtractionError as e:
            raise CaptureError(url, f"Failed to {action}: {e.message}") from e
        finally:
            await pool.release(session, failed=failed)


async def start_crawl(
    seed_url: Union[str, Sequence[str]],
    max_requests: Optional[int] = None,
    depth: Optional[int] = None,
    options: OptionsInput = None,
) -> CrawlReport:
    """Run a crawl with default settings. See SiteCrawler.start_crawl."""
    return await SiteCrawler().start_crawl(seed_url, max_requests, depth, options)


async def capture_screenshot(
    url: str,
    options: Union[ScreenshotOptions, Mapping[str, Any], None] = None,
) -> ScreenshotResult:
    """Capture a screenshot with default settings. See SiteCrawler.capture_screenshot."""
    return await SiteCrawler().capture_screenshot(url, options)
