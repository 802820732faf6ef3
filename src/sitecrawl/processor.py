"""Page processing: navigate a session and extract content from the rendered page."""

import asyncio
import logging
from typing import Any, Iterable, Optional

from sitecrawl.config import CrawlOptions, ScreenshotOptions, TextExtractionOptions
from sitecrawl.constants import (
    DEFAULT_CONTENT_SELECTOR,
    DEFAULT_NAVIGATION_TIMEOUT_SECONDS,
    MAX_ERROR_MESSAGE_CHARS,
    MAX_LINKS_PER_PAGE,
    SCREENSHOT_FORMAT,
    SNIPPET_ELLIPSIS,
    SNIPPET_MAX_CHARS,
)
from sitecrawl.errors import ExtractionError, NavigationError
from sitecrawl.infrastructure.session import Session
from sitecrawl.models import (
    CrawlTarget,
    LinkInfo,
    PageResult,
    ScreenshotMetadata,
    ScreenshotResult,
    TextExtractionResult,
    TextSection,
    utc_now,
)
from sitecrawl.storage import ScreenshotStorage, screenshot_filename
from sitecrawl.url_utils import is_absolute_http_url

logger = logging.getLogger(__name__)


# Visible text of the content element; empty when the selector matches nothing
PAGE_TEXT_SCRIPT = """(selector) => {
    const el = document.querySelector(selector);
    return el ? el.innerText : '';
}"""

# Every anchor with its resolved href; filtering happens in Python
PAGE_LINKS_SCRIPT = """() => {
    return Array.from(document.querySelectorAll('a')).map(link => ({
        url: link.href,
        text: link.innerText || '',
        title: link.title || null
    }));
}"""

# Headings and paragraphs in document order
PAGE_SECTIONS_SCRIPT = """() => {
    const sections = [];
    document.querySelectorAll('h1, h2, h3, h4, h5, h6, p').forEach(el => {
        if (el.closest('script, style, noscript, iframe')) {
            return;
        }
        const text = (el.textContent || '').trim();
        if (!text) {
            return;
        }
        const tagName = el.tagName.toLowerCase();
        if (tagName.startsWith('h')) {
            sections.push({ type: 'heading', level: parseInt(tagName.substring(1)), text });
        } else {
            sections.push({ type: 'paragraph', text });
        }
    });
    return sections;
}"""


def make_snippet(text: Optional[str], limit: int = SNIPPET_MAX_CHARS) -> str:
    """First ``limit`` characters of the text, with an ellipsis when cut."""
    if not text:
        return ""
    if len(text) > limit:
        return text[:limit] + SNIPPET_ELLIPSIS
    return text


def filter_links(raw_links: Optional[Iterable[Any]], limit: int = MAX_LINKS_PER_PAGE) -> tuple[LinkInfo, ...]:
    """Keep absolute http(s) anchors, trimmed, capped at ``limit``.

    Args:
        raw_links: Items shaped like ``{"url", "text", "title"}`` from the page

    Returns:
        Tuple of LinkInfo in page order
    """
    links: list[LinkInfo] = []
    for item in raw_links or []:
        if len(links) >= limit:
            break
        if not isinstance(item, dict):
            continue
        url = item.get("url")
        if not is_absolute_http_url(url):
            continue
        text = item.get("text") or ""
        links.append(LinkInfo(url=url, text=str(text).strip(), title=item.get("title") or None))
    return tuple(links)


def _truncate_error(message: str) -> str:
    return message[:MAX_ERROR_MESSAGE_CHARS]


class PageProcessor:
    """Turns a (session, target) pair into a PageResult.

    ``process`` never raises for page-level problems: navigation, timeout and
    evaluation errors become failure records. The single-page variants
    (``capture_screenshot``, ``extract_text``) let errors propagate so the
    caller can retry or fail the job.
    """

    def __init__(
        self,
        navigation_timeout_secs: float = DEFAULT_NAVIGATION_TIMEOUT_SECONDS,
        wait_for_selector: Optional[str] = None,
        content_selector: str = DEFAULT_CONTENT_SELECTOR,
    ):
        self.navigation_timeout_secs = navigation_timeout_secs
        self.wait_for_selector = wait_for_selector
        self.content_selector = content_selector

    @classmethod
    def from_options(cls, options: CrawlOptions) -> "PageProcessor":
        return cls(
            navigation_timeout_secs=options.navigation_timeout_secs,
            wait_for_selector=options.wait_for_selector,
            content_selector=options.content_selector,
        )

    async def _load(
        self,
        session: Session,
        url: str,
        timeout_secs: float,
        wait_for_selector: Optional[str],
    ) -> None:
        """Navigate and wait for readiness, cancelling anything past the timeout."""
        try:
            await asyncio.wait_for(session.navigate(url, timeout_secs), timeout=timeout_secs)
        except asyncio.TimeoutError as e:
            raise NavigationError(url, f"Navigation timed out after {timeout_secs:g}s") from e

        if wait_for_selector:
            try:
                await asyncio.wait_for(
                    session.wait_for_selector(wait_for_selector, timeout_secs),
                    timeout=timeout_secs,
                )
            except asyncio.TimeoutError as e:
                raise NavigationError(
                    url, f"Timed out waiting for selector {wait_for_selector!r}"
                ) from e

    async def process(self, session: Session, target: CrawlTarget) -> PageResult:
        """Navigate to the target and extract title, snippet and links.

        Args:
            session: Session borrowed from the pool for this target only
            target: URL and depth to process

        Returns:
            Success or failure PageResult
        """
        try:
            await self._load(
                session, target.url, self.navigation_timeout_secs, self.wait_for_selector
            )

            title = await session.title()
            text = await session.evaluate(PAGE_TEXT_SCRIPT, self.content_selector)
            if text is None:
                text = ""
            elif not isinstance(text, str):
                text = str(text)
            raw_links = await session.evaluate(PAGE_LINKS_SCRIPT)

            links = filter_links(raw_links)
            return PageResult.succeeded(
                url=target.url,
                depth=target.depth,
                title=title,
                snippet=make_snippet(text),
                content_length=len(text),
                links=links,
            )
        except Exception as e:
            return self.failure(target, e)

    @staticmethod
    def failure(target: CrawlTarget, error: BaseException) -> PageResult:
        """Convert an error raised while processing a target into a failure record."""
        if isinstance(error, NavigationError):
            retryable = error.transient
            message = error.message
            error_type = "NavigationError"
        elif isinstance(error, ExtractionError):
            retryable = False
            message = error.message
            error_type = "ExtractionError"
        elif isinstance(error, asyncio.TimeoutError):
            retryable = True
            message = str(error) or "Request handler timed out"
            error_type = "TimeoutError"
        else:
            retryable = False
            message = str(error) or type(error).__name__
            error_type = type(error).__name__
            logger.error(f"Unexpected error processing {target.url}: {message}")

        return PageResult.failed(
            url=target.url,
            depth=target.depth,
            error=_truncate_error(message),
            error_type=error_type,
            retries=target.retry_count,
            retryable=retryable,
        )

    async def capture_screenshot(
        self,
        session: Session,
        url: str,
        options: ScreenshotOptions,
        storage: ScreenshotStorage,
    ) -> ScreenshotResult:
        """Capture one page as JPEG and store it.

        Raises:
            NavigationError: If the page does not load
            ExtractionError: If the capture itself fails
            StorageError: If the image cannot be written
        """
        await session.set_viewport(options.viewport_width, options.viewport_height)
        await self._load(
            session, url, options.navigation_timeout_secs, options.wait_for_selector
        )

        image = await session.screenshot(full_page=options.full_page, quality=options.quality)
        image_url = await storage.write(screenshot_filename(), image)

        return ScreenshotResult(
            image_url=image_url,
            metadata=ScreenshotMetadata(
                timestamp=utc_now(),
                format=SCREENSHOT_FORMAT,
                quality=options.quality,
                full_page=options.full_page,
            ),
        )

    async def extract_text(
        self,
        session: Session,
        url: str,
        options: TextExtractionOptions,
    ) -> TextExtractionResult:
        """Collect the title plus headings and paragraphs of one page."""
        await self._load(
            session, url, options.navigation_timeout_secs, options.wait_for_selector
        )

        title = (await session.title() or "").strip()
        raw_sections = await session.evaluate(PAGE_SECTIONS_SCRIPT) or []

        sections = []
        for item in raw_sections:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip()
            if not text:
                continue
            section_type = item.get("type", "paragraph")
            level = item.get("level") if section_type == "heading" else None
            sections.append(
                TextSection(type=section_type, text=text, level=int(level) if level else None)
            )

        return TextExtractionResult(url=url, title=title, sections=tuple(sections))
