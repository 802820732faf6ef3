"""
Browser session wrapper.

A session is one browser tab handed out by the BrowserPool. It exposes the
few operations the page processor needs and translates Playwright exceptions
into the crawler's own NavigationError / ExtractionError.
"""

import logging
from typing import Any, Optional, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitecrawl.constants import DEFAULT_WAIT_UNTIL, NON_RETRYABLE_ERROR_PATTERNS, SCREENSHOT_FORMAT
from sitecrawl.errors import ExtractionError, NavigationError

logger = logging.getLogger(__name__)


def is_transient_message(message: str) -> bool:
    """Whether a navigation error message describes something a retry may fix."""
    lowered = message.lower()
    return not any(pattern in lowered for pattern in NON_RETRYABLE_ERROR_PATTERNS)


class Session(Protocol):
    """Operations the page processor performs against a rendered page."""

    async def navigate(self, url: str, timeout_secs: float) -> None: ...

    async def wait_for_selector(self, selector: str, timeout_secs: float) -> None: ...

    async def title(self) -> str: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def screenshot(self, full_page: bool, quality: int) -> bytes: ...

    async def set_viewport(self, width: int, height: int) -> None: ...


class BrowserSession:
    """Playwright-backed session bound to a single Page."""

    def __init__(self, page: Page, context_id: int, wait_until: str = DEFAULT_WAIT_UNTIL):
        """
        Wrap a page.

        Args:
            page: Playwright page owned by the pool
            context_id: Pool context the page belongs to
            wait_until: Load state awaited by navigate()
        """
        self._page = page
        self.context_id = context_id
        self.wait_until = wait_until
        self._url: Optional[str] = None

    @property
    def page(self) -> Page:
        return self._page

    @property
    def current_url(self) -> Optional[str]:
        return self._url

    async def navigate(self, url: str, timeout_secs: float) -> None:
        """
        Load a URL and wait for the configured load state.

        Raises:
            NavigationError: On timeout or network failure
        """
        self._url = url
        try:
            await self._page.goto(url, timeout=timeout_secs * 1000, wait_until=self.wait_until)
        except PlaywrightTimeoutError as e:
            raise NavigationError(
                url, f"Navigation timed out after {timeout_secs:g}s", transient=True
            ) from e
        except PlaywrightError as e:
            message = str(e) or type(e).__name__
            raise NavigationError(url, message, transient=is_transient_message(message)) from e

    async def wait_for_selector(self, selector: str, timeout_secs: float) -> None:
        """
        Suspend until a selector matches.

        Raises:
            NavigationError: If the selector does not appear in time
        """
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_secs * 1000)
        except PlaywrightTimeoutError as e:
            raise NavigationError(
                self._url or "", f"Timed out waiting for selector {selector!r}", transient=True
            ) from e
        except PlaywrightError as e:
            raise ExtractionError(self._url or "", f"Invalid selector {selector!r}: {e}") from e

    async def title(self) -> str:
        try:
            return await self._page.title()
        except PlaywrightError as e:
            raise ExtractionError(self._url or "", f"Could not read title: {e}") from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """
        Run a script against the page's DOM.

        Raises:
            ExtractionError: If evaluation fails
        """
        try:
            if arg is None:
                return await self._page.evaluate(script)
            return await self._page.evaluate(script, arg)
        except PlaywrightError as e:
            raise ExtractionError(self._url or "", f"Script evaluation failed: {e}") from e

    async def screenshot(self, full_page: bool, quality: int) -> bytes:
        try:
            return await self._page.screenshot(
                full_page=full_page, type=SCREENSHOT_FORMAT, quality=quality
            )
        except PlaywrightError as e:
            raise ExtractionError(self._url or "", f"Screenshot failed: {e}") from e

    async def set_viewport(self, width: int, height: int) -> None:
        await self._page.set_viewport_size({"width": width, "height": height})
