"""Shared fixtures: an in-memory site, fake sessions and an instrumented pool."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import pytest

from sitecrawl.errors import NavigationError
from sitecrawl.processor import PAGE_LINKS_SCRIPT, PAGE_SECTIONS_SCRIPT, PAGE_TEXT_SCRIPT
from sitecrawl.storage import ScreenshotStorage


@dataclass
class FakePage:
    """A page served by FakeSite."""
    title: str = "Page"
    text: str = "content"
    links: list[Any] = field(default_factory=list)
    sections: list[Any] = field(default_factory=list)
    hang: bool = False
    hang_evaluate: bool = False
    # Raised on the first N navigations, then the page loads normally
    fail_times: int = 0
    error: Optional[Exception] = None
    selectors: tuple[str, ...] = ()


class FakeSite:
    """URL -> FakePage map that records every navigation."""

    def __init__(self, pages: Optional[dict[str, FakePage]] = None, delay: float = 0.0):
        self.pages = dict(pages or {})
        self.delay = delay
        self.visits: list[str] = []

    def add(self, url: str, **kwargs: Any) -> FakePage:
        page = FakePage(**kwargs)
        self.pages[url] = page
        return page

    def visit_count(self, url: str) -> int:
        return self.visits.count(url)


class FakeSession:
    """Session backed by FakeSite, following the BrowserSession contract."""

    def __init__(self, site: FakeSite, context_id: int = 0):
        self.site = site
        self.context_id = context_id
        self.url: Optional[str] = None
        self.viewport: Optional[tuple[int, int]] = None
        self.screenshot_calls: list[dict] = []

    def _page(self) -> FakePage:
        return self.site.pages[self.url]

    async def navigate(self, url: str, timeout_secs: float) -> None:
        self.site.visits.append(url)
        self.url = url
        if self.site.delay:
            await asyncio.sleep(self.site.delay)

        page = self.site.pages.get(url)
        if page is None:
            raise NavigationError(url, "net::ERR_NAME_NOT_RESOLVED", transient=False)
        if page.hang:
            await asyncio.sleep(3600)
        if page.fail_times > 0:
            page.fail_times -= 1
            raise NavigationError(url, "net::ERR_CONNECTION_RESET", transient=True)
        if page.error is not None:
            raise page.error

    async def wait_for_selector(self, selector: str, timeout_secs: float) -> None:
        if selector not in self._page().selectors:
            await asyncio.sleep(3600)

    async def title(self) -> str:
        return self._page().title

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        page = self._page()
        if page.hang_evaluate:
            await asyncio.sleep(3600)
        if script is PAGE_TEXT_SCRIPT:
            return page.text
        if script is PAGE_LINKS_SCRIPT:
            return [
                link if not isinstance(link, str) else {"url": link, "text": link, "title": None}
                for link in page.links
            ]
        if script is PAGE_SECTIONS_SCRIPT:
            return page.sections
        raise AssertionError(f"unexpected script: {script[:40]}")

    async def screenshot(self, full_page: bool, quality: int) -> bytes:
        self.screenshot_calls.append({"full_page": full_page, "quality": quality})
        return b"\xff\xd8\xff\xe0fake-jpeg"

    async def set_viewport(self, width: int, height: int) -> None:
        self.viewport = (width, height)


class FakePool:
    """Unbounded pool that records checkouts so tests can check the scheduler's bound."""

    def __init__(self, site: FakeSite, max_size: int = 2, start_error: Optional[Exception] = None):
        self.site = site
        self.max_size = max_size
        self.start_error = start_error
        self.started = False
        self.stopped = False
        self.active = 0
        self.peak = 0
        self.checkouts = 0
        self.failed_releases = 0
        self.sessions: list[FakeSession] = []

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def checkout(self) -> FakeSession:
        if not self.started:
            raise RuntimeError("Browser pool not started. Call start() first.")
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.checkouts += 1
        session = FakeSession(self.site, context_id=self.checkouts)
        self.sessions.append(session)
        return session

    async def release(self, session: FakeSession, failed: bool = False) -> None:
        self.active -= 1
        if failed:
            self.failed_releases += 1


@pytest.fixture
def site():
    """Empty fake site."""
    return FakeSite()


@pytest.fixture
def started_pool(site):
    """FakePool already marked as started."""
    pool = FakePool(site)
    pool.started = True
    return pool


class MemoryStorage(ScreenshotStorage):
    """Keeps written screenshots in a dict."""

    def __init__(self, error: Optional[Exception] = None):
        self.files: dict[str, bytes] = {}
        self.error = error

    async def write(self, path: str, data: bytes) -> str:
        if self.error is not None:
            raise self.error
        self.files[path] = data
        return f"/uploads/screenshots/{path}"
