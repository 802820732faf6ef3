"""Tests for the browser pool and the session wrapper.

Playwright objects are replaced with mocks; nothing here launches a browser.
"""

import asyncio
import inspect
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitecrawl.errors import ExtractionError, JobSetupError, NavigationError
from sitecrawl.infrastructure.browser_pool import (
    BrowserHealth,
    BrowserPool,
    ContextMetrics,
    PoolStatus,
)
from sitecrawl.infrastructure.session import BrowserSession, is_transient_message


def _mock_playwright(launch_error=None):
    """Build a mock async_playwright() entry point and its browser."""
    browser = MagicMock()

    def new_context(**kwargs):
        context = MagicMock()
        context.set_default_timeout = MagicMock()
        context.new_page = AsyncMock(side_effect=lambda: MagicMock(close=AsyncMock()))
        context.clear_cookies = AsyncMock()
        context.close = AsyncMock()
        return context

    browser.new_context = AsyncMock(side_effect=new_context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser, side_effect=launch_error)
    playwright.stop = AsyncMock()

    entry = MagicMock()
    entry.return_value.start = AsyncMock(return_value=playwright)
    return entry, playwright, browser


async def _drain_background(pool: BrowserPool) -> None:
    tasks = list(pool._background)
    if tasks:
        await asyncio.gather(*tasks)


# =============================================================================
# BrowserPool Tests
# =============================================================================

class TestBrowserPool:
    """Test cases for BrowserPool."""

    def test_pool_initialization_defaults(self):
        """Test pool initializes with correct defaults."""
        pool = BrowserPool()
        assert pool.max_size == 2
        assert pool.headless is True
        assert pool.timeout_ms == 30000
        assert pool.browser_type == "chromium"
        assert pool.is_started is False

    def test_pool_initialization_custom(self):
        """Test pool initialization with custom parameters."""
        pool = BrowserPool(
            max_size=8,
            headless=False,
            timeout_ms=60000,
            browser_type="firefox",
            user_agent="Custom UA",
        )
        assert pool.max_size == 8
        assert pool.headless is False
        assert pool.timeout_ms == 60000
        assert pool.browser_type == "firefox"
        assert pool.user_agent == "Custom UA"

    def test_pool_rejects_zero_size(self):
        """Test a pool needs at least one session."""
        with pytest.raises(ValueError):
            BrowserPool(max_size=0)

    def test_pool_status_structure(self):
        """Test PoolStatus dataclass structure."""
        status = PoolStatus(
            total_size=4,
            available=3,
            in_use=1,
            peak_in_use=2,
            healthy=3,
            degraded=1,
            unhealthy=0,
            total_requests=100,
            total_errors=5,
            uptime_seconds=3600.0,
        )
        assert status.total_size == 4
        assert status.peak_in_use == 2
        assert status.total_requests == 100

    @pytest.mark.asyncio
    async def test_pool_not_started_raises_error(self):
        """Test acquiring from unstarted pool raises error."""
        pool = BrowserPool()

        with pytest.raises(RuntimeError, match="not started"):
            async with pool.acquire():
                pass

    def test_pool_has_async_context_manager(self):
        """Test BrowserPool supports async context manager protocol."""
        pool = BrowserPool()
        assert inspect.iscoroutinefunction(pool.__aenter__)
        assert inspect.iscoroutinefunction(pool.__aexit__)

    @pytest.mark.asyncio
    async def test_start_creates_contexts(self):
        """Test start launches one browser with max_size contexts."""
        entry, playwright, browser = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            pool = BrowserPool(max_size=3, user_agent="TestBot")
            await pool.start()

            status = pool.get_status()
            assert pool.is_started
            assert status.total_size == 3
            assert status.available == 3
            assert browser.new_context.call_count == 3
            assert browser.new_context.call_args.kwargs["user_agent"] == "TestBot"

            await pool.stop()

        assert not pool.is_started
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_failure_raises_job_setup_error(self):
        """Test a browser that fails to launch becomes JobSetupError."""
        entry, playwright, _ = _mock_playwright(launch_error=Exception("Executable doesn't exist"))
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            pool = BrowserPool()
            with pytest.raises(JobSetupError, match="Executable"):
                await pool.start()

        assert not pool.is_started
        playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsupported_browser(self):
        """Test an unknown engine name is rejected at start."""
        pool = BrowserPool(browser_type="netscape")
        with pytest.raises(JobSetupError, match="Unsupported browser"):
            await pool.start()

    @pytest.mark.asyncio
    async def test_checkout_bounded_by_max_size(self):
        """Test a second checkout waits while the only session is out."""
        entry, _, _ = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            async with BrowserPool(max_size=1) as pool:
                session = await pool.checkout()
                assert pool.in_use == 1

                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(pool.checkout(), timeout=0.05)

                await pool.release(session)
                second = await asyncio.wait_for(pool.checkout(), timeout=1)
                await pool.release(second)

                status = pool.get_status()
                assert status.in_use == 0
                assert status.peak_in_use == 1
                assert status.total_requests == 2

    @pytest.mark.asyncio
    async def test_acquire_releases_on_error(self):
        """Test the context manager returns the session and counts the error."""
        entry, _, _ = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            async with BrowserPool(max_size=2) as pool:
                with pytest.raises(ValueError):
                    async with pool.acquire():
                        raise ValueError("boom")

                assert pool.in_use == 0
                assert pool.get_status().total_errors == 1

    @pytest.mark.asyncio
    async def test_failing_context_is_recycled(self):
        """Test a context with a high error rate is replaced."""
        entry, _, browser = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            async with BrowserPool(max_size=1) as pool:
                session = await pool.checkout()
                old_id = session.context_id
                await pool.release(session, failed=True)
                await _drain_background(pool)

                assert browser.new_context.call_count == 2
                assert pool.available_count == 1
                assert pool.check_health(old_id) == BrowserHealth.UNHEALTHY

                replacement = await pool.checkout()
                assert replacement.context_id != old_id
                await pool.release(replacement)

    @pytest.mark.asyncio
    async def test_checkout_fails_when_replacement_fails(self):
        """Test checkout raises instead of waiting when no context can be replaced."""
        entry, _, browser = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            async with BrowserPool(max_size=1) as pool:
                session = await pool.checkout()
                browser.new_context.side_effect = RuntimeError("browser crashed")
                await pool.release(session, failed=True)
                await _drain_background(pool)

                assert pool.available_count == 0
                with pytest.raises(JobSetupError):
                    await asyncio.wait_for(pool.checkout(), timeout=1)

    @pytest.mark.asyncio
    async def test_waiting_checkout_woken_when_contexts_lost(self):
        """Test a checkout already waiting fails once the last context is lost."""
        entry, _, browser = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            async with BrowserPool(max_size=1) as pool:
                session = await pool.checkout()
                waiter = asyncio.create_task(pool.checkout())
                await asyncio.sleep(0)
                assert not waiter.done()

                browser.new_context.side_effect = RuntimeError("browser crashed")
                await pool.release(session, failed=True)
                await _drain_background(pool)

                with pytest.raises(JobSetupError):
                    await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_checkout_clears_cookies(self):
        """Test sessions start without the previous user's cookies."""
        entry, _, _ = _mock_playwright()
        with patch("sitecrawl.infrastructure.browser_pool.async_playwright", entry):
            async with BrowserPool(max_size=1) as pool:
                session = await pool.checkout()
                context = pool._contexts[session.context_id]
                context.clear_cookies.assert_awaited_once()
                await pool.release(session)


class TestContextMetrics:
    """Test cases for ContextMetrics."""

    def test_context_metrics_initialization(self):
        """Test ContextMetrics initialization."""
        metrics = ContextMetrics(
            context_id=1,
            created_at=datetime.now(),
        )
        assert metrics.requests_handled == 0
        assert metrics.errors == 0
        assert metrics.health == BrowserHealth.HEALTHY
        assert metrics.error_rate == 0.0

    def test_context_metrics_record_error(self):
        """Test recording failed requests."""
        metrics = ContextMetrics(context_id=1, created_at=datetime.now())
        metrics.record_success()
        metrics.record_success()
        metrics.record_error()

        assert metrics.requests_handled == 3
        assert metrics.errors == 1
        assert metrics.error_rate == pytest.approx(1/3, rel=0.01)
        assert metrics.health == BrowserHealth.DEGRADED

    def test_context_metrics_health_degradation(self):
        """Test health degrades with high error rate."""
        metrics = ContextMetrics(context_id=1, created_at=datetime.now())
        metrics.record_success()
        metrics.record_error()
        metrics.record_error()

        assert metrics.error_rate > 0.5
        assert metrics.health == BrowserHealth.UNHEALTHY


# =============================================================================
# BrowserSession Tests
# =============================================================================

class TestBrowserSession:
    """Test cases for BrowserSession error translation."""

    @pytest.mark.asyncio
    async def test_navigation_timeout(self):
        """Test a Playwright timeout becomes a transient NavigationError."""
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        session = BrowserSession(page, context_id=0)

        with pytest.raises(NavigationError) as exc_info:
            await session.navigate("https://a.test/", timeout_secs=30)

        assert exc_info.value.transient is True
        assert exc_info.value.url == "https://a.test/"
        assert page.goto.call_args.kwargs["timeout"] == 30000

    @pytest.mark.asyncio
    async def test_dns_failure_is_permanent(self):
        """Test DNS failures are marked non-transient."""
        page = MagicMock()
        page.goto = AsyncMock(
            side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nope.test/")
        )
        session = BrowserSession(page, context_id=0)

        with pytest.raises(NavigationError) as exc_info:
            await session.navigate("https://nope.test/", timeout_secs=5)
        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_evaluate_failure(self):
        """Test script errors become ExtractionError."""
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=PlaywrightError("Execution context was destroyed"))
        session = BrowserSession(page, context_id=0)

        with pytest.raises(ExtractionError):
            await session.evaluate("() => 1")

    @pytest.mark.asyncio
    async def test_evaluate_passes_argument(self):
        """Test an argument is forwarded to the page."""
        page = MagicMock()
        page.evaluate = AsyncMock(return_value="text")
        session = BrowserSession(page, context_id=0)

        assert await session.evaluate("(s) => s", "main") == "text"
        page.evaluate.assert_awaited_once_with("(s) => s", "main")

    @pytest.mark.asyncio
    async def test_screenshot_is_jpeg(self):
        """Test captures are requested as JPEG with the given quality."""
        page = MagicMock()
        page.screenshot = AsyncMock(return_value=b"jpeg")
        session = BrowserSession(page, context_id=0)

        assert await session.screenshot(full_page=True, quality=80) == b"jpeg"
        page.screenshot.assert_awaited_once_with(full_page=True, type="jpeg", quality=80)

    @pytest.mark.parametrize("message,expected", [
        ("Timeout 30000ms exceeded", True),
        ("net::ERR_CONNECTION_RESET", True),
        ("net::ERR_CONNECTION_REFUSED at https://a.test", False),
        ("Protocol error (Page.navigate): Cannot navigate to invalid URL", False),
    ])
    def test_is_transient_message(self, message, expected):
        """Test transient classification of navigation messages."""
        assert is_transient_message(message) is expected
