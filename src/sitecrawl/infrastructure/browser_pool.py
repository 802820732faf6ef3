"""
Browser Pool Management.

This module manages a bounded pool of browser contexts for parallel crawling,
with session isolation and health monitoring. The pool is the only owner of
browser processes: workers borrow a session, use it alone, and give it back.
At most ``max_size`` sessions are ever checked out at once.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator

from playwright.async_api import async_playwright

from sitecrawl.constants import (
    DEFAULT_CONTEXT_TIMEOUT_MS,
    DEFAULT_WAIT_UNTIL,
    ERROR_RATE_RECYCLE_THRESHOLD,
    MAX_REQUESTS_PER_CONTEXT,
)
from sitecrawl.errors import JobSetupError
from sitecrawl.infrastructure.session import BrowserSession

logger = logging.getLogger(__name__)

SUPPORTED_BROWSERS = ("chromium", "firefox", "webkit")

# Queued to wake blocked checkouts once every context is gone
LOST_CONTEXT_ID = -1


class BrowserHealth(Enum):
    """Browser context health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    RECYCLING = "recycling"


@dataclass
class PoolStatus:
    """Current status of the browser pool."""
    total_size: int
    available: int
    in_use: int
    peak_in_use: int
    healthy: int
    degraded: int
    unhealthy: int
    total_requests: int
    total_errors: int
    uptime_seconds: float


@dataclass
class ContextMetrics:
    """Metrics for a browser context."""
    context_id: int
    created_at: datetime
    requests_handled: int = 0
    errors: int = 0
    last_used: datetime | None = None
    health: BrowserHealth = BrowserHealth.HEALTHY

    @property
    def error_rate(self) -> float:
        """Calculate error rate for this context."""
        if self.requests_handled == 0:
            return 0.0
        return self.errors / self.requests_handled

    def record_success(self) -> None:
        """Record a successful request."""
        self.requests_handled += 1
        self.last_used = datetime.now()

    def record_error(self) -> None:
        """Record a failed request."""
        self.requests_handled += 1
        self.errors += 1
        self.last_used = datetime.now()
        # Update health based on error rate
        if self.error_rate > 0.5:
            self.health = BrowserHealth.UNHEALTHY
        elif self.error_rate > 0.2:
            self.health = BrowserHealth.DEGRADED


class BrowserPool:
    """
    Manages a pool of browser contexts for parallel crawling.

    Features:
    - Bounded checkout: ``acquire`` suspends while every context is in use
    - Session isolation (cookies cleared on checkout, fresh page per use)
    - Health monitoring and automatic recycling
    - Graceful shutdown
    """

    def __init__(
        self,
        max_size: int = 2,
        headless: bool = True,
        timeout_ms: int = DEFAULT_CONTEXT_TIMEOUT_MS,
        user_agent: str | None = None,
        browser_type: str = "chromium",
        wait_until: str = DEFAULT_WAIT_UNTIL,
    ):
        """
        Initialize browser pool.

        Args:
            max_size: Maximum number of concurrently active sessions
            headless: Run browsers in headless mode
            timeout_ms: Default timeout for context operations
            user_agent: Custom user agent string
            browser_type: Playwright engine (chromium, firefox, webkit)
            wait_until: Load state sessions wait for when navigating
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self.browser_type = browser_type
        self.wait_until = wait_until

        self._playwright = None
        self._browser = None
        self._contexts: dict[int, Any] = {}  # context_id -> BrowserContext
        self._metrics: dict[int, ContextMetrics] = {}  # context_id -> metrics
        self._available: asyncio.Queue[int] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()
        self._started = False
        self._start_time: datetime | None = None
        self._total_requests = 0
        self._total_errors = 0
        self._next_context_id = 0
        self._in_use = 0
        self._peak_in_use = 0
        self._recycling = 0  # replacements scheduled but not finished
        self._lost_contexts = 0

    async def __aenter__(self) -> "BrowserPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """
        Launch the browser and create all contexts.

        Raises:
            JobSetupError: If the browser cannot be launched
        """
        if self._started:
            return

        if self.browser_type not in SUPPORTED_BROWSERS:
            raise JobSetupError(f"Unsupported browser type: {self.browser_type}")

        try:
            self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.browser_type)
            self._browser = await launcher.launch(headless=self.headless)

            self._start_time = datetime.now()
            for _ in range(self.max_size):
                await self._create_context()
        except JobSetupError:
            raise
        except Exception as e:
            logger.error(f"Browser pool failed to start: {e}")
            await self._shutdown_browser()
            raise JobSetupError(f"Could not start browser pool: {e}") from e

        self._started = True
        logger.info(
            f"Browser pool started with {self.max_size} contexts "
            f"({self.browser_type}, headless={self.headless})"
        )

    async def stop(self) -> None:
        """
        Shutdown browser pool gracefully.

        Closes all contexts and the browser instance.
        """
        if not self._started:
            return

        for task in list(self._background):
            task.cancel()
        self._background.clear()

        for context_id, context in list(self._contexts.items()):
            try:
                await context.close()
            except Exception as e:
                logger.warning(f"Error closing context {context_id}: {e}")

        self._contexts.clear()
        self._metrics.clear()
        await self._shutdown_browser()

        self._started = False
        logger.info("Browser pool stopped")

    async def _shutdown_browser(self) -> None:
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def _create_context(self) -> int:
        """
        Create a new browser context and make it available.

        Returns:
            Context ID
        """
        context_options: dict[str, Any] = {
            "ignore_https_errors": True,
        }
        if self.user_agent:
            context_options["user_agent"] = self.user_agent

        context = await self._browser.new_context(**context_options)
        context.set_default_timeout(self.timeout_ms)

        context_id = self._next_context_id
        self._next_context_id += 1

        self._contexts[context_id] = context
        self._metrics[context_id] = ContextMetrics(
            context_id=context_id,
            created_at=datetime.now(),
        )

        await self._available.put(context_id)

        logger.debug(f"Created browser context {context_id}")
        return context_id

    async def _recycle_context(self, context_id: int) -> None:
        """
        Recycle a browser context by closing and creating a new one.
        """
        async with self._lock:
            old_context = self._contexts.pop(context_id, None)
            self._metrics.pop(context_id, None)

            if old_context:
                try:
                    await old_context.close()
                except Exception as e:
                    logger.warning(f"Error closing context {context_id}: {e}")

            try:
                new_id = await self._create_context()
            except Exception as e:
                self._lost_contexts += 1
                logger.error(
                    f"Could not replace context {context_id}: {e} "
                    f"({len(self._contexts)} of {self.max_size} contexts left)"
                )
                return
            logger.info(f"Recycled context {context_id} -> {new_id}")

    def _on_recycle_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        self._recycling -= 1
        if self._started and self._exhausted():
            # Wake blocked checkouts so they fail instead of waiting forever
            self._available.put_nowait(LOST_CONTEXT_ID)

    def _exhausted(self) -> bool:
        """No live context and no replacement on the way."""
        return not self._contexts and self._recycling == 0

    async def _clear_context_state(self, context_id: int) -> None:
        """
        Clear cookies for a context so sessions do not leak state.
        """
        context = self._contexts.get(context_id)
        if not context:
            return

        try:
            await context.clear_cookies()
        except Exception as e:
            logger.warning(f"Error clearing context {context_id} state: {e}")

    async def checkout(self, clear_state: bool = True) -> BrowserSession:
        """
        Take a session from the pool, suspending until a context is free.

        Args:
            clear_state: Clear cookies before use

        Returns:
            A session on a fresh page; hand it back with ``release``

        Raises:
            JobSetupError: If every context was lost and none can be replaced
        """
        if not self._started:
            raise RuntimeError("Browser pool not started. Call start() first.")

        while True:
            if self._exhausted():
                raise JobSetupError(
                    f"Browser pool has no usable contexts "
                    f"({self._lost_contexts} could not be replaced)"
                )
            context_id = await self._available.get()
            context = self._contexts.get(context_id)
            if context is not None and context_id in self._metrics:
                break
            if self._exhausted():
                # Pass the wake-up on to the next blocked checkout
                self._available.put_nowait(context_id)
            # Otherwise the context was recycled while queued; take the next one

        self._in_use += 1
        self._peak_in_use = max(self._peak_in_use, self._in_use)
        try:
            if clear_state:
                await self._clear_context_state(context_id)
            page = await context.new_page()
        except Exception:
            self._in_use -= 1
            await self._available.put(context_id)
            raise

        self._total_requests += 1
        return BrowserSession(page, context_id, wait_until=self.wait_until)

    async def release(self, session: BrowserSession, failed: bool = False) -> None:
        """
        Return a session to the pool.

        Args:
            session: Session obtained from ``checkout``
            failed: Whether the work done with it ended in an error
        """
        context_id = session.context_id
        metrics = self._metrics.get(context_id)

        try:
            await session.page.close()
        except Exception:
            pass  # Page may already be gone with a crashed context

        self._in_use -= 1

        if metrics is None:
            return

        if failed:
            metrics.record_error()
            self._total_errors += 1
        else:
            metrics.record_success()

        should_recycle = (
            metrics.requests_handled >= MAX_REQUESTS_PER_CONTEXT or
            metrics.error_rate > ERROR_RATE_RECYCLE_THRESHOLD or
            metrics.health == BrowserHealth.UNHEALTHY
        )

        if should_recycle:
            metrics.health = BrowserHealth.RECYCLING
            self._recycling += 1
            task = asyncio.create_task(self._recycle_context(context_id))
            self._background.add(task)
            task.add_done_callback(self._on_recycle_done)
        else:
            await self._available.put(context_id)

    @asynccontextmanager
    async def acquire(self, clear_state: bool = True) -> AsyncIterator[BrowserSession]:
        """
        Borrow a session for the duration of a block.

        Usage:
            async with pool.acquire() as session:
                await session.navigate(url, timeout_secs=30)

        Args:
            clear_state: Clear cookies before use

        Yields:
            BrowserSession
        """
        session = await self.checkout(clear_state=clear_state)
        failed = False
        try:
            yield session
        except BaseException:
            failed = True
            raise
        finally:
            await self.release(session, failed=failed)

    def check_health(self, context_id: int) -> BrowserHealth:
        """
        Check health of a specific context.
        """
        metrics = self._metrics.get(context_id)
        if not metrics:
            return BrowserHealth.UNHEALTHY

        return metrics.health

    def get_status(self) -> PoolStatus:
        """Get current pool status."""
        healthy = sum(1 for m in self._metrics.values() if m.health == BrowserHealth.HEALTHY)
        degraded = sum(1 for m in self._metrics.values() if m.health == BrowserHealth.DEGRADED)
        unhealthy = sum(1 for m in self._metrics.values() if m.health == BrowserHealth.UNHEALTHY)

        uptime = 0.0
        if self._start_time:
            uptime = (datetime.now() - self._start_time).total_seconds()

        return PoolStatus(
            total_size=len(self._contexts),
            available=self.available_count,
            in_use=self._in_use,
            peak_in_use=self._peak_in_use,
            healthy=healthy,
            degraded=degraded,
            unhealthy=unhealthy,
            total_requests=self._total_requests,
            total_errors=self._total_errors,
            uptime_seconds=uptime,
        )

    @property
    def available_count(self) -> int:
        """Number of available contexts."""
        return 0 if self._exhausted() else self._available.qsize()

    @property
    def in_use(self) -> int:
        """Number of sessions currently checked out."""
        return self._in_use

    @property
    def is_started(self) -> bool:
        """Whether pool has been started."""
        return self._started
