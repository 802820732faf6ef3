"""Crawl scheduler: drains the frontier against the session pool within the job budget."""

import asyncio
import logging
import random
from enum import Enum
from typing import Optional, Protocol
from urllib.parse import urldefrag

from sitecrawl.aggregator import ResultAggregator
from sitecrawl.constants import EXPONENTIAL_BACKOFF_BASE, MAX_BACKOFF_DELAY_SECONDS
from sitecrawl.frontier import Frontier
from sitecrawl.infrastructure.session import Session
from sitecrawl.models import CrawlJob, CrawlReport, CrawlTarget, PageResult
from sitecrawl.processor import PageProcessor
from sitecrawl.url_utils import link_in_scope, matches_any

logger = logging.getLogger(__name__)


class CrawlState(str, Enum):
    """Lifecycle of a crawl job."""
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"  # Budget reached; queued targets are discarded
    EXHAUSTED = "exhausted"  # Frontier emptied before the budget
    COMPLETED = "completed"


class SessionPool(Protocol):
    """What the scheduler needs from a session pool."""

    async def checkout(self) -> Session: ...

    async def release(self, session: Session, failed: bool = False) -> None: ...


class CrawlScheduler:
    """Runs one crawl job.

    A single dispatch loop pops targets in FIFO order and starts one task per
    target, never more than ``max_concurrency`` at a time. Each task borrows a
    session, processes the page, records the outcome and, when the page
    succeeded below the depth limit, enqueues its links at depth + 1.

    Every dispatch attempt (retries included) counts against ``max_requests``.
    """

    def __init__(
        self,
        job: CrawlJob,
        pool: SessionPool,
        processor: Optional[PageProcessor] = None,
        aggregator: Optional[ResultAggregator] = None,
    ):
        """Seed the frontier for a job.

        Args:
            job: The crawl job (seeds and options)
            pool: Started session pool sized for the job's concurrency
            processor: Page processor (built from the job options by default)
            aggregator: Result aggregator (a fresh one by default)
        """
        self.job = job
        self.options = job.options
        self.frontier = Frontier(max_depth=job.max_depth)
        self.aggregator = aggregator or ResultAggregator()
        self.processor = processor or PageProcessor.from_options(job.options)
        self._pool = pool
        self._state = CrawlState.IDLE
        self._dispatched = 0
        self._retries = 0
        self._seen: set[str] = set()

        for url in job.seed_urls:
            self._enqueue(CrawlTarget(url=url, depth=0))

    @property
    def state(self) -> CrawlState:
        return self._state

    @property
    def dispatched(self) -> int:
        """Dispatch attempts so far, retries included."""
        return self._dispatched

    @property
    def retries(self) -> int:
        return self._retries

    def _set_state(self, state: CrawlState) -> None:
        logger.debug(f"Crawl state {self._state.value} -> {state.value}")
        self._state = state

    def _budget_left(self) -> bool:
        return self._dispatched < self.options.max_requests

    async def run(self) -> CrawlReport:
        """Crawl until the frontier is empty or the request budget is spent.

        Returns:
            The finalized CrawlReport
        """
        if self._state is not CrawlState.IDLE:
            raise RuntimeError("A crawl scheduler can only run once")

        self._set_state(CrawlState.RUNNING)
        logger.info(
            f"Starting crawl from {', '.join(self.job.seed_urls)} "
            f"(max requests: {self.options.max_requests}, max depth: {self.options.max_depth}, "
            f"concurrency: {self.options.max_concurrency})"
        )

        in_flight: set[asyncio.Task] = set()
        try:
            while True:
                if not self._budget_left():
                    # Nothing is enqueued once the budget is spent, so an
                    # empty frontier here stays empty
                    if self.frontier.is_empty():
                        self._set_state(CrawlState.EXHAUSTED)
                    else:
                        self._set_state(CrawlState.DRAINING)
                    break

                if len(in_flight) >= self.options.max_concurrency or (
                    in_flight and self.frontier.is_empty()
                ):
                    done, in_flight = await asyncio.wait(
                        in_flight, return_when=asyncio.FIRST_COMPLETED
                    )
                    self._reap(done)
                    continue

                target = self.frontier.pop()
                if target is None:
                    self._set_state(CrawlState.EXHAUSTED)
                    break

                self._dispatched += 1
                in_flight.add(asyncio.create_task(self._run_target(target)))

            if in_flight:
                done, in_flight = await asyncio.wait(in_flight)
                self._reap(done)
        finally:
            for task in in_flight:
                task.cancel()

        dropped = self.frontier.discard_remaining()
        if dropped:
            logger.info(f"Request budget reached; discarded {dropped} queued targets")

        report = self.aggregator.finalize()
        self._set_state(CrawlState.COMPLETED)

        logger.info(
            f"Crawl complete! {report.stats.requests_total} pages "
            f"({len(report.failures)} failed, {self._retries} retries) "
            f"in {report.stats.crawl_duration:.2f}s"
        )
        return report

    def _reap(self, done: set[asyncio.Task]) -> None:
        for task in done:
            # Surfaces scheduler bugs; page-level errors never reach here
            task.result()

    async def _run_target(self, target: CrawlTarget) -> None:
        """Process a target, retrying transient failures while budget allows."""
        logger.info(
            f"[D{target.depth}] Crawling ({self._dispatched}/{self.options.max_requests}): "
            f"{target.url}"
        )

        while True:
            result = await self._attempt(target)
            if result.success or not result.retryable:
                break
            if target.retry_count >= self.options.max_request_retries:
                break
            if not self._budget_left():
                logger.info(f"  No request budget left to retry {target.url}")
                break

            self._dispatched += 1
            self._retries += 1
            delay = self._calculate_backoff_delay(target.retry_count)
            logger.info(
                f"  Will retry ({target.retry_count + 1}/{self.options.max_request_retries}) "
                f"after {delay:.1f}s: {target.url}"
            )
            if delay > 0:
                await asyncio.sleep(delay)
            target = target.retried()

        if result.success:
            logger.info(f"  ✓ Success - {result.content_length} chars, {len(result.links)} links")
        else:
            logger.warning(
                f"  ❌ Failed after {target.retry_count} retries: {target.url} ({result.error})"
            )

        self.aggregator.record(result)

        if result.success:
            self._enqueue_links(target, result)

    async def _attempt(self, target: CrawlTarget) -> PageResult:
        """One processing attempt on a borrowed session, bounded by the handler timeout."""
        try:
            session = await self._pool.checkout()
        except Exception as e:
            logger.error(f"  Could not obtain a browser session for {target.url}: {e}")
            return self.processor.failure(target, e)

        result: Optional[PageResult] = None
        timeout = self.options.request_handler_timeout_secs
        try:
            result = await asyncio.wait_for(
                self.processor.process(session, target), timeout=timeout
            )
        except asyncio.TimeoutError:
            result = self.processor.failure(
                target, asyncio.TimeoutError(f"Request handler timed out after {timeout:g}s")
            )
        finally:
            await self._pool.release(session, failed=result is None or not result.success)
        return result

    def _calculate_backoff_delay(self, retry_count: int) -> float:
        """Exponential backoff with ±25% jitter, capped."""
        base = self.options.retry_backoff_secs
        if base <= 0:
            return 0.0
        delay = min(base * (EXPONENTIAL_BACKOFF_BASE ** retry_count), MAX_BACKOFF_DELAY_SECONDS)
        return delay + delay * random.uniform(-0.25, 0.25)

    def _enqueue(self, target: CrawlTarget) -> bool:
        key = urldefrag(target.url)[0]
        if self.options.dedupe and key in self._seen:
            return False
        if not self.frontier.push(target):
            return False
        self._seen.add(key)
        return True

    def _enqueue_links(self, target: CrawlTarget, result: PageResult) -> None:
        """Push a page's links one level deeper while depth and budget allow."""
        if target.depth >= self.options.max_depth:
            return

        scope = self.options.link_scope
        queued = 0
        for link in result.links:
            if self._dispatched + len(self.frontier) >= self.options.max_requests:
                break
            # A link within scope of any seed is followed
            if not any(link_in_scope(link.url, seed, scope) for seed in self.job.seed_urls):
                continue
            if self.options.exclude_patterns and matches_any(link.url, self.options.exclude_patterns):
                continue
            if self._enqueue(target.child(link.url)):
                queued += 1

        if queued:
            logger.info(f"  → Queued {queued} new links for D{target.depth + 1}")
