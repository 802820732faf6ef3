"""Collects page outcomes into the final crawl report."""

import logging
import threading
from datetime import datetime
from typing import Optional

from sitecrawl.models import CrawlReport, CrawlStats, PageResult, utc_now

logger = logging.getLogger(__name__)


class ResultAggregator:
    """Appends PageResults in completion order and builds the CrawlReport.

    ``record`` may be called from concurrently completing workers.
    """

    def __init__(self, started_at: Optional[datetime] = None):
        self.started_at = started_at or utc_now()
        self._pages: list[PageResult] = []
        self._lock = threading.Lock()
        self._report: Optional[CrawlReport] = None

    def record(self, outcome: PageResult) -> None:
        """Append one outcome.

        Raises:
            RuntimeError: If the report was already finalized
        """
        with self._lock:
            if self._report is not None:
                raise RuntimeError("Cannot record results after finalize()")
            self._pages.append(outcome)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._pages)

    @property
    def failure_count(self) -> int:
        with self._lock:
            return sum(1 for page in self._pages if not page.success)

    def finalize(self) -> CrawlReport:
        """Compute stats and freeze the report. Idempotent."""
        with self._lock:
            if self._report is None:
                completed_at = utc_now()
                stats = CrawlStats(
                    requests_total=len(self._pages),
                    crawl_duration=(completed_at - self.started_at).total_seconds(),
                    started_at=self.started_at,
                    completed_at=completed_at,
                )
                self._report = CrawlReport(pages=tuple(self._pages), stats=stats)
                logger.debug(
                    f"Report finalized: {stats.requests_total} results "
                    f"in {stats.crawl_duration:.2f}s"
                )
            return self._report
