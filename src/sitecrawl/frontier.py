"""FIFO request queue for a single crawl job."""

import logging
import threading
from collections import deque
from typing import Deque, Optional

from sitecrawl.models import CrawlTarget

logger = logging.getLogger(__name__)


class Frontier:
    """Pending crawl targets in FIFO order.

    Children are appended behind every sibling already queued, so pops come
    out breadth-first. URLs are not deduplicated here; callers that want a
    dedup policy apply it before pushing.
    """

    def __init__(self, max_depth: int):
        """Initialize an empty frontier.

        Args:
            max_depth: Deepest level a target may have to be accepted
        """
        self.max_depth = max_depth
        self._queue: Deque[CrawlTarget] = deque()
        self._lock = threading.Lock()
        self._rejected = 0

    def push(self, target: CrawlTarget) -> bool:
        """Add a target if its depth is within budget.

        Returns:
            True if the target was queued
        """
        if target.depth < 0 or target.depth > self.max_depth:
            with self._lock:
                self._rejected += 1
            logger.debug(f"Rejected {target.url} at depth {target.depth} (max {self.max_depth})")
            return False

        with self._lock:
            self._queue.append(target)
        return True

    def pop(self) -> Optional[CrawlTarget]:
        """Remove and return the oldest target, or None when empty."""
        with self._lock:
            if not self._queue:
                return None
            return self._queue.popleft()

    def is_empty(self) -> bool:
        with self._lock:
            return not self._queue

    def discard_remaining(self) -> int:
        """Drop everything still queued; returns how many targets were dropped."""
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def rejected_count(self) -> int:
        """Targets refused for exceeding the depth budget."""
        return self._rejected
