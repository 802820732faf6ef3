"""
Infrastructure Package.

Provides the bounded browser session pool and the session wrapper used by the
page processor.
"""

from .browser_pool import (
    BrowserPool,
    BrowserHealth,
    PoolStatus,
    ContextMetrics,
    SUPPORTED_BROWSERS,
)
from .session import (
    BrowserSession,
    Session,
    is_transient_message,
)

__all__ = [
    # Browser Pool
    "BrowserPool",
    "BrowserHealth",
    "PoolStatus",
    "ContextMetrics",
    "SUPPORTED_BROWSERS",
    # Session
    "BrowserSession",
    "Session",
    "is_transient_message",
]
