# src/sitecrawl/constants.py
"""Centralized constants for the crawler.

Per-job options live in config.py (CrawlOptions, ScreenshotOptions). The
values here are their defaults plus the fixed caps applied during extraction.
"""

# =============================================================================
# Crawl Budget Defaults
# =============================================================================

# Maximum pages visited per crawl job
DEFAULT_MAX_REQUESTS = 10

# Maximum link depth below the seed (seed is depth 0)
DEFAULT_MAX_DEPTH = 1

# Larger defaults used by the command-line interface
CLI_DEFAULT_MAX_REQUESTS = 50
CLI_DEFAULT_DEPTH = 2

# Concurrently active browser sessions
DEFAULT_MAX_CONCURRENCY = 2

# Upper bound accepted for max_concurrency
MAX_CONCURRENCY_LIMIT = 32


# =============================================================================
# Timeout and Retry Constants
# =============================================================================

# Page navigation timeout (seconds)
DEFAULT_NAVIGATION_TIMEOUT_SECONDS = 60.0

# Whole-target processing timeout (seconds)
DEFAULT_REQUEST_HANDLER_TIMEOUT_SECONDS = 60.0

# Navigation timeout used for single-page jobs (screenshot, text extraction)
SINGLE_PAGE_NAVIGATION_TIMEOUT_SECONDS = 30.0

# Retries after a transient navigation failure
DEFAULT_MAX_REQUEST_RETRIES = 1

# Base delay before a retry; doubles per attempt
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5

# Base for exponential backoff calculation
EXPONENTIAL_BACKOFF_BASE = 2

# Cap for exponential growth (seconds)
MAX_BACKOFF_DELAY_SECONDS = 30.0

# Error messages that will not resolve with a retry
NON_RETRYABLE_ERROR_PATTERNS = [
    "net::err_name_not_resolved",  # DNS failure
    "net::err_connection_refused",  # Server not accepting connections
    "invalid url",
    "protocol error",
]

# Playwright load state awaited by navigation
DEFAULT_WAIT_UNTIL = "load"


# =============================================================================
# Extraction Constants
# =============================================================================

# Characters of body text kept in a page snippet
SNIPPET_MAX_CHARS = 500

# Appended to a truncated snippet
SNIPPET_ELLIPSIS = "..."

# Outbound links reported per page
MAX_LINKS_PER_PAGE = 20

# Element whose text feeds the snippet
DEFAULT_CONTENT_SELECTOR = "body"

# Error text kept in a failure record
MAX_ERROR_MESSAGE_CHARS = 500

# URLs never worth enqueueing (downloads, session-ending links)
DEFAULT_EXCLUDE_PATTERNS = [
    r"\.(pdf|zip|doc|docx|xls|xlsx)$",
    "logout",
    "signout",
    "unsubscribe",
]


# =============================================================================
# Screenshot Constants
# =============================================================================

DEFAULT_SCREENSHOT_QUALITY = 80
SCREENSHOT_FORMAT = "jpeg"
SCREENSHOT_EXTENSION = "jpg"

# Viewport applied before capture
SCREENSHOT_VIEWPORT_WIDTH = 1280
SCREENSHOT_VIEWPORT_HEIGHT = 800

DEFAULT_SCREENSHOT_DIR = "public/uploads/screenshots"
DEFAULT_SCREENSHOT_URL_PREFIX = "/uploads/screenshots"


# =============================================================================
# Browser Pool Constants
# =============================================================================

# Default navigation timeout for pooled contexts (milliseconds)
DEFAULT_CONTEXT_TIMEOUT_MS = 30000

# Requests served before a context is recycled
MAX_REQUESTS_PER_CONTEXT = 100

# Error rate above which a context is recycled
ERROR_RATE_RECYCLE_THRESHOLD = 0.3
