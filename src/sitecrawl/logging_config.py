"""Logging configuration for the crawler.

Log records go to stderr so the CLI can print JSON results on stdout.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are only interesting when something breaks
QUIET_LOGGERS = ('asyncio', 'playwright')


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """Configure the root logger for a crawler process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            unknown names fall back to INFO
        log_file: Optional file that receives a copy of every record
        format_string: Optional custom format string
    """
    formatter_format = format_string or DEFAULT_LOG_FORMAT
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=numeric_level,
        format=formatter_format,
        handlers=handlers,
        force=True  # Replace handlers from an earlier call
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger(__name__).debug(
        f"Logging configured at {logging.getLevelName(numeric_level)}"
        + (f", copying to {log_path}" if log_file else "")
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger in the crawler's hierarchy (usually called with __name__)."""
    return logging.getLogger(name)
