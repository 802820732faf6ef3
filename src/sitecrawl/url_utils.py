"""URL helpers shared by the crawler and its callers."""

import re
from typing import Iterable
from urllib.parse import urlparse

from sitecrawl.errors import ValidationError


def is_absolute_http_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_input_url(raw: str) -> str:
    """Turn user input into an absolute URL, assuming https when no scheme is given.

    Args:
        raw: URL as typed by a user or sent by an HTTP client

    Returns:
        Absolute http(s) URL

    Raises:
        ValidationError: If the input is empty or not a usable URL
    """
    if not raw or not raw.strip():
        raise ValidationError("URL is required", field="url")

    url = raw.strip()
    if not url.startswith("http"):
        url = f"https://{url}"

    if not is_absolute_http_url(url):
        raise ValidationError("Invalid URL format", field="url")
    return url


def _registrable_domain(hostname: str) -> str:
    # Last two labels; good enough without a public suffix list
    labels = hostname.lower().split(".")
    return ".".join(labels[-2:])


def link_in_scope(link: str, seed_url: str, scope: str) -> bool:
    """Check a discovered link against the job's link scope.

    Args:
        link: Absolute URL found on a page
        seed_url: The job's seed URL
        scope: "all", "same-hostname" or "same-domain"

    Returns:
        True if the link may be followed
    """
    if scope == "all":
        return True

    link_host = (urlparse(link).hostname or "").lower()
    seed_host = (urlparse(seed_url).hostname or "").lower()
    if scope == "same-hostname":
        return link_host == seed_host
    return _registrable_domain(link_host) == _registrable_domain(seed_host)


def matches_any(url: str, patterns: Iterable[str]) -> bool:
    """True if any regular expression matches the URL (case-insensitive)."""
    return any(re.search(pattern, url, re.IGNORECASE) for pattern in patterns)
