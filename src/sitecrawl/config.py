"""Process settings and typed per-job options.

Settings come from the environment (a .env file is honoured). Job options are
validated Pydantic models: every recognized option is declared with its
default, unknown fields are rejected, and the camelCase names used by HTTP
callers (``maxRequests``, ``waitForSelector``...) are accepted alongside the
Python names.
"""

import os
import re
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from sitecrawl.constants import (
    DEFAULT_CONTENT_SELECTOR,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_REQUEST_RETRIES,
    DEFAULT_MAX_REQUESTS,
    DEFAULT_NAVIGATION_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_HANDLER_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SCREENSHOT_DIR,
    DEFAULT_SCREENSHOT_QUALITY,
    DEFAULT_SCREENSHOT_URL_PREFIX,
    MAX_CONCURRENCY_LIMIT,
    SCREENSHOT_VIEWPORT_HEIGHT,
    SCREENSHOT_VIEWPORT_WIDTH,
    SINGLE_PAGE_NAVIGATION_TIMEOUT_SECONDS,
)
from sitecrawl.errors import ValidationError

load_dotenv()  # Loads variables from .env file


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings loaded from environment variables."""
    headless: bool = True
    browser_type: str = "chromium"
    user_agent: Optional[str] = None
    screenshot_dir: str = DEFAULT_SCREENSHOT_DIR
    screenshot_url_prefix: str = DEFAULT_SCREENSHOT_URL_PREFIX
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables.

        Returns:
            Settings: instance with values from environment
        """
        return cls(
            headless=_env_bool("SITECRAWL_HEADLESS", True),
            browser_type=os.getenv("SITECRAWL_BROWSER", "chromium"),
            user_agent=os.getenv("SITECRAWL_USER_AGENT"),
            screenshot_dir=os.getenv("SITECRAWL_SCREENSHOT_DIR", DEFAULT_SCREENSHOT_DIR),
            screenshot_url_prefix=os.getenv(
                "SITECRAWL_SCREENSHOT_URL_PREFIX", DEFAULT_SCREENSHOT_URL_PREFIX
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE"),
        )


settings = Settings.from_env()


def _format_validation_error(exc: PydanticValidationError) -> Tuple[str, Optional[str]]:
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ())) or None
    if loc:
        return f"{loc}: {first['msg']}", loc
    return first["msg"], None


class _Options(BaseModel):
    """Shared model configuration for job options."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @classmethod
    def field_name(cls, key: str) -> str:
        """Map a camelCase or alias key to its field name; unknown keys pass through."""
        for name, info in cls.model_fields.items():
            names = {name, info.alias}
            if isinstance(info.validation_alias, AliasChoices):
                names.update(c for c in info.validation_alias.choices if isinstance(c, str))
            elif isinstance(info.validation_alias, str):
                names.add(info.validation_alias)
            if key in names:
                return name
        return key

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None, **overrides: Any):
        """Build options from a loosely-typed mapping.

        Args:
            data: Raw options (parsed JSON body, YAML file...)
            **overrides: Values that take precedence over ``data``;
                ``None`` values are ignored

        Returns:
            Validated options instance

        Raises:
            ValidationError: If a field is unknown or has an invalid value
        """
        merged = {cls.field_name(key): value for key, value in (data or {}).items()}
        merged.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls.model_validate(merged)
        except PydanticValidationError as e:
            message, field = _format_validation_error(e)
            raise ValidationError(message, field=field) from e


class CrawlOptions(_Options):
    """Options for a link-following crawl job."""

    max_requests: int = Field(
        default=DEFAULT_MAX_REQUESTS,
        ge=1,
        description="Budget on total page visits (retries included)"
    )

    max_depth: int = Field(
        default=DEFAULT_MAX_DEPTH,
        ge=0,
        validation_alias=AliasChoices("max_depth", "maxDepth", "depth"),
        description="Deepest link level followed; the seed is depth 0"
    )

    wait_for_selector: Optional[str] = Field(
        default=None,
        description="CSS selector awaited after navigation"
    )

    navigation_timeout_secs: float = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_SECONDS,
        gt=0,
        description="Page load timeout in seconds"
    )

    request_handler_timeout_secs: float = Field(
        default=DEFAULT_REQUEST_HANDLER_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout for processing one target in seconds"
    )

    max_concurrency: int = Field(
        default=DEFAULT_MAX_CONCURRENCY,
        ge=1,
        le=MAX_CONCURRENCY_LIMIT,
        description="Concurrently active browser sessions"
    )

    max_request_retries: int = Field(
        default=DEFAULT_MAX_REQUEST_RETRIES,
        ge=0,
        description="Retries after a transient navigation failure"
    )

    retry_backoff_secs: float = Field(
        default=DEFAULT_RETRY_BACKOFF_SECONDS,
        ge=0,
        description="Base delay before a retry, doubled per attempt"
    )

    dedupe: bool = Field(
        default=False,
        description="Skip URLs already dispatched or queued in this job"
    )

    content_selector: str = Field(
        default=DEFAULT_CONTENT_SELECTOR,
        min_length=1,
        description="Element whose visible text feeds the snippet"
    )

    link_scope: Literal["all", "same-hostname", "same-domain"] = Field(
        default="same-hostname",
        description="Which discovered links are followed"
    )

    exclude_patterns: Tuple[str, ...] = Field(
        default=(),
        description="Regular expressions; matching links are not followed"
    )

    @field_validator("exclude_patterns")
    @classmethod
    def _patterns_compile(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {pattern!r}: {e}") from e
        return value


class ScreenshotOptions(_Options):
    """Options for a single-page screenshot job."""

    full_page: bool = Field(
        default=True,
        description="Capture the whole scrollable page instead of the viewport"
    )

    quality: int = Field(
        default=DEFAULT_SCREENSHOT_QUALITY,
        ge=1,
        le=100,
        description="JPEG quality"
    )

    wait_for_selector: Optional[str] = Field(
        default=None,
        description="CSS selector awaited before capture"
    )

    navigation_timeout_secs: float = Field(
        default=SINGLE_PAGE_NAVIGATION_TIMEOUT_SECONDS,
        gt=0,
        description="Page load timeout in seconds"
    )

    request_handler_timeout_secs: float = Field(
        default=DEFAULT_REQUEST_HANDLER_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout for the whole capture in seconds"
    )

    max_request_retries: int = Field(
        default=DEFAULT_MAX_REQUEST_RETRIES,
        ge=0,
        description="Retries after a transient navigation failure"
    )

    viewport_width: int = Field(default=SCREENSHOT_VIEWPORT_WIDTH, ge=1)
    viewport_height: int = Field(default=SCREENSHOT_VIEWPORT_HEIGHT, ge=1)


class TextExtractionOptions(_Options):
    """Options for a single-page structured text extraction."""

    wait_for_selector: Optional[str] = None

    navigation_timeout_secs: float = Field(
        default=SINGLE_PAGE_NAVIGATION_TIMEOUT_SECONDS,
        gt=0,
    )

    request_handler_timeout_secs: float = Field(
        default=DEFAULT_REQUEST_HANDLER_TIMEOUT_SECONDS,
        gt=0,
    )

    max_request_retries: int = Field(default=DEFAULT_MAX_REQUEST_RETRIES, ge=0)
