"""Command line interface: crawl a site, screenshot a page, or extract its text.

Results are printed to stdout as JSON; logs go to stderr.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import yaml

from sitecrawl.config import CrawlOptions, ScreenshotOptions, TextExtractionOptions, Settings
from sitecrawl.constants import (
    CLI_DEFAULT_DEPTH,
    CLI_DEFAULT_MAX_REQUESTS,
    DEFAULT_EXCLUDE_PATTERNS,
)
from sitecrawl.crawler import SiteCrawler
from sitecrawl.errors import CaptureError, JobSetupError, StorageError, ValidationError
from sitecrawl.logging_config import get_logger, setup_logging
from sitecrawl.storage import LocalScreenshotStorage
from sitecrawl.url_utils import normalize_input_url

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_INVALID_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-command per job type."""
    parser = argparse.ArgumentParser(
        prog="sitecrawl",
        description="Bounded headless-browser crawler"
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        help="Log level (default: LOG_LEVEL from the environment, else INFO)"
    )
    parser.add_argument(
        "--log-file", type=str, default=None,
        help="Also write logs to this file"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    crawl = subparsers.add_parser("crawl", help="Crawl from a seed URL")
    crawl.add_argument("url", help="Seed URL (https:// is assumed when no scheme is given)")
    crawl.add_argument(
        "--max-requests", type=int, default=None,
        help=f"Maximum number of page visits, retries included (default: {CLI_DEFAULT_MAX_REQUESTS})"
    )
    crawl.add_argument(
        "--depth", type=int, default=None,
        help=f"Maximum link depth; the seed is depth 0 (default: {CLI_DEFAULT_DEPTH})"
    )
    crawl.add_argument(
        "--max-concurrency", type=int, default=None,
        help="Concurrent browser sessions"
    )
    crawl.add_argument(
        "--wait-for-selector", type=str, default=None,
        help="CSS selector to wait for after each navigation"
    )
    crawl.add_argument(
        "--dedupe", action="store_true", default=None,
        help="Skip URLs already visited or queued in this crawl"
    )
    crawl.add_argument(
        "--exclude", action="append", default=None, metavar="PATTERN",
        help="Regex for links not to follow (repeatable; adds to the built-in list)"
    )
    crawl.add_argument(
        "--options", type=str, default=None, metavar="FILE",
        help="YAML file with crawl options"
    )

    screenshot = subparsers.add_parser("screenshot", help="Capture a JPEG of one page")
    screenshot.add_argument("url", help="Page URL")
    screenshot.add_argument(
        "--quality", type=int, default=None,
        help="JPEG quality 1-100 (default: 80)"
    )
    screenshot.add_argument(
        "--viewport-only", action="store_true",
        help="Capture only the viewport instead of the full page"
    )
    screenshot.add_argument(
        "--wait-for-selector", type=str, default=None,
        help="CSS selector to wait for before capturing"
    )
    screenshot.add_argument(
        "--output-dir", type=str, default=None,
        help="Directory for the image (default: SITECRAWL_SCREENSHOT_DIR)"
    )
    screenshot.add_argument(
        "--options", type=str, default=None, metavar="FILE",
        help="YAML file with screenshot options"
    )

    extract = subparsers.add_parser("extract", help="Extract headings and paragraphs of one page")
    extract.add_argument("url", help="Page URL")
    extract.add_argument(
        "--wait-for-selector", type=str, default=None,
        help="CSS selector to wait for before extracting"
    )
    extract.add_argument(
        "--options", type=str, default=None, metavar="FILE",
        help="YAML file with extraction options"
    )

    return parser


def load_options_file(path: Optional[str]) -> dict[str, Any]:
    """Read a YAML options file into a dict.

    Raises:
        ValidationError: If the file is missing or does not hold a mapping
    """
    if not path:
        return {}

    options_path = Path(path)
    if not options_path.exists():
        raise ValidationError(f"Options file not found: {path}", field="options")

    try:
        with open(options_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}", field="options") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"Options file must contain a mapping: {path}", field="options")
    return data


def crawl_options_from_args(args: argparse.Namespace) -> CrawlOptions:
    """Merge the options file, built-in CLI defaults and flags (flags win)."""
    data = {
        "max_requests": CLI_DEFAULT_MAX_REQUESTS,
        "max_depth": CLI_DEFAULT_DEPTH,
        "exclude_patterns": list(DEFAULT_EXCLUDE_PATTERNS),
    }
    file_options = load_options_file(args.options)
    data.update({CrawlOptions.field_name(key): value for key, value in file_options.items()})

    exclude = None
    if args.exclude:
        exclude = list(data.get("exclude_patterns") or []) + args.exclude

    return CrawlOptions.from_mapping(
        data,
        max_requests=args.max_requests,
        max_depth=args.depth,
        max_concurrency=args.max_concurrency,
        wait_for_selector=args.wait_for_selector,
        dedupe=args.dedupe,
        exclude_patterns=exclude,
    )


def screenshot_options_from_args(args: argparse.Namespace) -> ScreenshotOptions:
    return ScreenshotOptions.from_mapping(
        load_options_file(args.options),
        quality=args.quality,
        full_page=False if args.viewport_only else None,
        wait_for_selector=args.wait_for_selector,
    )


def _print_json(data: dict) -> None:
    json.dump(data, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Run the selected sub-command and print its result.

    Returns:
        Process exit status
    """
    url = normalize_input_url(args.url)

    if args.command == "crawl":
        options = crawl_options_from_args(args)
        report = await SiteCrawler(settings=settings).start_crawl(url, options=options)
        _print_json(report.to_dict())
        return EXIT_OK

    if args.command == "screenshot":
        options = screenshot_options_from_args(args)
        storage = None
        if args.output_dir:
            storage = LocalScreenshotStorage(args.output_dir, settings.screenshot_url_prefix)
        result = await SiteCrawler(settings=settings, storage=storage).capture_screenshot(
            url, options
        )
        _print_json(result.to_dict())
        return EXIT_OK

    options = TextExtractionOptions.from_mapping(
        load_options_file(args.options),
        wait_for_selector=args.wait_for_selector,
    )
    result = await SiteCrawler(settings=settings).extract_text(url, options)
    _print_json(result.to_dict())
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)

    settings = Settings.from_env()
    setup_logging(level=args.log_level or settings.log_level, log_file=args.log_file or settings.log_file)

    try:
        return asyncio.run(run_command(args, settings))
    except ValidationError as e:
        logger.error(f"Invalid input: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except (JobSetupError, CaptureError, StorageError) as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_JOB_FAILED
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user.", file=sys.stderr)
        return EXIT_JOB_FAILED


if __name__ == "__main__":
    sys.exit(main())
