"""Storage collaborators for captured screenshots."""

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

from sitecrawl.constants import (
    DEFAULT_SCREENSHOT_DIR,
    DEFAULT_SCREENSHOT_URL_PREFIX,
    SCREENSHOT_EXTENSION,
)
from sitecrawl.errors import StorageError

logger = logging.getLogger(__name__)


def screenshot_filename(timestamp_ms: Optional[int] = None) -> str:
    """Timestamp-based file name with a random suffix against same-millisecond captures."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"screenshot-{timestamp_ms}-{secrets.token_hex(4)}.{SCREENSHOT_EXTENSION}"


class ScreenshotStorage(ABC):
    """Where screenshot bytes end up. The crawler only keeps the returned reference."""

    @abstractmethod
    async def write(self, path: str, data: bytes) -> str:
        """Persist bytes under a relative path.

        Returns:
            Reference to the stored object (URL path, object key...)

        Raises:
            StorageError: If the bytes cannot be written
        """


class LocalScreenshotStorage(ScreenshotStorage):
    """Writes screenshots to a directory served under a URL prefix."""

    def __init__(
        self,
        root_dir: str | Path = DEFAULT_SCREENSHOT_DIR,
        url_prefix: str = DEFAULT_SCREENSHOT_URL_PREFIX,
    ):
        """Initialize local storage.

        Args:
            root_dir: Directory receiving the files (created on first write)
            url_prefix: Public path the directory is served under
        """
        self.root_dir = Path(root_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise StorageError(path, f"Refusing to write outside storage root: {path!r}")
        return self.root_dir.joinpath(*relative.parts)

    @staticmethod
    def _write_file(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def write(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(self._write_file, target, data)
        except OSError as e:
            raise StorageError(str(target), f"Failed to write screenshot: {e}") from e

        logger.info(f"Saved screenshot ({len(data)} bytes) to {target}")
        return f"{self.url_prefix}/{PurePosixPath(path).as_posix()}"
