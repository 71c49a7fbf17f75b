"""Screen context for chat requests and the on-disk screenshot archive.

Capturing the screen is a collaborator concern: anything with an async
``capture()`` returning a base64 PNG (or None) can be plugged in. The archive
keeps captured images on disk so the cleanup task has something to purge.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from duckling.utils import Clock, from_millis, to_millis, utcnow

logger = logging.getLogger(__name__)

_PREFIX = "screenshot_"
_SUFFIX = ".png"


class ScreenCapture(Protocol):
    async def capture(self) -> str | None:
        """Base64-encoded PNG of the screen, or None when unavailable."""
        ...


class NoCapture:
    """Capture collaborator for headless runs: never has an image."""

    async def capture(self) -> str | None:
        return None


class ScreenshotArchive:
    """Timestamped PNG files in one directory, purged by age."""

    def __init__(self, directory: str | Path, clock: Clock = utcnow) -> None:
        self.directory = Path(directory)
        self._clock = clock

    async def save(self, png_base64: str) -> Path | None:
        """Decode and store one capture. Returns the file path, or None on failure."""
        try:
            data = base64.b64decode(png_base64, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Refusing to archive a capture that is not valid base64")
            return None
        target = self.directory / f"{_PREFIX}{to_millis(self._clock())}{_SUFFIX}"
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, data)
        except OSError:
            logger.warning("Could not archive screenshot %s", target, exc_info=True)
            return None
        return target

    async def purge(self, retention: timedelta) -> int:
        """Delete archived screenshots last modified more than retention ago."""
        return await asyncio.to_thread(self._purge_sync, self._clock() - retention)

    def _purge_sync(self, cutoff: datetime) -> int:
        if not self.directory.is_dir():
            return 0
        removed = 0
        for path in self.directory.glob(f"{_PREFIX}*{_SUFFIX}"):
            try:
                modified = from_millis(int(path.stat().st_mtime * 1000))
                if modified < cutoff:
                    path.unlink()
                    removed += 1
                    logger.debug("Deleted old screenshot: %s", path)
            except OSError:
                logger.warning("Could not purge %s", path, exc_info=True)
        return removed
