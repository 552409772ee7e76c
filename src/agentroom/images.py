"""Temporary image storage and the placeholder screen capture."""

from __future__ import annotations

import base64
import logging
import re
import struct
import time
import uuid
import zlib
from datetime import datetime, timezone
from pathlib import Path

import aiofiles
import aiofiles.os
from pydantic import BaseModel

from .models import ProviderImage

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


class CaptureMetadata(BaseModel):
    timestamp: str
    format: str
    width: int | None = None
    height: int | None = None


class ScreenshotCapture(BaseModel):
    success: bool
    image_path: str | None = None
    image_data: str | None = None
    error: str | None = None
    metadata: CaptureMetadata


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return (
        struct.pack(">I", len(data))
        + kind
        + data
        + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)
    )


def placeholder_png(width: int, height: int, rgb: tuple[int, int, int] = (0xCC, 0xCC, 0xCC)) -> bytes:
    """A solid-colour RGB PNG."""
    row = b"\x00" + bytes(rgb) * width
    raw = row * height
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(raw, 9))
        + _png_chunk(b"IEND", b"")
    )


class ImageHandler:
    """Stores images in a scratch directory where the CLI provider can read them."""

    def __init__(self, temp_dir: Path):
        self.temp_dir = Path(temp_dir)

    async def initialize(self):
        await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)

    def _new_filename(self, fmt: str) -> str:
        return f"screenshot_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{fmt}"

    async def save_image_from_base64(
        self, data: str, fmt: str = "png", filename: str | None = None
    ) -> Path:
        await self.initialize()
        path = self.temp_dir / (filename or self._new_filename(fmt))
        clean = _DATA_URL_PREFIX.sub("", data)
        async with aiofiles.open(path, "wb") as f:
            await f.write(base64.b64decode(clean))
        return path

    async def read_image_as_base64(self, path: Path) -> ProviderImage:
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        ext = Path(path).suffix.lstrip(".").lower()
        return ProviderImage(
            type="base64",
            data=base64.b64encode(content).decode("ascii"),
            mime_type=MIME_TYPES.get(ext, "image/png"),
        )

    async def capture_screenshot(
        self, fmt: str = "png", width: int = 800, height: int = 600
    ) -> ScreenshotCapture:
        """Capture the screen.

        Platform capture is not wired in; this writes a placeholder image of
        the requested size so the rest of the pipeline can be exercised.
        """
        metadata = CaptureMetadata(
            timestamp=datetime.now(timezone.utc).isoformat(), format=fmt
        )
        if fmt != "png":
            return ScreenshotCapture(
                success=False, error=f"Unsupported capture format: {fmt}", metadata=metadata
            )

        try:
            await self.initialize()
            content = placeholder_png(width, height)
            path = self.temp_dir / self._new_filename(fmt)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.warning("Screenshot capture failed: %s", e)
            return ScreenshotCapture(success=False, error=str(e), metadata=metadata)

        metadata.width = width
        metadata.height = height
        return ScreenshotCapture(
            success=True,
            image_path=str(path),
            image_data=base64.b64encode(content).decode("ascii"),
            metadata=metadata,
        )

    async def cleanup_temp_images(self, max_age_seconds: float = 24 * 60 * 60) -> int:
        """Delete screenshots older than ``max_age_seconds``. Returns how many were removed."""
        if not await aiofiles.os.path.isdir(self.temp_dir):
            return 0

        removed = 0
        now = time.time()
        for name in await aiofiles.os.listdir(self.temp_dir):
            if not name.startswith("screenshot_"):
                continue
            path = self.temp_dir / name
            try:
                stat = await aiofiles.os.stat(path)
                if now - stat.st_mtime > max_age_seconds:
                    await aiofiles.os.remove(path)
                    removed += 1
            except FileNotFoundError:
                continue
        return removed
