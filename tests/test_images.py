"""Tests for temporary image storage and the placeholder capture."""

import base64
import os
import struct
import time
import zlib
from pathlib import Path

import pytest

from agentroom.images import ImageHandler, placeholder_png


class TestPlaceholderPng:
    def test_valid_png(self):
        data = placeholder_png(4, 3)

        assert data.startswith(b"\x89PNG\r\n\x1a\n")
        length, kind = struct.unpack(">I4s", data[8:16])
        assert kind == b"IHDR"
        width, height = struct.unpack(">II", data[16:24])
        assert (width, height) == (4, 3)
        crc = struct.unpack(">I", data[16 + length:20 + length])[0]
        assert crc == zlib.crc32(data[12:16 + length]) & 0xFFFFFFFF
        assert data.endswith(b"IEND\xaeB`\x82")


class TestImageHandler:
    @pytest.mark.asyncio
    async def test_save_and_read(self, image_handler):
        raw = b"\x89PNG\r\n\x1a\nbytes"
        encoded = base64.b64encode(raw).decode()

        path = await image_handler.save_image_from_base64(f"data:image/png;base64,{encoded}", "png")

        assert path.parent == image_handler.temp_dir
        assert path.read_bytes() == raw

        image = await image_handler.read_image_as_base64(path)
        assert image.data == encoded
        assert image.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_named_file_and_mime_type(self, image_handler):
        path = await image_handler.save_image_from_base64("aGVsbG8=", "jpg", filename="shot.jpg")
        assert path.name == "shot.jpg"
        assert (await image_handler.read_image_as_base64(path)).mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_capture_screenshot(self, image_handler):
        capture = await image_handler.capture_screenshot(width=32, height=16)

        assert capture.success
        assert capture.metadata.width == 32
        assert capture.metadata.format == "png"
        content = Path(capture.image_path).read_bytes()
        assert base64.b64encode(content).decode() == capture.image_data
        assert struct.unpack(">II", content[16:24]) == (32, 16)

    @pytest.mark.asyncio
    async def test_unsupported_format(self, image_handler):
        capture = await image_handler.capture_screenshot(fmt="jpeg")
        assert not capture.success
        assert "Unsupported capture format" in capture.error

    @pytest.mark.asyncio
    async def test_cleanup_removes_old_screenshots(self, image_handler):
        await image_handler.initialize()
        old = image_handler.temp_dir / "screenshot_old.png"
        fresh = image_handler.temp_dir / "screenshot_new.png"
        other = image_handler.temp_dir / "keep.txt"
        for path in (old, fresh, other):
            path.write_bytes(b"x")
        past = time.time() - 7200
        os.utime(old, (past, past))
        os.utime(other, (past, past))

        removed = await image_handler.cleanup_temp_images(max_age_seconds=3600)

        assert removed == 1
        assert not old.exists()
        assert fresh.exists()
        assert other.exists()

    @pytest.mark.asyncio
    async def test_cleanup_without_directory(self, tmp_path):
        assert await ImageHandler(tmp_path / "missing").cleanup_temp_images() == 0
