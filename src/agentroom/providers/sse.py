"""Server-sent events decoding for the HTTP streaming providers."""

from __future__ import annotations

from typing import AsyncIterator

import httpx

from ..cancellation import CancellationToken
from .base import next_or_none


def parse_sse_line(line: str) -> str | None:
    """Return the payload of a ``data:`` line, None for anything else."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


async def iter_sse_data(
    response: httpx.Response, cancellation: CancellationToken
) -> AsyncIterator[str]:
    """Yield ``data:`` payloads from a streaming response.

    Each read is raced against the cancellation token, so an abort is seen
    even while the upstream is silent.
    """
    lines = response.aiter_lines()
    try:
        while True:
            line = await cancellation.guard(next_or_none(lines))
            if line is None:
                return
            data = parse_sse_line(line)
            if data:
                yield data
    finally:
        await lines.aclose()
