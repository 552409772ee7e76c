"""Provider interface shared by every backend adapter."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator

from pydantic import BaseModel

from ..cancellation import CancellationToken
from ..config import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from ..errors import AbortedError, AgentroomError
from ..models import ContextMessage, ProviderImage, ProviderType, ResponseFragment

logger = logging.getLogger(__name__)


class ProviderRequest(BaseModel):
    message: str
    request_id: str
    session_id: str | None = None
    working_directory: str | None = None
    images: list[ProviderImage] = []
    context: list[ContextMessage] = []


@dataclass
class ProviderOptions:
    cancellation: CancellationToken
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    system_prompt: str | None = None
    debug: bool = False


class Provider(ABC):
    """A backend that turns one chat turn into a stream of fragments.

    Subclasses implement ``_stream``; ``execute`` enforces the stream
    contract on top of it: fragments pass through in order, the sequence ends
    with exactly one ``done`` or ``error`` fragment, cancellation ends it with
    an ``aborted`` error, and exceptions become ``error`` fragments.
    """

    provider_type: ProviderType
    name: str

    @abstractmethod
    def supports_images(self) -> bool:
        """Whether image attachments can be sent to this backend."""

    @abstractmethod
    def _stream(
        self, request: ProviderRequest, options: ProviderOptions
    ) -> AsyncIterator[ResponseFragment]:
        ...

    async def execute(
        self, request: ProviderRequest, options: ProviderOptions
    ) -> AsyncIterator[ResponseFragment]:
        if options.debug:
            logger.debug(
                "[%s] executing %s: %r (images=%d, session=%s)",
                self.name,
                request.request_id,
                request.message[:100],
                len(request.images),
                request.session_id,
            )

        stream = self._stream(request, options)
        try:
            async for fragment in stream:
                yield fragment
                if fragment.is_terminal:
                    return
                if options.cancellation.cancelled:
                    yield ResponseFragment.aborted()
                    return
            yield ResponseFragment.done()
        except AbortedError:
            logger.info("[%s] request %s aborted", self.name, request.request_id)
            yield ResponseFragment.aborted()
        except AgentroomError as e:
            logger.warning("[%s] request %s failed: %s", self.name, request.request_id, e.message)
            yield ResponseFragment.failure(e.message, e.kind)
        except Exception as e:
            logger.warning(
                "[%s] request %s failed", self.name, request.request_id, exc_info=True
            )
            yield ResponseFragment.failure(str(e) or type(e).__name__)
        finally:
            await stream.aclose()


async def next_or_none(iterator: AsyncIterator[Any]) -> Any:
    """Next item of an async iterator, or None once it is exhausted."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def describe_http_error(provider: str, status: int | None, body: bytes) -> str:
    """Human-readable message for a failed upstream HTTP call."""
    detail = ""
    try:
        data = json.loads(body)
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            detail = error.get("message", "")
        elif isinstance(error, str):
            detail = error
    except ValueError:
        detail = body.decode("utf-8", errors="replace")[:200]

    if status is None:
        # Error reported inside an otherwise successful stream
        return f"{provider} API error: {detail or 'unknown error'}"

    message = f"{provider} API error: {status}"
    if status == 429:
        message += " (rate limited)"
    if detail:
        message += f" {detail}"
    return message
