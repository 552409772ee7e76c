"""Anthropic Messages API provider (streaming over HTTP)."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from ..config import ANTHROPIC_BASE_URL, ANTHROPIC_MODEL
from ..errors import AdapterError
from ..models import ProviderType, ResponseFragment
from .base import Provider, ProviderOptions, ProviderRequest, describe_http_error
from .sse import iter_sse_data

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

COORDINATOR_PROMPT = (
    "You are Claude, a helpful AI assistant created by Anthropic. You help users "
    "coordinate multiple AI agents working on different parts of projects, each with "
    "specialized skills and access to different codebases. When working in orchestrator "
    "mode, you help plan and coordinate tasks across multiple agents."
)


class AnthropicProvider(Provider):
    provider_type = ProviderType.ANTHROPIC
    name = "Anthropic Claude"

    def __init__(
        self,
        api_key: str,
        base_url: str = ANTHROPIC_BASE_URL,
        model: str = ANTHROPIC_MODEL,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client

    def supports_images(self) -> bool:
        return True

    def build_body(self, request: ProviderRequest, options: ProviderOptions) -> dict[str, Any]:
        system = options.system_prompt or COORDINATOR_PROMPT
        messages: list[dict[str, Any]] = []
        for ctx in request.context:
            # The Messages API takes system text separately from the turns
            if ctx.role == "system":
                system += "\n\n" + ctx.content
                continue
            messages.append({"role": ctx.role, "content": ctx.content})

        user_content: list[dict[str, Any]] = [{"type": "text", "text": request.message}]
        for image in request.images:
            if image.type == "base64":
                user_content.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": image.mime_type,
                            "data": image.data,
                        },
                    }
                )
            else:
                user_content.append({"type": "image", "source": {"type": "url", "url": image.data}})
        messages.append({"role": "user", "content": user_content})

        return {
            "model": self.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": True,
            "system": system,
        }

    async def _stream(
        self, request: ProviderRequest, options: ProviderOptions
    ) -> AsyncIterator[ResponseFragment]:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/v1/messages",
                json=self.build_body(request, options),
                headers=headers,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise AdapterError(
                        describe_http_error("Anthropic", response.status_code, body)
                    )

                async for data in iter_sse_data(response, options.cancellation):
                    if data == "[DONE]":
                        yield ResponseFragment.done(model=self.model)
                        return

                    try:
                        event = json.loads(data)
                    except ValueError:
                        logger.warning("[Anthropic] Failed to parse SSE data: %s", data[:200])
                        continue

                    event_type = event.get("type")
                    if event_type == "content_block_delta":
                        text = (event.get("delta") or {}).get("text")
                        if text:
                            yield ResponseFragment.text(text, model=self.model)
                    elif event_type == "message_stop":
                        if options.debug:
                            logger.debug("[Anthropic] Stream finished")
                        yield ResponseFragment.done(model=self.model)
                        return
                    elif event_type == "error":
                        message = (event.get("error") or {}).get("message")
                        raise AdapterError(message or "Unknown Anthropic API error")
        finally:
            if self._client is None:
                await client.aclose()
