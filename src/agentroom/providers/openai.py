"""OpenAI chat-completions provider (streaming over HTTP)."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from ..config import OPENAI_BASE_URL, OPENAI_MODEL
from ..errors import AdapterError
from ..models import ProviderType, ResponseFragment
from .base import Provider, ProviderOptions, ProviderRequest, describe_http_error
from .sse import iter_sse_data

logger = logging.getLogger(__name__)

UX_DESIGNER_PROMPT = """You are a UX designer and design critic. Your role is to analyze user interfaces and provide detailed, actionable feedback.

When analyzing screenshots:
1. **Visual Hierarchy**: Comment on layout, spacing, typography hierarchy
2. **User Experience**: Identify usability issues, navigation problems, accessibility concerns
3. **Design Quality**: Evaluate color choices, consistency, visual appeal
4. **Improvement Suggestions**: Provide specific, implementable recommendations

Format your responses with clear sections and actionable recommendations. Be constructive and specific in your feedback."""


class OpenAIProvider(Provider):
    provider_type = ProviderType.OPENAI
    name = "OpenAI GPT"

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        model: str = OPENAI_MODEL,
        client: httpx.AsyncClient | None = None,
        vision: bool = True,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client
        self._vision = vision

    def supports_images(self) -> bool:
        return self._vision

    def build_messages(self, request: ProviderRequest, system_prompt: str | None) -> list[dict]:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt or UX_DESIGNER_PROMPT}
        ]
        for ctx in request.context:
            messages.append({"role": ctx.role, "content": ctx.content})

        user_content: list[dict[str, Any]] = [{"type": "text", "text": request.message}]
        for image in request.images:
            url = image.data
            if image.type == "base64":
                url = f"data:{image.mime_type};base64,{image.data}"
            user_content.append({"type": "image_url", "image_url": {"url": url, "detail": "high"}})

        messages.append({"role": "user", "content": user_content})
        return messages

    async def _stream(
        self, request: ProviderRequest, options: ProviderOptions
    ) -> AsyncIterator[ResponseFragment]:
        payload = {
            "model": self.model,
            "messages": self.build_messages(request, options.system_prompt),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": True,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
        try:
            async with client.stream(
                "POST", f"{self.base_url}/chat/completions", json=payload, headers=headers
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise AdapterError(describe_http_error("OpenAI", response.status_code, body))

                total = 0
                async for data in iter_sse_data(response, options.cancellation):
                    if data == "[DONE]":
                        yield ResponseFragment.done(model=self.model)
                        return

                    try:
                        chunk = json.loads(data)
                    except ValueError:
                        logger.warning("[OpenAI] Failed to parse SSE data: %s", data[:200])
                        continue

                    if chunk.get("error"):
                        raise AdapterError(describe_http_error("OpenAI", None, data.encode()))

                    choices = chunk.get("choices") or [{}]
                    choice = choices[0]
                    content = (choice.get("delta") or {}).get("content")
                    model = chunk.get("model", self.model)
                    if content:
                        total += len(content)
                        yield ResponseFragment.text(content, model=model)

                    if choice.get("finish_reason"):
                        if options.debug:
                            logger.debug(
                                "[OpenAI] Stream finished: reason=%s chars=%d",
                                choice["finish_reason"],
                                total,
                            )
                        yield ResponseFragment.done(model=model)
                        return
        finally:
            if self._client is None:
                await client.aclose()
