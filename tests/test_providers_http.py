"""Tests for the OpenAI and Anthropic streaming providers over a mocked transport."""

import json
import logging

import httpx
import pytest

from agentroom.cancellation import CancellationToken
from agentroom.errors import ErrorKind
from agentroom.models import ContextMessage, FragmentType, ProviderImage
from agentroom.providers import AnthropicProvider, OpenAIProvider, ProviderOptions, ProviderRequest
from agentroom.providers.anthropic import ANTHROPIC_VERSION, COORDINATOR_PROMPT
from agentroom.providers.base import describe_http_error
from agentroom.providers.openai import UX_DESIGNER_PROMPT
from agentroom.providers.sse import parse_sse_line


def sse(*events):
    body = ""
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        body += f"data: {data}\n\n"
    return body.encode()


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status=200, body=b"", content_type="text/event-stream"):
        self.status = status
        self.body = body
        self.content_type = content_type
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(
            self.status, content=self.body, headers={"content-type": self.content_type}
        )

    @property
    def json(self):
        return json.loads(self.requests[0].content)


async def run(provider, request, token=None, **options):
    options = ProviderOptions(cancellation=token or CancellationToken(request.request_id), **options)
    return [fragment async for fragment in provider.execute(request, options)]


def texts(fragments):
    return [f.content for f in fragments if f.type == FragmentType.TEXT]


class TestSSE:
    def test_parse_data_line(self):
        assert parse_sse_line('data: {"a": 1}') == '{"a": 1}'
        assert parse_sse_line("data:[DONE]") == "[DONE]"

    def test_other_lines_ignored(self):
        assert parse_sse_line("event: ping") is None
        assert parse_sse_line(": keep-alive") is None
        assert parse_sse_line("") is None

    def test_describe_http_error(self):
        body = json.dumps({"error": {"message": "Slow down"}}).encode()
        assert describe_http_error("OpenAI", 429, body) == "OpenAI API error: 429 (rate limited) Slow down"
        assert describe_http_error("Anthropic", 500, b"oops") == "Anthropic API error: 500 oops"

    def test_describe_in_band_error(self):
        body = json.dumps({"error": {"message": "Server overloaded"}}).encode()
        assert describe_http_error("OpenAI", None, body) == "OpenAI API error: Server overloaded"
        assert describe_http_error("OpenAI", None, b"{}") == "OpenAI API error: unknown error"


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_streams_text_until_done(self):
        handler = Recorder(
            body=sse(
                {"model": "gpt-4o-2024", "choices": [{"delta": {"role": "assistant"}}]},
                {"model": "gpt-4o-2024", "choices": [{"delta": {"content": "Hel"}}]},
                {"model": "gpt-4o-2024", "choices": [{"delta": {"content": "lo"}}]},
                "[DONE]",
            )
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", base_url="https://api.test/v1", client=client)
            fragments = await run(
                provider, ProviderRequest(message="Rate this UI", request_id="r1"), temperature=0.2
            )

        assert texts(fragments) == ["Hel", "lo"]
        assert fragments[0].metadata["model"] == "gpt-4o-2024"
        assert fragments[-1].type == FragmentType.DONE

        request = handler.requests[0]
        assert request.url == "https://api.test/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = handler.json
        assert body["stream"] is True
        assert body["temperature"] == 0.2
        assert body["messages"][0] == {"role": "system", "content": UX_DESIGNER_PROMPT}
        assert body["messages"][-1]["content"] == [{"type": "text", "text": "Rate this UI"}]

    @pytest.mark.asyncio
    async def test_finish_reason_ends_stream(self):
        handler = Recorder(
            body=sse(
                {"choices": [{"delta": {"content": "Bye"}, "finish_reason": "stop"}]},
                {"choices": [{"delta": {"content": "ignored"}}]},
            )
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", client=client)
            fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"))

        assert texts(fragments) == ["Bye"]
        assert [f.type for f in fragments].count(FragmentType.DONE) == 1

    @pytest.mark.asyncio
    async def test_malformed_chunk_skipped(self, caplog):
        handler = Recorder(
            body=sse("{broken", {"choices": [{"delta": {"content": "ok"}}]}, "[DONE]")
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", client=client)
            with caplog.at_level(logging.WARNING):
                fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"))

        assert texts(fragments) == ["ok"]
        assert fragments[-1].type == FragmentType.DONE
        assert "Failed to parse SSE data" in caplog.text

    @pytest.mark.asyncio
    async def test_rate_limit_becomes_error_fragment(self):
        handler = Recorder(
            status=429,
            body=json.dumps({"error": {"message": "Rate limit reached"}}).encode(),
            content_type="application/json",
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", client=client)
            fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"))

        assert len(fragments) == 1
        assert fragments[0].type == FragmentType.ERROR
        assert fragments[0].error_kind == ErrorKind.ADAPTER
        assert "429 (rate limited)" in fragments[0].error
        assert "Rate limit reached" in fragments[0].error

    @pytest.mark.asyncio
    async def test_error_inside_stream_has_no_status(self):
        handler = Recorder(
            body=sse(
                {"choices": [{"delta": {"content": "par"}}]},
                {"error": {"message": "Server overloaded", "type": "server_error"}},
            )
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", client=client)
            fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"))

        assert texts(fragments) == ["par"]
        assert fragments[-1].type == FragmentType.ERROR
        assert fragments[-1].error == "OpenAI API error: Server overloaded"

    @pytest.mark.asyncio
    async def test_images_and_context(self):
        handler = Recorder(body=sse("[DONE]"))
        request = ProviderRequest(
            message="What about this?",
            request_id="r1",
            images=[
                ProviderImage(data="aGVsbG8=", mime_type="image/jpeg"),
                ProviderImage(type="url", data="https://example.com/shot.png"),
            ],
            context=[ContextMessage(role="assistant", content="Earlier answer")],
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", client=client)
            await run(provider, request, system_prompt="Custom prompt")

        messages = handler.json["messages"]
        assert messages[0] == {"role": "system", "content": "Custom prompt"}
        assert messages[1] == {"role": "assistant", "content": "Earlier answer"}
        parts = messages[2]["content"]
        assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,aGVsbG8="
        assert parts[2]["image_url"]["url"] == "https://example.com/shot.png"

    @pytest.mark.asyncio
    async def test_cancelled_token_aborts(self):
        handler = Recorder(body=sse({"choices": [{"delta": {"content": "never"}}]}, "[DONE]"))
        token = CancellationToken("r1")
        token.cancel()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("sk-test", client=client)
            fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"), token=token)

        assert len(fragments) == 1
        assert fragments[0].is_aborted

    def test_text_only_model(self):
        assert OpenAIProvider("sk-test").supports_images()
        assert not OpenAIProvider("sk-test", vision=False).supports_images()


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_streams_deltas_until_message_stop(self):
        handler = Recorder(
            body=sse(
                {"type": "message_start", "message": {"id": "msg_1"}},
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Plan: "}},
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "step 1"}},
                {"type": "message_stop"},
            )
        )
        request = ProviderRequest(
            message="Coordinate this",
            request_id="r1",
            context=[ContextMessage(role="system", content="Agents available in this room:")],
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = AnthropicProvider("ant-key", base_url="https://ant.test", model="claude-x", client=client)
            fragments = await run(provider, request, max_tokens=321)

        assert texts(fragments) == ["Plan: ", "step 1"]
        assert fragments[-1].type == FragmentType.DONE

        sent = handler.requests[0]
        assert sent.url == "https://ant.test/v1/messages"
        assert sent.headers["x-api-key"] == "ant-key"
        assert sent.headers["anthropic-version"] == ANTHROPIC_VERSION
        body = handler.json
        assert body["model"] == "claude-x"
        assert body["max_tokens"] == 321
        assert body["system"] == COORDINATOR_PROMPT + "\n\nAgents available in this room:"
        assert body["messages"] == [
            {"role": "user", "content": [{"type": "text", "text": "Coordinate this"}]}
        ]

    @pytest.mark.asyncio
    async def test_error_event(self):
        handler = Recorder(
            body=sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = AnthropicProvider("ant-key", client=client)
            fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"))

        assert [f.type for f in fragments] == [FragmentType.ERROR]
        assert fragments[0].error == "Overloaded"

    @pytest.mark.asyncio
    async def test_http_error(self):
        handler = Recorder(status=500, body=b"internal", content_type="text/plain")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = AnthropicProvider("ant-key", client=client)
            fragments = await run(provider, ProviderRequest(message="hi", request_id="r1"))

        assert fragments[0].error == "Anthropic API error: 500 internal"

    def test_image_blocks(self):
        provider = AnthropicProvider("ant-key")
        request = ProviderRequest(
            message="Look",
            request_id="r1",
            images=[
                ProviderImage(data="aGVsbG8="),
                ProviderImage(type="url", data="https://example.com/a.png"),
            ],
        )
        body = provider.build_body(request, ProviderOptions(cancellation=CancellationToken("r1")))

        content = body["messages"][0]["content"]
        assert content[1] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "aGVsbG8="},
        }
        assert content[2] == {"type": "image", "source": {"type": "url", "url": "https://example.com/a.png"}}
