"""Tests for cancellation tokens and the in-flight registry."""

import asyncio

import pytest

from agentroom.cancellation import CancellationRegistry, CancellationToken
from agentroom.errors import AbortedError, InvalidRequestError


class TestCancellationRegistry:
    def test_register_and_abort(self):
        registry = CancellationRegistry()
        token = registry.register("r1")

        assert "r1" in registry
        assert registry.abort("r1") is True
        assert token.cancelled

    def test_abort_unknown_request_is_a_no_op(self):
        registry = CancellationRegistry()
        assert registry.abort("missing") is False

    def test_abort_is_idempotent(self):
        registry = CancellationRegistry()
        registry.register("r1")
        assert registry.abort("r1") is True
        assert registry.abort("r1") is True

    def test_duplicate_in_flight_id_is_rejected(self):
        registry = CancellationRegistry()
        registry.register("r1")
        with pytest.raises(InvalidRequestError, match="already in flight"):
            registry.register("r1")

    def test_release_is_idempotent(self):
        registry = CancellationRegistry()
        token = registry.register("r1")
        registry.release("r1", token)
        registry.release("r1", token)
        assert len(registry) == 0
        assert registry.abort("r1") is False

    def test_stale_release_keeps_newer_token(self):
        registry = CancellationRegistry()
        old = registry.register("r1")
        registry.release("r1", old)
        new = registry.register("r1")

        registry.release("r1", old)

        assert registry.get("r1") is new
        assert registry.active() == ["r1"]


class TestCancellationToken:
    def test_raise_if_cancelled(self):
        token = CancellationToken("r1")
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(AbortedError):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        token = CancellationToken("r1")

        async def work():
            await asyncio.sleep(0)
            return 42

        assert await token.guard(work()) == 42

    @pytest.mark.asyncio
    async def test_guard_interrupts_pending_wait(self):
        token = CancellationToken("r1")
        never = asyncio.Event()

        asyncio.get_running_loop().call_later(0.05, token.cancel)
        with pytest.raises(AbortedError):
            await asyncio.wait_for(token.guard(never.wait()), timeout=5)

    @pytest.mark.asyncio
    async def test_guard_on_cancelled_token(self):
        token = CancellationToken("r1")
        token.cancel()
        with pytest.raises(AbortedError):
            await token.guard(asyncio.sleep(10))

    @pytest.mark.asyncio
    async def test_guard_propagates_errors(self):
        token = CancellationToken("r1")

        async def broken():
            raise ValueError("nope")

        with pytest.raises(ValueError, match="nope"):
            await token.guard(broken())
