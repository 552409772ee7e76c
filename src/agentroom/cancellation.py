"""Cooperative cancellation for in-flight chat requests."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from .errors import AbortedError, InvalidRequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Signalled once by ``abort``; observed by whoever holds the token.

    Cancellation is advisory: holders check ``cancelled`` at fragment
    boundaries, or race their next read against the signal with ``guard``.
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise AbortedError()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises AbortedError if cancellation wins; the pending operation is
        cancelled. A result that is already available wins over the signal.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise AbortedError()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise AbortedError()


class CancellationRegistry:
    """Maps request ids to their tokens while the request is in flight.

    Only insert-by-key and delete-by-key happen here, with no await between
    check and mutate, so no lock is needed under a single event loop.
    """

    def __init__(self):
        self._tokens: dict[str, CancellationToken] = {}

    def register(self, request_id: str) -> CancellationToken:
        if request_id in self._tokens:
            raise InvalidRequestError(f"Request '{request_id}' is already in flight")
        token = CancellationToken(request_id)
        self._tokens[request_id] = token
        return token

    def get(self, request_id: str) -> CancellationToken | None:
        return self._tokens.get(request_id)

    def abort(self, request_id: str) -> bool:
        """Signal the request's token. Returns False if nothing is in flight under that id."""
        token = self._tokens.get(request_id)
        if token is None:
            logger.debug("Abort for %s ignored: not in flight", request_id)
            return False
        token.cancel()
        logger.info("Abort requested for %s", request_id)
        return True

    def release(self, request_id: str, token: CancellationToken | None = None):
        """Forget the token. Safe to call more than once.

        With ``token`` given, only that exact token is removed, so a late
        release never drops a newer request registered under the same id.
        """
        if token is not None and self._tokens.get(request_id) is not token:
            return
        self._tokens.pop(request_id, None)

    def active(self) -> list[str]:
        return list(self._tokens)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
