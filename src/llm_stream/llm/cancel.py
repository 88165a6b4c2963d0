"""Cancellation token shared by every suspension point of a stream."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from llm_stream.errors import StreamCancelledError

T = TypeVar("T")


class CancelToken:
    """Caller-owned cancellation signal.

    ``cancel()`` may be called from any coroutine on the same loop; every
    wait guarded by the token then raises ``StreamCancelledError``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelledError("stream cancelled by caller")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise StreamCancelledError("stream cancelled by caller")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # The inner task must be finished before the caller's cleanup
            # touches whatever it was reading.
            await _cancel_and_wait(task)
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        await _cancel_and_wait(task)
        raise StreamCancelledError("stream cancelled by caller")


async def _cancel_and_wait(task: asyncio.Future) -> None:
    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        pass


async def guarded(awaitable: Awaitable[T], token: CancelToken | None) -> T:
    if token is None:
        return await awaitable
    return await token.guard(awaitable)
