"""Subscription consumer bookkeeping.

``SubscriptionTable`` keeps at most one consuming task per slot ("list",
"note", ...).  Starting a task for an occupied slot cancels the previous
one first, so a stale consumer can never apply an old note's snapshot to
a newer buffer.

``Degraded`` wraps a live stream so that a transport or auth failure ends
iteration quietly instead of raising into reconciliation code.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Coroutine
from typing import Any, Generic, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class Degraded(Generic[T]):
    """Async iterator that stops, rather than raises, when *stream* fails.

    After iteration ends, ``failed`` tells the consumer whether the stream
    finished normally or was cut short by an error.
    """

    def __init__(
        self,
        stream: AsyncIterable[T],
        label: str = "subscription",
        logger: logging.Logger | None = None,
    ) -> None:
        self._stream = stream
        self._it: AsyncIterator[T] = stream.__aiter__()
        self._label = label
        self._log = logger or log
        self.error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def __aiter__(self) -> Degraded[T]:
        return self

    async def __anext__(self) -> T:
        if self.error is not None:
            raise StopAsyncIteration
        try:
            return await anext(self._it)
        except (StopAsyncIteration, asyncio.CancelledError):
            raise
        except Exception as exc:
            self.error = exc
            self._log.warning("%s failed, treating as no value: %s", self._label, exc)
            raise StopAsyncIteration from None

    async def aclose(self) -> None:
        aclose = getattr(self._it, "aclose", None)
        if aclose is not None:
            await aclose()


class SubscriptionTable:
    """Keyed table of consuming tasks, one live task per key."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._log = logger or log

    def __contains__(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def get(self, key: str) -> asyncio.Task[Any] | None:
        return self._tasks.get(key)

    def replace(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Cancel the task held under *key*, then start *coro* in its place."""
        self.cancel(key)
        task = asyncio.create_task(coro, name=f"subscription-{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        return task

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        self._log.debug("cancelled subscription %s", key)
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    async def close(self) -> None:
        """Cancel every task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self.cancel_all()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                self._log.exception("subscription task failed during close")

    def _on_done(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("subscription %s crashed: %r", key, exc)
