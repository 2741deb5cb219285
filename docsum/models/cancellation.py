"""Cooperative cancellation token shared between a pipeline job and its caller."""

import asyncio
import threading
from typing import Awaitable, List, Tuple, TypeVar

from docsum.models.errors import DocsumError

T = TypeVar("T")


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class CancellationToken:
    """
    Flag checked at suspension points.

    ``cancel()`` may be called from any thread or task. Code holding the token
    either polls it (``raise_if_cancelled``) or races an awaitable against it
    (``guard``), which aborts the awaitable as soon as cancellation is requested.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Operation cancelled") -> bool:
        """Request cancellation. Returns False if it was already requested."""
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, future)
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DocsumError.cancelled(self.reason)

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.append((loop, future))
        try:
            await future
        finally:
            with self._lock:
                if (loop, future) in self._waiters:
                    self._waiters.remove((loop, future))

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless cancellation wins the race.

        On cancellation the underlying task is cancelled (not merely abandoned)
        and a CANCELLED ``DocsumError`` is raised. A result that arrives after
        cancellation was requested is discarded.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DocsumError.cancelled(self.reason)
        task = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if self.cancelled:
                if not task.done():
                    task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise DocsumError.cancelled(self.reason)
            return task.result()
        finally:
            if not task.done():
                task.cancel()
            watcher.cancel()
