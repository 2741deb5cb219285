"""Collapses concurrent identical in-flight calls into one shared outcome."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict


@dataclass
class _InFlight:
    task: asyncio.Task
    waiters: int = 0


class RequestDeduplicator:
    """
    At most one underlying call per key at any time.

    The first caller for a key starts the operation as a task; later callers for
    the same key await that same task. The entry is removed when the task
    finishes, before any waiter resumes, so a call arriving after completion
    always starts fresh and never sees a stale failure.

    Waiters are shielded from each other: one caller being cancelled does not
    cancel the shared call. When the last waiter abandons it, the shared call is
    cancelled too, so an abandoned request cannot complete and populate the cache.
    """

    def __init__(self, logger=None):
        self.logger = logger
        self._in_flight: Dict[str, _InFlight] = {}

    async def execute(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``operation`` once for all concurrent callers sharing ``key``.

        Args:
            key: Deduplication key (request fingerprint)
            operation: Zero-argument coroutine function

        Returns:
            The shared outcome; every waiter sees the same result or error
        """
        entry = self._in_flight.get(key)
        if entry is None:
            task = asyncio.ensure_future(self._run(key, operation))
            entry = _InFlight(task=task)
            self._in_flight[key] = entry
        elif self.logger:
            self.logger.dedup_joined(key, entry.waiters + 1)

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and not entry.task.done():
                entry.task.cancel()

    async def _run(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await operation()
        finally:
            entry = self._in_flight.get(key)
            if entry is not None and entry.task is asyncio.current_task():
                del self._in_flight[key]

    def pending_count(self) -> int:
        return len(self._in_flight)

    def is_pending(self, key: str) -> bool:
        return key in self._in_flight

    def cancel(self, key: str) -> bool:
        """Cancel the in-flight call for ``key``. Waiters receive CancelledError."""
        entry = self._in_flight.pop(key, None)
        if entry is None:
            return False
        entry.task.cancel()
        return True

    def cancel_all(self) -> int:
        entries = list(self._in_flight.values())
        self._in_flight.clear()
        for entry in entries:
            entry.task.cancel()
        return len(entries)
