"""TTL-keyed in-memory response cache with periodic expiry sweep."""

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Optional

from docsum.models.data_models import CacheEntry, CacheStats


class CacheStore:
    """
    In-memory cache keyed by request fingerprint.

    Entries are immutable ``CacheEntry`` values; ``set`` replaces, never mutates.
    ``get`` treats an expired entry as absent and deletes it on the spot, so no
    payload is returned past its TTL even when the sweep has not run yet. The
    background sweep bounds memory under low traffic.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        sweep_interval: float = 60.0,
        now: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Any] = asyncio.sleep,
        logger=None,
    ):
        """
        Initialize cache store.

        Args:
            default_ttl: TTL in seconds used when ``set`` is given none
            sweep_interval: Seconds between background sweeps
            now: Monotonic clock function
            sleeper: Async sleep function used by the sweep loop
            logger: Optional structured logger
        """
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._now = now
        self._sleep = sleeper
        self.logger = logger

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, fingerprint: str) -> Optional[Any]:
        """Return the cached payload, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if entry.is_expired(self._now()):
                del self._entries[fingerprint]
                return None
            return entry.payload

    def set(self, fingerprint: str, payload: Any, ttl: Optional[float] = None) -> CacheEntry:
        """Store ``payload`` for ``ttl`` seconds, replacing any previous entry."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got: {ttl}")

        with self._lock:
            stored_at = self._now()
            entry = CacheEntry(
                fingerprint=fingerprint,
                payload=payload,
                stored_at=stored_at,
                expires_at=stored_at + ttl,
            )
            self._entries[fingerprint] = entry
            return entry

    def invalidate(self, fingerprint: str) -> bool:
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            current = self._now()
            expired = [fp for fp, entry in self._entries.items() if entry.is_expired(current)]
            for fp in expired:
                del self._entries[fp]
            remaining = len(self._entries)

        if self.logger and expired:
            self.logger.cache_sweep(removed=len(expired), remaining=remaining)
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            current = self._now()
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(current))
            return CacheStats(
                total_items=len(self._entries),
                valid_items=len(self._entries) - expired,
                expired_items=expired,
            )

    # Background sweep lifecycle

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if not self.sweeping:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def close(self) -> None:
        """Stop the periodic sweep."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self.sweep_interval)
            self.sweep()
