"""Rate limiter implementation using a sliding window of admitted timestamps."""

import asyncio
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from docsum.models.cancellation import CancellationToken
from docsum.models.data_models import Admission, RateLimitStatus
from docsum.models.errors import DocsumError, ErrorCategory


class RateLimiter:
    """Sliding-window rate limiter bounding admitted calls per identifier.

    An attempt is admitted iff fewer than ``quota`` admitted timestamps fall
    within the trailing ``window_seconds``. Otherwise the caller is told how long
    until the oldest timestamp leaves the window.

    Two access modes:
    - blocking: ``acquire`` waits for admission, recomputing after each wait,
      for at most ``max_wait_attempts`` waits
    - non-blocking: ``status``/``remaining`` report quota without mutating state
    """

    def __init__(
        self,
        quota: int = 20,
        window_seconds: float = 60.0,
        max_wait_attempts: int = 5,
        now: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Any] = asyncio.sleep,
        logger=None,
    ):
        """Initialize rate limiter.

        Args:
            quota: Maximum admitted calls per identifier per window
            window_seconds: Trailing window length in seconds
            max_wait_attempts: Bounded number of waits in blocking mode
            now: Clock function for time operations (default: time.monotonic)
            sleeper: Async sleep function (default: asyncio.sleep)
            logger: Optional structured logger
        """
        if quota <= 0:
            raise ValueError(f"quota must be positive, got: {quota}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got: {window_seconds}")

        self.quota = quota
        self.window_seconds = window_seconds
        self.max_wait_attempts = max_wait_attempts
        self._now = now
        self._sleep = sleeper
        self.logger = logger

        # Per-identifier admitted timestamps, oldest first
        self._windows: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, window: Deque[float], current_time: float) -> None:
        cutoff = current_time - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def _wait_for(self, window: Deque[float], current_time: float) -> float:
        """Seconds until the oldest admitted timestamp exits the window."""
        return max(0.0, window[0] + self.window_seconds - current_time)

    def admit(self, identifier: str) -> Admission:
        """Try to admit one call for ``identifier``.

        Returns:
            Admission(allowed=True) and records the call, or
            Admission(allowed=False, wait_seconds=...) without recording it
        """
        with self._lock:
            current_time = self._now()
            window = self._windows.setdefault(identifier, deque())
            self._prune(window, current_time)

            if len(window) < self.quota:
                window.append(current_time)
                return Admission(allowed=True)

            return Admission(allowed=False, wait_seconds=self._wait_for(window, current_time))

    async def acquire(
        self,
        identifier: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """Block until a call for ``identifier`` is admitted.

        Args:
            identifier: Caller identity the quota applies to
            cancel_token: Optional token checked before and during each wait

        Raises:
            DocsumError: RATE_LIMITED once the bounded waits are used up,
                CANCELLED if the token fires while waiting
        """
        admission = self.admit(identifier)
        attempt = 0
        while not admission.allowed:
            if attempt >= self.max_wait_attempts:
                raise DocsumError(
                    ErrorCategory.RATE_LIMITED,
                    f"Rate limit for '{identifier}' still exhausted after {attempt} waits",
                    context={"identifier": identifier, "retry_after": round(admission.wait_seconds, 3)},
                )
            attempt += 1

            if self.logger:
                self.logger.rate_limited(identifier, admission.wait_seconds, attempt)

            if cancel_token is not None:
                await cancel_token.guard(self._sleep(admission.wait_seconds))
            else:
                await self._sleep(admission.wait_seconds)
            admission = self.admit(identifier)

    def status(self, identifier: str) -> RateLimitStatus:
        """Report remaining quota and time-to-reset without mutating state."""
        with self._lock:
            current_time = self._now()
            window = self._windows.get(identifier)
            if not window:
                return RateLimitStatus(remaining=self.quota, reset_in=0.0)

            cutoff = current_time - self.window_seconds
            active = [ts for ts in window if ts > cutoff]
            if not active:
                return RateLimitStatus(remaining=self.quota, reset_in=0.0)

            return RateLimitStatus(
                remaining=max(0, self.quota - len(active)),
                reset_in=max(0.0, active[0] + self.window_seconds - current_time),
            )

    def remaining(self, identifier: str) -> int:
        return self.status(identifier).remaining

    def reset(self, identifier: Optional[str] = None) -> None:
        """Forget admitted timestamps for one identifier, or for all of them."""
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier, None)
