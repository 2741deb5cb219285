"""Retry handler with exponential backoff and jitter."""

import asyncio
import inspect
import random
from typing import Any, Callable, Optional

from docsum.models.cancellation import CancellationToken
from docsum.models.errors import DocsumError, ErrorCategory


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.5,
    max_delay: float = 30.0,
    jitter_max: float = 1.0
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: min(max_delay, (base_delay * (2 ** attempt)) + random_jitter)

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter_max: Maximum jitter to add in seconds

    Returns:
        Delay in seconds
    """
    exponential_delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, jitter_max)
    return min(max_delay, exponential_delay + jitter)


class RetryHandler:
    """
    Handles retry logic with exponential backoff for outbound calls.

    Retries on: timeouts, connection failures, 429 and 5xx (retryable DocsumErrors)
    Never retries: other 4xx, authentication, validation, breaker-open, cancellation
    Max retries: 3 (configurable)
    Backoff: Exponential with jitter, capped at max_delay; a server Retry-After
    hint lengthens the delay, still within the cap
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.5,
        max_delay: float = 30.0,
        jitter_max: float = 1.0,
        sleeper: Callable[[float], Any] = asyncio.sleep,
        logger=None,
    ):
        """
        Initialize retry handler.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay cap
            jitter_max: Maximum jitter to add
            sleeper: Async sleep function (default: asyncio.sleep)
            logger: Optional structured logger
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_max = jitter_max
        self._sleep = sleeper
        self.logger = logger

    def is_retryable(self, error: BaseException) -> bool:
        """
        Check if error is retryable.

        Args:
            error: Exception raised by the attempt

        Returns:
            True if error should be retried
        """
        return isinstance(error, DocsumError) and error.retryable

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        delay = calculate_backoff_delay(attempt, self.base_delay, self.max_delay, self.jitter_max)
        if isinstance(error, DocsumError) and error.retry_after:
            delay = max(delay, min(self.max_delay, error.retry_after))
        return delay

    async def execute(
        self,
        func: Callable[..., Any],
        *args,
        cancel_token: Optional[CancellationToken] = None,
        **kwargs
    ) -> Any:
        """
        Execute function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for func
            cancel_token: Optional token checked before every attempt and
                raced against every backoff sleep
            **kwargs: Keyword arguments for func

        Returns:
            Result from successful function execution

        Raises:
            DocsumError: The last attempt's error once retries are exhausted,
                or the first non-retryable error unchanged
        """
        for attempt in range(self.max_retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if attempt >= self.max_retries or not self.is_retryable(e):
                    raise

                delay = self.delay_for(attempt, e)
                if self.logger:
                    category = e.category.value if isinstance(e, DocsumError) else ErrorCategory.UNKNOWN.value
                    self.logger.retry_scheduled(attempt + 1, delay, category)

                if cancel_token is not None:
                    await cancel_token.guard(self._sleep(delay))
                else:
                    await self._sleep(delay)
