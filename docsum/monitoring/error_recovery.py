"""Pluggable error recovery with recurrence tracking."""

import asyncio
import inspect
import threading
import time
from collections import Counter, deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from docsum.models.data_models import ErrorPattern, ErrorRecord, PatternKind
from docsum.models.errors import DocsumError, ErrorCategory, is_cancellation

RecoveryStrategy = Callable[[DocsumError, Dict[str, Any], ErrorPattern], Union[Any, Awaitable[Any]]]

DEFAULT_STRATEGY = "default"

# Inter-arrival thresholds in seconds
RAPID_SUCCESSION_GAP = 5.0
FREQUENT_GAP = 60.0

PATTERN_MULTIPLIERS: Dict[PatternKind, float] = {
    PatternKind.ISOLATED: 1.0,
    PatternKind.PERIODIC: 1.0,
    PatternKind.FREQUENT: 2.0,
    PatternKind.RAPID_SUCCESSION: 4.0,
}


def classify_gaps(timestamps: List[float]) -> PatternKind:
    """Classify the mean gap between consecutive timestamps (any order)."""
    if len(timestamps) < 2:
        return PatternKind.ISOLATED
    ordered = sorted(timestamps)
    gaps = [later - earlier for earlier, later in zip(ordered, ordered[1:])]
    avg_gap = sum(gaps) / len(gaps)
    if avg_gap < RAPID_SUCCESSION_GAP:
        return PatternKind.RAPID_SUCCESSION
    if avg_gap < FREQUENT_GAP:
        return PatternKind.FREQUENT
    return PatternKind.PERIODIC


class ErrorRecoveryManager:
    """
    Maps error categories to recovery strategies.

    ``handle`` records the error, then runs the strategy registered for its
    category (or the ``"default"`` strategy). If no strategy applies, or the
    strategy itself fails, the original error is re-raised unchanged. A
    cancellation raised by a strategy propagates as-is.

    Strategies receive ``(error, context, pattern)`` and may be plain functions
    or coroutine functions.
    """

    def __init__(
        self,
        max_history: int = 100,
        pattern_window: int = 10,
        now: Callable[[], float] = time.time,
        logger=None,
    ):
        """
        Initialize recovery manager.

        Args:
            max_history: Ring buffer size; oldest records are evicted first
            pattern_window: Recent records of one category used by pattern_for
            now: Wall-clock function returning epoch seconds
            logger: Optional structured logger
        """
        self.max_history = max_history
        self.pattern_window = pattern_window
        self._now = now
        self.logger = logger
        self._history: Deque[ErrorRecord] = deque(maxlen=max_history)
        self._strategies: Dict[Union[ErrorCategory, str], RecoveryStrategy] = {}
        self._lock = threading.Lock()

    def register_strategy(self, category: Union[ErrorCategory, str], strategy: RecoveryStrategy) -> None:
        """Register ``strategy`` for a category, or for ``"default"``."""
        if isinstance(category, str) and category != DEFAULT_STRATEGY:
            category = ErrorCategory(category)
        self._strategies[category] = strategy

    def unregister_strategy(self, category: Union[ErrorCategory, str]) -> None:
        self._strategies.pop(category, None)

    def strategy_for(self, category: ErrorCategory) -> Optional[RecoveryStrategy]:
        return self._strategies.get(category) or self._strategies.get(DEFAULT_STRATEGY)

    def record(self, error: DocsumError, context: Optional[Dict[str, Any]] = None) -> ErrorRecord:
        """Append an error to the bounded history."""
        # Callables (retry operations, tokens) stay out of the record
        safe_context = {
            key: value for key, value in (context or {}).items()
            if not callable(value) and key != "cancel_token"
        }
        record = ErrorRecord(
            timestamp=self._now(),
            category=error.category,
            message=error.message,
            context=safe_context,
        )
        with self._lock:
            self._history.append(record)
        return record

    async def handle(self, error: DocsumError, context: Optional[Dict[str, Any]] = None) -> Any:
        """
        Record ``error`` and try to recover from it.

        Args:
            error: The failure to recover from
            context: Caller data for the strategy (e.g. ``operation`` to re-run)

        Returns:
            Whatever the strategy returns

        Raises:
            DocsumError: The original error when unrecoverable
        """
        context = dict(context or {})
        self.record(error, context)

        strategy = self.strategy_for(error.category)
        if strategy is None:
            raise error

        pattern = self.pattern_for(error.category)
        try:
            result = strategy(error, context, pattern)
            if inspect.isawaitable(result):
                result = await result
            return result
        except asyncio.CancelledError:
            raise
        except Exception as recovery_error:
            if is_cancellation(recovery_error):
                raise
            if self.logger:
                self.logger.recovery_failed(error.category.value, str(recovery_error))
            raise error

    def pattern_for(self, category: ErrorCategory) -> ErrorPattern:
        """Frequency and inter-arrival pattern over the last records of ``category``."""
        with self._lock:
            same_category = [record for record in self._history if record.category is category]
        recent = same_category[-self.pattern_window:]
        return ErrorPattern(
            frequency=len(recent),
            is_recurring=len(recent) > 2,
            last_occurrence=recent[-1].timestamp if recent else None,
            kind=classify_gaps([record.timestamp for record in recent]),
        )

    def history(self) -> List[ErrorRecord]:
        """Records, most recent first."""
        with self._lock:
            return list(reversed(self._history))

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def summary(self) -> Dict[str, Any]:
        records = self.history()
        counts = Counter(record.category.value for record in records)
        return {
            "total_errors": len(records),
            "error_types": dict(counts),
            "recent_errors": [
                {
                    "timestamp": record.occurred_at,
                    "category": record.category.value,
                    "message": record.message,
                    "context": record.context,
                }
                for record in records[:5]
            ],
        }


def escalating_retry(
    base_delay: float = 2.0,
    max_delay: float = 30.0,
    give_up_frequency: int = 5,
    sleeper: Callable[[float], Any] = asyncio.sleep,
    logger=None,
) -> RecoveryStrategy:
    """
    Build a strategy that re-runs ``context["operation"]`` after a delay.

    The delay grows with how clustered recent errors of the same category are
    and is never shorter than the error's ``retry_after`` hint. Errors arriving
    in rapid succession ``give_up_frequency`` times or more are not retried.
    ``context["cancel_token"]``, when present, aborts the wait.

    Args:
        base_delay: Delay for isolated or periodic errors
        max_delay: Cap on the pattern-scaled delay
        give_up_frequency: Rapid-succession count at which recovery stops
        sleeper: Async sleep function
        logger: Optional structured logger
    """

    async def strategy(error: DocsumError, context: Dict[str, Any], pattern: ErrorPattern) -> Any:
        operation = context.get("operation")
        if operation is None:
            raise error
        if pattern.kind is PatternKind.RAPID_SUCCESSION and pattern.frequency >= give_up_frequency:
            raise error

        delay = min(max_delay, base_delay * PATTERN_MULTIPLIERS[pattern.kind])
        if error.retry_after:
            delay = max(delay, error.retry_after)

        if logger:
            logger.recovery_attempt(error.category.value, pattern.kind.value, delay)

        cancel_token = context.get("cancel_token")
        if cancel_token is not None:
            await cancel_token.guard(sleeper(delay))
        else:
            await sleeper(delay)
        return await operation()

    return strategy
