"""Unit tests for the error recovery manager and escalating retry strategy."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docsum.models.cancellation import CancellationToken
from docsum.models.data_models import PatternKind
from docsum.models.errors import DocsumError, ErrorCategory
from docsum.monitoring.error_recovery import (
    DEFAULT_STRATEGY,
    ErrorRecoveryManager,
    classify_gaps,
    escalating_retry,
)


def server_error(message: str = "down") -> DocsumError:
    return DocsumError.from_status(503, message)


class RecordingSleeper:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestPatternClassification:

    def test_classify_gaps(self):
        assert classify_gaps([]) == PatternKind.ISOLATED
        assert classify_gaps([10.0]) == PatternKind.ISOLATED
        assert classify_gaps([0.0, 1.0, 2.0]) == PatternKind.RAPID_SUCCESSION
        assert classify_gaps([0.0, 30.0, 60.0]) == PatternKind.FREQUENT
        assert classify_gaps([0.0, 120.0, 240.0]) == PatternKind.PERIODIC

    def test_order_does_not_matter(self):
        assert classify_gaps([2.0, 0.0, 1.0]) == PatternKind.RAPID_SUCCESSION

    def test_pattern_for_uses_recent_records_of_category(self, clock):
        manager = ErrorRecoveryManager(pattern_window=3, now=clock)

        for _ in range(5):
            manager.record(server_error())
            clock.advance(100)
        manager.record(DocsumError(ErrorCategory.TIMEOUT, "slow"))

        pattern = manager.pattern_for(ErrorCategory.SERVER)
        assert pattern.frequency == 3
        assert pattern.is_recurring is True
        assert pattern.kind == PatternKind.PERIODIC
        assert pattern.last_occurrence == 1400.0

        timeout_pattern = manager.pattern_for(ErrorCategory.TIMEOUT)
        assert timeout_pattern.frequency == 1
        assert timeout_pattern.is_recurring is False
        assert timeout_pattern.kind == PatternKind.ISOLATED

    def test_no_records(self):
        pattern = ErrorRecoveryManager().pattern_for(ErrorCategory.SERVER)
        assert pattern.frequency == 0
        assert pattern.last_occurrence is None


class TestHistory:

    def test_history_is_bounded_and_most_recent_first(self, clock):
        manager = ErrorRecoveryManager(max_history=3, now=clock)
        for i in range(5):
            manager.record(server_error(f"error {i}"))
            clock.advance(1)

        messages = [record.message for record in manager.history()]
        assert messages == ["error 4", "error 3", "error 2"]

    def test_record_drops_callables_and_tokens(self):
        manager = ErrorRecoveryManager()
        record = manager.record(server_error(), {
            "operation": lambda: None,
            "cancel_token": CancellationToken(),
            "job_id": "abc",
        })
        assert record.context == {"job_id": "abc"}

    def test_summary(self, clock):
        manager = ErrorRecoveryManager(now=clock)
        manager.record(server_error())
        manager.record(server_error())
        manager.record(DocsumError(ErrorCategory.TIMEOUT, "slow"))

        summary = manager.summary()
        assert summary["total_errors"] == 3
        assert summary["error_types"] == {"server": 2, "timeout": 1}
        assert summary["recent_errors"][0]["category"] == "timeout"

        manager.clear()
        assert manager.summary()["total_errors"] == 0


class TestHandle:

    @pytest.mark.asyncio
    async def test_without_strategy_reraises_original(self):
        manager = ErrorRecoveryManager()
        error = DocsumError(ErrorCategory.VALIDATION, "bad file")

        with pytest.raises(DocsumError) as exc_info:
            await manager.handle(error)

        assert exc_info.value is error
        assert len(manager.history()) == 1

    @pytest.mark.asyncio
    async def test_category_strategy_result_returned(self):
        manager = ErrorRecoveryManager()
        strategy = MagicMock(return_value="recovered")
        manager.register_strategy(ErrorCategory.SERVER, strategy)

        assert await manager.handle(server_error(), {"job_id": "j1"}) == "recovered"
        error, context, pattern = strategy.call_args.args
        assert error.category is ErrorCategory.SERVER
        assert context == {"job_id": "j1"}
        assert pattern.frequency == 1

    @pytest.mark.asyncio
    async def test_async_strategy_awaited(self):
        manager = ErrorRecoveryManager()
        manager.register_strategy("timeout", AsyncMock(return_value=7))

        assert await manager.handle(DocsumError(ErrorCategory.TIMEOUT, "slow")) == 7

    @pytest.mark.asyncio
    async def test_default_strategy_fallback(self):
        manager = ErrorRecoveryManager()
        manager.register_strategy(DEFAULT_STRATEGY, MagicMock(return_value="fallback"))

        assert await manager.handle(DocsumError(ErrorCategory.CONNECTION, "x")) == "fallback"

        manager.unregister_strategy(DEFAULT_STRATEGY)
        assert manager.strategy_for(ErrorCategory.CONNECTION) is None

    @pytest.mark.asyncio
    async def test_failing_strategy_reraises_original(self):
        logger = MagicMock()
        manager = ErrorRecoveryManager(logger=logger)
        manager.register_strategy(ErrorCategory.SERVER, MagicMock(side_effect=RuntimeError("nope")))
        error = server_error()

        with pytest.raises(DocsumError) as exc_info:
            await manager.handle(error)

        assert exc_info.value is error
        logger.recovery_failed.assert_called_once_with("server", "nope")

    @pytest.mark.asyncio
    async def test_cancellation_from_strategy_propagates(self):
        manager = ErrorRecoveryManager()
        manager.register_strategy(ErrorCategory.SERVER, MagicMock(side_effect=DocsumError.cancelled("stop")))

        with pytest.raises(DocsumError) as exc_info:
            await manager.handle(server_error())

        assert exc_info.value.category is ErrorCategory.CANCELLED


class TestEscalatingRetry:

    @pytest.mark.asyncio
    async def test_isolated_error_retried_after_base_delay(self):
        sleeper = RecordingSleeper()
        manager = ErrorRecoveryManager()
        manager.register_strategy(ErrorCategory.SERVER, escalating_retry(base_delay=2.0, sleeper=sleeper))
        operation = AsyncMock(return_value="second try")

        result = await manager.handle(server_error(), {"operation": operation})

        assert result == "second try"
        assert sleeper.delays == [2.0]
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delay_grows_with_clustered_errors(self, clock):
        sleeper = RecordingSleeper()
        manager = ErrorRecoveryManager(pattern_window=3, now=clock)
        manager.register_strategy(
            ErrorCategory.SERVER, escalating_retry(base_delay=2.0, max_delay=30.0, sleeper=sleeper)
        )
        operation = AsyncMock(return_value="ok")

        manager.record(server_error())
        clock.advance(30)
        await manager.handle(server_error(), {"operation": operation})
        clock.advance(1)
        manager.record(server_error())
        clock.advance(1)
        await manager.handle(server_error(), {"operation": operation})

        assert sleeper.delays == [4.0, 8.0]

    @pytest.mark.asyncio
    async def test_retry_after_hint_respected(self):
        sleeper = RecordingSleeper()
        strategy = escalating_retry(base_delay=2.0, sleeper=sleeper)
        manager = ErrorRecoveryManager()
        manager.register_strategy(ErrorCategory.RATE_LIMITED, strategy)
        error = DocsumError.from_status(429, "slow", context={"retry_after": 12})

        await manager.handle(error, {"operation": AsyncMock(return_value=None)})

        assert sleeper.delays == [12.0]

    @pytest.mark.asyncio
    async def test_gives_up_on_rapid_succession(self, clock):
        sleeper = RecordingSleeper()
        manager = ErrorRecoveryManager(now=clock)
        manager.register_strategy(
            ErrorCategory.SERVER, escalating_retry(give_up_frequency=5, sleeper=sleeper)
        )
        for _ in range(4):
            manager.record(server_error())
            clock.advance(0.5)
        operation = AsyncMock()
        error = server_error()

        with pytest.raises(DocsumError) as exc_info:
            await manager.handle(error, {"operation": operation})

        assert exc_info.value is error
        operation.assert_not_awaited()
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_without_operation_reraises(self):
        manager = ErrorRecoveryManager()
        manager.register_strategy(ErrorCategory.SERVER, escalating_retry(sleeper=RecordingSleeper()))
        error = server_error()

        with pytest.raises(DocsumError) as exc_info:
            await manager.handle(error, {})
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_cancel_token_aborts_wait(self):
        token = CancellationToken()
        manager = ErrorRecoveryManager()
        manager.register_strategy(ErrorCategory.SERVER, escalating_retry(base_delay=60.0))
        operation = AsyncMock()

        pending = asyncio.ensure_future(
            manager.handle(server_error(), {"operation": operation, "cancel_token": token})
        )
        await asyncio.sleep(0.01)
        token.cancel("user cancelled")

        with pytest.raises(DocsumError) as exc_info:
            await asyncio.wait_for(pending, timeout=1.0)

        assert exc_info.value.category is ErrorCategory.CANCELLED
        operation.assert_not_awaited()
