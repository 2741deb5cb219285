"""Unit tests for circuit breaker."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docsum.client.circuit_breaker import CircuitBreaker, MonotonicClock
from docsum.models.data_models import CircuitState, HalfOpenToken
from docsum.models.errors import DocsumError, ErrorCategory

ENDPOINT = "https://api.openai.com"


class FakeClock:
    """Fake clock for testing."""

    def __init__(self, initial_time: float = 0.0):
        self._current_time = initial_time

    def now(self) -> float:
        return self._current_time

    def advance(self, seconds: float) -> None:
        self._current_time += seconds


def server_error() -> DocsumError:
    return DocsumError.from_status(503, "unavailable")


def open_breaker(cb: CircuitBreaker, endpoint: str = ENDPOINT) -> None:
    for _ in range(cb.failure_threshold):
        cb.record_failure(endpoint, retryable=True)


class TestCircuitBreakerBasics:

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker()
        assert cb.state(ENDPOINT) == CircuitState.CLOSED

    def test_closed_circuit_allows_requests(self):
        cb = CircuitBreaker()
        assert cb.should_allow(ENDPOINT) is True

    def test_uses_monotonic_clock_by_default(self):
        cb = CircuitBreaker()
        assert isinstance(cb.clock, MonotonicClock)

    def test_endpoints_are_isolated(self):
        cb = CircuitBreaker(failure_threshold=3, clock=FakeClock())
        open_breaker(cb, "http://a")

        assert cb.state("http://a") == CircuitState.OPEN
        assert cb.state("http://b") == CircuitState.CLOSED
        assert cb.endpoints() == {"http://a": CircuitState.OPEN, "http://b": CircuitState.CLOSED}


class TestCircuitBreakerStateTransitions:

    def test_opens_after_threshold_failures(self):
        cb = CircuitBreaker(failure_threshold=3, clock=FakeClock())

        cb.record_failure(ENDPOINT, retryable=True)
        cb.record_failure(ENDPOINT, retryable=True)
        assert cb.state(ENDPOINT) == CircuitState.CLOSED

        cb.record_failure(ENDPOINT, retryable=True)
        assert cb.state(ENDPOINT) == CircuitState.OPEN

    def test_non_retryable_failures_do_not_count(self):
        cb = CircuitBreaker(failure_threshold=3, clock=FakeClock())

        for _ in range(10):
            cb.record_failure(ENDPOINT, retryable=False)

        assert cb.state(ENDPOINT) == CircuitState.CLOSED
        assert cb.stats(ENDPOINT).failure_count == 0

    def test_open_circuit_rejects_until_reset_timeout(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)

        fake_clock.advance(29.9)
        assert cb.should_allow(ENDPOINT) is False
        assert cb.retry_after(ENDPOINT) == pytest.approx(0.1)

    def test_transitions_to_half_open_after_timeout(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)

        fake_clock.advance(30.0)
        result = cb.should_allow(ENDPOINT)

        assert isinstance(result, HalfOpenToken)
        assert cb.state(ENDPOINT) == CircuitState.HALF_OPEN

    def test_single_probe_in_flight(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)
        fake_clock.advance(30.0)

        token = cb.should_allow(ENDPOINT)
        assert isinstance(token, HalfOpenToken)
        assert cb.should_allow(ENDPOINT) is False

        cb.record_success(ENDPOINT, token)
        assert isinstance(cb.should_allow(ENDPOINT), HalfOpenToken)

    def test_closes_after_required_probe_successes(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0,
                            required_probe_successes=3, clock=fake_clock)
        open_breaker(cb)
        fake_clock.advance(30.0)

        for expected in (CircuitState.HALF_OPEN, CircuitState.HALF_OPEN, CircuitState.CLOSED):
            token = cb.should_allow(ENDPOINT)
            cb.record_success(ENDPOINT, token)
            assert cb.state(ENDPOINT) == expected

        assert cb.stats(ENDPOINT).failure_count == 0

    def test_failed_probe_reopens(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)
        fake_clock.advance(30.0)

        token = cb.should_allow(ENDPOINT)
        cb.record_success(ENDPOINT, token)
        token = cb.should_allow(ENDPOINT)
        cb.record_failure(ENDPOINT, retryable=True, token=token)

        assert cb.state(ENDPOINT) == CircuitState.OPEN
        assert cb.should_allow(ENDPOINT) is False
        assert cb.retry_after(ENDPOINT) == pytest.approx(30.0)

    def test_success_decays_failure_count(self):
        cb = CircuitBreaker(failure_threshold=3, failure_decay=1, clock=FakeClock())

        cb.record_failure(ENDPOINT, retryable=True)
        cb.record_failure(ENDPOINT, retryable=True)
        cb.record_success(ENDPOINT)
        assert cb.stats(ENDPOINT).failure_count == 1

        cb.record_failure(ENDPOINT, retryable=True)
        assert cb.state(ENDPOINT) == CircuitState.CLOSED

        cb.record_success(ENDPOINT)
        cb.record_success(ENDPOINT)
        cb.record_success(ENDPOINT)
        assert cb.stats(ENDPOINT).failure_count == 0

    def test_non_counted_failure_releases_probe(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)
        fake_clock.advance(30.0)

        token = cb.should_allow(ENDPOINT)
        cb.record_failure(ENDPOINT, retryable=False, token=token)

        assert cb.state(ENDPOINT) == CircuitState.HALF_OPEN
        assert isinstance(cb.should_allow(ENDPOINT), HalfOpenToken)

    def test_late_success_from_closed_call_is_not_a_probe(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)

        # Admitted while CLOSED, finishes after the cooldown
        assert cb.should_allow(ENDPOINT) is True
        open_breaker(cb)
        fake_clock.advance(31.0)
        probe = cb.should_allow(ENDPOINT)
        assert isinstance(probe, HalfOpenToken)

        cb.record_success(ENDPOINT, None)

        assert cb.stats(ENDPOINT).probe_successes == 0
        assert cb.should_allow(ENDPOINT) is False

        cb.record_success(ENDPOINT, probe)
        assert cb.stats(ENDPOINT).probe_successes == 1

    def test_late_failure_from_closed_call_does_not_reopen(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)
        fake_clock.advance(31.0)
        probe = cb.should_allow(ENDPOINT)

        cb.record_failure(ENDPOINT, retryable=True)

        assert cb.state(ENDPOINT) == CircuitState.HALF_OPEN
        assert cb.should_allow(ENDPOINT) is False

        cb.record_success(ENDPOINT, probe)
        assert isinstance(cb.should_allow(ENDPOINT), HalfOpenToken)

    def test_stale_probe_token_is_ignored(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        open_breaker(cb)
        fake_clock.advance(30.0)
        stale = cb.should_allow(ENDPOINT)
        cb.release(ENDPOINT, stale)
        current = cb.should_allow(ENDPOINT)

        cb.record_success(ENDPOINT, stale)

        assert cb.stats(ENDPOINT).probe_successes == 0
        cb.record_success(ENDPOINT, current)
        assert cb.stats(ENDPOINT).probe_successes == 1

    def test_transitions_are_logged(self):
        logger = MagicMock()
        cb = CircuitBreaker(failure_threshold=1, clock=FakeClock(), logger=logger)
        cb.record_failure(ENDPOINT, retryable=True)
        logger.circuit_breaker_state.assert_called_once_with(ENDPOINT, "open")

    def test_reset(self):
        cb = CircuitBreaker(failure_threshold=1, clock=FakeClock())
        cb.record_failure("http://a", retryable=True)
        cb.record_failure("http://b", retryable=True)

        cb.reset("http://a")
        assert cb.state("http://a") == CircuitState.CLOSED
        assert cb.state("http://b") == CircuitState.OPEN

        cb.reset()
        assert cb.endpoints() == {}


class TestCircuitBreakerStats:

    def test_success_rate_over_monitoring_window(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=10, monitoring_window=60.0, clock=fake_clock)

        cb.record_failure(ENDPOINT, retryable=True)
        fake_clock.advance(61.0)
        cb.record_success(ENDPOINT)
        cb.record_success(ENDPOINT)
        cb.record_success(ENDPOINT)
        cb.record_failure(ENDPOINT, retryable=True)

        stats = cb.stats(ENDPOINT)
        assert stats.total_requests == 4
        assert stats.success_rate == pytest.approx(0.75)
        assert stats.last_failure_at == fake_clock.now()

    def test_empty_stats(self):
        stats = CircuitBreaker().stats(ENDPOINT)
        assert stats.state == CircuitState.CLOSED
        assert stats.success_rate == 1.0
        assert stats.total_requests == 0
        assert stats.last_failure_at is None


class TestCircuitBreakerExecute:

    @pytest.mark.asyncio
    async def test_execute_returns_result_and_records_success(self):
        cb = CircuitBreaker(clock=FakeClock())
        operation = AsyncMock(return_value="ok")

        assert await cb.execute(ENDPOINT, operation) == "ok"
        assert cb.stats(ENDPOINT).total_requests == 1

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast_without_calling(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=fake_clock)
        failing = AsyncMock(side_effect=server_error())

        for _ in range(3):
            with pytest.raises(DocsumError):
                await cb.execute(ENDPOINT, failing)
        assert failing.await_count == 3

        fake_clock.advance(10.0)
        with pytest.raises(DocsumError) as exc_info:
            await cb.execute(ENDPOINT, failing)

        error = exc_info.value
        assert error.category is ErrorCategory.BREAKER_OPEN
        assert error.retry_after == pytest.approx(20.0)
        assert failing.await_count == 3

    @pytest.mark.asyncio
    async def test_client_errors_do_not_open(self):
        cb = CircuitBreaker(failure_threshold=2, clock=FakeClock())
        bad_request = AsyncMock(side_effect=DocsumError.from_status(400, "bad"))

        for _ in range(5):
            with pytest.raises(DocsumError):
                await cb.execute(ENDPOINT, bad_request)

        assert cb.state(ENDPOINT) == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_custom_failure_predicate(self):
        cb = CircuitBreaker(failure_threshold=1, clock=FakeClock())
        operation = AsyncMock(side_effect=KeyError("x"))

        with pytest.raises(KeyError):
            await cb.execute(ENDPOINT, operation, is_failure=lambda e: True)

        assert cb.state(ENDPOINT) == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_cancelled_probe_releases_slot(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=5.0, clock=fake_clock)
        cb.record_failure(ENDPOINT, retryable=True)
        fake_clock.advance(5.0)

        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(10)

        probe = asyncio.ensure_future(cb.execute(ENDPOINT, hang))
        await started.wait()
        assert cb.should_allow(ENDPOINT) is False

        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert isinstance(cb.should_allow(ENDPOINT), HalfOpenToken)
