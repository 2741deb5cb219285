"""Circuit breaker implementation with explicit state management."""

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Dict, Optional, Protocol, Tuple, TypeVar, Union

from docsum.models.data_models import BreakerStats, CircuitState, HalfOpenToken
from docsum.models.errors import DocsumError

T = TypeVar("T")


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> float:
        """Return current time in seconds."""
        ...


class MonotonicClock:
    """Default clock implementation using time.monotonic."""

    def now(self) -> float:
        """Return current monotonic time in seconds."""
        return time.monotonic()


@dataclass
class CircuitBreakerState:
    """Internal state for a single circuit breaker."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    probe_successes: int = 0
    half_open_token: Optional[HalfOpenToken] = None
    # (timestamp, succeeded) pairs within the monitoring window
    outcomes: Deque[Tuple[float, bool]] = field(default_factory=deque)


def _default_is_failure(error: BaseException) -> bool:
    return isinstance(error, DocsumError) and error.retryable


class CircuitBreaker:
    """
    Circuit breaker with CLOSED/OPEN/HALF_OPEN states, keyed per endpoint.

    - Opens once the failure count reaches ``failure_threshold``
    - Each success while CLOSED decays the failure count by ``failure_decay``
    - Stays open for ``reset_timeout`` seconds, then admits one probe at a time
    - Closes after ``required_probe_successes`` consecutive successful probes
    - Any failed probe reopens the circuit

    Every read-modify-write of a circuit happens under one lock, so
    concurrent callers never lose failure or probe updates.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        required_probe_successes: int = 3,
        failure_decay: int = 1,
        monitoring_window: float = 300.0,
        clock: Optional[Clock] = None,
        logger=None,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            reset_timeout: Time to wait before attempting half-open probe
            required_probe_successes: Consecutive probe successes needed to close
            failure_decay: Failure count decrement per success while CLOSED
            monitoring_window: Seconds of request outcomes kept for stats()
            clock: Clock interface for time management (defaults to MonotonicClock)
            logger: Optional structured logger
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.required_probe_successes = required_probe_successes
        self.failure_decay = failure_decay
        self.monitoring_window = monitoring_window
        self.clock = clock or MonotonicClock()
        self.logger = logger
        self._circuits: Dict[str, CircuitBreakerState] = {}
        self._lock = threading.Lock()

    def _get_circuit(self, endpoint: str) -> CircuitBreakerState:
        """Get or create circuit state for endpoint. Caller holds the lock."""
        if endpoint not in self._circuits:
            self._circuits[endpoint] = CircuitBreakerState()
        return self._circuits[endpoint]

    def _transition(self, endpoint: str, circuit: CircuitBreakerState, new_state: CircuitState) -> None:
        circuit.state = new_state
        if self.logger:
            self.logger.circuit_breaker_state(endpoint, new_state.value)

    def _record_outcome(self, circuit: CircuitBreakerState, current_time: float, succeeded: bool) -> None:
        circuit.outcomes.append((current_time, succeeded))
        cutoff = current_time - self.monitoring_window
        while circuit.outcomes and circuit.outcomes[0][0] < cutoff:
            circuit.outcomes.popleft()

    def retry_after(self, endpoint: str) -> float:
        """Seconds left before an OPEN circuit admits a probe."""
        with self._lock:
            circuit = self._get_circuit(endpoint)
            if circuit.state != CircuitState.OPEN or circuit.last_failure_time is None:
                return 0.0
            elapsed = self.clock.now() - circuit.last_failure_time
            return max(0.0, self.reset_timeout - elapsed)

    def should_allow(self, endpoint: str) -> Union[bool, HalfOpenToken]:
        """
        Check if request should be allowed for endpoint.

        Args:
            endpoint: Endpoint identifier

        Returns:
            - True if circuit is CLOSED (allow request)
            - False if circuit is OPEN or a probe is already in flight (reject)
            - HalfOpenToken if this call is the half-open probe
        """
        with self._lock:
            circuit = self._get_circuit(endpoint)
            current_time = self.clock.now()

            if circuit.state == CircuitState.CLOSED:
                return True

            if circuit.state == CircuitState.OPEN:
                time_since_failure = current_time - (circuit.last_failure_time or current_time)
                if time_since_failure < self.reset_timeout:
                    return False
                self._transition(endpoint, circuit, CircuitState.HALF_OPEN)
                circuit.probe_successes = 0

            # HALF_OPEN: one probe at a time
            if circuit.half_open_token is not None:
                return False
            token = HalfOpenToken(endpoint=endpoint, timestamp=current_time)
            circuit.half_open_token = token
            return token

    def record_success(self, endpoint: str, token: Optional[HalfOpenToken] = None) -> None:
        """
        Record successful request for endpoint.

        Args:
            endpoint: Endpoint identifier
            token: HalfOpenToken if this was a half-open probe request
        """
        with self._lock:
            circuit = self._get_circuit(endpoint)
            current_time = self.clock.now()
            self._record_outcome(circuit, current_time, True)

            if circuit.state == CircuitState.HALF_OPEN:
                # Only the current probe counts; calls admitted before it do not
                if token is None or circuit.half_open_token is not token:
                    return
                circuit.half_open_token = None
                circuit.probe_successes += 1
                if circuit.probe_successes >= self.required_probe_successes:
                    circuit.failure_count = 0
                    circuit.probe_successes = 0
                    self._transition(endpoint, circuit, CircuitState.CLOSED)
                return

            if circuit.state == CircuitState.CLOSED:
                circuit.failure_count = max(0, circuit.failure_count - self.failure_decay)

    def record_failure(self, endpoint: str, retryable: bool, token: Optional[HalfOpenToken] = None) -> None:
        """
        Record failed request for endpoint.

        Args:
            endpoint: Endpoint identifier
            retryable: Whether the failure is retryable (only those count)
            token: HalfOpenToken if this was a half-open probe request
        """
        with self._lock:
            circuit = self._get_circuit(endpoint)
            current_time = self.clock.now()

            # Non-counted failures only release a held probe slot
            if not retryable:
                if token is not None and circuit.half_open_token is token:
                    circuit.half_open_token = None
                return

            self._record_outcome(circuit, current_time, False)

            if circuit.state == CircuitState.CLOSED:
                circuit.failure_count += 1
                circuit.last_failure_time = current_time
                if circuit.failure_count >= self.failure_threshold:
                    self._transition(endpoint, circuit, CircuitState.OPEN)

            elif circuit.state == CircuitState.HALF_OPEN:
                if token is None or circuit.half_open_token is not token:
                    return
                circuit.failure_count = max(circuit.failure_count, self.failure_threshold)
                circuit.last_failure_time = current_time
                circuit.probe_successes = 0
                circuit.half_open_token = None
                self._transition(endpoint, circuit, CircuitState.OPEN)

    def release(self, endpoint: str, token: Optional[HalfOpenToken]) -> None:
        """Give back a probe slot whose call was abandoned without an outcome."""
        if token is None:
            return
        with self._lock:
            circuit = self._get_circuit(endpoint)
            if circuit.half_open_token is token:
                circuit.half_open_token = None

    async def execute(
        self,
        endpoint: str,
        operation: Callable[[], Awaitable[T]],
        is_failure: Optional[Callable[[BaseException], bool]] = None,
    ) -> T:
        """
        Run ``operation`` if the circuit for ``endpoint`` allows it.

        Args:
            endpoint: Endpoint identifier
            operation: Zero-argument coroutine function performing the call
            is_failure: Decides whether an exception counts toward opening the
                circuit (default: retryable DocsumErrors)

        Returns:
            The operation's result

        Raises:
            DocsumError: BREAKER_OPEN without invoking the operation when the
                circuit rejects the call; otherwise whatever the operation raises
        """
        allowed = self.should_allow(endpoint)
        if allowed is False:
            raise DocsumError.breaker_open(endpoint, self.retry_after(endpoint))

        token = allowed if isinstance(allowed, HalfOpenToken) else None
        counts = is_failure or _default_is_failure

        try:
            result = await operation()
        except asyncio.CancelledError:
            self.release(endpoint, token)
            raise
        except Exception as e:
            self.record_failure(endpoint, retryable=counts(e), token=token)
            raise

        self.record_success(endpoint, token)
        return result

    def state(self, endpoint: str) -> CircuitState:
        """
        Get current circuit state for endpoint.

        Args:
            endpoint: Endpoint identifier

        Returns:
            Current CircuitState (CLOSED, OPEN, or HALF_OPEN)
        """
        with self._lock:
            return self._get_circuit(endpoint).state

    def stats(self, endpoint: str) -> BreakerStats:
        """Observability snapshot over the monitoring window."""
        with self._lock:
            circuit = self._get_circuit(endpoint)
            cutoff = self.clock.now() - self.monitoring_window
            recent = [ok for ts, ok in circuit.outcomes if ts >= cutoff]
            success_rate = sum(recent) / len(recent) if recent else 1.0
            return BreakerStats(
                state=circuit.state,
                failure_count=circuit.failure_count,
                success_rate=success_rate,
                total_requests=len(recent),
                last_failure_at=circuit.last_failure_time,
                probe_successes=circuit.probe_successes,
            )

    def endpoints(self) -> Dict[str, CircuitState]:
        with self._lock:
            return {endpoint: circuit.state for endpoint, circuit in self._circuits.items()}

    def reset(self, endpoint: Optional[str] = None) -> None:
        """Reset circuit breaker for one endpoint, or for all of them."""
        with self._lock:
            if endpoint is None:
                self._circuits.clear()
            elif endpoint in self._circuits:
                self._circuits[endpoint] = CircuitBreakerState()
