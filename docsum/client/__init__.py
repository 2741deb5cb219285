"""Resilient outbound request layer."""

from .cache_store import CacheStore
from .circuit_breaker import CircuitBreaker
from .deduplicator import RequestDeduplicator
from .fingerprint import compute_fingerprint
from .http_client import AsyncHTTPClient
from .rate_limiter import RateLimiter
from .resilient_client import ResilientClient
from .retry_handler import RetryHandler, calculate_backoff_delay

__all__ = [
    "AsyncHTTPClient",
    "CacheStore",
    "CircuitBreaker",
    "RateLimiter",
    "RequestDeduplicator",
    "ResilientClient",
    "RetryHandler",
    "calculate_backoff_delay",
    "compute_fingerprint",
]
