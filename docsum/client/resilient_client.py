"""Resilient outbound client: cache, dedup, rate limiting, circuit breaking, retry."""

import asyncio
import time
from typing import Any, Callable, Mapping, Optional

import httpx

from docsum.client.cache_store import CacheStore
from docsum.client.circuit_breaker import CircuitBreaker
from docsum.client.deduplicator import RequestDeduplicator
from docsum.client.fingerprint import compute_fingerprint
from docsum.client.http_client import AsyncHTTPClient
from docsum.client.rate_limiter import RateLimiter
from docsum.client.retry_handler import RetryHandler
from docsum.models.cancellation import CancellationToken
from docsum.models.data_models import ClientResponse, OutboundRequest
from docsum.models.errors import DocsumError, ErrorCategory

CACHEABLE_METHODS = frozenset({"GET", "HEAD"})


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a delta-seconds Retry-After header. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class ResilientClient:
    """
    Sends one logical request through the resilience stack.

    Order of operations for ``send``:
    1. Cache lookup for cacheable requests (a hit touches nothing else)
    2. Deduplication on the request fingerprint
    3. Inside the shared call, per attempt: rate limiter admission, then the
       circuit-breaker-gated network call under ``request_timeout``
    4. Exponential-backoff retry around step 3 for transient failures
    5. Cache store on success, before the outcome reaches any caller

    A caller's cancellation token only detaches that caller. The shared call
    is aborted once every caller waiting on it has gone, so a cancelled
    request never populates the cache.
    """

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        cache: Optional[CacheStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        retry_handler: Optional[RetryHandler] = None,
        request_timeout: float = 45.0,
        cache_ttl: Optional[float] = None,
        now: Callable[[], float] = time.monotonic,
        logger=None,
    ):
        """
        Initialize client with resilience components.

        Args:
            http_client: Makes HTTP requests with transport-level timeouts
            cache: Response cache (None disables caching)
            rate_limiter: Admission control per caller identity
            circuit_breaker: Isolates failing endpoints
            deduplicator: Collapses identical concurrent requests
            retry_handler: Backoff policy for transient failures
            request_timeout: Per-attempt timeout in seconds
            cache_ttl: TTL for stored responses (default: the cache's own)
            now: Clock used for latency measurements
            logger: Optional structured logger for telemetry
        """
        self.http_client = http_client
        self.cache = cache
        self.rate_limiter = rate_limiter or RateLimiter(logger=logger)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(logger=logger)
        self.deduplicator = deduplicator or RequestDeduplicator(logger=logger)
        self.retry_handler = retry_handler or RetryHandler(logger=logger)
        self.request_timeout = request_timeout
        self.cache_ttl = cache_ttl
        self._now = now
        self.logger = logger
        self._owns_http_client = False

    async def __aenter__(self):
        if not self.http_client.is_open:
            await self.http_client.__aenter__()
            self._owns_http_client = True
        if self.cache is not None:
            self.cache.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.deduplicator.cancel_all()
        if self.cache is not None:
            await self.cache.close()
        if self._owns_http_client:
            await self.http_client.__aexit__(exc_type, exc_val, exc_tb)
            self._owns_http_client = False

    def is_cacheable(self, request: OutboundRequest) -> bool:
        if self.cache is None:
            return False
        if request.cacheable is not None:
            return request.cacheable
        return request.method.upper() in CACHEABLE_METHODS

    async def send(
        self,
        request: OutboundRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ClientResponse:
        """
        Send ``request`` through cache, dedup, limiter, breaker and retry.

        Args:
            request: Request descriptor
            cancel_token: Optional token; when it fires this caller stops
                waiting with a CANCELLED error

        Returns:
            Decoded response (``from_cache`` set on cache hits)

        Raises:
            DocsumError: The surfaced error of the last attempt, BREAKER_OPEN,
                RATE_LIMITED or CANCELLED
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        fingerprint = compute_fingerprint(request.url, request.method, request.headers, request.body)
        cacheable = self.is_cacheable(request)

        if cacheable and not request.bypass_cache:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                if self.logger:
                    self.logger.cache_hit(fingerprint)
                return ClientResponse(
                    status_code=cached.status_code,
                    body=cached.body,
                    headers=cached.headers,
                    from_cache=True,
                )

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        shared = self.deduplicator.execute(
            fingerprint,
            lambda: self._send_with_retry(request, fingerprint, cacheable),
        )
        if cancel_token is not None:
            return await cancel_token.guard(shared)
        return await shared

    async def post_json(
        self,
        url: str,
        body: Any,
        headers: Optional[Mapping[str, str]] = None,
        identity: str = "default",
        cacheable: Optional[bool] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ClientResponse:
        request = OutboundRequest(
            url=url,
            method="POST",
            headers=dict(headers or {}),
            body=body,
            identity=identity,
            cacheable=cacheable,
        )
        return await self.send(request, cancel_token=cancel_token)

    async def _send_with_retry(
        self,
        request: OutboundRequest,
        fingerprint: str,
        cacheable: bool,
    ) -> ClientResponse:
        if self.logger:
            self.logger.request_start(request.endpoint, request.method.upper(), fingerprint)

        response = await self.retry_handler.execute(self._attempt, request)

        if cacheable:
            ttl = self.cache_ttl or self.cache.default_ttl
            self.cache.set(fingerprint, response, ttl)
            if self.logger:
                self.logger.cache_store(fingerprint, ttl)
        return response

    async def _attempt(self, request: OutboundRequest) -> ClientResponse:
        await self.rate_limiter.acquire(request.identity)
        return await self.circuit_breaker.execute(request.endpoint, lambda: self._perform(request))

    async def _perform(self, request: OutboundRequest) -> ClientResponse:
        """
        Single network call without retry logic.

        Raises:
            DocsumError: TIMEOUT, CONNECTION, status-mapped or PROTOCOL errors
        """
        timeout = request.timeout or self.request_timeout
        start = self._now()

        try:
            response = await asyncio.wait_for(
                self.http_client.request(
                    request.method.upper(),
                    request.url,
                    headers=request.headers,
                    body=request.body,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.HTTPError) as e:
            error = DocsumError.from_exception(e)
            self._log_error(request, None, error)
            raise error from e

        elapsed_ms = (self._now() - start) * 1000

        if response.status_code >= 400:
            context = {"endpoint": request.endpoint}
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            if retry_after is not None:
                context["retry_after"] = retry_after
            error = DocsumError.from_status(
                response.status_code,
                f"{request.method.upper()} {request.url} returned HTTP {response.status_code}",
                context=context,
            )
            self._log_error(request, response.status_code, error)
            raise error

        try:
            body = response.json() if response.content else None
        except ValueError as e:
            error = DocsumError(
                ErrorCategory.PROTOCOL,
                f"Response from {request.endpoint} is not valid JSON",
                status_code=response.status_code,
            )
            self._log_error(request, response.status_code, error)
            raise error from e

        if self.logger:
            self.logger.request_success(request.endpoint, response.status_code, elapsed_ms)

        return ClientResponse(
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
        )

    def _log_error(self, request: OutboundRequest, status: Optional[int], error: DocsumError) -> None:
        if self.logger:
            self.logger.request_error(request.endpoint, status, error.category.value, error.message)
