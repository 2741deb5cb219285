"""Structured logging for pipeline and request-layer monitoring."""

import json
import logging
from typing import Any, Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "docsum", level: str = "INFO", structured: bool = True):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.structured = structured

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: str = "info", **kwargs: Any) -> None:
        """
        Log structured event.

        Standard keys: event, source, job_id, status, attempt, elapsed_ms,
                      cb_state, category, fingerprint, progress, delay
        """
        log_data = {"event": event, **kwargs}
        if self.structured:
            message = json.dumps(log_data, default=str)
        else:
            message = " ".join(f"{key}={value}" for key, value in log_data.items())
        self.logger.log(getattr(logging, level.upper()), message)

    # Request layer

    def request_start(self, source: str, method: str, fingerprint: str) -> None:
        self.log("request_start", source=source, method=method, fingerprint=fingerprint[:12])

    def cache_hit(self, fingerprint: str) -> None:
        self.log("cache_hit", fingerprint=fingerprint[:12])

    def cache_store(self, fingerprint: str, ttl: float) -> None:
        self.log("cache_store", fingerprint=fingerprint[:12], ttl=ttl)

    def cache_sweep(self, removed: int, remaining: int) -> None:
        self.log("cache_sweep", level="debug", removed=removed, remaining=remaining)

    def dedup_joined(self, fingerprint: str, waiters: int) -> None:
        self.log("dedup_joined", fingerprint=fingerprint[:12], waiters=waiters)

    def rate_limited(self, identifier: str, wait_seconds: float, attempt: int) -> None:
        self.log("rate_limited", level="warning", identifier=identifier,
                 delay=round(wait_seconds, 3), attempt=attempt)

    def request_success(self, source: str, status: int, elapsed_ms: float) -> None:
        self.log("request_success", source=source, status=status, elapsed_ms=round(elapsed_ms, 1))

    def request_error(self, source: str, status: Optional[int], category: str, error: str) -> None:
        self.log("request_error", level="warning", source=source, status=status,
                 category=category, error=error)

    def retry_scheduled(self, attempt: int, delay: float, category: str) -> None:
        self.log("retry_scheduled", level="warning", attempt=attempt,
                 delay=round(delay, 3), category=category)

    def circuit_breaker_state(self, source: str, state: str) -> None:
        self.log("circuit_breaker", level="warning", source=source, cb_state=state)

    # Pipeline

    def stage_change(self, job_id: str, status: str, progress: int) -> None:
        self.log("stage_change", job_id=job_id, status=status, progress=progress)

    def job_cancelled(self, job_id: str, status: str) -> None:
        self.log("job_cancelled", job_id=job_id, status=status)

    def job_failed(self, job_id: str, status: str, category: str, error: str) -> None:
        self.log("job_failed", level="error", job_id=job_id, status=status,
                 category=category, error=error)

    def listener_error(self, job_id: str, status: str, error: str) -> None:
        self.log("listener_error", level="warning", job_id=job_id, status=status, error=error)

    def recovery_attempt(self, category: str, pattern: str, delay: float) -> None:
        self.log("recovery_attempt", level="warning", category=category,
                 pattern=pattern, delay=round(delay, 3))

    def recovery_failed(self, category: str, error: str) -> None:
        self.log("recovery_failed", level="warning", category=category, error=error)

    def pipeline_timeout(self, timeout: float) -> None:
        self.log("pipeline_timeout", level="error", timeout=timeout)
