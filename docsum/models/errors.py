"""Error taxonomy shared by the request layer and the processing pipeline.

Every failure is a ``DocsumError`` tagged with an ``ErrorCategory``. Callers
branch on ``error.category`` (or ``error.retryable``) instead of on the
exception class, which keeps the propagation policy in one table.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Discriminant for ``DocsumError``."""
    VALIDATION = "validation"
    EXTRACTION = "extraction"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    AUTHENTICATION = "authentication"
    CLIENT = "client"
    PROTOCOL = "protocol"
    BREAKER_OPEN = "breaker_open"
    CANCELLED = "cancelled"
    PRECONDITION = "precondition"
    UNKNOWN = "unknown"


TRANSIENT_CATEGORIES = frozenset({
    ErrorCategory.TIMEOUT,
    ErrorCategory.CONNECTION,
    ErrorCategory.RATE_LIMITED,
    ErrorCategory.SERVER,
})

USER_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.EXTRACTION: (
        "There was an issue processing your PDF file. "
        "Please ensure it's a valid PDF and try again."
    ),
    ErrorCategory.TIMEOUT: (
        "The operation took too long to complete. "
        "Please try with a smaller file or try again later."
    ),
    ErrorCategory.CONNECTION: "Network error. Please check your internet connection and try again.",
    ErrorCategory.RATE_LIMITED: "API rate limit exceeded. Please wait a moment and try again.",
    ErrorCategory.SERVER: "The AI service is temporarily unavailable. Please try again later.",
    ErrorCategory.AUTHENTICATION: "API authentication failed. Please check your API key configuration.",
    ErrorCategory.CLIENT: "There was an issue with the AI analysis. Please try again.",
    ErrorCategory.PROTOCOL: "The AI service returned an unreadable response. Please try again.",
    ErrorCategory.BREAKER_OPEN: (
        "The AI service is temporarily unavailable. Please try again in a few moments."
    ),
    ErrorCategory.CANCELLED: "Processing was cancelled.",
    ErrorCategory.UNKNOWN: (
        "An unexpected error occurred. "
        "Please try again or contact support if the problem persists."
    ),
}


class DocsumError(Exception):
    """Tagged error raised by every docsum component."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        *,
        status_code: Optional[int] = None,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.category = category
        self.message = message
        self.status_code = status_code
        self.field = field
        self.context = dict(context or {})
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def __repr__(self) -> str:
        return f"DocsumError({self.category.value!r}, {self.message!r}, status_code={self.status_code})"

    @property
    def retryable(self) -> bool:
        """Whether the request layer may retry this error."""
        return self.category in TRANSIENT_CATEGORIES

    @property
    def retry_after(self) -> Optional[float]:
        value = self.context.get("retry_after")
        return float(value) if value is not None else None

    @property
    def user_message(self) -> str:
        """Stable, user-presentable description of the failure."""
        if self.category in (ErrorCategory.VALIDATION, ErrorCategory.PRECONDITION):
            prefix = "Validation error: " if self.category is ErrorCategory.VALIDATION else ""
            return f"{prefix}{self.message}"
        return USER_MESSAGES[self.category]

    @classmethod
    def from_status(
        cls,
        status_code: int,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> "DocsumError":
        """Map an HTTP error status onto a category."""
        if status_code in (401, 403):
            category = ErrorCategory.AUTHENTICATION
        elif status_code == 429:
            category = ErrorCategory.RATE_LIMITED
        elif status_code >= 500:
            category = ErrorCategory.SERVER
        else:
            category = ErrorCategory.CLIENT
        return cls(category, message, status_code=status_code, context=context)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "DocsumError":
        """Classify an arbitrary exception raised while talking to the network."""
        if isinstance(exc, DocsumError):
            return exc
        if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
            return cls(ErrorCategory.TIMEOUT, f"Request timed out: {exc}")
        if isinstance(exc, httpx.HTTPStatusError):
            return cls.from_status(exc.response.status_code, str(exc))
        if isinstance(exc, httpx.TransportError):
            return cls(ErrorCategory.CONNECTION, f"Connection failed: {exc}")
        return cls(ErrorCategory.UNKNOWN, str(exc) or type(exc).__name__)

    @classmethod
    def cancelled(cls, message: str = "Operation cancelled") -> "DocsumError":
        return cls(ErrorCategory.CANCELLED, message)

    @classmethod
    def breaker_open(cls, endpoint: str, retry_after: float) -> "DocsumError":
        return cls(
            ErrorCategory.BREAKER_OPEN,
            f"Circuit breaker for '{endpoint}' is open - service unavailable",
            context={"endpoint": endpoint, "retry_after": round(max(retry_after, 0.0), 3)},
        )


def is_cancellation(error: BaseException) -> bool:
    """True for cooperative cancellation, which is never treated as a failure."""
    return isinstance(error, DocsumError) and error.category is ErrorCategory.CANCELLED
