"""Core data models for the document summarization pipeline."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from docsum.models.cancellation import CancellationToken
from docsum.models.errors import DocsumError, ErrorCategory


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class JobStatus(Enum):
    """Processing pipeline job states."""
    IDLE = "idle"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    SANITIZING = "sanitizing"
    SUMMARIZING = "summarizing"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.CANCELLED, JobStatus.FAILED)

    @property
    def is_running(self) -> bool:
        return not self.is_terminal and self is not JobStatus.IDLE


class PatternKind(Enum):
    """Inter-arrival pattern of recent errors of one category."""
    ISOLATED = "isolated"
    RAPID_SUCCESSION = "rapid_succession"
    FREQUENT = "frequent"
    PERIODIC = "periodic"


@dataclass
class HalfOpenToken:
    """Token for tracking half-open circuit breaker probe requests."""
    endpoint: str
    timestamp: float


@dataclass(frozen=True)
class OutboundRequest:
    """Descriptor of one logical outbound call."""
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    identity: str = "default"  # rate limiter identifier
    cacheable: Optional[bool] = None  # None: decided by method
    bypass_cache: bool = False
    timeout: Optional[float] = None

    @property
    def endpoint(self) -> str:
        """Circuit breaker key: scheme + host of the target."""
        parts = urlsplit(self.url)
        return f"{parts.scheme}://{parts.netloc}"


@dataclass(frozen=True)
class ClientResponse:
    """Decoded response of a successful outbound call."""
    status_code: int
    body: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    from_cache: bool = False


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cached payload. Replaced, never mutated."""
    fingerprint: str
    payload: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheStats:
    total_items: int
    valid_items: int
    expired_items: int


@dataclass(frozen=True)
class Admission:
    """Outcome of a rate limiter admission attempt."""
    allowed: bool
    wait_seconds: float = 0.0


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of one rate window."""
    remaining: int
    reset_in: float


@dataclass(frozen=True)
class BreakerStats:
    state: CircuitState
    failure_count: int
    success_rate: float  # Range 0.0-1.0 over the monitoring window
    total_requests: int
    last_failure_at: Optional[float]
    probe_successes: int = 0


@dataclass(frozen=True)
class ErrorRecord:
    """Error information kept for recurrence analysis."""
    timestamp: float  # epoch seconds
    category: ErrorCategory
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def occurred_at(self) -> str:
        return datetime.fromtimestamp(self.timestamp, timezone.utc).isoformat()


@dataclass(frozen=True)
class ErrorPattern:
    frequency: int
    is_recurring: bool
    last_occurrence: Optional[float]
    kind: PatternKind


@dataclass
class SourceDocument:
    """An uploaded document awaiting processing."""
    name: str
    content: bytes
    content_type: str = "application/pdf"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.content).hexdigest()

    @classmethod
    def from_path(cls, path: Path) -> "SourceDocument":
        path = Path(path)
        content_type = "application/pdf" if path.suffix.lower() == ".pdf" else "application/octet-stream"
        return cls(name=path.name, content=path.read_bytes(), content_type=content_type)


@dataclass
class ExtractionResult:
    """Text extracted from a document plus its metadata."""
    text: str
    page_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SummaryResult:
    """Result of one summarization call (real or demo)."""
    summary: str
    tier: str
    model: str
    document_type: str
    confidence: float
    word_count: int
    usage: Dict[str, Any] = field(default_factory=dict)
    is_demo: bool = False
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    status: JobStatus
    progress: int
    message: str = ""


@dataclass
class PipelineJob:
    """Mutable job state. Only ProcessingPipeline transitions it."""
    id: str
    source: SourceDocument
    tier: str
    status: JobStatus = JobStatus.IDLE
    progress: int = 0
    extracted_text: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    result: Optional[SummaryResult] = None
    last_error: Optional[DocsumError] = None
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only copy of a job, safe to hand to callers."""
    job_id: str
    document_name: str
    tier: str
    status: JobStatus
    progress: int
    has_text: bool
    metadata: Dict[str, Any]
    result: Optional[SummaryResult]
    error: Optional[DocsumError]

    @property
    def error_message(self) -> Optional[str]:
        return self.error.user_message if self.error else None

    @classmethod
    def of(cls, job: PipelineJob) -> "JobSnapshot":
        return cls(
            job_id=job.id,
            document_name=job.source.name,
            tier=job.tier,
            status=job.status,
            progress=job.progress,
            has_text=job.extracted_text is not None,
            metadata=dict(job.metadata),
            result=job.result,
            error=job.last_error,
        )
