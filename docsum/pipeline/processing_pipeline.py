"""Per-job state machine: validate, extract, sanitize, summarize."""

import asyncio
import threading
import uuid
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Union

from docsum.models.cancellation import CancellationToken
from docsum.models.data_models import JobSnapshot, JobStatus, PipelineJob, ProgressEvent, SourceDocument
from docsum.models.errors import DocsumError, ErrorCategory, is_cancellation
from docsum.monitoring.error_recovery import ErrorRecoveryManager
from docsum.processor.extractor import TextExtractor
from docsum.processor.processor import TextProcessor
from docsum.processor.validator import DocumentValidator
from docsum.summarizer.service import SummarizationService
from docsum.summarizer.tiers import SummaryTier, parse_tier

ProgressListener = Callable[[ProgressEvent], None]

# Progress checkpoints
VALIDATION_DONE = 5
EXTRACTION_START = 10
EXTRACTION_SPAN = 60
SANITIZATION_START = 75
SANITIZATION_DONE = 80
SUMMARIZATION_START = 85
COMPLETE = 100

_RESTARTABLE = frozenset({JobStatus.VALIDATING, JobStatus.SUMMARIZING})

TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.IDLE: frozenset({JobStatus.VALIDATING, JobStatus.FAILED}),
    JobStatus.VALIDATING: frozenset({JobStatus.EXTRACTING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.EXTRACTING: frozenset({JobStatus.SANITIZING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.SANITIZING: frozenset({JobStatus.SUMMARIZING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.SUMMARIZING: frozenset({JobStatus.DONE, JobStatus.FAILED, JobStatus.CANCELLED}),
    # Re-entry: regenerate goes to SUMMARIZING, retry to VALIDATING
    JobStatus.DONE: frozenset({JobStatus.SUMMARIZING}),
    JobStatus.FAILED: _RESTARTABLE,
    JobStatus.CANCELLED: _RESTARTABLE,
}


def extraction_progress(page: int, total_pages: int) -> int:
    """Map page ``page`` of ``total_pages`` onto the extraction sub-range."""
    if total_pages <= 0:
        return EXTRACTION_START
    return EXTRACTION_START + round(EXTRACTION_SPAN * page / total_pages)


class ProcessingPipeline:
    """
    Drives one job at a time through the processing stages.

    The job is mutated only here. Callers observe it through ``snapshot()``
    or subscribed progress listeners, and steer it through ``start``,
    ``cancel``, ``regenerate``, ``retry`` and ``reset``.

    Cancellation is cooperative: ``cancel()`` trips the job's token, which is
    checked before every stage and every page and raced against the
    summarization call. A cancelled job ends CANCELLED, never FAILED.
    """

    def __init__(
        self,
        validator: DocumentValidator,
        extractor: TextExtractor,
        processor: TextProcessor,
        summarizer: SummarizationService,
        recovery: Optional[ErrorRecoveryManager] = None,
        default_tier: Union[str, SummaryTier] = SummaryTier.MEDIUM,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:12],
        logger=None,
    ):
        """
        Initialize pipeline with its stage collaborators.

        Args:
            validator: Upload checks run in VALIDATING
            extractor: Page-by-page text extraction run in EXTRACTING
            processor: Worker pool running sanitization in SANITIZING
            summarizer: Summarization service called in SUMMARIZING
            recovery: Optional recovery manager consulted on stage errors
            default_tier: Tier used when ``start`` is given none
            id_factory: Job id generator
            logger: Optional structured logger
        """
        self.validator = validator
        self.extractor = extractor
        self.processor = processor
        self.summarizer = summarizer
        self.recovery = recovery
        self.default_tier = parse_tier(default_tier)
        self._new_id = id_factory
        self.logger = logger

        self._job: Optional[PipelineJob] = None
        self._listeners: List[ProgressListener] = []
        self._lock = threading.Lock()
        self._run_done: Optional[asyncio.Event] = None

    # Queries

    @property
    def job_id(self) -> Optional[str]:
        return self._job.id if self._job else None

    @property
    def is_running(self) -> bool:
        return self._job is not None and self._job.status.is_running

    @property
    def cancellation_token(self) -> Optional[CancellationToken]:
        """Token of the current job, shareable with other tasks or threads."""
        return self._job.cancellation_token if self._job else None

    @property
    def extracted_text(self) -> Optional[str]:
        return self._job.extracted_text if self._job else None

    def snapshot(self) -> Optional[JobSnapshot]:
        with self._lock:
            return JobSnapshot.of(self._job) if self._job else None

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a progress listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Commands

    async def start(
        self,
        document: SourceDocument,
        tier: Union[str, SummaryTier, None] = None,
    ) -> JobSnapshot:
        """
        Run a new job for ``document`` to a terminal state.

        A job still running is cancelled first and awaited.

        Returns:
            Snapshot of the finished job (DONE, FAILED or CANCELLED)

        Raises:
            DocsumError: VALIDATION for an unknown tier
        """
        tier = parse_tier(tier) if tier is not None else self.default_tier
        await self._stop_running()

        job = PipelineJob(id=self._new_id(), source=document, tier=tier.value)
        with self._lock:
            self._job = job
        return await self._execute(job, full=True)

    def cancel(self, reason: str = "Processing was cancelled") -> bool:
        """Request cancellation of the running job. Safe from any thread."""
        job = self._job
        if job is None or not job.status.is_running:
            return False
        return job.cancellation_token.cancel(reason)

    async def regenerate(self, tier: Union[str, SummaryTier]) -> JobSnapshot:
        """
        Summarize the held text again with ``tier``, skipping validation and
        extraction.

        Raises:
            DocsumError: PRECONDITION if no extracted text is held or the job
                is still running; VALIDATION for an unknown tier
        """
        job = self._job
        if job is None or job.extracted_text is None:
            raise DocsumError(
                ErrorCategory.PRECONDITION,
                "No extracted text available. Process a document first.",
            )
        if job.status.is_running:
            raise DocsumError(ErrorCategory.PRECONDITION, "Cannot regenerate while the job is running.")

        new_tier = parse_tier(tier)
        with self._lock:
            job.tier = new_tier.value
            job.cancellation_token = CancellationToken()
            job.result = None
            job.last_error = None
            job.progress = SANITIZATION_DONE
        return await self._execute(job, full=False)

    async def retry(self) -> JobSnapshot:
        """
        Run the same document again from VALIDATING.

        Raises:
            DocsumError: PRECONDITION unless the job is FAILED or CANCELLED
        """
        job = self._job
        if job is None or job.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise DocsumError(
                ErrorCategory.PRECONDITION,
                "Only a failed or cancelled job can be retried.",
            )

        with self._lock:
            job.cancellation_token = CancellationToken()
            job.progress = 0
            job.extracted_text = None
            job.metadata = {}
            job.result = None
            job.last_error = None
        return await self._execute(job, full=True)

    async def reset(self) -> None:
        """Cancel any running job and forget the current one."""
        await self._stop_running()
        with self._lock:
            self._job = None

    # Execution

    async def _stop_running(self) -> None:
        if not self.is_running:
            return
        self.cancel("Superseded by a new request")
        if self._run_done is not None:
            await self._run_done.wait()

    async def _execute(self, job: PipelineJob, full: bool) -> JobSnapshot:
        done = asyncio.Event()
        self._run_done = done
        try:
            if full:
                await self._validate(job)
                raw_text = await self._extract(job)
                await self._sanitize(job, raw_text)
            await self._summarize(job)
            self._transition(job, JobStatus.DONE, COMPLETE, "Summary ready")
        except asyncio.CancelledError:
            self._finish_cancelled(job)
            raise
        except DocsumError as e:
            if is_cancellation(e):
                self._finish_cancelled(job)
            else:
                self._finish_failed(job, e)
        except Exception as e:
            self._finish_failed(job, DocsumError.from_exception(e))
        finally:
            done.set()
        return JobSnapshot.of(job)

    async def _run_stage(self, job: PipelineJob, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation``; on a stage error let the recovery manager try."""
        job.cancellation_token.raise_if_cancelled()
        try:
            return await operation()
        except DocsumError as e:
            if is_cancellation(e) or self.recovery is None:
                raise
            context = {
                "operation": operation,
                "cancel_token": job.cancellation_token,
                "job_id": job.id,
                "stage": job.status.value,
            }
            return await self.recovery.handle(e, context)

    async def _validate(self, job: PipelineJob) -> None:
        self._transition(job, JobStatus.VALIDATING, 0, "Validating document")

        async def validate() -> None:
            self.validator.validate(job.source)

        await self._run_stage(job, validate)
        self._advance(job, VALIDATION_DONE, "Document validated")

    async def _extract(self, job: PipelineJob) -> str:
        self._transition(job, JobStatus.EXTRACTING, EXTRACTION_START, "Extracting text")
        token = job.cancellation_token

        def on_page(page: int, total_pages: int) -> None:
            if not token.cancelled:
                self._advance(job, extraction_progress(page, total_pages),
                              f"Extracted page {page} of {total_pages}")

        extraction = await self._run_stage(
            job, lambda: self.extractor.extract(job.source, on_page=on_page, cancel_token=token)
        )
        with self._lock:
            job.metadata = dict(extraction.metadata)
        return extraction.text

    async def _sanitize(self, job: PipelineJob, raw_text: str) -> None:
        self._transition(job, JobStatus.SANITIZING, SANITIZATION_START, "Cleaning extracted text")
        token = job.cancellation_token

        cleaned = await self._run_stage(job, lambda: token.guard(self.processor.sanitize(raw_text)))
        if not cleaned:
            raise DocsumError(ErrorCategory.EXTRACTION, "No readable text found in the PDF document")

        with self._lock:
            job.extracted_text = cleaned
        self._advance(job, SANITIZATION_DONE, "Text ready for summarization")

    async def _summarize(self, job: PipelineJob) -> None:
        self._transition(job, JobStatus.SUMMARIZING, SUMMARIZATION_START, f"Generating {job.tier} summary")
        token = job.cancellation_token

        result = await self._run_stage(
            job, lambda: self.summarizer.summarize(job.extracted_text, job.tier, cancel_token=token)
        )
        # A result arriving after cancel() is discarded
        token.raise_if_cancelled()
        with self._lock:
            job.result = result

    # State changes

    def _transition(self, job: PipelineJob, status: JobStatus, progress: int, message: str = "") -> None:
        with self._lock:
            if status not in TRANSITIONS[job.status]:
                raise RuntimeError(f"Invalid job transition {job.status.value} -> {status.value}")
            job.status = status
            job.progress = max(job.progress, progress)
            event = ProgressEvent(job.id, status, job.progress, message)

        if self.logger:
            self.logger.stage_change(job.id, status.value, job.progress)
        self._emit(event)

    def _advance(self, job: PipelineJob, progress: int, message: str = "") -> None:
        with self._lock:
            if progress <= job.progress:
                return
            job.progress = progress
            event = ProgressEvent(job.id, job.status, job.progress, message)
        self._emit(event)

    def _finish_cancelled(self, job: PipelineJob) -> None:
        if job.status.is_terminal:
            return
        with self._lock:
            job.last_error = DocsumError.cancelled(job.cancellation_token.reason or "Processing was cancelled")
        if self.logger:
            self.logger.job_cancelled(job.id, job.status.value)
        self._transition(job, JobStatus.CANCELLED, job.progress, "Processing was cancelled")

    def _finish_failed(self, job: PipelineJob, error: DocsumError) -> None:
        if job.status.is_terminal:
            return
        with self._lock:
            job.last_error = error
        if self.logger:
            self.logger.job_failed(job.id, job.status.value, error.category.value, error.message)
        self._transition(job, JobStatus.FAILED, job.progress, error.user_message)

    def _emit(self, event: ProgressEvent) -> None:
        # A failing listener never affects the job or the other listeners
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                if self.logger:
                    self.logger.listener_error(event.job_id, event.status.value, str(e))
