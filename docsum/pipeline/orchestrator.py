"""Composition root wiring the shared request layer into processing pipelines."""

import asyncio
from typing import Any, Callable, Optional, Union

import httpx

from docsum.client.cache_store import CacheStore
from docsum.client.circuit_breaker import CircuitBreaker
from docsum.client.deduplicator import RequestDeduplicator
from docsum.client.http_client import AsyncHTTPClient
from docsum.client.rate_limiter import RateLimiter
from docsum.client.resilient_client import ResilientClient
from docsum.client.retry_handler import RetryHandler
from docsum.models.config import PipelineConfig
from docsum.models.data_models import JobSnapshot, SourceDocument
from docsum.models.errors import DocsumError, ErrorCategory
from docsum.monitoring.error_recovery import ErrorRecoveryManager, escalating_retry
from docsum.monitoring.logger import StructuredLogger
from docsum.pipeline.processing_pipeline import ProcessingPipeline, ProgressListener
from docsum.processor.extractor import PdfTextExtractor, TextExtractor
from docsum.processor.processor import TextProcessor
from docsum.processor.validator import DocumentValidator
from docsum.summarizer.service import SummarizationService
from docsum.summarizer.tiers import SummaryTier

RECOVERABLE_CATEGORIES = (
    ErrorCategory.SERVER,
    ErrorCategory.TIMEOUT,
    ErrorCategory.CONNECTION,
    ErrorCategory.RATE_LIMITED,
    ErrorCategory.BREAKER_OPEN,
)


class PipelineOrchestrator:
    """
    Owns the process-wide request layer and hands it to every pipeline.

    Cache, rate limiter, circuit breaker and deduplicator are created once per
    orchestrator and shared by all pipelines it creates. Use as an async
    context manager so the HTTP client and cache sweeper are started and
    stopped with it.
    """

    def __init__(
        self,
        config: PipelineConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        extractor: Optional[TextExtractor] = None,
        sleeper: Callable[[float], Any] = asyncio.sleep,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Initialize orchestrator with pipeline configuration.

        Args:
            config: Pipeline configuration object
            transport: Optional httpx transport (mock or ASGI app in tests)
            extractor: Optional text extractor replacing the PyMuPDF one
            sleeper: Async sleep used by limiter, retry and recovery waits
            logger: Optional logger (default: built from config)
        """
        self.config = config
        self.logger = logger or StructuredLogger(
            level=config.log_level,
            structured=config.structured_logging,
        )

        self.cache = CacheStore(
            default_ttl=config.cache_ttl,
            sweep_interval=config.cache_sweep_interval,
            logger=self.logger,
        ) if config.cache_enabled else None
        self.rate_limiter = RateLimiter(
            quota=config.rate_limit_quota,
            window_seconds=config.rate_limit_window,
            max_wait_attempts=config.rate_limit_max_waits,
            sleeper=sleeper,
            logger=self.logger,
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=config.circuit_breaker_failure_threshold,
            reset_timeout=config.circuit_breaker_reset_timeout,
            required_probe_successes=config.circuit_breaker_probe_successes,
            failure_decay=config.circuit_breaker_failure_decay,
            monitoring_window=config.circuit_breaker_monitoring_window,
            logger=self.logger,
        )
        self.deduplicator = RequestDeduplicator(logger=self.logger)
        self.retry_handler = RetryHandler(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            jitter_max=config.retry_jitter_max,
            sleeper=sleeper,
            logger=self.logger,
        )
        self.http_client = AsyncHTTPClient(
            connect_timeout=config.connect_timeout,
            read_timeout=config.request_timeout,
            transport=transport,
        )
        self.client = ResilientClient(
            self.http_client,
            cache=self.cache,
            rate_limiter=self.rate_limiter,
            circuit_breaker=self.circuit_breaker,
            deduplicator=self.deduplicator,
            retry_handler=self.retry_handler,
            request_timeout=config.request_timeout,
            cache_ttl=config.cache_ttl,
            logger=self.logger,
        )

        self.processor = TextProcessor(worker_pool_size=config.worker_pool_size, logger=self.logger)
        self.validator = DocumentValidator(
            max_file_size=config.max_file_size,
            min_file_size=config.min_file_size,
        )
        self.extractor = extractor or PdfTextExtractor(
            max_pages=config.max_pages,
            max_text_length=config.max_text_length,
            executor=self.processor.executor,
            logger=self.logger,
        )
        self.summarizer = SummarizationService(
            self.client,
            config=config,
            processor=self.processor,
            logger=self.logger,
        )

        self.recovery = ErrorRecoveryManager(
            max_history=config.error_history_size,
            pattern_window=config.pattern_window,
            logger=self.logger,
        )
        if config.recovery_enabled:
            strategy = escalating_retry(
                base_delay=config.recovery_base_delay,
                max_delay=config.recovery_max_delay,
                sleeper=sleeper,
                logger=self.logger,
            )
            for category in RECOVERABLE_CATEGORIES:
                self.recovery.register_strategy(category, strategy)

    async def __aenter__(self):
        await self.client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.__aexit__(exc_type, exc_val, exc_tb)
        self.processor.close()

    def create_pipeline(self) -> ProcessingPipeline:
        """New pipeline sharing this orchestrator's services."""
        return ProcessingPipeline(
            validator=self.validator,
            extractor=self.extractor,
            processor=self.processor,
            summarizer=self.summarizer,
            recovery=self.recovery,
            default_tier=self.config.default_tier,
            logger=self.logger,
        )

    async def run(
        self,
        document: SourceDocument,
        tier: Union[str, SummaryTier, None] = None,
        listener: Optional[ProgressListener] = None,
        pipeline: Optional[ProcessingPipeline] = None,
    ) -> JobSnapshot:
        """
        Process one document to a terminal state.

        Enforces total_timeout constraint from configuration.

        Args:
            document: Source document
            tier: Summary tier (default: config.default_tier)
            listener: Optional progress listener
            pipeline: Pipeline to run on (default: a new one)

        Returns:
            Snapshot of the finished job

        Raises:
            DocsumError: TIMEOUT if the run exceeds total_timeout
        """
        pipeline = pipeline or self.create_pipeline()
        unsubscribe = pipeline.subscribe(listener) if listener else None

        self.logger.log("pipeline_start", document=document.name, size=document.size,
                        demo_mode=self.config.demo_mode)
        try:
            return await asyncio.wait_for(
                pipeline.start(document, tier),
                timeout=self.config.total_timeout,
            )
        except asyncio.TimeoutError as e:
            self.logger.pipeline_timeout(self.config.total_timeout)
            raise DocsumError(
                ErrorCategory.TIMEOUT,
                f"Processing exceeded {self.config.total_timeout}s",
            ) from e
        finally:
            if unsubscribe:
                unsubscribe()
