"""Text processor with ThreadPoolExecutor for CPU-bound clean-up."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from docsum.processor.sanitizer import preprocess_document_text, sanitize_extracted_text


class TextProcessor:
    """
    Runs sanitization and preprocessing in worker threads.

    Large documents make the regex passes CPU-bound, so they are kept off the
    event loop. The same pool is shared with the PDF extractor.
    """

    def __init__(self, worker_pool_size: int = 4, logger=None):
        """
        Initialize processor.

        Args:
            worker_pool_size: Number of worker threads
            logger: Optional structured logger
        """
        self.worker_pool_size = worker_pool_size
        self.logger = logger
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.worker_pool_size,
                thread_name_prefix="docsum-worker",
            )
        return self._executor

    async def sanitize(self, text: str) -> str:
        """Sanitize extracted text in the worker pool."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        cleaned = await loop.run_in_executor(self.executor, sanitize_extracted_text, text)

        if self.logger:
            self.logger.log(
                "text_sanitized",
                level="debug",
                chars_in=len(text),
                chars_out=len(cleaned),
                elapsed_ms=round((loop.time() - start) * 1000, 1),
            )
        return cleaned

    async def preprocess(self, text: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, preprocess_document_text, text)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
