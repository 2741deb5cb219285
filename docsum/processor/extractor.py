"""Page-by-page text extraction with progress reporting and cancellation."""

import asyncio
from concurrent.futures import Executor
from typing import Any, Callable, Dict, List, Optional, Protocol

from docsum.models.cancellation import CancellationToken
from docsum.models.data_models import ExtractionResult, SourceDocument
from docsum.models.errors import DocsumError, ErrorCategory
from docsum.processor.sanitizer import word_count

PageProgress = Callable[[int, int], None]

METADATA_KEYS = {
    "title": "title",
    "author": "author",
    "subject": "subject",
    "creator": "creator",
    "producer": "producer",
    "creation_date": "creationDate",
    "modification_date": "modDate",
}


class TextExtractor(Protocol):
    """Extraction capability consumed by the processing pipeline."""

    async def extract(
        self,
        document: SourceDocument,
        on_page: Optional[PageProgress] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExtractionResult:
        """
        Extract text page by page.

        Must call ``on_page(page, total_pages)`` after each page and raise a
        CANCELLED DocsumError when the token fires between pages.
        """
        ...


def build_metadata(raw: Optional[Dict[str, Any]], page_count: int, text: str) -> Dict[str, Any]:
    raw = raw or {}
    metadata: Dict[str, Any] = {key: raw.get(source) or "" for key, source in METADATA_KEYS.items()}
    metadata["creation_date"] = metadata["creation_date"] or None
    metadata["modification_date"] = metadata["modification_date"] or None
    metadata.update({
        "page_count": page_count,
        "text_length": len(text),
        "word_count": word_count(text),
    })
    return metadata


class PdfTextExtractor:
    """
    PDF extractor using PyMuPDF (fitz).

    Page text is pulled in a worker thread so the event loop stays responsive;
    the cancellation token is checked before every page. Requires the
    'pymupdf' package.
    """

    def __init__(
        self,
        max_pages: int = 500,
        max_text_length: int = 1_000_000,
        executor: Optional[Executor] = None,
        logger=None,
    ):
        """
        Initialize extractor.

        Args:
            max_pages: Documents with more pages are rejected
            max_text_length: Extraction stops once this many characters are held
            executor: Worker pool for page parsing (default: loop default executor)
            logger: Optional structured logger
        """
        self.max_pages = max_pages
        self.max_text_length = max_text_length
        self.executor = executor
        self.logger = logger

    @staticmethod
    def _open_document(content: bytes) -> Any:
        try:
            import fitz  # PyMuPDF
        except ImportError as e:
            raise ImportError(
                "pymupdf package required for PDF extraction: pip install pymupdf"
            ) from e
        return fitz.open(stream=content, filetype="pdf")

    @staticmethod
    def _page_text(doc: Any, index: int) -> str:
        return doc[index].get_text("text").strip()

    async def extract(
        self,
        document: SourceDocument,
        on_page: Optional[PageProgress] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExtractionResult:
        """
        Extract text and metadata from a PDF document.

        Raises:
            DocsumError: EXTRACTION for unreadable documents, too many pages or
                no text; CANCELLED when the token fires
        """
        loop = asyncio.get_running_loop()

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            doc = await loop.run_in_executor(self.executor, self._open_document, document.content)
        except ImportError:
            raise
        except Exception as e:
            raise DocsumError(ErrorCategory.EXTRACTION, f"Failed to extract text from PDF: {e}") from e

        try:
            total_pages = doc.page_count
            if total_pages > self.max_pages:
                raise DocsumError(
                    ErrorCategory.EXTRACTION,
                    f"Document has too many pages ({total_pages}). Maximum allowed: {self.max_pages}",
                    context={"page_count": total_pages},
                )

            parts: List[str] = []
            length = 0
            for index in range(total_pages):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                try:
                    page_text = await loop.run_in_executor(self.executor, self._page_text, doc, index)
                except Exception as e:
                    # One unreadable page does not fail the document
                    if self.logger:
                        self.logger.log("page_extraction_failed", level="warning",
                                        page=index + 1, error=str(e))
                    page_text = ""

                if page_text:
                    parts.append(page_text)
                    length += len(page_text) + 2

                if on_page is not None:
                    on_page(index + 1, total_pages)

                if length > self.max_text_length:
                    if self.logger:
                        self.logger.log("extraction_truncated", level="warning", page=index + 1)
                    break

            text = "\n\n".join(parts).strip()
            if not text:
                raise DocsumError(ErrorCategory.EXTRACTION, "No readable text found in the PDF document")

            return ExtractionResult(
                text=text,
                page_count=total_pages,
                metadata=build_metadata(doc.metadata, total_pages, text),
            )
        finally:
            doc.close()
