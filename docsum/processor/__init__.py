"""Document validation, extraction and text clean-up."""

from .extractor import PdfTextExtractor, TextExtractor
from .processor import TextProcessor
from .sanitizer import preprocess_document_text, sanitize_extracted_text
from .validator import DocumentValidator

__all__ = [
    "DocumentValidator",
    "PdfTextExtractor",
    "TextExtractor",
    "TextProcessor",
    "preprocess_document_text",
    "sanitize_extracted_text",
]
