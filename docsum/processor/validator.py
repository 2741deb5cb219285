"""Upload validation for source documents."""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from docsum.models.data_models import SourceDocument
from docsum.models.errors import DocsumError, ErrorCategory

ALLOWED_CONTENT_TYPES = ("application/pdf",)
PDF_SIGNATURE = b"%PDF"

SUSPICIOUS_NAME_PATTERNS = [
    re.compile(rf"\.{ext}$", re.IGNORECASE)
    for ext in ("exe", "scr", "bat", "cmd", "com", "pif", "vbs", "js", "jar", "php", "asp", "jsp")
]


@dataclass
class ValidationReport:
    """Non-raising validation outcome, used for pre-flight checks."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class DocumentValidator:
    """
    Validates a document before any extraction work starts.

    Checks, in order: content type, size bounds, ``%PDF`` signature and
    executable-looking file names.
    """

    def __init__(self, max_file_size: int = 10 * 1024 * 1024, min_file_size: int = 1024):
        self.max_file_size = max_file_size
        self.min_file_size = min_file_size

    def _failure(self, document: Optional[SourceDocument]) -> Optional[DocsumError]:
        if document is None:
            return DocsumError(ErrorCategory.VALIDATION, "No file provided")

        if document.content_type not in ALLOWED_CONTENT_TYPES:
            return DocsumError(ErrorCategory.VALIDATION, "File must be a PDF document", field="file_type")

        if document.size > self.max_file_size:
            limit_mb = self.max_file_size / 1024 / 1024
            return DocsumError(
                ErrorCategory.VALIDATION,
                f"File size must be less than {limit_mb:g}MB",
                field="file_size",
            )

        if document.size < self.min_file_size:
            return DocsumError(
                ErrorCategory.VALIDATION,
                "File appears to be empty or corrupted",
                field="file_size",
            )

        if not document.content.startswith(PDF_SIGNATURE):
            return DocsumError(
                ErrorCategory.VALIDATION,
                "File does not appear to be a valid PDF",
                field="file_format",
            )

        if any(pattern.search(document.name) for pattern in SUSPICIOUS_NAME_PATTERNS):
            return DocsumError(ErrorCategory.VALIDATION, "Suspicious file name detected", field="file_name")

        return None

    def validate(self, document: Optional[SourceDocument]) -> None:
        """
        Raise on the first failed check.

        Raises:
            DocsumError: VALIDATION, with ``field`` naming the failed check
        """
        error = self._failure(document)
        if error is not None:
            raise error

    def inspect(self, document: Optional[SourceDocument]) -> ValidationReport:
        """Report the validation outcome plus warnings without raising."""
        report = ValidationReport()
        error = self._failure(document)
        if error is not None:
            report.is_valid = False
            report.errors.append(error.message)
        if document is not None and document.name.count(".") > 1:
            report.warnings.append(
                "File has multiple extensions. Please verify this is a legitimate PDF file."
            )
        return report
