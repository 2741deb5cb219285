"""JSON output formatter for pipeline results.

Renders a finished job as a single JSON document:

{
    "job": {"id": "...", "document": "report.pdf", "status": "done", "progress": 100, "tier": "MEDIUM"},
    "document": {"title": "...", "page_count": 3, "word_count": 812, ...},
    "summary": {"text": "...", "model": "gpt-4o", "document_type": "Business Report", ...},
    "cost_estimate": {"estimated_cost": 0.0112, "token_count": 1003, ...},
    "error": null
}
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from docsum.models.data_models import JobSnapshot, SummaryResult
from docsum.models.errors import DocsumError


class JSONOutputFormatter:
    """Formats job snapshots as JSON-serializable dictionaries."""

    def format(self, snapshot: JobSnapshot, cost_estimate: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Format a job snapshot.

        Args:
            snapshot: Finished (or in-progress) job
            cost_estimate: Optional output of ``estimate_cost``

        Returns:
            Dictionary with job, document, summary, cost_estimate and error sections
        """
        return {
            "job": self._format_job(snapshot),
            "document": dict(snapshot.metadata),
            "summary": self._format_summary(snapshot.result) if snapshot.result else None,
            "cost_estimate": cost_estimate,
            "error": self._format_error(snapshot.error) if snapshot.error else None,
        }

    def _format_job(self, snapshot: JobSnapshot) -> Dict[str, Any]:
        return {
            "id": snapshot.job_id,
            "document": snapshot.document_name,
            "status": snapshot.status.value,
            "progress": snapshot.progress,
            "tier": snapshot.tier,
        }

    def _format_summary(self, result: SummaryResult) -> Dict[str, Any]:
        return {
            "text": result.summary,
            "tier": result.tier,
            "model": result.model,
            "document_type": result.document_type,
            "confidence": round(result.confidence, 2),
            "word_count": result.word_count,
            "usage": result.usage,
            "is_demo": result.is_demo,
            "generated_at": result.generated_at,
            "config": result.config,
        }

    def _format_error(self, error: DocsumError) -> Dict[str, Any]:
        return {
            "category": error.category.value,
            "message": error.message,
            "user_message": error.user_message,
            "status_code": error.status_code,
            "timestamp": error.timestamp,
        }

    def save(
        self,
        snapshot: JobSnapshot,
        path: str = "out/summary.json",
        cost_estimate: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Save formatted snapshot to JSON file.

        Creates parent directories if they don't exist. Uses 2-space
        indentation for readability.
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        formatted_data = self.format(snapshot, cost_estimate)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(formatted_data, f, indent=2, ensure_ascii=False, default=str)
