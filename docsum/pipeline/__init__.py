"""Processing pipeline, composition root and CLI."""

from .orchestrator import PipelineOrchestrator
from .output import JSONOutputFormatter
from .processing_pipeline import ProcessingPipeline

__all__ = ["JSONOutputFormatter", "PipelineOrchestrator", "ProcessingPipeline"]
