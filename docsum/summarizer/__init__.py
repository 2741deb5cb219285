"""Tiered document summarization."""

from .analysis import detect_document_type, estimate_cost
from .demo import generate_demo_summary
from .service import SummarizationService
from .tiers import TIER_CONFIGS, SummaryTier, TierConfig, parse_tier, select_model

__all__ = [
    "SummarizationService",
    "SummaryTier",
    "TIER_CONFIGS",
    "TierConfig",
    "detect_document_type",
    "estimate_cost",
    "generate_demo_summary",
    "parse_tier",
    "select_model",
]
