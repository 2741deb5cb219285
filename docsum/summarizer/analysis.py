"""Keyword-based document classification and cost estimation."""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict

from docsum.summarizer.tiers import TIER_CONFIGS, SummaryTier, select_model

GENERAL_DOCUMENT = "General Document"

# Checked in order; the first family with the highest hit count wins
DOCUMENT_TYPE_PATTERNS = [
    ("Academic Paper", re.compile(r"abstract|introduction|methodology|conclusion|references|bibliography")),
    ("Business Report", re.compile(r"executive summary|quarterly|annual|revenue|profit|loss|financial")),
    ("Legal Document", re.compile(r"whereas|hereby|agreement|contract|terms|conditions|legal")),
    ("Technical Manual", re.compile(r"installation|configuration|troubleshooting|specifications|manual")),
    ("Research Document", re.compile(r"hypothesis|experiment|data|analysis|findings|research")),
    ("Policy Document", re.compile(r"policy|procedure|guidelines|standards|compliance")),
    ("Marketing Material", re.compile(r"product|service|benefits|features|pricing|marketing")),
    ("Medical Document", re.compile(r"patient|diagnosis|treatment|medical|clinical|health")),
    ("Financial Document", re.compile(r"financial|budget|investment|accounting|audit|tax")),
    ("Educational Material", re.compile(r"course|lesson|curriculum|learning|education|training")),
]

# USD per 1K tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
}

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class DocumentType:
    type: str
    confidence: float  # Range 0.0-1.0
    indicators: int


def detect_document_type(text: str) -> DocumentType:
    """Classify ``text`` by counting keyword hits per document family."""
    lower_text = (text or "").lower()

    best_match = GENERAL_DOCUMENT
    highest_score = 0
    for doc_type, pattern in DOCUMENT_TYPE_PATTERNS:
        matches = len(pattern.findall(lower_text))
        if matches > highest_score:
            highest_score = matches
            best_match = doc_type

    return DocumentType(
        type=best_match,
        confidence=min(highest_score / 5, 1.0),
        indicators=highest_score,
    )


def estimate_cost(
    text: str,
    tier: SummaryTier = SummaryTier.MEDIUM,
    economy_model: str = "gpt-4o-mini",
    capable_model: str = "gpt-4o",
    threshold_chars: int = 15000,
) -> Dict[str, Any]:
    """
    Approximate the cost of summarizing ``text`` at ``tier``.

    Input tokens are estimated at four characters per token; output tokens at
    the tier's ``max_tokens``.
    """
    if not text:
        return {"estimated_cost": 0.0, "token_count": 0, "model": "none"}

    config = TIER_CONFIGS[tier]
    input_tokens = math.ceil(len(text) / CHARS_PER_TOKEN)
    output_tokens = config.max_tokens
    model = select_model(len(text), tier, economy_model, capable_model, threshold_chars)
    pricing = MODEL_PRICING.get(model, MODEL_PRICING["gpt-4o"])

    input_cost = input_tokens / 1000 * pricing["input"]
    output_cost = output_tokens / 1000 * pricing["output"]

    return {
        "estimated_cost": round(input_cost + output_cost, 4),
        "token_count": input_tokens + output_tokens,
        "model": model,
        "tier": tier.value,
        "breakdown": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "input_cost": round(input_cost, 4),
            "output_cost": round(output_cost, 4),
        },
    }
