"""Summary tiers: generation parameters, system prompts and model selection."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Union

from docsum.models.errors import DocsumError, ErrorCategory


class SummaryTier(str, Enum):
    """Named length/quality setting for a summary."""
    SHORT = "SHORT"
    MEDIUM = "MEDIUM"
    LONG = "LONG"


@dataclass(frozen=True)
class TierConfig:
    name: str
    description: str
    max_tokens: int
    temperature: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


TIER_CONFIGS: Dict[SummaryTier, TierConfig] = {
    SummaryTier.SHORT: TierConfig("Short", "Brief overview (2-3 paragraphs)", 300, 0.3),
    SummaryTier.MEDIUM: TierConfig("Medium", "Detailed summary (4-6 paragraphs)", 800, 0.2),
    SummaryTier.LONG: TierConfig("Long", "Comprehensive analysis (8+ paragraphs)", 1500, 0.1),
}

_FORMAT_NOTE = "Format your response as clean, readable text without special formatting."

SYSTEM_PROMPTS: Dict[SummaryTier, str] = {
    SummaryTier.SHORT: "\n".join([
        "You are an expert document analyst. Create a concise summary of the provided document.",
        "",
        "Requirements:",
        "- Write 2-3 well-structured paragraphs",
        "- Focus on the main purpose, key points, and conclusions",
        "- Use clear, professional language",
        "- Highlight the most important information",
        "- Keep it brief but informative",
        "",
        _FORMAT_NOTE,
    ]),
    SummaryTier.MEDIUM: "\n".join([
        "You are an expert document analyst. Create a detailed summary of the provided document.",
        "",
        "Requirements:",
        "- Write 4-6 well-structured paragraphs",
        "- Include main topics, key details, and supporting information",
        "- Organize content logically with smooth transitions",
        "- Provide context and background where relevant",
        "- Include important data, findings, or recommendations",
        "- Use professional, accessible language",
        "",
        _FORMAT_NOTE,
    ]),
    SummaryTier.LONG: "\n".join([
        "You are an expert document analyst. Create a comprehensive analysis of the provided document.",
        "",
        "Requirements:",
        "- Write 8+ well-structured paragraphs",
        "- Provide thorough coverage of all major topics and sections",
        "- Include detailed analysis of key points, data, and findings",
        "- Discuss methodology, context, and implications where applicable",
        "- Cover supporting details, examples, and evidence",
        "- Analyze relationships between different sections",
        "- Include conclusions, recommendations, and next steps if present",
        "- Maintain logical flow and organization throughout",
        "",
        _FORMAT_NOTE,
    ]),
}


def parse_tier(value: Union[str, SummaryTier]) -> SummaryTier:
    """
    Resolve a tier name (case-insensitive).

    Raises:
        DocsumError: VALIDATION for unknown names
    """
    if isinstance(value, SummaryTier):
        return value
    try:
        return SummaryTier(str(value).strip().upper())
    except ValueError:
        raise DocsumError(
            ErrorCategory.VALIDATION,
            f"Invalid summary length: {value}",
            field="tier",
        ) from None


def select_model(
    text_length: int,
    tier: SummaryTier,
    economy_model: str = "gpt-4o-mini",
    capable_model: str = "gpt-4o",
    threshold_chars: int = 15000,
) -> str:
    """Capable model for long texts or MEDIUM/LONG tiers, economy model otherwise."""
    if text_length > threshold_chars or tier in (SummaryTier.MEDIUM, SummaryTier.LONG):
        return capable_model
    return economy_model
