"""Deterministic offline summaries used when no API credential is configured."""

from typing import Dict

from docsum.models.data_models import SummaryResult
from docsum.summarizer.analysis import detect_document_type
from docsum.summarizer.tiers import TIER_CONFIGS, SummaryTier

DEMO_MODEL = "demo-mode"

DEMO_TEMPLATES: Dict[SummaryTier, str] = {
    SummaryTier.SHORT: (
        "This document appears to be a {kind} containing key information and analysis. "
        "The main focus centers on presenting important concepts and findings in a structured format. "
        "Overall, the document provides valuable insights and serves as a comprehensive resource "
        "for its intended audience."
    ),
    SummaryTier.MEDIUM: "\n\n".join([
        "This document is classified as a {kind} that presents detailed information across multiple "
        "sections. The content is well-organized and covers various aspects of the subject matter "
        "with supporting details and analysis.",
        "The document begins with foundational concepts and progresses through more complex topics, "
        "providing readers with a logical flow of information. Key findings and recommendations are "
        "highlighted throughout, making it easy to identify the most important points.",
        "The structure includes multiple sections that build upon each other, creating a "
        "comprehensive overview of the topic. Supporting data and examples are provided to reinforce "
        "the main arguments and conclusions presented in the document.",
    ]),
    SummaryTier.LONG: "\n\n".join([
        "This comprehensive document has been identified as a {kind} that provides extensive "
        "coverage of its subject matter through multiple detailed sections and thorough analysis.",
        "The document opens with introductory material that establishes the context and scope of "
        "the content. This foundation allows readers to understand the purpose and objectives before "
        "diving into more complex topics and detailed analysis.",
        "Throughout the middle sections, the document presents core concepts with supporting "
        "evidence, data, and examples. The information is structured logically, with each section "
        "building upon previous content to create a cohesive narrative that guides readers through "
        "the material systematically.",
        "Key findings and insights are distributed throughout the document, with particular emphasis "
        "on practical applications and real-world implications. The analysis demonstrates depth and "
        "consideration of multiple perspectives on the topics discussed.",
        "The document includes detailed explanations of methodologies, processes, or frameworks "
        "relevant to the subject matter. These technical aspects are presented in an accessible "
        "manner while maintaining the necessary level of detail for professional use.",
        "Supporting materials such as data tables, charts, or reference materials enhance the main "
        "content and provide additional context for readers seeking deeper understanding of "
        "specific points.",
        "The concluding sections synthesize the information presented earlier, drawing connections "
        "between different concepts and highlighting the most significant takeaways. Recommendations "
        "for future action or consideration are provided where appropriate.",
        "Overall, this document serves as a comprehensive resource that balances thoroughness with "
        "accessibility, making it valuable for both general readers and subject matter experts "
        "seeking detailed information on the topic.",
    ]),
}


def generate_demo_summary(text: str, tier: SummaryTier) -> SummaryResult:
    """Same output shape as a real summary, flagged ``is_demo``. No I/O."""
    document_type = detect_document_type(text)
    summary = DEMO_TEMPLATES[tier].format(kind=document_type.type.lower())

    return SummaryResult(
        summary=summary,
        tier=tier.value,
        model=DEMO_MODEL,
        document_type=document_type.type,
        confidence=document_type.confidence,
        word_count=len(summary.split()),
        is_demo=True,
        config=TIER_CONFIGS[tier].to_dict(),
    )
