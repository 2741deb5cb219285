"""Summarization through an OpenAI-style chat-completion endpoint."""

from typing import Any, Dict, Optional, Union

from docsum.client.resilient_client import ResilientClient
from docsum.models.cancellation import CancellationToken
from docsum.models.config import PipelineConfig
from docsum.models.data_models import SummaryResult
from docsum.models.errors import DocsumError, ErrorCategory
from docsum.processor.processor import TextProcessor
from docsum.processor.sanitizer import preprocess_document_text
from docsum.summarizer.analysis import detect_document_type
from docsum.summarizer.demo import generate_demo_summary
from docsum.summarizer.tiers import SYSTEM_PROMPTS, TIER_CONFIGS, SummaryTier, parse_tier, select_model

NO_SUMMARY = "No summary generated"
RATE_IDENTITY = "summarization"


class SummarizationService:
    """
    Builds chat-completion requests per tier and sends them through the
    resilient client.

    Without an API key every call is answered by the offline demo generator,
    which touches neither the network nor any client state.
    """

    def __init__(
        self,
        client: ResilientClient,
        config: Optional[PipelineConfig] = None,
        processor: Optional[TextProcessor] = None,
        logger=None,
    ):
        """
        Initialize service.

        Args:
            client: Resilient client used for every network call
            config: Pipeline configuration (credential, endpoint, models)
            processor: Optional worker pool for text preprocessing
            logger: Optional structured logger
        """
        self.client = client
        self.config = config or PipelineConfig()
        self.processor = processor
        self.logger = logger

    @property
    def demo_mode(self) -> bool:
        return self.config.demo_mode

    def build_request(self, text: str, tier: SummaryTier) -> Dict[str, Any]:
        """Chat-completion body for already preprocessed ``text``."""
        tier_config = TIER_CONFIGS[tier]
        return {
            "model": select_model(
                len(text),
                tier,
                self.config.economy_model,
                self.config.capable_model,
                self.config.model_threshold_chars,
            ),
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPTS[tier]},
                {"role": "user", "content": f"Please summarize the following document:\n\n{text}"},
            ],
            "max_tokens": tier_config.max_tokens,
            "temperature": tier_config.temperature,
            "top_p": self.config.top_p,
        }

    def build_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    @staticmethod
    def parse_response(body: Any) -> Dict[str, Any]:
        """
        Pull summary text and usage out of a chat-completion response.

        Raises:
            DocsumError: PROTOCOL if the body is not a JSON object
        """
        if not isinstance(body, dict):
            raise DocsumError(ErrorCategory.PROTOCOL, "Chat completion response is not a JSON object")

        summary = None
        choices = body.get("choices") or []
        if choices and isinstance(choices[0], dict):
            summary = (choices[0].get("message") or {}).get("content")

        return {
            "summary": summary or NO_SUMMARY,
            "usage": body.get("usage") or {},
            "model": body.get("model"),
        }

    async def _preprocess(self, text: str) -> str:
        if self.processor is not None:
            return await self.processor.preprocess(text)
        return preprocess_document_text(text)

    async def summarize(
        self,
        text: str,
        tier: Union[str, SummaryTier] = SummaryTier.MEDIUM,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SummaryResult:
        """
        Summarize ``text`` at ``tier``.

        Args:
            text: Sanitized document text
            tier: Summary tier (name or enum)
            cancel_token: Checked before the call and raced against it

        Returns:
            SummaryResult (``is_demo`` when no credential is configured)

        Raises:
            DocsumError: VALIDATION for unknown tiers, CANCELLED, or whatever
                the resilient client surfaces
        """
        tier = parse_tier(tier)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if self.demo_mode:
            return generate_demo_summary(text, tier)

        document_type = detect_document_type(text)
        processed = await self._preprocess(text)
        body = self.build_request(processed, tier)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        response = await self.client.post_json(
            self.config.api_url,
            body,
            headers=self.build_headers(),
            identity=RATE_IDENTITY,
            cacheable=self.config.cache_summaries,
            cancel_token=cancel_token,
        )
        parsed = self.parse_response(response.body)
        summary = parsed["summary"]

        if self.logger:
            self.logger.log(
                "summary_generated",
                tier=tier.value,
                model=body["model"],
                from_cache=response.from_cache,
                word_count=len(summary.split()),
            )

        return SummaryResult(
            summary=summary,
            tier=tier.value,
            model=body["model"],
            document_type=document_type.type,
            confidence=document_type.confidence,
            word_count=len(summary.split()),
            usage=parsed["usage"],
            is_demo=False,
            config=TIER_CONFIGS[tier].to_dict(),
        )
