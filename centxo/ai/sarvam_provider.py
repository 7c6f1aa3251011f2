"""Centxo — Sarvam AI Provider."""

from typing import List, Optional

from sarvamai import AsyncSarvamAI

from centxo.ai.base_provider import AIProvider, build_prompt, parse_insights
from centxo.config import settings
from centxo.core.logging import get_logger
from centxo.models.domain import AdInsights, StructureCounts

logger = get_logger("ai.sarvam")

SYSTEM_PROMPT = """You write Facebook Messenger ads. You cannot see the media,
so rely on the product information and prior interests you are given.
Answer with a single JSON object only."""


class SarvamProvider(AIProvider):
    """Sarvam AI provider (model: sarvam-m). Text only; the image is ignored."""

    name = "sarvam"

    def __init__(self, client: AsyncSarvamAI | None = None):
        if client is not None:
            self.client = client
        else:
            self.client = (
                AsyncSarvamAI(api_subscription_key=settings.sarvam_api_key)
                if settings.sarvam_api_key
                else None
            )

    def is_available(self) -> bool:
        return self.client is not None

    async def analyze_media(
        self,
        image_bytes: Optional[bytes],
        mime_type: Optional[str],
        counts: StructureCounts,
        product_context: Optional[str] = None,
        past_interests: Optional[List[str]] = None,
    ) -> AdInsights:
        if not self.is_available():
            raise RuntimeError("Sarvam provider not configured")

        try:
            response = await self.client.chat.completions(
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": build_prompt(counts, product_context, past_interests),
                    },
                ],
                temperature=0.7,
                max_tokens=2000,
            )
        except Exception as e:
            logger.error(f"Sarvam analysis failed: {e}")
            raise
        return parse_insights(response.choices[0].message.content or "")
