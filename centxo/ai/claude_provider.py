"""Centxo — Anthropic Claude Provider."""

import base64
from typing import List, Optional

from anthropic import AsyncAnthropic

from centxo.ai.base_provider import AIProvider, build_prompt, parse_insights
from centxo.config import settings
from centxo.core.logging import get_logger
from centxo.models.domain import AdInsights, StructureCounts

logger = get_logger("ai.claude")

VISION_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class ClaudeProvider(AIProvider):
    """Anthropic Claude provider; sees the image itself."""

    name = "claude"

    def __init__(self, client: AsyncAnthropic | None = None):
        if client is not None:
            self.client = client
        else:
            self.client = (
                AsyncAnthropic(api_key=settings.anthropic_api_key)
                if settings.anthropic_api_key
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
            raise RuntimeError("Claude provider not configured")

        content: list = []
        if image_bytes and mime_type in VISION_MIME_TYPES:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": mime_type,
                        "data": base64.b64encode(image_bytes).decode("ascii"),
                    },
                }
            )
        content.append(
            {"type": "text", "text": build_prompt(counts, product_context, past_interests)}
        )

        try:
            response = await self.client.messages.create(
                model="claude-sonnet-4-20250514",
                max_tokens=2000,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            logger.error(f"Claude analysis failed: {e}")
            raise

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return parse_insights(text)
