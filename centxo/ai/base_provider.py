"""Centxo — Abstract AI Provider."""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from centxo.models.domain import (
    AdInsights,
    CopyVariant,
    IceBreaker,
    StructureCounts,
    TargetingGroup,
)

ANALYSIS_PROMPT = """You are an expert visual analyst and Facebook Messenger ads copywriter.

Identify the product shown and write ads that make people start a chat.

RULES:
1. If the user provided product information, it is the definitive product type.
   Trust it over what the media appears to show.
2. Copy must comply with Facebook advertising policy: no guarantees, no
   "100%", no medical claims. Frame sensitive products indirectly.
3. Interests must be real Facebook interest names in English.
4. Return at least {ad_sets} interest groups and at least {variations}
   distinct copy variations.
5. Return 3-4 ice breakers (customer question + short internal payload) and
   a one-line greeting shown when someone taps Send Message.

Respond with ONE JSON object and nothing else, using these keys:
primaryText, headline, ctaMessage, interests[], ageMin, ageMax,
productCategory, confidence (0-1), interestGroups[{{name, interests[]}}],
adCopyVariations[{{primaryText, headline}}], iceBreakers[{{question, payload}}],
greeting
"""


def build_prompt(
    counts: StructureCounts,
    product_context: Optional[str] = None,
    past_interests: Optional[List[str]] = None,
) -> str:
    """Instructions shared by every provider."""
    variations = max(counts.ad_sets, counts.ads)
    parts = [ANALYSIS_PROMPT.format(ad_sets=counts.ad_sets, variations=variations)]
    if product_context:
        parts.append(f'Product information from the user: "{product_context}"')
    else:
        parts.append("No product information given. Read all text in the media and infer the product.")
    if past_interests:
        parts.append(
            "Interests that worked for this advertiser before (reuse where relevant): "
            + ", ".join(past_interests)
        )
    return "\n\n".join(parts)


_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def parse_insights(text: str) -> AdInsights:
    """Pull the JSON object out of a model reply. Raises ValueError if there is none."""
    match = _JSON_BLOCK.search(text or "")
    if not match:
        raise ValueError("AI response contained no JSON object")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("AI response JSON is not an object")
    return insights_from_payload(data)


def _str_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v).strip() for v in value if isinstance(v, (str, int)) and str(v).strip()]


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def insights_from_payload(data: Dict[str, Any]) -> AdInsights:
    """Lenient mapping: malformed entries are dropped rather than rejected."""
    groups = [
        TargetingGroup(name=str(g.get("name") or ""), interests=_str_list(g.get("interests")) or [])
        for g in data.get("interestGroups") or []
        if isinstance(g, dict)
    ]
    variants = [
        CopyVariant(
            primary_text=str(v.get("primaryText") or ""),
            headline=str(v.get("headline") or ""),
        )
        for v in data.get("adCopyVariations") or []
        if isinstance(v, dict)
    ]
    breakers = [
        IceBreaker(question=str(b.get("question") or ""), payload=str(b.get("payload") or ""))
        for b in data.get("iceBreakers") or []
        if isinstance(b, dict) and b.get("question")
    ]
    confidence = data.get("confidence")
    return AdInsights(
        primary_text=data.get("primaryText") or None,
        headline=data.get("headline") or None,
        cta_message=data.get("ctaMessage") or None,
        interests=_str_list(data.get("interests")),
        age_min=_int_or_none(data.get("ageMin")),
        age_max=_int_or_none(data.get("ageMax")),
        product_category=data.get("productCategory") or None,
        confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        interest_groups=groups or None,
        ad_copy_variations=variants or None,
        ice_breakers=breakers or None,
        greeting=data.get("greeting") or None,
    )


class AIProvider(ABC):
    """Abstract base for ad copy and targeting analysis.

    Output is advisory: callers always pass it through
    `AdInsights.with_defaults()` and must cope with the provider failing.
    """

    name: str = "base"

    @abstractmethod
    async def analyze_media(
        self,
        image_bytes: Optional[bytes],
        mime_type: Optional[str],
        counts: StructureCounts,
        product_context: Optional[str] = None,
        past_interests: Optional[List[str]] = None,
    ) -> AdInsights:
        """Suggest copy, targeting and ice breakers for a piece of media.

        Args:
            image_bytes: The image, or a video's cover frame. None for text-only.
            mime_type: MIME type of `image_bytes`.
            counts: Requested structure, so enough variants come back.
            product_context: Free-text product description from the user.
            past_interests: Interests from the user's earlier ad sets.
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured and ready."""
        ...
