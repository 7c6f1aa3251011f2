"""Centxo — AI Provider Selection."""

from typing import Dict, Optional, Type

from centxo.ai.base_provider import AIProvider
from centxo.ai.claude_provider import ClaudeProvider
from centxo.ai.sarvam_provider import SarvamProvider
from centxo.config import settings
from centxo.core.logging import get_logger

logger = get_logger("ai.registry")

PROVIDERS: Dict[str, Type[AIProvider]] = {
    "claude": ClaudeProvider,
    "sarvam": SarvamProvider,
}


def select_provider(provider_name: str = "auto") -> Optional[AIProvider]:
    """Return a configured provider, or None when none is available.

    'auto' tries DEFAULT_AI_PROVIDER first, then the rest in order.
    """
    if provider_name != "auto":
        cls = PROVIDERS.get(provider_name)
        provider = cls() if cls else None
        if provider is None or not provider.is_available():
            logger.warning(f"AI provider '{provider_name}' unavailable")
            return None
        return provider

    order = [settings.default_ai_provider] + [n for n in PROVIDERS if n != settings.default_ai_provider]
    for name in order:
        cls = PROVIDERS.get(name)
        if cls is None:
            continue
        provider = cls()
        if provider.is_available():
            return provider
    logger.info("No AI provider configured; using default copy and targeting")
    return None
