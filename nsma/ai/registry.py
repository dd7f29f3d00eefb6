"""Content provider registry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nsma.ai.anthropic import AnthropicProvider
from nsma.ai.gemini import GeminiProvider

if TYPE_CHECKING:
    import httpx

    from nsma.ai.base import ContentProvider
    from nsma.config import Settings

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[AnthropicProvider] | type[GeminiProvider]] = {
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def get_configured_providers(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> list[ContentProvider]:
    """Instantiate providers in priority order, keeping only configured ones."""
    providers: list[ContentProvider] = []
    for name in settings.ai_provider_priority:
        provider_cls = PROVIDERS.get(name.strip().lower())
        if provider_cls is None:
            logger.warning("Unknown AI provider %r in priority list; ignoring", name)
            continue
        provider = provider_cls.from_settings(settings, transport)
        if provider.is_configured():
            providers.append(provider)
        else:
            logger.debug("AI provider %s has no credential; skipping", name)
    return providers
