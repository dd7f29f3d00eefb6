"""Ordered fallback over configured content providers."""

from __future__ import annotations

import logging
from dataclasses import replace
from functools import partial
from typing import TYPE_CHECKING

from nsma.ai.registry import get_configured_providers
from nsma.services.retry_service import RetryPolicy

if TYPE_CHECKING:
    import httpx

    from nsma.ai.base import ContentProvider
    from nsma.config import Settings

logger = logging.getLogger(__name__)


class AIProviderChain:
    """Tries providers strictly in order; the next runs only after the previous gives up.

    ``expand`` never raises.  It returns None when no provider is configured or every
    provider failed, and callers fall back to static content.
    """

    def __init__(
        self,
        providers: list[ContentProvider],
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.providers = list(providers)
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> AIProviderChain:
        return cls(get_configured_providers(settings, transport), settings.retry_policy())

    @property
    def is_available(self) -> bool:
        return bool(self.providers)

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self.providers]

    async def expand(self, system_prompt: str, user_prompt: str) -> str | None:
        if not self.providers:
            logger.info("No AI provider configured; skipping expansion")
            return None

        for provider in self.providers:
            policy = replace(self.retry_policy, is_retryable=provider.is_retryable)
            try:
                text = await policy.execute(partial(provider.expand, system_prompt, user_prompt))
            except Exception as exc:
                logger.warning("AI provider %s failed, trying next: %s", provider.name, exc)
                continue
            logger.info("Content expanded by %s", provider.name)
            return text

        logger.warning("All AI providers exhausted (%s)", ", ".join(self.provider_names))
        return None
