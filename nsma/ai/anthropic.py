"""Anthropic Messages API content provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from nsma.ai.base import provider_error_from_response
from nsma.exceptions import ProviderError
from nsma.services.retry_service import default_is_retryable

if TYPE_CHECKING:
    from nsma.config import Settings

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OVERLOADED_STATUS = 529

RETRYABLE_ERROR_TYPES = frozenset({"overloaded_error", "rate_limit_error", "api_error"})


class AnthropicProvider:
    """Expands prompts with Claude models."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 2000,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> AnthropicProvider:
        return cls(
            settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.ai_max_tokens,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.api_key.strip())

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, ProviderError):
            if exc.error_type in RETRYABLE_ERROR_TYPES:
                return True
            if exc.status_code is not None:
                return exc.status_code in (429, OVERLOADED_STATUS) or exc.status_code >= 500
        return default_is_retryable(exc)

    async def expand(self, system_prompt: str, user_prompt: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                ANTHROPIC_API_URL,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": self.max_tokens,
                    "system": system_prompt,
                    "messages": [{"role": "user", "content": user_prompt}],
                },
            )
        if resp.is_error:
            raise provider_error_from_response(self.name, resp)

        data = resp.json()
        text = "".join(
            str(block.get("text", ""))
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        if not text.strip():
            raise ProviderError("anthropic returned no text content", provider=self.name)
        logger.debug("Anthropic expansion used model %s", data.get("model", self.model))
        return text
