"""Google Gemini ``generateContent`` content provider."""

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

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_TEMPERATURE = 0.7

RETRYABLE_ERROR_STATUSES = frozenset({"RESOURCE_EXHAUSTED", "UNAVAILABLE", "INTERNAL"})
_RETRYABLE_MESSAGES = ("quota exceeded", "unavailable", "internal error")


class GeminiProvider:
    """Expands prompts with Gemini models."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-1.5-pro",
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
    ) -> GeminiProvider:
        return cls(
            settings.gemini_api_key,
            model=settings.gemini_model,
            max_tokens=settings.ai_max_tokens,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.api_key.strip())

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, ProviderError):
            if exc.error_type in RETRYABLE_ERROR_STATUSES:
                return True
            if exc.status_code is not None:
                return exc.status_code == 429 or exc.status_code >= 500
            lowered = str(exc).lower()
            if any(fragment in lowered for fragment in _RETRYABLE_MESSAGES):
                return True
        return default_is_retryable(exc)

    async def expand(self, system_prompt: str, user_prompt: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                f"{GEMINI_API_URL}/{self.model}:generateContent",
                headers={"x-goog-api-key": self.api_key},
                json={
                    "systemInstruction": {"parts": [{"text": system_prompt}]},
                    "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                    "generationConfig": {
                        "maxOutputTokens": self.max_tokens,
                        "temperature": GEMINI_TEMPERATURE,
                    },
                },
            )
        if resp.is_error:
            raise provider_error_from_response(self.name, resp)

        data = resp.json()
        candidates = data.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
        text = "".join(str(part.get("text", "")) for part in parts)
        if not text.strip():
            raise ProviderError("gemini returned no text content", provider=self.name)
        return text
