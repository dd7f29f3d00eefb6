"""Content provider protocol and shared response handling."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from nsma.exceptions import ProviderError

if TYPE_CHECKING:
    import httpx


@runtime_checkable
class ContentProvider(Protocol):
    """An AI backend that expands a brief idea into a full prompt body."""

    name: str

    def is_configured(self) -> bool:
        """Return True when the provider has a usable credential."""
        ...

    def is_retryable(self, exc: BaseException) -> bool:
        """Classify a failure of ``expand`` as transient."""
        ...

    async def expand(self, system_prompt: str, user_prompt: str) -> str:
        """Return generated markdown. Raises ProviderError on failure."""
        ...


def provider_error_from_response(provider: str, response: httpx.Response) -> ProviderError:
    """Build a ProviderError from an error response.

    Both supported APIs nest details under ``error``; Anthropic names the failure in
    ``error.type``, Gemini in ``error.status``.
    """
    error_type: str | None = None
    message = response.reason_phrase or "request failed"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        error = payload["error"]
        error_type = error.get("type") or error.get("status")
        message = error.get("message") or message

    retry_after: float | None = None
    raw_retry_after = response.headers.get("Retry-After")
    if raw_retry_after is not None:
        try:
            retry_after = float(raw_retry_after)
        except ValueError:
            retry_after = None

    return ProviderError(
        f"{provider} API error {response.status_code}: {message}",
        provider=provider,
        status_code=response.status_code,
        error_type=error_type,
        retry_after=retry_after,
    )
