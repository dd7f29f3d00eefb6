"""Application-level exception types.

Convention:
- ``ConfigurationError`` and ``AuthenticationError`` are the only exceptions that sync
  entry points let escape to the caller.  Both abort the run before (or instead of)
  partial work.
- Every other failure (``RemoteAPIError``, ``ProviderError``, ``OSError`` ...) is caught
  per item or per file, logged, counted in a ``SyncResult`` and the batch continues.
"""

from __future__ import annotations


class NSMAError(Exception):
    """Base class for all sync-manager errors."""


class ConfigurationError(NSMAError):
    """Raised when the run cannot start: missing credential, path or config files."""


class RemoteAPIError(NSMAError):
    """Raised for a non-2xx response from the remote task store.

    ``status_code`` and ``code`` carry the structured failure; ``retry_after`` is the
    server-supplied Retry-After value in seconds, when present.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retry_after = retry_after


class AuthenticationError(RemoteAPIError):
    """Raised for 401 responses. Retrying is pointless, so the current run aborts."""


class ProviderError(NSMAError):
    """Raised when an AI content provider call fails."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        error_type: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.error_type = error_type
        self.retry_after = retry_after


class ConfigParseError(NSMAError):
    """Raised when a single configuration document cannot be read or parsed."""

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


class SyncInProgressError(NSMAError):
    """Raised when a run for a project is requested while another is still in flight."""
