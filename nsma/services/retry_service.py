"""Exponential-backoff retry executor shared by every network call."""

from __future__ import annotations

import asyncio
import errno
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import httpx

from nsma.models.sync import ErrorType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRNOS: frozenset[int] = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ETIMEDOUT,
        errno.ECONNRESET,
        errno.ECONNABORTED,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
    }
)

_RETRY_AFTER_RE = re.compile(r"retry.?after[:\s]+(\d+)", re.IGNORECASE)
_STATUS_5XX_RE = re.compile(r"\b5\d{2}\b")


def is_network_error(exc: BaseException) -> bool:
    """Return True for transport-level failures where no response was received."""
    if isinstance(exc, httpx.TimeoutException | httpx.NetworkError | httpx.RemoteProtocolError):
        return True
    return isinstance(exc, OSError) and exc.errno in RETRYABLE_ERRNOS


def get_status_code(exc: BaseException) -> int | None:
    """Extract an HTTP status code from structured exception fields."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _message_looks_retryable(message: str) -> bool:
    """Last-resort classification for exceptions without structured fields."""
    lowered = message.lower()
    if "429" in lowered or "rate limit" in lowered:
        return True
    if "529" in lowered or "overloaded" in lowered:
        return True
    if "econnrefused" in lowered or "etimedout" in lowered:
        return True
    return _STATUS_5XX_RE.search(lowered) is not None


def default_is_retryable(exc: BaseException) -> bool:
    """Retry network failures, HTTP 429 and HTTP 5xx."""
    if is_network_error(exc):
        return True
    status = get_status_code(exc)
    if status is not None:
        return status == 429 or status >= 500
    return _message_looks_retryable(str(exc))


def extract_retry_after(exc: BaseException) -> float | None:
    """Return the server-supplied retry delay in seconds, if any."""
    raw = getattr(exc, "retry_after", None)
    if raw is None and isinstance(exc, httpx.HTTPStatusError):
        raw = exc.response.headers.get("Retry-After")
    if raw is not None:
        try:
            return max(float(raw), 0.0)
        except (TypeError, ValueError):
            pass
    match = _RETRY_AFTER_RE.search(str(exc))
    if match:
        return float(match.group(1))
    return None


def calculate_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for a 1-based attempt with 0-50% jitter, capped at max_delay."""
    exponential = base_delay * (2 ** (attempt - 1))
    jitter = random.random() * exponential * 0.5
    return min(exponential + jitter, max_delay)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async callable while failures are classified as transient.

    ``max_total_delay`` bounds the wall-clock time of a whole ``execute`` call: a retry
    whose wait would overrun the budget is not attempted and the last error is raised.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_total_delay: float = 120.0
    is_retryable: Callable[[BaseException], bool] = default_is_retryable
    on_retry: Callable[[BaseException, int, float], None] | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay_for(self, exc: BaseException, attempt: int) -> float:
        retry_after = extract_retry_after(exc)
        if retry_after is not None:
            return retry_after
        return calculate_backoff(attempt, self.base_delay, self.max_delay)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        started = time.monotonic()
        attempt = 1
        while True:
            try:
                return await fn()
            except Exception as exc:
                if attempt > self.max_retries or not self.is_retryable(exc):
                    raise
                delay = self.delay_for(exc, attempt)
                elapsed = time.monotonic() - started
                if elapsed + delay > self.max_total_delay:
                    logger.warning(
                        "Retry budget of %.1fs exhausted after %d attempt(s): %s",
                        self.max_total_delay,
                        attempt,
                        exc,
                    )
                    raise
                if self.on_retry is not None:
                    self.on_retry(exc, attempt, delay)
                else:
                    logger.info(
                        "Retry %d/%d in %.2fs: %s", attempt, self.max_retries, delay, exc
                    )
                await self.sleep(delay)
                attempt += 1


def classify_error(exc: BaseException) -> ErrorType:
    """Map a failure to the coarse category recorded in sync results."""
    if is_network_error(exc):
        return ErrorType.NETWORK
    status = get_status_code(exc)
    if status == 401:
        return ErrorType.AUTH
    if status == 403:
        return ErrorType.PERMISSION
    if status == 404:
        return ErrorType.DELETED
    if status == 429:
        return ErrorType.RATE_LIMITED
    if status is None and isinstance(exc, OSError):
        return ErrorType.IO
    return ErrorType.OTHER
