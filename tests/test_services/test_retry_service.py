"""Tests for the retry executor and error classification."""

from __future__ import annotations

import errno

import httpx
import pytest

from nsma.exceptions import AuthenticationError, RemoteAPIError
from nsma.models.sync import ErrorType
from nsma.services.retry_service import (
    RetryPolicy,
    calculate_backoff,
    classify_error,
    default_is_retryable,
    extract_retry_after,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Flaky:
    """Fails ``failures`` times with ``error``, then returns "ok"."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestDefaultIsRetryable:
    def test_rate_limit_and_server_errors_retry(self) -> None:
        assert default_is_retryable(RemoteAPIError("x", status_code=429))
        assert default_is_retryable(RemoteAPIError("x", status_code=500))
        assert default_is_retryable(RemoteAPIError("x", status_code=503))

    def test_client_errors_do_not_retry(self) -> None:
        assert not default_is_retryable(RemoteAPIError("x", status_code=400))
        assert not default_is_retryable(RemoteAPIError("x", status_code=404))
        assert not default_is_retryable(AuthenticationError("x", status_code=401))

    def test_transport_errors_retry(self) -> None:
        assert default_is_retryable(httpx.ConnectError("refused"))
        assert default_is_retryable(httpx.ReadTimeout("slow"))
        assert default_is_retryable(OSError(errno.ECONNREFUSED, "refused"))

    def test_structured_status_wins_over_message(self) -> None:
        assert not default_is_retryable(RemoteAPIError("rate limit mentioned", status_code=400))

    def test_message_fallback_for_foreign_exceptions(self) -> None:
        assert default_is_retryable(RuntimeError("upstream returned 503"))
        assert default_is_retryable(RuntimeError("API is overloaded"))
        assert not default_is_retryable(RuntimeError("invalid argument"))


class TestExtractRetryAfter:
    def test_structured_field(self) -> None:
        assert extract_retry_after(RemoteAPIError("x", status_code=429, retry_after=7)) == 7.0

    def test_message_fallback(self) -> None:
        assert extract_retry_after(RuntimeError("slow down, Retry-After: 12")) == 12.0

    def test_absent(self) -> None:
        assert extract_retry_after(RuntimeError("boom")) is None


class TestCalculateBackoff:
    def test_exponential_with_bounded_jitter(self) -> None:
        for attempt in (1, 2, 3):
            base = 1.0 * 2 ** (attempt - 1)
            delay = calculate_backoff(attempt, 1.0, 100.0)
            assert base <= delay <= base * 1.5

    def test_capped_at_max_delay(self) -> None:
        assert calculate_backoff(10, 1.0, 30.0) == 30.0


class TestRetryPolicy:
    async def test_returns_after_transient_failures(self) -> None:
        sleep = RecordingSleep()
        fn = Flaky(2, RemoteAPIError("busy", status_code=503))
        policy = RetryPolicy(max_retries=3, base_delay=0.01, sleep=sleep)

        assert await policy.execute(fn) == "ok"
        assert fn.calls == 3
        assert len(sleep.delays) == 2

    async def test_exhaustion_rethrows_last_error(self) -> None:
        sleep = RecordingSleep()
        fn = Flaky(10, RemoteAPIError("busy", status_code=503))
        policy = RetryPolicy(max_retries=2, base_delay=0.01, sleep=sleep)

        with pytest.raises(RemoteAPIError, match="busy"):
            await policy.execute(fn)
        assert fn.calls == 3

    async def test_non_retryable_is_not_retried(self) -> None:
        sleep = RecordingSleep()
        fn = Flaky(1, AuthenticationError("denied", status_code=401))

        with pytest.raises(AuthenticationError):
            await RetryPolicy(sleep=sleep).execute(fn)
        assert fn.calls == 1
        assert sleep.delays == []

    async def test_retry_after_overrides_backoff(self) -> None:
        sleep = RecordingSleep()
        fn = Flaky(1, RemoteAPIError("slow", status_code=429, retry_after=4))

        await RetryPolicy(base_delay=0.01, sleep=sleep).execute(fn)
        assert sleep.delays == [4.0]

    async def test_total_budget_stops_retrying(self) -> None:
        sleep = RecordingSleep()
        fn = Flaky(5, RemoteAPIError("slow", status_code=429, retry_after=60))
        policy = RetryPolicy(max_retries=5, max_total_delay=30.0, sleep=sleep)

        with pytest.raises(RemoteAPIError):
            await policy.execute(fn)
        assert fn.calls == 1
        assert sleep.delays == []

    async def test_on_retry_callback(self) -> None:
        seen: list[tuple[int, float]] = []
        fn = Flaky(1, RemoteAPIError("busy", status_code=500, retry_after=1))
        policy = RetryPolicy(
            on_retry=lambda _exc, attempt, delay: seen.append((attempt, delay)),
            sleep=RecordingSleep(),
        )

        await policy.execute(fn)
        assert seen == [(1, 1.0)]


class TestClassifyError:
    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (AuthenticationError("x", status_code=401), ErrorType.AUTH),
            (RemoteAPIError("x", status_code=403), ErrorType.PERMISSION),
            (RemoteAPIError("x", status_code=404), ErrorType.DELETED),
            (RemoteAPIError("x", status_code=429), ErrorType.RATE_LIMITED),
            (httpx.ConnectError("refused"), ErrorType.NETWORK),
            (PermissionError("read-only"), ErrorType.IO),
            (RemoteAPIError("x", status_code=500), ErrorType.OTHER),
        ],
    )
    def test_categories(self, exc: Exception, expected: ErrorType) -> None:
        assert classify_error(exc) == expected
