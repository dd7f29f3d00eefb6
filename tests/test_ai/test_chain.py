"""Tests for the ordered AI provider fallback chain."""

from __future__ import annotations

from nsma.ai.chain import AIProviderChain
from nsma.config import Settings
from nsma.exceptions import ProviderError
from nsma.services.retry_service import RetryPolicy
from tests.conftest import no_sleep


class FakeProvider:
    def __init__(self, name: str, results: list[str | Exception]) -> None:
        self.name = name
        self.results = list(results)
        self.calls = 0

    def is_configured(self) -> bool:
        return True

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, ProviderError) and exc.status_code == 529

    async def expand(self, system_prompt: str, user_prompt: str) -> str:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _overloaded(name: str) -> ProviderError:
    return ProviderError(f"{name} overloaded", provider=name, status_code=529)


def _policy(max_retries: int = 2) -> RetryPolicy:
    return RetryPolicy(max_retries=max_retries, base_delay=0, sleep=no_sleep)


class TestAIProviderChain:
    async def test_falls_back_after_retries_exhausted(self) -> None:
        first = FakeProvider("a", [_overloaded("a")])
        second = FakeProvider("b", ["from b"])
        chain = AIProviderChain([first, second], _policy(max_retries=2))

        assert await chain.expand("system", "user") == "from b"
        assert first.calls == 3
        assert second.calls == 1

    async def test_first_success_wins(self) -> None:
        first = FakeProvider("a", ["from a"])
        second = FakeProvider("b", ["from b"])
        chain = AIProviderChain([first, second], _policy())

        assert await chain.expand("system", "user") == "from a"
        assert second.calls == 0

    async def test_transient_failure_retried_on_same_provider(self) -> None:
        first = FakeProvider("a", [_overloaded("a"), "recovered"])
        chain = AIProviderChain([first], _policy())

        assert await chain.expand("system", "user") == "recovered"
        assert first.calls == 2

    async def test_permanent_failure_not_retried(self) -> None:
        bad_request = ProviderError("invalid", provider="a", status_code=400)
        first = FakeProvider("a", [bad_request])
        second = FakeProvider("b", ["from b"])
        chain = AIProviderChain([first, second], _policy())

        assert await chain.expand("system", "user") == "from b"
        assert first.calls == 1

    async def test_all_exhausted_returns_none(self) -> None:
        chain = AIProviderChain(
            [FakeProvider("a", [_overloaded("a")]), FakeProvider("b", [_overloaded("b")])],
            _policy(max_retries=0),
        )
        assert await chain.expand("system", "user") is None

    async def test_no_providers(self) -> None:
        chain = AIProviderChain([])
        assert chain.is_available is False
        assert await chain.expand("system", "user") is None

    def test_from_settings_keeps_configured_providers(self) -> None:
        settings = Settings(
            _env_file=None,
            anthropic_api_key="",
            gemini_api_key="g-key",
            ai_provider_priority=["anthropic", "gemini", "mystery"],
        )
        chain = AIProviderChain.from_settings(settings)
        assert chain.provider_names == ["gemini"]
