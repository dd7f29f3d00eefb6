"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from nsma.exceptions import ConfigurationError
from nsma.services.retry_service import RetryPolicy

DEFAULT_SUCCESS_CRITERIA = (
    "- [ ] Implementation complete\n"
    "- [ ] No type errors or build failures\n"
    "- [ ] Follows existing patterns in related files\n"
    "- [ ] Audit logging integrated (if data mutation)"
)


def _default_config_dir() -> Path:
    return Path.home() / ".notion-sync-manager"


class Settings(BaseSettings):
    """Notion Sync Manager settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Remote task store
    notion_token: str = ""
    notion_database_id: str = ""
    notion_api_url: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"

    # AI providers
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    ai_provider_priority: list[str] = Field(default_factory=lambda: ["anthropic", "gemini"])
    anthropic_model: str = "claude-sonnet-4-20250514"
    gemini_model: str = "gemini-1.5-pro"
    ai_max_tokens: int = Field(default=2000, ge=1)
    feature_dev_enabled: bool = True
    feature_dev_types: list[str] = Field(default_factory=lambda: ["Feature", "Improvement"])

    # Prompt rendering
    success_criteria_template: str = DEFAULT_SUCCESS_CRITERIA

    # Paths
    config_dir: Path = Field(default_factory=_default_config_dir)

    # Scheduling
    sync_interval_minutes: int = Field(default=15, ge=1)
    config_sweep_interval_seconds: int = Field(default=300, ge=1)
    config_debounce_ms: int = Field(default=300, ge=0)
    prompts_debounce_ms: int = Field(default=500, ge=0)

    # Network budget
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    retry_max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_max_total_seconds: float = Field(default=120.0, ge=0)
    reverse_sync_request_delay: float = Field(default=0.35, ge=0)

    def validate_for_sync(self) -> None:
        """Fail fast when the remote store cannot be reached at all."""
        missing: list[str] = []
        if not self.notion_token.strip():
            missing.append("NOTION_TOKEN")
        if not self.notion_database_id.strip():
            missing.append("NOTION_DATABASE_ID")
        if missing:
            joined = ", ".join(missing)
            raise ConfigurationError(f"Missing required settings: {joined}")

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy shared by every network call."""
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            max_total_delay=self.retry_max_total_seconds,
        )

    @property
    def inbox_path(self) -> Path:
        return self.config_dir / "inbox"
