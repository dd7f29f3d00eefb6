"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from nsma.config import DEFAULT_SUCCESS_CRITERIA, Settings
from nsma.exceptions import ConfigurationError


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.notion_api_url == "https://api.notion.com/v1"
        assert s.ai_provider_priority == ["anthropic", "gemini"]
        assert s.sync_interval_minutes == 15
        assert s.success_criteria_template == DEFAULT_SUCCESS_CRITERIA

    def test_settings_from_environment(self, tmp_path: Path) -> None:
        env = {
            "NOTION_TOKEN": "env-token",
            "NOTION_DATABASE_ID": "env-db",
            "AI_PROVIDER_PRIORITY": '["gemini"]',
            "CONFIG_DIR": str(tmp_path),
        }
        with patch.dict("os.environ", env):
            s = Settings(_env_file=None)
        assert s.notion_token == "env-token"
        assert s.ai_provider_priority == ["gemini"]
        assert s.config_dir == tmp_path
        assert s.inbox_path == tmp_path / "inbox"

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        test_settings.validate_for_sync()
        assert test_settings.retry_base_delay == 0


class TestValidateForSync:
    def test_missing_credentials_listed(self) -> None:
        s = Settings(_env_file=None, notion_token="", notion_database_id=" ")
        with pytest.raises(ConfigurationError, match="NOTION_TOKEN, NOTION_DATABASE_ID"):
            s.validate_for_sync()

    def test_missing_database_only(self) -> None:
        s = Settings(_env_file=None, notion_token="t", notion_database_id="")
        with pytest.raises(ConfigurationError, match="NOTION_DATABASE_ID"):
            s.validate_for_sync()


class TestRetryPolicyFromSettings:
    def test_network_budget(self) -> None:
        s = Settings(
            _env_file=None,
            retry_max_retries=5,
            retry_base_delay=0.5,
            retry_max_delay=10,
            retry_max_total_seconds=60,
        )
        policy = s.retry_policy()
        assert (policy.max_retries, policy.base_delay) == (5, 0.5)
        assert (policy.max_delay, policy.max_total_delay) == (10, 60)
