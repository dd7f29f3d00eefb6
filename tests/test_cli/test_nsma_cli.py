"""Tests for the command-line interface."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from cli.nsma_cli import (
    EXIT_AUTHENTICATION,
    EXIT_CONFIGURATION,
    EXIT_FAILURES,
    App,
    build_parser,
    format_timestamp,
    main,
    print_results,
)
from nsma.exceptions import AuthenticationError
from nsma.filesystem.registry import ProjectRegistry
from nsma.models.project import ErrorMode, Project
from nsma.models.sync import SyncResult
from nsma.services.config_watcher import ConfigWatcher
from nsma.services.audit_log import AuditLog

if TYPE_CHECKING:
    from nsma.config import Settings


class StopDaemon(Exception):
    pass


class TestParser:
    def test_sync_options(self) -> None:
        args = build_parser().parse_args(["sync", "--project", "acme", "--dry-run"])
        assert (args.command, args.project, args.dry_run, args.skip_reverse) == (
            "sync",
            "acme",
            True,
            False,
        )

    def test_register_defaults(self) -> None:
        args = build_parser().parse_args(["register", "Acme App", "/work/acme/prompts"])
        assert args.slug is None
        assert args.error_mode == "skip"

    def test_invalid_error_mode(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["register", "A", "/p", "--error-mode", "shred"])


class TestApp:
    def test_register_creates_folders(self, test_settings: Settings, tmp_path: Path) -> None:
        parser = build_parser()
        args = parser.parse_args(
            ["register", "Acme App", str(tmp_path / "acme" / "prompts"), "--error-mode", "archive"]
        )

        App(test_settings).register(args)

        project = ProjectRegistry(test_settings.config_dir).find("acme-app")
        assert project is not None
        assert project.reverse_sync_error_mode == ErrorMode.ARCHIVE
        assert (tmp_path / "acme" / "prompts" / "pending").is_dir()

    def test_show_logs(self, test_settings: Settings, capsys: pytest.CaptureFixture[str]) -> None:
        AuditLog(test_settings.config_dir).append(
            operation="sync",
            project_id="acme",
            project_name="Acme",
            message="Sync completed successfully",
            counts={"updated": 1},
        )

        App(test_settings).show_logs(10)

        out = capsys.readouterr().out
        assert "Acme: Sync completed successfully (updated=1)" in out

    def test_list_projects(
        self, test_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        registry = ProjectRegistry(test_settings.config_dir)
        registry.add(Project(id="acme", name="Acme App", slug="acme", prompts_path="/p"))
        registry.update("acme", last_sync_at="2026-03-01T10:15:00.123456+00:00")

        App(test_settings).list_projects()

        out = capsys.readouterr().out
        assert "acme (Acme App, active): pending=0" in out
        assert "last sync: 2026-03-01 10:15" in out
        assert "config imported: never" in out

    def test_print_results(self, capsys: pytest.CaptureFixture[str]) -> None:
        result = SyncResult(project_id="__inbox__", project_name="Inbox", updated=1)
        result.routing = {"p1": "Unknown project: ghost"}
        result.record_error("Broken", "HTTP 500")

        print_results("Forward sync", [result])

        out = capsys.readouterr().out
        assert "Inbox: 1 updated, 0 skipped, 1 failed" in out
        assert "> p1: Unknown project: ghost" in out
        assert "! Broken: HTTP 500" in out

    async def test_daemon_survives_failed_sync(self, test_settings: Settings) -> None:
        sleep = AsyncMock(side_effect=[None, None, StopDaemon()])
        failures = [OSError("disk full"), AuthenticationError("HTTP 401", status_code=401)]
        sync = AsyncMock(side_effect=[*failures, False])
        with (
            patch.object(App, "sync", sync),
            patch.object(ConfigWatcher, "start", AsyncMock()),
            patch.object(ConfigWatcher, "stop", AsyncMock()) as stop,
            pytest.raises(StopDaemon),
        ):
            await App(test_settings).daemon(sleep=sleep)

        assert sync.await_count == 3
        sleep.assert_awaited_with(test_settings.sync_interval_minutes * 60)
        stop.assert_awaited_once()


class TestFormatTimestamp:
    def test_never(self) -> None:
        assert format_timestamp(None) == "never"

    def test_naive_timestamp_treated_as_utc(self) -> None:
        assert format_timestamp("2026-03-01 09:30").startswith("2026-03-01 09:30")


class TestMain:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        main([])
        assert "usage: nsma" in capsys.readouterr().out

    def test_missing_credentials_exit_code(self, tmp_path: Path) -> None:
        env = {"NOTION_TOKEN": "", "NOTION_DATABASE_ID": ""}
        with patch.dict("os.environ", env), pytest.raises(SystemExit) as exc_info:
            main(["--config-dir", str(tmp_path), "sync-options"])
        assert exc_info.value.code == EXIT_CONFIGURATION

    def test_unknown_project_exit_code(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--config-dir", str(tmp_path), "import-config", "ghost"])
        assert exc_info.value.code == EXIT_CONFIGURATION

    def test_authentication_exit_code(self, tmp_path: Path) -> None:
        failing = AsyncMock(side_effect=AuthenticationError("bad token", status_code=401))
        with patch.object(App, "sync", failing), pytest.raises(SystemExit) as exc_info:
            main(["--config-dir", str(tmp_path), "sync"])
        assert exc_info.value.code == EXIT_AUTHENTICATION

    def test_item_failures_exit_code(self, tmp_path: Path) -> None:
        with (
            patch.object(App, "reverse_sync", AsyncMock(return_value=True)),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["--config-dir", str(tmp_path), "reverse-sync"])
        assert exc_info.value.code == EXIT_FAILURES

    def test_success_exits_normally(self, tmp_path: Path) -> None:
        with patch.object(App, "reverse_sync", AsyncMock(return_value=False)) as mocked:
            main(["--config-dir", str(tmp_path), "reverse-sync", "--project", "acme"])
        mocked.assert_awaited_once_with("acme", dry_run=False)
