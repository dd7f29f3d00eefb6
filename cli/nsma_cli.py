"""Command-line interface for Notion Sync Manager."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from nsma.ai.chain import AIProviderChain
from nsma.config import Settings
from nsma.exceptions import AuthenticationError, ConfigurationError
from nsma.filesystem.file_scanner import FileScanner
from nsma.filesystem.registry import ProjectRegistry
from nsma.models.project import ErrorMode, Project
from nsma.notion.client import NotionClient
from nsma.services.audit_log import AuditLog
from nsma.services.config_watcher import ConfigWatcher
from nsma.services.datetime_service import parse_datetime
from nsma.services.forward_sync import ForwardSyncEngine
from nsma.services.project_lock import ProjectLocks
from nsma.services.reverse_sync import ReverseSyncEngine
from nsma.services.slug_service import generate_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nsma.models.sync import SyncResult

logger = logging.getLogger("nsma")

EXIT_FAILURES = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3


def configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stdout, force=True)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("watchfiles").setLevel(logging.WARNING)


def print_results(title: str, results: list[SyncResult]) -> None:
    print(f"{title}:")
    if not results:
        print("  Nothing to do.")
    for result in results:
        print(
            f"  {result.project_name}: {result.updated} updated, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        for item_id, reason in result.routing.items():
            print(f"    > {item_id}: {reason}")
        for error in result.errors:
            print(f"    ! {error.item}: {error.cause}")


def _has_failures(results: list[SyncResult]) -> bool:
    return any(result.failed for result in results)


def format_timestamp(value: str | None) -> str:
    if not value:
        return "never"
    return parse_datetime(value).strftime("%Y-%m-%d %H:%M %Z")


class App:
    """Wires settings, registry and the shared single-flight locks together."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.registry = ProjectRegistry(settings.config_dir, settings.inbox_path)
        self.audit_log = AuditLog(settings.config_dir)
        self.locks = ProjectLocks()

    def require_project(self, ref: str) -> Project:
        project = self.registry.find(ref)
        if project is None:
            raise ConfigurationError(f"Project not found: {ref}")
        return project

    async def sync(
        self,
        project_ref: str | None = None,
        *,
        dry_run: bool = False,
        skip_reverse: bool = False,
    ) -> bool:
        """Forward sync, then reverse sync; return True if any item failed."""
        self.settings.validate_for_sync()
        async with NotionClient.from_settings(self.settings) as client:
            forward = ForwardSyncEngine(
                self.settings,
                self.registry,
                client,
                chain=AIProviderChain.from_settings(self.settings),
                audit_log=self.audit_log,
                locks=self.locks,
                dry_run=dry_run,
            )
            forward_results = await forward.run(project_ref)
            print_results("Forward sync", forward_results)
            failed = _has_failures(forward_results)
            if skip_reverse:
                return failed
            reverse_results = await self._reverse(client, project_ref, dry_run=dry_run)
            return failed or _has_failures(reverse_results)

    async def reverse_sync(self, project_ref: str | None = None, *, dry_run: bool = False) -> bool:
        self.settings.validate_for_sync()
        async with NotionClient.from_settings(self.settings) as client:
            return _has_failures(await self._reverse(client, project_ref, dry_run=dry_run))

    async def _reverse(
        self, client: NotionClient, project_ref: str | None, *, dry_run: bool
    ) -> list[SyncResult]:
        engine = ReverseSyncEngine(
            self.settings,
            self.registry,
            client,
            audit_log=self.audit_log,
            locks=self.locks,
            dry_run=dry_run,
        )
        projects = [self.require_project(project_ref)] if project_ref else None
        results = await engine.sync_all(projects)
        print_results("Reverse sync", results)
        return results

    async def import_config(self, project_ref: str) -> bool:
        project = self.require_project(project_ref)
        watcher = ConfigWatcher.from_settings(self.settings, self.registry, self.locks)
        result = await watcher.refresh_config(project.id)
        if not result.success:
            raise ConfigurationError(f"Config import failed for {project.name}: {result.error}")
        print(
            f"Imported config for {project.name}: "
            f"phases {result.phases_before} -> {result.phases_after}, "
            f"modules {result.modules_before} -> {result.modules_after}"
        )
        return False

    def register(self, args: argparse.Namespace) -> bool:
        prompts_path = Path(args.prompts_path).expanduser().resolve()
        slug = args.slug or generate_id(args.name)
        project = Project(
            id=slug,
            name=args.name,
            slug=slug,
            prompts_path=str(prompts_path),
            reverse_sync_error_mode=ErrorMode(args.error_mode),
        )
        FileScanner(prompts_path).ensure_folders()
        self.registry.add(project)
        print(f"Registered {project.name} ({project.slug}) at {prompts_path}")
        return False

    async def sync_options(self) -> bool:
        """Push registered project slugs into the database's Project select."""
        self.settings.validate_for_sync()
        slugs = [project.slug for project in self.registry.list_projects()]
        async with NotionClient.from_settings(self.settings) as client:
            result = await client.sync_select_options("Project", slugs)
        print(f"Project options: {len(result.added)} added, {len(result.existing)} existing")
        for name in result.added:
            print(f"  + {name}")
        return False

    def list_projects(self) -> bool:
        projects = self.registry.list_projects()
        if not projects:
            print("No projects registered.")
        for project in projects:
            state = "active" if project.active else "inactive"
            stats = ", ".join(f"{folder}={count}" for folder, count in project.stats.items())
            print(f"{project.slug} ({project.name}, {state}): {stats}")
            print(f"  prompts: {project.prompts_path}")
            print(
                f"  last sync: {format_timestamp(project.last_sync_at)}, "
                f"config imported: {format_timestamp(project.last_imported_at)}"
            )
        return False

    def show_logs(self, limit: int) -> bool:
        for entry in self.audit_log.read(limit):
            counts = ", ".join(f"{key}={value}" for key, value in entry.counts.items())
            print(
                f"{entry.timestamp} {entry.level:<7} {entry.operation:<12} "
                f"{entry.project_name}: {entry.message} ({counts})"
            )
        return False

    async def daemon(self, *, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> bool:
        """Watch configs and run a combined sync every ``sync_interval_minutes``."""
        self.settings.validate_for_sync()
        watcher = ConfigWatcher.from_settings(self.settings, self.registry, self.locks)
        await watcher.start()
        minutes = self.settings.sync_interval_minutes
        interval = minutes * 60
        logger.info("Daemon started; syncing every %d minute(s)", minutes)
        try:
            while True:
                try:
                    await self.sync()
                except AuthenticationError as exc:
                    logger.error("Scheduled sync aborted: %s", exc)
                except Exception:
                    logger.exception("Scheduled sync failed; retrying next interval")
                await sleep(interval)
        finally:
            await watcher.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nsma",
        description="Sync a Notion task database with local markdown prompt files",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--config-dir", help="Registry and audit-log directory")

    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser("sync", help="Forward sync, then reverse sync")
    sync_parser.add_argument("--project", "-p", help="Project slug, name or id")
    sync_parser.add_argument("--dry-run", action="store_true", help="Log changes only")
    sync_parser.add_argument(
        "--skip-reverse", action="store_true", help="Do not push folder moves back"
    )

    reverse_parser = subparsers.add_parser("reverse-sync", help="Push folder moves to Notion")
    reverse_parser.add_argument("--project", "-p", help="Project slug, name or id")
    reverse_parser.add_argument("--dry-run", action="store_true", help="Log changes only")

    import_parser = subparsers.add_parser("import-config", help="Re-import phases and modules")
    import_parser.add_argument("project", help="Project slug, name or id")

    register_parser = subparsers.add_parser("register", help="Register a project")
    register_parser.add_argument("name", help="Display name")
    register_parser.add_argument("prompts_path", help="Prompt folder of the project")
    register_parser.add_argument("--slug", help="Project slug (default: derived from name)")
    register_parser.add_argument(
        "--error-mode",
        choices=[mode.value for mode in ErrorMode],
        default=ErrorMode.SKIP.value,
        help="Reverse-sync handling of deleted Notion pages",
    )

    subparsers.add_parser("projects", help="List registered projects")

    subparsers.add_parser("sync-options", help="Add project slugs to the Project select")

    logs_parser = subparsers.add_parser("logs", help="Show recent audit-log entries")
    logs_parser.add_argument("--limit", "-n", type=int, default=20)

    subparsers.add_parser("daemon", help="Watch configs and sync periodically")
    return parser


def run_command(app: App, args: argparse.Namespace) -> bool:
    """Dispatch one command; return True if any item failed."""
    if args.command == "sync":
        return asyncio.run(
            app.sync(args.project, dry_run=args.dry_run, skip_reverse=args.skip_reverse)
        )
    if args.command == "reverse-sync":
        return asyncio.run(app.reverse_sync(args.project, dry_run=args.dry_run))
    if args.command == "import-config":
        return asyncio.run(app.import_config(args.project))
    if args.command == "register":
        return app.register(args)
    if args.command == "projects":
        return app.list_projects()
    if args.command == "sync-options":
        return asyncio.run(app.sync_options())
    if args.command == "logs":
        return app.show_logs(args.limit)
    if args.command == "daemon":
        return asyncio.run(app.daemon())
    msg = f"Unknown command: {args.command}"
    raise ValueError(msg)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    settings = Settings()
    if args.config_dir:
        settings = settings.model_copy(update={"config_dir": Path(args.config_dir).expanduser()})
    configure_logging(args.verbose or settings.debug)

    try:
        failed = run_command(App(settings), args)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        sys.exit(EXIT_CONFIGURATION)
    except AuthenticationError as exc:
        print(f"Error: Notion authorization failed, check NOTION_TOKEN ({exc})")
        sys.exit(EXIT_AUTHENTICATION)
    except KeyboardInterrupt:
        print("Interrupted")
        return
    if failed:
        sys.exit(EXIT_FAILURES)


if __name__ == "__main__":
    main()
