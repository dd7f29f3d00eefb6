"""Reverse sync: local folder moves -> remote item status."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from nsma.exceptions import AuthenticationError, NSMAError, SyncInProgressError
from nsma.filesystem.file_scanner import FileScanner, free_filename
from nsma.filesystem.frontmatter import update_file_frontmatter
from nsma.models.item import FOLDER_STATUS, Folder
from nsma.models.project import ErrorMode
from nsma.models.sync import ErrorType, SyncErrorEntry, SyncResult
from nsma.services.audit_log import AuditLevel, AuditLog
from nsma.services.datetime_service import format_iso, now_utc
from nsma.services.project_lock import ProjectLocks
from nsma.services.retry_service import classify_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nsma.config import Settings
    from nsma.filesystem.file_scanner import PromptFile
    from nsma.filesystem.registry import ProjectRegistry
    from nsma.models.project import Project
    from nsma.notion.client import NotionClient

logger = logging.getLogger(__name__)

REVERSE_SYNC_OPERATION = "reverse-sync"


class ReverseSyncEngine:
    """Pushes each mirrored file's folder state to its remote item.

    Remote writes are spaced by ``request_delay`` seconds to stay under the remote
    rate budget.  A 401 aborts the whole run; every other failure is recorded and the
    scan continues.
    """

    def __init__(
        self,
        settings: Settings,
        registry: ProjectRegistry,
        client: NotionClient,
        *,
        audit_log: AuditLog | None = None,
        locks: ProjectLocks | None = None,
        dry_run: bool = False,
        request_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.client = client
        self.audit_log = audit_log or AuditLog(settings.config_dir)
        self.locks = locks or ProjectLocks()
        self.dry_run = dry_run
        self.request_delay = (
            settings.reverse_sync_request_delay if request_delay is None else request_delay
        )
        self._sleep = sleep

    async def sync_all(self, projects: list[Project] | None = None) -> list[SyncResult]:
        """Sync every active project that has reverse sync enabled.

        Raises AuthenticationError on a credential failure; later projects are not run.
        """
        self.settings.validate_for_sync()
        results: list[SyncResult] = []
        for project in projects if projects is not None else self.registry.active_projects():
            if not project.reverse_sync_enabled:
                logger.info("Skipping %s (reverse sync disabled)", project.name)
                continue
            results.append(await self.sync_project(project))
        return results

    async def sync_project(self, project: Project) -> SyncResult:
        result = SyncResult(project_id=project.id, project_name=project.name)
        if not project.prompts_path or not Path(project.prompts_path).is_dir():
            logger.warning("%s: prompts path does not exist, skipping", project.name)
            result.skipped = 1
            return result

        try:
            async with self.locks.hold(project.id):
                await self._sync_files(project, result)
        except SyncInProgressError as exc:
            logger.warning("%s", exc)
            result.skipped = 1
            result.errors.append(SyncErrorEntry(item=project.name, cause=str(exc)))
            return result
        except AuthenticationError:
            if not self.dry_run:
                self._record_run(project, result, aborted=True)
            raise

        logger.info(
            "Reverse sync %s: %d updated, %d skipped, %d failed",
            project.name,
            result.updated,
            result.skipped,
            result.failed,
        )
        if not self.dry_run:
            self._record_run(project, result)
        return result

    async def _sync_files(self, project: Project, result: SyncResult) -> None:
        files_by_folder = FileScanner(project.prompts_path).scan_all()
        total = sum(len(files) for files in files_by_folder.values())
        logger.debug("%s: %d mirrored file(s)", project.name, total)

        for folder, files in files_by_folder.items():
            for prompt_file in files:
                if not prompt_file.needs_sync:
                    result.skipped += 1
                    continue
                if self.dry_run:
                    logger.info(
                        "[dry run] Would set %s -> %s",
                        prompt_file.notion_page_id,
                        FOLDER_STATUS[folder],
                    )
                    result.updated += 1
                    result.updated_items.append(prompt_file.filename)
                    continue

                try:
                    await self._push(prompt_file, folder)
                except AuthenticationError as exc:
                    logger.error("Notion authorization failed; aborting reverse sync")
                    result.record_error(
                        prompt_file.filename,
                        str(exc),
                        ErrorType.AUTH,
                        page_id=prompt_file.notion_page_id,
                        filepath=str(prompt_file.filepath),
                    )
                    raise
                except (NSMAError, httpx.HTTPError, OSError, ValueError) as exc:
                    error_type = classify_error(exc)
                    result.record_error(
                        prompt_file.filename,
                        str(exc),
                        error_type,
                        page_id=prompt_file.notion_page_id,
                        filepath=str(prompt_file.filepath),
                    )
                    self._handle_error(prompt_file, exc, error_type, project)
                else:
                    result.updated += 1
                    result.updated_items.append(prompt_file.filename)
                    logger.info("%s -> %s", prompt_file.filename, FOLDER_STATUS[folder])
                await self._sleep(self.request_delay)

    async def _push(self, prompt_file: PromptFile, folder: Folder) -> None:
        """Set the remote status, then record the push in the file's front matter."""
        status = FOLDER_STATUS[folder]
        await self.client.update_page(
            prompt_file.notion_page_id, {"Status": {"select": {"name": status.value}}}
        )
        update_file_frontmatter(
            prompt_file.filepath,
            {"last_synced_to_notion": format_iso(now_utc()), "last_status": folder.value},
        )

    def _handle_error(
        self,
        prompt_file: PromptFile,
        exc: BaseException,
        error_type: ErrorType,
        project: Project,
    ) -> None:
        if error_type == ErrorType.RATE_LIMITED:
            logger.warning("%s: rate limited, will retry next sync", prompt_file.filename)
        elif error_type == ErrorType.DELETED:
            self._apply_error_mode(prompt_file, project)
        else:
            logger.warning("%s: skipped after error: %s", prompt_file.filename, exc)

    def _apply_error_mode(self, prompt_file: PromptFile, project: Project) -> None:
        """Handle a file whose remote record no longer exists."""
        mode = project.reverse_sync_error_mode
        reason = "Notion page not found (may have been deleted)"
        try:
            if mode == ErrorMode.DELETE:
                prompt_file.filepath.unlink()
                logger.warning("Deleted %s: %s", prompt_file.filename, reason)
            elif mode == ErrorMode.ARCHIVE:
                if prompt_file.folder == Folder.ARCHIVED:
                    logger.warning("%s already archived: %s", prompt_file.filename, reason)
                    return
                target_dir = Path(project.prompts_path) / Folder.ARCHIVED
                target_dir.mkdir(parents=True, exist_ok=True)
                target_name = free_filename(prompt_file.filename, [target_dir])
                prompt_file.filepath.rename(target_dir / target_name)
                logger.warning(
                    "Moved %s to archived/%s: %s", prompt_file.filename, target_name, reason
                )
            else:
                logger.warning("Skipping %s: %s", prompt_file.filename, reason)
        except OSError:
            logger.exception("Failed to apply %s to %s", mode, prompt_file.filename)

    def _record_run(self, project: Project, result: SyncResult, *, aborted: bool = False) -> None:
        """Persist run stats and an audit entry; an aborted run is logged at error level."""
        now = format_iso(now_utc())
        summary = f"{result.updated} updated, {result.skipped} skipped, {result.failed} failed"
        if not project.is_system:
            self.registry.update(
                project.id,
                last_reverse_sync={
                    "timestamp": now,
                    "updated": result.updated,
                    "failed": result.failed,
                    "skipped": result.skipped,
                },
            )
        self.audit_log.append(
            operation=REVERSE_SYNC_OPERATION,
            project_id=project.id,
            project_name=project.name,
            message=(
                f"Reverse sync aborted on authorization failure: {summary}"
                if aborted
                else f"Reverse sync: {summary}"
            ),
            counts=result.counts,
            errors=[
                {
                    "item": e.item,
                    "cause": e.cause,
                    "error_type": str(e.error_type),
                    "page_id": e.page_id,
                }
                for e in result.errors
            ],
            items=result.updated_items,
            level=AuditLevel.ERROR if aborted else None,
        )
