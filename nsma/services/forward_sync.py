"""Forward sync: remote items -> local prompt files."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from nsma.exceptions import AuthenticationError, ConfigurationError, NSMAError, SyncInProgressError
from nsma.filesystem.file_scanner import FileScanner
from nsma.filesystem.frontmatter import write_document
from nsma.models.item import Folder, ItemStatus
from nsma.models.sync import SyncErrorEntry, SyncResult
from nsma.services.audit_log import AuditLog
from nsma.services.content_generator import ContentGenerator
from nsma.services.datetime_service import format_iso, now_utc
from nsma.services.project_lock import ProjectLocks
from nsma.services.retry_service import classify_error

if TYPE_CHECKING:
    from datetime import date

    from nsma.ai.chain import AIProviderChain
    from nsma.config import Settings
    from nsma.filesystem.registry import ProjectRegistry
    from nsma.models.item import RemoteItem
    from nsma.models.project import Project
    from nsma.notion.client import NotionClient

logger = logging.getLogger(__name__)

SYNC_OPERATION = "sync"
REASON_NO_PROJECT = "No project assigned"
INBOX_NOTE = "Routed to Inbox - needs project assignment"


@dataclass
class Partition:
    """Items grouped by destination project."""

    by_slug: dict[str, list[RemoteItem]] = field(default_factory=dict)
    inbox: list[RemoteItem] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)


def partition_items(items: list[RemoteItem], active_projects: list[Project]) -> Partition:
    """Group items by project slug; blank and unknown slugs go to the Inbox with a reason."""
    active_slugs = {project.slug for project in active_projects}
    partition = Partition()
    for item in items:
        slug = item.project.strip()
        if not slug:
            reason = REASON_NO_PROJECT
        elif slug not in active_slugs:
            reason = f"Unknown project: {slug}"
        else:
            partition.by_slug.setdefault(slug, []).append(item)
            continue
        partition.inbox.append(item)
        partition.reasons[item.id] = reason
    return partition


def build_forward_properties(
    *,
    phase: str,
    effort: str,
    filepath: Path,
    filename: str,
    is_inbox: bool,
    today: date,
) -> dict[str, Any]:
    """Remote properties written once an item's prompt file exists."""
    note = INBOX_NOTE if is_inbox else f"Prompt generated: {filename}"
    return {
        "Status": {"select": {"name": ItemStatus.IN_PROGRESS.value}},
        "Assigned Phase": {"select": {"name": phase}},
        "Estimated Effort": {"select": {"name": effort}},
        "Generated Prompt Location": {"url": str(filepath)},
        "Analysis Notes": {"rich_text": [{"text": {"content": note}}]},
        "Processed Date": {"date": {"start": today.isoformat()}},
    }


class ForwardSyncEngine:
    """Pulls unclassified items and writes one prompt file per item.

    Projects and items are processed sequentially.  A failing item is logged and
    counted; only AuthenticationError and ConfigurationError escape ``run``.
    """

    def __init__(
        self,
        settings: Settings,
        registry: ProjectRegistry,
        client: NotionClient,
        *,
        chain: AIProviderChain | None = None,
        audit_log: AuditLog | None = None,
        locks: ProjectLocks | None = None,
        dry_run: bool = False,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.client = client
        self.chain = chain
        self.audit_log = audit_log or AuditLog(settings.config_dir)
        self.locks = locks or ProjectLocks()
        self.dry_run = dry_run

    async def run(self, project_ref: str | None = None) -> list[SyncResult]:
        """Sync every active project plus the Inbox, or only ``project_ref``.

        Raises ConfigurationError for missing credentials or an unknown target project.
        """
        self.settings.validate_for_sync()
        if self.dry_run:
            logger.info("Dry run: no files or remote items will be modified")

        if project_ref:
            project = self.registry.find(project_ref)
            if project is None:
                raise ConfigurationError(f"Project not found: {project_ref}")
            items = await self._query(project.slug)
            if isinstance(items, SyncResult):
                return [items]
            if not items:
                logger.info("No unprocessed items for %s", project.name)
                return [SyncResult(project_id=project.id, project_name=project.name)]
            return [await self.sync_bucket(project, items)]

        items = await self._query(None)
        if isinstance(items, SyncResult):
            return [items]
        logger.info("Found %d unprocessed item(s)", len(items))

        projects = self.registry.active_projects()
        partition = partition_items(items, projects)
        results: list[SyncResult] = []
        for project in projects:
            bucket = partition.by_slug.get(project.slug, [])
            if not bucket:
                logger.debug("%s: no items", project.name)
                results.append(SyncResult(project_id=project.id, project_name=project.name))
                continue
            results.append(await self.sync_bucket(project, bucket))

        if partition.inbox:
            for item in partition.inbox:
                logger.info("Routing %r to Inbox: %s", item.title, partition.reasons[item.id])
            results.append(
                await self.sync_bucket(
                    self.registry.inbox(),
                    partition.inbox,
                    is_inbox=True,
                    routing=partition.reasons,
                )
            )
        return results

    async def _query(self, project_slug: str | None) -> list[RemoteItem] | SyncResult:
        """Fetch unclassified items, or a failed result when the query itself fails."""
        try:
            return await self.client.query_database(ItemStatus.NOT_STARTED, project_slug)
        except AuthenticationError:
            raise
        except (NSMAError, httpx.HTTPError, OSError) as exc:
            logger.exception("Failed to query remote items")
            result = SyncResult(project_id=project_slug or "*", project_name=project_slug or "*")
            result.record_error("query", str(exc), classify_error(exc))
            return result

    async def sync_bucket(
        self,
        project: Project,
        items: list[RemoteItem],
        *,
        is_inbox: bool = False,
        routing: dict[str, str] | None = None,
    ) -> SyncResult:
        """Process one project's items under that project's single-flight guard."""
        result = SyncResult(project_id=project.id, project_name=project.name)
        if routing:
            result.routing = {item.id: routing[item.id] for item in items if item.id in routing}
        if not project.prompts_path:
            logger.warning("%s has no prompts path configured; skipping", project.name)
            result.skipped = len(items)
            return result

        try:
            async with self.locks.hold(project.id):
                await self._process_bucket(project, items, result, is_inbox)
        except SyncInProgressError as exc:
            logger.warning("%s", exc)
            result.skipped = len(items)
            result.errors.append(SyncErrorEntry(item=project.name, cause=str(exc)))
        return result

    async def _process_bucket(
        self,
        project: Project,
        items: list[RemoteItem],
        result: SyncResult,
        is_inbox: bool,
    ) -> None:
        prompts_path = Path(project.prompts_path)
        scanner = FileScanner(prompts_path)
        if not self.dry_run:
            scanner.ensure_folders()

        generator = ContentGenerator(
            project,
            chain=self.chain,
            success_criteria=self.settings.success_criteria_template,
            feature_dev_enabled=self.settings.feature_dev_enabled,
            feature_dev_types=self.settings.feature_dev_types,
        )
        logger.info("Processing %s (%d item(s))", project.name, len(items))

        for item in items:
            try:
                await self._process_item(item, generator, prompts_path, is_inbox)
            except AuthenticationError:
                raise
            except (NSMAError, httpx.HTTPError, OSError, ValueError) as exc:
                logger.exception("Failed to process %r", item.title)
                result.record_error(item.title, str(exc), classify_error(exc), page_id=item.id)
                continue
            result.updated += 1
            result.updated_items.append(item.title)

        result.skipped = len(items) - result.updated - result.failed
        if self.dry_run:
            logger.info("Dry run for %s: %d item(s) would be written", project.name, result.updated)
            return

        self._record_run(project, result, scanner.count_files(), is_inbox)

    async def _process_item(
        self,
        item: RemoteItem,
        generator: ContentGenerator,
        prompts_path: Path,
        is_inbox: bool,
    ) -> None:
        page_content: str | None = None
        if item.is_hydrated:
            page_content = await self.client.get_page_markdown(item.id)

        pending = prompts_path / Folder.PENDING
        generated = await generator.generate(
            item,
            page_content=page_content,
            directories=FileScanner(prompts_path).folder_paths(),
            original_project=item.project if is_inbox and item.project else None,
        )
        filepath = pending / generated.filename
        logger.info(
            "%r -> phase=%s effort=%s (%s)",
            item.title,
            generated.phase,
            generated.effort,
            generated.body_source,
        )
        if self.dry_run:
            logger.info("[dry run] Would write %s", filepath)
            return

        write_document(filepath, generated.content)
        logger.info("Wrote %s", filepath)
        await self.client.update_page(
            item.id,
            build_forward_properties(
                phase=generated.phase,
                effort=generated.effort,
                filepath=filepath,
                filename=generated.filename,
                is_inbox=is_inbox,
                today=now_utc().date(),
            ),
        )

    def _record_run(
        self,
        project: Project,
        result: SyncResult,
        stats: dict[str, int],
        is_inbox: bool,
    ) -> None:
        now = format_iso(now_utc())
        if not project.is_system:
            self.registry.update(
                project.id,
                stats=stats,
                last_sync={
                    "timestamp": now,
                    "imported": result.updated,
                    "failed": result.failed,
                    "skipped": result.skipped,
                },
                last_sync_at=now,
            )
        message = (
            f"Sync completed with {result.failed} error(s)"
            if result.failed
            else "Sync completed successfully"
        )
        if is_inbox:
            message += " (Inbox)"
        self.audit_log.append(
            operation=SYNC_OPERATION,
            project_id=project.id,
            project_name=project.name,
            message=message,
            counts=result.counts,
            errors=[
                {"item": e.item, "cause": e.cause, "error_type": str(e.error_type)}
                for e in result.errors
            ],
            items=result.updated_items,
        )
        logger.info(
            "%s: imported %d, failed %d", project.name, result.updated, result.failed
        )
