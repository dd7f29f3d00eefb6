"""Live re-import of project taxonomy and prompt-folder recounts."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import awatch

from nsma.exceptions import ConfigurationError, NSMAError
from nsma.filesystem.config_parser import ConfigParser, config_watch_dirs, is_config_path
from nsma.filesystem.file_scanner import FileScanner
from nsma.services.project_lock import ProjectLocks

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Set as AbstractSet

    from watchfiles import Change

    from nsma.config import Settings
    from nsma.filesystem.registry import ProjectRegistry
    from nsma.models.project import Project

logger = logging.getLogger(__name__)

# Raw watchfiles batching; the per-project Debouncer owns the quiet period.
WATCH_DEBOUNCE_MS = 50
WATCH_STEP_MS = 25


@dataclass
class RefreshResult:
    """Outcome of one config re-import."""

    project_id: str
    success: bool
    phases_before: int = 0
    phases_after: int = 0
    modules_before: int = 0
    modules_after: int = 0
    error: str | None = None


@dataclass
class SweepResult:
    checked: int = 0
    refreshed: int = 0


class Debouncer:
    """Runs ``callback`` once ``delay`` seconds after the last ``trigger``.

    A trigger while a call is pending cancels and restarts the wait, so a burst of
    events fires the callback once.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[object]]) -> None:
        self.delay = delay
        self.callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._fire())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait for the pending call, if any, to finish."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self.callback()
        except Exception:
            logger.exception("Debounced callback failed")


@dataclass
class ProjectWatchHandle:
    """The two filesystem watches and debounce timers of one project."""

    project_id: str
    project_root: Path
    prompts_path: Path | None
    config_debouncer: Debouncer
    prompts_debouncer: Debouncer
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def on_config_changes(self, changes: AbstractSet[tuple[Change, str]]) -> None:
        if any(is_config_path(self.project_root, path) for _, path in changes):
            self.config_debouncer.trigger()

    def on_prompt_changes(self, changes: AbstractSet[tuple[Change, str]]) -> None:
        if any(path.endswith(".md") for _, path in changes):
            self.prompts_debouncer.trigger()

    async def start(self) -> None:
        if self._tasks:
            return
        self._stop_event.clear()
        watch_dirs = config_watch_dirs(self.project_root)
        if watch_dirs:
            self._tasks.append(asyncio.create_task(self._watch_config(watch_dirs)))
        if self.prompts_path is not None and self.prompts_path.is_dir():
            self._tasks.append(asyncio.create_task(self._watch_prompts(self.prompts_path)))

    async def stop(self) -> None:
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        self.config_debouncer.cancel()
        self.prompts_debouncer.cancel()

    async def _watch_config(self, watch_dirs: list[Path]) -> None:
        async for changes in awatch(
            *watch_dirs,
            watch_filter=lambda _change, path: is_config_path(self.project_root, path),
            recursive=False,
            debounce=WATCH_DEBOUNCE_MS,
            step=WATCH_STEP_MS,
            stop_event=self._stop_event,
        ):
            logger.debug("Config change in %s: %s", self.project_id, changes)
            self.on_config_changes(changes)

    async def _watch_prompts(self, prompts_path: Path) -> None:
        async for changes in awatch(
            prompts_path,
            watch_filter=lambda _change, path: path.endswith(".md"),
            debounce=WATCH_DEBOUNCE_MS,
            step=WATCH_STEP_MS,
            stop_event=self._stop_event,
        ):
            self.on_prompt_changes(changes)


class ConfigWatcher:
    """Owns one ProjectWatchHandle per active project plus a periodic sweep.

    Refreshes of the same project never overlap: a refresh triggered while another
    is in flight waits for it to finish.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        *,
        locks: ProjectLocks | None = None,
        config_debounce_ms: int = 300,
        prompts_debounce_ms: int = 500,
        sweep_interval: float = 300.0,
    ) -> None:
        self.registry = registry
        self.locks = locks or ProjectLocks()
        self.config_debounce = config_debounce_ms / 1000
        self.prompts_debounce = prompts_debounce_ms / 1000
        self.sweep_interval = sweep_interval
        self.handles: dict[str, ProjectWatchHandle] = {}
        self._sweep_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @classmethod
    def from_settings(
        cls, settings: Settings, registry: ProjectRegistry, locks: ProjectLocks | None = None
    ) -> ConfigWatcher:
        return cls(
            registry,
            locks=locks,
            config_debounce_ms=settings.config_debounce_ms,
            prompts_debounce_ms=settings.prompts_debounce_ms,
            sweep_interval=settings.config_sweep_interval_seconds,
        )

    @staticmethod
    def config_mtimes(project: Project) -> dict[str, float]:
        root = project.project_root
        if root is None or not root.is_dir():
            return {}
        return ConfigParser(root).config_mtimes()

    @staticmethod
    def has_config_changed(project: Project) -> bool:
        """True if any discovered config file is newer than, or absent from, the snapshot.

        Files that vanish or cannot be stat'ed are skipped, not counted as changes.
        """
        root = project.project_root
        if root is None or not root.is_dir():
            return False
        for config_file in ConfigParser(root).find_config_files():
            try:
                mtime = config_file.filepath.stat().st_mtime
            except OSError:
                continue
            last = project.config_file_mtimes.get(str(config_file.filepath))
            if last is None or mtime > last:
                return True
        return False

    async def refresh_config(self, project_id: str) -> RefreshResult:
        """Re-import the project's taxonomy, keeping existing entity ids."""
        async with self.locks.wait(f"{project_id}:config"):
            return self._refresh(project_id)

    def _refresh(self, project_id: str) -> RefreshResult:
        project = self.registry.get(project_id)
        if project is None:
            return RefreshResult(project_id, success=False, error="Project not found")
        root = project.project_root
        if root is None or not root.is_dir():
            return RefreshResult(project_id, success=False, error="Project path not found")

        parser = ConfigParser(root)
        try:
            imported = parser.auto_import(project)
            self.registry.update(
                project.id,
                phases=imported.phases,
                modules=imported.modules,
                module_phase_mapping=imported.module_phase_mapping,
                config_source=imported.config_source,
                last_imported_at=imported.last_imported_at,
                config_file_mtimes=parser.config_mtimes(),
            )
        except (NSMAError, OSError) as exc:
            logger.error("Config refresh failed for %s: %s", project.name, exc)
            return RefreshResult(project_id, success=False, error=str(exc))

        result = RefreshResult(
            project_id,
            success=True,
            phases_before=len(project.phases),
            phases_after=len(imported.phases),
            modules_before=len(project.modules),
            modules_after=len(imported.modules),
        )
        logger.info(
            "Config refreshed for %s: phases %d -> %d, modules %d -> %d",
            project.name,
            result.phases_before,
            result.phases_after,
            result.modules_before,
            result.modules_after,
        )
        return result

    def recount_prompts(self, project_id: str) -> dict[str, int]:
        """Store fresh per-folder file counts for a project."""
        project = self.registry.get(project_id)
        if project is None or not project.prompts_path or project.is_system:
            return {}
        stats = FileScanner(project.prompts_path).count_files()
        try:
            self.registry.update(project.id, stats=stats)
        except ConfigurationError:
            logger.warning("Project %s vanished before its stats could be saved", project_id)
        logger.debug("Recounted prompts for %s: %s", project.name, stats)
        return stats

    async def refresh_all(self) -> SweepResult:
        """Reparse every active project whose config files changed since the last import."""
        sweep = SweepResult()
        for project in self.registry.active_projects():
            sweep.checked += 1
            if not self.has_config_changed(project):
                continue
            if (await self.refresh_config(project.id)).success:
                sweep.refreshed += 1
        if sweep.refreshed:
            logger.info("Config sweep: %d/%d project(s) updated", sweep.refreshed, sweep.checked)
        return sweep

    def _make_handle(self, project: Project) -> ProjectWatchHandle | None:
        root = project.project_root
        if root is None or not root.is_dir():
            return None
        root = root.resolve()

        async def refresh() -> None:
            await self.refresh_config(project.id)

        async def recount() -> None:
            self.recount_prompts(project.id)

        return ProjectWatchHandle(
            project_id=project.id,
            project_root=root,
            prompts_path=Path(project.prompts_path).resolve() if project.prompts_path else None,
            config_debouncer=Debouncer(self.config_debounce, refresh),
            prompts_debouncer=Debouncer(self.prompts_debounce, recount),
        )

    async def watch_project(self, project: Project) -> ProjectWatchHandle | None:
        if project.id in self.handles:
            return self.handles[project.id]
        handle = self._make_handle(project)
        if handle is None:
            logger.info("No project directory to watch for %s", project.name)
            return None
        await handle.start()
        self.handles[project.id] = handle
        logger.info("Watching %s", project.name)
        return handle

    async def unwatch_project(self, project_id: str) -> None:
        handle = self.handles.pop(project_id, None)
        if handle is not None:
            await handle.stop()

    async def sync_watches(self) -> None:
        """Start handles for newly active projects and stop those no longer active."""
        active = {project.id: project for project in self.registry.active_projects()}
        for project_id in list(self.handles):
            if project_id not in active:
                await self.unwatch_project(project_id)
        for project in active.values():
            await self.watch_project(project)

    async def start(self) -> None:
        self._stop_event.clear()
        await self.sync_watches()
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        for project_id in list(self.handles):
            await self.unwatch_project(project_id)

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.refresh_all()
                await self.sync_watches()
            except Exception:
                logger.exception("Config sweep failed")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval)
