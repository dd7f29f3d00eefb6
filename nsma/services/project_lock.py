"""Per-project single-flight guard shared by the sync engines and the config watcher."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from nsma.exceptions import SyncInProgressError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class ProjectLocks:
    """One asyncio lock per project id.

    ``hold`` refuses to start while the project is busy; ``wait`` queues behind the
    in-flight holder instead.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, project_id: str) -> AsyncIterator[None]:
        """Run exclusively for ``project_id``.

        Raises SyncInProgressError if another holder is active.
        """
        lock = self._lock(project_id)
        if lock.locked():
            raise SyncInProgressError(f"Sync already in progress for project {project_id}")
        async with lock:
            yield

    @asynccontextmanager
    async def wait(self, project_id: str) -> AsyncIterator[None]:
        """Run exclusively for ``project_id``, waiting for any in-flight holder."""
        lock = self._lock(project_id)
        if lock.locked():
            logger.debug("Waiting for in-flight work on project %s", project_id)
        async with lock:
            yield
