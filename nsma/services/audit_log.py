"""Append-only JSON-lines audit log of sync runs."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from nsma.services.datetime_service import format_iso, now_utc

logger = logging.getLogger(__name__)

AUDIT_LOG_FILENAME = "sync-logs.jsonl"


class AuditLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class AuditEntry:
    """One line of the audit log."""

    timestamp: str
    level: str
    operation: str
    project_id: str
    project_name: str
    message: str
    counts: dict[str, int] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)
    items: list[str] = field(default_factory=list)


class AuditLog:
    """Audit sink stored under the config directory."""

    def __init__(self, config_dir: Path | str) -> None:
        self.path = Path(config_dir) / AUDIT_LOG_FILENAME

    def append(
        self,
        *,
        operation: str,
        project_id: str,
        project_name: str,
        message: str,
        counts: dict[str, int] | None = None,
        errors: list[dict[str, Any]] | None = None,
        items: list[str] | None = None,
        level: AuditLevel | None = None,
    ) -> AuditEntry:
        """Write one entry; the level defaults to warning when errors are present."""
        errors = errors or []
        entry = AuditEntry(
            timestamp=format_iso(now_utc()),
            level=str(level or (AuditLevel.WARNING if errors else AuditLevel.INFO)),
            operation=operation,
            project_id=project_id,
            project_name=project_name,
            message=message,
            counts=dict(counts or {}),
            errors=errors,
            items=list(items or []),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry), ensure_ascii=False) + "\n")
        return entry

    def read(self, limit: int | None = None) -> list[AuditEntry]:
        """Return the most recent entries, oldest first; corrupt lines are skipped."""
        if not self.path.exists():
            return []
        entries: deque[AuditEntry] = deque(maxlen=limit)
        with self.path.open(encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry(**json.loads(line)))
                except (ValueError, TypeError):
                    logger.warning("Skipping corrupt audit log line %d in %s", line_no, self.path)
        return list(entries)
