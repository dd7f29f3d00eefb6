"""Structured outcome of a forward or reverse sync run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ErrorType(StrEnum):
    """Coarse classification of a per-item failure, used for audit display."""

    AUTH = "auth"
    PERMISSION = "permission"
    RATE_LIMITED = "rate_limited"
    DELETED = "deleted"
    NETWORK = "network"
    IO = "io"
    OTHER = "other"


@dataclass
class SyncErrorEntry:
    """One item or file that failed."""

    item: str
    cause: str
    error_type: ErrorType = ErrorType.OTHER
    page_id: str | None = None
    filepath: str | None = None


@dataclass
class SyncResult:
    """Counts and error details for one project bucket."""

    project_id: str
    project_name: str
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[SyncErrorEntry] = field(default_factory=list)
    updated_items: list[str] = field(default_factory=list)
    routing: dict[str, str] = field(default_factory=dict)

    def record_error(
        self,
        item: str,
        cause: str,
        error_type: ErrorType = ErrorType.OTHER,
        *,
        page_id: str | None = None,
        filepath: str | None = None,
    ) -> None:
        self.failed += 1
        self.errors.append(
            SyncErrorEntry(
                item=item,
                cause=cause,
                error_type=error_type,
                page_id=page_id,
                filepath=filepath,
            )
        )

    @property
    def counts(self) -> dict[str, int]:
        return {"updated": self.updated, "failed": self.failed, "skipped": self.skipped}
