"""Domain data classes for Notion Sync Manager."""

from nsma.models.item import FOLDER_STATUS, Folder, ItemStatus, RemoteItem
from nsma.models.project import (
    INBOX_PROJECT_ID,
    ErrorMode,
    Module,
    Phase,
    Project,
    PromptMode,
    inbox_project,
)
from nsma.models.sync import ErrorType, SyncErrorEntry, SyncResult

__all__ = [
    "FOLDER_STATUS",
    "INBOX_PROJECT_ID",
    "ErrorMode",
    "ErrorType",
    "Folder",
    "ItemStatus",
    "Module",
    "Phase",
    "Project",
    "PromptMode",
    "RemoteItem",
    "SyncErrorEntry",
    "SyncResult",
    "inbox_project",
]
