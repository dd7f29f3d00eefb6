"""Project registry entries and their phase/module taxonomy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from nsma.models.item import Folder

INBOX_PROJECT_ID = "__inbox__"
DEFAULT_PHASE_PRIORITY = 99


class ErrorMode(StrEnum):
    """How reverse sync treats a local file whose remote record is gone."""

    SKIP = "skip"
    DELETE = "delete"
    ARCHIVE = "archive"


class PromptMode(StrEnum):
    """How a project's custom AI prompt combines with the default system prompt."""

    EXTEND = "extend"
    REPLACE = "replace"


@dataclass
class Phase:
    """A named work grouping, optionally keyword-matched."""

    id: str
    name: str
    description: str = ""
    keywords: list[str] = field(default_factory=list)
    priority: int = DEFAULT_PHASE_PRIORITY


@dataclass
class Module:
    """A named code area; ``phase`` references a phase by name or id."""

    id: str
    name: str
    file_paths: list[str] = field(default_factory=list)
    phase: str | None = None
    description: str = ""


def empty_stats() -> dict[str, int]:
    return {folder.value: 0 for folder in Folder}


@dataclass
class Project:
    """A registered project and the state the sync engines keep about it."""

    id: str
    name: str
    slug: str
    prompts_path: str = ""
    active: bool = True
    phases: list[Phase] = field(default_factory=list)
    modules: list[Module] = field(default_factory=list)
    module_phase_mapping: dict[str, str] = field(default_factory=dict)
    config_source: str | None = None
    last_imported_at: str | None = None
    config_file_mtimes: dict[str, float] = field(default_factory=dict)
    stats: dict[str, int] = field(default_factory=empty_stats)
    last_sync: dict[str, Any] | None = None
    last_sync_at: str | None = None
    last_reverse_sync: dict[str, Any] | None = None
    reverse_sync_enabled: bool = True
    reverse_sync_error_mode: ErrorMode = ErrorMode.SKIP
    ai_prompt_enabled: bool = True
    ai_prompt_mode: PromptMode = PromptMode.EXTEND
    ai_prompt_custom: str = ""
    is_system: bool = False

    @property
    def is_inbox(self) -> bool:
        return self.id == INBOX_PROJECT_ID

    @property
    def project_root(self) -> Path | None:
        """Directory holding the config docs: the parent of a ``prompts`` folder."""
        if not self.prompts_path:
            return None
        path = Path(self.prompts_path)
        return path.parent if path.name == "prompts" else path

    def module_by_name(self, name: str) -> Module | None:
        for module in self.modules:
            if module.name == name:
                return module
        return None

    def phase_by_id(self, phase_id: str) -> Phase | None:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        return None


def inbox_project(prompts_path: str) -> Project:
    """Build the system Inbox project for blank or unrecognized project slugs."""
    return Project(
        id=INBOX_PROJECT_ID,
        name="Inbox",
        slug=INBOX_PROJECT_ID,
        prompts_path=prompts_path,
        is_system=True,
        reverse_sync_enabled=False,
    )
