"""Project registry stored as ``projects.toml`` in the config directory."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import asdict, fields, replace
from pathlib import Path
from typing import Any

import tomli_w

from nsma.exceptions import ConfigurationError
from nsma.models.project import (
    INBOX_PROJECT_ID,
    ErrorMode,
    Module,
    Phase,
    Project,
    PromptMode,
    empty_stats,
    inbox_project,
)

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = "projects.toml"

_PROJECT_FIELDS = frozenset(f.name for f in fields(Project))


def _strip_none(value: Any) -> Any:
    """Drop None values recursively; TOML has no null."""
    if isinstance(value, dict):
        return {k: _strip_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_strip_none(v) for v in value if v is not None]
    return value


def _phase_from_dict(data: dict[str, Any]) -> Phase:
    return Phase(
        id=data["id"],
        name=data.get("name", data["id"]),
        description=data.get("description", ""),
        keywords=list(data.get("keywords", [])),
        priority=int(data.get("priority", 99)),
    )


def _module_from_dict(data: dict[str, Any]) -> Module:
    return Module(
        id=data["id"],
        name=data.get("name", data["id"]),
        file_paths=list(data.get("file_paths", [])),
        phase=data.get("phase"),
        description=data.get("description", ""),
    )


def project_from_dict(data: dict[str, Any]) -> Project:
    """Build a Project from one ``[[projects]]`` table."""
    if "id" not in data:
        msg = f"Project entry missing required 'id' field: {data}"
        raise ValueError(msg)
    stats = empty_stats()
    stats.update({k: int(v) for k, v in data.get("stats", {}).items()})
    return Project(
        id=data["id"],
        name=data.get("name", data["id"]),
        slug=data.get("slug", data["id"]),
        prompts_path=data.get("prompts_path", ""),
        active=bool(data.get("active", True)),
        phases=[_phase_from_dict(p) for p in data.get("phases", [])],
        modules=[_module_from_dict(m) for m in data.get("modules", [])],
        module_phase_mapping=dict(data.get("module_phase_mapping", {})),
        config_source=data.get("config_source"),
        last_imported_at=data.get("last_imported_at"),
        config_file_mtimes={k: float(v) for k, v in data.get("config_file_mtimes", {}).items()},
        stats=stats,
        last_sync=data.get("last_sync"),
        last_sync_at=data.get("last_sync_at"),
        last_reverse_sync=data.get("last_reverse_sync"),
        reverse_sync_enabled=bool(data.get("reverse_sync_enabled", True)),
        reverse_sync_error_mode=ErrorMode(data.get("reverse_sync_error_mode", ErrorMode.SKIP)),
        ai_prompt_enabled=bool(data.get("ai_prompt_enabled", True)),
        ai_prompt_mode=PromptMode(data.get("ai_prompt_mode", PromptMode.EXTEND)),
        ai_prompt_custom=data.get("ai_prompt_custom", ""),
    )


def project_to_dict(project: Project) -> dict[str, Any]:
    data = asdict(project)
    data.pop("is_system", None)
    data["reverse_sync_error_mode"] = str(project.reverse_sync_error_mode)
    data["ai_prompt_mode"] = str(project.ai_prompt_mode)
    return _strip_none(data)


class ProjectRegistry:
    """Reads and writes registered projects.

    The file is re-read on every call so that separate processes (a daemon and a
    one-off CLI run) observe each other's writes.  The Inbox project is synthesized
    and never stored.
    """

    def __init__(self, config_dir: Path | str, inbox_path: Path | str | None = None) -> None:
        self.config_dir = Path(config_dir)
        self.path = self.config_dir / REGISTRY_FILENAME
        self.inbox_path = Path(inbox_path) if inbox_path else self.config_dir / "inbox"

    def inbox(self) -> Project:
        return inbox_project(str(self.inbox_path))

    def list_projects(self) -> list[Project]:
        if not self.path.exists():
            return []
        data = tomllib.loads(self.path.read_text(encoding="utf-8"))
        return [project_from_dict(entry) for entry in data.get("projects", [])]

    def active_projects(self) -> list[Project]:
        return [p for p in self.list_projects() if p.active]

    def get(self, project_id: str) -> Project | None:
        if project_id == INBOX_PROJECT_ID:
            return self.inbox()
        for project in self.list_projects():
            if project.id == project_id:
                return project
        return None

    def find(self, ref: str) -> Project | None:
        """Look a project up by slug, then name, then id."""
        projects = self.list_projects()
        for attr in ("slug", "name", "id"):
            for project in projects:
                if getattr(project, attr) == ref:
                    return project
        if ref == INBOX_PROJECT_ID:
            return self.inbox()
        return None

    def save(self, projects: list[Project]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        payload = {"projects": [project_to_dict(p) for p in projects if not p.is_system]}
        self.path.write_bytes(tomli_w.dumps(payload).encode("utf-8"))

    def add(self, project: Project) -> Project:
        """Register a new project.

        Raises ConfigurationError if the id or slug is already taken.
        """
        if project.id == INBOX_PROJECT_ID or project.slug == INBOX_PROJECT_ID:
            raise ConfigurationError(f"'{INBOX_PROJECT_ID}' is reserved for the Inbox")
        projects = self.list_projects()
        for existing in projects:
            if existing.id == project.id or existing.slug == project.slug:
                raise ConfigurationError(f"Project already registered: {project.slug}")
        projects.append(project)
        self.save(projects)
        logger.info("Registered project %s (%s)", project.name, project.slug)
        return project

    def update(self, project_id: str, **changes: Any) -> Project:
        """Apply field changes to a stored project and persist them.

        Raises ConfigurationError for unknown projects or fields.
        """
        unknown = set(changes) - _PROJECT_FIELDS
        if unknown:
            raise ConfigurationError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        projects = self.list_projects()
        for index, project in enumerate(projects):
            if project.id == project_id:
                updated = replace(project, **changes)
                projects[index] = updated
                self.save(projects)
                return updated
        raise ConfigurationError(f"Project not found: {project_id}")
