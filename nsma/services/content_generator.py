"""Prompt file generation: classification, effort sizing and rendering."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from nsma.ai.prompts import (
    build_feature_dev_prompt,
    build_feature_dev_system_prompt,
    build_system_prompt,
    build_user_prompt,
    format_feature_dev_sections,
)
from nsma.filesystem.file_scanner import free_filename
from nsma.filesystem.frontmatter import render_frontmatter
from nsma.services.datetime_service import format_compact_date, format_iso, now_utc
from nsma.services.slug_service import MAX_TITLE_SLUG_LENGTH, filename_slug

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date
    from pathlib import Path

    from nsma.ai.chain import AIProviderChain
    from nsma.models.item import RemoteItem
    from nsma.models.project import Project

logger = logging.getLogger(__name__)

FALLBACK_PHASE = "Backlog"

EFFORT_XS = "XS - < 2 hours"
EFFORT_S = "S - 2-4 hours"
EFFORT_M = "M - 1-2 days"
EFFORT_L = "L - 3-5 days"

TYPE_SCORES: dict[str, int] = {
    "Feature": 3,
    "Improvement": 2,
    "Bug Fix": 1,
    "Technical Debt": 2,
    "Research/Spike": 2,
}
DEFAULT_TYPE_SCORE = 2
LONG_DESCRIPTION_LENGTH = 500

DEPENDENCY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("payment", ("payment gateway",)),
    ("sms", ("SMS gateway", "notification service")),
    ("email", ("email service", "notification service")),
    ("notification", ("notification service",)),
    ("report", ("reporting engine",)),
    ("authentication", ("authentication service",)),
    ("database", ("database migration",)),
    ("api", ("API layer",)),
)


class BodySource(StrEnum):
    """Where the body of a rendered prompt came from."""

    HYDRATED = "hydrated"
    AI = "ai"
    DESCRIPTION = "description"


def determine_phase(item: RemoteItem, project: Project) -> str:
    """Pick the phase name for an item.

    The module->phase mapping wins over keywords; without either the first configured
    phase is used, and "Backlog" when the project has no phases.
    """
    module = project.module_by_name(item.affected_module) if item.affected_module else None
    if module is not None:
        phase_id = project.module_phase_mapping.get(module.id)
        phase = project.phase_by_id(phase_id) if phase_id else None
        if phase is not None:
            return phase.name

    text = item.search_text
    for phase in project.phases:
        if any(keyword.lower() in text for keyword in phase.keywords if keyword):
            return phase.name

    return project.phases[0].name if project.phases else FALLBACK_PHASE


def estimate_effort(item: RemoteItem) -> str:
    score = TYPE_SCORES.get(item.type, DEFAULT_TYPE_SCORE)
    if len(item.description) > LONG_DESCRIPTION_LENGTH:
        score += 1
    if score <= 1:
        return EFFORT_XS
    if score <= 3:
        return EFFORT_S
    if score <= 5:
        return EFFORT_M
    return EFFORT_L


def identify_dependencies(item: RemoteItem) -> list[str]:
    """Return dependency tags implied by keywords, first occurrence order, no duplicates."""
    text = item.search_text
    dependencies: list[str] = []
    for keyword, tags in DEPENDENCY_KEYWORDS:
        if keyword in text:
            dependencies.extend(tag for tag in tags if tag not in dependencies)
    return dependencies


def related_files(item: RemoteItem, project: Project) -> list[str]:
    module = project.module_by_name(item.affected_module) if item.affected_module else None
    return list(module.file_paths) if module is not None else []


def generate_filename(
    item: RemoteItem,
    phase: str,
    *,
    today: date | None = None,
    directories: Iterable[Path] = (),
) -> str:
    """Build ``{YYYYMMDD}_{phase-slug}_{title-slug}.md``.

    When any of ``directories`` already holds that name, ``_2``, ``_3``... is
    appended to the stem.
    """
    day = today or now_utc().date()
    stem = (
        f"{format_compact_date(day)}_{filename_slug(phase)}_"
        f"{filename_slug(item.title, MAX_TITLE_SLUG_LENGTH)}"
    )
    return free_filename(f"{stem}.md", directories)


def _bullets(values: Iterable[str], empty: str, code: bool = False) -> str:
    lines = [f"- `{value}`" if code else f"- {value}" for value in values]
    return "\n".join(lines) if lines else empty


@dataclass
class GeneratedPrompt:
    """A rendered prompt file and the derived values written into it."""

    content: str
    filename: str
    phase: str
    effort: str
    dependencies: list[str] = field(default_factory=list)
    generated_at: str = ""
    body_source: BodySource = BodySource.DESCRIPTION


def render_prompt(
    item: RemoteItem,
    project: Project,
    *,
    phase: str,
    effort: str,
    dependencies: list[str],
    filename: str,
    body: str,
    success_criteria: str,
    generated_at: str,
    original_project: str | None = None,
) -> str:
    fields: dict[str, object] = {}
    if original_project:
        fields["original_project"] = original_project
    fields.update(
        {
            "notion_page_id": item.id,
            "notion_url": item.url,
            "project": project.slug,
            "hydrated": item.is_hydrated,
            "generated_at": generated_at,
            "type": item.type,
            "module": item.affected_module,
            "phase": phase,
            "priority": item.priority,
            "effort": effort,
        }
    )

    files = _bullets(related_files(item, project), "None identified", code=True)
    sections = [
        render_frontmatter(fields),
        f"# Development Task: {item.title}\n",
        "## Metadata\n"
        f"- **Project**: {project.name}\n"
        f"- **Type**: {item.type}\n"
        f"- **Module**: {item.affected_module}\n"
        f"- **Phase**: {phase}\n"
        f"- **Priority**: {item.priority}\n"
        f"- **Effort**: {effort}\n",
        f"## Related Files\n{files}\n",
        f"## Dependencies\n{_bullets(dependencies, 'None')}\n",
        "---\n",
        body.strip() + "\n",
        "---\n",
        f"## Success Criteria\n{success_criteria.strip()}\n",
        "## Completion Actions\n"
        "When this task is complete, move this file to `processed/`; the next reverse "
        "sync marks the Notion item Done.\n\n"
        f"```bash\nmv prompts/pending/{filename} prompts/processed/\n```\n",
        f"---\n*From mobile capture: {item.captured_date}*\n*Notion: {item.url}*\n",
    ]
    return "\n".join(sections)


class ContentGenerator:
    """Renders prompt files for one project, expanding brief items through AI."""

    def __init__(
        self,
        project: Project,
        *,
        chain: AIProviderChain | None = None,
        success_criteria: str = "",
        feature_dev_enabled: bool = True,
        feature_dev_types: Iterable[str] = ("Feature", "Improvement"),
    ) -> None:
        self.project = project
        self.chain = chain
        self.success_criteria = success_criteria
        self.feature_dev_enabled = feature_dev_enabled
        self.feature_dev_types = frozenset(feature_dev_types)

    async def expand_body(self, item: RemoteItem) -> str | None:
        """Ask the provider chain for a prompt body; None when AI is off or exhausted."""
        if self.chain is None or not self.chain.is_available:
            return None
        if not self.project.ai_prompt_enabled:
            logger.info("AI expansion disabled for project %s", self.project.slug)
            return None
        return await self.chain.expand(build_system_prompt(self.project), build_user_prompt(item))

    async def enhance(self, item: RemoteItem, content: str) -> str:
        """Append a feature-dev analysis for eligible item types, when a provider answers."""
        if (
            not self.feature_dev_enabled
            or item.type not in self.feature_dev_types
            or self.chain is None
            or not self.chain.is_available
        ):
            return content
        analysis = await self.chain.expand(
            build_feature_dev_system_prompt(self.project),
            build_feature_dev_prompt(item, content),
        )
        if not analysis:
            logger.info("Feature-dev enhancement skipped for %r", item.title)
            return content
        return content + format_feature_dev_sections(analysis)

    async def generate(
        self,
        item: RemoteItem,
        *,
        page_content: str | None = None,
        directories: Iterable[Path] = (),
        original_project: str | None = None,
        today: date | None = None,
    ) -> GeneratedPrompt:
        """Derive classification for ``item`` and render its prompt file.

        Body precedence: hydrated page content, then AI expansion, then the raw
        description under an Objective heading.
        """
        phase = determine_phase(item, self.project)
        effort = estimate_effort(item)
        dependencies = identify_dependencies(item)
        filename = generate_filename(item, phase, today=today, directories=directories)

        body: str | None = None
        body_source = BodySource.DESCRIPTION
        if item.is_hydrated and page_content and page_content.strip():
            body, body_source = page_content, BodySource.HYDRATED
        else:
            expanded = await self.expand_body(item)
            if expanded and expanded.strip():
                body, body_source = expanded, BodySource.AI
        if body is None:
            body = f"## Objective\n{item.description or item.title}"

        generated_at = format_iso(now_utc())
        content = render_prompt(
            item,
            self.project,
            phase=phase,
            effort=effort,
            dependencies=dependencies,
            filename=filename,
            body=body,
            success_criteria=self.success_criteria,
            generated_at=generated_at,
            original_project=original_project,
        )
        content = await self.enhance(item, content)
        return GeneratedPrompt(
            content=content,
            filename=filename,
            phase=phase,
            effort=effort,
            dependencies=dependencies,
            generated_at=generated_at,
            body_source=body_source,
        )
