"""Phase/module taxonomy extraction from project documentation files.

A configuration document is markdown with optional flat front matter and two fixed
sections::

    ## Development Phases
    ### Foundation
    - **ID**: `foundation`
    - **Description**: Core setup
    - **Keywords**: setup, config
    - **Priority**: 1

    ## Modules
    ### Authentication
    - **ID**: `auth`
    - **Phase**: Foundation
    - **Paths**:
      - `src/auth/`
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from nsma.exceptions import ConfigParseError, ConfigurationError
from nsma.filesystem.frontmatter import parse_frontmatter
from nsma.models.project import DEFAULT_PHASE_PRIORITY, Module, Phase
from nsma.services.datetime_service import format_iso, now_utc
from nsma.services.slug_service import generate_id

if TYPE_CHECKING:
    from nsma.models.project import Project

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", Phase, Module)

SUPPORTED_FILES: tuple[str, ...] = (
    ".nsma-config.md",
    ".nsma/config.md",
    "PERSPECTIVE.md",
    "ARCHITECTURE.md",
    "PROJECT_CONFIG.md",
    "Claude.md",
    "TODO.md",
)
DOCS_FOLDERS: tuple[str, ...] = ("architecture", "setup", "security", "api")

PHASES_SECTION = "Development Phases"
MODULES_SECTION = "Modules"

_ENTITY_HEADING_RE = re.compile(r"^###[ \t]+(.+?)[ \t]*$", re.MULTILINE)
_ID_RE = re.compile(r"\*\*ID\*\*:[ \t]*`?([^`\n]+?)`?[ \t]*$", re.MULTILINE)
_DESCRIPTION_RE = re.compile(r"\*\*Description\*\*:[ \t]*(.+?)[ \t]*$", re.MULTILINE)
_KEYWORDS_RE = re.compile(r"\*\*Keywords\*\*:[ \t]*(.+?)[ \t]*$", re.MULTILINE)
_PRIORITY_RE = re.compile(r"\*\*Priority\*\*:[ \t]*(\d+)")
_PHASE_REF_RE = re.compile(r"\*\*Phase\*\*:[ \t]*`?([^`\n]+?)`?[ \t]*$", re.MULTILINE)
_PATHS_RE = re.compile(
    r"\*\*Paths\*\*:(.*?)(?=^[ \t]*(?:[-*][ \t]+)?\*\*|\Z)", re.MULTILINE | re.DOTALL
)


@dataclass
class ConfigFile:
    """A discovered configuration document."""

    filename: str
    filepath: Path


@dataclass
class ParsedConfig:
    """Taxonomy parsed from one document, or merged from several."""

    phases: list[Phase] = field(default_factory=list)
    modules: list[Module] = field(default_factory=list)
    module_phase_mapping: dict[str, str] = field(default_factory=dict)
    frontmatter: dict[str, str] = field(default_factory=dict)
    source_files: list[str] = field(default_factory=list)


@dataclass
class ImportedConfig:
    """Result of ``ConfigParser.auto_import``, ready to be stored on a project."""

    phases: list[Phase]
    modules: list[Module]
    module_phase_mapping: dict[str, str]
    config_source: str
    last_imported_at: str


def _section(content: str, title: str) -> str | None:
    """Return the body of a ``## title`` section, up to the next level-2 heading."""
    pattern = re.compile(
        rf"^##[ \t]+{re.escape(title)}[ \t]*$(.*?)(?=^##(?!#)|\Z)",
        re.MULTILINE | re.DOTALL,
    )
    match = pattern.search(content)
    return match.group(1) if match else None


def _entity_blocks(section: str) -> list[tuple[str, str]]:
    """Split a section into ``(heading, body)`` pairs of its ``###`` entries."""
    parts = _ENTITY_HEADING_RE.split(section)
    return [(parts[i].strip(), parts[i + 1].strip()) for i in range(1, len(parts) - 1, 2)]


def _clean_item(text: str) -> str:
    return text.strip().strip("`").strip()


def _parse_keywords(raw: str) -> list[str]:
    return [kw for kw in (_clean_item(part) for part in raw.split(",")) if kw]


def _parse_paths(body: str) -> list[str]:
    match = _PATHS_RE.search(body)
    if not match:
        return []
    lines = match.group(1).split("\n")
    paths: list[str] = []
    # Inline form: **Paths**: `a`, `b`
    inline = lines[0].strip()
    if inline:
        paths.extend(p for p in (_clean_item(part) for part in inline.split(",")) if p)
    for line in lines[1:]:
        stripped = line.strip()
        if stripped.startswith(("-", "*")):
            path = _clean_item(stripped[1:])
            if path:
                paths.append(path)
    return paths


def parse_phases(content: str) -> list[Phase]:
    """Parse the Development Phases section, sorted by ascending priority."""
    section = _section(content, PHASES_SECTION)
    if section is None:
        return []

    phases: list[Phase] = []
    for name, body in _entity_blocks(section):
        id_match = _ID_RE.search(body)
        desc_match = _DESCRIPTION_RE.search(body)
        keywords_match = _KEYWORDS_RE.search(body)
        priority_match = _PRIORITY_RE.search(body)
        phases.append(
            Phase(
                id=id_match.group(1).strip() if id_match else generate_id(name),
                name=name,
                description=desc_match.group(1) if desc_match else "",
                keywords=_parse_keywords(keywords_match.group(1)) if keywords_match else [],
                priority=int(priority_match.group(1)) if priority_match else DEFAULT_PHASE_PRIORITY,
            )
        )
    return sorted(phases, key=lambda p: p.priority)


def parse_modules(content: str) -> list[Module]:
    """Parse the Modules section in document order."""
    section = _section(content, MODULES_SECTION)
    if section is None:
        return []

    modules: list[Module] = []
    for name, body in _entity_blocks(section):
        id_match = _ID_RE.search(body)
        phase_match = _PHASE_REF_RE.search(body)
        desc_match = _DESCRIPTION_RE.search(body)
        modules.append(
            Module(
                id=id_match.group(1).strip() if id_match else generate_id(name),
                name=name,
                file_paths=_parse_paths(body),
                phase=phase_match.group(1).strip() if phase_match else None,
                description=desc_match.group(1) if desc_match else "",
            )
        )
    return modules


def is_config_path(project_root: Path, path: Path | str) -> bool:
    """Return True if ``path`` is a location ``find_config_files`` would pick up."""
    try:
        relative = Path(path).relative_to(project_root)
    except ValueError:
        return False
    if relative.as_posix() in SUPPORTED_FILES:
        return True
    parts = relative.parts
    return (
        len(parts) == 3
        and parts[0] == "docs"
        and parts[1] in DOCS_FOLDERS
        and relative.suffix == ".md"
    )


def config_watch_dirs(project_root: Path) -> list[Path]:
    """Directories whose direct entries can hold configuration documents."""
    candidates = [project_root, project_root / ".nsma"]
    candidates.extend(project_root / "docs" / folder for folder in DOCS_FOLDERS)
    return [path for path in candidates if path.is_dir()]


def match_phase(reference: str, phases: list[Phase]) -> Phase | None:
    """Resolve a module's phase reference: exact name, then exact id, then name-contains."""
    for phase in phases:
        if phase.name == reference:
            return phase
    for phase in phases:
        if phase.id == reference:
            return phase
    for phase in phases:
        if reference in phase.name:
            return phase
    return None


def generate_mapping(modules: list[Module], phases: list[Phase]) -> dict[str, str]:
    """Build the module id -> phase id mapping from module phase references."""
    mapping: dict[str, str] = {}
    for module in modules:
        if not module.phase:
            continue
        phase = match_phase(module.phase, phases)
        if phase is not None:
            mapping[module.id] = phase.id
    return mapping


def merge_configs(configs: list[ParsedConfig]) -> ParsedConfig:
    """Merge several parses by exact entity name.

    Keywords and file paths are unioned; the first-seen description and phase
    assignment win, so discovery order is priority order.
    """
    phases: dict[str, Phase] = {}
    modules: dict[str, Module] = {}

    for config in configs:
        for phase in config.phases:
            existing_phase = phases.get(phase.name)
            if existing_phase is None:
                phases[phase.name] = replace(phase, keywords=list(phase.keywords))
                continue
            for keyword in phase.keywords:
                if keyword not in existing_phase.keywords:
                    existing_phase.keywords.append(keyword)

    for config in configs:
        for module in config.modules:
            existing_module = modules.get(module.name)
            if existing_module is None:
                modules[module.name] = replace(module, file_paths=list(module.file_paths))
                continue
            for path in module.file_paths:
                if path not in existing_module.file_paths:
                    existing_module.file_paths.append(path)
            if not existing_module.phase and module.phase:
                existing_module.phase = module.phase

    merged_phases = sorted(phases.values(), key=lambda p: p.priority)
    merged_modules = list(modules.values())
    frontmatter: dict[str, str] = {}
    for config in reversed(configs):
        frontmatter.update(config.frontmatter)
    return ParsedConfig(
        phases=merged_phases,
        modules=merged_modules,
        module_phase_mapping=generate_mapping(merged_modules, merged_phases),
        frontmatter=frontmatter,
        source_files=[name for config in configs for name in config.source_files],
    )


def _find_existing(entity: EntityT, existing: list[EntityT]) -> EntityT | None:
    for candidate in existing:
        if candidate.name == entity.name:
            return candidate
    for candidate in existing:
        if candidate.id == entity.id:
            return candidate
    return None


class ConfigParser:
    """Discovers and parses configuration documents under a project root."""

    def __init__(self, project_root: Path | str) -> None:
        self.project_root = Path(project_root)

    def find_config_files(self) -> list[ConfigFile]:
        """Return the allowlisted root files, then markdown under the docs folders."""
        found: list[ConfigFile] = []
        for filename in SUPPORTED_FILES:
            filepath = self.project_root / filename
            if filepath.is_file():
                found.append(ConfigFile(filename=filename, filepath=filepath))

        docs_path = self.project_root / "docs"
        for folder in DOCS_FOLDERS:
            folder_path = docs_path / folder
            if not folder_path.is_dir():
                continue
            try:
                entries = sorted(folder_path.iterdir())
            except OSError as exc:
                logger.warning("Cannot read docs folder %s: %s", folder_path, exc)
                continue
            for entry in entries:
                if entry.suffix == ".md" and entry.is_file():
                    found.append(
                        ConfigFile(filename=f"docs/{folder}/{entry.name}", filepath=entry)
                    )
        return found

    def parse_config_file(self, filepath: Path, filename: str | None = None) -> ParsedConfig:
        """Parse one document.

        Raises ConfigParseError if the file cannot be read.
        """
        try:
            content = filepath.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigParseError(f"Cannot read {filepath}: {exc}", path=str(filepath)) from exc

        phases = parse_phases(content)
        modules = parse_modules(content)
        return ParsedConfig(
            phases=phases,
            modules=modules,
            module_phase_mapping=generate_mapping(modules, phases),
            frontmatter=parse_frontmatter(content),
            source_files=[filename or str(filepath)],
        )

    def parse_multiple_files(self, config_files: list[ConfigFile]) -> ParsedConfig:
        """Parse every file, skipping unparsable ones, and merge the results.

        Raises ConfigurationError if no file could be parsed.
        """
        configs: list[ParsedConfig] = []
        for config_file in config_files:
            try:
                configs.append(self.parse_config_file(config_file.filepath, config_file.filename))
            except ConfigParseError as exc:
                logger.warning("Skipping %s: %s", config_file.filename, exc)

        if not configs:
            raise ConfigurationError("No valid configuration found in any file")
        if len(configs) == 1:
            return configs[0]
        return merge_configs(configs)

    def merge_with_existing(self, parsed: ParsedConfig, project: Project) -> ParsedConfig:
        """Adopt fresh fields but keep the id of every entity that already exists.

        An entity matches an existing one by name, or failing that by id.  Unmatched
        entities keep their freshly parsed id.
        """
        phases: list[Phase] = []
        for phase in parsed.phases:
            existing_phase = _find_existing(phase, project.phases)
            phases.append(phase if existing_phase is None else replace(phase, id=existing_phase.id))

        modules: list[Module] = []
        for module in parsed.modules:
            existing_module = _find_existing(module, project.modules)
            modules.append(
                module if existing_module is None else replace(module, id=existing_module.id)
            )

        return ParsedConfig(
            phases=phases,
            modules=modules,
            module_phase_mapping=generate_mapping(modules, phases),
            frontmatter=parsed.frontmatter,
            source_files=parsed.source_files,
        )

    def auto_import(self, project: Project | None = None) -> ImportedConfig:
        """Discover, parse and merge configuration, preserving ids of ``project``.

        Raises ConfigurationError if no configuration files exist.
        """
        config_files = self.find_config_files()
        if not config_files:
            raise ConfigurationError(
                f"No configuration files found in project directory {self.project_root}"
            )

        parsed = self.parse_multiple_files(config_files)
        if project is not None:
            parsed = self.merge_with_existing(parsed, project)

        return ImportedConfig(
            phases=parsed.phases,
            modules=parsed.modules,
            module_phase_mapping=parsed.module_phase_mapping,
            config_source=", ".join(parsed.source_files),
            last_imported_at=format_iso(now_utc()),
        )

    def config_mtimes(self) -> dict[str, float]:
        """Snapshot the modification time of every discovered file."""
        mtimes: dict[str, float] = {}
        for config_file in self.find_config_files():
            try:
                mtimes[str(config_file.filepath)] = config_file.filepath.stat().st_mtime
            except OSError:
                continue
        return mtimes
