"""Prompt folder scanner used by reverse sync and stats recounts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from nsma.filesystem.frontmatter import parse_frontmatter, read_document
from nsma.models.item import Folder

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


@dataclass
class PromptFile:
    """A prompt file that mirrors a remote item."""

    filepath: Path
    folder: Folder
    notion_page_id: str
    notion_url: str | None = None
    last_synced_to_notion: str | None = None
    last_status: str | None = None
    frontmatter: dict[str, str] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return self.filepath.name

    @property
    def needs_sync(self) -> bool:
        """True when the file was never pushed or has moved since the last push."""
        return not self.last_synced_to_notion or self.last_status != self.folder.value


def parse_prompt_file(filepath: Path, folder: Folder) -> PromptFile | None:
    """Parse one file; files without a remote item id are not mirrored and yield None."""
    frontmatter = parse_frontmatter(read_document(filepath))
    page_id = frontmatter.get("notion_page_id", "")
    if not page_id:
        return None
    return PromptFile(
        filepath=filepath,
        folder=folder,
        notion_page_id=page_id,
        notion_url=frontmatter.get("notion_url") or None,
        last_synced_to_notion=frontmatter.get("last_synced_to_notion") or None,
        last_status=frontmatter.get("last_status") or None,
        frontmatter=frontmatter,
    )


def free_filename(filename: str, directories: Iterable[Path]) -> str:
    """Return ``filename``, or the first ``{stem}_N`` variant absent from every directory."""
    taken = list(directories)
    stem = filename.removesuffix(".md")
    candidate = filename
    counter = 2
    while any((directory / candidate).exists() for directory in taken):
        candidate = f"{stem}_{counter}.md"
        counter += 1
    return candidate


def _markdown_files(folder_path: Path) -> list[Path]:
    if not folder_path.is_dir():
        return []
    return sorted(p for p in folder_path.iterdir() if p.suffix == ".md" and p.is_file())


class FileScanner:
    """Reads the four fixed folders of a project's prompt tree."""

    def __init__(self, prompts_path: Path | str) -> None:
        self.prompts_path = Path(prompts_path)

    def scan_all(self) -> dict[Folder, list[PromptFile]]:
        """Return mirrored files grouped by folder, in folder order."""
        results: dict[Folder, list[PromptFile]] = {folder: [] for folder in Folder}
        if not self.prompts_path.is_dir():
            return results

        for folder in Folder:
            for filepath in _markdown_files(self.prompts_path / folder.value):
                try:
                    prompt_file = parse_prompt_file(filepath, folder)
                except (OSError, UnicodeDecodeError):
                    logger.exception("Skipping unreadable prompt file %s", filepath)
                    continue
                if prompt_file is not None:
                    results[folder].append(prompt_file)
        return results

    def folder_paths(self) -> list[Path]:
        return [self.prompts_path / folder.value for folder in Folder]

    def count_files(self) -> dict[str, int]:
        """Count every markdown file per folder; a cheap disk recount with no parsing."""
        return {
            folder.value: len(_markdown_files(self.prompts_path / folder.value))
            for folder in Folder
        }

    def ensure_folders(self) -> list[Path]:
        """Create the folder skeleton; return the folders that had to be created."""
        created: list[Path] = []
        for folder in Folder:
            folder_path = self.prompts_path / folder.value
            if not folder_path.exists():
                folder_path.mkdir(parents=True, exist_ok=True)
                created.append(folder_path)
        return created
