"""Flat ``key: value`` front matter parser/writer for prompt files.

Prompt files carry a fixed, flat metadata shape, so no YAML engine is involved: the
block between the leading ``---`` delimiters is split line-wise on the first colon.
Rewriting touches only the delimited block and leaves the body byte-for-byte intact.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, NotRequired, TypedDict

if TYPE_CHECKING:
    from pathlib import Path

FORWARD_SYNC_FIELDS: tuple[str, ...] = (
    "notion_page_id",
    "notion_url",
    "project",
    "hydrated",
    "generated_at",
    "type",
    "module",
    "phase",
    "priority",
    "effort",
)
REVERSE_SYNC_FIELDS: tuple[str, ...] = ("last_synced_to_notion", "last_status")
INBOX_FIELDS: tuple[str, ...] = ("original_project",)

RECOGNIZED_FIELDS: frozenset[str] = frozenset(
    FORWARD_SYNC_FIELDS + REVERSE_SYNC_FIELDS + INBOX_FIELDS
)

_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")
_CLOSE_RE = re.compile(r"^---[ \t]*\r?$", re.MULTILINE)
_QUOTES = ("'", '"')


class PromptFrontmatter(TypedDict):
    notion_page_id: str
    notion_url: str
    project: str
    hydrated: bool
    generated_at: str
    type: str
    module: str
    phase: str
    priority: str
    effort: str
    original_project: NotRequired[str]
    last_synced_to_notion: NotRequired[str]
    last_status: NotRequired[str]


def _block_span(text: str) -> tuple[int, int] | None:
    """Return the (start, end) offsets of the block between the delimiters."""
    opening = _OPEN_RE.match(text)
    if opening is None:
        return None
    closing = _CLOSE_RE.search(text, opening.end())
    if closing is None:
        return None
    return opening.end(), closing.start()


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        return value[1:-1]
    return value


def format_value(value: object) -> str:
    """Render one value on a single line so that ``parse_block`` reads it back."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = " ".join(str(value).split("\n")).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        # Wrap in the other quote so that unquoting returns the original text.
        other = '"' if text[0] == "'" else "'"
        return f"{other}{text}{other}"
    return text


def parse_block(block: str) -> dict[str, str]:
    """Parse ``key: value`` lines; lines without a key before a colon are ignored."""
    fields: dict[str, str] = {}
    for line in block.splitlines():
        colon = line.find(":")
        if colon <= 0:
            continue
        key = line[:colon].strip()
        if not key:
            continue
        fields[key] = _unquote(line[colon + 1 :].strip())
    return fields


def split_document(text: str) -> tuple[dict[str, str], str]:
    """Return (front matter fields, body).

    The body starts after the line ending of the closing delimiter, so a blank line
    between the block and the content survives as the body's leading newline.
    """
    span = _block_span(text)
    if span is None:
        return {}, text
    closing = _CLOSE_RE.match(text, span[1])
    body_start = closing.end() if closing is not None else span[1]
    if text.startswith("\n", body_start):
        body_start += 1
    return parse_block(text[span[0] : span[1]]), text[body_start:]


def parse_frontmatter(text: str) -> dict[str, str]:
    """Parse the front matter of a document, or return {} when there is none."""
    return split_document(text)[0]


def render_frontmatter(fields: Mapping[str, object]) -> str:
    """Serialize fields as a delimited block, followed by a newline."""
    lines = [f"{key}: {format_value(value)}" for key, value in fields.items()]
    return "---\n" + "\n".join(lines) + "\n---\n"


def update_frontmatter(text: str, updates: Mapping[str, object]) -> str:
    """Return text with ``updates`` applied inside the front matter block only.

    Existing keys are rewritten in place, new keys are appended at the end of the
    block; every other line of the document is preserved verbatim.

    Raises ValueError if the document has no front matter.
    """
    span = _block_span(text)
    if span is None:
        raise ValueError("No frontmatter found in document")
    start, end = span
    block = text[start:end]

    pending = dict(updates)
    lines = block.split("\n")
    trailing_newline = block.endswith("\n")
    if trailing_newline:
        lines.pop()

    rewritten: list[str] = []
    for line in lines:
        colon = line.find(":")
        key = line[:colon].strip() if colon > 0 else ""
        if key in pending:
            eol = "\r" if line.endswith("\r") else ""
            rewritten.append(f"{key}: {format_value(pending.pop(key))}{eol}")
        else:
            rewritten.append(line)
    for key, value in pending.items():
        rewritten.append(f"{key}: {format_value(value)}")

    new_block = "\n".join(rewritten) + "\n" if rewritten else ""
    return text[:start] + new_block + text[end:]


def read_document(path: Path) -> str:
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def write_document(path: Path, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


def update_file_frontmatter(path: Path, updates: Mapping[str, object]) -> None:
    """Apply ``updates`` to the front matter of the file at ``path``."""
    write_document(path, update_frontmatter(read_document(path), updates))
