"""Flatten Notion page blocks into markdown."""

from __future__ import annotations

from typing import Any

_ANNOTATION_MARKS: tuple[tuple[str, str], ...] = (
    ("code", "`"),
    ("bold", "**"),
    ("italic", "*"),
    ("strikethrough", "~~"),
)


def extract_rich_text(fragments: list[dict[str, Any]] | None) -> str:
    """Join rich-text fragments, wrapping each in its markdown annotations."""
    if not fragments:
        return ""
    parts: list[str] = []
    for fragment in fragments:
        text = str(fragment.get("plain_text", ""))
        if not text:
            continue
        annotations = fragment.get("annotations") or {}
        for name, mark in _ANNOTATION_MARKS:
            if annotations.get(name):
                text = f"{mark}{text}{mark}"
        href = fragment.get("href")
        if href:
            text = f"[{text}]({href})"
        parts.append(text)
    return "".join(parts)


_TEXT_PREFIXES: dict[str, str] = {
    "paragraph": "",
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "quote": "> ",
}


def block_to_markdown(block: dict[str, Any]) -> str:
    """Render one block, or return "" for unsupported or empty blocks."""
    block_type = block.get("type", "")
    data: dict[str, Any] = block.get(block_type) or {}
    text = extract_rich_text(data.get("rich_text"))

    if block_type in _TEXT_PREFIXES:
        return f"{_TEXT_PREFIXES[block_type]}{text}" if text else ""
    if block_type == "to_do":
        mark = "x" if data.get("checked") else " "
        return f"- [{mark}] {text}"
    if block_type == "code":
        return f"```{data.get('language', '')}\n{text}\n```"
    if block_type == "divider":
        return "---"
    if block_type == "callout":
        emoji = (data.get("icon") or {}).get("emoji", "")
        return f"> {emoji} {text}" if emoji else f"> {text}"
    return ""


def blocks_to_markdown(blocks: list[dict[str, Any]]) -> str:
    """Render a block list as markdown paragraphs separated by blank lines."""
    rendered = (block_to_markdown(block) for block in blocks)
    return "\n\n".join(chunk for chunk in rendered if chunk.strip())
