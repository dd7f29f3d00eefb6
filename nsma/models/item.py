"""Remote task-store items and local folder states."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ItemStatus(StrEnum):
    """Values of the remote ``Status`` select property."""

    NOT_STARTED = "Not started"
    IN_PROGRESS = "In progress"
    DONE = "Done"
    ARCHIVED = "Archived"
    DEFERRED = "Deferred"


class Folder(StrEnum):
    """Local folder-state of a prompt file."""

    PENDING = "pending"
    PROCESSED = "processed"
    ARCHIVED = "archived"
    DEFERRED = "deferred"


FOLDER_STATUS: dict[Folder, ItemStatus] = {
    Folder.PENDING: ItemStatus.IN_PROGRESS,
    Folder.PROCESSED: ItemStatus.DONE,
    Folder.ARCHIVED: ItemStatus.ARCHIVED,
    Folder.DEFERRED: ItemStatus.DEFERRED,
}

TITLE_PROPERTIES = ("Idea/Todo", "Title", "Name")
DESCRIPTION_PROPERTIES = ("Detailed Description", "Description")


def _first_property(props: dict[str, Any], names: tuple[str, ...]) -> dict[str, Any] | None:
    for name in names:
        prop = props.get(name)
        if prop:
            return prop
    return None


def _plain_text(prop: dict[str, Any] | None) -> str:
    """Join every rich-text fragment of a title or rich_text property."""
    if not prop:
        return ""
    prop_type = prop.get("type")
    if prop_type not in ("title", "rich_text"):
        return ""
    fragments = prop.get(prop_type) or []
    return "".join(str(fragment.get("plain_text", "")) for fragment in fragments)


def _select_name(prop: dict[str, Any] | None) -> str:
    if not prop:
        return ""
    select = prop.get("select") or {}
    return str(select.get("name", ""))


@dataclass
class RemoteItem:
    """A task or idea record from the remote store."""

    id: str
    url: str = ""
    title: str = ""
    type: str = ""
    affected_module: str = ""
    suggested_phase: str = ""
    status: str = ""
    priority: str = ""
    project: str = ""
    description: str = ""
    captured_date: str = ""
    assigned_phase: str = ""
    is_hydrated: bool = False

    @property
    def search_text(self) -> str:
        """Lower-cased ``title + description`` used for keyword matching."""
        return f"{self.title} {self.description}".lower()

    @classmethod
    def from_page(cls, page: dict[str, Any]) -> RemoteItem:
        """Build an item from a raw database page."""
        props: dict[str, Any] = page.get("properties") or {}
        captured = props.get("Captured Date") or {}
        hydrated = props.get("Hydrated") or {}
        return cls(
            id=str(page.get("id", "")),
            url=str(page.get("url", "")),
            title=_plain_text(_first_property(props, TITLE_PROPERTIES)),
            type=_select_name(props.get("Type")),
            affected_module=_select_name(props.get("Affected Module")),
            suggested_phase=_select_name(props.get("Suggested Phase")),
            status=_select_name(props.get("Status")),
            priority=_select_name(props.get("Priority")),
            project=_select_name(props.get("Project")).strip(),
            description=_plain_text(_first_property(props, DESCRIPTION_PROPERTIES)),
            captured_date=str(captured.get("created_time") or page.get("created_time") or ""),
            assigned_phase=_select_name(props.get("Assigned Phase")),
            is_hydrated=bool(hydrated.get("checkbox", False)),
        )
