"""Typed async wrapper over the Notion REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self

import httpx

from nsma.exceptions import AuthenticationError, RemoteAPIError
from nsma.models.item import ItemStatus, RemoteItem
from nsma.notion.blocks import blocks_to_markdown
from nsma.services.retry_service import RetryPolicy

if TYPE_CHECKING:
    from types import TracebackType

    from nsma.config import Settings

logger = logging.getLogger(__name__)

BLOCK_PAGE_SIZE = 100
SYSTEM_OPTION_PREFIX = "__"


@dataclass
class SelectSyncResult:
    """Outcome of pushing values into a select property's option list."""

    added: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)


def build_query_filter(status: str, project_slug: str | None = None) -> dict[str, Any]:
    """Match items whose Status equals ``status`` or is empty, optionally for one project."""
    conditions: list[dict[str, Any]] = [
        {
            "or": [
                {"property": "Status", "select": {"equals": status}},
                {"property": "Status", "select": {"is_empty": True}},
            ]
        }
    ]
    if project_slug:
        conditions.append({"property": "Project", "select": {"equals": project_slug}})
    return {"and": conditions}


def _parse_retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _error_from_response(response: httpx.Response) -> RemoteAPIError:
    """Translate a non-2xx response into a structured exception."""
    code: str | None = None
    message = response.reason_phrase or "request failed"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        code = payload.get("code")
        message = payload.get("message") or message

    status = response.status_code
    text = f"Notion API error {status}: {message}"
    error_cls = AuthenticationError if status == 401 else RemoteAPIError
    return error_cls(
        text, status_code=status, code=code, retry_after=_parse_retry_after(response)
    )


class NotionClient:
    """Every call goes through the shared RetryPolicy; non-2xx raises RemoteAPIError."""

    def __init__(
        self,
        token: str,
        database_id: str,
        *,
        api_url: str = "https://api.notion.com/v1",
        notion_version: str = "2022-06-28",
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.database_id = database_id
        self.retry_policy = retry_policy or RetryPolicy()
        self._http = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": notion_version,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> NotionClient:
        return cls(
            settings.notion_token,
            settings.notion_database_id,
            api_url=settings.notion_api_url,
            notion_version=settings.notion_version,
            retry_policy=settings.retry_policy(),
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> dict[str, Any]:
        response = await self._http.request(method, endpoint, json=body, params=params)
        if response.is_error:
            raise _error_from_response(response)
        if not response.content:
            return {}
        data: dict[str, Any] = response.json()
        return data

    async def request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one API call with retries and return the decoded JSON body."""
        logger.debug("Notion %s %s", method, endpoint)
        return await self.retry_policy.execute(
            lambda: self._send(method, endpoint, body, params)
        )

    async def query_database(
        self,
        status: str = ItemStatus.NOT_STARTED,
        project_slug: str | None = None,
    ) -> list[RemoteItem]:
        """Return every item whose status is ``status`` or empty, following pagination."""
        items: list[RemoteItem] = []
        body: dict[str, Any] = {"filter": build_query_filter(status, project_slug)}
        while True:
            data = await self.request("POST", f"/databases/{self.database_id}/query", body)
            items.extend(RemoteItem.from_page(page) for page in data.get("results", []))
            if not data.get("has_more") or not data.get("next_cursor"):
                break
            body = {**body, "start_cursor": data["next_cursor"]}
        logger.info("Queried %d item(s) with status %r", len(items), status)
        return items

    async def get_page_blocks(self, page_id: str) -> list[dict[str, Any]]:
        """Fetch every child block of a page, 100 at a time."""
        blocks: list[dict[str, Any]] = []
        params: dict[str, Any] = {"page_size": BLOCK_PAGE_SIZE}
        while True:
            data = await self.request("GET", f"/blocks/{page_id}/children", params=params)
            blocks.extend(data.get("results", []))
            if not data.get("has_more") or not data.get("next_cursor"):
                break
            params = {"page_size": BLOCK_PAGE_SIZE, "start_cursor": data["next_cursor"]}
        return blocks

    async def get_page_markdown(self, page_id: str) -> str:
        return blocks_to_markdown(await self.get_page_blocks(page_id))

    async def update_page(self, page_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        """Patch only the given properties of a page."""
        return await self.request("PATCH", f"/pages/{page_id}", {"properties": properties})

    async def get_database(self, database_id: str | None = None) -> dict[str, Any]:
        return await self.request("GET", f"/databases/{database_id or self.database_id}")

    async def sync_select_options(
        self,
        property_name: str,
        values: list[str],
        database_id: str | None = None,
    ) -> SelectSyncResult:
        """Add values missing from a select property's options.

        Existing options keep their order, ids and colors.  Values with the system
        prefix ``__`` and blank values are never pushed.

        Raises RemoteAPIError if the property is missing or is not a select.
        """
        target = database_id or self.database_id
        database = await self.get_database(target)
        prop = (database.get("properties") or {}).get(property_name)
        if not prop or prop.get("type") != "select":
            raise RemoteAPIError(f"Property {property_name!r} is not a select property")

        options: list[dict[str, Any]] = list((prop.get("select") or {}).get("options", []))
        existing = [str(option.get("name", "")) for option in options]
        added: list[str] = []
        for value in values:
            name = value.strip()
            if not name or name.startswith(SYSTEM_OPTION_PREFIX):
                continue
            if name in existing or name in added:
                continue
            added.append(name)

        if added:
            new_options = options + [{"name": name} for name in added]
            await self.request(
                "PATCH",
                f"/databases/{target}",
                {"properties": {property_name: {"select": {"options": new_options}}}},
            )
            logger.info("Added %d option(s) to %s: %s", len(added), property_name, added)
        return SelectSyncResult(added=added, existing=existing)
