"""Shared test fixtures for Notion Sync Manager."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from nsma.config import Settings
from nsma.filesystem.file_scanner import FileScanner
from nsma.filesystem.registry import ProjectRegistry
from nsma.models.project import Module, Phase, Project
from nsma.notion.client import NotionClient
from nsma.services.audit_log import AuditLog
from nsma.services.retry_service import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

TEST_TOKEN = "secret-test-token"
TEST_DATABASE_ID = "db-123"


async def no_sleep(_delay: float) -> None:
    return None


def make_page(
    page_id: str,
    title: str,
    *,
    item_type: str = "Feature",
    project: str = "",
    description: str = "",
    module: str = "",
    priority: str = "Medium",
    status: str | None = None,
    hydrated: bool = False,
) -> dict[str, Any]:
    """Build a database page payload shaped like the Notion API returns it."""

    def select(name: str) -> dict[str, Any]:
        return {"type": "select", "select": {"name": name} if name else None}

    return {
        "object": "page",
        "id": page_id,
        "url": f"https://www.notion.so/{page_id}",
        "created_time": "2026-03-01T09:30:00.000Z",
        "properties": {
            "Idea/Todo": {"type": "title", "title": [{"plain_text": title}]},
            "Detailed Description": {
                "type": "rich_text",
                "rich_text": [{"plain_text": description}] if description else [],
            },
            "Type": select(item_type),
            "Affected Module": select(module),
            "Priority": select(priority),
            "Project": select(project),
            "Status": select(status or ""),
            "Hydrated": {"type": "checkbox", "checkbox": hydrated},
        },
    }


class FakeNotionAPI:
    """In-memory stand-in for the Notion endpoints used by NotionClient."""

    def __init__(self) -> None:
        self.pages: list[dict[str, Any]] = []
        self.blocks: dict[str, list[dict[str, Any]]] = {}
        self.database: dict[str, Any] = {
            "id": TEST_DATABASE_ID,
            "properties": {"Project": {"type": "select", "select": {"options": []}}},
        }
        self.requests: list[httpx.Request] = []
        self.page_patches: dict[str, list[dict[str, Any]]] = {}
        self.database_patches: list[dict[str, Any]] = []
        self.failures: dict[str, int] = {}

    @staticmethod
    def _error(status: int) -> httpx.Response:
        return httpx.Response(
            status,
            json={
                "object": "error",
                "status": status,
                "code": "error",
                "message": f"HTTP {status}",
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/query"):
            return httpx.Response(200, json={"results": self.pages, "has_more": False})
        if request.method == "GET" and "/blocks/" in path:
            page_id = path.split("/")[-2]
            return httpx.Response(200, json={"results": self.blocks.get(page_id, [])})
        if request.method == "PATCH" and "/pages/" in path:
            page_id = path.rsplit("/", 1)[-1]
            if page_id in self.failures:
                return self._error(self.failures[page_id])
            properties = json.loads(request.content)["properties"]
            self.page_patches.setdefault(page_id, []).append(properties)
            return httpx.Response(200, json={"id": page_id})
        if request.method == "GET" and "/databases/" in path:
            return httpx.Response(200, json=self.database)
        if request.method == "PATCH" and "/databases/" in path:
            self.database_patches.append(json.loads(request.content))
            return httpx.Response(200, json=self.database)
        return self._error(404)

    def client(self) -> NotionClient:
        return NotionClient(
            TEST_TOKEN,
            TEST_DATABASE_ID,
            retry_policy=RetryPolicy(max_retries=0, sleep=no_sleep),
            transport=httpx.MockTransport(self.handler),
        )

    @property
    def patch_count(self) -> int:
        return sum(len(patches) for patches in self.page_patches.values())


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with credentials and an isolated config directory."""
    return Settings(
        _env_file=None,
        notion_token=TEST_TOKEN,
        notion_database_id=TEST_DATABASE_ID,
        anthropic_api_key="",
        gemini_api_key="",
        config_dir=tmp_path / "config",
        retry_base_delay=0,
        reverse_sync_request_delay=0,
    )


@pytest.fixture
def registry(test_settings: Settings) -> ProjectRegistry:
    return ProjectRegistry(test_settings.config_dir, test_settings.inbox_path)


@pytest.fixture
def audit_log(test_settings: Settings) -> AuditLog:
    return AuditLog(test_settings.config_dir)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "acme"
    FileScanner(root / "prompts").ensure_folders()
    return root


@pytest.fixture
def project(registry: ProjectRegistry, project_root: Path) -> Project:
    """A registered project with a small phase/module taxonomy."""
    return registry.add(
        Project(
            id="acme",
            name="Acme App",
            slug="acme",
            prompts_path=str(project_root / "prompts"),
            phases=[
                Phase(id="foundation", name="Foundation", keywords=["setup"], priority=1),
                Phase(id="auth", name="Auth", keywords=["login", "password"], priority=2),
                Phase(id="billing", name="Billing", keywords=["invoice"], priority=3),
            ],
            modules=[
                Module(id="payments", name="Payments", file_paths=["src/payments/"]),
                Module(id="accounts", name="Accounts", file_paths=["src/accounts/"]),
            ],
            module_phase_mapping={"payments": "billing"},
        )
    )


@pytest.fixture
def notion_api() -> FakeNotionAPI:
    return FakeNotionAPI()


@pytest.fixture
def page_factory() -> Callable[..., dict[str, Any]]:
    return make_page
