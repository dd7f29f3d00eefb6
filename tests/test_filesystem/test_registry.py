"""Tests for the TOML-backed project registry."""

from __future__ import annotations

from pathlib import Path

import pytest

from nsma.exceptions import ConfigurationError
from nsma.filesystem.registry import REGISTRY_FILENAME, ProjectRegistry
from nsma.models.project import INBOX_PROJECT_ID, ErrorMode, Module, Phase, Project, PromptMode


def _project(**overrides: object) -> Project:
    fields: dict[str, object] = {"id": "acme", "name": "Acme App", "slug": "acme"}
    fields.update(overrides)
    return Project(**fields)  # type: ignore[arg-type]


class TestProjectRegistry:
    def test_empty_registry(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        assert registry.list_projects() == []
        assert registry.get("acme") is None

    def test_round_trip(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        project = _project(
            prompts_path="/work/acme/prompts",
            phases=[Phase(id="auth", name="Auth", keywords=["login"], priority=2)],
            modules=[Module(id="pay", name="Payments", file_paths=["src/pay/"], phase="Auth")],
            module_phase_mapping={"pay": "auth"},
            config_file_mtimes={"/work/acme/TODO.md": 1700000000.5},
            reverse_sync_error_mode=ErrorMode.ARCHIVE,
            ai_prompt_mode=PromptMode.REPLACE,
            ai_prompt_custom="Be brief.",
        )
        registry.add(project)

        assert ProjectRegistry(tmp_path).get("acme") == project

    def test_none_fields_omitted_from_file(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        registry.add(_project())

        text = (tmp_path / REGISTRY_FILENAME).read_text(encoding="utf-8")
        assert "last_sync_at" not in text
        assert registry.get("acme") == _project()

    def test_duplicate_rejected(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        registry.add(_project())
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.add(_project(id="other"))

    def test_inbox_id_reserved(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="reserved"):
            ProjectRegistry(tmp_path).add(_project(id=INBOX_PROJECT_ID))

    def test_find_by_slug_name_or_id(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        registry.add(_project(id="p-1"))

        assert registry.find("acme") is not None
        assert registry.find("Acme App") is not None
        assert registry.find("p-1") is not None
        assert registry.find("missing") is None

    def test_inbox_is_synthesized(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path, tmp_path / "box")
        inbox = registry.get(INBOX_PROJECT_ID)

        assert inbox is not None
        assert inbox.is_system
        assert inbox.prompts_path == str(tmp_path / "box")
        assert inbox.reverse_sync_enabled is False
        assert registry.find(INBOX_PROJECT_ID) == inbox
        assert registry.list_projects() == []

    def test_update(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        registry.add(_project())

        updated = registry.update("acme", stats={"pending": 2}, last_sync_at="2026-03-01T10:00:00Z")

        assert updated.last_sync_at == "2026-03-01T10:00:00Z"
        stored = registry.get("acme")
        assert stored is not None
        assert stored.stats["pending"] == 2
        assert stored.stats["processed"] == 0

    def test_update_unknown_field(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        registry.add(_project())
        with pytest.raises(ConfigurationError, match="Unknown project fields"):
            registry.update("acme", colour="red")

    def test_update_unknown_project(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Project not found"):
            ProjectRegistry(tmp_path).update("ghost", active=False)

    def test_active_projects(self, tmp_path: Path) -> None:
        registry = ProjectRegistry(tmp_path)
        registry.add(_project())
        registry.add(_project(id="old", slug="old", name="Old", active=False))

        assert [p.id for p in registry.active_projects()] == ["acme"]
