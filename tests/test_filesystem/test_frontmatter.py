"""Tests for the flat front matter parser/writer."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from nsma.filesystem.frontmatter import (
    parse_frontmatter,
    render_frontmatter,
    split_document,
    update_file_frontmatter,
    update_frontmatter,
)

DOC = """---
notion_page_id: abc-123
phase: Auth
effort: XS - < 2 hours
---

# Task

key: value lines in the body are not metadata
---
"""


class TestParseFrontmatter:
    def test_parses_flat_fields(self) -> None:
        assert parse_frontmatter(DOC) == {
            "notion_page_id": "abc-123",
            "phase": "Auth",
            "effort": "XS - < 2 hours",
        }

    def test_no_frontmatter(self) -> None:
        assert parse_frontmatter("# Title\n\nphase: nope\n") == {}

    def test_unclosed_block(self) -> None:
        assert parse_frontmatter("---\nphase: Auth\n") == {}

    def test_value_with_colons_and_quotes(self) -> None:
        text = "---\nnotion_url: https://www.notion.so/x\nnote: 'quoted'\n---\n"
        assert parse_frontmatter(text) == {
            "notion_url": "https://www.notion.so/x",
            "note": "quoted",
        }

    def test_split_document(self) -> None:
        fields, body = split_document(DOC)
        assert fields["phase"] == "Auth"
        assert body.startswith("\n# Task\n")

    def test_split_body_starts_after_closing_line(self) -> None:
        assert split_document(render_frontmatter({"phase": "Auth"}) + "Body\n")[1] == "Body\n"
        assert split_document("---\r\nphase: Auth\r\n---\r\nBody\r\n")[1] == "Body\r\n"

    def test_split_without_frontmatter(self) -> None:
        assert split_document("# Title\n") == ({}, "# Title\n")


class TestUpdateFrontmatter:
    def test_rewrites_existing_and_appends_new_keys(self) -> None:
        updated = update_frontmatter(DOC, {"phase": "Billing", "last_status": "processed"})

        fields = parse_frontmatter(updated)
        assert fields["phase"] == "Billing"
        assert fields["last_status"] == "processed"
        assert list(fields) == ["notion_page_id", "phase", "effort", "last_status"]

    def test_body_preserved_byte_for_byte(self) -> None:
        updated = update_frontmatter(DOC, {"last_status": "processed"})
        assert split_document(updated)[1] == split_document(DOC)[1]

    def test_crlf_line_endings_kept(self) -> None:
        text = "---\r\nphase: Auth\r\n---\r\nBody\r\n"
        updated = update_frontmatter(text, {"phase": "Billing"})
        assert updated == "---\r\nphase: Billing\r\n---\r\nBody\r\n"

    def test_missing_frontmatter_raises(self) -> None:
        with pytest.raises(ValueError, match="No frontmatter"):
            update_frontmatter("# Just a body\n", {"phase": "Auth"})

    def test_file_update(self, tmp_path: Path) -> None:
        path = tmp_path / "prompt.md"
        path.write_text(DOC, encoding="utf-8")

        update_file_frontmatter(path, {"last_synced_to_notion": "2026-03-01T10:00:00Z"})

        text = path.read_text(encoding="utf-8")
        assert parse_frontmatter(text)["last_synced_to_notion"] == "2026-03-01T10:00:00Z"
        assert text.endswith("key: value lines in the body are not metadata\n---\n")


_keys = st.from_regex(r"[a-z][a-z_]{0,15}", fullmatch=True)
_values = st.text(
    alphabet=st.characters(exclude_categories=("Cs", "Cc", "Zl", "Zp")),
    max_size=40,
).map(str.strip)


class TestRoundTrip:
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    @given(fields=st.dictionaries(_keys, _values, max_size=8))
    def test_render_then_parse(self, fields: dict[str, str]) -> None:
        assert parse_frontmatter(render_frontmatter(fields)) == fields

    @settings(max_examples=100, deadline=None)
    @given(body=st.text(max_size=200), value=_values)
    def test_update_leaves_body_alone(self, body: str, value: str) -> None:
        text = render_frontmatter({"phase": "Auth"}) + body
        updated = update_frontmatter(text, {"last_status": value})
        assert updated.endswith(body)
        assert parse_frontmatter(updated)["last_status"] == value
