"""Slug generation for prompt filenames and config entity ids."""

from __future__ import annotations

import re
import unicodedata

MAX_TITLE_SLUG_LENGTH = 40
MAX_ID_LENGTH = 50


def _ascii_lower(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return text.lower().strip()


def filename_slug(text: str, max_length: int | None = None) -> str:
    """Build a filename segment made only of ``[a-z0-9_]``.

    Runs of other characters collapse to a single underscore.  Returns "untitled"
    when nothing usable remains.
    """
    slug = re.sub(r"[^a-z0-9]+", "_", _ascii_lower(text)).strip("_")
    if max_length is not None and len(slug) > max_length:
        slug = slug[:max_length].rstrip("_")
    return slug or "untitled"


def generate_id(name: str) -> str:
    """Derive a stable entity id (``kebab-case``, at most 50 chars) from a name."""
    slug = re.sub(r"[^a-z0-9]+", "-", _ascii_lower(name)).strip("-")
    return slug[:MAX_ID_LENGTH].rstrip("-")
