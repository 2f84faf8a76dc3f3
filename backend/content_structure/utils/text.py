"""Text processing helpers."""

from __future__ import annotations

import re
import unicodedata
from typing import Collection

WHITESPACE_RE = re.compile(r"\s+")
_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SEP_RE = re.compile(r"[\s_-]+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def slugify(text: str | None) -> str:
    """Lowercase ASCII slug with dash separators."""
    if not text:
        return ""
    ascii_text = unicodedata.normalize("NFKD", str(text)).encode("ascii", "ignore").decode("ascii")
    cleaned = _SLUG_STRIP_RE.sub("", ascii_text).strip().lower()
    return _SLUG_SEP_RE.sub("-", cleaned).strip("-")


def unique_slug(slug: str, taken: Collection[str]) -> str:
    """Return ``slug`` or the first free ``slug-N`` (N >= 2)."""
    if slug not in taken:
        return slug
    counter = 2
    while f"{slug}-{counter}" in taken:
        counter += 1
    return f"{slug}-{counter}"
