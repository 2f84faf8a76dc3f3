"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha512_bytes(data: bytes) -> str:
    """Return hex digest used as blob identity."""
    return hashlib.sha512(data).hexdigest()


def short_md5(text: str) -> str:
    """Return the first 8 hex chars of the MD5 of ``text``."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()[:8]
