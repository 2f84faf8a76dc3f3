"""Asset path resolution and existence checks."""

from __future__ import annotations

import posixpath
import re
from pathlib import Path
from urllib.parse import unquote

from content_structure.core.config import Settings
from content_structure.core.logging import get_logger
from content_structure.core.metrics import RECORDS_DROPPED
from content_structure.models.entities import Asset, DocumentEntry, FileAsset

logger = get_logger(__name__)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+\-.]*:")


def is_external_url(url: str | None) -> bool:
    """True for protocol URLs and ``//host`` references."""
    if not url:
        return False
    trimmed = url.strip()
    return trimmed.startswith("//") or bool(_SCHEME_RE.match(trimmed))


def file_ext(url: str) -> str:
    """Lowercase extension of a URL path, ignoring query and fragment."""
    path = url.split("#", 1)[0].split("?", 1)[0]
    return posixpath.splitext(path)[1].lstrip(".").lower()


def decode_path(raw: str) -> str:
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError as exc:
        logger.warning("Cannot decode asset path %r: %s", raw, exc)
        return raw


class AssetResolver:
    """Resolve asset references against the content and public directories."""

    def __init__(self, settings: Settings) -> None:
        self.content_dir = settings.content_dir
        self.public_dir = settings.public_dir

    def resolve_path(self, entry: DocumentEntry, url: str) -> str:
        """Content-relative path of ``url`` as referenced from ``entry``."""
        target = decode_path(url.split("#", 1)[0].split("?", 1)[0].strip())
        if target.startswith("/"):
            return posixpath.normpath(target)
        base_dir = entry.base_dir if entry.base_dir not in ("", ".") else ""
        return posixpath.normpath(posixpath.join(base_dir, target) if base_dir else target)

    def absolute(self, rel_path: str) -> Path:
        if rel_path.startswith("/"):
            return self.public_dir / rel_path.lstrip("/")
        return self.content_dir / rel_path

    def exists(self, rel_path: str) -> bool:
        if not rel_path or rel_path.startswith("../") or rel_path == "..":
            return False
        return self.absolute(rel_path).is_file()

    def list_dir(self, rel_dir: str) -> list[str]:
        """Sorted content-relative paths of the files directly under ``rel_dir``."""
        directory = self.absolute(rel_dir)
        if not directory.is_dir():
            logger.warning("Gallery directory %s does not exist", rel_dir)
            RECORDS_DROPPED.labels(reason="missing_dir").inc()
            return []
        prefix = rel_dir.rstrip("/")
        return sorted(
            posixpath.join(prefix, child.name) if prefix not in ("", ".") else child.name
            for child in directory.iterdir()
            if child.is_file()
        )

    def resolve(self, asset: Asset) -> Asset:
        """Attach ``exists``/``abs_path``/``ext`` to file-backed assets."""
        if not isinstance(asset, FileAsset) or not asset.path:
            return asset
        if asset.ext is None:
            asset.ext = file_ext(asset.path) or None
        if self.exists(asset.path):
            asset.exists = True
            asset.abs_path = str(self.absolute(asset.path))
        else:
            asset.exists = False
            logger.warning("Asset %s references missing file '%s'", asset.uid, asset.path)
            RECORDS_DROPPED.labels(reason="missing_file").inc()
        return asset


__all__ = ["AssetResolver", "is_external_url", "file_ext", "decode_path"]
