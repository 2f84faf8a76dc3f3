"""Image metadata probing and SVG text extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from content_structure.core.logging import get_logger

logger = get_logger(__name__)

_EXIF_ORIENTATION = 274
_SVG_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)")


@dataclass(slots=True)
class ImageProbe:
    width: int
    height: int
    orientation: int | None = None


def probe_image(path: Path) -> ImageProbe | None:
    """Return pixel dimensions (and EXIF orientation) or None when unreadable."""
    if path.suffix.lower() == ".svg":
        return _probe_svg(path)
    try:
        with Image.open(path) as img:
            orientation = img.getexif().get(_EXIF_ORIENTATION)
            return ImageProbe(width=img.width, height=img.height, orientation=orientation)
    except (OSError, UnidentifiedImageError) as exc:
        logger.warning("Cannot probe image %s: %s", path, exc)
        return None


def _probe_svg(path: Path) -> ImageProbe | None:
    soup = _load_svg(path)
    if soup is None:
        return None
    root = soup.find("svg")
    if root is None:
        logger.warning("No <svg> root in %s", path)
        return None
    width, height = _svg_length(root.get("width")), _svg_length(root.get("height"))
    if (width is None or height is None) and root.get("viewbox"):
        parts = str(root.get("viewbox")).replace(",", " ").split()
        if len(parts) == 4:
            width, height = _svg_length(parts[2]), _svg_length(parts[3])
    if width is None or height is None:
        logger.warning("SVG %s has no usable dimensions", path)
        return None
    return ImageProbe(width=width, height=height)


def _svg_length(value: object) -> int | None:
    if value is None:
        return None
    match = _SVG_LENGTH_RE.match(str(value))
    return int(float(match.group(1))) if match else None


def _load_svg(path: Path) -> BeautifulSoup | None:
    try:
        return BeautifulSoup(path.read_text(encoding="utf-8", errors="ignore"), "html.parser")
    except OSError as exc:
        logger.warning("Cannot read SVG %s: %s", path, exc)
        return None


def extract_embedded_text(path: Path) -> list[str]:
    """Text content of ``<text>`` elements for SVG images; empty otherwise."""
    if path.suffix.lower() != ".svg":
        return []
    soup = _load_svg(path)
    if soup is None:
        return []
    texts = [element.get_text(" ", strip=True) for element in soup.find_all("text")]
    return [text for text in texts if text]


__all__ = ["ImageProbe", "probe_image", "extract_embedded_text"]
