"""Test fixtures for the content structure indexer."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate environment overrides and root logging between tests."""
    for key in list(os.environ):
        if key.startswith("CS_"):
            monkeypatch.delenv(key, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    cwd = Path.cwd()
    yield
    root.handlers = handlers
    root.setLevel(level)
    os.chdir(cwd)


@pytest.fixture
def content_dir(tmp_path: Path) -> Path:
    path = tmp_path / "content"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(tmp_path: Path, content_dir: Path) -> Callable[..., Any]:
    from content_structure.core.config import Settings

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {"root_dir": tmp_path, "content_dir": "content", "out_dir": "out"}
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def write_png() -> Callable[..., Path]:
    from PIL import Image

    def _write(path: Path, size: tuple[int, int] = (4, 3), color: str = "red") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path, format="PNG")
        return path

    return _write
