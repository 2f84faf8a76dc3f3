"""Tests for asset path resolution."""

from __future__ import annotations

import logging
from pathlib import Path

from content_structure.ingest.assets import AssetResolver, decode_path, file_ext, is_external_url
from content_structure.models.entities import DocumentEntry
from content_structure.utils.ids import sid_for


def _entry(path: str, uid: str) -> DocumentEntry:
    base_dir = path.rsplit("/", 1)[0] if "/" in path else "."
    return DocumentEntry(
        sid=sid_for(uid),
        uid=uid,
        path=path,
        url=uid,
        url_type="file",
        slug=uid,
        title=uid,
        level=1,
        base_dir=base_dir,
    )


def test_paths_resolve_against_document_directory(make_settings) -> None:
    resolver = AssetResolver(make_settings())
    entry = _entry("guide/setup.md", "guide.setup")
    assert resolver.resolve_path(entry, "img/a%20b.png?raw=1#frag") == "guide/img/a b.png"
    assert resolver.resolve_path(entry, "../logo.png") == "logo.png"
    assert resolver.resolve_path(entry, "/static/logo.png") == "/static/logo.png"


def test_encoded_traversal_cannot_leave_content_dir(make_settings, tmp_path: Path, write_png) -> None:
    write_png(tmp_path / "x.png")
    resolver = AssetResolver(make_settings())
    path = resolver.resolve_path(_entry("doc.md", "doc"), "a/%2e%2e/%2e%2e/x.png")
    assert path == "../x.png"
    assert resolver.exists(path) is False


def test_undecodable_path_is_kept_raw(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        assert decode_path("%FF.png") == "%FF.png"
    assert "Cannot decode asset path" in caplog.text
    assert decode_path("caf%C3%A9.png") == "café.png"


def test_url_helpers() -> None:
    assert is_external_url("https://example.com/a.png")
    assert is_external_url("//cdn.example.com/a.png")
    assert not is_external_url("img/a.png")
    assert file_ext("files/Manual.PDF?download=1#page=2") == "pdf"
