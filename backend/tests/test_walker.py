"""Tests for the markdown tree walker."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from content_structure.ingest.assets import AssetResolver
from content_structure.ingest.markdown import parse_markdown
from content_structure.ingest.walker import ContentWalker
from content_structure.models.entities import DocumentEntry
from content_structure.utils.ids import sid_for


def make_entry(path: str = "doc.md", uid: str = "doc") -> DocumentEntry:
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


@pytest.fixture
def walk(make_settings):
    settings = make_settings()
    walker = ContentWalker(settings, AssetResolver(settings))

    def _walk(text: str, entry: DocumentEntry | None = None, reserved=()):
        return walker.walk(parse_markdown(text), entry or make_entry(), reserved=reserved)

    return _walk


def test_items_follow_document_order(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "img" / "diagram.png")
    text = "# Intro\n\nSee this ![diagram](img/diagram.png)\n\n```python\nprint('hi')\n```\n"
    result = walk(text)
    assert [item.type for item in result.items] == ["heading", "paragraph", "image", "code"]
    assert [item.order_index for item in result.items] == [0, 1, 2, 3]
    assert [item.level for item in result.items] == [1, 1, 1, 1]
    assert {item.heading_uid for item in result.items} == {"doc#intro"}
    assert result.items[1].body_text == "See this"
    assert result.items[2].asset_uid == "doc#diagram"
    assert result.items[2].body_text == "![diagram](asset:///image/doc#diagram)"

    image, code = result.assets
    assert (image.kind, code.kind) == ("image", "codeblock")
    assert image.exists is True
    assert image.abs_path.endswith("diagram.png")
    assert (image.width, image.height) == (4, 3)
    assert image.ext == "png"
    assert code.language == "python"
    assert code.content() == b"print('hi')"


def test_level_uses_latest_preceding_heading(walk) -> None:
    result = walk("Preface\n\n## Sub\n\nBody\n\n### Deeper\n\nMore\n")
    assert [(item.type, item.level) for item in result.items] == [
        ("paragraph", 0),
        ("heading", 2),
        ("paragraph", 2),
        ("heading", 3),
        ("paragraph", 3),
    ]
    assert result.items[0].heading_uid is None


def test_asset_slugs_are_unique_across_kinds(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "one.png")
    write_png(content_dir / "two.png")
    result = walk("![shot](one.png) ![shot](two.png)\n\n```shot\nx\n```\n")
    assert [asset.uid for asset in result.assets] == ["doc#shot", "doc#shot-2", "doc#shot-3"]


def test_duplicate_headings_get_suffixes(walk) -> None:
    result = walk("# Setup\n\n# Setup\n")
    assert [heading.slug for heading in result.headings] == ["setup", "setup-2"]
    assert result.items[1].heading_uid == "doc#setup-2"


def test_reserved_slugs_are_skipped(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "fm.png")
    result = walk("![frontmatter](fm.png)\n", reserved=("frontmatter",))
    assert result.assets[0].uid == "doc#frontmatter-2"


def test_external_and_missing_images_are_not_assets(walk, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        result = walk("![a](https://example.com/a.png) ![b](//cdn.example.com/b.png) ![c](missing.png)\n")
    assert [item.type for item in result.items] == ["image", "image", "image"]
    assert result.assets == []
    assert result.items[0].body_text == "![a](https://example.com/a.png)"
    assert all(item.asset_uid is None for item in result.items)
    assert "missing.png" in caplog.text


def test_table_becomes_asset_with_records(walk) -> None:
    result = walk("| name | qty |\n|---|---|\n| apple | 1 |\n| pear | 2 |\n")
    (item,) = result.items
    (asset,) = result.assets
    assert asset.kind == "table"
    assert asset.uid == "doc#table-1"
    assert asset.data == [{"name": "apple", "qty": "1"}, {"name": "pear", "qty": "2"}]
    assert item.body_text == "[table 2 rows x 2 columns](asset:///table/doc#table-1)"
    assert item.meta == {"columns": ["name", "qty"], "rows": 2}


def test_gallery_list_expands_to_linked_assets(walk, content_dir: Path, write_png, caplog) -> None:
    write_png(content_dir / "pics" / "a.png")
    write_png(content_dir / "pics" / "b.png", size=(2, 6))
    text = "```yaml gallery\n- pics/a.png\n- pics/b.png\n- pics/none.png\n```\n"
    with caplog.at_level(logging.WARNING):
        result = walk(text)
    (item,) = result.items
    code, first, second = result.assets
    assert code.uid == "doc#yaml-gallery"
    assert (first.kind, first.uid, first.gallery_uid) == ("gallery", "doc#a", code.uid)
    assert (second.width, second.height) == (2, 6)
    assert item.linked_assets == ["doc#yaml-gallery", "doc#a", "doc#b"]
    assert "pics/none.png" in caplog.text


def test_gallery_directory_lists_images(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "pics" / "b.png")
    write_png(content_dir / "pics" / "a.png")
    (content_dir / "pics" / "notes.txt").write_text("not an image")
    result = walk("```yaml gallery\ndir: pics\n```\n")
    assert [asset.path for asset in result.assets[1:]] == ["pics/a.png", "pics/b.png"]


def test_malformed_gallery_is_ignored(walk, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        result = walk("```yaml gallery\n- [unclosed\n```\n")
    assert [asset.kind for asset in result.assets] == ["codeblock"]
    assert "Malformed gallery" in caplog.text


def test_links_to_allowed_files_become_assets(walk, content_dir: Path) -> None:
    (content_dir / "files").mkdir()
    (content_dir / "files" / "manual.pdf").write_bytes(b"%PDF-1.4")
    result = walk("Download [the manual](files/manual.pdf) or [missing](files/none.pdf).\n")
    assert [item.type for item in result.items] == ["paragraph", "link", "paragraph"]
    (asset,) = result.assets
    assert (asset.kind, asset.uid, asset.ext, asset.exists) == ("linked_file", "doc#link-the-manual", "pdf", True)
    assert result.items[1].body_text == "[the manual](asset:///linked_file/doc#link-the-manual)"
    assert result.items[2].body_text == "or missing."
    assert result.items[2].ast is not None


def test_markdown_links_are_recorded_for_references(walk) -> None:
    entry = make_entry(path="guide/a.md", uid="guide.a")
    result = walk("See [b](b.md) and [home](../readme.md#top).\n", entry=entry)
    assert [link.target_path for link in result.doc_links] == ["guide/b.md", "readme.md"]
    assert {link.source_index for link in result.doc_links} == {0}
    assert result.items[0].body_text == "See b and home."


def test_directives_become_items(walk) -> None:
    result = walk(":::note{.x}\nInside\n:::\n\nA :kbd[Ctrl]{key=c} press\n")
    assert [item.type for item in result.items] == ["directive", "paragraph", "paragraph", "directive", "paragraph"]
    container, _, _, text_directive, _ = result.items
    assert container.meta == {"kind": "container", "name": "note", "attributes": {"class": "x"}}
    assert text_directive.body_text == "kbd(c)"
    assert text_directive.meta == {"kind": "text", "name": "kbd", "attributes": {"key": "c"}, "label": "Ctrl"}


def test_complex_inline_formatting_keeps_snapshot(walk) -> None:
    result = walk("# Plain\n\n# Hello *World*\n\nJust text\n")
    plain, fancy, paragraph = result.items
    assert plain.ast is None
    assert paragraph.ast is None
    assert fancy.ast["type"] == "heading"
    assert fancy.ast["children"][1] == {"type": "emphasis", "children": [{"type": "text", "value": "World"}]}


def test_badge_image_inside_link_is_extracted(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "logo.png")
    result = walk("[![logo](logo.png)](https://example.com)\n")
    assert [item.type for item in result.items] == ["image"]
    (asset,) = result.assets
    assert (asset.kind, asset.uid, asset.exists) == ("image", "doc#logo", True)
    assert result.items[0].asset_uid == "doc#logo"


def test_image_inside_emphasis_is_extracted(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "logo.png")
    result = walk("*look ![logo](logo.png)*\n")
    assert [item.type for item in result.items] == ["paragraph", "image"]
    assert result.items[0].body_text == "look"
    assert [asset.uid for asset in result.assets] == ["doc#logo"]


def test_image_inside_heading_is_extracted(walk, content_dir: Path, write_png) -> None:
    write_png(content_dir / "logo.png")
    result = walk("# Title ![logo](logo.png)\n")
    heading, image = result.items
    assert (heading.type, heading.body_text) == ("heading", "Title")
    assert (image.type, image.asset_uid, image.heading_uid) == ("image", "doc#logo", "doc#title")
    assert [asset.uid for asset in result.assets] == ["doc#logo"]


def test_file_link_inside_emphasis_is_extracted(walk, content_dir: Path) -> None:
    (content_dir / "manual.pdf").write_bytes(b"%PDF-1.4")
    result = walk("*get [the manual](manual.pdf)*\n")
    assert [item.type for item in result.items] == ["paragraph", "link"]
    assert result.items[0].body_text == "get"
    (asset,) = result.assets
    assert (asset.kind, asset.uid) == ("linked_file", "doc#link-the-manual")


def test_unreadable_image_keeps_asset_without_dimensions(walk, content_dir: Path, caplog) -> None:
    (content_dir / "bad.png").write_bytes(b"not a png")
    with caplog.at_level(logging.WARNING):
        result = walk("![bad](bad.png)\n")
    (asset,) = result.assets
    assert (asset.uid, asset.exists) == ("doc#bad", True)
    assert (asset.width, asset.height) == (None, None)
    assert "Cannot probe image" in caplog.text
