"""End-to-end tests for indexing runs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from content_structure.core.config import Settings
from content_structure.db.sqlite import SQLiteDatabase
from content_structure.ingest.pipeline import StructurePipeline
from content_structure.utils.ids import compute_version_id

FIRST_RUN = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
SECOND_RUN = datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc)

DOC = "# Title\n\nIntro text ![diagram](img/diagram.png)\n\n```python\nprint('hi')\n```\n"


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _rows(settings: Settings, sql: str) -> list:
    with SQLiteDatabase(settings.db_path, read_only=True) as db:
        return [dict(row) for row in db.query(sql)]


def test_single_document_run(make_settings, content_dir: Path, write_png) -> None:
    _write(content_dir / "doc.md", DOC)
    write_png(content_dir / "img" / "diagram.png")
    settings = make_settings(capture_files=False)

    result = StructurePipeline(settings).run(now=FIRST_RUN)

    assert result.version_id == compute_version_id(FIRST_RUN)
    assert result.stats.to_dict() == {
        "documents": 1,
        "items": 4,
        "assets": 2,
        "new_blobs": 1,
        "reused_blobs": 0,
        "references": 0,
        "pruned_documents": 0,
    }
    (document,) = _rows(settings, "SELECT uid, url_type, level, version_id FROM documents")
    assert document == {"uid": "doc", "url_type": "file", "level": 1, "version_id": result.version_id}
    items = _rows(settings, "SELECT type, body_text FROM items ORDER BY order_index")
    assert [item["type"] for item in items] == ["heading", "paragraph", "image", "code"]
    assert items[3]["body_text"] == "[python code](asset:///codeblock/doc#python)"
    assets = _rows(settings, "SELECT uid, type, blob_uid FROM assets ORDER BY uid")
    assert assets == [
        {"uid": "doc#diagram", "type": "image", "blob_uid": None},
        {"uid": "doc#python", "type": "codeblock", "blob_uid": 1},
    ]
    (image,) = _rows(settings, "SELECT width, height FROM images")
    assert (image["width"], image["height"]) == (4, 3)
    (version,) = _rows(settings, "SELECT version_id, type FROM versions")
    assert version == {"version_id": result.version_id, "type": "run"}


def test_rerun_is_idempotent(make_settings, content_dir: Path, write_png) -> None:
    _write(content_dir / "doc.md", DOC)
    write_png(content_dir / "img" / "diagram.png")
    settings = make_settings(capture_files=False)
    StructurePipeline(settings).run(now=FIRST_RUN)

    second = StructurePipeline(settings).run(now=SECOND_RUN)

    assert second.stats.new_blobs == 0
    assert second.stats.assets == 0
    assert second.stats.reused_blobs == 1
    assert [migration.action for migration in second.migrations] == ["unchanged"] * len(second.migrations)
    counts = {
        table: _rows(settings, f'SELECT COUNT(*) AS n FROM "{table}"')[0]["n"]
        for table in ("documents", "items", "assets", "blobs", "versions")
    }
    assert counts == {"documents": 1, "items": 4, "assets": 2, "blobs": 1, "versions": 2}
    (document,) = _rows(settings, "SELECT version_id FROM documents")
    assert document["version_id"] == second.version_id


def test_captured_files_are_stored_as_blobs(make_settings, content_dir: Path, write_png) -> None:
    _write(content_dir / "doc.md", DOC)
    write_png(content_dir / "img" / "diagram.png")
    settings = make_settings()

    result = StructurePipeline(settings).run(now=FIRST_RUN)

    assert result.stats.new_blobs == 2
    (image,) = _rows(settings, "SELECT blob_uid FROM images")
    assert image["blob_uid"] is not None


def test_references_and_pruning(make_settings, content_dir: Path, caplog) -> None:
    _write(content_dir / "a.md", "See [b](b.md) and [gone](gone.md).\n")
    _write(content_dir / "b.md", "# B\n")
    settings = make_settings()

    with caplog.at_level(logging.WARNING):
        first = StructurePipeline(settings).run(now=FIRST_RUN)
    assert first.stats.references == 1
    assert "gone.md" in caplog.text
    (reference,) = _rows(settings, 'SELECT target_uid, target_type, source_index FROM "references"')
    assert reference == {"target_uid": "b", "target_type": "document", "source_index": 0}

    (content_dir / "b.md").unlink()
    second = StructurePipeline(settings).run(now=SECOND_RUN)
    assert second.stats.pruned_documents == 1
    assert second.stats.references == 0
    assert [row["uid"] for row in _rows(settings, "SELECT uid FROM documents")] == ["a"]
    assert _rows(settings, 'SELECT COUNT(*) AS n FROM "references"')[0]["n"] == 0


def test_folder_mode_merges_each_directory(make_settings, content_dir: Path) -> None:
    _write(content_dir / "guide" / "one.md", "# One\n")
    _write(content_dir / "guide" / "two.md", "# Two\n")
    _write(content_dir / "guide" / "model.yml", "owner: docs\n")
    settings = make_settings(folder_single_doc=True)

    result = StructurePipeline(settings).run(now=FIRST_RUN)

    assert result.stats.documents == 1
    (document,) = _rows(settings, "SELECT uid, model FROM documents")
    assert document == {"uid": "guide", "model": "guide#model.yml"}
    headings = _rows(settings, "SELECT slug FROM items WHERE type = 'heading' ORDER BY order_index")
    assert [row["slug"] for row in headings] == ["one", "two"]
    types = {row["type"] for row in _rows(settings, "SELECT type FROM assets")}
    assert types == {"model"}


def test_folder_mode_resolves_links_to_merged_files(make_settings, content_dir: Path) -> None:
    _write(content_dir / "a" / "one.md", "# One\n")
    _write(content_dir / "a" / "two.md", "# Two\n")
    _write(content_dir / "b" / "b.md", "See [two](../a/two.md).\n")
    settings = make_settings(folder_single_doc=True)

    result = StructurePipeline(settings).run(now=FIRST_RUN)

    assert result.stats.documents == 2
    assert result.stats.references == 1
    (reference,) = _rows(settings, 'SELECT target_uid, target_type FROM "references"')
    assert reference == {"target_uid": "a", "target_type": "document"}
