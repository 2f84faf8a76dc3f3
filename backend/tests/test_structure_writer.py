"""Tests for the structure database writer."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import pytest

from content_structure.db.catalog import SchemaManager
from content_structure.db.migrations import reconcile_schema
from content_structure.db.sqlite import SQLiteDatabase
from content_structure.db.structure import StructureWriter
from content_structure.ingest.types import WalkResult
from content_structure.models.entities import CodeAsset, DocumentEntry, DocumentLink, ImageAsset, Item, VersionRecord
from content_structure.storage.blobs import BlobDescriptor
from content_structure.utils.hashing import sha512_bytes
from content_structure.utils.ids import sid_for

FIRST = "2024-01-01T00:00:00Z"
SECOND = "2024-01-02T00:00:00Z"


@pytest.fixture
def schema() -> SchemaManager:
    return SchemaManager.from_path()


@pytest.fixture
def db(tmp_path: Path, schema: SchemaManager) -> SQLiteDatabase:
    database = SQLiteDatabase(tmp_path / "structure.db")
    reconcile_schema(database, schema)
    yield database
    database.close()


def _entry(uid: str = "guide", path: str = "guide/guide.md") -> DocumentEntry:
    return DocumentEntry(
        sid=sid_for(uid),
        uid=uid,
        path=path,
        url=uid,
        url_type="dir",
        slug=uid,
        title=uid.title(),
        level=2,
        base_dir="guide",
        order=1,
        fields={"tags": ["x", "y"]},
    )


def _document(entry: DocumentEntry) -> tuple[WalkResult, list]:
    code = CodeAsset(uid=f"{entry.uid}#python", parent_doc_uid=entry.uid, doc_sid=entry.sid, language="python", text="x = 1")
    image = ImageAsset(
        uid=f"{entry.uid}#logo",
        parent_doc_uid=entry.uid,
        doc_sid=entry.sid,
        path="guide/logo.png",
        url="logo.png",
        width=4,
        height=3,
    )
    items = [
        Item(doc_sid=entry.sid, type="heading", level=1, order_index=0, body_text="Guide", slug="guide"),
        Item(
            doc_sid=entry.sid,
            type="code",
            level=1,
            order_index=1,
            body_text=f"[python code]({code.placeholder})",
            asset_uid=code.uid,
            linked_assets=[code.uid],
        ),
        Item(doc_sid=entry.sid, type="image", level=1, order_index=2, body_text="![logo]", asset_uid=image.uid),
    ]
    return WalkResult(items=items), [code, image]


def _descriptor(data: bytes) -> BlobDescriptor:
    return BlobDescriptor(hash=sha512_bytes(data), size=len(data), payload=data, compression=False)


def test_document_rows_and_asset_refs(db: SQLiteDatabase, schema: SchemaManager) -> None:
    writer = StructureWriter(db, schema, FIRST)
    entry = _entry()
    content, assets = _document(entry)
    assets[0].blob_uid, is_new = writer.register_blob(_descriptor(b"x = 1"))
    assert (assets[0].blob_uid, is_new) == (1, True)

    assert writer.insert_document(entry, content, assets, "AAA") == 2
    assert writer.insert_blobs() == 1

    doc = schema.parse_row("documents", dict(db.query("SELECT * FROM documents")[0]))
    assert (doc["uid"], doc["level"], doc["order"], doc["version_id"]) == ("guide", 2, 1, "AAA")
    assert doc["tags"] == ["x", "y"]
    assert db.count_rows("items") == 3
    refs = db.query("SELECT asset_uid, order_index FROM asset_refs ORDER BY id")
    assert [(row["asset_uid"], row["order_index"]) for row in refs] == [("guide#python", 1), ("guide#logo", 2)]
    image = db.query("SELECT width, height, blob_uid, first_seen FROM images")[0]
    assert (image["width"], image["height"], image["blob_uid"], image["first_seen"]) == (4, 3, None, FIRST)
    blob = db.query("SELECT blob_uid, payload, compression FROM blobs")[0]
    assert (blob["blob_uid"], bytes(blob["payload"]), blob["compression"]) == (1, b"x = 1", 0)


def test_rerun_reuses_blob_and_asset_identity(db: SQLiteDatabase, schema: SchemaManager) -> None:
    entry = _entry()
    first = StructureWriter(db, schema, FIRST)
    content, assets = _document(entry)
    assets[0].blob_uid, _ = first.register_blob(_descriptor(b"x = 1"))
    first.insert_document(entry, content, assets, "AAA")
    first.insert_blobs()

    second = StructureWriter(db, schema, SECOND)
    content, assets = _document(entry)
    assets[0].blob_uid, is_new = second.register_blob(_descriptor(b"x = 1"))
    assert (assets[0].blob_uid, is_new) == (1, False)
    assert second.insert_document(entry, content, assets, "AAB") == 0
    assert second.insert_blobs() == 0

    assert db.count_rows("assets") == 2
    assert db.count_rows("images") == 1
    assert db.count_rows("blobs") == 1
    assert db.count_rows("items") == 3
    assert db.count_rows("asset_refs") == 2
    blob = db.query("SELECT first_seen, last_seen FROM blobs")[0]
    assert (blob["first_seen"], blob["last_seen"]) == (FIRST, SECOND)
    asset = db.query("SELECT first_seen, last_seen FROM assets WHERE uid = 'guide#python'")[0]
    assert (asset["first_seen"], asset["last_seen"]) == (FIRST, SECOND)
    image = db.query("SELECT first_seen, last_seen FROM images")[0]
    assert (image["first_seen"], image["last_seen"]) == (FIRST, SECOND)


def test_changed_content_gets_next_blob_uid(db: SQLiteDatabase, schema: SchemaManager) -> None:
    writer = StructureWriter(db, schema, FIRST)
    assert writer.register_blob(_descriptor(b"one")) == (1, True)
    assert writer.register_blob(_descriptor(b"one")) == (1, False)
    entry = _entry()
    content, assets = _document(entry)
    assets[0].blob_uid = 7
    writer.insert_document(entry, content, assets, "AAA")

    reloaded = StructureWriter(db, schema, SECOND)
    assert reloaded.state.max_blob_uid == 7
    assert reloaded.register_blob(_descriptor(b"two")) == (8, True)


def test_version_is_written_once(db: SQLiteDatabase, schema: SchemaManager) -> None:
    writer = StructureWriter(db, schema, FIRST)
    version = VersionRecord(version_id="BCD", created_at=FIRST, tags=["nightly"])
    assert writer.insert_version(version) is True
    assert writer.insert_version(version) is False
    assert StructureWriter(db, schema, SECOND).insert_version(version) is False
    row = schema.parse_row("versions", dict(db.query("SELECT * FROM versions")[0]))
    assert row["tags"] == ["nightly"]


def test_references_resolve_known_documents(db: SQLiteDatabase, schema: SchemaManager, caplog) -> None:
    writer = StructureWriter(db, schema, FIRST)
    target = _entry("guide.setup", "guide/setup.md")
    links = [
        DocumentLink(source_sid="abc", source_index=2, source_heading="guide#intro", target_path="guide/setup.md"),
        DocumentLink(source_sid="abc", source_index=3, source_heading=None, target_path="guide/gone.md"),
    ]
    with caplog.at_level(logging.WARNING):
        assert writer.insert_references(links, {"guide/setup.md": target}) == 1
    row = db.query('SELECT * FROM "references"')[0]
    assert (row["target_uid"], row["target_sid"], row["source_index"]) == ("guide.setup", target.sid, 2)
    assert "guide/gone.md" in caplog.text


def test_prune_removes_documents_from_older_runs(db: SQLiteDatabase, schema: SchemaManager) -> None:
    writer = StructureWriter(db, schema, FIRST)
    kept, dropped = _entry("kept", "kept.md"), _entry("dropped", "dropped.md")
    for entry, version in ((kept, "AAB"), (dropped, "AAA")):
        content, _ = _document(entry)
        writer.insert_document(entry, content, [], version)
    assert writer.prune_documents("AAB") == 1
    assert [row["uid"] for row in db.query("SELECT uid FROM documents")] == ["kept"]
    assert {row["doc_sid"] for row in db.query("SELECT doc_sid FROM items")} == {kept.sid}


def test_failed_document_rolls_back_only_its_rows(db: SQLiteDatabase, schema: SchemaManager) -> None:
    writer = StructureWriter(db, schema, FIRST)
    good = _entry("good", "good.md")
    content, assets = _document(good)
    writer.insert_document(good, content, assets, "AAA")

    bad = _entry("bad", "bad.md")
    clashing = [
        Item(doc_sid=bad.sid, type="paragraph", level=0, order_index=0, body_text="one"),
        Item(doc_sid=bad.sid, type="paragraph", level=0, order_index=0, body_text="two"),
    ]
    with pytest.raises(sqlite3.IntegrityError):
        writer.insert_document(bad, WalkResult(items=clashing), [], "AAA")

    assert [row["uid"] for row in db.query("SELECT uid FROM documents")] == ["good"]
    assert db.query("SELECT COUNT(*) AS n FROM items WHERE doc_sid = ?", [bad.sid])[0]["n"] == 0
    assert db.count_rows("items") == 3
    assert db.count_rows("asset_refs") == 2
