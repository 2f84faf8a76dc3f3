"""Transactional writer for the structure database.

The writer keeps an in-memory view of what earlier runs already stored
(blob hashes, asset/image keys, version ids) so a rerun only inserts rows
that are genuinely new. The view is owned by a single writer process and is
never shared across threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from content_structure.core.logging import get_logger
from content_structure.core.metrics import ASSETS_WRITTEN, BLOBS_WRITTEN, DOCUMENTS_WRITTEN, ITEMS_WRITTEN, RECORDS_DROPPED
from content_structure.db.catalog import SchemaManager
from content_structure.db.sqlite import SQLiteDatabase, iter_rows, quote_ident
from content_structure.ingest.types import WalkResult
from content_structure.models.entities import Asset, BlobRecord, DocumentEntry, DocumentLink, ImageAsset, VersionRecord
from content_structure.storage.blobs import BlobDescriptor

logger = get_logger(__name__)


@dataclass
class KnownBlob:
    blob_uid: int
    first_seen: str | None
    descriptor: BlobDescriptor


@dataclass
class ExistingState:
    """Identity indices loaded from a previous run."""

    blobs: dict[str, KnownBlob] = field(default_factory=dict)
    asset_keys: set[tuple[str, int | None]] = field(default_factory=set)
    image_keys: set[tuple[str, int | None]] = field(default_factory=set)
    version_ids: set[str] = field(default_factory=set)
    max_blob_uid: int = 0

    @classmethod
    def load(cls, db: SQLiteDatabase) -> "ExistingState":
        state = cls()
        cursor = db.execute("SELECT blob_uid, hash, size, path, compression, first_seen FROM blobs")
        for row in iter_rows(cursor):
            descriptor = BlobDescriptor(
                hash=row["hash"],
                size=row["size"] or 0,
                path=row["path"],
                compression=bool(row["compression"]) if row["compression"] is not None else None,
            )
            state.blobs[row["hash"]] = KnownBlob(row["blob_uid"], row["first_seen"], descriptor)
        for row in iter_rows(db.execute("SELECT uid, blob_uid FROM assets")):
            state.asset_keys.add((row["uid"], row["blob_uid"]))
        for row in iter_rows(db.execute("SELECT uid, blob_uid FROM images")):
            state.image_keys.add((row["uid"], row["blob_uid"]))
        for row in iter_rows(db.execute("SELECT version_id FROM versions")):
            state.version_ids.add(row["version_id"])
        state.max_blob_uid = max(
            _max_value(db, "blobs", "blob_uid"),
            _max_value(db, "assets", "blob_uid"),
            _max_value(db, "images", "blob_uid"),
        )
        return state


def _max_value(db: SQLiteDatabase, table: str, column: str) -> int:
    row = db.execute(f"SELECT MAX({quote_ident(column)}) AS value FROM {quote_ident(table)}").fetchone()
    return int(row["value"]) if row and row["value"] is not None else 0


class StructureWriter:
    """Persist documents, items, assets, blobs and versions."""

    def __init__(self, db: SQLiteDatabase, schema: SchemaManager, timestamp: str) -> None:
        self.db = db
        self.schema = schema
        self.timestamp = timestamp
        self.state = ExistingState.load(db)
        self.pending_blobs: dict[str, BlobRecord] = {}
        self._touched_hashes: set[str] = set()
        self._blob_first_seen: dict[int, str] = {
            known.blob_uid: known.first_seen for known in self.state.blobs.values() if known.first_seen
        }

    @property
    def known_descriptors(self) -> list[BlobDescriptor]:
        return [known.descriptor for known in self.state.blobs.values()]

    # Blobs ------------------------------------------------------------

    def register_blob(self, descriptor: BlobDescriptor) -> tuple[int, bool]:
        """Return ``(blob_uid, is_new)``; new blobs are queued for :meth:`insert_blobs`."""
        known = self.state.blobs.get(descriptor.hash)
        if known is not None:
            self._touched_hashes.add(descriptor.hash)
            return known.blob_uid, False
        pending = self.pending_blobs.get(descriptor.hash)
        if pending is not None:
            return pending.blob_uid, False
        self.state.max_blob_uid += 1
        record = BlobRecord(
            blob_uid=self.state.max_blob_uid,
            descriptor=descriptor,
            first_seen=self.timestamp,
            last_seen=self.timestamp,
        )
        self.pending_blobs[descriptor.hash] = record
        self._blob_first_seen[record.blob_uid] = self.timestamp
        return record.blob_uid, True

    def insert_blobs(self, blobs: Iterable[BlobRecord] | None = None) -> int:
        """Insert blob rows for unknown hashes and refresh ``last_seen`` of known ones."""
        records = list(self.pending_blobs.values() if blobs is None else blobs)
        fresh = [record for record in records if record.descriptor.hash not in self.state.blobs]
        with self.db.transaction():
            if fresh:
                self.db.executemany(
                    self.schema.insert_sql("blobs"),
                    [self.schema.serialize_row("blobs", record.to_row()) for record in fresh],
                )
            if self._touched_hashes:
                self.db.executemany(
                    "UPDATE blobs SET last_seen = ? WHERE hash = ?",
                    [(self.timestamp, digest) for digest in sorted(self._touched_hashes)],
                )
        for record in fresh:
            self.state.blobs[record.descriptor.hash] = KnownBlob(record.blob_uid, record.first_seen, record.descriptor)
            self.pending_blobs.pop(record.descriptor.hash, None)
            BLOBS_WRITTEN.labels(storage="external" if record.descriptor.external else "inline").inc()
        self._touched_hashes.clear()
        if fresh:
            logger.info("Stored %d new blobs", len(fresh))
        return len(fresh)

    # Documents --------------------------------------------------------

    def insert_document(
        self,
        entry: DocumentEntry,
        content: WalkResult,
        assets: Sequence[Asset],
        version_id: str,
    ) -> int:
        """Write one document with its items, asset refs and new assets.

        Returns the number of new asset rows.
        """
        with self.db.transaction():
            self.db.execute(
                self.schema.insert_sql("documents", verb="INSERT OR REPLACE"),
                self.schema.serialize_row("documents", entry.to_row(version_id)),
            )
            self._delete_document_rows([entry.sid], include_document=False)
            if content.items:
                self.db.executemany(
                    self.schema.insert_sql("items"),
                    [self.schema.serialize_row("items", item.to_row()) for item in content.items],
                )
            self._write_asset_refs(entry, content, assets)
            created = self._write_assets(assets)
        DOCUMENTS_WRITTEN.inc()
        for item in content.items:
            ITEMS_WRITTEN.labels(type=item.type).inc()
        logger.debug("Wrote document %s (%d items, %d new assets)", entry.uid, len(content.items), created)
        return created

    def _write_asset_refs(self, entry: DocumentEntry, content: WalkResult, assets: Sequence[Asset]) -> None:
        seen: set[str] = set()
        rows: list[tuple] = []
        for item in content.items:
            linked = ([item.asset_uid] if item.asset_uid else []) + item.linked_assets
            for asset_uid in linked:
                if asset_uid in seen:
                    continue
                seen.add(asset_uid)
                rows.append(
                    self.schema.serialize_row(
                        "asset_refs", {"asset_uid": asset_uid, "doc_sid": entry.sid, "order_index": item.order_index}
                    )
                )
        for asset in assets:
            if asset.uid not in seen:
                seen.add(asset.uid)
                rows.append(self.schema.serialize_row("asset_refs", {"asset_uid": asset.uid, "doc_sid": entry.sid}))
        if rows:
            self.db.executemany(self.schema.insert_sql("asset_refs"), rows)

    def _write_assets(self, assets: Sequence[Asset]) -> int:
        asset_rows: list[tuple] = []
        image_rows: list[tuple] = []
        refreshed: list[tuple[str, int | None]] = []
        refreshed_images: list[tuple[str, int | None]] = []
        for asset in assets:
            key = (asset.uid, asset.blob_uid)
            first_seen = self._blob_first_seen.get(asset.blob_uid) if asset.blob_uid is not None else None
            if key in self.state.asset_keys:
                refreshed.append(key)
            else:
                self.state.asset_keys.add(key)
                row = asset.to_row()
                row.update({"first_seen": first_seen or self.timestamp, "last_seen": self.timestamp})
                asset_rows.append(self.schema.serialize_row("assets", row))
                ASSETS_WRITTEN.labels(type=asset.kind).inc()
            if isinstance(asset, ImageAsset) and key in self.state.image_keys:
                refreshed_images.append(key)
            elif isinstance(asset, ImageAsset):
                self.state.image_keys.add(key)
                image_row = asset.image_row()
                image_row.update({"first_seen": first_seen or self.timestamp, "last_seen": self.timestamp})
                image_rows.append(self.schema.serialize_row("images", image_row))
        if asset_rows:
            self.db.executemany(self.schema.insert_sql("assets"), asset_rows)
        if image_rows:
            self.db.executemany(self.schema.insert_sql("images"), image_rows)
        for uid, blob_uid in refreshed:
            self.db.execute(
                "UPDATE assets SET last_seen = ? WHERE uid = ? AND blob_uid IS ?",
                [self.timestamp, uid, blob_uid],
            )
        for uid, blob_uid in refreshed_images:
            self.db.execute(
                "UPDATE images SET last_seen = ? WHERE uid = ? AND blob_uid IS ?",
                [self.timestamp, uid, blob_uid],
            )
        return len(asset_rows)

    # Versions and references -------------------------------------------

    def insert_version(self, version: VersionRecord) -> bool:
        if version.version_id in self.state.version_ids:
            logger.info("Version %s already recorded", version.version_id)
            return False
        with self.db.transaction():
            self.db.execute(self.schema.insert_sql("versions"), self.schema.serialize_row("versions", version.to_row()))
        self.state.version_ids.add(version.version_id)
        return True

    def insert_references(self, links: Iterable[DocumentLink], path_index: Mapping[str, DocumentEntry]) -> int:
        """Resolve document links against ``path_index`` (content path -> entry)."""
        rows: list[tuple] = []
        for link in links:
            target = path_index.get(link.target_path)
            if target is None:
                logger.warning("Dropping reference from %s to unknown document '%s'", link.source_sid, link.target_path)
                RECORDS_DROPPED.labels(reason="unknown_reference").inc()
                continue
            rows.append(
                self.schema.serialize_row(
                    "references",
                    {
                        "source_sid": link.source_sid,
                        "source_index": link.source_index,
                        "source_heading": link.source_heading,
                        "target_type": "document",
                        "target_uid": target.uid,
                        "target_sid": target.sid,
                    },
                )
            )
        if rows:
            with self.db.transaction():
                self.db.executemany(self.schema.insert_sql("references"), rows)
        return len(rows)

    def prune_documents(self, version_id: str) -> int:
        """Delete documents that the run ``version_id`` did not emit."""
        rows = self.db.query(
            "SELECT sid FROM documents WHERE version_id IS NULL OR version_id != ?",
            [version_id],
        )
        stale = [row["sid"] for row in rows]
        if not stale:
            return 0
        with self.db.transaction():
            self._delete_document_rows(stale, include_document=True)
        logger.info("Pruned %d documents absent from version %s", len(stale), version_id)
        return len(stale)

    def _delete_document_rows(self, sids: Sequence[str], include_document: bool) -> None:
        params = [(sid,) for sid in sids]
        self.db.executemany("DELETE FROM items WHERE doc_sid = ?", params)
        self.db.executemany("DELETE FROM asset_refs WHERE doc_sid = ?", params)
        self.db.executemany(f"DELETE FROM {quote_ident('references')} WHERE source_sid = ?", params)
        if include_document:
            self.db.executemany("DELETE FROM documents WHERE sid = ?", params)


__all__ = ["StructureWriter", "ExistingState", "KnownBlob"]
