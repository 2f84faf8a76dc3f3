"""Indexing run orchestration."""

from __future__ import annotations

import time
from contextlib import closing
from datetime import datetime
from pathlib import Path

from content_structure.core.config import Settings
from content_structure.core.logging import document_logger, get_logger
from content_structure.core.metrics import RUN_DURATION
from content_structure.db.catalog import SchemaManager
from content_structure.db.migrations import reconcile_schema
from content_structure.db.sqlite import SQLiteDatabase
from content_structure.db.structure import StructureWriter
from content_structure.ingest.assets import AssetResolver
from content_structure.ingest.enumerator import DocumentEnumerator
from content_structure.ingest.markdown import parse_markdown
from content_structure.ingest.types import DocumentSource, IngestStats, RunSummary
from content_structure.ingest.walker import ContentWalker
from content_structure.models.entities import Asset, DocumentEntry, DocumentLink, VersionRecord
from content_structure.storage.blobs import BlobStore
from content_structure.utils.ids import compute_version_id
from content_structure.utils.time import iso_timestamp, utc_now

logger = get_logger(__name__)


class StructurePipeline:
    """Enumerate, extract and persist one content root."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.schema = SchemaManager.from_path(settings.catalog_path)
        self.resolver = AssetResolver(settings)
        self.walker = ContentWalker(settings, self.resolver)

    def run(self, now: datetime | None = None) -> RunSummary:
        started = time.perf_counter()
        moment = now or utc_now()
        version_id = compute_version_id(moment)
        timestamp = iso_timestamp(moment)
        enumerator = DocumentEnumerator(self.settings, self.schema)
        enumerator.check_content_dir()
        logger.info("Starting run %s for %s", version_id, self.settings.content_dir)

        stats = IngestStats()
        with SQLiteDatabase(self.settings.db_path) as db:
            migrations = reconcile_schema(db, self.schema)
            writer = StructureWriter(db, self.schema, timestamp)
            store = BlobStore(self.settings, timestamp=moment)
            store.seed(writer.known_descriptors)

            path_index: dict[str, DocumentEntry] = {}
            seen_sids: set[str] = set()
            links: list[DocumentLink] = []
            with closing(enumerator.iter_documents()) as sources:
                for source in sources:
                    if source.entry.sid in seen_sids:
                        document_logger(logger, source.entry.uid, version_id).warning(
                            "Document %s reuses uid %s", source.entry.path, source.entry.uid
                        )
                    seen_sids.add(source.entry.sid)
                    links.extend(self._process(source, writer, store, version_id, stats))
                    for path in source.source_paths or [source.entry.path]:
                        path_index[path] = source.entry

            stats.new_blobs = writer.insert_blobs()
            writer.insert_version(
                VersionRecord(
                    version_id=version_id,
                    created_at=timestamp,
                    type=self.settings.version_type,
                    tags=list(self.settings.version_tags),
                )
            )
            stats.references = writer.insert_references(links, path_index)
            stats.pruned_documents = writer.prune_documents(version_id)

        RUN_DURATION.observe(time.perf_counter() - started)
        logger.info("Run %s finished: %s", version_id, stats.to_dict())
        return RunSummary(version_id=version_id, stats=stats, migrations=migrations)

    def _process(
        self,
        source: DocumentSource,
        writer: StructureWriter,
        store: BlobStore,
        version_id: str,
        stats: IngestStats,
    ) -> list[DocumentLink]:
        entry = source.entry
        document_logger(logger, entry.uid, version_id).debug("Processing %s", entry.path)
        tree = parse_markdown(source.body)
        reserved = [source.model_asset.uid.split("#", 1)[1]] if source.model_asset else []
        result = self.walker.walk(tree, entry, reserved=reserved)
        assets: list[Asset] = list(result.assets)
        if source.model_asset is not None:
            assets.append(self.resolver.resolve(source.model_asset))
        for asset in assets:
            self._store_content(asset, writer, store, stats)
        stats.assets += writer.insert_document(entry, result, assets, version_id)
        stats.documents += 1
        stats.items += len(result.items)
        return result.doc_links

    def _store_content(self, asset: Asset, writer: StructureWriter, store: BlobStore, stats: IngestStats) -> None:
        data = asset.content()
        if data is not None:
            descriptor = store.ensure(data)
        else:
            source_file = asset.source_file()
            if not self.settings.capture_files or not source_file:
                return
            descriptor = store.ensure_from_file(Path(source_file))
        if descriptor is None:
            return
        asset.blob_uid, is_new = writer.register_blob(descriptor)
        if not is_new:
            stats.reused_blobs += 1


__all__ = ["StructurePipeline"]
