"""Internal dataclasses representing persisted entities.

Assets are a small tagged family: every concrete class declares its ``kind``
and only the fields that kind needs. ``to_row`` flattens them into the shared
``assets`` table layout at the persistence boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

import orjson

from content_structure.storage.blobs import BlobDescriptor
from content_structure.utils.ids import sid_for


@dataclass(slots=True)
class DocumentEntry:
    sid: str
    uid: str
    path: str
    url: str
    url_type: str
    slug: str
    title: str
    level: int
    base_dir: str
    format: str = "markdown"
    order: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    model: str | None = None

    def to_row(self, version_id: str | None = None) -> dict[str, Any]:
        row: dict[str, Any] = dict(self.fields)
        row.update(
            {
                "sid": self.sid,
                "uid": self.uid,
                "path": self.path,
                "url": self.url,
                "url_type": self.url_type,
                "slug": self.slug,
                "title": self.title,
                "level": self.level,
                "order": self.order,
                "base_dir": self.base_dir,
                "format": self.format,
                "model": self.model,
                "metadata": self.metadata or None,
                "version_id": version_id,
            }
        )
        return row


@dataclass(slots=True)
class Heading:
    label: str
    slug: str
    uid: str
    depth: int
    line: int | None


@dataclass(slots=True)
class Item:
    doc_sid: str
    type: str
    level: int
    order_index: int
    body_text: str
    line: int | None = None
    slug: str | None = None
    heading_uid: str | None = None
    asset_uid: str | None = None
    ast: dict[str, Any] | None = None
    meta: dict[str, Any] | None = None
    linked_assets: list[str] = field(default_factory=list)

    def to_row(self) -> dict[str, Any]:
        return {
            "doc_sid": self.doc_sid,
            "order_index": self.order_index,
            "type": self.type,
            "level": self.level,
            "line": self.line,
            "body_text": self.body_text,
            "slug": self.slug,
            "heading_uid": self.heading_uid,
            "asset_uid": self.asset_uid,
            "ast": self.ast,
            "meta": self.meta,
        }


@dataclass(slots=True, kw_only=True)
class Asset:
    kind: ClassVar[str] = "asset"

    uid: str
    parent_doc_uid: str
    doc_sid: str
    blob_uid: int | None = None

    @property
    def sid(self) -> str:
        return sid_for(self.uid)

    @property
    def placeholder(self) -> str:
        return f"asset:///{self.kind}/{self.uid}"

    def content(self) -> bytes | None:
        """In-memory bytes to store, or None when the asset is file-backed."""
        return None

    def source_file(self) -> str | None:
        return None

    def to_row(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "blob_uid": self.blob_uid,
            "sid": self.sid,
            "type": self.kind,
            "parent_doc_uid": self.parent_doc_uid,
            "doc_sid": self.doc_sid,
        }


@dataclass(slots=True, kw_only=True)
class FileAsset(Asset):
    path: str | None = None
    abs_path: str | None = None
    ext: str | None = None
    exists: bool | None = None

    def source_file(self) -> str | None:
        return self.abs_path if self.exists else None

    def to_row(self) -> dict[str, Any]:
        row = Asset.to_row(self)
        row.update({"path": self.path, "abs_path": self.abs_path, "ext": self.ext, "exists": self.exists})
        return row


@dataclass(slots=True, kw_only=True)
class TableAsset(Asset):
    kind: ClassVar[str] = "table"

    data: list[dict[str, Any]] = field(default_factory=list)
    text: str = ""

    def content(self) -> bytes:
        return orjson.dumps(self.data)

    def to_row(self) -> dict[str, Any]:
        row = Asset.to_row(self)
        row.update({"text": self.text, "meta": {"rows": len(self.data)}})
        return row


@dataclass(slots=True, kw_only=True)
class CodeAsset(Asset):
    kind: ClassVar[str] = "codeblock"

    language: str = "code"
    meta: str | None = None
    text: str = ""

    def content(self) -> bytes:
        return self.text.encode("utf-8")

    def to_row(self) -> dict[str, Any]:
        row = Asset.to_row(self)
        row.update({"language": self.language, "meta": {"meta": self.meta} if self.meta else None})
        return row


@dataclass(slots=True, kw_only=True)
class ImageAsset(FileAsset):
    kind: ClassVar[str] = "image"

    url: str | None = None
    title: str | None = None
    alt: str | None = None
    width: int | None = None
    height: int | None = None
    orientation: int | None = None
    text_list: list[str] = field(default_factory=list)

    def image_row(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "blob_uid": self.blob_uid,
            "doc_sid": self.doc_sid,
            "title": self.title,
            "alt": self.alt,
            "url": self.url,
            "width": self.width,
            "height": self.height,
            "orientation": self.orientation,
            "text_list": self.text_list,
        }


@dataclass(slots=True, kw_only=True)
class GalleryImageAsset(ImageAsset):
    kind: ClassVar[str] = "gallery"

    gallery_uid: str | None = None

    def to_row(self) -> dict[str, Any]:
        row = FileAsset.to_row(self)
        row["meta"] = {"gallery": self.gallery_uid}
        return row


@dataclass(slots=True, kw_only=True)
class LinkedFileAsset(FileAsset):
    kind: ClassVar[str] = "linked_file"

    url: str | None = None
    title: str | None = None
    text: str | None = None

    def to_row(self) -> dict[str, Any]:
        row = FileAsset.to_row(self)
        row.update({"text": self.text, "meta": {"url": self.url, "title": self.title}})
        return row


@dataclass(slots=True, kw_only=True)
class ModelAsset(FileAsset):
    """Document metadata: front-matter fields or a co-located YAML model file."""

    kind: ClassVar[str] = "model"

    data: dict[str, Any] | None = None

    def content(self) -> bytes | None:
        if self.data is None:
            return None
        return orjson.dumps(self.data, default=str, option=orjson.OPT_SORT_KEYS)

    def source_file(self) -> str | None:
        if self.data is not None:
            return None
        return FileAsset.source_file(self)


@dataclass(slots=True)
class BlobRecord:
    blob_uid: int
    descriptor: BlobDescriptor
    first_seen: str
    last_seen: str

    def to_row(self) -> dict[str, Any]:
        return {
            "blob_uid": self.blob_uid,
            "hash": self.descriptor.hash,
            "size": self.descriptor.size,
            "path": self.descriptor.path,
            "payload": self.descriptor.payload,
            "compression": self.descriptor.compression,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
        }


@dataclass(slots=True)
class VersionRecord:
    version_id: str
    created_at: str
    type: str = "run"
    tags: list[str] = field(default_factory=list)

    def to_row(self) -> dict[str, Any]:
        return {"version_id": self.version_id, "created_at": self.created_at, "type": self.type, "tags": self.tags}


@dataclass(slots=True)
class DocumentLink:
    """A link from an item to another markdown file of the corpus."""

    source_sid: str
    source_index: int
    source_heading: str | None
    target_path: str
