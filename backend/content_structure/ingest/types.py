"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from content_structure.models.entities import Asset, DocumentEntry, DocumentLink, Heading, Item, ModelAsset


@dataclass(slots=True)
class DocumentSource:
    """One enumerated document before extraction."""

    entry: DocumentEntry
    raw_text: str
    body: str
    model_asset: ModelAsset | None = None
    source_paths: list[str] = field(default_factory=list)


@dataclass(slots=True)
class WalkResult:
    """Items and assets extracted from one document tree."""

    items: list[Item] = field(default_factory=list)
    assets: list[Asset] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    doc_links: list[DocumentLink] = field(default_factory=list)


@dataclass(slots=True)
class IngestStats:
    """Aggregated run statistics."""

    documents: int = 0
    items: int = 0
    assets: int = 0
    new_blobs: int = 0
    reused_blobs: int = 0
    references: int = 0
    pruned_documents: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "documents": self.documents,
            "items": self.items,
            "assets": self.assets,
            "new_blobs": self.new_blobs,
            "reused_blobs": self.reused_blobs,
            "references": self.references,
            "pruned_documents": self.pruned_documents,
        }


@dataclass(slots=True)
class RunSummary:
    """Outcome of one indexing run."""

    version_id: str
    stats: IngestStats
    migrations: list[Any] = field(default_factory=list)


__all__ = ["DocumentSource", "WalkResult", "IngestStats", "RunSummary"]
