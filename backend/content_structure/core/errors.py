"""Exception hierarchy for the structure indexer."""

from __future__ import annotations


class StructureError(RuntimeError):
    """Base exception for failures that abort an indexing run."""


class ContentDirectoryError(StructureError):
    """Raised when the content root is missing or not a directory."""


class CatalogError(StructureError):
    """Raised when the schema catalog is unreadable or incomplete."""


class SchemaMigrationError(StructureError):
    """Raised when a table cannot be reconciled with its catalog definition."""


__all__ = [
    "StructureError",
    "ContentDirectoryError",
    "CatalogError",
    "SchemaMigrationError",
]
