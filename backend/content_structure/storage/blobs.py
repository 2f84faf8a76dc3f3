"""Content-addressable blob storage."""

from __future__ import annotations

import gzip
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from content_structure.core.config import Settings
from content_structure.core.logging import get_logger
from content_structure.utils.hashing import sha512_bytes

logger = get_logger(__name__)

BLOB_DIRNAME = "blobs"


@dataclass(slots=True)
class BlobDescriptor:
    """Where and how one distinct byte sequence is stored.

    ``path`` is relative to the output root for external blobs; inline blobs
    carry ``payload`` (possibly gzip-compressed) instead.
    """

    hash: str
    size: int
    path: str | None = None
    payload: bytes | None = None
    compression: bool | None = None

    @property
    def external(self) -> bool:
        return self.path is not None


class BlobIndex:
    """Process-lifetime map of known hashes.

    Seeded once from the database and mutated in place; it is not shared
    between processes or threads.
    """

    def __init__(self) -> None:
        self._entries: dict[str, BlobDescriptor] = {}

    def __contains__(self, digest: str) -> bool:
        return digest in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, digest: str) -> BlobDescriptor | None:
        return self._entries.get(digest)

    def add(self, descriptor: BlobDescriptor) -> None:
        self._entries[descriptor.hash] = descriptor


class BlobStore:
    """Dedup bytes by hash and place them inline or under ``blobs/``."""

    def __init__(self, settings: Settings, timestamp: datetime | None = None) -> None:
        self.out_dir = settings.out_dir
        self.timestamp = timestamp or datetime.now(tz=timezone.utc)
        self.external_threshold = settings.external_threshold_bytes
        self.inline_compression_min = settings.inline_compression_bytes
        self.compressible_extensions = frozenset(settings.file_compress_ext)
        self.index = BlobIndex()

    def seed(self, descriptors: Iterable[BlobDescriptor]) -> None:
        for descriptor in descriptors:
            self.index.add(descriptor)

    def ensure(self, data: bytes, compression_hint: bool | None = None) -> BlobDescriptor:
        """Return the descriptor for ``data``, storing it on first sight."""
        digest = sha512_bytes(data)
        existing = self.index.get(digest)
        if existing is not None:
            return existing
        descriptor = self._persist(data, digest, compression_hint)
        self.index.add(descriptor)
        return descriptor

    def ensure_from_file(self, path: Path) -> BlobDescriptor | None:
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning("Cannot read blob source %s: %s", path, exc)
            return None
        return self.ensure(data, compression_hint=self.compression_hint(path))

    def compression_hint(self, path: Path) -> bool | None:
        extension = path.suffix.lstrip(".").lower()
        if not extension:
            return None
        return extension in self.compressible_extensions

    def external_path(self, digest: str) -> str:
        moment = self.timestamp.astimezone(timezone.utc)
        return "/".join([BLOB_DIRNAME, f"{moment.year:04d}", f"{moment.month:02d}", digest[:2], digest])

    def _persist(self, data: bytes, digest: str, compression_hint: bool | None) -> BlobDescriptor:
        size = len(data)
        if size > self.external_threshold:
            relative_path = self.external_path(digest)
            self._write_external(relative_path, data)
            return BlobDescriptor(hash=digest, size=size, path=relative_path)
        if self._should_compress(size, compression_hint):
            return BlobDescriptor(hash=digest, size=size, payload=gzip.compress(data, mtime=0), compression=True)
        return BlobDescriptor(hash=digest, size=size, payload=bytes(data), compression=False)

    def _should_compress(self, size: int, compression_hint: bool | None) -> bool:
        if size <= self.inline_compression_min:
            return False
        if compression_hint is None:
            return True
        return compression_hint

    def _write_external(self, relative_path: str, data: bytes) -> None:
        target = self.out_dir / relative_path
        if target.exists():
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


def read_blob(out_dir: Path, descriptor: BlobDescriptor) -> bytes:
    """Return the original bytes of a stored blob."""
    if descriptor.path is not None:
        return (out_dir / descriptor.path).read_bytes()
    payload = descriptor.payload or b""
    return gzip.decompress(payload) if descriptor.compression else payload


__all__ = ["BlobDescriptor", "BlobIndex", "BlobStore", "read_blob", "BLOB_DIRNAME"]
