"""Content tree enumeration into documents."""

from __future__ import annotations

import os
import posixpath
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml

from content_structure.core.config import Settings
from content_structure.core.errors import ContentDirectoryError
from content_structure.core.logging import get_logger
from content_structure.db.catalog import SchemaManager
from content_structure.ingest.markdown import split_front_matter
from content_structure.ingest.types import DocumentSource
from content_structure.models.entities import DocumentEntry, ModelAsset
from content_structure.utils.ids import sid_for
from content_structure.utils.text import slugify

logger = get_logger(__name__)

MARKDOWN_EXTENSIONS = frozenset({".md"})
MODEL_EXTENSIONS = frozenset({".yml", ".yaml"})
# documents columns filled by the enumerator itself, never from front matter
COMPUTED_DOCUMENT_COLUMNS = frozenset(
    {"sid", "uid", "path", "url", "url_type", "level", "base_dir", "format", "model", "metadata", "version_id"}
)


@contextmanager
def working_directory(path: Path) -> Iterator[Path]:
    """Temporarily change the process working directory."""
    previous = Path.cwd()
    os.chdir(path)
    try:
        yield path
    finally:
        os.chdir(previous)


def get_url_type(file_path: str) -> str:
    name = posixpath.basename(file_path)
    if name.lower() == "readme.md":
        return "dir"
    stem = posixpath.splitext(name)[0]
    parent = posixpath.basename(posixpath.dirname(file_path))
    return "dir" if parent and stem == parent else "file"


def entry_level(url_type: str, file_path: str) -> int:
    directory = posixpath.dirname(file_path)
    if directory in ("", "."):
        return 1
    depth = len(directory.split("/"))
    return 1 + depth + (1 if url_type == "file" else 0)


def derive_slug(fields: Mapping[str, Any], file_path: str, url_type: str) -> str:
    if fields.get("slug"):
        return str(fields["slug"])
    if fields.get("title"):
        slug = slugify(str(fields["title"]))
        if slug:
            return slug
    if url_type == "dir":
        parent = posixpath.basename(posixpath.dirname(file_path))
        if parent:
            return parent
    return posixpath.splitext(posixpath.basename(file_path))[0]


def entry_url(url_type: str, file_path: str, slug: str) -> str:
    directory = posixpath.dirname(file_path)
    if url_type == "dir":
        return "" if directory in ("", ".") else directory
    return posixpath.join(directory, slug) if directory else slug


def build_document_uid(url: str | None, slug: str | None, file_path: str) -> str:
    """Dotted uid from URL segments, then slug, then path, then a path hash."""
    segments = [segment for segment in (url or "").split("/") if segment]
    if segments:
        return ".".join(segments)
    if slug:
        return slug.replace("/", ".")
    sanitized = ".".join(segment for segment in posixpath.splitext(file_path)[0].split("/") if segment)
    if sanitized:
        return sanitized
    return sid_for(file_path)


def base_dir_of(file_path: str) -> str:
    directory = posixpath.dirname(file_path)
    return directory or "."


class OrderAllocator:
    """Sibling order numbers, unique per ``(base_dir, level)`` group."""

    def __init__(self) -> None:
        self._taken: dict[tuple[str, int], set[int]] = {}

    def assign(self, base_dir: str, level: int, requested: Any = None) -> int:
        taken = self._taken.setdefault((base_dir, level), set())
        if isinstance(requested, int) and not isinstance(requested, bool) and requested > 0 and requested not in taken:
            taken.add(requested)
            return requested
        candidate = 1
        while candidate in taken:
            candidate += 1
        taken.add(candidate)
        return candidate


class DocumentEnumerator:
    """Streams :class:`DocumentSource` objects for every document of the content root."""

    def __init__(self, settings: Settings, schema: SchemaManager) -> None:
        self.settings = settings
        self.content_dir = settings.content_dir
        self.folder_single_doc = settings.folder_single_doc
        self.known_fields = frozenset(schema.columns("documents")) - COMPUTED_DOCUMENT_COLUMNS
        self.orders = OrderAllocator()

    def check_content_dir(self) -> None:
        if not self.content_dir.exists():
            raise ContentDirectoryError(f"Content directory '{self.content_dir}' does not exist")
        if not self.content_dir.is_dir():
            raise ContentDirectoryError(f"'{self.content_dir}' is not a directory")

    def iter_documents(self) -> Iterator[DocumentSource]:
        self.check_content_dir()
        logger.info("Enumerating documents under %s", self.content_dir)
        with working_directory(self.content_dir):
            if self.folder_single_doc:
                yield from self._iter_folder_documents()
            else:
                yield from self._iter_file_documents()

    def partition_front_matter(self, front_matter: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        entry_fields: dict[str, Any] = {}
        model_fields: dict[str, Any] = {}
        for key, value in front_matter.items():
            if key in self.known_fields:
                entry_fields[key] = value
            else:
                model_fields[str(key)] = value
        return entry_fields, model_fields

    # Per-file mode ----------------------------------------------------

    def _iter_file_documents(self) -> Iterator[DocumentSource]:
        for file_path in _list_files(MARKDOWN_EXTENSIONS):
            raw_text = Path(file_path).read_text(encoding="utf-8", errors="replace")
            front_matter, body = split_front_matter(raw_text)
            entry_fields, model_fields = self.partition_front_matter(front_matter)
            entry = self._build_entry(file_path, get_url_type(file_path), entry_fields)
            entry.metadata = model_fields
            model_asset = None
            if model_fields:
                uid = f"{entry.uid}#frontmatter"
                model_asset = ModelAsset(uid=uid, parent_doc_uid=entry.uid, doc_sid=entry.sid, data=model_fields)
                entry.model = uid
            yield DocumentSource(
                entry=entry, raw_text=raw_text, body=body, model_asset=model_asset, source_paths=[file_path]
            )

    # Folder-bundle mode -----------------------------------------------

    def _iter_folder_documents(self) -> Iterator[DocumentSource]:
        buckets: dict[str, dict[str, list[str]]] = {}
        for file_path in _list_files(MARKDOWN_EXTENSIONS | MODEL_EXTENSIONS):
            bucket = buckets.setdefault(posixpath.dirname(file_path), {"markdown": [], "models": []})
            suffix = posixpath.splitext(file_path)[1].lower()
            bucket["markdown" if suffix in MARKDOWN_EXTENSIONS else "models"].append(file_path)

        for directory in sorted(buckets):
            bucket = buckets[directory]
            if not bucket["markdown"]:
                continue
            markdown_files = sorted(bucket["markdown"])
            sections: list[str] = []
            entry_fields: dict[str, Any] = {}
            metadata: dict[str, Any] = {}
            for file_path in markdown_files:
                raw = Path(file_path).read_text(encoding="utf-8", errors="replace")
                front_matter, body = split_front_matter(raw)
                known, unknown = self.partition_front_matter(front_matter)
                entry_fields.update({key: value for key, value in known.items() if key not in ("title", "slug")})
                metadata.update(unknown)
                if body.strip():
                    sections.append(body.strip())
            body_text = "\n\n".join(sections)
            primary_path = markdown_files[0]
            entry = self._build_entry(primary_path, "dir", entry_fields, slug_fields={})

            model_asset = None
            if bucket["models"]:
                model_path = sorted(bucket["models"])[0]
                metadata.update(_load_model_file(model_path))
                uid = f"{entry.uid}#{posixpath.basename(model_path)}"
                model_asset = ModelAsset(uid=uid, parent_doc_uid=entry.uid, doc_sid=entry.sid, path=model_path)
                entry.model = uid
            entry.metadata = metadata
            yield DocumentSource(
                entry=entry,
                raw_text=body_text,
                body=body_text,
                model_asset=model_asset,
                source_paths=markdown_files,
            )

    # Shared -----------------------------------------------------------

    def _build_entry(
        self,
        file_path: str,
        url_type: str,
        entry_fields: dict[str, Any],
        slug_fields: Mapping[str, Any] | None = None,
    ) -> DocumentEntry:
        slug = derive_slug(entry_fields if slug_fields is None else slug_fields, file_path, url_type)
        url = entry_url(url_type, file_path, slug)
        uid = build_document_uid(url, slug, file_path)
        level = entry_level(url_type, file_path)
        base_dir = base_dir_of(file_path)
        title = entry_fields.get("title") or slug
        order = self.orders.assign(base_dir, level, entry_fields.get("order"))
        extra = {
            key: value for key, value in entry_fields.items() if key not in ("title", "slug", "order")
        }
        return DocumentEntry(
            sid=sid_for(uid),
            uid=uid,
            path=file_path,
            url=url,
            url_type=url_type,
            slug=slug,
            title=str(title),
            level=level,
            base_dir=base_dir,
            order=order,
            fields=extra,
        )


def _list_files(extensions: frozenset[str]) -> list[str]:
    """Relative posix paths of files under the current directory, sorted."""
    found = [
        path.as_posix()
        for path in Path(".").rglob("*")
        if path.is_file() and path.suffix.lower() in extensions
    ]
    return sorted(found)


def _load_model_file(model_path: str) -> dict[str, Any]:
    try:
        with open(model_path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable model file %s: %s", model_path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Model file %s is not a mapping; ignored", model_path)
        return {}
    return data


__all__ = [
    "DocumentEnumerator",
    "OrderAllocator",
    "working_directory",
    "get_url_type",
    "entry_level",
    "derive_slug",
    "entry_url",
    "build_document_uid",
]
