"""Flatten a parsed markdown tree into ordered items and assets."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import yaml

from content_structure.core.config import Settings
from content_structure.core.logging import ContextAdapter, document_logger, get_logger
from content_structure.core.metrics import RECORDS_DROPPED
from content_structure.ingest.assets import AssetResolver, file_ext, is_external_url
from content_structure.ingest.markdown import Node, node_text_list, strip_positions
from content_structure.ingest.media import extract_embedded_text, probe_image
from content_structure.ingest.types import WalkResult
from content_structure.models.entities import (
    Asset,
    CodeAsset,
    DocumentEntry,
    DocumentLink,
    GalleryImageAsset,
    Heading,
    ImageAsset,
    Item,
    LinkedFileAsset,
    TableAsset,
)
from content_structure.utils.text import normalize, slugify, unique_slug

logger = get_logger(__name__)

GALLERY_LANGUAGE = "yaml"
GALLERY_META = "gallery"
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp", "svg", "bmp", "tif", "tiff", "avif"})
# inline node types whose formatting is lost when flattened to plain text
COMPLEX_INLINE_TYPES = frozenset({"emphasis", "strong", "delete", "inlineCode", "link", "image", "html", "textDirective"})
CONTAINER_TYPES = frozenset({"root", "blockquote", "list", "listItem"})
INLINE_WRAPPER_TYPES = frozenset({"emphasis", "strong", "delete", "link"})


@dataclass(slots=True)
class TraversalState:
    """Cursors and counters for one document walk."""

    entry: DocumentEntry
    log: ContextAdapter
    items: list[Item] = field(default_factory=list)
    assets: list[Asset] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    doc_links: list[DocumentLink] = field(default_factory=list)
    heading_slugs: set[str] = field(default_factory=set)
    asset_slugs: set[str] = field(default_factory=set)
    table_counter: int = 0
    current_heading: Heading | None = None

    @property
    def next_index(self) -> int:
        return len(self.items)

    @property
    def heading_uid(self) -> str | None:
        return self.current_heading.uid if self.current_heading else None

    def claim_asset_slug(self, slug: str) -> str:
        unique = unique_slug(slug, self.asset_slugs)
        self.asset_slugs.add(unique)
        return unique

    def claim_heading_slug(self, slug: str) -> str:
        unique = unique_slug(slug, self.heading_slugs)
        self.heading_slugs.add(unique)
        return unique

    def level_for(self, line: int | None) -> int:
        """Depth of the latest heading at or before ``line``; 0 when none."""
        if line is None:
            return self.current_heading.depth if self.current_heading else 0
        for heading in reversed(self.headings):
            if heading.line is not None and heading.line <= line:
                return heading.depth
        return 0


class ContentWalker:
    """Depth-first walker producing :class:`Item` and :class:`Asset` records."""

    def __init__(self, settings: Settings, resolver: AssetResolver) -> None:
        self.resolver = resolver
        self.link_extensions = frozenset(settings.file_link_ext)

    def walk(self, tree: Node, entry: DocumentEntry, reserved: Iterable[str] = ()) -> WalkResult:
        state = TraversalState(entry=entry, log=document_logger(logger, entry.uid), asset_slugs=set(reserved))
        for child in tree.get("children", []) or []:
            self._visit(child, state)
        return WalkResult(items=state.items, assets=state.assets, headings=state.headings, doc_links=state.doc_links)

    # Dispatch ---------------------------------------------------------

    def _visit(self, node: Node, state: TraversalState) -> None:
        node_type = node.get("type")
        if node_type == "heading":
            self._heading(node, state)
        elif node_type == "paragraph":
            self._paragraph(node, state)
        elif node_type == "table":
            self._table(node, state)
        elif node_type == "code":
            self._code(node, state)
        elif node_type == "containerDirective":
            self._container_directive(node, state)
        elif node_type in CONTAINER_TYPES:
            for child in node.get("children", []) or []:
                self._visit(child, state)
        elif node_type in ("image", "link", "textDirective", "text"):
            self._paragraph({"type": "paragraph", "children": [node], "position": node.get("position")}, state)

    def _add_item(self, state: TraversalState, item_type: str, body_text: str, line: int | None, **extra: Any) -> Item:
        level = extra.pop("level") if "level" in extra else state.level_for(line)
        heading_uid = extra.pop("heading_uid", state.heading_uid)
        item = Item(
            doc_sid=state.entry.sid,
            type=item_type,
            level=level,
            order_index=state.next_index,
            body_text=body_text,
            line=line,
            heading_uid=heading_uid,
            **extra,
        )
        state.items.append(item)
        return item

    # Node handlers ----------------------------------------------------

    def _heading(self, node: Node, state: TraversalState) -> None:
        children = node.get("children", []) or []
        label = _run_text(children)
        slug = state.claim_heading_slug(slugify(label) or "heading")
        heading = Heading(
            label=label,
            slug=slug,
            uid=f"{state.entry.uid}#{slug}",
            depth=int(node.get("depth") or 1),
            line=_line(node),
        )
        state.headings.append(heading)
        state.current_heading = heading
        self._add_item(
            state,
            "heading",
            label,
            heading.line,
            level=heading.depth,
            slug=slug,
            heading_uid=heading.uid,
            ast=_snapshot(node, children),
        )
        if self._has_extractable(node, state.entry, directives=False):
            self._extract_nested(children, state)

    def _paragraph(self, node: Node, state: TraversalState) -> None:
        run: list[Node] = []
        self._split_inline(node.get("children", []) or [], node, run, state)
        self._flush_run(run, node, state)

    def _split_inline(self, children: Sequence[Node], paragraph: Node, run: list[Node], state: TraversalState) -> None:
        """Append text nodes to ``run``; images, directives and file links become items of their own."""
        for child in children:
            child_type = child.get("type")
            if child_type == "image":
                self._flush_run(run, paragraph, state)
                self._image(child, state)
            elif child_type == "textDirective":
                self._flush_run(run, paragraph, state)
                self._text_directive(child, state)
            elif child_type == "link" and self._linkable_path(child, state.entry) is not None:
                self._flush_run(run, paragraph, state)
                self._linked_file(child, state)
            elif child_type in INLINE_WRAPPER_TYPES and self._has_extractable(child, state.entry, directives=True):
                self._split_inline(child.get("children", []) or [], paragraph, run, state)
                if child_type == "link":
                    self._flush_run(run, paragraph, state)
                    self._record_link(child, state.items[-1] if state.items else None, state)
            else:
                run.append(child)

    def _has_extractable(self, node: Node, entry: DocumentEntry, directives: bool) -> bool:
        for child in node.get("children", []) or []:
            child_type = child.get("type")
            if child_type == "image" or (directives and child_type == "textDirective"):
                return True
            if child_type == "link" and self._linkable_path(child, entry) is not None:
                return True
            if self._has_extractable(child, entry, directives):
                return True
        return False

    def _extract_nested(self, children: Sequence[Node], state: TraversalState) -> None:
        """Emit images and file links found anywhere below ``children``."""
        for child in children:
            child_type = child.get("type")
            if child_type == "image":
                self._image(child, state)
            elif child_type == "link" and self._linkable_path(child, state.entry) is not None:
                self._linked_file(child, state)
            else:
                self._extract_nested(child.get("children", []) or [], state)

    def _flush_run(self, run: list[Node], paragraph: Node, state: TraversalState) -> None:
        if not run:
            return
        nodes = list(run)
        run.clear()
        text = _run_text(nodes)
        if not text:
            return
        line = _line(nodes[0]) or _line(paragraph)
        item = self._add_item(state, "paragraph", text, line, ast=_snapshot(paragraph, nodes))
        for link in _iter_links(nodes):
            self._record_link(link, item, state)

    def _record_link(self, link: Node, item: Item | None, state: TraversalState) -> None:
        target = self._document_target(link, state.entry)
        if target is None or item is None:
            return
        state.doc_links.append(
            DocumentLink(
                source_sid=state.entry.sid,
                source_index=item.order_index,
                source_heading=item.heading_uid,
                target_path=target,
            )
        )

    def _table(self, node: Node, state: TraversalState) -> None:
        state.table_counter += 1
        slug = state.claim_asset_slug(f"table-{state.table_counter}")
        headers, data = table_to_records(node)
        asset = TableAsset(
            uid=f"{state.entry.uid}#{slug}",
            parent_doc_uid=state.entry.uid,
            doc_sid=state.entry.sid,
            data=data,
            text=" ".join(text.strip() for text in node_text_list(node) if text.strip()),
        )
        state.assets.append(asset)
        description = f"table {len(data)} rows x {len(headers)} columns"
        self._add_item(
            state,
            "table",
            f"[{description}]({asset.placeholder})",
            _line(node),
            slug=slug,
            asset_uid=asset.uid,
            linked_assets=[asset.uid],
            meta={"columns": headers, "rows": len(data)},
        )

    def _code(self, node: Node, state: TraversalState) -> None:
        language = node.get("lang") or "code"
        meta = node.get("meta")
        slug = state.claim_asset_slug(code_slug(language, meta))
        asset = CodeAsset(
            uid=f"{state.entry.uid}#{slug}",
            parent_doc_uid=state.entry.uid,
            doc_sid=state.entry.sid,
            language=language,
            meta=meta,
            text=node.get("value") or "",
        )
        state.assets.append(asset)
        item = self._add_item(
            state,
            "code",
            f"[{language} code]({asset.placeholder})",
            _line(node),
            slug=slug,
            asset_uid=asset.uid,
            linked_assets=[asset.uid],
            meta={"language": language, "meta": meta} if meta else {"language": language},
        )
        if language == GALLERY_LANGUAGE and meta and meta.split()[0] == GALLERY_META:
            for gallery_asset in self._gallery(asset, state):
                state.assets.append(gallery_asset)
                item.linked_assets.append(gallery_asset.uid)

    def _image(self, node: Node, state: TraversalState) -> None:
        url = (node.get("url") or "").strip()
        alt = node.get("alt") or ""
        slug = state.claim_asset_slug(image_slug(node))
        asset = self._image_asset(url, slug, node, state)
        if asset is None:
            self._add_item(state, "image", f"![{alt}]({url})", _line(node), slug=slug)
            return
        state.assets.append(asset)
        self._add_item(
            state,
            "image",
            f"![{alt}]({asset.placeholder})",
            _line(node),
            slug=slug,
            asset_uid=asset.uid,
            linked_assets=[asset.uid],
        )

    def _linked_file(self, node: Node, state: TraversalState) -> None:
        text = _run_text(node.get("children", []) or [])
        label = text or node.get("title") or node.get("url") or ""
        slug = state.claim_asset_slug(f"link-{slugify(node.get('title') or text) or 'file'}")
        asset = LinkedFileAsset(
            uid=f"{state.entry.uid}#{slug}",
            parent_doc_uid=state.entry.uid,
            doc_sid=state.entry.sid,
            path=self._linkable_path(node, state.entry),
            url=node.get("url"),
            title=node.get("title"),
            text=text or None,
        )
        self.resolver.resolve(asset)
        state.assets.append(asset)
        self._add_item(
            state,
            "link",
            f"[{label}]({asset.placeholder})",
            _line(node),
            slug=slug,
            asset_uid=asset.uid,
            linked_assets=[asset.uid],
        )

    def _text_directive(self, node: Node, state: TraversalState) -> None:
        label = _run_text(node.get("children", []) or [])
        meta: dict[str, Any] = {"kind": "text", "name": node.get("name"), "attributes": node.get("attributes") or {}}
        if label:
            meta["label"] = label
        self._add_item(state, "directive", "".join(node_text_list(node)), _line(node), meta=meta)

    def _container_directive(self, node: Node, state: TraversalState) -> None:
        meta = {"kind": "container", "name": node.get("name"), "attributes": node.get("attributes") or {}}
        self._add_item(state, "directive", str(node.get("name") or ""), _line(node), meta=meta)
        for child in node.get("children", []) or []:
            self._visit(child, state)

    # Assets -----------------------------------------------------------

    def _image_asset(self, url: str, slug: str, node: Node, state: TraversalState) -> ImageAsset | None:
        if not url or is_external_url(url):
            return None
        path = self.resolver.resolve_path(state.entry, url)
        if not self.resolver.exists(path):
            state.log.warning("Image '%s' in %s does not exist", path, state.entry.path)
            RECORDS_DROPPED.labels(reason="missing_file").inc()
            return None
        asset = ImageAsset(
            uid=f"{state.entry.uid}#{slug}",
            parent_doc_uid=state.entry.uid,
            doc_sid=state.entry.sid,
            path=path,
            url=url,
            title=node.get("title"),
            alt=node.get("alt"),
        )
        self.resolver.resolve(asset)
        self._probe(asset)
        return asset

    def _gallery(self, code_asset: CodeAsset, state: TraversalState) -> list[GalleryImageAsset]:
        assets: list[GalleryImageAsset] = []
        for path in self._gallery_paths(code_asset.text, state):
            if not self.resolver.exists(path):
                state.log.warning("Gallery image '%s' in %s does not exist", path, state.entry.path)
                RECORDS_DROPPED.labels(reason="missing_file").inc()
                continue
            stem = posixpath.splitext(posixpath.basename(path))[0]
            slug = state.claim_asset_slug(slugify(stem) or "image")
            asset = GalleryImageAsset(
                uid=f"{state.entry.uid}#{slug}",
                parent_doc_uid=state.entry.uid,
                doc_sid=state.entry.sid,
                path=path,
                url=path,
                gallery_uid=code_asset.uid,
            )
            self.resolver.resolve(asset)
            self._probe(asset)
            assets.append(asset)
        return assets

    def _gallery_paths(self, body: str, state: TraversalState) -> list[str]:
        try:
            definition = yaml.safe_load(body)
        except yaml.YAMLError as exc:
            state.log.warning("Malformed gallery in %s ignored: %s", state.entry.path, exc)
            return []
        if isinstance(definition, list):
            return [self.resolver.resolve_path(state.entry, str(value)) for value in definition if value]
        if isinstance(definition, dict) and definition.get("dir"):
            directory = self.resolver.resolve_path(state.entry, str(definition["dir"]))
            return [path for path in self.resolver.list_dir(directory) if file_ext(path) in IMAGE_EXTENSIONS]
        if definition is not None:
            state.log.warning("Unsupported gallery definition in %s ignored", state.entry.path)
        return []

    def _probe(self, asset: ImageAsset) -> None:
        if not asset.exists or not asset.abs_path:
            return
        path = self.resolver.absolute(asset.path or "")
        probe = probe_image(path)
        if probe is not None:
            asset.width, asset.height, asset.orientation = probe.width, probe.height, probe.orientation
        asset.text_list = extract_embedded_text(path)

    # Links ------------------------------------------------------------

    def _linkable_path(self, node: Node, entry: DocumentEntry) -> str | None:
        """Content path of a link to an allowed local file, else None."""
        url = (node.get("url") or "").strip()
        if not url or is_external_url(url) or url.startswith("#"):
            return None
        if file_ext(url) not in self.link_extensions:
            return None
        path = self.resolver.resolve_path(entry, url)
        return path if self.resolver.exists(path) else None

    def _document_target(self, node: Node, entry: DocumentEntry) -> str | None:
        url = (node.get("url") or "").strip()
        if not url or is_external_url(url) or file_ext(url) != "md":
            return None
        return self.resolver.resolve_path(entry, url).lstrip("/")


def _line(node: Node | None) -> int | None:
    if not node:
        return None
    return ((node.get("position") or {}).get("start") or {}).get("line")


def _run_text(nodes: Sequence[Node]) -> str:
    parts: list[str] = []
    for node in nodes:
        if node.get("type") == "link":
            text = "".join(node_text_list(node))
            parts.append(text if text.strip() else (node.get("title") or node.get("url") or ""))
        elif node.get("type") == "break":
            parts.append("\n")
        else:
            parts.append("".join(node_text_list(node)))
    return normalize("".join(parts))


def _is_complex(nodes: Iterable[Node]) -> bool:
    for node in nodes:
        if node.get("type") in COMPLEX_INLINE_TYPES:
            return True
        if _is_complex(node.get("children", []) or []):
            return True
    return False


def _snapshot(parent: Node, nodes: Sequence[Node]) -> dict[str, Any] | None:
    if not _is_complex(nodes):
        return None
    snapshot = {key: value for key, value in parent.items() if key not in ("position", "children")}
    snapshot["children"] = [strip_positions(node) for node in nodes]
    return snapshot


def _iter_links(nodes: Iterable[Node]) -> Iterable[Node]:
    for node in nodes:
        if node.get("type") == "link":
            yield node
        yield from _iter_links(node.get("children", []) or [])


def table_to_records(node: Node) -> tuple[list[str], list[dict[str, str]]]:
    """Header cells and row-major records keyed by header."""
    rows: list[list[str]] = []
    for row in node.get("children", []) or []:
        if row.get("type") != "tableRow":
            continue
        cells = [
            "".join(node_text_list(cell)).strip()
            for cell in row.get("children", []) or []
            if cell.get("type") == "tableCell"
        ]
        rows.append(cells)
    if not rows:
        return [], []
    headers, body = rows[0], rows[1:]
    return headers, [dict(zip(headers, values)) for values in body]


def code_slug(language: str, meta: str | None) -> str:
    raw = language if not meta else f"{language}-{'-'.join(meta.split())}"
    return slugify(raw) or "code"


def image_slug(node: Node) -> str:
    for candidate in (node.get("title"), node.get("alt")):
        if candidate:
            slug = slugify(candidate)
            if slug:
                return slug
    url = (node.get("url") or "").split("#", 1)[0].split("?", 1)[0]
    return slugify(posixpath.splitext(posixpath.basename(url))[0]) or "image"


__all__ = ["ContentWalker", "TraversalState", "table_to_records", "code_slug", "image_slug"]
