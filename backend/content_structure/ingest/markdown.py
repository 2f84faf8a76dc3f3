"""Markdown parsing into a generic node tree, plus front matter helpers.

The tree uses plain dicts: ``{"type", "children"?, "position": {"start":
{"line"}}, ...}`` with type-specific fields (``depth``, ``url``, ``lang``...).
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import yaml
from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdit_py_plugins.container import container_plugin

from content_structure.core.logging import get_logger

logger = get_logger(__name__)

Node = dict[str, Any]

_DIRECTIVE_CONTAINER = "directive"
_TEXT_DIRECTIVE_RE = re.compile(r"(?<![\w:]):([A-Za-z][\w-]*)\[([^\]\n]*)\](?:\{([^}\n]*)\})?")
_ATTR_RE = re.compile(r"""([#.])([\w-]+)|([\w-]+)=(?:"([^"]*)"|'([^']*)'|([^\s"']+))|([\w-]+)""")

_OPEN_TYPES = {
    "paragraph_open": "paragraph",
    "blockquote_open": "blockquote",
    "bullet_list_open": "list",
    "ordered_list_open": "list",
    "list_item_open": "listItem",
    "table_open": "table",
    "tr_open": "tableRow",
    "th_open": "tableCell",
    "td_open": "tableCell",
    "em_open": "emphasis",
    "strong_open": "strong",
    "s_open": "delete",
}
_TRANSPARENT_OPEN = {"thead_open", "tbody_open"}


def _accept_any_directive(params: str, *args: Any) -> bool:
    return bool(params.strip())


def _build_parser() -> MarkdownIt:
    md = MarkdownIt("commonmark").enable(["table", "strikethrough"])
    md.use(container_plugin, name=_DIRECTIVE_CONTAINER, validate=_accept_any_directive)
    return md


_MD = _build_parser()


def parse_markdown(text: str) -> Node:
    """Parse markdown ``text`` into a root node."""
    tokens = _MD.parse(text or "")
    root: Node = {"type": "root", "children": [], "position": {"start": {"line": 1}}}
    _append_tokens(root, tokens, line=1)
    _normalize_children(root)
    return root


def _position(line: int | None) -> dict[str, Any]:
    return {"start": {"line": line}}


def _token_line(token: Token, fallback: int | None) -> int | None:
    if token.map:
        return token.map[0] + 1
    return fallback


def _append_tokens(parent: Node, tokens: Sequence[Token], line: int | None) -> None:
    stack: list[Node] = [parent]
    for token in tokens:
        current = stack[-1]
        token_line = _token_line(token, line)
        if token.nesting == 1:
            if token.type in _TRANSPARENT_OPEN:
                stack.append(current)
                continue
            node = _open_node(token, token_line)
            current.setdefault("children", []).append(node)
            stack.append(node)
        elif token.nesting == -1:
            if len(stack) > 1:
                stack.pop()
        elif token.type == "inline":
            _append_tokens(current, token.children or [], token_line)
        else:
            node = _leaf_node(token, token_line)
            if node is not None:
                current.setdefault("children", []).append(node)


def _open_node(token: Token, line: int | None) -> Node:
    if token.type == "heading_open":
        node: Node = {"type": "heading", "depth": int(token.tag[1:])}
    elif token.type == "link_open":
        node = {"type": "link", "url": token.attrGet("href") or "", "title": token.attrGet("title")}
    elif token.type == f"container_{_DIRECTIVE_CONTAINER}_open":
        name, attributes = parse_directive_info(token.info)
        node = {"type": "containerDirective", "name": name, "attributes": attributes}
    elif token.type in _OPEN_TYPES:
        node = {"type": _OPEN_TYPES[token.type]}
        if token.type == "ordered_list_open":
            node["ordered"] = True
        elif token.type == "bullet_list_open":
            node["ordered"] = False
    else:
        node = {"type": token.type.removesuffix("_open")}
    node["children"] = []
    node["position"] = _position(line)
    return node


def _leaf_node(token: Token, line: int | None) -> Node | None:
    position = _position(line)
    if token.type in ("text", "text_special"):
        return {"type": "text", "value": token.content, "position": position}
    if token.type == "softbreak":
        return {"type": "text", "value": "\n", "position": position}
    if token.type == "hardbreak":
        return {"type": "break", "position": position}
    if token.type == "code_inline":
        return {"type": "inlineCode", "value": token.content, "position": position}
    if token.type == "image":
        return {
            "type": "image",
            "url": token.attrGet("src") or "",
            "title": token.attrGet("title"),
            "alt": token.content or None,
            "position": position,
        }
    if token.type in ("fence", "code_block"):
        info = (token.info or "").strip()
        lang, _, meta = info.partition(" ")
        return {
            "type": "code",
            "lang": lang or None,
            "meta": meta.strip() or None,
            "value": token.content.removesuffix("\n"),
            "position": position,
        }
    if token.type in ("html_block", "html_inline"):
        return {"type": "html", "value": token.content, "position": position}
    if token.type == "hr":
        return {"type": "thematicBreak", "position": position}
    return None


def _normalize_children(node: Node) -> None:
    children = node.get("children")
    if not children:
        return
    merged: list[Node] = []
    for child in children:
        if child["type"] == "text" and merged and merged[-1]["type"] == "text":
            merged[-1] = {**merged[-1], "value": merged[-1]["value"] + child["value"]}
        else:
            merged.append(child)
    expanded: list[Node] = []
    for child in merged:
        if child["type"] == "text":
            expanded.extend(_split_text_directives(child))
        else:
            _normalize_children(child)
            expanded.append(child)
    node["children"] = expanded


def _split_text_directives(node: Node) -> list[Node]:
    value = node["value"]
    position = node.get("position")
    pieces: list[Node] = []
    cursor = 0
    for match in _TEXT_DIRECTIVE_RE.finditer(value):
        if match.start() > cursor:
            pieces.append({"type": "text", "value": value[cursor : match.start()], "position": position})
        name, label, raw_attrs = match.group(1), match.group(2), match.group(3)
        _, attributes = parse_directive_info(f"{name} {{{raw_attrs}}}" if raw_attrs else name)
        directive: Node = {"type": "textDirective", "name": name, "attributes": attributes, "position": position}
        directive["children"] = [{"type": "text", "value": label, "position": position}] if label else []
        pieces.append(directive)
        cursor = match.end()
    if not pieces:
        return [node]
    if cursor < len(value):
        pieces.append({"type": "text", "value": value[cursor:], "position": position})
    return pieces


def parse_directive_info(info: str) -> tuple[str, dict[str, str]]:
    """Split ``name [label] {#id .class key=value}`` into name and attributes."""
    info = (info or "").strip()
    name, _, rest = info.partition(" ")
    if "{" in name:
        name, brace, tail = name.partition("{")
        rest = brace + tail + (" " + rest if rest else "")
    name = name.split("[", 1)[0]
    attributes: dict[str, str] = {}
    start, end = rest.find("{"), rest.rfind("}")
    if start != -1 and end > start:
        for match in _ATTR_RE.finditer(rest[start + 1 : end]):
            marker, marker_value, key, dq, sq, bare, flag = match.groups()
            if marker == "#":
                attributes["id"] = marker_value
            elif marker == ".":
                attributes["class"] = f"{attributes['class']} {marker_value}" if "class" in attributes else marker_value
            elif key:
                attributes[key] = next(value for value in (dq, sq, bare) if value is not None)
            elif flag:
                attributes[flag] = ""
    return name.strip(), attributes


def node_text_list(node: Node) -> list[str]:
    """Collect text, inline code and directive labels depth first."""
    texts: list[str] = []

    def traverse(current: Node) -> None:
        node_type = current.get("type")
        if node_type in ("text", "inlineCode"):
            texts.append(current.get("value", ""))
        elif node_type == "textDirective":
            values = ",".join(str(value) for value in current.get("attributes", {}).values())
            texts.append(f"{current.get('name')}({values})")
            return
        for child in current.get("children", []) or []:
            traverse(child)

    traverse(node)
    return texts


def node_text(node: Node) -> str:
    return " ".join(text.strip() for text in node_text_list(node) if text.strip())


def strip_positions(node: Node) -> Node:
    """Deep copy of ``node`` without position metadata."""
    cleaned: Node = {key: value for key, value in node.items() if key not in ("position", "children")}
    if "children" in node:
        cleaned["children"] = [strip_positions(child) for child in node["children"]]
    return cleaned


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Return ``(front_matter, body)``; malformed YAML yields an empty mapping."""
    if not text.startswith("---"):
        return {}, text
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return {}, text
    for index in range(1, len(lines)):
        if lines[index].strip() in ("---", "..."):
            raw = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            try:
                front_matter = yaml.safe_load(raw) or {}
            except yaml.YAMLError as exc:
                logger.warning("Malformed front matter ignored: %s", exc)
                return {}, body
            if not isinstance(front_matter, dict):
                logger.warning("Front matter is not a mapping; ignored")
                return {}, body
            return front_matter, body
    return {}, text


__all__ = [
    "Node",
    "parse_markdown",
    "parse_directive_info",
    "node_text",
    "node_text_list",
    "strip_positions",
    "split_front_matter",
]
