"""Editor document model: a tree of blocks whose leaves are text nodes."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

_HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.*)$", re.DOTALL)
_BULLET_PATTERN = re.compile(r"^[-*+]\s+(.*)$")
_ORDERED_PATTERN = re.compile(r"^\d+[.)]\s+(.*)$")
_FENCE = "```"


@dataclass
class DocNode:
    """Block or text node; only `text` nodes carry characters.

    `source_offset` is where a text node's characters start in the content
    the tree was parsed from.
    """

    type: str
    text: str | None = None
    children: list["DocNode"] = field(default_factory=list)
    attrs: dict[str, Any] = field(default_factory=dict)
    source_offset: int | None = field(default=None, compare=False)

    @property
    def is_text(self) -> bool:
        return self.type == "text"


@dataclass
class _Line:
    text: str
    offset: int


def _text_block(node_type: str, text: str, offset: int, **attrs: Any) -> DocNode:
    children = [DocNode(type="text", text=text, source_offset=offset)] if text else []
    return DocNode(type=node_type, children=children, attrs=dict(attrs))


def _split_blocks(content: str) -> list[list[_Line]]:
    blocks: list[list[_Line]] = []
    current: list[_Line] = []
    in_fence = False
    offset = 0
    for raw in content.split("\n"):
        line = _Line(raw, offset)
        offset += len(raw) + 1
        if raw.strip().startswith(_FENCE):
            if not in_fence and current:
                blocks.append(current)
                current = []
            current.append(line)
            in_fence = not in_fence
            if not in_fence:
                blocks.append(current)
                current = []
            continue
        if in_fence:
            current.append(line)
            continue
        if not raw.strip():
            if current:
                blocks.append(current)
                current = []
            continue
        current.append(line)
    if current:
        blocks.append(current)
    return blocks


def _parse_block(lines: list[_Line]) -> DocNode:
    first = lines[0]
    if first.text.strip().startswith(_FENCE):
        language = first.text.strip()[len(_FENCE) :].strip()
        body = lines[1:]
        if body and body[-1].text.strip().startswith(_FENCE):
            body = body[:-1]
        offset = body[0].offset if body else first.offset
        return _text_block("code_block", "\n".join(line.text for line in body), offset, language=language)

    joined = "\n".join(line.text for line in lines)
    heading = _HEADING_PATTERN.match(joined)
    if heading:
        return _text_block(
            "heading",
            heading.group(2),
            first.offset + heading.start(2),
            level=len(heading.group(1)),
        )

    for pattern, list_type in ((_BULLET_PATTERN, "bullet_list"), (_ORDERED_PATTERN, "ordered_list")):
        matches = [pattern.match(line.text) for line in lines]
        if all(matches):
            items = [
                DocNode(
                    type="list_item",
                    children=[_text_block("paragraph", match.group(1), line.offset + match.start(1))],
                )
                for line, match in zip(lines, matches)
                if match is not None
            ]
            return DocNode(type=list_type, children=items)

    return _text_block("paragraph", joined, first.offset)


class RichDocument:
    """Immutable snapshot of the editor tree.

    Positions are offsets into the depth-first concatenation of text nodes;
    block boundaries add no characters. Every edit returns a new snapshot
    with `revision + 1`. The content the tree was parsed from is kept as-is,
    so edits splice it and never re-render markup.
    """

    def __init__(self, root: DocNode, *, source: str, revision: int = 0) -> None:
        self._root = root
        self._source = source
        self.revision = revision

    @classmethod
    def from_content(cls, content: str, *, revision: int = 0) -> "RichDocument":
        root = DocNode(type="doc", children=[_parse_block(lines) for lines in _split_blocks(content)])
        return cls(root, source=content, revision=revision)

    def to_content(self) -> str:
        return self._source

    @property
    def size(self) -> int:
        return sum(len(node.text or "") for node, _ in self.iter_text_nodes())

    def iter_text_nodes(self) -> Iterator[tuple[DocNode, int]]:
        """Yield `(text_node, start_offset)` in depth-first order."""
        offset = 0
        stack = [self._root]
        while stack:
            node = stack.pop()
            if node.is_text:
                yield node, offset
                offset += len(node.text or "")
                continue
            stack.extend(reversed(node.children))

    def text_between(self, start: int, end: int) -> str:
        return self.plain_text()[start:end]

    def plain_text(self) -> str:
        return "".join(node.text or "" for node, _ in self.iter_text_nodes())

    def replace(self, start: int, end: int, text: str) -> "RichDocument":
        """Return a new snapshot with `[start, end)` replaced inside one text node.

        Only the replaced characters of the content change; everything around
        them is kept byte for byte.
        """
        if start < 0 or end < start or end > self.size:
            raise ValueError(f"range_out_of_bounds:{start}:{end}")
        for node, node_start in self.iter_text_nodes():
            node_end = node_start + len(node.text or "")
            if node_start <= start and end <= node_end and node.source_offset is not None:
                splice_start = node.source_offset + (start - node_start)
                splice_end = node.source_offset + (end - node_start)
                break
        else:
            raise ValueError(f"range_spans_nodes:{start}:{end}")
        source = self._source[:splice_start] + text + self._source[splice_end:]
        return RichDocument.from_content(source, revision=self.revision + 1)

    def to_tree(self) -> dict[str, Any]:
        def dump(node: DocNode) -> dict[str, Any]:
            payload: dict[str, Any] = {"type": node.type}
            if node.is_text:
                payload["text"] = node.text
            if node.attrs:
                payload["attrs"] = dict(node.attrs)
            if node.children:
                payload["children"] = [dump(child) for child in node.children]
            return payload

        return dump(self._root)
