"""Data model for the coordinate-addressed syntax tree."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Union

Segment = Union[int, str]
Coordinate = tuple  # tuple[Segment, ...]

DIGEST_PREFIX = "#"
DIGEST_LENGTH = 12


class NodeKind(str, Enum):
    """Closed set of node shapes. Operators dispatch on these, never on classes."""

    TOKEN = "token"  # leaf
    SEQUENCE = "sequence"  # ordered children, addressed by ordinal
    MAPPING = "mapping"  # unordered children, addressed by content digest
    QUOTED = "quoted"  # literal or type-level subtree, never scanned


@dataclass(frozen=True)
class Node:
    """An immutable syntax-tree node.

    `parts` interleaves raw source text with child nodes, so concatenating
    the rendered parts reproduces the original bytes exactly. Replacing a
    child builds a new spine and shares every untouched subtree.
    """

    kind: NodeKind
    label: str
    parts: tuple = ()
    role: str = ""
    payload: Any = None

    @cached_property
    def text(self) -> str:
        return "".join(p if isinstance(p, str) else p.text for p in self.parts)

    @cached_property
    def children(self) -> tuple[Node, ...]:
        return tuple(p for p in self.parts if isinstance(p, Node))

    def child_with_role(self, role: str) -> Node | None:
        for child in self.children:
            if child.role == role:
                return child
        return None

    def operands(self) -> list[Node]:
        """Children that are not operator tokens."""
        return [c for c in self.children if c.role != "op"]

    def with_child(self, index: int, new: Node) -> Node:
        """Return a copy with the `index`-th child swapped for `new`."""
        parts = list(self.parts)
        seen = -1
        for i, part in enumerate(parts):
            if isinstance(part, Node):
                seen += 1
                if seen == index:
                    parts[i] = new
                    break
        else:
            raise IndexError(f"{self.label} has no child {index}")
        return Node(self.kind, self.label, tuple(parts), self.role, self.payload)


def leaf(text: str, label: str = "Raw", role: str = "", kind: NodeKind = NodeKind.TOKEN) -> Node:
    """Build a childless node holding `text` verbatim."""
    return Node(kind, label, (text,) if text else (), role, text)


def digest(text: str) -> str:
    """Content digest of a child, insensitive to whitespace layout."""
    canonical = " ".join(text.split())
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def child_segments(node: Node) -> list[Segment]:
    """Path segments addressing each child of `node`, in child order."""
    if node.kind is NodeKind.MAPPING:
        return [DIGEST_PREFIX + digest(c.text) for c in node.children]
    return list(range(len(node.children)))


def format_coordinate(coordinate: Coordinate) -> str:
    """Render a coordinate as `0/2/#3fa9...`; the root is the empty string."""
    return "/".join(str(s) for s in coordinate)


def parse_coordinate(text: str) -> Coordinate:
    """Inverse of `format_coordinate`."""
    if not text:
        return ()
    segments: list[Segment] = []
    for raw in text.split("/"):
        if raw.startswith(DIGEST_PREFIX):
            segments.append(raw)
        else:
            segments.append(int(raw))
    return tuple(segments)


@dataclass(frozen=True)
class Form:
    """A top-level, independently addressable source unit."""

    id: str
    name: str
    file: str
    start_line: int
    index: int  # position among the module root's children
    tree: Node

    @property
    def text(self) -> str:
        return self.tree.text

    @cached_property
    def digest(self) -> str:
        return hashlib.sha256(self.tree.text.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class ParsedModule:
    """One file's tree snapshot together with its forms."""

    file: str
    root: Node
    forms: tuple[Form, ...] = ()
    _by_id: dict = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        self._by_id.update({f.id: f for f in self.forms})

    def render(self) -> str:
        return self.root.text

    def form(self, form_id: str) -> Form:
        try:
            return self._by_id[form_id]
        except KeyError:
            raise KeyError(f"No form '{form_id}' in {self.file}") from None
