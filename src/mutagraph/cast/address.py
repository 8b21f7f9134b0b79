"""Bidirectional node <-> coordinate mapping over a fixed tree snapshot."""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from mutagraph.cast.models import Coordinate, Node, NodeKind, child_segments, format_coordinate
from mutagraph.exceptions import LocationAmbiguous, LocationNotFound

logger = logging.getLogger("mutagraph.cast")


@dataclass(frozen=True)
class Cursor:
    """A node seen in context: where it is, who its parent is, whether it is quoted."""

    node: Node
    coordinate: Coordinate
    parent: Node | None
    line: int
    quote_depth: int = 0

    @property
    def quoted(self) -> bool:
        return self.quote_depth > 0

    @property
    def label(self) -> str:
        return self.node.label

    @property
    def payload(self) -> Any:
        return self.node.payload

    @property
    def parent_label(self) -> str:
        return self.parent.label if self.parent is not None else ""


def walk(tree: Node, start_line: int = 1) -> Iterator[Cursor]:
    """Depth-first, pre-order, left-to-right traversal yielding a Cursor per node.

    Quote depth increases on entering a QUOTED node and is inherited by its
    descendants; scanners skip every cursor whose depth is non-zero.
    """
    text = tree.text
    newlines = [i for i, ch in enumerate(text) if ch == "\n"]
    stack: list[tuple[Node, Coordinate, Node | None, int, int]] = [(tree, (), None, 0, 0)]
    while stack:
        node, coordinate, parent, offset, depth = stack.pop()
        if node.kind is NodeKind.QUOTED:
            depth += 1
        line = start_line + bisect.bisect_left(newlines, offset)
        yield Cursor(node, coordinate, parent, line, depth)

        pending = []
        pos = offset
        segments = iter(child_segments(node))
        for part in node.parts:
            if isinstance(part, str):
                pos += len(part)
                continue
            pending.append((part, coordinate + (next(segments),), node, pos, depth))
            pos += len(part.text)
        stack.extend(reversed(pending))


def resolve(tree: Node, coordinate: Coordinate, strict: bool = False) -> tuple[int, ...]:
    """Translate a coordinate into child ordinals.

    Raises LocationNotFound when a segment no longer resolves. A digest
    segment matching several siblings raises LocationAmbiguous when `strict`,
    otherwise the first match wins and the collision is logged.
    """
    path: list[int] = []
    node = tree
    for segment in coordinate:
        children = node.children
        if isinstance(segment, int):
            if node.kind is NodeKind.MAPPING or not 0 <= segment < len(children):
                raise LocationNotFound(
                    f"No child {segment} under {node.label} at {format_coordinate(coordinate)}",
                    coordinate,
                )
            index = segment
        else:
            if node.kind is not NodeKind.MAPPING:
                raise LocationNotFound(
                    f"Digest segment {segment} under ordered {node.label}", coordinate
                )
            matches = [i for i, s in enumerate(child_segments(node)) if s == segment]
            if not matches:
                raise LocationNotFound(
                    f"No child with digest {segment} at {format_coordinate(coordinate)}",
                    coordinate,
                )
            if len(matches) > 1:
                if strict:
                    raise LocationAmbiguous(
                        f"Digest {segment} matches {len(matches)} children", coordinate
                    )
                logger.warning(
                    f"Ambiguous coordinate {format_coordinate(coordinate)}: "
                    f"{len(matches)} children share digest {segment}, using the first"
                )
            index = matches[0]
        path.append(index)
        node = children[index]
    return tuple(path)


def node_at(tree: Node, path: tuple[int, ...]) -> Node:
    node = tree
    for index in path:
        node = node.children[index]
    return node


def decode(tree: Node, coordinate: Coordinate, strict: bool = False) -> Node:
    """Return the node a coordinate addresses."""
    return node_at(tree, resolve(tree, coordinate, strict))


def find_path(tree: Node, target: Node) -> tuple[int, ...]:
    """Child ordinals leading to `target` (by identity)."""
    stack: list[tuple[Node, tuple[int, ...]]] = [(tree, ())]
    while stack:
        node, path = stack.pop()
        if node is target:
            return path
        for i, child in enumerate(node.children):
            stack.append((child, path + (i,)))
    raise LocationNotFound("Node is not part of this tree")


def encode(tree: Node, target: Node) -> Coordinate:
    """Coordinate of `target` in `tree`; the inverse of `decode` on the same snapshot."""
    coordinate: list = []
    node = tree
    for index in find_path(tree, target):
        coordinate.append(child_segments(node)[index])
        node = node.children[index]
    return tuple(coordinate)


def replace_at(tree: Node, path: tuple[int, ...], new: Node) -> Node:
    """Swap the node at `path` for `new`, rebuilding only the spine above it."""
    if not path:
        return new
    head, rest = path[0], path[1:]
    return tree.with_child(head, replace_at(tree.children[head], rest, new))


def replace(tree: Node, coordinate: Coordinate, new: Node) -> Node:
    return replace_at(tree, resolve(tree, coordinate), new)


def cursor_at(tree: Node, coordinate: Coordinate, start_line: int = 1, strict: bool = False) -> Cursor:
    """Decode a coordinate and return the node together with its context."""
    path = resolve(tree, coordinate, strict)
    node, parent, offset = tree, None, 0
    depth = 1 if tree.kind is NodeKind.QUOTED else 0
    for index in path:
        seen = -1
        for part in node.parts:
            if isinstance(part, str):
                offset += len(part)
                continue
            seen += 1
            if seen == index:
                break
            offset += len(part.text)
        parent, node = node, node.children[index]
        if node.kind is NodeKind.QUOTED:
            depth += 1
    line = start_line + tree.text.count("\n", 0, offset)
    return Cursor(node, tuple(coordinate), parent, line, depth)
