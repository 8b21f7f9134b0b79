"""Coordinate-addressed syntax tree: formatting-preserving parse, encode/decode, replace."""

from mutagraph.cast.address import (
    Cursor,
    cursor_at,
    decode,
    encode,
    replace,
    replace_at,
    resolve,
    walk,
)
from mutagraph.cast.builder import parse, parse_module
from mutagraph.cast.models import (
    Coordinate,
    Form,
    Node,
    NodeKind,
    ParsedModule,
    format_coordinate,
    leaf,
    parse_coordinate,
)


def render(tree: Node) -> str:
    """Source text of a tree."""
    return tree.text


__all__ = [
    "Coordinate",
    "Cursor",
    "Form",
    "Node",
    "NodeKind",
    "ParsedModule",
    "cursor_at",
    "decode",
    "encode",
    "format_coordinate",
    "leaf",
    "parse",
    "parse_coordinate",
    "parse_module",
    "render",
    "replace",
    "replace_at",
    "resolve",
    "walk",
]
