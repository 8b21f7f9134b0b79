"""Build a formatting-preserving tree from Python source.

Uses the stdlib ast module for structure and the tokenize module for the
exact position of operator tokens. Every byte of the input ends up either in
a leaf or in the gap text between siblings, so rendering is byte-exact.
"""

from __future__ import annotations

import ast
import bisect
import io
import logging
import re
import tokenize
from collections import Counter

from mutagraph.cast.models import Form, Node, NodeKind, ParsedModule
from mutagraph.exceptions import ParserError

logger = logging.getLogger("mutagraph.cast")

# Roles whose subtrees are type-level or pattern syntax rather than runtime values
QUOTED_ROLES = frozenset({"annotation", "returns", "pattern", "type_params"})

OPERATOR_NODES = (ast.BinOp, ast.BoolOp, ast.Compare, ast.UnaryOp, ast.AugAssign)
MAPPING_NODES = (ast.Dict, ast.Set)
DEFINITION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)

_NEWLINE = re.compile(r"\r\n|\r|\n")
_PARENS = frozenset({"(", ")"})

_Built = tuple  # (Node, start offset, end offset)


class _Source:
    """Source text with line and token offset tables."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.line_starts = [0] + [m.end() for m in _NEWLINE.finditer(text)]
        self.tokens = self._tokenize()
        self._token_starts = [t[0] for t in self.tokens]

    def _tokenize(self) -> list[tuple[int, int, str]]:
        tokens = []
        readline = io.StringIO(self.text, newline="").readline
        try:
            for tok in tokenize.generate_tokens(readline):
                if tok.type in (tokenize.OP, tokenize.NAME):
                    (srow, scol), (erow, ecol) = tok.start, tok.end
                    tokens.append(
                        (self.line_starts[srow - 1] + scol, self.line_starts[erow - 1] + ecol, tok.string)
                    )
        except (tokenize.TokenError, SyntaxError) as e:
            raise ParserError(f"Tokenizer failed: {e}") from e
        return tokens

    def offset(self, lineno: int, col: int) -> int:
        """Convert an ast (line, utf-8 byte column) pair to a character offset."""
        start = self.line_starts[lineno - 1]
        end = self.line_starts[lineno] if lineno < len(self.line_starts) else len(self.text)
        line = self.text[start:end]
        if line.isascii():
            return start + col
        return start + len(line.encode("utf-8")[:col].decode("utf-8", errors="ignore"))

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self.line_starts, offset)

    def tokens_between(self, lo: int, hi: int) -> list[tuple[int, int, str]]:
        """Non-parenthesis OP/NAME tokens lying entirely within [lo, hi)."""
        i = bisect.bisect_left(self._token_starts, lo)
        found = []
        while i < len(self.tokens) and self.tokens[i][0] < hi:
            tok = self.tokens[i]
            if tok[1] <= hi and tok[2] not in _PARENS:
                found.append(tok)
            i += 1
        return found

    def last_token_before(self, offset: int, string: str) -> int | None:
        i = bisect.bisect_left(self._token_starts, offset) - 1
        while i >= 0:
            if self.tokens[i][2] == string:
                return self.tokens[i][0]
            i -= 1
        return None


class _Builder:
    def __init__(self, source: _Source) -> None:
        self.src = source

    def build(self, node: ast.AST, role: str) -> _Built:
        src = self.src
        start = src.offset(node.lineno, node.col_offset)
        end = src.offset(node.end_lineno, node.end_col_offset)
        label = type(node).__name__

        if _is_literal_text(node):
            text = src.text[start:end]
            return Node(NodeKind.QUOTED, label, (text,), role, None), start, end

        if isinstance(node, ast.Dict):
            children = self._dict_entries(node)
        else:
            children = self._children(node)
        if isinstance(node, OPERATOR_NODES):
            children = children + self._operator_tokens(node, children, start)
        if isinstance(node, DEFINITION_NODES) and node.decorator_list:
            at = src.last_token_before(min(c[1] for c in children), "@")
            if at is not None:
                start = min(start, at)

        if children:
            start = min(start, min(c[1] for c in children))
            end = max(end, max(c[2] for c in children))
            children.sort(key=lambda c: c[1])
            if _overlaps(children):
                logger.debug(f"Overlapping children in {label} at offset {start}, kept opaque")
                return Node(NodeKind.TOKEN, "Opaque", (src.text[start:end],), role, None), start, end

        if role in QUOTED_ROLES:
            kind = NodeKind.QUOTED
        elif isinstance(node, MAPPING_NODES):
            kind = NodeKind.MAPPING
        elif children:
            kind = NodeKind.SEQUENCE
        else:
            kind = NodeKind.TOKEN

        nodes = [c[0] for c in children]
        parts = self.interleave(children, start, end)
        return Node(kind, label, parts, role, _payload(node, nodes)), start, end

    def interleave(self, children: list[_Built], start: int, end: int) -> tuple:
        parts: list = []
        pos = start
        for child, cstart, cend in children:
            if cstart > pos:
                parts.append(self.src.text[pos:cstart])
            parts.append(child)
            pos = cend
        if end > pos:
            parts.append(self.src.text[pos:end])
        return tuple(parts)

    def _children(self, node: ast.AST) -> list[_Built]:
        found: list[_Built] = []
        for fname, value in ast.iter_fields(node):
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, ast.AST):
                    self._collect(item, fname, found)
        return found

    def _collect(self, item: ast.AST, role: str, found: list[_Built]) -> None:
        if getattr(item, "lineno", None) is not None and getattr(item, "end_lineno", None) is not None:
            found.append(self.build(item, role))
            return
        # Positionless wrappers (arguments, comprehension, withitem, match_case)
        # contribute their positioned descendants directly.
        for fname, value in ast.iter_fields(item):
            for sub in value if isinstance(value, list) else [value]:
                if isinstance(sub, ast.AST):
                    self._collect(sub, fname, found)

    def _dict_entries(self, node: ast.Dict) -> list[_Built]:
        entries = []
        for key, value in zip(node.keys, node.values):
            built_value = self.build(value, "value")
            if key is None:
                star = self.src.last_token_before(built_value[1], "**")
                members = [built_value]
                start = star if star is not None else built_value[1]
            else:
                built_key = self.build(key, "key")
                members = [built_key, built_value]
                start = built_key[1]
            end = built_value[2]
            entry = Node(NodeKind.SEQUENCE, "Entry", self.interleave(members, start, end), "entry", None)
            entries.append((entry, start, end))
        return entries

    def _operator_tokens(self, node: ast.AST, operands: list[_Built], start: int) -> list[_Built]:
        ordered = sorted(operands, key=lambda c: c[1])
        if isinstance(node, ast.UnaryOp):
            gaps = [(start, ordered[0][1])] if ordered else []
        else:
            gaps = [(a[2], b[1]) for a, b in zip(ordered, ordered[1:])]
        ops = []
        for lo, hi in gaps:
            toks = self.src.tokens_between(lo, hi)
            if not toks:
                continue
            tstart, tend = toks[0][0], toks[-1][1]
            symbol = " ".join(t[2] for t in toks)
            op = Node(NodeKind.TOKEN, "Op", (self.src.text[tstart:tend],), "op", symbol)
            ops.append((op, tstart, tend))
        return ops


def _is_literal_text(node: ast.AST) -> bool:
    if isinstance(node, ast.Constant) and isinstance(node.value, (str, bytes)):
        return True
    return type(node).__name__ in ("JoinedStr", "TemplateStr")


def _overlaps(children: list[_Built]) -> bool:
    return any(cur[1] < prev[2] for prev, cur in zip(children, children[1:]))


def _dotted(node: ast.AST) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        parent = _dotted(node.value)
        return f"{parent}.{node.attr}" if parent else node.attr
    return ""


def _payload(node: ast.AST, children: list[Node]):
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Call):
        return _dotted(node.func)
    if isinstance(node, OPERATOR_NODES):
        ops = tuple(c.payload for c in children if c.role == "op")
        if isinstance(node, ast.Compare):
            return ops
        return ops[0] if ops else None
    if isinstance(node, DEFINITION_NODES):
        return node.name
    return None


def _form_name(stmt: ast.stmt) -> str:
    if isinstance(stmt, DEFINITION_NODES):
        return stmt.name
    if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
        return stmt.targets[0].id
    if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
        return stmt.target.id
    return f"<{type(stmt).__name__}>"


def parse_module(text: str, file: str = "<string>") -> ParsedModule:
    """Parse a whole file into a module root whose children are its forms."""
    try:
        tree = ast.parse(text, filename=file)
    except (SyntaxError, ValueError) as e:
        raise ParserError(f"{file}: {e}") from e

    src = _Source(text)
    builder = _Builder(src)
    statements = [builder.build(stmt, "body") for stmt in tree.body]
    root = Node(NodeKind.SEQUENCE, "Module", builder.interleave(statements, 0, len(text)), "", None)

    seen: Counter[str] = Counter()
    forms = []
    for index, (stmt, (node, start, _end)) in enumerate(zip(tree.body, statements)):
        name = _form_name(stmt)
        if seen[name]:
            unique = f"{name}#{seen[name]}"
        else:
            unique = name
        seen[name] += 1
        forms.append(
            Form(
                id=f"{file}::{unique}",
                name=unique,
                file=file,
                start_line=src.line_of(start),
                index=index,
                tree=node,
            )
        )
    return ParsedModule(file=file, root=root, forms=tuple(forms))


def parse(text: str) -> Node:
    """Parse source text into a tree; `parse(text).text == text`."""
    return parse_module(text).root
