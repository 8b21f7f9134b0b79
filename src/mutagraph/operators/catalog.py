"""Built-in mutation operators for Python source.

Relational and logical families carry subsumption edges derived from truth
regions: each mutant differs from the original on some region of the input
space (e.g. {lt, eq, gt} for a comparison). A mutant whose difference region
is a strict subset of another's dominates it, since any test reaching the
smaller region also tells the larger one apart.
"""

from __future__ import annotations

from mutagraph.cast.address import Cursor
from mutagraph.cast.models import Node, NodeKind
from mutagraph.operators.models import EquivalenceRule, Generator, Matcher, Operator

ARITHMETIC_NAMES = {"+": "add", "-": "sub", "*": "mul", "/": "div", "//": "floordiv", "%": "mod", "**": "pow"}
ARITHMETIC_SWAPS = {
    "+": ("-", "*"),
    "-": ("+",),
    "*": ("/", "+"),
    "/": ("*", "//"),
    "//": ("/", "*"),
    "%": ("/",),
    "**": ("*",),
}

# Binding strength of binary and boolean operators, loosest first
PRECEDENCE = {"or": 1, "and": 2, "+": 5, "-": 5, "*": 6, "/": 6, "//": 6, "%": 6, "**": 8}
LOOSE_BINDING = {"Lambda": 0, "IfExp": 0, "NamedExpr": 0, "Compare": 4}
ATOM_BINDING = 9

RELATIONAL_NAMES = {"<": "lt", "<=": "le", ">": "gt", ">=": "ge", "==": "eq", "!=": "ne"}
_ORDERINGS = frozenset({"lt", "eq", "gt"})
RELATIONAL_REGIONS = {
    "<": frozenset({"lt"}),
    "<=": frozenset({"lt", "eq"}),
    ">": frozenset({"gt"}),
    ">=": frozenset({"eq", "gt"}),
    "==": frozenset({"eq"}),
    "!=": frozenset({"lt", "gt"}),
    "True": _ORDERINGS,
    "False": frozenset(),
}

IDENTITY_SWAPS = {"is": "is not", "is not": "is", "in": "not in", "not in": "in"}
IDENTITY_NAMES = {"is": "is", "is not": "isnot", "in": "in", "not in": "notin"}

# Truthiness of (lhs, rhs): tt, tf, ft, ff
_COMBINATIONS = frozenset({"tt", "tf", "ft", "ff"})
LOGICAL_REGIONS = {
    "and": frozenset({"tt"}),
    "or": frozenset({"tt", "tf", "ft"}),
    "lhs": frozenset({"tt", "tf"}),
    "rhs": frozenset({"tt", "ft"}),
    "True": _COMBINATIONS,
    "False": frozenset(),
}

UNARY_NAMES = {"not": "not", "-": "neg", "~": "invert"}

AUGMENTED_NAMES = {"+=": "iadd", "-=": "isub", "*=": "imul", "/=": "idiv", "//=": "ifloordiv", "%=": "imod"}
AUGMENTED_SWAPS = {
    "+=": ("-=",),
    "-=": ("+=",),
    "*=": ("/=",),
    "/=": ("*=",),
    "//=": ("/=",),
    "%=": ("/=",),
}


# ----------------------------------------------------------------------
# Node helpers
# ----------------------------------------------------------------------


def swap_operator(node: Node, symbol: str) -> Node:
    """Copy of `node` with every operator token replaced by `symbol`."""
    swapped = node
    for i, child in enumerate(node.children):
        if child.role == "op":
            swapped = swapped.with_child(i, Node(NodeKind.TOKEN, "Op", (symbol,), "op", symbol))
    if swapped is node:
        raise ValueError(f"{node.label} has no operator token")
    return swapped


def _paren(text: str) -> str:
    return f"({text})"


def _binding(node: Node) -> int:
    if node.label in ("BinOp", "BoolOp"):
        return PRECEDENCE.get(node.payload, ATOM_BINDING)
    if node.label == "UnaryOp":
        return 3 if node.payload == "not" else 7
    return LOOSE_BINDING.get(node.label, ATOM_BINDING)


def protect_operands(node: Node, symbol: str) -> Node:
    """Parenthesize operands that would regroup once `symbol` joins them.

    Operands already wrapped in source parentheses are left alone.
    """
    strength = PRECEDENCE[symbol]
    parts = list(node.parts)
    slots = [i for i, p in enumerate(parts) if isinstance(p, Node) and p.role != "op"]
    # the operand on the associative side may bind as loosely as the operator
    tight = slots[-1] if symbol == "**" else slots[0]
    for i in slots:
        before = parts[i - 1] if i > 0 and isinstance(parts[i - 1], str) else ""
        after = parts[i + 1] if i + 1 < len(parts) and isinstance(parts[i + 1], str) else ""
        if before.rstrip().endswith("(") and after.lstrip().startswith(")"):
            continue
        child = parts[i]
        limit = strength if i == tight else strength + 1
        if _binding(child) < limit:
            parts[i] = Node(NodeKind.TOKEN, "Paren", (_paren(child.text),), child.role, child.payload)
    return Node(node.kind, node.label, tuple(parts), node.role, node.payload)


def _is_number(node: Node | None, value: int) -> bool:
    return (
        node is not None
        and node.label == "Constant"
        and type(node.payload) in (int, float)
        and node.payload == value
    )


def _is_len_call(node: Node | None) -> bool:
    return node is not None and node.label == "Call" and node.payload == "len"


def _right_operand(node: Node) -> Node | None:
    operands = node.operands()
    return operands[1] if len(operands) == 2 else None


# ----------------------------------------------------------------------
# Matchers and generators (factories avoid late binding in loops)
# ----------------------------------------------------------------------


def _label_payload(label: str, payload) -> Matcher:
    def match(cursor: Cursor) -> bool:
        return cursor.label == label and cursor.payload == payload

    return match


def _binary_logical(symbol: str) -> Matcher:
    def match(cursor: Cursor) -> bool:
        return (
            cursor.label == "BoolOp"
            and cursor.payload == symbol
            and len(cursor.node.operands()) == 2
        )

    return match


def _swap(symbol: str, wrap: bool = False) -> Generator:
    def generate(node: Node) -> str:
        swapped = swap_operator(node, symbol)
        if symbol in PRECEDENCE:
            swapped = protect_operands(swapped, symbol)
        return _paren(swapped.text) if wrap else swapped.text

    return generate


def _literal(text: str) -> Generator:
    def generate(node: Node) -> str:
        return text

    return generate


def _operand(index: int) -> Generator:
    def generate(node: Node) -> str:
        return _paren(node.operands()[index].text)

    return generate


# ----------------------------------------------------------------------
# Equivalence rules
# ----------------------------------------------------------------------


def _arithmetic_rules(old: str, new: str) -> tuple[EquivalenceRule, ...]:
    rules = []
    if {old, new} <= {"+", "-"}:
        rules.append(
            EquivalenceRule(
                "additive-identity",
                f"right operand is zero, so '{old}' and '{new}' give the same value",
                lambda c: _is_number(_right_operand(c.node), 0),
            )
        )
    if {old, new} <= {"*", "/", "**"}:
        rules.append(
            EquivalenceRule(
                "multiplicative-identity",
                f"right operand is one, so '{old}' and '{new}' give the same value",
                lambda c: _is_number(_right_operand(c.node), 1),
            )
        )
    return tuple(rules)


def _length_rule(difference: frozenset[str]) -> EquivalenceRule:
    def holds(cursor: Cursor) -> bool:
        operands = cursor.node.operands()
        if len(operands) != 2:
            return False
        left, right = operands
        if _is_len_call(left) and _is_number(right, 0):
            return difference <= {"lt"}
        if _is_number(left, 0) and _is_len_call(right):
            return difference <= {"gt"}
        return False

    return EquivalenceRule(
        "non-negative-length",
        "len() is never negative; the mutant only differs where no input can reach",
        holds,
    )


_NEGATED_ZERO = EquivalenceRule(
    "negated-zero",
    "operand is literal zero and -0 == 0",
    lambda c: _is_number(c.node.operands()[0] if c.node.operands() else None, 0),
)


# ----------------------------------------------------------------------
# Catalog construction
# ----------------------------------------------------------------------


def _region_dominance(family: str, differences: dict[str, frozenset[str]], names: dict[str, str]) -> dict[str, frozenset[str]]:
    dominated: dict[str, frozenset[str]] = {}
    for target, diff in differences.items():
        dominated[target] = frozenset(
            f"{family}->{names[other]}"
            for other, other_diff in differences.items()
            if diff < other_diff
        )
    return dominated


def _arithmetic() -> list[Operator]:
    ops = []
    for old, swaps in ARITHMETIC_SWAPS.items():
        family = f"aor:{ARITHMETIC_NAMES[old]}"
        for new in swaps:
            ops.append(
                Operator(
                    id=f"{family}->{ARITHMETIC_NAMES[new]}",
                    category="arithmetic",
                    family=family,
                    description=f"replace '{old}' with '{new}'",
                    matcher=_label_payload("BinOp", old),
                    generator=_swap(new, wrap=PRECEDENCE[new] < PRECEDENCE[old]),
                    equivalence=_arithmetic_rules(old, new),
                    hardness=0.7 if {old, new} == {"/", "//"} else 0.5,
                )
            )
    return ops


def _relational() -> list[Operator]:
    ops = []
    for old, old_name in RELATIONAL_NAMES.items():
        family = f"ror:{old_name}"
        targets = [t for t in RELATIONAL_NAMES if t != old] + ["True", "False"]
        names = {t: RELATIONAL_NAMES.get(t, t.lower()) for t in targets}
        differences = {t: RELATIONAL_REGIONS[old] ^ RELATIONAL_REGIONS[t] for t in targets}
        dominated = _region_dominance(family, differences, names)
        for target in targets:
            generator = _literal(target) if target in ("True", "False") else _swap(target)
            ops.append(
                Operator(
                    id=f"{family}->{names[target]}",
                    category="relational",
                    family=family,
                    description=f"replace '{old}' with '{target}'",
                    matcher=_label_payload("Compare", (old,)),
                    generator=generator,
                    equivalence=(_length_rule(differences[target]),),
                    hardness=round(1 - len(differences[target]) / len(_ORDERINGS), 3),
                    dominates=dominated[target],
                )
            )
    for old, new in IDENTITY_SWAPS.items():
        family = f"ror:{IDENTITY_NAMES[old]}"
        ops.append(
            Operator(
                id=f"{family}->{IDENTITY_NAMES[new]}",
                category="identity" if "is" in old.split() else "membership",
                family=family,
                description=f"replace '{old}' with '{new}'",
                matcher=_label_payload("Compare", (old,)),
                generator=_swap(new),
                hardness=0.3,
            )
        )
    return ops


def _logical() -> list[Operator]:
    ops = []
    for old in ("and", "or"):
        other = "or" if old == "and" else "and"
        family = f"lcr:{old}"
        targets = [other, "lhs", "rhs", "True", "False"]
        names = {t: t.lower() for t in targets}
        differences = {t: LOGICAL_REGIONS[old] ^ LOGICAL_REGIONS[t] for t in targets}
        dominated = _region_dominance(family, differences, names)
        generators = {
            other: _swap(other, wrap=PRECEDENCE[other] < PRECEDENCE[old]),
            "lhs": _operand(0),
            "rhs": _operand(1),
            "True": _literal("True"),
            "False": _literal("False"),
        }
        for target in targets:
            # swapping the connective is valid for any arity, the rest need two operands
            matcher = _label_payload("BoolOp", old) if target == other else _binary_logical(old)
            ops.append(
                Operator(
                    id=f"{family}->{names[target]}",
                    category="logical",
                    family=family,
                    description=f"replace '{old}' expression with {target}",
                    matcher=matcher,
                    generator=generators[target],
                    hardness=round(1 - len(differences[target]) / len(_COMBINATIONS), 3),
                    dominates=dominated[target],
                )
            )
    return ops


def _unary() -> list[Operator]:
    ops = []
    for symbol, name in UNARY_NAMES.items():
        ops.append(
            Operator(
                id=f"uoi:{name}->operand",
                category="unary",
                family=f"uoi:{name}",
                description=f"drop unary '{symbol}'",
                matcher=_label_payload("UnaryOp", symbol),
                generator=_operand(0),
                equivalence=(_NEGATED_ZERO,) if symbol == "-" else (),
                hardness=0.4,
            )
        )
    return ops


def _negate_condition(cursor: Cursor) -> bool:
    if cursor.node.role != "test" or cursor.parent_label not in ("If", "While", "IfExp"):
        return False
    return not (cursor.label == "UnaryOp" and cursor.payload == "not")


def _constants() -> list[Operator]:
    def is_int(cursor: Cursor) -> bool:
        return cursor.label == "Constant" and type(cursor.payload) is int

    return [
        Operator(
            id="crp:int->plus1",
            category="constant",
            family="crp:int",
            description="increment an integer literal",
            matcher=is_int,
            generator=lambda node: str(node.payload + 1),
            hardness=0.7,
        ),
        Operator(
            id="crp:int->zero",
            category="constant",
            family="crp:int",
            description="replace a non-zero integer literal with 0",
            matcher=lambda c: is_int(c) and c.payload != 0,
            generator=_literal("0"),
            hardness=0.4,
        ),
        Operator(
            id="crp:zero->one",
            category="constant",
            family="crp:int",
            description="replace literal 0 with 1",
            matcher=lambda c: is_int(c) and c.payload == 0,
            generator=_literal("1"),
            hardness=0.5,
        ),
        Operator(
            id="crp:true->false",
            category="constant",
            family="crp:bool",
            description="replace True with False",
            matcher=lambda c: c.label == "Constant" and c.payload is True,
            generator=_literal("False"),
            hardness=0.3,
        ),
        Operator(
            id="crp:false->true",
            category="constant",
            family="crp:bool",
            description="replace False with True",
            matcher=lambda c: c.label == "Constant" and c.payload is False,
            generator=_literal("True"),
            hardness=0.3,
        ),
    ]


def _statements() -> list[Operator]:
    def is_call_statement(cursor: Cursor) -> bool:
        value = cursor.node.child_with_role("value")
        return cursor.label == "Expr" and value is not None and value.label == "Call"

    def returns_value(cursor: Cursor) -> bool:
        if cursor.node.role != "value" or cursor.parent_label != "Return":
            return False
        return not (cursor.label == "Constant" and cursor.payload is None)

    ops = [
        Operator(
            id="cond:negate",
            category="conditional",
            family="cond",
            description="negate the condition of if/while/ternary",
            matcher=_negate_condition,
            generator=lambda node: f"not ({node.text})",
            hardness=0.2,
        ),
        Operator(
            id="ret:value->none",
            category="return",
            family="ret",
            description="return None instead of the computed value",
            matcher=returns_value,
            generator=_literal("None"),
            hardness=0.25,
        ),
        Operator(
            id="stmt:call->pass",
            category="statement",
            family="stmt:call",
            description="delete a call statement",
            matcher=is_call_statement,
            generator=_literal("pass"),
            hardness=0.2,
            embeddable=False,
        ),
        Operator(
            id="stmt:break->continue",
            category="statement",
            family="stmt:break",
            description="replace break with continue",
            matcher=lambda c: c.label == "Break",
            generator=_literal("continue"),
            hardness=0.4,
            embeddable=False,
        ),
        Operator(
            id="stmt:continue->break",
            category="statement",
            family="stmt:continue",
            description="replace continue with break",
            matcher=lambda c: c.label == "Continue",
            generator=_literal("break"),
            hardness=0.4,
            embeddable=False,
        ),
    ]
    for old, swaps in AUGMENTED_SWAPS.items():
        family = f"asg:{AUGMENTED_NAMES[old]}"
        for new in swaps + ("=",):
            new_name = AUGMENTED_NAMES.get(new, "assign")
            ops.append(
                Operator(
                    id=f"{family}->{new_name}",
                    category="assignment",
                    family=family,
                    description=f"replace '{old}' with '{new}'",
                    matcher=_label_payload("AugAssign", old),
                    generator=_swap(new),
                    equivalence=_arithmetic_rules(old[:-1], new[:-1]) if new != "=" else (),
                    hardness=0.5 if new != "=" else 0.3,
                    embeddable=False,
                )
            )
    return ops


def _build_catalog() -> tuple[Operator, ...]:
    return tuple(_arithmetic() + _relational() + _logical() + _unary() + _constants() + _statements())


CATALOG: tuple[Operator, ...] = _build_catalog()
_BY_ID: dict[str, Operator] = {op.id: op for op in CATALOG}


def _build_presets(operators: tuple[Operator, ...]) -> dict[str, tuple[str, ...]]:
    dominated = set().union(*(op.dominates for op in operators))
    primary = {
        f"aor:{ARITHMETIC_NAMES[old]}->{ARITHMETIC_NAMES[swaps[0]]}"
        for old, swaps in ARITHMETIC_SWAPS.items()
    } | {
        f"asg:{AUGMENTED_NAMES[old]}->{AUGMENTED_NAMES[swaps[0]]}"
        for old, swaps in AUGMENTED_SWAPS.items()
    }

    def fast(op: Operator) -> bool:
        if op.category in ("relational", "logical"):
            return op.id not in dominated
        if op.category in ("arithmetic", "assignment"):
            return op.id in primary
        return op.category in ("unary", "conditional", "return", "statement")

    return {
        "fast": tuple(op.id for op in operators if fast(op)),
        "default": tuple(op.id for op in operators if op.category != "constant"),
        "thorough": tuple(op.id for op in operators),
    }


PRESETS: dict[str, tuple[str, ...]] = _build_presets(CATALOG)


def get_operator(operator_id: str) -> Operator:
    try:
        return _BY_ID[operator_id]
    except KeyError:
        raise KeyError(f"Unknown operator: {operator_id}") from None


def select_operators(preset: str = "default", ids: list[str] | None = None) -> list[Operator]:
    """Operators in declaration order, from explicit ids or a named preset."""
    if ids:
        unknown = [i for i in ids if i not in _BY_ID]
        if unknown:
            raise KeyError(f"Unknown operator(s): {', '.join(unknown)}")
        wanted = set(ids)
    else:
        if preset not in PRESETS:
            raise KeyError(f"Unknown preset: {preset}")
        wanted = set(PRESETS[preset])
    return [op for op in CATALOG if op.id in wanted]
