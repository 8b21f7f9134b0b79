"""Declarative mutation operator model."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from mutagraph.cast.address import Cursor
from mutagraph.cast.models import Node

Matcher = Callable[[Cursor], bool]
Generator = Callable[[Node], str]


@dataclass(frozen=True)
class EquivalenceRule:
    """A syntactic condition under which the mutant cannot change behavior."""

    name: str
    reason: str
    holds: Callable[[Cursor], bool]


@dataclass(frozen=True)
class Operator:
    """One mutation operator.

    Attributes:
        id: Unique identifier, e.g. 'ror:lt->le'.
        category: Coarse grouping used in reports and clustering.
        family: Comparator family; subsumption edges never cross families.
        matcher: Total, side-effect-free predicate over a cursor.
        generator: Produces the replacement text for a matched node.
        equivalence: Rules that make a match provably equivalent.
        hardness: Higher means harder to kill; picks cluster representatives.
        dominates: Operator ids whose kill is implied by a kill of this one.
        embeddable: Whether the target is an expression that can sit in a schema.
    """

    id: str
    category: str
    family: str
    description: str
    matcher: Matcher
    generator: Generator
    equivalence: tuple[EquivalenceRule, ...] = ()
    hardness: float = 0.5
    dominates: frozenset[str] = field(default_factory=frozenset)
    embeddable: bool = True

    def matches(self, cursor: Cursor) -> bool:
        return self.matcher(cursor)

    def generate(self, node: Node) -> str:
        return self.generator(node)

    def equivalent(self, cursor: Cursor) -> EquivalenceRule | None:
        """The first equivalence rule that holds at this cursor, if any."""
        for rule in self.equivalence:
            if rule.holds(cursor):
                return rule
        return None
