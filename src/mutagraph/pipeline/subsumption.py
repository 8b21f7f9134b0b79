"""Subsumption reduction over per-family dominance DAGs."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

import networkx as nx

from mutagraph.exceptions import MutaGraphError
from mutagraph.mutation.models import MutationSite
from mutagraph.operators.models import Operator


class SubsumptionReducer:
    """Drops operators whose kill is implied by another selected operator.

    Edges run from dominator to dominated and never cross a comparator
    family. The graph is checked for cycles once, on construction.
    """

    def __init__(self, operators: Iterable[Operator]) -> None:
        self.graph = nx.DiGraph()
        operators = list(operators)
        family = {op.id: op.family for op in operators}
        for op in operators:
            self.graph.add_node(op.id, family=op.family)
        for op in operators:
            for dominated in sorted(op.dominates):
                if dominated not in family:
                    continue
                if family[dominated] != op.family:
                    raise MutaGraphError(
                        f"Subsumption edge {op.id} -> {dominated} crosses families"
                    )
                self.graph.add_edge(op.id, dominated)
        if not nx.is_directed_acyclic_graph(self.graph):
            cycle = nx.find_cycle(self.graph)
            raise MutaGraphError(f"Subsumption relation has a cycle: {cycle}")

    def dominated_by(self, operator_id: str) -> set[str]:
        """Everything `operator_id` transitively dominates."""
        if operator_id not in self.graph:
            return set()
        return nx.descendants(self.graph, operator_id)

    def reduce(self, candidates: Iterable[str]) -> list[str]:
        """Candidates not dominated by another candidate, in input order.

        Deterministic for a fixed graph and input, never larger than the
        input, and idempotent.
        """
        ordered = list(dict.fromkeys(candidates))
        selected = set(ordered)
        excluded: set[str] = set()
        for op_id in ordered:
            excluded |= self.dominated_by(op_id) & selected
        return [op_id for op_id in ordered if op_id not in excluded]

    def reduce_sites(self, sites: list[MutationSite]) -> list[MutationSite]:
        """Apply `reduce` to the operators matched at each node independently."""
        by_location: dict[tuple, list[str]] = defaultdict(list)
        for site in sites:
            by_location[site.location].append(site.operator_id)
        kept = {loc: set(self.reduce(ops)) for loc, ops in by_location.items()}
        return [s for s in sites if s.operator_id in kept[s.location]]
