"""Static equivalence filtering."""

from __future__ import annotations

import logging

from mutagraph.cast.address import cursor_at
from mutagraph.cast.models import ParsedModule
from mutagraph.exceptions import LocationError
from mutagraph.mutation.models import MutationSite, SiteResult, Verdict
from mutagraph.operators.models import EquivalenceRule, Operator

logger = logging.getLogger("mutagraph.pipeline")


class EquivalenceFilter:
    """Removes sites whose operator's equivalence rule holds in context.

    Only local syntax is inspected, so a mutant that is equivalent for
    runtime reasons alone will still be executed and may survive.
    """

    def __init__(self, modules: dict[str, ParsedModule], operators: dict[str, Operator]) -> None:
        self.modules = modules
        self.operators = operators

    def check(self, site: MutationSite) -> EquivalenceRule | None:
        op = self.operators.get(site.operator_id)
        if op is None or not op.equivalence:
            return None
        form = self.modules[site.file].form(site.form_id)
        try:
            cursor = cursor_at(form.tree, site.coordinate, form.start_line)
        except LocationError as e:
            logger.warning(f"Cannot check equivalence of {site.id}: {e}")
            return None
        return op.equivalent(cursor)

    def split(self, sites: list[MutationSite]) -> tuple[list[MutationSite], list[SiteResult]]:
        """Partition into sites to execute and settled equivalent results."""
        kept: list[MutationSite] = []
        equivalent: list[SiteResult] = []
        for site in sites:
            rule = self.check(site)
            if rule is None:
                kept.append(site)
            else:
                equivalent.append(
                    SiteResult(site=site).settle(Verdict.EQUIVALENT, f"{rule.name}: {rule.reason}")
                )
        if equivalent:
            logger.info(f"Excluded {len(equivalent)} provably-equivalent sites")
        return kept, equivalent
