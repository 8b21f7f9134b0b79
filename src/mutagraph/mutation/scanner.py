"""Mutation site scanner: walks forms and applies every operator's matcher."""

from __future__ import annotations

import logging

from mutagraph.cast.address import walk
from mutagraph.cast.models import Form, ParsedModule
from mutagraph.mutation.models import MutationSite
from mutagraph.operators.models import Operator

logger = logging.getLogger("mutagraph.scanner")


def pragma_lines(text: str, marker: str) -> set[int]:
    """1-based lines carrying the suppression marker in a comment."""
    if not marker:
        return set()
    return {
        number
        for number, line in enumerate(text.split("\n"), start=1)
        if "#" in line and marker in line[line.index("#"):]
    }


def scan_form(
    form: Form,
    operators: list[Operator],
    suppressed: set[int] | None = None,
    order_start: int = 0,
) -> list[MutationSite]:
    """Candidate sites in one form.

    Order is tree pre-order, then operator declaration order. Quoted
    subtrees and suppressed lines are skipped. A generator that raises
    yields a site with no replacement, which later settles as an error.
    """
    suppressed = suppressed or set()
    sites: list[MutationSite] = []
    order = order_start
    for cursor in walk(form.tree, form.start_line):
        if cursor.quoted or cursor.line in suppressed:
            continue
        for op in operators:
            if not op.matches(cursor):
                continue
            try:
                replacement = op.generate(cursor.node)
            except Exception as e:
                logger.warning(f"Operator {op.id} failed on {form.id}:{cursor.line}: {e}")
                replacement = None
            sites.append(
                MutationSite(
                    form_id=form.id,
                    coordinate=cursor.coordinate,
                    operator_id=op.id,
                    replacement=replacement,
                    file=form.file,
                    line=cursor.line,
                    label=cursor.label,
                    parent_label=cursor.parent_label,
                    category=op.category,
                    hardness=op.hardness,
                    order=order,
                    embeddable=op.embeddable,
                )
            )
            order += 1
    return sites


def scan_modules(
    modules: list[ParsedModule],
    operators: list[Operator],
    form_ids: set[str] | None = None,
    pragma: str = "",
) -> list[MutationSite]:
    """Scan every form (or only `form_ids`) of every module, in file order."""
    sites: list[MutationSite] = []
    for module in modules:
        suppressed = pragma_lines(module.render(), pragma)
        for form in module.forms:
            if form_ids is not None and form.id not in form_ids:
                continue
            sites.extend(scan_form(form, operators, suppressed, order_start=len(sites)))
    logger.debug(f"Scanned {len(modules)} modules: {len(sites)} candidate sites")
    return sites
