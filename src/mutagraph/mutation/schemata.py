"""Mutant schemata: many mutants compiled into one file, chosen at runtime.

Each targeted expression becomes a conditional expression over a single
selector read from the test process environment::

    ((a - b) if SEL == '1' else (a * b) if SEL == '2' else (a + b))

The default branch is the original text, so with the selector unset the
file behaves exactly like the unmutated one.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from pydantic import BaseModel, Field

from mutagraph.cast.address import node_at, replace_at, resolve
from mutagraph.cast.models import ParsedModule, leaf
from mutagraph.exceptions import LocationError, MutationApplyFailure
from mutagraph.mutation.applier import check_syntax
from mutagraph.mutation.models import MutationSite

logger = logging.getLogger("mutagraph.schemata")

SELECTOR_ENV = "MUTAGRAPH_ACTIVE_MUTANT"
SELECTOR_EXPR = f"__import__('os').environ.get({SELECTOR_ENV!r})"


class SchemaBundle(BaseModel):
    """One compiled file and how to activate each embedded mutant."""

    file: str
    mutants: list[str] = Field(default_factory=list)  # site ids, embedding order
    discriminators: dict[str, str] = Field(default_factory=dict)  # site id -> selector value
    source: str = ""

    def selector_for(self, site: MutationSite) -> str:
        return self.discriminators[site.id]


def _choice(branches: list[tuple[str, str]], default: str) -> str:
    arms = " else ".join(f"({text}) if {SELECTOR_EXPR} == {value!r}" for value, text in branches)
    return f"({arms} else ({default}))"


class SchemataCompiler:
    """Builds SchemaBundles from the parsed snapshot of each file."""

    def __init__(self, modules: dict[str, ParsedModule]) -> None:
        self.modules = modules

    def partition(
        self, sites: list[MutationSite], batch_size: int = 50
    ) -> tuple[list[list[MutationSite]], list[MutationSite]]:
        """Split sites into per-file batches that can be embedded, and the rest.

        Statement-level mutations and sites without a replacement are
        returned separately for one-at-a-time application.
        """
        by_file: dict[str, list[MutationSite]] = defaultdict(list)
        single: list[MutationSite] = []
        for site in sites:
            if site.embeddable and site.replacement is not None:
                by_file[site.file].append(site)
            else:
                single.append(site)
        size = max(1, batch_size)
        batches = [
            members[i : i + size]
            for members in by_file.values()
            for i in range(0, len(members), size)
        ]
        return batches, single

    def compile(self, file: str, sites: list[MutationSite]) -> SchemaBundle:
        """Embed every site of `file` into one source text.

        Targets are resolved on the original snapshot and rewritten
        deepest-first, so an outer choice only ever sees inner choices in
        its default branch. Raises MutationApplyFailure when a target
        cannot be located or the result does not compile.
        """
        module = self.modules.get(file)
        if module is None:
            raise MutationApplyFailure(f"{file} was not parsed in this run")

        groups: dict[tuple[int, ...], list[MutationSite]] = defaultdict(list)
        for site in sites:
            if site.file != file or site.replacement is None or not site.embeddable:
                raise MutationApplyFailure(f"Site {site.id} cannot be embedded in {file}")
            try:
                form = module.form(site.form_id)
                path = (form.index,) + resolve(form.tree, site.coordinate)
            except (KeyError, LocationError) as e:
                raise MutationApplyFailure(f"Cannot locate {site.id}: {e}") from e
            groups[path].append(site)

        discriminators = {site.id: str(n) for n, site in enumerate(sites, start=1)}
        tree = module.root
        for path in sorted(groups, key=len, reverse=True):
            current = node_at(tree, path)
            branches = [(discriminators[s.id], s.replacement) for s in groups[path]]
            choice = leaf(_choice(branches, current.text), label="Schema", role=current.role)
            tree = replace_at(tree, path, choice)

        source = tree.text
        check_syntax(source, file)
        logger.debug(f"Compiled {len(sites)} mutants into {file}")
        return SchemaBundle(
            file=file,
            mutants=[s.id for s in sites],
            discriminators=discriminators,
            source=source,
        )
