"""Form-granular change detection for incremental runs."""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from dataclasses import dataclass, field

from mutagraph.cast.models import ParsedModule
from mutagraph.coverage.index import CoverageIndex, unit_of


@dataclass
class ChangeSet:
    """Current forms split into changed and unchanged, plus vanished ones."""

    changed: set[str] = field(default_factory=set)
    unchanged: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)
    reasons: dict[str, str] = field(default_factory=dict)
    digests: dict[str, tuple[str, str]] = field(default_factory=dict)  # form id -> (file, digest)

    def is_changed(self, form_id: str) -> bool:
        return form_id in self.changed


class ChangeDetector:
    """Compares current form digests against those stored by the last run.

    A form is changed when it is new, its digest differs, or its tests
    changed: a test file covering it was edited, added or removed, or the
    set of (test, coordinate) hits recorded inside it moved. Both covered
    code and covering tests feed a verdict, so either one changing
    invalidates the previous result.
    """

    def __init__(self, previous: dict[str, str]) -> None:
        self.previous = previous

    def detect(
        self,
        modules: Iterable[ParsedModule],
        previous_index: CoverageIndex | None = None,
        index: CoverageIndex | None = None,
        changed_units: set[str] | None = None,
        full: bool = False,
    ) -> ChangeSet:
        previous_index = previous_index or CoverageIndex()
        index = index or CoverageIndex()
        changed_units = changed_units or set()
        changes = ChangeSet()
        for module in modules:
            touched = self._touched_forms(module, previous_index, index, changed_units)
            for form in module.forms:
                changes.digests[form.id] = (form.file, form.digest)
                reason = ""
                if full:
                    reason = "full run"
                elif form.id not in self.previous:
                    reason = "new"
                elif self.previous[form.id] != form.digest:
                    reason = "modified"
                elif form.id in touched:
                    reason = "covering tests changed"
                if reason:
                    changes.changed.add(form.id)
                    changes.reasons[form.id] = reason
                else:
                    changes.unchanged.add(form.id)
        changes.removed = set(self.previous) - set(changes.digests)
        return changes

    @staticmethod
    def _touched_forms(
        module: ParsedModule,
        previous_index: CoverageIndex,
        index: CoverageIndex,
        changed_units: set[str],
    ) -> set[str]:
        """Static forms of `module` whose covering tests changed.

        Oracle forms are mapped onto static forms by start line: an oracle
        form belongs to the static form whose line range contains its start.
        """
        if not module.forms:
            return set()
        starts = [form.start_line for form in module.forms]
        touched: set[str] = set()
        oracle_forms = previous_index.forms_in(module.file) | index.forms_in(module.file)
        for oracle_form in oracle_forms:
            before = previous_index.form_hits(oracle_form)
            after = index.form_hits(oracle_form)
            moved = before != after
            edited = any(unit_of(test_id) in changed_units for test_id, _coord in before | after)
            if not (moved or edited):
                continue
            location = index.location(oracle_form) or previous_index.location(oracle_form)
            i = max(0, bisect.bisect_right(starts, location[1]) - 1)
            touched.add(module.forms[i].id)
        return touched
