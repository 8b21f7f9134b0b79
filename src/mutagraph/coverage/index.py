"""Coverage index: which tests touch which (form, coordinate).

The forward map (test -> locations) is the only state. The inverse map is
derived from it on demand and discarded whenever the forward map changes,
so it can never drift from what was recorded.
"""

from __future__ import annotations

import bisect
import hashlib
import logging
from collections import defaultdict
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pydantic import BaseModel, Field

from mutagraph.cast.models import Coordinate, format_coordinate, parse_coordinate
from mutagraph.coverage.trace import FormLocationBridge, TraceEvent, TraceOracle
from mutagraph.exceptions import IndexStaleness

logger = logging.getLogger("mutagraph.coverage")

Location = tuple[str, Coordinate]


def unit_of(test_id: str) -> str:
    """The logical test unit of a pytest node id: its file."""
    return test_id.split("::", 1)[0]


class CoverageUnit(BaseModel):
    """Coverage of one test file, keyed by the hash of what it depends on."""

    unit_id: str
    dependency_hash: str = ""
    test_hash: str = ""  # content hash of the test file alone
    dependencies: list[str] = Field(default_factory=list)
    tests: list[str] = Field(default_factory=list)
    hits: list[tuple[str, str, str]] = Field(default_factory=list)  # (test, form, coordinate text)
    locations: dict[str, tuple[str, int]] = Field(default_factory=dict)

    def events(self) -> list[TraceEvent]:
        return [TraceEvent(test, form, parse_coordinate(coord)) for test, form, coord in self.hits]


class FormLocator:
    """Resolves (file, line) to the oracle form starting at or before the line.

    Limitation: when several forms start on the same line of one file, the
    last one registered wins; no further disambiguation is attempted.
    """

    def __init__(self, locations: dict[str, tuple[str, int]]) -> None:
        by_file: dict[str, dict[int, str]] = defaultdict(dict)
        for form_id, (file, line) in sorted(locations.items()):
            by_file[file][line] = form_id
        self._lines: dict[str, list[int]] = {}
        self._forms: dict[str, list[str]] = {}
        for file, starts in by_file.items():
            lines = sorted(starts)
            self._lines[file] = lines
            self._forms[file] = [starts[line] for line in lines]

    def locate(self, file: str, line: int) -> str | None:
        lines = self._lines.get(file)
        if not lines:
            return None
        i = bisect.bisect_right(lines, line) - 1
        if i < 0:
            return None
        return self._forms[file][i]


class CoverageIndex:
    """Forward and inverse coverage maps built by folding trace events."""

    def __init__(self) -> None:
        self._forward: dict[str, set[Location]] = {}
        self._locations: dict[str, tuple[str, int]] = {}
        self._inverse: dict[Location, frozenset[str]] | None = None
        self._by_form: dict[str, frozenset[tuple[str, Coordinate]]] | None = None
        self._locator: FormLocator | None = None

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def record(self, test_id: str, form_id: str, coordinate: Coordinate) -> None:
        """Add one hit. Repeated hits for a test accumulate, never overwrite."""
        self._forward.setdefault(test_id, set()).add((form_id, tuple(coordinate)))
        self._inverse = None
        self._by_form = None

    def add_test(self, test_id: str) -> None:
        """Register a test that ran but may have touched nothing."""
        self._forward.setdefault(test_id, set())

    def fold(self, events: Iterable[TraceEvent]) -> CoverageIndex:
        for event in events:
            self.record(event.test_id, event.form_id, event.coordinate)
        return self

    def add_locations(self, locations: dict[str, tuple[str, int]]) -> None:
        self._locations.update(locations)
        self._locator = None

    def merge(self, other: CoverageIndex) -> CoverageIndex:
        """Union of two indexes as a new index; commutative and idempotent."""
        merged = CoverageIndex()
        for source in (self, other):
            for test_id, locations in source._forward.items():
                merged._forward.setdefault(test_id, set()).update(locations)
            merged.add_locations(source._locations)
        return merged

    @classmethod
    def from_units(cls, units: Iterable[CoverageUnit]) -> CoverageIndex:
        index = cls()
        for unit in units:
            for test_id in unit.tests:
                index.add_test(test_id)
            index.fold(unit.events())
            index.add_locations(unit.locations)
        return index

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def tests(self) -> list[str]:
        return sorted(self._forward)

    def locations_of(self, test_id: str) -> frozenset[Location]:
        return frozenset(self._forward.get(test_id, ()))

    def inverse(self) -> dict[Location, frozenset[str]]:
        """Location -> tests, recomputed from the forward map when stale."""
        if self._inverse is None:
            inverse: dict[Location, set[str]] = defaultdict(set)
            for test_id, locations in self._forward.items():
                for location in locations:
                    inverse[location].add(test_id)
            self._inverse = {loc: frozenset(tests) for loc, tests in inverse.items()}
        return self._inverse

    def tests_for(self, form_id: str, coordinate: Coordinate) -> frozenset[str]:
        """Tests that executed this node; empty when none did or it was never seen."""
        return self.inverse().get((form_id, tuple(coordinate)), frozenset())

    def form_hits(self, form_id: str) -> frozenset[tuple[str, Coordinate]]:
        """(test, coordinate) pairs recorded inside one oracle form."""
        if self._by_form is None:
            by_form: dict[str, set[tuple[str, Coordinate]]] = defaultdict(set)
            for test_id, locations in self._forward.items():
                for fid, coordinate in locations:
                    by_form[fid].add((test_id, coordinate))
            self._by_form = {fid: frozenset(hits) for fid, hits in by_form.items()}
        return self._by_form.get(form_id, frozenset())

    def locate(self, file: str, line: int) -> str | None:
        if self._locator is None:
            self._locator = FormLocator(self._locations)
        return self._locator.locate(file, line)

    def tests_at(self, file: str, line: int, coordinate: Coordinate) -> frozenset[str]:
        """Tests covering a statically found site, reconciled via the form locator."""
        form_id = self.locate(file, line)
        if form_id is None:
            return frozenset()
        return self.tests_for(form_id, coordinate)

    def location(self, form_id: str) -> tuple[str, int] | None:
        return self._locations.get(form_id)

    def forms_in(self, file: str) -> set[str]:
        return {fid for fid, (f, _line) in self._locations.items() if f == file}


class CoverageRefresher:
    """Recomputes only the coverage units whose dependencies changed."""

    def __init__(
        self,
        root: str | Path,
        oracle: TraceOracle,
        bridge: FormLocationBridge,
        workers: int = 4,
    ) -> None:
        self.root = Path(root)
        self.oracle = oracle
        self.bridge = bridge
        self.workers = max(1, workers)

    def dependency_hash(self, dependencies: Iterable[str]) -> str:
        digest = hashlib.sha256()
        for rel in sorted(set(dependencies)):
            digest.update(rel.encode("utf-8") + b"\0")
            path = self.root / rel
            try:
                digest.update(path.read_bytes())
            except OSError:
                digest.update(b"<missing>")
            digest.update(b"\0")
        return digest.hexdigest()

    def check(self, unit: CoverageUnit, tests: list[str]) -> None:
        """Raise IndexStaleness unless `unit` may be served as-is."""
        current = self.dependency_hash(unit.dependencies)
        if current != unit.dependency_hash or sorted(tests) != sorted(unit.tests):
            raise IndexStaleness(unit.unit_id, unit.dependency_hash, current)

    def compute(self, unit_id: str, tests: list[str]) -> CoverageUnit:
        """Trace every test of one unit and record what it depends on."""
        hits: set[tuple[str, str, str]] = set()
        locations: dict[str, tuple[str, int]] = {}
        for test_id in sorted(tests):
            for event in self.oracle.trace(test_id):
                hits.add((test_id, event.form_id, format_coordinate(event.coordinate)))
                if event.form_id not in locations:
                    location = self.bridge.locate(event.form_id)
                    if location is not None:
                        locations[event.form_id] = (location[0], int(location[1]))
        dependencies = sorted({unit_id} | {file for file, _line in locations.values()})
        return CoverageUnit(
            unit_id=unit_id,
            dependency_hash=self.dependency_hash(dependencies),
            test_hash=self.dependency_hash([unit_id]),
            dependencies=dependencies,
            tests=sorted(tests),
            hits=sorted(hits),
            locations=locations,
        )

    def refresh(
        self, stored: dict[str, CoverageUnit], tests: list[str]
    ) -> tuple[dict[str, CoverageUnit], set[str]]:
        """Bring stored units up to date with the discovered tests.

        Returns the current units and the ids of units that were recomputed
        or dropped; those are the units whose coverage may have moved.
        """
        grouped: dict[str, list[str]] = defaultdict(list)
        for test_id in tests:
            grouped[unit_of(test_id)].append(test_id)

        current: dict[str, CoverageUnit] = {}
        stale: list[str] = []
        for unit_id, unit_tests in sorted(grouped.items()):
            unit = stored.get(unit_id)
            if unit is None:
                stale.append(unit_id)
                continue
            try:
                self.check(unit, unit_tests)
                current[unit_id] = unit
            except IndexStaleness as e:
                logger.info(f"{e}; recomputing")
                stale.append(unit_id)

        dropped = set(stored) - set(grouped)
        for unit_id in sorted(dropped):
            logger.info(f"Coverage unit '{unit_id}' no longer exists; dropped")

        if stale:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(stale))) as pool:
                computed = pool.map(lambda uid: self.compute(uid, grouped[uid]), stale)
                for unit in computed:
                    current[unit.unit_id] = unit
        return current, set(stale) | dropped


def changed_test_units(previous: dict[str, CoverageUnit], current: dict[str, CoverageUnit]) -> set[str]:
    """Units whose test file appeared, disappeared or was edited."""
    changed = set(previous) ^ set(current)
    for unit_id in set(previous) & set(current):
        if previous[unit_id].test_hash != current[unit_id].test_hash:
            changed.add(unit_id)
    return changed
