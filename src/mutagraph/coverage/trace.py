"""Trace oracle and form-location bridge interfaces, plus shipped implementations."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from mutagraph.cast.address import walk
from mutagraph.cast.models import Coordinate, ParsedModule, parse_coordinate
from mutagraph.exceptions import ConfigError

logger = logging.getLogger("mutagraph.coverage")


@dataclass(frozen=True)
class TraceEvent:
    """One node executed while one test ran."""

    test_id: str
    form_id: str
    coordinate: Coordinate


class TraceOracle(Protocol):
    """Runs (or replays) exactly one test and returns the events it emitted.

    Each call is independent: events are reset before the test and drained
    after it. Oracles used with more than one refresh worker must tolerate
    concurrent calls.
    """

    def trace(self, test_id: str) -> Iterable[TraceEvent]: ...


class FormLocationBridge(Protocol):
    """Maps the oracle's form ids to (relative file, start line)."""

    def locate(self, form_id: str) -> tuple[str, int] | None: ...


class RecordedTraceOracle:
    """Replays a JSON-lines trace produced by external instrumentation.

    Two record shapes are accepted, one per line::

        {"test": "tests/test_calc.py::test_add", "form": "calc.add", "coordinate": "0/1"}
        {"form": "calc.add", "file": "calc.py", "line": 3}

    The first is a trace event, the second a form location.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._events: dict[str, list[TraceEvent]] = defaultdict(list)
        self._locations: dict[str, tuple[str, int]] = {}
        if self.path.exists():
            self._load()
        else:
            logger.warning(f"No trace file at {self.path}; every site will lack coverage")

    def _load(self) -> None:
        with open(self.path, encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    if "test" in record:
                        event = TraceEvent(
                            record["test"], record["form"], parse_coordinate(record.get("coordinate", ""))
                        )
                        self._events[event.test_id].append(event)
                    else:
                        self._locations[record["form"]] = (record["file"], int(record["line"]))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    raise ConfigError(f"{self.path}:{number}: malformed trace record ({e})") from e

    def trace(self, test_id: str) -> list[TraceEvent]:
        return list(self._events.get(test_id, ()))

    def locate(self, form_id: str) -> tuple[str, int] | None:
        return self._locations.get(form_id)

    @property
    def tests(self) -> list[str]:
        return sorted(self._events)


class ExhaustiveTraceOracle:
    """Coarse stand-in when no instrumentation is available.

    Claims that every test executes every node of every form, so each site
    is checked against the whole suite. Form ids and locations are the
    static ones.
    """

    def __init__(self, modules: Iterable[ParsedModule]) -> None:
        self._locations: dict[str, tuple[str, int]] = {}
        self._coordinates: dict[str, list[Coordinate]] = {}
        for module in modules:
            for form in module.forms:
                self._locations[form.id] = (form.file, form.start_line)
                self._coordinates[form.id] = [c.coordinate for c in walk(form.tree) if not c.quoted]

    def trace(self, test_id: str) -> list[TraceEvent]:
        return [
            TraceEvent(test_id, form_id, coordinate)
            for form_id, coordinates in self._coordinates.items()
            for coordinate in coordinates
        ]

    def locate(self, form_id: str) -> tuple[str, int] | None:
        return self._locations.get(form_id)
