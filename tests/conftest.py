"""Shared test fixtures for MutaGraph."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from mutagraph.cast.address import walk
from mutagraph.cast.builder import parse_module
from mutagraph.cast.models import ParsedModule
from mutagraph.config import MUTAGRAPH_DIR, ProjectConfig
from mutagraph.coverage.trace import TraceEvent
from mutagraph.exceptions import TestTimeout
from mutagraph.mutation.schemata import SELECTOR_ENV
from mutagraph.runner.base import RunOutcome

CALC_SOURCE = '''"""Tiny calculator used as a mutation target."""


def add(a, b):
    return a + b


def scale(x):
    return x * 1


def untested(n):
    return n - 1


def is_positive(n):
    if n > 0:
        return True
    return False
'''

CALC_TESTS = {
    "tests/test_calc.py::test_add": "assert add(2, 3) == 5",
    "tests/test_calc.py::test_scale": "assert scale(4) == 4",
    "tests/test_calc.py::test_positive": "assert is_positive(5)\nassert not is_positive(-1)",
}

CALC_COVERAGE = {
    "tests/test_calc.py::test_add": ["calc.py::add"],
    "tests/test_calc.py::test_scale": ["calc.py::scale"],
    "tests/test_calc.py::test_positive": ["calc.py::is_positive"],
}


class FakeExecutor:
    """Runs tests in process against the current text of one module.

    A test is a snippet executed in the module's namespace; an
    AssertionError is a failure, any other exception means it threw.
    """

    def __init__(self, root: Path, tests: dict[str, str], module: str = "calc.py", hang: set[str] | None = None):
        self.root = root
        self.tests = tests
        self.module = module
        self.hang = hang or set()
        self.calls: list[tuple[str, str | None]] = []

    def discover(self, paths: list[str]) -> list[str]:
        return sorted(self.tests)

    def run(self, test_id: str, timeout_s: float, active_mutant: str | None = None) -> RunOutcome:
        self.calls.append((test_id, active_mutant))
        if test_id in self.hang:
            raise TestTimeout(test_id, timeout_s)
        source = (self.root / self.module).read_text()
        previous = os.environ.pop(SELECTOR_ENV, None)
        if active_mutant is not None:
            os.environ[SELECTOR_ENV] = active_mutant
        try:
            namespace: dict = {}
            exec(compile(source, self.module, "exec"), namespace)
            exec(self.tests[test_id], namespace)
        except AssertionError:
            return RunOutcome.FAIL
        except Exception:
            return RunOutcome.THREW
        finally:
            os.environ.pop(SELECTOR_ENV, None)
            if previous is not None:
                os.environ[SELECTOR_ENV] = previous
        return RunOutcome.PASS


class FormTraceOracle:
    """Claims each test executes every node of the forms listed for it.

    Importing a module runs every top-level statement, so the root of each
    form in a covered file is hit by every test as well.
    """

    def __init__(self, root: Path, coverage: dict[str, list[str]]):
        self.root = root
        self.coverage = {test_id: list(form_ids) for test_id, form_ids in coverage.items()}
        self.traced: list[str] = []

    def _forms(self):
        files = {form_id.split("::", 1)[0] for form_ids in self.coverage.values() for form_id in form_ids}
        forms = {}
        for file in sorted(files):
            module = parse_module((self.root / file).read_text(), file)
            forms.update({f.id: f for f in module.forms})
        return forms

    def trace(self, test_id: str) -> list[TraceEvent]:
        self.traced.append(test_id)
        forms = self._forms()
        imported = [TraceEvent(test_id, form_id, ()) for form_id in forms]
        return imported + [
            TraceEvent(test_id, form_id, cursor.coordinate)
            for form_id in self.coverage.get(test_id, [])
            if form_id in forms
            for cursor in walk(forms[form_id].tree)
        ]

    def locate(self, form_id: str) -> tuple[str, int] | None:
        form = self._forms().get(form_id)
        return (form.file, form.start_line) if form else None


class RecordingReloader:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.calls: list[list[Path]] = []

    def reload(self, paths: list[Path]) -> bool:
        self.calls.append(list(paths))
        return self.ok


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """A project with one module and a test file, already initialized."""
    (tmp_path / MUTAGRAPH_DIR).mkdir()
    (tmp_path / "calc.py").write_text(CALC_SOURCE)
    tests_dir = tmp_path / "tests"
    tests_dir.mkdir()
    (tests_dir / "test_calc.py").write_text(
        "from calc import add, scale, is_positive\n\n\n"
        "def test_add():\n    assert add(2, 3) == 5\n\n\n"
        "def test_scale():\n    assert scale(4) == 4\n\n\n"
        "def test_positive():\n    assert is_positive(5)\n    assert not is_positive(-1)\n"
    )
    return tmp_path


@pytest.fixture
def calc_source() -> str:
    return CALC_SOURCE


@pytest.fixture
def calc_module(calc_source: str) -> ParsedModule:
    return parse_module(calc_source, "calc.py")


@pytest.fixture
def make_executor(tmp_project: Path):
    def _make(**kwargs) -> FakeExecutor:
        return FakeExecutor(tmp_project, dict(CALC_TESTS), **kwargs)

    return _make


@pytest.fixture
def executor(make_executor) -> FakeExecutor:
    return make_executor()


@pytest.fixture
def oracle(tmp_project: Path) -> FormTraceOracle:
    return FormTraceOracle(tmp_project, CALC_COVERAGE)


@pytest.fixture
def reloader() -> RecordingReloader:
    return RecordingReloader()


@pytest.fixture
def make_config():
    """Config restricted to the given operators, reductions on, no clustering."""

    def _make(*operators: str, **overrides) -> ProjectConfig:
        config = ProjectConfig(name="calc")
        config.scan.operators = list(operators)
        for key, value in overrides.items():
            section, field = key.split("__")
            setattr(getattr(config, section), field, value)
        return config

    return _make


@pytest.fixture
def sample_python_source() -> str:
    """Source exercising most layout features the tree must preserve."""
    return '''"""Sample module."""

import os
from typing import List, Optional

CONSTANT_VALUE = 42  # the answer


@staticmethod
@property
def decorated(x: int, *args, key: str = "k", **kwargs) -> Optional[int]:
    """Docstring."""
    total = x + 1 if x > 0 else -x
    values = {"a": 1, "b": [i * 2 for i in range(3)]}
    flags = {True, False}
    while total >= 10 and not flags:
        total -= 3
    return f"{total!r:>4}" if key in values else None


class Processor(object):
    def process(self, data: List[str]) -> List[str]:
        return [item.strip() for item in data if item is not None]


def matcher(command):
    match command:
        case ["go", direction]:
            return direction
        case _:
            return None
'''
