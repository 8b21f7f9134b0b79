"""Interfaces of the test execution and reload services."""

from __future__ import annotations

import importlib
import importlib.util
import logging
from enum import Enum
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("mutagraph.runner")


class RunOutcome(str, Enum):
    """Result of running one test once."""

    PASS = "pass"
    FAIL = "fail"
    THREW = "threw"  # the run itself broke: collection error, crash, internal error


class Executor(Protocol):
    """Runs single tests. Every call must be safely repeatable.

    `run` raises TestTimeout when the bound is exceeded (the test process
    must be gone by then) and TestError when it cannot run at all.
    `active_mutant` is the schema selector value for this run, or None.
    """

    def discover(self, paths: list[str]) -> list[str]: ...

    def run(self, test_id: str, timeout_s: float, active_mutant: str | None = None) -> RunOutcome: ...


class Reloader(Protocol):
    """Makes edited source visible to subsequent test runs."""

    def reload(self, paths: list[Path]) -> bool: ...


class BytecodeReloader:
    """Reload service for tests that run in fresh interpreters.

    A mutation that keeps the file size and lands within the same second as
    the original can otherwise be masked by the cached .pyc, whose
    staleness check only compares size and whole-second mtime.
    """

    def reload(self, paths: list[Path]) -> bool:
        ok = True
        for path in paths:
            try:
                cached = Path(importlib.util.cache_from_source(str(path)))
            except (NotImplementedError, ValueError):
                continue
            try:
                cached.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove cached bytecode {cached}: {e}")
                ok = False
        importlib.invalidate_caches()
        return ok
