"""Test execution service backed by pytest subprocesses."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

from mutagraph.exceptions import TestError, TestTimeout
from mutagraph.mutation.schemata import SELECTOR_ENV
from mutagraph.runner.base import RunOutcome

logger = logging.getLogger("mutagraph.runner")

EXIT_OK = 0
EXIT_TESTS_FAILED = 1


class PytestExecutor:
    """Runs one pytest node id per interpreter, with a hard timeout.

    A child that outlives the timeout is killed before TestTimeout is
    raised. The active mutant is only ever set in the child's environment.
    """

    def __init__(self, root: str | Path, python: str = "", extra_args: list[str] | None = None) -> None:
        self.root = Path(root)
        self.python = python or sys.executable
        self.extra_args = list(extra_args or [])

    def _env(self, active_mutant: str | None) -> dict[str, str]:
        env = dict(os.environ)
        env["PYTHONDONTWRITEBYTECODE"] = "1"
        env.pop(SELECTOR_ENV, None)
        if active_mutant is not None:
            env[SELECTOR_ENV] = active_mutant
        return env

    def discover(self, paths: list[str]) -> list[str]:
        """Node ids collected by `pytest --collect-only -q`."""
        existing = [p for p in paths if (self.root / p).exists()]
        if not existing:
            return []
        argv = [self.python, "-m", "pytest", "--collect-only", "-q", "-p", "no:cacheprovider", *existing]
        try:
            result = subprocess.run(
                argv,
                cwd=str(self.root),
                env=self._env(None),
                capture_output=True,
                text=True,
                timeout=300,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            raise TestError(f"Test discovery failed: {e}") from e
        if result.returncode not in (EXIT_OK, 5):  # 5: nothing collected
            raise TestError(
                f"Test discovery exited with {result.returncode}:\n{result.stdout[-2000:]}{result.stderr[-2000:]}"
            )
        return [line.strip() for line in result.stdout.splitlines() if "::" in line and not line.startswith(" ")]

    def run(self, test_id: str, timeout_s: float, active_mutant: str | None = None) -> RunOutcome:
        argv = [self.python, "-m", "pytest", *self.extra_args, test_id]
        try:
            result = subprocess.run(
                argv,
                cwd=str(self.root),
                env=self._env(active_mutant),
                capture_output=True,
                text=True,
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise TestTimeout(test_id, timeout_s) from e
        except OSError as e:
            raise TestError(f"Could not start pytest for {test_id}: {e}") from e

        if result.returncode == EXIT_OK:
            return RunOutcome.PASS
        if result.returncode == EXIT_TESTS_FAILED:
            return RunOutcome.FAIL
        logger.debug(f"{test_id} exited with {result.returncode}: {result.stderr[-500:]}")
        return RunOutcome.THREW
