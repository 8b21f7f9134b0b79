"""Test execution and reload services."""

from mutagraph.runner.base import BytecodeReloader, Executor, Reloader, RunOutcome
from mutagraph.runner.pytest_runner import PytestExecutor

__all__ = ["BytecodeReloader", "Executor", "PytestExecutor", "Reloader", "RunOutcome"]
