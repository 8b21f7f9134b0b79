"""Custom exceptions for MutaGraph."""

from __future__ import annotations


class MutaGraphError(Exception):
    """Base exception for all MutaGraph errors."""


class ConfigError(MutaGraphError):
    """Configuration-related errors."""


class ParserError(MutaGraphError):
    """Source parsing errors."""


class LocationError(MutaGraphError):
    """A coordinate could not be resolved to exactly one node."""

    def __init__(self, message: str, coordinate: tuple = ()):
        super().__init__(message)
        self.coordinate = coordinate


class LocationNotFound(LocationError):
    """The coordinate no longer resolves against the current tree."""


class LocationAmbiguous(LocationError):
    """A digest segment matched more than one sibling."""


class MutationApplyFailure(MutaGraphError):
    """Generating or splicing a mutation failed. No file was touched."""


class RevertFailure(MutaGraphError):
    """Restoring original file content failed. Fatal for the whole run."""


class TestExecutionError(MutaGraphError):
    """Base class for failures of the test execution service."""

    __test__ = False


class TestTimeout(TestExecutionError):
    """A targeted test exceeded its time bound."""

    __test__ = False

    def __init__(self, test_id: str, timeout_s: float):
        super().__init__(f"Test '{test_id}' exceeded {timeout_s:.1f}s")
        self.test_id = test_id
        self.timeout_s = timeout_s


class TestError(TestExecutionError):
    """Running a test failed for reasons unrelated to its assertions."""

    __test__ = False


class IndexStaleness(MutaGraphError):
    """A coverage unit's dependency hash no longer matches its sources."""

    def __init__(self, unit_id: str, stored: str, current: str):
        super().__init__(
            f"Coverage unit '{unit_id}' is stale ({stored[:8]} != {current[:8]})"
        )
        self.unit_id = unit_id
