"""Coverage-guided test selection."""

from mutagraph.coverage.index import CoverageIndex, CoverageRefresher, CoverageUnit, FormLocator, unit_of
from mutagraph.coverage.store import StateStore
from mutagraph.coverage.trace import (
    ExhaustiveTraceOracle,
    FormLocationBridge,
    RecordedTraceOracle,
    TraceEvent,
    TraceOracle,
)

__all__ = [
    "CoverageIndex",
    "CoverageRefresher",
    "CoverageUnit",
    "ExhaustiveTraceOracle",
    "FormLocationBridge",
    "FormLocator",
    "RecordedTraceOracle",
    "StateStore",
    "TraceEvent",
    "TraceOracle",
    "unit_of",
]
