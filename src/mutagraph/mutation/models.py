"""Data models for mutation sites, verdicts and run reports."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from mutagraph.cast.models import format_coordinate


class Verdict(str, Enum):
    """Outcome of one mutation site. Every state but PENDING is terminal."""

    PENDING = "pending"
    KILLED = "killed"  # >= 1 targeted test failed
    SURVIVED = "survived"  # all targeted tests passed
    NO_COVERAGE = "no-coverage"  # zero targeted tests, nothing executed
    TIMEOUT = "timeout"  # a targeted test exceeded its bound
    ERROR = "error"  # execution itself failed
    EQUIVALENT = "provably-equivalent"  # excluded before execution


class MutationSite(BaseModel):
    """A (form, coordinate, operator) triple with its generated replacement."""

    model_config = ConfigDict(frozen=True)

    form_id: str
    coordinate: tuple[int | str, ...]
    operator_id: str
    replacement: str | None  # None when the generator failed
    file: str
    line: int
    label: str = ""  # node label at the coordinate
    parent_label: str = ""
    category: str = ""
    hardness: float = 0.5
    order: int = 0  # global scan order, the deterministic tie-breaker
    embeddable: bool = True

    @property
    def id(self) -> str:
        return f"{self.form_id}@{format_coordinate(self.coordinate)}:{self.operator_id}"

    @property
    def location(self) -> tuple[str, tuple]:
        return self.form_id, self.coordinate


class SiteResult(BaseModel):
    """A site together with its verdict and how it was reached."""

    site: MutationSite
    verdict: Verdict = Verdict.PENDING
    tests: list[str] = Field(default_factory=list)
    failed_tests: list[str] = Field(default_factory=list)
    reason: str = ""
    propagated_from: str = ""  # representative site id for cluster members
    duration_ms: float = 0.0
    reused: bool = False  # carried over from the previous run

    def settle(self, verdict: Verdict, reason: str = "") -> SiteResult:
        """Move out of PENDING exactly once."""
        if self.verdict is not Verdict.PENDING:
            raise ValueError(
                f"Site {self.site.id} already settled as {self.verdict.value}"
            )
        if verdict is Verdict.PENDING:
            raise ValueError("Cannot settle a site as pending")
        self.verdict = verdict
        if reason:
            self.reason = reason
        return self


class RunReport(BaseModel):
    """Aggregate outcome of a run."""

    results: list[SiteResult] = Field(default_factory=list)
    files_scanned: int = 0
    files_skipped: list[str] = Field(default_factory=list)
    forms_changed: int = 0
    forms_reused: int = 0
    candidates: int = 0  # sites found by the scanner in changed forms
    subsumed: int = 0  # candidates dropped as dominated by another operator at the same node
    executed: int = 0  # representatives actually run
    duration_ms: float = 0.0

    def count(self, verdict: Verdict) -> int:
        return sum(1 for r in self.results if r.verdict is verdict)

    @property
    def counts(self) -> dict[str, int]:
        return {v.value: self.count(v) for v in Verdict if v is not Verdict.PENDING}

    @property
    def score(self) -> float | None:
        """killed / (killed + survived); None when nothing was decided."""
        killed = self.count(Verdict.KILLED)
        denominator = killed + self.count(Verdict.SURVIVED)
        if denominator == 0:
            return None
        return killed / denominator

    def survivors(self) -> list[SiteResult]:
        return [r for r in self.results if r.verdict is Verdict.SURVIVED]
