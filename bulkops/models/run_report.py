"""Report models for the create/update/delete sample workflow."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PhaseSummary(BaseModel):
    """Aggregate counts and elapsed time of one workflow phase."""

    phase: str
    records: int
    successful: int
    failed: int
    duration_seconds: float
    status: str | None = None
    errors: list[str] = Field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.failed == 0 and self.successful == self.records


class SampleRunReport(BaseModel):
    """Outcome of a full provision, create, update, delete, drop run."""

    table_logical_name: str
    elastic: bool
    deletion_strategy: str
    recommended_parallelism: int
    max_parallelism: int
    phases: list[PhaseSummary] = Field(default_factory=list)

    def phase(self, name: str) -> PhaseSummary | None:
        """Return the summary of the named phase, if it ran."""
        for summary in self.phases:
            if summary.phase == name:
                return summary
        return None

    @property
    def total_failed(self) -> int:
        return sum(summary.failed for summary in self.phases)
