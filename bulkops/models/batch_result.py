"""Batch result models for per-record outcomes and aggregate statistics."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from bulkops.models.record import OperationKind


class OutcomeStatus(StrEnum):
    """Terminal state of one record within a batch."""

    SUCCESS = "success"
    FAILURE = "failure"


class RecordOutcome(BaseModel):
    """Outcome of a single record, placed at the record's input index."""

    index: int
    status: OutcomeStatus
    record_id: str | None = None
    error_type: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @classmethod
    def success(cls, index: int, record_id: str | None = None) -> RecordOutcome:
        return cls(index=index, status=OutcomeStatus.SUCCESS, record_id=record_id)

    @classmethod
    def failure(
        cls,
        index: int,
        error_type: str,
        error_message: str,
        error_code: str | None = None,
        record_id: str | None = None,
    ) -> RecordOutcome:
        return cls(
            index=index,
            status=OutcomeStatus.FAILURE,
            record_id=record_id,
            error_type=error_type,
            error_code=error_code,
            error_message=error_message,
        )


class BatchResult(BaseModel):
    """One outcome per submitted record plus the wall-clock duration of the batch."""

    operation: OperationKind
    outcomes: list[RecordOutcome] = Field(default_factory=list)
    duration_seconds: float = 0.0
    max_parallelism: int | None = None
    status: str | None = None

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.successful

    def failures(self) -> list[RecordOutcome]:
        """Return the failed outcomes in input order."""
        return [outcome for outcome in self.outcomes if not outcome.succeeded]

    def summary(self) -> dict[str, int | float | str | list[str] | None]:
        """Return summary statistics in the same shape as ProgressTracker.summary()."""
        return {
            "operation": str(self.operation),
            "processed": len(self.outcomes),
            "successful": self.successful,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds, 2),
            "status": self.status,
            "errors": [
                f"#{outcome.index} {outcome.error_type}: {outcome.error_message}"
                for outcome in self.failures()
            ],
        }
