"""Bounded-parallel batch mutation driver."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from bulkops.core.errors import ServiceConnectionError
from bulkops.models.batch_result import BatchResult, RecordOutcome
from bulkops.models.config import DriverSettings
from bulkops.models.record import BatchRequest, OperationKind, Record
from bulkops.services.batch_processor import process_batch
from bulkops.services.deletion import MISSING_IDENTIFIER, select_deletion_strategy

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence

    from bulkops.models.record import RequestHints
    from bulkops.services.deletion import DeletionStrategy
    from bulkops.services.protocols import DataServiceProtocol

logger = structlog.get_logger(__name__)


class BatchMutationDriver:
    """Applies one mutation to every record of a batch with bounded concurrency.

    Create and update issue one remote call per record; delete is handed to
    the configured DeletionStrategy. Per-record failures end up in the result,
    never as exceptions. The service handle is shared read-only by the workers.
    """

    def __init__(
        self,
        service: DataServiceProtocol,
        deletion_strategy: DeletionStrategy | None = None,
        settings: DriverSettings | None = None,
    ) -> None:
        self.service = service
        self.settings = settings or DriverSettings()
        self.deletion_strategy = deletion_strategy or select_deletion_strategy(
            self.settings.use_elastic,
            mode=self.settings.deletion_mode,
            job_name=self.settings.delete_job_name,
        )

    def resolve_parallelism(self, max_parallelism: int | None = None) -> int:
        """Explicit argument, then configured value, then the server's recommendation."""
        value = max_parallelism or self.settings.max_parallelism or self.service.recommended_parallelism()
        if value < 1:
            msg = "max_parallelism must be at least 1"
            raise ValueError(msg)
        return value

    def submit(
        self,
        request: BatchRequest,
        max_parallelism: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Execute an immutable BatchRequest."""
        return self.execute(
            request.records,
            request.operation,
            max_parallelism=max_parallelism,
            hints=request.hints,
            cancel_event=cancel_event,
        )

    def execute(
        self,
        records: Sequence[Record],
        operation: OperationKind,
        max_parallelism: int | None = None,
        hints: RequestHints | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Run `operation` over every record and return index-aligned outcomes.

        Raises ValueError for a parallelism below 1 and ServiceConnectionError
        when the service is unusable before anything is dispatched.
        """
        if records is None:
            msg = "records must not be None"
            raise ValueError(msg)
        if max_parallelism is not None and max_parallelism < 1:
            msg = "max_parallelism must be at least 1"
            raise ValueError(msg)

        operation = OperationKind(operation)
        records = list(records)
        if not records:
            return BatchResult(operation=operation, max_parallelism=max_parallelism)

        if not self.service.is_ready():
            msg = f"service is not connected; {operation} batch of {len(records)} not started"
            raise ServiceConnectionError(msg)

        parallelism = self.resolve_parallelism(max_parallelism)
        logger.info(
            "batch_started",
            operation=str(operation),
            records=len(records),
            max_parallelism=parallelism,
        )

        start = time.monotonic()
        status: str | None = None
        if operation == OperationKind.DELETE:
            deletion = self.deletion_strategy.delete(
                self.service,
                records,
                hints,
                parallelism,
                cancel_event=cancel_event,
            )
            outcomes = deletion.outcomes
            status = deletion.status
        else:
            outcomes = process_batch(
                records,
                self._record_fn(operation, hints),
                max_workers=parallelism,
                cancel_event=cancel_event,
                label=str(operation),
                progress_every=self.settings.progress_every,
            )

        result = BatchResult(
            operation=operation,
            outcomes=outcomes,
            duration_seconds=time.monotonic() - start,
            max_parallelism=parallelism,
            status=status,
        )
        logger.info(
            "batch_completed",
            operation=str(operation),
            successful=result.successful,
            failed=result.failed,
            duration_seconds=round(result.duration_seconds, 2),
            status=status,
        )
        return result

    def _record_fn(
        self,
        operation: OperationKind,
        hints: RequestHints | None,
    ) -> Callable[[int, Record], RecordOutcome]:
        """Per-record worker body for create or update."""
        service = self.service

        def _create(index: int, record: Record) -> RecordOutcome:
            return RecordOutcome.success(index, service.create(record, hints))

        def _update(index: int, record: Record) -> RecordOutcome:
            if record.id is None:
                return RecordOutcome.failure(index, MISSING_IDENTIFIER, "record has no identifier to update")
            service.update(record, hints)
            return RecordOutcome.success(index, record.id)

        return _create if operation == OperationKind.CREATE else _update


def apply_created_ids(records: Sequence[Record], result: BatchResult) -> int:
    """Write server-assigned ids from a create result back onto the caller's records.

    Returns the number of records that received an id.
    """
    if len(records) != len(result.outcomes):
        msg = f"result has {len(result.outcomes)} outcomes for {len(records)} records"
        raise ValueError(msg)
    assigned = 0
    for record, outcome in zip(records, result.outcomes, strict=True):
        if outcome.succeeded and outcome.record_id is not None:
            record.id = outcome.record_id
            assigned += 1
    return assigned
