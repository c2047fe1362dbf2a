"""Deletion strategies, chosen at configuration time from the store's capabilities.

Elastic tables take set-based deletes in a single call (BulkDeleteStrategy).
Standard tables go through an asynchronous BulkDelete system job that is
polled to completion (AsyncJobDeleteStrategy). PerRecordDeleteStrategy sends
one delete per record through the bounded worker pool.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from bulkops.core.errors import RemoteError
from bulkops.models.batch_result import RecordOutcome
from bulkops.models.config import DeletionMode
from bulkops.services.batch_processor import CANCELLED, process_batch

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence

    from bulkops.models.record import Record, RequestHints
    from bulkops.services.protocols import DataServiceProtocol

logger = structlog.get_logger(__name__)

MISSING_IDENTIFIER = "MissingIdentifier"
JOB_SUCCEEDED = "Succeeded"
DEFAULT_JOB_NAME = "Deleting records created by bulkops"


@dataclass
class DeletionOutcome:
    """Index-aligned outcomes of a delete plus the status string the service reported."""

    outcomes: list[RecordOutcome] = field(default_factory=list)
    status: str | None = None


def _partition_persisted(records: Sequence[Record]) -> tuple[list[int], dict[int, RecordOutcome]]:
    """Split record indices into persisted ones and MissingIdentifier failures."""
    persisted: list[int] = []
    missing: dict[int, RecordOutcome] = {}
    for index, record in enumerate(records):
        if record.id is None:
            missing[index] = RecordOutcome.failure(
                index, MISSING_IDENTIFIER, "record has no identifier to delete"
            )
        else:
            persisted.append(index)
    return persisted, missing


def _all_cancelled(records: Sequence[Record]) -> DeletionOutcome:
    return DeletionOutcome(
        outcomes=[
            RecordOutcome.failure(index, CANCELLED, "batch cancelled before dispatch")
            for index in range(len(records))
        ],
        status=CANCELLED,
    )


class DeletionStrategy(ABC):
    """Interchangeable policy for removing a batch of persisted records."""

    name: str = "abstract"

    @abstractmethod
    def delete(
        self,
        service: DataServiceProtocol,
        records: Sequence[Record],
        hints: RequestHints | None,
        max_parallelism: int,
        cancel_event: threading.Event | None = None,
    ) -> DeletionOutcome:
        """Delete the records, returning one outcome per record in input order."""


class BulkDeleteStrategy(DeletionStrategy):
    """One set-based remote call for every persisted record."""

    name = "bulk"

    def delete(
        self,
        service: DataServiceProtocol,
        records: Sequence[Record],
        hints: RequestHints | None,
        max_parallelism: int,
        cancel_event: threading.Event | None = None,
    ) -> DeletionOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return _all_cancelled(records)

        persisted, slots = _partition_persisted(records)
        status: str | None = None
        if persisted:
            references = [records[index].reference() for index in persisted]
            try:
                status = service.bulk_delete(references, hints)
            except RemoteError as exc:
                logger.error("bulk_delete_failed", count=len(references), error=str(exc))
                status = "Failed"
                for index in persisted:
                    slots[index] = RecordOutcome.failure(
                        index,
                        "RemoteError",
                        exc.message,
                        error_code=exc.error_code,
                        record_id=records[index].id,
                    )
            else:
                for index in persisted:
                    slots[index] = RecordOutcome.success(index, records[index].id)

        return DeletionOutcome(outcomes=[slots[i] for i in range(len(records))], status=status)


class AsyncJobDeleteStrategy(DeletionStrategy):
    """Submit a primary-key BulkDelete job per table and poll it to a terminal state.

    JobPollingError from an exhausted poll budget propagates to the caller.
    """

    name = "async_job"

    def __init__(self, job_name: str = DEFAULT_JOB_NAME) -> None:
        self.job_name = job_name

    def delete(
        self,
        service: DataServiceProtocol,
        records: Sequence[Record],
        hints: RequestHints | None,
        max_parallelism: int,
        cancel_event: threading.Event | None = None,
    ) -> DeletionOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return _all_cancelled(records)

        persisted, slots = _partition_persisted(records)
        by_table: dict[str, list[int]] = {}
        for index in persisted:
            by_table.setdefault(records[index].table, []).append(index)

        statuses: list[str] = []
        for table, indices in by_table.items():
            ids = [str(records[index].id) for index in indices]
            try:
                job = service.submit_async_delete_job(table, ids, self.job_name)
            except RemoteError as exc:
                logger.error("bulk_delete_job_rejected", table=table, error=str(exc))
                statuses.append("Failed")
                for index in indices:
                    slots[index] = RecordOutcome.failure(
                        index,
                        "RemoteError",
                        exc.message,
                        error_code=exc.error_code,
                        record_id=records[index].id,
                    )
                continue

            try:
                status = job.poll_until_complete()
            except RemoteError as exc:
                logger.error("bulk_delete_job_poll_failed", table=table, job_id=job.job_id, error=str(exc))
                statuses.append("Failed")
                for index in indices:
                    slots[index] = RecordOutcome.failure(
                        index,
                        "JobFailed",
                        f"bulk delete job {job.job_id} could not be polled: {exc.message}",
                        error_code=exc.error_code,
                        record_id=records[index].id,
                    )
                continue

            statuses.append(status)
            logger.info("bulk_delete_job_finished", table=table, job_id=job.job_id, status=status)
            for index in indices:
                if status == JOB_SUCCEEDED:
                    slots[index] = RecordOutcome.success(index, records[index].id)
                else:
                    slots[index] = RecordOutcome.failure(
                        index,
                        "JobFailed",
                        f"bulk delete job {job.job_id} ended with status {status}",
                        record_id=records[index].id,
                    )

        status_text = ", ".join(dict.fromkeys(statuses)) if statuses else None
        return DeletionOutcome(outcomes=[slots[i] for i in range(len(records))], status=status_text)


class PerRecordDeleteStrategy(DeletionStrategy):
    """One delete call per record through the bounded worker pool."""

    name = "per_record"

    def delete(
        self,
        service: DataServiceProtocol,
        records: Sequence[Record],
        hints: RequestHints | None,
        max_parallelism: int,
        cancel_event: threading.Event | None = None,
    ) -> DeletionOutcome:
        def _delete_one(index: int, record: Record) -> RecordOutcome:
            if record.id is None:
                return RecordOutcome.failure(index, MISSING_IDENTIFIER, "record has no identifier to delete")
            service.delete(record.reference(), hints)
            return RecordOutcome.success(index, record.id)

        outcomes = process_batch(
            records,
            _delete_one,
            max_workers=max_parallelism,
            cancel_event=cancel_event,
            label="delete",
        )
        return DeletionOutcome(outcomes=outcomes)


def select_deletion_strategy(
    use_elastic: bool,
    mode: DeletionMode | None = None,
    job_name: str = DEFAULT_JOB_NAME,
) -> DeletionStrategy:
    """Pick the deletion strategy for a store.

    An explicit mode wins; otherwise elastic stores get BulkDelete and
    standard stores get AsyncJobDelete.
    """
    if mode is None:
        mode = DeletionMode.BULK if use_elastic else DeletionMode.ASYNC_JOB

    if mode == DeletionMode.BULK:
        return BulkDeleteStrategy()
    if mode == DeletionMode.ASYNC_JOB:
        return AsyncJobDeleteStrategy(job_name=job_name)
    return PerRecordDeleteStrategy()
