"""Contract tests for the interchangeable deletion strategies."""

from __future__ import annotations

import threading

import pytest

from bulkops.core.errors import JobPollingError
from bulkops.core.transformers import build_sample_records
from bulkops.models.config import DeletionMode, DriverSettings
from bulkops.models.record import OperationKind, Record, RecordReference
from bulkops.services.batch_driver import BatchMutationDriver, apply_created_ids
from bulkops.services.deletion import (
    AsyncJobDeleteStrategy,
    BulkDeleteStrategy,
    DeletionStrategy,
    PerRecordDeleteStrategy,
    select_deletion_strategy,
)
from bulkops.services.in_memory_service import InMemoryDataService

TABLE = "sample_example"


def _seed(service: InMemoryDataService, count: int) -> list[Record]:
    """Create `count` records and return them with ids applied."""
    records = build_sample_records(TABLE, count)
    result = BatchMutationDriver(service).execute(records, OperationKind.CREATE)
    apply_created_ids(records, result)
    return records


class TestSelection:
    def test_elastic_selects_bulk(self) -> None:
        assert isinstance(select_deletion_strategy(use_elastic=True), BulkDeleteStrategy)

    def test_standard_selects_async_job(self) -> None:
        strategy = select_deletion_strategy(use_elastic=False, job_name="cleanup")
        assert isinstance(strategy, AsyncJobDeleteStrategy)
        assert strategy.job_name == "cleanup"

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            (DeletionMode.BULK, BulkDeleteStrategy),
            (DeletionMode.ASYNC_JOB, AsyncJobDeleteStrategy),
            (DeletionMode.PER_RECORD, PerRecordDeleteStrategy),
        ],
    )
    def test_explicit_mode_wins(self, mode: DeletionMode, expected: type[DeletionStrategy]) -> None:
        assert isinstance(select_deletion_strategy(use_elastic=True, mode=mode), expected)

    def test_driver_builds_strategy_from_settings(self, service: InMemoryDataService) -> None:
        driver = BatchMutationDriver(service, settings=DriverSettings(use_elastic=True))
        assert driver.deletion_strategy.name == "bulk"


class TestEquivalence:
    @pytest.mark.parametrize(
        "strategy",
        [BulkDeleteStrategy(), AsyncJobDeleteStrategy(), PerRecordDeleteStrategy()],
        ids=["bulk", "async_job", "per_record"],
    )
    def test_removes_exactly_the_given_records(self, strategy: DeletionStrategy) -> None:
        svc = InMemoryDataService()
        records = _seed(svc, 12)
        keep = records[8:]

        result = BatchMutationDriver(svc, deletion_strategy=strategy).execute(records[:8], OperationKind.DELETE)

        assert result.successful == 8
        assert set(svc.rows(TABLE)) == {record.id for record in keep}

    def test_bulk_and_async_leave_same_state(self) -> None:
        bulk_svc = InMemoryDataService()
        async_svc = InMemoryDataService()
        bulk_records = _seed(bulk_svc, 10)
        async_records = _seed(async_svc, 10)

        BatchMutationDriver(bulk_svc, deletion_strategy=BulkDeleteStrategy()).execute(
            bulk_records[::2], OperationKind.DELETE
        )
        BatchMutationDriver(async_svc, deletion_strategy=AsyncJobDeleteStrategy()).execute(
            async_records[::2], OperationKind.DELETE
        )

        remaining_bulk = sorted(row["sample_name"] for row in bulk_svc.rows(TABLE).values())
        remaining_async = sorted(row["sample_name"] for row in async_svc.rows(TABLE).values())
        assert remaining_bulk == remaining_async
        assert len(remaining_bulk) == 5


class TestBulkDelete:
    def test_single_remote_call(self, service: InMemoryDataService) -> None:
        records = _seed(service, 25)
        result = BatchMutationDriver(service, deletion_strategy=BulkDeleteStrategy()).execute(
            records, OperationKind.DELETE
        )

        assert service.calls["bulk_delete"] == 1
        assert result.status == "Succeeded"
        assert [o.record_id for o in result.outcomes] == [r.id for r in records]

    def test_remote_failure_marks_every_record(self) -> None:
        svc = InMemoryDataService(
            fail_when=lambda op, target: isinstance(target, RecordReference) and op == OperationKind.DELETE
        )
        records = _seed(svc, 5)

        result = BatchMutationDriver(svc, deletion_strategy=BulkDeleteStrategy()).execute(
            records, OperationKind.DELETE
        )

        assert result.failed == 5
        assert result.status == "Failed"
        assert len(svc.rows(TABLE)) == 5

    def test_unpersisted_records_fail_individually(self, service: InMemoryDataService) -> None:
        records = _seed(service, 3)
        records.append(Record(table=TABLE, fields={"sample_name": "never created"}))

        result = BatchMutationDriver(service, deletion_strategy=BulkDeleteStrategy()).execute(
            records, OperationKind.DELETE
        )

        assert result.successful == 3
        assert result.outcomes[3].error_type == "MissingIdentifier"

    def test_cancelled_before_call(self, service: InMemoryDataService) -> None:
        records = _seed(service, 3)
        cancel = threading.Event()
        cancel.set()

        result = BatchMutationDriver(service, deletion_strategy=BulkDeleteStrategy()).execute(
            records, OperationKind.DELETE, cancel_event=cancel
        )

        assert result.failed == 3
        assert service.calls["bulk_delete"] == 0


class TestAsyncJobDelete:
    def test_polls_until_complete(self) -> None:
        svc = InMemoryDataService(job_polls_to_complete=3)
        records = _seed(svc, 4)

        result = BatchMutationDriver(svc, deletion_strategy=AsyncJobDeleteStrategy()).execute(
            records, OperationKind.DELETE
        )

        assert result.status == "Succeeded"
        assert result.successful == 4
        assert svc.rows(TABLE) == {}

    def test_failed_job_yields_failures(self) -> None:
        svc = InMemoryDataService(job_final_status="Failed")
        records = _seed(svc, 4)

        result = BatchMutationDriver(svc, deletion_strategy=AsyncJobDeleteStrategy()).execute(
            records, OperationKind.DELETE
        )

        assert result.status == "Failed"
        assert {o.error_type for o in result.outcomes} == {"JobFailed"}
        assert len(svc.rows(TABLE)) == 4

    def test_exhausted_poll_budget_raises(self) -> None:
        svc = InMemoryDataService(job_polls_to_complete=50, job_poll_max_attempts=3)
        records = _seed(svc, 2)

        with pytest.raises(JobPollingError) as exc_info:
            BatchMutationDriver(svc, deletion_strategy=AsyncJobDeleteStrategy()).execute(
                records, OperationKind.DELETE
            )

        assert exc_info.value.attempts == 3
        assert len(svc.rows(TABLE)) == 2
