"""Contract tests for BatchMutationDriver against the instrumented in-memory service."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import pytest

from bulkops.core.errors import ServiceConnectionError
from bulkops.core.transformers import build_sample_records, mark_records_updated
from bulkops.models.batch_result import OutcomeStatus
from bulkops.models.config import DriverSettings
from bulkops.models.record import BatchRequest, OperationKind, Record, RequestHints
from bulkops.services.batch_driver import BatchMutationDriver, apply_created_ids
from bulkops.services.deletion import PerRecordDeleteStrategy
from bulkops.services.in_memory_service import InMemoryDataService

if TYPE_CHECKING:
    from bulkops.models.record import RecordReference

TABLE = "sample_example"


def _fail_record_named(name: str):
    def predicate(operation: OperationKind, target: Record | RecordReference) -> bool:
        return isinstance(target, Record) and target.fields.get("sample_name") == name

    return predicate


# ---------------------------------------------------------------------------
# Result shape
# ---------------------------------------------------------------------------


class TestResultShape:
    @pytest.mark.parametrize("count", [0, 1, 7, 50])
    def test_one_outcome_per_record_in_input_order(
        self, service: InMemoryDataService, count: int
    ) -> None:
        records = build_sample_records(TABLE, count)
        result = BatchMutationDriver(service).execute(records, OperationKind.CREATE, max_parallelism=4)

        assert len(result.outcomes) == count
        assert [outcome.index for outcome in result.outcomes] == list(range(count))

    def test_empty_input_makes_no_remote_calls(self, service: InMemoryDataService) -> None:
        result = BatchMutationDriver(service).execute([], OperationKind.CREATE)
        assert result.outcomes == []
        assert sum(service.calls.values()) == 0

    def test_created_ids_match_stored_rows(
        self, service: InMemoryDataService, sample_records: list[Record]
    ) -> None:
        result = BatchMutationDriver(service).execute(sample_records, OperationKind.CREATE)

        rows = service.rows(TABLE)
        for record, outcome in zip(sample_records, result.outcomes, strict=True):
            assert outcome.record_id in rows
            assert rows[outcome.record_id]["sample_name"] == record.fields["sample_name"]

    def test_index_alignment_with_out_of_order_completion(self) -> None:
        # Earlier records take longer so completions arrive in reverse order
        class SlowFirstService(InMemoryDataService):
            def create(self, record: Record, hints: RequestHints | None = None) -> str:
                number = int(record.fields["sample_name"].split()[-1])
                time.sleep(0.005 * (20 - number))
                return super().create(record, hints)

        svc = SlowFirstService()
        records = build_sample_records(TABLE, 20)
        result = BatchMutationDriver(svc).execute(records, OperationKind.CREATE, max_parallelism=20)

        rows = svc.rows(TABLE)
        for index, outcome in enumerate(result.outcomes):
            assert outcome.index == index
            assert rows[outcome.record_id]["sample_name"] == records[index].fields["sample_name"]

    def test_driver_does_not_assign_ids(
        self, service: InMemoryDataService, sample_records: list[Record]
    ) -> None:
        BatchMutationDriver(service).execute(sample_records, OperationKind.CREATE)
        assert all(record.id is None for record in sample_records)


# ---------------------------------------------------------------------------
# Bounded parallelism
# ---------------------------------------------------------------------------


class TestBoundedParallelism:
    @pytest.mark.parametrize("limit", [1, 3, 8])
    def test_never_exceeds_limit(self, limit: int) -> None:
        svc = InMemoryDataService(latency_seconds=0.01)
        records = build_sample_records(TABLE, 40)
        BatchMutationDriver(svc).execute(records, OperationKind.CREATE, max_parallelism=limit)

        assert 1 <= svc.max_in_flight <= limit

    def test_limit_is_reached_under_latency(self) -> None:
        svc = InMemoryDataService(latency_seconds=0.05)
        records = build_sample_records(TABLE, 16)
        BatchMutationDriver(svc).execute(records, OperationKind.CREATE, max_parallelism=4)

        assert svc.max_in_flight == 4

    def test_defaults_to_recommended_parallelism(self) -> None:
        svc = InMemoryDataService(recommended_parallelism=3, latency_seconds=0.02)
        records = build_sample_records(TABLE, 12)
        result = BatchMutationDriver(svc).execute(records, OperationKind.CREATE)

        assert result.max_parallelism == 3
        assert svc.max_in_flight <= 3

    def test_configured_parallelism_beats_recommendation(self, service: InMemoryDataService) -> None:
        driver = BatchMutationDriver(service, settings=DriverSettings(max_parallelism=2))
        assert driver.resolve_parallelism() == 2
        assert driver.resolve_parallelism(6) == 6

    def test_zero_parallelism_rejected(
        self, service: InMemoryDataService, sample_records: list[Record]
    ) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            BatchMutationDriver(service).execute(sample_records, OperationKind.CREATE, max_parallelism=0)

    def test_hundred_records_at_eight_wide(self) -> None:
        svc = InMemoryDataService(latency_seconds=0.05)
        records = build_sample_records(TABLE, 100)

        result = BatchMutationDriver(svc).execute(records, OperationKind.CREATE, max_parallelism=8)

        assert result.successful == 100
        # 13 waves of 50ms; generous slack for slow CI machines
        assert 0.6 <= result.duration_seconds < 3.0

    def test_sequential_matches_parallel(self) -> None:
        sequential_svc = InMemoryDataService()
        parallel_svc = InMemoryDataService()
        records_a = build_sample_records(TABLE, 25)
        records_b = build_sample_records(TABLE, 25)

        seq = BatchMutationDriver(sequential_svc).execute(records_a, OperationKind.CREATE, max_parallelism=1)
        par = BatchMutationDriver(parallel_svc).execute(records_b, OperationKind.CREATE, max_parallelism=8)

        assert sequential_svc.max_in_flight == 1
        assert [o.status for o in seq.outcomes] == [o.status for o in par.outcomes]
        assert sorted(r["sample_name"] for r in sequential_svc.rows(TABLE).values()) == sorted(
            r["sample_name"] for r in parallel_svc.rows(TABLE).values()
        )


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    def test_one_failure_among_ten(self, sample_records: list[Record]) -> None:
        svc = InMemoryDataService(fail_when=_fail_record_named("sample record 0000004"))

        result = BatchMutationDriver(svc).execute(sample_records, OperationKind.CREATE, max_parallelism=4)

        assert result.successful == 9
        assert result.failed == 1
        failure = result.outcomes[3]
        assert failure.status == OutcomeStatus.FAILURE
        assert failure.error_type == "RemoteError"
        assert failure.error_code == "InjectedFailure"
        assert len(svc.rows(TABLE)) == 9

    def test_unexpected_exception_is_captured(self, sample_records: list[Record]) -> None:
        class BrokenService(InMemoryDataService):
            def create(self, record: Record, hints: RequestHints | None = None) -> str:
                if record.fields["sample_name"].endswith("2"):
                    msg = "boom"
                    raise RuntimeError(msg)
                return super().create(record, hints)

        result = BatchMutationDriver(BrokenService()).execute(sample_records, OperationKind.CREATE)

        assert result.failed == 1
        assert result.outcomes[1].error_type == "RuntimeError"
        assert result.outcomes[1].error_message == "boom"

    def test_update_without_id_fails_without_remote_call(self, service: InMemoryDataService) -> None:
        records = build_sample_records(TABLE, 3)
        result = BatchMutationDriver(service).execute(records, OperationKind.UPDATE)

        assert result.failed == 3
        assert {o.error_type for o in result.outcomes} == {"MissingIdentifier"}
        assert service.calls["update"] == 0

    def test_disconnected_service_is_fatal(
        self, service: InMemoryDataService, sample_records: list[Record]
    ) -> None:
        service.disconnect()
        with pytest.raises(ServiceConnectionError):
            BatchMutationDriver(service).execute(sample_records, OperationKind.CREATE)
        assert sum(service.calls.values()) == 0

    def test_failures_are_not_retried(self, sample_records: list[Record]) -> None:
        svc = InMemoryDataService(fail_when=_fail_record_named("sample record 0000001"))
        BatchMutationDriver(svc).execute(sample_records, OperationKind.CREATE)
        assert svc.calls["create"] == len(sample_records)


# ---------------------------------------------------------------------------
# Update semantics, hints, cancellation
# ---------------------------------------------------------------------------


class TestUpdateAndHints:
    def test_repeated_update_succeeds(self, service: InMemoryDataService) -> None:
        records = build_sample_records(TABLE, 1)
        driver = BatchMutationDriver(service)
        apply_created_ids(records, driver.execute(records, OperationKind.CREATE))

        mark_records_updated(records)
        first = driver.execute(records, OperationKind.UPDATE)
        mark_records_updated(records)
        second = driver.execute(records, OperationKind.UPDATE)

        assert first.successful == 1
        assert second.successful == 1
        assert service.rows(TABLE)[records[0].id]["sample_name"] == "sample record 0000001 Updated Updated"

    def test_hints_reach_every_call(self, service: InMemoryDataService, sample_records: list[Record]) -> None:
        hints = RequestHints(tag="ParallelCreateUpdate", bypass_custom_processing=True)
        BatchMutationDriver(service).execute(sample_records, OperationKind.CREATE, hints=hints)

        assert len(service.received_hints) == len(sample_records)
        assert all(received == hints for received in service.received_hints)

    def test_submit_batch_request(self, service: InMemoryDataService, sample_records: list[Record]) -> None:
        request = BatchRequest(records=tuple(sample_records), operation=OperationKind.CREATE)
        result = BatchMutationDriver(service).submit(request, max_parallelism=2)
        assert result.successful == len(sample_records)
        assert result.operation == OperationKind.CREATE


class TestCancellation:
    def test_cancel_before_start_dispatches_nothing(
        self, service: InMemoryDataService, sample_records: list[Record]
    ) -> None:
        cancel = threading.Event()
        cancel.set()

        result = BatchMutationDriver(service).execute(sample_records, OperationKind.CREATE, cancel_event=cancel)

        assert result.failed == len(sample_records)
        assert {o.error_type for o in result.outcomes} == {"Cancelled"}
        assert service.calls["create"] == 0

    def test_cancel_mid_batch_lets_in_flight_calls_finish(self) -> None:
        cancel = threading.Event()

        class CancellingService(InMemoryDataService):
            def create(self, record: Record, hints: RequestHints | None = None) -> str:
                record_id = super().create(record, hints)
                cancel.set()
                return record_id

        svc = CancellingService(latency_seconds=0.02)
        records = build_sample_records(TABLE, 30)
        result = BatchMutationDriver(svc).execute(
            records, OperationKind.CREATE, max_parallelism=2, cancel_event=cancel
        )

        assert len(result.outcomes) == 30
        assert 1 <= result.successful <= 2
        assert result.successful == svc.calls["create"]
        assert result.successful + sum(1 for o in result.outcomes if o.error_type == "Cancelled") == 30


class TestApplyCreatedIds:
    def test_assigns_only_successful_ids(self, sample_records: list[Record]) -> None:
        svc = InMemoryDataService(fail_when=_fail_record_named("sample record 0000010"))
        result = BatchMutationDriver(svc).execute(sample_records, OperationKind.CREATE)

        assigned = apply_created_ids(sample_records, result)

        assert assigned == 9
        assert sample_records[9].id is None
        assert all(record.id for record in sample_records[:9])

    def test_length_mismatch_rejected(self, service: InMemoryDataService, sample_records: list[Record]) -> None:
        result = BatchMutationDriver(service).execute(sample_records[:2], OperationKind.CREATE)
        with pytest.raises(ValueError, match="outcomes"):
            apply_created_ids(sample_records, result)


class TestPerRecordDeleteThroughDriver:
    def test_delete_respects_limit(self) -> None:
        svc = InMemoryDataService(latency_seconds=0.01)
        records = build_sample_records(TABLE, 20)
        driver = BatchMutationDriver(svc, deletion_strategy=PerRecordDeleteStrategy())
        apply_created_ids(records, driver.execute(records, OperationKind.CREATE, max_parallelism=2))

        result = driver.execute(records, OperationKind.DELETE, max_parallelism=2)

        assert result.successful == 20
        assert svc.calls["delete"] == 20
        assert svc.max_in_flight <= 2
        assert svc.rows(TABLE) == {}
