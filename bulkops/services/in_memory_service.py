"""In-memory data service implementing the same contract as the Web API client.

Used for dry runs of the sample workflow and as the instrumented fake in tests:
it simulates per-call latency, injects failures, and records the highest number
of calls it saw in flight at once.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import RetryError

from bulkops.core.errors import (
    TRANSPORT_ERROR,
    JobPollingError,
    ProvisioningError,
    RemoteError,
    ServiceConnectionError,
)
from bulkops.models.record import OperationKind, Record, RecordReference, RequestHints
from bulkops.utils.retry import poll_until

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

logger = structlog.get_logger(__name__)


class InMemoryAsyncJob:
    """Bulk delete job that completes after a fixed number of polls."""

    def __init__(
        self,
        service: InMemoryDataService,
        table: str,
        ids: list[str],
        polls_to_complete: int,
        final_status: str,
        poll_interval: float,
        max_attempts: int,
    ) -> None:
        self.service = service
        self.job_id = str(uuid.uuid4())
        self.table = table
        self.ids = ids
        self.polls_to_complete = polls_to_complete
        self.final_status = final_status
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.polls = 0

    def fetch_state(self) -> dict[str, Any]:
        self.polls += 1
        if self.polls < self.polls_to_complete:
            return {"completed": False, "status": "InProgress"}
        if self.final_status == "Succeeded":
            self.service.remove_ids(self.table, self.ids)
        return {"completed": True, "status": self.final_status}

    def poll_until_complete(self) -> str:
        try:
            state = poll_until(
                self.fetch_state,
                lambda body: bool(body["completed"]),
                interval=self.poll_interval,
                max_attempts=self.max_attempts,
            )
        except RetryError as exc:
            raise JobPollingError(self.job_id, "InProgress", self.max_attempts) from exc
        return str(state["status"])


class InMemoryDataService:
    """Thread-safe record store with simulated latency and failure injection."""

    def __init__(
        self,
        recommended_parallelism: int = 4,
        latency_seconds: float = 0.0,
        fail_when: Callable[[OperationKind, Record | RecordReference], bool] | None = None,
        require_tables: bool = False,
        job_polls_to_complete: int = 1,
        job_final_status: str = "Succeeded",
        job_poll_interval: float = 0.0,
        job_poll_max_attempts: int = 10,
    ) -> None:
        self._recommended_parallelism = recommended_parallelism
        self.latency_seconds = latency_seconds
        self.fail_when = fail_when
        self.require_tables = require_tables
        self.job_polls_to_complete = job_polls_to_complete
        self.job_final_status = job_final_status
        self.job_poll_interval = job_poll_interval
        self.job_poll_max_attempts = job_poll_max_attempts

        self._lock = threading.Lock()
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}
        self._elastic: dict[str, bool] = {}
        self._connected = True
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: Counter[str] = Counter()
        self.received_hints: list[RequestHints | None] = []

    # --- instrumentation ---

    @contextmanager
    def _remote_call(self, name: str, hints: RequestHints | None = None) -> Generator[None, None, None]:
        with self._lock:
            if not self._connected:
                msg = "in-memory service is disconnected"
                raise RemoteError(msg, error_code=TRANSPORT_ERROR)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls[name] += 1
            self.received_hints.append(hints)
        try:
            if self.latency_seconds:
                time.sleep(self.latency_seconds)
            yield
        finally:
            with self._lock:
                self.in_flight -= 1

    def _check_failure(self, operation: OperationKind, target: Record | RecordReference) -> None:
        if self.fail_when is not None and self.fail_when(operation, target):
            msg = f"injected {operation} failure"
            raise RemoteError(msg, error_code="InjectedFailure", status_code=500)

    def _table(self, name: str) -> dict[str, dict[str, Any]]:
        if name not in self._tables:
            if self.require_tables:
                msg = f"table {name} does not exist"
                raise RemoteError(msg, error_code="TableNotFound", status_code=404)
            self._tables[name] = {}
        return self._tables[name]

    # --- connection ---

    def is_ready(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        """Simulate loss of connectivity."""
        self._connected = False

    def recommended_parallelism(self) -> int:
        if not self._connected:
            msg = "in-memory service is disconnected"
            raise ServiceConnectionError(msg)
        return self._recommended_parallelism

    def close(self) -> None:
        self._connected = False

    # --- record operations ---

    def create(self, record: Record, hints: RequestHints | None = None) -> str:
        with self._remote_call("create", hints):
            self._check_failure(OperationKind.CREATE, record)
            record_id = record.id or str(uuid.uuid4())
            with self._lock:
                self._table(record.table)[record_id] = dict(record.fields)
            return record_id

    def update(self, record: Record, hints: RequestHints | None = None) -> None:
        reference = record.reference()
        with self._remote_call("update", hints):
            self._check_failure(OperationKind.UPDATE, record)
            with self._lock:
                rows = self._table(reference.table)
                if reference.id not in rows:
                    msg = f"record {reference.id} does not exist"
                    raise RemoteError(msg, error_code="RecordNotFound", status_code=404)
                rows[reference.id].update(record.fields)

    def delete(self, reference: RecordReference, hints: RequestHints | None = None) -> None:
        with self._remote_call("delete", hints):
            self._check_failure(OperationKind.DELETE, reference)
            with self._lock:
                rows = self._table(reference.table)
                if rows.pop(reference.id, None) is None:
                    msg = f"record {reference.id} does not exist"
                    raise RemoteError(msg, error_code="RecordNotFound", status_code=404)

    def bulk_delete(
        self,
        references: list[RecordReference],
        hints: RequestHints | None = None,
    ) -> str:
        with self._remote_call("bulk_delete", hints):
            for reference in references:
                self._check_failure(OperationKind.DELETE, reference)
            with self._lock:
                missing = [
                    ref.id for ref in references if ref.id not in self._table(ref.table)
                ]
                if missing:
                    msg = f"{len(missing)} records do not exist"
                    raise RemoteError(msg, error_code="RecordNotFound", status_code=404)
                for ref in references:
                    del self._tables[ref.table][ref.id]
        return "Succeeded"

    def submit_async_delete_job(self, table: str, ids: list[str], job_name: str) -> InMemoryAsyncJob:
        with self._remote_call("submit_async_delete_job"):
            logger.info("in_memory_job_submitted", table=table, count=len(ids), job_name=job_name)
            return InMemoryAsyncJob(
                self,
                table,
                list(ids),
                polls_to_complete=self.job_polls_to_complete,
                final_status=self.job_final_status,
                poll_interval=self.job_poll_interval,
                max_attempts=self.job_poll_max_attempts,
            )

    def remove_ids(self, table: str, ids: list[str]) -> None:
        with self._lock:
            rows = self._table(table)
            for record_id in ids:
                rows.pop(record_id, None)

    # --- schema provisioning ---

    def create_table(self, schema_name: str, elastic: bool) -> None:
        if not self._connected:
            msg = f"cannot create table {schema_name}: disconnected"
            raise ProvisioningError(msg)
        with self._lock:
            self._tables.setdefault(schema_name.lower(), {})
            self._elastic[schema_name.lower()] = elastic

    def drop_table(self, schema_name: str) -> None:
        with self._lock:
            self._tables.pop(schema_name.lower(), None)
            self._elastic.pop(schema_name.lower(), None)

    # --- inspection ---

    def has_table(self, name: str) -> bool:
        return name.lower() in self._tables

    def is_elastic(self, name: str) -> bool:
        return self._elastic.get(name.lower(), False)

    def rows(self, table: str) -> dict[str, dict[str, Any]]:
        """Snapshot of the stored rows of a table."""
        with self._lock:
            return {key: dict(value) for key, value in self._tables.get(table, {}).items()}
