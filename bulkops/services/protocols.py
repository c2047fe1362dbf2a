"""Service protocols defining the remote data-service contract."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from bulkops.models.record import Record, RecordReference, RequestHints


class AsyncJobProtocol(Protocol):
    """Handle to a server-side asynchronous job."""

    job_id: str

    def poll_until_complete(self) -> str: ...


class DataServiceProtocol(Protocol):
    """Remote data service the batch driver mutates records through.

    One handle is shared read-only by every worker of a batch.
    """

    def is_ready(self) -> bool: ...

    def recommended_parallelism(self) -> int: ...

    def create(self, record: Record, hints: RequestHints | None = None) -> str: ...

    def update(self, record: Record, hints: RequestHints | None = None) -> None: ...

    def delete(self, reference: RecordReference, hints: RequestHints | None = None) -> None: ...

    def bulk_delete(
        self,
        references: list[RecordReference],
        hints: RequestHints | None = None,
    ) -> str: ...

    def submit_async_delete_job(
        self,
        table: str,
        ids: list[str],
        job_name: str,
    ) -> AsyncJobProtocol: ...

    def close(self) -> None: ...


class SchemaProvisionerProtocol(Protocol):
    """Creates and drops the table a sample run works against."""

    def create_table(self, schema_name: str, elastic: bool) -> None: ...

    def drop_table(self, schema_name: str) -> None: ...
