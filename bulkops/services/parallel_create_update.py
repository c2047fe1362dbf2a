"""End-to-end create, update and delete run against a freshly provisioned table."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from bulkops.core.errors import JobPollingError
from bulkops.core.result_aggregation import summarize_phase
from bulkops.core.transformers import build_sample_records, mark_records_updated
from bulkops.models.record import OperationKind, RequestHints
from bulkops.models.run_report import PhaseSummary, SampleRunReport
from bulkops.services.batch_driver import BatchMutationDriver, apply_created_ids

if TYPE_CHECKING:
    import threading

    from bulkops.services.protocols import DataServiceProtocol, SchemaProvisionerProtocol

logger = structlog.get_logger(__name__)


class ParallelCreateUpdateRunner:
    """Provision a table, push N records through create, update and delete, then drop it.

    Provisioning failures are fatal. A delete job that never finishes is
    recorded on the delete phase and the table is still dropped.
    """

    def __init__(
        self,
        service: DataServiceProtocol,
        provisioner: SchemaProvisionerProtocol,
        driver: BatchMutationDriver,
        table_schema_name: str = "sample_Example",
        elastic: bool = False,
        hints: RequestHints | None = None,
    ) -> None:
        self.service = service
        self.provisioner = provisioner
        self.driver = driver
        self.table_schema_name = table_schema_name
        self.table_logical_name = table_schema_name.lower()
        self.elastic = elastic
        self.hints = hints or RequestHints()

    def run(
        self,
        number_of_records: int,
        max_parallelism: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SampleRunReport:
        recommended = self.service.recommended_parallelism()
        parallelism = self.driver.resolve_parallelism(max_parallelism)
        logger.info(
            "sample_run_started",
            table=self.table_logical_name,
            records=number_of_records,
            recommended_parallelism=recommended,
            max_parallelism=parallelism,
            deletion_strategy=self.driver.deletion_strategy.name,
        )

        report = SampleRunReport(
            table_logical_name=self.table_logical_name,
            elastic=self.elastic,
            deletion_strategy=self.driver.deletion_strategy.name,
            recommended_parallelism=recommended,
            max_parallelism=parallelism,
        )

        self.provisioner.create_table(self.table_schema_name, self.elastic)
        try:
            self._run_phases(report, number_of_records, parallelism, cancel_event)
        finally:
            self.provisioner.drop_table(self.table_schema_name)

        logger.info("sample_run_completed", table=self.table_logical_name, failed=report.total_failed)
        return report

    def _run_phases(
        self,
        report: SampleRunReport,
        number_of_records: int,
        parallelism: int,
        cancel_event: threading.Event | None,
    ) -> None:
        records = build_sample_records(self.table_logical_name, number_of_records)

        created = self.driver.execute(
            records,
            OperationKind.CREATE,
            max_parallelism=parallelism,
            hints=self.hints,
            cancel_event=cancel_event,
        )
        apply_created_ids(records, created)
        report.phases.append(summarize_phase("create", created))

        # Only records that exist on the server continue to update and delete
        persisted = [record for record in records if record.id is not None]
        mark_records_updated(persisted)

        updated = self.driver.execute(
            persisted,
            OperationKind.UPDATE,
            max_parallelism=parallelism,
            hints=self.hints,
            cancel_event=cancel_event,
        )
        report.phases.append(summarize_phase("update", updated))

        try:
            deleted = self.driver.execute(
                persisted,
                OperationKind.DELETE,
                max_parallelism=parallelism,
                hints=self.hints,
                cancel_event=cancel_event,
            )
        except JobPollingError as exc:
            logger.error("delete_job_polling_failed", job_id=exc.job_id, error=str(exc))
            report.phases.append(
                PhaseSummary(
                    phase="delete",
                    records=len(persisted),
                    successful=0,
                    failed=len(persisted),
                    duration_seconds=0.0,
                    status="PollingTimedOut",
                    errors=[str(exc)],
                )
            )
            return
        report.phases.append(summarize_phase("delete", deleted))
