"""CLI command implementations for bulkops."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import click
from pydantic import ValidationError

from bulkops.core.errors import BulkOpsError
from bulkops.models.config import Config, DeletionMode
from bulkops.utils.logger import configure_logging

if TYPE_CHECKING:
    from bulkops.services.dataverse_client import DataverseClient
    from bulkops.services.in_memory_service import InMemoryDataService


def _get_config(settings_file: str | None = None) -> Config:
    """Load configuration from .env, the environment and appsettings.json."""
    try:
        return Config.from_appsettings(settings_file)
    except FileNotFoundError as exc:
        raise click.UsageError(str(exc)) from exc


def _apply_overrides(config: Config, overrides: dict[str, Any]) -> Config:
    """Layer command-line values over the loaded configuration."""
    if not overrides:
        return config
    try:
        return config.with_overrides(**overrides)
    except ValidationError as exc:
        errors = "; ".join(error["msg"] for error in exc.errors())
        msg = f"invalid option value: {errors}"
        raise click.UsageError(msg) from exc


def _open_service(
    config: Config,
    in_memory: bool,
    latency_ms: int = 0,
) -> DataverseClient | InMemoryDataService:
    """Connect to the configured service, or build an in-memory stand-in."""
    if in_memory:
        from bulkops.services.in_memory_service import InMemoryDataService

        return InMemoryDataService(
            recommended_parallelism=config.max_parallelism or 8,
            latency_seconds=latency_ms / 1000,
            job_poll_interval=0.0,
        )

    if not config.connection_string:
        msg = "CONNECTION_STRING is not set (environment, .env or appsettings.json)"
        raise click.UsageError(msg)

    from bulkops.services.dataverse_client import connect

    return connect(
        config.connection_string,
        settings=config.client_settings(),
        job_poll_interval=config.job_poll_interval_seconds,
        job_poll_max_attempts=config.job_poll_max_attempts,
    )


def _print_summary(title: str, stats: dict[str, Any]) -> None:
    """Print a formatted summary of batch operation results."""
    status = "WARNING" if stats.get("failed") else "SUCCESS"
    click.echo(f"\n[{status}] {title}")
    for key, value in stats.items():
        if key == "errors" and isinstance(value, list):
            if value:
                click.echo(f"  Errors ({len(value)}):")
                for error in value[:10]:
                    click.echo(f"    - {error}")
                if len(value) > 10:
                    click.echo(f"    ... and {len(value) - 10} more")
        else:
            click.echo(f"  {key}: {value}")


_settings_option = click.option(
    "--settings-file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="appsettings.json path (defaults to $DATAVERSE_APPSETTINGS)",
)
_in_memory_option = click.option(
    "--in-memory", is_flag=True, help="Run against the in-memory service instead of Dataverse"
)


@click.command()
@_settings_option
@_in_memory_option
@click.option(
    "--records",
    default=None,
    type=click.IntRange(1, 100_000),
    help="Number of records (default from config)",
)
@click.option("--elastic/--standard", default=None, help="Table type; selects the delete strategy")
@click.option("--bypass-plugins", is_flag=True, help="Bypass custom plug-in execution")
@click.option("--max-parallelism", default=None, type=click.IntRange(min=1), help="Override server DOP")
@click.option(
    "--deletion-mode",
    default=None,
    type=click.Choice([mode.value for mode in DeletionMode]),
    help="Override the delete strategy chosen from the table type",
)
@click.option("--latency-ms", default=0, type=int, help="Simulated latency per call (--in-memory)")
@click.option(
    "--output-format",
    default="summary",
    type=click.Choice(["summary", "json"]),
    help="Output format",
)
@click.option("--show-failures", is_flag=True, help="List individual failure messages")
def run_sample(
    settings_file: str | None,
    in_memory: bool,
    records: int | None,
    elastic: bool | None,
    bypass_plugins: bool,
    max_parallelism: int | None,
    deletion_mode: str | None,
    latency_ms: int,
    output_format: str,
    show_failures: bool,
) -> None:
    """Create, update and delete records in parallel against a sample table."""
    config = _get_config(settings_file)
    overrides: dict[str, Any] = {}
    if records is not None:
        overrides["number_of_records"] = records
    if elastic is not None:
        overrides["use_elastic"] = elastic
    if bypass_plugins:
        overrides["bypass_custom_plugin_execution"] = True
    if max_parallelism is not None:
        overrides["max_parallelism"] = max_parallelism
    if deletion_mode is not None:
        overrides["deletion_mode"] = DeletionMode(deletion_mode)
    config = _apply_overrides(config, overrides)
    configure_logging(config.log_level)

    from bulkops.core.result_aggregation import aggregate_phases, format_run_report
    from bulkops.models.record import RequestHints
    from bulkops.services.batch_driver import BatchMutationDriver
    from bulkops.services.parallel_create_update import ParallelCreateUpdateRunner

    try:
        service = _open_service(config, in_memory, latency_ms)
    except BulkOpsError as exc:
        click.echo(f"[ERROR] {exc}")
        raise SystemExit(1) from exc

    driver = BatchMutationDriver(service, settings=config.driver_settings())
    runner = ParallelCreateUpdateRunner(
        service,
        service,
        driver,
        table_schema_name=config.table_schema_name,
        elastic=config.use_elastic,
        hints=RequestHints(
            tag=config.request_tag,
            bypass_custom_processing=config.bypass_custom_plugin_execution,
        ),
    )

    click.echo(f"[INFO] Running sample with {config.number_of_records} records...")
    try:
        report = runner.run(config.number_of_records)
    except BulkOpsError as exc:
        click.echo(f"[ERROR] {exc}")
        raise SystemExit(1) from exc
    finally:
        service.close()

    if output_format == "json":
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    click.echo(format_run_report(report, show_failures=show_failures))
    totals = aggregate_phases(report.phases)
    if not show_failures:
        totals.pop("errors")
    _print_summary("Sample run complete", totals)


@click.command()
@_settings_option
@_in_memory_option
def show_parallelism(settings_file: str | None, in_memory: bool) -> None:
    """Print the degree of parallelism recommended by the service."""
    config = _get_config(settings_file)
    configure_logging(config.log_level)
    try:
        service = _open_service(config, in_memory)
    except BulkOpsError as exc:
        click.echo(f"[ERROR] {exc}")
        raise SystemExit(1) from exc
    click.echo(f"RecommendedDegreesOfParallelism: {service.recommended_parallelism()}")
    service.close()


@click.command()
@_settings_option
@_in_memory_option
def check_connection(settings_file: str | None, in_memory: bool) -> None:
    """Connect to the service and report whether it is usable."""
    config = _get_config(settings_file)
    configure_logging(config.log_level)

    from bulkops.utils.health_checks import check_service_health

    try:
        service = _open_service(config, in_memory)
    except BulkOpsError as exc:
        click.echo(f"[ERROR] {exc}")
        raise SystemExit(1) from exc

    healthy = check_service_health(service)
    service.close()
    if not healthy:
        click.echo("[ERROR] Service is not usable.")
        raise SystemExit(1)
    click.echo("[SUCCESS] Service is reachable and ready.")
