"""CLI entry point for bulkops."""

from __future__ import annotations

import click

from bulkops.cli.commands import check_connection, run_sample, show_parallelism


@click.group()
def cli() -> None:
    """Bounded-parallel create, update and delete against Dataverse."""


cli.add_command(run_sample)
cli.add_command(show_parallelism)
cli.add_command(check_connection)
