"""Command-line interface for cloudmover.

This module provides the main CLI entry point and assembles all commands.

Commands:
- worker: Run a queue worker until interrupted
- scheduler: Run the task scheduler until interrupted
- run: Run a worker and the scheduler in one process
- purge: Reclaim stale jobs and delete old finished jobs
- jobs: Inspect, enqueue, retry and cancel copy jobs
- tasks: Manage scheduled tasks
- conflicts: List and resolve mirror sync conflicts
"""

from __future__ import annotations

import click

from cloudmover.cli.jobs import jobs
from cloudmover.cli.runtime import purge, run, scheduler, worker
from cloudmover.cli.tasks import conflicts, tasks
from cloudmover.core.config import AppConfig


@click.group()
@click.version_option(package_name="cloudmover")
@click.option("--database-url", envvar="CLOUDMOVER_DATABASE_URL", default=None, help="SQLAlchemy database URL.")
@click.option("--log-level", envvar="CLOUDMOVER_LOG_LEVEL", default=None, help="Log level (default: INFO).")
@click.option("--log-file", envvar="CLOUDMOVER_LOG_FILE", type=click.Path(), default=None, help="Also log to a file.")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, log_level: str | None, log_file: str | None) -> None:
    """cloudmover - Copy, transfer and sync files between cloud storage providers."""
    ctx.ensure_object(dict)
    config = ctx.obj.get("config") or AppConfig.from_env()
    if database_url:
        config.database_url = database_url
    if log_level:
        config.log_level = log_level
    if log_file:
        config.log_file = log_file
    ctx.obj["config"] = config


# Process commands
cli.add_command(worker)
cli.add_command(scheduler)
cli.add_command(run)
cli.add_command(purge)

# Administration commands
cli.add_command(jobs)
cli.add_command(tasks)
cli.add_command(conflicts)


def main() -> None:
    """Console script entry point."""
    cli(obj={})
