"""Long-running process commands for cloudmover CLI.

Commands:
- worker: Run a queue worker until interrupted
- scheduler: Run the task scheduler until interrupted
- run: Run both in one process
- purge: One-off cleanup of stale and old jobs
"""

from __future__ import annotations

import logging
import signal
import threading

import click

from cloudmover.cli.context import cli_errors, get_config, get_services
from cloudmover.core.logging import setup_logging

logger = logging.getLogger(__name__)


def _wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM."""
    stop = threading.Event()

    def handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)
    while not stop.wait(1.0):
        pass


def _setup(ctx: click.Context) -> None:
    config = get_config(ctx)
    setup_logging(config.log_level, config.log_file)
    logger.info("Using database %s", config.database_url.split("@")[-1])


@click.command()
@click.option("--concurrency", "-c", type=int, default=None, help="Maximum jobs run at once.")
@click.pass_context
def worker(ctx: click.Context, concurrency: int | None) -> None:
    """Run a queue worker until interrupted.

    Several workers can share one database; each job is run by exactly
    one of them.
    """
    if concurrency is not None:
        get_config(ctx).worker.global_concurrency = concurrency
    _setup(ctx)
    services = get_services(ctx)
    services.worker.start()
    _wait_for_shutdown()


@click.command()
@click.pass_context
def scheduler(ctx: click.Context) -> None:
    """Run the task scheduler until interrupted.

    Run a single scheduler per database.
    """
    _setup(ctx)
    services = get_services(ctx)
    services.scheduler.start()
    _wait_for_shutdown()


@click.command()
@click.option("--concurrency", "-c", type=int, default=None, help="Maximum jobs run at once.")
@click.pass_context
def run(ctx: click.Context, concurrency: int | None) -> None:
    """Run a queue worker and the task scheduler until interrupted."""
    if concurrency is not None:
        get_config(ctx).worker.global_concurrency = concurrency
    _setup(ctx)
    services = get_services(ctx)
    services.worker.start()
    services.scheduler.start()
    _wait_for_shutdown()


@click.command()
@click.option(
    "--older-than-hours",
    type=float,
    default=None,
    help="Delete finished jobs older than N hours (default: 24).",
)
@click.pass_context
def purge(ctx: click.Context, older_than_hours: float | None) -> None:
    """Reclaim stale jobs and delete old finished jobs.

    Does what a worker heartbeat does, once. Useful from cron when no
    worker is running.

    Examples:

        cloudmover purge

        cloudmover purge --older-than-hours 1
    """
    config = get_config(ctx)
    retention = older_than_hours * 3600 if older_than_hours is not None else config.worker.terminal_retention
    with cli_errors():
        store = get_services(ctx).store
        reclaimed = store.reclaim_stale(config.worker.stale_lock_threshold)
        purged = store.purge_terminal_jobs(retention)

    click.echo(f"Reclaimed {reclaimed} stale jobs.")
    if purged:
        click.echo(f"Purged {purged} finished jobs.")
    else:
        click.echo("No finished jobs to purge.")
