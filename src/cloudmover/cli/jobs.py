"""Job administration commands for cloudmover CLI.

Commands:
- jobs list: List recent jobs
- jobs show: Show one job
- jobs add: Enqueue a copy job
- jobs retry: Requeue a finished job
- jobs cancel: Request cancellation of a job
"""

from __future__ import annotations

import click

from cloudmover.cli.context import cli_errors, get_services
from cloudmover.core.types import DuplicateAction, ItemType, JobStatus, ProviderName
from cloudmover.store.models import Job

_PROVIDERS = click.Choice([p.value for p in ProviderName])


def _echo_job(job: Job) -> None:
    click.echo(f"Job:        {job.id}")
    click.echo(f"User:       {job.user_id} ({job.user_plan})")
    click.echo(f"Status:     {job.status}")
    click.echo(f"Source:     {job.source_provider} {job.source_url or job.source_file_id or job.source_path}")
    click.echo(f"Dest:       {job.dest_provider} {job.dest_folder_id or '(root)'}")
    click.echo(f"Progress:   {job.completed_files}/{job.total_files} files ({job.progress_pct}%)")
    click.echo(f"Attempts:   {job.attempts}/{job.max_retries}")
    click.echo(f"Next run:   {job.next_run_at.isoformat()}")
    if job.locked_by:
        click.echo(f"Locked by:  {job.locked_by} since {job.locked_at.isoformat() if job.locked_at else '?'}")
    if job.cancel_requested:
        click.echo("Cancel:     requested")
    if job.copied_file_id:
        click.echo(f"Copied:     {job.copied_file_name} ({job.copied_file_id})")
    if job.copied_file_url:
        click.echo(f"URL:        {job.copied_file_url}")
    if job.error_message:
        click.echo(f"Error:      {job.error_message}")


@click.group()
def jobs() -> None:
    """Inspect and manage copy jobs."""


@jobs.command("list")
@click.option("--user", "user_id", default=None, help="Only jobs of this user.")
@click.option("--status", type=click.Choice([s.value for s in JobStatus]), default=None)
@click.option("--limit", type=int, default=20, show_default=True)
@click.pass_context
def list_jobs(ctx: click.Context, user_id: str | None, status: str | None, limit: int) -> None:
    """List recent jobs, newest first."""
    rows = get_services(ctx).store.list_jobs(user_id=user_id, status=status, limit=limit)
    if not rows:
        click.echo("No jobs.")
        return
    for job in rows:
        name = job.source_name or job.source_url or job.source_file_id or job.source_path or "?"
        click.echo(f"{job.id}  {job.status:<11}  {job.progress_pct:>3}%  {job.user_id}  {name}")


@jobs.command("show")
@click.argument("job_id")
@click.pass_context
def show_job(ctx: click.Context, job_id: str) -> None:
    """Show the state of a job."""
    with cli_errors():
        job = get_services(ctx).store.require_job(job_id)
    _echo_job(job)


@jobs.command("add")
@click.option("--user", "user_id", required=True, help="Owner of the job.")
@click.option("--plan", default="free", show_default=True, help="Plan of the owner.")
@click.option("--source-provider", type=_PROVIDERS, required=True)
@click.option("--source-url", default=None, help="Share link of the file or folder.")
@click.option("--source-id", "source_file_id", default=None, help="Provider id or path of the source.")
@click.option("--folder", "is_folder", is_flag=True, help="The source is a folder.")
@click.option("--dest-provider", type=_PROVIDERS, required=True)
@click.option("--dest-folder", "dest_folder_id", default=None, help="Destination folder id or path.")
@click.option(
    "--on-duplicate",
    type=click.Choice([a.value for a in DuplicateAction]),
    default=DuplicateAction.SKIP.value,
    show_default=True,
)
@click.option("--priority", type=int, default=0, show_default=True)
@click.option("--max-retries", type=int, default=5, show_default=True)
@click.pass_context
def add_job(
    ctx: click.Context,
    user_id: str,
    plan: str,
    source_provider: str,
    source_url: str | None,
    source_file_id: str | None,
    is_folder: bool,
    dest_provider: str,
    dest_folder_id: str | None,
    on_duplicate: str,
    priority: int,
    max_retries: int,
) -> None:
    """Enqueue a copy job."""
    if not source_url and not source_file_id:
        raise click.UsageError("Give --source-url or --source-id.")
    with cli_errors():
        job = get_services(ctx).store.create_job(
            user_id,
            source_provider,
            dest_provider,
            user_plan=plan,
            source_url=source_url,
            source_file_id=source_file_id,
            item_type=(ItemType.FOLDER if is_folder else ItemType.FILE).value,
            dest_folder_id=dest_folder_id,
            duplicate_action=on_duplicate,
            priority=priority,
            max_retries=max_retries,
        )
    click.echo(f"Enqueued job {job.id}")


@jobs.command("retry")
@click.argument("job_id")
@click.pass_context
def retry_job(ctx: click.Context, job_id: str) -> None:
    """Requeue a completed or failed job with a fresh retry budget."""
    with cli_errors():
        job = get_services(ctx).store.retry_job(job_id)
    click.echo(f"Job {job.id} requeued.")


@jobs.command("cancel")
@click.argument("job_id")
@click.pass_context
def cancel_job(ctx: click.Context, job_id: str) -> None:
    """Request cancellation of a pending or running job.

    A running job stops at its next checkpoint; a pending job is failed
    as cancelled when a worker picks it up.
    """
    with cli_errors():
        job = get_services(ctx).store.request_cancel(job_id)
    click.echo(f"Cancellation requested for job {job.id} ({job.status}).")
