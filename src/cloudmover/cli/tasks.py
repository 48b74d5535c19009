"""Scheduled task and conflict commands for cloudmover CLI.

Commands:
- tasks list / create / pause / resume / delete / run: Manage scheduled tasks
- conflicts list / resolve: Review mirror sync conflicts
"""

from __future__ import annotations

import click

from cloudmover.cli.context import cli_errors, get_services
from cloudmover.core.types import ConflictResolution, DuplicateAction, Frequency, ItemType, ProviderName, SyncMode
from cloudmover.scheduler.recurrence import describe_schedule

_PROVIDERS = click.Choice([p.value for p in ProviderName])


@click.group()
def tasks() -> None:
    """Manage scheduled copy and sync tasks."""


@tasks.command("list")
@click.option("--user", "user_id", default=None, help="Only tasks of this user.")
@click.option("--all", "include_deleted", is_flag=True, help="Include deleted tasks.")
@click.pass_context
def list_tasks(ctx: click.Context, user_id: str | None, include_deleted: bool) -> None:
    """List scheduled tasks."""
    rows = get_services(ctx).store.list_tasks(user_id=user_id, include_deleted=include_deleted)
    if not rows:
        click.echo("No scheduled tasks.")
        return
    for task in rows:
        next_run = task.next_run_at.isoformat() if task.next_run_at else "-"
        click.echo(f"{task.id}  {task.status:<7}  {task.sync_mode:<15}  {task.name}")
        click.echo(f"    {describe_schedule(task)}, next run {next_run}")
        click.echo(
            f"    runs: {task.total_runs} total, {task.successful_runs} ok, {task.failed_runs} failed"
            + (f", last: {task.last_run_status}" if task.last_run_status else "")
        )


@tasks.command("create")
@click.option("--user", "user_id", required=True)
@click.option("--name", required=True)
@click.option("--source-provider", type=_PROVIDERS, required=True)
@click.option("--source-url", default=None, help="Share link of the source folder or file.")
@click.option("--source-id", "source_file_id", default=None, help="Provider id or path of the source.")
@click.option("--file", "is_file", is_flag=True, help="The source is a single file.")
@click.option("--dest-provider", type=_PROVIDERS, required=True)
@click.option("--dest-folder", "dest_folder_id", default=None)
@click.option("--mode", type=click.Choice([m.value for m in SyncMode]), default=SyncMode.COPY.value, show_default=True)
@click.option("--frequency", type=click.Choice([f.value for f in Frequency]), required=True)
@click.option("--hour", type=click.IntRange(0, 23), default=8, show_default=True)
@click.option("--minute", type=click.IntRange(0, 59), default=0, show_default=True)
@click.option("--day-of-week", type=click.IntRange(0, 6), default=None, help="0=Sunday (weekly).")
@click.option("--day-of-month", type=click.IntRange(1, 31), default=None, help="Monthly.")
@click.option("--day", "selected_days", type=click.IntRange(0, 6), multiple=True, help="Repeatable (custom).")
@click.option("--timezone", default="UTC", show_default=True)
@click.option("--include", "include_folders", multiple=True, help="Only sync this folder (repeatable).")
@click.option("--exclude", "exclude_folders", multiple=True, help="Never sync this folder (repeatable).")
@click.option(
    "--on-duplicate",
    type=click.Choice([a.value for a in DuplicateAction]),
    default=DuplicateAction.SKIP.value,
    show_default=True,
)
@click.pass_context
def create_task(
    ctx: click.Context,
    user_id: str,
    name: str,
    source_provider: str,
    source_url: str | None,
    source_file_id: str | None,
    is_file: bool,
    dest_provider: str,
    dest_folder_id: str | None,
    mode: str,
    frequency: str,
    hour: int,
    minute: int,
    day_of_week: int | None,
    day_of_month: int | None,
    selected_days: tuple[int, ...],
    timezone: str,
    include_folders: tuple[str, ...],
    exclude_folders: tuple[str, ...],
    on_duplicate: str,
) -> None:
    """Create a scheduled task."""
    if not source_url and not source_file_id:
        raise click.UsageError("Give --source-url or --source-id.")
    with cli_errors():
        task = get_services(ctx).scheduler.create_task(
            user_id,
            name,
            source_provider,
            dest_provider,
            frequency,
            source_url=source_url,
            source_file_id=source_file_id,
            item_type=(ItemType.FILE if is_file else ItemType.FOLDER).value,
            dest_folder_id=dest_folder_id,
            sync_mode=mode,
            hour=hour,
            minute=minute,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            selected_days=list(selected_days),
            timezone=timezone,
            include_folders=list(include_folders),
            exclude_folders=list(exclude_folders),
            duplicate_action=on_duplicate,
        )
    click.echo(f"Created task {task.id}: {describe_schedule(task)}")
    click.echo(f"Next run at {task.next_run_at.isoformat() if task.next_run_at else '-'}")


@tasks.command("pause")
@click.argument("task_id")
@click.pass_context
def pause_task(ctx: click.Context, task_id: str) -> None:
    """Pause a task."""
    with cli_errors():
        get_services(ctx).scheduler.pause_task(task_id)
    click.echo(f"Task {task_id} paused.")


@tasks.command("resume")
@click.argument("task_id")
@click.pass_context
def resume_task(ctx: click.Context, task_id: str) -> None:
    """Resume a paused task."""
    with cli_errors():
        task = get_services(ctx).scheduler.resume_task(task_id)
    click.echo(f"Task {task_id} resumed, next run at {task.next_run_at.isoformat() if task.next_run_at else '-'}.")


@tasks.command("delete")
@click.argument("task_id")
@click.pass_context
def delete_task(ctx: click.Context, task_id: str) -> None:
    """Delete a task. Its run history is kept."""
    with cli_errors():
        get_services(ctx).scheduler.delete_task(task_id)
    click.echo(f"Task {task_id} deleted.")


@tasks.command("run")
@click.argument("task_id")
@click.pass_context
def run_task(ctx: click.Context, task_id: str) -> None:
    """Run a task now, outside of its schedule.

    Sync tasks run in this process. Copy tasks enqueue a job for a worker.
    """
    with cli_errors():
        run = get_services(ctx).scheduler.run_task_now(task_id)
    if run is None:
        click.echo("Error: could not start the run.", err=True)
        raise SystemExit(1)
    click.echo(f"Run {run.id}: {run.status}")
    if run.job_id:
        click.echo(f"Enqueued job {run.job_id}")
    else:
        click.echo(f"Files processed: {run.files_processed}, failed: {run.files_failed}")
    if run.error_message:
        click.echo(f"Errors: {run.error_message}")


@click.group()
def conflicts() -> None:
    """Review mirror sync conflicts."""


@conflicts.command("list")
@click.argument("task_id")
@click.option("--all", "show_all", is_flag=True, help="Include resolved conflicts.")
@click.pass_context
def list_conflicts(ctx: click.Context, task_id: str, show_all: bool) -> None:
    """List the conflicts of a mirror task."""
    rows = get_services(ctx).store.list_conflicts(task_id, unresolved_only=not show_all)
    if not rows:
        click.echo("No conflicts.")
        return
    for conflict in rows:
        src = conflict.source_modified_at.isoformat() if conflict.source_modified_at else "?"
        dst = conflict.dest_modified_at.isoformat() if conflict.dest_modified_at else "?"
        click.echo(f"#{conflict.id}  {conflict.resolution:<10}  {conflict.relative_path}")
        click.echo(f"    source: {conflict.source_size} bytes, modified {src}")
        click.echo(f"    dest:   {conflict.dest_size} bytes, modified {dst}")


@conflicts.command("resolve")
@click.argument("conflict_id", type=int)
@click.argument(
    "resolution",
    type=click.Choice([r.value for r in ConflictResolution if r is not ConflictResolution.UNRESOLVED]),
)
@click.pass_context
def resolve_conflict(ctx: click.Context, conflict_id: int, resolution: str) -> None:
    """Resolve a conflict and copy the winning version over the other."""
    with cli_errors():
        conflict = get_services(ctx).engine.resolve_conflict(conflict_id, resolution)
    click.echo(f"Conflict #{conflict.id} resolved: {conflict.resolution}")
    if conflict.resolution_details:
        click.echo(conflict.resolution_details)
