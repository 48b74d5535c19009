"""Tests for CLI commands - jobs, tasks, conflicts and purge."""

from pathlib import Path

import pytest
from click.testing import CliRunner, Result

from cloudmover.cli import cli
from cloudmover.core.types import JobStatus, TaskStatus
from cloudmover.providers.memory import InMemoryProvider
from cloudmover.store.database import JobStore


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def invoke(runner: CliRunner, tmp_path: Path, source: InMemoryProvider, dest: InMemoryProvider):
    """Invoke the CLI against the test database and in-memory providers."""
    providers = {source.name: source, dest.name: dest}
    url = f"sqlite:///{tmp_path / 'cloudmover.db'}"

    def _invoke(*args: str) -> Result:
        obj = {"factory": lambda provider, user_id: providers[provider]}
        return runner.invoke(cli, ["--database-url", url, *args], obj=obj)

    return _invoke


class TestJobCommands:
    """Tests for 'cloudmover jobs' commands."""

    def test_add_and_list(self, invoke, store: JobStore) -> None:
        """Add should enqueue a job that list then shows."""
        result = invoke(
            "jobs", "add", "--user", "u1", "--source-provider", "google", "--source-id", "f1",
            "--dest-provider", "dropbox", "--priority", "5",
        )
        assert result.exit_code == 0, result.output
        assert "Enqueued job" in result.output

        [job] = store.list_jobs()
        assert job.user_id == "u1"
        assert job.priority == 5
        assert job.item_type == "file"
        assert job.status == JobStatus.PENDING.value

        listed = invoke("jobs", "list")
        assert listed.exit_code == 0
        assert job.id in listed.output
        assert "pending" in listed.output

    def test_add_requires_source(self, invoke) -> None:
        """Add without a source should be a usage error."""
        result = invoke("jobs", "add", "--user", "u1", "--source-provider", "google", "--dest-provider", "dropbox")
        assert result.exit_code == 2
        assert "--source-url or --source-id" in result.output

    def test_list_empty(self, invoke) -> None:
        """List should say when there is nothing to show."""
        result = invoke("jobs", "list")
        assert result.exit_code == 0
        assert "No jobs." in result.output

    def test_show(self, invoke, store: JobStore) -> None:
        """Show should print the job's state."""
        job = store.create_job("u1", "google", "dropbox", source_file_id="f1")
        result = invoke("jobs", "show", job.id)
        assert result.exit_code == 0
        assert f"Job:        {job.id}" in result.output
        assert "Attempts:   0/5" in result.output

    def test_show_missing(self, invoke) -> None:
        """Show of an unknown job should fail with a message."""
        result = invoke("jobs", "show", "nope")
        assert result.exit_code == 1
        assert "Error: Job nope not found" in result.output

    def test_cancel(self, invoke, store: JobStore) -> None:
        """Cancel should flag the job."""
        job = store.create_job("u1", "google", "dropbox", source_file_id="f1")
        result = invoke("jobs", "cancel", job.id)
        assert result.exit_code == 0
        assert "Cancellation requested" in result.output
        assert store.is_cancel_requested(job.id)

    def test_retry_requires_finished_job(self, invoke, store: JobStore) -> None:
        """Retry of a pending job should be refused."""
        job = store.create_job("u1", "google", "dropbox", source_file_id="f1")
        result = invoke("jobs", "retry", job.id)
        assert result.exit_code == 1
        assert "only finished jobs can be retried" in result.output

    def test_retry(self, invoke, store: JobStore) -> None:
        """Retry should requeue a failed job."""
        job = store.create_job("u1", "google", "dropbox", source_file_id="f1")
        store.claim_pending("w1", 1)
        store.mark_failed(job.id, "boom", attempts=5)

        result = invoke("jobs", "retry", job.id)

        assert result.exit_code == 0
        requeued = store.get_job(job.id)
        assert requeued.status == JobStatus.PENDING.value
        assert requeued.attempts == 0


class TestTaskCommands:
    """Tests for 'cloudmover tasks' commands."""

    def _create(self, invoke, *extra: str) -> Result:
        return invoke(
            "tasks", "create", "--user", "u1", "--name", "Backup", "--source-provider", "google",
            "--source-id", "root", "--dest-provider", "dropbox", "--frequency", "daily", *extra,
        )

    def test_create_and_list(self, invoke, store: JobStore) -> None:
        """Create should store an active task that list describes."""
        result = self._create(invoke, "--hour", "6", "--minute", "30", "--timezone", "Europe/Paris")
        assert result.exit_code == 0, result.output
        assert "Every day at 06:30 (Europe/Paris)" in result.output

        [task] = store.list_tasks()
        assert task.status == TaskStatus.ACTIVE.value
        assert task.item_type == "folder"
        assert task.next_run_at is not None

        listed = invoke("tasks", "list")
        assert task.id in listed.output
        assert "runs: 0 total" in listed.output

    def test_create_rejects_unknown_timezone(self, invoke, store: JobStore) -> None:
        """An unknown timezone should be reported and nothing stored."""
        result = self._create(invoke, "--timezone", "Mars/Olympus_Mons")
        assert result.exit_code == 1
        assert "Unknown timezone" in result.output
        assert store.list_tasks() == []

    def test_pause_resume_delete(self, invoke, store: JobStore) -> None:
        """Lifecycle commands should change the task status."""
        self._create(invoke)
        [task] = store.list_tasks()

        assert invoke("tasks", "pause", task.id).exit_code == 0
        assert store.get_task(task.id).status == TaskStatus.PAUSED.value

        resumed = invoke("tasks", "resume", task.id)
        assert resumed.exit_code == 0
        assert "resumed" in resumed.output
        assert store.get_task(task.id).status == TaskStatus.ACTIVE.value

        assert invoke("tasks", "delete", task.id).exit_code == 0
        assert store.list_tasks() == []
        assert invoke("tasks", "pause", task.id).exit_code == 1

    def test_run_sync_task(self, invoke, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider) -> None:
        """Run should execute a sync task in process."""
        source.add_file("a.txt", b"hello")
        self._create(invoke, "--mode", "cumulative_sync")
        [task] = store.list_tasks()

        result = invoke("tasks", "run", task.id)

        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert "Files processed: 1, failed: 0" in result.output
        assert dest.names_in() == ["a.txt"]

    def test_run_copy_task_enqueues(self, invoke, store: JobStore, source: InMemoryProvider) -> None:
        """Run of a copy task should enqueue a job."""
        file = source.add_file("a.txt", b"hello")
        invoke(
            "tasks", "create", "--user", "u1", "--name", "Copy", "--source-provider", "google",
            "--source-id", file.id, "--file", "--dest-provider", "dropbox", "--frequency", "hourly",
        )
        [task] = store.list_tasks()

        result = invoke("tasks", "run", task.id)

        assert result.exit_code == 0, result.output
        [job] = store.list_jobs()
        assert f"Enqueued job {job.id}" in result.output


class TestConflictCommands:
    """Tests for 'cloudmover conflicts' commands."""

    def test_list_empty(self, invoke) -> None:
        """List should say when there are no conflicts."""
        result = invoke("conflicts", "list", "t1")
        assert result.exit_code == 0
        assert "No conflicts." in result.output

    def test_list_and_resolve(self, invoke, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider) -> None:
        """Resolve should copy the chosen side and close the conflict."""
        src = source.add_file("a.txt", b"source version")
        dst = dest.add_file("a.txt", b"dest version")
        task = store.upsert_scheduled_task(
            user_id="u1",
            name="Mirror",
            source_provider="google",
            dest_provider="dropbox",
            frequency="daily",
            sync_mode="mirror_sync",
        )
        conflict = store.create_conflict(
            task.id,
            file_name="a.txt",
            relative_path="a.txt",
            source_file_id=src.id,
            dest_file_id=dst.id,
            source_size=src.size,
            dest_size=dst.size,
        )

        listed = invoke("conflicts", "list", task.id)
        assert f"#{conflict.id}" in listed.output
        assert "a.txt" in listed.output

        result = invoke("conflicts", "resolve", str(conflict.id), "keep_source")

        assert result.exit_code == 0, result.output
        assert "resolved: keep_source" in result.output
        assert dest.read(dst.id) == b"source version"
        assert store.list_conflicts(task.id, unresolved_only=True) == []

    def test_resolve_unknown(self, invoke) -> None:
        """Resolving an unknown conflict should fail with a message."""
        result = invoke("conflicts", "resolve", "999", "keep_source")
        assert result.exit_code == 1
        assert "Conflict 999 not found" in result.output


class TestPurgeCommand:
    """Tests for 'cloudmover purge'."""

    def test_nothing_to_purge(self, invoke) -> None:
        """Purge on an empty database should report nothing done."""
        result = invoke("purge")
        assert result.exit_code == 0
        assert "Reclaimed 0 stale jobs." in result.output
        assert "No finished jobs to purge." in result.output

    def test_purges_finished_jobs(self, invoke, store: JobStore) -> None:
        """Purge with a zero window should delete finished jobs."""
        job = store.create_job("u1", "google", "dropbox", source_file_id="f1")
        store.claim_pending("w1", 1)
        store.mark_completed(job.id)

        result = invoke("purge", "--older-than-hours", "0")

        assert result.exit_code == 0
        assert "Purged 1 finished jobs." in result.output
        assert store.get_job(job.id) is None
