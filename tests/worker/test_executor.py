"""Tests for copy job execution."""

from __future__ import annotations

import pytest

from cloudmover.core.errors import InvalidInputError, JobCancelledError, NotFoundError, TransientError
from cloudmover.core.types import ItemType
from cloudmover.providers.memory import InMemoryProvider
from cloudmover.providers.pool import ProviderPool
from cloudmover.store.database import JobStore
from cloudmover.store.models import Job
from cloudmover.sync.duplicates import DuplicateDetector
from cloudmover.worker.executor import JobContext, JobExecutor, JobOutcome


@pytest.fixture
def executor(store: JobStore, pool: ProviderPool) -> JobExecutor:
    return JobExecutor(pool, DuplicateDetector(store))


def _job(store: JobStore, **fields) -> Job:
    return store.create_job("u1", "google", "dropbox", **fields)


class TestResolveSource:
    """Tests for JobExecutor.resolve_source."""

    def test_url(self, store: JobStore, source: InMemoryProvider) -> None:
        """A parseable URL should give id and kind."""
        folder = source.add_folder("Docs")
        ref = JobExecutor.resolve_source(source, _job(store, source_url=f"memory://{folder.id}"))
        assert ref.resource_id == folder.id
        assert ref.item_type is ItemType.FOLDER

    def test_explicit_id_wins(self, store: JobStore, source: InMemoryProvider) -> None:
        """An explicit id should be used even with an unparseable URL."""
        job = _job(store, source_file_id="f1", source_url="https://example.com/x", item_type="file")
        ref = JobExecutor.resolve_source(source, job)
        assert ref.resource_id == "f1"
        assert ref.item_type is ItemType.FILE

    def test_bad_url_without_id(self, store: JobStore, source: InMemoryProvider) -> None:
        """An unparseable URL alone should be rejected."""
        with pytest.raises(InvalidInputError):
            JobExecutor.resolve_source(source, _job(store, source_url="https://example.com/x"))

    def test_nothing_to_copy(self, store: JobStore, source: InMemoryProvider) -> None:
        """A job without any source should be rejected."""
        with pytest.raises(InvalidInputError):
            JobExecutor.resolve_source(source, _job(store))


class TestFileCopy:
    """Tests for single file jobs."""

    def test_copies_file(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Should copy the file and report 0, 50 and 100 percent."""
        file = source.add_file("a.txt", b"hello")
        progress: list[tuple[int, int, int]] = []
        ctx = JobContext(_job(store, source_file_id=file.id), on_progress=lambda *p: progress.append(p))

        outcome = executor.execute(ctx)

        assert outcome.copied_file_name == "a.txt"
        assert dest.read(outcome.copied_file_id) == b"hello"
        assert progress == [(0, 1, 0), (0, 1, 50), (1, 1, 100)]
        assert outcome.summary is None

    def test_into_destination_folder(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Should write into the requested destination folder."""
        file = source.add_file("a.txt", b"hello")
        backup = dest.add_folder("Backup")
        executor.execute(JobContext(_job(store, source_file_id=file.id, dest_folder_id=backup.id)))
        assert dest.names_in(backup.id) == ["a.txt"]

    def test_duplicate_skipped(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """A duplicate should complete pointing at the existing copy."""
        file = source.add_file("a.txt", b"hello")
        first = executor.execute(JobContext(_job(store, source_file_id=file.id)))

        second = executor.execute(JobContext(_job(store, source_file_id=file.id)))

        assert second.skipped_files == 1
        assert second.copied_file_id == first.copied_file_id
        assert second.summary == "1 duplicate files skipped"
        assert dest.names_in() == ["a.txt"]

    def test_cancel_before_write(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Cancellation observed after the download should prevent the write."""
        file = source.add_file("a.txt", b"hello")
        checks = iter([False, True])
        ctx = JobContext(_job(store, source_file_id=file.id), cancel_check=lambda: next(checks))

        with pytest.raises(JobCancelledError):
            executor.execute(ctx)

        assert dest.names_in() == []
        assert dest.calls["upload"] == 0

    def test_cancel_before_start(self, executor: JobExecutor, store: JobStore, source: InMemoryProvider) -> None:
        """Cancellation at the first checkpoint should not touch providers."""
        file = source.add_file("a.txt", b"hello")
        with pytest.raises(JobCancelledError):
            executor.execute(JobContext(_job(store, source_file_id=file.id), cancel_check=lambda: True))
        assert source.calls["get_metadata"] == 0

    def test_missing_file(self, executor: JobExecutor, store: JobStore) -> None:
        """A missing source should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            executor.execute(JobContext(_job(store, source_file_id="nope")))


class TestFolderCopy:
    """Tests for folder jobs."""

    def _tree(self, source: InMemoryProvider) -> str:
        photos = source.add_folder("Photos")
        trip = source.add_folder("Trip", parent_id=photos.id)
        source.add_file("a.jpg", b"a", parent_id=photos.id)
        source.add_file("b.jpg", b"bb", parent_id=photos.id)
        source.add_file("c.jpg", b"ccc", parent_id=trip.id)
        return photos.id

    def test_copies_tree(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Should recreate the folder under the destination."""
        folder_id = self._tree(source)
        progress: list[tuple[int, int, int]] = []
        ctx = JobContext(_job(store, source_file_id=folder_id), on_progress=lambda *p: progress.append(p))

        outcome = executor.execute(ctx)

        assert outcome.total_files == 3
        assert outcome.completed_files == 3
        assert outcome.copied_file_name == "Photos"
        assert dest.names_in() == ["Photos"]
        assert dest.names_in(outcome.copied_file_id) == ["Trip", "a.jpg", "b.jpg"]
        assert progress[0] == (0, 1, 0)
        assert progress[-1] == (3, 3, 100)
        assert [p[2] for p in progress] == sorted(p[2] for p in progress)

    def test_partial_failure_completes(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Individual file failures should not fail the job."""
        folder_id = self._tree(source)
        source.fail_next("download", TransientError("reset"))

        outcome = executor.execute(JobContext(_job(store, source_file_id=folder_id)))

        assert outcome.completed_files == 2
        assert len(outcome.errors) == 1
        assert outcome.summary.startswith("1 of 3 files failed")
        assert outcome.to_result()["failedFiles"] == 1

    def test_every_file_failing_raises(self, executor: JobExecutor, store: JobStore, source: InMemoryProvider) -> None:
        """A folder copy where nothing succeeds should raise the last error."""
        folder_id = self._tree(source)
        source.fail_next("download", TransientError("reset"), times=3)
        with pytest.raises(TransientError):
            executor.execute(JobContext(_job(store, source_file_id=folder_id)))

    def test_cancel_between_files(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Cancellation should stop the copy before the next file."""
        folder_id = self._tree(source)
        checks = iter([False, False, False, True])

        with pytest.raises(JobCancelledError):
            executor.execute(JobContext(_job(store, source_file_id=folder_id), cancel_check=lambda: next(checks)))

        assert dest.calls["upload"] == 1

    def test_cancel_after_download(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """Cancellation observed after a file was downloaded should prevent its upload."""
        folder_id = self._tree(source)
        checks = iter([False, False, True])

        with pytest.raises(JobCancelledError):
            executor.execute(JobContext(_job(store, source_file_id=folder_id), cancel_check=lambda: next(checks)))

        assert source.calls["download"] == 1
        assert dest.calls["upload"] == 0

    def test_empty_folder(
        self, executor: JobExecutor, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """An empty folder should still be created and finish at 100%."""
        empty = source.add_folder("Empty")
        progress: list[tuple[int, int, int]] = []

        outcome = executor.execute(
            JobContext(_job(store, source_file_id=empty.id), on_progress=lambda *p: progress.append(p))
        )

        assert outcome.total_files == 0
        assert dest.names_in() == ["Empty"]
        assert progress[-1] == (0, 0, 100)


class TestJobOutcome:
    """Tests for JobOutcome."""

    def test_to_result_is_camel_case(self) -> None:
        """Should expose the fields clients read."""
        result = JobOutcome(copied_file_id="d1", copied_file_name="a.txt", completed_files=1).to_result()
        assert result == {
            "copiedFileId": "d1",
            "copiedFileName": "a.txt",
            "copiedFileUrl": None,
            "totalFiles": 1,
            "completedFiles": 1,
            "skippedFiles": 0,
            "failedFiles": 0,
        }
