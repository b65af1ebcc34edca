"""Tests for the sync engine."""

import hashlib
import os
import threading
import time
from unittest.mock import Mock

import pytest
from conftest import InMemoryStore

from pycsync.exceptions import (
    RemotePermanentError,
    RemoteQuotaError,
    RemoteTransientError,
)
from pycsync.output import OutputFormatter
from pycsync.sync.comparator import TaskKind
from pycsync.sync.engine import SyncEngine, SyncResult
from pycsync.sync.patterns import FilterSet
from pycsync.sync.scanner import scan_directory


class FailingFolderStore(InMemoryStore):
    """Store that refuses to create one folder."""

    def __init__(self, bad_folder: str):
        super().__init__()
        self.bad_folder = bad_folder

    def create_folder(self, path: str) -> bool:
        if path == self.bad_folder:
            self._enter("create_folder", path)
            self._leave()
            raise RemoteQuotaError("Permission denied", path)
        return super().create_folder(path)


class TestSyncEngine:
    """Test SyncEngine end to end against an in-memory store."""

    @pytest.fixture
    def tree(self, temp_dir):
        """Create a.txt, b/c.txt and an ignored x.tmp."""
        (temp_dir / "a.txt").write_bytes(b"alpha")
        (temp_dir / "b").mkdir()
        (temp_dir / "b" / "c.txt").write_bytes(b"charlie")
        (temp_dir / "x.tmp").write_bytes(b"scratch")
        return temp_dir

    @pytest.fixture
    def filters(self):
        return FilterSet(ignore=("*.tmp",))

    def test_first_sync(self, tree, filters, memory_store):
        """An empty store receives one folder and two files."""
        engine = SyncEngine(memory_store, retry_delay=0)
        result = engine.synchronize(tree, filters)

        assert result.ok
        assert result.folders_created == 1
        assert result.created == 3
        assert result.updated == 0
        assert result.skipped == 0
        assert memory_store.folders == {"b"}
        assert memory_store.files == {"a.txt": b"alpha", "b/c.txt": b"charlie"}
        assert "x.tmp" not in memory_store.files

    def test_second_sync_is_idempotent(self, tree, filters, memory_store):
        """Running again uploads nothing."""
        engine = SyncEngine(memory_store, retry_delay=0)
        engine.synchronize(tree, filters)
        memory_store.calls.clear()

        result = engine.synchronize(tree, filters)

        assert result.ok
        assert result.total_actions == 0
        assert result.skipped == 3
        assert [c for c in memory_store.mutating_calls() if c[0] == "upload"] == []

        tasks = engine.plan(scan_directory(tree, filters))
        assert [t.kind for t in tasks if t.kind == TaskKind.UPLOAD] == []

    def test_touched_file_is_not_uploaded(self, tree, filters, memory_store):
        """A newer modification time with unchanged content transfers nothing."""
        engine = SyncEngine(memory_store, retry_delay=0)
        engine.synchronize(tree, filters)
        memory_store.calls.clear()

        later = time.time() + 3600
        os.utime(tree / "a.txt", (later, later))
        result = engine.synchronize(tree, filters)

        assert result.ok
        assert result.total_actions == 0
        assert result.updated == 0
        assert [c for c in memory_store.mutating_calls() if c[0] == "upload"] == []

    def test_modified_file_is_updated(self, tree, filters, memory_store):
        """Changed content overwrites the remote copy in place."""
        engine = SyncEngine(memory_store, retry_delay=0)
        engine.synchronize(tree, filters)

        (tree / "a.txt").write_bytes(b"alpha v2")
        result = engine.synchronize(tree, filters)

        assert result.updated == 1
        assert result.created == 0
        assert memory_store.files["a.txt"] == b"alpha v2"

    def test_dry_run_makes_no_changes(self, tree, filters, memory_store):
        """A dry run only reads from the store."""
        engine = SyncEngine(memory_store, retry_delay=0)
        result = engine.synchronize(tree, filters, dry_run=True)

        assert result.dry_run is True
        assert result.created == 3
        assert result.folders_created == 1
        assert memory_store.mutating_calls() == []
        assert memory_store.files == {}

    def test_concurrency_is_bounded(self, temp_dir):
        """No more than the configured number of calls run at once."""
        for i in range(12):
            (temp_dir / f"f{i:02d}.txt").write_text(str(i))
        store = InMemoryStore(delay=0.02)

        result = SyncEngine(store, concurrency=3, retry_delay=0).synchronize(temp_dir)

        assert result.ok
        assert result.created == 12
        assert 1 <= store.max_in_flight <= 3

    def test_single_failure_does_not_abort_pass(self, temp_dir, memory_store):
        """One permanently failing file is reported, the rest succeed."""
        for i in range(1, 11):
            (temp_dir / f"file{i:02d}.txt").write_text(f"content {i}")
        memory_store.failures["file05.txt"] = RemotePermanentError("rejected")

        result = SyncEngine(memory_store, retry_delay=0).synchronize(temp_dir)

        assert result.created == 9
        assert result.failed == 1
        assert not result.ok
        assert [f.path for f in result.failures] == ["file05.txt"]
        assert "rejected" in result.failures[0].error
        assert len(memory_store.files) == 9

    def test_transient_failure_is_retried(self, temp_dir, memory_store):
        """A transient error followed by success counts as created."""
        (temp_dir / "a.txt").write_text("data")
        memory_store.failures["a.txt"] = [
            RemoteTransientError("503"),
            RemoteTransientError("503"),
        ]

        result = SyncEngine(memory_store, retry_attempts=3, retry_delay=0).synchronize(
            temp_dir
        )

        assert result.ok
        assert result.created == 1
        assert memory_store.calls.count(("upload", "a.txt")) == 3

    def test_retries_exhausted_is_failure(self, temp_dir, memory_store):
        """Transient errors beyond the retry budget fail the entry."""
        (temp_dir / "a.txt").write_text("data")
        memory_store.failures["a.txt"] = RemoteTransientError("503")

        result = SyncEngine(memory_store, retry_attempts=1, retry_delay=0).synchronize(
            temp_dir
        )

        assert result.failed == 1
        assert memory_store.calls.count(("upload", "a.txt")) == 2

    def test_failed_parent_fails_children(self, tree, filters):
        """Files are never uploaded into a folder that could not be created."""
        store = FailingFolderStore("b")

        result = SyncEngine(store, retry_delay=0).synchronize(tree, filters)

        assert result.created == 1
        assert sorted(f.path for f in result.failures) == ["b", "b/c.txt"]
        assert ("upload", "b/c.txt") not in store.calls
        child = next(f for f in result.failures if f.path == "b/c.txt")
        assert "Parent folder b" in child.error

    def test_existing_folder_counts_as_skipped(self, tree, filters, memory_store):
        """A folder that already exists is not counted as created."""
        memory_store.folders.add("b")

        result = SyncEngine(memory_store, retry_delay=0).synchronize(tree, filters)

        assert result.folders_created == 0
        assert result.created == 2
        assert result.skipped == 1

    def test_cancelled_before_start(self, tree, filters, memory_store):
        """A pass whose cancel event is already set performs no work."""
        cancel = threading.Event()
        cancel.set()

        result = SyncEngine(memory_store, retry_delay=0).synchronize(
            tree, filters, cancel_event=cancel
        )

        assert memory_store.mutating_calls() == []
        assert result.cancelled == 3
        assert result.failed == 0

    def test_lookup_failure_recorded(self, tree, filters, memory_store):
        """A file whose remote state cannot be read is a failure, not a task."""
        memory_store.metadata_failures["a.txt"] = RemotePermanentError("boom")

        result = SyncEngine(memory_store, retry_delay=0).synchronize(tree, filters)

        assert [f.path for f in result.failures] == ["a.txt"]
        assert "a.txt" not in memory_store.files
        assert memory_store.files == {"b/c.txt": b"charlie"}

    def test_plan_leaves_out_failed_lookups(self, tree, filters, memory_store):
        memory_store.metadata_failures["a.txt"] = RemotePermanentError("boom")
        engine = SyncEngine(memory_store, retry_delay=0)

        tasks = engine.plan(scan_directory(tree, filters))

        assert [t.relative_path for t in tasks] == ["b", "b/c.txt"]

    def test_progress_callback(self, tree, filters, memory_store):
        """Progress is reported once per executed task."""
        progress = Mock()

        SyncEngine(memory_store, retry_delay=0).synchronize(
            tree, filters, progress_callback=progress
        )

        assert progress.call_count == 3
        progress.assert_called_with(3, 3)

    def test_uploaded_hash_matches_local(self, tree, filters, memory_store):
        """Remote metadata after upload carries the local content hash."""
        SyncEngine(memory_store, retry_delay=0).synchronize(tree, filters)

        info = memory_store.get_metadata("b/c.txt")
        assert info.content_hash == hashlib.md5(b"charlie").hexdigest()

    def test_failures_sorted_by_path(self, temp_dir, memory_store):
        for name in ("z.txt", "a.txt", "m.txt"):
            (temp_dir / name).write_text(name)
            memory_store.failures[name] = RemotePermanentError("no")

        result = SyncEngine(memory_store, retry_delay=0).synchronize(temp_dir)

        assert [f.path for f in result.failures] == ["a.txt", "m.txt", "z.txt"]

    def test_empty_directory(self, temp_dir, memory_store):
        result = SyncEngine(memory_store).synchronize(temp_dir)
        assert result.ok
        assert result.total_actions == 0
        assert memory_store.calls == []

    def test_output_summary(self, tree, filters, memory_store):
        """Non-quiet output prints the plan and summary."""
        output = Mock(spec=OutputFormatter)
        output.quiet = False

        SyncEngine(memory_store, output=output, retry_delay=0).synchronize(
            tree, filters
        )

        output.success.assert_called_with("Sync complete!")


class TestSyncResult:
    """Test SyncResult helpers."""

    def test_to_dict(self):
        result = SyncResult(store="local", created=2, skipped=1)
        result.add_failure("x.txt", RemotePermanentError("nope"))

        data = result.to_dict()

        assert data["store"] == "local"
        assert data["created"] == 2
        assert data["failed"] == 1
        assert data["failures"] == [{"path": "x.txt", "error": "nope"}]
        assert result.succeeded == 3
        assert result.ok is False
