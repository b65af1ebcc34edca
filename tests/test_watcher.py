"""Tests for the polling change watcher."""

import logging
import queue
import threading
import time

import pytest

from pycsync.exceptions import WatcherIOError
from pycsync.sync.patterns import FilterSet
from pycsync.watcher import ChangeEvent, ChangeKind, ChangeWatcher, watch


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestChangeWatcher:
    """Test ChangeWatcher poll cycles."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def watcher(self, temp_dir, clock):
        (temp_dir / "a.txt").write_text("one")
        watcher = ChangeWatcher(temp_dir, debounce=2.0, clock=clock)
        watcher.prime()
        return watcher

    def test_prime_emits_nothing(self, watcher):
        assert watcher.primed
        assert watcher.poll_once() == []
        assert watcher.events.empty()

    def test_first_poll_only_primes(self, temp_dir):
        """An unprimed watcher takes its baseline on the first poll."""
        (temp_dir / "a.txt").write_text("one")
        watcher = ChangeWatcher(temp_dir)
        assert watcher.poll_once() == []
        assert watcher.primed

    def test_created_modified_removed(self, temp_dir, watcher, clock):
        """Each kind of change is reported."""
        (temp_dir / "b.txt").write_text("new")
        assert [(e.relative_path, e.kind) for e in watcher.poll_once()] == [
            ("b.txt", ChangeKind.CREATED)
        ]

        clock.advance(5)
        (temp_dir / "a.txt").write_text("one, longer")
        assert [(e.relative_path, e.kind) for e in watcher.poll_once()] == [
            ("a.txt", ChangeKind.MODIFIED)
        ]

        clock.advance(5)
        (temp_dir / "b.txt").unlink()
        assert [(e.relative_path, e.kind) for e in watcher.poll_once()] == [
            ("b.txt", ChangeKind.REMOVED)
        ]

    def test_events_are_queued(self, temp_dir, watcher):
        (temp_dir / "b.txt").write_text("new")
        watcher.poll_once()

        event = watcher.events.get_nowait()
        assert isinstance(event, ChangeEvent)
        assert event.relative_path == "b.txt"
        assert event.timestamp == pytest.approx(time.time(), abs=60)

    def test_debounce_collapses_rapid_changes(self, temp_dir, watcher, clock):
        """Two modifications within the window produce one event."""
        (temp_dir / "a.txt").write_text("two!")
        first = watcher.poll_once()

        clock.advance(0.5)
        (temp_dir / "a.txt").write_text("three!!")
        second = watcher.poll_once()

        assert len(first) == 1
        assert second == []
        assert watcher.events.qsize() == 1

    def test_debounce_window_expires(self, temp_dir, watcher, clock):
        (temp_dir / "a.txt").write_text("two!")
        watcher.poll_once()

        clock.advance(2.5)
        (temp_dir / "a.txt").write_text("three!!")
        assert len(watcher.poll_once()) == 1

    def test_directories_report_create_and_remove(self, temp_dir, watcher, clock):
        """Adding a child does not emit a modified event for its directory."""
        (temp_dir / "sub").mkdir()
        assert [(e.relative_path, e.kind) for e in watcher.poll_once()] == [
            ("sub", ChangeKind.CREATED)
        ]

        clock.advance(5)
        (temp_dir / "sub" / "c.txt").write_text("c")
        assert [e.relative_path for e in watcher.poll_once()] == ["sub/c.txt"]

        clock.advance(5)
        (temp_dir / "sub" / "c.txt").unlink()
        (temp_dir / "sub").rmdir()
        kinds = {e.relative_path: e.kind for e in watcher.poll_once()}
        assert kinds == {"sub": ChangeKind.REMOVED, "sub/c.txt": ChangeKind.REMOVED}

    def test_ignored_paths_are_silent(self, temp_dir, clock):
        watcher = ChangeWatcher(
            temp_dir, filters=FilterSet(ignore=("*.tmp",)), clock=clock
        )
        watcher.prime()
        (temp_dir / "scratch.tmp").write_text("x")
        assert watcher.poll_once() == []

    def test_full_queue_drops_events(self, temp_dir, clock, caplog):
        """Events beyond the queue capacity are dropped with a warning."""
        watcher = ChangeWatcher(
            temp_dir,
            max_pending=2,
            clock=clock,
            logger=logging.getLogger("test.watcher"),
        )
        watcher.prime()
        for name in ("a", "b", "c"):
            (temp_dir / name).write_text(name)

        with caplog.at_level(logging.WARNING, logger="test.watcher"):
            emitted = watcher.poll_once()

        assert len(emitted) == 3
        assert watcher.events.qsize() == 2
        assert "dropping" in caplog.text

    def test_missing_root(self, temp_dir):
        """An unreadable root raises WatcherIOError."""
        watcher = ChangeWatcher(temp_dir / "missing")
        with pytest.raises(WatcherIOError):
            watcher.prime()
        with pytest.raises(WatcherIOError):
            watcher.start()
        assert not watcher.is_alive()

    def test_start_and_stop(self, temp_dir):
        """The background thread publishes events until stopped."""
        watcher = ChangeWatcher(temp_dir, poll_interval=0.02, debounce=0)
        watcher.start()
        try:
            (temp_dir / "new.txt").write_text("hello")
            event = watcher.events.get(timeout=5)
            assert event.relative_path == "new.txt"
            assert event.kind == ChangeKind.CREATED
        finally:
            watcher.stop(timeout=5)
        assert not watcher.is_alive()

    def test_poll_errors_are_queued(self, temp_dir):
        """A root that disappears after start is reported on the error queue."""
        root = temp_dir / "root"
        root.mkdir()
        watcher = ChangeWatcher(root, poll_interval=0.02)
        watcher.start()
        try:
            root.rmdir()
            error = watcher.errors.get(timeout=5)
            assert isinstance(error, WatcherIOError)
        finally:
            watcher.stop(timeout=5)

    def test_events_queue_type(self, watcher):
        assert isinstance(watcher.events, queue.Queue)


class TestWatchGenerator:
    """Test the watch() convenience generator."""

    def test_yields_events(self, temp_dir):
        stop = threading.Event()
        events = watch(temp_dir, poll_interval=0.02, debounce=0, stop_event=stop)
        timer = threading.Timer(0.2, (temp_dir / "late.txt").write_text, ["x"])
        timer.start()
        try:
            event = next(events)
        finally:
            stop.set()
            events.close()
            timer.join()

        assert event.relative_path == "late.txt"
        assert event.kind == ChangeKind.CREATED

    def test_missing_root(self, temp_dir):
        with pytest.raises(WatcherIOError):
            next(watch(temp_dir / "missing"))
