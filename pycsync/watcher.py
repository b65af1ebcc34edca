"""Polling change watcher for a local sync root.

The watcher keeps a snapshot of size and modification time for every
entry below the root. On each poll it rescans the tree, diffs the new view
against the snapshot and publishes ``ChangeEvent`` objects on a bounded
queue. Events for the same path are debounced so that an editor saving a
file several times in a row only wakes the daemon once.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from .exceptions import ScanError, WatcherIOError
from .sync.patterns import FilterSet
from .sync.scanner import DirectoryScanner
from .utils import DEFAULT_DEBOUNCE, DEFAULT_MAX_PENDING_EVENTS, DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)

MAX_PENDING_ERRORS = 10


class ChangeKind(str, Enum):
    """Kind of change detected between two polls."""

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    """A change to one entry below the watched root."""

    relative_path: str
    """Path relative to the watched root"""

    kind: ChangeKind
    """What happened"""

    timestamp: float
    """Wall-clock time the change was detected"""


# size, mtime_ns, is_dir
_Snapshot = dict[str, tuple[int, int, bool]]


class ChangeWatcher(threading.Thread):
    """Background thread that polls a directory for changes.

    Examples:
        >>> watcher = ChangeWatcher(Path("/sync/folder"))  # doctest: +SKIP
        >>> watcher.start()  # doctest: +SKIP
        >>> event = watcher.events.get()  # doctest: +SKIP
        >>> watcher.stop()  # doctest: +SKIP
    """

    def __init__(
        self,
        root: Path,
        filters: Optional[FilterSet] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
        max_pending: int = DEFAULT_MAX_PENDING_EVENTS,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize change watcher.

        Args:
            root: Directory to watch
            filters: Ignore/include patterns applied while scanning
            poll_interval: Seconds between polls
            debounce: Minimum seconds between two events for the same path
            max_pending: Capacity of the event queue; new events are dropped
                when it is full
            clock: Monotonic clock used for debouncing
            logger: Logger (defaults to the module logger)
        """
        super().__init__(name=f"pycsync-watcher-{Path(root).name}", daemon=True)
        self.root = Path(root)
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.events: queue.Queue[ChangeEvent] = queue.Queue(maxsize=max_pending)
        self.errors: queue.Queue[WatcherIOError] = queue.Queue(
            maxsize=MAX_PENDING_ERRORS
        )
        self._scanner = DirectoryScanner(
            filters, hash_contents=False, logger=self.logger
        )
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._state: _Snapshot = {}
        self._last_emitted: dict[str, float] = {}
        self._primed = False

    @property
    def primed(self) -> bool:
        """Whether the baseline snapshot has been taken."""
        return self._primed

    def prime(self) -> None:
        """Take the baseline snapshot without emitting events.

        Raises:
            WatcherIOError: If the root cannot be scanned
        """
        snapshot = self._snapshot()
        with self._lock:
            self._state = snapshot
            self._primed = True
        self.logger.debug(f"Watching {self.root}: {len(snapshot)} entries")

    def start(self) -> None:
        """Take the baseline snapshot and start polling.

        The initial scan runs in the calling thread so that an unreadable
        root is reported to the caller instead of the background thread.

        Raises:
            WatcherIOError: If the root cannot be scanned
        """
        if not self._primed:
            self.prime()
        super().start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling and wait for the thread to exit."""
        self._stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)

    def run(self) -> None:
        self.logger.info(
            "Watcher started for %s (poll=%.1fs, debounce=%.1fs)",
            self.root,
            self.poll_interval,
            self.debounce,
        )
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll_once()
            except WatcherIOError as e:
                self._report_error(e)
        self.logger.info(f"Watcher stopped for {self.root}")

    def poll_once(self) -> list[ChangeEvent]:
        """Run one poll cycle synchronously.

        The first call on an unprimed watcher only takes the baseline.

        Returns:
            Events that passed the debounce filter, in path order

        Raises:
            WatcherIOError: If the root cannot be scanned
        """
        if not self._primed:
            self.prime()
            return []

        current = self._snapshot()
        now = self.clock()
        emitted: list[ChangeEvent] = []
        with self._lock:
            changes = _diff(self._state, current)
            self._state = current
            self._prune_debounce(now)
            for relative_path, kind in changes:
                last = self._last_emitted.get(relative_path)
                if last is not None and now - last < self.debounce:
                    self.logger.debug(f"Debounced {kind.value} event for {relative_path}")
                    continue
                self._last_emitted[relative_path] = now
                emitted.append(ChangeEvent(relative_path, kind, time.time()))

        for event in emitted:
            self._publish(event)
        return emitted

    def _snapshot(self) -> _Snapshot:
        try:
            inventory = self._scanner.scan(self.root)
        except ScanError as e:
            raise WatcherIOError(f"Cannot poll {self.root}: {e}") from e
        return {
            entry.relative_path: (entry.size, entry.mtime_ns, entry.is_dir)
            for entry in inventory
        }

    def _prune_debounce(self, now: float) -> None:
        stale = [
            path
            for path, last in self._last_emitted.items()
            if now - last >= self.debounce
        ]
        for path in stale:
            del self._last_emitted[path]

    def _publish(self, event: ChangeEvent) -> None:
        try:
            self.events.put_nowait(event)
        except queue.Full:
            self.logger.warning(
                f"Event queue full, dropping {event.kind.value} event for "
                f"{event.relative_path}"
            )

    def _report_error(self, error: WatcherIOError) -> None:
        self.logger.debug(f"Poll failed: {error}")
        try:
            self.errors.put_nowait(error)
        except queue.Full:
            self.logger.warning(f"Error queue full, dropping: {error}")


def _diff(previous: _Snapshot, current: _Snapshot) -> list[tuple[str, ChangeKind]]:
    """Compare two snapshots.

    Directories only report creation and removal; their modification time
    changes whenever a child is added, which the child's own event covers.
    """
    changes: list[tuple[str, ChangeKind]] = []
    for path in sorted(current.keys() | previous.keys()):
        old = previous.get(path)
        new = current.get(path)
        if old is None:
            changes.append((path, ChangeKind.CREATED))
        elif new is None:
            changes.append((path, ChangeKind.REMOVED))
        elif old[2] != new[2]:
            # File replaced by directory or vice versa
            changes.append((path, ChangeKind.MODIFIED))
        elif not new[2] and old[:2] != new[:2]:
            changes.append((path, ChangeKind.MODIFIED))
    return changes


def watch(
    root: Path,
    filters: Optional[FilterSet] = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    debounce: float = DEFAULT_DEBOUNCE,
    stop_event: Optional[threading.Event] = None,
) -> Iterator[ChangeEvent]:
    """Yield change events for root until stop_event is set.

    Poll errors are logged and watching continues.

    Raises:
        WatcherIOError: If the root cannot be scanned initially
    """
    watcher = ChangeWatcher(root, filters, poll_interval=poll_interval, debounce=debounce)
    watcher.start()
    try:
        while stop_event is None or not stop_event.is_set():
            while not watcher.errors.empty():
                logger.warning(str(watcher.errors.get_nowait()))
            try:
                yield watcher.events.get(timeout=poll_interval)
            except queue.Empty:
                continue
    finally:
        watcher.stop()
