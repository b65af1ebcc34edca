"""Daemon scheduler: periodic and change-triggered synchronization passes.

Everything that happens to a running daemon arrives as a message on one
control queue: timer expiry, file change triggers, configuration reloads
and shutdown requests. Signal handlers and other threads only enqueue
messages; the scheduler loop is the single consumer and the only code that
changes scheduler state.
"""

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .exceptions import ConfigError, WatcherIOError
from .sync.patterns import FilterSet
from .utils import (
    DEFAULT_CONCURRENCY,
    DEFAULT_DEBOUNCE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SYNC_INTERVAL,
)
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Lifecycle state of the scheduler."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SchedulerSettings:
    """Everything a running daemon picks up on reload.

    Each pass receives the settings that were current when it started.
    """

    sync_interval: float = DEFAULT_SYNC_INTERVAL
    """Seconds between periodic passes (0 disables the timer)"""

    watch_mode: bool = False
    """Start a pass when the watcher reports a change"""

    poll_interval: float = DEFAULT_POLL_INTERVAL
    """Watcher poll interval in seconds"""

    debounce: float = DEFAULT_DEBOUNCE
    """Watcher debounce window in seconds"""

    filters: FilterSet = field(default_factory=FilterSet)
    """Ignore and include patterns for passes and the watcher"""

    concurrency: int = DEFAULT_CONCURRENCY
    """Worker pool size per store"""

    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    """Retries per remote operation"""

    retry_delay: float = DEFAULT_RETRY_DELAY
    """Base backoff delay in seconds"""

    def watcher_differs(self, other: "SchedulerSettings") -> bool:
        """Whether switching to ``other`` requires a new watcher."""
        return (
            self.watch_mode != other.watch_mode
            or self.poll_interval != other.poll_interval
            or self.debounce != other.debounce
            or self.filters != other.filters
        )


@dataclass(frozen=True)
class Trigger:
    """Request a pass."""

    reason: str = "manual"


@dataclass(frozen=True)
class ReloadConfig:
    """Replace the scheduler settings.

    Without settings the scheduler loop calls its settings loader.
    """

    settings: Optional[SchedulerSettings] = None


@dataclass(frozen=True)
class Shutdown:
    """Stop the scheduler after the in-flight pass drained."""


@dataclass(frozen=True)
class PassFinished:
    """Posted by the pass thread when a pass ends."""

    result: Any = None
    error: Optional[BaseException] = None


ControlMessage = Union[Trigger, ReloadConfig, Shutdown, PassFinished]

PassRunner = Callable[[threading.Event, SchedulerSettings], Any]
WatcherFactory = Callable[[SchedulerSettings], ChangeWatcher]


class SyncScheduler:
    """Runs synchronization passes on a timer and on file changes.

    At most one pass runs at a time. Triggers that arrive while a pass is
    running collapse into a single follow-up pass. The interval timer
    restarts whenever a pass ends.
    """

    def __init__(
        self,
        run_pass: PassRunner,
        settings: Optional[SchedulerSettings] = None,
        watcher_factory: Optional[WatcherFactory] = None,
        settings_loader: Optional[Callable[[], SchedulerSettings]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize scheduler.

        Args:
            run_pass: Callable performing one pass; receives a cancel event
                that is set on shutdown and the settings current at pass start
            settings: Initial settings
            watcher_factory: Creates the change watcher used in watch mode
            settings_loader: Reads fresh settings when a reload request
                carries none (e.g. from the configuration file on SIGHUP)
            logger: Logger (defaults to the module logger)
            clock: Monotonic clock used for the interval timer
        """
        self.run_pass = run_pass
        self.settings = settings or SchedulerSettings()
        self.watcher_factory = watcher_factory
        self.settings_loader = settings_loader
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.control: queue.Queue[ControlMessage] = queue.Queue()

        self._state = SchedulerState.IDLE
        self._pending = False
        self._next_due: Optional[float] = None
        self._cancel_event = threading.Event()
        self._pass_thread: Optional[threading.Thread] = None
        self._watcher: Optional[ChangeWatcher] = None
        self._pump_stop: Optional[threading.Event] = None
        self._pump_thread: Optional[threading.Thread] = None

        self.passes_completed = 0
        self.last_result: Any = None
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> SchedulerState:
        """Current scheduler state."""
        return self._state

    def trigger(self, reason: str = "manual") -> None:
        """Request a pass (safe to call from any thread or signal handler)."""
        self.control.put(Trigger(reason))

    def reload(self, settings: Optional[SchedulerSettings] = None) -> None:
        """Request a settings reload (safe to call from a signal handler).

        Args:
            settings: New settings, or None to have the scheduler loop call
                its settings loader
        """
        self.control.put(ReloadConfig(settings))

    def stop(self) -> None:
        """Request shutdown."""
        self.control.put(Shutdown())

    def run(self) -> None:
        """Run the scheduler loop until shutdown.

        Raises:
            WatcherIOError: If watch mode is enabled and the watcher cannot
                be started
        """
        if self.settings.watch_mode:
            self._start_watcher()

        self.logger.info(
            "Scheduler started (interval=%.0fs, watch=%s)",
            self.settings.sync_interval,
            self.settings.watch_mode,
        )
        self._start_pass("initial sync")

        try:
            while self._state != SchedulerState.STOPPED:
                try:
                    message = self.control.get(timeout=self._timeout())
                except queue.Empty:
                    self._on_timer()
                    continue
                self._dispatch(message)
        finally:
            self._stop_watcher()
            self.logger.info("Scheduler stopped")

    def _timeout(self) -> Optional[float]:
        """Seconds until the timer fires, or None to block."""
        if self._state != SchedulerState.IDLE or self._next_due is None:
            return None
        return max(0.0, self._next_due - self.clock())

    def _dispatch(self, message: ControlMessage) -> None:
        if isinstance(message, PassFinished):
            self._on_pass_finished(message)
        elif isinstance(message, Shutdown):
            self._on_shutdown()
        elif self._state == SchedulerState.STOPPING:
            self.logger.debug(f"Ignoring {message} while stopping")
        elif isinstance(message, Trigger):
            self._on_trigger(message.reason)
        elif isinstance(message, ReloadConfig):
            self._on_reload(message)

    def _on_timer(self) -> None:
        self._next_due = None
        self._on_trigger("interval")

    def _on_trigger(self, reason: str) -> None:
        if self._state == SchedulerState.RUNNING:
            if not self._pending:
                self.logger.debug(f"Pass running, queueing follow-up ({reason})")
            self._pending = True
            return
        self._start_pass(reason)

    def _on_reload(self, message: ReloadConfig) -> None:
        settings = message.settings
        if settings is None:
            if self.settings_loader is None:
                self.logger.warning("Reload requested but no settings loader is configured")
                return
            try:
                settings = self.settings_loader()
            except ConfigError as e:
                self.logger.error(f"Reload failed, keeping current configuration: {e}")
                return

        previous = self.settings
        self.settings = settings
        self.logger.info(
            "Configuration reloaded (interval=%.0fs, watch=%s)",
            settings.sync_interval,
            settings.watch_mode,
        )
        if self._state == SchedulerState.IDLE:
            self._schedule_next()

        if previous.watcher_differs(settings):
            self._stop_watcher()
            if settings.watch_mode:
                try:
                    self._start_watcher()
                except WatcherIOError as e:
                    self.logger.error(f"Could not restart watcher: {e}")

    def _on_shutdown(self) -> None:
        if self._state in (SchedulerState.STOPPING, SchedulerState.STOPPED):
            return
        self.logger.info("Shutting down scheduler")
        self._stop_watcher()
        self._cancel_event.set()
        if self._state == SchedulerState.RUNNING:
            self._state = SchedulerState.STOPPING
            self.logger.info("Waiting for in-flight pass to finish")
        else:
            self._state = SchedulerState.STOPPED

    def _on_pass_finished(self, message: PassFinished) -> None:
        if self._pass_thread is not None:
            self._pass_thread.join()
            self._pass_thread = None

        self.passes_completed += 1
        self.last_error = message.error
        if message.error is None:
            self.last_result = message.result

        if self._state == SchedulerState.STOPPING:
            self._state = SchedulerState.STOPPED
            return

        self._state = SchedulerState.IDLE
        self._schedule_next()
        if self._pending:
            self._pending = False
            self._start_pass("queued trigger")

    def _schedule_next(self) -> None:
        if self.settings.sync_interval > 0:
            self._next_due = self.clock() + self.settings.sync_interval
        else:
            self._next_due = None

    def _start_pass(self, reason: str) -> None:
        self.logger.info(f"Starting sync pass ({reason})")
        self._state = SchedulerState.RUNNING
        self._next_due = None
        self._pass_thread = threading.Thread(
            target=self._pass_worker,
            args=(self._cancel_event, self.settings),
            name="pycsync-pass",
            daemon=True,
        )
        self._pass_thread.start()

    def _pass_worker(
        self, cancel_event: threading.Event, settings: SchedulerSettings
    ) -> None:
        start = time.time()
        try:
            result = self.run_pass(cancel_event, settings)
        except Exception as e:
            self.logger.exception(f"Sync pass failed: {e}")
            self.control.put(PassFinished(error=e))
            return
        self.logger.info(f"Sync pass finished in {time.time() - start:.1f}s")
        self.control.put(PassFinished(result=result))

    def _start_watcher(self) -> None:
        if self.watcher_factory is None:
            self.logger.warning("Watch mode requested but no watcher is configured")
            return
        watcher = self.watcher_factory(self.settings)
        watcher.start()
        self._watcher = watcher
        self._pump_stop = threading.Event()
        self._pump_thread = threading.Thread(
            target=self._pump_events,
            args=(watcher, self._pump_stop),
            name="pycsync-watch-pump",
            daemon=True,
        )
        self._pump_thread.start()

    def _stop_watcher(self) -> None:
        if self._pump_stop is not None:
            self._pump_stop.set()
        if self._watcher is not None:
            self._watcher.stop(timeout=5.0)
            self._watcher = None
        if self._pump_thread is not None:
            self._pump_thread.join(timeout=5.0)
            self._pump_thread = None
        self._pump_stop = None

    def _pump_events(self, watcher: ChangeWatcher, stop_event: threading.Event) -> None:
        """Forward watcher output into the control queue."""
        while not stop_event.is_set():
            while not watcher.errors.empty():
                self.logger.warning(f"Watcher error: {watcher.errors.get_nowait()}")
            try:
                event = watcher.events.get(timeout=0.2)
            except queue.Empty:
                continue
            self.control.put(Trigger(f"{event.kind.value}: {event.relative_path}"))


def default_pid_file() -> Path:
    """Return the default PID file location."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / "pycsync.pid"
    return Path.home() / ".cache" / "pycsync" / "pycsync.pid"


def write_pid_file(path: Path, pid: Optional[int] = None) -> None:
    """Write the PID of the running daemon."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{pid or os.getpid()}\n")


def read_pid_file(path: Path) -> Optional[int]:
    """Read a PID file.

    Returns:
        The PID, or None if the file is missing or malformed
    """
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


def remove_pid_file(path: Path) -> None:
    """Remove a PID file if it exists."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def is_process_running(pid: int) -> bool:
    """Check whether a process with the given PID exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True
