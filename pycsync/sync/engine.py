"""Core sync engine for executing sync operations."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from ..exceptions import RemotePermanentError
from ..output import OutputFormatter
from ..remote.base import RemoteFileInfo, RemoteStore
from ..utils import DEFAULT_CONCURRENCY, DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY
from .comparator import FileComparator, TaskKind, TransferTask, plan_order_key
from .operations import RetryPolicy, SyncOperations
from .patterns import FilterSet
from .scanner import DirectoryScanner, Inventory
from .state import HashCache

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Result of executing a single task."""

    CREATED = "created"
    UPDATED = "updated"
    FOLDER_CREATED = "folder_created"
    FOLDER_EXISTS = "folder_exists"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SyncFailure:
    """One entry that could not be synchronized."""

    path: str
    """Relative path of the entry"""

    error: str
    """Error message"""

    exception: Optional[BaseException] = field(default=None, compare=False, repr=False)
    """Original exception, if any"""


@dataclass
class SyncResult:
    """Summary of one synchronization pass against one store."""

    store: str = ""
    dry_run: bool = False
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    folders_created: int = 0
    tasks: list[TransferTask] = field(default_factory=list, repr=False)
    failures: list[SyncFailure] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        """True when no entry failed."""
        return self.failed == 0

    @property
    def succeeded(self) -> int:
        """Number of entries that ended in a consistent state."""
        return self.created + self.updated + self.skipped

    @property
    def total_actions(self) -> int:
        """Number of mutating actions (performed or, in dry run, planned)."""
        return self.created + self.updated

    def add_failure(self, path: str, exc: BaseException) -> None:
        """Record a failed entry."""
        self.failed += 1
        self.failures.append(SyncFailure(path=path, error=str(exc), exception=exc))

    def to_dict(self) -> dict[str, Any]:
        """Convert result to a JSON-serializable dictionary."""
        return {
            "store": self.store,
            "dry_run": self.dry_run,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "folders_created": self.folders_created,
            "failures": [{"path": f.path, "error": f.error} for f in self.failures],
            "duration": round(self.duration, 3),
        }


class SyncEngine:
    """Core sync engine that pushes a local tree to one remote store.

    A pass has two phases. The decision phase looks up remote metadata for
    every file and turns the inventory into TransferTasks. The execution
    phase hands the tasks to a bounded thread pool; an upload never starts
    before the folder it goes into has been created.
    """

    def __init__(
        self,
        store: RemoteStore,
        output: Optional[OutputFormatter] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        comparator: Optional[FileComparator] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize sync engine.

        Args:
            store: Remote store to synchronize into
            output: Output formatter for displaying plan/summary
            concurrency: Default number of parallel workers (minimum 1)
            retry_attempts: Default number of retries for transient errors
            retry_delay: Base backoff delay in seconds
            comparator: Decision policy (defaults to FileComparator())
            logger: Logger for debug output (defaults to the module logger)
        """
        self.store = store
        self.output = output or OutputFormatter(quiet=True)
        self.concurrency = max(1, concurrency)
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.comparator = comparator or FileComparator()
        self.logger = logger or logging.getLogger(__name__)

    def synchronize(
        self,
        root: Path,
        filters: Optional[FilterSet] = None,
        dry_run: bool = False,
        concurrency: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        hash_cache: Optional[HashCache] = None,
    ) -> SyncResult:
        """Scan a local directory and synchronize it to the store.

        Args:
            root: Local directory to synchronize
            filters: Ignore/include patterns
            dry_run: If True, only report what would be done
            concurrency: Number of parallel workers (overrides the default)
            retry_attempts: Retries for transient errors (overrides the default)
            cancel_event: Event that stops dispatching new tasks when set
            progress_callback: Called with (completed, total) after each task
            hash_cache: Optional content hash cache for the scan

        Returns:
            SyncResult for the pass

        Raises:
            ScanError: If the local directory cannot be scanned

        Examples:
            >>> engine = SyncEngine(LocalDirectoryStore(Path("/mnt/backup")))
            >>> result = engine.synchronize(Path("/home/user/docs"), dry_run=True)
            >>> print(f"Would upload {result.created + result.updated} files")
        """  # noqa: D412
        scanner = DirectoryScanner(filters, hash_cache=hash_cache, logger=self.logger)
        inventory = scanner.scan(root)
        return self.sync_inventory(
            inventory,
            dry_run=dry_run,
            concurrency=concurrency,
            retry_attempts=retry_attempts,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
        )

    def sync_inventory(
        self,
        inventory: Inventory,
        dry_run: bool = False,
        concurrency: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> SyncResult:
        """Synchronize an already scanned inventory.

        Entry-level failures are collected in the result; they never abort
        the pass.
        """
        workers = max(1, concurrency if concurrency is not None else self.concurrency)
        attempts = self.retry_attempts if retry_attempts is None else retry_attempts
        cancel_event = cancel_event or threading.Event()
        operations = SyncOperations(
            self.store,
            retry=RetryPolicy(attempts=attempts, delay=self.retry_delay),
            cancel_event=cancel_event,
        )

        result = SyncResult(store=self.store.name, dry_run=dry_run)
        start = time.time()

        if not self.output.quiet:
            self.output.info(f"Syncing: {inventory.root} -> {self.store.name}")
            if dry_run:
                self.output.info("Dry run: No changes will be made")

        # Step 1: Decide what to do with every entry
        tasks = self._plan(inventory, operations, workers, cancel_event, result)
        result.tasks = tasks
        self._display_sync_plan(tasks, dry_run)

        # Step 2: Execute (or just count) the decisions
        if dry_run:
            self._count_planned(tasks, result)
        else:
            self._execute(
                tasks, operations, workers, cancel_event, result, progress_callback
            )

        result.failures.sort(key=lambda f: tuple(f.path.split("/")))
        result.duration = time.time() - start
        self.logger.debug(
            "Pass against %s finished in %.2fs: %s",
            self.store.name,
            result.duration,
            result.to_dict(),
        )

        if not self.output.quiet:
            self._display_summary(result)
        return result

    def plan(
        self,
        inventory: Inventory,
        concurrency: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[TransferTask]:
        """Run only the decision phase and return the tasks.

        Lookup failures are logged and the affected files are left out.
        """
        workers = max(1, concurrency if concurrency is not None else self.concurrency)
        cancel_event = cancel_event or threading.Event()
        operations = SyncOperations(
            self.store,
            retry=RetryPolicy(attempts=self.retry_attempts, delay=self.retry_delay),
            cancel_event=cancel_event,
        )
        result = SyncResult(store=self.store.name, dry_run=True)
        tasks = self._plan(inventory, operations, workers, cancel_event, result)
        for failure in result.failures:
            self.logger.warning(f"Could not check {failure.path}: {failure.error}")
        return tasks

    def _plan(
        self,
        inventory: Inventory,
        operations: SyncOperations,
        workers: int,
        cancel_event: threading.Event,
        result: SyncResult,
    ) -> list[TransferTask]:
        """Decision phase: query remote metadata and build the task list.

        Tasks come back in path order with each directory ahead of the
        entries it contains.
        """
        entries = sorted(inventory, key=plan_order_key)
        files = [entry for entry in entries if not entry.is_dir]

        def lookup(entry) -> tuple[Optional[RemoteFileInfo], Optional[BaseException]]:
            if cancel_event.is_set():
                return None, _CANCELLED
            try:
                return operations.lookup(entry.relative_path), None
            except Exception as e:
                return None, e

        lookups: dict[str, tuple[Optional[RemoteFileInfo], Optional[BaseException]]]
        lookups = {}
        if files:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                for entry, outcome in zip(files, executor.map(lookup, files)):
                    lookups[entry.relative_path] = outcome

        tasks: list[TransferTask] = []
        for entry in entries:
            if entry.is_dir:
                tasks.append(self.comparator.folder_task(entry, entry.relative_path))
                continue

            remote_info, error = lookups[entry.relative_path]
            if error is _CANCELLED:
                result.cancelled += 1
            elif error is not None:
                self.logger.debug(f"Lookup failed for {entry.relative_path}: {error}")
                result.add_failure(entry.relative_path, error)
            else:
                tasks.append(
                    self.comparator.compare(entry, entry.relative_path, remote_info)
                )
        return tasks

    def _count_planned(self, tasks: list[TransferTask], result: SyncResult) -> None:
        """Fill dry-run counts from the plan."""
        for task in tasks:
            if task.kind == TaskKind.CREATE_FOLDER:
                result.folders_created += 1
                result.created += 1
            elif task.kind == TaskKind.UPLOAD:
                if task.is_update:
                    result.updated += 1
                else:
                    result.created += 1
            else:
                result.skipped += 1

    def _execute(
        self,
        tasks: list[TransferTask],
        operations: SyncOperations,
        workers: int,
        cancel_event: threading.Event,
        result: SyncResult,
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> None:
        """Execute tasks in a bounded thread pool.

        Tasks are submitted in plan order. A task whose parent directory
        has a CREATE_FOLDER task waits for that task's future; because the
        pool hands out work first-in first-out, the parent is always already
        running or done when a child starts waiting.
        """
        actionable = [task for task in tasks if task.kind != TaskKind.SKIP]
        result.skipped += len(tasks) - len(actionable)
        if not actionable:
            return

        self.logger.debug(f"Executing {len(actionable)} actions with {workers} workers")

        folder_futures: dict[str, Future] = {}
        completed = 0
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: dict[Future, TransferTask] = {}
            for task in actionable:
                parent_future = folder_futures.get(task.entry.parent)
                future = executor.submit(
                    self._run_task, task, operations, parent_future, cancel_event
                )
                if task.kind == TaskKind.CREATE_FOLDER:
                    folder_futures[task.relative_path] = future
                futures[future] = task

            for future in as_completed(futures):
                task = futures[future]
                try:
                    outcome, error = future.result()
                except Exception as e:
                    # _run_task catches everything; this is a programming error
                    outcome, error = Outcome.FAILED, e
                self._record(task, outcome, error, result)
                completed += 1
                if progress_callback is not None:
                    progress_callback(completed, len(actionable))

    def _run_task(
        self,
        task: TransferTask,
        operations: SyncOperations,
        parent_future: Optional[Future],
        cancel_event: threading.Event,
    ) -> tuple[Outcome, Optional[BaseException]]:
        """Execute a single task inside a worker thread."""
        if parent_future is not None:
            parent_outcome, _ = parent_future.result()
            if parent_outcome == Outcome.CANCELLED:
                return Outcome.CANCELLED, None
            if parent_outcome == Outcome.FAILED:
                parent = task.entry.parent
                return Outcome.FAILED, RemotePermanentError(
                    f"Parent folder {parent} was not created", task.remote_path
                )

        # Dispatch boundary: do not start new work once cancelled
        if cancel_event.is_set():
            return Outcome.CANCELLED, None

        start = time.time()
        try:
            if task.kind == TaskKind.CREATE_FOLDER:
                created = operations.create_folder(task.remote_path)
                outcome = Outcome.FOLDER_CREATED if created else Outcome.FOLDER_EXISTS
            else:
                self.logger.debug(f"Uploading {task.relative_path}...")
                operations.upload_file(task.entry.path, task.remote_path)
                outcome = Outcome.UPDATED if task.is_update else Outcome.CREATED
        except Exception as e:
            self.logger.debug(
                f"Failed {task.relative_path} in {time.time() - start:.2f}s: {e}"
            )
            return Outcome.FAILED, e

        self.logger.debug(f"Completed {task.relative_path} in {time.time() - start:.2f}s")
        return outcome, None

    def _record(
        self,
        task: TransferTask,
        outcome: Outcome,
        error: Optional[BaseException],
        result: SyncResult,
    ) -> None:
        """Fold one task outcome into the result."""
        if outcome == Outcome.CREATED:
            result.created += 1
        elif outcome == Outcome.UPDATED:
            result.updated += 1
        elif outcome == Outcome.FOLDER_CREATED:
            result.created += 1
            result.folders_created += 1
        elif outcome == Outcome.FOLDER_EXISTS:
            result.skipped += 1
        elif outcome == Outcome.CANCELLED:
            result.cancelled += 1
        else:
            error = error or RuntimeError("unknown error")
            result.add_failure(task.relative_path, error)
            if not self.output.quiet:
                self.output.error(f"Error syncing {task.relative_path}: {error}")

    def _display_sync_plan(self, tasks: list[TransferTask], dry_run: bool) -> None:
        """Display sync plan to user."""
        if self.output.quiet:
            return

        folders = sum(1 for t in tasks if t.kind == TaskKind.CREATE_FOLDER)
        uploads = sum(1 for t in tasks if t.kind == TaskKind.UPLOAD and not t.is_update)
        updates = sum(1 for t in tasks if t.is_update)
        skips = sum(1 for t in tasks if t.kind == TaskKind.SKIP)

        self.output.info("Sync plan:")
        if folders > 0:
            self.output.info(f"  + Ensure folder: {folders}")
        if uploads > 0:
            self.output.info(f"  ↑ Upload: {uploads} file(s)")
        if updates > 0:
            self.output.info(f"  ↻ Update: {updates} file(s)")
        if skips > 0:
            self.output.info(f"  = Skip: {skips} file(s)")

        if dry_run:
            self.output.print("")
            for task in tasks:
                if task.kind == TaskKind.SKIP:
                    continue
                label = "mkdir" if task.kind == TaskKind.CREATE_FOLDER else "upload"
                self.output.info(f"  [{label}] {task.remote_path} ({task.reason})")

        self.output.print("")

    def _display_summary(self, result: SyncResult) -> None:
        """Display sync summary."""
        if result.dry_run:
            self.output.success("Dry run complete!")
        elif result.failed:
            self.output.warning(f"Sync finished with {result.failed} failure(s)")
        else:
            self.output.success("Sync complete!")

        if result.total_actions > 0:
            verb = "Would create" if result.dry_run else "Created"
            self.output.info(f"  {verb}: {result.created}")
            if result.updated > 0:
                verb = "Would update" if result.dry_run else "Updated"
                self.output.info(f"  {verb}: {result.updated}")
        else:
            self.output.info("No changes needed - everything is in sync!")
        if result.cancelled > 0:
            self.output.info(f"  Cancelled: {result.cancelled}")
        for failure in result.failures:
            self.output.warning(f"  {failure.path}: {failure.error}")


class _Cancelled(Exception):
    """Marker for lookups skipped because the pass was cancelled."""


_CANCELLED = _Cancelled()
