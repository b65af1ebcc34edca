"""CLI progress display for sync operations.

This module provides a Rich-based progress display that is fed by the
engine's progress callback.
"""

from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)


class SyncProgressDisplay:
    """Rich-based progress display with one bar per store.

    Use as a context manager and pass :meth:`update` as the manager's
    progress callback.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize the progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._tasks: dict[str, TaskID] = {}

    def __enter__(self) -> "SyncProgressDisplay":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._progress.stop()

    def update(self, store: str, completed: int, total: int) -> None:
        """Handle a progress report from one engine.

        Args:
            store: Store name
            completed: Tasks finished so far
            total: Tasks in this pass
        """
        task_id = self._tasks.get(store)
        if task_id is None:
            task_id = self._progress.add_task(f"Syncing to {store}", total=total)
            self._tasks[store] = task_id
        self._progress.update(task_id, completed=completed, total=total)
