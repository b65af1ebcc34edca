"""File comparison logic for sync operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..remote.base import RemoteFileInfo
from ..utils import MTIME_TOLERANCE
from .scanner import Entry


class TaskKind(str, Enum):
    """Actions that can be taken during sync."""

    CREATE_FOLDER = "create_folder"
    """Create the remote folder for a local directory"""

    UPLOAD = "upload"
    """Upload local file to remote (create or overwrite)"""

    SKIP = "skip"
    """Skip file (no action needed)"""


@dataclass(frozen=True)
class TransferTask:
    """Represents a decision about how to sync one entry."""

    kind: TaskKind
    """Action to take"""

    entry: Entry
    """Local entry the task is about"""

    remote_path: str
    """Destination path in the remote store"""

    reason: str = ""
    """Human-readable reason for this decision"""

    remote_info: Optional[RemoteFileInfo] = None
    """Remote metadata the decision was based on (if the object exists)"""

    @property
    def relative_path(self) -> str:
        """Relative path of the local entry."""
        return self.entry.relative_path

    @property
    def is_update(self) -> bool:
        """Whether an upload overwrites an existing remote object."""
        return self.kind == TaskKind.UPLOAD and self.remote_info is not None


def plan_order_key(entry: Entry) -> tuple[str, ...]:
    """Sort key placing every directory before the entries it contains."""
    return entry.parts


class FileComparator:
    """Compares local entries with remote metadata to determine sync actions.

    Content hashes decide whenever both sides have one, so touching a file
    without changing it never causes a transfer. Size and modification time
    are only consulted when a hash is missing.
    """

    def __init__(self, mtime_tolerance: float = MTIME_TOLERANCE):
        """Initialize file comparator.

        Args:
            mtime_tolerance: Seconds of clock skew tolerated when falling
                back to modification time comparison
        """
        self.mtime_tolerance = mtime_tolerance

    def folder_task(self, entry: Entry, remote_path: str) -> TransferTask:
        """Decision for a directory entry (always an idempotent create)."""
        return TransferTask(
            kind=TaskKind.CREATE_FOLDER,
            entry=entry,
            remote_path=remote_path,
            reason="Ensure remote folder exists",
        )

    def compare(
        self,
        entry: Entry,
        remote_path: str,
        remote_info: Optional[RemoteFileInfo],
    ) -> TransferTask:
        """Compare a file entry with the remote object at its destination.

        Args:
            entry: Local file entry
            remote_path: Mapped remote path
            remote_info: Remote metadata, or None if nothing exists there

        Returns:
            TransferTask for this file
        """
        if remote_info is None:
            return self._task(TaskKind.UPLOAD, entry, remote_path, "New local file")

        if remote_info.is_folder:
            # Let the store report the conflict as a task failure
            return self._task(
                TaskKind.UPLOAD,
                entry,
                remote_path,
                "Remote path is a folder",
                remote_info,
            )

        if entry.size > 0 and not entry.content_hash:
            return self._task(
                TaskKind.UPLOAD,
                entry,
                remote_path,
                "Local hash unavailable, uploading local version",
                remote_info,
            )

        if entry.content_hash and remote_info.content_hash:
            if entry.content_hash.lower() == remote_info.content_hash.lower():
                return self._task(
                    TaskKind.SKIP,
                    entry,
                    remote_path,
                    "Files are identical (same hash)",
                    remote_info,
                )
            return self._task(
                TaskKind.UPLOAD,
                entry,
                remote_path,
                "Content hash differs",
                remote_info,
            )

        return self._compare_without_hash(entry, remote_path, remote_info)

    def _compare_without_hash(
        self, entry: Entry, remote_path: str, remote_info: RemoteFileInfo
    ) -> TransferTask:
        """Fallback when either side has no hash (empty file or backend limit)."""
        if entry.size != remote_info.size:
            reason = f"Different sizes ({entry.size} vs {remote_info.size})"
            return self._task(TaskKind.UPLOAD, entry, remote_path, reason, remote_info)

        if entry.size == 0:
            return self._task(
                TaskKind.SKIP, entry, remote_path, "Both files are empty", remote_info
            )

        if remote_info.modified is None:
            return self._task(
                TaskKind.SKIP,
                entry,
                remote_path,
                "Same size, remote hash and mtime unavailable",
                remote_info,
            )

        if entry.mtime - remote_info.modified > self.mtime_tolerance:
            return self._task(
                TaskKind.UPLOAD,
                entry,
                remote_path,
                "Local file is newer",
                remote_info,
            )

        return self._task(
            TaskKind.SKIP,
            entry,
            remote_path,
            "Same size and remote is not older",
            remote_info,
        )

    @staticmethod
    def _task(
        kind: TaskKind,
        entry: Entry,
        remote_path: str,
        reason: str,
        remote_info: Optional[RemoteFileInfo] = None,
    ) -> TransferTask:
        return TransferTask(
            kind=kind,
            entry=entry,
            remote_path=remote_path,
            reason=reason,
            remote_info=remote_info,
        )
