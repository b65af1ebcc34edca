"""Sync engine for pycsync - one-way synchronization to remote stores."""

from .comparator import FileComparator, TaskKind, TransferTask
from .engine import SyncEngine, SyncFailure, SyncResult
from .manager import SyncManager
from .operations import RetryPolicy, SyncOperations
from .patterns import (
    DEFAULT_IGNORE_PATTERNS,
    FilterSet,
    matches,
    should_ignore,
    should_include,
)
from .scanner import DirectoryScanner, Entry, Inventory, scan_directory
from .state import HashCache

__all__ = [
    "SyncEngine",
    "SyncManager",
    "SyncResult",
    "SyncFailure",
    "SyncOperations",
    "RetryPolicy",
    "DirectoryScanner",
    "Entry",
    "Inventory",
    "scan_directory",
    "FileComparator",
    "TaskKind",
    "TransferTask",
    "FilterSet",
    "DEFAULT_IGNORE_PATTERNS",
    "matches",
    "should_ignore",
    "should_include",
    "HashCache",
]
