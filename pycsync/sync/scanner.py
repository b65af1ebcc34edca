"""Directory scanning utilities for sync operations."""

import logging
import os
import stat as stat_module
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from ..exceptions import HashError, ScanError
from ..utils import md5_file
from .patterns import FilterSet
from .state import HashCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entry:
    """One filesystem object discovered by a scan."""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    is_dir: bool
    """Whether this entry is a directory"""

    size: int
    """File size in bytes (not meaningful for directories)"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    mtime_ns: int = 0
    """Last modification time in nanoseconds, used for change detection"""

    content_hash: str = ""
    """MD5 hex digest of the content; empty for directories and empty files"""

    path: Path = field(default=Path(), compare=False)
    """Absolute path on the local filesystem"""

    @property
    def parts(self) -> tuple[str, ...]:
        """Ordered path segments from the sync root."""
        return tuple(self.relative_path.split("/"))

    @property
    def name(self) -> str:
        """Final path segment."""
        return self.relative_path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> str:
        """Relative path of the containing directory ("" for the root)."""
        if "/" not in self.relative_path:
            return ""
        return self.relative_path.rsplit("/", 1)[0]


class Inventory:
    """Immutable set of entries produced by one scan of one root.

    Examples:
        >>> inventory = scan_directory(Path("/sync/folder"))  # doctest: +SKIP
        >>> "docs/readme.md" in inventory  # doctest: +SKIP
        True
    """

    def __init__(
        self,
        root: Path,
        entries: tuple[Entry, ...],
        scanned_at: Optional[float] = None,
    ):
        self._root = root
        self._entries = tuple(entries)
        self._by_path: Mapping[str, Entry] = MappingProxyType(
            {entry.relative_path: entry for entry in self._entries}
        )
        if len(self._by_path) != len(self._entries):
            raise ValueError("Inventory contains duplicate relative paths")
        self._scanned_at = time.time() if scanned_at is None else scanned_at

    @property
    def root(self) -> Path:
        """Root directory that was scanned."""
        return self._root

    @property
    def scanned_at(self) -> float:
        """Unix timestamp of the scan."""
        return self._scanned_at

    @property
    def entries(self) -> tuple[Entry, ...]:
        """All entries in scan order."""
        return self._entries

    @property
    def by_path(self) -> Mapping[str, Entry]:
        """Read-only mapping from relative path to entry."""
        return self._by_path

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self._by_path

    def __repr__(self) -> str:
        return f"Inventory(root={str(self._root)!r}, entries={len(self._entries)})"

    def get(self, relative_path: str) -> Optional[Entry]:
        """Return the entry for a relative path, if present."""
        return self._by_path.get(relative_path)

    def paths(self) -> list[str]:
        """Relative paths of all entries."""
        return [entry.relative_path for entry in self._entries]

    def files(self) -> list[Entry]:
        """File entries only."""
        return [entry for entry in self._entries if not entry.is_dir]

    def directories(self) -> list[Entry]:
        """Directory entries only."""
        return [entry for entry in self._entries if entry.is_dir]

    @property
    def total_size(self) -> int:
        """Sum of file sizes in bytes."""
        return sum(entry.size for entry in self._entries if not entry.is_dir)


class DirectoryScanner:
    """Scans a directory tree and builds an Inventory.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> inventory = scanner.scan(Path("/sync/folder"))  # doctest: +SKIP

        >>> # With ignore patterns
        >>> filters = FilterSet(ignore=("*.tmp", "cache/"))
        >>> scanner = DirectoryScanner(filters)
        >>> inventory = scanner.scan(Path("/sync/folder"))  # doctest: +SKIP
    """

    def __init__(
        self,
        filters: Optional[FilterSet] = None,
        hash_contents: bool = True,
        hash_cache: Optional[HashCache] = None,
        skip_unreadable: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize directory scanner.

        Args:
            filters: Ignore/include patterns (defaults to no filtering)
            hash_contents: Whether to compute content hashes for files
            hash_cache: Optional cache reused while size and mtime match
            skip_unreadable: Skip sub-directories that cannot be listed
                instead of failing the scan
            logger: Logger for warnings (defaults to the module logger)
        """
        self.filters = filters or FilterSet()
        self.hash_contents = hash_contents
        self.hash_cache = hash_cache
        self.skip_unreadable = skip_unreadable
        self.logger = logger or logging.getLogger(__name__)

    def scan(self, root: Path) -> Inventory:
        """Recursively scan a directory.

        Args:
            root: Directory to scan

        Returns:
            Inventory of every entry that survives the filters

        Raises:
            ScanError: If the root is inaccessible or a directory cannot be read
        """
        root = Path(root)
        try:
            root_stat = root.stat()
        except OSError as e:
            raise ScanError(f"Cannot access sync root {root}: {e}") from e
        if not stat_module.S_ISDIR(root_stat.st_mode):
            raise ScanError(f"Sync root is not a directory: {root}")

        start = time.time()
        entries: list[Entry] = []
        self._scan_directory(root, root, "", entries)

        if self.hash_cache is not None and self.hash_contents:
            self.hash_cache.retain({e.relative_path for e in entries if not e.is_dir})

        self.logger.debug(
            "Scanned %s: %d entries in %.2fs", root, len(entries), time.time() - start
        )
        return Inventory(root=root, entries=tuple(entries), scanned_at=start)

    def _scan_directory(
        self,
        root: Path,
        directory: Path,
        prefix: str,
        entries: list[Entry],
    ) -> None:
        """Depth-first traversal of one directory, appending to entries."""
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda d: d.name)
        except OSError as e:
            if directory != root and self.skip_unreadable:
                self.logger.warning(f"Skipping unreadable directory {directory}: {e}")
                return
            raise ScanError(f"Failed to read directory {directory}: {e}") from e

        for child in children:
            relative_path = f"{prefix}{child.name}"
            try:
                # Do not descend through directory symlinks (loop protection)
                is_dir = child.is_dir(follow_symlinks=False)
                st = child.stat(follow_symlinks=True)
            except FileNotFoundError:
                self.logger.debug(f"Vanished during scan: {relative_path}")
                continue
            except OSError as e:
                if self.skip_unreadable:
                    self.logger.warning(f"Skipping {relative_path}: {e}")
                    continue
                raise ScanError(f"Failed to stat {child.path}: {e}") from e

            if not is_dir and not stat_module.S_ISREG(st.st_mode):
                # Sockets, FIFOs, devices and symlinks to directories
                self.logger.debug(f"Skipping non-regular file: {relative_path}")
                continue

            if self.filters.is_ignored(relative_path, is_dir=is_dir):
                self.logger.debug(f"Ignoring (from rules): {relative_path}")
                continue

            if not self.filters.is_included(relative_path, is_dir=is_dir):
                continue

            content_hash = ""
            if not is_dir and st.st_size > 0 and self.hash_contents:
                content_hash = self._hash_file(
                    Path(child.path), relative_path, st.st_size, st.st_mtime_ns
                )

            entries.append(
                Entry(
                    relative_path=relative_path,
                    is_dir=is_dir,
                    size=0 if is_dir else st.st_size,
                    mtime=st.st_mtime,
                    mtime_ns=st.st_mtime_ns,
                    content_hash=content_hash,
                    path=Path(child.path),
                )
            )

            if is_dir:
                self._scan_directory(root, Path(child.path), relative_path + "/", entries)

    def _hash_file(
        self, file_path: Path, relative_path: str, size: int, mtime_ns: int
    ) -> str:
        """Hash a file, consulting the cache; returns "" on failure."""
        if self.hash_cache is not None:
            cached = self.hash_cache.get(relative_path, size, mtime_ns)
            if cached is not None:
                return cached

        try:
            content_hash = compute_hash(file_path)
        except HashError as e:
            self.logger.warning(str(e))
            if self.hash_cache is not None:
                self.hash_cache.invalidate(relative_path)
            return ""

        if self.hash_cache is not None:
            self.hash_cache.put(relative_path, size, mtime_ns, content_hash)
        return content_hash


def compute_hash(file_path: Path) -> str:
    """Compute the content fingerprint of a file.

    Raises:
        HashError: If the file cannot be read
    """
    try:
        return md5_file(file_path)
    except OSError as e:
        raise HashError(f"Failed to calculate MD5 for {file_path}: {e}") from e


def scan_directory(root: Path, filters: Optional[FilterSet] = None) -> Inventory:
    """Scan a directory with default settings.

    Args:
        root: Directory to scan
        filters: Optional ignore/include patterns

    Returns:
        Inventory of the tree
    """
    return DirectoryScanner(filters).scan(root)
