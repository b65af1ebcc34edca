"""Content hash cache shared between scans.

Hashing every file on every pass is the most expensive part of a scan.
The cache remembers the digest computed for a path together with the size
and modification time observed at that moment; the digest is only reused
while both are unchanged, so an edited file is always re-hashed.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedHash:
    """A digest together with the file metadata it was computed for."""

    size: int
    mtime_ns: int
    content_hash: str

    def to_dict(self) -> dict:
        """Convert entry to dictionary for JSON serialization."""
        return {
            "size": self.size,
            "mtime_ns": self.mtime_ns,
            "hash": self.content_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachedHash":
        """Create CachedHash from dictionary."""
        return cls(
            size=int(data["size"]),
            mtime_ns=int(data["mtime_ns"]),
            content_hash=str(data["hash"]),
        )


class HashCache:
    """Size/mtime keyed cache of content hashes for one sync root.

    The cache is in-memory by default. When ``cache_file`` is given it can
    be loaded from and saved to a JSON file so a daemon restart does not
    re-hash the whole tree.

    Examples:
        >>> cache = HashCache()
        >>> cache.put("a.txt", 2, 1000, "49f68a5c8493ec2c0bf489821c21fc3b")
        >>> cache.get("a.txt", 2, 1000)
        '49f68a5c8493ec2c0bf489821c21fc3b'
        >>> cache.get("a.txt", 3, 1000) is None
        True
    """

    def __init__(self, cache_file: Optional[Path] = None):
        """Initialize hash cache.

        Args:
            cache_file: Optional JSON file used by load() and save()
        """
        self.cache_file = cache_file
        self._entries: dict[str, CachedHash] = {}
        self._lock = threading.Lock()

    @staticmethod
    def default_cache_file(root: Path, cache_dir: Optional[Path] = None) -> Path:
        """Get the default cache file location for a sync root.

        Args:
            root: Local sync root
            cache_dir: Directory to store caches. Defaults to
                      ~/.cache/pycsync/hashes/

        Returns:
            Path to the cache file
        """
        if cache_dir is None:
            cache_dir = Path.home() / ".cache" / "pycsync" / "hashes"
        key = hashlib.sha256(str(root.resolve()).encode()).hexdigest()[:16]
        return cache_dir / f"{key}.json"

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, relative_path: str, size: int, mtime_ns: int) -> Optional[str]:
        """Return the cached digest if size and mtime still match."""
        with self._lock:
            cached = self._entries.get(relative_path)
        if cached is None:
            return None
        if cached.size != size or cached.mtime_ns != mtime_ns:
            return None
        return cached.content_hash

    def put(self, relative_path: str, size: int, mtime_ns: int, content_hash: str) -> None:
        """Remember a freshly computed digest."""
        with self._lock:
            self._entries[relative_path] = CachedHash(size, mtime_ns, content_hash)

    def invalidate(self, relative_path: str) -> None:
        """Forget the digest for a path."""
        with self._lock:
            self._entries.pop(relative_path, None)

    def retain(self, relative_paths: set[str]) -> int:
        """Drop entries for paths that no longer exist.

        Args:
            relative_paths: Paths present in the latest scan

        Returns:
            Number of entries removed
        """
        with self._lock:
            stale = [path for path in self._entries if path not in relative_paths]
            for path in stale:
                del self._entries[path]
        return len(stale)

    def load(self) -> int:
        """Load entries from the cache file.

        Returns:
            Number of entries loaded (0 if there is no usable file)
        """
        if self.cache_file is None or not self.cache_file.exists():
            logger.debug(f"No hash cache found at {self.cache_file}")
            return 0

        try:
            with open(self.cache_file, encoding="utf-8") as f:
                data = json.load(f)
            entries = {
                path: CachedHash.from_dict(item)
                for path, item in data.get("entries", {}).items()
            }
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load hash cache: {e}")
            return 0

        with self._lock:
            self._entries = entries
        logger.debug(f"Loaded {len(entries)} cached hashes from {self.cache_file}")
        return len(entries)

    def save(self) -> None:
        """Write entries to the cache file (no-op without a cache file)."""
        if self.cache_file is None:
            return

        with self._lock:
            data = {
                "entries": {
                    path: cached.to_dict()
                    for path, cached in sorted(self._entries.items())
                }
            }

        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            logger.debug(
                f"Saved {len(data['entries'])} cached hashes to {self.cache_file}"
            )
        except OSError as e:
            logger.warning(f"Failed to save hash cache: {e}")

    def clear(self) -> None:
        """Drop all entries and remove the cache file if present."""
        with self._lock:
            self._entries.clear()
        if self.cache_file is not None and self.cache_file.exists():
            self.cache_file.unlink()
            logger.debug(f"Cleared hash cache at {self.cache_file}")
