"""Remote store capability interface shared by all backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class RemoteFileInfo:
    """Metadata of an object that already exists in a remote store."""

    path: str
    """Path relative to the store root (forward slashes)"""

    size: int = 0
    """Size in bytes"""

    content_hash: str = ""
    """MD5 hex digest, or empty when the backend cannot provide one"""

    modified: Optional[float] = None
    """Modification marker as Unix timestamp, if known"""

    is_folder: bool = False
    """Whether the object is a folder"""


class RemoteStore(ABC):
    """Abstract destination for synchronized files.

    Paths are relative to the store root and use forward slashes. Stores
    are shared by all workers of a pass and must be safe for concurrent
    use. Failures are reported with the exceptions in
    :mod:`pycsync.exceptions` so the engine can tell transient errors from
    permanent ones.
    """

    name: str = "remote"

    def exists(self, path: str) -> bool:
        """Return True if an object (file or folder) exists at path."""
        return self.get_metadata(path) is not None

    @abstractmethod
    def get_metadata(self, path: str) -> Optional[RemoteFileInfo]:
        """Return metadata for path, or None if nothing is there.

        A missing parent folder also yields None rather than an error.
        """

    @abstractmethod
    def create_folder(self, path: str) -> bool:
        """Create a folder (and missing parents).

        Returns:
            True if created, False if it already existed

        Raises:
            RemoteConflictError: If a file occupies the path
        """

    @abstractmethod
    def upload(self, local_path: Path, path: str) -> RemoteFileInfo:
        """Upload a local file, overwriting in place if it already exists."""

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete the object at path.

        Returns:
            True if deleted, False if it did not exist
        """

    def close(self) -> None:
        """Release connections held by the store."""

    def __enter__(self) -> "RemoteStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
