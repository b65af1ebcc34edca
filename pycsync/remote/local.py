"""Remote store that mirrors into another local directory.

Useful for mounted network shares, external drives and for trying out a
configuration before pointing it at a cloud provider.
"""

import errno
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from ..exceptions import (
    RemoteConflictError,
    RemoteError,
    RemotePermanentError,
    RemoteQuotaError,
    RemoteTransientError,
)
from ..utils import md5_file
from .base import RemoteFileInfo, RemoteStore

logger = logging.getLogger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, errno.EACCES, errno.EPERM, errno.EROFS}
if hasattr(errno, "EDQUOT"):
    _QUOTA_ERRNOS.add(errno.EDQUOT)

_TRANSIENT_ERRNOS = {errno.EAGAIN, errno.EBUSY, errno.ETIMEDOUT, errno.EIO, errno.EINTR}


def classify_os_error(e: OSError, path: str) -> RemoteError:
    """Map an OSError from the destination filesystem to a RemoteError."""
    if e.errno in _QUOTA_ERRNOS:
        return RemoteQuotaError(f"Permission or space problem at {path}: {e}", path)
    if e.errno in _TRANSIENT_ERRNOS:
        return RemoteTransientError(f"Temporary I/O failure at {path}: {e}", path)
    return RemotePermanentError(f"I/O failure at {path}: {e}", path)


class LocalDirectoryStore(RemoteStore):
    """Store files below a destination directory on the local filesystem."""

    name = "local"

    def __init__(self, root: Path, create: bool = True):
        """Initialize local directory store.

        Args:
            root: Destination directory
            create: Create the destination directory if missing
        """
        self.root = Path(root).expanduser()
        if create:
            self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        """Map a store path to a filesystem path below root."""
        parts = [part for part in path.strip("/").split("/") if part]
        if any(part in (".", "..") for part in parts):
            raise RemotePermanentError(f"Invalid remote path: {path}", path)
        return self.root.joinpath(*parts)

    def get_metadata(self, path: str) -> Optional[RemoteFileInfo]:
        target = self._resolve(path)
        try:
            st = target.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise classify_os_error(e, path) from e

        if target.is_dir():
            return RemoteFileInfo(path=path, modified=st.st_mtime, is_folder=True)

        content_hash = ""
        if st.st_size > 0:
            try:
                content_hash = md5_file(target)
            except OSError as e:
                raise classify_os_error(e, path) from e
        return RemoteFileInfo(
            path=path,
            size=st.st_size,
            content_hash=content_hash,
            modified=st.st_mtime,
        )

    def create_folder(self, path: str) -> bool:
        target = self._resolve(path)
        if target.is_dir():
            return False
        if target.exists():
            raise RemoteConflictError(
                f"Path conflict: {path} is a file, not a folder", path
            )
        try:
            target.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise RemoteConflictError(
                f"Path conflict: a parent of {path} is a file", path
            ) from e
        except OSError as e:
            raise classify_os_error(e, path) from e
        logger.debug(f"Created folder {target}")
        return True

    def upload(self, local_path: Path, path: str) -> RemoteFileInfo:
        target = self._resolve(path)
        if target.is_dir():
            raise RemoteConflictError(
                f"Path conflict: {path} is a folder, not a file", path
            )

        tmp_name: Optional[str] = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".part", dir=target.parent
            )
            with os.fdopen(fd, "wb") as out, open(local_path, "rb") as src:
                shutil.copyfileobj(src, out)
            shutil.copystat(local_path, tmp_name)
            # Atomic overwrite in place
            os.replace(tmp_name, target)
            tmp_name = None
        except (FileExistsError, NotADirectoryError) as e:
            raise RemoteConflictError(
                f"Path conflict: a parent of {path} is a file", path
            ) from e
        except OSError as e:
            raise classify_os_error(e, path) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug(f"Could not remove temporary file {tmp_name}")

        info = self.get_metadata(path)
        if info is None:
            raise RemoteTransientError(f"Uploaded file vanished: {path}", path)
        return info

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise classify_os_error(e, path) from e
        return True

    def __repr__(self) -> str:
        return f"LocalDirectoryStore(root={str(self.root)!r})"
