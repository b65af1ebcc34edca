"""pCloud remote store using the path-based JSON API."""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

from ..exceptions import (
    RemoteAuthError,
    RemoteConflictError,
    RemoteError,
    RemoteNotFoundError,
    RemotePermanentError,
    RemoteQuotaError,
    RemoteTransientError,
)
from ..utils import join_remote_path, parse_http_date
from .base import RemoteFileInfo
from .http import DEFAULT_TIMEOUT, HttpRemoteStore, error_for_status

logger = logging.getLogger(__name__)

DEFAULT_API_HOST = "https://api.pcloud.com"

# pCloud result codes, see https://docs.pcloud.com/errors/
AUTH_ERROR_CODES = {1000, 2000, 2094, 2095}
QUOTA_ERROR_CODES = {2003, 2008}
NOT_FOUND_ERROR_CODES = {2002, 2005, 2009}
CONFLICT_ERROR_CODES = {2004}
TRANSIENT_ERROR_CODES = {4000, 5000}


def classify_result(result: int, message: str, path: Optional[str]) -> RemoteError:
    """Map a non-zero pCloud result code to a RemoteError."""
    text = f"pCloud error {result}: {message}"
    if result in AUTH_ERROR_CODES:
        return RemoteAuthError(text, path)
    if result in QUOTA_ERROR_CODES:
        return RemoteQuotaError(text, path)
    if result in NOT_FOUND_ERROR_CODES:
        return RemoteNotFoundError(text, path)
    if result in CONFLICT_ERROR_CODES:
        return RemoteConflictError(text, path)
    if result in TRANSIENT_ERROR_CODES:
        return RemoteTransientError(text, path)
    return RemotePermanentError(text, path)


class PCloudStore(HttpRemoteStore):
    """Store files in a pCloud account.

    All calls address objects by absolute path below ``destination_path``.
    The auth token is fetched once with username and password unless one is
    configured directly.
    """

    name = "pcloud"

    def __init__(
        self,
        username: str = "",
        password: str = "",
        api_host: str = DEFAULT_API_HOST,
        destination_path: str = "",
        auth_token: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Any = None,
    ):
        """Initialize pCloud store.

        Args:
            username: Account e-mail
            password: Account password
            api_host: API endpoint (https://eapi.pcloud.com for EU accounts)
            destination_path: Folder below which files are stored
            auth_token: Pre-issued auth token (skips the login call)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        super().__init__(timeout=timeout, transport=transport)
        if not auth_token and not (username and password):
            raise RemoteAuthError(
                "pCloud credentials not configured. Set PCLOUD_USERNAME and "
                "PCLOUD_PASSWORD or an auth token."
            )
        self.username = username
        self.password = password
        self.api_host = api_host.rstrip("/")
        self.destination_path = destination_path.strip("/")
        self._auth_token = auth_token
        self._auth_lock = threading.Lock()
        self._known_folders: set[str] = set()
        self._folders_lock = threading.Lock()

    def _absolute(self, path: str) -> str:
        return "/" + join_remote_path(self.destination_path, path)

    def authenticate(self) -> str:
        """Return the auth token, logging in on first use."""
        with self._auth_lock:
            if self._auth_token:
                return self._auth_token
            response = self._send(
                "POST",
                f"{self.api_host}/userinfo",
                data={
                    "getauth": "1",
                    "logout": "1",
                    "username": self.username,
                    "password": self.password,
                },
            )
            data = self._check(response, None)
            token = data.get("auth")
            if not token:
                raise RemoteAuthError("pCloud login did not return an auth token")
            self._auth_token = token
            logger.info("Successfully authenticated with pCloud")
            return token

    def _call(
        self,
        method: str,
        path: Optional[str] = None,
        http_method: str = "GET",
        **kwargs: Any,
    ) -> dict:
        """Call an API method with the auth token and check the result."""
        params = dict(kwargs.pop("params", {}))
        params["auth"] = self.authenticate()
        response = self._send(
            http_method, f"{self.api_host}/{method}", path, params=params, **kwargs
        )
        return self._check(response, path)

    def _check(self, response: Any, path: Optional[str]) -> dict:
        if response.status_code >= 400:
            raise error_for_status(response, path)
        data = self._json(response, path)
        result = data.get("result", 0)
        if result != 0:
            error = classify_result(result, data.get("error", ""), path)
            if isinstance(error, RemoteAuthError) and self.username:
                # Token expired: log in again on the next call
                with self._auth_lock:
                    self._auth_token = ""
            raise error
        return data

    def _info_from_metadata(self, path: str, metadata: dict, md5: str = "") -> RemoteFileInfo:
        return RemoteFileInfo(
            path=path,
            size=int(metadata.get("size", 0) or 0),
            content_hash=md5,
            modified=parse_http_date(metadata.get("modified")),
            is_folder=bool(metadata.get("isfolder")),
        )

    def get_metadata(self, path: str) -> Optional[RemoteFileInfo]:
        try:
            data = self._call("stat", path, params={"path": self._absolute(path)})
        except RemoteNotFoundError:
            return None
        metadata = data.get("metadata", {})
        if metadata.get("isfolder") or not metadata.get("size"):
            return self._info_from_metadata(path, metadata)

        try:
            checksums = self._call(
                "checksumfile", path, params={"path": self._absolute(path)}
            )
        except RemoteNotFoundError:
            return None
        # EU data centers only return sha1/sha256; the comparator then falls
        # back to size and modification time
        md5 = checksums.get("md5", "").lower()
        return self._info_from_metadata(path, metadata, md5)

    def _ensure_folders(self, path: str, check_last: bool = True) -> bool:
        """Create ``path`` and every missing folder above it.

        The walk starts at the account root so the destination folder is
        created on first use. Folders seen once are not asked for again,
        except the last one when ``check_last`` is set.

        Returns:
            True if the last folder was created by this call
        """
        parts = [
            part
            for part in join_remote_path(self.destination_path, path).split("/")
            if part
        ]
        created = False
        for index in range(1, len(parts) + 1):
            current = "/" + "/".join(parts[:index])
            is_last = index == len(parts)
            with self._folders_lock:
                known = current in self._known_folders
            if known and not (is_last and check_last):
                created = False
                continue
            data = self._call(
                "createfolderifnotexists", path, params={"path": current}
            )
            created = bool(data.get("created"))
            with self._folders_lock:
                self._known_folders.add(current)
            if created:
                logger.debug(f"Created pCloud folder {current}")
        return created

    def create_folder(self, path: str) -> bool:
        return self._ensure_folders(path)

    def upload(self, local_path: Path, path: str) -> RemoteFileInfo:
        parent, _, filename = path.strip("/").rpartition("/")
        self._ensure_folders(parent, check_last=False)
        params = {
            "path": self._absolute(parent),
            "filename": filename,
            "nopartial": "1",
            "mtime": str(int(local_path.stat().st_mtime)),
        }
        with open(local_path, "rb") as f:
            data = self._call(
                "uploadfile",
                path,
                http_method="POST",
                params=params,
                files={"file": (filename, f, "application/octet-stream")},
            )

        uploaded = data.get("metadata") or [{}]
        metadata = uploaded[0] if isinstance(uploaded, list) else uploaded
        if metadata.get("isfolder"):
            raise RemoteConflictError(f"Path conflict: {path} is a folder", path)
        checksums = data.get("checksums") or [{}]
        md5 = (checksums[0] if isinstance(checksums, list) else checksums).get("md5", "")
        return self._info_from_metadata(path, metadata, md5.lower())

    def delete(self, path: str) -> bool:
        info = self.get_metadata(path)
        if info is None:
            return False
        method = "deletefolderrecursive" if info.is_folder else "deletefile"
        try:
            self._call(method, path, params={"path": self._absolute(path)})
        except RemoteNotFoundError:
            return False
        if info.is_folder:
            prefix = self._absolute(path)
            with self._folders_lock:
                self._known_folders = {
                    folder
                    for folder in self._known_folders
                    if folder != prefix and not folder.startswith(prefix + "/")
                }
        return True

    def __repr__(self) -> str:
        return (
            f"PCloudStore(api_host={self.api_host!r}, "
            f"destination_path={self.destination_path!r})"
        )
