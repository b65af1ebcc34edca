"""Google Drive remote store using the Drive v3 REST API."""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

import httpx

from ..exceptions import (
    RemoteAuthError,
    RemoteConflictError,
    RemoteNotFoundError,
    RemoteQuotaError,
    RemoteRateLimitError,
)
from ..utils import join_remote_path, parse_iso_timestamp
from .base import RemoteFileInfo
from .http import DEFAULT_TIMEOUT, HttpRemoteStore, error_for_status, parse_retry_after

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/drive/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,size,md5Checksum,modifiedTime"

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


def load_access_token(token_path: Path) -> str:
    """Read the access token from an OAuth token JSON file.

    Args:
        token_path: File containing ``{"access_token": ...}``

    Returns:
        The access token

    Raises:
        RemoteAuthError: If the file is missing or has no token
    """
    try:
        data = json.loads(Path(token_path).expanduser().read_text())
    except (OSError, ValueError) as e:
        raise RemoteAuthError(f"Cannot read Google token file {token_path}: {e}") from e
    token = data.get("access_token") or data.get("token")
    if not token:
        raise RemoteAuthError(f"No access token in {token_path}")
    return token


def _quote(value: str) -> str:
    """Escape a value for a Drive query string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _error_reason(response: httpx.Response) -> str:
    try:
        errors = response.json().get("error", {}).get("errors", [])
    except (ValueError, AttributeError):
        return ""
    if errors and isinstance(errors[0], dict):
        return errors[0].get("reason", "")
    return ""


class GoogleDriveStore(HttpRemoteStore):
    """Store files in Google Drive.

    Drive addresses objects by id, so paths are resolved one segment at a
    time. Resolved folder ids are cached for the lifetime of the store.
    Existing files are updated in place, which keeps their id, parents and
    sharing settings.
    """

    name = "gdrive"

    def __init__(
        self,
        access_token: str,
        folder_id: str = "",
        destination_path: str = "",
        metadata: Optional[dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Any = None,
    ):
        """Initialize Google Drive store.

        Args:
            access_token: OAuth2 access token with the drive scope
            folder_id: Id of the folder to sync into ("root" if empty)
            destination_path: Sub-folder path below folder_id
            metadata: Custom properties attached to every uploaded file
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not access_token:
            raise RemoteAuthError(
                "Google Drive access token not configured. Set GOOGLE_ACCESS_TOKEN "
                "or google_drive.token_path."
            )
        self.access_token = access_token
        super().__init__(timeout=timeout, transport=transport)
        self.folder_id = folder_id or "root"
        self.destination_path = destination_path.strip("/")
        self.metadata = dict(metadata or {})
        self._folder_ids: dict[str, str] = {"": self.folder_id}
        self._folder_lock = threading.RLock()

    def _client_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _raise_for_response(self, response: httpx.Response, path: Optional[str]) -> None:
        if response.status_code < 400:
            return
        if response.status_code == 403:
            reason = _error_reason(response)
            if reason in RATE_LIMIT_REASONS:
                raise RemoteRateLimitError(
                    f"Drive rate limit exceeded ({reason})",
                    path,
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )
            raise RemoteQuotaError(f"Drive access denied ({reason or 'forbidden'})", path)
        raise error_for_status(response, path)

    def _request(
        self, method: str, url: str, path: Optional[str] = None, **kwargs: Any
    ) -> dict:
        response = self._send(method, url, path, **kwargs)
        self._raise_for_response(response, path)
        if not response.content:
            return {}
        return self._json(response, path)

    def _find_child(self, parent_id: str, name: str, path: str) -> Optional[dict]:
        query = f"name = '{_quote(name)}' and '{parent_id}' in parents and trashed = false"
        data = self._request(
            "GET",
            f"{API_URL}/files",
            path,
            params={
                "q": query,
                "fields": f"files({FILE_FIELDS})",
                "spaces": "drive",
                "pageSize": "10",
            },
        )
        files = data.get("files", [])
        if len(files) > 1:
            logger.warning(f"Multiple Drive objects named {path}, using the first")
        return files[0] if files else None

    def _folder_id_for(self, folder_path: str, create: bool) -> Optional[str]:
        """Resolve (and optionally create) a folder below the sync root.

        Args:
            folder_path: Store-relative folder path ("" for the root)
            create: Create missing folders

        Returns:
            Folder id, or None if it does not exist and create is False
        """
        full_path = join_remote_path(self.destination_path, folder_path)
        with self._folder_lock:
            if full_path in self._folder_ids:
                return self._folder_ids[full_path]

            parent_id = self.folder_id
            current = ""
            for part in full_path.split("/"):
                current = f"{current}/{part}" if current else part
                cached = self._folder_ids.get(current)
                if cached is not None:
                    parent_id = cached
                    continue

                child = self._find_child(parent_id, part, current)
                if child is not None and child.get("mimeType") != FOLDER_MIME_TYPE:
                    raise RemoteConflictError(
                        f"Path conflict: {current} is a file, not a folder", folder_path
                    )
                if child is None:
                    if not create:
                        return None
                    child = self._request(
                        "POST",
                        f"{API_URL}/files",
                        current,
                        params={"fields": "id"},
                        json={
                            "name": part,
                            "mimeType": FOLDER_MIME_TYPE,
                            "parents": [parent_id],
                        },
                    )
                    logger.debug(f"Created Drive folder {current}")
                parent_id = child["id"]
                self._folder_ids[current] = parent_id
            return parent_id

    def _to_info(self, path: str, data: dict) -> RemoteFileInfo:
        return RemoteFileInfo(
            path=path,
            size=int(data.get("size", 0) or 0),
            content_hash=data.get("md5Checksum", "").lower(),
            modified=parse_iso_timestamp(data.get("modifiedTime")),
            is_folder=data.get("mimeType") == FOLDER_MIME_TYPE,
        )

    def _lookup(self, path: str) -> Optional[dict]:
        parent, _, name = path.strip("/").rpartition("/")
        parent_id = self._folder_id_for(parent, create=False)
        if parent_id is None:
            return None
        return self._find_child(parent_id, name, path)

    def get_metadata(self, path: str) -> Optional[RemoteFileInfo]:
        data = self._lookup(path)
        if data is None:
            return None
        return self._to_info(path, data)

    def create_folder(self, path: str) -> bool:
        with self._folder_lock:
            existed = self._folder_id_for(path, create=False) is not None
            if not existed:
                self._folder_id_for(path, create=True)
        return not existed

    def upload(self, local_path: Path, path: str) -> RemoteFileInfo:
        parent, _, name = path.strip("/").rpartition("/")
        existing = self._lookup(path)
        if existing is not None and existing.get("mimeType") == FOLDER_MIME_TYPE:
            raise RemoteConflictError(f"Path conflict: {path} is a folder", path)

        if existing is None:
            parent_id = self._folder_id_for(parent, create=True)
            body: dict[str, Any] = {"name": name, "parents": [parent_id]}
            if self.metadata:
                body["properties"] = self.metadata
            existing = self._request(
                "POST", f"{API_URL}/files", path, params={"fields": "id"}, json=body
            )
            logger.debug(f"Created Drive file {path} ({existing.get('id')})")

        file_id = existing.get("id")
        if not file_id:
            raise RemoteNotFoundError(f"Drive returned no id for {path}", path)

        # Media update keeps the file id and its parents
        with open(local_path, "rb") as f:
            data = self._request(
                "PATCH",
                f"{UPLOAD_URL}/files/{file_id}",
                path,
                params={"uploadType": "media", "fields": FILE_FIELDS},
                content=f,
                headers={"Content-Type": "application/octet-stream"},
            )
        return self._to_info(path, data)

    def delete(self, path: str) -> bool:
        data = self._lookup(path)
        if data is None:
            return False
        try:
            self._request("DELETE", f"{API_URL}/files/{data['id']}", path)
        except RemoteNotFoundError:
            return False
        if data.get("mimeType") == FOLDER_MIME_TYPE:
            full_path = join_remote_path(self.destination_path, path)
            with self._folder_lock:
                for cached in list(self._folder_ids):
                    if cached == full_path or cached.startswith(full_path + "/"):
                        del self._folder_ids[cached]
        return True

    def __repr__(self) -> str:
        return (
            f"GoogleDriveStore(folder_id={self.folder_id!r}, "
            f"destination_path={self.destination_path!r})"
        )

