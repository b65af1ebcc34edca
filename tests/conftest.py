"""Shared fixtures for pycsync tests."""

import hashlib
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from pycsync.exceptions import RemoteConflictError
from pycsync.remote.base import RemoteFileInfo, RemoteStore


class InMemoryStore(RemoteStore):
    """Thread-safe store keeping objects in a dict.

    Records every call and the highest number of calls that were in flight
    at the same time. ``failures`` maps a path to an exception (or a list
    of exceptions consumed one per call) raised by upload/get_metadata.
    """

    name = "memory"

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.files: dict[str, bytes] = {}
        self.folders: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, object] = {}
        self.metadata_failures: dict[str, object] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def _enter(self, method: str, path: str) -> None:
        with self._lock:
            self.calls.append((method, path))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _leave(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def _maybe_fail(self, table: dict, path: str) -> None:
        failure = table.get(path)
        if failure is None:
            return
        if isinstance(failure, list):
            if not failure:
                return
            raise failure.pop(0)
        raise failure

    def mutating_calls(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] != "get_metadata"]

    def get_metadata(self, path: str) -> Optional[RemoteFileInfo]:
        self._enter("get_metadata", path)
        try:
            if self.delay:
                time.sleep(self.delay)
            self._maybe_fail(self.metadata_failures, path)
            with self._lock:
                if path in self.folders:
                    return RemoteFileInfo(path=path, is_folder=True)
                data = self.files.get(path)
            if data is None:
                return None
            return RemoteFileInfo(
                path=path,
                size=len(data),
                content_hash=hashlib.md5(data).hexdigest() if data else "",
            )
        finally:
            self._leave()

    def create_folder(self, path: str) -> bool:
        self._enter("create_folder", path)
        try:
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                if path in self.files:
                    raise RemoteConflictError(f"{path} is a file", path)
                if path in self.folders:
                    return False
                self.folders.add(path)
                return True
        finally:
            self._leave()

    def upload(self, local_path: Path, path: str) -> RemoteFileInfo:
        self._enter("upload", path)
        try:
            if self.delay:
                time.sleep(self.delay)
            self._maybe_fail(self.failures, path)
            parent = path.rpartition("/")[0]
            with self._lock:
                if parent and parent not in self.folders:
                    raise RemoteConflictError(f"Parent of {path} missing", path)
                if path in self.folders:
                    raise RemoteConflictError(f"{path} is a folder", path)
            data = Path(local_path).read_bytes()
            with self._lock:
                self.files[path] = data
            return RemoteFileInfo(
                path=path,
                size=len(data),
                content_hash=hashlib.md5(data).hexdigest() if data else "",
            )
        finally:
            self._leave()

    def delete(self, path: str) -> bool:
        self._enter("delete", path)
        try:
            with self._lock:
                if path in self.files:
                    del self.files[path]
                    return True
                if path in self.folders:
                    self.folders.discard(path)
                    return True
                return False
        finally:
            self._leave()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_store():
    """Create an empty in-memory store."""
    return InMemoryStore()
