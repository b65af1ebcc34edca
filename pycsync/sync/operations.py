"""Remote store operations with retry and error classification."""

import logging
import random
import threading
import time
from pathlib import Path
from typing import Callable, Optional, TypeVar

from ..exceptions import RemoteRateLimitError, is_retryable
from ..remote.base import RemoteFileInfo, RemoteStore
from ..utils import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY, MAX_RETRY_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retries transient failures with exponential backoff.

    Authentication, quota/permission and permanent errors are raised on the
    first occurrence; only errors classified as transient are retried.
    Backoff waits use the cancel event so a shutdown interrupts them.
    """

    def __init__(
        self,
        attempts: int = DEFAULT_RETRY_ATTEMPTS,
        delay: float = DEFAULT_RETRY_DELAY,
        max_delay: float = MAX_RETRY_DELAY,
        jitter: float = 0.25,
    ):
        """Initialize retry policy.

        Args:
            attempts: Number of retries after the first try (0 disables retry)
            delay: Base delay in seconds for the first retry
            max_delay: Upper bound for a single backoff wait
            jitter: Relative random jitter applied to each delay
        """
        if attempts < 0:
            raise ValueError("retry attempts must be non-negative")
        self.attempts = attempts
        self.delay = delay
        self.max_delay = max_delay
        self.jitter = jitter

    def backoff(self, attempt: int) -> float:
        """Calculate delay before the next retry.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = min(self.delay * (2**attempt), self.max_delay)
        # Add jitter to avoid thundering herd
        jitter = base_delay * self.jitter * (2 * random.random() - 1)
        return max(0.0, base_delay + jitter)

    def call(
        self,
        func: Callable[[], T],
        description: str = "operation",
        cancel_event: Optional[threading.Event] = None,
    ) -> T:
        """Call func, retrying transient failures.

        Args:
            func: Zero-argument callable performing the operation
            description: Human-readable description for log messages
            cancel_event: Event that aborts pending backoff waits

        Returns:
            Whatever func returns

        Raises:
            Exception: The last error once retries are exhausted, or the first
                non-retryable error
        """
        attempt = 0
        while True:
            try:
                return func()
            except Exception as e:
                if not is_retryable(e) or attempt >= self.attempts:
                    raise

                delay = self.backoff(attempt)
                if isinstance(e, RemoteRateLimitError) and e.retry_after:
                    delay = min(max(delay, e.retry_after), self.max_delay)

                logger.debug(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    description,
                    attempt + 1,
                    self.attempts + 1,
                    delay,
                    e,
                )
                if cancel_event is not None:
                    if cancel_event.wait(delay):
                        logger.debug("%s: retry aborted by cancellation", description)
                        raise
                else:
                    time.sleep(delay)
                attempt += 1


class SyncOperations:
    """Store calls used by the sync engine, wrapped in a retry policy."""

    def __init__(
        self,
        store: RemoteStore,
        retry: Optional[RetryPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize sync operations.

        Args:
            store: Remote store to operate on
            retry: Retry policy (defaults to RetryPolicy())
            cancel_event: Event that aborts backoff waits
        """
        self.store = store
        self.retry = retry or RetryPolicy()
        self.cancel_event = cancel_event

    def lookup(self, remote_path: str) -> Optional[RemoteFileInfo]:
        """Fetch metadata for a remote path (None if absent)."""
        return self.retry.call(
            lambda: self.store.get_metadata(remote_path),
            description=f"Lookup of {remote_path}",
            cancel_event=self.cancel_event,
        )

    def create_folder(self, remote_path: str) -> bool:
        """Create a remote folder.

        Returns:
            True if the folder was created, False if it already existed
        """
        return self.retry.call(
            lambda: self.store.create_folder(remote_path),
            description=f"Folder creation of {remote_path}",
            cancel_event=self.cancel_event,
        )

    def upload_file(self, local_path: Path, remote_path: str) -> RemoteFileInfo:
        """Upload (create or overwrite) a local file."""
        return self.retry.call(
            lambda: self.store.upload(local_path, remote_path),
            description=f"Upload of {remote_path}",
            cancel_event=self.cancel_event,
        )
