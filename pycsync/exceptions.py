"""Custom exceptions for pycsync."""

from typing import Optional


class CsyncError(Exception):
    """Base exception for all pycsync errors."""

    pass


class ConfigError(CsyncError):
    """Configuration is missing, unreadable or invalid."""

    pass


class ScanError(CsyncError):
    """Directory scan failed (root inaccessible or traversal I/O error)."""

    pass


class HashError(CsyncError):
    """Content hash could not be computed for a file."""

    pass


class WatcherIOError(CsyncError):
    """A change watcher could not scan its root."""

    pass


class RemoteError(CsyncError):
    """Base exception for remote store failures.

    Subclasses set ``retryable`` to tell the sync engine whether the
    operation may be attempted again.
    """

    retryable = False

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class RemoteTransientError(RemoteError):
    """Temporary failure (timeout, 5xx, rate limit); safe to retry."""

    retryable = True


class RemoteNetworkError(RemoteTransientError):
    """Network-level failure talking to the remote store."""

    pass


class RemoteRateLimitError(RemoteTransientError):
    """The remote store asked us to slow down."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, path)
        self.retry_after = retry_after


class RemoteAuthError(RemoteError):
    """Authentication failed or credentials are missing."""

    pass


class RemoteQuotaError(RemoteError):
    """Permission denied or storage quota exhausted."""

    pass


class RemotePermanentError(RemoteError):
    """Failure that will not go away by retrying."""

    pass


class RemoteNotFoundError(RemotePermanentError):
    """The requested remote object does not exist."""

    pass


class RemoteConflictError(RemotePermanentError):
    """Path conflict, e.g. a file exists where a folder is expected."""

    pass


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception raised by a remote operation.

    Args:
        exc: Exception raised by a store call

    Returns:
        True if the operation should be retried
    """
    if isinstance(exc, RemoteError):
        return exc.retryable
    # Builtin network-ish errors raised by stores that do not wrap them
    return isinstance(exc, (TimeoutError, ConnectionError))
