"""pycsync - synchronize a local directory to cloud storage."""

from .exceptions import (
    ConfigError,
    CsyncError,
    HashError,
    RemoteAuthError,
    RemoteConflictError,
    RemoteError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemotePermanentError,
    RemoteQuotaError,
    RemoteRateLimitError,
    RemoteTransientError,
    ScanError,
    WatcherIOError,
)
from .sync import FilterSet, SyncEngine, SyncManager, SyncResult

__version__ = "0.1.0"

__all__ = [
    "SyncEngine",
    "SyncManager",
    "SyncResult",
    "FilterSet",
    "CsyncError",
    "ConfigError",
    "ScanError",
    "HashError",
    "WatcherIOError",
    "RemoteError",
    "RemoteAuthError",
    "RemoteConflictError",
    "RemoteNetworkError",
    "RemoteNotFoundError",
    "RemotePermanentError",
    "RemoteQuotaError",
    "RemoteRateLimitError",
    "RemoteTransientError",
]
