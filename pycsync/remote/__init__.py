"""Remote storage backends."""

from .base import RemoteFileInfo, RemoteStore
from .gdrive import GoogleDriveStore
from .local import LocalDirectoryStore
from .pcloud import PCloudStore

__all__ = [
    "GoogleDriveStore",
    "LocalDirectoryStore",
    "PCloudStore",
    "RemoteFileInfo",
    "RemoteStore",
]
