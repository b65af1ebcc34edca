"""Utility functions for pycsync."""

import hashlib
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Optional, Union

# =============================================================================
# Constants for sync operations
# =============================================================================

# Default number of parallel transfer workers
DEFAULT_CONCURRENCY: int = 5

# Retry configuration for transient errors
DEFAULT_RETRY_ATTEMPTS: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds
MAX_RETRY_DELAY: float = 60.0  # seconds

# Read size used when hashing file contents (1 MB)
HASH_CHUNK_SIZE: int = 1024 * 1024

# Tolerance when comparing local and remote modification times
MTIME_TOLERANCE: float = 2.0  # seconds

# Daemon defaults
DEFAULT_SYNC_INTERVAL: float = 300.0  # 5 minutes
DEFAULT_POLL_INTERVAL: float = 1.0
DEFAULT_DEBOUNCE: float = 2.0
DEFAULT_MAX_PENDING_EVENTS: int = 100


# =============================================================================
# Hash calculation utilities
# =============================================================================


def md5_file(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Calculate the MD5 digest of a file by streaming its content.

    Args:
        file_path: Path to the file
        chunk_size: Number of bytes read per iteration

    Returns:
        Lower-case hexadecimal MD5 digest

    Raises:
        OSError: If the file cannot be opened or read

    Examples:
        >>> md5_file(Path("empty.txt"))  # doctest: +SKIP
        'd41d8cd98f00b204e9800998ecf8427e'
    """
    digest = hashlib.md5()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[float]:
    """Parse an ISO 8601 timestamp into a Unix timestamp.

    Args:
        timestamp_str: ISO format timestamp (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Seconds since the epoch or None if parsing fails
    """
    if not timestamp_str:
        return None

    # The 'Z' suffix indicates UTC time
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(timestamp_str).timestamp()
    except ValueError:
        # Older Pythons reject fractional seconds that are not 3 or 6 digits
        if "." in timestamp_str:
            head, _, tail = timestamp_str.partition(".")
            offset = ""
            match = re.search(r"[+-]\d{2}:\d{2}$", tail)
            if match:
                offset = match.group(0)
            try:
                return datetime.fromisoformat(head + offset).timestamp()
            except ValueError:
                return None
        return None


def parse_http_date(value: Optional[str]) -> Optional[float]:
    """Parse an RFC 2822 date (as returned by pCloud) into a Unix timestamp.

    Args:
        value: Date string like "Thu, 21 Mar 2024 10:02:33 +0000"

    Returns:
        Seconds since the epoch or None if parsing fails
    """
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None


# =============================================================================
# Duration utilities
# =============================================================================

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) or Go-style duration strings made of
    number/unit pairs, with units ``h``, ``m``, ``s`` and ``ms``.

    Args:
        value: Duration value

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the value cannot be parsed or is negative

    Examples:
        >>> parse_duration("5m")
        300.0
        >>> parse_duration("1h30m")
        5400.0
        >>> parse_duration("250ms")
        0.25
        >>> parse_duration(10)
        10.0
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value}")
        return float(value)

    text = value.strip()
    if not text:
        raise ValueError("Empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"Duration must not be negative: {value}")
        return seconds

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"Invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


def format_duration(seconds: float) -> str:
    """Format seconds as a short human-readable duration.

    Examples:
        >>> format_duration(0.5)
        '0.50s'
        >>> format_duration(90)
        '1m30s'
        >>> format_duration(3600)
        '1h0m0s'
    """
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    if minutes < 60:
        return f"{minutes}m{secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes}m{secs}s"


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def join_remote_path(root: str, relative_path: str) -> str:
    """Join a remote root folder and a relative path with forward slashes.

    Examples:
        >>> join_remote_path("", "a/b.txt")
        'a/b.txt'
        >>> join_remote_path("/backup/", "a/b.txt")
        'backup/a/b.txt'
    """
    root = root.strip("/")
    relative_path = relative_path.strip("/")
    if not root:
        return relative_path
    if not relative_path:
        return root
    return f"{root}/{relative_path}"
