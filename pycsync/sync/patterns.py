"""Glob-style include/exclude pattern matching over relative paths.

Patterns come in three flavours:

- ``build/`` (trailing slash): directory-scoped. Matches the directory
  ``build`` and anything below it, but only when the path being checked is
  itself a directory. Files are excluded indirectly because the scanner
  never descends into an ignored directory.
- ``*.tmp`` (contains ``*``, ``?`` or ``[``): matched against the final
  path segment with shell-glob semantics.
- ``node_modules`` (plain): matches the exact relative path, any path ending
  in ``/node_modules``, or any path with ``node_modules`` as an ancestor.

Matching is case-sensitive and always works on forward-slash paths.
"""

import fnmatch
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass

WILDCARD_CHARS = "*?["

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/",
    ".DS_Store",
    "Thumbs.db",
    "*.tmp",
    "*.temp",
    "*.swp",
    "*~",
)


def normalize_path(path: str) -> str:
    """Normalize a relative path to forward slashes.

    Examples:
        >>> normalize_path("./docs/readme.md")
        'docs/readme.md'
        >>> normalize_path("docs/")
        'docs'
    """
    if os.sep != "/":
        path = path.replace(os.sep, "/")
    if os.altsep and os.altsep != "/":
        path = path.replace(os.altsep, "/")
    while path.startswith("./"):
        path = path[2:]
    return path.rstrip("/")


def is_glob_pattern(pattern: str) -> bool:
    """Return True if the pattern contains a shell wildcard."""
    return any(char in pattern for char in WILDCARD_CHARS)


def matches(pattern: str, relative_path: str, is_dir: bool = False) -> bool:
    """Check whether a single pattern matches a relative path.

    Args:
        pattern: Pattern string
        relative_path: Path relative to the sync root
        is_dir: Whether the path denotes a directory

    Returns:
        True if the pattern matches

    Examples:
        >>> matches("build/", "build", is_dir=True)
        True
        >>> matches("build/", "build", is_dir=False)
        False
        >>> matches("*.log", "logs/app.log")
        True
        >>> matches("node_modules", "web/node_modules/react/index.js")
        True
    """
    if not pattern:
        return False

    path = normalize_path(relative_path)
    if os.sep != "/":
        pattern = pattern.replace(os.sep, "/")

    # Directory-scoped pattern
    if pattern.endswith("/"):
        if not is_dir:
            return False
        dir_pattern = pattern.rstrip("/")
        return path == dir_pattern or path.startswith(dir_pattern + "/")

    # Wildcard pattern against the final segment
    if is_glob_pattern(pattern):
        name = path.rsplit("/", 1)[-1]
        try:
            return fnmatch.fnmatchcase(name, pattern)
        except re.error:
            return pattern.replace("*", "") in path

    # Plain pattern
    if path == pattern or path.endswith("/" + pattern):
        return True
    return pattern in path.split("/")[:-1]


def should_ignore(
    relative_path: str, ignore_patterns: Iterable[str], is_dir: bool = False
) -> bool:
    """Return True if any ignore pattern matches the path."""
    return any(matches(pattern, relative_path, is_dir) for pattern in ignore_patterns)


def should_include(
    relative_path: str, include_patterns: Iterable[str], is_dir: bool = False
) -> bool:
    """Return True if the path survives the include filter.

    An empty include list accepts everything, and directories are always
    accepted so that their contents can still be reached.
    """
    include_patterns = list(include_patterns)
    if not include_patterns or is_dir:
        return True
    return any(matches(pattern, relative_path, is_dir) for pattern in include_patterns)


@dataclass(frozen=True)
class FilterSet:
    """Pair of ignore and include pattern lists.

    Ignore patterns are evaluated first and always win.

    Examples:
        >>> filters = FilterSet(ignore=("*.tmp",), include=("*.txt",))
        >>> filters.accepts("notes.txt")
        True
        >>> filters.accepts("notes.tmp")
        False
        >>> filters.accepts("photo.jpg")
        False
    """

    ignore: tuple[str, ...] = ()
    """Patterns that exclude (and prune) matching paths"""

    include: tuple[str, ...] = ()
    """Patterns a file must match to be kept (empty means everything)"""

    @classmethod
    def from_lists(
        cls,
        ignore: Iterable[str] = (),
        include: Iterable[str] = (),
    ) -> "FilterSet":
        """Build a FilterSet from any iterables, dropping blank patterns."""
        return cls(
            ignore=tuple(p.strip() for p in ignore if p and p.strip()),
            include=tuple(p.strip() for p in include if p and p.strip()),
        )

    def is_ignored(self, relative_path: str, is_dir: bool = False) -> bool:
        """Return True if the path is excluded by an ignore pattern."""
        return should_ignore(relative_path, self.ignore, is_dir)

    def is_included(self, relative_path: str, is_dir: bool = False) -> bool:
        """Return True if the path passes the include patterns."""
        return should_include(relative_path, self.include, is_dir)

    def accepts(self, relative_path: str, is_dir: bool = False) -> bool:
        """Return True if the path is neither ignored nor filtered out."""
        if self.is_ignored(relative_path, is_dir):
            return False
        return self.is_included(relative_path, is_dir)
