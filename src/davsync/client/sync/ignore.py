"""Ignore rules for file synchronization.

This module provides:
- FilterMode / detect_filter_mode: classify a user pattern as simple, wildcard or regex
- wildcard_to_regex: translate ``*``/``?`` patterns into anchored regexes
- FileFilter: decide whether a sync-root-relative path is excluded
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from enum import Enum

from davsync.core.config import (
    DEFAULT_IGNORE_EXTENSIONS,
    DEFAULT_IGNORE_FILES,
    DEFAULT_IGNORE_FOLDERS,
    SyncSettings,
)

logger = logging.getLogger(__name__)

REGEX_METACHARACTERS = frozenset("^$+()[]{}|\\")
WILDCARD_CHARACTERS = frozenset("*?")

Matcher = Callable[[str], bool]


class FilterMode(str, Enum):
    """How a pattern string is interpreted."""

    SIMPLE = "simple"
    WILDCARD = "wildcard"
    REGEX = "regex"


def detect_filter_mode(pattern: str) -> FilterMode:
    """Classify a pattern by the characters it contains.

    Examples:
        >>> detect_filter_mode("*.git")
        <FilterMode.WILDCARD: 'wildcard'>
        >>> detect_filter_mode(".git")
        <FilterMode.SIMPLE: 'simple'>
    """
    if any(ch in REGEX_METACHARACTERS for ch in pattern):
        return FilterMode.REGEX
    if any(ch in WILDCARD_CHARACTERS for ch in pattern):
        return FilterMode.WILDCARD
    return FilterMode.SIMPLE


def wildcard_to_regex(pattern: str) -> str:
    """Translate a wildcard pattern into an anchored regular expression."""
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return "^" + "".join(parts) + "$"


def _never(_: str) -> bool:
    return False


def compile_matcher(pattern: str, *, prefix: bool = False) -> Matcher:
    """Build a predicate for one pattern.

    Args:
        pattern: User-supplied pattern.
        prefix: For simple patterns, also match paths below the pattern
            (``pattern + "/"`` prefix).

    Returns:
        A predicate. Invalid patterns produce a predicate that never matches.
    """
    pattern = pattern.strip()
    if not pattern:
        return _never

    mode = detect_filter_mode(pattern)
    if mode is FilterMode.SIMPLE:
        if prefix:
            stem = pattern.rstrip("/")
            return lambda value: value == stem or value.startswith(stem + "/")
        return lambda value: value == pattern

    source = wildcard_to_regex(pattern) if mode is FilterMode.WILDCARD else pattern
    try:
        compiled = re.compile(source)
    except re.error as e:
        logger.warning("Ignoring invalid filter pattern %r: %s", pattern, e)
        return _never
    if mode is FilterMode.WILDCARD:
        return lambda value: compiled.fullmatch(value) is not None
    return lambda value: compiled.search(value) is not None


class FileFilter:
    """Decides which sync-root-relative paths are excluded from sync.

    Folder patterns are checked against the full path and each of its
    segments, file patterns against the full path and the bare file name,
    and extension patterns against the file extension.
    """

    def __init__(
        self,
        ignore_folders: Iterable[str] | None = None,
        ignore_files: Iterable[str] | None = None,
        ignore_extensions: Iterable[str] | None = None,
    ) -> None:
        folders = DEFAULT_IGNORE_FOLDERS if ignore_folders is None else ignore_folders
        files = DEFAULT_IGNORE_FILES if ignore_files is None else ignore_files
        extensions = (
            DEFAULT_IGNORE_EXTENSIONS if ignore_extensions is None else ignore_extensions
        )

        self._folder_matchers = [compile_matcher(p, prefix=True) for p in folders]
        self._file_matchers = [compile_matcher(p) for p in files]
        self._extension_matchers = [
            compile_matcher(p.strip().lstrip(".").lower()) for p in extensions
        ]

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> FileFilter:
        return cls(
            ignore_folders=settings.ignore_folders,
            ignore_files=settings.ignore_files,
            ignore_extensions=settings.ignore_extensions,
        )

    def should_ignore(self, path: str) -> bool:
        """Check if a path should be excluded from sync.

        Args:
            path: Path relative to the sync root (leading slash tolerated).

        Returns:
            True if any folder, file or extension rule matches.
        """
        rel = path.replace("\\", "/").strip("/")
        if not rel:
            return False
        segments = rel.split("/")
        name = segments[-1]

        for matches in self._folder_matchers:
            if matches(rel) or any(matches(segment) for segment in segments):
                return True

        for matches in self._file_matchers:
            if matches(rel) or matches(name):
                return True

        if "." in name:
            extension = name.rsplit(".", 1)[1].lower()
            if extension and any(matches(extension) for matches in self._extension_matchers):
                return True

        return False
