"""Shared types for davsync.

This module provides:
- FileRecord: metadata of one remote file or folder
- QuotaInfo: remote storage usage, -1 meaning unknown
- ConnectionState / ConnectionTracker: provider connection lifecycle
- LocalFileInfo: metadata of one local file
- SyncAction, SyncQueueItem: pending local changes
- SyncReport: outcome of a sync run
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from davsync.core.errors import ErrorKind, StorageError

UNKNOWN_BYTES = -1


@dataclass
class FileRecord:
    """A file or folder on the remote server.

    Attributes:
        path: Canonical path (leading slash, no trailing slash unless root).
        name: Last path segment.
        is_folder: True for collections.
        size: Size in bytes (0 for folders or when unknown).
        modified_time: Last modification time.
    """

    path: str
    name: str
    is_folder: bool
    size: int
    modified_time: datetime
    etag: str | None = None
    created_time: datetime | None = None
    content_type: str | None = None
    hash: str | None = None


@dataclass
class QuotaInfo:
    """Remote storage usage in bytes."""

    used: int = UNKNOWN_BYTES
    available: int = UNKNOWN_BYTES
    total: int = UNKNOWN_BYTES

    @classmethod
    def from_counts(cls, used: int, available: int) -> QuotaInfo:
        """Build quota info, computing total only when both counts are known."""
        total = UNKNOWN_BYTES
        if used >= 0 and available >= 0:
            total = used + available
        return cls(used=used, available=available, total=total)

    @property
    def is_known(self) -> bool:
        return self.total >= 0


class ConnectionState(str, Enum):
    """Connection lifecycle of a provider."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


_ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.ERROR}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.ERROR: frozenset(),
}


class ConnectionTracker:
    """Holds a ConnectionState and rejects illegal transitions.

    ERROR is terminal: a provider that failed to connect is replaced rather
    than reused.
    """

    def __init__(self) -> None:
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    def can_transition(self, target: ConnectionState) -> bool:
        return target in _ALLOWED_TRANSITIONS[self._state]

    def transition(self, target: ConnectionState) -> None:
        """Move to target state.

        Raises:
            StorageError: INVALID_OPERATION for a transition not in the lifecycle.
        """
        if not self.can_transition(target):
            raise StorageError(
                ErrorKind.INVALID_OPERATION,
                f"Illegal connection transition {self._state.value} -> {target.value}",
            )
        self._state = target


@dataclass
class LocalFileInfo:
    """Metadata about a local file, relative to the sync root."""

    path: str
    mtime: float
    size: int
    is_folder: bool = False


class SyncAction(str, Enum):
    """Kind of local change."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass
class SyncQueueItem:
    """A pending local change, keyed by path in the change queue."""

    path: str
    action: SyncAction
    timestamp: float = field(default_factory=time.time)
    old_path: str | None = None


@dataclass
class SyncReport:
    """Outcome of one sync run across all providers."""

    uploaded: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    moved: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    unverified: list[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def change_count(self) -> int:
        return (
            len(self.uploaded)
            + len(self.downloaded)
            + len(self.deleted)
            + len(self.moved)
        )

    def merge(self, other: SyncReport) -> None:
        """Fold another report into this one."""
        self.uploaded.extend(other.uploaded)
        self.downloaded.extend(other.downloaded)
        self.deleted.extend(other.deleted)
        self.moved.extend(other.moved)
        self.skipped.extend(other.skipped)
        self.failed.update(other.failed)
        self.unverified.extend(p for p in other.unverified if p not in self.unverified)
